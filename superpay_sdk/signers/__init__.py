"""
Location: superpay_sdk/signers/__init__.py

Summary:
    Signers package for superpay-sdk. Real wallets implement the Signer
    protocol from superpay_sdk.chain; this package only ships a
    development signer.

Usage:
    from superpay_sdk.signers import StaticSigner
"""

from .static import StaticSigner

__all__ = ["StaticSigner"]
