"""
Location: superpay_sdk/signers/static.py

Summary:
    Development-only signer bound to a fixed address. Lets the SDK run
    against fakes and test networks without a wallet. It holds no key and
    cannot sign.

Example:
    from superpay_sdk.signers import StaticSigner

    # WARNING: Development only!
    signer = StaticSigner("0x1234567890123456789012345678901234567890")
"""

import warnings

from ..codec import is_valid_address


class StaticSigner:
    """
    Development-only signer that reports a fixed wallet address.

    WARNING: Never use with real funds. Key custody and signing belong to
    the wallet integration that implements the Signer protocol.

    Attributes:
        address: The wallet address reported for every chain
    """

    def __init__(self, address: str, warn: bool = True):
        """
        Initialize the static signer.

        Args:
            address: 0x-prefixed wallet address
            warn: Emit the development-only warning

        Raises:
            ValueError: If the address is malformed
        """
        if not is_valid_address(address):
            raise ValueError(f"Invalid address: {address!r}")
        if warn:
            warnings.warn(
                "StaticSigner is for development only. Do not use with real funds!",
                UserWarning,
                stacklevel=2,
            )
        self.address = address

    async def get_address(self, chain_id: int) -> str:
        """
        Get the wallet address.

        Args:
            chain_id: Network identifier (ignored, the address is fixed)

        Returns:
            The configured address
        """
        return self.address

    async def sign(self, payload: bytes, chain_id: int) -> bytes:
        """
        Sign a payload.

        Raises:
            NotImplementedError: Always, this signer holds no key
        """
        raise NotImplementedError(
            "StaticSigner cannot sign. Use the wallet's Signer implementation."
        )
