"""
Location: superpay_sdk/__init__.py

Summary:
    Main package initialization for superpay-sdk. Exports all public classes
    and functions for convenient importing.

Usage:
    from superpay_sdk import PaymentOrchestrator, BalanceCache, TransferExecutor

    # Or import specific modules
    from superpay_sdk.signers import StaticSigner
    from superpay_sdk.rpc import JsonRpcBalanceReader

Logging is disabled for this package until setup_logging() is called.

Version: 0.1.0
"""

from loguru import logger

from .amounts import AmountPrecisionError, format_units, parse_amount, to_raw_units
from .balance_cache import BalanceCache
from .chain import (
    BalanceReader,
    ChainContext,
    ChainError,
    ChainNetworkError,
    ChainSubmitter,
    InsufficientFundsError,
    PaymentRecorder,
    Signer,
    TransactionQuery,
    UserRejectedError,
)
from .codec import (
    SCHEMA_TAG,
    build_payment_request,
    decode_payment_request,
    encode_payment_request,
    encode_request,
    format_address,
    is_valid_address,
    validate_payment_request,
)
from .config import SuperpaySettings, get_settings
from .executor import TransferExecutor
from .log import setup_logging
from .monitor import PaymentMonitor
from .orchestrator import PaymentOrchestrator
from .types import (
    AccountBalanceEntry,
    AddressBalances,
    DecodeError,
    ErrorKind,
    EstimationError,
    InboundRecord,
    InvalidationReason,
    MonitoringSession,
    OrchestratorError,
    OrchestratorErrorKind,
    OrchestratorResult,
    PaymentRequest,
    SessionEndReason,
    TokenMeta,
    TransferAttempt,
    TransferInstruction,
    TransferOutcome,
    TransferResult,
    ValidationError,
    ValidationResult,
)

__version__ = "0.1.0"

logger.disable("superpay_sdk")

__all__ = [
    # Main entry point
    "PaymentOrchestrator",
    # Components
    "BalanceCache",
    "TransferExecutor",
    "PaymentMonitor",
    # Collaborator protocols
    "BalanceReader",
    "ChainSubmitter",
    "TransactionQuery",
    "Signer",
    "PaymentRecorder",
    "ChainContext",
    # Exceptions
    "ChainError",
    "UserRejectedError",
    "InsufficientFundsError",
    "ChainNetworkError",
    "AmountPrecisionError",
    # Codec
    "SCHEMA_TAG",
    "build_payment_request",
    "encode_request",
    "encode_payment_request",
    "decode_payment_request",
    "validate_payment_request",
    "is_valid_address",
    "format_address",
    # Amounts
    "parse_amount",
    "to_raw_units",
    "format_units",
    # Types
    "TokenMeta",
    "PaymentRequest",
    "ValidationResult",
    "DecodeError",
    "ValidationError",
    "AccountBalanceEntry",
    "AddressBalances",
    "InvalidationReason",
    "EstimationError",
    "ErrorKind",
    "TransferOutcome",
    "TransferAttempt",
    "TransferResult",
    "InboundRecord",
    "MonitoringSession",
    "SessionEndReason",
    "TransferInstruction",
    "OrchestratorError",
    "OrchestratorErrorKind",
    "OrchestratorResult",
    # Configuration and logging
    "SuperpaySettings",
    "get_settings",
    "setup_logging",
]
