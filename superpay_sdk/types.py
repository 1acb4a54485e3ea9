"""
Location: superpay_sdk/types.py

Summary:
    Pydantic models and enums for superpay-sdk. Defines the QR payment
    request payload, cached balance entries, transfer attempts and results,
    payment monitoring sessions, and the orchestrator's instruction and
    result values.

Usage:
    These models are shared by codec.py, balance_cache.py, executor.py,
    monitor.py and orchestrator.py. Token amounts in base units are Python
    ints; human-readable amounts are decimal strings so that no float ever
    touches a balance.

Example:
    from superpay_sdk.types import PaymentRequest

    request = PaymentRequest(
        recipient_address="0xAbC...",
        amount="25.50",
        token_symbol="USDC",
        token_contract="0x...",
        token_decimals=6,
        chain_id=1328,
    )
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from .amounts import format_units


class DecodeError(str, Enum):
    """Reasons a scanned string is not turned into a PaymentRequest."""

    NOT_A_PAYMENT_PAYLOAD = "not_a_payment_payload"


class ValidationError(str, Enum):
    """Reasons a decoded PaymentRequest is rejected."""

    INVALID_FORMAT = "invalid_format"
    INVALID_AMOUNT = "invalid_amount"
    UNSUPPORTED_TOKEN = "unsupported_token"


class ErrorKind(str, Enum):
    """Classified transfer failure reasons."""

    USER_REJECTED = "user_rejected"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NETWORK_ERROR = "network_error"
    INVALID_AMOUNT = "invalid_amount"


class TransferOutcome(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class InvalidationReason(str, Enum):
    """Named events that mark cached balances as stale."""

    TRANSFER_SUBMITTED = "transfer_submitted"
    PAYMENT_RECEIVED = "payment_received"
    NETWORK_CHANGED = "network_changed"
    APP_FOREGROUND = "app_foreground"
    MANUAL = "manual"


class SessionEndReason(str, Enum):
    MATCHED = "matched"
    STOPPED = "stopped"
    EXPIRED = "expired"
    REPLACED = "replaced"


class OrchestratorErrorKind(str, Enum):
    NOT_A_PAYMENT_PAYLOAD = "not_a_payment_payload"
    INVALID_FORMAT = "invalid_format"
    INVALID_AMOUNT = "invalid_amount"
    UNSUPPORTED_TOKEN = "unsupported_token"
    INVALID_RECIPIENT = "invalid_recipient"
    WRONG_NETWORK = "wrong_network"


class TokenMeta(BaseModel):
    """
    Identifies a fungible token and its base-unit scaling.

    Attributes:
        symbol: Display symbol (e.g., "USDC")
        contract: Token contract address, None for the chain's native coin
        decimals: Number of decimal places between base units and display units
    """
    symbol: str
    contract: Optional[str] = None
    decimals: int = Field(ge=0)

    model_config = {"frozen": True}

    @property
    def is_native(self) -> bool:
        return self.contract is None


class PaymentRequest(BaseModel):
    """
    The payment request exchanged out-of-band as a QR code or text.

    Field aliases are the wire keys. Unknown wire keys are ignored so newer
    payloads still decode. The model is frozen: asking for a different
    amount or description means building a new request.

    Attributes:
        schema_tag: Discriminator marking the payload family
        recipient_address: Destination account address
        amount: Decimal string in display units, "0" lets the payer choose
        token_symbol: Token symbol
        token_contract: Token contract address
        token_decimals: Token decimals
        description: Free-text memo
        created_at_ms: Creation time in epoch milliseconds
        chain_id: Target network identifier
    """
    schema_tag: str = Field(alias="type")
    recipient_address: str = Field("", alias="to")
    amount: str = ""
    token_symbol: str = Field("", alias="token")
    token_contract: str = Field("", alias="contract")
    token_decimals: int = Field(0, alias="decimals")
    description: Optional[str] = None
    created_at_ms: int = Field(0, alias="timestamp")
    chain_id: Optional[int] = Field(None, alias="chainId")

    model_config = {"populate_by_name": True, "frozen": True, "extra": "ignore"}

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_string(cls, value):
        # Older generators wrote the amount as a JSON number.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def is_open_amount(self) -> bool:
        """True when the requester left the amount to the payer."""
        try:
            return Decimal(self.amount) == 0
        except InvalidOperation:
            return False


class ValidationResult(BaseModel):
    """Outcome of validating a PaymentRequest."""
    is_valid: bool
    error: Optional[ValidationError] = None
    message: Optional[str] = None


class AccountBalanceEntry(BaseModel):
    """
    Cached balance of one token for one address.

    `formatted` is always computed from `raw_units` and `decimals`; it is
    never stored on its own.
    """
    token_symbol: str
    decimals: int
    raw_units: int = 0
    last_updated_ms: Optional[int] = None
    stale: bool = True

    @computed_field
    @property
    def formatted(self) -> str:
        return format_units(self.raw_units, self.decimals)


class AddressBalances(BaseModel):
    """
    Snapshot of every tracked token balance for one address.

    Attributes:
        address: Normalized (lower-case) address
        entries: Balance entries keyed by token symbol
        error: Message of the last failed refresh, cleared by a successful one
    """
    address: str
    entries: dict[str, AccountBalanceEntry]
    error: Optional[str] = None

    @property
    def stale(self) -> bool:
        return any(entry.stale for entry in self.entries.values())


class EstimationError(BaseModel):
    """Gas estimation failed; the executor falls back to its default gas limit."""
    message: str


class TransferAttempt(BaseModel):
    """One submission attempt made by the TransferExecutor."""
    recipient: str
    amount_raw_units: int
    gas_limit: int
    attempt_number: int
    started_at_ms: int
    outcome: TransferOutcome = TransferOutcome.PENDING
    tx_hash: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None


class TransferResult(BaseModel):
    """
    Terminal result of TransferExecutor.transfer().

    Attributes:
        idempotency_key: Key the send was registered under
        outcome: SUBMITTED, FAILED or TIMED_OUT
        tx_hash: Transaction hash when SUBMITTED
        error_kind: Failure classification when FAILED
        error_message: Collaborator error text, for logs and support
        gas_estimated: False when the fallback gas limit was used
        attempts: Every attempt made, in order
        replayed: True when this call got back the result of a send made
            by an earlier or concurrent call with the same key
    """
    idempotency_key: str
    outcome: TransferOutcome
    tx_hash: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    gas_estimated: bool = True
    attempts: list[TransferAttempt] = Field(default_factory=list)
    replayed: bool = False

    @property
    def attempt_number(self) -> int:
        return self.attempts[-1].attempt_number if self.attempts else 0

    @property
    def gas_limit(self) -> Optional[int]:
        return self.attempts[-1].gas_limit if self.attempts else None

    @property
    def is_submitted(self) -> bool:
        return self.outcome == TransferOutcome.SUBMITTED


class InboundRecord(BaseModel):
    """A transaction record returned by the TransactionQuery collaborator."""
    id: str
    to_owner_id: str = Field(alias="toOwnerId")
    status: str
    token_symbol: str = Field(alias="tokenSymbol")
    amount: str
    created_at_ms: int = Field(alias="createdAtMs")
    from_display: Optional[str] = Field(None, alias="fromDisplay")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("id", "amount", mode="before")
    @classmethod
    def _as_string(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class MonitoringSession(BaseModel):
    """
    A "waiting to receive a payment" session owned by the PaymentMonitor.

    Attributes:
        session_id: Unique id of this session
        owner_id: Logical identity of the receiving account
        expected_token: Token symbol an inbound payment must be made in
        baseline_record_id: Newest inbound record known when the session started
        baseline_resolved: False when the baseline query failed, in which case
            only the start time is used to recognise new records
        started_at_ms: Session start in epoch milliseconds
        active: Whether the session is still polling
        end_reason: Why the session became inactive
        matched_record: The payment that ended the session, if any
    """
    session_id: str
    owner_id: str
    expected_token: str
    baseline_record_id: Optional[str] = None
    baseline_resolved: bool = True
    started_at_ms: int
    active: bool = True
    end_reason: Optional[SessionEndReason] = None
    matched_record: Optional[InboundRecord] = None


class TransferInstruction(BaseModel):
    """
    A validated, amount-resolved outgoing transfer built from a scanned payload.

    Attributes:
        request: The decoded payment request
        recipient_address: Where the tokens go
        amount: Display-unit amount to send
        token: Token being sent
        description: Memo carried over from the request
        amount_supplied_by_payer: True when the request had the open "0" amount
    """
    request: PaymentRequest
    recipient_address: str
    amount: str
    token: TokenMeta
    description: Optional[str] = None
    amount_supplied_by_payer: bool = False

    model_config = {"frozen": True}


class OrchestratorError(BaseModel):
    """Returned instead of a TransferInstruction when a scan can't be paid."""
    kind: OrchestratorErrorKind
    message: str


class OrchestratorResult(BaseModel):
    """
    Result of executing a TransferInstruction.

    Attributes:
        transfer: The executor's result
        sender_address: Address the tokens were sent from
        invalidated_addresses: Addresses whose cached balances were invalidated
        message: Text for the user
    """
    transfer: TransferResult
    sender_address: Optional[str] = None
    invalidated_addresses: list[str] = Field(default_factory=list)
    message: str

    @property
    def outcome(self) -> TransferOutcome:
        return self.transfer.outcome

    @property
    def retry_allowed(self) -> bool:
        # A timed-out send may still land, so never invite a blind resend.
        return self.transfer.outcome == TransferOutcome.FAILED
