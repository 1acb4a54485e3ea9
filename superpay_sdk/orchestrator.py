"""
Location: superpay_sdk/orchestrator.py

Summary:
    Main PaymentOrchestrator class for superpay-sdk. Turns a scanned QR
    payload into a validated transfer instruction, executes it, and keeps
    the balance cache consistent afterwards. Also runs the receive flow:
    encode a payment request and watch for the matching inbound payment.

Usage:
    The primary entry point of the SDK. Build it from a ChainContext (or
    from already constructed components), then call
    build_outgoing_transfer() and execute_and_reconcile() for the pay flow
    and request_payment() for the receive flow.

Example:
    from superpay_sdk import PaymentOrchestrator

    async with PaymentOrchestrator.from_context(context) as orchestrator:
        instruction = orchestrator.build_outgoing_transfer(scanned, "25.50")
        if isinstance(instruction, OrchestratorError):
            show(instruction.message)
        else:
            result = await orchestrator.execute_and_reconcile(instruction, request_id)
            show(result.message)
"""

import inspect
import uuid
from typing import Iterable, Optional, Union

from loguru import logger

from .amounts import parse_amount, to_raw_units
from .balance_cache import BalanceCache, normalize_address
from .chain import ChainContext, PaymentRecorder, Signer
from .codec import (
    decode_payment_request,
    encode_payment_request,
    format_address,
    is_valid_address,
    validate_payment_request,
)
from .config import get_settings
from .executor import TransferExecutor
from .monitor import MatchCallback, PaymentMonitor
from .types import (
    DecodeError,
    ErrorKind,
    InboundRecord,
    InvalidationReason,
    MonitoringSession,
    OrchestratorError,
    OrchestratorErrorKind,
    OrchestratorResult,
    TokenMeta,
    TransferInstruction,
    TransferOutcome,
    TransferResult,
    ValidationError,
)

_VALIDATION_KINDS = {
    ValidationError.INVALID_FORMAT: OrchestratorErrorKind.INVALID_FORMAT,
    ValidationError.INVALID_AMOUNT: OrchestratorErrorKind.INVALID_AMOUNT,
    ValidationError.UNSUPPORTED_TOKEN: OrchestratorErrorKind.UNSUPPORTED_TOKEN,
}

_FAILURE_MESSAGES = {
    ErrorKind.USER_REJECTED: "Transaction was rejected",
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient {symbol} balance or gas for this payment",
    ErrorKind.NETWORK_ERROR: "Network error while sending the payment. You can try again",
    ErrorKind.INVALID_AMOUNT: "Invalid payment amount",
}

TIMED_OUT_MESSAGE = (
    "Payment status unknown. Check your transaction history before trying again"
)


class PaymentOrchestrator:
    """
    Ties the codec, balance cache, transfer executor and payment monitor
    together.

    Pay flow:
    1. Decode and validate the scanned payload
    2. Resolve the amount (the payer's amount only for open "0" requests)
    3. Execute the transfer
    4. On SUBMITTED, invalidate the sender's cached balances (and the
       recipient's, when it is a local address) and record the payment

    Attributes:
        executor: TransferExecutor used for sends
        cache: BalanceCache kept consistent with sends and receipts
        signer: Provides the sending wallet's address
        monitor: PaymentMonitor for the receive flow, if configured
        token: The single supported token
        chain_id: Network the SDK is connected to
        recorder: Optional sink for completed sends
    """

    def __init__(
        self,
        executor: TransferExecutor,
        cache: BalanceCache,
        signer: Signer,
        *,
        monitor: Optional[PaymentMonitor] = None,
        token: Optional[TokenMeta] = None,
        chain_id: Optional[int] = None,
        recorder: Optional[PaymentRecorder] = None,
        local_addresses: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            executor: TransferExecutor for sends
            cache: BalanceCache to reconcile
            signer: Signer giving the sender address
            monitor: Optional PaymentMonitor for request_payment()
            token: Supported token (defaults to settings)
            chain_id: Network identifier (defaults to settings)
            recorder: Optional PaymentRecorder for completed sends
            local_addresses: Addresses owned by this app besides the sender
        """
        settings = get_settings()
        self.executor = executor
        self.cache = cache
        self.signer = signer
        self.monitor = monitor
        self.token = token or settings.supported_token()
        self.chain_id = settings.chain_id if chain_id is None else chain_id
        self.recorder = recorder
        self._local_addresses = {normalize_address(a) for a in local_addresses or ()}
        self._receiving: dict[str, str] = {}

        self._user_on_match: Optional[MatchCallback] = None
        if monitor is not None:
            self._user_on_match = monitor.on_match
            monitor.on_match = self._on_payment_received

    @classmethod
    def from_context(
        cls,
        context: ChainContext,
        *,
        token: Optional[TokenMeta] = None,
        chain_id: Optional[int] = None,
        on_match: Optional[MatchCallback] = None,
        local_addresses: Optional[Iterable[str]] = None,
    ) -> "PaymentOrchestrator":
        """
        Build the orchestrator and its components from a ChainContext.

        Args:
            context: The injected chain collaborators
            token: Supported token (defaults to settings)
            chain_id: Network identifier (defaults to settings)
            on_match: Callback run when a requested payment arrives
            local_addresses: Addresses owned by this app besides the sender

        Returns:
            A ready PaymentOrchestrator
        """
        settings = get_settings()
        token = token or settings.supported_token()
        return cls(
            executor=TransferExecutor(context.submitter),
            cache=BalanceCache(context.balance_reader, tokens=[token, settings.native_token()]),
            signer=context.signer,
            monitor=PaymentMonitor(
                context.transaction_query,
                expected_token=token.symbol,
                on_match=on_match,
            ),
            token=token,
            chain_id=chain_id,
            recorder=context.recorder,
            local_addresses=local_addresses,
        )

    async def close(self) -> None:
        """Stop any running monitoring sessions."""
        if self.monitor is not None:
            await self.monitor.close()

    async def __aenter__(self) -> "PaymentOrchestrator":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args) -> None:
        """Exit async context manager and stop monitoring."""
        await self.close()

    def build_outgoing_transfer(
        self,
        scanned_payload: str,
        user_supplied_amount_if_zero: Optional[str] = None,
    ) -> Union[TransferInstruction, OrchestratorError]:
        """
        Turn scanned QR text into a transfer instruction.

        A non-zero requested amount is used verbatim: it is the requester's
        terms and the payer can't change it. Only an open "0" request takes
        the payer's amount, which must then be positive.

        Args:
            scanned_payload: Raw scanned text
            user_supplied_amount_if_zero: Payer's amount for open requests

        Returns:
            TransferInstruction, or OrchestratorError describing why the
            payload can't be paid
        """
        request = decode_payment_request(scanned_payload)
        if request is DecodeError.NOT_A_PAYMENT_PAYLOAD:
            return OrchestratorError(
                kind=OrchestratorErrorKind.NOT_A_PAYMENT_PAYLOAD,
                message="Unsupported QR code",
            )

        validation = validate_payment_request(request, self.token)
        if not validation.is_valid:
            return OrchestratorError(
                kind=_VALIDATION_KINDS[validation.error],
                message=validation.message or "Invalid payment request",
            )

        if not is_valid_address(request.recipient_address):
            return OrchestratorError(
                kind=OrchestratorErrorKind.INVALID_RECIPIENT,
                message="Invalid recipient address in QR code",
            )

        if request.chain_id is not None and request.chain_id != self.chain_id:
            return OrchestratorError(
                kind=OrchestratorErrorKind.WRONG_NETWORK,
                message=f"Payment request is for chain {request.chain_id}, "
                        f"connected to {self.chain_id}",
            )

        amount = request.amount
        supplied_by_payer = False
        if request.is_open_amount:
            if not user_supplied_amount_if_zero:
                return OrchestratorError(
                    kind=OrchestratorErrorKind.INVALID_AMOUNT,
                    message="Enter an amount to pay",
                )
            edited = request.model_copy(update={"amount": user_supplied_amount_if_zero})
            validation = validate_payment_request(edited, self.token)
            if not validation.is_valid or parse_amount(edited.amount) <= 0:
                return OrchestratorError(
                    kind=OrchestratorErrorKind.INVALID_AMOUNT,
                    message="Invalid payment amount",
                )
            amount = edited.amount.strip()
            supplied_by_payer = True
        elif user_supplied_amount_if_zero:
            logger.debug("Ignoring payer amount for a fixed-amount request")

        try:
            to_raw_units(amount, self.token.decimals)
        except ValueError:
            return OrchestratorError(
                kind=OrchestratorErrorKind.INVALID_AMOUNT,
                message=f"Amount can have at most {self.token.decimals} decimal places",
            )

        return TransferInstruction(
            request=request,
            recipient_address=request.recipient_address,
            amount=amount,
            token=self.token,
            description=request.description,
            amount_supplied_by_payer=supplied_by_payer,
        )

    async def execute_and_reconcile(
        self,
        instruction: TransferInstruction,
        idempotency_key: Optional[str] = None,
    ) -> OrchestratorResult:
        """
        Execute a transfer instruction and reconcile cached balances.

        On SUBMITTED the sender's balances are invalidated, and the
        recipient's too when it is a local address. FAILED and TIMED_OUT
        leave the cache untouched. Reusing an idempotency key never
        invalidates or records the same send twice.

        Args:
            instruction: Instruction from build_outgoing_transfer()
            idempotency_key: Caller's id for this logical send, so a double
                tap or a resend of the same request doesn't pay twice

        Returns:
            OrchestratorResult with the transfer outcome and a user message
        """
        key = idempotency_key or uuid.uuid4().hex
        token = instruction.token

        try:
            sender = await self.signer.get_address(self.chain_id)
        except Exception as e:
            logger.error(f"Could not get sender address: {e}")
            transfer = TransferResult(
                idempotency_key=key,
                outcome=TransferOutcome.FAILED,
                error_kind=ErrorKind.NETWORK_ERROR,
                error_message=f"{type(e).__name__}: {e}",
            )
            return self._result(instruction, transfer, None, [])

        # A resend of a known key must get the original result back.
        short = None
        if not self.executor.is_known(key):
            short = self._known_short_balance(sender, instruction)
        if short is not None:
            transfer = TransferResult(
                idempotency_key=key,
                outcome=TransferOutcome.FAILED,
                error_kind=ErrorKind.INSUFFICIENT_FUNDS,
                error_message=short,
            )
            return self._result(instruction, transfer, sender, [])

        transfer = await self.executor.transfer(
            instruction.recipient_address,
            instruction.amount,
            token,
            idempotency_key=key,
        )

        invalidated: list[str] = []
        # A replayed result was already reconciled by the call that sent it.
        if transfer.is_submitted and not transfer.replayed:
            self.cache.invalidate(sender, reason=InvalidationReason.TRANSFER_SUBMITTED)
            invalidated.append(normalize_address(sender))

            recipient = normalize_address(instruction.recipient_address)
            if recipient != normalize_address(sender) and self._is_local(recipient):
                if self.cache.invalidate(recipient, reason=InvalidationReason.TRANSFER_SUBMITTED):
                    invalidated.append(recipient)

            await self._record(instruction, transfer)

        return self._result(instruction, transfer, sender, invalidated)

    async def request_payment(
        self,
        owner_id: str,
        amount: str = "0",
        description: Optional[str] = None,
        recipient_address: Optional[str] = None,
    ) -> tuple[str, MonitoringSession]:
        """
        Create a payment request and start watching for the payment.

        When the payment arrives, the receiving address's cached balances
        are invalidated and the monitor's on_match callback runs.

        Args:
            owner_id: Logical identity of the receiving account
            amount: Display-unit amount, "0" to let the payer choose
            description: Optional memo
            recipient_address: Receiving address (defaults to the signer's)

        Returns:
            The QR payload string and the started MonitoringSession

        Raises:
            RuntimeError: If the orchestrator has no PaymentMonitor
        """
        if self.monitor is None:
            raise RuntimeError("request_payment() needs a PaymentMonitor")

        address = recipient_address or await self.signer.get_address(self.chain_id)
        payload = encode_payment_request(
            address,
            amount,
            self.token,
            description=description,
            chain_id=self.chain_id,
        )
        session = await self.monitor.start(owner_id, expected_token=self.token.symbol)
        self._receiving[session.session_id] = address
        return payload, session

    async def cancel_request(self, owner_id: str) -> bool:
        """
        Stop watching for the owner's requested payment.

        Returns:
            True if an active session was stopped
        """
        if self.monitor is None:
            return False
        session = self.monitor.active_session(owner_id)
        if session is None:
            return False
        await self.monitor.stop(session)
        self._receiving.pop(session.session_id, None)
        return True

    async def _on_payment_received(
        self,
        session: MonitoringSession,
        record: InboundRecord,
    ) -> None:
        address = self._receiving.pop(session.session_id, None)
        if address is not None:
            self.cache.invalidate(address, reason=InvalidationReason.PAYMENT_RECEIVED)

        if self._user_on_match is not None:
            outcome = self._user_on_match(session, record)
            if inspect.isawaitable(outcome):
                await outcome

    def _known_short_balance(
        self,
        sender: str,
        instruction: TransferInstruction,
    ) -> Optional[str]:
        entry = self.cache.get(sender, instruction.token)
        if entry is None or entry.stale:
            return None
        needed = to_raw_units(instruction.amount, instruction.token.decimals)
        if entry.raw_units >= needed:
            return None
        return (
            f"Insufficient {instruction.token.symbol} balance. "
            f"You have {entry.formatted} but need {instruction.amount}"
        )

    def _is_local(self, address: str) -> bool:
        return address in self._local_addresses or self.cache.snapshot(address) is not None

    async def _record(self, instruction: TransferInstruction, transfer: TransferResult) -> None:
        if self.recorder is None:
            return
        try:
            await self.recorder.record_payment(
                to=instruction.recipient_address,
                amount=instruction.amount,
                token_symbol=instruction.token.symbol,
                tx_hash=transfer.tx_hash,
                method="qr",
                description=instruction.description,
            )
        except Exception as e:
            logger.warning(f"Payment {transfer.tx_hash} sent but not recorded: {e}")

    def _result(
        self,
        instruction: TransferInstruction,
        transfer: TransferResult,
        sender: Optional[str],
        invalidated: list[str],
    ) -> OrchestratorResult:
        symbol = instruction.token.symbol
        if transfer.outcome == TransferOutcome.SUBMITTED:
            message = (
                f"Sent {instruction.amount} {symbol} to "
                f"{format_address(instruction.recipient_address)}. Tx: {transfer.tx_hash}"
            )
        elif transfer.outcome == TransferOutcome.TIMED_OUT:
            message = TIMED_OUT_MESSAGE
        elif transfer.error_kind == ErrorKind.INSUFFICIENT_FUNDS and transfer.error_message \
                and transfer.error_message.startswith("Insufficient"):
            message = transfer.error_message
        else:
            template = _FAILURE_MESSAGES.get(transfer.error_kind, "Payment failed")
            message = template.format(symbol=symbol)

        return OrchestratorResult(
            transfer=transfer,
            sender_address=sender,
            invalidated_addresses=invalidated,
            message=message,
        )
