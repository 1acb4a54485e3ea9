"""
Location: superpay_sdk/executor.py

Summary:
    Token transfer execution. Estimates gas, submits the transfer under a
    hard wall-clock timeout, retries a failed submission once with more
    gas, and classifies the outcome. Sends sharing an idempotency key are
    collapsed so one logical send is never broadcast twice.

Usage:
    Used by orchestrator.py. The executor knows nothing about the balance
    cache; its caller invalidates balances after a SUBMITTED result.

Example:
    from superpay_sdk.executor import TransferExecutor

    executor = TransferExecutor(submitter)
    result = await executor.transfer("0xAbC...", "25.50", usdc, idempotency_key=request_id)
    if result.outcome == TransferOutcome.TIMED_OUT:
        # status unknown: the transfer may still land
        ...
"""

import asyncio
import time
import uuid
from typing import Callable, Optional, Union

from loguru import logger

from .amounts import to_raw_units
from .chain import ChainSubmitter, InsufficientFundsError, UserRejectedError
from .codec import format_address
from .config import get_settings
from .inflight import InFlight
from .types import (
    ErrorKind,
    EstimationError,
    TokenMeta,
    TransferAttempt,
    TransferOutcome,
    TransferResult,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


# More gas can't fix these, so the failed attempt is not retried.
_NOT_RETRIED = (ErrorKind.USER_REJECTED, ErrorKind.INSUFFICIENT_FUNDS)


def classify_error(error: BaseException) -> ErrorKind:
    """Map a collaborator exception to a transfer failure kind."""
    if isinstance(error, UserRejectedError):
        return ErrorKind.USER_REJECTED
    if isinstance(error, InsufficientFundsError):
        return ErrorKind.INSUFFICIENT_FUNDS
    return ErrorKind.NETWORK_ERROR


class TransferExecutor:
    """
    Executes token transfers against a ChainSubmitter.

    Per transfer:
    1. Scale the display amount to base units, rejecting lost precision
    2. Estimate gas and add the safety buffer, or fall back to the default
    3. Submit with a hard timeout
    4. On a failure other than a timeout, a rejection or a lack of funds,
       retry once with a higher gas limit
    5. Return SUBMITTED, FAILED or TIMED_OUT

    A timed-out submission is not cancelled (the chain call can't be), it
    is left running and its late result is only logged.

    Attributes:
        submitter: Collaborator that estimates and submits transfers
        default_gas_limit: Gas limit used when estimation fails
        gas_buffer_percent: Safety margin added to a successful estimate
        retry_gas_percent: Margin over the estimate used for the retry
        submit_timeout: Seconds a single submission may take
        timed_out_grace: Seconds a TIMED_OUT result keeps absorbing
            duplicate sends with the same idempotency key
        submitted_retention: Seconds a SUBMITTED result keeps absorbing
            duplicate sends with the same idempotency key
    """

    def __init__(
        self,
        submitter: ChainSubmitter,
        *,
        default_gas_limit: Optional[int] = None,
        gas_buffer_percent: Optional[int] = None,
        retry_gas_percent: Optional[int] = None,
        submit_timeout: Optional[float] = None,
        timed_out_grace: Optional[float] = None,
        submitted_retention: Optional[float] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        """
        Initialize the executor. Omitted limits come from settings.

        Args:
            submitter: ChainSubmitter implementation
            default_gas_limit: Fallback gas limit
            gas_buffer_percent: Percent added to a successful estimate
            retry_gas_percent: Percent added to the estimate for the retry
            submit_timeout: Per-attempt timeout in seconds
            timed_out_grace: Seconds to retain TIMED_OUT results
            submitted_retention: Seconds to retain SUBMITTED results
            clock: Epoch-millisecond clock
        """
        settings = get_settings()
        self.submitter = submitter
        self.default_gas_limit = (
            settings.default_gas_limit if default_gas_limit is None else default_gas_limit
        )
        self.gas_buffer_percent = (
            settings.gas_buffer_percent if gas_buffer_percent is None else gas_buffer_percent
        )
        self.retry_gas_percent = (
            settings.retry_gas_percent if retry_gas_percent is None else retry_gas_percent
        )
        self.submit_timeout = (
            settings.submit_timeout_seconds if submit_timeout is None else submit_timeout
        )
        self.timed_out_grace = (
            settings.timed_out_grace_seconds if timed_out_grace is None else timed_out_grace
        )
        self.submitted_retention = (
            settings.submitted_retention_seconds
            if submitted_retention is None else submitted_retention
        )
        self._clock = clock

        self._inflight: InFlight[TransferResult] = InFlight("transfer")
        self._submitted: dict[str, tuple[TransferResult, int]] = {}
        self._timed_out: dict[str, tuple[TransferResult, int]] = {}

    async def estimate_gas(
        self,
        recipient: str,
        amount_raw_units: int,
    ) -> Union[int, EstimationError]:
        """
        Ask the submitter for a gas estimate.

        Args:
            recipient: Recipient address
            amount_raw_units: Amount in base units

        Returns:
            Estimated gas units, or EstimationError if the estimate failed
        """
        try:
            estimate = int(await self.submitter.estimate_gas(recipient, amount_raw_units))
        except Exception as e:
            logger.warning(
                f"Gas estimation failed for transfer to {format_address(recipient)}: {e}"
            )
            return EstimationError(message=f"{type(e).__name__}: {e}")
        if estimate <= 0:
            return EstimationError(message=f"Non-positive gas estimate {estimate}")
        return estimate

    async def transfer(
        self,
        recipient: str,
        amount: str,
        token: TokenMeta,
        idempotency_key: Optional[str] = None,
    ) -> TransferResult:
        """
        Send `amount` of `token` to `recipient`.

        Calls with the same idempotency key join the send in progress or
        get back the remembered SUBMITTED or TIMED_OUT result instead of
        sending again. Such results come back with `replayed` set, so only
        the call that made the send acts on it.

        Args:
            recipient: Recipient address
            amount: Display-unit amount (e.g., "25.50")
            token: Token to send
            idempotency_key: Caller's key for this logical send; a random
                key is used when omitted

        Returns:
            TransferResult with the terminal outcome and every attempt
        """
        key = idempotency_key or uuid.uuid4().hex

        previous = self._remembered(key)
        if previous is not None:
            logger.bind(transfer_key=key).info(
                f"Transfer {key} already {previous.outcome.value}, not sending again"
            )
            return previous.model_copy(update={"replayed": True})

        joined = key in self._inflight
        result = await self._inflight.run(
            key, lambda: self._execute(key, recipient, amount, token)
        )
        if joined:
            return result.model_copy(update={"replayed": True})
        return result

    def is_known(self, key: str) -> bool:
        """True while a send for key is running or its result is remembered."""
        return key in self._inflight or self._remembered(key) is not None

    def _remembered(self, key: str) -> Optional[TransferResult]:
        self._forget_expired()
        held = self._submitted.get(key) or self._timed_out.get(key)
        return held[0] if held is not None else None

    def _forget_expired(self) -> None:
        now = self._clock()
        for held in (self._submitted, self._timed_out):
            for key in [k for k, (_, expires_at) in held.items() if now >= expires_at]:
                del held[key]

    async def _execute(
        self,
        key: str,
        recipient: str,
        amount: str,
        token: TokenMeta,
    ) -> TransferResult:
        log = logger.bind(transfer_key=key)
        try:
            raw_units = to_raw_units(amount, token.decimals)
        except ValueError as e:
            return self._rejected(key, str(e))
        if raw_units <= 0:
            return self._rejected(key, f"Amount must be positive, got {amount}")

        estimate = await self.estimate_gas(recipient, raw_units)
        if isinstance(estimate, EstimationError):
            base_gas = self.default_gas_limit
            gas_limit = self.default_gas_limit
            gas_estimated = False
            log.warning(f"Using default gas limit {gas_limit} for transfer {key}")
        else:
            base_gas = estimate
            gas_limit = estimate * (100 + self.gas_buffer_percent) // 100
            gas_estimated = True

        log.info(
            f"Sending {amount} {token.symbol} to {format_address(recipient)} "
            f"(transfer {key}, gas limit {gas_limit})"
        )
        attempts = [await self._attempt(1, recipient, raw_units, gas_limit)]

        first = attempts[0]
        if first.outcome == TransferOutcome.FAILED and first.error_kind not in _NOT_RETRIED:
            retry_gas = base_gas * (100 + self.retry_gas_percent) // 100
            log.info(f"Retrying transfer {key} with gas limit {retry_gas}")
            attempts.append(await self._attempt(2, recipient, raw_units, retry_gas))

        last = attempts[-1]
        result = TransferResult(
            idempotency_key=key,
            outcome=last.outcome,
            tx_hash=last.tx_hash,
            error_kind=last.error_kind,
            error_message=last.error_message,
            gas_estimated=gas_estimated,
            attempts=attempts,
        )

        if result.outcome == TransferOutcome.SUBMITTED:
            expires_at = self._clock() + int(self.submitted_retention * 1000)
            self._submitted[key] = (result, expires_at)
            log.success(f"Transfer {key} submitted: {result.tx_hash}")
        elif result.outcome == TransferOutcome.TIMED_OUT:
            expires_at = self._clock() + int(self.timed_out_grace * 1000)
            self._timed_out[key] = (result, expires_at)
            log.warning(f"Transfer {key} timed out, outcome unknown")
        else:
            log.error(
                f"Transfer {key} failed ({result.error_kind.value}): {result.error_message}"
            )
        return result

    async def _attempt(
        self,
        attempt_number: int,
        recipient: str,
        raw_units: int,
        gas_limit: int,
    ) -> TransferAttempt:
        attempt = TransferAttempt(
            recipient=recipient,
            amount_raw_units=raw_units,
            gas_limit=gas_limit,
            attempt_number=attempt_number,
            started_at_ms=self._clock(),
        )

        submission = asyncio.ensure_future(
            self.submitter.submit_transfer(recipient, raw_units, gas_limit)
        )
        done, _ = await asyncio.wait({submission}, timeout=self.submit_timeout)
        if not done:
            submission.add_done_callback(self._log_late_result)
            logger.warning(
                f"Submission attempt {attempt_number} to {format_address(recipient)} "
                f"exceeded {self.submit_timeout}s"
            )
            return attempt.model_copy(update={"outcome": TransferOutcome.TIMED_OUT})

        try:
            tx_hash = submission.result()
        except Exception as e:
            kind = classify_error(e)
            logger.warning(
                f"Submission attempt {attempt_number} failed ({kind.value}): {e}"
            )
            return attempt.model_copy(
                update={
                    "outcome": TransferOutcome.FAILED,
                    "error_kind": kind,
                    "error_message": f"{type(e).__name__}: {e}",
                }
            )
        return attempt.model_copy(
            update={"outcome": TransferOutcome.SUBMITTED, "tx_hash": str(tx_hash)}
        )

    def _rejected(self, key: str, message: str) -> TransferResult:
        logger.bind(transfer_key=key).error(
            f"Transfer {key} rejected before submission: {message}"
        )
        return TransferResult(
            idempotency_key=key,
            outcome=TransferOutcome.FAILED,
            error_kind=ErrorKind.INVALID_AMOUNT,
            error_message=message,
        )

    @staticmethod
    def _log_late_result(submission: asyncio.Future) -> None:
        if submission.cancelled():
            return
        error = submission.exception()
        if error is not None:
            logger.warning(f"Timed-out submission later failed: {error}")
        else:
            logger.warning(f"Timed-out submission later landed: {submission.result()}")
