"""
Location: superpay_sdk/monitor.py

Summary:
    Inbound payment monitoring. While a receiver shows a payment request,
    a monitoring session polls the transaction record store and reports the
    first completed inbound payment that arrived after the session started.

Usage:
    Used by orchestrator.py for the receive flow. Sessions run as asyncio
    tasks owned by the monitor, not by any screen: the app only calls
    start() and stop(). One session per owner is active at a time.

Example:
    from superpay_sdk.monitor import PaymentMonitor

    monitor = PaymentMonitor(history_api, on_match=show_received_banner)
    session = await monitor.start("user_42")
    record = await monitor.wait_for_payment(session, timeout=300)
"""

import asyncio
import inspect
import re
import time
import uuid
from typing import Any, Awaitable, Callable, Optional, Union

from loguru import logger
from pydantic import ValidationError as ModelValidationError

from .chain import TransactionQuery
from .config import get_settings
from .types import InboundRecord, MonitoringSession, SessionEndReason

MatchCallback = Callable[[MonitoringSession, InboundRecord], Union[None, Awaitable[None]]]

COMPLETED_STATUS = "completed"

_DIGIT_RUN = re.compile(r"(\d+)")
_UUID = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def natural_order_key(record_id: str) -> Optional[tuple]:
    """
    Sort key that compares digit runs numerically ("R10" after "R9").

    Record ids are assumed to increase with creation order, as serial ids
    and time-ordered ids do. Random UUIDs carry no order, so they get no
    key; stores with other non-monotonic ids need their own order_key.
    """
    if _UUID.match(record_id):
        return None
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in _DIGIT_RUN.split(record_id)
        if part
    )


class PaymentMonitor:
    """
    Polls for inbound payments on behalf of monitoring sessions.

    A record matches a session when it is addressed to the owner, is
    completed, is in the expected token, and is either ordered after the
    baseline record or created after the session started. Either signal is
    enough, since record order and clock time can disagree slightly. Ids
    for which order_key returns None are never "ordered after" anything,
    so only the start time counts for them. The
    session ends on its first match, so each session reports at most one
    payment.

    Attributes:
        query: Collaborator listing recent transaction records
        expected_token: Token symbol payments must be made in
        poll_interval: Seconds between polls
        session_ceiling: Seconds after which an unmatched session expires
        query_limit: Number of recent records fetched per poll
        on_match: Optional callback (sync or async) run once per match
    """

    def __init__(
        self,
        query: TransactionQuery,
        *,
        expected_token: Optional[str] = None,
        poll_interval: Optional[float] = None,
        session_ceiling: Optional[float] = None,
        query_limit: Optional[int] = None,
        on_match: Optional[MatchCallback] = None,
        order_key: Callable[[str], Optional[Any]] = natural_order_key,
        clock: Callable[[], int] = _now_ms,
    ):
        settings = get_settings()
        self.query = query
        self.expected_token = expected_token or settings.token_symbol
        self.poll_interval = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self.session_ceiling = (
            settings.session_ceiling_seconds if session_ceiling is None else session_ceiling
        )
        self.query_limit = settings.query_limit if query_limit is None else query_limit
        self.on_match = on_match
        self._order_key = order_key
        self._clock = clock

        self._sessions: dict[str, MonitoringSession] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._finished: dict[str, asyncio.Event] = {}

    async def start(
        self,
        owner_id: str,
        expected_token: Optional[str] = None,
    ) -> MonitoringSession:
        """
        Start watching for an inbound payment to owner_id.

        Any active session of the same owner is ended first. The newest
        inbound record known right now becomes the session's baseline.

        Args:
            owner_id: Logical identity of the receiving account
            expected_token: Token symbol override for this session

        Returns:
            The new, active session
        """
        previous = self._sessions.get(owner_id)
        if previous is not None and previous.active:
            self._end(previous, SessionEndReason.REPLACED)

        session = MonitoringSession(
            session_id=uuid.uuid4().hex,
            owner_id=owner_id,
            expected_token=expected_token or self.expected_token,
            started_at_ms=self._clock(),
        )
        self._sessions[owner_id] = session
        self._finished[session.session_id] = asyncio.Event()

        try:
            rows = await self.query.query_recent(owner_id, self.query_limit)
            inbound = [r for r in self._parse(rows) if r.to_owner_id == owner_id]
            if inbound:
                session.baseline_record_id = self._newest(inbound).id
        except Exception as e:
            session.baseline_resolved = False
            logger.warning(f"Could not read baseline record for {owner_id}: {e}")

        if not self._is_current(session):
            # Replaced or stopped while the baseline was being read.
            return session

        self._tasks[session.session_id] = asyncio.create_task(self._run(session))
        logger.bind(session_id=session.session_id).info(
            f"Started payment monitoring for {owner_id} "
            f"(session {session.session_id}, baseline {session.baseline_record_id})"
        )
        return session

    async def stop(self, session: MonitoringSession) -> None:
        """Stop a session. Stopping an inactive session does nothing."""
        self._end(session, SessionEndReason.STOPPED)
        task = self._tasks.pop(session.session_id, None)
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def active_session(self, owner_id: str) -> Optional[MonitoringSession]:
        """Return the owner's active session, if any."""
        session = self._sessions.get(owner_id)
        if session is not None and session.active:
            return session
        return None

    async def wait_for_payment(
        self,
        session: MonitoringSession,
        timeout: Optional[float] = None,
    ) -> Optional[InboundRecord]:
        """
        Wait until a session ends.

        Args:
            session: The session to wait on
            timeout: Seconds to wait at most

        Returns:
            The matched record, or None if the session ended without a
            match or the timeout elapsed first
        """
        finished = self._finished.get(session.session_id)
        if finished is None:
            return session.matched_record
        try:
            await asyncio.wait_for(finished.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return session.matched_record

    async def poll_once(self, session: MonitoringSession) -> Optional[InboundRecord]:
        """
        Run one poll tick for a session.

        A failed query is logged and the session keeps going. A tick that
        finds a match after its session was stopped or replaced has no
        effect.

        Returns:
            The matched record, if this tick ended the session with a match
        """
        if not self._is_current(session):
            return None

        try:
            rows = await self.query.query_recent(session.owner_id, self.query_limit)
        except Exception as e:
            logger.warning(f"Payment poll failed for {session.owner_id}: {e}")
            return None

        match = next(
            (r for r in self._parse(rows) if self._matches(session, r)),
            None,
        )
        if match is None:
            logger.debug(f"No new payment for {session.owner_id}")
            return None

        # The session may have been stopped while the query was running.
        if not self._is_current(session):
            return None

        session.matched_record = match
        self._end(session, SessionEndReason.MATCHED)
        logger.bind(session_id=session.session_id).info(
            f"Payment {match.id} of {match.amount} {match.token_symbol} "
            f"received by {session.owner_id}"
        )
        await self._notify(session, match)
        return match

    async def close(self) -> None:
        """Stop every active session."""
        for session in list(self._sessions.values()):
            await self.stop(session)

    def _matches(self, session: MonitoringSession, record: InboundRecord) -> bool:
        if record.to_owner_id != session.owner_id:
            return False
        if record.status.lower() != COMPLETED_STATUS:
            return False
        if record.token_symbol != session.expected_token:
            return False

        created_after_start = record.created_at_ms > session.started_at_ms
        if not session.baseline_resolved:
            return created_after_start
        if session.baseline_record_id is None:
            return True
        return self._is_newer(record.id, session.baseline_record_id) or created_after_start

    def _is_newer(self, record_id: str, baseline_id: str) -> bool:
        record_key = self._order_key(record_id)
        baseline_key = self._order_key(baseline_id)
        if record_key is None or baseline_key is None:
            return False
        return record_key > baseline_key

    def _newest(self, records: list[InboundRecord]) -> InboundRecord:
        keys = [self._order_key(r.id) for r in records]
        if any(key is None for key in keys):
            return max(records, key=lambda r: r.created_at_ms)
        return max(zip(keys, records), key=lambda pair: pair[0])[1]

    async def _run(self, session: MonitoringSession) -> None:
        deadline = session.started_at_ms + int(self.session_ceiling * 1000)
        try:
            while self._is_current(session):
                await asyncio.sleep(self.poll_interval)
                if not self._is_current(session):
                    break
                if self._clock() >= deadline:
                    self._end(session, SessionEndReason.EXPIRED)
                    break
                await self.poll_once(session)
        finally:
            if self._tasks.get(session.session_id) is asyncio.current_task():
                del self._tasks[session.session_id]

    def _end(self, session: MonitoringSession, reason: SessionEndReason) -> None:
        if not session.active:
            return
        session.active = False
        session.end_reason = reason

        finished = self._finished.pop(session.session_id, None)
        if finished is not None:
            finished.set()

        task = self._tasks.get(session.session_id)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        logger.bind(session_id=session.session_id).info(
            f"Payment monitoring session {session.session_id} ended: {reason.value}"
        )

    def _is_current(self, session: MonitoringSession) -> bool:
        return session.active and self._sessions.get(session.owner_id) is session

    def _parse(self, rows: list) -> list[InboundRecord]:
        records = []
        for row in rows or []:
            if isinstance(row, InboundRecord):
                records.append(row)
                continue
            try:
                records.append(InboundRecord.model_validate(row))
            except ModelValidationError as e:
                logger.warning(f"Skipping malformed transaction record: {e.error_count()} errors")
        return records

    async def _notify(self, session: MonitoringSession, record: InboundRecord) -> None:
        if self.on_match is None:
            return
        try:
            outcome = self.on_match(session, record)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(f"Payment match callback failed for session {session.session_id}")
