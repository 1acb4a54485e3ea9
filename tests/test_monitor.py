"""
Tests for superpay_sdk.monitor module.

Tests baseline handling, match rules, session replacement and expiry of
inbound payment monitoring.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from superpay_sdk.chain import ChainNetworkError
from superpay_sdk.monitor import PaymentMonitor, natural_order_key
from superpay_sdk.types import SessionEndReason

from conftest import inbound

OLD_UUID = "f47ac10b-58cc-4372-a567-0e02b2c3d479"
NEW_UUID = "0b9c6e2a-1d3f-4e8b-9a7c-5d6e7f8a9b0c"
BASELINE_UUID = "7c9e6679-7425-40de-944b-e07fc1f90ae7"


@pytest.fixture
async def monitor(history, clock):
    """Monitor with a fast poll loop, closed after each test."""
    monitor = PaymentMonitor(
        history,
        expected_token="USDC",
        poll_interval=0.01,
        session_ceiling=60,
        query_limit=5,
        clock=clock,
    )
    yield monitor
    await monitor.close()


class TestNaturalOrderKey:
    """Tests for natural_order_key function."""

    def test_numeric_runs(self):
        assert natural_order_key("R10") > natural_order_key("R9")

    def test_plain_numbers(self):
        assert natural_order_key("100") > natural_order_key("99")

    def test_sorting(self):
        ids = ["tx_10", "tx_2", "tx_1"]
        assert sorted(ids, key=natural_order_key) == ["tx_1", "tx_2", "tx_10"]

    def test_uuid_has_no_order(self):
        assert natural_order_key(OLD_UUID) is None
        assert natural_order_key(OLD_UUID.upper()) is None


class TestStart:
    """Tests for PaymentMonitor.start."""

    async def test_records_newest_inbound_as_baseline(self, monitor, history, clock):
        history.records = [inbound("R4"), inbound("R5"), inbound("R3", owner_id="bob")]

        session = await monitor.start("alice")

        assert session.active
        assert session.baseline_record_id == "R5"
        assert session.baseline_resolved
        assert session.started_at_ms == clock.now
        assert monitor.active_session("alice") is session

    async def test_empty_history(self, monitor):
        session = await monitor.start("alice")
        assert session.baseline_record_id is None
        assert session.baseline_resolved

    async def test_baseline_query_failure(self, monitor, history):
        history.query_recent.side_effect = ChainNetworkError("down")

        session = await monitor.start("alice")

        assert session.active
        assert not session.baseline_resolved

    async def test_second_start_replaces_first(self, monitor):
        first = await monitor.start("alice")
        second = await monitor.start("alice")

        assert not first.active
        assert first.end_reason == SessionEndReason.REPLACED
        assert second.active
        assert monitor.active_session("alice") is second

    async def test_owners_are_independent(self, monitor):
        alice = await monitor.start("alice")
        bob = await monitor.start("bob")
        assert alice.active and bob.active


class TestPollOnce:
    """Tests for PaymentMonitor.poll_once match rules."""

    async def test_matches_record_newer_than_baseline(self, monitor, history, clock):
        history.records = [inbound("R5", created_at_ms=clock.now - 10_000)]
        session = await monitor.start("alice")

        # R6 carries a slightly earlier timestamp than the session start.
        history.records = [
            inbound("R4", created_at_ms=clock.now - 20_000),
            inbound("R6", created_at_ms=clock.now - 1),
        ]
        match = await monitor.poll_once(session)

        assert match.id == "R6"
        assert session.matched_record.id == "R6"
        assert not session.active
        assert session.end_reason == SessionEndReason.MATCHED

    async def test_matches_record_created_after_start(self, monitor, history, clock):
        history.records = [inbound("R5", created_at_ms=clock.now - 10_000)]
        session = await monitor.start("alice")

        history.records = [inbound("R3", created_at_ms=clock.now + 500)]
        match = await monitor.poll_once(session)

        assert match.id == "R3"

    async def test_ignores_baseline_and_older(self, monitor, history, clock):
        history.records = [inbound("R5", created_at_ms=clock.now - 10_000)]
        session = await monitor.start("alice")

        assert await monitor.poll_once(session) is None
        assert session.active

    async def test_uuid_ids_match_by_creation_time_only(self, monitor, history, clock):
        history.records = [
            inbound(BASELINE_UUID, created_at_ms=clock.now - 10_000),
            inbound(OLD_UUID, created_at_ms=clock.now - 50_000),
        ]
        session = await monitor.start("alice")
        assert session.baseline_record_id == BASELINE_UUID

        # OLD_UUID sorts after the baseline but predates the session.
        assert await monitor.poll_once(session) is None

        history.records.append(inbound(NEW_UUID, created_at_ms=clock.now + 500))
        match = await monitor.poll_once(session)

        assert match.id == NEW_UUID

    @pytest.mark.parametrize(
        "record",
        [
            inbound("R9", status="pending", created_at_ms=2_000_000_000_000),
            inbound("R9", token="SEI", created_at_ms=2_000_000_000_000),
            inbound("R9", owner_id="bob", created_at_ms=2_000_000_000_000),
        ],
    )
    async def test_ignores_non_matching_records(self, monitor, history, record):
        session = await monitor.start("alice")
        history.records = [record]

        assert await monitor.poll_once(session) is None
        assert session.active

    async def test_unresolved_baseline_uses_start_time(self, monitor, history, clock):
        history.query_recent.side_effect = ChainNetworkError("down")
        session = await monitor.start("alice")
        history.query_recent.side_effect = None
        history.query_recent.return_value = [
            inbound("R100", created_at_ms=clock.now - 1),
            inbound("R1", created_at_ms=clock.now + 1),
        ]

        match = await monitor.poll_once(session)

        assert match.id == "R1"

    async def test_query_failure_keeps_session(self, monitor, history):
        session = await monitor.start("alice")
        history.query_recent.side_effect = ChainNetworkError("down")

        assert await monitor.poll_once(session) is None
        assert session.active

    async def test_skips_malformed_rows(self, monitor, history, clock):
        session = await monitor.start("alice")
        history.records = [{"id": "R1"}, inbound("R2", created_at_ms=clock.now + 1)]

        match = await monitor.poll_once(session)

        assert match.id == "R2"

    async def test_replaced_session_tick_has_no_effect(self, monitor, history, clock):
        on_match = MagicMock()
        monitor.on_match = on_match
        first = await monitor.start("alice")
        await monitor.start("alice")
        history.records = [inbound("R1", created_at_ms=clock.now + 1)]

        assert await monitor.poll_once(first) is None
        assert first.matched_record is None
        assert first.end_reason == SessionEndReason.REPLACED
        on_match.assert_not_called()

    async def test_stopped_session_tick_has_no_effect(self, monitor, history, clock):
        session = await monitor.start("alice")
        await monitor.stop(session)
        history.records = [inbound("R1", created_at_ms=clock.now + 1)]

        assert await monitor.poll_once(session) is None
        assert session.end_reason == SessionEndReason.STOPPED

    async def test_match_reported_once(self, monitor, history, clock):
        on_match = AsyncMock()
        monitor.on_match = on_match
        session = await monitor.start("alice")
        history.records = [inbound("R1", created_at_ms=clock.now + 1)]

        await monitor.poll_once(session)
        await monitor.poll_once(session)

        on_match.assert_awaited_once()

    async def test_callback_error_does_not_undo_match(self, monitor, history, clock):
        monitor.on_match = MagicMock(side_effect=RuntimeError("ui gone"))
        session = await monitor.start("alice")
        history.records = [inbound("R1", created_at_ms=clock.now + 1)]

        match = await monitor.poll_once(session)

        assert match.id == "R1"
        assert session.end_reason == SessionEndReason.MATCHED


class TestPollLoop:
    """Tests for the background polling loop."""

    async def test_wait_for_payment(self, monitor, history, clock):
        session = await monitor.start("alice")
        history.records = [inbound("R1", amount="25.50", created_at_ms=clock.now + 1)]

        record = await monitor.wait_for_payment(session, timeout=2)

        assert record.id == "R1"
        assert record.amount == "25.50"
        assert session.end_reason == SessionEndReason.MATCHED

    async def test_wait_times_out(self, monitor):
        session = await monitor.start("alice")
        assert await monitor.wait_for_payment(session, timeout=0.05) is None
        assert session.active

    async def test_session_expires(self, monitor, clock):
        session = await monitor.start("alice")
        clock.advance(60_000)

        assert await monitor.wait_for_payment(session, timeout=2) is None
        assert session.end_reason == SessionEndReason.EXPIRED
        assert monitor.active_session("alice") is None

    async def test_close_stops_all(self, monitor):
        alice = await monitor.start("alice")
        bob = await monitor.start("bob")

        await monitor.close()

        assert alice.end_reason == SessionEndReason.STOPPED
        assert bob.end_reason == SessionEndReason.STOPPED
