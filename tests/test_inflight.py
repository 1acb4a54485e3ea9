"""
Tests for superpay_sdk.inflight module.
"""

import asyncio

import pytest

from superpay_sdk.inflight import InFlight


class TestInFlight:
    """Tests for InFlight class."""

    async def test_joins_running_operation(self):
        inflight = InFlight()
        calls = []
        gate = asyncio.Event()

        async def work():
            calls.append(1)
            await gate.wait()
            return "done"

        first = asyncio.create_task(inflight.run("a", work))
        second = asyncio.create_task(inflight.run("a", work))
        await asyncio.sleep(0)
        assert "a" in inflight
        gate.set()

        assert await asyncio.gather(first, second) == ["done", "done"]
        assert calls == [1]
        assert len(inflight) == 0

    async def test_new_run_after_completion(self):
        inflight = InFlight()
        counter = iter(range(10))

        async def work():
            return next(counter)

        assert await inflight.run("a", work) == 0
        assert await inflight.run("a", work) == 1

    async def test_error_reaches_every_caller(self):
        inflight = InFlight()

        async def boom():
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            inflight.run("a", boom), inflight.run("a", boom), return_exceptions=True
        )
        assert all(isinstance(r, RuntimeError) for r in results)

    async def test_cancelled_waiter_does_not_cancel_shared_run(self):
        inflight = InFlight()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return 42

        waiter = asyncio.create_task(inflight.run("a", work))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        gate.set()
        assert await inflight.run("a", work) == 42
