"""
Location: superpay_sdk/inflight.py

Summary:
    Join-on-in-flight map. A second caller asking for the same key while an
    operation is still running awaits that operation instead of starting a
    duplicate one.

Usage:
    Used by balance_cache.py to collapse concurrent refreshes of one
    address, and by executor.py to collapse duplicate sends that share an
    idempotency key.

Example:
    from superpay_sdk.inflight import InFlight

    inflight = InFlight()
    balance = await inflight.run(address, lambda: reader.read_balance(address, None))
"""

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from loguru import logger

T = TypeVar("T")


class InFlight(Generic[T]):
    """
    Map from key to the task currently producing that key's result.

    The entry is dropped as soon as the task finishes, so the next call
    after completion starts a new operation. Callers are shielded from each
    other: cancelling one waiter does not cancel the shared task.

    Attributes:
        _pending: Mapping of key to running task
    """

    def __init__(self, name: str = "inflight"):
        self.name = name
        self._pending: dict[str, asyncio.Task] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def get(self, key: str) -> Optional[asyncio.Task]:
        """Return the running task for a key, if any."""
        return self._pending.get(key)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run factory() for key, or join the run already in progress.

        Args:
            key: Deduplication key
            factory: Zero-argument callable returning the awaitable to run;
                only called when no run for key is in flight

        Returns:
            The shared result. An exception raised by the shared run is
            raised to every caller.
        """
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda done, k=key: self._release(k, done))
        else:
            logger.debug(f"[{self.name}] joining in-flight run for {key}")
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
