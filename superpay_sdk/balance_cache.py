"""
Location: superpay_sdk/balance_cache.py

Summary:
    Per-address balance cache. Keeps the last known balance of every
    tracked token for each address, marks it stale on TTL expiry or on an
    explicit invalidation, and collapses concurrent refreshes of the same
    address into one network read.

Usage:
    Used by orchestrator.py, which invalidates the sender after a submitted
    transfer and the receiver after a detected payment. The app calls
    on_network_changed() and on_app_foreground() for the two environment
    triggers, and refresh() whenever a screen wants fresh numbers.

Example:
    from superpay_sdk.balance_cache import BalanceCache

    cache = BalanceCache(reader, tokens=[usdc, native])
    balances = await cache.refresh("0xAbC...")
    if balances.error:
        # show balances.entries with a "may be outdated" hint
        pass
"""

import asyncio
import time
from typing import Callable, Optional, Union

from loguru import logger

from .chain import BalanceReader
from .codec import format_address
from .config import get_settings
from .inflight import InFlight
from .types import AccountBalanceEntry, AddressBalances, InvalidationReason, TokenMeta


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_address(address: str) -> str:
    return address.strip().lower()


class BalanceCache:
    """
    In-memory balance cache for one app session.

    Entries are created lazily on the first refresh of an address, replaced
    as a whole record by each successful refresh and never deleted. All
    mutation happens on the event loop between awaits, so refresh() and
    invalidate() never interleave halfway through an update.

    Attributes:
        tokens: Tokens tracked for every address
        ttl_ms: Default age after which an entry counts as stale
        _entries: Mapping of address to {token symbol: entry}
        _errors: Mapping of address to the last refresh error message
        _generations: Mapping of address to its invalidation counter
    """

    def __init__(
        self,
        reader: BalanceReader,
        tokens: Optional[list[TokenMeta]] = None,
        ttl_ms: Optional[int] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        """
        Initialize the cache.

        Args:
            reader: Collaborator that reads balances from the chain
            tokens: Tokens to track (defaults to the configured payment and
                native tokens)
            ttl_ms: Staleness TTL in milliseconds (defaults to settings)
            clock: Epoch-millisecond clock
        """
        if tokens is None or ttl_ms is None:
            settings = get_settings()
            if tokens is None:
                tokens = [settings.supported_token(), settings.native_token()]
            if ttl_ms is None:
                ttl_ms = settings.balance_ttl_ms
        if not tokens:
            raise ValueError("BalanceCache needs at least one token to track")
        if ttl_ms < 0:
            raise ValueError("ttl_ms must not be negative")

        self.reader = reader
        self.tokens = list(tokens)
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: dict[str, dict[str, AccountBalanceEntry]] = {}
        self._errors: dict[str, str] = {}
        self._generations: dict[str, int] = {}
        self._inflight: InFlight[AddressBalances] = InFlight("balance-cache")

    def get(
        self,
        address: str,
        token: Union[str, TokenMeta],
    ) -> Optional[AccountBalanceEntry]:
        """
        Read the cached entry of one token for an address.

        Never triggers a fetch. The returned copy has `stale` set when the
        entry was invalidated or is older than the TTL.

        Args:
            address: Account address (any case)
            token: Token symbol or TokenMeta

        Returns:
            The entry, or None if the address was never refreshed
        """
        symbol = token.symbol if isinstance(token, TokenMeta) else token
        entries = self._entries.get(normalize_address(address))
        if entries is None or symbol not in entries:
            return None
        return self._effective(entries[symbol], self.ttl_ms)

    def snapshot(self, address: str) -> Optional[AddressBalances]:
        """
        Read every tracked entry for an address plus its last refresh error.

        Returns:
            AddressBalances, or None if the address was never refreshed
        """
        key = normalize_address(address)
        entries = self._entries.get(key)
        if entries is None:
            return None
        return AddressBalances(
            address=key,
            entries={
                symbol: self._effective(entry, self.ttl_ms)
                for symbol, entry in entries.items()
            },
            error=self._errors.get(key),
        )

    def addresses(self) -> list[str]:
        """Return every address the cache holds entries for."""
        return list(self._entries)

    def is_stale(self, address: str, ttl_ms: Optional[int] = None) -> bool:
        """
        Check whether an address needs a refresh.

        Staleness is judged across all tracked tokens: if any one of them is
        stale, the whole address is.

        Args:
            address: Account address
            ttl_ms: TTL override in milliseconds

        Returns:
            True if there is no entry, an entry was invalidated, or an entry
            is older than the TTL
        """
        ttl = self.ttl_ms if ttl_ms is None else ttl_ms
        entries = self._entries.get(normalize_address(address))
        if not entries:
            return True
        return any(self._effective(entry, ttl).stale for entry in entries.values())

    def is_refreshing(self, address: str) -> bool:
        return normalize_address(address) in self._inflight

    async def refresh(self, address: str, force: bool = False) -> AddressBalances:
        """
        Bring an address's balances up to date.

        Returns at once when the entry is fresh and the last refresh
        succeeded, unless forced. A refresh already running for the address
        is joined rather than duplicated.

        A failed read is never raised: the error is recorded, the entries
        stay stale, and the last known values are kept.

        Args:
            address: Account address
            force: Read from the chain even if the cache is fresh

        Returns:
            The address's balances after the refresh
        """
        key = normalize_address(address)
        if not force and key not in self._errors and not self.is_stale(key):
            logger.debug(f"Balance cache hit for {format_address(key)}")
            return self.snapshot(key)

        return await self._inflight.run(key, lambda: self._fetch(key))

    def invalidate(
        self,
        address: str,
        token: Optional[Union[str, TokenMeta]] = None,
        reason: InvalidationReason = InvalidationReason.MANUAL,
    ) -> bool:
        """
        Mark an address's balances as stale.

        Args:
            address: Account address
            token: Only this token, or every tracked token when omitted
            reason: The event that caused the invalidation, for logging

        Returns:
            True if the address had entries to invalidate
        """
        key = normalize_address(address)
        # Bumped even without entries so an in-flight first refresh stays stale.
        self._generations[key] = self._generations.get(key, 0) + 1

        entries = self._entries.get(key)
        if entries is None:
            return False

        symbol = token.symbol if isinstance(token, TokenMeta) else token
        updated = dict(entries)
        for entry_symbol, entry in entries.items():
            if symbol is None or entry_symbol == symbol:
                updated[entry_symbol] = entry.model_copy(update={"stale": True})
        self._entries[key] = updated

        logger.info(
            f"Invalidated balances of {format_address(key)}"
            f"{f' ({symbol})' if symbol else ''}: {reason.value}"
        )
        return True

    def on_network_changed(self) -> int:
        """Invalidate every address after the app switched networks."""
        return self._invalidate_all(InvalidationReason.NETWORK_CHANGED)

    def on_app_foreground(self) -> int:
        """Invalidate every address when the app returns to the foreground."""
        return self._invalidate_all(InvalidationReason.APP_FOREGROUND)

    def _invalidate_all(self, reason: InvalidationReason) -> int:
        count = 0
        for key in list(self._entries):
            if self.invalidate(key, reason=reason):
                count += 1
        return count

    async def _fetch(self, key: str) -> AddressBalances:
        generation = self._generations.get(key, 0)
        if key not in self._entries:
            self._entries[key] = {
                token.symbol: AccountBalanceEntry(
                    token_symbol=token.symbol,
                    decimals=token.decimals,
                )
                for token in self.tokens
            }

        results = await asyncio.gather(
            *(self.reader.read_balance(key, token.contract) for token in self.tokens),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            error = failures[0]
            self._errors[key] = f"{type(error).__name__}: {error}"
            self._entries[key] = {
                symbol: entry.model_copy(update={"stale": True})
                for symbol, entry in self._entries[key].items()
            }
            logger.warning(
                f"Balance refresh failed for {format_address(key)}, "
                f"keeping last known values: {self._errors[key]}"
            )
            return self.snapshot(key)

        now = self._clock()
        # An invalidation that arrived during the read may postdate it.
        invalidated_meanwhile = self._generations.get(key, 0) != generation
        self._entries[key] = {
            token.symbol: AccountBalanceEntry(
                token_symbol=token.symbol,
                decimals=token.decimals,
                raw_units=int(raw),
                last_updated_ms=now,
                stale=invalidated_meanwhile,
            )
            for token, raw in zip(self.tokens, results)
        }
        self._errors.pop(key, None)
        logger.debug(f"Refreshed balances of {format_address(key)}")
        return self.snapshot(key)

    def _effective(self, entry: AccountBalanceEntry, ttl_ms: int) -> AccountBalanceEntry:
        expired = (
            entry.last_updated_ms is None
            or self._clock() - entry.last_updated_ms > ttl_ms
        )
        if expired and not entry.stale:
            return entry.model_copy(update={"stale": True})
        return entry.model_copy()
