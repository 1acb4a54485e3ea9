"""
Shared pytest fixtures for superpay-sdk tests.

This module provides the token configurations, addresses, a controllable
clock, and AsyncMock fakes for the chain collaborators used across all
test files.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from superpay_sdk.types import TokenMeta

USDC_CONTRACT = "0x4fcf1784b31630811181f670aea7a7bef803eaed"
SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0xABC0000000000000000000000000000000000abc"


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def usdc():
    """The supported payment token."""
    return TokenMeta(symbol="USDC", contract=USDC_CONTRACT, decimals=6)


@pytest.fixture
def native():
    """The chain's native gas token."""
    return TokenMeta(symbol="SEI", decimals=18)


@pytest.fixture
def clock():
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def reader():
    """BalanceReader holding 100 USDC and 2 SEI for every address."""
    balances = {USDC_CONTRACT: 100_000_000, None: 2 * 10 ** 18}

    async def read_balance(address, token_contract):
        return balances[token_contract]

    fake = MagicMock()
    fake.balances = balances
    fake.read_balance = AsyncMock(side_effect=read_balance)
    return fake


@pytest.fixture
def submitter():
    """ChainSubmitter that estimates 50000 gas and submits successfully."""
    fake = MagicMock()
    fake.estimate_gas = AsyncMock(return_value=50_000)
    fake.submit_transfer = AsyncMock(return_value="0xtxhash1")
    return fake


@pytest.fixture
def signer():
    """Signer for the sending wallet."""
    fake = MagicMock()
    fake.get_address = AsyncMock(return_value=SENDER)
    fake.sign = AsyncMock(return_value=b"signature")
    return fake


@pytest.fixture
def history():
    """TransactionQuery whose records are set per test via history.records."""
    fake = MagicMock()
    fake.records = []

    async def query_recent(owner_id, limit):
        return list(fake.records)[:limit]

    fake.query_recent = AsyncMock(side_effect=query_recent)
    return fake


def inbound(record_id, owner_id="alice", status="completed", token="USDC",
            amount="10.00", created_at_ms=0):
    """Build a raw transaction record as the record store returns it."""
    return {
        "id": record_id,
        "toOwnerId": owner_id,
        "status": status,
        "tokenSymbol": token,
        "amount": amount,
        "createdAtMs": created_at_ms,
        "fromDisplay": "bob",
    }
