"""
Location: superpay_sdk/chain.py

Summary:
    Defines the collaborator protocols (interfaces) the SDK talks to: the
    balance reader, the transfer submitter, the transaction record query,
    the signer and the optional payment recorder. Also defines ChainContext,
    which bundles them for injection, and the exceptions collaborators raise
    to get a precise failure classification.

Usage:
    Implement these protocols for a concrete chain and wallet, then pass a
    ChainContext to PaymentOrchestrator.from_context() or hand the
    individual collaborators to BalanceCache, TransferExecutor and
    PaymentMonitor.

Example:
    from superpay_sdk.chain import ChainContext

    context = ChainContext(
        balance_reader=JsonRpcBalanceReader(rpc_url),
        submitter=my_wallet_submitter,
        signer=my_signer,
        transaction_query=my_history_api,
    )
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class BalanceReader(Protocol):
    """
    Reads on-chain balances.

    May be slow and may fail transiently; BalanceCache absorbs both.
    """

    async def read_balance(self, address: str, token_contract: Optional[str]) -> int:
        """
        Read the balance of an address.

        Args:
            address: Account address
            token_contract: Token contract address, None for the native coin

        Returns:
            Balance in base units
        """
        ...


@runtime_checkable
class ChainSubmitter(Protocol):
    """
    Estimates and submits token transfers from an already-authenticated wallet.

    Implementations raise UserRejectedError, InsufficientFundsError or
    ChainNetworkError to have failures classified; any other exception is
    treated as a network error.
    """

    async def estimate_gas(self, to: str, amount_raw_units: int) -> int:
        """
        Estimate the gas a transfer needs.

        Args:
            to: Recipient address
            amount_raw_units: Amount in base units

        Returns:
            Gas units
        """
        ...

    async def submit_transfer(self, to: str, amount_raw_units: int, gas_limit: int) -> str:
        """
        Sign and broadcast a transfer.

        Args:
            to: Recipient address
            amount_raw_units: Amount in base units
            gas_limit: Gas limit to use

        Returns:
            Transaction hash
        """
        ...


@runtime_checkable
class TransactionQuery(Protocol):
    """Queries the transaction record store."""

    async def query_recent(self, owner_id: str, limit: int) -> list[dict[str, Any]]:
        """
        Fetch the most recent transaction records involving an owner.

        Repeated queries must return stable ids for the same record.

        Args:
            owner_id: Logical identity of the account
            limit: Maximum number of records

        Returns:
            Records with id, toOwnerId, status, tokenSymbol, amount,
            createdAtMs and fromDisplay keys
        """
        ...


@runtime_checkable
class Signer(Protocol):
    """
    The wallet's signing capability.

    Key custody and signing live behind this protocol. The SDK only needs
    the wallet address.
    """

    async def get_address(self, chain_id: int) -> str:
        """
        Get the wallet address on a chain.

        Args:
            chain_id: Network identifier

        Returns:
            The wallet address string
        """
        ...

    async def sign(self, payload: bytes, chain_id: int) -> bytes:
        """
        Sign a payload.

        Args:
            payload: The raw bytes to sign
            chain_id: Network identifier

        Returns:
            The signature bytes
        """
        ...


@runtime_checkable
class PaymentRecorder(Protocol):
    """Writes completed sends to the app's transaction record store."""

    async def record_payment(
        self,
        *,
        to: str,
        amount: str,
        token_symbol: str,
        tx_hash: str,
        method: str,
        description: Optional[str] = None,
    ) -> None:
        ...


@dataclass
class ChainContext:
    """
    The chain-facing collaborators, constructed once and injected.

    Attributes:
        balance_reader: Reads balances for the BalanceCache
        submitter: Estimates and submits transfers for the TransferExecutor
        signer: Provides the sending wallet's address
        transaction_query: Lists transaction records for the PaymentMonitor
        recorder: Optional sink for completed sends
    """
    balance_reader: BalanceReader
    submitter: ChainSubmitter
    signer: Signer
    transaction_query: TransactionQuery
    recorder: Optional[PaymentRecorder] = None


class ChainError(Exception):
    """Base exception for collaborator failures."""
    pass


class UserRejectedError(ChainError):
    """The wallet owner declined to sign the transaction."""
    pass


class InsufficientFundsError(ChainError):
    """The wallet can't cover the amount or the gas."""
    pass


class ChainNetworkError(ChainError):
    """The node or network could not be reached or returned an error."""
    pass
