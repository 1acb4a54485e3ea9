"""
Location: superpay_sdk/rpc.py

Summary:
    JSON-RPC balance reader for EVM chains. Reads ERC-20 balances with
    eth_call(balanceOf) and native balances with eth_getBalance over an
    httpx.AsyncClient, backing off and retrying when the node rate-limits.

Usage:
    Pass a JsonRpcBalanceReader to BalanceCache (directly or through a
    ChainContext). Public RPC endpoints throttle hard, so 429 responses and
    "rate limit" RPC errors are retried with exponential backoff.

Example:
    from superpay_sdk.rpc import JsonRpcBalanceReader

    async with JsonRpcBalanceReader("https://evm-rpc-testnet.sei-apis.com") as reader:
        raw = await reader.read_balance("0xAbC...", usdc_contract)
"""

import asyncio
import itertools
from typing import Any, Optional

import httpx
from loguru import logger

from .chain import ChainNetworkError
from .codec import is_valid_address
from .config import get_settings

# keccak256("balanceOf(address)")[:4]
BALANCE_OF_SELECTOR = "0x70a08231"


class RateLimitedError(ChainNetworkError):
    """The RPC node refused the call because of rate limiting."""
    pass


class JsonRpcBalanceReader:
    """
    BalanceReader backed by an EVM JSON-RPC endpoint.

    Attributes:
        rpc_url: JSON-RPC endpoint URL
        max_retries: Attempts per call when rate limited
        retry_delay: Base backoff delay in seconds, doubled per attempt
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the reader. Omitted values come from settings.

        Args:
            rpc_url: JSON-RPC endpoint URL
            timeout: HTTP timeout in seconds
            max_retries: Attempts per call when rate limited
            retry_delay: Base backoff delay in seconds
            http: Existing httpx.AsyncClient to use (not closed by close())
        """
        settings = get_settings()
        self.rpc_url = rpc_url or settings.rpc_url
        self.max_retries = settings.rpc_max_retries if max_retries is None else max_retries
        self.retry_delay = settings.rpc_retry_delay_seconds if retry_delay is None else retry_delay

        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            timeout=settings.rpc_timeout_seconds if timeout is None else timeout
        )
        self._ids = itertools.count(1)

    async def close(self) -> None:
        """Close the HTTP client if this reader created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "JsonRpcBalanceReader":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def read_balance(self, address: str, token_contract: Optional[str]) -> int:
        """
        Read a balance in base units.

        Args:
            address: Account address
            token_contract: ERC-20 contract address, None for the native coin

        Returns:
            Balance in base units

        Raises:
            ValueError: If the address is malformed
            ChainNetworkError: If the node can't be reached or returns an error
        """
        if not is_valid_address(address):
            raise ValueError(f"Invalid address: {address!r}")

        if token_contract is None:
            result = await self._call("eth_getBalance", [address, "latest"])
        else:
            data = BALANCE_OF_SELECTOR + address[2:].lower().rjust(64, "0")
            result = await self._call(
                "eth_call", [{"to": token_contract, "data": data}, "latest"]
            )

        if not result or result == "0x":
            return 0
        return int(result, 16)

    async def _call(self, method: str, params: list) -> Any:
        attempt = 1
        while True:
            try:
                return await self._send(method, params)
            except RateLimitedError:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_delay * 2 ** (attempt - 1)
                logger.warning(
                    f"RPC {method} rate limited (attempt {attempt}), retrying in {delay}s"
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _send(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self._http.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise ChainNetworkError(f"RPC {method} request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(f"RPC {method} rate limited (HTTP 429)")
        if response.is_error:
            raise ChainNetworkError(f"RPC {method} returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise ChainNetworkError(f"RPC {method} returned invalid JSON") from e

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            message = str(error.get("message", error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            if code == 429 or "rate limit" in message.lower() or "rate-limited" in message.lower():
                raise RateLimitedError(f"RPC {method} rate limited: {message}")
            raise ChainNetworkError(f"RPC {method} error: {message}")

        logger.debug(f"RPC {method} ok")
        return body.get("result") if isinstance(body, dict) else None
