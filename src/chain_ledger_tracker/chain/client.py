"""JSON-RPC client with bounded retries and per-call timeouts.

This module wraps the handful of read-only calls the block scanner needs:
- Latest block number
- Block by number (optionally with full transaction objects)
- Transaction receipt by hash
- Raw `call(method, params)` passthrough

Transport failures and timeouts are retried with capped exponential
backoff. "Not found" answers are valid results and come back as None.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import BlockNotFound, TransactionNotFound, Web3Exception
from web3.providers import AsyncHTTPProvider
from web3.types import RPCEndpoint

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.1
DEFAULT_MAX_RETRY_DELAY_SECONDS = 0.5
DEFAULT_REQUEST_TIMEOUT = 10.0

T = TypeVar("T")

_NOT_FOUND = (BlockNotFound, TransactionNotFound)
_RETRYABLE = (Web3Exception, aiohttp.ClientError, TimeoutError, OSError)


class RpcClientError(Exception):
    """Base exception for RPC client errors."""


class RpcError(RpcClientError):
    """Raised when an RPC call fails after all retries or returns a JSON-RPC error."""


def to_hex(value: Any) -> str:
    """Render a hash-like RPC value as a lowercase 0x-prefixed string."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def to_int(value: Any) -> int:
    """Decode an RPC quantity (int or hex string)."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    raise TypeError(f"Cannot decode quantity of type {type(value).__name__}")


class RpcClient:
    """Read-only JSON-RPC client.

    Example:
        ```python
        client = RpcClient("https://rpc.example.org")
        head = await client.latest_block_number()
        block = await client.get_block(head, include_transactions=True)
        await client.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        max_retry_delay_seconds: float = DEFAULT_MAX_RETRY_DELAY_SECONDS,
        jitter: bool = False,
        w3: AsyncWeb3[AsyncHTTPProvider] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            rpc_url: JSON-RPC HTTP(S) endpoint.
            request_timeout_seconds: Timeout applied to every attempt.
            max_retries: Attempts per call before RpcError is raised.
            retry_delay_seconds: Delay after the first failed attempt.
            max_retry_delay_seconds: Cap on the backoff delay.
            jitter: Randomize each delay in [0, delay].
            w3: Pre-built AsyncWeb3 instance (tests).
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._rpc_url = rpc_url
        self._timeout = request_timeout_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._max_retry_delay = max_retry_delay_seconds
        self._jitter = jitter
        self._w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=request_timeout_seconds)},
            )
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number `attempt` (1-based)."""
        delay = min(self._retry_delay * (2 ** (attempt - 1)), self._max_retry_delay)
        if self._jitter:
            delay = random.uniform(0.0, delay)
        return delay

    async def _execute_with_retry(
        self,
        label: str,
        factory: Callable[[], Awaitable[T]],
    ) -> T:
        """Run one RPC operation with timeout, retry and backoff.

        Raises:
            BlockNotFound / TransactionNotFound: Propagated without retry.
            RpcError: If all attempts fail.
        """
        last_error: BaseException | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                return await asyncio.wait_for(factory(), timeout=self._timeout)
            except _NOT_FOUND:
                raise
            except (*_RETRYABLE, RpcError) as e:
                last_error = e
                logger.warning(
                    "RPC %s failed (attempt %d/%d): %s",
                    label,
                    attempt,
                    self._max_retries,
                    e or type(e).__name__,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self.backoff_delay(attempt))

        raise RpcError(f"RPC call {label} failed after {self._max_retries} attempts: {last_error}")

    async def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        """Issue a raw JSON-RPC request and return its `result` member."""

        async def _request() -> Any:
            response = await self._w3.provider.make_request(RPCEndpoint(method), list(params))
            error = response.get("error")
            if error:
                message = error.get("message", error) if isinstance(error, dict) else error
                raise RpcError(f"{method}: {message}")
            return response.get("result")

        return await self._execute_with_retry(method, _request)

    async def latest_block_number(self) -> int:
        """Current chain head."""
        number = await self._execute_with_retry("eth_blockNumber", lambda: self._w3.eth.get_block_number())
        return int(number)

    async def get_block(self, number: int, include_transactions: bool = True) -> Any | None:
        """Get a block by number, or None when the node does not have it."""
        if number < 0:
            raise ValueError("block number must be >= 0")
        try:
            return await self._execute_with_retry(
                "eth_getBlockByNumber",
                lambda: self._w3.eth.get_block(number, full_transactions=include_transactions),
            )
        except BlockNotFound:
            return None

    async def get_transaction_receipt(self, tx_hash: str) -> Any | None:
        """Get a transaction receipt, or None when it is not available yet."""
        try:
            return await self._execute_with_retry(
                "eth_getTransactionReceipt",
                lambda: self._w3.eth.get_transaction_receipt(tx_hash),
            )
        except TransactionNotFound:
            return None

    async def aclose(self) -> None:
        """Close the provider session to avoid leaked aiohttp sessions."""
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if not callable(disconnect):
            return
        try:
            result = disconnect()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning("Failed to close RPC provider session: %s", e)
