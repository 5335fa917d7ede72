"""Chain access layer - read-only JSON-RPC client."""

from chain_ledger_tracker.chain.client import (
    RpcClient,
    RpcClientError,
    RpcError,
    to_hex,
    to_int,
)

__all__ = [
    "RpcClient",
    "RpcClientError",
    "RpcError",
    "to_hex",
    "to_int",
]
