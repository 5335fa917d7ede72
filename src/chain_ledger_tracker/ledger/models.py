"""Data models for the ledger module."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from web3 import Web3

from chain_ledger_tracker.chain.client import to_hex, to_int

LEDGER_COLUMNS: tuple[str, ...] = (
    "blockNumber",
    "transactionHash",
    "from",
    "to",
    "value",
    "gasUsed",
    "gasPrice",
    "timestamp",
    "status",
)


class LedgerError(Exception):
    """Base exception for ledger errors."""


class LedgerNotFoundError(LedgerError):
    """Raised when the ledger file is missing or holds no data rows."""


class LedgerRowError(LedgerError):
    """Raised when a ledger row cannot be parsed."""


class TxStatus(str, Enum):
    """Execution status derived from the transaction receipt."""

    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_receipt(cls, receipt: Mapping[str, Any] | None) -> TxStatus:
        if receipt is None:
            return cls.UNKNOWN
        status = receipt.get("status")
        if status is None:
            return cls.UNKNOWN
        return cls.SUCCESS if to_int(status) == 1 else cls.FAILED


def format_value(value: Decimal) -> str:
    """Render an amount as a plain decimal string (never scientific notation)."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def _parse_int(raw: str, column: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise LedgerRowError(f"invalid {column}: {raw!r}") from e


@dataclass(frozen=True)
class NormalizedTransaction:
    """One relevant transaction as persisted in the ledger."""

    block_number: int
    transaction_hash: str
    from_address: str
    to_address: str
    value: Decimal
    gas_used: int
    gas_price: int
    timestamp: int
    status: TxStatus

    @property
    def key(self) -> tuple[int, str]:
        """Identity of a ledger record."""
        return (self.block_number, self.transaction_hash)

    def touches(self, address: str) -> bool:
        address = address.lower()
        return self.from_address == address or self.to_address == address

    def to_row(self) -> list[str]:
        return [
            str(self.block_number),
            self.transaction_hash,
            self.from_address,
            self.to_address,
            format_value(self.value),
            str(self.gas_used),
            str(self.gas_price),
            str(self.timestamp),
            self.status.value,
        ]

    @classmethod
    def from_row(cls, columns: Sequence[str]) -> NormalizedTransaction:
        """Parse a ledger row.

        Raises:
            LedgerRowError: If the row is short or a field is malformed.
        """
        if len(columns) < len(LEDGER_COLUMNS):
            raise LedgerRowError(f"expected {len(LEDGER_COLUMNS)} columns, got {len(columns)}")

        try:
            value = Decimal(columns[4].strip())
        except InvalidOperation as e:
            raise LedgerRowError(f"invalid value: {columns[4]!r}") from e
        if not value.is_finite() or value < 0:
            raise LedgerRowError(f"invalid value: {columns[4]!r}")

        tx_hash = columns[1].strip().lower()
        if not tx_hash:
            raise LedgerRowError("missing transactionHash")

        status_raw = columns[8].strip().lower()
        try:
            status = TxStatus(status_raw)
        except ValueError as e:
            # A cut-off status means the append was interrupted.
            raise LedgerRowError(f"invalid status: {columns[8]!r}") from e

        return cls(
            block_number=_parse_int(columns[0], "blockNumber"),
            transaction_hash=tx_hash,
            from_address=columns[2].strip().lower(),
            to_address=columns[3].strip().lower(),
            value=value,
            gas_used=_parse_int(columns[5], "gasUsed"),
            gas_price=_parse_int(columns[6], "gasPrice"),
            timestamp=_parse_int(columns[7], "timestamp"),
            status=status,
        )

    @classmethod
    def from_rpc(
        cls,
        tx: Mapping[str, Any],
        receipt: Mapping[str, Any] | None,
        *,
        block_number: int,
        timestamp: int,
    ) -> NormalizedTransaction:
        """Build a record from an RPC transaction object and its receipt."""
        gas_used = receipt.get("gasUsed") if receipt is not None else None
        gas_price = tx.get("gasPrice")
        return cls(
            block_number=block_number,
            transaction_hash=to_hex(tx["hash"]),
            from_address=str(tx.get("from") or "").lower(),
            to_address=str(tx.get("to") or "").lower(),
            value=Decimal(Web3.from_wei(to_int(tx.get("value") or 0), "ether")),
            gas_used=to_int(gas_used) if gas_used is not None else 0,
            gas_price=to_int(gas_price) if gas_price is not None else 0,
            timestamp=timestamp,
            status=TxStatus.from_receipt(receipt),
        )
