"""Ledger layer - append-only CSV record of relevant transactions."""

from chain_ledger_tracker.ledger.models import (
    LEDGER_COLUMNS,
    LedgerError,
    LedgerNotFoundError,
    LedgerRowError,
    NormalizedTransaction,
    TxStatus,
    format_value,
)
from chain_ledger_tracker.ledger.reader import LedgerReader, LedgerSummary
from chain_ledger_tracker.ledger.writer import LedgerWriter

__all__ = [
    "LEDGER_COLUMNS",
    "LedgerError",
    "LedgerNotFoundError",
    "LedgerReader",
    "LedgerRowError",
    "LedgerSummary",
    "LedgerWriter",
    "NormalizedTransaction",
    "TxStatus",
    "format_value",
]
