"""Append-only ledger writer.

The ledger is a CSV file with a fixed header. Records are only ever
appended; existing lines are never rewritten. Each append is flushed and
fsynced before returning so a committed batch survives a crash.
"""

from __future__ import annotations

import csv
import io
import logging
import os
from collections.abc import Iterable
from pathlib import Path

from chain_ledger_tracker.ledger.models import LEDGER_COLUMNS, LedgerError, NormalizedTransaction
from chain_ledger_tracker.ledger.reader import LedgerReader

logger = logging.getLogger(__name__)


def _render(rows: Iterable[list[str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows(rows)
    return buf.getvalue()


class LedgerWriter:
    """Single-writer, append-only ledger.

    Example:
        ```python
        writer = LedgerWriter(Path("0xabc....csv"))
        writer.ensure_initialized()
        written = writer.append(transactions)
        ```
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._keys: set[tuple[int, str]] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def ensure_initialized(self) -> None:
        """Create the ledger with its header if absent and load existing keys.

        An unterminated final line (interrupted append) is closed with a
        newline so the next record starts on its own line.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists() or self._path.stat().st_size == 0:
            self._write(_render([list(LEDGER_COLUMNS)]))
            logger.info("Created ledger %s", self._path)
            self._keys = set()
            return

        with self._path.open("rb") as f:
            f.seek(-1, os.SEEK_END)
            last = f.read(1)
        if last != b"\n":
            logger.warning("Ledger %s ends with a partial line, terminating it", self._path)
            self._write("\n")

        self._keys = LedgerReader(self._path).keys()
        logger.info("Loaded ledger %s (%d records)", self._path, len(self._keys))

    def _known_keys(self) -> set[tuple[int, str]]:
        if self._keys is None:
            self.ensure_initialized()
        if self._keys is None:
            raise LedgerError(f"Ledger {self._path} is not initialized")
        return self._keys

    def contains(self, tx: NormalizedTransaction) -> bool:
        return tx.key in self._known_keys()

    def append(self, transactions: Iterable[NormalizedTransaction]) -> int:
        """Append records not already present in the ledger.

        Returns:
            Number of records written.
        """
        known = self._known_keys()

        fresh: list[NormalizedTransaction] = []
        seen: set[tuple[int, str]] = set()
        for tx in transactions:
            if tx.key in known or tx.key in seen:
                continue
            seen.add(tx.key)
            fresh.append(tx)

        if not fresh:
            return 0

        self._write(_render(tx.to_row() for tx in fresh))
        known.update(seen)
        return len(fresh)

    def _write(self, text: str) -> None:
        with self._path.open("a", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
