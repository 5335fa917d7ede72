"""Sequential, read-only access to the ledger file."""

from __future__ import annotations

import csv
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from chain_ledger_tracker.ledger.models import (
    LedgerNotFoundError,
    LedgerRowError,
    NormalizedTransaction,
    TxStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSummary:
    """Row-level totals of a ledger file."""

    total_rows: int
    successful_rows: int
    failed_rows: int
    malformed_rows: int
    total_value: Decimal
    successful_value: Decimal
    first_block: int | None
    last_block: int | None


class LedgerReader:
    """Reads the ledger top to bottom. The first line is always the header."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def iter_rows(self) -> Iterator[tuple[int, list[str]]]:
        """Yield `(line_number, columns)` for every non-blank data line.

        Raises:
            LedgerNotFoundError: If the ledger file does not exist.
        """
        if not self.exists():
            raise LedgerNotFoundError(f"Ledger not found: {self._path}")
        with self._path.open("r", encoding="utf-8", newline="") as f:
            reader = csv.reader(f)
            for columns in reader:
                if reader.line_num == 1:
                    continue
                if not columns or all(not c.strip() for c in columns):
                    continue
                yield reader.line_num, columns

    def iter_records(
        self,
        *,
        on_error: Callable[[int, list[str], LedgerRowError], None] | None = None,
    ) -> Iterator[tuple[int, NormalizedTransaction]]:
        """Yield parsed records, skipping (and reporting) malformed rows."""
        for line_no, columns in self.iter_rows():
            try:
                record = NormalizedTransaction.from_row(columns)
            except LedgerRowError as e:
                if on_error is not None:
                    on_error(line_no, columns, e)
                continue
            yield line_no, record

    def block_numbers(self) -> set[int]:
        """Block numbers of rows that parse as complete records."""
        return {record.block_number for _, record in self.iter_records()}

    def keys(self) -> set[tuple[int, str]]:
        """`(blockNumber, transactionHash)` identities of complete records.

        A torn row left by an interrupted append does not count, so the
        retried record is written again.
        """
        return {record.key for _, record in self.iter_records()}

    def summarize(self) -> LedgerSummary:
        """Count rows and sum values in one pass."""
        total = successful = failed = malformed = 0
        total_value = Decimal("0")
        successful_value = Decimal("0")
        first_block: int | None = None
        last_block: int | None = None

        for _, columns in self.iter_rows():
            try:
                record = NormalizedTransaction.from_row(columns)
            except LedgerRowError:
                malformed += 1
                continue
            total += 1
            total_value += record.value
            if record.status == TxStatus.SUCCESS:
                successful += 1
                successful_value += record.value
            elif record.status == TxStatus.FAILED:
                failed += 1
            if first_block is None or record.block_number < first_block:
                first_block = record.block_number
            if last_block is None or record.block_number > last_block:
                last_block = record.block_number

        return LedgerSummary(
            total_rows=total,
            successful_rows=successful,
            failed_rows=failed,
            malformed_rows=malformed,
            total_value=total_value,
            successful_value=successful_value,
            first_block=first_block,
            last_block=last_block,
        )
