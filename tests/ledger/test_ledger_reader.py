"""Tests for the sequential ledger reader."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from chain_ledger_tracker.ledger.models import LedgerNotFoundError, TxStatus
from chain_ledger_tracker.ledger.reader import LedgerReader


def test_missing_ledger_raises(tmp_path: Path) -> None:
    with pytest.raises(LedgerNotFoundError):
        list(LedgerReader(tmp_path / "nope.csv").iter_rows())


def test_rows_carry_physical_line_numbers(ledger_path: Path, make_tx, write_ledger) -> None:
    write_ledger(ledger_path, [make_tx(block_number=1).to_row(), [], make_tx(block_number=2).to_row()])
    rows = list(LedgerReader(ledger_path).iter_rows())
    assert [line for line, _ in rows] == [2, 4]


def test_malformed_rows_reported(ledger_path: Path, make_tx, write_ledger) -> None:
    write_ledger(ledger_path, [make_tx(block_number=1).to_row(), ["garbage"]])
    errors: list[int] = []
    records = list(LedgerReader(ledger_path).iter_records(on_error=lambda line, _cols, _e: errors.append(line)))
    assert len(records) == 1
    assert errors == [3]


def test_summarize(ledger_path: Path, make_tx, write_ledger) -> None:
    write_ledger(
        ledger_path,
        [
            make_tx(block_number=10, value="1").to_row(),
            make_tx(block_number=12, value="2", status=TxStatus.FAILED).to_row(),
            make_tx(block_number=11, value="0.5", status=TxStatus.UNKNOWN).to_row(),
            ["bad", "row"],
        ],
    )
    summary = LedgerReader(ledger_path).summarize()
    assert summary.total_rows == 3
    assert summary.successful_rows == 1
    assert summary.failed_rows == 1
    assert summary.malformed_rows == 1
    assert summary.total_value == Decimal("3.5")
    assert summary.successful_value == Decimal("1")
    assert summary.first_block == 10
    assert summary.last_block == 12


def test_keys_and_blocks(ledger_path: Path, make_tx, write_ledger) -> None:
    write_ledger(ledger_path, [make_tx(block_number=3, tx_hash="0xAA").to_row()])
    reader = LedgerReader(ledger_path)
    assert reader.keys() == {(3, "0xaa")}
    assert reader.block_numbers() == {3}


def test_torn_row_has_no_key(ledger_path: Path, make_tx, write_ledger) -> None:
    torn = make_tx(block_number=4).to_row()
    torn[-1] = "succ"
    write_ledger(ledger_path, [make_tx(block_number=3).to_row(), torn[:2], torn])
    reader = LedgerReader(ledger_path)
    assert reader.keys() == {(3, f"0x{3:064x}")}
    assert reader.block_numbers() == {3}
