"""Tests for durable scan progress."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from chain_ledger_tracker.ledger.reader import LedgerReader
from chain_ledger_tracker.scanner.progress import ProgressStore, ScanProgress

TRACKED = "0x" + "a" * 40


@pytest.fixture
def progress_path(tmp_path: Path) -> Path:
    return tmp_path / f"{TRACKED}_progress.json"


def make_store(progress_path: Path, ledger_path: Path | None = None, start_block: int = 1) -> ProgressStore:
    return ProgressStore(
        progress_path,
        address=TRACKED,
        start_block=start_block,
        ledger=LedgerReader(ledger_path) if ledger_path else None,
    )


class TestScanProgress:
    def test_fresh_sits_below_start(self) -> None:
        progress = ScanProgress.fresh(100)
        assert progress.last_processed_block == 99
        assert not progress.processed_blocks

    def test_mark_processed_moves_watermark_and_clears_deferred(self) -> None:
        progress = ScanProgress.fresh(10)
        progress.defer({12})
        progress.mark_processed({11, 12, 5})
        assert progress.processed_blocks == {11, 12}
        assert progress.deferred_blocks == set()
        assert progress.last_processed_block == 12

    def test_clamp_enforces_floor(self) -> None:
        progress = ScanProgress(start_block=50, last_processed_block=3, processed_blocks={1, 60}, deferred_blocks={2})
        progress.clamp()
        assert progress.last_processed_block == 49
        assert progress.processed_blocks == {60}
        assert progress.deferred_blocks == set()

    def test_defer_ignores_processed(self) -> None:
        progress = ScanProgress.fresh(1)
        progress.mark_processed({5})
        progress.defer({5, 6})
        assert progress.deferred_blocks == {6}


class TestProgressStore:
    def test_missing_record_without_ledger(self, progress_path: Path) -> None:
        store = make_store(progress_path, start_block=100)
        progress = store.load()
        assert progress.last_processed_block == 99
        assert progress_path.exists()

    def test_save_then_load(self, progress_path: Path) -> None:
        store = make_store(progress_path)
        progress = ScanProgress.fresh(1)
        progress.mark_processed({5, 7})
        progress.defer({6})
        progress.initial_scan_completed = True
        store.save(progress)

        data = json.loads(progress_path.read_text())
        assert data["lastProcessedBlock"] == 7
        assert data["processedBlocks"] == [5, 7]
        assert data["deferredBlocks"] == [6]
        assert data["initialScanCompleted"] is True
        assert data["address"] == TRACKED
        assert "lastUpdated" in data
        assert not progress_path.with_suffix(".json.tmp").exists()

        loaded = make_store(progress_path).load()
        assert loaded.processed_blocks == {5, 7}
        assert loaded.deferred_blocks == {6}
        assert loaded.initial_scan_completed is True

    def test_raised_start_block_clamps_stored_record(self, progress_path: Path) -> None:
        progress = ScanProgress.fresh(1)
        progress.mark_processed({5, 7})
        make_store(progress_path).save(progress)

        loaded = make_store(progress_path, start_block=100).load()
        assert loaded.last_processed_block == 99
        assert loaded.processed_blocks == set()

    def test_rebuilds_from_ledger(self, progress_path: Path, ledger_path: Path, make_tx, write_ledger) -> None:
        write_ledger(ledger_path, [make_tx(block_number=b).to_row() for b in (3, 8, 20)])
        store = make_store(progress_path, ledger_path, start_block=5)
        progress = store.load()
        assert progress.processed_blocks == {8, 20}
        assert progress.last_processed_block == 20
        assert json.loads(progress_path.read_text())["lastProcessedBlock"] == 20

    def test_torn_row_block_not_processed(
        self, progress_path: Path, ledger_path: Path, make_tx, write_ledger
    ) -> None:
        write_ledger(ledger_path, [make_tx(block_number=7).to_row(), make_tx(block_number=9).to_row()[:2]])
        progress = make_store(progress_path, ledger_path).load()
        assert progress.processed_blocks == {7}
        assert progress.last_processed_block == 7

    def test_corrupt_record_falls_back_to_ledger(
        self, progress_path: Path, ledger_path: Path, make_tx, write_ledger
    ) -> None:
        write_ledger(ledger_path, [make_tx(block_number=42).to_row()])
        progress_path.write_text("{not json")
        progress = make_store(progress_path, ledger_path).load()
        assert progress.last_processed_block == 42

    def test_record_for_other_address_ignored(self, progress_path: Path) -> None:
        progress_path.write_text(json.dumps({"address": "0x" + "c" * 40, "lastProcessedBlock": 500}))
        progress = make_store(progress_path).load()
        assert progress.last_processed_block == 0

    def test_empty_record_treated_as_absent(
        self, progress_path: Path, ledger_path: Path, make_tx, write_ledger
    ) -> None:
        write_ledger(ledger_path, [make_tx(block_number=9).to_row()])
        progress_path.write_text(json.dumps({"lastProcessedBlock": 0, "processedBlocks": []}))
        progress = make_store(progress_path, ledger_path).load()
        assert progress.last_processed_block == 9

    def test_peek_never_writes(self, progress_path: Path) -> None:
        progress = make_store(progress_path, start_block=10).peek()
        assert progress.last_processed_block == 9
        assert not progress_path.exists()
