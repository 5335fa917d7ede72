"""Tests for the block range scanner."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from chain_ledger_tracker.chain.client import RpcError
from chain_ledger_tracker.ledger.reader import LedgerReader
from chain_ledger_tracker.ledger.writer import LedgerWriter
from chain_ledger_tracker.scanner.block_scanner import BlockScanner, BlockUnavailableError, ScanSummary
from chain_ledger_tracker.scanner.console import ProgressLine
from chain_ledger_tracker.scanner.progress import ProgressStore, ScanProgress

TRACKED = "0x" + "a" * 40
PLAYER = "0x" + "b" * 40
STRANGER = "0x" + "c" * 40
ONE_SAT_WEI = 10_000_000_000


def make_block(number: int, txs: list[dict[str, Any]]) -> dict[str, Any]:
    return {"number": number, "timestamp": 1_700_000_000 + number * 12, "transactions": txs}


def rpc_tx(block: int, index: int, sender: str, recipient: str | None) -> dict[str, Any]:
    return {
        "hash": f"0x{block:060x}{index:04x}",
        "from": sender,
        "to": recipient,
        "value": ONE_SAT_WEI,
        "gasPrice": 1,
    }


class FakeChain:
    """In-memory node: every block holds one incoming and one unrelated transaction."""

    def __init__(self, head: int) -> None:
        self.head = head
        self.failing: set[int] = set()
        self.missing: set[int] = set()
        self.requested: list[int] = []

    def block(self, number: int) -> dict[str, Any] | None:
        self.requested.append(number)
        if number in self.failing:
            raise RpcError(f"block {number} unavailable")
        if number in self.missing or number > self.head:
            return None
        return make_block(
            number,
            [
                rpc_tx(number, 0, PLAYER.upper().replace("0X", "0x"), TRACKED),
                rpc_tx(number, 1, PLAYER, STRANGER),
            ],
        )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain(head=10)


@pytest.fixture
def mock_client(chain: FakeChain) -> MagicMock:
    client = MagicMock()
    client.get_block = AsyncMock(side_effect=lambda n, include_transactions=True: chain.block(n))
    client.get_transaction_receipt = AsyncMock(return_value={"status": 1, "gasUsed": 21000})
    client.latest_block_number = AsyncMock(side_effect=lambda: chain.head)
    return client


@pytest.fixture
def progress_path(tmp_path: Path) -> Path:
    return tmp_path / f"{TRACKED}_progress.json"


def make_scanner(
    client: MagicMock,
    ledger_path: Path,
    progress_path: Path,
    *,
    start_block: int = 1,
    **kwargs: Any,
) -> BlockScanner:
    writer = LedgerWriter(ledger_path)
    writer.ensure_initialized()
    store = ProgressStore(progress_path, address=TRACKED, start_block=start_block, ledger=LedgerReader(ledger_path))
    kwargs.setdefault("request_delay_ms", 0)
    return BlockScanner(
        client,
        address=TRACKED,
        writer=writer,
        store=store,
        progress=store.load(),
        **kwargs,
    )


class TestProcessBlock:
    @pytest.mark.asyncio
    async def test_keeps_only_relevant_transactions(self, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path)
        found = await scanner.process_block(3)
        assert len(found) == 1
        assert found[0].from_address == PLAYER
        assert found[0].to_address == TRACKED
        assert found[0].timestamp == 1_700_000_036
        mock_client.get_transaction_receipt.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_block_raises(self, chain, mock_client, ledger_path, progress_path) -> None:
        chain.missing.add(3)
        scanner = make_scanner(mock_client, ledger_path, progress_path)
        with pytest.raises(BlockUnavailableError):
            await scanner.process_block(3)

    @pytest.mark.asyncio
    async def test_outgoing_transactions_kept(self, mock_client, ledger_path, progress_path) -> None:
        mock_client.get_block = AsyncMock(return_value=make_block(4, [rpc_tx(4, 0, TRACKED, PLAYER)]))
        scanner = make_scanner(mock_client, ledger_path, progress_path)
        found = await scanner.process_block(4)
        assert [tx.from_address for tx in found] == [TRACKED]


class TestScanRange:
    @pytest.mark.asyncio
    async def test_writes_ledger_and_progress(self, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path, batch_size=4, max_concurrent=3)
        summary = await scanner.scan_range(1, 10)

        assert isinstance(summary, ScanSummary)
        assert summary.batches == 3
        assert summary.blocks_processed == 10
        assert summary.transactions_written == 10
        assert not summary.partial

        records = [r for _, r in LedgerReader(ledger_path).iter_records()]
        assert [r.block_number for r in records] == list(range(1, 11))
        data = json.loads(progress_path.read_text())
        assert data["lastProcessedBlock"] == 10
        assert data["processedBlocks"] == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_never_scans_below_start_block(self, chain, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path, start_block=5)
        summary = await scanner.scan_range(1, 8)
        assert summary.from_block == 5
        assert min(chain.requested) == 5

    @pytest.mark.asyncio
    async def test_processed_blocks_are_skipped(self, chain, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path)
        scanner.progress.mark_processed({2, 3})
        summary = await scanner.scan_range(1, 4)
        assert sorted(chain.requested) == [1, 4]
        assert summary.blocks_skipped == 2

    @pytest.mark.asyncio
    async def test_rescan_does_not_duplicate_rows(self, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path)
        await scanner.scan_range(1, 5)
        scanner.progress.processed_blocks.clear()
        summary = await scanner.scan_range(1, 5)
        assert summary.transactions_found == 5
        assert summary.transactions_written == 0
        assert len(list(LedgerReader(ledger_path).iter_rows())) == 5

    @pytest.mark.asyncio
    async def test_failed_block_is_deferred(self, chain, mock_client, ledger_path, progress_path) -> None:
        chain.failing.add(4)
        chain.missing.add(6)
        scanner = make_scanner(mock_client, ledger_path, progress_path)
        summary = await scanner.scan_range(1, 8)

        assert summary.partial
        assert summary.blocks_failed == 2
        assert scanner.progress.deferred_blocks == {4, 6}
        assert scanner.progress.last_processed_block == 8
        assert LedgerReader(ledger_path).block_numbers() == {1, 2, 3, 5, 7, 8}

        chain.failing.clear()
        chain.missing.clear()
        retry = await scanner.retry_deferred()
        assert retry is not None
        assert retry.blocks_processed == 2
        assert scanner.progress.deferred_blocks == set()
        assert LedgerReader(ledger_path).block_numbers() == set(range(1, 9))

    @pytest.mark.asyncio
    async def test_stream_range_yields_transactions(self, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path, batch_size=2)
        blocks = [tx.block_number async for tx in scanner.stream_range(1, 5)]
        assert blocks == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_ledger_append_precedes_progress_save(self, mock_client) -> None:
        calls = MagicMock()
        writer = calls.writer
        writer.append.return_value = 1
        store = calls.store
        scanner = BlockScanner(
            mock_client,
            address=TRACKED,
            writer=writer,
            store=store,
            progress=ScanProgress.fresh(1),
            request_delay_ms=0,
        )
        await scanner.scan_range(1, 1)
        names = [c[0] for c in calls.mock_calls]
        assert names.index("writer.append") < names.index("store.save")


class TestScheduledScans:
    @pytest.mark.asyncio
    async def test_initial_scan_resumes_after_watermark(self, chain, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path)
        scanner.progress.mark_processed({1, 2, 3, 4, 5, 6})
        summary = await scanner.run_initial_scan()

        assert summary.from_block == 7
        assert summary.to_block == 10
        assert sorted(chain.requested) == [7, 8, 9, 10]
        assert scanner.progress.initial_scan_completed
        assert json.loads(progress_path.read_text())["initialScanCompleted"] is True

    @pytest.mark.asyncio
    async def test_progress_line_restarts_per_scan(self, chain, mock_client, ledger_path, progress_path) -> None:
        line = MagicMock(spec=ProgressLine)
        scanner = make_scanner(mock_client, ledger_path, progress_path, progress_line=line)
        await scanner.scan_range(1, 3)
        await scanner.scan_range(4, 6)
        assert line.begin.call_count == 2
        assert line.close.call_count == 2

    @pytest.mark.asyncio
    async def test_incremental_update_keeps_progress_line_quiet(
        self, chain, mock_client, ledger_path, progress_path
    ) -> None:
        line = MagicMock(spec=ProgressLine)
        scanner = make_scanner(mock_client, ledger_path, progress_path, progress_line=line, max_blocks_per_update=3)
        await scanner.run_incremental_update()
        line.begin.assert_not_called()
        line.update.assert_not_called()
        line.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_incremental_update_is_capped(self, chain, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path, max_blocks_per_update=3)
        summary = await scanner.run_incremental_update()
        assert (summary.from_block, summary.to_block) == (1, 3)
        assert scanner.progress.last_processed_block == 3

    @pytest.mark.asyncio
    async def test_incremental_update_at_head_is_noop(self, chain, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path)
        scanner.progress.mark_processed(set(range(1, 11)))
        summary = await scanner.run_incremental_update()
        assert summary.blocks_processed == 0
        assert chain.requested == []

    @pytest.mark.asyncio
    async def test_deferred_blocks_retried_first(self, chain, mock_client, ledger_path, progress_path) -> None:
        scanner = make_scanner(mock_client, ledger_path, progress_path)
        scanner.progress.mark_processed(set(range(1, 11)))
        scanner.progress.processed_blocks.discard(4)
        scanner.progress.defer({4})
        await scanner.run_incremental_update()
        assert chain.requested == [4]
        assert scanner.progress.deferred_blocks == set()
