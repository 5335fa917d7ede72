"""Block range scanner.

Walks a block range in fixed-size batches, fetching blocks with bounded
fan-out, and keeps every transaction sent from or to the tracked address.
Each batch is committed in two steps: ledger append first, then the
progress record. A block that cannot be fetched is deferred and retried
on the next scan invocation; it never aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from chain_ledger_tracker.chain.client import RpcClient, to_int
from chain_ledger_tracker.ledger.models import NormalizedTransaction
from chain_ledger_tracker.ledger.writer import LedgerWriter
from chain_ledger_tracker.scanner.console import ProgressLine, format_eta
from chain_ledger_tracker.scanner.progress import ProgressStore, ScanProgress

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000
DEFAULT_MAX_CONCURRENT = 20
DEFAULT_REQUEST_DELAY_MS = 10
DEFAULT_MAX_BLOCKS_PER_UPDATE = 100


class BlockScanError(Exception):
    """Raised when a single block cannot be processed."""


class BlockUnavailableError(BlockScanError):
    """Raised when the node reports a block as missing."""


@dataclass
class BatchResult:
    """Outcome of one committed batch."""

    first_block: int
    last_block: int
    processed: set[int] = field(default_factory=set)
    failed: set[int] = field(default_factory=set)
    skipped: int = 0
    transactions: list[NormalizedTransaction] = field(default_factory=list)
    written: int = 0


@dataclass
class ScanSummary:
    """Totals over one scan invocation."""

    from_block: int
    to_block: int
    batches: int = 0
    blocks_processed: int = 0
    blocks_skipped: int = 0
    blocks_failed: int = 0
    transactions_found: int = 0
    transactions_written: int = 0
    elapsed_seconds: float = 0.0

    @property
    def partial(self) -> bool:
        return self.blocks_failed > 0

    def add(self, batch: BatchResult) -> None:
        self.batches += 1
        self.blocks_processed += len(batch.processed)
        self.blocks_skipped += batch.skipped
        self.blocks_failed += len(batch.failed)
        self.transactions_found += len(batch.transactions)
        self.transactions_written += batch.written


def _chunks(items: Sequence[int], size: int) -> list[Sequence[int]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class BlockScanner:
    """Scans blocks for transactions touching one address.

    Example:
        ```python
        scanner = BlockScanner(client, address=addr, writer=writer, store=store, progress=store.load())
        summary = await scanner.run_initial_scan()
        ```
    """

    def __init__(
        self,
        client: RpcClient,
        *,
        address: str,
        writer: LedgerWriter,
        store: ProgressStore,
        progress: ScanProgress,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        request_delay_ms: int = DEFAULT_REQUEST_DELAY_MS,
        max_blocks_per_update: int = DEFAULT_MAX_BLOCKS_PER_UPDATE,
        progress_line: ProgressLine | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._client = client
        self._address = address.lower()
        self._writer = writer
        self._store = store
        self._progress = progress
        self._batch_size = batch_size
        self._max_concurrent = max_concurrent
        self._request_delay = max(0, request_delay_ms) / 1000.0
        self._max_blocks_per_update = max_blocks_per_update
        self._progress_line = progress_line

    @property
    def progress(self) -> ScanProgress:
        return self._progress

    @property
    def address(self) -> str:
        return self._address

    def _is_relevant(self, tx: Mapping[str, Any]) -> bool:
        sender = str(tx.get("from") or "").lower()
        recipient = str(tx.get("to") or "").lower()
        return sender == self._address or recipient == self._address

    async def process_block(self, block_number: int) -> list[NormalizedTransaction]:
        """Fetch one block and return its relevant transactions.

        Raises:
            BlockUnavailableError: If the node does not return the block.
            RpcError: If a block or receipt fetch exhausts its retries.
        """
        block = await self._client.get_block(block_number, include_transactions=True)
        if block is None:
            raise BlockUnavailableError(f"block {block_number} not available")

        timestamp = to_int(block["timestamp"])
        found: list[NormalizedTransaction] = []
        for tx in block.get("transactions") or []:
            if not isinstance(tx, Mapping) or not self._is_relevant(tx):
                continue
            receipt = await self._client.get_transaction_receipt(tx["hash"])
            found.append(
                NormalizedTransaction.from_rpc(
                    tx,
                    receipt,
                    block_number=block_number,
                    timestamp=timestamp,
                )
            )
        return found

    async def _fetch_blocks(self, blocks: Sequence[int]) -> BatchResult:
        result = BatchResult(first_block=min(blocks), last_block=max(blocks))
        chunks = _chunks(blocks, self._max_concurrent)
        for i, chunk in enumerate(chunks):
            outcomes = await asyncio.gather(
                *(self.process_block(b) for b in chunk),
                return_exceptions=True,
            )
            for block_number, outcome in zip(chunk, outcomes, strict=True):
                if isinstance(outcome, Exception):
                    result.failed.add(block_number)
                    logger.warning("Block %d failed, deferring: %s", block_number, outcome)
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                result.processed.add(block_number)
                result.transactions.extend(outcome)
            if self._request_delay and i < len(chunks) - 1:
                await asyncio.sleep(self._request_delay)
        return result

    def _commit(self, result: BatchResult) -> None:
        # Ledger append strictly before the progress save.
        result.transactions.sort(key=lambda tx: tx.block_number)
        result.written = self._writer.append(result.transactions)
        self._progress.mark_processed(result.processed)
        self._progress.defer(result.failed)
        self._store.save(self._progress)

    async def _scan_blocks(self, blocks: Sequence[int], *, first: int, last: int) -> BatchResult:
        pending = [b for b in blocks if not self._progress.is_processed(b)]
        skipped = len(blocks) - len(pending)
        if not pending:
            return BatchResult(first_block=first, last_block=last, skipped=skipped)
        result = await self._fetch_blocks(pending)
        result.first_block, result.last_block = first, last
        result.skipped = skipped
        self._commit(result)
        return result

    async def iter_batches(self, from_block: int, to_block: int) -> AsyncIterator[BatchResult]:
        """Scan `[max(from_block, start_block), to_block]`, yielding each committed batch."""
        from_block = max(from_block, self._progress.start_block)
        for batch_start in range(from_block, to_block + 1, self._batch_size):
            batch_end = min(batch_start + self._batch_size - 1, to_block)
            yield await self._scan_blocks(
                range(batch_start, batch_end + 1),
                first=batch_start,
                last=batch_end,
            )

    async def stream_range(self, from_block: int, to_block: int) -> AsyncIterator[NormalizedTransaction]:
        """Yield relevant transactions as their batches are committed."""
        async for batch in self.iter_batches(from_block, to_block):
            for tx in batch.transactions:
                yield tx

    async def scan_range(self, from_block: int, to_block: int, *, show_progress: bool = True) -> ScanSummary:
        """Scan a block range to completion and return its totals.

        Scheduled updates pass `show_progress=False` to keep the TTY quiet.
        """
        from_block = max(from_block, self._progress.start_block)
        summary = ScanSummary(from_block=from_block, to_block=to_block)
        if from_block > to_block:
            return summary

        total = to_block - from_block + 1
        started = time.monotonic()
        progress_line = self._progress_line if show_progress else None
        if progress_line is not None:
            progress_line.begin()
        scanned = 0
        async for batch in self.iter_batches(from_block, to_block):
            summary.add(batch)
            scanned += batch.last_block - batch.first_block + 1
            elapsed = max(1e-6, time.monotonic() - started)
            rate = scanned / elapsed
            if progress_line is not None:
                progress_line.update(
                    scanned=scanned,
                    total=total,
                    found=summary.transactions_found,
                    block=batch.last_block,
                    deferred=summary.blocks_failed,
                )
            logger.info(
                "Blocks %d-%d: %d processed, %d skipped, %d failed, %d txs (%.1f%%, %.1f blocks/s, %s)",
                batch.first_block,
                batch.last_block,
                len(batch.processed),
                batch.skipped,
                len(batch.failed),
                len(batch.transactions),
                scanned / total * 100,
                rate,
                format_eta((total - scanned) / rate if rate > 0 else None),
            )

        summary.elapsed_seconds = time.monotonic() - started
        if progress_line is not None:
            progress_line.close(
                final_line=f"scan done: {total:,} blocks, {summary.transactions_found:,} txs"
            )
        return summary

    async def retry_deferred(self) -> ScanSummary | None:
        """Retry blocks that failed in earlier invocations."""
        deferred = sorted(b for b in self._progress.deferred_blocks if not self._progress.is_processed(b))
        if not deferred:
            return None
        logger.info("Retrying %d deferred blocks", len(deferred))
        summary = ScanSummary(from_block=deferred[0], to_block=deferred[-1])
        for chunk in _chunks(deferred, self._batch_size):
            summary.add(await self._scan_blocks(chunk, first=chunk[0], last=chunk[-1]))
        return summary

    async def run_initial_scan(self) -> ScanSummary:
        """Scan from the last checkpoint (or start block) to the chain head."""
        await self.retry_deferred()
        latest = await self._client.latest_block_number()
        from_block = max(self._progress.start_block, self._progress.last_processed_block + 1)
        logger.info("Initial scan from block %d to %d", from_block, latest)

        summary = await self.scan_range(from_block, latest)
        self._progress.initial_scan_completed = True
        self._store.save(self._progress)
        logger.info(
            "Initial scan complete: %d blocks, %d transactions written, %d blocks deferred",
            summary.blocks_processed,
            summary.transactions_written,
            summary.blocks_failed,
        )
        return summary

    async def run_incremental_update(self) -> ScanSummary:
        """Scan new blocks since the watermark, at most `max_blocks_per_update` of them."""
        await self.retry_deferred()
        latest = await self._client.latest_block_number()
        from_block = max(self._progress.start_block, self._progress.last_processed_block + 1)
        if from_block > latest:
            logger.debug("No new blocks (head %d)", latest)
            return ScanSummary(from_block=from_block, to_block=latest)

        to_block = min(latest, from_block + self._max_blocks_per_update - 1)
        summary = await self.scan_range(from_block, to_block, show_progress=False)
        if summary.transactions_written:
            logger.info(
                "Update %d-%d: %d new transactions",
                from_block,
                to_block,
                summary.transactions_written,
            )
        return summary
