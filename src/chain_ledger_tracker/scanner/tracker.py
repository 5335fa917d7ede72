"""Transaction tracker orchestrator.

This module provides the TransactionTracker class that wires together the
RPC client, ledger writer, progress store and block scanner for one
tracked address, and runs scheduled incremental updates.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from chain_ledger_tracker.chain.client import RpcClient
from chain_ledger_tracker.config import Settings, get_settings
from chain_ledger_tracker.ledger.reader import LedgerReader
from chain_ledger_tracker.ledger.writer import LedgerWriter
from chain_ledger_tracker.scanner.block_scanner import BlockScanner, ScanSummary
from chain_ledger_tracker.scanner.console import ProgressLine, default_progress_enabled
from chain_ledger_tracker.scanner.progress import ProgressStore

logger = logging.getLogger(__name__)


class TrackerState(str, Enum):
    """Tracker lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class TrackerStats:
    """Runtime counters of the tracker."""

    started_at: datetime | None = None
    updates_run: int = 0
    updates_failed: int = 0
    updates_skipped: int = 0
    blocks_processed: int = 0
    blocks_failed: int = 0
    transactions_written: int = 0
    last_update_at: datetime | None = None
    last_error: str | None = None

    def record(self, summary: ScanSummary) -> None:
        self.blocks_processed += summary.blocks_processed
        self.blocks_failed += summary.blocks_failed
        self.transactions_written += summary.transactions_written


class TransactionTracker:
    """Ingests transactions for one address into its ledger.

    Example:
        ```python
        tracker = TransactionTracker(settings)
        await tracker.initialize()   # ledger + progress + initial scan
        await tracker.start()        # scheduled incremental updates
        ...
        await tracker.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: RpcClient | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            client: Pre-built RPC client (tests). Built from settings otherwise.
        """
        self._settings = settings or get_settings()
        address = self._settings.tracker.address
        if not address:
            raise ValueError("TRACKED_ADDRESS is required")
        self._address = address

        ledger_path = self._settings.tracker.ledger_path
        progress_path = self._settings.tracker.progress_path
        if ledger_path is None or progress_path is None:
            raise ValueError("TRACKED_ADDRESS is required")

        self._owns_client = client is None
        self._client = client
        self._writer = LedgerWriter(ledger_path)
        self._reader = LedgerReader(ledger_path)
        self._store = ProgressStore(
            progress_path,
            address=address,
            start_block=self._settings.tracker.start_block,
            ledger=self._reader,
        )
        self._scanner: BlockScanner | None = None

        self._state = TrackerState.STOPPED
        self._stats = TrackerStats()
        self._stop_event: asyncio.Event | None = None
        self._update_task: asyncio.Task[None] | None = None
        self._update_lock = asyncio.Lock()

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def stats(self) -> TrackerStats:
        return self._stats

    @property
    def address(self) -> str:
        return self._address

    @property
    def scanner(self) -> BlockScanner:
        if self._scanner is None:
            raise RuntimeError("Tracker is not initialized")
        return self._scanner

    def _build_client(self) -> RpcClient:
        chain = self._settings.chain
        if not chain.rpc_url:
            raise ValueError("RPC_URL is required to scan blocks")
        return RpcClient(
            chain.rpc_url,
            request_timeout_seconds=chain.request_timeout_seconds,
            max_retries=chain.max_retries,
            retry_delay_seconds=chain.retry_delay_seconds,
            max_retry_delay_seconds=chain.max_retry_delay_seconds,
            jitter=chain.retry_jitter,
        )

    def prepare(self) -> BlockScanner:
        """Open the ledger and progress record and build the scanner."""
        if self._scanner is not None:
            return self._scanner
        if self._client is None:
            self._client = self._build_client()

        self._writer.ensure_initialized()
        progress = self._store.load()

        scan = self._settings.scan
        progress_enabled = scan.progress_enabled
        if progress_enabled is None:
            progress_enabled = default_progress_enabled()

        self._scanner = BlockScanner(
            self._client,
            address=self._address,
            writer=self._writer,
            store=self._store,
            progress=progress,
            batch_size=scan.batch_size,
            max_concurrent=scan.max_concurrent_requests,
            request_delay_ms=scan.request_delay_ms,
            max_blocks_per_update=scan.max_blocks_per_update,
            progress_line=ProgressLine(enabled=progress_enabled),
        )
        return self._scanner

    async def initialize(self) -> ScanSummary:
        """Prepare storage and run the initial scan to the chain head."""
        scanner = self.prepare()
        logger.info(
            "Tracking %s from block %d (ledger %s)",
            self._address,
            scanner.progress.start_block,
            self._writer.path,
        )
        async with self._update_lock:
            summary = await scanner.run_initial_scan()
        self._stats.record(summary)
        return summary

    async def scan_range(self, from_block: int, to_block: int | None = None) -> ScanSummary:
        """One-shot scan of an explicit range (head when `to_block` is None)."""
        scanner = self.prepare()
        if to_block is None:
            to_block = await self.chain_head()
        async with self._update_lock:
            summary = await scanner.scan_range(from_block, to_block)
        self._stats.record(summary)
        return summary

    async def chain_head(self) -> int:
        if self._client is None:
            self._client = self._build_client()
        return await self._client.latest_block_number()

    async def manual_update(self) -> ScanSummary | None:
        """Run one incremental update now.

        Returns None when the update was skipped: the initial scan has not
        completed yet, or another update is in flight.
        """
        scanner = self.prepare()
        if not scanner.progress.initial_scan_completed:
            self._stats.updates_skipped += 1
            logger.info("Initial scan not completed, skipping update")
            return None
        if self._update_lock.locked():
            self._stats.updates_skipped += 1
            logger.info("Previous update still running, skipping")
            return None

        async with self._update_lock:
            summary = await scanner.run_incremental_update()
        self._stats.updates_run += 1
        self._stats.last_update_at = datetime.now(UTC)
        self._stats.record(summary)
        return summary

    async def start(self) -> None:
        """Start scheduled incremental updates.

        Raises:
            RuntimeError: If the tracker is already running.
        """
        if self._state != TrackerState.STOPPED:
            raise RuntimeError(f"Cannot start tracker in state {self._state}")

        self._state = TrackerState.STARTING
        self._stop_event = asyncio.Event()
        try:
            self.prepare()
        except Exception as e:
            self._state = TrackerState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start tracker: %s", e)
            raise

        self._update_task = asyncio.create_task(self._run_update_loop())
        self._stats.started_at = datetime.now(UTC)
        self._state = TrackerState.RUNNING
        logger.info(
            "Tracker started, updating every %ds",
            self._settings.scan.interval_seconds,
        )

    async def _run_update_loop(self) -> None:
        if not self._stop_event:
            return
        interval = self._settings.scan.interval_seconds
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except TimeoutError:
                    pass
                await self.manual_update()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.updates_failed += 1
                self._stats.last_error = str(e)
                logger.warning("Scheduled update failed, retrying next tick: %s", e)

    async def wait_stopped(self) -> None:
        """Block until stop() is called."""
        if self._stop_event:
            await self._stop_event.wait()

    def request_stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()

    async def stop(self) -> None:
        """Stop the update loop and release the RPC client."""
        if self._state == TrackerState.STOPPED:
            await self.aclose()
            return

        self._state = TrackerState.STOPPING
        logger.info("Stopping tracker...")
        if self._stop_event:
            self._stop_event.set()
        if self._update_task:
            self._update_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._update_task
            self._update_task = None

        await self.aclose()
        self._state = TrackerState.STOPPED
        logger.info("Tracker stopped")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()

    def get_statistics(self) -> dict[str, Any]:
        """Ledger and progress summary for status reporting."""
        summary = self._reader.summarize() if self._reader.exists() else None
        progress = self._scanner.progress if self._scanner is not None else self._store.peek()
        return {
            "address": self._address,
            "ledger_file": str(self._writer.path),
            "progress_file": str(self._store.path),
            "total_transactions": summary.total_rows if summary else 0,
            "successful_transactions": summary.successful_rows if summary else 0,
            "failed_transactions": summary.failed_rows if summary else 0,
            "malformed_rows": summary.malformed_rows if summary else 0,
            "total_value": summary.total_value if summary else Decimal("0"),
            "first_block": summary.first_block if summary else None,
            "last_block": summary.last_block if summary else None,
            "start_block": progress.start_block,
            "last_processed_block": progress.last_processed_block,
            "processed_blocks_count": len(progress.processed_blocks),
            "deferred_blocks_count": len(progress.deferred_blocks),
            "initial_scan_completed": progress.initial_scan_completed,
        }

    async def __aenter__(self) -> TransactionTracker:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
