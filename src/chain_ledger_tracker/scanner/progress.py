"""Durable scan progress (watermark + processed block set).

The progress record is a single JSON document, fully rewritten on every
save through a temp file and an atomic rename. When it is missing or
unreadable the store re-derives progress from the ledger's block column
and persists the result immediately.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from chain_ledger_tracker.ledger.reader import LedgerReader

logger = logging.getLogger(__name__)


class ProgressStoreError(Exception):
    """Raised when a progress record cannot be read or decoded."""


@dataclass
class ScanProgress:
    """Resume state of the block scanner."""

    start_block: int
    last_processed_block: int
    processed_blocks: set[int] = field(default_factory=set)
    initial_scan_completed: bool = False
    deferred_blocks: set[int] = field(default_factory=set)
    last_updated: datetime | None = None

    @classmethod
    def fresh(cls, start_block: int) -> ScanProgress:
        return cls(start_block=start_block, last_processed_block=start_block - 1)

    @property
    def floor(self) -> int:
        return self.start_block - 1

    def clamp(self) -> None:
        """Enforce the lower bound on every field."""
        if self.last_processed_block < self.floor:
            self.last_processed_block = self.floor
        self.processed_blocks = {b for b in self.processed_blocks if b >= self.start_block}
        self.deferred_blocks = {
            b for b in self.deferred_blocks if b >= self.start_block and b not in self.processed_blocks
        }

    def is_processed(self, block_number: int) -> bool:
        return block_number in self.processed_blocks

    def mark_processed(self, blocks: set[int]) -> None:
        blocks = {b for b in blocks if b >= self.start_block}
        if not blocks:
            return
        self.processed_blocks.update(blocks)
        self.deferred_blocks.difference_update(blocks)
        self.last_processed_block = max(self.last_processed_block, max(blocks))

    def defer(self, blocks: set[int]) -> None:
        self.deferred_blocks.update(b for b in blocks if b >= self.start_block and b not in self.processed_blocks)

    def to_dict(self, *, address: str) -> dict[str, Any]:
        return {
            "lastProcessedBlock": self.last_processed_block,
            "processedBlocks": sorted(self.processed_blocks),
            "initialScanCompleted": self.initial_scan_completed,
            "startBlock": self.start_block,
            "lastUpdated": (self.last_updated or datetime.now(UTC)).isoformat(),
            "address": address,
            "deferredBlocks": sorted(self.deferred_blocks),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, start_block: int) -> ScanProgress:
        """Build progress from a stored record, applying the configured floor."""
        last_updated = None
        raw_updated = data.get("lastUpdated")
        if raw_updated:
            try:
                last_updated = datetime.fromisoformat(str(raw_updated).replace("Z", "+00:00"))
            except ValueError:
                last_updated = None

        progress = cls(
            start_block=start_block,
            last_processed_block=int(data.get("lastProcessedBlock", 0)),
            processed_blocks={int(b) for b in data.get("processedBlocks", [])},
            initial_scan_completed=bool(data.get("initialScanCompleted", False)),
            deferred_blocks={int(b) for b in data.get("deferredBlocks", [])},
            last_updated=last_updated,
        )
        progress.clamp()
        return progress


class ProgressStore:
    """Loads and saves ScanProgress for one tracked address."""

    def __init__(
        self,
        path: Path | str,
        *,
        address: str,
        start_block: int,
        ledger: LedgerReader | None = None,
    ) -> None:
        self._path = Path(path)
        self._address = address.lower()
        self._start_block = max(1, start_block)
        self._ledger = ledger

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ScanProgress:
        """Load progress, falling back to the ledger when no usable record exists."""
        progress: ScanProgress | None = None
        if self._path.exists():
            try:
                progress = self._read()
            except ProgressStoreError as e:
                logger.warning("Ignoring unreadable progress record %s: %s", self._path, e)

        if progress is not None and progress.last_processed_block <= 0 and not progress.processed_blocks:
            progress = None

        if progress is None:
            progress = self._derive_from_ledger()
            self.save(progress)
        else:
            logger.info(
                "Loaded progress: last block %d, %d processed blocks, %d deferred",
                progress.last_processed_block,
                len(progress.processed_blocks),
                len(progress.deferred_blocks),
            )
        return progress

    def peek(self) -> ScanProgress:
        """Like load(), but never writes the progress record."""
        if self._path.exists():
            try:
                return self._read()
            except ProgressStoreError as e:
                logger.warning("Ignoring unreadable progress record %s: %s", self._path, e)
        return self._derive_from_ledger()

    def save(self, progress: ScanProgress) -> None:
        """Atomically replace the progress record."""
        progress.clamp()
        progress.last_updated = datetime.now(UTC)
        payload = json.dumps(progress.to_dict(address=self._address), indent=2)

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self._path)

    def _read(self) -> ScanProgress:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ProgressStoreError(str(e)) from e
        if not isinstance(data, dict):
            raise ProgressStoreError("progress record is not a JSON object")

        stored_address = str(data.get("address") or "").lower()
        if stored_address and stored_address != self._address:
            raise ProgressStoreError(f"progress record belongs to {stored_address}")

        stored_start = data.get("startBlock")
        if stored_start is not None and stored_start != self._start_block:
            logger.info("Start block changed from %s to %d", stored_start, self._start_block)

        try:
            return ScanProgress.from_dict(data, start_block=self._start_block)
        except (TypeError, ValueError) as e:
            raise ProgressStoreError(f"malformed progress record: {e}") from e

    def _derive_from_ledger(self) -> ScanProgress:
        progress = ScanProgress.fresh(self._start_block)
        if self._ledger is None or not self._ledger.exists():
            logger.info("No progress record or ledger, starting from block %d", self._start_block)
            return progress

        blocks = {b for b in self._ledger.block_numbers() if b >= self._start_block}
        if blocks:
            progress.mark_processed(blocks)
        logger.info(
            "Derived progress from ledger %s: last block %d, %d blocks",
            self._ledger.path,
            progress.last_processed_block,
            len(progress.processed_blocks),
        )
        return progress
