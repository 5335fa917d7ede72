"""Scanner layer - block range scanning, progress tracking and scheduling."""

from chain_ledger_tracker.scanner.block_scanner import (
    BatchResult,
    BlockScanError,
    BlockScanner,
    BlockUnavailableError,
    ScanSummary,
)
from chain_ledger_tracker.scanner.progress import (
    ProgressStore,
    ProgressStoreError,
    ScanProgress,
)
from chain_ledger_tracker.scanner.tracker import (
    TrackerState,
    TrackerStats,
    TransactionTracker,
)

__all__ = [
    "BatchResult",
    "BlockScanError",
    "BlockScanner",
    "BlockUnavailableError",
    "ProgressStore",
    "ProgressStoreError",
    "ScanProgress",
    "ScanSummary",
    "TrackerState",
    "TrackerStats",
    "TransactionTracker",
]
