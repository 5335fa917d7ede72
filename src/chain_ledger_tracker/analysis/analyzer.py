"""Streaming ledger analyzer.

One pass over the ledger classifies every relevant, successful transaction
and updates the all-time window, each trailing window it falls in (7/14/30
complete days ending yesterday) and its calendar-day bucket. Transactions
from the current UTC day are excluded everywhere. A preliminary pass
reports transaction hashes that appear on more than one line.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path

from chain_ledger_tracker.analysis.averages import all_daily_trends, all_period_averages
from chain_ledger_tracker.analysis.models import (
    DuplicateReport,
    PeriodStats,
    Statistics,
    TopUpRecord,
)
from chain_ledger_tracker.analysis.thresholds import Category, Thresholds
from chain_ledger_tracker.ledger.models import (
    LedgerNotFoundError,
    LedgerRowError,
    NormalizedTransaction,
    TxStatus,
)
from chain_ledger_tracker.ledger.reader import LedgerReader

logger = logging.getLogger(__name__)

MAX_PARSE_ERROR_SAMPLES = 10
MAX_DUPLICATE_SAMPLES = 10
WINDOW_DAYS: tuple[int, ...] = (7, 14, 30)


class AnalysisError(Exception):
    """Raised when an analysis run cannot be set up."""


def address_from_ledger_path(path: Path | str) -> str:
    """The tracked address is the ledger file's stem."""
    return Path(path).stem.lower()


def _day_start_ts(day: date) -> int:
    return int(datetime.combine(day, time.min, tzinfo=UTC).timestamp())


def _utc_now() -> datetime:
    return datetime.now(UTC)


class LedgerAnalyzer:
    """Categorizes one address's ledger into windowed statistics.

    Example:
        ```python
        analyzer = LedgerAnalyzer(Path("0xabc....csv"), agent_address="0xdef...")
        stats = analyzer.analyze()
        print(stats.last_7_days.sat_wheel.total_tx)
        ```
    """

    def __init__(
        self,
        ledger_path: Path | str,
        *,
        address: str | None = None,
        agent_address: str | None = None,
        thresholds: Thresholds | None = None,
        deduplicate: bool = False,
        network_counts: Mapping[str, int] | None = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the analyzer.

        Args:
            ledger_path: Ledger CSV file.
            address: Tracked address. Defaults to the ledger file's stem.
            agent_address: Optional address whose 1-unit stakes are counted separately.
            thresholds: Stake tiers and comparison tolerance.
            deduplicate: Aggregate only the first line of a repeated hash.
            network_counts: Network-wide transaction counts keyed by ISO day.
            now: Clock used to determine the current (excluded) UTC day.
        """
        self._reader = LedgerReader(ledger_path)
        self._address = (address or address_from_ledger_path(ledger_path)).lower()
        if not self._address:
            raise AnalysisError("Tracked address could not be determined")
        self._agent = agent_address.lower() if agent_address else None
        self._thresholds = thresholds or Thresholds()
        self._deduplicate = deduplicate
        self._network_counts = dict(network_counts or {})
        self._now = now

    @property
    def address(self) -> str:
        return self._address

    def find_duplicates(self) -> DuplicateReport:
        """Map every repeated transaction hash to all of its line numbers."""
        first_seen: dict[str, int] = {}
        report = DuplicateReport()
        for line_no, columns in self._reader.iter_rows():
            if len(columns) < 2:
                continue
            tx_hash = columns[1].strip().lower()
            if not tx_hash:
                continue
            if tx_hash not in first_seen:
                first_seen[tx_hash] = line_no
                continue
            report.lines.setdefault(tx_hash, [first_seen[tx_hash]]).append(line_no)

        if report.count:
            logger.warning(
                "Found %d duplicated transaction hashes (%d extra occurrences)",
                report.count,
                report.total_duplicate_occurrences,
            )
            for tx_hash, lines in list(report.lines.items())[:MAX_DUPLICATE_SAMPLES]:
                logger.warning("Duplicate %s on lines %s", tx_hash, ", ".join(map(str, lines)))
        return report

    def analyze(self) -> Statistics:
        """Replay the ledger and build Statistics.

        Raises:
            LedgerNotFoundError: If the ledger is missing or has no data rows.
        """
        if not self._reader.exists():
            raise LedgerNotFoundError(f"Ledger not found: {self._reader.path}")

        now = self._now()
        today = now.astimezone(UTC).date()
        yesterday = today - timedelta(days=1)
        today_start = _day_start_ts(today)
        cutoffs = {n: _day_start_ts(yesterday - timedelta(days=n - 1)) for n in WINDOW_DAYS}

        logger.info(
            "Analyzing %s for %s (most recent complete day %s)",
            self._reader.path,
            self._address,
            yesterday.isoformat(),
        )

        stats = Statistics(
            address=self._address,
            agent_address=self._agent,
            generated_at=now,
            yesterday=yesterday,
            all_time=PeriodStats(),
            last_30_days=PeriodStats(),
            last_14_days=PeriodStats(),
            last_7_days=PeriodStats(),
            daily={},
            duplicates=self.find_duplicates(),
            network_tx_counts=dict(self._network_counts),
        )
        windows = {7: stats.last_7_days, 14: stats.last_14_days, 30: stats.last_30_days}
        seen_hashes: set[str] = set()

        for line_no, columns in self._reader.iter_rows():
            stats.lines_read += 1
            try:
                record = NormalizedTransaction.from_row(columns)
            except LedgerRowError as e:
                stats.parse_errors.count += 1
                if len(stats.parse_errors.samples) < MAX_PARSE_ERROR_SAMPLES:
                    stats.parse_errors.samples.append((line_no, str(e)))
                    logger.warning("Skipping malformed ledger line %d: %s", line_no, e)
                continue

            if record.status != TxStatus.SUCCESS:
                stats.skipped_status += 1
                continue
            if not record.touches(self._address) or record.value <= 0:
                stats.skipped_irrelevant += 1
                continue
            if record.timestamp >= today_start:
                stats.skipped_today += 1
                continue
            if self._deduplicate:
                if record.transaction_hash in seen_hashes:
                    stats.skipped_duplicates += 1
                    continue
                seen_hashes.add(record.transaction_hash)

            periods = [stats.all_time]
            periods.extend(w for n, w in windows.items() if record.timestamp >= cutoffs[n])
            day_key = datetime.fromtimestamp(record.timestamp, tz=UTC).date().isoformat()
            day = stats.daily.get(day_key)
            if day is None:
                day = stats.daily[day_key] = PeriodStats()
            periods.append(day)

            for period in periods:
                self._apply(record, period)
            stats.processed += 1

        if stats.lines_read == 0:
            raise LedgerNotFoundError(f"Ledger has no data rows: {self._reader.path}")

        if stats.parse_errors.count > MAX_PARSE_ERROR_SAMPLES:
            logger.warning(
                "%d malformed ledger lines in total (first %d logged)",
                stats.parse_errors.count,
                MAX_PARSE_ERROR_SAMPLES,
            )

        stats.averages = all_period_averages(
            stats.daily,
            yesterday=yesterday,
            network_counts=self._network_counts,
        )
        stats.trends = all_daily_trends(stats.daily, yesterday=yesterday)

        for name, window in stats.windows.items():
            if not window.is_complete():
                logger.warning(
                    "Categorization mismatch in %s: all incoming %s vs categorized %s",
                    name,
                    window.all_incoming.total_amount,
                    window.categorized_amount,
                )

        logger.info(
            "Analysis complete: %d lines, %d processed, %d excluded from today, %d malformed",
            stats.lines_read,
            stats.processed,
            stats.skipped_today,
            stats.parse_errors.count,
        )
        return stats

    def _apply(self, tx: NormalizedTransaction, period: PeriodStats) -> None:
        period.touch(tx.block_number, tx.timestamp)
        if tx.to_address == self._address:
            self._apply_incoming(tx, period)
        else:
            period.payouts.add(tx.to_address, tx.value, tx.timestamp)

    def _apply_incoming(self, tx: NormalizedTransaction, period: PeriodStats) -> None:
        sender, value, ts = tx.from_address, tx.value, tx.timestamp
        period.all_incoming.add(sender, value, ts)

        category = self._thresholds.categorize(value)
        if category in (Category.WHEEL_ONE, Category.WHEEL_TEN):
            period.sat_wheel.add_stake(
                sender,
                value,
                ts,
                ten_unit=category == Category.WHEEL_TEN,
                is_agent=self._agent is not None and sender == self._agent,
            )
        elif category == Category.GUESS_THE_BLOCK:
            period.guess_the_block.add(sender, value, ts)
        elif category == Category.TOP_UP:
            period.top_ups.add(sender, value, ts)
            period.top_ups.transactions.append(
                TopUpRecord(
                    transaction_hash=tx.transaction_hash,
                    from_address=sender,
                    value=value,
                    value_units=self._thresholds.to_units(value),
                    timestamp=ts,
                    block_number=tx.block_number,
                )
            )
        else:
            period.uncategorized.add(sender, value, ts)
            period.uncategorized.add_to_range(self._thresholds.value_range(value), value)

        if category.is_gaming:
            period.gaming_incoming.add(sender, value, ts)
