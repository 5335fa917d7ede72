"""Data models for the analysis module.

Every window (all-time, last 7/14/30 days) and every calendar day holds
the same fixed-shape PeriodStats aggregate, built by `PeriodStats()`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any

from chain_ledger_tracker.analysis.thresholds import VALUE_RANGE_LABELS

ZERO = Decimal("0")
WINDOW_LENGTHS: dict[str, int] = {"last30Days": 30, "last14Days": 14, "last7Days": 7}


def _ts_iso(ts: int | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=UTC).isoformat()


@dataclass
class WalletStats:
    """Per-counterparty totals within one category."""

    count: int = 0
    total_value: Decimal = ZERO
    first_seen: int | None = None
    last_seen: int | None = None

    def add(self, value: Decimal, timestamp: int) -> None:
        self.count += 1
        self.total_value += value
        if self.first_seen is None or timestamp < self.first_seen:
            self.first_seen = timestamp
        if self.last_seen is None or timestamp > self.last_seen:
            self.last_seen = timestamp

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "totalValue": str(self.total_value),
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
        }


@dataclass
class CategoryStats:
    """Count, sum, extremes and counterparties of one category."""

    total_tx: int = 0
    total_amount: Decimal = ZERO
    largest: Decimal | None = None
    smallest: Decimal | None = None
    wallets: dict[str, WalletStats] = field(default_factory=dict)

    @property
    def unique_wallets(self) -> int:
        return len(self.wallets)

    @property
    def average_amount(self) -> Decimal:
        if not self.total_tx:
            return ZERO
        return self.total_amount / self.total_tx

    def add(self, counterparty: str, value: Decimal, timestamp: int) -> None:
        self.total_tx += 1
        self.total_amount += value
        if self.largest is None or value > self.largest:
            self.largest = value
        if self.smallest is None or value < self.smallest:
            self.smallest = value
        wallet = self.wallets.get(counterparty)
        if wallet is None:
            wallet = self.wallets[counterparty] = WalletStats()
        wallet.add(value, timestamp)

    def top_wallets(self, n: int = 5) -> list[tuple[str, WalletStats]]:
        """Counterparties ordered by total value, largest first."""
        ranked = sorted(self.wallets.items(), key=lambda kv: (-kv[1].total_value, kv[0]))
        return ranked[:n]

    def to_dict(self, *, include_wallets: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "totalTx": self.total_tx,
            "totalAmount": str(self.total_amount),
            "uniqueWallets": self.unique_wallets,
            "largest": str(self.largest) if self.largest is not None else None,
            "smallest": str(self.smallest) if self.smallest is not None else None,
        }
        if include_wallets:
            data["wallets"] = {k: v.to_dict() for k, v in sorted(self.wallets.items())}
        return data


@dataclass
class WheelStats(CategoryStats):
    """Bucket A: 1-unit and 10-unit stakes, 1-unit split by agent/user."""

    one_unit_tx: int = 0
    ten_unit_tx: int = 0
    one_unit_user_tx: int = 0
    one_unit_agent_tx: int = 0
    user_amount: Decimal = ZERO
    agent_amount: Decimal = ZERO

    @property
    def user_tx(self) -> int:
        return self.one_unit_user_tx + self.ten_unit_tx

    def add_stake(
        self,
        counterparty: str,
        value: Decimal,
        timestamp: int,
        *,
        ten_unit: bool,
        is_agent: bool,
    ) -> None:
        self.add(counterparty, value, timestamp)
        if ten_unit:
            self.ten_unit_tx += 1
            self.user_amount += value
        elif is_agent:
            self.one_unit_tx += 1
            self.one_unit_agent_tx += 1
            self.agent_amount += value
        else:
            self.one_unit_tx += 1
            self.one_unit_user_tx += 1
            self.user_amount += value

    def to_dict(self, *, include_wallets: bool = False) -> dict[str, Any]:
        data = super().to_dict(include_wallets=include_wallets)
        data.update(
            {
                "oneUnitTx": self.one_unit_tx,
                "tenUnitTx": self.ten_unit_tx,
                "oneUnitUserTx": self.one_unit_user_tx,
                "oneUnitAgentTx": self.one_unit_agent_tx,
                "userAmount": str(self.user_amount),
                "agentAmount": str(self.agent_amount),
            }
        )
        return data


@dataclass(frozen=True)
class TopUpRecord:
    """One audited top-up."""

    transaction_hash: str
    from_address: str
    value: Decimal
    value_units: int
    timestamp: int
    block_number: int

    @property
    def date(self) -> str:
        return datetime.fromtimestamp(self.timestamp, tz=UTC).strftime("%Y-%m-%d %H:%M:%S UTC")

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.transaction_hash,
            "from": self.from_address,
            "value": str(self.value),
            "valueUnits": self.value_units,
            "timestamp": self.timestamp,
            "blockNumber": self.block_number,
            "date": self.date,
        }


@dataclass
class TopUpStats(CategoryStats):
    transactions: list[TopUpRecord] = field(default_factory=list)

    def to_dict(self, *, include_wallets: bool = False) -> dict[str, Any]:
        data = super().to_dict(include_wallets=include_wallets)
        data["transactions"] = [t.to_dict() for t in self.transactions]
        return data


@dataclass
class ValueRangeBucket:
    count: int = 0
    total_amount: Decimal = ZERO


@dataclass
class UncategorizedStats(CategoryStats):
    """Incoming values below the top tier with no exact tier match."""

    value_ranges: dict[str, ValueRangeBucket] = field(
        default_factory=lambda: {label: ValueRangeBucket() for label in VALUE_RANGE_LABELS}
    )

    def add_to_range(self, label: str, value: Decimal) -> None:
        bucket = self.value_ranges.setdefault(label, ValueRangeBucket())
        bucket.count += 1
        bucket.total_amount += value

    def to_dict(self, *, include_wallets: bool = False) -> dict[str, Any]:
        data = super().to_dict(include_wallets=include_wallets)
        data["valueRanges"] = {
            label: {"count": b.count, "totalAmount": str(b.total_amount)}
            for label, b in self.value_ranges.items()
            if b.count
        }
        return data


def _ratio(numerator: Decimal, denominator: Decimal) -> float:
    if denominator > 0:
        return float(numerator / denominator)
    return float("inf") if numerator > 0 else 0.0


def _json_ratio(ratio: float) -> float | str:
    return "INFINITY" if ratio == float("inf") else ratio


@dataclass
class PeriodStats:
    """Categorized counters for one window or one calendar day."""

    sat_wheel: WheelStats = field(default_factory=WheelStats)
    guess_the_block: CategoryStats = field(default_factory=CategoryStats)
    top_ups: TopUpStats = field(default_factory=TopUpStats)
    uncategorized: UncategorizedStats = field(default_factory=UncategorizedStats)
    all_incoming: CategoryStats = field(default_factory=CategoryStats)
    gaming_incoming: CategoryStats = field(default_factory=CategoryStats)
    payouts: CategoryStats = field(default_factory=CategoryStats)
    total_transactions: int = 0
    first_timestamp: int | None = None
    last_timestamp: int | None = None
    min_block: int | None = None
    max_block: int | None = None

    def touch(self, block_number: int, timestamp: int) -> None:
        self.total_transactions += 1
        if self.first_timestamp is None or timestamp < self.first_timestamp:
            self.first_timestamp = timestamp
        if self.last_timestamp is None or timestamp > self.last_timestamp:
            self.last_timestamp = timestamp
        if self.min_block is None or block_number < self.min_block:
            self.min_block = block_number
        if self.max_block is None or block_number > self.max_block:
            self.max_block = block_number

    @property
    def categorized_amount(self) -> Decimal:
        return (
            self.sat_wheel.total_amount
            + self.guess_the_block.total_amount
            + self.top_ups.total_amount
            + self.uncategorized.total_amount
        )

    @property
    def categorized_tx(self) -> int:
        return (
            self.sat_wheel.total_tx
            + self.guess_the_block.total_tx
            + self.top_ups.total_tx
            + self.uncategorized.total_tx
        )

    @property
    def categorization_difference(self) -> Decimal:
        return self.all_incoming.total_amount - self.categorized_amount

    def is_complete(self, tolerance: Decimal = Decimal("1e-8")) -> bool:
        return (
            abs(self.categorization_difference) <= tolerance
            and self.categorized_tx == self.all_incoming.total_tx
        )

    @property
    def gaming_ratio(self) -> float:
        """Gaming income per unit paid out."""
        return _ratio(self.gaming_incoming.total_amount, self.payouts.total_amount)

    @property
    def full_ratio(self) -> float:
        """All income per unit paid out."""
        return _ratio(self.all_incoming.total_amount, self.payouts.total_amount)

    def to_dict(self, *, include_wallets: bool = False) -> dict[str, Any]:
        return {
            "satWheel": self.sat_wheel.to_dict(include_wallets=include_wallets),
            "guessTheBlock": self.guess_the_block.to_dict(include_wallets=include_wallets),
            "topUps": self.top_ups.to_dict(include_wallets=include_wallets),
            "uncategorizedIncoming": self.uncategorized.to_dict(include_wallets=include_wallets),
            "allIncoming": self.all_incoming.to_dict(include_wallets=include_wallets),
            "gamingIncoming": self.gaming_incoming.to_dict(include_wallets=include_wallets),
            "payouts": self.payouts.to_dict(include_wallets=include_wallets),
            "totalTransactions": self.total_transactions,
            "earliest": _ts_iso(self.first_timestamp),
            "latest": _ts_iso(self.last_timestamp),
            "blockRange": {"min": self.min_block, "max": self.max_block},
            "verification": {
                "categorizedAmount": str(self.categorized_amount),
                "difference": str(self.categorization_difference),
                "complete": self.is_complete(),
            },
            "gamingRatio": _json_ratio(self.gaming_ratio),
            "fullRatio": _json_ratio(self.full_ratio),
        }


@dataclass
class DuplicateReport:
    """Transaction hashes seen on more than one ledger line."""

    lines: dict[str, list[int]] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.lines)

    @property
    def total_duplicate_occurrences(self) -> int:
        return sum(len(v) - 1 for v in self.lines.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "duplicates": self.count,
            "totalDuplicateOccurrences": self.total_duplicate_occurrences,
            "lines": dict(sorted(self.lines.items())),
        }


@dataclass(frozen=True)
class PeriodAverages:
    """Per-day averages over the complete days of a trailing period."""

    day_count: int
    actual_days: int
    avg_transactions: int
    avg_unique_wallets: int
    avg_wheel_tx: int
    avg_user_tx: int
    avg_agent_tx: int
    avg_guess_the_block: int
    avg_network_tx: int
    share_percentage: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "dayCount": self.day_count,
            "actualDays": self.actual_days,
            "avgTransactions": self.avg_transactions,
            "avgUniqueWallets": self.avg_unique_wallets,
            "avgWheelTx": self.avg_wheel_tx,
            "avgUserTx": self.avg_user_tx,
            "avgAgentTx": self.avg_agent_tx,
            "avgGuessTheBlock": self.avg_guess_the_block,
            "avgNetworkTx": self.avg_network_tx,
            "sharePercentage": str(self.share_percentage),
        }


@dataclass(frozen=True)
class DailyTrend:
    """Flat and recency-weighted per-day averages of one daily counter.

    `moving_average` maps every calendar day from the first complete day to
    yesterday onto the trailing average ending that day.
    """

    metric: str
    days: int
    average_all_time: float
    average_last_7_days: float
    weighted_all_time: float
    weighted_last_7_days: float
    moving_window: int
    moving_average: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "days": self.days,
            "averageAllTime": round(self.average_all_time, 2),
            "averageLast7Days": round(self.average_last_7_days, 2),
            "weightedAllTime": round(self.weighted_all_time, 2),
            "weightedLast7Days": round(self.weighted_last_7_days, 2),
            "movingWindow": self.moving_window,
            "movingAverage": {day: round(v, 2) for day, v in self.moving_average.items()},
        }


@dataclass
class ParseErrorStats:
    count: int = 0
    samples: list[tuple[int, str]] = field(default_factory=list)


@dataclass
class Statistics:
    """Complete output of one analysis run."""

    address: str
    agent_address: str | None
    generated_at: datetime
    yesterday: date
    all_time: PeriodStats
    last_30_days: PeriodStats
    last_14_days: PeriodStats
    last_7_days: PeriodStats
    daily: dict[str, PeriodStats]
    duplicates: DuplicateReport
    averages: dict[int, PeriodAverages | None] = field(default_factory=dict)
    trends: dict[str, DailyTrend] = field(default_factory=dict)
    network_tx_counts: dict[str, int] = field(default_factory=dict)
    lines_read: int = 0
    processed: int = 0
    skipped_status: int = 0
    skipped_irrelevant: int = 0
    skipped_today: int = 0
    skipped_duplicates: int = 0
    parse_errors: ParseErrorStats = field(default_factory=ParseErrorStats)

    @property
    def windows(self) -> dict[str, PeriodStats]:
        return {
            "allTime": self.all_time,
            "last30Days": self.last_30_days,
            "last14Days": self.last_14_days,
            "last7Days": self.last_7_days,
        }

    @property
    def verified(self) -> bool:
        return all(w.is_complete() for w in self.windows.values())

    def complete_days(self) -> list[str]:
        """Sorted day keys up to and including yesterday."""
        limit = self.yesterday.isoformat()
        return sorted(d for d in self.daily if d <= limit)

    def network_share(self, day: str) -> Decimal | None:
        network = self.network_tx_counts.get(day)
        stats = self.daily.get(day)
        if not network or stats is None:
            return None
        return share_percentage(stats.total_transactions, network)

    def window_network_tx(self, name: str) -> int:
        """Network-wide transactions over the days a window covers."""
        last = self.yesterday.isoformat()
        days = WINDOW_LENGTHS.get(name)
        first = (self.yesterday - timedelta(days=days - 1)).isoformat() if days else ""
        return sum(count for day, count in self.network_tx_counts.items() if first <= day <= last)

    def window_share(self, name: str) -> Decimal | None:
        network = self.window_network_tx(name)
        if not network:
            return None
        return share_percentage(self.windows[name].total_transactions, network)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "agentAddress": self.agent_address,
            "generatedAt": self.generated_at.isoformat(),
            "mostRecentCompleteDay": self.yesterday.isoformat(),
            "linesRead": self.lines_read,
            "processed": self.processed,
            "skipped": {
                "status": self.skipped_status,
                "irrelevant": self.skipped_irrelevant,
                "today": self.skipped_today,
                "duplicates": self.skipped_duplicates,
                "parseErrors": self.parse_errors.count,
            },
            "windows": {name: w.to_dict() for name, w in self.windows.items()},
            "topWallets": [
                {"address": addr, **w.to_dict()} for addr, w in self.all_time.all_incoming.top_wallets(5)
            ],
            "averages": {str(k): (v.to_dict() if v else None) for k, v in sorted(self.averages.items())},
            "trends": {name: t.to_dict() for name, t in self.trends.items()},
            "daily": {
                day: {
                    **self.daily[day].to_dict(),
                    "networkTxCount": self.network_tx_counts.get(day),
                    "sharePercentage": (
                        str(share) if (share := self.network_share(day)) is not None else None
                    ),
                }
                for day in sorted(self.daily)
            },
            "windowShares": {
                name: (str(share) if (share := self.window_share(name)) is not None else None)
                for name in self.windows
            },
            "duplicates": self.duplicates.to_dict(),
            "verified": self.verified,
        }


def share_percentage(ours: int, network: int) -> Decimal:
    """Our transactions as a percentage of the network's, 2 decimals."""
    if network <= 0:
        return Decimal("0.00")
    return (Decimal(ours) / Decimal(network) * 100).quantize(Decimal("0.01"))
