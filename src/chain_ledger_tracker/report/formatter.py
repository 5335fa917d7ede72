"""Report formatter for analysis results.

This module turns a Statistics object into a plain-text report (written to
disk or stdout) and a compact multi-line summary for chat delivery.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Literal

from chain_ledger_tracker.analysis.averages import AVERAGE_PERIODS
from chain_ledger_tracker.analysis.models import PeriodStats, Statistics

WEEKDAYS = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")
BREAKDOWN_DAYS = 14
TOP_WALLETS = 5
TREND_LABELS = {"transactions": "Transactions", "satWheel": "Sat wheel"}
RULE = "=" * 72


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def format_amount(amount: Decimal | None, places: int = 8) -> str:
    if amount is None:
        return "-"
    return f"{amount:.{places}f}"


def format_ratio(ratio: float) -> str:
    if ratio == float("inf"):
        return "INFINITY"
    return f"{ratio:.4f}"


def weekday_name(day: str) -> str:
    return WEEKDAYS[date.fromisoformat(day).weekday()]


def _ts(ts: int | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def default_report_name(stats: Statistics, suffix: str = "complete_days.txt") -> str:
    """`<lastBlock>_<YYYY-MM-DD_HH-MM-SS>_<suffix>` from the newest analyzed transaction."""
    last_block = stats.all_time.max_block or 0
    moment = (
        datetime.fromtimestamp(stats.all_time.last_timestamp, tz=UTC)
        if stats.all_time.last_timestamp is not None
        else stats.generated_at
    )
    return f"{last_block}_{moment.strftime('%Y-%m-%d_%H-%M-%S')}_{suffix}"


class ReportFormatter:
    """Formats Statistics for humans.

    Supports two verbosity levels:
    - compact: window totals and verification only
    - detailed: everything, including wallets, top-ups and daily breakdown
    """

    def __init__(
        self,
        verbosity: Literal["compact", "detailed"] = "detailed",
    ) -> None:
        self.verbosity = verbosity

    def format_report(self, stats: Statistics) -> str:
        lines: list[str] = [
            RULE,
            f"Transaction analysis for {stats.address}",
            f"Generated: {stats.generated_at.astimezone(UTC).strftime('%Y-%m-%d %H:%M:%S UTC')}",
            f"Most recent complete day: {stats.yesterday.isoformat()} (today excluded)",
        ]
        if stats.agent_address:
            lines.append(f"Agent address: {stats.agent_address}")
        lines.append(
            f"Lines read: {stats.lines_read:,} | processed: {stats.processed:,} | "
            f"non-success: {stats.skipped_status:,} | today: {stats.skipped_today:,}"
        )
        lines.append(RULE)

        titles = {
            "allTime": "ALL TIME",
            "last30Days": "LAST 30 DAYS",
            "last14Days": "LAST 14 DAYS",
            "last7Days": "LAST 7 DAYS",
        }
        for key, window in stats.windows.items():
            lines.append("")
            lines.extend(self._window_section(titles[key], window))
            share = stats.window_share(key)
            if share is not None:
                lines.append(f"Network share: {share}% of {stats.window_network_tx(key):,} network tx")

        if self.verbosity == "detailed":
            lines.append("")
            lines.extend(self._averages_section(stats))
            lines.append("")
            lines.extend(self._breakdown_section(stats))
            lines.append("")
            lines.extend(self._top_wallets_section(stats))
            lines.append("")
            lines.extend(self._top_ups_section(stats.last_7_days))
            lines.append("")
            lines.extend(self._value_ranges_section(stats.all_time))

        lines.append("")
        lines.extend(self._verification_section(stats))
        return "\n".join(lines) + "\n"

    def _window_section(self, title: str, w: PeriodStats) -> list[str]:
        wheel = w.sat_wheel
        lines = [
            f"--- {title} ---",
            f"Transactions: {w.total_transactions:,} (blocks {w.min_block or '-'}-{w.max_block or '-'})",
            f"Period: {_ts(w.first_timestamp)} -> {_ts(w.last_timestamp)}",
            f"Incoming: {w.all_incoming.total_tx:,} tx, {format_amount(w.all_incoming.total_amount)} "
            f"from {w.all_incoming.unique_wallets:,} wallets",
            f"  Sat wheel: {wheel.total_tx:,} tx, {format_amount(wheel.total_amount)} "
            f"(1 sat: {wheel.one_unit_tx:,} [user {wheel.one_unit_user_tx:,} / agent {wheel.one_unit_agent_tx:,}], "
            f"10 sats: {wheel.ten_unit_tx:,}), {wheel.unique_wallets:,} wallets",
            f"  Guess the block: {w.guess_the_block.total_tx:,} tx, "
            f"{format_amount(w.guess_the_block.total_amount)}, {w.guess_the_block.unique_wallets:,} wallets",
            f"  Top-ups: {w.top_ups.total_tx:,} ops, {format_amount(w.top_ups.total_amount)} "
            f"(largest {format_amount(w.top_ups.largest)}, smallest {format_amount(w.top_ups.smallest)})",
            f"  Uncategorized: {w.uncategorized.total_tx:,} tx, {format_amount(w.uncategorized.total_amount)}",
            f"Outgoing (payouts): {w.payouts.total_tx:,} tx, {format_amount(w.payouts.total_amount)} "
            f"to {w.payouts.unique_wallets:,} wallets "
            f"(largest {format_amount(w.payouts.largest)}, smallest {format_amount(w.payouts.smallest)})",
            f"Gaming ratio: {format_ratio(w.gaming_ratio)} | Full ratio: {format_ratio(w.full_ratio)}",
        ]
        if self.verbosity == "detailed" and wheel.total_tx:
            lines.append(
                f"  Wheel amounts: user {format_amount(wheel.user_amount)}, agent {format_amount(wheel.agent_amount)}"
            )
        return lines

    def _averages_section(self, stats: Statistics) -> list[str]:
        lines = ["--- DAILY AVERAGES (complete days) ---"]
        for n in AVERAGE_PERIODS:
            avg = stats.averages.get(n)
            if avg is None:
                lines.append(f"{n:>2}d: no data")
                continue
            line = (
                f"{n:>2}d ({avg.actual_days} days): tx {avg.avg_transactions:,}, wallets {avg.avg_unique_wallets:,}, "
                f"wheel {avg.avg_wheel_tx:,} (user {avg.avg_user_tx:,} / agent {avg.avg_agent_tx:,}), "
                f"guess {avg.avg_guess_the_block:,}"
            )
            if avg.avg_network_tx:
                line += f", network {avg.avg_network_tx:,} ({avg.share_percentage}%)"
            lines.append(line)
        for metric, label in TREND_LABELS.items():
            trend = stats.trends.get(metric)
            if trend is None:
                continue
            lines.append(
                f"{label}/day over {trend.days} days: all time {trend.average_all_time:,.0f} "
                f"(weighted {trend.weighted_all_time:,.0f}), last 7 days {trend.average_last_7_days:,.0f} "
                f"(weighted {trend.weighted_last_7_days:,.0f})"
            )
        return lines

    def _breakdown_section(self, stats: Statistics) -> list[str]:
        lines = [f"--- LAST {BREAKDOWN_DAYS} DAYS ---"]
        first = stats.yesterday - timedelta(days=BREAKDOWN_DAYS - 1)
        for offset in range(BREAKDOWN_DAYS):
            day = (first + timedelta(days=offset)).isoformat()
            d = stats.daily.get(day)
            if d is None:
                lines.append(f"{day} {weekday_name(day)}: no transactions")
                continue
            line = (
                f"{day} {weekday_name(day)}: {d.total_transactions:,} tx | wheel {d.sat_wheel.total_tx:,} "
                f"| guess {d.guess_the_block.total_tx:,} | top-ups {d.top_ups.total_tx:,} "
                f"| payouts {d.payouts.total_tx:,} ({format_amount(d.payouts.total_amount)}) "
                f"| wallets {d.all_incoming.unique_wallets:,}"
            )
            share = stats.network_share(day)
            if share is not None:
                line += f" | share {share}%"
            lines.append(line)
        return lines

    def _top_wallets_section(self, stats: Statistics) -> list[str]:
        lines = [f"--- TOP {TOP_WALLETS} INCOMING WALLETS (all time) ---"]
        for i, (addr, w) in enumerate(stats.all_time.all_incoming.top_wallets(TOP_WALLETS), start=1):
            avg = w.total_value / w.count if w.count else Decimal("0")
            lines.append(
                f"{i}. {addr}: {w.count:,} tx, {format_amount(w.total_value)} (avg {format_amount(avg)})"
            )
        if len(lines) == 1:
            lines.append("none")
        return lines

    def _top_ups_section(self, w: PeriodStats) -> list[str]:
        lines = ["--- TOP-UPS (last 7 days) ---"]
        if not w.top_ups.transactions:
            lines.append("none")
        for t in w.top_ups.transactions:
            lines.append(
                f"{t.date} block {t.block_number} {truncate_address(t.from_address)} "
                f"{format_amount(t.value)} ({t.value_units:,} sats) {t.transaction_hash}"
            )
        return lines

    def _value_ranges_section(self, w: PeriodStats) -> list[str]:
        lines = ["--- UNCATEGORIZED VALUE RANGES (all time) ---"]
        for label, bucket in w.uncategorized.value_ranges.items():
            if bucket.count:
                lines.append(f"{label}: {bucket.count:,} tx, {format_amount(bucket.total_amount)}")
        if len(lines) == 1:
            lines.append("none")
        return lines

    def _verification_section(self, stats: Statistics) -> list[str]:
        lines = ["--- VERIFICATION ---"]
        for key, w in stats.windows.items():
            status = "OK" if w.is_complete() else "MISMATCH"
            lines.append(
                f"{key}: all incoming {format_amount(w.all_incoming.total_amount)} vs categorized "
                f"{format_amount(w.categorized_amount)} (diff {w.categorization_difference:.10f}) {status}"
            )

        dup = stats.duplicates
        if dup.count:
            lines.append(
                f"WARNING: {dup.count:,} duplicated transaction hashes "
                f"({dup.total_duplicate_occurrences:,} extra occurrences)"
            )
            for tx_hash, line_nos in list(dup.lines.items())[:10]:
                lines.append(f"  {tx_hash}: lines {', '.join(map(str, line_nos))}")
            if stats.skipped_duplicates:
                lines.append(f"  {stats.skipped_duplicates:,} repeated rows excluded from totals")
            else:
                lines.append("  Repeated rows are included in totals")
        else:
            lines.append("No duplicate transaction hashes")

        if stats.parse_errors.count:
            lines.append(f"WARNING: {stats.parse_errors.count:,} malformed ledger lines skipped")
            for line_no, message in stats.parse_errors.samples:
                lines.append(f"  line {line_no}: {message}")
        return lines

    def format_summary(self, stats: Statistics) -> str:
        """Short message for chat delivery: yesterday plus the 7-day window."""
        day = stats.daily.get(stats.yesterday.isoformat()) or PeriodStats()
        week = stats.last_7_days
        avg7 = stats.averages.get(7)
        lines = [
            f"Stats for {truncate_address(stats.address)} on {stats.yesterday.isoformat()}",
            f"Transactions: {day.total_transactions:,}",
            f"Sat wheel: {day.sat_wheel.total_tx:,} (users {day.sat_wheel.user_tx:,}, "
            f"agent {day.sat_wheel.one_unit_agent_tx:,})",
            f"Guess the block: {day.guess_the_block.total_tx:,}",
            f"Unique wallets: {day.all_incoming.unique_wallets:,}",
            f"Payouts: {format_amount(day.payouts.total_amount)}",
            f"7d: {week.total_transactions:,} tx, gaming ratio {format_ratio(week.gaming_ratio)}",
        ]
        if avg7 is not None:
            lines.append(f"7d avg/day: {avg7.avg_transactions:,} tx, {avg7.avg_unique_wallets:,} wallets")
        share = stats.network_share(stats.yesterday.isoformat())
        if share is not None:
            lines.append(f"Network share: {share}%")
        if not stats.verified or stats.duplicates.count:
            lines.append("Data quality warnings present, see full report")
        return "\n".join(lines)
