"""Machine-readable exports of analysis results.

- Calendar CSV: one row per complete day, every counter as a column
- JSON: the full Statistics document
- Text: the formatted report
"""

from __future__ import annotations

import csv
import io
import json
import logging
import os
from decimal import Decimal
from pathlib import Path

from chain_ledger_tracker.analysis.models import PeriodStats, Statistics
from chain_ledger_tracker.analysis.thresholds import Thresholds
from chain_ledger_tracker.report.formatter import ReportFormatter, format_ratio, weekday_name

logger = logging.getLogger(__name__)

CALENDAR_COLUMNS: tuple[str, ...] = (
    "Date",
    "Weekday",
    "Total_Transactions",
    "Total_Incoming_Tx",
    "Total_Incoming_BTC",
    "Total_Incoming_Sats",
    "Total_Outgoing_Tx",
    "Total_Outgoing_BTC",
    "Total_Outgoing_Sats",
    "SatWheel_Tx",
    "SatWheel_BTC",
    "SatWheel_Sats",
    "SatWheel_OneSat_User_Tx",
    "SatWheel_OneSat_Agent_Tx",
    "SatWheel_TenSats_Tx",
    "GuessTheBlock_Tx",
    "GuessTheBlock_BTC",
    "GuessTheBlock_Sats",
    "TopUps_Tx",
    "TopUps_BTC",
    "TopUps_Sats",
    "Uncategorized_Tx",
    "Uncategorized_BTC",
    "Uncategorized_Sats",
    "Payouts_Tx",
    "Payouts_BTC",
    "Payouts_Sats",
    "Gaming_Income_Tx",
    "Gaming_Income_BTC",
    "Gaming_Income_Sats",
    "Gaming_Ratio",
    "Full_Ratio",
    "Unique_Incoming_Wallets",
    "Unique_Outgoing_Wallets",
    "Block_Range_Min",
    "Block_Range_Max",
    "Total_Network_Tx",
    "Share_Percentage",
    "Tx_Moving_Avg",
    "SatWheel_Moving_Avg",
)


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8", newline="") as f:
        f.write(text)
    os.replace(tmp, path)


def _btc(amount: Decimal) -> str:
    return f"{amount:.8f}"


def _moving_average(stats: Statistics, metric: str, day: str) -> str:
    trend = stats.trends.get(metric)
    if trend is None or day not in trend.moving_average:
        return ""
    return f"{trend.moving_average[day]:.2f}"


def calendar_row(day: str, d: PeriodStats, stats: Statistics, thresholds: Thresholds) -> list[str]:
    def amounts(total_tx: int, total: Decimal) -> list[str]:
        return [str(total_tx), _btc(total), str(thresholds.to_units(total))]

    network = stats.network_tx_counts.get(day)
    share = stats.network_share(day)
    return [
        day,
        weekday_name(day),
        str(d.total_transactions),
        *amounts(d.all_incoming.total_tx, d.all_incoming.total_amount),
        *amounts(d.payouts.total_tx, d.payouts.total_amount),
        *amounts(d.sat_wheel.total_tx, d.sat_wheel.total_amount),
        str(d.sat_wheel.one_unit_user_tx),
        str(d.sat_wheel.one_unit_agent_tx),
        str(d.sat_wheel.ten_unit_tx),
        *amounts(d.guess_the_block.total_tx, d.guess_the_block.total_amount),
        *amounts(d.top_ups.total_tx, d.top_ups.total_amount),
        *amounts(d.uncategorized.total_tx, d.uncategorized.total_amount),
        *amounts(d.payouts.total_tx, d.payouts.total_amount),
        *amounts(d.gaming_incoming.total_tx, d.gaming_incoming.total_amount),
        format_ratio(d.gaming_ratio),
        format_ratio(d.full_ratio),
        str(d.all_incoming.unique_wallets),
        str(d.payouts.unique_wallets),
        str(d.min_block) if d.min_block is not None else "",
        str(d.max_block) if d.max_block is not None else "",
        str(network) if network is not None else "",
        str(share) if share is not None else "",
        _moving_average(stats, "transactions", day),
        _moving_average(stats, "satWheel", day),
    ]


def render_calendar_csv(stats: Statistics, thresholds: Thresholds | None = None) -> str:
    thresholds = thresholds or Thresholds()
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CALENDAR_COLUMNS)
    for day in stats.complete_days():
        writer.writerow(calendar_row(day, stats.daily[day], stats, thresholds))
    return buf.getvalue()


def export_calendar_csv(stats: Statistics, path: Path | str, thresholds: Thresholds | None = None) -> Path:
    path = Path(path)
    _atomic_write(path, render_calendar_csv(stats, thresholds))
    logger.info("Wrote calendar CSV %s (%d days)", path, len(stats.complete_days()))
    return path


def export_json(stats: Statistics, path: Path | str) -> Path:
    path = Path(path)
    _atomic_write(path, json.dumps(stats.to_dict(), indent=2))
    logger.info("Wrote JSON export %s", path)
    return path


def export_report(stats: Statistics, path: Path | str, formatter: ReportFormatter | None = None) -> Path:
    path = Path(path)
    _atomic_write(path, (formatter or ReportFormatter()).format_report(stats))
    logger.info("Wrote report %s", path)
    return path
