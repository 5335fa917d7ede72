"""Tests for analysis exports."""

from __future__ import annotations

import csv
import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from chain_ledger_tracker.analysis.analyzer import LedgerAnalyzer
from chain_ledger_tracker.analysis.models import Statistics
from chain_ledger_tracker.report.export import (
    CALENDAR_COLUMNS,
    export_calendar_csv,
    export_json,
    export_report,
)

TRACKED = "0x" + "a" * 40
PLAYER = "0x" + "b" * 40
NOW = datetime(2025, 9, 24, 12, 0, tzinfo=UTC)


def ts(*args: int) -> int:
    return int(datetime(*args, tzinfo=UTC).timestamp())


@pytest.fixture
def stats(ledger_path: Path, write_ledger) -> Statistics:
    write_ledger(
        ledger_path,
        [
            ["10", "0x01", PLAYER, TRACKED, "0.00000001", "0", "0", str(ts(2025, 9, 21, 3)), "success"],
            ["11", "0x02", PLAYER, TRACKED, "0.0000001", "0", "0", str(ts(2025, 9, 22, 3)), "success"],
            ["12", "0x03", TRACKED, PLAYER, "0.00000005", "0", "0", str(ts(2025, 9, 22, 4)), "success"],
            ["13", "0x04", PLAYER, TRACKED, "0.00000001", "0", "0", str(ts(2025, 9, 24, 1)), "success"],
        ],
    )
    return LedgerAnalyzer(ledger_path, now=lambda: NOW, network_counts={"2025-09-22": 200}).analyze()


def test_calendar_csv(stats: Statistics, tmp_path: Path) -> None:
    path = export_calendar_csv(stats, tmp_path / "out" / "calendar.csv")
    with path.open(newline="") as f:
        rows = list(csv.DictReader(f))

    assert list(rows[0].keys()) == list(CALENDAR_COLUMNS)
    # Today is never a complete day.
    assert [r["Date"] for r in rows] == ["2025-09-21", "2025-09-22"]

    day = rows[1]
    assert day["Weekday"] == "MON"
    assert day["Total_Transactions"] == "2"
    assert day["SatWheel_TenSats_Tx"] == "1"
    assert day["SatWheel_Sats"] == "10"
    assert day["Payouts_BTC"] == "0.00000005"
    assert day["Payouts_Sats"] == "5"
    assert day["Gaming_Ratio"] == "2.0000"
    assert day["Total_Network_Tx"] == "200"
    assert day["Share_Percentage"] == "1.00"
    assert day["Tx_Moving_Avg"] == "1.50"
    assert day["SatWheel_Moving_Avg"] == "1.00"
    assert rows[0]["Tx_Moving_Avg"] == "1.00"
    assert rows[0]["Total_Network_Tx"] == ""
    assert not path.with_name("calendar.csv.tmp").exists()


def test_json_export(stats: Statistics, tmp_path: Path) -> None:
    path = export_json(stats, tmp_path / "stats.json")
    data = json.loads(path.read_text())

    assert data["address"] == TRACKED
    assert data["mostRecentCompleteDay"] == "2025-09-23"
    assert data["skipped"]["today"] == 1
    assert set(data["windows"]) == {"allTime", "last30Days", "last14Days", "last7Days"}
    assert data["windows"]["allTime"]["satWheel"]["totalTx"] == 2
    assert data["daily"]["2025-09-22"]["networkTxCount"] == 200
    assert data["daily"]["2025-09-22"]["sharePercentage"] == "1.00"
    assert data["averages"]["7"]["actualDays"] == 2
    assert data["windowShares"]["last7Days"] == "1.50"
    assert data["windowShares"]["allTime"] == "1.50"
    trend = data["trends"]["transactions"]
    assert trend["averageAllTime"] == 1.5
    assert trend["weightedAllTime"] == 1.67
    assert trend["movingAverage"] == {"2025-09-21": 1.0, "2025-09-22": 1.5, "2025-09-23": 1.0}
    assert data["trends"]["satWheel"]["weightedLast7Days"] == 1.0
    assert data["verified"] is True


def test_report_export(stats: Statistics, tmp_path: Path) -> None:
    path = export_report(stats, tmp_path / "report.txt")
    assert "--- VERIFICATION ---" in path.read_text()
