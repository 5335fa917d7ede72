"""Tests for the streaming ledger analyzer."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

import pytest

from chain_ledger_tracker.analysis.analyzer import AnalysisError, LedgerAnalyzer, address_from_ledger_path
from chain_ledger_tracker.ledger.models import LEDGER_COLUMNS, LedgerNotFoundError

TRACKED = "0x" + "a" * 40
AGENT = "0x" + "9" * 40
PLAYER = "0x" + "b" * 40
PLAYER_2 = "0x" + "d" * 40
STRANGER = "0x" + "c" * 40

NOW = datetime(2025, 9, 24, 12, 0, tzinfo=UTC)
DAY_D = "2025-09-22"


def ts(*args: int) -> int:
    return int(datetime(*args, tzinfo=UTC).timestamp())


def fixed_now() -> datetime:
    return NOW


_counter = iter(range(1, 1_000_000))


def row(
    value: str,
    timestamp: int,
    *,
    sender: str = PLAYER,
    recipient: str = TRACKED,
    status: str = "success",
    tx_hash: str | None = None,
    block: int | None = None,
) -> list[str]:
    n = next(_counter)
    return [
        str(block if block is not None else 1000 + n),
        tx_hash or f"0x{n:064x}",
        sender,
        recipient,
        value,
        "21000",
        "1",
        str(timestamp),
        status,
    ]


@pytest.fixture
def analyze(ledger_path: Path, write_ledger):
    def _analyze(rows: list[list[str]], **kwargs) -> object:
        write_ledger(ledger_path, rows)
        return LedgerAnalyzer(ledger_path, now=fixed_now, **kwargs).analyze()

    return _analyze


class TestCategorization:
    def test_mixed_day(self, analyze) -> None:
        t = ts(2025, 9, 22, 10)
        stats = analyze(
            [
                row("0.00000001", t),
                row("0.0000001", t + 1),
                row("0.000005", t + 2),
                row("0.0000005", t + 3, sender=TRACKED, recipient=PLAYER),
            ]
        )

        for period in (stats.all_time, stats.last_7_days, stats.daily[DAY_D]):
            assert period.sat_wheel.total_tx == 2
            assert period.sat_wheel.one_unit_tx == 1
            assert period.sat_wheel.ten_unit_tx == 1
            assert period.top_ups.total_tx == 1
            assert period.guess_the_block.total_tx == 0
            assert period.payouts.total_tx == 1
            assert period.payouts.total_amount == Decimal("0.0000005")
            assert period.all_incoming.total_tx == 3
            assert period.all_incoming.total_amount == Decimal("0.00000001") + Decimal("0.0000001") + Decimal(
                "0.000005"
            )
            assert period.gaming_incoming.total_amount == Decimal("0.00000011")
            assert period.total_transactions == 4
            assert period.is_complete()

        assert stats.verified
        assert stats.processed == 4
        top_up = stats.all_time.top_ups.transactions[0]
        assert top_up.value_units == 500
        assert top_up.from_address == PLAYER

    def test_guess_and_uncategorized(self, analyze) -> None:
        t = ts(2025, 9, 20, 8)
        stats = analyze(
            [
                row("0.000001", t),
                row("0.0000005", t),
                row("0.000000004", t),
            ]
        )
        w = stats.all_time
        assert w.guess_the_block.total_tx == 1
        assert w.uncategorized.total_tx == 2
        assert w.uncategorized.value_ranges["10-99 sats"].count == 1
        assert w.uncategorized.value_ranges["< 1 sat"].count == 1
        assert w.gaming_incoming.total_tx == 1
        assert w.is_complete()

    def test_agent_split(self, analyze) -> None:
        t = ts(2025, 9, 22, 1)
        stats = analyze(
            [
                row("0.00000001", t, sender=AGENT),
                row("0.00000001", t, sender=AGENT),
                row("0.00000001", t, sender=PLAYER),
                row("0.0000001", t, sender=AGENT),
            ],
            agent_address=AGENT.upper().replace("0X", "0x"),
        )
        wheel = stats.all_time.sat_wheel
        assert wheel.one_unit_agent_tx == 2
        assert wheel.one_unit_user_tx == 1
        assert wheel.ten_unit_tx == 1
        assert wheel.user_tx == 2
        assert wheel.agent_amount == Decimal("0.00000002")

    def test_self_transfer_counts_as_incoming(self, analyze) -> None:
        stats = analyze([row("0.00000001", ts(2025, 9, 22, 1), sender=TRACKED, recipient=TRACKED)])
        assert stats.all_time.all_incoming.total_tx == 1
        assert stats.all_time.payouts.total_tx == 0

    def test_payout_wallets_and_ratios(self, analyze) -> None:
        t = ts(2025, 9, 21, 5)
        stats = analyze(
            [
                row("0.000001", t),
                row("0.0000002", t, sender=TRACKED, recipient=PLAYER),
                row("0.0000003", t, sender=TRACKED, recipient=PLAYER_2),
            ]
        )
        w = stats.all_time
        assert w.payouts.unique_wallets == 2
        assert w.payouts.largest == Decimal("0.0000003")
        assert w.payouts.smallest == Decimal("0.0000002")
        assert w.gaming_ratio == pytest.approx(2.0)
        assert w.full_ratio == pytest.approx(2.0)

    def test_ratio_without_payouts_is_infinite(self, analyze) -> None:
        stats = analyze([row("0.00000001", ts(2025, 9, 22, 1))])
        assert stats.all_time.gaming_ratio == float("inf")


class TestFiltering:
    def test_today_excluded_everywhere(self, analyze) -> None:
        stats = analyze(
            [
                row("0.00000001", ts(2025, 9, 23, 23, 59, 59)),
                row("0.00000001", ts(2025, 9, 24, 0, 0, 0)),
            ]
        )
        assert stats.skipped_today == 1
        assert stats.all_time.total_transactions == 1
        assert "2025-09-24" not in stats.daily
        assert stats.last_7_days.total_transactions == 1

    def test_window_boundaries(self, analyze) -> None:
        stats = analyze(
            [
                row("0.00000001", ts(2025, 9, 17, 0, 0, 0)),
                row("0.00000001", ts(2025, 9, 16, 23, 59, 59)),
                row("0.00000001", ts(2025, 8, 25, 0, 0, 0)),
                row("0.00000001", ts(2025, 8, 24, 23, 59, 59)),
            ]
        )
        assert stats.last_7_days.total_transactions == 1
        assert stats.last_14_days.total_transactions == 2
        assert stats.last_30_days.total_transactions == 3
        assert stats.all_time.total_transactions == 4

    def test_non_success_and_irrelevant_rows_skipped(self, analyze) -> None:
        t = ts(2025, 9, 22, 1)
        stats = analyze(
            [
                row("0.00000001", t, status="failed"),
                row("0.00000001", t, status="unknown"),
                row("0.00000001", t, sender=PLAYER, recipient=STRANGER),
                row("0", t),
                row("0.00000001", t),
            ]
        )
        assert stats.skipped_status == 2
        assert stats.skipped_irrelevant == 2
        assert stats.processed == 1

    def test_malformed_lines_counted(self, analyze) -> None:
        t = ts(2025, 9, 22, 1)
        stats = analyze([row("0.00000001", t), ["1", "0xbad"], row("oops", t), row("0.00000001", t)])
        assert stats.parse_errors.count == 2
        assert [line for line, _ in stats.parse_errors.samples] == [3, 4]
        assert stats.processed == 2
        assert stats.lines_read == 4


class TestDuplicates:
    def test_duplicates_reported_and_counted(self, analyze) -> None:
        t = ts(2025, 9, 22, 1)
        stats = analyze([row("0.00000001", t, tx_hash="0xabc"), row("0.00000001", t, tx_hash="0xabc")])
        assert stats.duplicates.count == 1
        assert stats.duplicates.total_duplicate_occurrences == 1
        assert stats.duplicates.lines == {"0xabc": [2, 3]}
        assert stats.all_time.sat_wheel.total_tx == 2

    def test_deduplicate_option(self, analyze) -> None:
        t = ts(2025, 9, 22, 1)
        stats = analyze(
            [row("0.00000001", t, tx_hash="0xabc"), row("0.00000001", t, tx_hash="0xABC")],
            deduplicate=True,
        )
        assert stats.duplicates.count == 1
        assert stats.skipped_duplicates == 1
        assert stats.all_time.sat_wheel.total_tx == 1


class TestAveragesAndNetwork:
    def test_averages_use_actual_days(self, analyze) -> None:
        stats = analyze(
            [
                row("0.00000001", ts(2025, 9, 23, 1)),
                row("0.00000001", ts(2025, 9, 23, 2)),
                row("0.00000001", ts(2025, 9, 22, 1)),
            ],
            network_counts={"2025-09-23": 100, "2025-09-22": 100},
        )
        avg7 = stats.averages[7]
        assert avg7 is not None
        assert avg7.actual_days == 2
        assert avg7.avg_transactions == 2
        assert avg7.avg_network_tx == 100
        assert avg7.share_percentage == Decimal("1.50")
        assert stats.network_share("2025-09-23") == Decimal("2.00")


class TestErrors:
    def test_missing_ledger(self, tmp_path: Path) -> None:
        with pytest.raises(LedgerNotFoundError):
            LedgerAnalyzer(tmp_path / f"{TRACKED}.csv", now=fixed_now).analyze()

    def test_header_only_ledger(self, ledger_path: Path) -> None:
        ledger_path.write_text(",".join(LEDGER_COLUMNS) + "\n")
        with pytest.raises(LedgerNotFoundError, match="no data rows"):
            LedgerAnalyzer(ledger_path, now=fixed_now).analyze()

    def test_address_required(self, tmp_path: Path) -> None:
        with pytest.raises(AnalysisError):
            LedgerAnalyzer(Path(""))


def test_address_from_ledger_path() -> None:
    assert address_from_ledger_path(Path("/data/0xABCD.csv")) == "0xabcd"
