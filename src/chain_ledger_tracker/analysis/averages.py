"""Rolling, weighted and moving averages over per-day statistics."""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from datetime import date, timedelta

from chain_ledger_tracker.analysis.models import DailyTrend, PeriodAverages, PeriodStats, share_percentage

AVERAGE_PERIODS: tuple[int, ...] = (7, 14, 21, 28)
DEFAULT_MOVING_WINDOW = 7

TREND_METRICS: dict[str, Callable[[PeriodStats], int]] = {
    "transactions": lambda d: d.total_transactions,
    "satWheel": lambda d: d.sat_wheel.total_tx,
}


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def period_averages(
    daily: Mapping[str, PeriodStats],
    *,
    yesterday: date,
    day_count: int,
    network_counts: Mapping[str, int] | None = None,
) -> PeriodAverages | None:
    """Average the complete days in `[yesterday - (day_count - 1), yesterday]`.

    The denominator is the number of days actually present, never
    `day_count`. Returns None when no day in the period has data.
    """
    if day_count <= 0:
        return None
    network_counts = network_counts or {}
    first = (yesterday - timedelta(days=day_count - 1)).isoformat()
    last = yesterday.isoformat()
    days = sorted(d for d in daily if first <= d <= last)
    if not days:
        return None

    total_tx = wheel = users = agent = guess = network = 0
    incoming_wallets: set[str] = set()
    for day in days:
        stats = daily[day]
        total_tx += stats.total_transactions
        wheel += stats.sat_wheel.total_tx
        users += stats.sat_wheel.user_tx
        agent += stats.sat_wheel.one_unit_agent_tx
        guess += stats.guess_the_block.total_tx
        network += network_counts.get(day, 0)
        incoming_wallets.update(stats.all_incoming.wallets)

    n = len(days)
    return PeriodAverages(
        day_count=day_count,
        actual_days=n,
        avg_transactions=_round_half_up(total_tx / n),
        avg_unique_wallets=_round_half_up(len(incoming_wallets) / n),
        avg_wheel_tx=_round_half_up(wheel / n),
        avg_user_tx=_round_half_up(users / n),
        avg_agent_tx=_round_half_up(agent / n),
        avg_guess_the_block=_round_half_up(guess / n),
        avg_network_tx=_round_half_up(network / n),
        share_percentage=share_percentage(total_tx, network),
    )


def all_period_averages(
    daily: Mapping[str, PeriodStats],
    *,
    yesterday: date,
    network_counts: Mapping[str, int] | None = None,
    periods: Sequence[int] = AVERAGE_PERIODS,
) -> dict[int, PeriodAverages | None]:
    return {
        n: period_averages(daily, yesterday=yesterday, day_count=n, network_counts=network_counts)
        for n in periods
    }


def weighted_average(values: Sequence[float]) -> float:
    """Recency-weighted mean of a series ordered oldest to newest.

    The oldest value has weight 1 and the newest weight N.
    """
    if not values:
        return 0.0
    numerator = sum(v * (i + 1) for i, v in enumerate(values))
    denominator = len(values) * (len(values) + 1) / 2
    return numerator / denominator


def moving_average_series(values: Sequence[float], window: int = DEFAULT_MOVING_WINDOW) -> list[float]:
    """Trailing moving average; the first points average over fewer days."""
    if window < 1:
        raise ValueError("window must be >= 1")
    out: list[float] = []
    running = 0.0
    for i, v in enumerate(values):
        running += v
        if i >= window:
            running -= values[i - window]
        out.append(running / min(i + 1, window))
    return out


def day_range(first: date, last: date) -> list[str]:
    """Every ISO day from `first` to `last`, inclusive."""
    days: list[str] = []
    current = first
    while current <= last:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days


def daily_counts(
    daily: Mapping[str, PeriodStats],
    days: Sequence[str],
    metric: str = "transactions",
) -> list[int]:
    """Per-day values of `metric` for `days`, zero for days without data."""
    value = TREND_METRICS[metric]
    return [value(daily[d]) if d in daily else 0 for d in days]


def daily_trend(
    daily: Mapping[str, PeriodStats],
    *,
    yesterday: date,
    metric: str = "transactions",
    window: int = DEFAULT_MOVING_WINDOW,
) -> DailyTrend | None:
    """Flat, weighted and moving averages of one counter over the complete days.

    Flat and weighted averages run over the days that have data, the last
    seven of them for the recent figures. The moving average runs over
    every calendar day, counting days without data as zero.
    """
    days = [d for d in sorted(daily) if d <= yesterday.isoformat()]
    if not days:
        return None
    values = daily_counts(daily, days, metric)
    recent = values[-7:]
    calendar = day_range(date.fromisoformat(days[0]), yesterday)
    moving = moving_average_series(daily_counts(daily, calendar, metric), window)
    return DailyTrend(
        metric=metric,
        days=len(values),
        average_all_time=sum(values) / len(values),
        average_last_7_days=sum(recent) / len(recent),
        weighted_all_time=weighted_average(values),
        weighted_last_7_days=weighted_average(recent),
        moving_window=window,
        moving_average=dict(zip(calendar, moving)),
    )


def all_daily_trends(
    daily: Mapping[str, PeriodStats],
    *,
    yesterday: date,
    window: int = DEFAULT_MOVING_WINDOW,
) -> dict[str, DailyTrend]:
    trends: dict[str, DailyTrend] = {}
    for metric in TREND_METRICS:
        trend = daily_trend(daily, yesterday=yesterday, metric=metric, window=window)
        if trend is not None:
            trends[metric] = trend
    return trends
