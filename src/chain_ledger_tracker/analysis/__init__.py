"""Analysis layer - ledger categorization and windowed statistics."""

from chain_ledger_tracker.analysis.analyzer import (
    AnalysisError,
    LedgerAnalyzer,
    address_from_ledger_path,
)
from chain_ledger_tracker.analysis.averages import (
    AVERAGE_PERIODS,
    moving_average_series,
    period_averages,
    weighted_average,
)
from chain_ledger_tracker.analysis.models import (
    CategoryStats,
    DuplicateReport,
    PeriodAverages,
    PeriodStats,
    Statistics,
    TopUpRecord,
    WalletStats,
    WheelStats,
    share_percentage,
)
from chain_ledger_tracker.analysis.network import NetworkCountError, load_network_counts
from chain_ledger_tracker.analysis.thresholds import Category, Thresholds

__all__ = [
    "AVERAGE_PERIODS",
    "AnalysisError",
    "Category",
    "CategoryStats",
    "DuplicateReport",
    "LedgerAnalyzer",
    "NetworkCountError",
    "PeriodAverages",
    "PeriodStats",
    "Statistics",
    "Thresholds",
    "TopUpRecord",
    "WalletStats",
    "WheelStats",
    "address_from_ledger_path",
    "load_network_counts",
    "moving_average_series",
    "period_averages",
    "share_percentage",
    "weighted_average",
]
