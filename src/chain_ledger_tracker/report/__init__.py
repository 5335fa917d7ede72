"""Report layer - text reports, chat summaries and exports."""

from chain_ledger_tracker.report.export import (
    CALENDAR_COLUMNS,
    export_calendar_csv,
    export_json,
    export_report,
    render_calendar_csv,
)
from chain_ledger_tracker.report.formatter import (
    ReportFormatter,
    default_report_name,
    format_amount,
    truncate_address,
)

__all__ = [
    "CALENDAR_COLUMNS",
    "ReportFormatter",
    "default_report_name",
    "export_calendar_csv",
    "export_json",
    "export_report",
    "format_amount",
    "render_calendar_csv",
    "truncate_address",
]
