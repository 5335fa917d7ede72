"""Command-line entry point.

Commands:
- run: initial scan, then scheduled incremental updates until SIGINT/SIGTERM
- scan: one-shot catch-up to the chain head (or an explicit --from/--to range)
- analyze: categorize a ledger and print the report, optionally exporting it
- stats: ledger and progress summary
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from chain_ledger_tracker.analysis.analyzer import AnalysisError, LedgerAnalyzer
from chain_ledger_tracker.analysis.network import load_network_counts
from chain_ledger_tracker.analysis.thresholds import Thresholds
from chain_ledger_tracker.chain.client import RpcClientError
from chain_ledger_tracker.config import Settings, get_settings
from chain_ledger_tracker.ledger.models import LedgerError
from chain_ledger_tracker.report.export import export_calendar_csv, export_json, export_report
from chain_ledger_tracker.report.formatter import ReportFormatter, default_report_name
from chain_ledger_tracker.scanner.block_scanner import ScanSummary
from chain_ledger_tracker.scanner.tracker import TransactionTracker

logger = logging.getLogger("chain_ledger_tracker")

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chain-ledger-tracker",
        description="Track an address's transactions into a ledger and analyze them",
    )
    subparsers = parser.add_subparsers(dest="cmd", required=True, help="Command")

    subparsers.add_parser("run", help="Initial scan, then scheduled incremental updates")

    scan_parser = subparsers.add_parser("scan", help="One-shot scan to the chain head")
    scan_parser.add_argument("--from", dest="from_block", type=int, default=None, help="First block")
    scan_parser.add_argument("--to", dest="to_block", type=int, default=None, help="Last block (default: head)")

    analyze_parser = subparsers.add_parser("analyze", help="Categorize a ledger file")
    analyze_parser.add_argument("ledger", nargs="?", default=None, help="Ledger CSV (default: from TRACKED_ADDRESS)")
    analyze_parser.add_argument("--address", default=None, help="Tracked address (default: ledger file name)")
    analyze_parser.add_argument("--agent", default=None, help="Agent address (default: AGENT_ADDRESS)")
    analyze_parser.add_argument("--json", dest="json_path", default=None, help="Write the JSON export here")
    analyze_parser.add_argument("--calendar-csv", dest="calendar_path", default=None, help="Write the per-day CSV here")
    analyze_parser.add_argument("--report", dest="report_path", default=None, help="Write the text report here")
    analyze_parser.add_argument(
        "--artifacts",
        action="store_true",
        help="Write report, JSON and calendar CSV to ARTIFACTS_DIR with default names",
    )
    analyze_parser.add_argument("--summary", action="store_true", help="Print the short summary instead of the report")
    analyze_parser.add_argument(
        "--deduplicate",
        action="store_true",
        default=None,
        help="Aggregate only the first occurrence of a repeated hash",
    )
    analyze_parser.add_argument("--compact", action="store_true", help="Compact report")

    stats_parser = subparsers.add_parser("stats", help="Ledger and progress summary")
    stats_parser.add_argument("-j", "--json", action="store_true", help="JSON output")
    return parser


def _log_summary(label: str, summary: ScanSummary) -> None:
    logger.info(
        "%s: blocks %d-%d, %d processed, %d skipped, %d deferred, %d transactions written in %.1fs",
        label,
        summary.from_block,
        summary.to_block,
        summary.blocks_processed,
        summary.blocks_skipped,
        summary.blocks_failed,
        summary.transactions_written,
        summary.elapsed_seconds,
    )
    if summary.partial:
        logger.warning("%d blocks deferred to the next run", summary.blocks_failed)


async def _run(settings: Settings) -> int:
    tracker = TransactionTracker(settings)
    try:
        _log_summary("Initial scan", await tracker.initialize())
        await tracker.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, tracker.request_stop)
        await tracker.wait_stopped()
    finally:
        await tracker.stop()
    return EXIT_OK


async def _scan(settings: Settings, args: argparse.Namespace) -> int:
    tracker = TransactionTracker(settings)
    try:
        if args.from_block is None and args.to_block is None:
            summary = await tracker.initialize()
        else:
            from_block = args.from_block if args.from_block is not None else settings.tracker.start_block
            summary = await tracker.scan_range(from_block, args.to_block)
    finally:
        await tracker.stop()
    _log_summary("Scan", summary)
    return EXIT_OK


async def _analyze(settings: Settings, args: argparse.Namespace) -> int:
    ledger = Path(args.ledger) if args.ledger else settings.tracker.ledger_path
    if ledger is None:
        raise ValueError("A ledger path or TRACKED_ADDRESS is required")

    analysis = settings.analysis
    network_counts = await load_network_counts(analysis.network_tx_count)
    thresholds = Thresholds(unit=analysis.stake_unit, tolerance=analysis.float_tolerance)
    analyzer = LedgerAnalyzer(
        ledger,
        address=args.address,
        agent_address=args.agent or analysis.agent_address,
        thresholds=thresholds,
        deduplicate=analysis.deduplicate if args.deduplicate is None else args.deduplicate,
        network_counts=network_counts,
    )
    stats = analyzer.analyze()

    formatter = ReportFormatter(verbosity="compact" if args.compact else "detailed")
    sys.stdout.write(formatter.format_summary(stats) + "\n" if args.summary else formatter.format_report(stats))

    json_path, calendar_path, report_path = args.json_path, args.calendar_path, args.report_path
    if args.artifacts:
        base = analysis.artifacts_dir
        json_path = json_path or base / default_report_name(stats, "statistics.json")
        calendar_path = calendar_path or base / default_report_name(stats, "calendar.csv")
        report_path = report_path or base / default_report_name(stats)
    if json_path:
        export_json(stats, json_path)
    if calendar_path:
        export_calendar_csv(stats, calendar_path, thresholds)
    if report_path:
        export_report(stats, report_path, formatter)
    return EXIT_OK


def _stats(settings: Settings, args: argparse.Namespace) -> int:
    tracker = TransactionTracker(settings)
    data: dict[str, Any] = tracker.get_statistics()
    if args.json:
        sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")
    else:
        for key, value in data.items():
            sys.stdout.write(f"{key}: {value}\n")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration: %s", e)
        return EXIT_CONFIG_ERROR

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings.validate_requirements(command=args.cmd)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR
    logger.debug("Settings: %s", settings.redacted_summary())

    try:
        if args.cmd == "run":
            return asyncio.run(_run(settings))
        if args.cmd == "scan":
            return asyncio.run(_scan(settings, args))
        if args.cmd == "analyze":
            return asyncio.run(_analyze(settings, args))
        return _stats(settings, args)
    except (LedgerError, AnalysisError, OSError) as e:
        logger.error("%s", e)
        return EXIT_INPUT_ERROR
    except RpcClientError as e:
        logger.error("RPC unavailable: %s", e)
        return EXIT_INPUT_ERROR
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
