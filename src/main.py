"""
Ticketing Access Control - Main Entry Point

Runs an access control reconciliation for an event from the command line,
writes the QR ledger, missing QR ledger and summary reports, and flips a QR
code's scanned flag on behalf of the configured user.
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from dotenv import load_dotenv

from access_control import AccessControlService
from backend_client import BackendError
from metrics import metrics
from models import Settings
from transaction_aggregator import ChannelFetchError


logger = structlog.get_logger()


def setup_logging(level: str = "INFO") -> None:
    """
    Configure structured JSON logging for production observability.

    Sets up structlog with:
    - Timestamp formatting
    - Log level inclusion
    - Stack trace rendering
    - Exception info formatting
    - JSON output for log aggregation
    """
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stdout,
    )


def run_reconcile(
    service: AccessControlService, event_id: str, output_dir: Path
) -> int:
    try:
        result = asyncio.run(service.get_event_access_control(event_id))
    except ChannelFetchError as e:
        logger.error("Reconciliation aborted", event_id=event_id, error=e.message)
        return 1

    qr_csv, missing_csv, summary_text, json_path = (
        service.report_generator.generate_all_reports(result, output_dir)
    )
    print(summary_text)
    logger.info(
        "Reports generated locally",
        qr_csv=str(qr_csv.as_posix()),
        missing_csv=str(missing_csv.as_posix()),
        json_path=str(json_path.as_posix()),
    )
    return 0 if result.is_complete else 2


def run_accounting(service: AccessControlService, event_id: str) -> int:
    summary = asyncio.run(service.get_event_accounting(event_id))
    print(summary.model_dump_json(indent=2))
    return 0


def run_toggle_scan(
    service: AccessControlService, qr_id: str, scanned: bool, access_token: Optional[str]
) -> int:
    result = service.toggle_scan_status(qr_id, scanned, access_token)
    if not result.success:
        logger.error("Scan toggle failed", qr_id=qr_id, error=result.error)
        return 1
    logger.info("Scan toggle succeeded", qr_id=qr_id, scanned=result.new_status)
    return 0


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"Expected true or false, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ticketing access control reconciliation.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py reconcile --event-id 8f0c...
  python main.py accounting --event-id 8f0c...
  python main.py toggle-scan --qr-id 51ab... --scanned false
        """,
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Expose Prometheus metrics while the command runs.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconcile = subparsers.add_parser(
        "reconcile", help="Compare sold tickets against issued QR codes for an event."
    )
    reconcile.add_argument("--event-id", required=True, help="Event to reconcile.")
    reconcile.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory for CSV/JSON reports. Defaults to REPORT_OUTPUT_DIR.",
    )

    accounting = subparsers.add_parser(
        "accounting", help="Revenue rollup for an event's paid transactions."
    )
    accounting.add_argument("--event-id", required=True, help="Event to summarize.")

    toggle = subparsers.add_parser(
        "toggle-scan", help="Flip a QR code's scanned flag as the configured user."
    )
    toggle.add_argument("--qr-id", required=True, help="QR code to update.")
    toggle.add_argument(
        "--scanned",
        type=_parse_bool,
        required=True,
        help="Current scanned flag of the code (true/false).",
    )
    toggle.add_argument(
        "--access-token",
        default=None,
        help="Access token of the acting user. Defaults to SUPABASE_ACCESS_TOKEN.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
    except Exception as e:
        logger.error(
            "Failed to load environment settings. Check your .env file.", error=str(e)
        )
        return 1

    setup_logging(settings.LOG_LEVEL)
    if not settings.SUPABASE_URL:
        logger.error("SUPABASE_URL is not configured")
        return 1

    if args.metrics:
        metrics.port = settings.METRICS_PORT
        metrics.start_metrics_server()

    service = AccessControlService.from_settings(settings)
    try:
        if args.command == "reconcile":
            output_dir = args.output_dir or settings.REPORT_OUTPUT_DIR
            return run_reconcile(service, args.event_id, output_dir)
        if args.command == "accounting":
            return run_accounting(service, args.event_id)
        return run_toggle_scan(service, args.qr_id, args.scanned, args.access_token)
    except BackendError as e:
        logger.error("Backend unavailable", command=args.command, error=e.message)
        return 1
    finally:
        service.client.close()


if __name__ == "__main__":
    sys.exit(main())
