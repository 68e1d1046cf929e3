"""Entry point that moves Gmail invoice attachments into Google Drive."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

# Ensure project root is on sys.path when running as a script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from invoice_pilot.activity_log import ActivityLog
from invoice_pilot.config import Settings
from invoice_pilot.events import to_wire
from invoice_pilot.models import DateRange
from invoice_pilot.scheduler import (
    default_date_range,
    parse_date_range,
    previous_month_range,
    should_run_today,
)
from invoice_pilot.supervisor import Supervisor

load_dotenv()

TICK_SECONDS = 0.1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="invoice-pilot",
        description="Automated invoice fetcher from Gmail to Google Drive.",
    )
    parser.add_argument(
        "--wire", action="store_true", help="Print raw progress wire messages instead of log lines"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    manual = commands.add_parser("manual", help="Fetch invoices immediately")
    manual.add_argument(
        "-d",
        "--date-range",
        type=parse_range_arg,
        help="Custom range YYYY-MM-DD:YYYY-MM-DD (default: 1st of last month to today)",
    )

    commands.add_parser("scheduled", help="Run only on the configured FETCH_INVOICES_DAY")

    auth = commands.add_parser("auth", help="Manage authentication tokens")
    auth.add_argument("action", choices=["gmail", "drive", "reset"])

    logs = commands.add_parser("logs", help="Show the persisted activity log")
    logs.add_argument("--limit", type=int, default=50)
    return parser


def parse_range_arg(value: str) -> DateRange:
    try:
        return parse_date_range(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def pump(supervisor: Supervisor, wire: bool) -> None:
    """Drive the supervisor until every spawned task has reported back."""
    printed = len(supervisor.state.progress_messages)
    while True:
        events = supervisor.poll()
        if wire:
            for event in events:
                print(to_wire(event), flush=True)
        else:
            messages = supervisor.state.progress_messages
            for line in messages[min(printed, len(messages)):]:
                print(line, flush=True)
            printed = len(messages)
        if not supervisor.busy:
            return
        time.sleep(TICK_SECONDS)


def print_summary(supervisor: Supervisor) -> int:
    state = supervisor.state
    if state.error_message:
        print(f"\nFailed: {state.error_message}")
        return 1
    if state.billing_month is None:
        return 0
    print("\n=== Summary ===")
    print(f"Total files:    {state.total_processed}")
    print(f"Uploaded:       {state.total_uploaded}")
    print(f"Skipped:        {state.total_skipped}")
    print(f"Failed:         {state.total_failed}")
    print(f"Billing month:  {state.billing_month}")
    print(f"Folder:         {state.drive_folder}")
    for bank, result in state.bank_breakdown.items():
        print(f"  {bank}: {result.uploaded} uploaded, {result.failed} failed, {result.skipped} skipped")
    return 0


def run_job(supervisor: Supervisor, date_range: DateRange, wire: bool) -> int:
    supervisor.start_job(date_range)
    try:
        pump(supervisor, wire)
    except KeyboardInterrupt:
        supervisor.cancel_job()
        pump(supervisor, wire)
        return 130
    return print_summary(supervisor)


def run_auth(supervisor: Supervisor, action: str, wire: bool) -> int:
    if action == "reset":
        supervisor.reset_tokens()
        print("All tokens cleared! Run manual or scheduled mode to re-authenticate.")
        return 0
    supervisor.reset_token(action)
    supervisor.start_auth(action)
    pump(supervisor, wire)
    status = supervisor.state.auth_status[action]
    if status.is_authenticated:
        print(f"{action.capitalize()} re-authenticated successfully!")
        return 0
    print(f"Authentication failed: {status.message}")
    return 1


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.effective_log_level)
    activity_log = ActivityLog(settings.activity_log_db)

    if args.command == "logs":
        for line in activity_log.recent(args.limit):
            print(line)
        return 0

    supervisor = Supervisor(settings, activity_log=activity_log)

    if args.command == "manual":
        date_range = args.date_range or default_date_range()
        print(f"Date range: {date_range.start} to {date_range.end}")
        return run_job(supervisor, date_range, args.wire)

    if args.command == "scheduled":
        if not should_run_today(settings.fetch_invoices_day):
            print(
                f"Not scheduled to run today (runs on day {settings.fetch_invoices_day}, "
                f"today is day {date.today().day})"
            )
            return 0
        date_range = previous_month_range()
        print(f"Date range: {date_range.start} to {date_range.end}")
        return run_job(supervisor, date_range, args.wire)

    return run_auth(supervisor, args.action, args.wire)


if __name__ == "__main__":
    sys.exit(main())
