"""Date-range helpers for manual and scheduled runs."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from .models import DateRange
from .utils import month_name

DATE_FORMAT = "%Y-%m-%d"


def parse_date_range(value: str) -> DateRange:
    """Parse `YYYY-MM-DD:YYYY-MM-DD`; raises ValueError on any problem."""
    parts = value.split(":")
    if len(parts) != 2:
        raise ValueError("Date range must be in format YYYY-MM-DD:YYYY-MM-DD")
    try:
        start = datetime.strptime(parts[0].strip(), DATE_FORMAT).date()
    except ValueError as exc:
        raise ValueError(f"Invalid start date: {exc}") from exc
    try:
        end = datetime.strptime(parts[1].strip(), DATE_FORMAT).date()
    except ValueError as exc:
        raise ValueError(f"Invalid end date: {exc}") from exc
    return DateRange(start, end)


def previous_month_range(today: date | None = None) -> DateRange:
    """First to last day of the calendar month before `today`."""
    today = today or date.today()
    end = today.replace(day=1) - timedelta(days=1)
    return DateRange(end.replace(day=1), end)


def default_date_range(today: date | None = None) -> DateRange:
    """First day of last month through today."""
    today = today or date.today()
    return DateRange(previous_month_range(today).start, today)


def should_run_today(scheduled_day: int | None, today: date | None = None) -> bool:
    if scheduled_day is None:
        return False
    today = today or date.today()
    return today.day == scheduled_day


def billing_period_label(start: date, end: date) -> str:
    """Month name the run's invoices are filed under.

    A range spanning two months belongs to the start month only when it
    reaches less than 15 days into the end month and covers more than 20 days.
    """
    if start.month == end.month:
        return month_name(end.month)
    days_into_end_month = end.day
    total_days = (end - start).days + 1
    if days_into_end_month < 15 and total_days > 20:
        return month_name(start.month)
    return month_name(end.month)
