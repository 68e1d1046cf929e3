"""Utility helpers shared across modules."""

from __future__ import annotations

import calendar
from datetime import UTC, datetime


def utc_now_iso() -> str:
    """Current instant as an ISO string with a UTC offset."""
    return datetime.now(tz=UTC).isoformat()


def title_case(value: str) -> str:
    """'deutsche bank' -> 'Deutsche Bank'; collapses surrounding whitespace."""
    return " ".join(word[:1].upper() + word[1:].lower() for word in value.split())


def sanitize_token(name: str) -> str:
    """Lowercase alphanumeric words joined by '-': 'LangFuse GmbH' -> 'langfuse-gmbh'."""
    chars = []
    for char in name.lower():
        if char.isalnum():
            chars.append(char)
        elif char.isspace():
            chars.append("-")
    return "-".join(part for part in "".join(chars).split("-") if part)


def escape_query_value(value: str) -> str:
    """Escape a literal for a Drive `q` expression."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def month_name(month: int) -> str:
    return calendar.month_name[month]
