"""Keyword-scoped Gmail searches merged into one set of message ids."""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable

import requests

from .gmail_client import GmailClient
from .models import DateRange

logger = logging.getLogger(__name__)

FALLBACK_KEYWORDS = ["invoice", "invoices", "fatura", "faturas", "statement", "bank"]


def _gmail_date(value: date) -> str:
    return f"{value.year}/{value.month}/{value.day}"


def build_search_query(date_range: DateRange, keyword: str) -> str:
    return (
        f"{keyword} has:attachment "
        f"after:{_gmail_date(date_range.start)} before:{_gmail_date(date_range.end)}"
    )


class MailSearchEngine:
    """Run one query per keyword; a failing keyword never aborts the batch."""

    def __init__(self, client: GmailClient) -> None:
        self.client = client

    def search(self, date_range: DateRange, keywords: Iterable[str]) -> set[str]:
        """Return matching message ids. The set carries no ordering."""
        keywords = [kw for kw in keywords if kw.strip()] or FALLBACK_KEYWORDS
        message_ids: set[str] = set()

        for keyword in keywords:
            query = build_search_query(date_range, keyword)
            try:
                found = self.client.search_messages(query)
            except (requests.RequestException, KeyError, TypeError, ValueError) as exc:
                logger.warning("Search for '%s' failed, skipping: %s", keyword, exc)
                continue
            logger.debug("Keyword '%s' matched %d message(s)", keyword, len(found))
            message_ids.update(found)

        return message_ids
