"""Gmail REST helper focused on message search and attachment retrieval."""

from __future__ import annotations

import logging
from typing import Any

import requests
from requests import Response

from .models import GmailMessage, MessagePart

logger = logging.getLogger(__name__)


class GmailClient:
    """Thin bearer-token wrapper around the Gmail v1 API."""

    API_BASE = "https://gmail.googleapis.com/gmail/v1"

    def __init__(
        self, access_token: str, session: requests.Session | None = None, timeout: int = 30
    ) -> None:
        self.access_token = access_token
        self.session = session or requests.Session()
        self.timeout = timeout

    def search_messages(self, query: str) -> list[str]:
        """Return ids of every message matching a Gmail search query."""
        url = f"{self.API_BASE}/users/me/messages"
        params: dict[str, Any] = {"q": query}
        message_ids: list[str] = []

        while True:
            logger.debug("Searching Gmail: %s", params)
            payload = self._get(url, params=params).json()
            for item in payload.get("messages") or []:
                if isinstance(item, dict) and item.get("id"):
                    message_ids.append(item["id"])
                else:
                    logger.warning("Ignoring malformed search result: %r", item)
            page_token = payload.get("nextPageToken")
            if not page_token:
                return message_ids
            params = {"q": query, "pageToken": page_token}

    def get_message(self, message_id: str) -> GmailMessage:
        url = f"{self.API_BASE}/users/me/messages/{message_id}"
        raw = self._get(url).json()
        payload = raw.get("payload")
        return GmailMessage(
            message_id=raw.get("id", message_id),
            payload=self._to_part(payload) if payload else None,
            raw=raw,
        )

    def get_attachment_data(self, message_id: str, attachment_id: str) -> str:
        """Return the still-encoded attachment body."""
        url = f"{self.API_BASE}/users/me/messages/{message_id}/attachments/{attachment_id}"
        payload = self._get(url).json()
        return payload.get("data") or ""

    def _get(self, url: str, params: dict | None = None) -> Response:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        resp = self.session.get(url, headers=headers, params=params, timeout=self.timeout)
        if resp.status_code >= 400:
            logger.error("Gmail request failed (%s): %s", resp.status_code, resp.text)
            resp.raise_for_status()
        return resp

    @classmethod
    def _to_part(cls, raw: dict) -> MessagePart:
        body = raw.get("body") or {}
        return MessagePart(
            mime_type=raw.get("mimeType", ""),
            filename=raw.get("filename") or "",
            attachment_id=body.get("attachmentId"),
            body_data=body.get("data"),
            headers=[(h.get("name", ""), h.get("value", "")) for h in raw.get("headers") or []],
            parts=[cls._to_part(child) for child in raw.get("parts") or []],
        )
