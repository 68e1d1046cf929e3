from __future__ import annotations

import base64
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from invoice_pilot.auth import DRIVE, GMAIL
from invoice_pilot.config import Settings
from invoice_pilot.models import DriveFile, GmailMessage, MessagePart, TokenResult, TokenSource


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def google_token_response(status_code: int, payload: dict):
    """A requests response as google-auth reads it from the token endpoint."""
    response = MagicMock()
    response.status_code = status_code
    response.headers = {}
    response.content = json.dumps(payload).encode("utf-8")
    return response


@pytest.fixture
def make_settings(tmp_path: Path):
    """Factory for Settings built from env-style keyword overrides."""

    def factory(**overrides) -> Settings:
        values = {
            "GOOGLE_GMAIL_CLIENT_ID": "gmail-client",
            "GOOGLE_GMAIL_CLIENT_SECRET": "gmail-secret",
            "GOOGLE_DRIVE_CLIENT_ID": "drive-client",
            "GOOGLE_DRIVE_CLIENT_SECRET": "drive-secret",
            "GOOGLE_DRIVE_FOLDER_LOCATION": "billing/all-expenses",
            "TARGET_KEYWORDS_TO_FETCH_AND_DOWNLOAD": "invoice,fatura",
            "INVOICE_PILOT_CONFIG_DIR": str(tmp_path / "config"),
            "ACTIVITY_LOG_DB": str(tmp_path / "activity.db"),
            "FETCH_INVOICES_DAY": "",
            "SKIP_DUPLICATES": "true",
            "BANK_PATTERNS": "",
            "BANK_MATCH_MODE": "substring",
            "DEBUG_LOGS_ENABLED": "false",
            "LOG_LEVEL": "INFO",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


def make_message(message_id: str, sender: str, subject: str, attachments: list[tuple[str, str]]):
    """Message whose payload has one text body and the given (filename, attachment id) parts."""
    parts = [MessagePart(mime_type="text/plain", body_data=b64url(b"Please find attached"))]
    parts += [
        MessagePart(mime_type="application/pdf", filename=name, attachment_id=att_id)
        for name, att_id in attachments
    ]
    payload = MessagePart(
        mime_type="multipart/mixed",
        headers=[("From", sender), ("Subject", subject)],
        parts=parts,
    )
    return GmailMessage(message_id=message_id, payload=payload)


class FakeGmail:
    """In-memory stand-in for GmailClient."""

    def __init__(self) -> None:
        self.results: dict[str, list[str]] = {}
        self.failing_keywords: set[str] = set()
        self.messages: dict[str, GmailMessage] = {}
        self.attachments: dict[tuple[str, str], str] = {}
        self.queries: list[str] = []

    def search_messages(self, query: str) -> list[str]:
        self.queries.append(query)
        keyword = query.split(" ", 1)[0]
        if keyword in self.failing_keywords:
            raise requests.HTTPError("500 Server Error")
        return list(self.results.get(keyword, []))

    def get_message(self, message_id: str) -> GmailMessage:
        if message_id not in self.messages:
            raise requests.HTTPError("404 Not Found")
        return self.messages[message_id]

    def get_attachment_data(self, message_id: str, attachment_id: str) -> str:
        key = (message_id, attachment_id)
        if key not in self.attachments:
            raise requests.HTTPError("404 Not Found")
        return self.attachments[key]


class FakeDrive:
    """In-memory stand-in for DriveClient that records every call in order."""

    def __init__(self) -> None:
        self.folders: dict[tuple[str, str], str] = {}
        self.files: dict[tuple[str, str], str] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.failing_uploads: set[str] = set()
        self.failing_folders: set[str] = set()
        self.uploaded: list[tuple[str, str, bytes]] = []
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id}"

    def find_folder(self, name: str, parent_id: str) -> str | None:
        self.calls.append(("find_folder", name, parent_id))
        if name in self.failing_folders:
            raise requests.ConnectionError("drive unreachable")
        return self.folders.get((parent_id, name))

    def create_folder(self, name: str, parent_id: str) -> str:
        self.calls.append(("create_folder", name, parent_id))
        folder_id = self._new_id("folder-")
        self.folders[(parent_id, name)] = folder_id
        return folder_id

    def find_file(self, name: str, parent_id: str) -> DriveFile | None:
        self.calls.append(("find_file", name, parent_id))
        file_id = self.files.get((parent_id, name))
        return DriveFile(file_id, name) if file_id else None

    def upload_file(self, *, filename: str, file_bytes: bytes, parent_id: str, mime_type: str):
        self.calls.append(("upload_file", filename, parent_id))
        if filename in self.failing_uploads:
            raise requests.HTTPError("403 Forbidden")
        file_id = self._new_id("file-")
        self.files[(parent_id, filename)] = file_id
        self.uploaded.append((parent_id, filename, file_bytes))
        return DriveFile(file_id, filename, mime_type)


class FakeTokenManager:
    """Token manager that hands out a fixed token or raises."""

    def __init__(self, grant, token: str = "token", error: Exception | None = None) -> None:
        self.grant = grant
        self.token = token
        self.error = error
        self.reset_called = False
        self.valid = False

    def get_token(self, on_authorization_url=None, cancel=None) -> TokenResult:
        if self.error is not None:
            raise self.error
        return TokenResult(self.token, TokenSource.CACHED)

    def has_valid_token(self) -> bool:
        return self.valid

    def reset(self) -> bool:
        self.reset_called = True
        return True


@pytest.fixture
def fake_gmail() -> FakeGmail:
    return FakeGmail()


@pytest.fixture
def fake_drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def gmail_manager() -> FakeTokenManager:
    return FakeTokenManager(GMAIL, token="gmail-token")


@pytest.fixture
def drive_manager() -> FakeTokenManager:
    return FakeTokenManager(DRIVE, token="drive-token")
