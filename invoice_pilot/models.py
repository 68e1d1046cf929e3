"""Typed containers shared across the pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel

# Tokens are treated as expired this many seconds before the provider says so.
EXPIRY_MARGIN_SECONDS = 300


class TokenCache(BaseModel):
    """Cached OAuth credentials for one service, persisted as JSON."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current >= self.expires_at - EXPIRY_MARGIN_SECONDS

    @classmethod
    def from_token_response(
        cls,
        payload: dict[str, Any],
        previous_refresh_token: str | None = None,
        now: float | None = None,
    ) -> "TokenCache":
        """Build a cache entry from a token endpoint response body."""
        current = time.time() if now is None else now
        expires_in = payload.get("expires_in")
        expires_at = int(current) + int(expires_in) if expires_in is not None else None
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or previous_refresh_token,
            expires_at=expires_at,
        )


class AuthState(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


@dataclass(frozen=True)
class AuthStatus:
    """Closed auth status; `message` is only set for the error state."""

    state: AuthState
    message: Optional[str] = None

    @classmethod
    def not_authenticated(cls) -> "AuthStatus":
        return cls(AuthState.NOT_AUTHENTICATED)

    @classmethod
    def authenticating(cls) -> "AuthStatus":
        return cls(AuthState.AUTHENTICATING)

    @classmethod
    def authenticated(cls) -> "AuthStatus":
        return cls(AuthState.AUTHENTICATED)

    @classmethod
    def error(cls, message: str) -> "AuthStatus":
        return cls(AuthState.ERROR, message)

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED


@dataclass(frozen=True)
class AuthSession:
    """Secrets for a single authorization attempt. Never persisted."""

    csrf_token: str
    pkce_verifier: str
    redirect_port: int


class TokenSource(str, Enum):
    CACHED = "cached"
    REFRESHED = "refreshed"
    AUTHORIZED = "authorized"


@dataclass(frozen=True)
class TokenResult:
    access_token: str
    source: TokenSource
    authorization_url: Optional[str] = None


@dataclass(frozen=True)
class DateRange:
    """Mailbox search window; Gmail's `before:` excludes the end date itself."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("End date must be after start date")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


@dataclass
class MessagePart:
    """One node of a Gmail MIME part tree."""

    mime_type: str = ""
    filename: str = ""
    attachment_id: Optional[str] = None
    body_data: Optional[str] = None
    headers: list[tuple[str, str]] = field(default_factory=list)
    parts: list["MessagePart"] = field(default_factory=list)

    def header(self, name: str) -> str:
        for key, value in self.headers:
            if key.lower() == name.lower():
                return value
        return ""


@dataclass
class GmailMessage:
    message_id: str
    payload: Optional[MessagePart]
    raw: dict[str, Any] = field(default_factory=dict)

    def header(self, name: str) -> str:
        return self.payload.header(name) if self.payload else ""


@dataclass(frozen=True)
class DriveFile:
    file_id: str
    name: str
    mime_type: Optional[str] = None


@dataclass
class InvoiceAttachment:
    """Attachment bytes coupled with the message it came from."""

    filename: str
    content: bytes
    source_message_id: str
    bank_name: Optional[str] = None

    def save_to(self, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / (Path(self.filename).name or "attachment")
        path.write_bytes(self.content)
        return path


@dataclass(frozen=True)
class Uploaded:
    file_id: str


@dataclass(frozen=True)
class SkippedDuplicate:
    existing_id: str


@dataclass(frozen=True)
class Failed:
    reason: str


UploadOutcome = Union[Uploaded, SkippedDuplicate, Failed]


@dataclass
class BatchSummary:
    """Per-file upload outcomes for one destination folder."""

    outcomes: list[tuple[str, UploadOutcome]] = field(default_factory=list)

    def record(self, filename: str, outcome: UploadOutcome) -> None:
        self.outcomes.append((filename, outcome))

    def _count(self, kind: type) -> int:
        return sum(1 for _, outcome in self.outcomes if isinstance(outcome, kind))

    @property
    def uploaded(self) -> int:
        return self._count(Uploaded)

    @property
    def skipped(self) -> int:
        return self._count(SkippedDuplicate)

    @property
    def failed(self) -> int:
        return self._count(Failed)

    @property
    def total(self) -> int:
        return len(self.outcomes)
