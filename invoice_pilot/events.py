"""Typed progress events, the queue that carries them, and the string wire adapter.

Background tasks only ever talk to the supervising loop through a
`ProgressChannel`. The sentinel string format (`__RESULTS__:...` and friends)
exists for consumers that need plain text; `to_wire` and `from_wire` convert
in both directions.
"""

from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import Union

from .models import TokenSource


@dataclass(frozen=True)
class LogLine:
    text: str


@dataclass(frozen=True)
class AuthUrlReady:
    service: str
    url: str


@dataclass(frozen=True)
class AuthSucceeded:
    service: str
    source: TokenSource = TokenSource.AUTHORIZED


@dataclass(frozen=True)
class AuthFailed:
    service: str
    message: str


@dataclass(frozen=True)
class JobResults:
    processed: int
    uploaded: int
    failed: int
    skipped: int
    month: str
    folder: str


@dataclass(frozen=True)
class BankResult:
    bank: str
    uploaded: int
    failed: int
    skipped: int = 0


@dataclass(frozen=True)
class JobFailed:
    message: str


@dataclass(frozen=True)
class JobCancelled:
    pass


@dataclass(frozen=True)
class JobCompleted:
    pass


ProgressEvent = Union[
    LogLine,
    AuthUrlReady,
    AuthSucceeded,
    AuthFailed,
    JobResults,
    BankResult,
    JobFailed,
    JobCancelled,
    JobCompleted,
]


class ProgressChannel:
    """FIFO channel: any number of producer threads, one polling consumer."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue()

    def send(self, event: ProgressEvent) -> None:
        self._queue.put(event)

    def log(self, text: str) -> None:
        self.send(LogLine(text))

    def drain(self) -> list[ProgressEvent]:
        """Return every pending event without blocking."""
        events: list[ProgressEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


_AUTH_SUFFIX = {
    TokenSource.AUTHORIZED: "AUTH_SUCCESS",
    TokenSource.CACHED: "AUTH_CACHED_SUCCESS",
    TokenSource.REFRESHED: "AUTH_REFRESH_SUCCESS",
}


def _counts(fields: dict[str, str], *names: str) -> list[int]:
    values = []
    for name in names:
        try:
            values.append(int(fields.get(name, "0")))
        except ValueError:
            values.append(0)
    return values


def _parse_fields(text: str) -> dict[str, str]:
    fields = {}
    for part in text.split(","):
        key, sep, value = part.partition("=")
        if sep:
            fields[key] = value
    return fields


def to_wire(event: ProgressEvent) -> str:
    if isinstance(event, LogLine):
        return event.text
    if isinstance(event, AuthUrlReady):
        return f"__{event.service.upper()}_AUTH_URL__:{event.url}"
    if isinstance(event, AuthSucceeded):
        return f"__{event.service.upper()}_{_AUTH_SUFFIX[event.source]}__"
    if isinstance(event, AuthFailed):
        return f"__{event.service.upper()}_AUTH_ERROR__:{event.message}"
    if isinstance(event, JobResults):
        return (
            f"__RESULTS__:processed={event.processed},uploaded={event.uploaded},"
            f"failed={event.failed},skipped={event.skipped},"
            f"month={event.month},folder={event.folder}"
        )
    if isinstance(event, BankResult):
        return (
            f"__BANK_RESULT__:{event.bank}:uploaded={event.uploaded},"
            f"failed={event.failed},skipped={event.skipped}"
        )
    if isinstance(event, JobFailed):
        return f"__JOB_ERROR__:{event.message}"
    if isinstance(event, JobCancelled):
        return "__JOB_CANCELLED__"
    if isinstance(event, JobCompleted):
        return "__PROCESSING_COMPLETE__"
    raise TypeError(f"Unknown progress event: {event!r}")


def from_wire(message: str) -> ProgressEvent:
    """Parse a wire string; anything unrecognised is a plain log line."""
    if message == "__PROCESSING_COMPLETE__":
        return JobCompleted()
    if message == "__JOB_CANCELLED__":
        return JobCancelled()
    if message.startswith("__JOB_ERROR__:"):
        return JobFailed(message.removeprefix("__JOB_ERROR__:"))
    if message.startswith("__RESULTS__:"):
        fields = _parse_fields(message.removeprefix("__RESULTS__:"))
        processed, uploaded, failed, skipped = _counts(
            fields, "processed", "uploaded", "failed", "skipped"
        )
        return JobResults(
            processed, uploaded, failed, skipped, fields.get("month", ""), fields.get("folder", "")
        )
    if message.startswith("__BANK_RESULT__:"):
        bank, _, stats = message.removeprefix("__BANK_RESULT__:").rpartition(":")
        uploaded, failed, skipped = _counts(_parse_fields(stats), "uploaded", "failed", "skipped")
        return BankResult(bank, uploaded, failed, skipped)

    for service in ("gmail", "drive"):
        prefix = f"__{service.upper()}_"
        if not message.startswith(prefix):
            continue
        rest = message.removeprefix(prefix)
        if rest.startswith("AUTH_URL__:"):
            return AuthUrlReady(service, rest.removeprefix("AUTH_URL__:"))
        if rest.startswith("AUTH_ERROR__:"):
            return AuthFailed(service, rest.removeprefix("AUTH_ERROR__:"))
        for source, suffix in _AUTH_SUFFIX.items():
            if rest == f"{suffix}__":
                return AuthSucceeded(service, source)
    return LogLine(message)
