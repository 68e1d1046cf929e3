"""Spawn background jobs/auth attempts and fold their events into UI state."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .activity_log import ActivityLog
from .auth import SERVICES, ServiceGrant, TokenLifecycleManager
from .config import Settings
from .errors import AuthError
from .events import (
    AuthFailed,
    AuthSucceeded,
    AuthUrlReady,
    BankResult,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobResults,
    LogLine,
    ProgressChannel,
    ProgressEvent,
)
from .jobs import JobOrchestrator
from .models import AuthState, AuthStatus, DateRange, TokenSource

logger = logging.getLogger(__name__)

MAX_PROGRESS_MESSAGES = 100

ManagerFactory = Callable[[ServiceGrant, Settings], TokenLifecycleManager]
JobFactory = Callable[[Settings, ProgressChannel, threading.Event], JobOrchestrator]

_AUTH_SUCCESS_TEXT = {
    TokenSource.AUTHORIZED: "{label} authentication successful",
    TokenSource.CACHED: "{label} authentication successful (using cached tokens)",
    TokenSource.REFRESHED: "{label} authentication successful (tokens refreshed)",
}


def _default_job_factory(
    settings: Settings, channel: ProgressChannel, cancel: threading.Event
) -> JobOrchestrator:
    return JobOrchestrator(settings, channel, cancel=cancel)


@dataclass
class DashboardState:
    """Everything the dashboard renders; mutated only by the consumer thread."""

    auth_status: dict[str, AuthStatus] = field(
        default_factory=lambda: {name: AuthStatus.not_authenticated() for name in SERVICES}
    )
    is_processing: bool = False
    job_cancelled: bool = False
    progress_messages: list[str] = field(default_factory=list)
    auth_url: Optional[str] = None
    error_message: Optional[str] = None
    total_processed: int = 0
    total_uploaded: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    billing_month: Optional[str] = None
    drive_folder: Optional[str] = None
    bank_breakdown: dict[str, BankResult] = field(default_factory=dict)

    def clear_results(self) -> None:
        self.total_processed = 0
        self.total_uploaded = 0
        self.total_failed = 0
        self.total_skipped = 0
        self.billing_month = None
        self.drive_folder = None
        self.bank_breakdown.clear()


class Supervisor:
    """Single consumer of the progress channel.

    Every task gets its own settings snapshot and its own token manager; the
    only thing shared with a task is the channel and its cancellation event.
    """

    def __init__(
        self,
        settings: Settings,
        channel: ProgressChannel | None = None,
        activity_log: ActivityLog | None = None,
        manager_factory: ManagerFactory = TokenLifecycleManager.from_settings,
        job_factory: JobFactory = _default_job_factory,
    ) -> None:
        self.settings = settings
        self.channel = channel or ProgressChannel()
        self.activity_log = activity_log
        self.manager_factory = manager_factory
        self.job_factory = job_factory
        self.state = DashboardState()
        self._job_cancel: threading.Event | None = None
        self._threads: list[threading.Thread] = []

    # -- start-up -------------------------------------------------------

    def load_persisted_logs(self, limit: int = MAX_PROGRESS_MESSAGES) -> None:
        if self.activity_log is not None:
            self.state.progress_messages = self.activity_log.recent(limit)

    def restore_cached_auth(self) -> None:
        """Mark services whose cached token is still valid as authenticated."""
        for name, grant in SERVICES.items():
            manager = self.manager_factory(grant, self.settings)
            if manager.has_valid_token():
                self.state.auth_status[name] = AuthStatus.authenticated()
                self.add_progress_message(
                    f"{grant.label} authentication restored from cached tokens"
                )

    # -- task spawning --------------------------------------------------

    @property
    def auth_in_progress(self) -> bool:
        return any(
            status.state is AuthState.AUTHENTICATING for status in self.state.auth_status.values()
        )

    def start_auth(self, service: str) -> threading.Thread | None:
        """Spawn one authorization attempt; refused while another holds the port."""
        grant = SERVICES[service]
        if self.auth_in_progress:
            self.add_progress_message("An authorization is already in progress")
            return None

        self.state.auth_status[service] = AuthStatus.authenticating()
        self.state.auth_url = None
        manager = self.manager_factory(grant, self.settings.snapshot())
        return self._spawn(self._auth_task, (manager,), name=f"auth-{service}")

    def start_job(self, date_range: DateRange) -> threading.Thread | None:
        if self.state.is_processing:
            return None
        self.state.is_processing = True
        self.state.job_cancelled = False
        self.state.error_message = None
        self.state.progress_messages.clear()
        self.state.clear_results()
        self.add_progress_message("Starting invoice processing...")

        self._job_cancel = threading.Event()
        job = self.job_factory(self.settings.snapshot(), self.channel, self._job_cancel)
        return self._spawn(job.execute, (date_range,), name="invoice-job")

    def cancel_job(self) -> bool:
        if not self.state.is_processing or self._job_cancel is None:
            return False
        self._job_cancel.set()
        self.state.job_cancelled = True
        self.add_progress_message("Cancelling job...")
        return True

    def reset_token(self, service: str) -> None:
        self.manager_factory(SERVICES[service], self.settings).reset()
        self.state.auth_status[service] = AuthStatus.not_authenticated()

    def reset_tokens(self) -> None:
        for name in SERVICES:
            self.reset_token(name)
        self.add_progress_message("All authentication tokens cleared")

    def _spawn(self, target, args, name: str) -> threading.Thread:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        self._threads.append(thread)
        thread.start()
        return thread

    def _auth_task(self, manager: TokenLifecycleManager) -> None:
        service = manager.grant.name

        def announce(url: str) -> None:
            self.channel.send(AuthUrlReady(service, url))

        try:
            result = manager.get_token(on_authorization_url=announce)
        except AuthError as exc:
            self.channel.send(AuthFailed(service, str(exc)))
            return
        except Exception as exc:  # task boundary: the dashboard must leave Authenticating
            logger.exception("%s authorization failed", manager.grant.label)
            self.channel.send(AuthFailed(service, str(exc)))
            return
        self.channel.send(AuthSucceeded(service, result.source))

    # -- consumer -------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self.state.is_processing or self.auth_in_progress

    def poll(self) -> list[ProgressEvent]:
        """Drain and apply every pending event; call once per UI tick."""
        events = self.channel.drain()
        for event in events:
            self.apply(event)
        return events

    def apply(self, event: ProgressEvent) -> None:
        state = self.state
        if isinstance(event, JobCompleted):
            state.is_processing = False
            state.job_cancelled = False
            return
        if isinstance(event, JobCancelled):
            self.add_progress_message("Job cancelled")
            return
        if state.job_cancelled and isinstance(event, (LogLine, JobResults, BankResult, JobFailed)):
            return

        if isinstance(event, LogLine):
            self.add_progress_message(event.text)
        elif isinstance(event, AuthUrlReady):
            state.auth_url = event.url
            label = SERVICES[event.service].label
            self.add_progress_message(f"Open this URL to authorize {label}: {event.url}")
        elif isinstance(event, AuthSucceeded):
            state.auth_status[event.service] = AuthStatus.authenticated()
            label = SERVICES[event.service].label
            self.add_progress_message(_AUTH_SUCCESS_TEXT[event.source].format(label=label))
        elif isinstance(event, AuthFailed):
            state.auth_status[event.service] = AuthStatus.error(event.message)
            label = SERVICES[event.service].label
            self.add_progress_message(f"{label} authentication failed: {event.message}")
        elif isinstance(event, JobResults):
            state.total_processed = event.processed
            state.total_uploaded = event.uploaded
            state.total_failed = event.failed
            state.total_skipped = event.skipped
            state.billing_month = event.month
            state.drive_folder = event.folder
        elif isinstance(event, BankResult):
            state.bank_breakdown[event.bank] = event
        elif isinstance(event, JobFailed):
            state.error_message = event.message
            self.add_progress_message(f"Error: {event.message}")

    def add_progress_message(self, message: str) -> None:
        formatted = f"{datetime.now().strftime('%H:%M:%S')}: {message}"
        self.state.progress_messages.append(formatted)
        if self.activity_log is not None:
            try:
                self.activity_log.append(formatted)
            except sqlite3.Error as exc:
                logger.warning("Could not persist activity log line: %s", exc)
        if len(self.state.progress_messages) > MAX_PROGRESS_MESSAGES:
            del self.state.progress_messages[0]

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)
