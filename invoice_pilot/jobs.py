"""One run of the pipeline: authorize, search, harvest, file into Drive."""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import requests

from .attachments import AttachmentHarvester
from .auth import DRIVE, GMAIL, TokenLifecycleManager
from .bank_classifier import BankClassifier
from .config import Settings
from .drive_client import DriveClient
from .errors import AuthError, AuthorizationCancelled, InvoicePilotError, JobCancelledError
from .events import (
    AuthFailed,
    AuthSucceeded,
    AuthUrlReady,
    BankResult,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobResults,
    ProgressChannel,
)
from .folders import FolderResolver
from .gmail_client import GmailClient
from .mail_search import MailSearchEngine
from .models import BatchSummary, DateRange, Failed, InvoiceAttachment
from .scheduler import billing_period_label
from .uploads import UploadEngine

logger = logging.getLogger(__name__)

GENERAL_GROUP = "General"


@dataclass
class JobReport:
    processed: int = 0
    month: str | None = None
    folder: str | None = None
    banks: dict[str, BatchSummary] = field(default_factory=dict)

    @property
    def uploaded(self) -> int:
        return sum(summary.uploaded for summary in self.banks.values())

    @property
    def failed(self) -> int:
        return sum(summary.failed for summary in self.banks.values())

    @property
    def skipped(self) -> int:
        return sum(summary.skipped for summary in self.banks.values())


def group_by_bank(attachments: list[InvoiceAttachment]) -> dict[str, list[InvoiceAttachment]]:
    groups: dict[str, list[InvoiceAttachment]] = {}
    for attachment in attachments:
        groups.setdefault(attachment.bank_name or GENERAL_GROUP, []).append(attachment)
    return groups


class JobOrchestrator:
    """Sequence every pipeline step for one date range.

    The orchestrator owns its settings snapshot and reports exclusively
    through the progress channel. `cancel` is checked before each network step.
    """

    def __init__(
        self,
        settings: Settings,
        channel: ProgressChannel,
        *,
        gmail_auth: TokenLifecycleManager | None = None,
        drive_auth: TokenLifecycleManager | None = None,
        gmail_client_factory: Callable[[str], GmailClient] = GmailClient,
        drive_client_factory: Callable[[str], DriveClient] = DriveClient,
        cancel: threading.Event | None = None,
    ) -> None:
        self.settings = settings.snapshot()
        self.channel = channel
        self.gmail_auth = gmail_auth or TokenLifecycleManager.from_settings(GMAIL, self.settings)
        self.drive_auth = drive_auth or TokenLifecycleManager.from_settings(DRIVE, self.settings)
        self.gmail_client_factory = gmail_client_factory
        self.drive_client_factory = drive_client_factory
        self.cancel = cancel or threading.Event()

    def execute(self, date_range: DateRange) -> JobReport | None:
        """Task body: run the job and always finish with a terminal event."""
        try:
            return self.run(date_range)
        except JobCancelledError:
            logger.info("Job cancelled")
            self.channel.send(JobCancelled())
        except AuthError as exc:
            self.channel.send(JobFailed(f"Authentication failed: {exc}"))
        except Exception as exc:  # task boundary: every error must reach the consumer
            logger.exception("Job failed")
            self.channel.send(JobFailed(str(exc)))
        finally:
            self.channel.send(JobCompleted())
        return None

    def run(self, date_range: DateRange) -> JobReport:
        log = self.channel.log
        report = JobReport()
        log("Loading configuration...")
        log(f"Processing date range: {date_range.start} to {date_range.end}")

        log("Authenticating with Gmail...")
        gmail = self.gmail_client_factory(self._authenticate(self.gmail_auth))
        log("Authenticating with Google Drive...")
        drive = self.drive_client_factory(self._authenticate(self.drive_auth))

        self._checkpoint()
        log("Searching Gmail for invoices...")
        message_ids = MailSearchEngine(gmail).search(date_range, self.settings.target_keywords)
        if not message_ids:
            log("No invoices found in the specified date range")
            return report

        attachments = self._harvest(gmail, sorted(message_ids))
        if not attachments:
            log("No attachments found in messages")
            return report
        report.processed = len(attachments)
        log(f"Downloaded {len(attachments)} attachment(s)")

        log("Preparing upload...")
        report.month = billing_period_label(date_range.start, date_range.end)
        log(f"Billing month detected: {report.month}")
        report.folder = f"{self.settings.drive_folder_path}/{report.month}"

        resolver = FolderResolver(drive, progress=log)
        self._checkpoint()
        monthly_folder_id = resolver.resolve(report.folder)

        temp_dir = Path(tempfile.mkdtemp(prefix="invoice-agent-"))
        uploader = UploadEngine(
            drive,
            skip_duplicates=self.settings.skip_duplicates,
            temp_dir=temp_dir,
            progress=log,
        )
        try:
            log("Uploading to Google Drive...")
            for bank, items in group_by_bank(attachments).items():
                log(f"Processing bank: {bank}")
                summary = self._upload_group(
                    resolver, uploader, report.folder, monthly_folder_id, bank, items
                )
                report.banks[bank] = summary
                log(
                    f"  {bank}: {summary.uploaded} uploaded, {summary.failed} failed, "
                    f"{summary.skipped} skipped"
                )
        finally:
            log("Cleaning up temporary files...")
            shutil.rmtree(temp_dir, ignore_errors=True)

        self.channel.send(
            JobResults(
                processed=report.processed,
                uploaded=report.uploaded,
                failed=report.failed,
                skipped=report.skipped,
                month=report.month,
                folder=report.folder,
            )
        )
        for bank, summary in report.banks.items():
            self.channel.send(BankResult(bank, summary.uploaded, summary.failed, summary.skipped))
        log("Processing completed successfully!")
        return report

    def _checkpoint(self) -> None:
        if self.cancel.is_set():
            raise JobCancelledError("Job cancelled")

    def _authenticate(self, manager: TokenLifecycleManager) -> str:
        self._checkpoint()
        service = manager.grant.name

        def announce(url: str) -> None:
            self.channel.send(AuthUrlReady(service, url))

        try:
            result = manager.get_token(on_authorization_url=announce, cancel=self.cancel)
        except AuthorizationCancelled as exc:
            raise JobCancelledError("Job cancelled") from exc
        except AuthError as exc:
            self.channel.send(AuthFailed(service, str(exc)))
            raise
        self.channel.send(AuthSucceeded(service, result.source))
        return result.access_token

    def _harvest(self, gmail: GmailClient, message_ids: list[str]) -> list[InvoiceAttachment]:
        log = self.channel.log
        log(f"Found {len(message_ids)} messages with attachments")
        log("Downloading attachments...")
        classifier = BankClassifier(
            self.settings.bank_patterns, match_mode=self.settings.bank_match_mode
        )
        harvester = AttachmentHarvester(gmail, classifier, progress=log)

        attachments: list[InvoiceAttachment] = []
        for index, message_id in enumerate(message_ids, start=1):
            self._checkpoint()
            log(f"Processing message {index}/{len(message_ids)}")
            try:
                attachments.extend(harvester.harvest(message_id))
            except (requests.RequestException, InvoicePilotError) as exc:
                logger.warning("Failed to process message %s: %s", message_id, exc)
                log(f"Failed to process message {message_id}: {exc}")
        return attachments

    def _upload_group(
        self,
        resolver: FolderResolver,
        uploader: UploadEngine,
        monthly_path: str,
        monthly_folder_id: str,
        bank: str,
        items: list[InvoiceAttachment],
    ) -> BatchSummary:
        summary = BatchSummary()
        if bank == GENERAL_GROUP:
            folder_id = monthly_folder_id
        else:
            self._checkpoint()
            try:
                folder_id = resolver.resolve(f"{monthly_path}/{bank}")
            except (requests.RequestException, ValueError) as exc:
                logger.warning("Could not resolve folder for %s: %s", bank, exc)
                self.channel.log(f"Failed to prepare folder for {bank}: {exc}")
                for attachment in items:
                    summary.record(attachment.filename, Failed(f"folder unavailable: {exc}"))
                return summary

        for attachment in items:
            self._checkpoint()
            summary.record(attachment.filename, uploader.upload(attachment, folder_id))
        return summary
