import threading
from datetime import date

import pytest
from conftest import b64url, make_message

from invoice_pilot.errors import AuthorizationCancelled, PortInUseError
from invoice_pilot.events import (
    AuthFailed,
    AuthSucceeded,
    BankResult,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobResults,
    LogLine,
    ProgressChannel,
)
from invoice_pilot.jobs import GENERAL_GROUP, JobOrchestrator, group_by_bank
from invoice_pilot.models import DateRange, InvoiceAttachment, TokenSource

SEPTEMBER = DateRange(date(2026, 9, 1), date(2026, 9, 30))
PERIOD_FOLDER = "billing/all-expenses/September"


@pytest.fixture
def mailbox(fake_gmail):
    fake_gmail.results = {"invoice": ["m2", "m1"], "fatura": ["m1"]}
    fake_gmail.messages["m1"] = make_message(
        "m1", "Revolut Ltd <no-reply@revolut.com>", "Your statement", [("stmt.pdf", "a1")]
    )
    fake_gmail.messages["m2"] = make_message(
        "m2", "Acme Corp <ap@acme.io>", "Invoice 42", [("inv.pdf", "a2")]
    )
    fake_gmail.attachments[("m1", "a1")] = b64url(b"%PDF revolut")
    fake_gmail.attachments[("m2", "a2")] = b64url(b"%PDF acme")
    return fake_gmail


@pytest.fixture
def build_job(settings, mailbox, fake_drive, gmail_manager, drive_manager):
    tokens = {}

    def gmail_factory(token):
        tokens["gmail"] = token
        return mailbox

    def drive_factory(token):
        tokens["drive"] = token
        return fake_drive

    def factory(channel, cancel=None):
        job = JobOrchestrator(
            settings,
            channel,
            gmail_auth=gmail_manager,
            drive_auth=drive_manager,
            gmail_client_factory=gmail_factory,
            drive_client_factory=drive_factory,
            cancel=cancel,
        )
        job.tokens = tokens
        return job

    return factory


def non_log(events):
    return [event for event in events if not isinstance(event, LogLine)]


def log_text(events):
    return [event.text for event in events if isinstance(event, LogLine)]


def test_full_run_files_attachments_by_month_and_bank(build_job, fake_drive):
    channel = ProgressChannel()
    job = build_job(channel)

    report = job.execute(SEPTEMBER)
    events = channel.drain()

    assert job.tokens == {"gmail": "gmail-token", "drive": "drive-token"}
    assert report.processed == 2
    assert report.month == "September"
    assert report.folder == PERIOD_FOLDER
    assert non_log(events) == [
        AuthSucceeded("gmail", TokenSource.CACHED),
        AuthSucceeded("drive", TokenSource.CACHED),
        JobResults(2, 2, 0, 0, "September", PERIOD_FOLDER),
        BankResult("Revolut", 1, 0, 0),
        BankResult(GENERAL_GROUP, 1, 0, 0),
        JobCompleted(),
    ]

    root = fake_drive.folders[("root", "billing")]
    expenses = fake_drive.folders[(root, "all-expenses")]
    month = fake_drive.folders[(expenses, "September")]
    revolut = fake_drive.folders[(month, "Revolut")]
    assert sorted(fake_drive.uploaded) == sorted(
        [
            (revolut, "revolut-ltd-stmt.pdf", b"%PDF revolut"),
            (month, "acme-corp-inv.pdf", b"%PDF acme"),
        ]
    )
    assert "Processing completed successfully!" in log_text(events)


def test_second_run_skips_everything_already_uploaded(build_job, fake_drive):
    build_job(ProgressChannel()).execute(SEPTEMBER)
    channel = ProgressChannel()

    build_job(channel).execute(SEPTEMBER)

    results = [event for event in channel.drain() if isinstance(event, JobResults)]
    assert results == [JobResults(2, 0, 0, 2, "September", PERIOD_FOLDER)]
    assert len(fake_drive.uploaded) == 2


def test_no_matches_finishes_without_results(build_job, mailbox):
    mailbox.results = {}
    channel = ProgressChannel()

    build_job(channel).execute(SEPTEMBER)
    events = channel.drain()

    assert not any(isinstance(event, JobResults) for event in events)
    assert "No invoices found in the specified date range" in log_text(events)
    assert events[-1] == JobCompleted()


def test_unreadable_message_is_skipped(build_job, mailbox):
    mailbox.results["invoice"].append("m3")
    channel = ProgressChannel()

    report = build_job(channel).execute(SEPTEMBER)

    assert report.processed == 2
    assert any("Failed to process message m3" in line for line in log_text(channel.drain()))


def test_bank_folder_failure_fails_only_that_group(build_job, fake_drive):
    fake_drive.failing_folders = {"Revolut"}
    channel = ProgressChannel()

    build_job(channel).execute(SEPTEMBER)
    events = non_log(channel.drain())

    assert JobResults(2, 1, 1, 0, "September", PERIOD_FOLDER) in events
    assert BankResult("Revolut", 0, 1, 0) in events
    assert BankResult(GENERAL_GROUP, 1, 0, 0) in events


def test_period_folder_failure_fails_the_job(build_job, fake_drive):
    fake_drive.failing_folders = {"September"}
    channel = ProgressChannel()

    assert build_job(channel).execute(SEPTEMBER) is None

    events = non_log(channel.drain())
    assert isinstance(events[-2], JobFailed)
    assert "drive unreachable" in events[-2].message
    assert events[-1] == JobCompleted()
    assert fake_drive.uploaded == []


def test_auth_failure_stops_before_searching(build_job, gmail_manager, mailbox):
    gmail_manager.error = PortInUseError("Failed to bind to port 8080")
    channel = ProgressChannel()

    build_job(channel).execute(SEPTEMBER)

    assert non_log(channel.drain()) == [
        AuthFailed("gmail", "Failed to bind to port 8080"),
        JobFailed("Authentication failed: Failed to bind to port 8080"),
        JobCompleted(),
    ]
    assert mailbox.queries == []


def test_cancelled_job_reports_cancellation(build_job, mailbox):
    cancel = threading.Event()
    cancel.set()
    channel = ProgressChannel()

    build_job(channel, cancel=cancel).execute(SEPTEMBER)

    assert non_log(channel.drain()) == [JobCancelled(), JobCompleted()]
    assert mailbox.queries == []


def test_cancel_during_authorization_reports_cancellation(build_job, gmail_manager, mailbox):
    gmail_manager.error = AuthorizationCancelled("Authorization cancelled")
    channel = ProgressChannel()

    build_job(channel).execute(SEPTEMBER)

    assert non_log(channel.drain()) == [JobCancelled(), JobCompleted()]
    assert mailbox.queries == []


def test_group_by_bank_uses_general_for_unclassified():
    attachments = [
        InvoiceAttachment("a.pdf", b"", "m1", "Wise"),
        InvoiceAttachment("b.pdf", b"", "m2"),
        InvoiceAttachment("c.pdf", b"", "m3", "Wise"),
    ]

    groups = group_by_bank(attachments)

    assert list(groups) == ["Wise", GENERAL_GROUP]
    assert [a.filename for a in groups["Wise"]] == ["a.pdf", "c.pdf"]
