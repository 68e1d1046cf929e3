import threading

import pytest

from invoice_pilot.events import (
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
    from_wire,
    to_wire,
)
from invoice_pilot.models import TokenSource


@pytest.mark.parametrize(
    "event, wire",
    [
        (AuthUrlReady("gmail", "https://auth?x=1"), "__GMAIL_AUTH_URL__:https://auth?x=1"),
        (AuthSucceeded("drive"), "__DRIVE_AUTH_SUCCESS__"),
        (AuthSucceeded("gmail", TokenSource.CACHED), "__GMAIL_AUTH_CACHED_SUCCESS__"),
        (AuthSucceeded("drive", TokenSource.REFRESHED), "__DRIVE_AUTH_REFRESH_SUCCESS__"),
        (AuthFailed("drive", "port busy"), "__DRIVE_AUTH_ERROR__:port busy"),
        (
            JobResults(5, 3, 1, 1, "September", "billing/September"),
            "__RESULTS__:processed=5,uploaded=3,failed=1,skipped=1,"
            "month=September,folder=billing/September",
        ),
        (
            BankResult("Deutsche Bank", 2, 0, 1),
            "__BANK_RESULT__:Deutsche Bank:uploaded=2,failed=0,skipped=1",
        ),
        (JobFailed("boom"), "__JOB_ERROR__:boom"),
        (JobCancelled(), "__JOB_CANCELLED__"),
        (JobCompleted(), "__PROCESSING_COMPLETE__"),
    ],
)
def test_wire_format(event, wire):
    assert to_wire(event) == wire
    assert from_wire(wire) == event


def test_results_without_skipped_field_still_parse():
    event = from_wire("__RESULTS__:processed=2,uploaded=2,failed=0,month=May,folder=x/May")

    assert event == JobResults(2, 2, 0, 0, "May", "x/May")


def test_unknown_strings_are_log_lines():
    assert from_wire("✓ Uploaded: a.pdf") == LogLine("✓ Uploaded: a.pdf")
    assert from_wire("__GMAIL_SOMETHING_ELSE__") == LogLine("__GMAIL_SOMETHING_ELSE__")


def test_channel_preserves_order_per_producer():
    channel = ProgressChannel()

    def produce(name):
        for index in range(50):
            channel.log(f"{name}-{index}")

    threads = [threading.Thread(target=produce, args=(name,)) for name in ("a", "b")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    texts = [event.text for event in channel.drain()]
    assert [t for t in texts if t.startswith("a-")] == [f"a-{i}" for i in range(50)]
    assert [t for t in texts if t.startswith("b-")] == [f"b-{i}" for i in range(50)]
    assert channel.drain() == []
