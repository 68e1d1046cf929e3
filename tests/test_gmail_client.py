from unittest.mock import MagicMock

import pytest
import requests

from invoice_pilot.gmail_client import GmailClient


def make_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


def test_search_follows_every_page():
    session = MagicMock()
    session.get.side_effect = [
        make_response({"messages": [{"id": "m1"}, {"id": "m2"}], "nextPageToken": "p2"}),
        make_response({"messages": [{"id": "m3"}]}),
    ]
    client = GmailClient("token", session=session)

    assert client.search_messages("invoice has:attachment") == ["m1", "m2", "m3"]

    first, second = session.get.call_args_list
    assert first.kwargs["params"] == {"q": "invoice has:attachment"}
    assert second.kwargs["params"] == {"q": "invoice has:attachment", "pageToken": "p2"}
    assert first.kwargs["headers"] == {"Authorization": "Bearer token"}


def test_search_without_matches_returns_empty_list():
    session = MagicMock()
    session.get.return_value = make_response({"resultSizeEstimate": 0})

    assert GmailClient("token", session=session).search_messages("q") == []


def test_search_skips_malformed_items_on_later_pages():
    session = MagicMock()
    session.get.side_effect = [
        make_response({"messages": [{"id": "m1"}, {"threadId": "t2"}], "nextPageToken": "p2"}),
        make_response({"messages": None, "nextPageToken": "p3"}),
        make_response({"messages": ["m3", {"id": ""}, {"id": "m4"}]}),
    ]

    assert GmailClient("token", session=session).search_messages("q") == ["m1", "m4"]


def test_get_message_builds_part_tree():
    session = MagicMock()
    session.get.return_value = make_response(
        {
            "id": "m1",
            "payload": {
                "mimeType": "multipart/mixed",
                "headers": [{"name": "From", "value": "Acme <ap@acme.io>"}],
                "parts": [
                    {"mimeType": "text/plain", "body": {"data": "aGk"}},
                    {
                        "mimeType": "application/pdf",
                        "filename": "inv.pdf",
                        "body": {"attachmentId": "att-1", "size": 10},
                    },
                ],
            },
        }
    )

    message = GmailClient("token", session=session).get_message("m1")

    assert message.message_id == "m1"
    assert message.header("from") == "Acme <ap@acme.io>"
    text, pdf = message.payload.parts
    assert text.body_data == "aGk"
    assert (pdf.filename, pdf.attachment_id) == ("inv.pdf", "att-1")
    assert session.get.call_args.args[0].endswith("/users/me/messages/m1")


def test_http_errors_propagate():
    session = MagicMock()
    session.get.return_value = make_response({"error": "nope"}, status_code=401)

    with pytest.raises(requests.HTTPError):
        GmailClient("token", session=session).get_attachment_data("m1", "a1")
