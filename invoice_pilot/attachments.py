"""Walk Gmail part trees, download attachments and tag them with sender/bank."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Callable, Iterator

import requests

from .bank_classifier import BankClassifier
from .errors import AttachmentDecodeError
from .gmail_client import GmailClient
from .models import GmailMessage, InvoiceAttachment, MessagePart
from .utils import sanitize_token

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


def decode_attachment_data(data: str) -> bytes:
    """Decode Gmail attachment data, tolerating every base64 flavour it emits.

    Tried in order: URL-safe without padding, URL-safe, standard, and standard
    after mapping '-'/'_' back to '+'/'/'.
    """
    try:
        raw = data.strip().encode("ascii")
    except UnicodeEncodeError as exc:
        raise AttachmentDecodeError(
            f"Failed to decode attachment data (size: {len(data)})"
        ) from exc

    decoders = (
        _decode_urlsafe_no_pad,
        lambda value: base64.b64decode(value, altchars=b"-_", validate=True),
        lambda value: base64.b64decode(value, validate=True),
        lambda value: base64.b64decode(
            value.replace(b"-", b"+").replace(b"_", b"/"), validate=True
        ),
    )
    for decode in decoders:
        try:
            return decode(raw)
        except (binascii.Error, ValueError):
            continue
    raise AttachmentDecodeError(f"Failed to decode attachment data (size: {len(data)})")


def _decode_urlsafe_no_pad(value: bytes) -> bytes:
    if b"=" in value:
        raise ValueError("padding present")
    if len(value) % 4 == 1:
        raise ValueError("invalid length")
    padded = value + b"=" * (-len(value) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def iter_attachment_parts(part: MessagePart) -> Iterator[MessagePart]:
    """Depth-first preorder walk yielding parts with a filename and attachment id."""
    if part.filename and part.attachment_id:
        yield part
    for child in part.parts:
        yield from iter_attachment_parts(child)


def extract_sender_name(from_header: str) -> str:
    """Display name of `Name <addr>`, else the local part of the address."""
    name_end = from_header.find("<")
    if name_end != -1:
        name = from_header[:name_end].strip()
        if name:
            return name.strip('"')
    at_pos = from_header.find("@")
    if at_pos != -1:
        return from_header[:at_pos]
    return from_header


def sender_prefix(from_header: str) -> str:
    return sanitize_token(extract_sender_name(from_header))


def _decode_text(data: str) -> str:
    try:
        return decode_attachment_data(data).decode("utf-8", errors="replace")
    except AttachmentDecodeError:
        return ""


def message_search_text(message: GmailMessage) -> str:
    """From/Subject headers plus decoded text bodies, lowercased."""
    chunks = [message.header("From"), message.header("Subject")]
    if message.payload is not None:
        stack = [message.payload]
        while stack:
            part = stack.pop()
            if part.body_data and not part.attachment_id and (
                part is message.payload or part.mime_type.startswith("text/")
            ):
                chunks.append(_decode_text(part.body_data))
            stack.extend(reversed(part.parts))
    return " ".join(chunk for chunk in chunks if chunk).lower()


class AttachmentHarvester:
    """Turn one message id into a list of classified invoice attachments."""

    def __init__(
        self,
        client: GmailClient,
        classifier: BankClassifier | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.client = client
        self.classifier = classifier or BankClassifier()
        self.progress = progress or (lambda _message: None)

    def harvest(self, message_id: str) -> list[InvoiceAttachment]:
        message = self.client.get_message(message_id)
        prefix = sender_prefix(message.header("From"))
        bank_name = self.classifier.classify(message_search_text(message))

        parts = list(iter_attachment_parts(message.payload)) if message.payload else []
        if not parts:
            self.progress("   ⚠ No downloadable attachments found in message")
            return []

        attachments: list[InvoiceAttachment] = []
        for part in parts:
            try:
                data = self.client.get_attachment_data(message_id, part.attachment_id)
                if not data:
                    raise AttachmentDecodeError("Attachment response carried no data")
                content = decode_attachment_data(data)
            except (requests.RequestException, AttachmentDecodeError) as exc:
                logger.warning("Dropping attachment %s of %s: %s", part.filename, message_id, exc)
                self.progress(f"   ✗ Failed to download {part.filename}: {exc}")
                continue

            filename = f"{prefix}-{part.filename}" if prefix else part.filename
            attachments.append(
                InvoiceAttachment(
                    filename=filename,
                    content=content,
                    source_message_id=message_id,
                    bank_name=bank_name,
                )
            )
            if bank_name:
                self.progress(f"   ✓ Downloaded: {filename} (Bank: {bank_name})")
            else:
                self.progress(f"   ✓ Downloaded: {filename} (General document)")

        return attachments
