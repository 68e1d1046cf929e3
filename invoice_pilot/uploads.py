"""Upload harvested attachments into a Drive folder, skipping duplicates."""

from __future__ import annotations

import logging
import mimetypes
import tempfile
from pathlib import Path
from typing import Callable, Iterable

import requests

from .drive_client import DriveClient
from .models import (
    BatchSummary,
    Failed,
    InvoiceAttachment,
    SkippedDuplicate,
    Uploaded,
    UploadOutcome,
)

logger = logging.getLogger(__name__)


def guess_mime_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


class UploadEngine:
    """Sequential uploader; one failing file never stops the batch."""

    def __init__(
        self,
        drive: DriveClient,
        skip_duplicates: bool = True,
        temp_dir: Path | None = None,
        progress: Callable[[str], None] | None = None,
    ) -> None:
        self.drive = drive
        self.skip_duplicates = skip_duplicates
        self.temp_dir = temp_dir or Path(tempfile.gettempdir()) / "invoice-agent"
        self.progress = progress or (lambda _message: None)

    def upload_batch(
        self, attachments: Iterable[InvoiceAttachment], folder_id: str
    ) -> BatchSummary:
        summary = BatchSummary()
        for attachment in attachments:
            summary.record(attachment.filename, self.upload(attachment, folder_id))
        return summary

    def upload(self, attachment: InvoiceAttachment, folder_id: str) -> UploadOutcome:
        """Stage the attachment on disk, upload it, and remove the temp copy."""
        filename = attachment.filename
        try:
            path = attachment.save_to(self.temp_dir)
        except OSError as exc:
            self.progress(f"   ✗ Failed to save {filename}: {exc}")
            return Failed(f"could not write temp file: {exc}")

        try:
            return self._upload_path(path, filename, folder_id)
        finally:
            path.unlink(missing_ok=True)

    def _upload_path(self, path: Path, filename: str, folder_id: str) -> UploadOutcome:
        try:
            if self.skip_duplicates:
                existing = self.drive.find_file(filename, folder_id)
                if existing is not None:
                    self.progress(f"   ⚠ Skipping duplicate: {filename} (already exists)")
                    return SkippedDuplicate(existing.file_id)

            self.progress(f"   ↑ Uploading: {filename}...")
            uploaded = self.drive.upload_file(
                filename=filename,
                file_bytes=path.read_bytes(),
                parent_id=folder_id,
                mime_type=guess_mime_type(filename),
            )
        except (requests.RequestException, OSError, ValueError) as exc:
            logger.warning("Upload of %s failed: %s", filename, exc)
            self.progress(f"   ✗ Failed to upload {filename}: {exc}")
            return Failed(str(exc))

        self.progress(f"   ✓ Uploaded: {filename} (ID: {uploaded.file_id})")
        return Uploaded(uploaded.file_id)
