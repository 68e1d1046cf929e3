"""Google Drive folder lookup and uploader."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

import requests
from requests import Response

from .models import DriveFile
from .utils import escape_query_value

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


class DriveClient:
    """List, create and upload files with a Drive bearer token."""

    API_BASE = "https://www.googleapis.com/drive/v3"
    UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"

    def __init__(
        self, access_token: str, session: requests.Session | None = None, timeout: int = 60
    ) -> None:
        self.access_token = access_token
        self.session = session or requests.Session()
        self.timeout = timeout

    def list_files(self, query: str, fields: str = "files(id, name, mimeType)") -> list[DriveFile]:
        response = self._request(
            "GET", f"{self.API_BASE}/files", params={"q": query, "fields": fields}
        )
        return [self._to_file(raw) for raw in response.json().get("files") or []]

    def find_folder(self, name: str, parent_id: str) -> str | None:
        query = (
            f"name='{escape_query_value(name)}' and '{parent_id}' in parents "
            f"and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        )
        files = self.list_files(query, fields="files(id, name)")
        return files[0].file_id if files else None

    def find_file(self, name: str, parent_id: str) -> DriveFile | None:
        query = (
            f"name='{escape_query_value(name)}' and '{parent_id}' in parents and trashed=false"
        )
        files = self.list_files(query)
        return files[0] if files else None

    def create_folder(self, name: str, parent_id: str) -> str:
        metadata = {"name": name, "parents": [parent_id], "mimeType": FOLDER_MIME_TYPE}
        response = self._request("POST", f"{self.API_BASE}/files", json=metadata)
        folder_id = self._parse_response_body(response).get("id")
        if not folder_id:
            raise ValueError("Folder ID not found in response")
        return folder_id

    def upload_file(
        self, *, filename: str, file_bytes: bytes, parent_id: str, mime_type: str
    ) -> DriveFile:
        """Multipart upload of JSON metadata plus the file body."""
        metadata: Dict[str, Any] = {
            "name": filename,
            "parents": [parent_id],
            "mimeType": mime_type,
        }
        files = {
            "metadata": (None, json.dumps(metadata), "application/json; charset=UTF-8"),
            "file": (filename, file_bytes, mime_type),
        }
        logger.info("Uploading '%s' to Drive folder %s", filename, parent_id)
        response = self._request(
            "POST",
            f"{self.UPLOAD_BASE}/files",
            params={"uploadType": "multipart", "fields": "id, name"},
            files=files,
        )
        uploaded = self._to_file(self._parse_response_body(response))
        if not uploaded.file_id:
            raise ValueError(f"Drive upload response has no file id: {response.text}")
        return uploaded

    def _request(self, method: str, url: str, **kwargs) -> Response:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        if resp.status_code >= 400:
            logger.error("Drive request failed (%s): %s", resp.status_code, resp.text)
            resp.raise_for_status()
        return resp

    @staticmethod
    def _parse_response_body(response) -> dict:
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    @staticmethod
    def _to_file(raw: dict) -> DriveFile:
        return DriveFile(
            file_id=raw.get("id", ""),
            name=raw.get("name", ""),
            mime_type=raw.get("mimeType"),
        )
