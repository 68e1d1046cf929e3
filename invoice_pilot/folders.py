"""Resolve slash-delimited Drive paths to folder ids, creating missing folders."""

from __future__ import annotations

import logging
from typing import Callable

from .drive_client import DriveClient

logger = logging.getLogger(__name__)

ROOT_FOLDER_ID = "root"


def split_path(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment.strip()]


class FolderResolver:
    """Lookup-or-create each segment from the root down.

    Resolved prefixes are remembered for the lifetime of the resolver, which
    the orchestrator scopes to a single job run.
    """

    def __init__(
        self,
        drive: DriveClient,
        root_id: str = ROOT_FOLDER_ID,
        memoize: bool = True,
        progress: Callable[[str], None] | None = None,
    ) -> None:
        self.drive = drive
        self.root_id = root_id
        self.memoize = memoize
        self.progress = progress or (lambda _message: None)
        self._memo: dict[tuple[str, ...], str] = {}

    def resolve(self, path: str) -> str:
        segments = split_path(path)
        if not segments:
            raise ValueError("Folder path cannot be empty")

        self.progress(f"Locating folder: {path}...")
        parent_id = self.root_id
        for depth, segment in enumerate(segments, start=1):
            key = tuple(segments[:depth])
            cached = self._memo.get(key) if self.memoize else None
            if cached is not None:
                parent_id = cached
                continue
            parent_id = self._resolve_segment(segment, parent_id)
            if self.memoize:
                self._memo[key] = parent_id

        logger.info("Folder ready: %s (ID: %s)", path, parent_id)
        return parent_id

    def _resolve_segment(self, name: str, parent_id: str) -> str:
        existing = self.drive.find_folder(name, parent_id)
        if existing:
            logger.debug("Found existing folder %s in %s", name, parent_id)
            return existing
        self.progress(f"   + Creating folder: {name}")
        return self.drive.create_folder(name, parent_id)
