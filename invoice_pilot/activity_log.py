"""SQLite-backed activity log for progress lines shown to the user."""

from __future__ import annotations

from pathlib import Path

import sqlite_utils

from .utils import utc_now_iso


class ActivityLog:
    """Append-only store of progress messages."""

    TABLE = "activity_logs"

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db = sqlite_utils.Database(str(db_path))
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        table = self.db[self.TABLE]
        table.create(
            {
                "id": int,
                "message": str,
                "created_at": str,
            },
            pk="id",
            if_not_exists=True,
        )
        table.create_index(["created_at"], if_not_exists=True)

    def append(self, message: str) -> None:
        self.db[self.TABLE].insert({"message": message, "created_at": utc_now_iso()})

    def recent(self, limit: int = 1000) -> list[str]:
        """Return up to `limit` most recent messages, oldest first."""
        rows = self.db.query(
            f"select message from {self.TABLE} order by id desc limit ?", [limit]
        )
        return [row["message"] for row in rows][::-1]

    def count(self) -> int:
        return self.db[self.TABLE].count
