"""On-disk cache of OAuth tokens, one JSON file per service."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from .models import TokenCache

logger = logging.getLogger(__name__)


class TokenStore:
    """Load, persist and clear the token file of a single service."""

    def __init__(self, config_dir: Path, filename: str) -> None:
        self.config_dir = config_dir
        self.path = config_dir / filename

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> TokenCache | None:
        """Return the cached token, or None when missing or unreadable."""
        if not self.path.exists():
            return None
        try:
            return TokenCache.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable token file %s: %s", self.path, exc)
            return None

    def save(self, token: TokenCache) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token.model_dump_json(indent=2), encoding="utf-8")
        logger.info("Token saved to %s", self.path)

    def clear(self) -> bool:
        if self.path.exists():
            self.path.unlink()
            logger.info("Token cleared: %s", self.path)
            return True
        logger.info("No token to clear at %s", self.path)
        return False
