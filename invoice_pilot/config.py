"""Configuration management for the Gmail→Drive invoice pipeline."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal, Sequence

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()

DEFAULT_KEYWORDS = "invoice,invoices,fatura,faturas"
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "invoice-agent"


def _split_list(value: str | Sequence[str] | None, coerce_lower: bool = True) -> list[str]:
    """Turn delimiter-separated env strings into cleaned lists."""
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(r"[;,]", value)
    else:
        items = list(value)
    cleaned: list[str] = []
    for item in items:
        trimmed = item.strip()
        if not trimmed:
            continue
        cleaned.append(trimmed.lower() if coerce_lower else trimmed)
    return cleaned


class Settings(BaseSettings):
    """App configuration derived from environment variables.

    Instances are frozen so a job or auth task can hold one as a snapshot
    while the supervising loop reloads configuration independently.
    """

    gmail_client_id: str = Field(..., alias="GOOGLE_GMAIL_CLIENT_ID")
    gmail_client_secret: str = Field(..., alias="GOOGLE_GMAIL_CLIENT_SECRET")
    drive_client_id: str = Field(..., alias="GOOGLE_DRIVE_CLIENT_ID")
    drive_client_secret: str = Field(..., alias="GOOGLE_DRIVE_CLIENT_SECRET")
    drive_folder_path: str = Field(..., alias="GOOGLE_DRIVE_FOLDER_LOCATION")

    fetch_invoices_day: int | None = Field(None, alias="FETCH_INVOICES_DAY")
    target_keywords_raw: str = Field(
        DEFAULT_KEYWORDS, alias="TARGET_KEYWORDS_TO_FETCH_AND_DOWNLOAD"
    )
    skip_duplicates: bool = Field(True, alias="SKIP_DUPLICATES")
    bank_patterns_raw: str = Field("", alias="BANK_PATTERNS")
    bank_match_mode: Literal["substring", "word"] = Field("substring", alias="BANK_MATCH_MODE")

    oauth_redirect_port: int = Field(8080, alias="OAUTH_REDIRECT_PORT")
    config_dir: Path = Field(DEFAULT_CONFIG_DIR, alias="INVOICE_PILOT_CONFIG_DIR")
    activity_log_db: Path = Field(Path("data/activity_log.db"), alias="ACTIVITY_LOG_DB")

    debug_logs_enabled: bool = Field(False, alias="DEBUG_LOGS_ENABLED")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("fetch_invoices_day", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("fetch_invoices_day")
    @classmethod
    def _validate_day(cls, value):
        if value is not None and not 1 <= value <= 31:
            raise ValueError("FETCH_INVOICES_DAY must be between 1 and 31")
        return value

    @field_validator("drive_folder_path")
    @classmethod
    def _normalize_folder_path(cls, value: str) -> str:
        return value.strip().strip("/")

    @model_validator(mode="after")
    def _validate_required(self):
        if not self.gmail_client_id.strip():
            raise ValueError("GOOGLE_GMAIL_CLIENT_ID cannot be empty")
        if not self.drive_client_id.strip():
            raise ValueError("GOOGLE_DRIVE_CLIENT_ID cannot be empty")
        if not self.drive_folder_path:
            raise ValueError("GOOGLE_DRIVE_FOLDER_LOCATION cannot be empty")
        if not self.target_keywords:
            raise ValueError(
                "TARGET_KEYWORDS_TO_FETCH_AND_DOWNLOAD must contain at least one keyword"
            )
        return self

    @property
    def target_keywords(self) -> list[str]:
        return _split_list(self.target_keywords_raw, coerce_lower=False)

    @property
    def bank_patterns(self) -> list[str]:
        """Custom classifier patterns; empty means use the built-in list."""
        return _split_list(self.bank_patterns_raw, coerce_lower=True)

    @property
    def effective_log_level(self) -> str:
        if self.debug_logs_enabled:
            return "DEBUG"
        return self.log_level.upper()

    def snapshot(self) -> "Settings":
        """Independent copy handed to a background task."""
        return self.model_copy(deep=True)
