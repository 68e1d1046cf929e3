"""Token lifecycle for the Gmail and Drive grants: cached, refreshed or reauthorized."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .config import Settings
from .errors import AuthorizationCancelled, TokenRefreshError
from .models import AuthStatus, TokenResult, TokenSource
from .oauth import OAuthAuthorizationFlow
from .token_store import TokenStore

logger = logging.getLogger(__name__)

GMAIL_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive.file"


@dataclass(frozen=True)
class ServiceGrant:
    """One independently authorized Google service."""

    name: str
    label: str
    scopes: tuple[str, ...]
    token_file: str


GMAIL = ServiceGrant("gmail", "Gmail", (GMAIL_SCOPE,), "gmail_token.json")
DRIVE = ServiceGrant("drive", "Google Drive", (DRIVE_SCOPE,), "drive_token.json")
SERVICES = {grant.name: grant for grant in (GMAIL, DRIVE)}


@dataclass(frozen=True)
class ServiceCredentials:
    client_id: str
    client_secret: str


def credentials_for(grant: ServiceGrant, settings: Settings) -> ServiceCredentials:
    if grant.name == GMAIL.name:
        return ServiceCredentials(settings.gmail_client_id, settings.gmail_client_secret)
    return ServiceCredentials(settings.drive_client_id, settings.drive_client_secret)


class TokenLifecycleManager:
    """Hand out a usable access token for one service grant."""

    def __init__(
        self,
        grant: ServiceGrant,
        store: TokenStore,
        flow: OAuthAuthorizationFlow,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.grant = grant
        self.store = store
        self.flow = flow
        self.clock = clock
        self.status = AuthStatus.not_authenticated()

    @classmethod
    def from_settings(cls, grant: ServiceGrant, settings: Settings) -> "TokenLifecycleManager":
        credentials = credentials_for(grant, settings)
        flow = OAuthAuthorizationFlow(
            credentials.client_id,
            credentials.client_secret,
            redirect_port=settings.oauth_redirect_port,
        )
        return cls(grant, TokenStore(settings.config_dir, grant.token_file), flow)

    def has_valid_token(self) -> bool:
        token = self.store.load()
        return token is not None and not token.is_expired(self.clock())

    def get_token(
        self,
        on_authorization_url: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> TokenResult:
        self.status = AuthStatus.authenticating()
        try:
            result = self._cached_or_refreshed()
            if result is None:
                result = self._authorize(on_authorization_url, cancel)
        except AuthorizationCancelled:
            self.status = AuthStatus.not_authenticated()
            raise
        except Exception as exc:
            self.status = AuthStatus.error(str(exc))
            raise
        self.status = AuthStatus.authenticated()
        return result

    def reset(self) -> bool:
        """Delete the cached token, forcing the next call to reauthorize."""
        self.status = AuthStatus.not_authenticated()
        return self.store.clear()

    def _cached_or_refreshed(self) -> TokenResult | None:
        cached = self.store.load()
        if cached is None:
            return None
        logger.info("Loaded cached %s token", self.grant.label)

        if not cached.is_expired(self.clock()):
            logger.info("Using cached %s token", self.grant.label)
            return TokenResult(cached.access_token, TokenSource.CACHED)

        if not cached.refresh_token:
            logger.info("%s token expired and has no refresh token", self.grant.label)
            return None

        logger.info("%s token expired, attempting refresh...", self.grant.label)
        try:
            refreshed = self.flow.refresh(cached.refresh_token)
        except TokenRefreshError as exc:
            logger.warning("%s token refresh failed, reauthorizing: %s", self.grant.label, exc)
            return None
        self.store.save(refreshed)
        return TokenResult(refreshed.access_token, TokenSource.REFRESHED)

    def _authorize(
        self,
        on_authorization_url: Callable[[str], None] | None,
        cancel: threading.Event | None,
    ) -> TokenResult:
        logger.info("Starting %s authorization", self.grant.label)
        token, url = self.flow.authorize(
            self.grant.scopes, on_authorization_url=on_authorization_url, cancel=cancel
        )
        self.store.save(token)
        return TokenResult(token.access_token, TokenSource.AUTHORIZED, authorization_url=url)
