"""OAuth2 authorization-code flow with PKCE and a one-shot loopback listener."""

from __future__ import annotations

import calendar
import hmac
import logging
import os
import secrets
import socket
import threading
import time
import webbrowser
from datetime import datetime
from typing import Callable, Iterable
from urllib.parse import parse_qs, urlsplit

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from .errors import (
    AuthError,
    AuthorizationCancelled,
    AuthorizationTimeout,
    CsrfMismatchError,
    MalformedRedirectError,
    PortInUseError,
    TokenExchangeError,
    TokenRefreshError,
)
from .models import AuthSession, TokenCache

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
LOOPBACK_HOST = "127.0.0.1"

SUCCESS_PAGE = (
    "<html><body>"
    "<h1>&#10003; Authorization successful!</h1>"
    "<p>You can close this window and return to the terminal.</p>"
    "</body></html>"
)
ERROR_PAGE = (
    "<html><body>"
    "<h1>Authorization failed</h1>"
    "<p>Return to the terminal and start the authorization again.</p>"
    "</body></html>"
)

MAX_REQUEST_LINE = 8192
MAX_HEADER_LINES = 100


def parse_redirect_request_line(request_line: str) -> tuple[str, str]:
    """Extract (code, state) from `GET /?code=..&state=.. HTTP/1.1`."""
    parts = request_line.split()
    if len(parts) < 2:
        raise MalformedRedirectError("Invalid HTTP request")

    query = parse_qs(urlsplit(parts[1]).query)
    code = (query.get("code") or [""])[0]
    state = (query.get("state") or [""])[0]

    if not code:
        error = (query.get("error") or [""])[0]
        if error:
            raise MalformedRedirectError(f"Authorization denied by provider: {error}")
        raise MalformedRedirectError("Authorization code not found in callback")
    if not state:
        raise MalformedRedirectError("State not found in callback")
    return code, state


class LoopbackListener:
    """Single-use HTTP listener that receives exactly one redirect."""

    def __init__(self, port: int, host: str = LOOPBACK_HOST) -> None:
        self.host = host
        self.port = port
        self._sock: socket.socket | None = None

    def __enter__(self) -> "LoopbackListener":
        self.bind()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def bind(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        if os.name != "nt":
            # TIME_WAIT sockets from a previous attempt must not block the port.
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen(1)
        except OSError as exc:
            sock.close()
            raise PortInUseError(
                f"Failed to bind to port {self.port}. Is another instance running? ({exc})"
            ) from exc
        self._sock = sock

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def receive_code(
        self,
        csrf_token: str,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
        poll_interval: float = 0.25,
    ) -> str:
        """Accept one connection and return its authorization code."""
        conn = self._accept(cancel, timeout, poll_interval)
        with conn:
            conn.settimeout(10)
            try:
                with conn.makefile("rb") as reader:
                    request_line = reader.readline(MAX_REQUEST_LINE).decode("latin-1")
                    for _ in range(MAX_HEADER_LINES):
                        if reader.readline(MAX_REQUEST_LINE) in (b"\r\n", b"\n", b""):
                            break
            except OSError as exc:
                raise MalformedRedirectError(f"Failed to read redirect request: {exc}") from exc

            try:
                code, state = parse_redirect_request_line(request_line)
                if not hmac.compare_digest(state, csrf_token):
                    raise CsrfMismatchError("CSRF token mismatch")
            except AuthError:
                self._respond(conn, "400 Bad Request", ERROR_PAGE)
                raise

            self._respond(conn, "200 OK", SUCCESS_PAGE)
            return code

    def _accept(
        self, cancel: threading.Event | None, timeout: float | None, poll_interval: float
    ) -> socket.socket:
        if self._sock is None:
            raise RuntimeError("Listener is not bound")
        deadline = None if timeout is None else time.monotonic() + timeout
        self._sock.settimeout(poll_interval)
        while True:
            if cancel is not None and cancel.is_set():
                raise AuthorizationCancelled("Authorization cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                raise AuthorizationTimeout("Timed out waiting for the browser redirect")
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            conn.setblocking(True)
            return conn

    @staticmethod
    def _respond(conn: socket.socket, status: str, body: str) -> None:
        payload = body.encode("utf-8")
        head = (
            f"HTTP/1.1 {status}\r\n"
            "Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(payload)}\r\n"
            "Connection: close\r\n\r\n"
        ).encode("ascii")
        try:
            conn.sendall(head + payload)
        except OSError as exc:
            logger.warning("Could not answer the browser redirect: %s", exc)


class OAuthAuthorizationFlow:
    """Authorization-code + PKCE exchange against Google's OAuth endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_port: int = 8080,
        *,
        session: requests.Session | None = None,
        auth_url: str = GOOGLE_AUTH_URL,
        token_url: str = GOOGLE_TOKEN_URL,
        open_browser: bool = True,
        listen_timeout: float | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_port = redirect_port
        self.session = session or requests.Session()
        self.auth_url = auth_url
        self.token_url = token_url
        self.open_browser = open_browser
        self.listen_timeout = listen_timeout

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.redirect_port}"

    def client_config(self) -> dict:
        return {
            "installed": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": self.auth_url,
                "token_uri": self.token_url,
                "redirect_uris": [self.redirect_uri],
            }
        }

    def build_flow(self, scopes: Iterable[str]) -> Flow:
        return Flow.from_client_config(
            self.client_config(),
            scopes=list(scopes),
            redirect_uri=self.redirect_uri,
            autogenerate_code_verifier=True,
        )

    def build_authorization_url(self, flow: Flow) -> tuple[str, AuthSession]:
        """Return the consent URL and the secrets it commits this attempt to."""
        csrf_token = secrets.token_urlsafe(16)
        url, _ = flow.authorization_url(state=csrf_token, access_type="offline", prompt="consent")
        return url, AuthSession(
            csrf_token=csrf_token,
            pkce_verifier=flow.code_verifier,
            redirect_port=self.redirect_port,
        )

    def authorize(
        self,
        scopes: Iterable[str],
        on_authorization_url: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> tuple[TokenCache, str]:
        """Run one full authorization attempt; every failure is final."""
        flow = self.build_flow(scopes)
        url, auth = self.build_authorization_url(flow)

        with LoopbackListener(self.redirect_port) as listener:
            if on_authorization_url is not None:
                on_authorization_url(url)
            if self.open_browser:
                self._open_browser(url)
            logger.info("Waiting for OAuth redirect on %s", self.redirect_uri)
            code = listener.receive_code(auth.csrf_token, cancel=cancel, timeout=self.listen_timeout)

        token = self.exchange_code(flow, code)
        return token, url

    def exchange_code(self, flow: Flow, code: str) -> TokenCache:
        context = "Failed to exchange authorization code for token"
        try:
            payload = flow.fetch_token(code=code, timeout=30)
            return TokenCache.from_token_response(payload)
        except OAuth2Error as exc:
            logger.error("Token endpoint rejected the authorization code: %s", exc)
            raise TokenExchangeError(f"{context}: {exc.description or exc.error}") from exc
        except (requests.RequestException, KeyError, ValueError) as exc:
            raise TokenExchangeError(f"{context}: {exc}") from exc

    def refresh(self, refresh_token: str) -> TokenCache:
        logger.info("Refreshing expired token...")
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.token_url,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        try:
            credentials.refresh(Request(self.session))
            token = TokenCache(
                access_token=credentials.token,
                refresh_token=credentials.refresh_token or refresh_token,
                expires_at=_epoch_seconds(credentials.expiry),
            )
        except (GoogleAuthError, ValueError) as exc:
            logger.error("Token refresh failed: %s", exc)
            raise TokenRefreshError(f"Failed to refresh token: {exc}") from exc
        logger.info("Token refreshed successfully")
        return token

    @staticmethod
    def _open_browser(url: str) -> None:
        try:
            opened = webbrowser.open(url)
        except webbrowser.Error as exc:
            logger.warning("Failed to open browser automatically: %s. Please manually open: %s", exc, url)
            return
        if not opened:
            logger.warning("No browser available. Please manually open: %s", url)


def _epoch_seconds(expiry: datetime | None) -> int | None:
    # google-auth reports expiry as a naive UTC datetime.
    if expiry is None:
        return None
    return calendar.timegm(expiry.utctimetuple())
