"""Exception hierarchy for the invoice pipeline."""

from __future__ import annotations


class InvoicePilotError(Exception):
    """Base class for all pipeline errors."""


class AuthError(InvoicePilotError):
    """An authorization attempt failed; the user has to restart it."""


class PortInUseError(AuthError):
    """The loopback redirect port could not be bound."""


class MalformedRedirectError(AuthError):
    """The browser redirect did not carry a usable code/state pair."""


class CsrfMismatchError(AuthError):
    """The redirect `state` does not match the CSRF token we issued."""


class TokenExchangeError(AuthError):
    """The token endpoint rejected the authorization code."""


class TokenRefreshError(AuthError):
    """The token endpoint rejected the refresh token."""


class AuthorizationCancelled(AuthError):
    """The listener wait was cancelled before the browser called back."""


class AuthorizationTimeout(AuthError):
    """No redirect arrived before the listener deadline."""


class AttachmentDecodeError(InvoicePilotError):
    """Attachment payload could not be decoded with any base64 variant."""


class JobCancelledError(InvoicePilotError):
    """Raised inside a job when its cancellation token is set."""
