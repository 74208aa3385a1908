"""
Integration Errors
Exception taxonomy for OAuth, sync and send flows

Every error carries the HTTP status it maps to. API routes let these
propagate to the exception handler registered in main.py, which renders
{"success": false, "error": message}. OAuth callbacks catch them and
redirect to the app instead, since they run in a browser context.
"""
from typing import Optional


class IntegrationError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code: int = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(IntegrationError):
    """Missing or invalid bearer token."""

    status_code = 401


class InvalidStateError(IntegrationError):
    """OAuth state unknown, already consumed, or expired (possible CSRF)."""

    status_code = 400


class ConfigurationError(IntegrationError):
    """Required provider credentials are not configured."""

    status_code = 500


class AccountNotFoundError(IntegrationError):
    status_code = 404


class BadRequestError(IntegrationError):
    status_code = 400


class UpstreamError(IntegrationError):
    """
    Non-2xx response from Microsoft Graph, Google or Nylas.

    The upstream body is embedded in the message; callers cannot tell a
    transient failure from a permanent one, and nothing is retried.
    """

    status_code = 400

    def __init__(self, message: str, upstream_status: Optional[int] = None, upstream_body: str = ""):
        if upstream_body:
            message = f"{message}: {upstream_body}"
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class TokenRefreshError(UpstreamError):
    """Refresh-token exchange failed; the sync call is aborted."""


def raise_for_upstream(response, message: str) -> None:
    """
    Raise UpstreamError for a non-2xx httpx response.

    Args:
        response: httpx.Response from a provider call
        message: Human-readable prefix (e.g. "Failed to fetch emails from Microsoft Graph")
    """
    if response.is_success:
        return
    raise UpstreamError(message, upstream_status=response.status_code, upstream_body=response.text)
