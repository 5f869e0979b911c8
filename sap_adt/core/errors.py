"""
sap_adt.core.errors - Exception taxonomy
=========================================

Every failure that leaves an ``AdtSession`` is one of these. Retry and
refresh logic is internal; callers only ever see the terminal error.
"""

from __future__ import annotations

from typing import Dict, Optional


BODY_SNIPPET_LENGTH = 1200


class AdtError(RuntimeError):
    """Base class for all errors raised by sap_adt."""


class ConfigurationError(AdtError, ValueError):
    """Invalid or incomplete connection configuration (raised at construction)."""


class AdtNetworkError(AdtError):
    """
    The SAP system could not be reached (refused, timeout, DNS, reset).

    Never retried by the connection layer.

    Attributes
    ----------
    url : str
        The URL that was called
    method : str
        HTTP method
    """

    def __init__(self, message: str, url: str = "", method: str = "") -> None:
        super().__init__(message)
        self.url = url
        self.method = method


class AdtUpstreamError(AdtError):
    """
    Exception raised when the SAP system answers with an HTTP error status.

    Attributes
    ----------
    status : int
        HTTP status code from SAP
    body : str
        Response body (truncated for display)
    url : str
        The URL that was called
    method : str
        HTTP method of the failed request
    headers : dict
        Response headers
    """

    def __init__(
        self,
        status: int,
        body: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        method: str = "",
        message: Optional[str] = None,
    ):
        snippet = (body or "")[:BODY_SNIPPET_LENGTH]
        if message is None:
            message = f"ADT upstream error {status} for {method + ' ' if method else ''}{url}: {snippet}"
        super().__init__(message)
        self.status = status
        self.body = body or ""
        self.url = url
        self.method = method
        self.headers = headers or {}


class CsrfTokenError(AdtUpstreamError):
    """CSRF token could not be fetched; keeps the last upstream status and body."""


class PermissionDeniedError(AdtUpstreamError):
    """
    The authenticated principal lacks authorization for the resource.

    Never retried; refreshing credentials would not help.
    """

    @classmethod
    def from_upstream(cls, err: AdtUpstreamError) -> "PermissionDeniedError":
        snippet = err.body[:BODY_SNIPPET_LENGTH]
        return cls(
            err.status,
            err.body,
            err.url,
            err.headers,
            err.method,
            message=(
                f"Access denied ({err.status}) for {err.url}: the authenticated user "
                f"lacks authorization for this resource. {snippet}"
            ),
        )


class TokenRefreshError(AdtError):
    """The OAuth2 token endpoint (or the injected refresher) failed."""

    def __init__(
        self, message: str, status: Optional[int] = None, body: str = ""
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class CredentialsExpiredError(AdtError):
    """
    Terminal authentication failure: the bearer token expired and could not be
    refreshed (or was rejected again after a refresh).
    """

    DEFAULT_MESSAGE = "JWT token has expired and could not be refreshed. Please re-authenticate."

    def __init__(
        self,
        message: str = DEFAULT_MESSAGE,
        status: Optional[int] = None,
        body: str = "",
        url: str = "",
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.url = url

    @classmethod
    def from_upstream(
        cls, err: AdtUpstreamError, reason: Optional[str] = None
    ) -> "CredentialsExpiredError":
        message = cls.DEFAULT_MESSAGE
        if reason:
            message = f"JWT token has expired and refresh failed ({reason}). Please re-authenticate."
        return cls(message, status=err.status, body=err.body[:BODY_SNIPPET_LENGTH], url=err.url)
