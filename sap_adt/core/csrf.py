"""
sap_adt.core.csrf - CSRF token fetching
========================================

SAP requires an ``x-csrf-token`` on every state-changing ADT request. The
token is obtained with a GET carrying ``x-csrf-token: fetch`` against the
discovery endpoint. The same response usually establishes the session
cookies, even when it fails.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Mapping, Optional, Protocol

from requests import Response
from requests.structures import CaseInsensitiveDict

from sap_adt.core.config import CsrfSettings
from sap_adt.core.errors import AdtUpstreamError, CsrfTokenError
from sap_adt.core.state import SessionState
from sap_adt.core.timeouts import get_timeout


ADT_PATH = "/sap/bc/adt"
CSRF_ENDPOINT = "/sap/bc/adt/core/discovery"
CSRF_HEADER = "x-csrf-token"
CSRF_REQUIRED_HEADERS: Dict[str, str] = {
    CSRF_HEADER: "fetch",
    "Accept": "application/atomsvc+xml",
}

NOT_IN_HEADERS = "No CSRF token in response headers"
REQUIRED_FOR_MUTATION = "CSRF token is required for POST/PUT requests but could not be fetched"


def fetch_failed_message(attempts: int, cause: str) -> str:
    return f"Failed to fetch CSRF token after {attempts} attempts: {cause}"


class Transport(Protocol):
    def __call__(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        timeout: float,
    ) -> Response: ...


def resolve_csrf_url(url: str, endpoint: str = CSRF_ENDPOINT) -> str:
    """
    Map any URL of the system onto the CSRF discovery endpoint.

    Examples
    --------
    >>> resolve_csrf_url("https://host:443")
    'https://host:443/sap/bc/adt/core/discovery'
    >>> resolve_csrf_url("https://host/sap/bc/adt/oo/classes/zcl_a")
    'https://host/sap/bc/adt/core/discovery'
    """
    if ADT_PATH + "/" not in url:
        return url.rstrip("/") + endpoint
    if endpoint not in url:
        return url.split(ADT_PATH)[0] + endpoint
    return url


class CsrfTokenFetcher:
    """
    Fetches (never caches) CSRF tokens.

    Cookies from every response, successful or not, are written to the
    session state; the caller decides where the returned token is kept.

    Parameters
    ----------
    transport : callable
        Performs one HTTP call and returns the response without raising on
        HTTP status; raises AdtNetworkError on transport failure.
    state : SessionState
        Cookie source and sink
    auth_headers : callable
        Returns the current Authorization / X-SAP-Client headers
    settings : CsrfSettings
        Default retry budget and discovery endpoint
    """

    def __init__(
        self,
        transport: Transport,
        state: SessionState,
        auth_headers: Callable[[], Mapping[str, str]],
        settings: Optional[CsrfSettings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._transport = transport
        self._state = state
        self._auth_headers = auth_headers
        self.settings = settings or CsrfSettings()
        self.logger = logger or logging.getLogger("sap_adt.csrf")

    def fetch(
        self,
        url: str,
        retry_count: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> str:
        """
        Fetch a CSRF token, retrying ``retry_count`` times.

        Raises
        ------
        CsrfTokenError
            When all attempts failed; carries the last HTTP status and body.
        AdtNetworkError
            Immediately, when the system is unreachable.
        """
        retries = max(0, self.settings.retry_count if retry_count is None else retry_count)
        delay = self.settings.retry_delay if retry_delay is None else retry_delay
        csrf_url = resolve_csrf_url(url, self.settings.endpoint)
        self.logger.debug("Fetching CSRF token from: %s", csrf_url)

        last_error: AdtUpstreamError = CsrfTokenError(
            0, "", csrf_url, method="GET", message=NOT_IN_HEADERS
        )
        for attempt in range(retries + 1):
            if attempt > 0:
                self.logger.debug("Retry attempt %s/%s for CSRF token", attempt, retries)

            headers: CaseInsensitiveDict = CaseInsensitiveDict(self._auth_headers())
            headers.update(CSRF_REQUIRED_HEADERS)
            cookies = self._state.cookies
            if cookies:
                headers["Cookie"] = cookies

            response = self._transport("GET", csrf_url, headers=headers, timeout=get_timeout("csrf"))
            self._state.ingest_response(response)

            token = response.headers.get(CSRF_HEADER)
            if token:
                if response.status_code == 405:
                    self.logger.debug("CSRF: SAP returned 405 but the token header is present")
                elif response.status_code >= 400:
                    self.logger.debug("Got CSRF token despite error status %s", response.status_code)
                self.logger.debug("CSRF token successfully obtained")
                return token

            if response.status_code >= 400:
                last_error = AdtUpstreamError(
                    response.status_code, response.text, csrf_url, dict(response.headers), "GET"
                )
            else:
                last_error = CsrfTokenError(
                    response.status_code, response.text, csrf_url, dict(response.headers), "GET",
                    message=NOT_IN_HEADERS,
                )
            self.logger.error(
                "CSRF token error (attempt %s/%s, status %s): %s",
                attempt + 1, retries + 1, response.status_code, (response.text or "")[:200],
            )

            if attempt < retries:
                time.sleep(delay)

        raise CsrfTokenError(
            last_error.status,
            last_error.body,
            csrf_url,
            last_error.headers,
            "GET",
            message=fetch_failed_message(retries + 1, str(last_error)),
        )
