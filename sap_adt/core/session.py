"""
sap_adt.core.session - SAP ADT HTTP Session Management
=======================================================

Low-level session handling for the SAP ADT REST interface with:
- Basic and Bearer token authentication
- CSRF token handling for write operations
- Session cookie jar and stateful/stateless session headers
- Retry on invalid CSRF token and on cookie-less 401
- Token refresh for bearer auth (through the auth strategy)
"""

from __future__ import annotations

from dataclasses import dataclass
from http.cookiejar import DefaultCookiePolicy
from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import urlsplit
import logging
import threading
import time
import uuid

import requests
from requests import Response, Session
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from urllib3.util.retry import Retry

from sap_adt.core.auth import AuthStrategy
from sap_adt.core.config import AdtConfig
from sap_adt.core.csrf import CSRF_HEADER, CsrfTokenFetcher
from sap_adt.core.errors import (
    AdtError,
    AdtNetworkError,
    AdtUpstreamError,
    ConfigurationError,
)
from sap_adt.core.retry import FailureKind, classify_failure, is_mutating, is_network_error
from sap_adt.core.state import SessionMode, SessionSnapshot, SessionState
from sap_adt.core.timeouts import get_timeout


DEFAULT_ACCEPT = "application/xml, application/json, text/plain, */*"
DEFAULT_CONTENT_TYPE = "text/plain; charset=utf-8"

SESSION_ID_HEADER = "sap-adt-connection-id"
SESSION_TYPE_HEADER = "x-sap-adt-sessiontype"
REQUEST_ID_HEADER = "sap-adt-request-id"
PROFILING_HEADER = "X-sap-adt-profiling"

# never taken from caller headers
PROTECTED_HEADERS = frozenset({"authorization", CSRF_HEADER, "cookie"})

# where-used lists want their own XML media types
USAGE_REFERENCES_PATH = "/usageReferences"
USAGE_REFERENCES_MARKER = "usageReferenceRequest"
USAGE_REFERENCES_REQUEST_TYPE = "application/vnd.sap.adt.repository.usagereferences.request.v1+xml"
USAGE_REFERENCES_RESULT_TYPE = "application/vnd.sap.adt.repository.usagereferences.result.v1+xml"


@dataclass(frozen=True)
class AdtRequest:
    """
    One outbound ADT call.

    Parameters
    ----------
    url : str
        Endpoint path relative to the system, e.g. "/sap/bc/adt/discovery"
    method : str
        HTTP method
    timeout : float, optional
        Seconds; defaults to the configured / SAP_TIMEOUT_DEFAULT timeout
    data : str or bytes, optional
        Request body
    params : dict, optional
        Query parameters
    headers : dict, optional
        Additional headers; Authorization, x-csrf-token and Cookie are ignored
    """
    url: str
    method: str = "GET"
    timeout: Optional[float] = None
    data: Optional[Union[str, bytes]] = None
    params: Optional[Mapping[str, Any]] = None
    headers: Optional[Mapping[str, str]] = None


def _origin(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid URL in configuration: {exc}") from exc
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(f"Invalid URL in configuration: {url!r}")
    return f"{parts.scheme}://{parts.netloc}"


class AdtSession:
    """
    HTTP session for the SAP ADT REST interface.

    One instance is one logical SAP session: it owns one cookie jar, one
    cached CSRF token, one session id and one credential. Safe to share
    between threads.

    Parameters
    ----------
    cfg : AdtConfig
        Connection configuration
    auth : AuthStrategy
        BasicAuth or BearerAuth built from the same configuration
    logger : logging.Logger, optional
        Defaults to the "sap_adt.connection" logger
    session_id : str, optional
        Value for sap-adt-connection-id; generated when omitted

    Examples
    --------
    >>> cfg = AdtConfig(url="https://host:44300", auth_type="basic", client="100",
    ...                 username="DEVELOPER", password="secret")
    >>> with AdtSession(cfg, BasicAuth(cfg)) as sess:
    ...     r = sess.get("/sap/bc/adt/discovery")
    """

    def __init__(
        self,
        cfg: AdtConfig,
        auth: AuthStrategy,
        logger: Optional[logging.Logger] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.cfg = cfg
        self.base = _origin(cfg.url)
        self.logger = logger or logging.getLogger("sap_adt.connection")

        self.state = SessionState(session_id)
        self.auth = auth
        self.auth.bind(self.state, self.logger)

        self._session: Optional[Session] = None
        self._session_lock = threading.Lock()
        self._connected = False

        self.csrf = CsrfTokenFetcher(
            self._transport, self.state, self.get_auth_headers, cfg.csrf, self.logger
        )
        self.logger.debug("ADT session id: %s...", self.state.session_id[:8])

    def close(self) -> None:
        """Close the underlying HTTP session (session state is kept)."""
        with self._session_lock:
            if self._session is not None:
                self._session.close()
                self._session = None

    def __enter__(self) -> "AdtSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------------- transport ----------------

    @property
    def session(self) -> Session:
        """The pooled requests session, built on first use."""
        with self._session_lock:
            if self._session is None:
                self._session = self._build_session()
            return self._session

    def _build_session(self) -> Session:
        sess = requests.Session()
        # cookies are managed by SessionState only
        sess.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        sess.headers.update({"User-Agent": self.cfg.user_agent})

        # transient gateway statuses on reads only; never network errors
        retry = Retry(
            total=self.cfg.retries,
            connect=0,
            read=0,
            backoff_factor=self.cfg.backoff,
            status_forcelist=(429, 502, 503, 504),
            allowed_methods=frozenset({"GET", "HEAD", "OPTIONS"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=20)
        sess.mount("https://", adapter)
        sess.mount("http://", adapter)
        return sess

    def _transport(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        timeout: float,
        params: Optional[Mapping[str, Any]] = None,
        data: Optional[Union[str, bytes]] = None,
    ) -> Response:
        t0 = time.perf_counter()
        try:
            r = self.session.request(
                method=method,
                url=url,
                params=params,
                headers=dict(headers),
                data=data,
                timeout=timeout,
                verify=self.cfg.verify,
            )
        except requests.exceptions.RequestException as exc:
            if is_network_error(exc):
                self.logger.error("Network error - cannot connect to SAP system: %s", exc)
                raise AdtNetworkError(
                    f"Cannot connect to SAP system at {url}: {exc}", url, method
                ) from exc
            raise AdtError(f"{method} {url} failed: {exc}") from exc
        dt = (time.perf_counter() - t0) * 1000.0
        self.logger.debug("%s %s -> %s %sms", method, url, r.status_code, round(dt, 1))
        return r

    def _send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        *,
        timeout: float,
        params: Optional[Mapping[str, Any]] = None,
        data: Optional[Union[str, bytes]] = None,
    ) -> Response:
        r = self._transport(method, url, headers=headers, timeout=timeout, params=params, data=data)
        # error responses may still establish the session
        self.state.ingest_response(r)
        if r.status_code >= 400:
            raise AdtUpstreamError(r.status_code, r.text, url, dict(r.headers), method)
        return r

    # ---------------- headers ----------------

    def get_auth_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.cfg.client:
            headers["X-SAP-Client"] = self.cfg.client
        headers["Authorization"] = self.auth.authorization_header()
        return headers

    def _build_headers(self, req: AdtRequest, method: str, url: str) -> CaseInsensitiveDict:
        caller = req.headers or {}
        headers: CaseInsensitiveDict = CaseInsensitiveDict()

        if not any(k.lower() == "accept" for k in caller):
            headers["Accept"] = DEFAULT_ACCEPT
        for name, value in caller.items():
            if name.lower() in PROTECTED_HEADERS:
                self.logger.debug("Ignoring caller header %s", name)
                continue
            headers[name] = value

        headers[SESSION_ID_HEADER] = self.state.session_id
        if self.state.session_mode is SessionMode.STATEFUL:
            headers[SESSION_TYPE_HEADER] = "stateful"
            headers[REQUEST_ID_HEADER] = uuid.uuid4().hex
            headers[PROFILING_HEADER] = "server-time"

        headers.update(self.get_auth_headers())

        token = self.state.csrf_token
        if is_mutating(method) and token:
            headers[CSRF_HEADER] = token

        cookies = self.state.cookies
        if cookies:
            headers["Cookie"] = cookies
        else:
            self.logger.debug("No cookies available for this request to %s", url)

        if method in ("POST", "PUT") and isinstance(req.data, str) and req.data:
            if "Content-Type" not in headers:
                if USAGE_REFERENCES_PATH in url and USAGE_REFERENCES_MARKER in req.data:
                    headers["Content-Type"] = USAGE_REFERENCES_REQUEST_TYPE
                    headers["Accept"] = USAGE_REFERENCES_RESULT_TYPE
                else:
                    headers["Content-Type"] = DEFAULT_CONTENT_TYPE
        return headers

    def _url(self, endpoint: str) -> str:
        """
        Resolve an endpoint path against the system origin.

        Absolute URLs are accepted only for the configured origin; credentials
        and session cookies never leave it.

        Raises
        ------
        ConfigurationError
            If the endpoint names another scheme, host or port
        """
        parts = urlsplit(endpoint)
        if parts.netloc or parts.scheme.lower() in ("http", "https"):
            origin = f"{parts.scheme}://{parts.netloc}".lower()
            if origin != self.base.lower():
                raise ConfigurationError(
                    f"Refusing to send request outside {self.base}: {endpoint!r}"
                )
            return endpoint
        return f"{self.base}/{endpoint.lstrip('/')}"

    # ---------------- pipeline ----------------

    def _execute_once(self, req: AdtRequest) -> Response:
        method = req.method.upper()
        url = self._url(req.url)
        timeout = req.timeout or self.cfg.timeout or get_timeout("default")

        if is_mutating(method) and not self.state.csrf_token:
            try:
                self.state.csrf_token = self.csrf.fetch(url)
            except AdtNetworkError:
                raise
            except AdtError as exc:
                # not fatal: a rejected request below triggers the real retry
                self.logger.debug("Could not fetch CSRF token upfront, will retry on error: %s", exc)

        headers = self._build_headers(req, method, url)
        data = req.data.encode("utf-8") if isinstance(req.data, str) else req.data
        send_kwargs: Dict[str, Any] = {"timeout": timeout, "params": req.params, "data": data}

        self.logger.debug("Executing %s request to: %s", method, url)
        try:
            return self._send(method, url, headers, **send_kwargs)
        except AdtNetworkError:
            raise
        except AdtUpstreamError as exc:
            if exc.status == 404:
                self.logger.debug("%s", exc)
            else:
                self.logger.error("%s", exc)

            kind = classify_failure(exc, method, bool(self.state.csrf_token), self.auth)

            if kind is FailureKind.CSRF_INVALID:
                self.logger.debug("CSRF token validation failed, fetching new token and retrying request")
                token = self.csrf.fetch(
                    url, self.cfg.csrf.error_retry_count, self.cfg.csrf.error_retry_delay
                )
                self.state.csrf_token = token
                if is_mutating(method):
                    headers[CSRF_HEADER] = token
                cookies = self.state.cookies
                if cookies:
                    headers["Cookie"] = cookies
                return self._send(method, url, headers, **send_kwargs)

            if (
                kind is FailureKind.UNAUTHORIZED
                and exc.status == 401
                and method == "GET"
                and not self.auth.handles_auth_errors
            ):
                retried = self._retry_unauthorized_get(url, headers, send_kwargs)
                if retried is not None:
                    return retried

            raise

    def _retry_unauthorized_get(
        self, url: str, headers: CaseInsensitiveDict, send_kwargs: Dict[str, Any]
    ) -> Optional[Response]:
        cookies = self.state.cookies
        if cookies:
            self.logger.debug("401 on GET request, retrying with cookies from error response")
            headers["Cookie"] = cookies
            return self._send("GET", url, headers, **send_kwargs)

        self.logger.debug("401 on GET request, attempting to get cookies via CSRF token fetch")
        try:
            self.state.csrf_token = self.csrf.fetch(url)
        except AdtNetworkError:
            raise
        except AdtError as exc:
            self.logger.debug("Failed to get CSRF token for 401 retry: %s", exc)
            return None

        cookies = self.state.cookies
        if not cookies:
            return None
        headers["Cookie"] = cookies
        self.logger.debug("Retrying GET request with cookies from CSRF fetch")
        return self._send("GET", url, headers, **send_kwargs)

    # ---------------- public ops ----------------

    def execute(self, req: AdtRequest) -> Response:
        """
        Execute one ADT request.

        CSRF, cookie and credential recovery happen here; the caller gets
        either the response or one terminal error.

        Raises
        ------
        AdtNetworkError
            The system is unreachable (never retried)
        PermissionDeniedError
            Bearer auth: the user lacks authorization
        CredentialsExpiredError
            Bearer auth: the token expired and could not be refreshed
        AdtUpstreamError
            Any other HTTP error status
        """
        return self.auth.guard(lambda: self._execute_once(req))

    def request(self, method: str, url: str, **kwargs: Any) -> Response:
        return self.execute(AdtRequest(url=url, method=method.upper(), **kwargs))

    def get(self, url: str, **kwargs: Any) -> Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, data: Optional[Union[str, bytes]] = None, **kwargs: Any) -> Response:
        return self.request("POST", url, data=data, **kwargs)

    def put(self, url: str, data: Optional[Union[str, bytes]] = None, **kwargs: Any) -> Response:
        return self.request("PUT", url, data=data, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> Response:
        return self.request("DELETE", url, **kwargs)

    def connect(self) -> None:
        """
        Warm up the session: fetch a CSRF token and the session cookies.

        Basic auth never fails here; bearer auth refreshes an expired token
        once and raises if that does not help.
        """
        self.auth.connect(self)
        self._connected = True

    def fetch_csrf_token(
        self,
        url: Optional[str] = None,
        retry_count: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> str:
        """Fetch a fresh CSRF token, cache it and return it."""
        target = self._url(url) if url else self.base

        def attempt() -> str:
            token = self.csrf.fetch(target, retry_count, retry_delay)
            self.state.csrf_token = token
            return token

        return self.auth.guard(attempt)

    def reset(self) -> None:
        """Forget CSRF token, cookies and the pooled HTTP session. Config stays."""
        self.close()
        self.state.clear()
        self._connected = False

    # ---------------- session state ----------------

    def get_session_state(self) -> Optional[SessionSnapshot]:
        return self.state.snapshot()

    def set_session_state(
        self, snapshot: Optional[Union[SessionSnapshot, Mapping[str, Any]]]
    ) -> None:
        if snapshot is None:
            self.state.clear()
            return
        if not isinstance(snapshot, SessionSnapshot):
            snapshot = SessionSnapshot.from_dict(snapshot)
        self.state.restore(snapshot)

    def set_session_type(self, mode: Union[SessionMode, str]) -> None:
        self.state.session_mode = mode
        self.logger.debug("Session type set to: %s", self.state.session_mode.value)

    def get_session_mode(self) -> SessionMode:
        return self.state.session_mode

    def get_session_id(self) -> str:
        return self.state.session_id

    @property
    def config(self) -> AdtConfig:
        return self.cfg

    @property
    def base_url(self) -> str:
        return self.base

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def csrf_token(self) -> Optional[str]:
        return self.state.csrf_token

    @property
    def cookies(self) -> Optional[str]:
        return self.state.cookies
