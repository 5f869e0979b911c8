"""
sap_adt.core.auth - Authorization strategies
=============================================

One request pipeline, two ways to authenticate:

- BasicAuth: on-premise systems, user/password. Connecting is advisory and
  401/403 recovery is left to the pipeline (cookie and CSRF re-acquisition).
- BearerAuth: BTP systems, JWT. 401/403 are classified as permission
  problems (never retried) or expired credentials (refreshed once).
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Callable, Optional, TypeVar

from sap_adt.core.config import AUTH_BASIC, AUTH_JWT, AdtConfig
from sap_adt.core.errors import (
    AdtError,
    AdtUpstreamError,
    ConfigurationError,
    CredentialsExpiredError,
    PermissionDeniedError,
    TokenRefreshError,
)
from sap_adt.core.refresh import TokenRefreshCoordinator, TokenRefresher
from sap_adt.core.retry import FailureKind, classify_failure
from sap_adt.core.state import SessionState

if TYPE_CHECKING:
    from sap_adt.core.session import AdtSession


T = TypeVar("T")

DISCOVERY_PATH = "/sap/bc/adt/discovery"


def _preview(token: Optional[str]) -> str:
    if not token:
        return "null"
    return f"{token[:10]}...{token[-4:]}"


class AuthStrategy:
    """
    Base class for authorization strategies.

    Subclasses define:
    - kind: str - the auth_type they serve
    - handles_auth_errors: bool - True if the strategy recovers from 401/403
      itself, which disables the pipeline's CSRF and cookie retries
    """

    kind: str = ""
    handles_auth_errors: bool = False

    def __init__(self, config: AdtConfig) -> None:
        self.config = config
        self.logger = logging.getLogger("sap_adt.auth")
        self.state: Optional[SessionState] = None

    def bind(self, state: SessionState, logger: logging.Logger) -> None:
        """Attach the strategy to the session state of its connection."""
        self.state = state
        self.logger = logger

    def authorization_header(self) -> str:
        raise NotImplementedError

    def is_permission_denied(self, body: str) -> bool:
        text = (body or "").lower()
        return any(marker.lower() in text for marker in self.config.permission_denied_markers)

    def guard(self, operation: Callable[[], T]) -> T:
        """Run ``operation`` with the strategy's 401/403 recovery."""
        return operation()

    def connect(self, session: "AdtSession") -> None:
        raise NotImplementedError


class BasicAuth(AuthStrategy):
    """
    HTTP Basic authentication for on-premise systems.

    Requires username, password and SAP client.
    """

    kind = AUTH_BASIC

    def __init__(self, config: AdtConfig) -> None:
        if config.auth_type != AUTH_BASIC:
            raise ConfigurationError(
                f'Basic authentication connection expects auth_type "basic", got "{config.auth_type}"'
            )
        if not config.username or not config.password:
            raise ConfigurationError("Basic authentication requires both username and password")
        if not config.client:
            raise ConfigurationError("Basic authentication requires SAP_CLIENT to be provided")
        super().__init__(config)

    def authorization_header(self) -> str:
        raw = f"{self.config.username or ''}:{self.config.password or ''}"
        return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def connect(self, session: "AdtSession") -> None:
        url = session.base_url + DISCOVERY_PATH
        self.logger.debug("Connecting to SAP system: %s", url)
        try:
            session.state.csrf_token = session.csrf.fetch(url)
        except AdtError as exc:
            # the request-time retries re-establish the session on first use
            self.logger.warning(
                "Could not establish SAP session during connect, continuing: %s", exc
            )
            return
        self.logger.debug(
            "Successfully connected to SAP system (cookies: %s)",
            len(session.state.cookie_store()),
        )


class BearerAuth(AuthStrategy):
    """
    Bearer (JWT) authentication for SAP BTP systems.

    Parameters
    ----------
    config : AdtConfig
        Must carry jwt_token; refresh credentials are optional
    token_refresher : TokenRefresher, optional
        External token owner; when given, it is asked for the current token
        and for refreshes instead of the UAA endpoint
    """

    kind = AUTH_JWT
    handles_auth_errors = True

    def __init__(
        self, config: AdtConfig, token_refresher: Optional[TokenRefresher] = None
    ) -> None:
        if config.auth_type != AUTH_JWT:
            raise ConfigurationError(
                f'JWT connection expects auth_type "jwt", got "{config.auth_type}"'
            )
        if not config.jwt_token:
            raise ConfigurationError("JWT authentication requires SAP_JWT_TOKEN to be provided")
        super().__init__(config)
        self.token_refresher = token_refresher
        self.coordinator: Optional[TokenRefreshCoordinator] = None

    def bind(self, state: SessionState, logger: logging.Logger) -> None:
        super().bind(state, logger)
        self.coordinator = TokenRefreshCoordinator(
            self.config, state, self.token_refresher, logger
        )

    def _coordinator(self) -> TokenRefreshCoordinator:
        if self.coordinator is None:
            raise RuntimeError("BearerAuth is not bound to a session")
        return self.coordinator

    def can_refresh_token(self) -> bool:
        return self._coordinator().can_refresh()

    def current_token(self) -> str:
        return self._coordinator().current_token()

    def authorization_header(self) -> str:
        token = self.current_token()
        self.logger.debug("Using bearer token: %s", _preview(token))
        return f"Bearer {token}"

    def _classify(self, err: AdtUpstreamError) -> FailureKind:
        has_token = bool(self.state and self.state.csrf_token)
        return classify_failure(err, err.method or "GET", has_token, self)

    def _permission_denied(self, err: AdtUpstreamError) -> PermissionDeniedError:
        self.logger.warning("Access denied (%s) for %s, not refreshing", err.status, err.url)
        return PermissionDeniedError.from_upstream(err)

    def guard(self, operation: Callable[[], T]) -> T:
        """
        401/403 -> permission check -> refresh -> retry once.

        A second auth failure after a successful refresh is terminal.
        """
        stale_token = self.current_token()
        try:
            return operation()
        except AdtUpstreamError as exc:
            kind = self._classify(exc)
            if isinstance(exc, PermissionDeniedError):
                raise
            if kind is FailureKind.PERMISSION_DENIED:
                raise self._permission_denied(exc) from exc
            if kind is not FailureKind.UNAUTHORIZED:
                raise
            if not self.can_refresh_token():
                raise CredentialsExpiredError(
                    "JWT token has expired. Please re-authenticate.",
                    status=exc.status,
                    body=exc.body[:1200],
                    url=exc.url,
                ) from exc
            self.logger.debug("Got %s for %s, refreshing token", exc.status, exc.url)
            try:
                self._coordinator().refresh(stale_token=stale_token)
            except TokenRefreshError as refresh_exc:
                self.logger.error("Token refresh failed: %s", refresh_exc)
                raise CredentialsExpiredError.from_upstream(exc, str(refresh_exc)) from refresh_exc

        try:
            return operation()
        except AdtUpstreamError as exc:
            kind = self._classify(exc)
            if isinstance(exc, PermissionDeniedError):
                raise
            if kind is FailureKind.PERMISSION_DENIED:
                raise self._permission_denied(exc) from exc
            if kind is not FailureKind.UNAUTHORIZED:
                raise
            raise CredentialsExpiredError(
                "JWT token was rejected again after refresh. Please re-authenticate.",
                status=exc.status,
                body=exc.body[:1200],
                url=exc.url,
            ) from exc

    def connect(self, session: "AdtSession") -> None:
        url = session.base_url + DISCOVERY_PATH
        self.logger.debug("Connecting to SAP system: %s", url)

        def attempt() -> None:
            session.state.csrf_token = session.csrf.fetch(url)

        self.guard(attempt)
        self.logger.debug(
            "Successfully connected to SAP system (cookies: %s)",
            len(session.state.cookie_store()),
        )
