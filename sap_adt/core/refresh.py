"""
sap_adt.core.refresh - Bearer token refresh
============================================

OAuth2 ``refresh_token`` grant against the XSUAA token endpoint, and the
per-connection coordinator that guarantees at most one refresh call per
expiry event no matter how many requests run into 401/403 at once.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import requests

from sap_adt.core.config import AdtConfig
from sap_adt.core.errors import TokenRefreshError
from sap_adt.core.state import SessionState


@dataclass
class TokenRefreshResult:
    access_token: str
    refresh_token: Optional[str] = None


class TokenRefresher(Protocol):
    """
    Externally owned token source (e.g. an auth broker).

    ``get_token`` returns the token to use now; ``refresh_token`` obtains a
    new one and returns it.
    """

    def get_token(self) -> str: ...

    def refresh_token(self) -> str: ...


def refresh_jwt_token(
    refresh_token: str,
    uaa_url: str,
    client_id: str,
    client_secret: str,
    *,
    timeout: float = 30.0,
    verify: Union[bool, str] = True,
) -> TokenRefreshResult:
    """
    Exchange a refresh token for a new access token.

    Parameters
    ----------
    refresh_token : str
        Current refresh token
    uaa_url : str
        UAA base URL, e.g. https://acme.authentication.eu10.hana.ondemand.com
    client_id, client_secret : str
        UAA client credentials (sent as HTTP Basic)

    Returns
    -------
    TokenRefreshResult
        New access token; the refresh token is the new one if the server
        rotated it, else the one passed in.

    Raises
    ------
    TokenRefreshError
        On transport failure, error status, or a response without access_token
    """
    token_url = f"{uaa_url.rstrip('/')}/oauth/token"
    try:
        r = requests.post(
            token_url,
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
            auth=(client_id, client_secret),
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
            timeout=timeout,
            verify=verify,
        )
    except requests.exceptions.RequestException as exc:
        raise TokenRefreshError(f"Token refresh failed: {exc}") from exc

    if r.status_code >= 400:
        raise TokenRefreshError(
            f"Token refresh failed ({r.status_code}): {(r.text or '')[:500]}",
            status=r.status_code,
            body=r.text,
        )

    try:
        data = r.json()
    except ValueError:
        data = None
    if not isinstance(data, dict) or not data.get("access_token"):
        raise TokenRefreshError(
            "Response does not contain access_token", status=r.status_code, body=r.text
        )

    return TokenRefreshResult(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token") or refresh_token,
    )


class TokenRefreshCoordinator:
    """
    De-duplicated token refresh for one connection.

    The first caller performs the refresh; callers arriving while it is in
    flight wait on the same future and get its outcome. A caller whose
    failed request was sent with a token that has since been replaced does
    not refresh again.

    Parameters
    ----------
    config : AdtConfig
        Holds the bearer/refresh tokens in self-contained mode
    state : SessionState
        Cleared atomically with every token swap
    token_refresher : TokenRefresher, optional
        Delegated mode: the refresher owns the tokens
    """

    def __init__(
        self,
        config: AdtConfig,
        state: SessionState,
        token_refresher: Optional[TokenRefresher] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._state = state
        self._refresher = token_refresher
        self.logger = logger or logging.getLogger("sap_adt.refresh")
        self._lock = threading.Lock()
        self._in_flight: Optional["Future[str]"] = None

    @property
    def in_progress(self) -> bool:
        with self._lock:
            return self._in_flight is not None

    def can_refresh(self) -> bool:
        if self._refresher is not None:
            return True
        return self._config.has_refresh_credentials()

    def current_token(self) -> str:
        if self._refresher is not None:
            token = self._refresher.get_token()
            if token:
                return token
        return self._config.jwt_token or ""

    def refresh(self, stale_token: Optional[str] = None) -> str:
        """
        Refresh the bearer token (or wait for the refresh already running).

        Parameters
        ----------
        stale_token : str, optional
            The token the failed request was sent with

        Returns
        -------
        str
            The token to retry with
        """
        with self._lock:
            if self._in_flight is not None:
                future = self._in_flight
                owner = False
            else:
                if stale_token is not None:
                    current = self.current_token()
                    if current and current != stale_token:
                        self.logger.debug("Token already refreshed by a concurrent request")
                        return current
                future = self._in_flight = Future()
                owner = True

        if not owner:
            self.logger.debug("Token refresh in progress, waiting for its result")
            return future.result()

        try:
            token = self._perform_refresh()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(token)
            return token
        finally:
            with self._lock:
                self._in_flight = None

    def _perform_refresh(self) -> str:
        if self._refresher is not None:
            self.logger.debug("Refreshing token through the injected refresher")
            try:
                new_token = self._refresher.refresh_token()
            except TokenRefreshError:
                raise
            except Exception as exc:
                raise TokenRefreshError(f"Token refresher failed: {exc}") from exc
            if not new_token:
                raise TokenRefreshError("Token refresher returned an empty token")
            with self._state.locked():
                self._config.jwt_token = new_token
                self._state.clear()
            self.logger.info("JWT token refreshed")
            return new_token

        cfg = self._config
        if not cfg.has_refresh_credentials():
            raise TokenRefreshError(
                "Token refresh requires refresh_token, uaa_url, uaa_client_id and uaa_client_secret"
            )

        self.logger.debug("Refreshing JWT token via %s/oauth/token", (cfg.uaa_url or "").rstrip("/"))
        result = refresh_jwt_token(
            cfg.refresh_token or "",
            cfg.uaa_url or "",
            cfg.uaa_client_id or "",
            cfg.uaa_client_secret or "",
            verify=cfg.verify,
        )
        # new token => new SAP session; old CSRF token and cookies must go with it
        with self._state.locked():
            cfg.jwt_token = result.access_token
            if result.refresh_token:
                cfg.refresh_token = result.refresh_token
            self._state.clear()
        self.logger.info("JWT token refreshed")
        return result.access_token
