"""
sap_adt.core.config - Connection configuration
===============================================

``AdtConfig`` is created once by the caller. The connection layer never
mutates it, except that ``jwt_token`` and ``refresh_token`` are replaced in
place after a successful token refresh.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple, Union

from sap_adt.core.errors import ConfigurationError


AUTH_BASIC = "basic"
AUTH_JWT = "jwt"

# Substrings (matched case-insensitively) marking a 401/403 body as a
# permission problem rather than an expired credential. English-only.
DEFAULT_PERMISSION_DENIED_MARKERS: Tuple[str, ...] = (
    "ExceptionResourceNoAccess",
    "No access",
    "No authorization",
    "Missing authorization",
)


@dataclass
class CsrfSettings:
    """
    CSRF fetch tuning.

    Parameters
    ----------
    retry_count : int
        Retries for the opportunistic fetch before a mutating request
    retry_delay : float
        Seconds between those retries
    error_retry_count : int
        Retries when SAP rejected a request because of an invalid token
    error_retry_delay : float
        Seconds between those retries
    endpoint : str
        Discovery path used to obtain the token
    """
    retry_count: int = 3
    retry_delay: float = 1.0
    error_retry_count: int = 5
    error_retry_delay: float = 2.0
    endpoint: str = "/sap/bc/adt/core/discovery"


@dataclass
class AdtConfig:
    """
    Connection configuration for the SAP ADT REST interface.

    Parameters
    ----------
    url : str
        System URL, e.g. "https://my-sap.example.com:44300". Only the origin is used.
    auth_type : str
        "basic" (on-premise) or "jwt" (BTP / cloud)
    client : str, optional
        SAP client, sent as X-SAP-Client
    username, password : str, optional
        Basic credentials
    jwt_token : str, optional
        Bearer token for "jwt"
    refresh_token, uaa_url, uaa_client_id, uaa_client_secret : str, optional
        OAuth2 refresh credentials (all four are needed for self-contained refresh)
    verify : bool or str
        SSL verification (True, False, or path to CA bundle)
    timeout : float, optional
        Default request timeout in seconds; falls back to SAP_TIMEOUT_DEFAULT
    retries : int
        Transport retries for 429/502/503/504 on idempotent requests
    backoff : float
        Backoff factor for those retries

    Examples
    --------
    >>> cfg = AdtConfig(
    ...     url="https://s4.example.com:44300",
    ...     auth_type="basic",
    ...     client="100",
    ...     username="DEVELOPER",
    ...     password="secret",
    ... )
    """
    url: str
    auth_type: str = AUTH_BASIC
    client: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    jwt_token: Optional[str] = None
    refresh_token: Optional[str] = None
    uaa_url: Optional[str] = None
    uaa_client_id: Optional[str] = None
    uaa_client_secret: Optional[str] = None
    verify: Union[bool, str] = True
    timeout: Optional[float] = None
    retries: int = 3
    backoff: float = 0.5
    user_agent: str = "sap-adt-connection/0.1"
    csrf: CsrfSettings = field(default_factory=CsrfSettings)
    permission_denied_markers: Tuple[str, ...] = DEFAULT_PERMISSION_DENIED_MARKERS

    def has_refresh_credentials(self) -> bool:
        return bool(
            self.refresh_token
            and self.uaa_url
            and self.uaa_client_id
            and self.uaa_client_secret
        )


def _strip_comment(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.split("#")[0].strip()


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> AdtConfig:
    """
    Build an ``AdtConfig`` from SAP_* environment variables.

    Raises
    ------
    ConfigurationError
        If SAP_URL is missing or not http(s), or the credentials for the
        selected auth type are missing.
    """
    env = os.environ if environ is None else environ

    url = _strip_comment(env.get("SAP_URL"))
    if not url or not re.match(r"^https?://", url):
        raise ConfigurationError(f"Missing or invalid SAP_URL: {url}")

    client = _strip_comment(env.get("SAP_CLIENT")) or None
    auth_type = _strip_comment(env.get("SAP_AUTH_TYPE")) or AUTH_BASIC
    verify = env.get("SAP_VERIFY_TLS", "true").lower() != "false"

    cfg = AdtConfig(
        url=url,
        auth_type=AUTH_JWT if auth_type == "xsuaa" else auth_type,
        client=client,
        verify=verify,
    )

    if cfg.auth_type == AUTH_JWT:
        cfg.jwt_token = env.get("SAP_JWT_TOKEN")
        if not cfg.jwt_token:
            raise ConfigurationError("Missing SAP_JWT_TOKEN for JWT authentication")
        cfg.refresh_token = env.get("SAP_REFRESH_TOKEN") or None
        cfg.uaa_url = env.get("SAP_UAA_URL") or env.get("UAA_URL") or None
        cfg.uaa_client_id = env.get("SAP_UAA_CLIENT_ID") or env.get("UAA_CLIENT_ID") or None
        cfg.uaa_client_secret = (
            env.get("SAP_UAA_CLIENT_SECRET") or env.get("UAA_CLIENT_SECRET") or None
        )
    else:
        cfg.username = env.get("SAP_USERNAME")
        cfg.password = env.get("SAP_PASSWORD")
        if not cfg.username or not cfg.password:
            raise ConfigurationError(
                "Missing SAP_USERNAME or SAP_PASSWORD for basic authentication"
            )

    return cfg


def config_signature(cfg: AdtConfig) -> str:
    """
    Stable string identifying a configuration, without leaking secrets.

    Useful as a cache key for connection instances.
    """
    return json.dumps(
        {
            "url": cfg.url,
            "client": cfg.client,
            "authType": cfg.auth_type,
            "username": cfg.username,
            "password": "set" if cfg.password else None,
            "jwtToken": "set" if cfg.jwt_token else None,
            "refreshToken": "set" if cfg.refresh_token else None,
        }
    )
