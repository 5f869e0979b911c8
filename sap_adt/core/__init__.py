"""
sap_adt.core - Core connectivity and authentication
===================================================

This module provides the foundational classes for talking to SAP ADT:

- AdtConfig: Connection configuration (basic or JWT)
- AdtSession: HTTP session with CSRF, cookie and credential handling
- BasicAuth / BearerAuth: Authorization strategies
- create_connection: Factory selecting the strategy from the configuration
- ConnectionContext: High-level connection manager (hana_ml style)

"""

from sap_adt.core.config import (
    AdtConfig,
    CsrfSettings,
    config_from_env,
    config_signature,
)
from sap_adt.core.errors import (
    AdtError,
    AdtNetworkError,
    AdtUpstreamError,
    ConfigurationError,
    CredentialsExpiredError,
    CsrfTokenError,
    PermissionDeniedError,
    TokenRefreshError,
)
from sap_adt.core.cookies import CookieJar
from sap_adt.core.state import SessionMode, SessionSnapshot, SessionState
from sap_adt.core.auth import AuthStrategy, BasicAuth, BearerAuth
from sap_adt.core.refresh import (
    TokenRefresher,
    TokenRefreshCoordinator,
    TokenRefreshResult,
    refresh_jwt_token,
)
from sap_adt.core.retry import FailureKind, classify_failure
from sap_adt.core.session import AdtRequest, AdtSession
from sap_adt.core.connection import ConnectionContext, create_connection
from sap_adt.core.timeouts import TimeoutConfig, get_timeout, get_timeout_config

__all__ = [
    "AdtConfig",
    "CsrfSettings",
    "config_from_env",
    "config_signature",
    "AdtError",
    "AdtNetworkError",
    "AdtUpstreamError",
    "ConfigurationError",
    "CredentialsExpiredError",
    "CsrfTokenError",
    "PermissionDeniedError",
    "TokenRefreshError",
    "CookieJar",
    "SessionMode",
    "SessionSnapshot",
    "SessionState",
    "AuthStrategy",
    "BasicAuth",
    "BearerAuth",
    "TokenRefresher",
    "TokenRefreshCoordinator",
    "TokenRefreshResult",
    "refresh_jwt_token",
    "FailureKind",
    "classify_failure",
    "AdtRequest",
    "AdtSession",
    "ConnectionContext",
    "create_connection",
    "TimeoutConfig",
    "get_timeout",
    "get_timeout_config",
]
