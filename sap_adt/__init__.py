"""
SAP ADT Connection Python SDK (sap_adt)
=======================================

HTTP session layer for the SAP ABAP Development Tools (ADT) REST
interface. Handles CSRF tokens, session cookies, stateful sessions and
bearer token refresh so callers only issue requests.

Usage
-----
>>> from sap_adt import AdtConfig, create_connection
>>>
>>> cfg = AdtConfig(
...     url="https://s4.example.com:44300",
...     auth_type="basic",
...     client="100",
...     username="DEVELOPER",
...     password="secret",
... )
>>> with create_connection(cfg) as conn:
...     conn.connect()
...     r = conn.get("/sap/bc/adt/discovery")

Subpackages
-----------
- sap_adt.core: Configuration, session pipeline, authentication
- sap_adt.storage: Session snapshot persistence
- sap_adt.api: Optional FastAPI REST gateway

"""

import logging

__version__ = "0.1.0"

# Silent unless the host application configures logging
logging.getLogger("sap_adt").addHandler(logging.NullHandler())

# Core exports - available at package root
from sap_adt.core import (
    AdtConfig,
    AdtError,
    AdtNetworkError,
    AdtRequest,
    AdtSession,
    AdtUpstreamError,
    BasicAuth,
    BearerAuth,
    ConfigurationError,
    ConnectionContext,
    CredentialsExpiredError,
    CsrfTokenError,
    PermissionDeniedError,
    SessionMode,
    SessionSnapshot,
    TokenRefresher,
    TokenRefreshError,
    config_from_env,
    config_signature,
    create_connection,
)

# Convenience re-exports
from sap_adt.storage import FileSessionStorage, MemorySessionStorage, SessionStorage

__all__ = [
    # Version
    "__version__",
    # Core
    "AdtConfig",
    "AdtError",
    "AdtNetworkError",
    "AdtRequest",
    "AdtSession",
    "AdtUpstreamError",
    "BasicAuth",
    "BearerAuth",
    "ConfigurationError",
    "ConnectionContext",
    "CredentialsExpiredError",
    "CsrfTokenError",
    "PermissionDeniedError",
    "SessionMode",
    "SessionSnapshot",
    "TokenRefresher",
    "TokenRefreshError",
    "config_from_env",
    "config_signature",
    "create_connection",
    # Storage
    "FileSessionStorage",
    "MemorySessionStorage",
    "SessionStorage",
]
