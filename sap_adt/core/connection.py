"""
sap_adt.core.connection - Connection factory and high-level context
====================================================================

Provides ``create_connection`` (auth-type based factory) and a
hana_ml-style ConnectionContext for simplified usage.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Mapping, Optional

from sap_adt.core.auth import AuthStrategy, BasicAuth, BearerAuth
from sap_adt.core.config import AUTH_BASIC, AUTH_JWT, AdtConfig, config_from_env
from sap_adt.core.errors import ConfigurationError
from sap_adt.core.refresh import TokenRefresher
from sap_adt.core.session import AdtSession

if TYPE_CHECKING:
    from sap_adt.storage import SessionStorage


def create_connection(
    cfg: AdtConfig,
    logger: Optional[logging.Logger] = None,
    session_id: Optional[str] = None,
    token_refresher: Optional[TokenRefresher] = None,
) -> AdtSession:
    """
    Build an ``AdtSession`` for the configured auth type.

    Parameters
    ----------
    cfg : AdtConfig
        Validated configuration
    logger : logging.Logger, optional
        Logger for the connection
    session_id : str, optional
        Fixed sap-adt-connection-id (e.g. to resume a persisted session)
    token_refresher : TokenRefresher, optional
        Only for "jwt": external token owner

    Raises
    ------
    ConfigurationError
        Unknown auth type, missing credentials or invalid URL
    """
    auth: AuthStrategy
    if cfg.auth_type == AUTH_BASIC:
        auth = BasicAuth(cfg)
    elif cfg.auth_type == AUTH_JWT:
        auth = BearerAuth(cfg, token_refresher)
    else:
        raise ConfigurationError(f"Unsupported SAP authentication type: {cfg.auth_type}")
    return AdtSession(cfg, auth, logger=logger, session_id=session_id)


class ConnectionContext:
    """
    High-level connection manager for SAP ADT.

    Supports environment variable configuration (SAP_* variables, see
    ``config_from_env``), optional session persistence and context manager
    usage.

    Parameters
    ----------
    config : AdtConfig, optional
        Explicit configuration. Falls back to SAP_* environment variables.
    session_id : str, optional
        Session id to use (and to restore from storage)
    session_storage : SessionStorage, optional
        Where save_session()/restore_session() keep the session snapshot
    token_refresher : TokenRefresher, optional
        External token owner for JWT connections
    logger : logging.Logger, optional
        Logger for the connection

    Examples
    --------
    >>> with ConnectionContext() as conn:  # reads SAP_* env vars
    ...     conn.session.connect()
    ...     r = conn.session.get("/sap/bc/adt/discovery")
    """

    def __init__(
        self,
        config: Optional[AdtConfig] = None,
        *,
        session_id: Optional[str] = None,
        session_storage: Optional["SessionStorage"] = None,
        token_refresher: Optional[TokenRefresher] = None,
        logger: Optional[logging.Logger] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._config = config or config_from_env(os.environ if environ is None else environ)
        self._session_id = session_id
        self._storage = session_storage
        self._token_refresher = token_refresher
        self._logger = logger
        self._session: Optional[AdtSession] = None

    @property
    def session(self) -> AdtSession:
        """Get or create the underlying ADT session."""
        if self._session is None:
            self._session = create_connection(
                self._config,
                logger=self._logger,
                session_id=self._session_id,
                token_refresher=self._token_refresher,
            )
        return self._session

    @property
    def config(self) -> AdtConfig:
        return self._config

    def save_session(self) -> bool:
        """Persist the current session snapshot. Returns False if there is nothing to save."""
        if self._storage is None:
            raise ConfigurationError("No session_storage configured")
        snapshot = self.session.get_session_state()
        if snapshot is None:
            return False
        self._storage.save(self.session.get_session_id(), snapshot)
        return True

    def restore_session(self) -> bool:
        """Load a persisted snapshot into the session. Returns False if none was stored."""
        if self._storage is None:
            raise ConfigurationError("No session_storage configured")
        snapshot = self._storage.load(self.session.get_session_id())
        if snapshot is None:
            return False
        self.session.set_session_state(snapshot)
        return True

    def close(self) -> None:
        """Close the connection."""
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "ConnectionContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
