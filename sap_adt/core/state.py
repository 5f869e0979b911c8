"""
sap_adt.core.state - Per-connection session state
==================================================

One ``SessionState`` per connection owns the cookie jar, the cached CSRF
token, the session id and the session mode. Every mutation goes through
one re-entrant lock, so concurrent requests on the same connection never
observe a torn update (e.g. a new bearer token next to the old cookies).
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional, Union

from requests import Response

from sap_adt.core.cookies import CookieJar, parse_cookie_header


class SessionMode(str, Enum):
    STATELESS = "stateless"
    STATEFUL = "stateful"


@dataclass
class SessionSnapshot:
    """
    Exportable session: what another connection needs to continue the
    same SAP session.

    Parameters
    ----------
    cookies : str, optional
        Rendered Cookie header
    csrf_token : str, optional
        Cached CSRF token
    cookie_store : dict
        Cookie name -> value map (authoritative over ``cookies``)
    """
    cookies: Optional[str] = None
    csrf_token: Optional[str] = None
    cookie_store: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cookies": self.cookies,
            "csrf_token": self.csrf_token,
            "cookie_store": dict(self.cookie_store),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionSnapshot":
        # camelCase keys as written by other ADT session tooling
        csrf = data.get("csrf_token", data.get("csrfToken"))
        store = data.get("cookie_store", data.get("cookieStore")) or {}
        return cls(
            cookies=data.get("cookies"),
            csrf_token=csrf,
            cookie_store={str(k): str(v) for k, v in dict(store).items()},
        )


class SessionState:
    """
    Lock-guarded container for the mutable parts of a connection.

    Parameters
    ----------
    session_id : str, optional
        Value of the sap-adt-connection-id header; a uuid4 when omitted.
        Stable for the lifetime of the connection.
    """

    def __init__(self, session_id: Optional[str] = None) -> None:
        self._lock = threading.RLock()
        self._jar = CookieJar()
        self._csrf_token: Optional[str] = None
        self._session_id = session_id or str(uuid.uuid4())
        self._mode = SessionMode.STATELESS

    @contextmanager
    def locked(self) -> Iterator["SessionState"]:
        """Hold the state lock for a multi-field update."""
        with self._lock:
            yield self

    # ---------------- identity / mode ----------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def session_mode(self) -> SessionMode:
        return self._mode

    @session_mode.setter
    def session_mode(self, mode: Union[SessionMode, str]) -> None:
        with self._lock:
            self._mode = SessionMode(mode)

    # ---------------- csrf / cookies ----------------

    @property
    def csrf_token(self) -> Optional[str]:
        with self._lock:
            return self._csrf_token

    @csrf_token.setter
    def csrf_token(self, token: Optional[str]) -> None:
        with self._lock:
            self._csrf_token = token or None

    @property
    def cookies(self) -> Optional[str]:
        with self._lock:
            return self._jar.render()

    def cookie_store(self) -> Dict[str, str]:
        with self._lock:
            return self._jar.as_dict()

    def ingest_response(self, response: Optional[Response]) -> int:
        with self._lock:
            return self._jar.ingest_response(response)

    def clear(self) -> None:
        """Drop CSRF token and cookies. The session id and mode survive."""
        with self._lock:
            self._csrf_token = None
            self._jar.clear()

    # ---------------- export / import ----------------

    def snapshot(self) -> Optional[SessionSnapshot]:
        with self._lock:
            if not self._jar and not self._csrf_token:
                return None
            return SessionSnapshot(
                cookies=self._jar.render(),
                csrf_token=self._csrf_token,
                cookie_store=self._jar.as_dict(),
            )

    def restore(self, snapshot: SessionSnapshot) -> None:
        store = snapshot.cookie_store or parse_cookie_header(snapshot.cookies)
        with self._lock:
            self._jar.replace(store)
            self._csrf_token = snapshot.csrf_token or None
