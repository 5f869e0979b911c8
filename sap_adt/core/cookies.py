"""
sap_adt.core.cookies - Session cookie jar
==========================================

SAP keeps the ADT session in cookies (``SAP_SESSIONID_*``, ``sap-usercontext``,
``MYSAPSSO2``). The jar accumulates them from ``Set-Cookie`` headers and
renders one ``Cookie`` header. It is the single source of truth for that
header; requests' own cookie handling is switched off by the session.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from requests import Response


def set_cookie_values(response: Optional[Response]) -> List[str]:
    """Return every raw ``Set-Cookie`` line of a response, one entry per line."""
    if response is None:
        return []
    raw_headers = getattr(response.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        return list(raw_headers.getlist("Set-Cookie"))
    value = response.headers.get("Set-Cookie")
    return [value] if value else []


class CookieJar:
    """
    Ordered name -> value map of session cookies.

    Last write for a name wins; insertion order is kept so the rendered
    header is stable.

    Examples
    --------
    >>> jar = CookieJar()
    >>> jar.ingest(["SAP_SESSIONID=abc; path=/; HttpOnly", "sap-usercontext=sap-client=100; path=/"])
    >>> jar.render()
    'SAP_SESSIONID=abc; sap-usercontext=sap-client=100'
    """

    def __init__(self, cookies: Optional[Mapping[str, str]] = None) -> None:
        self._store: Dict[str, str] = dict(cookies or {})

    def ingest(self, set_cookie: Iterable[str]) -> int:
        """Upsert cookies from raw Set-Cookie values. Returns how many were stored."""
        stored = 0
        for entry in set_cookie:
            if not isinstance(entry, str):
                continue
            name_value = entry.split(";", 1)[0]
            if not name_value:
                continue
            name, _, value = name_value.partition("=")
            name = name.strip()
            if not name:
                continue
            self._store[name] = value.strip()
            stored += 1
        return stored

    def ingest_response(self, response: Optional[Response]) -> int:
        return self.ingest(set_cookie_values(response))

    def render(self) -> Optional[str]:
        """The ``Cookie`` header value, or None if the jar is empty."""
        if not self._store:
            return None
        return "; ".join(
            f"{name}={value}" if value else name
            for name, value in self._store.items()
        )

    def replace(self, cookies: Mapping[str, str]) -> None:
        self._store = dict(cookies)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._store)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def __bool__(self) -> bool:
        return bool(self._store)

    def __contains__(self, name: object) -> bool:
        return name in self._store


def parse_cookie_header(header: Optional[str]) -> Dict[str, str]:
    """Split a rendered ``Cookie`` header back into a name -> value map."""
    cookies: Dict[str, str] = {}
    for part in (header or "").split(";"):
        name, _, value = part.partition("=")
        if name.strip():
            cookies[name.strip()] = value.strip()
    return cookies
