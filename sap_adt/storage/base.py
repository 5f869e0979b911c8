"""
sap_adt.storage.base - Storage interface and in-memory implementation
=======================================================================
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Protocol

from sap_adt.core.state import SessionSnapshot


class SessionStorage(Protocol):
    def save(self, session_id: str, snapshot: SessionSnapshot) -> None: ...

    def load(self, session_id: str) -> Optional[SessionSnapshot]: ...

    def delete(self, session_id: str) -> None: ...


class MemorySessionStorage:
    """In-memory SessionStorage."""

    def __init__(self) -> None:
        self._items: Dict[str, SessionSnapshot] = {}
        self._lock = threading.Lock()

    def save(self, session_id: str, snapshot: SessionSnapshot) -> None:
        with self._lock:
            self._items[session_id] = SessionSnapshot.from_dict(snapshot.to_dict())

    def load(self, session_id: str) -> Optional[SessionSnapshot]:
        with self._lock:
            snapshot = self._items.get(session_id)
        return SessionSnapshot.from_dict(snapshot.to_dict()) if snapshot else None

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._items.pop(session_id, None)

    def list_sessions(self) -> List[str]:
        with self._lock:
            return list(self._items)


