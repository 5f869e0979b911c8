"""
sap_adt.storage.file - File-based session storage
==================================================

Stores each session in ``<session_dir>/<session_id>.json``::

    {"session_id": "...", "timestamp": 1700000000000, "pid": 4242, "state": {...}}
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sap_adt.core.state import SessionSnapshot


logger = logging.getLogger("sap_adt.storage")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    return True


class FileSessionStorage:
    """
    Session storage backed by JSON files.

    Parameters
    ----------
    session_dir : str or Path
        Directory for the session files (relative paths resolve against the cwd)
    create_dir : bool
        Create the directory if it does not exist
    pretty_print : bool
        Indent the JSON (debugging)
    """

    def __init__(
        self,
        session_dir: Union[str, Path] = ".sessions",
        create_dir: bool = True,
        pretty_print: bool = False,
    ) -> None:
        self.session_dir = Path(session_dir).resolve()
        self.pretty_print = pretty_print
        if create_dir:
            self.session_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        # no path traversal through the id
        safe_id = re.sub(r"[^a-zA-Z0-9_-]", "_", session_id)
        return self.session_dir / f"{safe_id}.json"

    def _read(self, session_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", path, exc)
            return None
        return data if isinstance(data, dict) else None

    def save(self, session_id: str, snapshot: SessionSnapshot) -> None:
        data = {
            "session_id": session_id,
            "timestamp": _now_ms(),
            "pid": os.getpid(),
            "state": snapshot.to_dict(),
        }
        text = json.dumps(data, indent=2 if self.pretty_print else None)
        self._path(session_id).write_text(text, encoding="utf-8")

    def load(self, session_id: str) -> Optional[SessionSnapshot]:
        data = self._read(session_id)
        if not data or not isinstance(data.get("state"), dict):
            return None
        return SessionSnapshot.from_dict(data["state"])

    def delete(self, session_id: str) -> None:
        path = self._path(session_id)
        if path.exists():
            path.unlink()

    def list_sessions(self) -> List[str]:
        if not self.session_dir.exists():
            return []
        return sorted(p.stem for p in self.session_dir.glob("*.json"))

    def get_session_metadata(self, session_id: str) -> Optional[Dict[str, Any]]:
        """session_id, timestamp (ms), pid and age (ms), without the state."""
        data = self._read(session_id)
        if not data:
            return None
        timestamp = int(data.get("timestamp") or 0)
        return {
            "session_id": data.get("session_id", session_id),
            "timestamp": timestamp,
            "pid": data.get("pid"),
            "age": _now_ms() - timestamp,
        }

    def cleanup_stale_sessions(self, max_age_ms: int = 30 * 60 * 1000) -> List[str]:
        """Delete sessions older than ``max_age_ms``; returns their ids."""
        stale = []
        for session_id in self.list_sessions():
            meta = self.get_session_metadata(session_id)
            if meta and meta["age"] > max_age_ms:
                self.delete(session_id)
                stale.append(session_id)
        return stale

    def cleanup_dead_process_sessions(self) -> List[str]:
        """Delete sessions written by processes that no longer run."""
        dead = []
        for session_id in self.list_sessions():
            meta = self.get_session_metadata(session_id)
            pid = meta.get("pid") if meta else None
            if isinstance(pid, int) and not _pid_alive(pid):
                self.delete(session_id)
                dead.append(session_id)
        return dead

    def clear_all(self) -> None:
        for session_id in self.list_sessions():
            self.delete(session_id)
