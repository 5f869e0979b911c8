"""
sap_adt.storage - Session snapshot persistence
===============================================

The connection layer only exports and imports ``SessionSnapshot`` values;
these collaborators decide where snapshots live.

- SessionStorage: the interface (save / load / delete by session id)
- MemorySessionStorage: process-local dict, handy for tests and workers
- FileSessionStorage: one JSON file per session

"""

from sap_adt.storage.base import SessionStorage, MemorySessionStorage
from sap_adt.storage.file import FileSessionStorage

__all__ = [
    "SessionStorage",
    "MemorySessionStorage",
    "FileSessionStorage",
]
