"""Storage subpackage.

Public surface
--------------
- SessionStore          — one JSON file per session
- SessionSummary        — listing entry (metadata or per-file error)
- LoadError             — base for SessionNotFoundError / SessionCorruptError
- SaveError, RemoveError
- WriteAheadLog         — process-wide append-only exchange log
- WalEntry, LogError
- FileLock              — in-process + cross-process writer lock
"""
from __future__ import annotations

from azor_chatdog.storage.locking import FileLock
from azor_chatdog.storage.session_store import (
    LoadError,
    RemoveError,
    SaveError,
    SessionCorruptError,
    SessionNotFoundError,
    SessionStore,
    SessionSummary,
)
from azor_chatdog.storage.wal import LogError, WalEntry, WriteAheadLog

__all__ = [
    "FileLock",
    "LoadError",
    "LogError",
    "RemoveError",
    "SaveError",
    "SessionCorruptError",
    "SessionNotFoundError",
    "SessionStore",
    "SessionSummary",
    "WalEntry",
    "WriteAheadLog",
]
