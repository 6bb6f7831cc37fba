"""Write-ahead log of every exchange.

The log is a single JSON array shared by all sessions.  Each append
rewrites the whole array atomically, so the file is always either the old
array or the new one.  A log that no longer parses as a list of entries
is reset to an empty array before the new entry is added: the log
repairs itself, session files never do.

Classes
-------
- WalEntry       — one logged request/response transaction
- LogError       — an append could not be persisted
- WriteAheadLog  — append-only, corruption-tolerant JSON log
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from azor_chatdog.models import utc_timestamp
from azor_chatdog.storage.files import write_text_atomic
from azor_chatdog.storage.locking import FileLock

logger = logging.getLogger(__name__)

_JSON_INDENT = 4


class LogError(OSError):
    """Raised when an entry could not be appended to the log."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"Error writing to WAL file ({path}): {reason}")


class WalEntry(BaseModel):
    """One request/response transaction.

    Parameters
    ----------
    timestamp:
        ISO-8601 time of the append.
    session_id:
        Session the exchange belongs to.
    model:
        Model that produced the response.
    prompt:
        User text.
    response:
        Model reply text (a placeholder when the call failed).
    tokens_used:
        Token count of the whole conversation after the exchange.
    """

    timestamp: str = Field(default_factory=utc_timestamp)
    session_id: str
    model: str
    prompt: str
    response: str
    tokens_used: int = 0


_ENTRIES = TypeAdapter(list[WalEntry])


class WriteAheadLog:
    """Append-only JSON log stored at ``path``.

    The file and its directory are created on the first append.  Appends
    from any number of ``WriteAheadLog`` objects on the same path are
    serialised through one ``FileLock``.

    Parameters
    ----------
    path:
        Location of the JSON log file.
    lock_timeout:
        Seconds to wait for the log lock before giving up.
    """

    def __init__(self, path: str | Path, lock_timeout: float = 10.0) -> None:
        self._path = Path(path)
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return self._path

    def append(self, entry: WalEntry) -> None:
        """Add ``entry`` to the end of the log.

        Raises
        ------
        LogError
            If the log could not be read, locked or written.  The file on
            disk is unchanged in that case.
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with FileLock(self._path, timeout=self._lock_timeout):
                raw_entries = self._read_for_append()
                raw_entries.append(entry.model_dump(mode="json"))
                write_text_atomic(
                    self._path,
                    json.dumps(raw_entries, indent=_JSON_INDENT, ensure_ascii=False),
                )
        except OSError as exc:
            raise LogError(self._path, str(exc)) from exc
        logger.debug("WAL: appended entry for session %r", entry.session_id)

    def entries(self) -> list[WalEntry]:
        """Return all entries; empty when the log is missing or unreadable."""
        try:
            text = self._path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return []
        try:
            return _ENTRIES.validate_json(text)
        except ValidationError:
            return []

    def _read_for_append(self) -> list[object]:
        if not self._path.exists() or self._path.stat().st_size == 0:
            return []
        text = self._path.read_text(encoding="utf-8", errors="replace")
        try:
            data = json.loads(text)
            _ENTRIES.validate_python(data)
        except (json.JSONDecodeError, ValidationError):
            logger.warning("WAL file corrupted, resetting: %s", self._path)
            return []
        return data

    def __repr__(self) -> str:
        return f"WriteAheadLog(path={str(self._path)!r})"
