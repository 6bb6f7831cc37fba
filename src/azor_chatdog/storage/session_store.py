"""Filesystem session store.

Persists each session as an individual JSON file named
``<session_id>-log.json`` under a configurable directory.  Defaults to
``~/.azor/``.

Classes
-------
- LoadError            — base class for unreadable sessions
- SessionNotFoundError — no file exists for the session
- SessionCorruptError  — the file exists but is not a valid record
- SaveError            — a record could not be written
- RemoveError          — a record could not be deleted
- SessionSummary       — one row of ``SessionStore.list()``
- SessionStore         — JSON-file-per-session storage
"""
from __future__ import annotations

import json
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from azor_chatdog.models import Message, SessionRecord
from azor_chatdog.storage.files import write_text_atomic

logger = logging.getLogger(__name__)

_DEFAULT_STORAGE_DIR: Path = Path.home() / ".azor"
_FILE_SUFFIX = "-log.json"
_JSON_INDENT = 4


class LoadError(Exception):
    """Raised when a session cannot be loaded.

    Callers start a fresh session instead; the file on disk is never
    modified by a failed load.
    """

    def __init__(self, session_id: str, path: Path, message: str) -> None:
        self.session_id = session_id
        self.path = path
        super().__init__(message)


class SessionNotFoundError(LoadError, KeyError):
    """Raised when no file exists for the requested session."""

    def __init__(self, session_id: str, path: Path) -> None:
        super().__init__(
            session_id, path, f"Session log file '{path}' does not exist."
        )

    def __str__(self) -> str:
        return str(self.args[0])


class SessionCorruptError(LoadError):
    """Raised when a session file exists but cannot be decoded."""

    def __init__(self, session_id: str, path: Path, reason: str) -> None:
        super().__init__(
            session_id, path, f"Cannot decode log file '{path}': {reason}"
        )


class SaveError(OSError):
    """Raised when a session file cannot be written."""

    def __init__(self, session_id: str, path: Path, reason: str) -> None:
        self.session_id = session_id
        self.path = path
        super().__init__(f"Error writing to file {path}: {reason}")


class RemoveError(OSError):
    """Raised when a session file cannot be removed."""

    def __init__(self, session_id: str, path: Path, reason: str) -> None:
        self.session_id = session_id
        self.path = path
        super().__init__(f"Error removing session file '{path}': {reason}")


@dataclass(frozen=True)
class SessionSummary:
    """Listing entry for one stored session.

    Exactly one of ``error`` and the metadata fields is meaningful: a file
    that fails to parse is reported with ``error`` set and no counts.
    """

    session_id: str
    message_count: int = 0
    last_activity: datetime | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _parse_timestamp(raw: str) -> datetime | None:
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


class SessionStore:
    """Stores sessions as individual JSON files.

    Each session is stored as ``<storage_dir>/<session_id>-log.json``.
    Records are only written for histories holding at least one complete
    exchange.

    Parameters
    ----------
    storage_dir:
        Root directory for session files.  Defaults to ``~/.azor/``.
        Created on first save if absent.
    """

    def __init__(self, storage_dir: str | Path | None = None) -> None:
        self._storage_dir: Path = (
            Path(storage_dir) if storage_dir is not None else _DEFAULT_STORAGE_DIR
        )

    @property
    def storage_dir(self) -> Path:
        return self._storage_dir

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def path_for(self, session_id: str) -> Path:
        """Return the file path for ``session_id``."""
        # Guard against path traversal.
        safe_name = os.path.basename(session_id)
        return self._storage_dir / f"{safe_name}{_FILE_SUFFIX}"

    def _read_record(self, session_id: str) -> SessionRecord:
        path = self.path_for(session_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise SessionNotFoundError(session_id, path) from None
        except (OSError, UnicodeDecodeError) as exc:
            raise SessionCorruptError(session_id, path, str(exc)) from exc
        try:
            return SessionRecord.model_validate_json(text)
        except ValidationError as exc:
            raise SessionCorruptError(
                session_id, path, f"{exc.error_count()} validation error(s)"
            ) from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self, session_id: str) -> list[Message]:
        """Return the stored history of ``session_id``.

        Raises
        ------
        SessionNotFoundError
            If no file exists for ``session_id``.
        SessionCorruptError
            If the file is not a valid session record.  The file is left
            untouched for inspection.
        """
        return self.load_record(session_id).messages()

    def load_record(self, session_id: str) -> SessionRecord:
        """Return the full stored record of ``session_id``.

        Raises the same errors as ``load``.
        """
        return self._read_record(session_id)

    def save(
        self,
        session_id: str,
        history: Sequence[Message],
        system_prompt: str,
        model_name: str,
    ) -> bool:
        """Write the record for ``session_id``, replacing any previous file.

        Histories with fewer than two messages are not written; any
        existing file is left as it is.

        Returns
        -------
        bool
            True if a file was written, False for the skipped case.

        Raises
        ------
        SaveError
            If the file could not be written.
        """
        if len(history) < 2:
            return False

        record = SessionRecord.build(session_id, history, system_prompt, model_name)
        path = self.path_for(session_id)
        payload = json.dumps(
            record.model_dump(mode="json"), indent=_JSON_INDENT, ensure_ascii=False
        )
        try:
            self._storage_dir.mkdir(parents=True, exist_ok=True)
            write_text_atomic(path, payload)
        except OSError as exc:
            raise SaveError(session_id, path, str(exc)) from exc
        logger.debug("SessionStore: saved %d messages to %s", len(history), path)
        return True

    def list(self) -> list[SessionSummary]:
        """Return a summary of every stored session, sorted by id.

        A file that cannot be read is reported with ``error`` set instead
        of aborting the listing.
        """
        if not self._storage_dir.exists():
            return []
        session_ids = sorted(
            path.name[: -len(_FILE_SUFFIX)]
            for path in self._storage_dir.glob(f"*{_FILE_SUFFIX}")
            if path.is_file()
        )
        summaries: list[SessionSummary] = []
        for session_id in session_ids:
            try:
                record = self._read_record(session_id)
            except LoadError as exc:
                summaries.append(SessionSummary(session_id, error=str(exc)))
                continue
            last = record.history[-1].timestamp if record.history else None
            summaries.append(
                SessionSummary(
                    session_id,
                    message_count=len(record.history),
                    last_activity=_parse_timestamp(last) if last else None,
                )
            )
        return summaries

    def remove(self, session_id: str) -> None:
        """Delete the file for ``session_id``.

        Raises
        ------
        SessionNotFoundError
            If no file exists for ``session_id``.
        RemoveError
            If the file exists but could not be deleted.
        """
        path = self.path_for(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise SessionNotFoundError(session_id, path) from None
        except OSError as exc:
            raise RemoveError(session_id, path, str(exc)) from exc
        logger.debug("SessionStore: removed %s", path)

    def exists(self, session_id: str) -> bool:
        """Return True if a file for ``session_id`` exists."""
        return self.path_for(session_id).exists()

    def __repr__(self) -> str:
        return f"SessionStore(storage_dir={str(self._storage_dir)!r})"
