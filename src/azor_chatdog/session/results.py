"""Outcomes of session operations.

I/O failures below the session layer are absorbed here and reported as
values, so a broken disk never aborts a conversation turn.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from azor_chatdog.session.chat_session import ChatSession


@dataclass(frozen=True)
class Outcome:
    """Success flag plus the error message of a failed operation."""

    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "Outcome":
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class NewSessionResult:
    """Result of ``SessionManager.create_new_session``."""

    session: ChatSession
    save_attempted: bool = False
    previous_session_id: str | None = None
    save_error: str | None = None


@dataclass(frozen=True)
class SwitchResult:
    """Result of ``SessionManager.switch_to_session``.

    ``session`` is None when the target could not be loaded; the active
    session is unchanged in that case.
    """

    session: ChatSession | None
    save_attempted: bool = False
    previous_session_id: str | None = None
    save_error: str | None = None
    load_error: str | None = None
    has_history: bool = False

    @property
    def switched(self) -> bool:
        return self.session is not None


@dataclass(frozen=True)
class RemoveResult:
    """Result of ``SessionManager.remove_current_session_and_create_new``."""

    session: ChatSession
    removed_session_id: str
    remove_error: str | None = None

    @property
    def removed(self) -> bool:
        return self.remove_error is None


@dataclass(frozen=True)
class CleanupResult:
    """Result of ``SessionManager.cleanup_and_save``."""

    session_id: str
    skipped: bool = False
    save_error: str | None = None

    @property
    def saved(self) -> bool:
        return not self.skipped and self.save_error is None
