"""Session subpackage.

Provides the conversation unit and the manager that owns the active one.

Public surface
--------------
- ChatSession      — one conversation: send, save, clear, pop, token queries
- SessionPhase     — enum: CONSTRUCTED, INITIALIZING, READY, SAVING, TERMINATED
- SessionManager   — create / switch / remove / clean up the active session
- Outcome, NewSessionResult, SwitchResult, RemoveResult, CleanupResult
"""
from __future__ import annotations

from azor_chatdog.session.chat_session import ChatSession, SessionPhase
from azor_chatdog.session.manager import SessionManager
from azor_chatdog.session.results import (
    CleanupResult,
    NewSessionResult,
    Outcome,
    RemoveResult,
    SwitchResult,
)

__all__ = [
    "ChatSession",
    "CleanupResult",
    "NewSessionResult",
    "Outcome",
    "RemoveResult",
    "SessionManager",
    "SessionPhase",
    "SwitchResult",
]
