"""Session lifecycle management.

Provides ``SessionManager``, which owns the single active ``ChatSession``
and sequences every transition between sessions: the current session is
saved before it is replaced, and a failed load never replaces it.

Classes
-------
- SessionManager  — create / switch / remove / shut down the active session
"""
from __future__ import annotations

import asyncio
import logging

from azor_chatdog.assistant import Assistant, create_azor_assistant
from azor_chatdog.config import Settings
from azor_chatdog.llm.base import BackendInitError
from azor_chatdog.llm.factory import ClientFactory, create_client
from azor_chatdog.session.chat_session import ChatSession
from azor_chatdog.session.results import (
    CleanupResult,
    NewSessionResult,
    RemoveResult,
    SwitchResult,
)
from azor_chatdog.storage.session_store import (
    LoadError,
    RemoveError,
    SessionStore,
    SessionSummary,
)
from azor_chatdog.storage.wal import WriteAheadLog

logger = logging.getLogger(__name__)


class SessionManager:
    """Own the active session and move between sessions safely.

    Constructed once at process start and passed to whatever needs it.

    Parameters
    ----------
    settings:
        Process configuration.
    assistant:
        Shared assistant identity.  Defaults to Azor.
    store:
        Session store.  Defaults to one rooted at ``settings.sessions_dir``.
    wal:
        Exchange log.  Defaults to one at ``settings.wal_path``.
    client_factory:
        Engine client factory handed to every session.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        assistant: Assistant | None = None,
        store: SessionStore | None = None,
        wal: WriteAheadLog | None = None,
        client_factory: ClientFactory = create_client,
    ) -> None:
        self._settings = settings
        self._assistant = assistant or create_azor_assistant()
        self._store = store or SessionStore(settings.sessions_dir)
        self._wal = wal or WriteAheadLog(settings.wal_path)
        self._client_factory = client_factory
        self._current: ChatSession | None = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def wal(self) -> WriteAheadLog:
        return self._wal

    @property
    def current_session(self) -> ChatSession:
        """The active session.

        Raises
        ------
        RuntimeError
            If no session has been started yet.
        """
        if self._current is None:
            raise RuntimeError(
                "No active session. Call start() or create_new_session() first."
            )
        return self._current

    @property
    def has_active_session(self) -> bool:
        return self._current is not None

    def list_sessions(self) -> list[SessionSummary]:
        """Return a summary of every stored session."""
        return self._store.list()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self, session_id: str | None = None) -> ChatSession:
        """Start the process's first session.

        Resumes ``session_id`` when given; if it cannot be loaded a new
        session is started instead and the reason is logged.

        Raises
        ------
        ConfigError, BackendInitError
            If the engine cannot be set up.  Both are fatal at start-up.
        """
        session: ChatSession | None = None
        if session_id:
            try:
                session = await self._load(session_id)
            except LoadError as exc:
                logger.warning("%s Starting a new session.", exc)
        if session is None:
            session = await self._fresh()
        await self._replace_current(session)
        return session

    async def create_new_session(self, save_current: bool = True) -> NewSessionResult:
        """Replace the active session with a new, empty one.

        When ``save_current`` is set the active session is saved first.  A
        failed save is reported in the result and does not prevent the new
        session from starting.
        """
        save_attempted = False
        previous_id: str | None = None
        save_error: str | None = None
        if save_current and self._current is not None:
            save_attempted = True
            previous_id = self._current.session_id
            outcome = await self._current.save_to_file()
            save_error = outcome.error

        session = await self._fresh()
        await self._replace_current(session)
        return NewSessionResult(
            session=session,
            save_attempted=save_attempted,
            previous_session_id=previous_id,
            save_error=save_error,
        )

    async def switch_to_session(self, session_id: str) -> SwitchResult:
        """Save the active session, then make ``session_id`` active.

        If the target cannot be loaded or its engine cannot be set up, the
        active session stays as it is and the error is returned.  Callers
        should not switch to the id that is already active.
        """
        save_attempted = False
        previous_id: str | None = None
        save_error: str | None = None
        if self._current is not None:
            save_attempted = True
            previous_id = self._current.session_id
            outcome = await self._current.save_to_file()
            if not outcome.ok:
                save_error = outcome.error
                logger.warning(
                    "Failed to save current session before switching: %s", save_error
                )

        try:
            session = await self._load(session_id)
        except (LoadError, BackendInitError) as exc:
            logger.warning("Cannot load session %r: %s", session_id, exc)
            return SwitchResult(
                session=None,
                save_attempted=save_attempted,
                previous_session_id=previous_id,
                save_error=save_error,
                load_error=str(exc),
            )

        await self._replace_current(session)
        return SwitchResult(
            session=session,
            save_attempted=save_attempted,
            previous_session_id=previous_id,
            save_error=save_error,
            has_history=not session.is_empty(),
        )

    async def remove_current_session_and_create_new(self) -> RemoveResult:
        """Delete the active session's file and start a new, empty session.

        The new session is started even when the file could not be
        removed.

        Raises
        ------
        RuntimeError
            If there is no active session.
        """
        removed_id = self.current_session.session_id
        remove_error: str | None = None
        try:
            self._store.remove(removed_id)
        except (LoadError, RemoveError) as exc:
            remove_error = str(exc)
            logger.warning("Cannot remove session file for %r: %s", removed_id, exc)

        session = await self._fresh()
        await self._replace_current(session)
        return RemoveResult(
            session=session,
            removed_session_id=removed_id,
            remove_error=remove_error,
        )

    async def cleanup_and_save(self, timeout: float | None = None) -> CleanupResult | None:
        """Save the active session on shutdown.

        Sessions that are empty once their history is synced from the chat
        handle are skipped.  The sync and save are bounded by ``timeout``
        (defaults to ``settings.cleanup_timeout``) and never raises; any
        failure is logged and returned.

        Returns
        -------
        CleanupResult | None
            None when there is no active session.
        """
        if self._current is None:
            return None
        session = self._current
        timeout = timeout if timeout is not None else self._settings.cleanup_timeout

        async def final_save() -> CleanupResult:
            # The emptiness check must see the chat handle's history.
            try:
                await asyncio.wait_for(session.get_history(), timeout / 2)
            except TimeoutError:
                logger.warning(
                    "History sync for session %r timed out; using the cached history.",
                    session.session_id,
                )
            if session.is_empty():
                logger.info(
                    "Session %r is empty or incomplete; skipping the final save.",
                    session.session_id,
                )
                return CleanupResult(session.session_id, skipped=True)
            outcome = await session.save_to_file(sync_timeout=timeout / 2)
            return CleanupResult(session.session_id, save_error=outcome.error)

        try:
            return await asyncio.wait_for(final_save(), timeout)
        except TimeoutError:
            error = f"Final save timed out after {timeout}s."
            logger.error("Final save of session %r failed: %s", session.session_id, error)
            return CleanupResult(session.session_id, save_error=error)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Final save of session %r failed: %s", session.session_id, exc, exc_info=True
            )
            return CleanupResult(session.session_id, save_error=str(exc))

    async def close(self) -> None:
        """Terminate the active session."""
        if self._current is not None:
            await self._current.close()
            self._current = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fresh(self) -> ChatSession:
        session = ChatSession(
            self._assistant,
            self._settings,
            store=self._store,
            wal=self._wal,
            client_factory=self._client_factory,
        )
        await session.initialize()
        return session

    async def _load(self, session_id: str) -> ChatSession:
        return await ChatSession.load_from_file(
            self._assistant,
            self._settings,
            session_id,
            store=self._store,
            wal=self._wal,
            client_factory=self._client_factory,
        )

    async def _replace_current(self, session: ChatSession) -> None:
        previous, self._current = self._current, session
        if previous is not None and previous is not session:
            await previous.close()
        logger.debug("SessionManager: active session is now %r", session.session_id)
