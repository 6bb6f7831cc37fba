"""A single chat session.

``ChatSession`` owns one conversation: its id, the assistant identity, a
lazily created engine client and the chat handle opened on it.  The chat
handle's history is the source of truth while the session is active; the
session keeps a cached copy that is refreshed from the handle before every
read, count and save.

Classes
-------
- SessionPhase  — lifecycle states of a session
- ChatSession   — send / save / clear / pop / token queries
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from enum import Enum
from uuid import uuid4

from azor_chatdog.assistant import Assistant
from azor_chatdog.config import Settings
from azor_chatdog.llm.base import (
    FAILED_RESPONSE_TEXT,
    BackendCallError,
    ChatHandle,
    LLMClient,
)
from azor_chatdog.llm.factory import ClientFactory, create_client
from azor_chatdog.models import LLMResponse, Message, TokenInfo
from azor_chatdog.session.results import Outcome
from azor_chatdog.storage.session_store import SaveError, SessionStore
from azor_chatdog.storage.wal import LogError, WalEntry, WriteAheadLog

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    """Lifecycle states of a ``ChatSession``.

    ``CONSTRUCTED -> INITIALIZING -> READY -> {READY, SAVING}* -> TERMINATED``.
    ``INITIALIZING`` is re-entered whenever the chat handle is rebuilt.
    """

    CONSTRUCTED = "constructed"
    INITIALIZING = "initializing"
    READY = "ready"
    SAVING = "saving"
    TERMINATED = "terminated"


class ChatSession:
    """Everything related to one conversation.

    Call ``initialize`` before any other operation.  Operations on one
    session never overlap: each takes the session's ``asyncio.Lock``.

    Parameters
    ----------
    assistant:
        Shared assistant identity (system prompt and display name).
    settings:
        Process configuration; selects the engine and the token budget.
    store:
        Where the session record is persisted.
    wal:
        Process-wide exchange log.
    client_factory:
        Builds the engine client on first initialisation.  Defaults to
        ``create_client``.
    session_id:
        Existing id to resume; a new uuid4 is generated when omitted.
    history:
        Messages to start from (used when resuming).
    """

    def __init__(
        self,
        assistant: Assistant,
        settings: Settings,
        *,
        store: SessionStore,
        wal: WriteAheadLog,
        client_factory: ClientFactory = create_client,
        session_id: str | None = None,
        history: Sequence[Message] | None = None,
    ) -> None:
        self._assistant = assistant
        self._settings = settings
        self._store = store
        self._wal = wal
        self._client_factory = client_factory
        self._session_id = session_id or str(uuid4())
        self._history: list[Message] = list(history or [])
        self._client: LLMClient | None = None
        self._chat: ChatHandle | None = None
        self._phase = SessionPhase.CONSTRUCTED
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    async def load_from_file(
        cls,
        assistant: Assistant,
        settings: Settings,
        session_id: str,
        *,
        store: SessionStore,
        wal: WriteAheadLog,
        client_factory: ClientFactory = create_client,
    ) -> "ChatSession":
        """Load ``session_id`` from ``store`` and return it initialised.

        Raises
        ------
        LoadError
            If the record is missing or corrupt.
        BackendInitError
            If the engine cannot be set up.
        """
        history = store.load(session_id)
        session = cls(
            assistant,
            settings,
            store=store,
            wal=wal,
            client_factory=client_factory,
            session_id=session_id,
            history=history,
        )
        await session.initialize()
        return session

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def assistant_name(self) -> str:
        return self._assistant.name

    @property
    def model_name(self) -> str:
        return self._client.model_name if self._client is not None else ""

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def max_context_tokens(self) -> int:
        return self._settings.max_context_tokens

    def is_empty(self) -> bool:
        """True when the session holds no complete exchange.

        Mirrors the store's persistence rule: saving an empty session
        writes nothing.
        """
        return len(self._history) < 2

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the engine client and open a chat with the current history.

        Raises
        ------
        ConfigError
            If no client exists for the configured engine.
        BackendInitError
            If the engine rejects the configuration.
        """
        async with self._lock:
            if self._phase is not SessionPhase.CONSTRUCTED:
                raise RuntimeError(
                    f"Session {self._session_id!r} is already {self._phase.value}."
                )
            await self._open_chat()

    async def close(self) -> None:
        """Terminate the session and release the engine client."""
        async with self._lock:
            if self._phase is SessionPhase.TERMINATED:
                return
            self._phase = SessionPhase.TERMINATED
            self._chat = None
            client, self._client = self._client, None
            if client is not None:
                await client.aclose()
        logger.debug("ChatSession: terminated %r", self._session_id)

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> LLMResponse:
        """Send ``text`` to the model and return its reply.

        A failed engine call is reported with ``LLMResponse.failed`` and a
        placeholder text; the exchange is still recorded.  Every exchange
        is appended to the write-ahead log on a worker thread.  The session
        is not saved.
        """
        async with self._lock:
            chat = self._require_ready()
            try:
                response: LLMResponse | None = await chat.send(text)
            except BackendCallError as exc:
                logger.warning(
                    "LLM call failed for session %r: %s", self._session_id, exc
                )
                response = None
            history = await self._sync_history()
            if response is None:
                reply = history[-1].text if history else FAILED_RESPONSE_TEXT
                response = LLMResponse(text=reply, failed=True)
            await self._log_exchange(text, response.text)
            return response

    async def get_history(self) -> list[Message]:
        """Return the conversation as held by the chat handle."""
        async with self._lock:
            return list(await self._sync_history())

    async def save_to_file(self, *, sync_timeout: float | None = None) -> Outcome:
        """Persist the session.

        Parameters
        ----------
        sync_timeout:
            Seconds allowed for refreshing the history from the chat
            handle.  On timeout the cached history is saved instead.
        """
        async with self._lock:
            return await self._save(sync_timeout=sync_timeout)

    async def clear_history(self) -> Outcome:
        """Drop the whole conversation and start the chat afresh.

        An empty history is not persisted, so a previously saved file
        keeps its content.
        """
        async with self._lock:
            self._require_ready()
            self._history = []
            await self._open_chat()
            return await self._save()

    async def pop_last_exchange(self) -> bool:
        """Remove the last user/model pair.

        Returns False and changes nothing when fewer than two messages
        exist.  Otherwise the chat is rebuilt from the truncated history
        and the session is saved.
        """
        async with self._lock:
            self._require_ready()
            history = await self._sync_history()
            if len(history) < 2:
                return False
            self._history = history[:-2]
            await self._open_chat()
            await self._save()
            return True

    # ------------------------------------------------------------------
    # Token accounting
    # ------------------------------------------------------------------

    async def count_tokens(self) -> int:
        """Return the token count of the current history."""
        async with self._lock:
            return await self._count_tokens()

    async def get_remaining_tokens(self) -> int:
        """Return the unused part of the budget; negative once exceeded."""
        return self.max_context_tokens - await self.count_tokens()

    async def get_token_info(self) -> TokenInfo:
        used = await self.count_tokens()
        limit = self.max_context_tokens
        return TokenInfo(used=used, remaining=limit - used, limit=limit)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_ready(self) -> ChatHandle:
        if self._phase is SessionPhase.TERMINATED:
            raise RuntimeError(f"Session {self._session_id!r} is terminated.")
        if self._chat is None:
            raise RuntimeError(f"Session {self._session_id!r} is not initialized.")
        return self._chat

    async def _open_chat(self) -> None:
        """(Re)build the chat handle from the cached history."""
        previous = self._phase
        self._phase = SessionPhase.INITIALIZING
        try:
            if self._client is None:
                client = self._client_factory(self._settings)
                logger.info(client.preparing_message())
                await client.initialize()
                logger.info(client.ready_message())
                self._client = client
            self._chat = await self._client.create_chat(
                self._assistant.system_prompt, self._history
            )
        except BaseException:
            self._phase = previous
            raise
        self._phase = SessionPhase.READY
        logger.debug(
            "ChatSession: chat for %r opened with %d messages",
            self._session_id,
            len(self._history),
        )

    async def _sync_history(self) -> list[Message]:
        if self._chat is not None:
            self._history = await self._chat.history()
        return self._history

    async def _count_tokens(self) -> int:
        history = await self._sync_history()
        if self._client is None:
            return 0
        return await self._client.count_history_tokens(history)

    async def _log_exchange(self, prompt: str, response_text: str) -> None:
        entry = WalEntry(
            session_id=self._session_id,
            model=self.model_name,
            prompt=prompt,
            response=response_text,
            tokens_used=await self._count_tokens(),
        )
        try:
            await asyncio.to_thread(self._wal.append, entry)
        except LogError as exc:
            logger.warning("WAL logging failed: %s", exc)

    async def _save(self, *, sync_timeout: float | None = None) -> Outcome:
        if self._phase is SessionPhase.TERMINATED:
            return Outcome.failure(f"Session {self._session_id!r} is terminated.")
        if self._client is None:
            return Outcome.failure("LLM client not initialized.")
        try:
            await asyncio.wait_for(self._sync_history(), sync_timeout)
        except TimeoutError:
            logger.warning(
                "History sync for session %r timed out after %ss; saving cached history.",
                self._session_id,
                sync_timeout,
            )
        previous = self._phase
        self._phase = SessionPhase.SAVING
        try:
            await asyncio.to_thread(
                self._store.save,
                self._session_id,
                list(self._history),
                self._assistant.system_prompt,
                self._client.model_name,
            )
        except SaveError as exc:
            logger.warning("Failed to save session %r: %s", self._session_id, exc)
            return Outcome.failure(str(exc))
        finally:
            self._phase = previous
        return Outcome.success()

    def __repr__(self) -> str:
        return (
            f"ChatSession(session_id={self._session_id!r}, "
            f"messages={len(self._history)}, phase={self._phase.value!r})"
        )
