"""Shared fixtures: a scripted in-memory engine and tmp_path-backed storage."""
from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

import pytest

from azor_chatdog.assistant import Assistant, create_azor_assistant
from azor_chatdog.config import Settings
from azor_chatdog.llm.base import (
    BackendCallError,
    BackendInitError,
    ChatHandle,
    LLMClient,
    estimate_tokens,
)
from azor_chatdog.models import LLMResponse, Message
from azor_chatdog.session.manager import SessionManager
from azor_chatdog.storage.session_store import SessionStore
from azor_chatdog.storage.wal import WriteAheadLog


# ---------------------------------------------------------------------------
# Fake engine
# ---------------------------------------------------------------------------


class FakeChat(ChatHandle):
    """Chat handle that replies from its client's script."""

    def __init__(self, client: "FakeLLMClient", system_prompt: str, history: Sequence[Message]) -> None:
        super().__init__(system_prompt, history)
        self._client = client

    async def _complete(self, history: list[Message]) -> LLMResponse:
        self._client.calls.append(history[-1].text)
        if self._client.stall:
            await asyncio.Event().wait()
        if self._client.fail_next:
            self._client.fail_next -= 1
            raise BackendCallError("engine unavailable")
        if self._client.replies:
            text = self._client.replies.pop(0)
        else:
            text = f"echo: {history[-1].text}"
        return LLMResponse(text=text, tokens_used=estimate_tokens(history))


class FakeLLMClient(LLMClient):
    """Scripted engine.

    ``replies`` are returned in order (then echoes), ``fail_next`` makes
    the next N calls fail, ``stall`` makes calls hang until cancelled, and
    every ``create_chat`` call records the history it was opened with and
    the handle it returned.
    """

    def __init__(
        self,
        replies: Sequence[str] = (),
        *,
        fail_init: bool = False,
        token_count: int | None = None,
    ) -> None:
        self.replies = list(replies)
        self.fail_init = fail_init
        self.fail_next = 0
        self.stall = False
        self.token_count = token_count
        self.calls: list[str] = []
        self.opened_with: list[list[Message]] = []
        self.chats: list[FakeChat] = []
        self.initialized = 0
        self.closed = False

    @property
    def model_name(self) -> str:
        return "fake-model"

    async def initialize(self) -> None:
        if self.fail_init:
            raise BackendInitError("fake engine refused to start")
        self.initialized += 1

    async def create_chat(
        self, system_prompt: str, history: Sequence[Message] = ()
    ) -> ChatHandle:
        self.opened_with.append(list(history))
        chat = FakeChat(self, system_prompt, history)
        self.chats.append(chat)
        return chat

    async def count_history_tokens(self, history: Sequence[Message]) -> int:
        if self.token_count is not None:
            return self.token_count
        return estimate_tokens(history)

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(base_dir=tmp_path / "azor", max_context_tokens=1000)


@pytest.fixture()
def assistant() -> Assistant:
    return create_azor_assistant()


@pytest.fixture()
def store(settings: Settings) -> SessionStore:
    return SessionStore(settings.sessions_dir)


@pytest.fixture()
def wal(settings: Settings) -> WriteAheadLog:
    return WriteAheadLog(settings.wal_path)


@pytest.fixture()
def make_client() -> type[FakeLLMClient]:
    return FakeLLMClient


@pytest.fixture()
def fake_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture()
def clients() -> list[FakeLLMClient]:
    """Every client handed out by ``client_factory``, in creation order."""
    return []


@pytest.fixture()
def client_factory(clients: list[FakeLLMClient]):
    def factory(settings: Settings) -> FakeLLMClient:
        client = FakeLLMClient()
        clients.append(client)
        return client

    return factory


@pytest.fixture()
def manager(
    settings: Settings,
    assistant: Assistant,
    store: SessionStore,
    wal: WriteAheadLog,
    client_factory,
) -> SessionManager:
    return SessionManager(
        settings,
        assistant=assistant,
        store=store,
        wal=wal,
        client_factory=client_factory,
    )
