"""Unit tests for azor_chatdog.session.chat_session.

All engine traffic goes through the scripted fake client from conftest;
all files live under tmp_path.
"""
from __future__ import annotations

import asyncio
import json
import os

import pytest

from azor_chatdog.assistant import Assistant
from azor_chatdog.config import Settings
from azor_chatdog.llm.base import FAILED_RESPONSE_TEXT, BackendInitError
from azor_chatdog.models import Message, Role
from azor_chatdog.session.chat_session import ChatSession, SessionPhase
from azor_chatdog.storage.session_store import SessionNotFoundError, SessionStore
from azor_chatdog.storage.wal import WriteAheadLog


def _session(assistant, settings, store, wal, client, **kwargs) -> ChatSession:
    return ChatSession(
        assistant,
        settings,
        store=store,
        wal=wal,
        client_factory=lambda _settings: client,
        **kwargs,
    )


@pytest.fixture()
def session(assistant, settings, store, wal, fake_client) -> ChatSession:
    return _session(assistant, settings, store, wal, fake_client)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_new_session_has_uuid(self, session: ChatSession) -> None:
        assert len(session.session_id) == 36
        assert session.phase is SessionPhase.CONSTRUCTED
        assert session.is_empty()

    @pytest.mark.asyncio
    async def test_initialize_opens_chat(self, session: ChatSession, fake_client) -> None:
        await session.initialize()
        assert session.phase is SessionPhase.READY
        assert fake_client.initialized == 1
        assert session.model_name == "fake-model"
        assert fake_client.opened_with == [[]]

    @pytest.mark.asyncio
    async def test_initialize_twice_is_an_error(self, session: ChatSession) -> None:
        await session.initialize()
        with pytest.raises(RuntimeError):
            await session.initialize()

    @pytest.mark.asyncio
    async def test_init_failure_propagates(
        self, assistant, settings, store, wal, make_client
    ) -> None:
        session = _session(assistant, settings, store, wal, make_client(fail_init=True))
        with pytest.raises(BackendInitError):
            await session.initialize()
        assert session.phase is SessionPhase.CONSTRUCTED

    @pytest.mark.asyncio
    async def test_send_before_initialize(self, session: ChatSession) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            await session.send_message("hello")

    @pytest.mark.asyncio
    async def test_close(self, session: ChatSession, fake_client) -> None:
        await session.initialize()
        await session.close()
        assert session.phase is SessionPhase.TERMINATED
        assert fake_client.closed
        with pytest.raises(RuntimeError, match="terminated"):
            await session.send_message("hello")
        outcome = await session.save_to_file()
        assert not outcome.ok
        await session.close()

    @pytest.mark.asyncio
    async def test_load_from_file(
        self, assistant, settings, store: SessionStore, wal, fake_client
    ) -> None:
        store.save("abc", [Message.user("hello"), Message.reply("hi")], "p", "m")
        session = await ChatSession.load_from_file(
            assistant,
            settings,
            "abc",
            store=store,
            wal=wal,
            client_factory=lambda _s: fake_client,
        )
        assert session.session_id == "abc"
        assert [m.text for m in await session.get_history()] == ["hello", "hi"]
        assert [m.text for m in fake_client.opened_with[0]] == ["hello", "hi"]

    @pytest.mark.asyncio
    async def test_load_missing_file(self, assistant, settings, store, wal, fake_client) -> None:
        with pytest.raises(SessionNotFoundError):
            await ChatSession.load_from_file(
                assistant,
                settings,
                "zzz",
                store=store,
                wal=wal,
                client_factory=lambda _s: fake_client,
            )


# ---------------------------------------------------------------------------
# send_message
# ---------------------------------------------------------------------------


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_adds_exactly_two_messages(self, session: ChatSession, fake_client) -> None:
        fake_client.replies = ["hi"]
        await session.initialize()

        response = await session.send_message("hello")

        assert response.text == "hi"
        assert not response.failed
        history = await session.get_history()
        assert [(m.role, m.text) for m in history] == [
            (Role.USER, "hello"),
            (Role.MODEL, "hi"),
        ]

    @pytest.mark.asyncio
    async def test_failed_call_still_adds_two_messages(
        self, session: ChatSession, fake_client, caplog: pytest.LogCaptureFixture
    ) -> None:
        await session.initialize()
        fake_client.fail_next = 1

        response = await session.send_message("hello")

        assert response.failed
        assert response.text == FAILED_RESPONSE_TEXT
        assert len(await session.get_history()) == 2
        assert "LLM call failed" in caplog.text

    @pytest.mark.asyncio
    async def test_every_exchange_is_logged(
        self, session: ChatSession, fake_client, wal: WriteAheadLog
    ) -> None:
        fake_client.replies = ["one", "two"]
        await session.initialize()
        await session.send_message("a")
        fake_client.fail_next = 1
        await session.send_message("b")

        entries = wal.entries()
        assert [(e.prompt, e.response) for e in entries] == [
            ("a", "one"),
            ("b", FAILED_RESPONSE_TEXT),
        ]
        assert all(e.session_id == session.session_id for e in entries)
        assert all(e.model == "fake-model" for e in entries)

    @pytest.mark.asyncio
    async def test_log_failure_is_absorbed(
        self, assistant, settings, store, fake_client, tmp_path, caplog
    ) -> None:
        blocked = tmp_path / "wal-dir"
        blocked.mkdir()
        session = _session(assistant, settings, store, WriteAheadLog(blocked), fake_client)
        await session.initialize()

        response = await session.send_message("hello")

        assert not response.failed
        assert "WAL logging failed" in caplog.text

    @pytest.mark.asyncio
    async def test_held_log_lock_does_not_block_the_loop(
        self, assistant, settings, store, fake_client, tmp_path, caplog
    ) -> None:
        (tmp_path / "held-wal.json.lock").write_text(str(os.getpid()))
        wal = WriteAheadLog(tmp_path / "held-wal.json", lock_timeout=0.3)
        session = _session(assistant, settings, store, wal, fake_client)
        await session.initialize()
        ticks = 0

        async def ticker() -> None:
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        task = asyncio.create_task(ticker())
        try:
            response = await session.send_message("hello")
        finally:
            task.cancel()

        assert not response.failed
        assert ticks >= 5
        assert "WAL logging failed" in caplog.text

    @pytest.mark.asyncio
    async def test_send_does_not_save(self, session: ChatSession, store: SessionStore) -> None:
        await session.initialize()
        await session.send_message("hello")
        assert not store.exists(session.session_id)

    @pytest.mark.asyncio
    async def test_concurrent_sends_do_not_interleave(
        self, session: ChatSession
    ) -> None:
        await session.initialize()
        await asyncio.gather(*(session.send_message(f"m{i}") for i in range(5)))
        history = await session.get_history()
        assert len(history) == 10
        for user, reply in zip(history[::2], history[1::2]):
            assert user.role is Role.USER
            assert reply.text == f"echo: {user.text}"


# ---------------------------------------------------------------------------
# save / clear / pop
# ---------------------------------------------------------------------------


class TestPersistence:
    @pytest.mark.asyncio
    async def test_empty_session_is_not_written(
        self, session: ChatSession, store: SessionStore
    ) -> None:
        await session.initialize()
        outcome = await session.save_to_file()
        assert outcome.ok
        assert not store.exists(session.session_id)

    @pytest.mark.asyncio
    async def test_save_writes_record(self, session: ChatSession, store: SessionStore) -> None:
        await session.initialize()
        await session.send_message("hello")
        assert (await session.save_to_file()).ok
        data = json.loads(store.path_for(session.session_id).read_text())
        assert data["model"] == "fake-model"
        assert len(data["history"]) == 2

    @pytest.mark.asyncio
    async def test_save_failure_is_reported(
        self, assistant, settings, wal, fake_client, tmp_path, caplog
    ) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        session = _session(
            assistant, settings, SessionStore(blocker / "sessions"), wal, fake_client
        )
        await session.initialize()
        await session.send_message("hello")

        outcome = await session.save_to_file()

        assert not outcome.ok
        assert "Error writing to file" in outcome.error
        assert "Failed to save session" in caplog.text
        assert session.phase is SessionPhase.READY

    @pytest.mark.asyncio
    async def test_sync_timeout_saves_cached_history(
        self, session: ChatSession, store: SessionStore, monkeypatch
    ) -> None:
        await session.initialize()
        await session.send_message("hello")
        chat = session._chat

        async def slow_history():
            await asyncio.sleep(5)
            return []

        monkeypatch.setattr(chat, "history", slow_history)
        outcome = await session.save_to_file(sync_timeout=0.05)

        assert outcome.ok
        assert len(store.load(session.session_id)) == 2

    @pytest.mark.asyncio
    async def test_clear_history(self, session: ChatSession, store: SessionStore, fake_client) -> None:
        await session.initialize()
        await session.send_message("hello")
        await session.save_to_file()
        before = store.path_for(session.session_id).read_bytes()

        outcome = await session.clear_history()

        assert outcome.ok
        assert await session.get_history() == []
        assert fake_client.opened_with[-1] == []
        assert store.path_for(session.session_id).read_bytes() == before

    @pytest.mark.asyncio
    async def test_pop_on_short_history(self, session: ChatSession, fake_client) -> None:
        await session.initialize()
        opened = len(fake_client.opened_with)
        assert await session.pop_last_exchange() is False
        assert len(fake_client.opened_with) == opened

    @pytest.mark.asyncio
    async def test_pop_removes_last_pair_and_rebuilds_chat(
        self, session: ChatSession, store: SessionStore, fake_client
    ) -> None:
        fake_client.replies = ["hi", "fine", "bye"]
        await session.initialize()
        await session.send_message("hello")
        await session.send_message("how are you?")

        assert await session.pop_last_exchange() is True

        history = await session.get_history()
        assert [m.text for m in history] == ["hello", "hi"]
        assert [m.text for m in fake_client.opened_with[-1]] == ["hello", "hi"]
        assert [m.text for m in store.load(session.session_id)] == ["hello", "hi"]

        await session.send_message("again")
        assert fake_client.calls[-1] == "again"
        assert len(await session.get_history()) == 4

    @pytest.mark.asyncio
    async def test_pop_to_empty_keeps_file(
        self, session: ChatSession, store: SessionStore
    ) -> None:
        await session.initialize()
        await session.send_message("hello")
        await session.save_to_file()

        assert await session.pop_last_exchange() is True

        assert await session.get_history() == []
        assert len(store.load(session.session_id)) == 2


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TestTokens:
    @pytest.mark.asyncio
    async def test_token_info(self, session: ChatSession) -> None:
        await session.initialize()
        await session.send_message("a" * 40)
        info = await session.get_token_info()
        assert info.limit == 1000
        assert info.used == await session.count_tokens()
        assert info.remaining == 1000 - info.used
        assert await session.get_remaining_tokens() == info.remaining

    @pytest.mark.asyncio
    async def test_remaining_goes_negative(
        self, assistant, settings, store, wal, make_client
    ) -> None:
        client = make_client(token_count=1500)
        session = _session(assistant, settings, store, wal, client)
        await session.initialize()
        assert await session.get_remaining_tokens() == -500

    @pytest.mark.asyncio
    async def test_count_is_monotonic(self, session: ChatSession) -> None:
        await session.initialize()
        counts = []
        for text in ("hello there", "tell me about dogs", "thanks"):
            await session.send_message(text)
            counts.append(await session.count_tokens())
        assert counts == sorted(counts)

    def test_budget_comes_from_settings(
        self, assistant: Assistant, store, wal, fake_client
    ) -> None:
        session = _session(
            assistant, Settings(max_context_tokens=123), store, wal, fake_client
        )
        assert session.max_context_tokens == 123
