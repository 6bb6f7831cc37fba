"""Local model served by a llama.cpp server.

Talks to the server's OpenAI-compatible ``/v1/chat/completions`` endpoint
and its native ``/tokenize`` endpoint.

Classes
-------
- LlamaChat          — chat handle for one llama.cpp conversation
- LlamaServerClient  — engine client
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from azor_chatdog.llm.base import (
    BackendCallError,
    BackendInitError,
    ChatHandle,
    LLMClient,
    estimate_tokens,
)
from azor_chatdog.models import LLMResponse, Message, Role

logger = logging.getLogger(__name__)

_OPENAI_ROLES = {Role.USER: "user", Role.MODEL: "assistant"}


def to_openai_messages(
    system_prompt: str, history: Sequence[Message]
) -> list[dict[str, str]]:
    """Convert a history to OpenAI-style chat messages."""
    messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
    messages.extend(
        {"role": _OPENAI_ROLES[message.role], "content": message.text}
        for message in history
    )
    return messages


class LlamaChat(ChatHandle):
    """Conversation held against a llama.cpp server."""

    def __init__(
        self,
        client: "LlamaServerClient",
        system_prompt: str,
        history: Sequence[Message] = (),
    ) -> None:
        super().__init__(system_prompt, history)
        self._client = client

    async def _complete(self, history: list[Message]) -> LLMResponse:
        data = await self._client.request(
            "POST",
            "/v1/chat/completions",
            {
                "model": self._client.model_name,
                "messages": to_openai_messages(self.system_prompt, history),
            },
        )
        try:
            text = str(data["choices"][0]["message"]["content"]).strip()
        except (KeyError, IndexError, TypeError) as exc:
            raise BackendCallError(f"Unexpected llama.cpp response: {data!r}") from exc
        usage = data.get("usage") or {}
        return LLMResponse(text=text, tokens_used=usage.get("total_tokens"))


class LlamaServerClient(LLMClient):
    """Client for a running llama.cpp server.

    Parameters
    ----------
    model_name:
        Display name of the served model.
    server_url:
        Base URL of the server, e.g. ``http://127.0.0.1:8080``.
    context_size:
        Context size the server was started with (informational).
    timeout:
        Seconds to wait for each HTTP request.
    transport:
        Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        model_name: str,
        server_url: str,
        *,
        context_size: int = 2048,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not server_url:
            raise BackendInitError("LLAMA_SERVER_URL must not be empty.")
        self._model_name = model_name
        self._server_url = server_url.rstrip("/")
        self._context_size = context_size
        self._timeout = timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def model_name(self) -> str:
        return self._model_name

    async def initialize(self) -> None:
        if self._http is not None:
            return
        http = httpx.AsyncClient(
            base_url=self._server_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        try:
            response = await http.get("/health")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            await http.aclose()
            raise BackendInitError(
                f"llama.cpp server at {self._server_url} is not available: {exc}"
            ) from exc
        self._http = http
        logger.debug("llama.cpp server at %s is healthy", self._server_url)

    async def create_chat(
        self, system_prompt: str, history: Sequence[Message] = ()
    ) -> LlamaChat:
        if self._http is None:
            raise BackendInitError("llama.cpp client not initialized.")
        return LlamaChat(self, system_prompt, history)

    async def request(
        self, method: str, path: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """Send a JSON request to the server and return the JSON body.

        Raises
        ------
        BackendCallError
            On transport errors, non-2xx statuses and malformed bodies.
        """
        if self._http is None:
            raise BackendCallError("llama.cpp client not initialized.")
        try:
            response = await self._http.request(method, path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise BackendCallError(
                f"llama.cpp HTTP error ({exc.response.status_code})"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise BackendCallError(f"llama.cpp request failed: {exc}") from exc

    async def count_history_tokens(self, history: Sequence[Message]) -> int:
        if not history:
            return 0
        text = " ".join(message.text for message in history)
        try:
            data = await self.request("POST", "/tokenize", {"content": text})
            return len(data["tokens"])
        except (BackendCallError, KeyError, TypeError) as exc:
            logger.warning("llama.cpp token count failed, estimating instead: %s", exc)
            return estimate_tokens(history)

    def preparing_message(self) -> str:
        return "Preparing the llama.cpp client..."

    def ready_message(self) -> str:
        return (
            f"llama.cpp client ready (local model: {self._model_name}, "
            f"server: {self._server_url}, context: {self._context_size})"
        )

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
