"""Google Gemini engine over the Generative Language REST API.

The REST API is stateless, so the chat handle keeps the conversation and
replays it with every ``generateContent`` request.

Classes
-------
- GeminiChat    — chat handle for one Gemini conversation
- GeminiClient  — engine client
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
from azor_chatdog.models import LLMResponse, Message

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/"


def to_gemini_contents(history: Sequence[Message]) -> list[dict[str, Any]]:
    """Convert messages to Gemini ``contents``; empty messages are dropped."""
    return [
        {"role": message.role.value, "parts": [{"text": message.text}]}
        for message in history
        if message.text
    ]


def _extract_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        raise BackendCallError("Gemini returned no candidates.")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    for part in parts:
        if part.get("text"):
            return str(part["text"])
    raise BackendCallError("Gemini returned an empty response.")


def mask_key(api_key: str) -> str:
    """Show only the first and last four characters of ``api_key``."""
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}...{api_key[-4:]}"


class GeminiChat(ChatHandle):
    """Conversation held against a Gemini model."""

    def __init__(
        self,
        client: "GeminiClient",
        system_prompt: str,
        history: Sequence[Message] = (),
    ) -> None:
        super().__init__(system_prompt, history)
        self._client = client

    async def _complete(self, history: list[Message]) -> LLMResponse:
        payload: dict[str, Any] = {"contents": to_gemini_contents(history)}
        if self.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": self.system_prompt}]}
        data = await self._client.post("generateContent", payload)
        usage = data.get("usageMetadata") or {}
        return LLMResponse(
            text=_extract_text(data),
            tokens_used=usage.get("totalTokenCount"),
        )


class GeminiClient(LLMClient):
    """Client for the Gemini REST API.

    Parameters
    ----------
    model_name:
        Gemini model identifier, e.g. ``gemini-2.0-flash``.
    api_key:
        Google AI Studio API key.
    timeout:
        Seconds to wait for each HTTP request.
    transport:
        Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model_name = model_name
        self._api_key = api_key.strip()
        self._timeout = timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def model_name(self) -> str:
        return self._model_name

    async def initialize(self) -> None:
        if not self._api_key:
            raise BackendInitError("GEMINI_API_KEY must not be empty.")
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=GEMINI_BASE_URL,
                timeout=self._timeout,
                headers={"x-goog-api-key": self._api_key},
                transport=self._transport,
            )

    async def create_chat(
        self, system_prompt: str, history: Sequence[Message] = ()
    ) -> GeminiChat:
        if self._http is None:
            raise BackendInitError("Gemini client not initialized.")
        return GeminiChat(self, system_prompt, history)

    async def post(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST ``payload`` to ``models/<model>:<method>`` and return the JSON body.

        Raises
        ------
        BackendCallError
            On transport errors, non-2xx statuses and malformed bodies.
        """
        if self._http is None:
            raise BackendCallError("Gemini client not initialized.")
        url = f"models/{self._model_name}:{method}"
        try:
            response = await self._http.post(url, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise BackendCallError(
                f"Gemini HTTP error ({exc.response.status_code})"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise BackendCallError(f"Gemini request failed: {exc}") from exc

    async def count_history_tokens(self, history: Sequence[Message]) -> int:
        contents = to_gemini_contents(history)
        if not contents:
            return 0
        try:
            data = await self.post("countTokens", {"contents": contents})
            return int(data["totalTokens"])
        except (BackendCallError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Gemini token count failed, estimating instead: %s", exc)
            return estimate_tokens(history)

    def preparing_message(self) -> str:
        return "Preparing the Gemini client..."

    def ready_message(self) -> str:
        return (
            f"Gemini client ready (model: {self._model_name}, "
            f"key: {mask_key(self._api_key)})"
        )

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
