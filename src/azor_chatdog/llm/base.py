"""Backend adapter contract.

Every LLM engine is normalised to two objects: an ``LLMClient`` that is
configured once per session, and a ``ChatHandle`` that holds one running
conversation.  The handle's history is the authoritative copy of the
conversation while a session is active.

Classes
-------
- BackendInitError  — the provider rejected the configuration
- BackendCallError  — a single provider request failed
- ChatHandle        — one running conversation with its own history
- LLMClient         — abstract base for engine clients
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from azor_chatdog.models import LLMResponse, Message

FAILED_RESPONSE_TEXT = "Sorry, an error occurred while generating the response."


class BackendInitError(RuntimeError):
    """Raised when an engine cannot be set up (bad credentials, no server)."""


class BackendCallError(RuntimeError):
    """Raised when a single request to the engine fails."""


def estimate_tokens(history: Sequence[Message]) -> int:
    """Rough token estimate: one token per ~4 characters of message text.

    Never decreases when messages are appended, which keeps token-based
    assertions stable for engines without a tokenizer.
    """
    return sum(len(message.text) for message in history) // 4


class ChatHandle(ABC):
    """A running conversation with one engine.

    ``send`` appends the user message and the model reply to the handle's
    history.  When the engine fails, a placeholder reply is appended before
    ``BackendCallError`` propagates so that the history stays paired.  A
    send that is cancelled or fails otherwise leaves the history as it was.

    Parameters
    ----------
    system_prompt:
        System instruction for the conversation.
    history:
        Prior messages to replay into the conversation.
    """

    def __init__(self, system_prompt: str, history: Sequence[Message] = ()) -> None:
        self._system_prompt = system_prompt
        self._history: list[Message] = list(history)

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    async def send(self, text: str) -> LLMResponse:
        """Send ``text`` as a user turn and return the model reply.

        Raises
        ------
        BackendCallError
            If the engine fails.  The placeholder reply has already been
            recorded in the history.
        asyncio.CancelledError
            If the call is abandoned.  The user turn is not kept.
        """
        self._history.append(Message.user(text))
        try:
            response = await self._complete(list(self._history))
        except BackendCallError:
            self._history.append(Message.reply(FAILED_RESPONSE_TEXT))
            raise
        except BaseException:
            # Abandoned turn: drop the unanswered user message.
            del self._history[-1]
            raise
        self._history.append(Message.reply(response.text))
        return response

    async def history(self) -> list[Message]:
        """Return a copy of the conversation exactly as sent and received."""
        return list(self._history)

    @abstractmethod
    async def _complete(self, history: list[Message]) -> LLMResponse:
        """Ask the engine for the reply to the last message of ``history``.

        Implementations must raise ``BackendCallError`` on any failure.
        """


class LLMClient(ABC):
    """Abstract base for an engine client.

    A client is created lazily by each session, initialised once with
    ``initialize`` and then used to open chat handles and count tokens.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Identifier of the model this client talks to."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the client for use.

        Raises
        ------
        BackendInitError
            If the engine rejects the configuration.
        """

    @abstractmethod
    async def create_chat(
        self, system_prompt: str, history: Sequence[Message] = ()
    ) -> ChatHandle:
        """Open a conversation that already contains ``history``."""

    async def count_history_tokens(self, history: Sequence[Message]) -> int:
        """Return the token count of ``history``.

        The default is ``estimate_tokens``; engines with a tokenizer
        override this and fall back to the estimate on failure.
        """
        return estimate_tokens(history)

    def preparing_message(self) -> str:
        return f"Preparing {type(self).__name__}..."

    def ready_message(self) -> str:
        return f"{type(self).__name__} ready (model: {self.model_name})"

    async def aclose(self) -> None:
        """Release any resources held by the client."""
