"""Conversation domain models.

All types are Pydantic BaseModel subclasses so that session records and
log entries validate on load and serialise without hand-written codecs.

Classes
-------
- Role          — enum: USER, MODEL
- MessagePart   — one content part of a message
- Message       — immutable chat message in the in-memory multi-part form
- StoredMessage — flattened message as written to a session file
- SessionRecord — on-disk representation of one session
- LLMResponse   — reply returned to the caller of ``send_message``
- TokenInfo     — token usage against the context budget
"""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class Role(str, Enum):
    """Author of a chat message."""

    USER = "user"
    MODEL = "model"


class MessagePart(BaseModel):
    """A single content part of a message."""

    text: str = ""

    model_config = {"frozen": True}


class Message(BaseModel):
    """One chat message.

    Messages are immutable once appended to a history.  Only the first
    text part is meaningful to the rest of the system; providers that
    return several parts are reduced to the first one by ``text``.

    Parameters
    ----------
    role:
        ``user`` or ``model``.
    parts:
        Content parts, in provider order.
    timestamp:
        ISO-8601 creation time, or None when unknown.
    """

    role: Role
    parts: tuple[MessagePart, ...] = Field(default_factory=tuple)
    timestamp: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def create(cls, role: Role, text: str, timestamp: str | None = None) -> "Message":
        """Build a single-part message stamped with the current time."""
        return cls(
            role=role,
            parts=(MessagePart(text=text),),
            timestamp=timestamp or utc_timestamp(),
        )

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls.create(Role.USER, text)

    @classmethod
    def reply(cls, text: str) -> "Message":
        return cls.create(Role.MODEL, text)

    @property
    def text(self) -> str:
        """Text of the first part, or an empty string."""
        return self.parts[0].text if self.parts else ""


class StoredMessage(BaseModel):
    """Flattened message as persisted in a session file."""

    role: Role
    text: str
    timestamp: str

    @classmethod
    def from_message(cls, message: Message) -> "StoredMessage":
        return cls(
            role=message.role,
            text=message.text,
            timestamp=message.timestamp or utc_timestamp(),
        )

    def to_message(self) -> Message:
        return Message(
            role=self.role,
            parts=(MessagePart(text=self.text),),
            timestamp=self.timestamp,
        )


class SessionRecord(BaseModel):
    """Full on-disk state of one session.

    Parameters
    ----------
    session_id:
        Unique session identifier.
    model:
        Name of the model the conversation was held with.
    system_role:
        System prompt active for the session.
    history:
        Flattened messages in chronological order.
    """

    session_id: str
    model: str
    system_role: str
    history: list[StoredMessage] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        session_id: str,
        history: Sequence[Message],
        system_prompt: str,
        model_name: str,
    ) -> "SessionRecord":
        return cls(
            session_id=session_id,
            model=model_name,
            system_role=system_prompt,
            history=[StoredMessage.from_message(message) for message in history],
        )

    def messages(self) -> list[Message]:
        """Return the history in the in-memory message form."""
        return [stored.to_message() for stored in self.history]


class LLMResponse(BaseModel):
    """The model's reply to one user message.

    Parameters
    ----------
    text:
        Reply text shown to the user.
    tokens_used:
        Tokens reported by the provider for this call, if any.
    failed:
        True when the provider call failed and ``text`` is a placeholder.
    """

    text: str
    tokens_used: int | None = None
    failed: bool = False

    model_config = {"frozen": True}


class TokenInfo(BaseModel):
    """Token usage of a session against its context budget.

    ``remaining`` goes negative once the conversation exceeds ``limit``.
    """

    used: int
    remaining: int
    limit: int

    model_config = {"frozen": True}

    @property
    def percentage(self) -> float:
        """Share of the budget in use, as a percentage."""
        return round(100.0 * self.used / self.limit, 1) if self.limit else 0.0
