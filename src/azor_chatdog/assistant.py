"""Assistant identity.

An ``Assistant`` is built once per process and shared by reference with
every session; it never changes.
"""
from __future__ import annotations

from pydantic import BaseModel

AZOR_NAME = "AZOR"
AZOR_SYSTEM_PROMPT = (
    "You are a helpful assistant. Your name is Azor and you are a dog of "
    "great abilities. You are Reksio's best friend, but you happily make "
    "friends with people too. Your job is to help the user solve problems, "
    "answer questions and provide information in a polite, clear way."
)


class Assistant(BaseModel):
    """System prompt and display name of the assistant."""

    system_prompt: str
    name: str

    model_config = {"frozen": True}


def create_azor_assistant() -> Assistant:
    """Return the default Azor assistant."""
    return Assistant(system_prompt=AZOR_SYSTEM_PROMPT, name=AZOR_NAME)
