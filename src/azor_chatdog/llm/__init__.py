"""LLM engine subpackage.

Public surface
--------------
- LLMClient          — abstract engine client
- ChatHandle         — one running conversation; owns the authoritative history
- BackendInitError   — engine set-up failed
- BackendCallError   — a single request failed
- GeminiClient       — Google Gemini REST engine
- LlamaServerClient  — llama.cpp server engine
- create_client      — build the client for the configured engine
"""
from __future__ import annotations

from azor_chatdog.llm.base import (
    FAILED_RESPONSE_TEXT,
    BackendCallError,
    BackendInitError,
    ChatHandle,
    LLMClient,
    estimate_tokens,
)
from azor_chatdog.llm.factory import ENGINE_MAPPING, ClientFactory, create_client
from azor_chatdog.llm.gemini import GeminiClient
from azor_chatdog.llm.llama import LlamaServerClient

__all__ = [
    "BackendCallError",
    "BackendInitError",
    "ChatHandle",
    "ClientFactory",
    "ENGINE_MAPPING",
    "FAILED_RESPONSE_TEXT",
    "GeminiClient",
    "LLMClient",
    "LlamaServerClient",
    "create_client",
    "estimate_tokens",
]
