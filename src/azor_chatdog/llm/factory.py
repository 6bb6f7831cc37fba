"""Engine client factory.

Maps each ``Engine`` to the client class that implements it.  The mapping
is exhaustive; an engine without an entry is a configuration error.
"""
from __future__ import annotations

from collections.abc import Callable

from azor_chatdog.config import ConfigError, Engine, Settings
from azor_chatdog.llm.base import LLMClient
from azor_chatdog.llm.gemini import GeminiClient
from azor_chatdog.llm.llama import LlamaServerClient

ClientFactory = Callable[[Settings], LLMClient]


def _make_gemini(settings: Settings) -> LLMClient:
    return GeminiClient(
        settings.gemini_model,
        settings.gemini_api_key,
        timeout=settings.request_timeout,
    )


def _make_llama(settings: Settings) -> LLMClient:
    return LlamaServerClient(
        settings.llama_model_name,
        settings.llama_server_url,
        context_size=settings.llama_context_size,
        timeout=settings.request_timeout,
    )


ENGINE_MAPPING: dict[Engine, ClientFactory] = {
    Engine.GEMINI: _make_gemini,
    Engine.LLAMA_CPP: _make_llama,
}


def create_client(settings: Settings) -> LLMClient:
    """Instantiate the (uninitialised) client for ``settings.engine``.

    Raises
    ------
    ConfigError
        If no client is registered for the configured engine.
    """
    try:
        factory = ENGINE_MAPPING[settings.engine]
    except KeyError:
        raise ConfigError(f"No client registered for engine {settings.engine!r}.") from None
    return factory(settings)
