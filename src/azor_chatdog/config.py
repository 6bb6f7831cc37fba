"""Process-level configuration.

Settings are read once at start-up from the environment (and a ``.env``
file, if present) and passed by reference to the ``SessionManager``.

Classes
-------
- Engine      — closed enumeration of supported LLM engines
- Settings    — validated process configuration
- ConfigError — fatal misconfiguration
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError

_DEFAULT_BASE_DIR: Path = Path.home() / ".azor"
_WAL_FILENAME = "azor-wal.json"


class ConfigError(ValueError):
    """Raised when the process configuration cannot be used.

    This error is fatal: the CLI reports it and exits instead of guessing
    a fallback.
    """


class Engine(str, Enum):
    """LLM engines the client knows how to talk to."""

    GEMINI = "GEMINI"
    LLAMA_CPP = "LLAMA_CPP"

    @classmethod
    def parse(cls, raw: str) -> "Engine":
        """Return the engine named by ``raw`` (case-insensitive).

        Raises
        ------
        ConfigError
            If ``raw`` does not name a known engine.
        """
        try:
            return cls(raw.strip().upper())
        except ValueError:
            valid = ", ".join(member.value for member in cls)
            raise ConfigError(
                f"ENGINE must be one of: {valid}; got {raw!r}."
            ) from None


class Settings(BaseModel):
    """Validated configuration for one process.

    Parameters
    ----------
    engine:
        Which LLM engine new sessions talk to.
    base_dir:
        Directory holding session files and the write-ahead log.
    max_context_tokens:
        Context budget used for the remaining-token calculation.
    gemini_model:
        Gemini model identifier.
    gemini_api_key:
        API key for the Gemini engine.
    llama_model_name:
        Display name of the model served by llama.cpp.
    llama_server_url:
        Base URL of a running llama.cpp server.
    llama_context_size:
        Context size the llama.cpp server was started with.
    request_timeout:
        Seconds to wait for a single LLM HTTP request.
    cleanup_timeout:
        Seconds allowed for the final save on shutdown.
    """

    engine: Engine = Engine.GEMINI
    base_dir: Path = _DEFAULT_BASE_DIR
    max_context_tokens: int = Field(default=32768, ge=1)
    gemini_model: str = "gemini-2.0-flash"
    gemini_api_key: str = ""
    llama_model_name: str = "llama-3.1-8b-instruct"
    llama_server_url: str = "http://127.0.0.1:8080"
    llama_context_size: int = Field(default=2048, ge=1)
    request_timeout: float = Field(default=120.0, gt=0)
    cleanup_timeout: float = Field(default=10.0, gt=0)

    model_config = {"frozen": True}

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------

    @property
    def sessions_dir(self) -> Path:
        """Directory holding one JSON file per session."""
        return self.base_dir

    @property
    def wal_path(self) -> Path:
        """Path of the process-wide write-ahead log."""
        return self.base_dir / _WAL_FILENAME

    @property
    def output_dir(self) -> Path:
        """Directory for exported artifacts."""
        return self.base_dir / "output"

    def ensure_directories(self) -> None:
        """Create the base and output directories if they are missing."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_environment(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        dotenv: bool = True,
    ) -> "Settings":
        """Build settings from environment variables.

        Parameters
        ----------
        environ:
            Mapping to read instead of ``os.environ``.  When given, no
            ``.env`` file is loaded.
        dotenv:
            Load a ``.env`` file into ``os.environ`` first.

        Raises
        ------
        ConfigError
            On an unknown engine or any value that fails validation.
        """
        if environ is None:
            if dotenv:
                load_dotenv(find_dotenv(usecwd=True))
            environ = os.environ

        values: dict[str, object] = {
            "engine": Engine.parse(environ.get("ENGINE", Engine.GEMINI.value)),
        }
        mapping = {
            "AZOR_HOME": "base_dir",
            "MAX_CONTEXT_TOKENS": "max_context_tokens",
            "MODEL_NAME": "gemini_model",
            "GEMINI_API_KEY": "gemini_api_key",
            "LLAMA_MODEL_NAME": "llama_model_name",
            "LLAMA_SERVER_URL": "llama_server_url",
            "LLAMA_CONTEXT_SIZE": "llama_context_size",
            "REQUEST_TIMEOUT": "request_timeout",
            "CLEANUP_TIMEOUT": "cleanup_timeout",
        }
        for env_name, field_name in mapping.items():
            raw = environ.get(env_name)
            if raw is not None and raw.strip():
                values[field_name] = raw.strip()
        if "base_dir" in values:
            values["base_dir"] = Path(str(values["base_dir"])).expanduser()

        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

