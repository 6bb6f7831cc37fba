"""azor-chatdog — interactive chat with durable, resumable sessions.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import azor_chatdog
>>> azor_chatdog.__version__
'0.1.0'
"""
from __future__ import annotations

# Configuration and identity
from azor_chatdog.assistant import Assistant, create_azor_assistant
from azor_chatdog.config import ConfigError, Engine, Settings

# Data model
from azor_chatdog.models import (
    LLMResponse,
    Message,
    MessagePart,
    Role,
    SessionRecord,
    StoredMessage,
    TokenInfo,
)

# Engines
from azor_chatdog.llm import (
    BackendCallError,
    BackendInitError,
    ChatHandle,
    GeminiClient,
    LlamaServerClient,
    LLMClient,
    create_client,
)

# Storage
from azor_chatdog.storage import (
    LoadError,
    LogError,
    RemoveError,
    SaveError,
    SessionCorruptError,
    SessionNotFoundError,
    SessionStore,
    SessionSummary,
    WalEntry,
    WriteAheadLog,
)

# Sessions
from azor_chatdog.session import (
    ChatSession,
    CleanupResult,
    NewSessionResult,
    Outcome,
    RemoveResult,
    SessionManager,
    SessionPhase,
    SwitchResult,
)

__version__: str = "0.1.0"

__all__ = [
    "__version__",
    # Configuration and identity
    "Assistant",
    "ConfigError",
    "Engine",
    "Settings",
    "create_azor_assistant",
    # Data model
    "LLMResponse",
    "Message",
    "MessagePart",
    "Role",
    "SessionRecord",
    "StoredMessage",
    "TokenInfo",
    # Engines
    "BackendCallError",
    "BackendInitError",
    "ChatHandle",
    "GeminiClient",
    "LLMClient",
    "LlamaServerClient",
    "create_client",
    # Storage
    "LoadError",
    "LogError",
    "RemoveError",
    "SaveError",
    "SessionCorruptError",
    "SessionNotFoundError",
    "SessionStore",
    "SessionSummary",
    "WalEntry",
    "WriteAheadLog",
    # Sessions
    "ChatSession",
    "CleanupResult",
    "NewSessionResult",
    "Outcome",
    "RemoveResult",
    "SessionManager",
    "SessionPhase",
    "SwitchResult",
]
