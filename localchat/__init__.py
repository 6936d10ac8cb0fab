"""
LocalChat - a streaming chat session over an on-device language model.

The session controller owns the model-load lifecycle and a single
cancellable generation; the presentation module projects its observable
state for whatever renders it. Inference is delegated to a provider, by
default a local Ollama-compatible daemon.
"""

__version__ = "0.1.0"

from .cancellation import CancellationToken, GenerationOperation
from .config import Settings, load_settings
from .exceptions import (
    GenerationCancelled,
    LocalChatAPIError,
    LocalChatAuthenticationError,
    LocalChatConnectionError,
    LocalChatError,
    LocalChatNotFoundError,
    LocalChatPermissionError,
    LocalChatRateLimitError,
    LocalChatServerError,
    LocalChatStreamError,
    LocalChatTimeoutError,
    LocalChatValidationError,
    ModelLoadError,
)
from .presentation import ChatScreen, prepare_submission, project
from .provider import Conversation, InferenceProvider, ModelRunner
from .runtime import RuntimeProvider
from .session import SessionController
from .store import SessionState, SessionStore
from .transport import AsyncTransport
from .types import (
    ChatMessage,
    Completion,
    GenerationOptions,
    GenerationStats,
    LoadPhase,
    ReasoningDelta,
    TextDelta,
)

__all__ = [
    # Version
    "__version__",
    # Session
    "SessionController",
    "SessionState",
    "SessionStore",
    "CancellationToken",
    "GenerationOperation",
    # Presentation
    "ChatScreen",
    "project",
    "prepare_submission",
    # Providers
    "InferenceProvider",
    "ModelRunner",
    "Conversation",
    "RuntimeProvider",
    "AsyncTransport",
    # Configuration
    "Settings",
    "load_settings",
    # Types
    "ChatMessage",
    "Completion",
    "GenerationOptions",
    "GenerationStats",
    "LoadPhase",
    "ReasoningDelta",
    "TextDelta",
    # Exceptions
    "LocalChatError",
    "LocalChatConnectionError",
    "LocalChatTimeoutError",
    "LocalChatAPIError",
    "LocalChatAuthenticationError",
    "LocalChatPermissionError",
    "LocalChatNotFoundError",
    "LocalChatRateLimitError",
    "LocalChatServerError",
    "LocalChatValidationError",
    "LocalChatStreamError",
    "ModelLoadError",
    "GenerationCancelled",
]
