"""
Type definitions for LocalChat.

Provides Pydantic models for chat messages, generation events and the
Ollama-compatible wire format spoken by the local inference daemon.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Chat Messages
# ============================================================================


Role = Literal["system", "user", "assistant"]


class TextPart(BaseModel):
    """A text fragment of a message."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class AudioPart(BaseModel):
    """PCM audio attached to a message."""

    model_config = ConfigDict(frozen=True)

    type: Literal["audio"] = "audio"
    samples: Tuple[float, ...] = ()
    sample_rate: int


class FunctionCall(BaseModel):
    """A tool invocation requested by the model."""

    model_config = ConfigDict(frozen=True)

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class FunctionCallPart(BaseModel):
    """Function calls attached to a message."""

    model_config = ConfigDict(frozen=True)

    type: Literal["function_call"] = "function_call"
    calls: Tuple[FunctionCall, ...] = ()


ContentPart = Annotated[
    Union[TextPart, AudioPart, FunctionCallPart], Field(discriminator="type")
]


class ChatMessage(BaseModel):
    """
    A message in a chat conversation.

    Messages are immutable once created. Only text parts are rendered; audio
    and function-call parts are carried along but never shown.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Tuple[ContentPart, ...] = ()

    @classmethod
    def from_text(cls, role: Role, text: str) -> "ChatMessage":
        return cls(role=role, content=(TextPart(text=text),))

    @property
    def text(self) -> str:
        """Concatenation of all text parts."""
        return "".join(part.text for part in self.content if isinstance(part, TextPart))


# ============================================================================
# Generation
# ============================================================================


class GenerationOptions(BaseModel):
    """Sampling parameters passed to the provider with each generation."""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.7, ge=0.0)
    top_p: Optional[float] = Field(default=None, gt=0.0, le=1.0)
    top_k: Optional[int] = Field(default=None, gt=0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    seed: Optional[int] = None

    def to_options(self) -> Dict[str, Any]:
        """Convert to the daemon's ``options`` mapping, omitting unset values."""
        options: Dict[str, Any] = {"temperature": self.temperature}
        if self.top_p is not None:
            options["top_p"] = self.top_p
        if self.top_k is not None:
            options["top_k"] = self.top_k
        if self.max_tokens is not None:
            options["num_predict"] = self.max_tokens
        if self.seed is not None:
            options["seed"] = self.seed
        return options


class GenerationStats(BaseModel):
    """Token usage statistics for one completed generation."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    tokens_per_second: Optional[float] = None


class TextDelta(BaseModel):
    """Incremental response text."""

    kind: Literal["text"] = "text"
    text: str


class ReasoningDelta(BaseModel):
    """Incremental reasoning trace, not part of the visible answer."""

    kind: Literal["reasoning"] = "reasoning"
    text: str


class AudioSamples(BaseModel):
    """A block of synthesized audio."""

    kind: Literal["audio"] = "audio"
    samples: Tuple[float, ...] = ()
    sample_rate: int


class FunctionCallRequest(BaseModel):
    """The model asks the caller to run one or more functions."""

    kind: Literal["function_call"] = "function_call"
    calls: Tuple[FunctionCall, ...] = ()


class Completion(BaseModel):
    """Final event of a generation carrying the complete assistant message."""

    kind: Literal["complete"] = "complete"
    message: ChatMessage
    stats: Optional[GenerationStats] = None


ResponseEvent = Annotated[
    Union[TextDelta, ReasoningDelta, AudioSamples, FunctionCallRequest, Completion],
    Field(discriminator="kind"),
]


class LoadPhase(str, Enum):
    """Model acquisition and startup progress."""

    IDLE = "idle"
    DOWNLOADING = "downloading"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_loading(self) -> bool:
        return self in (LoadPhase.DOWNLOADING, LoadPhase.INITIALIZING)


# ============================================================================
# Ollama-Compatible Daemon Types
# ============================================================================


class DaemonMessage(BaseModel):
    """Chat message as sent to and received from the daemon."""

    role: Role
    content: str = ""
    thinking: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None


class DaemonChatRequest(BaseModel):
    """Streaming chat request."""

    model: str
    messages: List[DaemonMessage]
    options: Optional[Dict[str, Any]] = None
    stream: bool = True
    keep_alive: Optional[str] = None


class DaemonChatChunk(BaseModel):
    """One line of a streaming chat response."""

    model: Optional[str] = None
    created_at: Optional[str] = None
    message: Optional[DaemonMessage] = None
    done: bool = False
    done_reason: Optional[str] = None
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None


class PullRequest(BaseModel):
    """Model pull request."""

    name: str
    insecure: bool = False
    stream: bool = True


class PullProgress(BaseModel):
    """One line of a streaming model pull."""

    status: str = ""
    digest: Optional[str] = None
    total: Optional[int] = None
    completed: Optional[int] = None
    error: Optional[str] = None
