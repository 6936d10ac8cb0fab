"""
Inference provider contract.

The session controller never talks to a model directly. It loads a model
through an ``InferenceProvider``, opens a ``Conversation`` on the resulting
``ModelRunner`` and consumes the events that ``generate_response`` yields.
"""

from typing import AsyncIterator, Callable, Protocol, Tuple

from .types import ChatMessage, GenerationOptions, ResponseEvent

# (fraction in [0, 1], bytes per second). May be invoked from any thread.
ProgressHandler = Callable[[float, float], None]


class Conversation(Protocol):
    """Provider-owned turn history and generation context."""

    @property
    def history(self) -> Tuple[ChatMessage, ...]:
        """Point-in-time snapshot of user and assistant turns."""
        ...

    def generate_response(
        self, message: ChatMessage, options: GenerationOptions
    ) -> AsyncIterator[ResponseEvent]:
        """
        Record ``message`` in the history and stream the response to it.

        The message is recorded by the call itself, not by the first step of
        the iterator. The iterator is finite: it ends after a ``Completion``
        event or by raising. Closing it early cancels the generation and
        records no assistant turn.
        """
        ...

    def record_partial(self, message: ChatMessage) -> None:
        """Keep a stopped reply in the history as an assistant turn."""
        ...


class ModelRunner(Protocol):
    """A loaded model ready to host conversations."""

    def create_conversation(self, system_prompt: str) -> Conversation: ...


class InferenceProvider(Protocol):
    async def load(
        self,
        model: str,
        quantization: str,
        on_progress: ProgressHandler,
    ) -> ModelRunner:
        """Download (if needed) and initialize a model.

        Raises a ``LocalChatError`` describing the network, storage or model
        failure.
        """
        ...
