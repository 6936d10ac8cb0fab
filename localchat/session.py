"""
Session controller: model-load lifecycle and the single in-flight generation.

All state changes go through ``SessionStore.update`` on the main context.
Progress callbacks from the provider are re-dispatched there first; the
generation task runs on the same loop, so no locking is needed.
"""

import asyncio
import contextlib
import logging
import math
from typing import Any, AsyncIterator, Callable, List, Optional, Tuple

from .cancellation import GenerationOperation
from .config import Settings
from .exceptions import GenerationCancelled
from .provider import Conversation, InferenceProvider
from .store import SessionState, SessionStore
from .types import (
    AudioSamples,
    ChatMessage,
    Completion,
    FunctionCallRequest,
    GenerationOptions,
    LoadPhase,
    ReasoningDelta,
    ResponseEvent,
    TextDelta,
)

logger = logging.getLogger(__name__)

EventObserver = Callable[[ResponseEvent], None]

DEFAULT_MODEL = "LFM2-1.2B"
DEFAULT_QUANTIZATION = "Q5_K_M"
DEFAULT_SYSTEM_PROMPT = "You are a helpful travel assistant."


def _closing(stream: AsyncIterator[Any]) -> Any:
    if hasattr(stream, "aclose"):
        return contextlib.aclosing(stream)
    return contextlib.nullcontext(stream)


def _visible(history: Tuple[ChatMessage, ...]) -> Tuple[ChatMessage, ...]:
    return tuple(message for message in history if message.role in ("user", "assistant"))


class SessionController:
    """
    Loads a model, streams responses into observable state and manages at
    most one generation at a time.

    Example:
        >>> controller = SessionController(provider)
        >>> await controller.load_model()
        >>> operation = controller.send("Where should I go in May?")
        >>> await operation.wait()
        >>> controller.state.messages[-1].text

    Attributes:
        store: Observable state; subscribe to it to re-render.
        options: Generation parameters passed with every message.
    """

    def __init__(
        self,
        provider: InferenceProvider,
        model: str = DEFAULT_MODEL,
        quantization: str = DEFAULT_QUANTIZATION,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        options: Optional[GenerationOptions] = None,
        store: Optional[SessionStore] = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.quantization = quantization
        self.system_prompt = system_prompt
        self.options = options or GenerationOptions()
        self.store = store or SessionStore()

        self._conversation: Optional[Conversation] = None
        self._operation: Optional[GenerationOperation] = None
        self._observers: List[EventObserver] = []

        self._loading = False
        self._load_attempt = 0
        self._download_completed = False

    @classmethod
    def from_settings(
        cls, provider: InferenceProvider, settings: Settings, store: Optional[SessionStore] = None
    ) -> "SessionController":
        return cls(
            provider,
            model=settings.model,
            quantization=settings.quantization,
            system_prompt=settings.system_prompt,
            options=settings.generation_options(),
            store=store,
        )

    @property
    def state(self) -> SessionState:
        return self.store.state

    @property
    def conversation(self) -> Optional[Conversation]:
        return self._conversation

    @property
    def operation(self) -> Optional[GenerationOperation]:
        """The active generation, if any."""
        return self._operation

    @property
    def is_generating(self) -> bool:
        return self._operation is not None

    def add_event_observer(self, observer: EventObserver) -> Callable[[], None]:
        """Receive every response event. Observers run inline and must not block."""
        self._observers.append(observer)

        def remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return remove

    # ------------------------------------------------------------------
    # Model loading
    # ------------------------------------------------------------------

    async def load_model(self) -> bool:
        """
        Download (if needed) and initialize the model, then open a conversation.

        Returns True when the session is ready. Failures are recorded in
        ``state.load_error`` rather than raised. A call made while another
        load is in flight is ignored and returns False.
        """
        self.store.context.bind()
        if self._loading:
            logger.warning("Model load already in progress; ignoring request")
            return False

        self._loading = True
        self._load_attempt += 1
        attempt = self._load_attempt
        self._download_completed = False
        self._cancel_operation()
        self._conversation = None
        self.store.update(
            phase=LoadPhase.DOWNLOADING,
            progress=0.0,
            download_speed=0.0,
            load_error=None,
            generating=False,
            streaming_text="",
            ready=False,
        )

        def on_progress(fraction: float, bytes_per_second: float) -> None:
            self.store.context.call(self._apply_progress, attempt, fraction, bytes_per_second)

        logger.info(f"Loading model {self.model} ({self.quantization})")
        try:
            runner = await self.provider.load(self.model, self.quantization, on_progress)
            self._enter_initializing()
            conversation = runner.create_conversation(self.system_prompt)
            history = _visible(conversation.history)
        except asyncio.CancelledError:
            logger.info("Model load cancelled")
            self.store.update(phase=LoadPhase.IDLE, progress=0.0, download_speed=0.0)
            raise
        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            self.store.update(
                phase=LoadPhase.FAILED,
                progress=0.0,
                download_speed=0.0,
                load_error=f"Failed to load model: {e}",
            )
            return False
        finally:
            self._loading = False

        self._conversation = conversation
        self.store.update(
            phase=LoadPhase.READY,
            download_speed=0.0,
            ready=True,
            messages=history,
        )
        logger.info(f"Model {self.model} ready")
        return True

    def _apply_progress(self, attempt: int, fraction: float, bytes_per_second: float) -> None:
        # Callbacks queued from other threads can land after the load ended
        if attempt != self._load_attempt or not self._loading or self._download_completed:
            return
        if math.isnan(fraction):
            logger.debug("Ignoring progress report without a fraction")
            return
        fraction = min(max(fraction, 0.0), 1.0)
        if fraction >= 1.0:
            self._enter_initializing()
            return
        self.store.update(
            phase=LoadPhase.DOWNLOADING,
            progress=fraction,
            download_speed=bytes_per_second if bytes_per_second > 0 else 0.0,
        )

    def _enter_initializing(self) -> None:
        if self._download_completed:
            return
        self._download_completed = True
        logger.info("Model download complete; initializing")
        self.store.update(phase=LoadPhase.INITIALIZING, progress=1.0, download_speed=0.0)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def send(self, text: str) -> Optional[GenerationOperation]:
        """
        Send a user message and start streaming the reply.

        Does nothing (returns None) when no conversation is ready or ``text``
        is blank. Any generation already running is cancelled first. The
        message reaches the conversation before this returns, so a send that
        is superseded at once still stays in its history. If the provider
        rejects the message outright the error is recorded and None returned.
        """
        conversation = self._conversation
        if conversation is None or not text.strip():
            return None

        loop = self.store.context.bind()
        self._cancel_operation()

        message = ChatMessage.from_text("user", text)
        operation = GenerationOperation()
        self._operation = operation
        self.store.update(
            messages=self.state.messages + (message,),
            streaming_text="",
            generation_error=None,
            generating=True,
        )

        try:
            stream = conversation.generate_response(message, self.options)
        except Exception as e:
            logger.error(f"Generation failed: {e}")
            self._operation = None
            self.store.update(generation_error=f"Generation failed: {e}", generating=False)
            return None

        operation.attach(loop.create_task(self._consume(operation, conversation, stream)))
        return operation

    def stop_generation(self) -> None:
        """Cancel the active generation, keeping whatever text streamed so far.

        The kept text is also recorded in the conversation so the next
        history refresh does not drop it.
        """
        self._cancel_operation()

        buffer = self.state.streaming_text
        if buffer:
            partial = ChatMessage.from_text("assistant", buffer)
            if self._conversation is not None:
                self._conversation.record_partial(partial)
            self.store.update(
                messages=self.state.messages + (partial,),
                streaming_text="",
                generating=False,
            )
        else:
            self.store.update(generating=False)

    async def aclose(self) -> None:
        """Cancel any active generation and wait for it to wind down."""
        operation = self._operation
        self._cancel_operation()
        self.store.update(generating=False)
        if operation is not None:
            await operation.wait()

    def _cancel_operation(self) -> None:
        operation = self._operation
        if operation is not None:
            logger.debug("Cancelling active generation")
            operation.cancel()
            self._operation = None

    def _release(self, operation: GenerationOperation) -> None:
        if self._operation is operation:
            self._operation = None
            self.store.update(generating=False)

    async def _consume(
        self,
        operation: GenerationOperation,
        conversation: Conversation,
        stream: AsyncIterator[ResponseEvent],
    ) -> None:
        try:
            async with _closing(stream):
                async for event in stream:
                    operation.token.raise_if_cancelled()
                    self._handle(event, conversation)
        except GenerationCancelled:
            logger.debug("Generation stopped")
        except asyncio.CancelledError:
            logger.debug("Generation task cancelled")
            raise
        except Exception as e:
            if operation.cancelled:
                logger.debug(f"Generation raised after cancellation: {e}")
            else:
                logger.error(f"Generation failed: {e}")
                self.store.update(generation_error=f"Generation failed: {e}", streaming_text="")
        finally:
            self._release(operation)

    def _handle(self, event: ResponseEvent, conversation: Conversation) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception("Response event observer failed")

        if isinstance(event, TextDelta):
            self.store.update(streaming_text=self.state.streaming_text + event.text)
        elif isinstance(event, ReasoningDelta):
            logger.debug(f"Reasoning: {event.text}")
        elif isinstance(event, AudioSamples):
            logger.debug(
                f"Received audio samples {len(event.samples)} at sample rate {event.sample_rate}"
            )
        elif isinstance(event, FunctionCallRequest):
            logger.debug(f"Requested calls: {[call.name for call in event.calls]}")
        elif isinstance(event, Completion):
            self._complete(event, conversation)
        else:
            logger.warning(f"Unknown response event: {event!r}")

    def _complete(self, event: Completion, conversation: Conversation) -> None:
        if event.stats is not None:
            logger.debug(f"Finished with {event.stats.total_tokens} tokens")

        messages = self.state.messages
        text = event.message.text
        if text:
            messages = messages + (ChatMessage.from_text("assistant", text),)

        # The conversation's history is authoritative; a provider that keeps
        # none leaves the local list in place.
        canonical = _visible(conversation.history)
        if canonical:
            if canonical != messages:
                logger.debug(
                    f"Replacing {len(messages)} local messages with "
                    f"{len(canonical)} from conversation history"
                )
            messages = canonical

        self.store.update(messages=messages, streaming_text="")
