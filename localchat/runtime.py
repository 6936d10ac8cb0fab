"""
Inference provider backed by a local Ollama-compatible daemon.

Model acquisition goes through ``/api/pull`` and a warm-up ``/api/generate``;
conversations stream ``/api/chat``.
"""

import contextlib
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from .exceptions import LocalChatStreamError, ModelLoadError
from .provider import ProgressHandler
from .transport import AsyncTransport
from .types import (
    ChatMessage,
    Completion,
    DaemonChatChunk,
    DaemonChatRequest,
    DaemonMessage,
    FunctionCall,
    FunctionCallRequest,
    GenerationOptions,
    GenerationStats,
    PullProgress,
    PullRequest,
    ReasoningDelta,
    ResponseEvent,
    TextDelta,
)

logger = logging.getLogger(__name__)


def model_tag(model: str, quantization: Optional[str]) -> str:
    """Daemon model name, e.g. ``LFM2-1.2B:Q5_K_M``."""
    return f"{model}:{quantization}" if quantization else model


class ThroughputMeter:
    """Bytes/second between successive byte counts."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last_bytes: Optional[int] = None
        self._last_time = 0.0
        self.rate = 0.0

    def update(self, total_bytes: int) -> float:
        now = self._clock()
        if self._last_bytes is not None:
            elapsed = now - self._last_time
            if elapsed > 0:
                self.rate = max(total_bytes - self._last_bytes, 0) / elapsed
        self._last_bytes = total_bytes
        self._last_time = now
        return self.rate


class PullTracker:
    """Aggregates per-layer pull progress into one overall fraction."""

    def __init__(self) -> None:
        self._totals: Dict[str, int] = {}
        self._completed: Dict[str, int] = {}

    def update(self, progress: PullProgress) -> Optional[Tuple[float, int]]:
        if not progress.total:
            return None
        key = progress.digest or progress.status
        self._totals[key] = progress.total
        self._completed[key] = min(progress.completed or 0, progress.total)
        completed = sum(self._completed.values())
        return completed / sum(self._totals.values()), completed


def _function_call(raw: Dict[str, Any]) -> FunctionCall:
    function = raw.get("function", raw)
    return FunctionCall(
        name=function.get("name", ""),
        arguments=function.get("arguments") or {},
    )


def _stats(chunk: DaemonChatChunk) -> GenerationStats:
    prompt_tokens = chunk.prompt_eval_count or 0
    completion_tokens = chunk.eval_count or 0
    tokens_per_second = None
    if chunk.eval_count and chunk.eval_duration:
        tokens_per_second = chunk.eval_count / (chunk.eval_duration / 1e9)
    return GenerationStats(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        tokens_per_second=tokens_per_second,
    )


class RuntimeConversation:
    """
    Conversation whose canonical history lives in this object.

    The user turn is recorded when ``generate_response`` is called, before
    any request is made. The assistant turn is recorded on completion. A
    reply closed early leaves no assistant turn unless the caller keeps it
    with ``record_partial``.
    """

    def __init__(
        self,
        transport: AsyncTransport,
        model: str,
        system_prompt: str,
        keep_alive: Optional[str] = None,
    ) -> None:
        self.transport = transport
        self.model = model
        self.system_prompt = system_prompt
        self.keep_alive = keep_alive
        self._turns: List[ChatMessage] = []

    @property
    def history(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._turns)

    def record_partial(self, message: ChatMessage) -> None:
        self._turns.append(message)

    def _wire_messages(self) -> List[DaemonMessage]:
        messages = []
        if self.system_prompt:
            messages.append(DaemonMessage(role="system", content=self.system_prompt))
        for turn in self._turns:
            messages.append(DaemonMessage(role=turn.role, content=turn.text))
        return messages

    def generate_response(
        self, message: ChatMessage, options: GenerationOptions
    ) -> AsyncIterator[ResponseEvent]:
        self._turns.append(message)
        request = DaemonChatRequest(
            model=self.model,
            messages=self._wire_messages(),
            options=options.to_options(),
            keep_alive=self.keep_alive,
        )
        return self._stream_reply(request)

    async def _stream_reply(self, request: DaemonChatRequest) -> AsyncIterator[ResponseEvent]:
        chunks = self.transport.stream(
            "/api/chat", json_data=request.model_dump(exclude_none=True)
        )
        parts: List[str] = []
        async with contextlib.aclosing(chunks):
            async for chunk_data in chunks:
                if "error" in chunk_data:
                    raise LocalChatStreamError(str(chunk_data["error"]))
                chunk = DaemonChatChunk(**chunk_data)

                for event in self._delta_events(chunk.message):
                    if isinstance(event, TextDelta):
                        parts.append(event.text)
                    yield event

                if chunk.done:
                    reply = ChatMessage.from_text("assistant", "".join(parts))
                    self._turns.append(reply)
                    yield Completion(message=reply, stats=_stats(chunk))
                    return

        raise LocalChatStreamError("Response stream ended before completion")

    @staticmethod
    def _delta_events(delta: Optional[DaemonMessage]) -> List[ResponseEvent]:
        if delta is None:
            return []
        events: List[ResponseEvent] = []
        if delta.thinking:
            events.append(ReasoningDelta(text=delta.thinking))
        if delta.tool_calls:
            events.append(
                FunctionCallRequest(calls=tuple(_function_call(call) for call in delta.tool_calls))
            )
        if delta.content:
            events.append(TextDelta(text=delta.content))
        return events


class RuntimeModelRunner:
    """A model that the daemon has pulled and loaded."""

    def __init__(
        self, transport: AsyncTransport, model: str, keep_alive: Optional[str] = None
    ) -> None:
        self.transport = transport
        self.model = model
        self.keep_alive = keep_alive

    def create_conversation(self, system_prompt: str) -> RuntimeConversation:
        return RuntimeConversation(
            self.transport, self.model, system_prompt, keep_alive=self.keep_alive
        )


class RuntimeProvider:
    """
    Inference provider for an Ollama-compatible daemon.

    Example:
        >>> async with AsyncTransport(base_url="http://localhost:11434") as transport:
        ...     provider = RuntimeProvider(transport)
        ...     runner = await provider.load("LFM2-1.2B", "Q5_K_M", print)
        ...     conversation = runner.create_conversation("You are terse.")
    """

    def __init__(
        self,
        transport: AsyncTransport,
        keep_alive: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.keep_alive = keep_alive
        self._clock = clock

    async def load(
        self,
        model: str,
        quantization: str,
        on_progress: ProgressHandler,
    ) -> RuntimeModelRunner:
        name = model_tag(model, quantization)
        logger.info(f"Pulling model {name}")

        tracker = PullTracker()
        meter = ThroughputMeter(self._clock)
        succeeded = False
        chunks = self.transport.stream("/api/pull", json_data=PullRequest(name=name).model_dump())
        async with contextlib.aclosing(chunks):
            async for chunk_data in chunks:
                progress = PullProgress(**chunk_data)
                if progress.error:
                    raise ModelLoadError(f"Pull of {name} failed: {progress.error}")
                if progress.status == "success":
                    succeeded = True
                    on_progress(1.0, meter.rate)
                    continue
                update = tracker.update(progress)
                if update is not None:
                    fraction, completed = update
                    on_progress(fraction, meter.update(completed))
                else:
                    logger.debug(f"Pull status for {name}: {progress.status}")

        if not succeeded:
            raise ModelLoadError(f"Pull of {name} ended without success")

        logger.info(f"Warming up model {name}")
        warm_up: Dict[str, Any] = {"model": name, "prompt": "", "stream": False}
        if self.keep_alive is not None:
            warm_up["keep_alive"] = self.keep_alive
        await self.transport.post("/api/generate", json_data=warm_up)

        return RuntimeModelRunner(self.transport, name, keep_alive=self.keep_alive)
