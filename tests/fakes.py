"""Scriptable stand-ins for the inference provider stack."""

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, List, Optional, Sequence, Tuple

from localchat.provider import ProgressHandler
from localchat.types import (
    ChatMessage,
    Completion,
    GenerationOptions,
    GenerationStats,
    ResponseEvent,
    TextDelta,
)


def completion(text: str, total_tokens: int = 3) -> Completion:
    return Completion(
        message=ChatMessage.from_text("assistant", text),
        stats=GenerationStats(completion_tokens=total_tokens, total_tokens=total_tokens),
    )


def reply(text: str) -> "ScriptedTurn":
    """A turn that streams ``text`` word by word, then completes with it."""
    words = text.split(" ")
    deltas: List[ResponseEvent] = [
        TextDelta(text=word if i == 0 else f" {word}") for i, word in enumerate(words)
    ]
    return ScriptedTurn(events=deltas + [completion(text)])


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout)


@dataclass
class ScriptedTurn:
    events: List[ResponseEvent] = field(default_factory=list)
    error: Optional[Exception] = None  # raised after the events
    hold: bool = False  # keep the stream open until released or cancelled


class FakeConversation:
    """Conversation that plays back scripted turns."""

    def __init__(self, turns: Sequence[ScriptedTurn] = (), track_history: bool = True) -> None:
        self.turns = list(turns)
        self.track_history = track_history
        self.calls: List[Tuple[ChatMessage, GenerationOptions]] = []
        self.closed_early = 0
        self.partials: List[ChatMessage] = []
        self.release = asyncio.Event()
        self._history: List[ChatMessage] = []

    @property
    def history(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._history)

    def record_partial(self, message: ChatMessage) -> None:
        self.partials.append(message)
        if self.track_history:
            self._history.append(message)

    def generate_response(
        self, message: ChatMessage, options: GenerationOptions
    ) -> AsyncIterator[ResponseEvent]:
        self.calls.append((message, options))
        turn = self.turns.pop(0) if self.turns else ScriptedTurn(events=[completion("ok")])
        if self.track_history:
            self._history.append(message)
        return self._play(turn)

    async def _play(self, turn: ScriptedTurn) -> AsyncIterator[ResponseEvent]:
        try:
            for event in turn.events:
                if isinstance(event, Completion) and self.track_history:
                    self._history.append(event.message)
                yield event
                await asyncio.sleep(0)
            if turn.hold:
                await self.release.wait()
            if turn.error is not None:
                raise turn.error
        except (GeneratorExit, asyncio.CancelledError):
            self.closed_early += 1
            raise


class FakeRunner:
    def __init__(self, conversation: FakeConversation) -> None:
        self.conversation = conversation
        self.system_prompts: List[str] = []

    def create_conversation(self, system_prompt: str) -> FakeConversation:
        self.system_prompts.append(system_prompt)
        return self.conversation


class FakeProvider:
    """Provider whose load reports scripted progress and then succeeds or fails."""

    def __init__(
        self,
        conversation: Optional[FakeConversation] = None,
        progress: Sequence[Tuple[float, float]] = (),
        error: Optional[Exception] = None,
        from_thread: bool = False,
        hold: Optional[asyncio.Event] = None,
    ) -> None:
        self.conversation = conversation or FakeConversation()
        self.progress = list(progress)
        self.error = error
        self.from_thread = from_thread
        self.hold = hold
        self.calls: List[Tuple[str, str]] = []
        self.runner: Optional[FakeRunner] = None

    def _report(self, on_progress: ProgressHandler) -> None:
        for fraction, speed in self.progress:
            on_progress(fraction, speed)

    async def load(
        self, model: str, quantization: str, on_progress: ProgressHandler
    ) -> FakeRunner:
        self.calls.append((model, quantization))
        if self.from_thread:
            await asyncio.to_thread(self._report, on_progress)
        else:
            self._report(on_progress)
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error
        self.runner = FakeRunner(self.conversation)
        return self.runner
