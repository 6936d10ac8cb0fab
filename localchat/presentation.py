"""
Presentation projection.

Pure functions from ``SessionState`` to what a chat screen should show.
Renderers (the terminal front-end, or any GUI) draw the resulting
``ChatScreen`` and send commands back to the controller; no business rules
live here.
"""

from enum import Enum
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .store import SessionState
from .types import ChatMessage, LoadPhase

WELCOME_TITLE = "Welcome to LocalChat"
WELCOME_SUBTITLE = "Load the AI model to start chatting"
LOAD_ACTION = "Load Model"
INPUT_PLACEHOLDER = "Type a message..."


class Screen(str, Enum):
    LOADING = "loading"
    WELCOME = "welcome"
    CHAT = "chat"


class LoadingIndicator(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    detail: Optional[str] = None
    progress: Optional[float] = None  # None means indeterminate
    speed: Optional[str] = None


class WelcomePanel(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = WELCOME_TITLE
    subtitle: str = WELCOME_SUBTITLE
    action: str = LOAD_ACTION
    error: Optional[str] = None


class Bubble(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    text: str
    streaming: bool = False

    @property
    def align(self) -> Literal["left", "right"]:
        return "right" if self.role == "user" else "left"


class InputBar(BaseModel):
    model_config = ConfigDict(frozen=True)

    visible: bool
    editable: bool = True
    action: Literal["send", "stop"] = "send"
    action_enabled: bool = False
    placeholder: str = INPUT_PLACEHOLDER


class ChatScreen(BaseModel):
    model_config = ConfigDict(frozen=True)

    screen: Screen
    loading: Optional[LoadingIndicator] = None
    welcome: Optional[WelcomePanel] = None
    bubbles: Tuple[Bubble, ...] = ()
    input: InputBar
    error: Optional[str] = None


def format_speed(bytes_per_second: float) -> str:
    """``"12.34 MB/s"``, or an empty string when nothing is known."""
    if bytes_per_second <= 0:
        return ""
    return f"{bytes_per_second / (1024 * 1024):.2f} MB/s"


def loading_indicator(state: SessionState) -> LoadingIndicator:
    if state.phase is LoadPhase.DOWNLOADING and state.progress > 0:
        return LoadingIndicator(
            title=f"Downloading model: {int(state.progress * 100)}%",
            progress=state.progress,
            speed=format_speed(state.download_speed) or None,
        )
    if state.phase is LoadPhase.INITIALIZING:
        return LoadingIndicator(title="Initializing model...", detail="This may take a moment")
    return LoadingIndicator(title="Loading model...")


def bubble_for(message: ChatMessage, streaming: bool = False) -> Optional[Bubble]:
    if message.role not in ("user", "assistant"):
        return None
    return Bubble(role=message.role, text=message.text, streaming=streaming)


def bubbles(state: SessionState) -> Tuple[Bubble, ...]:
    result = [bubble for bubble in map(bubble_for, state.messages) if bubble is not None]
    if state.streaming_text:
        result.append(Bubble(role="assistant", text=state.streaming_text, streaming=True))
    return tuple(result)


def input_bar(state: SessionState, draft: str = "") -> InputBar:
    if not state.ready:
        return InputBar(visible=False)
    if state.generating:
        return InputBar(visible=True, editable=False, action="stop", action_enabled=True)
    return InputBar(visible=True, action="send", action_enabled=bool(draft))


def project(state: SessionState, draft: str = "") -> ChatScreen:
    """Project a session snapshot (and the current input draft) onto a screen."""
    bar = input_bar(state, draft)
    if state.phase.is_loading:
        return ChatScreen(screen=Screen.LOADING, loading=loading_indicator(state), input=bar)
    if not state.ready:
        return ChatScreen(
            screen=Screen.WELCOME,
            welcome=WelcomePanel(error=state.load_error),
            input=bar,
        )
    return ChatScreen(
        screen=Screen.CHAT,
        bubbles=bubbles(state),
        input=bar,
        error=state.generation_error,
    )


def prepare_submission(draft: str) -> Optional[str]:
    """Text to hand to ``send``, or None when the draft is blank."""
    if not draft.strip():
        return None
    return draft
