"""
Observable session state.

The controller is the only writer. Presentation code reads ``state`` and
subscribes to be told when a new snapshot replaces it.
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .dispatch import MainContext
from .types import ChatMessage, LoadPhase

logger = logging.getLogger(__name__)


class SessionState(BaseModel):
    """Immutable snapshot of everything the presentation layer observes."""

    model_config = ConfigDict(frozen=True)

    phase: LoadPhase = LoadPhase.IDLE
    progress: float = 0.0
    download_speed: float = 0.0  # bytes per second
    load_error: Optional[str] = None
    generation_error: Optional[str] = None
    messages: Tuple[ChatMessage, ...] = ()
    streaming_text: str = ""
    generating: bool = False
    ready: bool = False


Subscriber = Callable[[SessionState], None]


class SessionStore:
    """Holds the current ``SessionState`` and notifies subscribers of changes."""

    def __init__(
        self,
        context: Optional[MainContext] = None,
        initial: Optional[SessionState] = None,
    ) -> None:
        self.context = context or MainContext()
        self._state = initial or SessionState()
        self._subscribers: List[Subscriber] = []

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def update(self, **changes: Any) -> SessionState:
        """Replace the snapshot with ``changes`` applied.

        Subscribers are only notified when at least one field changed.
        """
        if not self.context.is_current():
            raise RuntimeError("Session state may only be mutated from the main context")
        unknown = set(changes) - set(SessionState.model_fields)
        if unknown:
            raise ValueError(f"Unknown session state fields: {sorted(unknown)}")

        new_state = self._state.model_copy(update=changes)
        if new_state == self._state:
            return self._state
        self._state = new_state

        for callback in list(self._subscribers):
            try:
                callback(new_state)
            except Exception:
                logger.exception("Session state subscriber failed")
        return new_state
