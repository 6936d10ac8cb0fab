"""
Re-dispatch of callbacks onto the event loop that owns session state.
"""

import asyncio
import threading
from typing import Any, Callable, Optional


class MainContext:
    """
    The asyncio loop (and its thread) allowed to mutate observable state.

    Providers may report download progress from worker threads; those
    callbacks are queued onto the owning loop with ``call_soon_threadsafe``.
    Calls made on the owning thread run immediately.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._thread_id: Optional[int] = threading.get_ident() if loop is not None else None

    @property
    def bound(self) -> bool:
        return self._loop is not None

    def bind(self) -> asyncio.AbstractEventLoop:
        """Bind to the running loop on first use."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
            self._thread_id = threading.get_ident()
        return self._loop

    def is_current(self) -> bool:
        return self._thread_id is None or threading.get_ident() == self._thread_id

    def call(self, callback: Callable[..., Any], *args: Any) -> None:
        if self.is_current():
            callback(*args)
            return
        if self._loop is None:
            raise RuntimeError("MainContext is not bound to an event loop")
        self._loop.call_soon_threadsafe(callback, *args)
