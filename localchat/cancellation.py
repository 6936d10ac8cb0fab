"""
Explicit cancellation for generation operations.
"""

import asyncio
from typing import Optional

from .exceptions import GenerationCancelled


class CancellationToken:
    """One-shot flag shared between whoever starts work and the work itself."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GenerationCancelled()


class GenerationOperation:
    """
    Handle for one streaming request/response cycle.

    ``cancel()`` sets the token before cancelling the task, so the consuming
    loop observes the flag even if it is resumed before the task's
    ``CancelledError`` is delivered.
    """

    def __init__(self, token: Optional[CancellationToken] = None) -> None:
        self.token = token or CancellationToken()
        self._task: Optional["asyncio.Task[None]"] = None

    def attach(self, task: "asyncio.Task[None]") -> None:
        self._task = task

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        self.token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait until the operation finishes, however it finishes."""
        if self._task is None:
            return
        await asyncio.wait({self._task})
