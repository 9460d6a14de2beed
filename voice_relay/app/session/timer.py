"""Cancellable one-shot timer owned by a session."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

_LOGGER = logging.getLogger(__name__)


class SessionTimer:
    """Runs ``callback`` once after ``delay_s`` unless cancelled first.

    The callback should only enqueue work for the session loop; it must not
    touch session state directly.
    """

    def __init__(self, delay_s: float, callback: Callable[[], Awaitable[None]], *, name: str = "session-timer") -> None:
        self.delay_s = delay_s
        self.name = name
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._fired = False
        self._cancelled = False

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError(f"Timer {self.name} already started")
        self._task = asyncio.create_task(self._run(), name=self.name)

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._fired and not self._cancelled

    def cancel(self) -> bool:
        """Cancels the timer if it has not fired yet.

        Returns:
            ``True`` when this call prevented the callback from running.
        """
        if self._fired or self._cancelled:
            return False
        self._cancelled = True
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        _LOGGER.debug("Session timer cancelled.", extra={"timer": self.name})
        return True

    async def wait_cancelled(self) -> None:
        """Drains the underlying task after ``cancel()``."""
        if self._task is None or self._task is asyncio.current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_s)
        if self._cancelled:
            return
        self._fired = True
        _LOGGER.debug("Session timer fired.", extra={"timer": self.name, "delay_s": self.delay_s})
        await self._callback()
