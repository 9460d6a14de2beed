"""Graceful teardown after the model accepts an end-of-call."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from ..tools.schemas import EndCallReason
from .models import Session, SessionState
from .timer import SessionTimer

_LOGGER = logging.getLogger(__name__)


class TerminationSequencer:
    """Arms the grace-delay close once the end-call acknowledgment is sent.

    The sequencer never closes sockets itself. When the grace delay elapses it
    calls ``on_elapsed``, which hands the close back to the session loop so
    teardown runs in the same serialized stream as every other handler.
    """

    def __init__(self, *, grace_delay_s: float, on_elapsed: Callable[[], Awaitable[None]]) -> None:
        self.grace_delay_s = grace_delay_s
        self._on_elapsed = on_elapsed

    def begin(self, session: Session, reason: EndCallReason) -> SessionTimer | None:
        """Moves ``session`` to ``ENDING`` and schedules its close.

        Must only be called after the acknowledgment result was sent.
        Repeated end-calls keep the first timer.

        Returns:
            The armed timer, or ``None`` when the session is already ending
            or closed.
        """
        if session.state in (SessionState.ENDING, SessionState.CLOSED):
            _LOGGER.debug(
                "Ignoring end-call for session already %s.",
                session.state.value,
                extra={"stream_sid": session.id},
            )
            return None

        session.state = SessionState.ENDING
        session.end_reason = reason.value
        timer = SessionTimer(self.grace_delay_s, self._on_elapsed, name=f"end-call:{session.id}")
        session.close_timer = timer
        timer.start()
        _LOGGER.info(
            "Call ending; closing sockets after grace delay.",
            extra={"stream_sid": session.id, "reason": reason.value, "grace_delay_s": self.grace_delay_s},
        )
        return timer

    def cancel(self, session: Session) -> bool:
        """Cancels a pending grace-delay close.

        Returns:
            ``True`` when a scheduled close was prevented.
        """
        timer = session.close_timer
        if timer is None:
            return False
        return timer.cancel()
