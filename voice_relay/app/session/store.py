"""Index of live sessions keyed by stream identifier."""

from __future__ import annotations

import logging

from .models import Session

_LOGGER = logging.getLogger(__name__)


class SessionStore:
    """Holds the session record of every active call.

    Records are never shared between calls; the store only answers lookups
    and counts for the process.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def add(self, session: Session) -> None:
        """Registers a session under its stream identifier.

        Raises:
            ValueError: If the session has no id yet or the id is taken.
        """
        if not session.id:
            raise ValueError("Session id must be assigned before registration")
        if session.id in self._sessions:
            raise ValueError(f"Session {session.id} is already registered")
        self._sessions[session.id] = session
        _LOGGER.debug("Session registered.", extra={"stream_sid": session.id, "active": len(self._sessions)})

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        session = self._sessions.pop(session_id, None)
        if session is not None:
            _LOGGER.debug("Session removed.", extra={"stream_sid": session_id, "active": len(self._sessions)})
        return session

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
