"""
Process-wide table of live sessions.

One registry per application instance, passed to connection handlers by
reference. A session lives here from `start` until its `stop` completes or
its connection closes; removal is the only destruction path.
"""

import asyncio
import logging
import uuid
from typing import Callable, Dict, List, Optional

from streaming.errors import InvalidState, SessionNotFound
from streaming.session import EmitFn, Session

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    """Random, timing-independent session id."""
    return uuid.uuid4().hex


class SessionRegistry:
    """
    Args:
        session_factory: `(session_id, emit) -> Session` in IDLE state.
        id_generator: Produces ids for `start` messages without one.
    """

    def __init__(
        self,
        session_factory: Callable[[str, EmitFn], Session],
        id_generator: Callable[[], str] = new_session_id,
    ):
        self._factory = session_factory
        self._id_generator = id_generator
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def new_id(self) -> str:
        return self._id_generator()

    async def create(self, emit: EmitFn, session_id: Optional[str] = None) -> Session:
        """
        Register and start a new session.

        Raises:
            InvalidState: a live session already uses `session_id`.
        """
        async with self._lock:
            resolved = session_id or self.new_id()
            if resolved in self._sessions:
                raise InvalidState(f"Session {resolved} is already active")
            session = self._factory(resolved, emit)
            session.start()
            self._sessions[resolved] = session
        logger.info("Session %s started (%s live)", resolved, len(self._sessions))
        return session

    def get(self, session_id: Optional[str]) -> Session:
        """Raises SessionNotFound if no live session has this id."""
        session = self._sessions.get(session_id) if session_id else None
        if session is None:
            raise SessionNotFound(session_id or "")
        return session

    async def remove(
        self, session_id: Optional[str], session: Optional[Session] = None
    ) -> Optional[Session]:
        """
        Drop a session; returns it, or None if it was not registered.

        With `session` given, the entry is only dropped if it is that exact
        object, so a stale holder of a reused id cannot remove its successor.
        """
        if not session_id:
            return None
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None or (session is not None and current is not session):
                return None
            session = self._sessions.pop(session_id)
        logger.info("Session %s removed (%s live)", session_id, len(self._sessions))
        return session

    def ids(self) -> List[str]:
        return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
