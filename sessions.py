"""Registry of live event-stream sessions.

A session binds a session id to the transport of one open stream. Follow-up
messages find their stream through this registry; a missing entry means the
stream closed, was swept, or never existed.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

SESSION_MAX_AGE = 30 * 60


class SessionClosed(Exception):
    """Raised by a transport whose stream has already ended."""


class SessionTransport(Protocol):
    async def deliver(self, payload: bytes) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class Session:
    session_id: str
    transport: SessionTransport
    created_at: float


class SessionRegistry:
    def __init__(self, clock: Callable[[], float] = time.time, max_age: int = SESSION_MAX_AGE):
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.max_age = max_age

    def open(self, session_id: str, transport: SessionTransport) -> Session:
        """Register a transport under a fresh, caller-generated id."""
        session = Session(session_id=session_id, transport=transport, created_at=self._clock())
        with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"session {session_id} is already open")
            self._sessions[session_id] = session
        logger.info(f"[SSE] Session started: {session_id}")
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    async def route(self, session_id: Optional[str], payload: bytes) -> bool:
        """Forward payload to the session's transport.

        Returns False when no such session is registered, or when its stream
        ended before the session was closed. Other transport errors propagate.
        """
        session = self.get(session_id)
        if session is None:
            return False
        try:
            await session.transport.deliver(payload)
        except SessionClosed:
            logger.info(f"[SSE] Message for ended stream: {session_id}")
            self.close(session_id)
            return False
        return True

    def close(self, session_id: str) -> bool:
        """Remove a session; returns False if it was already gone."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.info(f"[SSE] Session closed: {session_id}")
        return True

    def sweep(self) -> int:
        """Drop sessions older than max_age (wall-clock since open) and stop their streams."""
        now = self._clock()
        with self._lock:
            stale = [s for s in self._sessions.values() if now - s.created_at > self.max_age]
            for session in stale:
                del self._sessions[session.session_id]

        for session in stale:
            logger.info(f"[SWEEP] Cleaned up stale session: {session.session_id}")
            try:
                session.transport.close()
            except Exception as e:
                logger.warning(f"[SWEEP] Failed to stop stream for {session.session_id}: {e}")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
