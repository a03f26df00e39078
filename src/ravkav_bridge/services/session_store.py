"""Process-wide session registry."""
import asyncio
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional
from ravkav_bridge.config.logging import get_logger
from ravkav_bridge.models.session import Session

logger = get_logger("sessions")


class SessionStore(ABC):
    """Registry of sessions keyed by session id.

    Operations against one session id are serialized through ``lock()``;
    callers hold it for the whole login or export.
    """

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    def put(self, session: Session) -> None:
        ...

    @abstractmethod
    def remove(self, session_id: str) -> bool:
        ...

    @abstractmethod
    def find_by_credentials(self, identifier: str, secret: str) -> Optional[Session]:
        ...

    @abstractmethod
    def lock(self, session_id: str) -> asyncio.Lock:
        ...


class InMemorySessionStore(SessionStore):
    def __init__(self, ttl_seconds: Optional[float] = None):
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def _is_expired(self, session: Session) -> bool:
        if self.ttl_seconds is None:
            return False
        return time.time() - session.last_used_at > self.ttl_seconds

    def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._is_expired(session):
            logger.info("Session expired", session_id=session_id, ttl_seconds=self.ttl_seconds)
            self.remove(session_id)
            return None
        return session

    def put(self, session: Session) -> None:
        self._sessions[session.id] = session
        logger.debug("Session stored", session_id=session.id, total_sessions=len(self._sessions))

    def remove(self, session_id: str) -> bool:
        self._locks.pop(session_id, None)
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.debug("Session removed", session_id=session_id)
        return removed

    def find_by_credentials(self, identifier: str, secret: str) -> Optional[Session]:
        for session_id, session in list(self._sessions.items()):
            if session.matches(identifier, secret):
                return self.get(session_id)
        return None

    def lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def purge_expired(self) -> int:
        """Drop every expired session and return how many were removed."""
        expired = [sid for sid, session in self._sessions.items() if self._is_expired(session)]
        for session_id in expired:
            self.remove(session_id)
        if expired:
            logger.info("Purged expired sessions", count=len(expired))
        return len(expired)
