"""Keyed storage for multi-page parse sessions."""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Dict, List, Optional

from cutlist_intake.models.sessions import ParseSession, SessionStatus, utcnow
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class SessionStore(ABC):
    """Session storage with per-key locking.

    Callers hold ``locked(session_key)`` around read-modify-write cycles;
    updates to different keys never wait on each other. A key's lock lives
    only while someone holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def locked(self, session_key: str) -> AsyncIterator[None]:
        lock = self._locks.get(session_key)
        if lock is None:
            lock = self._locks[session_key] = asyncio.Lock()
        self._lock_users[session_key] = self._lock_users.get(session_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_key] -= 1
            if not self._lock_users[session_key]:
                del self._lock_users[session_key]
                del self._locks[session_key]

    @abstractmethod
    async def get(self, session_key: str) -> Optional[ParseSession]:
        """Return the session for an (organization, project) key."""

    @abstractmethod
    async def get_by_id(self, session_id: str) -> Optional[ParseSession]:
        """Return a session by its id."""

    @abstractmethod
    async def save(self, session: ParseSession) -> None:
        """Insert or replace a session."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove a session."""

    @abstractmethod
    async def expired(self, cutoff: datetime) -> List[ParseSession]:
        """Unmerged sessions last updated before ``cutoff``."""

    async def sweep_expired(self, ttl_seconds: float, now: Optional[datetime] = None) -> int:
        """Remove unmerged sessions idle for longer than ``ttl_seconds``.

        Returns:
            Number of sessions removed
        """
        cutoff = (now or utcnow()) - timedelta(seconds=ttl_seconds)
        removed = 0
        for session in await self.expired(cutoff):
            async with self.locked(session.session_key):
                current = await self.get_by_id(session.session_id)
                if current is None or current.status == SessionStatus.MERGED or current.updated_at >= cutoff:
                    continue
                await self.delete(session.session_id)
                removed += 1
        if removed:
            LOGGER.info(f"Expired {removed} parse sessions", extra={"ttl_seconds": ttl_seconds})
        return removed


class InMemorySessionStore(SessionStore):
    """Process-local session store."""

    def __init__(self) -> None:
        super().__init__()
        self._by_id: Dict[str, ParseSession] = {}
        self._ids_by_key: Dict[str, str] = {}

    async def get(self, session_key: str) -> Optional[ParseSession]:
        session_id = self._ids_by_key.get(session_key)
        return self._by_id.get(session_id) if session_id else None

    async def get_by_id(self, session_id: str) -> Optional[ParseSession]:
        return self._by_id.get(session_id)

    async def save(self, session: ParseSession) -> None:
        self._by_id[session.session_id] = session
        self._ids_by_key[session.session_key] = session.session_id

    async def delete(self, session_id: str) -> None:
        session = self._by_id.pop(session_id, None)
        if session and self._ids_by_key.get(session.session_key) == session_id:
            del self._ids_by_key[session.session_key]

    async def expired(self, cutoff: datetime) -> List[ParseSession]:
        return [
            session
            for session in self._by_id.values()
            if session.status != SessionStatus.MERGED and session.updated_at < cutoff
        ]

    def __len__(self) -> int:
        return len(self._by_id)
