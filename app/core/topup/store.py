"""
Session Store

Keeps at most one top-up session per user id. The orchestrator only talks
to the ``SessionStore`` interface; ``InMemorySessionStore`` is the default.
Sessions are process-local and lost on restart.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Optional

from ...config import settings
from .models import Session

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Per-user session storage."""

    @abstractmethod
    async def get(self, user_id: int) -> Optional[Session]:
        ...

    @abstractmethod
    async def set(self, user_id: int, session: Session) -> None:
        ...

    @abstractmethod
    async def delete(self, user_id: int) -> None:
        ...


@dataclass
class _Entry:
    session: Session
    expires_at: Optional[float]


class InMemorySessionStore(SessionStore):
    """Dict-backed store with a sliding TTL refreshed on every write.

    A ``ttl_seconds`` of 0 keeps sessions until they are deleted.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = settings.session_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._entries: Dict[int, _Entry] = {}
        self._lock = asyncio.Lock()

    def _expired(self, entry: _Entry, now: float) -> bool:
        return entry.expires_at is not None and now >= entry.expires_at

    async def get(self, user_id: int) -> Optional[Session]:
        async with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[user_id]
                logger.info(f"Session for user {user_id} expired")
                return None
            return entry.session

    async def set(self, user_id: int, session: Session) -> None:
        async with self._lock:
            session.touch()
            expires_at = self._clock() + self.ttl_seconds if self.ttl_seconds else None
            self._entries[user_id] = _Entry(session=session, expires_at=expires_at)

    async def delete(self, user_id: int) -> None:
        async with self._lock:
            self._entries.pop(user_id, None)

    async def purge_expired(self) -> int:
        """Drop every expired session. Returns how many were removed."""
        async with self._lock:
            now = self._clock()
            stale = [uid for uid, entry in self._entries.items() if self._expired(entry, now)]
            for uid in stale:
                del self._entries[uid]
        if stale:
            logger.info(f"Purged {len(stale)} expired sessions")
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class UserLocks:
    """One asyncio.Lock per active user id.

    Commands for the same user run one at a time in arrival order; different
    users never wait on each other. A lock is discarded once no task holds or
    waits on it.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._users: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._users[user_id] = self._users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[user_id] -= 1
            if not self._users[user_id]:
                del self._users[user_id]
                del self._locks[user_id]

    def active(self) -> int:
        return len(self._locks)
