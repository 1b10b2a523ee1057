"""
================================================================================
QuestLog - Query Locks (in-flight markers)
================================================================================
At most one upstream fetch runs per normalized query text. A request that
finds the lock held answers from cache instead of waiting.

Backends (SEARCH_LOCK_BACKEND):
  - memory:   single process, dict of key -> expiry
  - redis:    SET NX EX + compare-and-delete release, shared by all workers
  - database: search_locks row with expires_at, shared by all workers

Every lock expires after ttl seconds so a crashed holder cannot block a query
forever.
================================================================================
"""

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as aioredis
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..database import get_db_session
from ..models import SearchLock, as_utc

logger = logging.getLogger(__name__)


class QueryLock(ABC):
    """
    Advisory per-query mutual exclusion.

    acquire() hands back an owner token and only that token releases the
    lock. The instance is shared across requests; callers hold the token.
    """

    backend: str = "base"

    def __init__(self, ttl: int = 60):
        self.ttl = ttl

    @abstractmethod
    async def acquire(self, key: str) -> Optional[str]:
        """Take the lock for key. Returns the owner token, or None if someone else holds it."""

    @abstractmethod
    async def release(self, key: str, token: str) -> None:
        """Release the lock for key if token still owns it."""

    def _new_owner(self) -> str:
        return uuid.uuid4().hex


class MemoryQueryLock(QueryLock):
    backend = "memory"

    def __init__(self, ttl: int = 60):
        super().__init__(ttl)
        self._locks: Dict[str, Tuple[str, float]] = {}
        self._mutex = threading.Lock()

    async def acquire(self, key: str) -> Optional[str]:
        now = time.monotonic()
        with self._mutex:
            current = self._locks.get(key)
            if current and current[1] > now:
                return None
            owner = self._new_owner()
            self._locks[key] = (owner, now + self.ttl)
            return owner

    async def release(self, key: str, token: str) -> None:
        with self._mutex:
            current = self._locks.get(key)
            if current and current[0] == token:
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        with self._mutex:
            current = self._locks.get(key)
            return bool(current and current[1] > time.monotonic())


class RedisQueryLock(QueryLock):
    backend = "redis"

    # Delete only if the stored owner is still ours
    RELEASE_SCRIPT = """
    if redis.call('get', KEYS[1]) == ARGV[1] then
        return redis.call('del', KEYS[1])
    end
    return 0
    """

    def __init__(self, url: str = None, ttl: int = 60, client=None, prefix: str = "questlog:search-lock:"):
        super().__init__(ttl)
        if client is None:
            client = aioredis.from_url(url, decode_responses=True)
        self.client = client
        self.prefix = prefix

    async def acquire(self, key: str) -> Optional[str]:
        owner = self._new_owner()
        acquired = await self.client.set(f"{self.prefix}{key}", owner, nx=True, ex=self.ttl)
        return owner if acquired else None

    async def release(self, key: str, token: str) -> None:
        await self.client.eval(self.RELEASE_SCRIPT, 1, f"{self.prefix}{key}", token)


class DatabaseQueryLock(QueryLock):
    backend = "database"

    def __init__(self, ttl: int = 60, session_factory: Optional[Callable] = None):
        super().__init__(ttl)
        self.session_factory = session_factory

    async def acquire(self, key: str) -> Optional[str]:
        owner = self._new_owner()
        now = datetime.now(timezone.utc)
        try:
            with get_db_session(self.session_factory) as session:
                row = session.get(SearchLock, key)
                if row is not None:
                    if as_utc(row.expires_at) > now:
                        return None
                    logger.info(f"Reclaiming expired search lock '{key}'")
                    session.delete(row)
                    session.flush()
                session.add(SearchLock(
                    query_key=key,
                    owner=owner,
                    acquired_at=now,
                    expires_at=now + timedelta(seconds=self.ttl),
                ))
        except IntegrityError:
            # Another worker inserted the row between our read and write
            return None
        return owner

    async def release(self, key: str, token: str) -> None:
        try:
            with get_db_session(self.session_factory) as session:
                session.query(SearchLock).filter_by(query_key=key, owner=token).delete()
        except SQLAlchemyError as e:
            # Row expires on its own
            logger.error(f"Failed to release search lock '{key}': {e}")


def create_query_lock(backend: str, ttl: int = 60, redis_url: str = None,
                      session_factory: Optional[Callable] = None) -> QueryLock:
    """Build the lock backend named by SEARCH_LOCK_BACKEND."""
    backend = (backend or 'memory').lower()
    if backend == 'redis':
        if not redis_url:
            raise ValueError("SEARCH_LOCK_BACKEND=redis requires REDIS_URL")
        return RedisQueryLock(url=redis_url, ttl=ttl)
    if backend == 'database':
        return DatabaseQueryLock(ttl=ttl, session_factory=session_factory)
    if backend == 'memory':
        return MemoryQueryLock(ttl=ttl)
    raise ValueError(f"Unknown SEARCH_LOCK_BACKEND: {backend}")
