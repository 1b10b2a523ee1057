import asyncio

import pytest

from questlog_app.models import SearchLock
from questlog_app.search.locks import (
    DatabaseQueryLock, MemoryQueryLock, RedisQueryLock, create_query_lock
)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX / compare-and-delete."""

    def __init__(self):
        self.data = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def eval(self, script, numkeys, key, owner):
        if self.data.get(key) == owner:
            del self.data[key]
            return 1
        return 0


def test_memory_lock_excludes_second_holder():
    lock = MemoryQueryLock(ttl=60)

    async def scenario():
        token = await lock.acquire("zelda")
        assert token is not None
        assert await lock.acquire("zelda") is None
        assert await lock.acquire("metroid") is not None
        await lock.release("zelda", token)
        assert lock.is_locked("zelda") is False
        assert await lock.acquire("zelda") is not None

    asyncio.run(scenario())


def test_memory_lock_expires():
    lock = MemoryQueryLock(ttl=-1)

    async def scenario():
        assert await lock.acquire("halo") is not None
        assert await lock.acquire("halo") is not None

    asyncio.run(scenario())


def test_memory_lock_stale_holder_cannot_release_new_owner():
    lock = MemoryQueryLock(ttl=-1)

    async def scenario():
        stale = await lock.acquire("zelda")
        # Expired, so a second request takes the key over
        lock.ttl = 60
        current = await lock.acquire("zelda")
        assert stale and current and stale != current

        await lock.release("zelda", stale)
        assert lock.is_locked("zelda") is True
        assert await lock.acquire("zelda") is None

        await lock.release("zelda", current)
        assert lock.is_locked("zelda") is False

    asyncio.run(scenario())


def test_database_lock_shared_between_instances(session_factory):
    first = DatabaseQueryLock(ttl=60, session_factory=session_factory)
    second = DatabaseQueryLock(ttl=60, session_factory=session_factory)

    async def scenario():
        token = await first.acquire("doom")
        assert token is not None
        assert await second.acquire("doom") is None
        # Releasing with a token that never owned the lock is a no-op
        await second.release("doom", "not-the-owner")
        assert await second.acquire("doom") is None
        await first.release("doom", token)
        assert await second.acquire("doom") is not None

    asyncio.run(scenario())


def test_database_lock_reclaims_expired_row(session_factory):
    stale = DatabaseQueryLock(ttl=-30, session_factory=session_factory)
    fresh = DatabaseQueryLock(ttl=60, session_factory=session_factory)

    async def scenario():
        stale_token = await stale.acquire("quake")
        fresh_token = await fresh.acquire("quake")
        assert stale_token is not None
        assert fresh_token is not None
        # The reclaimed holder finishing late leaves the new row alone
        await stale.release("quake", stale_token)

    asyncio.run(scenario())

    session = session_factory()
    try:
        rows = session.query(SearchLock).filter_by(query_key="quake").all()
        assert len(rows) == 1
    finally:
        session.close()


def test_redis_lock_only_owner_releases():
    client = FakeRedis()
    first = RedisQueryLock(ttl=60, client=client)
    second = RedisQueryLock(ttl=60, client=client)

    async def scenario():
        token = await first.acquire("celeste")
        assert token is not None
        assert await second.acquire("celeste") is None
        await second.release("celeste", "not-the-owner")
        assert client.data["questlog:search-lock:celeste"] == token
        await first.release("celeste", token)
        assert client.data == {}

    asyncio.run(scenario())


def test_redis_lock_release_after_takeover_keeps_new_owner():
    client = FakeRedis()
    lock = RedisQueryLock(ttl=60, client=client)

    async def scenario():
        stale = await lock.acquire("celeste")
        # Key expired in redis and another request took it
        del client.data["questlog:search-lock:celeste"]
        current = await lock.acquire("celeste")
        assert current is not None

        await lock.release("celeste", stale)
        assert client.data["questlog:search-lock:celeste"] == current

    asyncio.run(scenario())


def test_create_query_lock_backends(session_factory):
    assert isinstance(create_query_lock("memory"), MemoryQueryLock)
    assert isinstance(create_query_lock("database", session_factory=session_factory), DatabaseQueryLock)
    with pytest.raises(ValueError):
        create_query_lock("redis")
    with pytest.raises(ValueError):
        create_query_lock("zookeeper")
