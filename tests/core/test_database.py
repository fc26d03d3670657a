"""Tests for boardsync.core.database URL handling and pool lifecycle."""

import pytest

from boardsync.core import database
from boardsync.core.database import LazyPool, close_pool, create_pool, normalize_database_url
from boardsync.core.errors import DatabaseError


class TestNormalizeDatabaseUrl:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgresql+asyncpg://u:p@db/board", "postgresql://u:p@db/board"),
            ("postgresql+psycopg://db/board", "postgresql://db/board"),
            ("postgres://db/board", "postgres://db/board"),
            ("postgresql://db/board?sslmode=require", "postgresql://db/board?sslmode=require"),
        ],
    )
    def test_normalize(self, url, expected):
        assert normalize_database_url(url) == expected


class _Conn:
    def __init__(self, pool):
        self.pool = pool

    async def fetchval(self, query):
        self.pool.checked.append(query)
        return 1


class _Acquire:
    def __init__(self, pool):
        self.pool = pool

    async def __aenter__(self):
        return _Conn(self.pool)

    async def __aexit__(self, *exc):
        return False


class _Pool:
    def __init__(self):
        self.checked = []
        self.closed = False

    def acquire(self):
        return _Acquire(self)

    async def close(self):
        self.closed = True


class TestPoolLifecycle:
    @pytest.mark.asyncio
    async def test_create_verifies_and_close(self, monkeypatch):
        created = {}
        pool = _Pool()

        async def fake_create_pool(dsn, **kwargs):
            created["dsn"] = dsn
            created.update(kwargs)
            return pool

        monkeypatch.setattr(database.asyncpg, "create_pool", fake_create_pool)

        result = await create_pool("postgresql+asyncpg://db/board", min_size=2, max_size=4)

        assert result is pool
        assert created["dsn"] == "postgresql://db/board"
        assert created["min_size"] == 2 and created["max_size"] == 4
        assert pool.checked == ["SELECT 1"]

        await close_pool(pool)
        assert pool.closed


class _QueryPool(_Pool):
    async def fetch(self, query, *args):
        return [{"query": query, "args": args}]


class TestLazyPool:
    """Pool creation is retried on each use until it succeeds."""

    @pytest.mark.asyncio
    async def test_connect_failure_is_reported_not_raised(self):
        async def broken(url, **kwargs):
            raise OSError("connection refused")

        pool = LazyPool(broken, "postgresql://db/board")
        assert await pool.connect() is False
        assert not pool.is_connected

    @pytest.mark.asyncio
    async def test_query_raises_database_error_then_recovers(self):
        attempts = []
        real = _QueryPool()

        async def factory(url, **kwargs):
            attempts.append(kwargs)
            if len(attempts) == 1:
                raise OSError("connection refused")
            return real

        pool = LazyPool(factory, "postgresql://db/board", min_size=1, max_size=3)
        with pytest.raises(DatabaseError) as info:
            await pool.fetch("SELECT 1")
        assert isinstance(info.value.cause, OSError)

        rows = await pool.fetch("SELECT $1", 5)
        assert rows == [{"query": "SELECT $1", "args": (5,)}]
        assert attempts[-1] == {"min_size": 1, "max_size": 3}

        await pool.close()
        assert real.closed
        assert not pool.is_connected

    @pytest.mark.asyncio
    async def test_close_without_pool_is_noop(self):
        async def factory(url, **kwargs):
            raise AssertionError("not called")

        await LazyPool(factory, "postgresql://db/board").close()
