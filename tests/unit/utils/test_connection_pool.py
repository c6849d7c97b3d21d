"""Tests for the connection pool."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from streamhub.domain.exceptions import ConnectionError, PoolExhaustedError
from streamhub.utils.connection_pool import ConnectionPool, origin_key


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class SyncConnection:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


def make_connection():
    connection = MagicMock()
    connection.aclose = AsyncMock()
    return connection


class TestOriginKey:
    def test_ignores_path_and_query(self):
        assert origin_key("http://api.local:1985/api/v1/streams?x=1") == "http://api.local:1985"
        assert origin_key("https://api.local/a") == "https://api.local"


class TestConnectionPool:
    """Reuse, capacity and shutdown."""

    @pytest.mark.asyncio
    async def test_same_origin_returns_same_connection(self):
        pool = ConnectionPool(max_connections=2)
        factory = AsyncMock(side_effect=lambda: make_connection())

        first = await pool.get_connection("http://h:1985/a", factory)
        second = await pool.get_connection("http://h:1985/b?c=d", factory)

        assert first is second
        assert factory.await_count == 1
        assert pool.get_stats() == {"total": 1, "active": 1, "idle": 0}

    @pytest.mark.asyncio
    async def test_capacity_error_when_full(self):
        pool = ConnectionPool(max_connections=1)
        await pool.get_connection("http://a", AsyncMock(return_value=make_connection()))

        with pytest.raises(PoolExhaustedError):
            await pool.get_connection("http://b", AsyncMock(return_value=make_connection()))

    @pytest.mark.asyncio
    async def test_idle_entries_are_swept_at_capacity(self):
        clock = FakeClock()
        pool = ConnectionPool(max_connections=1, idle_timeout=10, clock=clock)
        old = make_connection()
        await pool.get_connection("http://a", AsyncMock(return_value=old))
        await pool.release_connection("http://a")
        clock.now = 11

        new = await pool.get_connection("http://b", AsyncMock(return_value=make_connection()))

        assert new is not old
        old.aclose.assert_awaited_once()
        assert pool.get_stats()["total"] == 1

    @pytest.mark.asyncio
    async def test_release_without_close_keeps_for_reuse(self):
        pool = ConnectionPool(max_connections=2)
        connection = make_connection()
        await pool.get_connection("http://a", AsyncMock(return_value=connection))

        await pool.release_connection("http://a/x")
        assert pool.get_stats() == {"total": 1, "active": 0, "idle": 1}

        again = await pool.get_connection("http://a", AsyncMock())
        assert again is connection
        assert pool.get_stats()["active"] == 1

    @pytest.mark.asyncio
    async def test_release_with_close(self):
        pool = ConnectionPool(max_connections=2)
        connection = make_connection()
        await pool.get_connection("http://a", AsyncMock(return_value=connection))

        await pool.release_connection("http://a", close=True)

        connection.aclose.assert_awaited_once()
        assert pool.get_stats()["total"] == 0

    @pytest.mark.asyncio
    async def test_factory_failure_is_wrapped(self):
        pool = ConnectionPool(max_connections=2)
        error = OSError("refused")

        with pytest.raises(ConnectionError) as exc_info:
            await pool.get_connection("http://a", AsyncMock(side_effect=error))

        assert exc_info.value.cause is error
        assert pool.get_stats()["total"] == 0

    @pytest.mark.asyncio
    async def test_factory_timeout(self):
        pool = ConnectionPool(max_connections=2, timeout=0.01)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(ConnectionError, match="timed out"):
            await pool.get_connection("http://a", slow)

    @pytest.mark.asyncio
    async def test_concurrent_admission_respects_capacity(self):
        pool = ConnectionPool(max_connections=1)

        async def factory():
            await asyncio.sleep(0.01)
            return make_connection()

        results = await asyncio.gather(
            pool.get_connection("http://a", factory),
            pool.get_connection("http://b", factory),
            return_exceptions=True,
        )

        assert sum(isinstance(r, PoolExhaustedError) for r in results) == 1
        assert pool.get_stats()["total"] == 1

    @pytest.mark.asyncio
    async def test_slow_factory_does_not_block_pooled_lookups(self):
        pool = ConnectionPool(max_connections=2, timeout=5)
        pooled = make_connection()
        await pool.get_connection("http://a", AsyncMock(return_value=pooled))
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return make_connection()

        opening = asyncio.create_task(pool.get_connection("http://b", slow))
        await asyncio.sleep(0)

        again = await asyncio.wait_for(pool.get_connection("http://a/x", AsyncMock()), timeout=0.5)
        assert again is pooled

        with pytest.raises(PoolExhaustedError):
            await pool.get_connection("http://c", AsyncMock(return_value=make_connection()))

        release.set()
        await opening
        assert pool.get_stats()["total"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_same_origin_shares_one_factory_call(self):
        pool = ConnectionPool(max_connections=2)
        calls = []

        async def factory():
            calls.append(1)
            await asyncio.sleep(0.01)
            return make_connection()

        first, second = await asyncio.gather(
            pool.get_connection("http://a/1", factory),
            pool.get_connection("http://a/2", factory),
        )

        assert first is second
        assert len(calls) == 1
        assert pool.get_stats()["total"] == 1

    @pytest.mark.asyncio
    async def test_failed_open_frees_its_slot(self):
        pool = ConnectionPool(max_connections=1)

        with pytest.raises(ConnectionError):
            await pool.get_connection("http://a", AsyncMock(side_effect=OSError("refused")))

        connection = make_connection()
        assert await pool.get_connection("http://b", AsyncMock(return_value=connection)) is connection

    @pytest.mark.asyncio
    async def test_stop_closes_everything(self):
        pool = ConnectionPool(max_connections=3, keep_alive_interval=0.01, idle_timeout=0.01)
        pool.start()
        connections = [make_connection() for _ in range(2)]
        await pool.get_connection("http://a", AsyncMock(return_value=connections[0]))
        await pool.get_connection("http://b", AsyncMock(return_value=connections[1]))

        await pool.stop()

        assert pool.get_stats()["total"] == 0
        for connection in connections:
            connection.aclose.assert_awaited_once()
        assert pool._keep_alive_task is None
        assert pool._cleanup_task is None

    @pytest.mark.asyncio
    async def test_close_falls_back_to_sync_close(self):
        pool = ConnectionPool(max_connections=1)
        connection = SyncConnection()
        await pool.get_connection("http://a", AsyncMock(return_value=connection))

        await pool.stop()

        assert connection.closed
