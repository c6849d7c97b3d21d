"""Connection pool keyed by origin.

Connections are shared per ``scheme://host:port``; the path and query of the
requested URL are ignored. Admission reserves a slot under a single lock so
concurrent callers never push the pool past ``max_connections``; the
factory itself runs outside the lock.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar
from urllib.parse import urlparse

from streamhub.core.config import get_settings
from streamhub.domain.exceptions import ConnectionError, ErrorContext, PoolExhaustedError

logger = logging.getLogger(__name__)

C = TypeVar("C")


@dataclass
class PoolConnection(Generic[C]):
    origin_key: str
    handle: C
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    is_active: bool = True


def origin_key(url: str) -> str:
    """Reduce a URL to ``scheme://host[:port]``."""
    parsed = urlparse(url)
    host = parsed.hostname or ""
    if parsed.port:
        return f"{parsed.scheme}://{host}:{parsed.port}"
    return f"{parsed.scheme}://{host}"


async def close_handle(handle: Any) -> None:
    """Close whatever kind of handle the factory produced."""
    for name in ("aclose", "close", "destroy"):
        closer = getattr(handle, name, None)
        if callable(closer):
            result = closer()
            if inspect.isawaitable(result):
                await result
            return


class ConnectionPool(Generic[C]):
    """Reuse and cap long-lived connections.

    Args:
        max_connections: Maximum tracked connections
        timeout: Seconds a factory may take before the attempt fails
        keep_alive_interval: Seconds between keep-alive ticks
        idle_timeout: Inactive connections older than this are evicted
        clock: Monotonic time source
    """

    def __init__(
        self,
        max_connections: Optional[int] = None,
        timeout: Optional[float] = None,
        keep_alive_interval: Optional[float] = None,
        idle_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = get_settings().pool
        self.max_connections = (
            max_connections if max_connections is not None else config.max_connections
        )
        self.timeout = timeout if timeout is not None else config.timeout
        self.keep_alive_interval = (
            keep_alive_interval
            if keep_alive_interval is not None
            else config.keep_alive_interval
        )
        self.idle_timeout = idle_timeout if idle_timeout is not None else config.idle_timeout
        self._clock = clock
        self._connections: Dict[str, PoolConnection[C]] = {}
        self._pending: Dict[str, "asyncio.Future[C]"] = {}
        self._lock = asyncio.Lock()
        self._keep_alive_task: Optional[asyncio.Task] = None
        self._cleanup_task: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Start the keep-alive and idle-eviction timers."""
        if self._keep_alive_task is None:
            self._keep_alive_task = asyncio.create_task(self._keep_alive_loop())
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def get_connection(self, url: str, factory: Callable[[], Awaitable[C]]) -> C:
        """Return the pooled connection for ``url``'s origin, creating it if needed.

        Raises:
            PoolExhaustedError: If the pool is full and nothing is idle
            ConnectionError: If the factory fails or times out
        """
        key = origin_key(url)
        async with self._lock:
            existing = self._connections.get(key)
            if existing is not None:
                existing.is_active = True
                existing.last_used = self._clock()
                return existing.handle

            pending = self._pending.get(key)
            opener = pending is None
            if opener:
                if self._occupied() >= self.max_connections:
                    await self._evict_idle()
                if self._occupied() >= self.max_connections:
                    raise PoolExhaustedError(
                        f"Connection pool is full ({self.max_connections} connections)",
                        context=ErrorContext(extra={"origin": key}),
                    )
                pending = asyncio.get_running_loop().create_future()
                self._pending[key] = pending

        if not opener:
            # Another caller is already opening this origin
            return await asyncio.shield(pending)

        try:
            handle = await self._open(key, factory)
        except Exception as e:
            self._pending.pop(key, None)
            pending.set_exception(e)
            # Mark retrieved so an unawaited failure is not logged by asyncio
            pending.exception()
            raise
        except asyncio.CancelledError:
            self._pending.pop(key, None)
            pending.cancel()
            raise

        now = self._clock()
        del self._pending[key]
        self._connections[key] = PoolConnection(
            origin_key=key, handle=handle, created_at=now, last_used=now
        )
        pending.set_result(handle)
        logger.debug(f"Opened pooled connection to {key}")
        return handle

    def _occupied(self) -> int:
        return len(self._connections) + len(self._pending)

    async def _open(self, key: str, factory: Callable[[], Awaitable[C]]) -> C:
        try:
            return await asyncio.wait_for(factory(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ConnectionError(
                f"Connection to {key} timed out after {self.timeout}s",
                context=ErrorContext(extra={"origin": key}),
                cause=e,
            ) from e
        except Exception as e:
            raise ConnectionError(
                f"Failed to create connection to {key}: {e}",
                context=ErrorContext(extra={"origin": key}),
                cause=e,
            ) from e

    async def release_connection(self, url: str, close: bool = False) -> None:
        """Hand a connection back.

        Args:
            url: Any URL with the connection's origin
            close: Close and forget it now instead of leaving it idle
        """
        key = origin_key(url)
        connection = self._connections.get(key)
        if connection is None:
            return
        if close:
            del self._connections[key]
            await self._close(connection)
        else:
            connection.is_active = False
            connection.last_used = self._clock()

    def get_stats(self) -> Dict[str, int]:
        active = sum(1 for c in self._connections.values() if c.is_active)
        return {
            "total": len(self._connections),
            "active": active,
            "idle": len(self._connections) - active,
        }

    async def stop(self) -> None:
        """Cancel timers and close every tracked connection."""
        for task in (self._keep_alive_task, self._cleanup_task):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._keep_alive_task = None
        self._cleanup_task = None

        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            await self._close(connection)

    async def _evict_idle(self) -> int:
        now = self._clock()
        stale = [
            key
            for key, c in self._connections.items()
            if not c.is_active and now - c.last_used > self.idle_timeout
        ]
        for key in stale:
            await self._close(self._connections.pop(key))
        if stale:
            logger.debug(f"Evicted {len(stale)} idle connections")
        return len(stale)

    async def _close(self, connection: PoolConnection[C]) -> None:
        try:
            await close_handle(connection.handle)
        except Exception as e:
            logger.warning(f"Error closing connection to {connection.origin_key}: {e}")

    async def _keep_alive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.keep_alive_interval)
            now = self._clock()
            for connection in self._connections.values():
                if connection.is_active:
                    connection.last_used = now

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.idle_timeout)
            async with self._lock:
                await self._evict_idle()
