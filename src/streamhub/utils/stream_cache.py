"""Short-lived cache of stream records and statistics."""

import time
from typing import Callable, Dict, Optional

from streamhub.core.config import get_settings
from streamhub.domain.models import Stream, StreamStatistics
from streamhub.utils.cache import LRUCache


class StreamCache:
    """Two LRU caches: stream records, and statistics at half the TTL."""

    def __init__(
        self,
        max_size: Optional[int] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = get_settings().cache
        ttl = ttl if ttl is not None else config.stream_ttl
        self.ttl = ttl
        self._clock = clock
        self._streams: LRUCache[str, Stream] = LRUCache(max_size, ttl=ttl, clock=clock)
        self._stats: LRUCache[str, StreamStatistics] = LRUCache(max_size, ttl=ttl / 2, clock=clock)
        self._updated: Dict[str, float] = {}

    def get_stream(self, stream_id: str) -> Optional[Stream]:
        return self._streams.get(stream_id)

    def set_stream(self, stream: Stream) -> None:
        self._streams.set(stream.id, stream)
        self._updated[stream.id] = self._clock()
        if len(self._updated) > self._streams.size:
            self._prune_updated()

    def _prune_updated(self) -> None:
        live = set(self._streams.keys())
        for stream_id in [s for s in self._updated if s not in live]:
            del self._updated[stream_id]

    def get_stats(self, stream_id: str) -> Optional[StreamStatistics]:
        return self._stats.get(stream_id)

    def set_stats(self, stats: StreamStatistics) -> None:
        self._stats.set(stats.stream_id, stats)

    def needs_update(self, stream_id: str, max_age: Optional[float] = None) -> bool:
        """True if the stream record is missing or older than ``max_age`` seconds."""
        max_age = max_age if max_age is not None else self.ttl
        updated = self._updated.get(stream_id)
        return updated is None or self._clock() - updated > max_age

    def invalidate(self, stream_id: str) -> None:
        self._streams.delete(stream_id)
        self._stats.delete(stream_id)
        self._updated.pop(stream_id, None)

    def clear(self) -> None:
        self._streams.clear()
        self._stats.clear()
        self._updated.clear()

    def cleanup(self) -> int:
        removed = self._streams.cleanup() + self._stats.cleanup()
        self._prune_updated()
        return removed
