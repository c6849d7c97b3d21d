"""Bounded LRU cache with optional TTL.

Expiry is lazy: an expired entry is dropped when it is next read, or when
``cleanup()`` sweeps the whole cache.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar

from streamhub.core.config import get_settings

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    inserted_at: float
    access_count: int = 0


class LRUCache(Generic[K, V]):
    """Least-recently-used cache.

    Args:
        max_size: Capacity, defaults to settings
        ttl: Entry lifetime in seconds, ``None`` for no expiry
        clock: Monotonic time source
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size if max_size is not None else get_settings().cache.max_size
        if self.max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[K, CacheEntry[V]]" = OrderedDict()

    def _expired(self, entry: CacheEntry[V]) -> bool:
        return self.ttl is not None and self._clock() - entry.inserted_at > self.ttl

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        entry.access_count += 1
        self._entries.move_to_end(key)
        return entry.value

    def set(self, key: K, value: V) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.value = value
            entry.inserted_at = self._clock()
            entry.access_count += 1
            self._entries.move_to_end(key)
            return

        if len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())

    def has(self, key: K) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._expired(entry):
            del self._entries[key]
            return False
        return True

    def delete(self, key: K) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    @property
    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.has(key)  # type: ignore[arg-type]

    def keys(self):
        """Keys from least to most recently used, expired ones included."""
        return list(self._entries.keys())

    def cleanup(self) -> int:
        """Drop every expired entry.

        Returns:
            int: Number of entries removed
        """
        if self.ttl is None:
            return 0
        expired = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)
