"""Explicit TTL cache used for third-party lookups.

Entries remember when they were fetched, so callers can serve a stale value
when the upstream is down. The clock is injectable so tests control time.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A cached value with its fetch time and time-to-live (seconds)."""

    value: V
    fetched_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return (now - self.fetched_at) < self.ttl


class TTLCache(Generic[K, V]):
    """Keyed cache whose entries expire after a fixed TTL."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}

    def get_fresh(self, key: K) -> V | None:
        """Value for key if present and within TTL."""
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock()):
            return entry.value
        return None

    def get_stale(self, key: K) -> V | None:
        """Value for key regardless of age."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def entry(self, key: K) -> CacheEntry[V] | None:
        return self._entries.get(key)

    def set(self, key: K, value: V) -> CacheEntry[V]:
        entry = CacheEntry(value=value, fetched_at=self._clock(), ttl=self.ttl)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: K | None = None) -> None:
        """Drop one key, or everything when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
