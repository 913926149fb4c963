"""In-process TTL cache with invalidation fingerprints.

An entry is fresh while it is younger than the TTL *and* the caller's
current fingerprint equals the one stored with it. The cache lives in one
process; a multi-process deployment needs an external store behind the
same interface.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    inserted_at: float
    fingerprint: Hashable


def is_fresh(entry: CacheEntry, now: float, ttl: float, fingerprint: Hashable) -> bool:
    """True when *entry* is within *ttl* and still matches *fingerprint*."""
    return (now - entry.inserted_at) < ttl and entry.fingerprint == fingerprint


class TTLCache(Generic[V]):
    """key -> CacheEntry store."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}

    def get(self, key: Hashable, fingerprint: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not is_fresh(entry, self._clock(), self.ttl, fingerprint):
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: Hashable, value: V, fingerprint: Hashable) -> None:
        self._entries[key] = CacheEntry(value, self._clock(), fingerprint)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def get_or_compute(
        self, key: Hashable, fingerprint: Hashable, compute: Callable[[], V]
    ) -> V:
        cached = self.get(key, fingerprint)
        if cached is not None:
            return cached
        value = compute()
        self.put(key, value, fingerprint)
        return value

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
