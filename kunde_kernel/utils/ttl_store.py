"""
TTLStore -- bounded, expiring key/value store for injected caches.

Responsibility:
    Replaces module-level mutable dicts.  A service that wants to cache
    lookups receives a TTLStore in its constructor; tests inject one with a
    DeterministicClock and advance time explicitly.

Invariants:
    - Never holds more than ``max_size`` entries; the least recently used
      entry is evicted first.
    - An entry older than ``ttl_seconds`` is never returned.
    - All operations are guarded by a lock so one store can be shared by the
      validation worker pool.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Generic, Hashable, TypeVar

from kunde_kernel.domain.clock import Clock, SystemClock

V = TypeVar("V")

_MISSING = object()


class TTLStore(Generic[V]):
    """LRU store with per-entry expiry."""

    def __init__(
        self,
        max_size: int = 256,
        ttl_seconds: float = 300.0,
        clock: Clock | None = None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock or SystemClock()
        self._data: OrderedDict[Hashable, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: Hashable, default: V | None = None) -> V | None:
        now = self._clock.monotonic()
        with self._lock:
            item = self._data.get(key, _MISSING)
            if item is _MISSING:
                self.misses += 1
                return default
            stored_at, value = item
            if now - stored_at >= self._ttl:
                del self._data[key]
                self.misses += 1
                return default
            self._data.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: Hashable, value: V) -> None:
        now = self._clock.monotonic()
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = (now, value)
            while len(self._data) > self._max_size:
                self._data.popitem(last=False)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def invalidate_where(self, predicate) -> int:
        """Drop every entry whose key satisfies ``predicate``; returns count."""
        with self._lock:
            doomed = [k for k in self._data if predicate(k)]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING  # type: ignore[arg-type]
