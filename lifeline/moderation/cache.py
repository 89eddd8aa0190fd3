"""Thread-safe TTL cache for moderation and language results."""

import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    Bounded key/value cache with per-entry expiry.

    Reads and writes hold the lock only for a dict operation. When the
    cache grows past ``max_entries`` expired entries are swept; if that is
    not enough the oldest entries are evicted.

    Args:
        ttl_seconds: Entry lifetime
        max_entries: Size that triggers a sweep
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> V | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            stored_at, value = entry
            if now - stored_at >= self._ttl:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: str, value: V) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (now, value)
            self._entries.move_to_end(key)
            if len(self._entries) > self._max_entries:
                self._sweep_locked(now)
                while len(self._entries) > self._max_entries:
                    self._entries.popitem(last=False)

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _sweep_locked(self, now: float) -> int:
        expired = [
            key
            for key, (stored_at, _) in self._entries.items()
            if now - stored_at >= self._ttl
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)
