"""Short-lived caches for strategy decisions and LLM outputs.

Unlike the embedding cache these hold advisory data: a miss only costs
latency. Entries expire after a fixed time-to-live, checked lazily on read,
and the least recently used entry is evicted once capacity is reached.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

from quarry.config import ConfigError, load_settings
from quarry.constants.llm import DECISION_CACHE_MAX_ENTRIES, DECISION_CACHE_TTL_SECONDS
from quarry.search.models import StrategyDecision

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Thread-safe LRU cache whose entries expire after a time-to-live."""

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize cache.

        Args:
            ttl_seconds: Lifetime of an entry from when it was stored.
            max_entries: Capacity; the least recently used entry goes first.
            clock: Monotonic time source, replaceable in tests.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[K, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        """Return a live entry, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def put(self, key: K, value: V) -> None:
        """Store or replace an entry, restarting its time-to-live."""
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, key: K) -> bool:
        """Remove one entry. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were dropped."""
        with self._lock:
            now = self._clock()
            expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        """Number of live entries."""
        self.purge_expired()
        with self._lock:
            return len(self._entries)


class DecisionCache(TTLCache[str, StrategyDecision]):
    """Strategy decisions keyed by exact query text."""

    def __init__(
        self,
        ttl_seconds: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize cache.

        Args:
            ttl_seconds: Decision lifetime. Defaults to settings (one hour).
            max_entries: Capacity. Defaults to settings.
            clock: Monotonic time source.
        """
        if ttl_seconds is None or max_entries is None:
            try:
                settings = load_settings().orchestrator
                default_ttl = settings.cache_ttl_seconds
                default_max = settings.cache_max_entries
            except (ValueError, OSError, ConfigError):
                default_ttl = DECISION_CACHE_TTL_SECONDS
                default_max = DECISION_CACHE_MAX_ENTRIES
            if ttl_seconds is None:
                ttl_seconds = default_ttl
            if max_entries is None:
                max_entries = default_max
        super().__init__(ttl_seconds, max_entries, clock)
