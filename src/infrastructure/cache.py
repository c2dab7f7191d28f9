import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

# Freshness window for cached upstream snapshots.
DEFAULT_TTL_SECONDS = 3600.0


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    key: str
    value: V
    inserted_at: float


class TTLCache(Generic[V]):
    """
    In-process key/value store with time-based freshness.

    `get` enforces freshness on every read, so `evict_expired` only bounds
    memory. Concurrent get/put calls are safe; a check-miss-fetch-put
    sequence is not atomic and the last `put` wins.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        time_fn: Optional[Callable[[], float]] = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        self.ttl_seconds = ttl_seconds
        self._time_fn = time_fn or time.time
        self._entries: Dict[str, CacheEntry[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        """Returns the cached value if it is still fresh, otherwise None."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or not self._is_fresh(entry, self._time_fn()):
            return None
        return entry.value

    def put(self, key: str, value: V) -> None:
        entry = CacheEntry(key=key, value=value, inserted_at=self._time_fn())
        with self._lock:
            self._entries[key] = entry

    def evict_expired(self) -> int:
        """
        Removes every entry whose age has reached the TTL.

        Returns:
            int: The number of entries removed.
        """
        now = self._time_fn()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now)]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"Evicted {len(expired)} expired cache entries.")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_fresh(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.inserted_at < self.ttl_seconds
