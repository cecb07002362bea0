"""In-memory, time-bounded response cache keyed by upstream URL."""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    content: bytes
    content_type: str
    created_at: float

    @property
    def size_bytes(self) -> int:
        return len(self.content)


class ResponseCache:
    """
    Process-wide memo of successful fetches.

    Expiry is lazy: an entry older than ``ttl_seconds`` is dropped when it is
    next looked up. When ``max_entries`` is reached the oldest insertion is
    evicted. Entries larger than ``max_entry_bytes`` are refused.
    """

    def __init__(
        self,
        ttl_seconds: float = 24 * 60 * 60,
        max_entries: int = 1000,
        max_entry_bytes: int = 10 * 1024 * 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.max_entry_bytes = max_entry_bytes
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry.created_at > self.ttl_seconds:
                logger.debug("Cache expired: %s", key)
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry

    def set(self, key: str, content: bytes, content_type: str) -> bool:
        """Store a payload; returns False if it was too large to cache."""
        if len(content) > self.max_entry_bytes:
            logger.warning("Not caching %s: %d bytes exceeds limit", key, len(content))
            return False

        with self._lock:
            self._entries.pop(key, None)
            while self.max_entries > 0 and len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache evicted: %s", evicted)
            self._entries[key] = CacheEntry(content, content_type, self._clock())
        return True

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info("Cache cleared (%d entries)", removed)
        return removed

    def stats(self) -> dict:
        with self._lock:
            return {
                "entry_count": len(self._entries),
                "hit_count": self._hits,
                "miss_count": self._misses,
                "size_bytes": sum(e.size_bytes for e in self._entries.values()),
            }

    def __len__(self) -> int:
        return len(self._entries)
