"""
In-memory TTL cache for derived API results (SERP data, semantic keywords,
health analyses).

Entries expire lazily: an entry older than the TTL is treated as absent on
read, there is no background sweep. Concurrent pipelines share one cache
without locking; entries are idempotent derivations of their key, so
last-writer-wins is fine.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache")

DEFAULT_TTL_SECONDS = 3600.0


@dataclass
class CacheEntry:
    key: str
    data: Any
    timestamp: float


class ContentCache:
    """Key/value cache with lazy time-to-live expiry."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    @staticmethod
    def make_key(operation: str, value: str) -> str:
        """Content-addressed key for an operation over an input."""
        return f"{operation}-{value}"

    def set(self, key: str, data: Any) -> None:
        self._entries[key] = CacheEntry(key=key, data=data, timestamp=self._clock())

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.timestamp < self.ttl_seconds:
            logger.debug("[Cache] HIT for key: %s", key)
            return entry.data
        logger.debug("[Cache] MISS for key: %s", key)
        return None

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
