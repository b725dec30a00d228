"""결과 캐시 유틸리티(Result cache utilities)."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 3600


@dataclass
class CacheEntry:
    """캐시 항목(Cached value with insertion time and TTL)."""

    value: Any
    inserted_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl_seconds


class ResultCache:
    """TTL 기반 인메모리 캐시(In-memory TTL cache shared by the registry and OSV clients).

    Expiry is checked lazily on read; an expired entry is reported as absent
    but stays in the map until a later ``set`` overwrites it. Mutations are
    guarded by a lock so the cache may be shared across threads.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get(self, key: str) -> Any:
        """캐시 값 조회(Get cached value, or None when absent or expired)."""

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """캐시에 값 저장(Store value in cache, overwriting any stale entry)."""

        if ttl is None:
            ttl = self._ttl_seconds
        elif ttl <= 0:
            raise ValueError("ttl must be positive")
        entry = CacheEntry(value=value, inserted_at=self._clock(), ttl_seconds=ttl)
        with self._lock:
            self._entries[key] = entry

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        logger.debug("Result cache cleared")

    def size(self) -> int:
        """저장된 항목 수(Number of stored entries, stale ones included)."""

        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "ttl_seconds": self._ttl_seconds,
            }
