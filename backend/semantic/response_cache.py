"""
Bounded cache in front of the semantic match capability.

Entries are evicted least-recently-used once max_size is reached and expire
after ttl_minutes. Concurrent writers to the same key are last-write-wins:
identical keys always describe the same question, so no lock is needed.
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

from backend.config.logging_config import get_logger
from backend.eligibility.text_matching import normalize_term

logger = get_logger(__name__)

CacheKey = Tuple[str, str, str]


def make_cache_key(patient_term: Any, criterion_term: Any, context: Any = "") -> CacheKey:
    """The only key constructor: full normalized fields, never truncated or hashed."""
    return (normalize_term(patient_term), normalize_term(criterion_term), normalize_term(context))


class SemanticResponseCache:
    """LRU + TTL cache of semantic match responses."""

    def __init__(
        self,
        max_size: int = 1000,
        ttl_minutes: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_minutes * 60
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, Tuple[Any, float]]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, patient_term: Any, criterion_term: Any, context: Any = "") -> Optional[Any]:
        key = make_cache_key(patient_term, criterion_term, context)
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        value, expires_at = entry
        if self._clock() > expires_at:
            self._entries.pop(key, None)
            self._misses += 1
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return value

    def set(self, patient_term: Any, criterion_term: Any, value: Any, context: Any = "") -> None:
        key = make_cache_key(patient_term, criterion_term, context)
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Semantic cache eviction", key=evicted)
        self._entries[key] = (value, self._clock() + self.ttl_seconds)

    def has(self, patient_term: Any, criterion_term: Any, context: Any = "") -> bool:
        key = make_cache_key(patient_term, criterion_term, context)
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._clock() > entry[1]:
            self._entries.pop(key, None)
            return False
        return True

    def clean_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if now > expires_at]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total else 0.0,
        }
