"""
Schema metadata cache

Process-wide but injected: each consumer receives its own instance, so tests
can start from an empty cache. ttl_seconds=None disables expiry and leaves
invalidation to explicit calls.
"""

import fnmatch
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


@dataclass
class _Entry:
    value: Any
    expires_at: Optional[float]


class SchemaCache:
    """Key/value cache with optional TTL and hit/miss accounting."""

    def __init__(self, ttl_seconds: Optional[float] = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @staticmethod
    def generate_key(table: str, kind: str, params: Optional[dict] = None) -> str:
        """columns:books, fks:books, schema:books:{"x": 1}"""
        key = f"{kind}:{table}"
        if params:
            key += ":" + json.dumps(params, sort_keys=True, default=str)
        return key

    def _expired(self, entry: _Entry) -> bool:
        return entry.expires_at is not None and self._clock() >= entry.expires_at

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._expired(entry):
            del self._entries[key]
            self.evictions += 1
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        expires_at = self._clock() + ttl if ttl is not None else None
        self._entries[key] = _Entry(value, expires_at)

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_table(self, table: str) -> int:
        """Drop every entry for a table, whatever its kind."""
        return self.invalidate_pattern(f"*:{table}") + self.invalidate_pattern(f"*:{table}:*")

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop keys matching a glob pattern (e.g. 'columns:*')."""
        doomed = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """Remove expired entries; returns how many were evicted."""
        expired = [k for k, e in self._entries.items() if self._expired(e)]
        for key in expired:
            del self._entries[key]
        self.evictions += len(expired)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            "ttl_seconds": self.ttl_seconds,
        }
