"""
In-process TTL cache for permission decisions.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

from shared.logging import get_logger
from ..clock import Clock, SystemClock


DEFAULT_TTL_SECONDS = 300  # 5 minutes


@dataclass(frozen=True)
class CacheEntry:
    value: bool
    stored_at: datetime


class DecisionCache:
    """Cache mapping ``principal:action:resource`` to a boolean decision.

    Every invalidation bumps ``generation``. A writer that read the
    generation before evaluating passes it to :meth:`put`, and the write is
    dropped when an invalidation happened in between.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Optional[Clock] = None):
        self.logger = get_logger("permissions.cache.decisions")
        self.ttl_seconds = ttl_seconds
        self.clock = clock or SystemClock()
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._generation = 0
        self._hits = 0
        self._misses = 0

    @staticmethod
    def make_key(principal_id: str, action: str, resource_id: str) -> str:
        return f"{principal_id}:{action}:{resource_id}"

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, principal_id: str, action: str, resource_id: str) -> Tuple[bool, bool]:
        """Return ``(value, found)``; expired entries are purged."""
        key = self.make_key(principal_id, action, resource_id)
        now = self.clock.now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return False, False

            if (now - entry.stored_at).total_seconds() >= self.ttl_seconds:
                del self._entries[key]
                self._misses += 1
                return False, False

            self._hits += 1
            return entry.value, True

    def put(
        self,
        principal_id: str,
        action: str,
        resource_id: str,
        value: bool,
        generation: Optional[int] = None
    ) -> bool:
        """Store a decision. Returns False when the write was stale."""
        key = self.make_key(principal_id, action, resource_id)
        now = self.clock.now()
        with self._lock:
            if generation is not None and generation != self._generation:
                self.logger.debug("Dropped stale cache write", cache_key=key)
                return False
            self._entries[key] = CacheEntry(value=value, stored_at=now)
            return True

    def clear_for_principal(self, principal_id: str) -> int:
        prefix = f"{principal_id}:"
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            self._generation += 1

        self.logger.debug("Invalidated principal decisions", principal_id=principal_id, count=len(keys))
        return len(keys)

    def clear_for_resource(self, resource_id: str) -> int:
        suffix = f":{resource_id}"
        with self._lock:
            keys = [k for k in self._entries if k.endswith(suffix)]
            for key in keys:
                del self._entries[key]
            self._generation += 1

        self.logger.debug("Invalidated resource decisions", resource_id=resource_id, count=len(keys))
        return len(keys)

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._generation += 1

        self.logger.debug("Invalidated all decisions", count=count)
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
                "ttl_seconds": self.ttl_seconds,
                "generation": self._generation,
            }
