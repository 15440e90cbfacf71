"""
In-process decision cache.

Reads never take a lock: ``get`` does a single dict lookup on whatever
mapping is current. Writers serialize on one lock; invalidation builds a
filtered copy and swaps it in, so a reader sees either the old or the new
mapping, never a half-purged one.

Every invalidation bumps a generation counter. An evaluation captures the
generation before reading the stores and hands it back to ``put``; the
write is refused when a matching invalidation landed in between.
"""

import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..policy.models import CacheEntry, CacheKey, InvalidationScope, PolicyDecision, utcnow


class DecisionCache:
    """TTL-memoized decisions keyed by (tenant, user, resource, action, scope)."""

    def __init__(self,
                 ttl_seconds: int = 300,
                 max_entries: int = 100_000,
                 clock: Callable[[], datetime] = utcnow,
                 metrics: Optional[MetricsCollector] = None,
                 invalidation_history: int = 1024):
        self.logger = get_logger("policy.cache.local")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.metrics = metrics
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._write_lock = threading.Lock()
        self._generation = 0
        self._invalidations: Deque[Tuple[int, InvalidationScope]] = deque(maxlen=invalidation_history)
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.stale_writes = 0

    async def start(self):
        self.logger.info("Local decision cache ready", ttl_seconds=self.ttl_seconds, max_entries=self.max_entries)

    async def stop(self):
        with self._write_lock:
            self._entries = {}

    async def get(self, key: CacheKey) -> Optional[PolicyDecision]:
        """Cached decision for ``key``, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            self._record_lookup(hit=True)
            return entry.decision

        if entry is not None:
            with self._write_lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
        self._record_lookup(hit=False)
        return None

    async def generation(self) -> int:
        """Current invalidation generation, to pass back to ``put``."""
        return self._generation

    async def put(self,
                  key: CacheKey,
                  decision: PolicyDecision,
                  ttl_seconds: Optional[int] = None,
                  generation: Optional[int] = None) -> bool:
        """Store ``decision``; refused when ``key`` was invalidated since ``generation``."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        entry = CacheEntry(decision=decision, expires_at=self._clock() + timedelta(seconds=ttl))
        with self._write_lock:
            if generation is not None and self._invalidated_since(key, generation):
                self.stale_writes += 1
                self.logger.debug("Refusing stale decision write", tenant_id=key.tenant_id,
                                  user_id=key.user_id, resource=key.resource, generation=generation)
                return False
            entries = self._entries
            entries.pop(key, None)
            while len(entries) >= self.max_entries:
                # Oldest insertion first
                entries.pop(next(iter(entries)))
                self.evictions += 1
            entries[key] = entry
            size = len(entries)

        if self.metrics:
            self.metrics.set_gauge("policy_cache_entries", size)
        return True

    async def invalidate(self, scope: InvalidationScope) -> int:
        """Drop every entry ``scope`` matches. Returns the number dropped."""
        with self._write_lock:
            current = self._entries
            if scope.key is not None:
                survivors = dict(current)
                removed = 1 if survivors.pop(scope.key, None) is not None else 0
            else:
                survivors = {key: entry for key, entry in current.items() if not scope.matches(key)}
                removed = len(current) - len(survivors)
            self._entries = survivors
            self._generation += 1
            self._invalidations.append((self._generation, scope))
            size = len(survivors)

        if self.metrics:
            self.metrics.set_gauge("policy_cache_entries", size)
        self.logger.info(
            "Decision cache invalidated",
            kind=scope.kind.value,
            tenant_id=scope.tenant_id,
            user_id=scope.user_id,
            resource=scope.resource,
            removed=removed,
        )
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "backend": "local",
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "stale_writes": self.stale_writes,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }

    async def health_check(self) -> bool:
        return True

    def _invalidated_since(self, key: CacheKey, generation: int) -> bool:
        if generation >= self._generation:
            return False
        if not self._invalidations or self._invalidations[0][0] > generation + 1:
            # History no longer reaches back that far
            return True
        return any(gen > generation and scope.matches(key) for gen, scope in self._invalidations)

    def _record_lookup(self, hit: bool):
        # Counters are advisory; increments may race.
        if hit:
            self.hits += 1
        else:
            self.misses += 1
        if self.metrics:
            self.metrics.increment_counter("policy_cache_lookups_total", result="hit" if hit else "miss")
