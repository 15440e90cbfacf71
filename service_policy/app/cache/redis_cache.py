"""
Redis-backed decision cache shared by every engine instance.
"""

import json
from typing import Any, Dict, Optional

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import InvalidationError, StoreUnavailableError
from shared.metrics import MetricsCollector
from ..policy.models import CacheKey, InvalidationKind, InvalidationScope, PolicyDecision

_GLOB_SPECIAL = "\\*?[]"


# KEYS: generation key, decision key. ARGV: expected generation, ttl, payload.
_GUARDED_SETEX = """
if tonumber(redis.call('GET', KEYS[1]) or '0') ~= tonumber(ARGV[1]) then
    return 0
end
redis.call('SETEX', KEYS[2], ARGV[2], ARGV[3])
return 1
"""


def _glob_escape(value: str) -> str:
    return "".join("\\" + ch if ch in _GLOB_SPECIAL else ch for ch in value)


class RedisDecisionCache:
    """Redis caching layer for policy decisions.

    Entries expire through Redis TTLs. Lookup and write failures degrade to
    a cache miss; invalidation failures are raised, since a stale ALLOW
    must not outlive a revocation silently.
    """

    DECISION_PREFIX = "policy:decision:"
    GENERATION_KEY = "policy:invalidation:generation"

    def __init__(self, redis_url: str, ttl_seconds: int = 300, metrics: Optional[MetricsCollector] = None):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("policy.cache.redis")
        self.redis: Optional[redis.Redis] = None
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.stale_writes = 0

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
            await self.redis.ping()
            self.logger.info("Redis decision cache started")
        except Exception as e:
            self.logger.error("Failed to start Redis decision cache", error=str(e))
            raise StoreUnavailableError("decision_cache", str(e)) from e

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.close()
            self.logger.info("Redis decision cache stopped")

    async def get(self, key: CacheKey) -> Optional[PolicyDecision]:
        try:
            cached = await self.redis.get(self._key(key))
        except Exception as e:
            self.errors += 1
            self.logger.error("Error reading cached decision", error=str(e))
            cached = None

        if not cached:
            self._record_lookup(hit=False)
            return None

        try:
            decision = PolicyDecision.from_dict(json.loads(cached))
        except (ValueError, KeyError, TypeError) as e:
            self.errors += 1
            self.logger.error("Discarding undecodable cached decision", error=str(e))
            self._record_lookup(hit=False)
            return None

        self._record_lookup(hit=True)
        return decision

    async def generation(self) -> int:
        """Shared invalidation generation, to pass back to ``put``."""
        try:
            value = await self.redis.get(self.GENERATION_KEY)
        except Exception as e:
            self.errors += 1
            self.logger.error("Error reading invalidation generation", error=str(e))
            return -1
        return int(value or 0)

    async def put(self,
                  key: CacheKey,
                  decision: PolicyDecision,
                  ttl_seconds: Optional[int] = None,
                  generation: Optional[int] = None) -> bool:
        """Store ``decision``; refused when any invalidation happened since ``generation``.

        The generation is shared by every instance, so the check is coarse:
        an unrelated invalidation also skips the write.
        """
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        payload = json.dumps(decision.to_dict())
        try:
            if generation is None:
                await self.redis.setex(self._key(key), ttl, payload)
                return True
            if generation < 0:
                return False
            written = await self.redis.eval(
                _GUARDED_SETEX, 2, self.GENERATION_KEY, self._key(key), generation, ttl, payload
            )
        except Exception as e:
            self.errors += 1
            self.logger.error("Error caching decision", error=str(e))
            return False

        if not written:
            self.stale_writes += 1
            self.logger.debug("Refusing stale decision write", tenant_id=key.tenant_id,
                              user_id=key.user_id, resource=key.resource, generation=generation)
        return bool(written)

    async def invalidate(self, scope: InvalidationScope) -> int:
        try:
            # Generation moves before any delete
            await self.redis.incr(self.GENERATION_KEY)
            if scope.kind is InvalidationKind.KEY:
                removed = await self.redis.delete(self._key(scope.key))
            else:
                removed = 0
                batch = []
                async for cache_key in self.redis.scan_iter(match=self._pattern(scope), count=500):
                    batch.append(cache_key)
                    if len(batch) >= 500:
                        removed += await self.redis.delete(*batch)
                        batch = []
                if batch:
                    removed += await self.redis.delete(*batch)
        except Exception as e:
            self.logger.error("Error invalidating cached decisions", kind=scope.kind.value, error=str(e))
            raise InvalidationError(str(e), {"kind": scope.kind.value}) from e

        self.logger.info(
            "Decision cache invalidated",
            kind=scope.kind.value,
            tenant_id=scope.tenant_id,
            user_id=scope.user_id,
            resource=scope.resource,
            removed=removed,
        )
        return removed

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "backend": "redis",
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "stale_writes": self.stale_writes,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False

    def _key(self, key: CacheKey) -> str:
        return (
            f"{self.DECISION_PREFIX}tenant:{key.tenant_id}:user:{key.user_id}"
            f":action:{key.action.value}:scope:{key.scope.value}:resource:{key.resource}"
        )

    def _pattern(self, scope: InvalidationScope) -> str:
        tenant = _glob_escape(scope.tenant_id) if scope.tenant_id is not None else "*"
        if scope.kind is InvalidationKind.ALL:
            return f"{self.DECISION_PREFIX}*"
        if scope.kind is InvalidationKind.TENANT:
            return f"{self.DECISION_PREFIX}tenant:{tenant}:user:*"
        if scope.kind is InvalidationKind.USER:
            return f"{self.DECISION_PREFIX}tenant:{tenant}:user:{_glob_escape(scope.user_id)}:action:*"
        return f"{self.DECISION_PREFIX}tenant:{tenant}:user:*:resource:{_glob_escape(scope.resource)}"

    def _record_lookup(self, hit: bool):
        if hit:
            self.hits += 1
        else:
            self.misses += 1
        if self.metrics:
            self.metrics.increment_counter("policy_cache_lookups_total", result="hit" if hit else "miss")
