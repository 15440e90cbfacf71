"""
Cache invalidation fan-out.

``apply`` drops entries from this instance's cache. ``broadcast`` tells the
other instances to do the same. ``publish`` does both. The local
broadcaster serves single-instance deployments and tests; the Redis
broadcaster relays scopes over a pub/sub channel.
"""

import asyncio
import json
import uuid
from typing import Any, Optional, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import InvalidationError
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..policy.models import InvalidationScope

PUBLISH_RETRY = RetryConfig(max_attempts=3, base_delay=0.05, max_delay=0.5)
RESUBSCRIBE_RETRY = RetryConfig(max_attempts=8, base_delay=0.1, max_delay=5.0)
SUBSCRIPTION_ERRORS = (RedisError, ConnectionError, OSError)


class InvalidationBroadcaster:
    """Applies invalidations to the local cache only."""

    def __init__(self, cache, metrics: Optional[MetricsCollector] = None):
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("policy.invalidation")

    async def start(self):
        pass

    async def stop(self):
        pass

    async def apply(self, scope: InvalidationScope, origin: str = "local") -> int:
        removed = await self.cache.invalidate(scope)
        if self.metrics:
            self.metrics.increment_counter(
                "policy_cache_invalidations_total", kind=scope.kind.value, origin=origin
            )
        return removed

    async def broadcast(self, scope: InvalidationScope) -> None:
        """No peers to notify."""

    async def publish(self, scope: InvalidationScope) -> int:
        removed = await self.apply(scope)
        await self.broadcast(scope)
        return removed

    async def health_check(self) -> bool:
        return True


class RedisInvalidationBroadcaster(InvalidationBroadcaster):
    """Relays invalidation scopes to every instance over Redis pub/sub.

    Messages are ``{"origin": <instance id>, "scope": <scope dict>}``. An
    instance ignores its own messages since it applied them before
    publishing.
    """

    def __init__(self,
                 cache,
                 redis_url: str,
                 channel: str = "policy:invalidation",
                 instance_id: Optional[str] = None,
                 metrics: Optional[MetricsCollector] = None):
        super().__init__(cache, metrics)
        self.redis_url = redis_url
        self.channel = channel
        self.instance_id = instance_id or str(uuid.uuid4())
        self.redis: Optional[redis.Redis] = None
        self._pubsub = None
        self._listener_task: Optional[asyncio.Task] = None

    async def start(self):
        """Connect and start the subscription loop."""
        try:
            self.redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
            await self.redis.ping()
            self._pubsub = self.redis.pubsub()
            await self._pubsub.subscribe(self.channel)
        except Exception as e:
            self.logger.error("Failed to start invalidation broadcaster", channel=self.channel, error=str(e))
            raise InvalidationError(f"Cannot subscribe to {self.channel}: {e}") from e

        self._listener_task = asyncio.create_task(self._listen())
        self.logger.info("Invalidation broadcaster started", channel=self.channel, instance_id=self.instance_id)

    async def stop(self):
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        if self._pubsub:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.close()
        if self.redis:
            await self.redis.close()
        self.logger.info("Invalidation broadcaster stopped", channel=self.channel)

    async def broadcast(self, scope: InvalidationScope) -> None:
        payload = json.dumps({"origin": self.instance_id, "scope": scope.to_dict()})
        try:
            receivers = await self._publish(payload)
        except RetryError as e:
            self.logger.error(
                "Invalidation broadcast failed",
                kind=scope.kind.value,
                channel=self.channel,
                error=str(e.last_exception),
            )
            raise InvalidationError(f"Broadcast on {self.channel} failed", {"kind": scope.kind.value}) from e

        self.logger.debug("Invalidation broadcast", kind=scope.kind.value, receivers=receivers)

    @retry_on_exception(SUBSCRIPTION_ERRORS, PUBLISH_RETRY)
    async def _publish(self, payload: str) -> int:
        return await self.redis.publish(self.channel, payload)

    async def _listen(self):
        """Apply peer messages until stopped, resubscribing after connection loss."""
        while True:
            try:
                async for message in self._pubsub.listen():
                    if message["type"] == "message":
                        await self._handle_message(message["data"])
                return
            except SUBSCRIPTION_ERRORS as e:
                self.logger.error("Invalidation subscription lost", channel=self.channel, error=str(e))

            while True:
                try:
                    await self._resubscribe()
                    break
                except RetryError as e:
                    self.logger.critical(
                        "Cannot resubscribe to invalidation channel",
                        channel=self.channel,
                        attempts=e.attempts,
                        error=str(e.last_exception),
                    )

            # Peer messages sent during the outage are lost
            try:
                await self.apply(InvalidationScope.everything(), origin="resync")
            except InvalidationError as e:
                self.logger.error("Resync invalidation failed", channel=self.channel, error=e.message)
            self.logger.info("Invalidation subscription restored", channel=self.channel)

    @retry_on_exception(SUBSCRIPTION_ERRORS, RESUBSCRIBE_RETRY)
    async def _resubscribe(self):
        self._pubsub = self.redis.pubsub()
        await self._pubsub.subscribe(self.channel)

    async def _handle_message(self, data: Union[str, bytes, Any]) -> Optional[int]:
        """Apply a peer's invalidation. Returns entries removed, or None when skipped."""
        try:
            payload = json.loads(data)
            origin = payload.get("origin")
            scope = InvalidationScope.from_dict(payload["scope"])
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self.logger.error("Malformed invalidation message", channel=self.channel, error=str(e))
            return None

        if origin == self.instance_id:
            return None

        try:
            return await self.apply(scope, origin="remote")
        except InvalidationError as e:
            self.logger.error("Remote invalidation failed", origin=origin, kind=scope.kind.value, error=e.message)
            return None

    async def health_check(self) -> bool:
        if self.redis is None or self._listener_task is None or self._listener_task.done():
            return False
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
