"""
Policy decision service.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import Header, Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ValidationError
from shared.logging import set_correlation_id

from .admin.administration import PolicyAdministration
from .audit.recorder import AuditRecorder, InMemoryAuditLog
from .cache.invalidation import InvalidationBroadcaster, RedisInvalidationBroadcaster
from .cache.listener import InvalidationListener
from .cache.local_cache import DecisionCache
from .cache.redis_cache import RedisDecisionCache
from .engine.decision_engine import PolicyDecisionEngine
from .engine.validation import validate_request
from .guardrails.evaluator import GuardrailEvaluator
from .policy.models import CacheKey, InvalidationKind, InvalidationScope, Principal
from .registry.loader import load_role_defaults
from .schemas import (
    AuditRecordResponse, DecisionResponse, EvaluateRequest, GrantCreateRequest, GrantResponse,
    InvalidateRequest, LifecycleEvent, RuleCreateRequest, RuleResponse, RuleUpdateRequest
)
from .stores.grant_store import GrantStore
from .stores.rule_store import RuleStore

SERVICE_NAME = "policy"
SERVICE_PORT = 8020


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive query timestamps are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def build_scope(request: InvalidateRequest) -> InvalidationScope:
    """Invalidation scope for an API request."""
    try:
        kind = InvalidationKind(request.kind.strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown invalidation kind: {request.kind!r}", {"field": "kind"}) from None

    if kind is InvalidationKind.ALL:
        return InvalidationScope.everything()
    if kind is InvalidationKind.TENANT:
        if not request.tenant_id:
            raise ValidationError("tenant_id is required", {"field": "tenant_id"})
        return InvalidationScope.for_tenant(request.tenant_id)
    if kind is InvalidationKind.USER:
        if not request.user_id:
            raise ValidationError("user_id is required", {"field": "user_id"})
        return InvalidationScope.for_user(request.user_id, request.tenant_id)
    if kind is InvalidationKind.RESOURCE:
        if not request.resource:
            raise ValidationError("resource is required", {"field": "resource"})
        return InvalidationScope.for_resource(request.resource, request.tenant_id)

    resource, action, scope = validate_request(
        request.tenant_id, Principal(user_id=request.user_id or ""), request.resource,
        request.action, request.scope or "OWN",
    )
    return InvalidationScope.for_key(CacheKey(request.tenant_id, request.user_id, resource, action, scope))


class PolicyService(BaseService):
    """Policy decision service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config)

        self.rule_store = RuleStore()
        self.grant_store = GrantStore()
        self.role_defaults = load_role_defaults(self.config.registry_file)
        self.guardrails = GuardrailEvaluator()

        if self.config.cache_backend == "redis":
            self.cache = RedisDecisionCache(self.config.redis_url, self.config.cache_ttl_seconds, self.metrics)
        else:
            self.cache = DecisionCache(
                ttl_seconds=self.config.cache_ttl_seconds,
                max_entries=self.config.cache_max_entries,
                metrics=self.metrics,
            )

        if self.config.invalidation_backend == "redis":
            self.broadcaster = RedisInvalidationBroadcaster(
                self.cache, self.config.redis_url, self.config.invalidation_channel, metrics=self.metrics
            )
        else:
            self.broadcaster = InvalidationBroadcaster(self.cache, self.metrics)

        self.recorder = AuditRecorder(InMemoryAuditLog(), self.config.audit_queue_size, self.metrics)
        self.engine = PolicyDecisionEngine(
            rule_store=self.rule_store,
            grant_store=self.grant_store,
            guardrails=self.guardrails,
            role_defaults=self.role_defaults,
            cache=self.cache,
            recorder=self.recorder,
            store_timeout_ms=self.config.store_timeout_ms,
            evaluation_timeout_ms=self.config.evaluation_timeout_ms,
            cache_ttl_seconds=self.config.cache_ttl_seconds,
            metrics=self.metrics,
        )
        self.admin = PolicyAdministration(self.rule_store, self.grant_store, self.broadcaster)
        self.listener = InvalidationListener(self.broadcaster)

        self._setup_policy_routes()

    def _setup_policy_routes(self):
        """Set up policy-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Fabric Management - Policy Decision Service",
                "version": "1.0.0",
                "capabilities": ["evaluation", "caching", "invalidation", "audit"]
            }

        @self.app.post("/policy/evaluate", response_model=DecisionResponse)
        async def evaluate(request: EvaluateRequest,
                           x_correlation_id: Optional[str] = Header(None)):
            """Evaluate a policy decision."""
            correlation_id = set_correlation_id(request.correlation_id or x_correlation_id)
            decision = await self.engine.evaluate(
                request.tenant_id,
                request.to_principal(),
                request.resource,
                request.action,
                request.requested_scope,
                correlation_id=correlation_id,
                context=request.context or None,
            )
            return DecisionResponse.from_decision(decision)

        @self.app.post("/policy/invalidate")
        async def invalidate(request: InvalidateRequest):
            """Invalidate cached decisions on every instance."""
            scope = build_scope(request)
            removed = await self.broadcaster.publish(scope)
            return {"kind": scope.kind.value, "removed": removed}

        @self.app.post("/policy/events")
        async def lifecycle_event(event: LifecycleEvent):
            """Handle a lifecycle event from another service."""
            scope = await self.listener.handle_event(event.model_dump())
            return {"event_type": event.event_type, "invalidated": scope.kind.value if scope else None}

        @self.app.get("/policy/stats")
        async def stats(tenant_id: str = Query(..., description="Tenant ID"),
                        start: Optional[datetime] = Query(None, description="Window start (inclusive)"),
                        end: Optional[datetime] = Query(None, description="Window end (exclusive)")):
            """Decision statistics for a tenant."""
            await self.recorder.flush()
            result = await self.recorder.stats(tenant_id, _as_utc(start), _as_utc(end))
            return result.to_dict()

        @self.app.get("/policy/audit/recent")
        async def recent_decisions(tenant_id: str = Query(...),
                                   user_id: str = Query(...),
                                   limit: int = Query(50, ge=1, le=500)):
            """Latest decisions for a user."""
            await self.recorder.flush()
            records = await self.recorder.recent(tenant_id, user_id, limit)
            return {"records": [AuditRecordResponse.from_record(r) for r in records]}

        @self.app.get("/policy/audit/denials")
        async def deny_decisions(tenant_id: str = Query(...),
                                 start: Optional[datetime] = Query(None),
                                 end: Optional[datetime] = Query(None),
                                 limit: int = Query(100, ge=1, le=1000)):
            """Latest DENY decisions for a tenant."""
            await self.recorder.flush()
            records = await self.recorder.deny_decisions(tenant_id, _as_utc(start), _as_utc(end), limit)
            return {"records": [AuditRecordResponse.from_record(r) for r in records]}

        @self.app.get("/policy/cache/stats")
        async def cache_stats():
            """Decision cache statistics."""
            return self.cache.stats()

        @self.app.get("/policy/rules")
        async def list_rules(tenant_id: Optional[str] = Query(None, description="Filter by tenant")):
            """List rules applying to a tenant."""
            rules = await self.rule_store.list_rules(tenant_id)
            return {"rules": [RuleResponse.from_rule(r) for r in rules], "total": len(rules)}

        @self.app.post("/policy/rules", response_model=RuleResponse, status_code=201)
        async def create_rule(request: RuleCreateRequest):
            """Create a policy rule."""
            rule = await self.admin.create_rule(**request.model_dump())
            return RuleResponse.from_rule(rule)

        @self.app.put("/policy/rules/{rule_id}", response_model=RuleResponse)
        async def update_rule(rule_id: str, request: RuleUpdateRequest):
            """Update a policy rule."""
            rule = await self.admin.update_rule(rule_id, **request.model_dump(exclude_unset=True, exclude_none=True))
            return RuleResponse.from_rule(rule)

        @self.app.post("/policy/rules/{rule_id}/disable", response_model=RuleResponse)
        async def disable_rule(rule_id: str):
            """Disable a policy rule."""
            rule = await self.admin.disable_rule(rule_id)
            return RuleResponse.from_rule(rule)

        @self.app.get("/policy/grants")
        async def list_grants(tenant_id: str = Query(...),
                              user_id: str = Query(...),
                              include_inactive: bool = Query(False)):
            """List a user's grants."""
            grants = await self.grant_store.list_for_user(tenant_id, user_id, include_inactive)
            return {"grants": [GrantResponse.from_grant(g) for g in grants], "total": len(grants)}

        @self.app.post("/policy/grants", response_model=GrantResponse, status_code=201)
        async def create_grant(request: GrantCreateRequest):
            """Create a permission grant."""
            grant = await self.admin.create_grant(**request.model_dump())
            return GrantResponse.from_grant(grant)

        @self.app.post("/policy/grants/{grant_id}/revoke", response_model=GrantResponse)
        async def revoke_grant(grant_id: str):
            """Revoke a permission grant."""
            grant = await self.admin.revoke_grant(grant_id)
            return GrantResponse.from_grant(grant)

        @self.app.post("/policy/grants/sweep")
        async def sweep_grants():
            """Persist EXPIRED status on lapsed grants."""
            return {"swept": await self.admin.sweep_expired_grants()}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies."""
        dependencies = {}

        try:
            dependencies["cache"] = "ok" if await self.cache.health_check() else "error"
        except Exception:
            dependencies["cache"] = "error"

        try:
            dependencies["invalidation"] = "ok" if await self.broadcaster.health_check() else "error"
        except Exception:
            dependencies["invalidation"] = "error"

        return dependencies

    async def start(self):
        """Start policy service components."""
        await self.cache.start()
        await self.broadcaster.start()
        await self.recorder.start()
        self.logger.info(
            "Policy service started",
            cache_backend=self.config.cache_backend,
            invalidation_backend=self.config.invalidation_backend,
            roles=list(self.role_defaults.roles),
        )

    async def stop(self):
        """Stop policy service components."""
        await self.admin.drain()
        await self.recorder.stop()
        await self.broadcaster.stop()
        await self.cache.stop()
        self.logger.info("Policy service stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create policy service application."""
    service = PolicyService(config)
    return service.app


if __name__ == "__main__":
    service = PolicyService(get_config(SERVICE_NAME, SERVICE_PORT))
    service.run()
