"""
Administrative mutations of rules and grants.

Every write goes to the store first, then invalidates affected decisions:
this instance's cache synchronously, peers through a background broadcast
the caller never waits on.
"""

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Set

from shared.logging import get_logger
from shared.errors import InvalidationError, ValidationError
from ..cache.invalidation import InvalidationBroadcaster
from ..policy.conditions import validate_conditions
from ..policy.models import (
    DataScope, Effect, InvalidationScope, Operation, PermissionGrant, PermissionType, PolicyRule, utcnow
)
from ..stores.grant_store import GrantStore
from ..stores.rule_store import RuleStore

_RULE_FIELDS = frozenset({
    "name", "description", "resource", "action", "effect", "priority",
    "conditions", "enabled", "max_scope", "tenant_id",
})


def _validate_pattern(pattern: Any, field_name: str) -> str:
    if not isinstance(pattern, str) or not pattern.startswith("/") or any(ch.isspace() for ch in pattern):
        raise ValidationError(f"Invalid {field_name} pattern", {"field": field_name, "value": pattern})
    return pattern


class PolicyAdministration:
    """Create, update and disable rules; create and revoke grants."""

    def __init__(self,
                 rule_store: RuleStore,
                 grant_store: GrantStore,
                 broadcaster: InvalidationBroadcaster,
                 clock: Callable[[], datetime] = utcnow):
        self.logger = get_logger("policy.admin")
        self.rule_store = rule_store
        self.grant_store = grant_store
        self.broadcaster = broadcaster
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()

    async def create_rule(self,
                          resource: str,
                          action: Any,
                          effect: Any,
                          priority: int = 0,
                          conditions: Optional[Mapping[str, Any]] = None,
                          tenant_id: Optional[str] = None,
                          max_scope: Any = DataScope.TENANT,
                          name: str = "",
                          description: Optional[str] = None,
                          enabled: bool = True,
                          rule_id: Optional[str] = None) -> PolicyRule:
        conditions = dict(conditions or {})
        validate_conditions(conditions)
        rule = PolicyRule(
            rule_id=rule_id or str(uuid.uuid4()),
            resource=_validate_pattern(resource, "resource"),
            action=Operation.parse(action),
            effect=self._parse_effect(effect),
            priority=int(priority),
            conditions=conditions,
            enabled=enabled,
            tenant_id=tenant_id,
            max_scope=DataScope.parse(max_scope),
            name=name,
            description=description,
        )
        rule = await self.rule_store.save(rule)
        await self._invalidate(self._rule_scope(rule))
        return rule

    async def update_rule(self, rule_id: str, **changes) -> PolicyRule:
        """Apply field changes to an existing rule."""
        unknown = set(changes) - _RULE_FIELDS
        if unknown:
            raise ValidationError("Unknown rule fields", {"fields": sorted(unknown)})

        current = await self.rule_store.require(rule_id)
        if "resource" in changes:
            changes["resource"] = _validate_pattern(changes["resource"], "resource")
        if "action" in changes:
            changes["action"] = Operation.parse(changes["action"])
        if "effect" in changes:
            changes["effect"] = self._parse_effect(changes["effect"])
        if "max_scope" in changes:
            changes["max_scope"] = DataScope.parse(changes["max_scope"])
        if "priority" in changes:
            changes["priority"] = int(changes["priority"])
        if "conditions" in changes:
            changes["conditions"] = dict(changes["conditions"] or {})
            validate_conditions(changes["conditions"])

        rule = await self.rule_store.save(replace(current, **changes))
        if current.tenant_id != rule.tenant_id:
            await self._invalidate(self._rule_scope(current))
        await self._invalidate(self._rule_scope(rule))
        return rule

    async def disable_rule(self, rule_id: str) -> PolicyRule:
        current = await self.rule_store.require(rule_id)
        rule = await self.rule_store.save(replace(current, enabled=False))
        await self._invalidate(self._rule_scope(rule))
        return rule

    async def create_grant(self,
                           tenant_id: str,
                           user_id: str,
                           endpoint: str,
                           operation: Any,
                           permission_type: Any,
                           data_scope: Any,
                           expires_at: Optional[datetime] = None,
                           reason: str = "",
                           granted_by: Optional[str] = None,
                           grant_id: Optional[str] = None) -> PermissionGrant:
        if not tenant_id or not user_id:
            raise ValidationError("Grant needs tenant_id and user_id")
        if expires_at is not None:
            if expires_at.tzinfo is None:
                raise ValidationError("expires_at must be timezone-aware", {"field": "expires_at"})
            if expires_at <= self._clock():
                raise ValidationError("expires_at must be in the future", {"field": "expires_at"})

        grant = PermissionGrant(
            grant_id=grant_id or str(uuid.uuid4()),
            tenant_id=tenant_id,
            user_id=user_id,
            endpoint=_validate_pattern(endpoint, "endpoint"),
            operation=Operation.parse(operation),
            permission_type=self._parse_effect(permission_type),
            data_scope=DataScope.parse(data_scope),
            expires_at=expires_at,
            reason=reason,
            granted_by=granted_by,
            created_at=self._clock(),
        )
        grant = await self.grant_store.create(grant)
        await self._invalidate(InvalidationScope.for_user(grant.user_id, grant.tenant_id))
        return grant

    async def revoke_grant(self, grant_id: str) -> PermissionGrant:
        grant = await self.grant_store.revoke(grant_id, now=self._clock())
        await self._invalidate(InvalidationScope.for_user(grant.user_id, grant.tenant_id))
        return grant

    async def sweep_expired_grants(self) -> int:
        """Housekeeping only; evaluation already treats expired grants as absent."""
        return await self.grant_store.sweep_expired(now=self._clock())

    async def drain(self):
        """Wait for outstanding broadcasts."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    def _parse_effect(value: Any) -> Effect:
        if isinstance(value, Effect):
            return value
        try:
            return PermissionType(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown effect: {value!r}", {"field": "effect"}) from None

    @staticmethod
    def _rule_scope(rule: PolicyRule) -> InvalidationScope:
        if rule.tenant_id is None:
            return InvalidationScope.everything()
        return InvalidationScope.for_tenant(rule.tenant_id)

    async def _invalidate(self, scope: InvalidationScope):
        await self.broadcaster.apply(scope)
        task = asyncio.create_task(self._broadcast(scope))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _broadcast(self, scope: InvalidationScope):
        try:
            await self.broadcaster.broadcast(scope)
        except InvalidationError as e:
            self.logger.error(
                "Peers may serve stale decisions until TTL expiry",
                kind=scope.kind.value,
                tenant_id=scope.tenant_id,
                user_id=scope.user_id,
                error=e.message,
            )
