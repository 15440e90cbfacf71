"""
Invalidation listener for lifecycle events published by other services.
"""

from typing import Any, Mapping, Optional

from shared.logging import get_logger
from ..policy.models import InvalidationScope

TENANT_EVENTS = frozenset({
    "SubscriptionActivated",
    "SubscriptionExpired",
    "SubscriptionCancelled",
    "TenantSuspended",
})

USER_EVENTS = frozenset({
    "UserDeactivated",
    "UserSuspended",
    "UserDeleted",
    "UserRoleChanged",
    "UserStatusChanged",
    "UserCompanyChanged",
    "PermissionGrantChanged",
})

RULE_EVENTS = frozenset({
    "PolicyUpdated",
    "PolicyRuleChanged",
})


class InvalidationListener:
    """Maps lifecycle events onto invalidation scopes and publishes them.

    Events are mappings with an ``event_type`` plus ``tenant_id`` and/or
    ``user_id``. A rule event without a tenant invalidates every tenant.
    """

    def __init__(self, broadcaster):
        self.broadcaster = broadcaster
        self.logger = get_logger("policy.invalidation.listener")

    def scope_for(self, event: Mapping[str, Any]) -> Optional[InvalidationScope]:
        event_type = event.get("event_type")
        tenant_id = event.get("tenant_id")
        user_id = event.get("user_id")

        if event_type in TENANT_EVENTS and tenant_id:
            return InvalidationScope.for_tenant(tenant_id)
        if event_type in USER_EVENTS and user_id:
            return InvalidationScope.for_user(user_id, tenant_id)
        if event_type in RULE_EVENTS:
            return InvalidationScope.for_tenant(tenant_id) if tenant_id else InvalidationScope.everything()
        return None

    async def handle_event(self, event: Mapping[str, Any]) -> Optional[InvalidationScope]:
        """Invalidate for ``event``. Returns the scope applied, or None when ignored."""
        scope = self.scope_for(event)
        if scope is None:
            self.logger.warning(
                "Ignoring lifecycle event",
                event_type=event.get("event_type"),
                tenant_id=event.get("tenant_id"),
                user_id=event.get("user_id"),
            )
            return None

        removed = await self.broadcaster.publish(scope)
        self.logger.info(
            "Lifecycle event invalidated cache",
            event_type=event.get("event_type"),
            kind=scope.kind.value,
            removed=removed,
        )
        return scope
