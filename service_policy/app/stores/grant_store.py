"""
Grant store: explicit per-user permission grants.

Expiry is evaluated lazily at read time; ``sweep_expired`` only refreshes
the persisted status for reporting and is never needed for correctness.
"""

import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from shared.logging import get_logger
from shared.errors import GrantStateError, NotFoundError
from ..policy.models import (
    DataScope, GrantStatus, Operation, PermissionGrant, PermissionType, utcnow
)
from ..policy.patterns import matches


class GrantStore:
    """In-memory grant store indexed by (tenant, user)."""

    def __init__(self):
        self.logger = get_logger("policy.grant_store")
        self.grants: Dict[str, PermissionGrant] = {}
        self._by_user: Dict[Tuple[str, str], List[str]] = {}
        self._write_lock = threading.Lock()

    async def create(self, grant: PermissionGrant) -> PermissionGrant:
        with self._write_lock:
            if grant.grant_id in self.grants:
                raise GrantStateError(f"Grant '{grant.grant_id}' already exists")
            self.grants[grant.grant_id] = grant
            user_key = (grant.tenant_id, grant.user_id)
            self._by_user[user_key] = self._by_user.get(user_key, []) + [grant.grant_id]

        self.logger.info(
            "Grant created",
            grant_id=grant.grant_id,
            tenant_id=grant.tenant_id,
            user_id=grant.user_id,
            endpoint=grant.endpoint,
            operation=grant.operation.value,
            permission_type=grant.permission_type.value,
            data_scope=grant.data_scope.value,
            expires_at=grant.expires_at.isoformat() if grant.expires_at else None,
        )
        return grant

    async def get(self, grant_id: str) -> Optional[PermissionGrant]:
        return self.grants.get(grant_id)

    async def revoke(self, grant_id: str, now: Optional[datetime] = None) -> PermissionGrant:
        """ACTIVE -> REVOKED. Expired or already revoked grants are terminal."""
        now = now or utcnow()
        with self._write_lock:
            grant = self.grants.get(grant_id)
            if grant is None:
                raise NotFoundError("Grant", grant_id)

            status = grant.status(now)
            if status is not GrantStatus.ACTIVE:
                raise GrantStateError(
                    f"Cannot revoke grant in status {status.value}",
                    {"grant_id": grant_id, "status": status.value},
                )

            grant = replace(grant, revoked_at=now, recorded_status=GrantStatus.REVOKED)
            self.grants[grant_id] = grant

        self.logger.info("Grant revoked", grant_id=grant_id, user_id=grant.user_id, tenant_id=grant.tenant_id)
        return grant

    async def find_active_grant(
        self,
        tenant_id: str,
        user_id: str,
        endpoint: str,
        operation: Operation,
        requested_scope: DataScope,
        now: Optional[datetime] = None,
    ) -> Optional[PermissionGrant]:
        """Winning ACTIVE grant for the request, or None.

        Any active DENY grant wins regardless of its scope. Otherwise the
        narrowest active ALLOW grant covering ``requested_scope`` wins.
        ALLOW grants narrower than the request are ignored.
        """
        now = now or utcnow()
        candidates = [
            grant for grant in self._grants_for(tenant_id, user_id)
            if grant.operation == operation
            and grant.is_active(now)
            and matches(grant.endpoint, endpoint)
        ]
        if not candidates:
            return None

        denies = [g for g in candidates if g.permission_type is PermissionType.DENY]
        if denies:
            return min(denies, key=lambda g: (g.created_at, g.grant_id))

        covering = [g for g in candidates if g.data_scope.covers(requested_scope)]
        if not covering:
            self.logger.debug(
                "Active grants do not cover requested scope",
                user_id=user_id,
                endpoint=endpoint,
                requested_scope=requested_scope.value,
                grant_ids=[g.grant_id for g in candidates],
            )
            return None
        return min(covering, key=lambda g: (g.data_scope.level, g.created_at, g.grant_id))

    async def list_for_user(
        self,
        tenant_id: str,
        user_id: str,
        include_inactive: bool = False,
        now: Optional[datetime] = None,
    ) -> List[PermissionGrant]:
        now = now or utcnow()
        return [
            grant for grant in self._grants_for(tenant_id, user_id)
            if include_inactive or grant.is_active(now)
        ]

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Persist EXPIRED status on grants past their expiry. Returns the count."""
        now = now or utcnow()
        swept = 0
        with self._write_lock:
            for grant_id, grant in list(self.grants.items()):
                if grant.recorded_status is GrantStatus.ACTIVE and grant.status(now) is GrantStatus.EXPIRED:
                    self.grants[grant_id] = replace(grant, recorded_status=GrantStatus.EXPIRED)
                    swept += 1

        if swept:
            self.logger.info("Expired grants swept", count=swept)
        return swept

    def _grants_for(self, tenant_id: str, user_id: str) -> List[PermissionGrant]:
        grants = self.grants
        return [grants[gid] for gid in self._by_user.get((tenant_id, user_id), ()) if gid in grants]

    def get_store_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        counts = {status.value: 0 for status in GrantStatus}
        for grant in self.grants.values():
            counts[grant.status(now).value] += 1
        return {"total_grants": len(self.grants), "by_status": counts}
