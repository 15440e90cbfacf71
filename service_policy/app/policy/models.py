"""
Policy value types for the decision engine.

All types are flat and immutable; components exchange them freely across
tasks without copying.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from shared.errors import ValidationError


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class Effect(str, Enum):
    """Outcome carried by a rule or grant."""
    ALLOW = "ALLOW"
    DENY = "DENY"


# Grants use the same two-valued outcome under their own name.
PermissionType = Effect


class Operation(str, Enum):
    """Action performed on a resource."""
    READ = "READ"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    WRITE = "WRITE"
    APPROVE = "APPROVE"
    EXPORT = "EXPORT"
    IMPORT = "IMPORT"
    MANAGE = "MANAGE"

    @property
    def is_read_only(self) -> bool:
        return self in (Operation.READ, Operation.EXPORT)

    @property
    def is_write(self) -> bool:
        return self in (Operation.CREATE, Operation.UPDATE, Operation.WRITE)

    @classmethod
    def parse(cls, value: Any) -> "Operation":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown action: {value!r}", {"field": "action"}) from None


class DataScope(str, Enum):
    """Breadth of data a decision authorizes, narrowest first."""
    OWN = "OWN"
    TEAM = "TEAM"
    TENANT = "TENANT"
    GLOBAL = "GLOBAL"

    @property
    def level(self) -> int:
        return _SCOPE_LEVELS[self]

    def covers(self, other: "DataScope") -> bool:
        """True when this scope is at least as broad as ``other``."""
        return self.level >= other.level

    @classmethod
    def parse(cls, value: Any) -> "DataScope":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown data scope: {value!r}", {"field": "scope"}) from None


_SCOPE_LEVELS = {DataScope.OWN: 0, DataScope.TEAM: 1, DataScope.TENANT: 2, DataScope.GLOBAL: 3}


class CompanyType(str, Enum):
    """Relationship of the principal's company to the tenant."""
    INTERNAL = "INTERNAL"
    CUSTOMER = "CUSTOMER"
    SUPPLIER = "SUPPLIER"
    SUBCONTRACTOR = "SUBCONTRACTOR"


class GrantStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class ReasonCode(str, Enum):
    """Machine-readable decision path."""
    GUARDRAIL = "guardrail"
    PLATFORM_POLICY = "platform_policy"
    USER_GRANT = "user_grant"
    ROLE_DEFAULT = "role_default"
    SCOPE_VIOLATION = "scope_violation"
    ROLE_NO_DEFAULT_ACCESS = "role_no_default_access"
    POLICY_EVALUATION_ERROR = "policy_evaluation_error"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as extracted by the authorization middleware."""
    user_id: str
    roles: Tuple[str, ...] = ()
    company_type: Optional[CompanyType] = None
    company_id: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def has_any_role(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)


@dataclass(frozen=True)
class PolicyRule:
    """Tenant policy rule.

    ``tenant_id=None`` applies the rule to every tenant. ``max_scope`` bounds
    the data scope an ALLOW rule authorizes. ``sequence`` is assigned by the
    rule store on first save and orders rules of equal priority.
    """
    rule_id: str
    resource: str
    action: Operation
    effect: Effect
    priority: int = 0
    conditions: Mapping[str, Any] = field(default_factory=dict)
    enabled: bool = True
    tenant_id: Optional[str] = None
    max_scope: DataScope = DataScope.TENANT
    name: str = ""
    description: Optional[str] = None
    sequence: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PermissionGrant:
    """Explicit per-user allow/deny override with optional expiry.

    ``recorded_status`` is the persisted status used for reporting; the
    authoritative state is always ``status(now)``.
    """
    grant_id: str
    tenant_id: str
    user_id: str
    endpoint: str
    operation: Operation
    permission_type: PermissionType
    data_scope: DataScope
    expires_at: Optional[datetime] = None
    reason: str = ""
    granted_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    revoked_at: Optional[datetime] = None
    recorded_status: GrantStatus = GrantStatus.ACTIVE

    def status(self, now: datetime) -> GrantStatus:
        if self.revoked_at is not None:
            return GrantStatus.REVOKED
        if self.expires_at is not None and self.expires_at < now:
            return GrantStatus.EXPIRED
        return GrantStatus.ACTIVE

    def is_active(self, now: datetime) -> bool:
        return self.status(now) is GrantStatus.ACTIVE


@dataclass(frozen=True)
class PolicyDecision:
    """Result of one evaluation."""
    allowed: bool
    reason_code: ReasonCode
    reason: str
    evaluated_at: datetime
    evaluation_time_ms: float
    policy_id: Optional[str] = None
    correlation_id: Optional[str] = None
    cache_hit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason_code": self.reason_code.value,
            "reason": self.reason,
            "policy_id": self.policy_id,
            "evaluated_at": self.evaluated_at.isoformat(),
            "evaluation_time_ms": self.evaluation_time_ms,
            "correlation_id": self.correlation_id,
            "cache_hit": self.cache_hit,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PolicyDecision":
        return cls(
            allowed=bool(data["allowed"]),
            reason_code=ReasonCode(data["reason_code"]),
            reason=data["reason"],
            evaluated_at=datetime.fromisoformat(data["evaluated_at"]),
            evaluation_time_ms=float(data["evaluation_time_ms"]),
            policy_id=data.get("policy_id"),
            correlation_id=data.get("correlation_id"),
            cache_hit=bool(data.get("cache_hit", False)),
        )


@dataclass(frozen=True)
class CacheKey:
    tenant_id: str
    user_id: str
    resource: str
    action: Operation
    scope: DataScope


@dataclass(frozen=True)
class CacheEntry:
    decision: PolicyDecision
    expires_at: datetime


class InvalidationKind(str, Enum):
    KEY = "key"
    TENANT = "tenant"
    USER = "user"
    RESOURCE = "resource"
    ALL = "all"


@dataclass(frozen=True)
class InvalidationScope:
    """Which cached decisions to drop."""
    kind: InvalidationKind
    key: Optional[CacheKey] = None
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    resource: Optional[str] = None

    @classmethod
    def for_key(cls, key: CacheKey) -> "InvalidationScope":
        return cls(InvalidationKind.KEY, key=key)

    @classmethod
    def for_tenant(cls, tenant_id: str) -> "InvalidationScope":
        return cls(InvalidationKind.TENANT, tenant_id=tenant_id)

    @classmethod
    def for_user(cls, user_id: str, tenant_id: Optional[str] = None) -> "InvalidationScope":
        return cls(InvalidationKind.USER, user_id=user_id, tenant_id=tenant_id)

    @classmethod
    def for_resource(cls, resource: str, tenant_id: Optional[str] = None) -> "InvalidationScope":
        return cls(InvalidationKind.RESOURCE, resource=resource, tenant_id=tenant_id)

    @classmethod
    def everything(cls) -> "InvalidationScope":
        return cls(InvalidationKind.ALL)

    def matches(self, key: CacheKey) -> bool:
        if self.kind is InvalidationKind.ALL:
            return True
        if self.kind is InvalidationKind.KEY:
            return key == self.key
        if self.tenant_id is not None and key.tenant_id != self.tenant_id:
            return False
        if self.kind is InvalidationKind.TENANT:
            return True
        if self.kind is InvalidationKind.USER:
            return key.user_id == self.user_id
        return key.resource == self.resource

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "resource": self.resource,
        }
        if self.key is not None:
            data["key"] = {
                "tenant_id": self.key.tenant_id,
                "user_id": self.key.user_id,
                "resource": self.key.resource,
                "action": self.key.action.value,
                "scope": self.key.scope.value,
            }
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InvalidationScope":
        key_data = data.get("key")
        key = None
        if key_data:
            key = CacheKey(
                tenant_id=key_data["tenant_id"],
                user_id=key_data["user_id"],
                resource=key_data["resource"],
                action=Operation(key_data["action"]),
                scope=DataScope(key_data["scope"]),
            )
        return cls(
            kind=InvalidationKind(data["kind"]),
            key=key,
            tenant_id=data.get("tenant_id"),
            user_id=data.get("user_id"),
            resource=data.get("resource"),
        )


@dataclass(frozen=True)
class AuditRecord:
    """Write-once trail entry for one decision."""
    tenant_id: str
    user_id: str
    resource: str
    action: Operation
    requested_scope: DataScope
    allowed: bool
    reason_code: ReasonCode
    reason: str
    latency_ms: float
    recorded_at: datetime
    policy_id: Optional[str] = None
    cache_hit: bool = False
    correlation_id: Optional[str] = None


@dataclass(frozen=True)
class AuditStats:
    total_decisions: int
    allow_decisions: int
    deny_decisions: int
    deny_rate: float
    average_latency_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_decisions": self.total_decisions,
            "allow_decisions": self.allow_decisions,
            "deny_decisions": self.deny_decisions,
            "deny_rate": self.deny_rate,
            "average_latency_ms": self.average_latency_ms,
        }
