"""
Request and response models for the policy service API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from shared.errors import ValidationError
from .policy.models import (
    AuditRecord, CompanyType, PermissionGrant, PolicyDecision, PolicyRule, Principal, utcnow
)


class EvaluateRequest(BaseModel):
    """Request model for a policy evaluation."""
    tenant_id: str = Field(..., description="Tenant ID")
    user_id: str = Field(..., description="User ID")
    roles: List[str] = Field(default_factory=list, description="Principal roles")
    company_type: Optional[str] = Field(None, description="INTERNAL, CUSTOMER, SUPPLIER or SUBCONTRACTOR")
    company_id: Optional[str] = Field(None, description="Principal company")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Principal attributes")
    resource: str = Field(..., description="Concrete resource path")
    action: str = Field(..., description="Operation")
    requested_scope: str = Field("OWN", description="Requested data scope")
    context: Dict[str, Any] = Field(default_factory=dict, description="Request context for rule conditions")
    correlation_id: Optional[str] = Field(None, description="Correlation ID")

    def to_principal(self) -> Principal:
        company_type = None
        if self.company_type:
            try:
                company_type = CompanyType(self.company_type.strip().upper())
            except ValueError:
                raise ValidationError(
                    f"Unknown company type: {self.company_type!r}", {"field": "company_type"}
                ) from None
        return Principal(
            user_id=self.user_id,
            roles=tuple(self.roles),
            company_type=company_type,
            company_id=self.company_id,
            attributes=dict(self.attributes),
        )


class DecisionResponse(BaseModel):
    """Response model for a policy evaluation."""
    allowed: bool
    reason_code: str
    reason: str
    policy_id: Optional[str] = None
    evaluated_at: datetime
    evaluation_time_ms: float
    cache_hit: bool = False
    correlation_id: Optional[str] = None

    @classmethod
    def from_decision(cls, decision: PolicyDecision) -> "DecisionResponse":
        return cls(**decision.to_dict())


class InvalidateRequest(BaseModel):
    """Request model for cache invalidation."""
    kind: str = Field(..., description="key, tenant, user, resource or all")
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    scope: Optional[str] = None


class LifecycleEvent(BaseModel):
    """Lifecycle event published by another service."""
    event_type: str
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class RuleCreateRequest(BaseModel):
    """Request model for rule creation."""
    name: str = ""
    description: Optional[str] = None
    resource: str
    action: str
    effect: str
    priority: int = 0
    conditions: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    tenant_id: Optional[str] = None
    max_scope: str = "TENANT"


class RuleUpdateRequest(BaseModel):
    """Request model for rule updates. Omitted fields are left unchanged."""
    name: Optional[str] = None
    description: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    effect: Optional[str] = None
    priority: Optional[int] = None
    conditions: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None
    max_scope: Optional[str] = None


class RuleResponse(BaseModel):
    """Response model for a rule."""
    rule_id: str
    name: str
    description: Optional[str] = None
    resource: str
    action: str
    effect: str
    priority: int
    conditions: Dict[str, Any]
    enabled: bool
    tenant_id: Optional[str] = None
    max_scope: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_rule(cls, rule: PolicyRule) -> "RuleResponse":
        return cls(
            rule_id=rule.rule_id,
            name=rule.name,
            description=rule.description,
            resource=rule.resource,
            action=rule.action.value,
            effect=rule.effect.value,
            priority=rule.priority,
            conditions=dict(rule.conditions),
            enabled=rule.enabled,
            tenant_id=rule.tenant_id,
            max_scope=rule.max_scope.value,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class GrantCreateRequest(BaseModel):
    """Request model for grant creation."""
    tenant_id: str
    user_id: str
    endpoint: str
    operation: str
    permission_type: str
    data_scope: str
    expires_at: Optional[datetime] = None
    reason: str = ""
    granted_by: Optional[str] = None


class GrantResponse(BaseModel):
    """Response model for a grant."""
    grant_id: str
    tenant_id: str
    user_id: str
    endpoint: str
    operation: str
    permission_type: str
    data_scope: str
    expires_at: Optional[datetime] = None
    reason: str
    granted_by: Optional[str] = None
    status: str
    created_at: datetime
    revoked_at: Optional[datetime] = None

    @classmethod
    def from_grant(cls, grant: PermissionGrant, now: Optional[datetime] = None) -> "GrantResponse":
        return cls(
            grant_id=grant.grant_id,
            tenant_id=grant.tenant_id,
            user_id=grant.user_id,
            endpoint=grant.endpoint,
            operation=grant.operation.value,
            permission_type=grant.permission_type.value,
            data_scope=grant.data_scope.value,
            expires_at=grant.expires_at,
            reason=grant.reason,
            granted_by=grant.granted_by,
            status=grant.status(now or utcnow()).value,
            created_at=grant.created_at,
            revoked_at=grant.revoked_at,
        )


class AuditRecordResponse(BaseModel):
    """Response model for an audit trail entry."""
    tenant_id: str
    user_id: str
    resource: str
    action: str
    requested_scope: str
    allowed: bool
    reason_code: str
    reason: str
    policy_id: Optional[str] = None
    latency_ms: float
    cache_hit: bool
    correlation_id: Optional[str] = None
    recorded_at: datetime

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditRecordResponse":
        return cls(
            tenant_id=record.tenant_id,
            user_id=record.user_id,
            resource=record.resource,
            action=record.action.value,
            requested_scope=record.requested_scope.value,
            allowed=record.allowed,
            reason_code=record.reason_code.value,
            reason=record.reason,
            policy_id=record.policy_id,
            latency_ms=record.latency_ms,
            cache_hit=record.cache_hit,
            correlation_id=record.correlation_id,
            recorded_at=record.recorded_at,
        )
