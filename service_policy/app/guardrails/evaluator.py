"""
Guardrail evaluator: absolute, non-overridable access constraints.

A guardrail is a pure function ``(tenant_id, principal, resource, action)``
returning a ``GuardrailViolation`` or ``None``. Platform guardrails run
before company-type guardrails; the first violation is final.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, Tuple

from shared.logging import get_logger
from ..policy.models import CompanyType, Operation, Principal
from ..policy.patterns import matches


@dataclass(frozen=True)
class GuardrailViolation:
    """Denial produced by a guardrail."""
    guardrail: str
    reason: str


Guardrail = Callable[[str, Principal, str, Operation], Optional[GuardrailViolation]]

PLATFORM_ADMIN_ROLES = ("SUPER_ADMIN", "SYSTEM_ADMIN")
PLATFORM_ENDPOINTS = ("/api/v1/platform/**",)
FINANCE_ENDPOINTS = ("/api/v1/finance/**",)
PURCHASE_ORDER_ENDPOINTS = (
    "/api/v1/purchase-orders/**",
    "/api/v1/po/**",
    "/api/v1/supplier/orders/**",
)
PRODUCTION_ORDER_ENDPOINTS = (
    "/api/v1/production-orders/**",
    "/api/v1/production/**",
    "/api/v1/subcontractor/orders/**",
)


def _matches_any(patterns: Sequence[str], resource: str) -> bool:
    return any(matches(pattern, resource) for pattern in patterns)


# Platform guardrails

def require_company_type(tenant_id: str, principal: Principal, resource: str,
                         action: Operation) -> Optional[GuardrailViolation]:
    if principal.company_type is None:
        return GuardrailViolation("require_company_type", "Principal has no company type")
    return None


def platform_endpoints_require_platform_admin(tenant_id: str, principal: Principal, resource: str,
                                              action: Operation) -> Optional[GuardrailViolation]:
    if _matches_any(PLATFORM_ENDPOINTS, resource) and not principal.has_any_role(*PLATFORM_ADMIN_ROLES):
        return GuardrailViolation(
            "platform_admin_only", "Platform endpoints are restricted to platform administrators"
        )
    return None


# Company-type guardrails

def customer_read_only(tenant_id: str, principal: Principal, resource: str,
                       action: Operation) -> Optional[GuardrailViolation]:
    if principal.company_type is CompanyType.CUSTOMER and not action.is_read_only:
        return GuardrailViolation("customer_read_only", "Customer users have read-only access")
    return None


def external_partners_blocked_from_finance(tenant_id: str, principal: Principal, resource: str,
                                           action: Operation) -> Optional[GuardrailViolation]:
    external = (CompanyType.SUPPLIER, CompanyType.SUBCONTRACTOR)
    if principal.company_type in external and _matches_any(FINANCE_ENDPOINTS, resource):
        return GuardrailViolation(
            "partner_finance_block",
            f"{principal.company_type.value.title()} users cannot access finance endpoints",
        )
    return None


def supplier_writes_limited_to_purchase_orders(tenant_id: str, principal: Principal, resource: str,
                                               action: Operation) -> Optional[GuardrailViolation]:
    if principal.company_type is not CompanyType.SUPPLIER or action.is_read_only:
        return None
    if _matches_any(PURCHASE_ORDER_ENDPOINTS, resource):
        return None
    return GuardrailViolation(
        "supplier_write_scope", "Supplier users can only modify purchase orders"
    )


def subcontractor_writes_limited_to_production_orders(tenant_id: str, principal: Principal, resource: str,
                                                      action: Operation) -> Optional[GuardrailViolation]:
    if principal.company_type is not CompanyType.SUBCONTRACTOR or action.is_read_only:
        return None
    if _matches_any(PRODUCTION_ORDER_ENDPOINTS, resource):
        return None
    return GuardrailViolation(
        "subcontractor_write_scope", "Subcontractor users can only modify production orders"
    )


PLATFORM_GUARDRAILS: Tuple[Guardrail, ...] = (
    require_company_type,
    platform_endpoints_require_platform_admin,
)

COMPANY_TYPE_GUARDRAILS: Tuple[Guardrail, ...] = (
    customer_read_only,
    external_partners_blocked_from_finance,
    supplier_writes_limited_to_purchase_orders,
    subcontractor_writes_limited_to_production_orders,
)


class GuardrailEvaluator:
    """Runs the guardrail chain. The chain is fixed at construction."""

    def __init__(self,
                 platform_guardrails: Iterable[Guardrail] = PLATFORM_GUARDRAILS,
                 company_type_guardrails: Iterable[Guardrail] = COMPANY_TYPE_GUARDRAILS):
        self.logger = get_logger("policy.guardrails")
        self._chain: Tuple[Guardrail, ...] = tuple(platform_guardrails) + tuple(company_type_guardrails)

    @property
    def chain(self) -> Tuple[Guardrail, ...]:
        return self._chain

    def evaluate(self, tenant_id: str, principal: Principal, resource: str,
                 action: Operation) -> Optional[GuardrailViolation]:
        """First violation in chain order, or None."""
        for guardrail in self._chain:
            violation = guardrail(tenant_id, principal, resource, action)
            if violation is not None:
                self.logger.debug(
                    "Guardrail triggered",
                    guardrail=violation.guardrail,
                    tenant_id=tenant_id,
                    user_id=principal.user_id,
                    resource=resource,
                    action=action.value,
                )
                return violation
        return None
