"""
Request validation performed before any evaluation step.
"""

from typing import Any, Tuple

from shared.errors import ValidationError
from ..policy.models import DataScope, Operation, Principal
from ..policy.patterns import normalize_resource

MAX_RESOURCE_LENGTH = 2048
DOT_SEGMENTS = frozenset({".", ".."})


def validate_resource(resource: Any) -> str:
    """Concrete, canonical resource path.

    Absolute, no wildcards, no whitespace, no ``.``/``..`` segments and no
    percent escapes, so the string guardrails see is the path that is served.
    """
    if not isinstance(resource, str) or not resource:
        raise ValidationError("Resource is required", {"field": "resource"})
    if len(resource) > MAX_RESOURCE_LENGTH:
        raise ValidationError("Resource is too long", {"field": "resource"})
    if not resource.startswith("/"):
        raise ValidationError("Resource must be an absolute path", {"field": "resource", "value": resource})
    if any(ch.isspace() for ch in resource) or "*" in resource or "{" in resource:
        raise ValidationError(
            "Resource must be a concrete path", {"field": "resource", "value": resource}
        )
    if "//" in resource:
        raise ValidationError("Resource has an empty path segment", {"field": "resource", "value": resource})
    if "\\" in resource or "%" in resource:
        raise ValidationError(
            "Resource must not contain escapes or backslashes", {"field": "resource", "value": resource}
        )
    if any(segment in DOT_SEGMENTS for segment in resource.split("/")):
        raise ValidationError(
            "Resource must not contain dot segments", {"field": "resource", "value": resource}
        )
    return normalize_resource(resource)


def validate_request(tenant_id: Any,
                     principal: Principal,
                     resource: Any,
                     action: Any,
                     requested_scope: Any) -> Tuple[str, Operation, DataScope]:
    """Normalized (resource, action, scope), or ValidationError."""
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise ValidationError("Tenant ID is required", {"field": "tenant_id"})
    if principal is None or not principal.user_id:
        raise ValidationError("User ID is required", {"field": "user_id"})
    return validate_resource(resource), Operation.parse(action), DataScope.parse(requested_scope)
