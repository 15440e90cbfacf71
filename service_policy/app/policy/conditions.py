"""
Rule condition evaluation.

A rule's ``conditions`` is a key -> expected-value map. Keys name a field of
the principal (``roles``, ``company_type``, ``company_id``, ``user_id``, any
principal attribute such as ``department``) or of the request context
(dotted paths reach into nested mappings). Expected values take three forms:

- scalar: equality; when the actual value is a collection, membership
- list: the actual value (or any element of it) must be in the list
- ``{"operator": <op>, "value": <v>}``: explicit comparison operator

All conditions must hold for the rule to match.
"""

from enum import Enum
from typing import Any, Mapping, Optional

from shared.errors import ValidationError
from .models import Principal


class ConditionOperator(str, Enum):
    """Rule condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


_MISSING = object()


def validate_conditions(conditions: Mapping[str, Any]) -> None:
    """Reject malformed conditions before they reach the rule store."""
    for field_name, expected in conditions.items():
        if not isinstance(field_name, str) or not field_name:
            raise ValidationError("Condition keys must be non-empty strings", {"field": field_name})
        if isinstance(expected, Mapping):
            if "operator" not in expected or "value" not in expected:
                raise ValidationError(
                    "Operator conditions need 'operator' and 'value'", {"field": field_name}
                )
            try:
                ConditionOperator(expected["operator"])
            except ValueError:
                raise ValidationError(
                    f"Unknown condition operator: {expected['operator']!r}", {"field": field_name}
                ) from None


def resolve_field(field_name: str, principal: Principal, context: Mapping[str, Any]) -> Any:
    """Get field value from the request context, then the principal."""
    if field_name in context:
        return context[field_name]

    if field_name == "roles":
        return list(principal.roles)
    if field_name == "company_type":
        return principal.company_type.value if principal.company_type else None
    if field_name == "company_id":
        return principal.company_id
    if field_name == "user_id":
        return principal.user_id
    if field_name in principal.attributes:
        return principal.attributes[field_name]

    if "." in field_name:
        value: Any = context
        for part in field_name.split("."):
            if isinstance(value, Mapping) and part in value:
                value = value[part]
            else:
                return _MISSING
        return value

    return _MISSING


def conditions_match(
    conditions: Mapping[str, Any],
    principal: Principal,
    context: Optional[Mapping[str, Any]] = None,
) -> bool:
    """True when every condition holds for the principal and request context."""
    context = context or {}
    for field_name, expected in conditions.items():
        actual = resolve_field(field_name, principal, context)
        if actual is _MISSING or actual is None:
            return False
        if not _condition_holds(actual, expected):
            return False
    return True


def _condition_holds(actual: Any, expected: Any) -> bool:
    if isinstance(expected, Mapping):
        return _apply_operator(ConditionOperator(expected["operator"]), actual, expected["value"])

    if isinstance(expected, (list, tuple, set, frozenset)):
        if isinstance(actual, (list, tuple, set, frozenset)):
            return any(item in expected for item in actual)
        return actual in expected

    if isinstance(actual, (list, tuple, set, frozenset)):
        return expected in actual
    return actual == expected


def _apply_operator(operator: ConditionOperator, actual: Any, value: Any) -> bool:
    """Evaluate a single operator condition."""
    if operator == ConditionOperator.EQUALS:
        return actual == value

    elif operator == ConditionOperator.NOT_EQUALS:
        return actual != value

    elif operator == ConditionOperator.IN:
        return actual in value

    elif operator == ConditionOperator.NOT_IN:
        return actual not in value

    elif operator == ConditionOperator.GREATER_THAN:
        return actual > value

    elif operator == ConditionOperator.LESS_THAN:
        return actual < value

    elif operator == ConditionOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set, frozenset)):
            return value in actual
        return str(value) in str(actual)

    elif operator == ConditionOperator.STARTS_WITH:
        return str(actual).startswith(str(value))

    elif operator == ConditionOperator.ENDS_WITH:
        return str(actual).endswith(str(value))

    raise ValueError(f"Unsupported condition operator: {operator}")
