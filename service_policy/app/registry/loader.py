"""
Loads the endpoint registry and role baseline matrix at startup.

The document shape (YAML or an equivalent mapping)::

    default_access_class: standard
    endpoints:
      - pattern: /api/v1/finance/**
        access_class: sensitive
    roles:
      MANAGER:
        max_scope: TENANT
        access:
          standard: "*"
          sensitive: [READ, EXPORT]
"""

from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

import yaml

from shared.errors import ValidationError
from shared.logging import get_logger
from ..policy.models import DataScope, Operation
from .endpoints import AccessClass, EndpointEntry, EndpointRegistry
from .roles import RoleBaseline, RoleDefaultResolver

logger = get_logger("policy.registry")

ALL_OPERATIONS = "*"

DEFAULT_REGISTRY: Dict[str, Any] = {
    "default_access_class": "standard",
    "endpoints": [
        {"pattern": "/api/v1/platform/**", "access_class": "platform",
         "description": "Platform operations (tenants, subscriptions)"},
        {"pattern": "/api/v1/admin/**", "access_class": "administrative"},
        {"pattern": "/api/v1/settings/**", "access_class": "administrative"},
        {"pattern": "/api/v1/permissions/**", "access_class": "administrative"},
        {"pattern": "/api/v1/users/*/permissions/**", "access_class": "administrative"},
        {"pattern": "/api/v1/finance/**", "access_class": "sensitive"},
        {"pattern": "/api/v1/invoices/**", "access_class": "sensitive"},
        {"pattern": "/api/v1/audit/**", "access_class": "sensitive"},
    ],
    "roles": {
        "SUPER_ADMIN": {
            "max_scope": "GLOBAL",
            "access": {"standard": "*", "sensitive": "*", "administrative": "*", "platform": "*"},
        },
        "ADMIN": {
            "max_scope": "TENANT",
            "access": {"standard": "*", "sensitive": "*", "administrative": "*"},
        },
        "MANAGER": {
            "max_scope": "TENANT",
            "access": {"standard": "*", "sensitive": ["READ", "EXPORT"]},
        },
        "TEAM_LEAD": {
            "max_scope": "TEAM",
            "access": {"standard": ["READ", "EXPORT", "CREATE", "UPDATE", "WRITE", "APPROVE"]},
        },
        "USER": {
            "max_scope": "OWN",
            "access": {"standard": ["READ", "EXPORT"]},
        },
    },
}


def build_registry(document: Mapping[str, Any]) -> Tuple[EndpointRegistry, Dict[str, RoleBaseline]]:
    """Build the registry and role baselines from a parsed document."""
    if not isinstance(document, Mapping):
        raise ValidationError("Registry document must be a mapping")

    default_class = AccessClass.parse(document.get("default_access_class", "standard"))

    entries = []
    for raw in document.get("endpoints") or []:
        pattern = raw.get("pattern") if isinstance(raw, Mapping) else None
        if not isinstance(pattern, str) or not pattern.startswith("/"):
            raise ValidationError(f"Invalid endpoint entry: {raw!r}")
        entries.append(EndpointEntry(
            pattern=pattern,
            access_class=AccessClass.parse(raw.get("access_class")),
            description=raw.get("description"),
        ))

    baselines: Dict[str, RoleBaseline] = {}
    for role, raw in (document.get("roles") or {}).items():
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Invalid role entry for {role!r}")
        access: Dict[AccessClass, FrozenSet[Operation]] = {}
        for access_class, operations in (raw.get("access") or {}).items():
            access[AccessClass.parse(access_class)] = _parse_operations(role, operations)
        baselines[role] = RoleBaseline(
            role=role,
            max_scope=DataScope.parse(raw.get("max_scope", "OWN")),
            access=access,
        )

    return EndpointRegistry(entries, default_class=default_class), baselines


def _parse_operations(role: str, operations: Any) -> FrozenSet[Operation]:
    if operations == ALL_OPERATIONS:
        return frozenset(Operation)
    if not isinstance(operations, (list, tuple)):
        raise ValidationError(f"Operations for role {role!r} must be a list or '*'")
    return frozenset(Operation.parse(op) for op in operations)


def load_registry_document(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a registry YAML file."""
    path = Path(path)
    try:
        with open(path, "r") as f:
            document = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid registry YAML: {e}", {"path": str(path)}) from e
    except OSError as e:
        raise ValidationError(f"Cannot read registry file: {e}", {"path": str(path)}) from e
    return document or {}


def load_role_defaults(path: Optional[Union[str, Path]] = None) -> RoleDefaultResolver:
    """Role default resolver from a YAML file, or the built-in matrix."""
    document = load_registry_document(path) if path else DEFAULT_REGISTRY
    registry, baselines = build_registry(document)
    logger.info(
        "Policy registry loaded",
        source=str(path) if path else "built-in",
        endpoints=len(registry.entries),
        roles=sorted(baselines),
    )
    return RoleDefaultResolver(registry, baselines)
