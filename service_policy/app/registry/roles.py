"""
Role default resolver: baseline access per role when no grant or rule matched.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from shared.logging import get_logger
from ..policy.models import DataScope, Operation, Principal
from .endpoints import AccessClass, EndpointRegistry


@dataclass(frozen=True)
class RoleBaseline:
    """Operations a role may perform per access class, and its scope ceiling."""
    role: str
    max_scope: DataScope
    access: Mapping[AccessClass, FrozenSet[Operation]] = field(default_factory=dict)

    def permits(self, access_class: AccessClass, action: Operation) -> bool:
        return action in self.access.get(access_class, frozenset())


@dataclass(frozen=True)
class RoleAccess:
    """Baseline access found for a principal."""
    role: str
    access_class: AccessClass
    scope: DataScope


class RoleDefaultResolver:
    """Deny-by-default baseline matrix.

    Among the principal's roles that permit the action, the one with the
    broadest scope ceiling is chosen; ties go to the alphabetically first
    role name so the result is stable.
    """

    def __init__(self, registry: EndpointRegistry, baselines: Mapping[str, RoleBaseline]):
        self.logger = get_logger("policy.role_defaults")
        self.registry = registry
        self._baselines = dict(baselines)

    @property
    def roles(self):
        return tuple(sorted(self._baselines))

    def resolve(self, principal: Principal, resource: str, action: Operation) -> Optional[RoleAccess]:
        access_class = self.registry.classify(resource)
        best: Optional[RoleAccess] = None
        for role in sorted(set(principal.roles)):
            baseline = self._baselines.get(role)
            if baseline is None or not baseline.permits(access_class, action):
                continue
            if best is None or baseline.max_scope.level > best.scope.level:
                best = RoleAccess(role=role, access_class=access_class, scope=baseline.max_scope)

        if best is None:
            self.logger.debug(
                "No role default access",
                user_id=principal.user_id,
                roles=list(principal.roles),
                resource=resource,
                action=action.value,
                access_class=access_class.value,
            )
        return best
