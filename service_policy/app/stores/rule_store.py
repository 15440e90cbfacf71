"""
Rule store: system of record for tenant policy rules.
"""

import itertools
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from shared.logging import get_logger
from shared.errors import NotFoundError
from ..policy.models import Operation, PolicyRule, utcnow
from ..policy.patterns import matches


class RuleStore:
    """In-memory rule store.

    Reads go through a per-action index of enabled rules, already sorted by
    priority (descending) then insertion sequence; any write drops the
    index and the next read rebuilds it.
    """

    def __init__(self):
        self.logger = get_logger("policy.rule_store")
        self.rules: Dict[str, PolicyRule] = {}
        self._index: Dict[Operation, Tuple[PolicyRule, ...]] = {}
        self._sequence = itertools.count(1)
        self._write_lock = threading.Lock()

    async def save(self, rule: PolicyRule) -> PolicyRule:
        """Insert or replace a rule; new rules receive the next sequence number."""
        with self._write_lock:
            existing = self.rules.get(rule.rule_id)
            if existing is None:
                rule = replace(rule, sequence=next(self._sequence))
            else:
                rule = replace(
                    rule,
                    sequence=existing.sequence,
                    created_at=existing.created_at,
                    updated_at=utcnow(),
                )
            self.rules[rule.rule_id] = rule
            self._index = {}

        self.logger.info(
            "Rule saved",
            rule_id=rule.rule_id,
            resource=rule.resource,
            action=rule.action.value,
            priority=rule.priority,
            effect=rule.effect.value,
            enabled=rule.enabled,
            created=existing is None,
        )
        return rule

    async def get(self, rule_id: str) -> Optional[PolicyRule]:
        """Get a rule by ID."""
        return self.rules.get(rule_id)

    async def require(self, rule_id: str) -> PolicyRule:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise NotFoundError("Rule", rule_id)
        return rule

    async def list_rules(self, tenant_id: Optional[str] = None) -> List[PolicyRule]:
        """List rules, optionally restricted to those that apply to a tenant."""
        rules = [
            rule for rule in self.rules.values()
            if tenant_id is None or rule.tenant_id in (None, tenant_id)
        ]
        rules.sort(key=lambda r: r.sequence)
        return rules

    async def find_matching_rules(self, tenant_id: str, resource: str, action: Operation) -> List[PolicyRule]:
        """Enabled rules for the tenant matching resource+action, highest priority first."""
        return [
            rule for rule in self._rules_for_action(action)
            if rule.tenant_id in (None, tenant_id) and matches(rule.resource, resource)
        ]

    def _rules_for_action(self, action: Operation) -> Tuple[PolicyRule, ...]:
        index = self._index
        cached = index.get(action)
        if cached is not None:
            return cached

        rules = sorted(
            (rule for rule in self.rules.values() if rule.action == action and rule.enabled),
            key=lambda r: (-r.priority, r.sequence),
        )
        cached = tuple(rules)
        index[action] = cached
        return cached

    def get_store_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        return {
            "total_rules": len(self.rules),
            "enabled_rules": len([r for r in self.rules.values() if r.enabled]),
            "indexed_actions": len(self._index),
        }
