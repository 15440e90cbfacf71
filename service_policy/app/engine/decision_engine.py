"""
Policy decision engine.

Evaluation order, first definitive verdict wins:

1. decision cache
2. guardrails (platform, then company type)
3. active user grant
4. tenant rules, highest priority first
5. role defaults (deny when the role has no baseline access)
6. scope check on the winning ALLOW

Store reads are bounded by ``store_timeout_ms`` and the whole uncached
evaluation by ``evaluation_timeout_ms``. Any failure resolves to DENY with
``policy_evaluation_error``; nothing ever fails open.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Union

from shared.logging import get_logger
from shared.errors import EvaluationTimeoutError, PolicyEngineException, StoreUnavailableError
from shared.metrics import MetricsCollector
from ..audit.recorder import AuditRecorder
from ..cache.local_cache import DecisionCache
from ..cache.redis_cache import RedisDecisionCache
from ..guardrails.evaluator import GuardrailEvaluator
from ..policy.conditions import conditions_match
from ..policy.models import (
    AuditRecord, CacheKey, DataScope, Effect, Operation, PermissionType, PolicyDecision,
    PolicyRule, Principal, ReasonCode, utcnow
)
from ..registry.roles import RoleDefaultResolver
from ..stores.grant_store import GrantStore
from ..stores.rule_store import RuleStore
from .validation import validate_request


@dataclass(frozen=True)
class _Verdict:
    allowed: bool
    reason_code: ReasonCode
    reason: str
    policy_id: Optional[str] = None
    valid_until: Optional[datetime] = None


class PolicyDecisionEngine:
    """Fail-closed authorization decisions."""

    def __init__(self,
                 rule_store: RuleStore,
                 grant_store: GrantStore,
                 guardrails: GuardrailEvaluator,
                 role_defaults: RoleDefaultResolver,
                 cache: Union[DecisionCache, RedisDecisionCache],
                 recorder: AuditRecorder,
                 store_timeout_ms: float = 50,
                 evaluation_timeout_ms: float = 250,
                 cache_ttl_seconds: Optional[int] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.logger = get_logger("policy.engine")
        self.rule_store = rule_store
        self.grant_store = grant_store
        self.guardrails = guardrails
        self.role_defaults = role_defaults
        self.cache = cache
        self.recorder = recorder
        self.store_timeout_ms = store_timeout_ms
        self.evaluation_timeout_ms = evaluation_timeout_ms
        self.cache_ttl_seconds = cache_ttl_seconds
        self.metrics = metrics
        self._clock = clock

    async def evaluate(self,
                       tenant_id: str,
                       principal: Principal,
                       resource: str,
                       action: Any,
                       requested_scope: Any = DataScope.OWN,
                       *,
                       correlation_id: Optional[str] = None,
                       context: Optional[Mapping[str, Any]] = None) -> PolicyDecision:
        """Decide whether ``principal`` may perform ``action`` on ``resource``.

        Raises ``ValidationError`` for malformed input before any evaluation
        happens. Every other failure yields a DENY decision.

        Evaluations carrying a request ``context`` bypass the cache, since
        rule conditions may depend on it and the cache key does not.
        """
        resource, action, requested_scope = validate_request(
            tenant_id, principal, resource, action, requested_scope
        )
        correlation_id = correlation_id or str(uuid.uuid4())
        started = time.perf_counter()
        key = CacheKey(tenant_id, principal.user_id, resource, action, requested_scope)
        cacheable = not context

        generation = None
        if cacheable:
            cached = await self.cache.get(key)
            if cached is not None:
                decision = replace(cached, cache_hit=True, correlation_id=correlation_id)
                self._finish(tenant_id, principal, resource, action, requested_scope,
                             decision, started, correlation_id)
                return decision
            generation = await self.cache.generation()

        now = self._clock()
        faulted = False
        try:
            verdict = await asyncio.wait_for(
                self._evaluate_uncached(tenant_id, principal, resource, action, requested_scope, context, now),
                timeout=self.evaluation_timeout_ms / 1000,
            )
        except asyncio.CancelledError:
            decision = self._decision(
                _Verdict(False, ReasonCode.POLICY_EVALUATION_ERROR, "Evaluation cancelled"),
                now, started, correlation_id,
            )
            self._finish(tenant_id, principal, resource, action, requested_scope,
                         decision, started, correlation_id)
            raise
        except asyncio.TimeoutError:
            faulted = True
            error = EvaluationTimeoutError(self.evaluation_timeout_ms)
            self.logger.error(
                "Policy evaluation timed out",
                tenant_id=tenant_id,
                user_id=principal.user_id,
                resource=resource,
                action=action.value,
                timeout_ms=self.evaluation_timeout_ms,
                correlation_id=correlation_id,
            )
            verdict = _Verdict(False, ReasonCode.POLICY_EVALUATION_ERROR, error.message)
        except StoreUnavailableError as e:
            faulted = True
            if self.metrics:
                self.metrics.increment_counter("policy_store_failures_total", store=e.store)
            self.logger.critical(
                "Policy store unavailable, denying",
                store=e.store,
                tenant_id=tenant_id,
                user_id=principal.user_id,
                resource=resource,
                action=action.value,
                error=e.message,
                correlation_id=correlation_id,
            )
            verdict = _Verdict(False, ReasonCode.POLICY_EVALUATION_ERROR, e.message)
        except Exception as e:
            faulted = True
            if self.metrics:
                self.metrics.record_error(type(e).__name__)
            self.logger.error(
                "Policy evaluation failed, denying",
                tenant_id=tenant_id,
                user_id=principal.user_id,
                resource=resource,
                action=action.value,
                error=str(e),
                error_type=type(e).__name__,
                correlation_id=correlation_id,
                exc_info=True,
            )
            verdict = _Verdict(False, ReasonCode.POLICY_EVALUATION_ERROR, "Policy evaluation error")

        decision = self._decision(verdict, now, started, correlation_id)
        if cacheable and not faulted:
            ttl = self._cache_ttl(verdict, now)
            if ttl > 0:
                await self.cache.put(key, decision, ttl, generation=generation)
        self._finish(tenant_id, principal, resource, action, requested_scope,
                     decision, started, correlation_id)
        return decision

    async def _evaluate_uncached(self,
                                 tenant_id: str,
                                 principal: Principal,
                                 resource: str,
                                 action: Operation,
                                 requested_scope: DataScope,
                                 context: Optional[Mapping[str, Any]],
                                 now: datetime) -> _Verdict:
        violation = self.guardrails.evaluate(tenant_id, principal, resource, action)
        if violation is not None:
            return _Verdict(False, ReasonCode.GUARDRAIL, violation.reason, violation.guardrail)

        grant = await self._bounded("grant_store", self.grant_store.find_active_grant(
            tenant_id, principal.user_id, resource, action, requested_scope, now
        ))
        if grant is not None:
            allowed = grant.permission_type is PermissionType.ALLOW
            reason = (
                f"User grant {grant.permission_type.value} {grant.operation.value} "
                f"on {grant.endpoint} ({grant.data_scope.value})"
            )
            return _Verdict(allowed, ReasonCode.USER_GRANT, reason, grant.grant_id, grant.expires_at)

        rules = await self._bounded("rule_store", self.rule_store.find_matching_rules(
            tenant_id, resource, action
        ))
        rule = self._select_rule(
            [r for r in rules if conditions_match(r.conditions, principal, context)],
            tenant_id, resource, action,
        )
        if rule is not None:
            if rule.effect is Effect.DENY:
                return _Verdict(False, ReasonCode.PLATFORM_POLICY,
                                f"Denied by policy rule {rule.name or rule.rule_id}", rule.rule_id)
            if not rule.max_scope.covers(requested_scope):
                return _Verdict(False, ReasonCode.SCOPE_VIOLATION,
                                f"Rule allows up to {rule.max_scope.value}, requested {requested_scope.value}",
                                rule.rule_id)
            return _Verdict(True, ReasonCode.PLATFORM_POLICY,
                            f"Allowed by policy rule {rule.name or rule.rule_id}", rule.rule_id)

        access = self.role_defaults.resolve(principal, resource, action)
        if access is None:
            return _Verdict(False, ReasonCode.ROLE_NO_DEFAULT_ACCESS,
                            f"No role grants {action.value} on {resource}")
        if not access.scope.covers(requested_scope):
            return _Verdict(False, ReasonCode.SCOPE_VIOLATION,
                            f"Role {access.role} allows up to {access.scope.value}, "
                            f"requested {requested_scope.value}")
        return _Verdict(True, ReasonCode.ROLE_DEFAULT,
                        f"Role {access.role} has default {access.access_class.value} access")

    def _select_rule(self,
                     rules: List[PolicyRule],
                     tenant_id: str,
                     resource: str,
                     action: Operation) -> Optional[PolicyRule]:
        """Highest priority rule; on an effect conflict at that priority DENY wins.

        ``rules`` arrive sorted by priority descending then insertion
        sequence, so the first rule of the chosen effect is the oldest.
        """
        if not rules:
            return None

        top = rules[0].priority
        contenders = [r for r in rules if r.priority == top]
        if len({r.effect for r in contenders}) == 1:
            return contenders[0]

        winner = next(r for r in contenders if r.effect is Effect.DENY)
        self.logger.warning(
            "Conflicting rules at equal priority, DENY wins",
            tenant_id=tenant_id,
            resource=resource,
            action=action.value,
            priority=top,
            rule_ids=[r.rule_id for r in contenders],
            winner=winner.rule_id,
        )
        return winner

    def _cache_ttl(self, verdict: _Verdict, now: datetime) -> int:
        """Configured TTL, cut short so a grant decision never outlives the grant."""
        ttl = self.cache_ttl_seconds if self.cache_ttl_seconds is not None else self.cache.ttl_seconds
        if verdict.valid_until is not None:
            ttl = min(ttl, int((verdict.valid_until - now).total_seconds()))
        return ttl

    async def _bounded(self, store: str, call: Awaitable[Any]) -> Any:
        timeout_ms = self.store_timeout_ms
        try:
            return await asyncio.wait_for(call, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(store, f"read timed out after {timeout_ms}ms") from e
        except PolicyEngineException:
            raise
        except Exception as e:
            raise StoreUnavailableError(store, str(e)) from e

    def _decision(self, verdict: _Verdict, now: datetime, started: float,
                  correlation_id: str) -> PolicyDecision:
        return PolicyDecision(
            allowed=verdict.allowed,
            reason_code=verdict.reason_code,
            reason=verdict.reason,
            policy_id=verdict.policy_id,
            evaluated_at=now,
            evaluation_time_ms=round((time.perf_counter() - started) * 1000, 3),
            correlation_id=correlation_id,
        )

    def _finish(self,
                tenant_id: str,
                principal: Principal,
                resource: str,
                action: Operation,
                requested_scope: DataScope,
                decision: PolicyDecision,
                started: float,
                correlation_id: str):
        latency_ms = (time.perf_counter() - started) * 1000
        self.recorder.record(AuditRecord(
            tenant_id=tenant_id,
            user_id=principal.user_id,
            resource=resource,
            action=action,
            requested_scope=requested_scope,
            allowed=decision.allowed,
            reason_code=decision.reason_code,
            reason=decision.reason,
            latency_ms=latency_ms,
            recorded_at=self._clock(),
            policy_id=decision.policy_id,
            cache_hit=decision.cache_hit,
            correlation_id=correlation_id,
        ))

        if self.metrics:
            self.metrics.record_decision(
                decision.allowed, decision.reason_code.value, latency_ms / 1000, decision.cache_hit
            )

        log = self.logger.info if decision.allowed else self.logger.warning
        log(
            "Policy decision",
            tenant_id=tenant_id,
            user_id=principal.user_id,
            resource=resource,
            action=action.value,
            scope=requested_scope.value,
            allowed=decision.allowed,
            reason_code=decision.reason_code.value,
            policy_id=decision.policy_id,
            cache_hit=decision.cache_hit,
            latency_ms=round(latency_ms, 3),
            correlation_id=correlation_id,
        )
