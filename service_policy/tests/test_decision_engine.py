"""
Unit tests for the policy decision engine.
"""

import asyncio
import pytest
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from shared.errors import ValidationError
from shared.metrics import MetricsCollector
from shared.test_helpers import (
    EPOCH, TENANT_ID, build_policy_stack, create_grant, create_principal, create_rule
)
from service_policy.app.policy.models import (
    CompanyType, DataScope, Effect, InvalidationScope, Operation, ReasonCode
)


async def slow(*args, **kwargs):
    await asyncio.sleep(5)


def same_outcome(a, b):
    return (a.allowed, a.reason_code, a.reason, a.policy_id) == (b.allowed, b.reason_code, b.reason, b.policy_id)


class TestDecisionPaths:
    """Test cases for the evaluation order."""

    @pytest.fixture
    def stack(self):
        """In-memory engine stack."""
        return build_policy_stack()

    @pytest.mark.asyncio
    async def test_unknown_role_denied_by_default(self, stack):
        """Test a role without a baseline gets nothing."""
        principal = create_principal(roles=("AUDITOR",))

        decision = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ")

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.ROLE_NO_DEFAULT_ACCESS
        assert decision.cache_hit is False

    @pytest.mark.asyncio
    async def test_role_default_allows(self, stack):
        """Test baseline access for a plain user."""
        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is True
        assert decision.reason_code is ReasonCode.ROLE_DEFAULT
        assert decision.policy_id is None

    @pytest.mark.asyncio
    async def test_deny_rule_overrides_manager_default(self, stack):
        """Test a high priority DENY rule beats the role default."""
        rule = await stack.rule_store.save(create_rule(
            resource="/api/v1/companies", action=Operation.DELETE, effect=Effect.DENY, priority=50
        ))
        manager = create_principal(roles=("MANAGER",))

        decision = await stack.engine.evaluate(
            TENANT_ID, manager, "/api/v1/companies", Operation.DELETE, DataScope.TENANT
        )

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.PLATFORM_POLICY
        assert decision.policy_id == rule.rule_id

    @pytest.mark.asyncio
    async def test_grant_allows_without_role_access(self, stack):
        """Test an explicit grant opens a sensitive endpoint."""
        grant = await stack.grant_store.create(create_grant(user_id="U1"))

        decision = await stack.engine.evaluate(
            TENANT_ID, create_principal(user_id="U1"), "/api/v1/invoices", "READ", "TENANT"
        )

        assert decision.allowed is True
        assert decision.reason_code is ReasonCode.USER_GRANT
        assert decision.policy_id == grant.grant_id

    @pytest.mark.asyncio
    async def test_expired_grant_is_ignored(self, stack):
        """Test a grant that expired yesterday no longer applies."""
        await stack.grant_store.create(create_grant(user_id="U1", expires_at=EPOCH - timedelta(days=1)))

        decision = await stack.engine.evaluate(
            TENANT_ID, create_principal(user_id="U1"), "/api/v1/invoices", "READ", "TENANT"
        )

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.ROLE_NO_DEFAULT_ACCESS

    @pytest.mark.asyncio
    async def test_expired_grant_matches_no_grant(self):
        """Test an expired grant yields the same outcome as no grant at all."""
        without = build_policy_stack()
        with_expired = build_policy_stack()
        await with_expired.grant_store.create(create_grant(
            user_id="U1", permission_type=Effect.DENY, endpoint="/api/v1/companies",
            expires_at=EPOCH - timedelta(seconds=1),
        ))
        principal = create_principal(user_id="U1")

        a = await without.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ")
        b = await with_expired.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ")

        assert same_outcome(a, b)
        assert b.allowed is True

    @pytest.mark.asyncio
    async def test_guardrail_beats_grant(self, stack):
        """Test suppliers stay out of finance even with a grant."""
        await stack.grant_store.create(create_grant(user_id="S1", endpoint="/api/v1/finance/**"))
        supplier = create_principal(user_id="S1", company_type=CompanyType.SUPPLIER)

        decision = await stack.engine.evaluate(
            TENANT_ID, supplier, "/api/v1/finance/ledger", "READ", "TENANT"
        )

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.GUARDRAIL
        assert decision.policy_id == "partner_finance_block"

    @pytest.mark.asyncio
    async def test_guardrail_beats_rule(self, stack):
        """Test an ALLOW rule cannot lift a customer's read-only restriction."""
        await stack.rule_store.save(create_rule(
            resource="/api/v1/orders/**", action=Operation.CREATE, effect=Effect.ALLOW, priority=100
        ))
        customer = create_principal(company_type=CompanyType.CUSTOMER)

        decision = await stack.engine.evaluate(TENANT_ID, customer, "/api/v1/orders/42", "CREATE")

        assert decision.reason_code is ReasonCode.GUARDRAIL
        assert decision.policy_id == "customer_read_only"

    @pytest.mark.asyncio
    async def test_missing_company_type_denied(self, stack):
        """Test principals without a company type are rejected."""
        principal = create_principal(company_type=None)

        decision = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ")

        assert decision.allowed is False
        assert decision.policy_id == "require_company_type"

    @pytest.mark.asyncio
    async def test_grant_deny_beats_rule_allow(self, stack):
        """Test a DENY grant wins over an ALLOW rule."""
        await stack.rule_store.save(create_rule(resource="/api/v1/companies", priority=100))
        await stack.grant_store.create(create_grant(
            endpoint="/api/v1/companies", permission_type=Effect.DENY, data_scope=DataScope.OWN
        ))

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.USER_GRANT

    @pytest.mark.asyncio
    async def test_grant_allow_beats_rule_deny(self, stack):
        """Test an ALLOW grant wins over a DENY rule."""
        await stack.rule_store.save(create_rule(
            resource="/api/v1/companies", effect=Effect.DENY, priority=100
        ))
        await stack.grant_store.create(create_grant(endpoint="/api/v1/companies"))

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is True
        assert decision.reason_code is ReasonCode.USER_GRANT

    @pytest.mark.asyncio
    async def test_rule_for_other_tenant_ignored(self, stack):
        """Test tenant rules do not leak across tenants."""
        await stack.rule_store.save(create_rule(effect=Effect.DENY, priority=100, tenant_id="tenant-2"))

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.reason_code is ReasonCode.ROLE_DEFAULT

    @pytest.mark.asyncio
    async def test_rule_conditions(self, stack):
        """Test a rule only applies when its conditions hold."""
        await stack.rule_store.save(create_rule(
            effect=Effect.DENY, priority=10, conditions={"department": "sales"}
        ))

        sales = await stack.engine.evaluate(
            TENANT_ID, create_principal(department="sales"), "/api/v1/companies", "READ"
        )
        ops = await stack.engine.evaluate(
            TENANT_ID, create_principal(user_id="user-2", department="ops"), "/api/v1/companies", "READ"
        )

        assert sales.allowed is False
        assert ops.allowed is True


class TestRulePriority:
    """Test cases for rule ordering."""

    @pytest.fixture
    def stack(self):
        """In-memory engine stack."""
        return build_policy_stack()

    @pytest.mark.asyncio
    async def test_higher_priority_wins(self, stack):
        """Test priority 20 DENY beats priority 10 ALLOW."""
        await stack.rule_store.save(create_rule(effect=Effect.ALLOW, priority=10))
        deny = await stack.rule_store.save(create_rule(effect=Effect.DENY, priority=20))

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is False
        assert decision.policy_id == deny.rule_id

    @pytest.mark.asyncio
    async def test_higher_priority_allow_wins(self, stack):
        """Test priority decides regardless of effect."""
        await stack.rule_store.save(create_rule(effect=Effect.DENY, priority=10))
        await stack.rule_store.save(create_rule(effect=Effect.ALLOW, priority=20, max_scope=DataScope.OWN))

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is True
        assert decision.reason_code is ReasonCode.PLATFORM_POLICY

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order", [(Effect.ALLOW, Effect.DENY), (Effect.DENY, Effect.ALLOW)])
    async def test_equal_priority_conflict_denies(self, stack, order):
        """Test DENY wins a tie in either insertion order and the conflict is logged."""
        rules = [await stack.rule_store.save(create_rule(effect=effect, priority=30)) for effect in order]
        deny = next(r for r in rules if r.effect is Effect.DENY)
        stack.engine.logger = MagicMock()

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is False
        assert decision.policy_id == deny.rule_id
        messages = [call.args[0] for call in stack.engine.logger.warning.call_args_list]
        assert "Conflicting rules at equal priority, DENY wins" in messages

    @pytest.mark.asyncio
    async def test_disabled_rule_ignored(self, stack):
        """Test disabled rules never match."""
        await stack.rule_store.save(create_rule(effect=Effect.DENY, priority=100, enabled=False))

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is True


class TestDataScope:
    """Test cases for scope enforcement."""

    @pytest.fixture
    def stack(self):
        """In-memory engine stack."""
        return build_policy_stack()

    @pytest.mark.asyncio
    async def test_role_scope_ceiling(self, stack):
        """Test a plain user cannot read tenant-wide."""
        decision = await stack.engine.evaluate(
            TENANT_ID, create_principal(), "/api/v1/companies", "READ", DataScope.TENANT
        )

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.SCOPE_VIOLATION

    @pytest.mark.asyncio
    async def test_team_lead_team_scope(self, stack):
        """Test a team lead reaches TEAM but not TENANT."""
        lead = create_principal(roles=("TEAM_LEAD",))

        team = await stack.engine.evaluate(TENANT_ID, lead, "/api/v1/companies", "READ", DataScope.TEAM)
        tenant = await stack.engine.evaluate(TENANT_ID, lead, "/api/v1/companies", "READ", DataScope.TENANT)

        assert team.allowed is True
        assert tenant.reason_code is ReasonCode.SCOPE_VIOLATION

    @pytest.mark.asyncio
    async def test_rule_scope_ceiling(self, stack):
        """Test an ALLOW rule authorizes up to its max scope."""
        rule = await stack.rule_store.save(create_rule(priority=10, max_scope=DataScope.TEAM))
        principal = create_principal(roles=("AUDITOR",))

        team = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ", DataScope.TEAM)
        tenant = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ", DataScope.TENANT)

        assert team.allowed is True
        assert tenant.allowed is False
        assert tenant.reason_code is ReasonCode.SCOPE_VIOLATION
        assert tenant.policy_id == rule.rule_id

    @pytest.mark.asyncio
    async def test_narrow_grant_does_not_cover_wider_request(self, stack):
        """Test an OWN grant falls through for a TENANT request."""
        await stack.grant_store.create(create_grant(data_scope=DataScope.OWN))

        own = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/invoices", "READ", "OWN")
        tenant = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/invoices", "READ", "TENANT")

        assert own.reason_code is ReasonCode.USER_GRANT
        assert tenant.allowed is False
        assert tenant.reason_code is ReasonCode.ROLE_NO_DEFAULT_ACCESS


class TestDecisionCaching:
    """Test cases for cache interaction."""

    @pytest.fixture
    def stack(self):
        """In-memory engine stack."""
        return build_policy_stack()

    @pytest.mark.asyncio
    async def test_second_call_hits_cache(self, stack):
        """Test repeated evaluations are identical apart from the hit flag."""
        principal = create_principal()

        first = await stack.engine.evaluate(
            TENANT_ID, principal, "/api/v1/companies", "READ", correlation_id="corr-1"
        )
        second = await stack.engine.evaluate(
            TENANT_ID, principal, "/api/v1/companies", "READ", correlation_id="corr-2"
        )

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert replace(second, cache_hit=False, correlation_id="corr-1") == first

    @pytest.mark.asyncio
    async def test_cache_hit_carries_callers_correlation_id(self, stack):
        """Test a cached decision and its audit record share the caller's correlation id."""
        principal = create_principal()
        await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ", correlation_id="corr-1")

        hit = await stack.engine.evaluate(
            TENANT_ID, principal, "/api/v1/companies", "READ", correlation_id="corr-2"
        )
        records = await stack.recorder.recent(TENANT_ID, principal.user_id)

        assert hit.correlation_id == "corr-2"
        assert {r.correlation_id for r in records if r.cache_hit} == {"corr-2"}

    @pytest.mark.asyncio
    async def test_cache_hit_is_audited(self, stack):
        """Test cache hits still produce audit records."""
        principal = create_principal()
        await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ")
        await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ")

        records = await stack.recorder.recent(TENANT_ID, principal.user_id)

        assert len(records) == 2
        assert sorted(r.cache_hit for r in records) == [False, True]

    @pytest.mark.asyncio
    async def test_invalidation_forces_recompute(self, stack):
        """Test a new rule is visible after invalidation."""
        principal = create_principal()
        before = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ")
        await stack.rule_store.save(create_rule(effect=Effect.DENY, priority=10))

        stale = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ")
        await stack.cache.invalidate(InvalidationScope.for_tenant(TENANT_ID))
        after = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/companies", "READ")

        assert before.allowed is True
        assert stale.cache_hit is True
        assert after.allowed is False
        assert after.cache_hit is False

    @pytest.mark.asyncio
    async def test_context_bypasses_cache(self, stack):
        """Test context-dependent evaluations are never cached."""
        await stack.rule_store.save(create_rule(
            effect=Effect.DENY, priority=10, conditions={"channel": "api"}
        ))
        principal = create_principal()

        api = await stack.engine.evaluate(
            TENANT_ID, principal, "/api/v1/companies", "READ", context={"channel": "api"}
        )
        web = await stack.engine.evaluate(
            TENANT_ID, principal, "/api/v1/companies", "READ", context={"channel": "web"}
        )

        assert api.allowed is False
        assert web.allowed is True
        assert len(stack.cache) == 0

    @pytest.mark.asyncio
    async def test_grant_decision_cached_until_grant_expiry(self, stack):
        """Test a grant decision does not outlive the grant."""
        await stack.grant_store.create(create_grant(expires_at=EPOCH + timedelta(seconds=60)))
        principal = create_principal()

        granted = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/invoices", "READ", "TENANT")
        stack.clock.advance(seconds=61)
        expired = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/invoices", "READ", "TENANT")

        assert granted.allowed is True
        assert expired.cache_hit is False
        assert expired.allowed is False
        assert expired.reason_code is ReasonCode.ROLE_NO_DEFAULT_ACCESS

    @pytest.mark.asyncio
    async def test_revoke_during_evaluation_is_not_cached(self, stack):
        """Test an ALLOW computed from a grant revoked mid-evaluation is not cached."""
        grant = await stack.admin.create_grant(TENANT_ID, "user-1", "/api/v1/invoices", "READ", "ALLOW", "TENANT")
        read_done = asyncio.Event()
        release = asyncio.Event()
        find_active_grant = stack.grant_store.find_active_grant

        async def paused_find(*args, **kwargs):
            found = await find_active_grant(*args, **kwargs)
            read_done.set()
            await release.wait()
            return found

        stack.grant_store.find_active_grant = paused_find
        principal = create_principal()
        in_flight = asyncio.create_task(
            stack.engine.evaluate(TENANT_ID, principal, "/api/v1/invoices", "READ", "TENANT")
        )
        await read_done.wait()
        await stack.admin.revoke_grant(grant.grant_id)
        release.set()
        racing = await in_flight

        stack.grant_store.find_active_grant = find_active_grant
        after = await stack.engine.evaluate(TENANT_ID, principal, "/api/v1/invoices", "READ", "TENANT")
        await stack.admin.drain()

        assert racing.allowed is True
        assert after.cache_hit is False
        assert after.allowed is False
        assert after.reason_code is ReasonCode.ROLE_NO_DEFAULT_ACCESS
        assert stack.cache.stale_writes == 1

    @pytest.mark.asyncio
    async def test_unrelated_invalidation_does_not_block_caching(self, stack):
        """Test an invalidation for another user leaves the in-flight write alone."""
        read_done = asyncio.Event()
        release = asyncio.Event()
        find_active_grant = stack.grant_store.find_active_grant

        async def paused_find(*args, **kwargs):
            found = await find_active_grant(*args, **kwargs)
            read_done.set()
            await release.wait()
            return found

        stack.grant_store.find_active_grant = paused_find
        in_flight = asyncio.create_task(
            stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")
        )
        await read_done.wait()
        await stack.cache.invalidate(InvalidationScope.for_user("user-2", TENANT_ID))
        release.set()
        await in_flight

        assert len(stack.cache) == 1
        assert stack.cache.stale_writes == 0


class TestFailClosed:
    """Test cases for fault handling."""

    @pytest.mark.asyncio
    async def test_store_exception_denies(self):
        """Test a failing rule store yields DENY and is not cached."""
        metrics = MetricsCollector("policy-test")
        stack = build_policy_stack(metrics=metrics)
        stack.rule_store.find_matching_rules = AsyncMock(side_effect=RuntimeError("disk on fire"))

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.POLICY_EVALUATION_ERROR
        assert len(stack.cache) == 0
        assert metrics.sample("policy_store_failures_total", store="rule_store") == 1.0

    @pytest.mark.asyncio
    async def test_slow_store_denies(self):
        """Test a store read past its budget yields DENY."""
        stack = build_policy_stack(store_timeout_ms=10, evaluation_timeout_ms=1000)
        stack.grant_store.find_active_grant = slow

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.POLICY_EVALUATION_ERROR
        assert len(stack.cache) == 0

    @pytest.mark.asyncio
    async def test_evaluation_timeout_denies(self):
        """Test the overall evaluation budget is enforced."""
        stack = build_policy_stack(store_timeout_ms=1000, evaluation_timeout_ms=10)
        stack.rule_store.find_matching_rules = slow

        decision = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.POLICY_EVALUATION_ERROR

    @pytest.mark.asyncio
    async def test_fault_is_not_sticky(self):
        """Test a fault does not poison later evaluations."""
        stack = build_policy_stack()
        original = stack.rule_store.find_matching_rules
        stack.rule_store.find_matching_rules = AsyncMock(side_effect=RuntimeError("blip"))
        failed = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        stack.rule_store.find_matching_rules = original
        recovered = await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")

        assert failed.allowed is False
        assert recovered.allowed is True
        assert recovered.cache_hit is False

    @pytest.mark.asyncio
    async def test_condition_error_denies(self):
        """Test an incomparable condition value yields DENY, not an exception."""
        stack = build_policy_stack()
        await stack.rule_store.save(create_rule(
            priority=10, conditions={"level": {"operator": "greater_than", "value": 5}}
        ))

        decision = await stack.engine.evaluate(
            TENANT_ID, create_principal(level="high"), "/api/v1/companies", "READ"
        )

        assert decision.allowed is False
        assert decision.reason_code is ReasonCode.POLICY_EVALUATION_ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tenant_id,resource,action", [
        ("", "/api/v1/companies", "READ"),
        (TENANT_ID, "api/v1/companies", "READ"),
        (TENANT_ID, "/api/v1/*", "READ"),
        (TENANT_ID, "/api/v1/companies", "FROBNICATE"),
        (TENANT_ID, "/api/v1/companies/../finance/ledger", "READ"),
        (TENANT_ID, "/api/v1/./finance/ledger", "READ"),
        (TENANT_ID, "/api/v1/companies/..", "READ"),
        (TENANT_ID, "/api/v1/companies/%2e%2e/finance/ledger", "READ"),
        (TENANT_ID, "/api/v1/companies%2F..%2Ffinance", "READ"),
        (TENANT_ID, "/api/v1/companies\\..\\finance", "READ"),
    ])
    async def test_invalid_request_raises(self, tenant_id, resource, action):
        """Test malformed requests are rejected before evaluation."""
        stack = build_policy_stack()

        with pytest.raises(ValidationError):
            await stack.engine.evaluate(tenant_id, create_principal(), resource, action)

        assert len(stack.recorder.sink) == 0

    @pytest.mark.asyncio
    async def test_cancellation_is_audited(self):
        """Test a cancelled evaluation records a DENY and propagates."""
        stack = build_policy_stack(store_timeout_ms=10_000, evaluation_timeout_ms=10_000)
        stack.rule_store.find_matching_rules = slow

        task = asyncio.create_task(
            stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")
        )
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        records = stack.recorder.sink.query(TENANT_ID)
        assert len(records) == 1
        assert records[0].allowed is False
        assert records[0].reason_code is ReasonCode.POLICY_EVALUATION_ERROR
        assert len(stack.cache) == 0


class TestDecisionMetrics:
    """Test cases for decision metrics."""

    @pytest.mark.asyncio
    async def test_decisions_counted(self):
        """Test allow and deny decisions are counted by reason."""
        metrics = MetricsCollector("policy-test")
        stack = build_policy_stack(metrics=metrics)

        await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")
        await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/companies", "READ")
        await stack.engine.evaluate(TENANT_ID, create_principal(), "/api/v1/invoices", "READ")

        assert metrics.sample("policy_decisions_total", decision="allow", reason_code="role_default") == 2.0
        assert metrics.sample(
            "policy_decisions_total", decision="deny", reason_code="role_no_default_access"
        ) == 1.0
        assert metrics.sample("policy_cache_lookups_total", result="hit") == 1.0
