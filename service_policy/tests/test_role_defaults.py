"""
Unit tests for the endpoint registry, role defaults and registry loading.
"""

import pytest

from shared.errors import ValidationError
from shared.test_helpers import create_principal
from service_policy.app.policy.models import DataScope, Operation
from service_policy.app.registry.endpoints import AccessClass
from service_policy.app.registry.loader import build_registry, load_role_defaults


class TestEndpointRegistry:
    """Test cases for endpoint classification."""

    @pytest.fixture
    def registry(self):
        """Built-in endpoint registry."""
        return load_role_defaults().registry

    def test_classify(self, registry):
        """Test built-in classes."""
        assert registry.classify("/api/v1/finance/reports") is AccessClass.SENSITIVE
        assert registry.classify("/api/v1/invoices") is AccessClass.SENSITIVE
        assert registry.classify("/api/v1/platform/tenants") is AccessClass.PLATFORM
        assert registry.classify("/api/v1/users/42/permissions") is AccessClass.ADMINISTRATIVE

    def test_unregistered_endpoint_uses_default(self, registry):
        """Test unknown endpoints fall back to the default class."""
        assert registry.classify("/api/v1/companies") is AccessClass.STANDARD

    def test_most_specific_pattern_wins(self):
        """Test specific entries beat broad ones regardless of order."""
        registry, _ = build_registry({
            "endpoints": [
                {"pattern": "/api/v1/finance/**", "access_class": "sensitive"},
                {"pattern": "/api/v1/finance/rates", "access_class": "standard"},
            ],
        })

        assert registry.classify("/api/v1/finance/rates") is AccessClass.STANDARD
        assert registry.classify("/api/v1/finance/ledger") is AccessClass.SENSITIVE


class TestRoleDefaultResolver:
    """Test cases for RoleDefaultResolver."""

    @pytest.fixture
    def resolver(self):
        """Built-in role matrix."""
        return load_role_defaults()

    def test_manager_may_delete_companies(self, resolver):
        """Test manager baseline on standard endpoints."""
        access = resolver.resolve(create_principal(roles=("MANAGER",)), "/api/v1/companies", Operation.DELETE)

        assert access.role == "MANAGER"
        assert access.scope is DataScope.TENANT

    def test_user_is_read_only_on_own_data(self, resolver):
        """Test user baseline is read-only with OWN scope."""
        user = create_principal(roles=("USER",))

        access = resolver.resolve(user, "/api/v1/companies", Operation.READ)

        assert access.scope is DataScope.OWN
        assert resolver.resolve(user, "/api/v1/companies", Operation.UPDATE) is None

    def test_user_has_no_sensitive_access(self, resolver):
        """Test users get nothing on sensitive endpoints."""
        assert resolver.resolve(create_principal(roles=("USER",)), "/api/v1/invoices", Operation.READ) is None

    def test_broadest_role_wins(self, resolver):
        """Test the role with the broadest scope is chosen."""
        principal = create_principal(roles=("USER", "TEAM_LEAD"))

        access = resolver.resolve(principal, "/api/v1/companies", Operation.READ)

        assert access.role == "TEAM_LEAD"
        assert access.scope is DataScope.TEAM

    def test_unknown_role(self, resolver):
        """Test roles outside the matrix grant nothing."""
        assert resolver.resolve(create_principal(roles=("AUDITOR",)), "/api/v1/companies", Operation.READ) is None


class TestRegistryLoading:
    """Test cases for YAML registry loading."""

    def test_load_yaml(self, tmp_path):
        """Test a registry file replaces the built-in matrix."""
        path = tmp_path / "registry.yaml"
        path.write_text(
            "default_access_class: sensitive\n"
            "endpoints:\n"
            "  - pattern: /api/v1/catalog/**\n"
            "    access_class: standard\n"
            "roles:\n"
            "  CLERK:\n"
            "    max_scope: TEAM\n"
            "    access:\n"
            "      standard: '*'\n"
            "      sensitive: [READ]\n"
        )

        resolver = load_role_defaults(path)
        clerk = create_principal(roles=("CLERK",))

        assert resolver.roles == ("CLERK",)
        assert resolver.resolve(clerk, "/api/v1/catalog/fabrics", Operation.DELETE).scope is DataScope.TEAM
        assert resolver.resolve(clerk, "/api/v1/orders", Operation.READ) is not None
        assert resolver.resolve(clerk, "/api/v1/orders", Operation.UPDATE) is None

    def test_invalid_yaml(self, tmp_path):
        """Test malformed YAML is reported as a validation error."""
        path = tmp_path / "registry.yaml"
        path.write_text("roles: [unclosed\n")

        with pytest.raises(ValidationError):
            load_role_defaults(path)

    def test_missing_file(self, tmp_path):
        """Test a missing registry file is reported."""
        with pytest.raises(ValidationError) as exc_info:
            load_role_defaults(tmp_path / "absent.yaml")
        assert "path" in exc_info.value.details

    def test_unknown_access_class(self):
        """Test unknown access classes are rejected."""
        with pytest.raises(ValidationError):
            build_registry({"endpoints": [{"pattern": "/api/v1/x", "access_class": "secret"}]})

    def test_operations_must_be_list_or_star(self):
        """Test operations must be a list or '*'."""
        with pytest.raises(ValidationError):
            build_registry({"roles": {"CLERK": {"access": {"standard": "READ"}}}})
