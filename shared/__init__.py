"""
Shared utilities for the policy decision platform.

This package aggregates common building blocks consumed by services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators for calls to shared infrastructure
- base_service: FastAPI service skeleton (health, metrics, error handlers)
- test_helpers: factories and an in-memory engine stack for tests

Any cross-service logic should live here to avoid import cycles across
service packages. Only test_helpers imports from service_* packages.
"""
