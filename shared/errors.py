"""
Shared error handling for the policy decision platform.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class PolicyEngineException(Exception):
    """Base exception for policy services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(PolicyEngineException):
    """Malformed evaluation or administration input."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(PolicyEngineException):
    """A referenced rule or grant does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", f"{entity} '{entity_id}' not found", details)


class GrantStateError(PolicyEngineException):
    """Illegal permission grant state transition."""

    status_code = 409

    def __init__(self, message: str = "Illegal grant transition", details: Optional[Dict[str, Any]] = None):
        super().__init__("GRANT_STATE_ERROR", message, details)


class StoreUnavailableError(PolicyEngineException):
    """Rule or grant store unreachable or too slow."""

    status_code = 503

    def __init__(self, store: str, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        self.store = store
        super().__init__("STORE_UNAVAILABLE", f"{store}: {message}", details)


class EvaluationTimeoutError(PolicyEngineException):
    """Policy evaluation exceeded its time budget."""

    status_code = 503

    def __init__(self, timeout_ms: float, details: Optional[Dict[str, Any]] = None):
        self.timeout_ms = timeout_ms
        super().__init__("EVALUATION_TIMEOUT", f"Evaluation exceeded {timeout_ms}ms", details)


class InvalidationError(PolicyEngineException):
    """Cache invalidation could not be applied or broadcast."""

    status_code = 503

    def __init__(self, message: str = "Cache invalidation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALIDATION_ERROR", message, details)
