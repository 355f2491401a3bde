"""
Shared error handling for the Access Layer permissions service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
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


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(AccessLayerException):
    """Referenced role, policy, assignment or resource does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class InvalidRuleError(AccessLayerException):
    """Malformed policy rule or condition."""

    status_code = 422

    def __init__(self, message: str = "Invalid policy rule configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_RULE", message, details)


class PersistenceError(AccessLayerException):
    """Durable store operation failed."""

    status_code = 503

    def __init__(self, message: str = "Persistence failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSISTENCE_FAILURE", message, details)


class EvaluationError(AccessLayerException):
    """Unexpected internal error while evaluating rules."""

    status_code = 500

    def __init__(self, message: str = "Evaluation failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("EVALUATION_FAILURE", message, details)
