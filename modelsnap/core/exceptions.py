"""
Pipeline Exceptions
Error taxonomy shared by admission, ledger, worker and delivery code.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with. ``retryable`` marks errors the worker may retry within a
job's retry budget.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    status_code: int = 500
    default_code: str = "SERVER_ERROR"
    retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": "error", "message": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(PipelineError):
    """Malformed or missing fields. Raised before any mutation."""
    status_code = 400
    default_code = "VALIDATION_ERROR"


class AuthenticationError(PipelineError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class AuthorizationError(PipelineError):
    """Consent, purchase or ownership missing."""
    status_code = 403
    default_code = "FORBIDDEN"


class InsufficientFundsError(PipelineError):
    """Not enough credits (business) or balance (model)."""
    status_code = 402
    default_code = "INSUFFICIENT_CREDITS"


class NotFoundError(PipelineError):
    status_code = 404
    default_code = "NOT_FOUND"


class InvalidStateError(PipelineError):
    """A status transition was requested from the wrong state."""
    status_code = 400
    default_code = "INVALID_STATE"


class RateLimitError(PipelineError):
    status_code = 429
    default_code = "RATE_LIMITED"


class ExternalServiceError(PipelineError):
    """Render service submission/poll failure or timeout."""
    status_code = 502
    default_code = "EXTERNAL_SERVICE_ERROR"
    retryable = True


class StorageError(ExternalServiceError):
    """Object storage read/write failure. Retried like any external failure."""
    default_code = "STORAGE_ERROR"


__all__ = [
    "PipelineError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "InsufficientFundsError",
    "NotFoundError",
    "InvalidStateError",
    "RateLimitError",
    "ExternalServiceError",
    "StorageError",
]
