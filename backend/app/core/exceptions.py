"""Custom exceptions for application-specific error handling."""

from __future__ import annotations

from typing import Optional, Dict, Any


class HelpdeskException(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class NotFoundError(HelpdeskException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str = "not_found", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="NOT_FOUND", details=details, status_code=404)


class ConflictError(HelpdeskException):
    """Raised when a request conflicts with current state."""

    def __init__(self, message: str = "conflict", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="CONFLICT", details=details, status_code=409)


class BadRequestError(HelpdeskException):
    """Raised when request is invalid."""

    def __init__(self, message: str = "bad_request", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="BAD_REQUEST", details=details, status_code=400)


class RateLimitExceeded(HelpdeskException):
    """Raised when a client exceeds HTTP rate limits."""

    def __init__(self, *, retry_after: int, limit: int, window_seconds: int):
        headers = {
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Window": str(window_seconds),
        }
        super().__init__(
            "rate_limit_exceeded",
            error_code="RATE_LIMIT",
            details={"retry_after": retry_after, "limit": limit, "window_seconds": window_seconds},
            status_code=429,
            headers=headers,
        )


# ===== AI PIPELINE EXCEPTIONS =====


class AIException(HelpdeskException):
    """Base exception for AI pipeline errors."""


class GovernorDenied(AIException):
    """Raised when the cost/rate governor refuses an inference call."""

    def __init__(
        self,
        reason: str,
        *,
        message: Optional[str] = None,
        retry_after: Optional[int] = None,
        estimated_cost: float = 0.0,
        operation: Optional[str] = None,
        model_id: Optional[str] = None,
    ):
        self.reason = reason
        self.retry_after = retry_after
        self.estimated_cost = estimated_cost
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(
            message or f"Request blocked: {reason}",
            error_code="GOVERNOR_DENIED",
            details={
                "reason": reason,
                "retry_after": retry_after,
                "estimated_cost": estimated_cost,
                "operation": operation,
                "model_id": model_id,
            },
            status_code=429,
            headers=headers,
        )


class InferenceBackendError(AIException):
    """Base exception for failed inference backend calls."""

    retryable = False

    def __init__(self, message: str, *, error_code: str, status_code: int, model_id: Optional[str] = None):
        details = {"model_id": model_id} if model_id else {}
        super().__init__(message, error_code=error_code, details=details, status_code=status_code)


class BackendUnavailable(InferenceBackendError):
    """Raised when the inference backend cannot be reached or is not configured."""

    retryable = True

    def __init__(self, message: str = "Inference backend unavailable", *, model_id: Optional[str] = None):
        super().__init__(message, error_code="AI_BACKEND_UNAVAILABLE", status_code=503, model_id=model_id)


class BackendTimeout(InferenceBackendError):
    """Raised when the inference call exceeds its timeout."""

    retryable = True

    def __init__(self, message: str = "Inference request timed out", *, model_id: Optional[str] = None):
        super().__init__(message, error_code="AI_BACKEND_TIMEOUT", status_code=504, model_id=model_id)


class BackendRejected(InferenceBackendError):
    """Raised when the backend refuses the request (unsupported model/region, validation)."""

    def __init__(self, message: str = "Inference request rejected", *, model_id: Optional[str] = None):
        super().__init__(message, error_code="AI_BACKEND_REJECTED", status_code=502, model_id=model_id)


class MalformedInferenceOutput(AIException):
    """Raised when cannot parse the model output into the expected structure."""

    def __init__(self, message: str = "Failed to parse AI response", *, operation: Optional[str] = None):
        details = {"operation": operation} if operation else {}
        super().__init__(message, error_code="AI_PARSING_ERROR", details=details, status_code=502)


class NotEligible(AIException):
    """Policy skip: the ticket does not qualify for the requested AI step."""

    def __init__(self, reason: str, *, ticket_id: Optional[str] = None):
        self.reason = reason
        details: Dict[str, Any] = {"reason": reason}
        if ticket_id:
            details["ticket_id"] = ticket_id
        super().__init__(f"Ticket not eligible: {reason}", error_code="NOT_ELIGIBLE", details=details, status_code=409)


class ApprovalRequiredError(AIException):
    """Raised when publishing an article that needs an explicit approval."""

    def __init__(self, article_id: int):
        super().__init__(
            f"Article {article_id} requires approval before publishing",
            error_code="APPROVAL_REQUIRED",
            details={"article_id": article_id},
            status_code=409,
        )


# ===== AUTHENTICATION/AUTHORIZATION EXCEPTIONS =====


class AuthenticationException(HelpdeskException):
    """Base exception for authentication errors."""


class InsufficientPermissionsError(AuthenticationException):
    """Raised when user lacks required permissions."""

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, error_code="INSUFFICIENT_PERMISSIONS", status_code=403)
