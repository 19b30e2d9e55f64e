"""Custom exceptions for the content strategist backend."""

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "NotFoundError": "The requested resource was not found.",
    "AuthenticationError": "Authentication failed. Please refresh the page and try again.",
    "AuthorizationError": "You don't have permission to access this resource.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "ConflictError": "A conflict occurred. Please refresh and try again.",
    "UsageLimitError": "Message limit reached. Please upgrade your subscription.",
    "RateLimitError": "The service is currently busy. Please wait a moment and try again.",
    "DatabaseError": "A temporary database issue occurred. Please try again in a moment.",
    "ServiceUnavailableError": "A service dependency is temporarily unavailable. Please try again.",
    "ExternalServiceError": "An external service is temporarily unavailable.",
    "ProviderTimeoutError": "Request took too long to process. Please try again.",
    "CircuitBreakerOpen": "A service dependency is temporarily unavailable. Please try again in a moment.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An unexpected error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    # Walk the MRO to find the most specific matching type
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class StrategistError(Exception):
    """Base exception for all application-specific errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
            retryable: Whether the caller may retry. Defaults to True for
                429 and 5xx statuses.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        if retryable is None:
            retryable = status_code == 429 or status_code >= 500
        self.retryable = retryable


class NotFoundError(StrategistError):
    """Resource not found error (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        """Initialize not found error.

        Args:
            resource: Name of the resource that was not found.
            resource_id: Optional ID of the resource.
        """
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class AuthenticationError(StrategistError):
    """Authentication failed error (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            message=message,
            code="AUTHENTICATION_ERROR",
            status_code=401,
            retryable=False,
        )


class AuthorizationError(StrategistError):
    """Authorization/permission denied error (403)."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            message=message,
            code="AUTHORIZATION_ERROR",
            status_code=403,
        )


class ValidationError(StrategistError):
    """Input validation error (400)."""

    def __init__(
        self, message: str, field: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            field: Name of the invalid field.
            details: Additional validation details.
        """
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=error_details,
        )


class ConflictError(StrategistError):
    """Resource conflict error (409)."""

    def __init__(self, message: str, resource: str | None = None) -> None:
        details = {}
        if resource:
            details["resource"] = resource
        super().__init__(
            message=message,
            code="CONFLICT",
            status_code=409,
            details=details,
            retryable=True,
        )


class UsageLimitError(StrategistError):
    """Message allowance for the current plan is exhausted (429)."""

    def __init__(self, messages_used: int, messages_limit: int) -> None:
        """Initialize usage limit error.

        Args:
            messages_used: Messages already consumed by the user.
            messages_limit: Messages allowed by the user's plan.
        """
        super().__init__(
            message="Message limit reached. Please upgrade your subscription.",
            code="USAGE_LIMIT_REACHED",
            status_code=429,
            details={"messagesUsed": messages_used, "messagesLimit": messages_limit},
            retryable=False,
        )


class RateLimitError(StrategistError):
    """Upstream provider rate limit exceeded (429)."""

    def __init__(self, service: str = "AI service") -> None:
        super().__init__(
            message=f"{service} is currently busy. Please wait a moment and try again.",
            code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details={"service": service},
        )


class DatabaseError(StrategistError):
    """Database operation error (500)."""

    def __init__(self, message: str = "A database error occurred") -> None:
        super().__init__(
            message=message,
            code="DATABASE_ERROR",
            status_code=500,
        )


class ServiceUnavailableError(StrategistError):
    """A dependency (database or AI provider) is temporarily unavailable (503)."""

    def __init__(self, service: str, message: str | None = None) -> None:
        """Initialize service unavailable error.

        Args:
            service: Name of the unavailable dependency.
            message: Optional error message.
        """
        super().__init__(
            message=message or f"Error communicating with {service}. Please try again.",
            code="SERVICE_UNAVAILABLE",
            status_code=503,
            details={"service": service},
        )


class ExternalServiceError(StrategistError):
    """External service error (502)."""

    def __init__(self, service: str, message: str | None = None) -> None:
        """Initialize external service error.

        Args:
            service: Name of the external service.
            message: Optional error message.
        """
        error_message = message or f"Error communicating with {service}"
        super().__init__(
            message=error_message,
            code="EXTERNAL_SERVICE_ERROR",
            status_code=502,
            details={"service": service},
        )


class ProviderTimeoutError(StrategistError):
    """A provider call exceeded its deadline (504)."""

    def __init__(self, service: str, timeout_seconds: float | None = None) -> None:
        details: dict[str, Any] = {"service": service}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message="Request took too long to process. Please try simplifying your message or try again.",
            code="PROVIDER_TIMEOUT",
            status_code=504,
            details=details,
        )


class EnrichmentError(ExternalServiceError):
    """An enrichment provider failed; converted to a failed result at the adapter boundary."""


def classify_provider_error(error: BaseException, service: str = "AI") -> StrategistError:
    """Map an arbitrary exception onto the error taxonomy.

    Args:
        error: The exception raised by a provider or the database.
        service: Name of the dependency, used in messages.

    Returns:
        A StrategistError carrying the status code for the failure class.
    """
    if isinstance(error, StrategistError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ProviderTimeoutError(service)

    message = str(error).lower()
    if "timeout" in message or "timed out" in message or "etimedout" in message:
        return ProviderTimeoutError(service)
    if "rate limit" in message or "429" in message or "too many requests" in message:
        return RateLimitError(f"{service} service")
    if "authentication" in message or "unauthorized" in message or "401" in message:
        return AuthenticationError("Authentication failed. Please refresh the page and try again.")
    if "database" in message or "connection" in message or "postgres" in message:
        return ServiceUnavailableError(
            "database", "A temporary database issue occurred. Please try again in a moment."
        )
    if "api" in message or "openai" in message or "llm" in message or "model" in message:
        return ServiceUnavailableError(service)

    logger.debug("Unclassified provider error", extra={"error": str(error)})
    return StrategistError(
        message="An error occurred while processing your request.",
        code="INTERNAL_ERROR",
        status_code=500,
        details={"service": service},
    )
