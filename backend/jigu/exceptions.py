"""
Jigu Server: Custom Exception Hierarchy
=======================================

What:  Application-specific exceptions for the different failure scenarios.
How:   Each exception carries a user-facing message, a context dict for the
       server-side log, an HTTP status and a service code. Global handlers
       registered in main.py turn them into the uniform response envelope.
Who:   Raised by services, the DAL and the database manager; caught by the
       global handlers.

Exception Hierarchy:
    JiguError (base)
    ├── ValidationError          → 400 / 4000
    ├── NotFoundError            → 404 / 4004
    ├── DatabaseError            → 500 / 5000
    ├── ConfigurationError       → 500 / 5001
    ├── UpstreamServiceError     → 502 / 5002
    └── CircuitBreakerOpenError  → 503 / 5003
"""

from typing import Any, Dict, Optional

from jigu.schemas.common import ServiceCode


class JiguError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    status_code: int = 500
    service_code: int = ServiceCode.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(JiguError):
    """
    Raised when client input fails a business rule.

    Schema-level problems are caught earlier by FastAPI's request validation
    and mapped onto the same 400 response in main.py.
    """

    status_code = 400
    service_code = ServiceCode.BAD_REQUEST

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(JiguError):
    """Raised when a requested document does not exist."""

    status_code = 404
    service_code = ServiceCode.NOT_FOUND

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DatabaseError(JiguError):
    """
    Raised when a MongoDB operation fails or the client is unavailable.

    The message returned to the client is always generic; the driver error
    is kept in `context` for the server-side log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConfigurationError(JiguError):
    """Raised when a required setting is missing or inconsistent."""

    service_code = ServiceCode.BAD_ENVIRONMENT

    def __init__(
        self,
        message: str = "Bad Environment",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UpstreamServiceError(JiguError):
    """
    Raised when the completions upstream fails after all retries.

    `retry_after` is forwarded as a Retry-After header when set.
    """

    status_code = 502
    service_code = ServiceCode.UPSTREAM_ERROR

    def __init__(
        self,
        message: str = "The completions service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(JiguError):
    """
    Raised while the upstream circuit breaker is OPEN.

    CLOSED → (threshold failures) → OPEN → (recovery timeout) → HALF_OPEN
    → one trial call → CLOSED on success, OPEN again on failure.
    """

    status_code = 503
    service_code = ServiceCode.SERVICE_UNAVAILABLE

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            "The completions service is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
