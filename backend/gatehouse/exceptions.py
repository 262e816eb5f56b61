"""
Gatehouse Backend: Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for each failure the pipeline and
       routes can report.
How:   Each exception carries a user-safe message and an optional context
       dict. Routes raise them; handlers registered in main.py turn them
       into JSON responses. Pipeline stages build the same JSON shape
       directly through `error_response()` so nothing crosses a stage
       boundary as an exception.

Exception Hierarchy:
    GatehouseError (base)
    ├── ValidationError          → 400 Bad Request
    │   └── EmptyInputError      → 400 (empty password given to the hasher)
    ├── ConflictError            → 400 Bad Request (duplicate resource)
    ├── AuthenticationError      → 401 Unauthorized
    ├── CsrfError                → 403 Forbidden
    ├── NotFoundError            → 404 Not Found
    ├── RateLimitExceededError   → 429 Too Many Requests
    └── ConfigurationError       → aborts startup

Response body shape (every error):
    {"error": "<code>", "message": "<text>", "details": {...}, "request_id": "<id>"}
"""

from typing import Any, Dict, Optional


class GatehouseError(Exception):
    """
    Base exception for all Gatehouse application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(GatehouseError):
    """Raised when client input fails validation. HTTP 400."""

    status_code = 400
    error_code = "validation_error"

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


class EmptyInputError(ValidationError):
    """Raised when a value that must be non-empty (e.g. a password) is empty."""

    def __init__(self, field: str = "password"):
        super().__init__(message=f"{field} must not be empty", field=field)


class ConflictError(GatehouseError):
    """
    Raised when creating a resource that already exists.

    HTTP:    400 Bad Request (existing clients expect 400 for a taken email)
    """

    status_code = 400
    error_code = "conflict"

    def __init__(self, message: str = "Resource already exists", context: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, context=context)


class AuthenticationError(GatehouseError):
    """
    Raised for missing, invalid or expired credentials.

    HTTP:    401 Unauthorized
    Message is deliberately vague ("Invalid credentials") so callers cannot
    tell an unknown email from a wrong password.
    """

    status_code = 401
    error_code = "authentication_error"

    def __init__(self, message: str = "Authentication required", context: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, context=context)


class CsrfError(GatehouseError):
    """Raised when the CSRF token/cookie pair is missing, mismatched or expired. HTTP 403."""

    status_code = 403
    error_code = "csrf_error"

    def __init__(self, message: str = "CSRF token validation failed", context: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, context=context)


class NotFoundError(GatehouseError):
    """Raised when a requested resource does not exist. HTTP 404."""

    status_code = 404
    error_code = "not_found"

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


class RateLimitExceededError(GatehouseError):
    """
    Raised when a client exceeds a rate limit.

    HTTP:    429 Too Many Requests
    The rate-limit stage answers directly with headers; this exception
    exists for handlers that enforce their own quotas.
    """

    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(self, retry_after: int = 60, context: Optional[Dict[str, Any]] = None):
        message = f"Too many requests. Please wait {retry_after} seconds before retrying."
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class ConfigurationError(GatehouseError):
    """
    Raised when the application is misconfigured (e.g. no signing secret).

    Never converted into an HTTP response: it propagates out of startup so
    the process exits instead of serving with weakened security.
    """

    error_code = "configuration_error"
