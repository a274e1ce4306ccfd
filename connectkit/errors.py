"""Application error taxonomy.

Every error the service layer raises derives from :class:`AppError` and carries
the HTTP status it maps to. Operational errors are expected outcomes (bad input,
wrong password, missing record) and are returned to the caller as-is;
non-operational ones are bugs or infrastructure failures and are logged with
full context but never detailed to the caller in production.
"""

from datetime import datetime


class AppError(Exception):
    """Base exception for API errors."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
    default_message = "Internal server error"
    is_operational = True

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class UnauthorizedError(AppError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_message = "Authentication required"


class InvalidCredentialsError(UnauthorizedError):
    """Unknown account or wrong password; the two are never distinguished."""

    error_code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"

    def __init__(self, details: dict | None = None):
        super().__init__(self.default_message, details)


class InvalidTokenError(UnauthorizedError):
    error_code = "INVALID_TOKEN"
    default_message = "Invalid or revoked token"


class ExpiredTokenError(UnauthorizedError):
    error_code = "TOKEN_EXPIRED"
    default_message = "Token has expired"


class EmailNotVerifiedError(UnauthorizedError):
    error_code = "EMAIL_NOT_VERIFIED"
    default_message = "Please verify your email address before logging in"


class AccountLockedError(AppError):
    """Login refused while the account lockout window is open."""

    status_code = 423
    error_code = "ACCOUNT_LOCKED"
    default_message = "Account is temporarily locked due to too many failed login attempts"

    def __init__(self, locked_until: datetime, message: str | None = None):
        self.locked_until = locked_until
        super().__init__(message, {"lockedUntil": locked_until.isoformat()})


class ForbiddenError(AppError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "Insufficient permissions"


class NotFoundError(AppError):
    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    error_code = "CONFLICT"
    default_message = "Resource already exists"


class RateLimitExceededError(AppError):
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"
    default_message = "Too many requests, please try again later"

    def __init__(self, limit: int, window_seconds: int, retry_after: int):
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = max(int(retry_after), 1)
        super().__init__(
            None,
            {"limit": limit, "window": window_seconds, "retryAfter": self.retry_after},
        )


class DatabaseError(AppError):
    status_code = 500
    error_code = "DATABASE_ERROR"
    default_message = "A database error occurred"
    is_operational = False
