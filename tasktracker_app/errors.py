"""Application error taxonomy.

Every failure that leaves the service layer is one of these classes (or is
translated into one by :mod:`tasktracker_app.error_handlers`). Each error
carries a human message, an HTTP status, a machine-readable code and optional
structured details.
"""

from typing import Any, Optional


class AppError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_SERVER_ERROR"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Any = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, code={self.code!r})"


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Validation error"


class AuthenticationError(AppError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"
    default_message = "Authentication failed"


class InvalidTokenError(AuthenticationError):
    code = "INVALID_TOKEN"
    default_message = "Invalid token"


class TokenExpiredError(AuthenticationError):
    code = "TOKEN_EXPIRED"
    default_message = "Token expired"


class AuthorizationError(AppError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"
    default_message = "Access denied"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND_ERROR"

    def __init__(self, resource: str = "Resource", **kwargs: Any) -> None:
        self.resource = resource
        super().__init__(f"{resource} not found", **kwargs)


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT_ERROR"
    default_message = "Conflict"


class RateLimitError(AppError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    default_message = "Too many requests, please try again later."


class DatabaseError(AppError):
    status_code = 500
    code = "DATABASE_ERROR"
    default_message = "Database error occurred"


class InternalError(AppError):
    """Fallback for failures nothing else recognized."""
