"""
Domain error taxonomy.

Every error carries a machine-readable ``code`` that is rendered to clients as
``{"success": false, "message": code}``. Internal detail never leaves the
server; it is attached as ``__cause__`` and logged.
"""
from typing import Any, List, Optional

from fastapi import status


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, code: Optional[str] = None, errors: Optional[List[Any]] = None):
        self.code = code or self.default_code
        self.errors = errors
        super().__init__(self.code)

    def to_dict(self) -> dict:
        payload = {"success": False, "message": self.code}
        if self.errors:
            payload["errors"] = self.errors
        return payload


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    # Duplicates are reported as 400 on the public API
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "CONFLICT"


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "UNAUTHORIZED"


class ForbiddenError(UnauthorizedError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"


class RateLimitedError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_code = "RATE_LIMITED"


class InternalError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "INTERNAL_SERVER_ERROR"


class InvalidTokenError(UnauthorizedError):
    """Raised for every token failure: bad signature, expiry, wrong type or revoked."""

    default_code = "INVALID_TOKEN"
