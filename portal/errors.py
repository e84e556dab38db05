"""Application error types rendered as {code, message, details, timestamp}"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException


class AppError(HTTPException):
    """Base error carrying a machine-readable code"""

    code = "APP_ERROR"
    default_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Any = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.code = code or self.code
        self.message = message
        self.details = details
        super().__init__(
            status_code=status_code or self.default_status, detail=message, headers=headers
        )

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    default_status = 400


class UnauthorizedError(AppError):
    code = "UNAUTHORIZED"
    default_status = 401

    def __init__(self, message: str = "Unauthorized", **kwargs):
        super().__init__(message, **kwargs)


class ForbiddenError(AppError):
    code = "FORBIDDEN"
    default_status = 403

    def __init__(self, message: str = "Access denied", **kwargs):
        super().__init__(message, **kwargs)


class NotFoundError(AppError):
    code = "NOT_FOUND"
    default_status = 404

    def __init__(self, resource: str = "Resource", **kwargs):
        super().__init__(f"{resource} not found", **kwargs)


class ConflictError(AppError):
    code = "CONFLICT"
    default_status = 409


class RangeNotSatisfiableError(AppError):
    code = "RANGE_NOT_SATISFIABLE"
    default_status = 416


class RateLimitError(AppError):
    code = "RATE_LIMIT_EXCEEDED"
    default_status = 429


class ExternalServiceError(AppError):
    code = "EXTERNAL_SERVICE_ERROR"
    default_status = 502
