"""
Application Errors
==================

One exception hierarchy for the whole pipeline. The web layer turns any
AppError into a JSON error body with the carried status code; background
jobs log it and carry on.
"""

from typing import Any, Optional


class AppError(Exception):
    """Base exception for expected, reportable failures."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class NotFoundError(AppError):
    def __init__(self, resource: str = "Resource", details: Optional[Any] = None):
        super().__init__(f"{resource} not found", "NOT_FOUND", 404, details)


class ValidationError(AppError):
    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, "VALIDATION_ERROR", 400, details)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, "UNAUTHORIZED", 401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, "FORBIDDEN", 403)


class ConflictError(AppError):
    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message, "CONFLICT", 409, details)
