# FILE: clinicdesk/core/errors.py
from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """
    Base for errors the API turns into a uniform failure body:
    {"success": false, "message": "...", "code": "..."}
    """
    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details


class ValidationError(AppError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class ForbiddenError(AppError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    default_code = "CONFLICT"


class UpstreamError(AppError):
    """Store or provider failure."""
    status_code = 500
    default_code = "UPSTREAM_ERROR"
