"""
Domain errors raised by the service layer.

Each carries the HTTP status it maps to; main.py turns them into the
standard {success: false, message} envelope.
"""

from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra


class ValidationError(AppError):
    """Missing or malformed input"""
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class AuthorizationError(AppError):
    """Role or ownership check failed"""
    status_code = 403


class ConflictError(AppError):
    """State guard violated, e.g. a supply request that was already handled"""
    status_code = 400


class InsufficientStockError(AppError):
    status_code = 400


class ImportFormatError(ValidationError):
    """Uploaded spreadsheet is missing required columns or cannot be read"""

    def __init__(self, message: str, missing_columns: Optional[List[str]] = None):
        extra = {"missingColumns": missing_columns} if missing_columns else {}
        super().__init__(message, **extra)
        self.missing_columns = missing_columns or []
