"""
API middleware module.
"""
from mediaportal.api.middleware.error_handler import (
    AppException,
    NotFoundException,
    BadRequestException,
    ConflictException,
    ValidationException,
    TooManyRequestsException,
    app_exception_handler,
    core_error_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)

__all__ = [
    "AppException",
    "NotFoundException",
    "BadRequestException",
    "ConflictException",
    "ValidationException",
    "TooManyRequestsException",
    "app_exception_handler",
    "core_error_handler",
    "validation_exception_handler",
    "http_exception_handler",
    "unhandled_exception_handler",
]
