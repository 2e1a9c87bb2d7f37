"""Middleware and the service exception hierarchy."""

from studyflow.middleware.error_handling import (
    ConflictError,
    ConnectivityError,
    ErrorHandlingMiddleware,
    NotFoundError,
    ServiceError,
    ValidationError,
    create_error_response,
    setup_error_handling,
)

__all__ = [
    "ConflictError",
    "ConnectivityError",
    "ErrorHandlingMiddleware",
    "NotFoundError",
    "ServiceError",
    "ValidationError",
    "create_error_response",
    "setup_error_handling",
]
