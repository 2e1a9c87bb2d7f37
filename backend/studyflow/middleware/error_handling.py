"""
Error Handling Middleware

Provides consistent error responses across the API and the exception
hierarchy raised by services.

Services raise ServiceError subclasses; routers let them propagate and the
middleware turns them into a JSON body:

    {"error": <code>, "message": ..., "error_id": ..., "details": ...,
     "timestamp": ...}

Usage:
    from studyflow.middleware.error_handling import (
        NotFoundError,
        ValidationError,
        setup_error_handling,
    )

    setup_error_handling(app, debug=settings.DEBUG)

    raise NotFoundError(f"Item {item_id} not found")

Exception flow:
    Request → ErrorHandlingMiddleware.dispatch()
                  └─ try: await call_next(request)   ← app runs here
                     except HTTPException: re-raise  ← FastAPI handles it
                     except ServiceError:            ← structured response
                     except Exception:               ← sanitized 500
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================


class ServiceError(Exception):
    """
    Base exception for service errors.

    Carries the HTTP status code, a machine-readable error code and optional
    details for the response body.

    Example:
        raise ServiceError("Stats store unavailable", status_code=503)
    """

    status_code: int = 500
    error_code: str = "service_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code
        if error_code:
            self.error_code = error_code
        self.details = details


class ValidationError(ServiceError):
    """
    Data validation error.

    Raised when input fails a domain rule (e.g. a duration edit that would
    increase recorded time). No partial mutation is applied.
    """

    status_code = 422
    error_code = "validation_error"


class NotFoundError(ServiceError):
    """Raised when a requested item or session doesn't exist."""

    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """
    State conflict.

    Raised for a second active session or ending a session twice.
    """

    status_code = 409
    error_code = "conflict"


class ConnectivityError(ServiceError):
    """
    The persistence backend is unreachable.

    Session end degrades to the offline queue when it sees this.
    """

    status_code = 503
    error_code = "service_unavailable"


# =============================================================================
# Error Handling Middleware
# =============================================================================


def _log_context(request: Request, error_id: str) -> dict:
    return {"error_id": error_id, "path": request.url.path, "method": request.method}


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    - Converts ServiceError into its status code and error body
    - Logs with a short correlation id
    - Hides internal details unless debug is on
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        """Process request and handle any errors."""
        error_id = str(uuid4())[:8]

        try:
            return await call_next(request)

        except HTTPException:
            raise

        except ServiceError as e:
            log = logger.error if e.status_code >= 500 else logger.warning
            log(
                f"[{error_id}] {e.error_code}: {e.message}",
                extra=_log_context(request, error_id),
            )
            return create_error_response(
                e.error_code,
                e.message,
                status_code=e.status_code,
                details=e.details,
                error_id=error_id,
            )

        except Exception as e:
            logger.error(
                f"[{error_id}] Unhandled error: {type(e).__name__}: {e}",
                extra={**_log_context(request, error_id), "traceback": traceback.format_exc()},
            )
            details = None
            if self.debug:
                details = {
                    "exception": type(e).__name__,
                    "message": str(e),
                    "traceback": traceback.format_exc(),
                }
            return create_error_response(
                "internal_server_error",
                "An unexpected error occurred",
                status_code=500,
                details=details,
                error_id=error_id,
            )


def setup_error_handling(app: FastAPI, debug: bool = False) -> None:
    """
    Configure error handling on the FastAPI app.

    Args:
        app: FastAPI application instance
        debug: Whether to include stack traces in responses
    """
    app.add_middleware(ErrorHandlingMiddleware, debug=debug)
    logger.info(f"Error handling middleware enabled (debug={debug})")


def create_error_response(
    error_code: str,
    message: str,
    status_code: int = 500,
    details: Optional[dict] = None,
    error_id: Optional[str] = None,
) -> JSONResponse:
    """
    Create a standardized error response.

    Args:
        error_code: Error code for categorization
        message: Human-readable error message
        status_code: HTTP status code
        details: Optional additional details
        error_id: Correlation id; generated when omitted

    Returns:
        JSONResponse with standardized error format
    """
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error_code,
            "message": message,
            "error_id": error_id or str(uuid4())[:8],
            "details": details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
