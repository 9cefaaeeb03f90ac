"""
Error handling and sanitization

- SmartShipError subclasses -> JSON body with their own HTTP status
- UPS API errors -> 502 with the carrier's error code
- Unhandled exceptions -> logged with traceback, generic 500 to the client
"""
import logging
import traceback
from typing import Union

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from smartship.core.config import settings
from smartship.core.exceptions import SmartShipError
from smartship.services.ups_client import UPSAPIError

logger = logging.getLogger(__name__)

# Patterns that indicate internal/sensitive error information
SENSITIVE_PATTERNS = [
    "password",
    "secret",
    "token",
    "credential",
    "sqlalchemy",
    "asyncpg",
    "postgresql",
    "traceback",
    "file \"",
]


def is_sensitive_error(message: str) -> bool:
    """Check if error message contains sensitive information."""
    message_lower = message.lower()
    return any(pattern in message_lower for pattern in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """Sanitize an error message for safe client exposure."""
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message

    if is_sensitive_error(message):
        return "An internal error occurred. Please try again later."

    if len(message) > 200:
        return message[:200] + "..."

    return message


async def smartship_error_handler(request: Request, exc: SmartShipError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.http_status,
        content={
            "error": sanitize_error_message(exc.message),
            "code": exc.code,
            "details": exc.details,
        },
    )


async def ups_error_handler(request: Request, exc: UPSAPIError) -> JSONResponse:
    logger.error(f"UPS error on {request.url.path}: {exc.code} - {exc.message}")

    return JSONResponse(
        status_code=502,
        content={
            "error": sanitize_error_message(exc.message),
            "code": exc.code or "UPS_ERROR",
            "details": {},
        },
    )


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Catch unhandled exceptions and sanitize error responses.

    - In production: Returns generic error, logs full details
    - In development: Returns full error for debugging
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            error_id = f"{request.client.host if request.client else 'unknown'}-{id(e)}"
            logger.error(
                f"Unhandled exception [{error_id}]: {type(e).__name__}: {str(e)}\n"
                f"Path: {request.url.path}\n"
                f"Method: {request.method}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            if settings.DEBUG:
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "internal_error",
                        "message": str(e),
                        "type": type(e).__name__,
                        "error_id": error_id,
                    },
                )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": "An unexpected error occurred. Please try again later.",
                    "error_id": error_id,
                },
            )


def register_error_handlers(app: FastAPI) -> None:
    """Attach SmartShip exception handlers and the sanitization middleware."""
    app.add_exception_handler(SmartShipError, smartship_error_handler)
    app.add_exception_handler(UPSAPIError, ups_error_handler)
    app.add_middleware(ErrorSanitizationMiddleware)
