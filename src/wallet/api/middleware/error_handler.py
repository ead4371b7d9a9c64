"""Global error handling middleware.

All exceptions are converted to a standardized JSON body with the HTTP
status carried by the exception (or a fixed one for framework errors).
"""

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from wallet.core.errors import get_error
from wallet.core.exceptions import WalletError

logger = logging.getLogger(__name__)


def _debug(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.debug)


async def handle_wallet_error(request: Request, exc: WalletError) -> JSONResponse:
    """Handle application exceptions using the error catalog.

    Args:
        request: The incoming request
        exc: The application exception

    Returns:
        JSONResponse with error details from catalog
    """
    error_info = get_error(exc.error_code)

    # Details may carry upstream bodies; only log them in debug.
    extra = {"error_code": exc.error_code, "path": request.url.path, "method": request.method}
    if _debug(request):
        extra["details"] = exc.details

    log = logger.error if exc.http_status >= 500 else logger.warning
    log(f"Request failed with {exc.error_code}", extra=extra)

    return JSONResponse(
        status_code=exc.http_status,
        content={
            "error_code": exc.error_code,
            "message": str(exc) or error_info["message"],
            "user_message": error_info["user_message"],
            "retry_allowed": error_info["retry_allowed"],
        },
    )


async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors.

    Args:
        request: The incoming request
        exc: The validation error

    Returns:
        JSONResponse with field-level messages joined together
    """
    error_messages = []
    for error in exc.errors():
        field = ".".join(str(x) for x in error.get("loc", []))
        msg = error.get("msg", "Invalid value")
        error_messages.append(f"{field}: {msg}")

    logger.warning(
        f"Validation error on {request.url.path}",
        extra={"path": request.url.path, "method": request.method},
    )

    error_info = get_error("VAL_001")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error_code": "VAL_001",
            "message": " | ".join(error_messages),
            "user_message": error_info["user_message"],
            "retry_allowed": error_info["retry_allowed"],
        },
    )


async def handle_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
    """Handle database integrity errors.

    Duplicate keys answer 409; anything else is a generic database failure.
    """
    # Do not log str(exc): it can include SQL and bound parameters.
    logger.error(
        f"Database integrity error on {request.url.path}",
        extra={"path": request.url.path, "method": request.method},
    )

    error_msg = str(exc).lower()
    if "unique" in error_msg or "duplicate" in error_msg:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "error_code": "DB_002",
                "message": "Resource already exists",
                "user_message": "This record already exists.",
                "retry_allowed": False,
            },
        )

    error_info = get_error("DB_001")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "DB_001",
            "message": error_info["message"],
            "user_message": error_info["user_message"],
            "retry_allowed": error_info["retry_allowed"],
        },
    )


async def handle_generic_error(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without exposing internals."""
    extra = {
        "error_type": type(exc).__name__,
        "path": request.url.path,
        "method": request.method,
    }
    if _debug(request):
        logger.exception(f"Unexpected error on {request.url.path}", extra=extra)
    else:
        logger.error(f"Unexpected error on {request.url.path}", extra=extra)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "SYS_001",
            "message": "Internal server error",
            "user_message": "An unexpected error occurred.",
            "retry_allowed": True,
        },
    )
