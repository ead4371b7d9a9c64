"""Request logging middleware with credential scrubbing.

Every request gets an id (echoed in ``X-Request-ID``), a duration and, when
authenticated, the caller id. Bearer tokens and YNAB credentials are removed
from anything logged.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from wallet.core.logging import scrub_secrets

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all HTTP requests."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()
        path = scrub_secrets(str(request.url.path))

        logger.info(
            "Request started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "client_ip": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed",
                extra={
                    "request_id": request_id,
                    "user_id": getattr(request.state, "user_id", None),
                    "method": request.method,
                    "path": path,
                    "duration_ms": duration_ms,
                    "error": scrub_secrets(str(exc)),
                },
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id

        # The caller id is only known once the route's dependencies have run
        logger.info(
            f"{request.method} {path} -> {response.status_code} ({duration_ms} ms)",
            extra={
                "request_id": request_id,
                "user_id": getattr(request.state, "user_id", None),
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        return response
