"""
Logging middleware for request tracking.

Assigns every request an ID (honouring an inbound ``X-Request-ID``), binds it
into the structlog request context, and emits one completion line per request
with status and duration.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.logging import clear_request_context, get_logger, set_request_context

logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Structured request logging with request-ID propagation."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.perf_counter()
        set_request_context(
            request_id=request_id,
            method=request.method,
            path=str(request.url.path),
        )

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "Request failed with exception",
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                exc_info=True,
            )
            clear_request_context()
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        clear_request_context()
        return response
