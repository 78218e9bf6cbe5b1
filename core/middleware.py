"""
Application Middleware for the PinPrompt API.

Cross-cutting request handling shared by every endpoint.

Key Components:
- `CorrelationMiddleware`: Assigns a correlation ID to every incoming request
  (or reuses the client's `X-Correlation-ID`), stores it in the logging
  context and echoes it in the response headers.
- `PerformanceMiddleware`: Logs the start and end of each request, adds an
  `X-Process-Time` header and warns about slow requests.
- `pinprompt_exception_handler`: Renders every `PinPromptException` raised by
  an endpoint or dependency as a standardized JSON error body, so primary
  mutation failures reach the client as an inline message.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .logging_config import set_correlation_id, get_logger
from .exceptions import PinPromptException, to_http_exception

logger = get_logger("core.middleware")

SLOW_REQUEST_SECONDS = 1.0


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation IDs to requests"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = (
            request.headers.get("X-Correlation-ID")
            or request.headers.get("X-Request-ID")
            or str(uuid.uuid4())
        )

        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id

        return response


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Middleware for request timing and logging"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.debug(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            },
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "process_time_ms": round(process_time * 1000, 2),
            },
        )

        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path}",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "process_time_ms": round(process_time * 1000, 2),
                },
            )

        return response


async def pinprompt_exception_handler(
    request: Request, exc: PinPromptException
) -> JSONResponse:
    """Render application exceptions as JSON error bodies"""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"Application error: {exc}",
        extra={
            "error_type": type(exc).__name__,
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    http_exc = to_http_exception(exc)
    return JSONResponse(
        status_code=http_exc.status_code,
        content={
            "error": {
                "type": type(exc).__name__,
                "code": exc.error_code,
                "message": exc.message,
                "details": exc.details,
                "correlation_id": getattr(request.state, "correlation_id", None),
            }
        },
    )
