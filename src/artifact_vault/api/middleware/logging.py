"""
Request logging middleware.

Logs every HTTP request with its status, duration and, once authenticated,
the caller run.
"""

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log HTTP requests with timing information.

    Logs:
    - Request method and path
    - Calling run and repository, when identified
    - Request ID (generated if the client sent none)
    - Response status code and processing time
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        logger_instance: logging.Logger | None = None,
        skip_paths: set[str] | None = None,
    ) -> None:
        super().__init__(app)
        self._logger = logger_instance or logger
        self._skip_paths = skip_paths if skip_paths is not None else {"/health"}

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Process the request and log the outcome."""
        if request.url.path in self._skip_paths:
            return await call_next(request)

        start_time = time.time()
        method = request.method
        path = request.url.path
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        extra = {
            "method": method,
            "path": path,
            "request_id": request_id,
        }

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._logger.error(
                f"{method} {path} failed after {duration_ms:.2f}ms: {e}",
                extra={**extra, "event": "request_failed", "duration_ms": round(duration_ms, 2)},
                exc_info=True,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        # set by the identity dependency once the run token is verified
        caller = getattr(request.state, "caller", None)
        run_id = caller.run_id if caller is not None else "-"
        self._logger.info(
            f"{method} {path} -> {response.status_code} ({duration_ms:.2f}ms, run={run_id})",
            extra={
                **extra,
                "run_id": run_id,
                "event": "request_completed",
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        response.headers["X-Process-Time"] = f"{duration_ms:.2f}"
        response.headers["X-Request-ID"] = request_id
        return response
