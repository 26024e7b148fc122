"""
Request context middleware.

- Reuses X-Trace-ID / X-Request-ID from the caller, or generates a trace id
- Generates a request id per request
- Binds user id from the X-User-ID header (set by the identity collaborator)
- Echoes X-Trace-ID and X-Request-ID on the response
- Records HTTP RED metrics
"""
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import (
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_request_id,
    set_session_id,
    set_trace_id,
    set_user_id,
)
from .metrics import record_http_request

logger = get_logger(__name__)


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Sets per-request logging context and response correlation headers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = (
            request.headers.get("X-Trace-ID")
            or request.headers.get("X-Request-ID")
            or generate_trace_id()
        )
        request_id = generate_request_id()
        user_id = request.headers.get("X-User-ID")

        set_trace_id(trace_id)
        set_request_id(request_id)
        if user_id:
            set_user_id(user_id)

        start_time = time.time()
        logger.info("request_started", method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            record_http_request(request.method, request.url.path, 500, process_time)
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int(process_time * 1000),
                exc_info=True,
            )
            raise
        else:
            process_time = time.time() - start_time
            record_http_request(request.method, request.url.path, response.status_code, process_time)
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=int(process_time * 1000),
            )
            response.headers["X-Trace-ID"] = trace_id
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            set_trace_id(None)
            set_request_id(None)
            set_user_id(None)
            set_session_id(None)
