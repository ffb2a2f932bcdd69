"""Structured request logging: one JSON line per HTTP request."""

import json
import logging
import sys
import time
import uuid
from typing import Any, Awaitable, Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logging.basicConfig(
    level=logging.INFO,
    format='%(message)s',
    stream=sys.stdout
)

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs request id, method, path, status, latency, client IP and the
    query intent (``X-Intent`` response header) as JSON.

    Question text, answers and request bodies are never logged.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = getattr(request.state, "request_id", None) or uuid.uuid4().hex
        request.state.request_id = request_id

        start_time = time.time()
        log_data: Dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "user_ip": request.client.host if request.client else "unknown",
        }

        try:
            response = await call_next(request)
        except Exception as e:
            error_log = {
                **log_data,
                "status_code": 500,
                "processing_time_ms": round((time.time() - start_time) * 1000, 2),
                "error": str(e),
                "error_type": type(e).__name__,
                "message": f"Request failed: {request.method} {request.url.path}",
            }
            logger.error(json.dumps(error_log), exc_info=True)
            raise

        log_data.update({
            "status_code": response.status_code,
            "processing_time_ms": round((time.time() - start_time) * 1000, 2),
        })
        if "X-Intent" in response.headers:
            log_data["intent"] = response.headers["X-Intent"]

        logger.info(json.dumps(log_data))
        response.headers["X-Request-ID"] = request_id
        return response
