"""
Per-request id and wall-clock timing.

Every response carries X-Request-ID (echoed from the caller when supplied)
and X-Request-Duration-Ms. One access-log line is written per API request:
WARNING above SLOW_REQUEST_MS, ERROR for 5xx, DEBUG otherwise.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000
QUIET_PATHS = ("/api/v1/health", "/static")


def _access_level(status: int, duration_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _begin():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish(response):
        started = getattr(g, "request_start", None)
        if started is None:
            return response

        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        if not request.path.startswith(QUIET_PATHS):
            logger.log(
                _access_level(response.status_code, elapsed),
                "%s %s -> %d in %.0fms",
                request.method, request.path, response.status_code, elapsed,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": elapsed,
                    "remote_addr": request.remote_addr,
                },
            )
        return response
