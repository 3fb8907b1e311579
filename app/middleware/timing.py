"""
QA Tracking Dashboard
Request timing.

Every response carries ``X-Request-ID`` (echoed from the client when sent)
and ``X-Request-Duration-Ms``. One access line per request: WARNING above
``SLOW_REQUEST_MS``, ERROR on 5xx, DEBUG otherwise. Health probes are not
logged. For the streamed AI insights response the duration covers the time
to the first byte only.
"""

import logging
import time
import uuid

from flask import Flask, g, request

from app.middleware.logging_config import current_cycle_id

logger = logging.getLogger(__name__)

QUIET_PATHS = frozenset({"/api/v1/health/ready", "/api/v1/health/live"})
SLOW_REQUEST_MS = 1000


def init_request_timing(app: Flask):
    @app.before_request
    def _stamp_request():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _access_log(response):
        start = g.get("request_start")
        if start is None:
            return response

        elapsed = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"
        if request.path in QUIET_PATHS:
            return response

        if elapsed > SLOW_REQUEST_MS:
            level, label = logging.WARNING, "Slow request"
        elif response.status_code >= 500:
            level, label = logging.ERROR, "Server error"
        else:
            level, label = logging.DEBUG, "Request"
        logger.log(
            level, "%s: %s %s -> %d", label, request.method, request.path, response.status_code,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": elapsed,
                "remote_addr": request.remote_addr,
                "cycle_id": current_cycle_id(),
            },
        )
        return response
