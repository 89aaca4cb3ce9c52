"""
Per-request id and duration.

Every response carries ``X-Request-ID`` (echoed from the caller when sent)
and ``X-Request-Duration-Ms``. One access line is logged per API call:
WARNING when slower than ``SLOW_REQUEST_MS``, ERROR on a 5xx, DEBUG otherwise.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000

_QUIET_PATHS = frozenset({"/api/v1/health"})


def _project_id_of_request() -> int | None:
    # URL segment, then query string, then JSON body
    candidates = [
        (request.view_args or {}).get("project_id"),
        request.args.get("project_id"),
    ]
    if request.is_json:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            candidates.append(body.get("project_id"))
    for value in candidates:
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    return None


def _log_level(status: int, duration_ms: float) -> int:
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    if status >= 500:
        return logging.ERROR
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_request(response):
        started = getattr(g, "request_started", None)
        if started is None:
            return response

        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        if request.path not in _QUIET_PATHS:
            logger.log(
                _log_level(response.status_code, elapsed),
                "%s %s -> %d in %.0fms",
                request.method, request.path, response.status_code, elapsed,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": round(elapsed, 1),
                    "remote_addr": request.remote_addr,
                    "project_id": _project_id_of_request(),
                },
            )
        return response
