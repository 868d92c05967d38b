from __future__ import annotations

import logging

from flask import Flask, g, request

from utils import now_monotonic


log = logging.getLogger("api.access")


def init_request_logging(app: Flask) -> None:
    @app.after_request
    def _log_request(response):
        start = getattr(g, "start_ts", None)
        latency_ms = int((now_monotonic() - start) * 1000) if start is not None else -1
        log.info(
            "method=%s path=%s status=%s latency_ms=%s",
            request.method,
            request.path,
            response.status_code,
            latency_ms,
        )
        return response
