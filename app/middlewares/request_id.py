from __future__ import annotations

import re

from flask import Flask, g, request

from utils import new_uuid, now_monotonic


_VALID_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def init_request_id(app: Flask) -> None:
    """Accepts a sane incoming X-Request-ID or generates one; echoes it back."""

    @app.before_request
    def _assign_request_id():
        incoming = str(request.headers.get("X-Request-ID") or "").strip()
        g.request_id = incoming if _VALID_ID.match(incoming) else new_uuid().replace("-", "")[:16]
        g.start_ts = now_monotonic()

    @app.after_request
    def _echo_request_id(response):
        rid = getattr(g, "request_id", "")
        if rid:
            response.headers["X-Request-ID"] = rid
        return response
