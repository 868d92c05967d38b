from __future__ import annotations

from flask import Flask


def init_security_headers(app: Flask) -> None:
    cfg = app.config["CFG"]

    @app.after_request
    def _security_headers(response):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        # Candidate pages carry the access token in the URL; never cache API output.
        response.headers.setdefault("Cache-Control", "no-store")
        if cfg.is_production:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response
