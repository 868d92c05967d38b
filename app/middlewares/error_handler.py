from __future__ import annotations

import logging

from flask import Flask, request
from werkzeug.exceptions import HTTPException

from utils import ApiError, err


log = logging.getLogger("api")


def init_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        return err(e.code, e.message, http_status=e.http_status)

    @app.errorhandler(404)
    def _not_found(_e):
        return err("NOT_FOUND", f"Unknown endpoint: {request.path}", http_status=404)

    @app.errorhandler(405)
    def _method_not_allowed(_e):
        return err("BAD_REQUEST", "Method not allowed", http_status=405)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return err("BAD_REQUEST", e.description or e.name, http_status=e.code or 400)

    @app.errorhandler(Exception)
    def _unhandled(_e):
        log.exception("unhandled error path=%s", request.path)
        return err("INTERNAL", "Unexpected error", http_status=500)
