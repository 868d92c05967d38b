from __future__ import annotations

import logging
import sys

from flask import g, has_request_context


LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"


class RequestIdFilter(logging.Filter):
    """Stamps every record with the current request id ("-" outside requests)."""

    def filter(self, record: logging.LogRecord) -> bool:
        rid = ""
        if has_request_context():
            rid = str(getattr(g, "request_id", "") or "")
        record.request_id = rid or "-"
        return True


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level or "INFO").upper(), logging.INFO))

    for h in root.handlers:
        if getattr(h, "_assessments_handler", False):
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())
    handler._assessments_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # Werkzeug logs every request itself; ours is enough.
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
