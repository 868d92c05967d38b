from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from app.store import store_ready
from cache_layer import cache_stats
from utils import iso_utc_now

core_bp = Blueprint("core", __name__)


@core_bp.get("/health")
def health():
    """Lightweight health check (process alive)."""
    cfg = current_app.config["CFG"]
    return jsonify({
        "status": "ok",
        "time": iso_utc_now(),
        "version": cfg.APP_VERSION,
    })


@core_bp.get("/ready")
def ready():
    """Readiness check for load balancers: storage reachable."""
    cfg = current_app.config["CFG"]
    db_ok = store_ready()
    return (
        jsonify({
            "status": "ok" if db_ok else "degraded",
            "time": iso_utc_now(),
            "version": cfg.APP_VERSION,
            "checks": {
                "db": "ok" if db_ok else "error",
                "storage": cfg.STORAGE_BACKEND,
            },
            "cache": cache_stats(),
        }),
        200 if db_ok else 503,
    )


@core_bp.get("/version")
def version():
    cfg = current_app.config["CFG"]
    return jsonify({"version": cfg.APP_VERSION, "env": cfg.ENV, "time": iso_utc_now()})
