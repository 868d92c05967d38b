from __future__ import annotations

from flask import Flask, current_app, request

from utils import ApiError, SimpleRateLimiter


def init_rate_limiting(app: Flask) -> None:
    cfg = app.config["CFG"]
    app.extensions["login_limiter"] = SimpleRateLimiter(cfg.LOGIN_RATE_LIMIT_PER_MINUTE, 60)


def client_ip() -> str:
    forwarded = str(request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    return forwarded or str(request.remote_addr or "")


def enforce_login_rate_limit(action: str) -> None:
    limiter: SimpleRateLimiter = current_app.extensions["login_limiter"]
    if not limiter.allow(f"{client_ip()}:{action}"):
        raise ApiError("RATE_LIMITED", "Too many attempts, try again in a minute")
