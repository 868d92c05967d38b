from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, g, request
from sqlalchemy.exc import IntegrityError

from actions import HANDLERS, dispatch
from actions.helpers import discard_stats_invalidations, flush_stats_invalidations
from app.middlewares.rate_limit import enforce_login_rate_limit
from app.store import open_store
from auth import assert_permission, is_public_action, role_or_public, validate_session_token
from utils import ApiError, AuthContext, err, ok, parse_json_body


api_bp = Blueprint("api", __name__)

log = logging.getLogger("api")

RATE_LIMITED_ACTIONS = {"LOGIN", "SELF_REGISTER"}


def _header_token() -> str:
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return str(request.headers.get("X-Session-Token") or "").strip()


def handle_action(action: str, data: Any, token: Any):
    """Runs one action in its own unit of work and returns (envelope, status)."""
    cfg = current_app.config["CFG"]
    action_u = str(action or "").upper().strip()
    store = None
    auth_ctx: AuthContext | None = None

    try:
        if not action_u:
            raise ApiError("BAD_REQUEST", "Missing action")
        if action_u not in HANDLERS:
            raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
        if action_u in RATE_LIMITED_ACTIONS:
            enforce_login_rate_limit(action_u)

        store = open_store()
        g.session_token = token if isinstance(token, str) else ""

        if not is_public_action(action_u):
            auth_ctx = validate_session_token(store, token)
            if not auth_ctx.valid:
                raise ApiError("AUTH_INVALID", "Invalid or expired session")

        assert_permission(role_or_public(auth_ctx), action_u)

        out = dispatch(action_u, data, auth_ctx, store, cfg)
        store.commit()
        flush_stats_invalidations()

        log.info(
            "action=%s user=%s role=%s org=%s",
            action_u,
            auth_ctx.userId if auth_ctx else "PUBLIC",
            auth_ctx.role if auth_ctx else "PUBLIC",
            auth_ctx.organizationId if auth_ctx else "-",
        )
        return ok(out)
    except ApiError as e:
        if store is not None:
            store.rollback()
        log.info("action=%s rejected code=%s message=%s", action_u, e.code, e.message)
        return err(e.code, e.message, http_status=e.http_status)
    except IntegrityError:
        if store is not None:
            store.rollback()
        log.warning("action=%s integrity conflict", action_u)
        return err("CONFLICT", "Conflicting record already exists", http_status=409)
    except Exception:
        if store is not None:
            store.rollback()
        log.exception("action=%s failed", action_u)
        request_id = str(getattr(g, "request_id", "") or "")
        msg = f"Unexpected error (requestId: {request_id})" if request_id else "Unexpected error"
        return err("INTERNAL", msg, http_status=500)
    finally:
        discard_stats_invalidations()
        if store is not None:
            store.close()


@api_bp.post("/api")
def api_route():
    try:
        body = parse_json_body(request.get_data(as_text=True))
    except ApiError as e:
        return err(e.code, e.message, http_status=e.http_status)

    token = body.get("token") or _header_token()
    return handle_action(body.get("action"), body.get("data"), token)


# REST shims for the candidate test page. The session token in the path is the
# only credential these need.


@api_bp.get("/api/sessions/token/<token>")
def rest_session_by_token(token: str):
    return handle_action("TEST_SESSION_GET", {"token": token}, None)


@api_bp.post("/api/sessions/<token>/start")
def rest_session_start(token: str):
    return handle_action("TEST_SESSION_START", {"token": token}, None)


@api_bp.post("/api/sessions/<token>/submit")
def rest_session_submit(token: str):
    body = request.get_json(silent=True)
    answers = body.get("answers") if isinstance(body, dict) else None
    return handle_action("TEST_SESSION_SUBMIT", {"token": token, "answers": answers}, None)
