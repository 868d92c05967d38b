from __future__ import annotations

from typing import Any, Optional

from flask import g, has_request_context

from cache_layer import invalidate
from storage.base import Storage
from utils import ApiError, AuthContext, as_int, iso_utc_now, new_uuid, redact_for_audit


STATS_CACHE_NAMESPACE = "STATS"


def org_of(auth: AuthContext | None) -> int:
    if not auth or not auth.valid or auth.organizationId is None:
        raise ApiError("AUTH_INVALID", "Login required")
    return int(auth.organizationId)


def require_id(data: dict[str, Any], key: str, label: str | None = None) -> int:
    value = as_int((data or {}).get(key))
    if value is None or value <= 0:
        raise ApiError("BAD_REQUEST", f"Missing or invalid {label or key}")
    return value


def require_str(data: dict[str, Any], key: str, label: str | None = None, *, max_len: int = 500) -> str:
    value = (data or {}).get(key)
    s = str(value).strip() if isinstance(value, str) else ""
    if not s:
        raise ApiError("BAD_REQUEST", f"Missing {label or key}")
    if len(s) > max_len:
        raise ApiError("BAD_REQUEST", f"{label or key} is too long")
    return s


def optional_str(data: dict[str, Any], key: str) -> Optional[str]:
    value = (data or {}).get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ApiError("BAD_REQUEST", f"{key} must be a string")
    return value.strip() or None


def looks_like_email(value: str) -> bool:
    local, _, domain = str(value or "").partition("@")
    return bool(local) and "." in domain and not domain.startswith(".") and not domain.endswith(".")


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in user.items() if k != "passwordHash"}


def invalidate_org_stats(org_id: Any) -> None:
    """
    Drop the cached dashboard counts of an organization.

    Inside a request the drop is deferred to flush_stats_invalidations(),
    which the API handler calls after commit, so a concurrent reader cannot
    re-cache the pre-commit counts.
    """
    if has_request_context():
        g.setdefault("stale_stats_orgs", set()).add(int(org_id))
        return
    invalidate(STATS_CACHE_NAMESPACE, int(org_id))


def flush_stats_invalidations() -> None:
    for org_id in g.pop("stale_stats_orgs", set()):
        invalidate(STATS_CACHE_NAMESPACE, org_id)


def discard_stats_invalidations() -> None:
    g.pop("stale_stats_orgs", None)


def append_audit(
    store: Storage,
    *,
    auth: AuthContext | None,
    entityType: str,
    entityId: Any,
    action: str,
    meta: dict[str, Any] | None = None,
    organizationId: Any = None,
) -> None:
    org_id = organizationId if organizationId is not None else (auth.organizationId if auth else None)
    store.append_audit(
        org_id,
        {
            "logId": f"LOG-{new_uuid()}",
            "entityType": entityType,
            "entityId": str(entityId if entityId is not None else ""),
            "action": action,
            "actorUserId": str(auth.userId) if auth and auth.valid else "PUBLIC",
            "actorRole": str(auth.role) if auth and auth.valid else "PUBLIC",
            "at": iso_utc_now(),
            "correlationId": str(getattr(g, "request_id", "") or "") if has_request_context() else "",
            "meta": redact_for_audit(meta or {}),
        },
    )
