from __future__ import annotations

from actions.helpers import STATS_CACHE_NAMESPACE, org_of
from cache_layer import cached
from utils import AuthContext, as_int


def dashboard_stats(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    return cached(STATS_CACHE_NAMESPACE, org_id, lambda: store.get_test_stats(org_id))


def recent_activity(data, auth: AuthContext | None, store, cfg):
    limit = as_int((data or {}).get("limit"), 5) or 5
    return {"items": store.get_recent_activity(org_of(auth), limit=max(1, min(50, limit)))}


def audit_log_list(data, auth: AuthContext | None, store, cfg):
    limit = as_int((data or {}).get("limit"), 50) or 50
    return {"items": store.get_audit_log(org_of(auth), limit=max(1, min(500, limit)))}
