from __future__ import annotations

from actions.helpers import append_audit, invalidate_org_stats
from services import lifecycle
from utils import AuthContext


def test_session_get(data, auth: AuthContext | None, store, cfg):
    return lifecycle.candidate_view(store, (data or {}).get("token"))


def test_session_start(data, auth: AuthContext | None, store, cfg):
    session = lifecycle.start(store, (data or {}).get("token"))
    invalidate_org_stats(session["organizationId"])
    append_audit(
        store,
        auth=None,
        organizationId=session["organizationId"],
        entityType="TEST_SESSION",
        entityId=session["id"],
        action="TEST_SESSION_START",
    )
    return {"session": session}


def test_session_submit(data, auth: AuthContext | None, store, cfg):
    result = lifecycle.submit(store, (data or {}).get("token"), (data or {}).get("answers"))
    session = result["session"]
    invalidate_org_stats(session["organizationId"])
    append_audit(
        store,
        auth=None,
        organizationId=session["organizationId"],
        entityType="TEST_SESSION",
        entityId=session["id"],
        action="TEST_SESSION_SUBMIT",
        meta={"score": result["score"], "percentScore": result["percentScore"], "passed": result["passed"]},
    )
    return result
