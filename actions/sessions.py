from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from actions.helpers import append_audit, invalidate_org_stats, org_of, require_id
from utils import ApiError, AuthContext, as_int, new_access_token, parse_datetime_maybe, to_iso_utc


_TOKEN_ATTEMPTS = 5


def test_link(cfg, token: str) -> str:
    return f"{cfg.PUBLIC_BASE_URL}/take-test/{token}"


def resolve_expires_at(data: dict[str, Any], cfg, now: datetime) -> Optional[str]:
    """
    Explicit expiresAt wins, then expiresInDays, then the configured link TTL.
    A TTL of 0 means links never expire.
    """
    src = data or {}
    raw = src.get("expiresAt")
    if raw not in (None, ""):
        dt = parse_datetime_maybe(raw)
        if dt is None:
            raise ApiError("BAD_REQUEST", "expiresAt must be an ISO-8601 timestamp")
        if dt <= now:
            raise ApiError("BAD_REQUEST", "expiresAt must be in the future")
        return to_iso_utc(dt)

    if src.get("expiresInDays") not in (None, ""):
        days = as_int(src.get("expiresInDays"))
        if days is None or days <= 0:
            raise ApiError("BAD_REQUEST", "expiresInDays must be a positive integer")
        return to_iso_utc(now + timedelta(days=days))

    if cfg.SESSION_LINK_TTL_DAYS > 0:
        return to_iso_utc(now + timedelta(days=cfg.SESSION_LINK_TTL_DAYS))
    return None


def _unique_token(store) -> str:
    for _ in range(_TOKEN_ATTEMPTS):
        token = new_access_token()
        if not store.get_test_session_by_token(token):
            return token
    raise ApiError("INTERNAL", "Could not allocate a session token")


def session_create(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    test_id = require_id(data, "testId")
    candidate_id = require_id(data, "candidateId")

    test = store.get_test(org_id, test_id)
    if not test:
        raise ApiError("NOT_FOUND", "Test not found")
    if not test.get("isActive"):
        raise ApiError("BAD_REQUEST", "Test is not active")
    if not store.get_candidate(org_id, candidate_id):
        raise ApiError("NOT_FOUND", "Candidate not found")

    expires_at = resolve_expires_at(data, cfg, datetime.now(timezone.utc))
    session = store.create_test_session(
        org_id,
        {"testId": test_id, "candidateId": candidate_id, "token": _unique_token(store), "expiresAt": expires_at},
    )
    invalidate_org_stats(org_id)
    append_audit(
        store,
        auth=auth,
        entityType="TEST_SESSION",
        entityId=session["id"],
        action="SESSION_CREATE",
        meta={"testId": test_id, "candidateId": candidate_id, "expiresAt": expires_at},
    )
    return {"session": session, "testLink": test_link(cfg, session["token"])}


def sessions_list(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    items = store.get_all_test_sessions(org_id)
    status = str((data or {}).get("status") or "").strip().lower()
    if status:
        items = [s for s in items if s.get("status") == status]
    return {"items": items}


def sessions_by_test(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    test_id = require_id(data, "testId")
    if not store.get_test(org_id, test_id):
        raise ApiError("NOT_FOUND", "Test not found")
    return {"items": store.get_test_sessions_by_test_id(org_id, test_id)}


def sessions_by_candidate(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    candidate_id = require_id(data, "candidateId")
    if not store.get_candidate(org_id, candidate_id):
        raise ApiError("NOT_FOUND", "Candidate not found")
    return {"items": store.get_test_sessions_by_candidate_id(org_id, candidate_id)}


def session_detail(data, auth: AuthContext | None, store, cfg):
    """Staff review of one session: answers next to the questions, correct answers included."""
    org_id = org_of(auth)
    session_id = require_id(data, "sessionId")
    session = store.get_test_session(org_id, session_id)
    if not session:
        raise ApiError("NOT_FOUND", "Session not found")

    answers = {a["questionId"]: a for a in store.get_candidate_answers_by_session_id(org_id, session_id)}
    questions = []
    total = 0
    for q in store.get_questions_by_test_id(org_id, session["testId"]):
        total += as_int(q.get("points"), 0) or 0
        questions.append({"question": q, "answer": answers.get(q["id"])})

    return {
        "session": session,
        "test": store.get_test(org_id, session["testId"]),
        "candidate": store.get_candidate(org_id, session["candidateId"]),
        "questions": questions,
        "totalPossibleScore": total,
        "testLink": test_link(cfg, session["token"]),
    }
