from __future__ import annotations

from actions.helpers import append_audit, invalidate_org_stats, looks_like_email, optional_str, org_of, require_id, require_str
from utils import ApiError, AuthContext


def candidates_list(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    items = store.get_all_candidates(org_id)
    q = str((data or {}).get("search") or "").strip().lower()
    if q:
        items = [c for c in items if q in (c.get("name") or "").lower() or q in (c.get("email") or "")]
    return {"items": items}


def candidate_get(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    candidate_id = require_id(data, "candidateId")
    candidate = store.get_candidate(org_id, candidate_id)
    if not candidate:
        raise ApiError("NOT_FOUND", "Candidate not found")
    return {"candidate": candidate, "sessions": store.get_test_sessions_by_candidate_id(org_id, candidate_id)}


def candidate_create(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    name = require_str(data, "name", max_len=200)
    email = require_str(data, "email", max_len=254).lower()
    if not looks_like_email(email):
        raise ApiError("BAD_REQUEST", "Invalid email")

    if store.get_candidate_by_email(org_id, email):
        raise ApiError("CONFLICT", "Candidate with this email already exists")

    candidate = store.create_candidate(
        org_id,
        {"name": name, "email": email, "position": optional_str(data, "position")},
    )
    invalidate_org_stats(org_id)
    append_audit(store, auth=auth, entityType="CANDIDATE", entityId=candidate["id"], action="CANDIDATE_CREATE")
    return candidate
