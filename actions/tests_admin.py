from __future__ import annotations

from typing import Any

from actions.helpers import append_audit, invalidate_org_stats, optional_str, org_of, require_id, require_str
from utils import ApiError, AuthContext, as_int


def _validated_test_fields(data: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    src = data or {}
    out: dict[str, Any] = {}

    if not partial or "name" in src:
        out["name"] = require_str(src, "name", max_len=200)
    if "description" in src:
        out["description"] = optional_str(src, "description")

    if "timeLimit" in src:
        raw = src.get("timeLimit")
        if raw is None or raw == "":
            out["timeLimit"] = None
        else:
            minutes = as_int(raw)
            if minutes is None or minutes <= 0:
                raise ApiError("BAD_REQUEST", "timeLimit must be a positive number of minutes")
            out["timeLimit"] = minutes

    if "isActive" in src:
        if not isinstance(src.get("isActive"), bool):
            raise ApiError("BAD_REQUEST", "isActive must be a boolean")
        out["isActive"] = src["isActive"]

    if "passingScore" in src and src.get("passingScore") is not None:
        score = as_int(src.get("passingScore"))
        if score is None or not 0 <= score <= 100:
            raise ApiError("BAD_REQUEST", "passingScore must be between 0 and 100")
        out["passingScore"] = score

    return out


def _with_question_count(store, org_id: int, test: dict[str, Any]) -> dict[str, Any]:
    return {**test, "questionCount": len(store.get_questions_by_test_id(org_id, test["id"]))}


def tests_list(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    items = store.get_all_tests(org_id)
    if (data or {}).get("activeOnly") is True:
        items = [t for t in items if t.get("isActive")]
    return {"items": [_with_question_count(store, org_id, t) for t in items]}


def test_get(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    test_id = require_id(data, "testId")
    test = store.get_test(org_id, test_id)
    if not test:
        raise ApiError("NOT_FOUND", "Test not found")
    return {"test": test, "questions": store.get_questions_by_test_id(org_id, test_id)}


def test_create(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    fields = _validated_test_fields(data, partial=False)
    fields.setdefault("passingScore", cfg.DEFAULT_PASSING_SCORE)
    fields["createdBy"] = auth.userId

    test = store.create_test(org_id, fields)
    invalidate_org_stats(org_id)
    append_audit(store, auth=auth, entityType="TEST", entityId=test["id"], action="TEST_CREATE", meta={"name": test["name"]})
    return test


def test_update(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    test_id = require_id(data, "testId")
    fields = _validated_test_fields(data, partial=True)

    test = store.update_test(org_id, test_id, fields)
    if not test:
        raise ApiError("NOT_FOUND", "Test not found")
    if "isActive" in fields:
        invalidate_org_stats(org_id)
    append_audit(store, auth=auth, entityType="TEST", entityId=test_id, action="TEST_UPDATE", meta=fields)
    return test


def test_delete(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    test_id = require_id(data, "testId")
    if store.get_test_sessions_by_test_id(org_id, test_id):
        raise ApiError("CONFLICT", "Test has sessions; deactivate it instead")
    if not store.delete_test(org_id, test_id):
        raise ApiError("NOT_FOUND", "Test not found")

    invalidate_org_stats(org_id)
    append_audit(store, auth=auth, entityType="TEST", entityId=test_id, action="TEST_DELETE")
    return {"deleted": True, "testId": test_id}
