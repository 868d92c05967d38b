from __future__ import annotations

from typing import Any

from actions.helpers import append_audit, org_of, require_id, require_str
from services.grader import QUESTION_TYPES, UNRESOLVED_INDEX, resolve_option_index
from storage import SESSION_PENDING
from utils import ApiError, AuthContext, as_int


CHOICE_TYPES = {"multiple_choice", "checkbox"}


def _clean_options(raw: Any) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(o, str) for o in raw):
        raise ApiError("BAD_REQUEST", "options must be a list of strings")
    options = [o.strip() for o in raw]
    if any(not o for o in options):
        raise ApiError("BAD_REQUEST", "options must not be empty")
    if len(set(options)) != len(options):
        raise ApiError("BAD_REQUEST", "options must be unique")
    return options


def _clean_correct_answer(qtype: str, options: list[str], raw: Any) -> Any:
    """Stored form: index for multiple_choice, sorted indices for checkbox, string otherwise."""
    if qtype == "multiple_choice":
        idx = resolve_option_index(options, raw)
        if idx == UNRESOLVED_INDEX:
            raise ApiError("BAD_REQUEST", "correctAnswer must name one of the options")
        return idx
    if qtype == "checkbox":
        if not isinstance(raw, list) or not raw:
            raise ApiError("BAD_REQUEST", "correctAnswer must be a non-empty list of options")
        indices = {resolve_option_index(options, v) for v in raw}
        if UNRESOLVED_INDEX in indices:
            raise ApiError("BAD_REQUEST", "correctAnswer must only name existing options")
        return sorted(indices)
    if not isinstance(raw, str) or not raw.strip():
        raise ApiError("BAD_REQUEST", "correctAnswer must be a non-empty string")
    return raw


def ensure_questions_editable(store, org_id: int, test_id: int) -> None:
    """Question edits would change scores already shown for taken sessions."""
    taken = [s for s in store.get_test_sessions_by_test_id(org_id, test_id) if s.get("status") != SESSION_PENDING]
    if taken:
        raise ApiError("CONFLICT", "Test already has started or completed sessions; create a new test instead")


def validate_question(merged: dict[str, Any]) -> dict[str, Any]:
    """Full validation of a question as it will be stored."""
    content = require_str(merged, "content", max_len=20_000)

    qtype = str(merged.get("type") or "multiple_choice").strip().lower()
    if qtype not in QUESTION_TYPES:
        raise ApiError("BAD_REQUEST", f"Unsupported question type: {qtype}")

    options = _clean_options(merged.get("options"))
    if qtype in CHOICE_TYPES and len(options) < 2:
        raise ApiError("BAD_REQUEST", "Choice questions need at least two options")
    if qtype not in CHOICE_TYPES:
        options = []

    points = merged.get("points")
    points = 1 if points is None else as_int(points)
    if points is None or points <= 0:
        raise ApiError("BAD_REQUEST", "points must be a positive integer")

    out = {
        "content": content,
        "type": qtype,
        "options": options,
        "correctAnswer": _clean_correct_answer(qtype, options, merged.get("correctAnswer")),
        "points": points,
    }
    return out


def questions_list(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    test_id = require_id(data, "testId")
    if not store.get_test(org_id, test_id):
        raise ApiError("NOT_FOUND", "Test not found")
    return {"items": store.get_questions_by_test_id(org_id, test_id)}


def question_create(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    test_id = require_id(data, "testId")
    fields = validate_question(data or {})
    ensure_questions_editable(store, org_id, test_id)

    question = store.create_question(org_id, test_id, fields)
    if not question:
        raise ApiError("NOT_FOUND", "Test not found")
    append_audit(store, auth=auth, entityType="QUESTION", entityId=question["id"], action="QUESTION_CREATE", meta={"testId": test_id})
    return question


def question_update(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    question_id = require_id(data, "questionId")
    current = store.get_question(org_id, question_id)
    if not current:
        raise ApiError("NOT_FOUND", "Question not found")

    patch = {k: v for k, v in (data or {}).items() if k in ("content", "type", "options", "correctAnswer", "points")}
    fields = validate_question({**current, **patch})
    ensure_questions_editable(store, org_id, current["testId"])

    question = store.update_question(org_id, question_id, fields)
    if not question:
        raise ApiError("NOT_FOUND", "Question not found")
    append_audit(store, auth=auth, entityType="QUESTION", entityId=question_id, action="QUESTION_UPDATE", meta={"fields": sorted(patch)})
    return question


def question_delete(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    question_id = require_id(data, "questionId")
    current = store.get_question(org_id, question_id)
    if current:
        ensure_questions_editable(store, org_id, current["testId"])
    if not current or not store.delete_question(org_id, question_id):
        raise ApiError("NOT_FOUND", "Question not found")

    # Keep positions contiguous after a removal.
    remaining = [q["id"] for q in store.get_questions_by_test_id(org_id, current["testId"])]
    store.reorder_questions(org_id, current["testId"], remaining)

    append_audit(store, auth=auth, entityType="QUESTION", entityId=question_id, action="QUESTION_DELETE", meta={"testId": current["testId"]})
    return {"deleted": True, "questionId": question_id}


def questions_reorder(data, auth: AuthContext | None, store, cfg):
    org_id = org_of(auth)
    test_id = require_id(data, "testId")
    ordered = (data or {}).get("questionIds")
    if not isinstance(ordered, list):
        raise ApiError("BAD_REQUEST", "questionIds must be a list")
    if not store.get_test(org_id, test_id):
        raise ApiError("NOT_FOUND", "Test not found")
    if not store.reorder_questions(org_id, test_id, ordered):
        raise ApiError("BAD_REQUEST", "questionIds must list every question of the test exactly once")

    append_audit(store, auth=auth, entityType="TEST", entityId=test_id, action="QUESTIONS_REORDER", meta={"questionIds": ordered})
    return {"items": store.get_questions_by_test_id(org_id, test_id)}
