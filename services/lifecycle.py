"""
Test session lifecycle: pending -> in_progress -> completed.

The candidate-facing operations are keyed by the session's access token and
run without a login. The organization is taken from the session found by the
token, and every further lookup goes through the tenant-scoped store with that
organization.

Transitions only move forward. Completion goes through the store's
conditional transition, so two concurrent submits of the same token can
never both persist answers or scores: the loser gets CONFLICT.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from services.aggregator import aggregate
from services.grader import grade
from storage.base import SESSION_COMPLETED, Record, Storage
from utils import ApiError, as_int, parse_datetime_maybe, to_iso_utc


log = logging.getLogger("assessments.lifecycle")

CANDIDATE_QUESTION_FIELDS = ("id", "content", "type", "options", "points", "order")


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def is_expired(session: Record, now: datetime) -> bool:
    expires = parse_datetime_maybe(session.get("expiresAt"))
    return expires is not None and expires < now


def load_session(store: Storage, token: Any, *, now: Optional[datetime] = None) -> Record:
    """Session for a candidate token; raises NOT_FOUND or FORBIDDEN (expired)."""
    tok = str(token or "").strip()
    if not tok:
        raise ApiError("BAD_REQUEST", "Missing token")
    session = store.get_test_session_by_token(tok)
    if not session:
        raise ApiError("NOT_FOUND", "Session not found or expired")
    if is_expired(session, _now(now)):
        raise ApiError("FORBIDDEN", "Test session has expired")
    return session


def candidate_view(store: Storage, token: Any, *, now: Optional[datetime] = None) -> dict[str, Any]:
    """What the candidate sees before and during the test. Never includes correct answers."""
    session = load_session(store, token, now=now)
    org_id = session["organizationId"]

    test = store.get_test(org_id, session["testId"])
    if not test:
        raise ApiError("NOT_FOUND", "Test not found")
    candidate = store.get_candidate(org_id, session["candidateId"])
    if not candidate:
        raise ApiError("NOT_FOUND", "Candidate not found")

    questions = [
        {k: q.get(k) for k in CANDIDATE_QUESTION_FIELDS}
        for q in store.get_questions_by_test_id(org_id, test["id"])
    ]
    return {
        "session": session,
        "test": {
            "id": test["id"],
            "name": test.get("name") or "",
            "description": test.get("description"),
            "timeLimit": test.get("timeLimit"),
        },
        "candidate": {"id": candidate["id"], "name": candidate.get("name") or ""},
        "questions": questions,
    }


def start(store: Storage, token: Any, *, now: Optional[datetime] = None) -> Record:
    current = _now(now)
    session = load_session(store, token, now=current)
    if session["status"] == SESSION_COMPLETED:
        raise ApiError("CONFLICT", "Test session already completed")

    started = store.start_test_session(session["organizationId"], session["id"], to_iso_utc(current))
    if started is None:
        # Completed between the read above and the transition.
        raise ApiError("CONFLICT", "Test session already completed")

    if session["status"] != started["status"]:
        log.info("test session started id=%s org=%s", started["id"], started["organizationId"])
    return started


def parse_answers(raw: Any, question_ids: set[int]) -> list[tuple[int, Any]]:
    """
    Validate the submitted answer list.

    Each item must be an object with an integer questionId belonging to the
    session's test; a question may be answered at most once. Any violation
    rejects the whole submission.
    """
    if not isinstance(raw, list):
        raise ApiError("BAD_REQUEST", "answers must be a list")

    out: list[tuple[int, Any]] = []
    seen: set[int] = set()
    for item in raw:
        if not isinstance(item, dict):
            raise ApiError("BAD_REQUEST", "Each answer must be an object")
        qid = as_int(item.get("questionId"))
        if qid is None:
            raise ApiError("BAD_REQUEST", "Each answer needs an integer questionId")
        if qid not in question_ids:
            raise ApiError("BAD_REQUEST", f"Question {qid} does not belong to this test")
        if qid in seen:
            raise ApiError("BAD_REQUEST", f"Question {qid} answered more than once")
        seen.add(qid)
        out.append((qid, item.get("answer")))
    return out


def submit(store: Storage, token: Any, answers: Any, *, now: Optional[datetime] = None) -> dict[str, Any]:
    current = _now(now)
    session = load_session(store, token, now=current)
    if session["status"] == SESSION_COMPLETED:
        raise ApiError("CONFLICT", "Test session already completed")

    org_id = session["organizationId"]
    test = store.get_test(org_id, session["testId"])
    if not test:
        raise ApiError("NOT_FOUND", "Test not found")
    questions = store.get_questions_by_test_id(org_id, test["id"])
    by_id = {int(q["id"]): q for q in questions}

    parsed = parse_answers(answers, set(by_id))

    graded = []
    rows = []
    for qid, raw in parsed:
        result = grade(by_id[qid], raw)
        graded.append(result)
        rows.append(
            {
                "questionId": qid,
                "answer": result.normalized_answer.to_json(),
                "answerText": result.answer_text,
                "isCorrect": result.is_correct,
                "points": result.points_awarded,
            }
        )

    summary = aggregate(test, questions, graded)
    completed = store.complete_test_session(
        org_id,
        session["id"],
        rows,
        {
            "completedAt": to_iso_utc(current),
            "score": summary.score,
            "percentScore": summary.percent_score,
            "passed": summary.passed,
        },
    )
    if completed is None:
        log.info("duplicate submit rejected id=%s org=%s", session["id"], org_id)
        raise ApiError("CONFLICT", "Test session already completed")

    log.info(
        "test session completed id=%s org=%s score=%s/%s percent=%s passed=%s",
        completed["id"],
        org_id,
        summary.score,
        summary.total_possible_score,
        summary.percent_score,
        summary.passed,
    )
    return {
        "score": summary.score,
        "totalPossibleScore": summary.total_possible_score,
        "percentScore": summary.percent_score,
        "passed": summary.passed,
        "passingThreshold": summary.passing_threshold,
        "session": completed,
    }
