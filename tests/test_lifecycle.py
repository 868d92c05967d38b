from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

import db
from services import lifecycle
from storage import SESSION_COMPLETED, SESSION_IN_PROGRESS, SESSION_PENDING, SqlStorage
from utils import ApiError, to_iso_utc


NOW = datetime(2030, 5, 1, 12, 0, tzinfo=timezone.utc)


def _setup(store, *, passing_score=50, questions=None, expires_at=None, token="tok-1"):
    org = store.create_organization({"name": "acme"})
    test = store.create_test(org["id"], {"name": "Math", "passingScore": passing_score})
    created = []
    for fields in questions or [
        {"content": "2+2?", "type": "multiple_choice", "options": ["3", "4", "5"], "correctAnswer": 1, "points": 10}
    ]:
        created.append(store.create_question(org["id"], test["id"], fields))
    cand = store.create_candidate(org["id"], {"name": "Ann", "email": "ann@example.com"})
    session = store.create_test_session(
        org["id"],
        {"testId": test["id"], "candidateId": cand["id"], "token": token, "expiresAt": expires_at},
    )
    return org, test, created, session


def _code(excinfo) -> str:
    return excinfo.value.code


def test_correct_single_answer_scores_full(store):
    _org, _test, (q,), _s = _setup(store)
    out = lifecycle.submit(store, "tok-1", [{"questionId": q["id"], "answer": 1}], now=NOW)
    assert (out["score"], out["totalPossibleScore"], out["percentScore"], out["passed"]) == (10, 10, 100, True)
    assert out["session"]["status"] == SESSION_COMPLETED


def test_wrong_single_answer_fails(store):
    _org, _test, (q,), _s = _setup(store)
    out = lifecycle.submit(store, "tok-1", [{"questionId": q["id"], "answer": 0}], now=NOW)
    assert (out["score"], out["percentScore"], out["passed"]) == (0, 0, False)


def test_omitted_question_counts_toward_total(store):
    qs = [
        {"content": "a", "options": ["x", "y"], "correctAnswer": 0, "points": 5},
        {"content": "b", "options": ["x", "y"], "correctAnswer": 1, "points": 5},
    ]
    org, _test, (q1, _q2), s = _setup(store, questions=qs)
    out = lifecycle.submit(store, "tok-1", [{"questionId": q1["id"], "answer": 0}], now=NOW)
    assert (out["score"], out["totalPossibleScore"], out["percentScore"], out["passed"]) == (5, 10, 50, True)
    assert len(store.get_candidate_answers_by_session_id(org["id"], s["id"])) == 1


def test_checkbox_set_answer_is_correct(store):
    qs = [{"content": "pick", "type": "checkbox", "options": ["a", "b", "c"], "correctAnswer": [0, 2], "points": 3}]
    org, _test, (q,), s = _setup(store, questions=qs)
    lifecycle.submit(store, "tok-1", [{"questionId": q["id"], "answer": [2, 0]}], now=NOW)
    (saved,) = store.get_candidate_answers_by_session_id(org["id"], s["id"])
    assert saved["isCorrect"] is True
    assert saved["answer"] == [0, 2]
    assert saved["answerText"] == ["a", "c"]
    assert saved["points"] == 3


def test_expired_session_rejects_start_without_change(store):
    expired = to_iso_utc(NOW - timedelta(minutes=1))
    org, _test, _qs, s = _setup(store, expires_at=expired)
    with pytest.raises(ApiError) as ei:
        lifecycle.start(store, "tok-1", now=NOW)
    assert _code(ei) == "FORBIDDEN"
    assert ei.value.http_status == 403
    after = store.get_test_session(org["id"], s["id"])
    assert after["status"] == SESSION_PENDING
    assert after["startedAt"] is None


def test_expired_session_rejects_submit_even_in_progress(store):
    expires = NOW + timedelta(hours=1)
    _org, _test, (q,), _s = _setup(store, expires_at=to_iso_utc(expires))
    lifecycle.start(store, "tok-1", now=NOW)
    with pytest.raises(ApiError) as ei:
        lifecycle.submit(store, "tok-1", [{"questionId": q["id"], "answer": 1}], now=expires + timedelta(seconds=1))
    assert _code(ei) == "FORBIDDEN"


def test_second_submit_conflicts_and_keeps_first_score(store):
    org, _test, (q,), s = _setup(store)
    first = lifecycle.submit(store, "tok-1", [{"questionId": q["id"], "answer": 1}], now=NOW)
    assert first["score"] == 10

    with pytest.raises(ApiError) as ei:
        lifecycle.submit(store, "tok-1", [{"questionId": q["id"], "answer": 0}], now=NOW + timedelta(minutes=1))
    assert _code(ei) == "CONFLICT"

    stored = store.get_test_session(org["id"], s["id"])
    assert (stored["score"], stored["percentScore"], stored["passed"]) == (10, 100, True)
    assert stored["completedAt"] == to_iso_utc(NOW)
    (saved,) = store.get_candidate_answers_by_session_id(org["id"], s["id"])
    assert saved["answer"] == 1


def test_start_transitions_and_is_idempotent_while_in_progress(store):
    _org, _test, _qs, _s = _setup(store)
    started = lifecycle.start(store, "tok-1", now=NOW)
    assert started["status"] == SESSION_IN_PROGRESS
    assert started["startedAt"] == to_iso_utc(NOW)

    again = lifecycle.start(store, "tok-1", now=NOW + timedelta(minutes=5))
    assert again["startedAt"] == to_iso_utc(NOW)


def test_start_after_completion_conflicts(store):
    _org, _test, (q,), _s = _setup(store)
    lifecycle.submit(store, "tok-1", [{"questionId": q["id"], "answer": 1}], now=NOW)
    with pytest.raises(ApiError) as ei:
        lifecycle.start(store, "tok-1", now=NOW)
    assert _code(ei) == "CONFLICT"


def test_submit_from_pending_leaves_started_at_empty(store):
    _org, _test, (q,), _s = _setup(store)
    out = lifecycle.submit(store, "tok-1", [{"questionId": q["id"], "answer": 1}], now=NOW)
    assert out["session"]["startedAt"] is None
    assert out["session"]["completedAt"] == to_iso_utc(NOW)


def test_unknown_token_is_not_found(store):
    _setup(store)
    for op in (lambda: lifecycle.start(store, "nope", now=NOW), lambda: lifecycle.submit(store, "nope", [], now=NOW)):
        with pytest.raises(ApiError) as ei:
            op()
        assert _code(ei) == "NOT_FOUND"


@pytest.mark.parametrize(
    "answers",
    [
        "not-a-list",
        [{"answer": 1}],
        [{"questionId": "x", "answer": 1}],
        [5],
        [{"questionId": 999_999, "answer": 1}],
    ],
)
def test_invalid_submission_is_rejected_whole(store, answers):
    org, _test, _qs, s = _setup(store)
    with pytest.raises(ApiError) as ei:
        lifecycle.submit(store, "tok-1", answers, now=NOW)
    assert _code(ei) == "BAD_REQUEST"
    after = store.get_test_session(org["id"], s["id"])
    assert after["status"] == SESSION_PENDING
    assert after["score"] is None
    assert store.get_candidate_answers_by_session_id(org["id"], s["id"]) == []


def test_duplicate_question_in_submission_is_rejected(store):
    org, _test, (q,), s = _setup(store)
    with pytest.raises(ApiError) as ei:
        lifecycle.submit(
            store, "tok-1", [{"questionId": q["id"], "answer": 1}, {"questionId": q["id"], "answer": 0}], now=NOW
        )
    assert _code(ei) == "BAD_REQUEST"
    assert store.get_test_session(org["id"], s["id"])["status"] == SESSION_PENDING


def test_question_of_another_test_is_rejected(store):
    org, _test, _qs, s = _setup(store)
    other = store.create_test(org["id"], {"name": "Other"})
    foreign = store.create_question(org["id"], other["id"], {"content": "?", "options": ["a", "b"], "correctAnswer": 0})
    with pytest.raises(ApiError) as ei:
        lifecycle.submit(store, "tok-1", [{"questionId": foreign["id"], "answer": 0}], now=NOW)
    assert _code(ei) == "BAD_REQUEST"


def test_candidate_view_hides_correct_answers(store):
    _org, test, (q,), _s = _setup(store)
    view = lifecycle.candidate_view(store, "tok-1", now=NOW)
    assert view["test"] == {"id": test["id"], "name": "Math", "description": None, "timeLimit": None}
    assert view["candidate"]["name"] == "Ann"
    assert view["questions"] == [
        {"id": q["id"], "content": "2+2?", "type": "multiple_choice", "options": ["3", "4", "5"], "points": 10, "order": 1}
    ]


def test_concurrent_submits_complete_exactly_once(mem_store):
    org, _test, (q,), s = _setup(mem_store)
    barrier = threading.Barrier(8)
    outcomes: list[str] = []
    lock = threading.Lock()

    def worker(answer: int):
        barrier.wait()
        try:
            lifecycle.submit(mem_store, "tok-1", [{"questionId": q["id"], "answer": answer}], now=NOW)
            result = "ok"
        except ApiError as e:
            result = e.code
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(i % 3,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("CONFLICT") == 7
    assert len(mem_store.get_candidate_answers_by_session_id(org["id"], s["id"])) == 1
    assert mem_store.get_test_session(org["id"], s["id"])["status"] == SESSION_COMPLETED


def test_concurrent_submits_complete_exactly_once_on_sql(sql_store):
    org, _test, (q,), s = _setup(sql_store)
    sql_store.commit()

    barrier = threading.Barrier(6)
    outcomes: list[str] = []
    lock = threading.Lock()

    def worker(answer: int):
        # One session per thread, as with one request per thread in the app.
        store = SqlStorage(db.SessionLocal())
        try:
            barrier.wait()
            lifecycle.submit(store, "tok-1", [{"questionId": q["id"], "answer": answer}], now=NOW)
            store.commit()
            result = "ok"
        except ApiError as e:
            store.rollback()
            result = e.code
        except Exception as e:
            store.rollback()
            result = type(e).__name__
        finally:
            store.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(i % 3,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1, outcomes
    assert outcomes.count("CONFLICT") == 5, outcomes

    check = SqlStorage(db.SessionLocal())
    try:
        assert len(check.get_candidate_answers_by_session_id(org["id"], s["id"])) == 1
        assert check.get_test_session(org["id"], s["id"])["status"] == SESSION_COMPLETED
    finally:
        check.close()
