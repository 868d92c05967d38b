from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from conftest import register_org
from db import SessionLocal
from models import TestSession
from utils import parse_datetime_maybe, to_iso_utc


def _api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def _ok(client, action: str, token: str | None, data: dict | None = None):
    res = _api(client, {"action": action, "token": token, "data": data or {}})
    body = res.get_json()
    assert res.status_code == 200, body
    assert body["ok"] is True
    return body["data"]


def _prepare_session(client, suffix: str = "a", **session_data):
    reg = register_org(client, suffix)
    token = reg["sessionToken"]
    test = _ok(client, "TEST_CREATE", token, {"name": "Math", "passingScore": 50})
    q = _ok(
        client,
        "QUESTION_CREATE",
        token,
        {"testId": test["id"], "content": "2+2?", "options": ["3", "4", "5"], "correctAnswer": 1, "points": 10},
    )
    cand = _ok(client, "CANDIDATE_CREATE", token, {"name": "Ann", "email": f"ann.{suffix}@example.com"})
    created = _ok(client, "SESSION_CREATE", token, {"testId": test["id"], "candidateId": cand["id"], **session_data})
    return {"token": token, "test": test, "question": q, "candidate": cand, **created}


def test_candidate_flow_over_rest_shims(app_client):
    _app, client = app_client
    ctx = _prepare_session(client)
    link_token = ctx["session"]["token"]
    assert ctx["testLink"] == f"http://testserver/take-test/{link_token}"

    res = client.get(f"/api/sessions/token/{link_token}")
    assert res.status_code == 200
    view = res.get_json()["data"]
    assert view["candidate"] == {"id": ctx["candidate"]["id"], "name": "Ann"}
    assert view["test"]["name"] == "Math"
    assert all("correctAnswer" not in q for q in view["questions"])

    res = client.post(f"/api/sessions/{link_token}/start")
    assert res.status_code == 200
    assert res.get_json()["data"]["session"]["status"] == "in_progress"

    res = client.post(
        f"/api/sessions/{link_token}/submit",
        json={"answers": [{"questionId": ctx["question"]["id"], "answer": 1}]},
    )
    assert res.status_code == 200
    result = res.get_json()["data"]
    assert result["score"] == 10
    assert result["totalPossibleScore"] == 10
    assert result["percentScore"] == 100
    assert result["passed"] is True
    assert result["session"]["status"] == "completed"

    res = client.post(
        f"/api/sessions/{link_token}/submit",
        json={"answers": [{"questionId": ctx["question"]["id"], "answer": 0}]},
    )
    assert res.status_code == 409
    assert res.get_json()["error"]["code"] == "CONFLICT"

    detail = _ok(client, "SESSION_DETAIL", ctx["token"], {"sessionId": ctx["session"]["id"]})
    assert detail["session"]["score"] == 10
    assert detail["questions"][0]["question"]["correctAnswer"] == 1
    assert detail["questions"][0]["answer"]["isCorrect"] is True


def test_expired_link_is_forbidden(app_client):
    _app, client = app_client
    ctx = _prepare_session(client)
    link_token = ctx["session"]["token"]

    past = to_iso_utc(datetime.now(timezone.utc) - timedelta(days=1))
    with SessionLocal() as db:
        row = db.execute(select(TestSession).where(TestSession.token == link_token)).scalar_one()
        row.expiresAt = past
        db.commit()

    for res in (
        client.get(f"/api/sessions/token/{link_token}"),
        client.post(f"/api/sessions/{link_token}/start"),
        client.post(f"/api/sessions/{link_token}/submit", json={"answers": []}),
    ):
        assert res.status_code == 403
        body = res.get_json()
        assert body["error"] == {"code": "FORBIDDEN", "message": "Test session has expired"}

    with SessionLocal() as db:
        row = db.execute(select(TestSession).where(TestSession.token == link_token)).scalar_one()
        assert row.status == "pending"


def test_unknown_link_is_not_found(app_client):
    _app, client = app_client
    res = client.get("/api/sessions/token/does-not-exist")
    assert res.status_code == 404
    assert res.get_json()["error"]["code"] == "NOT_FOUND"


def test_submit_with_foreign_question_is_rejected(app_client):
    _app, client = app_client
    ctx = _prepare_session(client)
    res = client.post(
        f"/api/sessions/{ctx['session']['token']}/submit",
        json={"answers": [{"questionId": 424242, "answer": 1}]},
    )
    assert res.status_code == 400
    assert res.get_json()["error"]["code"] == "BAD_REQUEST"

    res = client.post(f"/api/sessions/{ctx['session']['token']}/submit", json={"answers": "nope"})
    assert res.status_code == 400


def test_session_expiry_defaults_and_overrides(app_client):
    _app, client = app_client
    ctx = _prepare_session(client)
    default_exp = parse_datetime_maybe(ctx["session"]["expiresAt"])
    assert timedelta(days=6, hours=23) < default_exp - datetime.now(timezone.utc) <= timedelta(days=7)

    again = _ok(
        client,
        "SESSION_CREATE",
        ctx["token"],
        {"testId": ctx["test"]["id"], "candidateId": ctx["candidate"]["id"], "expiresInDays": 2},
    )
    exp = parse_datetime_maybe(again["session"]["expiresAt"])
    assert timedelta(days=1, hours=23) < exp - datetime.now(timezone.utc) <= timedelta(days=2)
    assert again["session"]["token"] != ctx["session"]["token"]

    res = _api(
        client,
        {
            "action": "SESSION_CREATE",
            "token": ctx["token"],
            "data": {"testId": ctx["test"]["id"], "candidateId": ctx["candidate"]["id"], "expiresAt": "2001-01-01T00:00:00Z"},
        },
    )
    assert res.status_code == 400


def test_session_create_requires_visible_test_and_candidate(app_client):
    _app, client = app_client
    a = _prepare_session(client, "a")
    b = _prepare_session(client, "b")

    res = _api(
        client,
        {"action": "SESSION_CREATE", "token": a["token"], "data": {"testId": b["test"]["id"], "candidateId": a["candidate"]["id"]}},
    )
    assert res.status_code == 404
    res = _api(
        client,
        {"action": "SESSION_CREATE", "token": a["token"], "data": {"testId": a["test"]["id"], "candidateId": b["candidate"]["id"]}},
    )
    assert res.status_code == 404


def test_session_listings_are_scoped(app_client):
    _app, client = app_client
    a = _prepare_session(client, "a")
    b = _prepare_session(client, "b")

    items = _ok(client, "SESSIONS_LIST", a["token"])["items"]
    assert [s["id"] for s in items] == [a["session"]["id"]]
    by_test = _ok(client, "SESSIONS_BY_TEST", a["token"], {"testId": a["test"]["id"]})["items"]
    assert [s["id"] for s in by_test] == [a["session"]["id"]]
    by_cand = _ok(client, "SESSIONS_BY_CANDIDATE", a["token"], {"candidateId": a["candidate"]["id"]})["items"]
    assert [s["id"] for s in by_cand] == [a["session"]["id"]]

    res = _api(client, {"action": "SESSION_DETAIL", "token": a["token"], "data": {"sessionId": b["session"]["id"]}})
    assert res.status_code == 404
    res = _api(client, {"action": "SESSIONS_BY_TEST", "token": a["token"], "data": {"testId": b["test"]["id"]}})
    assert res.status_code == 404


def test_memory_backend_serves_the_same_flow(mem_app_client):
    _app, client = mem_app_client
    ctx = _prepare_session(client)
    link_token = ctx["session"]["token"]
    res = client.post(
        f"/api/sessions/{link_token}/submit",
        json={"answers": [{"questionId": ctx["question"]["id"], "answer": "4"}]},
    )
    assert res.status_code == 200
    assert res.get_json()["data"]["passed"] is True
