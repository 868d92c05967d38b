from __future__ import annotations

import json

from conftest import STRONG_PASSWORD, register_org


def _api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def _login(client, username: str, password: str = STRONG_PASSWORD):
    return _api(client, {"action": "LOGIN", "token": None, "data": {"username": username, "password": password}})


def test_self_register_logs_in_as_admin(app_client):
    _app, client = app_client
    reg = register_org(client, "acme")
    assert reg["user"]["role"] == "ADMIN"
    assert "passwordHash" not in reg["user"]
    assert reg["organization"]["name"] == "Org acme"

    res = _api(client, {"action": "GET_ME", "token": reg["sessionToken"], "data": {}})
    assert res.status_code == 200
    me = res.get_json()["data"]
    assert me["user"]["username"] == "admin_acme"
    assert "USER_CREATE" in me["permissions"]["actions"]
    assert "TEST_SESSION_SUBMIT" not in me["permissions"]["actions"]


def test_self_register_rejects_duplicates_and_weak_passwords(app_client):
    _app, client = app_client
    register_org(client, "acme")

    dup = {
        "organizationName": "Other",
        "username": "admin_acme",
        "email": "someone@example.com",
        "fullName": "X",
        "password": STRONG_PASSWORD,
    }
    res = _api(client, {"action": "SELF_REGISTER", "token": None, "data": dup})
    assert res.status_code == 409
    assert "already in use" in res.get_json()["error"]["message"]

    weak = {**dup, "username": "fresh", "password": "12345678"}
    res = _api(client, {"action": "SELF_REGISTER", "token": None, "data": weak})
    assert res.status_code == 400
    assert "Password" in res.get_json()["error"]["message"]

    res = _api(client, {"action": "SELF_REGISTER", "token": None, "data": {}})
    assert res.status_code == 400


def test_login_by_username_or_email_and_logout(app_client):
    _app, client = app_client
    register_org(client, "acme")

    res = _login(client, "admin_acme")
    assert res.status_code == 200
    token = res.get_json()["data"]["sessionToken"]
    assert token.startswith("ST-")

    assert _login(client, "admin_acme@example.com").status_code == 200

    bad = _login(client, "admin_acme", "Wrong-passw0rd")
    assert bad.status_code == 401
    assert bad.get_json()["error"]["code"] == "AUTH_INVALID"

    res = _api(client, {"action": "LOGOUT", "token": token, "data": {}})
    assert res.status_code == 200
    assert res.get_json()["data"]["revoked"] is True

    res = _api(client, {"action": "GET_ME", "token": token, "data": {}})
    assert res.status_code == 401


def test_bearer_header_is_accepted(app_client):
    _app, client = app_client
    reg = register_org(client, "acme")
    res = client.post(
        "/api",
        data=json.dumps({"action": "GET_ME", "data": {}}),
        content_type="application/json",
        headers={"Authorization": f"Bearer {reg['sessionToken']}"},
    )
    assert res.status_code == 200


def test_protected_actions_require_login(app_client):
    _app, client = app_client
    res = _api(client, {"action": "TESTS_LIST", "token": None, "data": {}})
    assert res.status_code == 401
    res = _api(client, {"action": "TESTS_LIST", "token": "ST-bogus", "data": {}})
    assert res.status_code == 401


def test_unknown_action_and_bad_body(app_client):
    _app, client = app_client
    res = _api(client, {"action": "NOPE", "token": None, "data": {}})
    assert res.status_code == 400
    assert res.get_json()["error"]["code"] == "BAD_REQUEST"

    res = client.post("/api", data="{not json", content_type="text/plain")
    assert res.status_code == 400

    res = _api(client, {"action": "", "data": {}})
    assert res.status_code == 400


def test_role_permissions(app_client):
    _app, client = app_client
    admin = register_org(client, "acme")["sessionToken"]

    res = _api(
        client,
        {
            "action": "USER_CREATE",
            "token": admin,
            "data": {"username": "ivan", "email": "ivan@example.com", "password": STRONG_PASSWORD, "role": "interviewer"},
        },
    )
    assert res.status_code == 200
    assert res.get_json()["data"]["role"] == "INTERVIEWER"

    interviewer = _login(client, "ivan").get_json()["data"]["sessionToken"]
    assert _api(client, {"action": "TESTS_LIST", "token": interviewer, "data": {}}).status_code == 200

    res = _api(client, {"action": "TEST_CREATE", "token": interviewer, "data": {"name": "X"}})
    assert res.status_code == 403
    assert res.get_json()["error"]["code"] == "FORBIDDEN"
    assert _api(client, {"action": "USERS_LIST", "token": interviewer, "data": {}}).status_code == 403


def test_disabled_user_token_stops_working(app_client):
    _app, client = app_client
    admin = register_org(client, "acme")["sessionToken"]
    created = _api(
        client,
        {
            "action": "USER_CREATE",
            "token": admin,
            "data": {"username": "rita", "email": "rita@example.com", "password": STRONG_PASSWORD},
        },
    ).get_json()["data"]
    assert created["role"] == "RECRUITER"
    rita = _login(client, "rita").get_json()["data"]["sessionToken"]

    res = _api(client, {"action": "USER_UPDATE", "token": admin, "data": {"userId": created["id"], "active": False}})
    assert res.status_code == 200

    res = _api(client, {"action": "TESTS_LIST", "token": rita, "data": {}})
    assert res.status_code == 403
    assert _login(client, "rita").status_code == 403


def test_admin_cannot_disable_self(app_client):
    _app, client = app_client
    reg = register_org(client, "acme")
    res = _api(
        client,
        {"action": "USER_UPDATE", "token": reg["sessionToken"], "data": {"userId": reg["user"]["id"], "active": False}},
    )
    assert res.status_code == 400


def test_users_of_other_orgs_are_invisible(app_client):
    _app, client = app_client
    a = register_org(client, "a")
    b = register_org(client, "b")
    users = _api(client, {"action": "USERS_LIST", "token": a["sessionToken"], "data": {}}).get_json()["data"]["items"]
    assert [u["username"] for u in users] == ["admin_a"]
    res = _api(
        client,
        {"action": "USER_UPDATE", "token": a["sessionToken"], "data": {"userId": b["user"]["id"], "fullName": "pwned"}},
    )
    assert res.status_code == 404


def test_login_is_rate_limited(make_app):
    app = make_app(LOGIN_RATE_LIMIT_PER_MINUTE=3)
    with app.test_client() as client:
        codes = [_login(client, "nobody").status_code for _ in range(4)]
    assert codes == [401, 401, 401, 429]
