from __future__ import annotations

import json

import pytest

import db
from app import create_app
from cache_layer import cache_clear
from config import Config
from storage import MemStorage, SqlStorage


STRONG_PASSWORD = "Password1!"


def _test_config(**overrides) -> Config:
    base = dict(
        ENV="test",
        LOG_LEVEL="WARNING",
        DATABASE_URL="sqlite://",
        STORAGE_BACKEND="sql",
        CORS_ORIGINS=["http://localhost"],
        PUBLIC_BASE_URL="http://testserver",
        LOGIN_RATE_LIMIT_PER_MINUTE=1000,
    )
    base.update(overrides)
    return Config(**base)


@pytest.fixture(autouse=True)
def _clear_cache():
    cache_clear()
    yield
    cache_clear()


@pytest.fixture
def app_client():
    app = create_app(_test_config())
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield app, client
    db.drop_all()


@pytest.fixture
def mem_app_client():
    app = create_app(_test_config(STORAGE_BACKEND="memory"))
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield app, client


@pytest.fixture
def make_app():
    """Factory for apps with config overrides (e.g. a tight rate limit)."""
    created = []

    def _make(**overrides):
        app = create_app(_test_config(**overrides))
        app.config["TESTING"] = True
        created.append(app)
        return app

    yield _make
    if any(a.config["CFG"].STORAGE_BACKEND == "sql" for a in created):
        db.drop_all()


@pytest.fixture
def mem_store():
    return MemStorage()


@pytest.fixture
def sql_store(tmp_path):
    # File-backed so that separate sessions get separate connections.
    db.init_engine(f"sqlite:///{tmp_path / 'store.db'}")
    store = SqlStorage(db.SessionLocal())
    yield store
    store.close()
    db.drop_all()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Both backends behind the same interface."""
    if request.param == "memory":
        return request.getfixturevalue("mem_store")
    return request.getfixturevalue("sql_store")


def api_call(client, action: str, data: dict | None = None, token: str | None = None):
    payload = {"action": action, "token": token, "data": data or {}}
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def register_org(client, suffix: str) -> dict:
    res = api_call(
        client,
        "SELF_REGISTER",
        {
            "organizationName": f"Org {suffix}",
            "username": f"admin_{suffix}",
            "email": f"admin_{suffix}@example.com",
            "fullName": f"Admin {suffix}",
            "password": STRONG_PASSWORD,
        },
    )
    body = res.get_json()
    assert res.status_code == 200, body
    return body["data"]
