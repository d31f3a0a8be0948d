from datetime import datetime, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.ngoadmin import auth, create_app
from app.ngoadmin.auth import reset_rate_limits
from app.ngoadmin.db import session_scope
from app.ngoadmin.models import AuditEvent, Base, Role, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    reset_rate_limits()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        editor = Role(key="editor", name="Editor")
        s.add(editor)
        s.flush()
        s.add(User(email="editor@example.com", password_hash=generate_password_hash("pw"), role_id=editor.id))
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, password="pw", **extra):
    return client.post("/auth/login", data={"email": "editor@example.com", "password": password, **extra})


def test_sixth_attempt_is_refused_even_with_right_password(app, client):
    for _ in range(5):
        r = _login(client, password="wrong")
        assert r.status_code == 302

    r = _login(client)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/auth/login")
    assert client.get("/admin/").status_code == 302

    with session_scope(app) as s:
        failed = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count()
        succeeded = s.query(AuditEvent).filter(AuditEvent.action == "auth.login").count()
    assert (failed, succeeded) == (5, 0)


def test_successful_login_clears_attempts(client):
    for _ in range(4):
        _login(client, password="wrong")
    assert _login(client).status_code == 302
    assert "127.0.0.1" not in auth._login_attempts


def test_expired_attempts_are_forgotten():
    reset_rate_limits()
    auth._login_attempts["10.0.0.9"] = [datetime.utcnow() - timedelta(minutes=6)] * 5

    assert auth._check_rate_limit("10.0.0.9") is False
    assert "10.0.0.9" not in auth._login_attempts


@pytest.mark.parametrize("nxt", ["//evil.example/admin", "http://evil.example/", "admin/me"])
def test_next_only_follows_local_paths(client, nxt):
    r = _login(client, next=nxt)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/")


def test_next_local_path_is_followed(client):
    r = _login(client, next="/admin/me")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/me")
