import pytest
from werkzeug.security import generate_password_hash

from app.ngoadmin import create_app
from app.ngoadmin.auth import reset_rate_limits
from app.ngoadmin.db import session_scope
from app.ngoadmin.models import AuditEvent, Base, Permission, Role, RoleSection, User, UserSectionPermission


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
        manage = Permission(key="users.manage", name="Usuarios: administrar")
        read = Permission(key="forms.read", name="Formularios: ver")
        admin = Role(key="admin", name="Administrador", permissions=[manage, read])
        viewer = Role(key="viewer", name="Visualizador", permissions=[read])
        viewer.sections.append(RoleSection(section_key="voluntariado-estadistica"))
        s.add_all([manage, read, admin, viewer])
        s.flush()
        s.add_all(
            [
                User(email="admin@example.com", password_hash=generate_password_hash("pw"), role_id=admin.id),
                User(email="viewer@example.com", password_hash=generate_password_hash("pw"), role_id=viewer.id),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email):
    r = client.post("/auth/login", data={"email": email, "password": "pw"})
    assert r.status_code == 302
    with client.session_transaction() as sess:
        sess["csrf_token"] = "test-token"
    return {"X-CSRF-Token": "test-token"}


def _user_id(app, email):
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one().id


def test_unauthenticated_gets_401(client):
    r = client.get("/api/user/permissions")
    assert r.status_code == 401
    assert r.json == {"error": "No autenticado"}


def test_current_user_permissions(client):
    _login(client, "viewer@example.com")
    r = client.get("/api/user/permissions")
    assert r.status_code == 200
    body = r.json
    assert body["email"] == "viewer@example.com"
    assert body["is_admin"] is False
    assert body["allowed_sections"] == ["voluntariado-estadistica"]
    assert body["permissions"] == ["forms.read"]


def test_admin_replaces_section_grants(app, client):
    headers = _login(client, "admin@example.com")
    viewer_id = _user_id(app, "viewer@example.com")

    r = client.put(
        f"/api/admin/users/{viewer_id}/section-permissions",
        json={"section_keys": ["abrazando-leyendas", "comunidades-lista", "abrazando-leyendas"]},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json == {"success": True, "user_id": viewer_id, "section_keys": ["abrazando-leyendas", "comunidades-lista"]}

    r = client.get(f"/api/admin/users/{viewer_id}/section-permissions")
    assert r.status_code == 200
    assert [p["section_key"] for p in r.json["permissions"]] == ["abrazando-leyendas", "comunidades-lista"]
    assert all(p["created_by"] == _user_id(app, "admin@example.com") for p in r.json["permissions"])

    # Replace, not merge
    r = client.put(
        f"/api/admin/users/{viewer_id}/section-permissions",
        json={"section_keys": ["pimco-estadistica"]},
        headers=headers,
    )
    assert r.status_code == 200
    with session_scope(app) as s:
        keys = [g.section_key for g in s.query(UserSectionPermission).filter_by(user_id=viewer_id)]
        assert keys == ["pimco-estadistica"]
        assert s.query(AuditEvent).filter(AuditEvent.action == "user.section_grants").count() == 2


def test_new_grants_take_effect_on_next_request(app, client):
    headers = _login(client, "admin@example.com")
    viewer_id = _user_id(app, "viewer@example.com")
    client.put(
        f"/api/admin/users/{viewer_id}/section-permissions",
        json={"section_keys": ["abrazando-leyendas"]},
        headers=headers,
    )

    other = app.test_client()
    _login(other, "viewer@example.com")
    sections = other.get("/api/user/permissions").json["allowed_sections"]
    assert sections == ["abrazando-leyendas", "voluntariado-estadistica"]


def test_unknown_section_key_rejected(app, client):
    headers = _login(client, "admin@example.com")
    viewer_id = _user_id(app, "viewer@example.com")
    r = client.put(
        f"/api/admin/users/{viewer_id}/section-permissions",
        json={"section_keys": ["comunidades-lista", "not-a-section"]},
        headers=headers,
    )
    assert r.status_code == 400
    assert "not-a-section" in r.json["error"]
    with session_scope(app) as s:
        assert s.query(UserSectionPermission).count() == 0


def test_malformed_body_rejected(app, client):
    headers = _login(client, "admin@example.com")
    viewer_id = _user_id(app, "viewer@example.com")
    r = client.put(f"/api/admin/users/{viewer_id}/section-permissions", json={"section_keys": "x"}, headers=headers)
    assert r.status_code == 400


def test_missing_csrf_token_rejected(app, client):
    _login(client, "admin@example.com")
    viewer_id = _user_id(app, "viewer@example.com")
    r = client.put(f"/api/admin/users/{viewer_id}/section-permissions", json={"section_keys": []})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]


def test_non_admin_denied(app, client):
    headers = _login(client, "viewer@example.com")
    viewer_id = _user_id(app, "viewer@example.com")
    assert client.get(f"/api/admin/users/{viewer_id}/section-permissions").status_code == 403
    r = client.put(
        f"/api/admin/users/{viewer_id}/section-permissions",
        json={"section_keys": ["admin-panel"]},
        headers=headers,
    )
    assert r.status_code == 403
    assert r.json == {"error": "Acceso denegado"}


def test_unknown_user_404(client):
    _login(client, "admin@example.com")
    assert client.get("/api/admin/users/9999/section-permissions").status_code == 404
