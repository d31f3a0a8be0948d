from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from app.ngoadmin import create_app
from app.ngoadmin.auth import reset_rate_limits
from app.ngoadmin.db import session_scope
from app.ngoadmin.models import Base, Permission, Role, RoleSection, User
from app.ngoadmin.modules.communities.models import Community
from app.ngoadmin.modules.communities.service import community_stats, validate_community_payload


def test_minimal_payload_is_valid():
    assert validate_community_payload({"department": "Chimaltenango", "municipality": "Tecpán"}) == []


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"municipality": "Tecpán"}, "El departamento es requerido."),
        ({"department": "X", "municipality": "Y", "status": "cerrada"}, "Estado inválido"),
        ({"department": "X", "municipality": "Y", "status": "inactiva"}, "Indique el motivo cuando la comunidad no está activa."),
        ({"department": "X", "municipality": "Y", "classification": "Enorme"}, "Clasificación inválida"),
        ({"department": "X", "municipality": "Y", "leader_phone": "123"}, "El teléfono del líder debe tener 8 dígitos."),
        ({"department": "X", "municipality": "Y", "registration_date": "ayer"}, "Fecha de registro inválida (AAAA-MM-DD)."),
        ({"department": "X", "municipality": "Y", "total_families": "-3"}, "Total de familias debe ser un número entero positivo."),
        (
            {"department": "X", "municipality": "Y", "total_families": "10", "families_in_ra": "11"},
            "Las familias en RA no pueden superar el total de familias.",
        ),
    ],
)
def test_validation_errors(payload, message):
    errors = validate_community_payload(payload)
    assert any(e.startswith(message) for e in errors), errors


def test_stats():
    rows = [
        SimpleNamespace(status="activa", department="Sololá", classification="Grande", total_families=100,
                        families_in_ra=30, is_in_leaders_group=True),
        SimpleNamespace(status="activa", department="Sololá", classification=None, total_families=None,
                        families_in_ra=None, is_in_leaders_group=False),
        SimpleNamespace(status="suspendida", department="Quiché", classification="Pequeña", total_families=50,
                        families_in_ra=20, is_in_leaders_group=True),
    ]
    stats = community_stats(rows)
    assert stats["total"] == 3
    assert (stats["active"], stats["inactive"], stats["suspended"]) == (2, 0, 1)
    assert stats["by_department"][0] == {"department": "Sololá", "count": 2}
    assert stats["total_families"] == 150
    assert stats["families_in_ra"] == 50
    assert stats["families_in_ra_pct"] == 33.3
    assert stats["in_leaders_group"] == 2


def test_stats_empty():
    stats = community_stats([])
    assert stats["total"] == 0
    assert stats["families_in_ra_pct"] == 0.0


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
        perms = [Permission(key=k, name=k) for k in ("forms.read", "forms.create", "forms.update")]
        editor = Role(key="editor", name="Editor", permissions=perms)
        # Reaches the same list through the PIMCO section only.
        editor.sections.append(RoleSection(section_key="pimco-comunidades"))
        editor.sections.append(RoleSection(section_key="pimco-estadistica"))
        s.add_all([*perms, editor])
        s.flush()
        s.add(User(email="editor@example.com", password_hash=generate_password_hash("pw"), role_id=editor.id))
    return app


@pytest.fixture()
def client(app):
    c = app.test_client()
    r = c.post("/auth/login", data={"email": "editor@example.com", "password": "pw"})
    assert r.status_code == 302
    with c.session_transaction() as sess:
        sess["csrf_token"] = "t"
    return c


def test_pimco_grant_opens_shared_list(client):
    assert client.get("/admin/communities").status_code == 200
    assert client.get("/admin/communities?section=comunidades-lista").status_code == 403


def test_create_and_edit_community(app, client):
    r = client.post(
        "/admin/communities/new",
        data={
            "csrf_token": "t",
            "department": "Chimaltenango",
            "municipality": "Tecpán Guatemala",
            "leader_phone": "4444-0000",
            "status": "activa",
            "total_families": "40",
            "families_in_ra": "12",
        },
    )
    assert r.status_code == 302
    assert "section=pimco-comunidades" in r.headers["Location"]

    with session_scope(app) as s:
        c = s.query(Community).one()
        assert c.leader_phone == "44440000"
        assert c.families_in_ra == 12
        c_id = c.id

    r = client.post(
        f"/admin/communities/{c_id}/edit",
        data={
            "csrf_token": "t",
            "department": "Chimaltenango",
            "municipality": "Tecpán Guatemala",
            "status": "suspendida",
            "inactive_reason": "Acceso bloqueado por lluvias",
        },
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        c = s.get(Community, c_id)
        assert c.status == "suspendida"
        assert c.inactive_reason == "Acceso bloqueado por lluvias"

    html = client.get("/admin/communities/stats").get_data(as_text=True)
    assert "Chimaltenango" in html


def test_stats_section_enabled_once_data_exists(app, client):
    html = client.get("/admin/me").get_data(as_text=True)
    assert 'href="/admin/s/pimco-estadistica"' not in html

    with session_scope(app) as s:
        s.add(Community(department="Sololá", municipality="Panajachel", status="activa"))

    html = client.get("/admin/me").get_data(as_text=True)
    assert 'href="/admin/s/pimco-estadistica"' in html


def test_actions_follow_role_capabilities(app, client):
    with session_scope(app) as s:
        c = Community(department="Sololá", municipality="Panajachel", status="activa")
        s.add(c)
        s.flush()
        c_id = c.id

    html = client.get("/admin/communities").get_data(as_text=True)
    assert "Nueva comunidad" in html
    assert ">Editar</a>" in html
    assert "Eliminar" not in html

    r = client.post(f"/admin/communities/{c_id}/delete", data={"csrf_token": "t"})
    assert r.status_code == 403
    with session_scope(app) as s:
        assert s.get(Community, c_id).deleted_at is None
