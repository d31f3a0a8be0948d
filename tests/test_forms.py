from types import SimpleNamespace
from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.ngoadmin import create_app
from app.ngoadmin.auth import reset_rate_limits
from app.ngoadmin.db import session_scope
from app.ngoadmin.models import AuditEvent, Base, Permission, Role, User
from app.ngoadmin.modules.forms.models import FormTemplate
from app.ngoadmin.modules.forms.service import (
    filter_tab,
    slugify,
    tab_counts,
    unique_slug,
    validate_form_payload,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Diagnóstico Comunitario", "diagnostico-comunitario"),
        ("  Encuesta   de   Niñez!! ", "encuesta-de-ninez"),
        ("Auditoría -- Q1/2024", "auditoria-q12024"),
        ("¿?", ""),
    ],
)
def test_slugify(name, expected):
    assert slugify(name) == expected


def test_unique_slug_appends_timestamp():
    assert unique_slug("Censo Aldea", now_ms=1700000000000) == "censo-aldea-1700000000000"
    assert unique_slug("¡¡!!", now_ms=5) == "formulario-5"


def test_validate_form_payload():
    assert validate_form_payload({"name": "X", "section_location": "voluntariado"}) == []
    errors = validate_form_payload({"name": " ", "section_location": "otra"})
    assert "El nombre es requerido." in errors
    assert any(e.startswith("Tipo de sección inválido") for e in errors)


def test_tabs_partition_by_status():
    forms = [
        SimpleNamespace(status="active"),
        SimpleNamespace(status="active"),
        SimpleNamespace(status="inactive"),
        SimpleNamespace(status="deleted"),
    ]
    assert tab_counts(forms) == {"active": 2, "inactive": 1, "deleted": 1}
    assert len(filter_tab(forms, "deleted")) == 1
    # Unknown tab falls back to active
    assert len(filter_tab(forms, "bogus")) == 2


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
        perms = [
            Permission(key=k, name=k)
            for k in ("forms.read", "forms.create", "forms.update", "forms.delete", "users.manage")
        ]
        admin = Role(key="admin", name="Administrador", permissions=perms)
        s.add_all([*perms, admin])
        s.flush()
        s.add(User(email="admin@example.com", password_hash=generate_password_hash("pw"), role_id=admin.id))
    return app


@pytest.fixture()
def client(app):
    c = app.test_client()
    r = c.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 302
    with c.session_transaction() as sess:
        sess["csrf_token"] = "t"
    return c


def _only_form(app) -> FormTemplate:
    with session_scope(app) as s:
        return s.query(FormTemplate).one()


def test_template_lifecycle(app, client):
    r = client.post(
        "/admin/forms/templates/new?section=comunidades-plantillas",
        data={"csrf_token": "t", "name": "Censo Comunitario", "section_location": "comunidades"},
    )
    assert r.status_code == 302
    form = _only_form(app)
    assert form.slug.startswith("censo-comunitario-")
    assert form.status == "active"

    client.post(f"/admin/forms/templates/{form.id}/toggle", data={"csrf_token": "t"})
    assert _only_form(app).status == "inactive"

    client.post(f"/admin/forms/templates/{form.id}/delete", data={"csrf_token": "t"})
    assert _only_form(app).status == "deleted"

    # Deleted templates cannot be toggled back on
    client.post(f"/admin/forms/templates/{form.id}/toggle", data={"csrf_token": "t"})
    assert _only_form(app).status == "deleted"

    client.post(f"/admin/forms/templates/{form.id}/restore", data={"csrf_token": "t"})
    assert _only_form(app).status == "active"

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.action.like("form_template.%")).order_by(AuditEvent.id)]
    assert actions == [
        "form_template.create",
        "form_template.deactivate",
        "form_template.delete",
        "form_template.restore",
    ]


def test_templates_list_tabs(app, client):
    with session_scope(app) as s:
        now = datetime.utcnow()
        s.add_all(
            [
                FormTemplate(name="Censo Vigente", slug="censo-vigente-1", section_location="comunidades", created_at=now, updated_at=now),
                FormTemplate(name="Encuesta Retirada", slug="encuesta-retirada-1", section_location="comunidades", is_active=False,
                             deleted_at=now, created_at=now, updated_at=now),
            ]
        )

    html = client.get("/admin/forms/templates?section=comunidades-plantillas").get_data(as_text=True)
    assert "Censo Vigente" in html
    assert "Encuesta Retirada" not in html

    html = client.get("/admin/forms/templates?section=comunidades-plantillas&tab=deleted").get_data(as_text=True)
    assert "Encuesta Retirada" in html


def test_invalid_location_is_rejected(app, client):
    r = client.post(
        "/admin/forms/templates/new",
        data={"csrf_token": "t", "name": "X", "section_location": "nowhere"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert "Tipo de sección inválido" in r.get_data(as_text=True)
    with session_scope(app) as s:
        assert s.query(FormTemplate).count() == 0
