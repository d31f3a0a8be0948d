import io
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from openpyxl import load_workbook
from werkzeug.security import generate_password_hash

from app.ngoadmin import create_app
from app.ngoadmin.auth import reset_rate_limits
from app.ngoadmin.db import session_scope
from app.ngoadmin.models import Base, Permission, Role, RoleSection, User
from app.ngoadmin.modules.volunteers.models import Volunteer
from app.ngoadmin.modules.volunteers.service import parse_hours, validate_volunteer_payload, volunteer_stats

TODAY = date(2025, 6, 1)


def _payload(**overrides):
    payload = {
        "name": "Carlos Pérez",
        "volunteer_type": "Agrícola",
        "organization": "Colegio San José",
        "shift": "Mañana",
        "work_date": "2025-05-30",
        "hours": "4.5",
        "phone": "",
    }
    payload.update(overrides)
    return payload


def test_valid_payload():
    assert validate_volunteer_payload(_payload(), today=TODAY) == []


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"name": "Jo"}, "El nombre debe tener al menos 3 caracteres."),
        ({"volunteer_type": "Cocina"}, "Tipo inválido"),
        ({"shift": "Noche"}, "Jornada inválida"),
        ({"work_date": ""}, "La fecha de trabajo es requerida (AAAA-MM-DD)."),
        ({"work_date": "2025-06-02"}, "La fecha de trabajo no puede ser futura."),
        ({"hours": "25"}, "Las horas deben estar entre 0 y 24."),
        ({"hours": "mucho"}, "Las horas deben ser un número."),
        ({"phone": "99"}, "El teléfono debe tener 8 dígitos."),
    ],
)
def test_validation_errors(overrides, message):
    errors = validate_volunteer_payload(_payload(**overrides), today=TODAY)
    assert any(e.startswith(message) for e in errors), errors


def test_parse_hours_accepts_comma():
    assert parse_hours("7,25") == Decimal("7.25")
    assert parse_hours(" ") is None


def test_stats():
    rows = [
        SimpleNamespace(name="Ana", is_active=True, volunteer_type="Agrícola", organization=None, shift="Mañana", hours=Decimal("4")),
        SimpleNamespace(name="ana ", is_active=True, volunteer_type="Picking", organization="ONG X", shift="Tarde", hours=Decimal("3.5")),
        SimpleNamespace(name="Luis", is_active=False, volunteer_type="Agrícola", organization="ONG X", shift="Mañana", hours=Decimal("1")),
    ]
    stats = volunteer_stats(rows)
    assert stats["total"] == 3
    assert stats["active"] == 2
    assert stats["by_type"] == {"Agrícola": 2, "Picking": 1}
    assert stats["by_organization"] == {"Sin organización": 1, "ONG X": 2}
    assert stats["unique_names"] == 2
    assert stats["total_hours"] == Decimal("8.5")
    assert stats["average_hours"] == Decimal("2.83")


def test_stats_empty():
    stats = volunteer_stats([])
    assert stats["total"] == 0
    assert stats["average_hours"] == Decimal("0")


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
            for k in ("forms.read", "forms.create", "forms.update", "forms.delete", "submissions.export")
        ]
        editor = Role(key="editor", name="Editor", permissions=perms)
        editor.sections.append(RoleSection(section_key="voluntariado-tablero"))
        viewer = Role(key="viewer", name="Visualizador", permissions=perms[:1])
        viewer.sections.append(RoleSection(section_key="voluntariado-estadistica"))
        s.add_all([*perms, editor, viewer])
        s.flush()
        s.add_all(
            [
                User(email="editor@example.com", password_hash=generate_password_hash("pw"), role_id=editor.id),
                User(email="viewer@example.com", password_hash=generate_password_hash("pw"), role_id=viewer.id),
            ]
        )
    return app


def _client(app, email):
    c = app.test_client()
    r = c.post("/auth/login", data={"email": email, "password": "pw"})
    assert r.status_code == 302
    with c.session_transaction() as sess:
        sess["csrf_token"] = "t"
    return c


def _seed(app):
    with session_scope(app) as s:
        s.add_all(
            [
                Volunteer(name="Ana Gómez", volunteer_type="Agrícola", organization="ONG X", shift="Mañana",
                          work_date=date(2025, 3, 10), hours=Decimal("4")),
                Volunteer(name="Luis Ramírez", volunteer_type="Picking", organization=None, shift="Tarde",
                          work_date=date(2024, 11, 2), hours=Decimal("6.5")),
            ]
        )


def test_board_lists_and_filters(app):
    _seed(app)
    client = _client(app, "editor@example.com")

    html = client.get("/admin/volunteers").get_data(as_text=True)
    assert "Ana Gómez" in html and "Luis Ramírez" in html

    html = client.get("/admin/volunteers?year=2025").get_data(as_text=True)
    assert "Ana Gómez" in html and "Luis Ramírez" not in html

    html = client.get("/admin/volunteers?volunteer_type=Picking").get_data(as_text=True)
    assert "Ana Gómez" not in html and "Luis Ramírez" in html


def test_export(app):
    _seed(app)
    client = _client(app, "editor@example.com")
    r = client.get("/admin/volunteers/export")
    assert r.status_code == 200
    assert "voluntariado_" in r.headers["Content-Disposition"]
    ws = load_workbook(io.BytesIO(r.data)).active
    rows = list(ws.iter_rows(min_row=2, values_only=True))
    assert [row[0] for row in rows] == ["Ana Gómez", "Luis Ramírez"]
    assert rows[1][5] == 6.5


def test_create_edit_delete(app):
    client = _client(app, "editor@example.com")
    data = _payload(work_date="2025-01-10", csrf_token="t", is_active="1")
    r = client.post("/admin/volunteers/new", data=data)
    assert r.status_code == 302

    with session_scope(app) as s:
        v = s.query(Volunteer).one()
        assert v.hours == Decimal("4.5")
        v_id = v.id

    data.update(hours="8", shift="Día completo")
    assert client.post(f"/admin/volunteers/{v_id}/edit", data=data).status_code == 302
    with session_scope(app) as s:
        v = s.get(Volunteer, v_id)
        assert v.shift == "Día completo"
        assert v.hours == Decimal("8")

    assert client.post(f"/admin/volunteers/{v_id}/delete", data={"csrf_token": "t"}).status_code == 302
    assert client.get(f"/admin/volunteers/{v_id}/edit").status_code == 404


def test_future_date_rejected_on_create(app):
    client = _client(app, "editor@example.com")
    r = client.post("/admin/volunteers/new", data=_payload(work_date="2999-01-01", csrf_token="t"))
    assert r.status_code == 400
    with session_scope(app) as s:
        assert s.query(Volunteer).count() == 0


def test_viewer_sees_stats_but_not_board(app):
    _seed(app)
    client = _client(app, "viewer@example.com")
    r = client.get("/admin/volunteers/stats")
    assert r.status_code == 200
    assert "ONG X" in r.get_data(as_text=True)
    assert client.get("/admin/volunteers").status_code == 403
    assert client.get("/admin/volunteers/export").status_code == 403
