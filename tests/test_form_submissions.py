import io
import json

import pytest
from openpyxl import load_workbook
from werkzeug.datastructures import MultiDict
from werkzeug.security import generate_password_hash

from app.ngoadmin import create_app
from app.ngoadmin.auth import reset_rate_limits
from app.ngoadmin.db import session_scope
from app.ngoadmin.models import AuditEvent, Base, Permission, Role, RoleSection, User
from app.ngoadmin.modules.forms.models import FormQuestion, FormSubmission, FormTemplate
from app.ngoadmin.modules.forms.service import (
    add_question,
    create_form_template,
    parse_options,
    submission_counts,
    validate_answers,
    validate_question_payload,
)

ALL_PERMS = (
    "forms.read",
    "forms.create",
    "forms.update",
    "forms.delete",
    "forms.fill",
    "submissions.view_all",
    "submissions.delete",
    "submissions.export",
)


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"title": "", "question_type": "TEXT"}, "El título de la pregunta es requerido."),
        ({"title": "Edad", "question_type": "SLIDER"}, "Tipo de pregunta inválido."),
        ({"title": "Color", "question_type": "DROPDOWN", "options": "Rojo\n\nRojo"}, "Indique al menos 2 opciones, una por línea."),
        (
            {"title": "Escala", "question_type": "LINEAR_SCALE", "scale_min": "3", "scale_max": "5"},
            "La escala debe iniciar en 0 o 1 y terminar entre 2 y 10.",
        ),
        ({"title": "Estrellas", "question_type": "RATING", "scale_max": "20"}, "La calificación máxima debe estar entre 3 y 10."),
    ],
)
def test_question_payload_errors(payload, message):
    assert message in validate_question_payload(payload)


def test_question_payload_accepts_defaults():
    assert validate_question_payload({"title": "Comentarios", "question_type": "PARAGRAPH_TEXT"}) == []
    assert validate_question_payload({"title": "Nivel", "question_type": "LINEAR_SCALE"}) == []
    assert parse_options(" Sí \nNo\n\nSí") == ["Sí", "No"]


def _question(qid, question_type, title, *, required=False, config=None):
    return FormQuestion(
        id=qid,
        question_type=question_type,
        title=title,
        is_required=required,
        order_index=qid,
        config_json=json.dumps(config) if config else None,
    )


QUESTIONS = [
    _question(1, "TEXT", "Nombre", required=True),
    _question(2, "NUMBER", "Personas en el hogar"),
    _question(3, "CHECKBOX", "Servicios", config={"options": ["Agua", "Luz", "Drenaje"]}),
    _question(4, "LINEAR_SCALE", "Satisfacción", config={"min": 1, "max": 5}),
    _question(5, "YES_NO", "¿Tiene huerto?"),
    _question(6, "SECTION_HEADER", "Datos de vivienda"),
    _question(7, "PHONE", "Teléfono"),
]


def test_answers_are_coerced_by_type():
    data = MultiDict(
        [
            ("q_1", " Ana "),
            ("q_2", "4"),
            ("q_3", "Luz"),
            ("q_3", "Agua"),
            ("q_4", "5"),
            ("q_5", "si"),
            ("q_6", "ignored"),
            ("q_7", "5555-1234"),
        ]
    )
    answers, errors = validate_answers(QUESTIONS, data)
    assert errors == []
    # Checkbox answers keep the option order; headers take no answer
    assert answers == {1: "Ana", 2: 4, 3: ["Agua", "Luz"], 4: 5, 5: "Sí", 7: "55551234"}


def test_answer_errors_name_the_question():
    data = MultiDict([("q_2", "muchas"), ("q_3", "Gas"), ("q_4", "9"), ("q_7", "1234")])
    answers, errors = validate_answers(QUESTIONS, data)
    assert answers == {}
    assert errors == [
        "«Nombre» es obligatoria.",
        "«Personas en el hogar»: Debe ser un número.",
        "«Servicios»: Opción inválida.",
        "«Satisfacción»: Seleccione un valor entre 1 y 5.",
        "«Teléfono»: El teléfono debe tener 8 dígitos (formato: XXXX-XXXX o XXXXXXXX).",
    ]


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
        perms = {k: Permission(key=k, name=k) for k in ALL_PERMS}
        admin = Role(key="admin", name="Administrador", permissions=list(perms.values()))
        # Fills forms and reads answers, cannot delete or export them
        editor = Role(key="editor", name="Editor", permissions=[perms["forms.fill"], perms["submissions.view_all"]])
        editor.sections.append(RoleSection(section_key="comunidades-formularios"))
        viewer = Role(key="viewer", name="Lector", permissions=[perms["forms.read"]])
        viewer.sections.append(RoleSection(section_key="comunidades-formularios"))
        s.add_all([*perms.values(), admin, editor, viewer])
        s.flush()
        s.add_all(
            [
                User(email=f"{r.key}@example.com", password_hash=generate_password_hash("pw"), role_id=r.id)
                for r in (admin, editor, viewer)
            ]
        )
    return app


def _client(app, email=None):
    c = app.test_client()
    if email:
        r = c.post("/auth/login", data={"email": email, "password": "pw"})
        assert r.status_code == 302
    with c.session_transaction() as sess:
        sess["csrf_token"] = "t"
    return c


def _make_form(app, *, is_public=True):
    """Census form in the Comunidades location with three questions."""
    with session_scope(app) as s:
        admin = s.query(User).filter(User.email == "admin@example.com").one()
        form = create_form_template(
            s,
            {"name": "Censo Aldea", "description": None, "section_location": "comunidades", "is_public": is_public},
            admin,
        )
        q_name = add_question(s, form, {"title": "Nombre", "question_type": "TEXT", "is_required": True}, admin)
        q_services = add_question(
            s, form, {"title": "Servicios", "question_type": "CHECKBOX", "options": "Agua\nLuz\nDrenaje"}, admin
        )
        q_score = add_question(
            s, form, {"title": "Satisfacción", "question_type": "LINEAR_SCALE", "scale_min": "1", "scale_max": "5"}, admin
        )
        return form.id, form.slug, (q_name.id, q_services.id, q_score.id)


def _answer(client, slug, qids, name="Ana"):
    q_name, q_services, q_score = qids
    return client.post(
        f"/f/{slug}",
        data={"csrf_token": "t", f"q_{q_name}": name, f"q_{q_services}": ["Luz", "Agua"], f"q_{q_score}": "4"},
    )


def test_builder_adds_moves_and_deletes_questions(app):
    client = _client(app, "admin@example.com")
    r = client.post(
        "/admin/forms/templates/new?section=comunidades-plantillas",
        data={"csrf_token": "t", "name": "Visita Domiciliar", "section_location": "comunidades"},
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        form_id = s.query(FormTemplate).one().id

    url = f"/admin/forms/templates/{form_id}/questions"
    client.post(url, data={"csrf_token": "t", "title": "Dirección", "question_type": "TEXT"})
    client.post(url, data={"csrf_token": "t", "title": "Agua potable", "question_type": "YES_NO", "is_required": "1"})
    r = client.post(url, data={"csrf_token": "t", "title": "Piso", "question_type": "DROPDOWN", "options": "Tierra"})
    assert r.status_code == 302

    html = client.get(f"/admin/forms/templates/{form_id}").get_data(as_text=True)
    assert "Dirección" in html and "Agua potable" in html
    assert "Indique al menos 2 opciones, una por línea." in html
    assert "/f/visita-domiciliar-" in html

    with session_scope(app) as s:
        form = s.get(FormTemplate, form_id)
        first, second = form.questions
        first_id, second_id = first.id, second.id
        assert form.version == 3

    r = client.post(f"{url}/{second_id}/move", data={"csrf_token": "t", "direction": "up"})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert [q.title for q in s.get(FormTemplate, form_id).questions] == ["Agua potable", "Dirección"]

    client.post(f"{url}/{second_id}/delete", data={"csrf_token": "t"})
    with session_scope(app) as s:
        form = s.get(FormTemplate, form_id)
        assert [(q.id, q.order_index) for q in form.questions] == [(first_id, 0)]
        assert form.version == 5
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.action.like("form_question.%")).order_by(AuditEvent.id)]
    assert actions == ["form_question.create", "form_question.create", "form_question.move", "form_question.delete"]


def test_builder_needs_edit_permission(app):
    form_id, _, (q_name, _, _) = _make_form(app)
    viewer = _client(app, "viewer@example.com")
    r = viewer.post(f"/admin/forms/templates/{form_id}/questions/{q_name}/delete", data={"csrf_token": "t"})
    assert r.status_code == 403


def test_anonymous_answer_to_public_form(app):
    form_id, slug, qids = _make_form(app)
    client = _client(app)

    r = client.get(f"/f/{slug}")
    assert r.status_code == 200
    assert "Censo Aldea" in r.get_data(as_text=True)

    r = _answer(client, slug, qids)
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/f/{slug}/gracias")
    assert "fue registrada" in client.get(f"/f/{slug}/gracias").get_data(as_text=True)

    with session_scope(app) as s:
        sub = s.query(FormSubmission).one()
        assert sub.submitted_by_user_id is None
        assert sub.form_version == s.get(FormTemplate, form_id).version
        assert sub.answer_map() == {qids[0]: "Ana", qids[1]: ["Agua", "Luz"], qids[2]: 4}


def test_invalid_answers_rerender_with_400(app):
    _, slug, (q_name, q_services, q_score) = _make_form(app)
    client = _client(app)
    r = client.post(f"/f/{slug}", data={"csrf_token": "t", f"q_{q_services}": "Gas", f"q_{q_score}": "4"})
    assert r.status_code == 400
    html = r.get_data(as_text=True)
    assert "«Nombre» es obligatoria." in html
    assert "«Servicios»: Opción inválida." in html
    with session_scope(app) as s:
        assert s.query(FormSubmission).count() == 0


def test_private_form_requires_fill_permission(app):
    _, slug, qids = _make_form(app, is_public=False)

    r = _client(app).get(f"/f/{slug}")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    assert _client(app, "viewer@example.com").get(f"/f/{slug}").status_code == 403

    editor = _client(app, "editor@example.com")
    assert _answer(editor, slug, qids).status_code == 302
    with session_scope(app) as s:
        sub = s.query(FormSubmission).one()
        assert sub.submitted_by.email == "editor@example.com"


def test_inactive_or_unknown_forms_are_not_found(app):
    form_id, slug, _ = _make_form(app)
    with session_scope(app) as s:
        s.get(FormTemplate, form_id).is_active = False
    client = _client(app)
    assert client.get(f"/f/{slug}").status_code == 404
    assert client.get("/f/no-existe").status_code == 404


def test_submission_list_and_counts(app):
    form_id, slug, qids = _make_form(app)
    anonymous = _client(app)
    _answer(anonymous, slug, qids, name="Ana")
    _answer(anonymous, slug, qids, name="Luis")

    editor = _client(app, "editor@example.com")
    r = editor.get(f"/admin/forms/{form_id}/submissions")
    assert r.status_code == 200
    html = r.get_data(as_text=True)
    assert "Ana" in html and "Luis" in html and "Anónimo" in html
    # Editor may read answers but neither export nor delete them
    assert "Exportar a Excel" not in html
    assert "Eliminar" not in html

    page = editor.get("/admin/s/comunidades-formularios").get_data(as_text=True)
    assert f'href="/f/{slug}"' in page
    assert f"/admin/forms/{form_id}/submissions" in page

    assert editor.get(f"/api/forms/{form_id}/submissions/count").json == {"form_id": form_id, "count": 2}
    assert editor.get("/api/forms/999/submissions/count").status_code == 404

    viewer = _client(app, "viewer@example.com")
    assert viewer.get(f"/admin/forms/{form_id}/submissions").status_code == 403
    assert viewer.get(f"/api/forms/{form_id}/submissions/count").status_code == 403

    with session_scope(app) as s:
        assert submission_counts(s, [form_id, 999]) == {form_id: 2, 999: 0}
        assert submission_counts(s, []) == {}


def test_delete_and_export_need_their_permissions(app):
    form_id, slug, qids = _make_form(app)
    _answer(_client(app), slug, qids)
    with session_scope(app) as s:
        sub_id = s.query(FormSubmission).one().id

    editor = _client(app, "editor@example.com")
    assert editor.get(f"/admin/forms/{form_id}/submissions/export").status_code == 403
    r = editor.post(f"/admin/forms/{form_id}/submissions/{sub_id}/delete", data={"csrf_token": "t"})
    assert r.status_code == 403

    admin = _client(app, "admin@example.com")
    r = admin.get(f"/admin/forms/{form_id}/submissions/export")
    assert r.status_code == 200
    ws = load_workbook(io.BytesIO(r.data)).active
    assert ws.title == "Respuestas"
    assert [c.value for c in ws[1]] == ["ID", "Fecha de envío", "Enviado por", "Nombre", "Servicios", "Satisfacción"]
    assert [ws.cell(row=2, column=i).value for i in (3, 4, 5, 6)] == ["Anónimo", "Ana", "Agua, Luz", "4"]

    r = admin.post(f"/admin/forms/{form_id}/submissions/{sub_id}/delete", data={"csrf_token": "t"})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.query(FormSubmission).count() == 0
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.entity_type == "FormSubmission").order_by(AuditEvent.id)]
    assert actions == ["form_submission.create", "form_submission.delete"]
