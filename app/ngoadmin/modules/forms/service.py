from __future__ import annotations

import json
import re
import time
import unicodedata
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from sqlalchemy import func, select

from app.ngoadmin.audit import record_event
from app.ngoadmin.sections import FORM_LOCATIONS
from app.ngoadmin.utils import clean_phone, is_valid_gt_phone, parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ngoadmin.models import User
    from app.ngoadmin.modules.forms.models import FormQuestion, FormSubmission, FormTemplate


TABS = ("active", "inactive", "deleted")


def slugify(name: str) -> str:
    """Lowercase ASCII slug: accents stripped, punctuation dropped, spaces and runs collapsed to '-'."""
    decomposed = unicodedata.normalize("NFD", name.lower())
    ascii_only = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    cleaned = re.sub(r"[^a-z0-9\s-]", "", ascii_only).strip()
    cleaned = re.sub(r"\s+", "-", cleaned)
    return re.sub(r"-+", "-", cleaned)


def unique_slug(name: str, *, now_ms: int | None = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    base = slugify(name) or "formulario"
    return f"{base}-{stamp}"


def validate_form_payload(payload: dict) -> list[str]:
    errors = []
    name = (payload.get("name") or "").strip()
    if not name:
        errors.append("El nombre es requerido.")
    location = (payload.get("section_location") or "").strip()
    if not location:
        errors.append("La ubicación de sección es requerida.")
    elif location not in FORM_LOCATIONS:
        errors.append(f"Tipo de sección inválido. Debe ser uno de: {', '.join(FORM_LOCATIONS)}")
    return errors


def create_form_template(s: "Session", payload: dict, user: "User") -> "FormTemplate":
    from app.ngoadmin.modules.forms.models import FormTemplate

    now = datetime.utcnow()
    name = (payload.get("name") or "").strip()
    form = FormTemplate(
        name=name,
        slug=unique_slug(name),
        description=(payload.get("description") or "").strip() or None,
        section_location=(payload.get("section_location") or "").strip(),
        is_public=bool(payload.get("is_public", True)),
        is_active=True,
        version=1,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(form)
    s.flush()
    record_event(
        s,
        actor=user,
        action="form_template.create",
        entity_type="FormTemplate",
        entity_id=str(form.id),
        metadata={"name": form.name, "section_location": form.section_location},
    )
    return form


def toggle_form_active(s: "Session", form: "FormTemplate", user: "User") -> "FormTemplate":
    if form.deleted_at is not None:
        raise ValueError("Deleted templates must be restored before they can be activated.")
    form.is_active = not form.is_active
    form.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="form_template.activate" if form.is_active else "form_template.deactivate",
        entity_type="FormTemplate",
        entity_id=str(form.id),
        metadata={"name": form.name},
    )
    return form


def soft_delete_form(s: "Session", form: "FormTemplate", user: "User") -> "FormTemplate":
    form.deleted_at = datetime.utcnow()
    form.is_active = False
    form.updated_at = form.deleted_at
    record_event(
        s,
        actor=user,
        action="form_template.delete",
        entity_type="FormTemplate",
        entity_id=str(form.id),
        metadata={"name": form.name},
    )
    return form


def restore_form(s: "Session", form: "FormTemplate", user: "User") -> "FormTemplate":
    form.deleted_at = None
    form.is_active = True
    form.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="form_template.restore",
        entity_type="FormTemplate",
        entity_id=str(form.id),
        metadata={"name": form.name},
    )
    return form


def filter_tab(forms: list["FormTemplate"], tab: str) -> list["FormTemplate"]:
    if tab not in TABS:
        tab = "active"
    return [f for f in forms if f.status == tab]


def tab_counts(forms: list["FormTemplate"]) -> dict[str, int]:
    counts = Counter(f.status for f in forms)
    return {tab: counts.get(tab, 0) for tab in TABS}


# --- Questions -------------------------------------------------------------


@dataclass(frozen=True)
class QuestionType:
    code: str
    label: str
    has_options: bool = False
    multiple: bool = False
    # Section headers only structure the form; they take no answer.
    answerable: bool = True
    scale: bool = False


QUESTION_TYPES: dict[str, QuestionType] = {
    qt.code: qt
    for qt in (
        QuestionType("TEXT", "Texto corto"),
        QuestionType("PARAGRAPH_TEXT", "Párrafo"),
        QuestionType("NUMBER", "Número"),
        QuestionType("EMAIL", "Correo electrónico"),
        QuestionType("PHONE", "Teléfono"),
        QuestionType("URL", "Enlace"),
        QuestionType("DATE", "Fecha"),
        QuestionType("TIME", "Hora"),
        QuestionType("YES_NO", "Sí / No"),
        QuestionType("MULTIPLE_CHOICE", "Opción múltiple", has_options=True),
        QuestionType("DROPDOWN", "Lista desplegable", has_options=True),
        QuestionType("CHECKBOX", "Casillas de verificación", has_options=True, multiple=True),
        QuestionType("LINEAR_SCALE", "Escala lineal", scale=True),
        QuestionType("RATING", "Calificación", scale=True),
        QuestionType("SECTION_HEADER", "Encabezado de sección", answerable=False),
    )
}

YES_NO = ("Sí", "No")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_MAX_TEXT_ANSWER = 5000


def parse_options(raw: str | None) -> list[str]:
    """One option per line; blanks and repeats dropped, first occurrence wins."""
    seen: list[str] = []
    for line in (raw or "").splitlines():
        opt = line.strip()
        if opt and opt not in seen:
            seen.append(opt)
    return seen


def scale_bounds(question_type: str, config: dict) -> tuple[int, int]:
    if question_type == "RATING":
        return 1, int(config.get("max") or 5)
    return int(config.get("min", 1)), int(config.get("max") or 5)


def build_question_config(payload: dict) -> dict | None:
    qt = QUESTION_TYPES.get((payload.get("question_type") or "").strip())
    if qt is None:
        return None
    if qt.has_options:
        return {"options": parse_options(payload.get("options"))}
    if qt.code == "LINEAR_SCALE":
        return {"min": parse_int(payload.get("scale_min"), 1), "max": parse_int(payload.get("scale_max"), 5)}
    if qt.code == "RATING":
        return {"max": parse_int(payload.get("scale_max"), 5)}
    return None


def validate_question_payload(payload: dict) -> list[str]:
    errors = []
    title = (payload.get("title") or "").strip()
    if not title:
        errors.append("El título de la pregunta es requerido.")
    elif len(title) > 500:
        errors.append("El título no puede superar 500 caracteres.")
    qt = QUESTION_TYPES.get((payload.get("question_type") or "").strip())
    if qt is None:
        errors.append("Tipo de pregunta inválido.")
        return errors

    config = build_question_config(payload) or {}
    if qt.has_options and len(config.get("options") or []) < 2:
        errors.append("Indique al menos 2 opciones, una por línea.")
    if qt.code == "LINEAR_SCALE":
        low, high = config["min"], config["max"]
        if low not in (0, 1) or not 2 <= high <= 10:
            errors.append("La escala debe iniciar en 0 o 1 y terminar entre 2 y 10.")
    if qt.code == "RATING" and not 3 <= config["max"] <= 10:
        errors.append("La calificación máxima debe estar entre 3 y 10.")
    return errors


def add_question(s: "Session", form: "FormTemplate", payload: dict, user: "User") -> "FormQuestion":
    from app.ngoadmin.modules.forms.models import FormQuestion

    qt = QUESTION_TYPES[payload["question_type"].strip()]
    config = build_question_config(payload)
    question = FormQuestion(
        question_type=qt.code,
        title=payload["title"].strip(),
        help_text=(payload.get("help_text") or "").strip() or None,
        is_required=bool(payload.get("is_required")) and qt.answerable,
        order_index=len(form.questions),
        config_json=json.dumps(config, ensure_ascii=False) if config else None,
    )
    form.questions.append(question)
    _bump_version(form)
    s.flush()
    record_event(
        s,
        actor=user,
        action="form_question.create",
        entity_type="FormTemplate",
        entity_id=str(form.id),
        metadata={"question_id": question.id, "question_type": qt.code, "title": question.title},
    )
    return question


def delete_question(s: "Session", form: "FormTemplate", question: "FormQuestion", user: "User") -> None:
    """Removes the question and its answers; remaining questions are renumbered in order."""
    form.questions.remove(question)
    for i, q in enumerate(form.questions):
        q.order_index = i
    _bump_version(form)
    record_event(
        s,
        actor=user,
        action="form_question.delete",
        entity_type="FormTemplate",
        entity_id=str(form.id),
        metadata={"question_id": question.id, "title": question.title},
    )


def move_question(s: "Session", form: "FormTemplate", question: "FormQuestion", direction: str, user: "User") -> bool:
    """Swap with the neighbour above or below. False when already at that end."""
    ordered = sorted(form.questions, key=lambda q: q.order_index)
    i = ordered.index(question)
    j = i - 1 if direction == "up" else i + 1
    if j < 0 or j >= len(ordered):
        return False
    ordered[i].order_index, ordered[j].order_index = ordered[j].order_index, ordered[i].order_index
    _bump_version(form)
    record_event(
        s,
        actor=user,
        action="form_question.move",
        entity_type="FormTemplate",
        entity_id=str(form.id),
        metadata={"question_id": question.id, "direction": direction},
    )
    return True


def _bump_version(form: "FormTemplate") -> None:
    form.version = (form.version or 1) + 1
    form.updated_at = datetime.utcnow()


# --- Answers and submissions ------------------------------------------------


def _coerce_answer(question: "FormQuestion", qt: QuestionType, raw):
    """Returns (value, error). ``raw`` is a non-empty string, or a non-empty list for multi-select."""
    code = qt.code
    if code in ("TEXT", "PARAGRAPH_TEXT"):
        if len(raw) > _MAX_TEXT_ANSWER:
            return None, f"La respuesta no puede superar {_MAX_TEXT_ANSWER} caracteres."
        return raw, None
    if code == "NUMBER":
        try:
            d = Decimal(raw.replace(",", "."))
        except InvalidOperation:
            return None, "Debe ser un número."
        if not d.is_finite():
            return None, "Debe ser un número."
        return (int(d) if d == d.to_integral_value() else float(d)), None
    if code == "EMAIL":
        return (raw.lower(), None) if _EMAIL_RE.match(raw) else (None, "Correo electrónico inválido.")
    if code == "PHONE":
        if len(clean_phone(raw)) != 8 or not is_valid_gt_phone(raw):
            return None, "El teléfono debe tener 8 dígitos (formato: XXXX-XXXX o XXXXXXXX)."
        return clean_phone(raw), None
    if code == "URL":
        parsed = urlparse(raw)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return None, "Debe ser una URL que inicie con http:// o https://."
        return raw, None
    if code == "DATE":
        d = parse_date(raw)
        return (d.isoformat(), None) if d else (None, "Fecha inválida (AAAA-MM-DD).")
    if code == "TIME":
        return (raw, None) if _TIME_RE.match(raw) else (None, "Hora inválida (HH:MM).")
    if code == "YES_NO":
        normalized = {"si": "Sí", "sí": "Sí", "no": "No"}.get(raw.lower())
        return (normalized, None) if normalized else (None, "Responda Sí o No.")
    if qt.multiple:
        options = question.options
        unknown = [v for v in raw if v not in options]
        if unknown:
            return None, "Opción inválida."
        return [o for o in options if o in raw], None
    if qt.has_options:
        return (raw, None) if raw in question.options else (None, "Opción inválida.")
    if qt.scale:
        low, high = scale_bounds(code, question.config)
        n = parse_int(raw)
        if n is None or not low <= n <= high:
            return None, f"Seleccione un valor entre {low} y {high}."
        return n, None
    return raw, None


def validate_answers(questions: list["FormQuestion"], form_data) -> tuple[dict[int, object], list[str]]:
    """
    Read ``q_<id>`` fields from a submitted form (a werkzeug MultiDict).
    Returns the coerced answers by question id and the list of error messages.
    """
    answers: dict[int, object] = {}
    errors: list[str] = []
    for q in sorted(questions, key=lambda q: q.order_index):
        qt = QUESTION_TYPES.get(q.question_type)
        if qt is None or not qt.answerable:
            continue
        field = f"q_{q.id}"
        if qt.multiple:
            raw = [v.strip() for v in form_data.getlist(field) if v and v.strip()]
        else:
            raw = (form_data.get(field) or "").strip()
        if not raw:
            if q.is_required:
                errors.append(f"«{q.title}» es obligatoria.")
            continue
        value, error = _coerce_answer(q, qt, raw)
        if error:
            errors.append(f"«{q.title}»: {error}")
        else:
            answers[q.id] = value
    return answers, errors


def fillable_form(s: "Session", slug: str) -> "FormTemplate | None":
    from app.ngoadmin.modules.forms.models import FormTemplate

    return (
        s.query(FormTemplate)
        .filter(FormTemplate.slug == slug, FormTemplate.deleted_at.is_(None), FormTemplate.is_active.is_(True))
        .one_or_none()
    )


def create_submission(
    s: "Session", form: "FormTemplate", answers: dict[int, object], user: "User | None"
) -> "FormSubmission":
    from app.ngoadmin.modules.forms.models import FormAnswer, FormSubmission

    submission = FormSubmission(
        form_template_id=form.id,
        submitted_by_user_id=user.id if user else None,
        submitted_at=datetime.utcnow(),
        form_version=form.version,
    )
    for question_id, value in answers.items():
        submission.answers.append(FormAnswer(question_id=question_id, value_json=json.dumps(value, ensure_ascii=False)))
    s.add(submission)
    s.flush()
    record_event(
        s,
        actor=user,
        action="form_submission.create",
        entity_type="FormSubmission",
        entity_id=str(submission.id),
        metadata={"form_id": form.id, "answers": len(answers)},
    )
    return submission


def delete_submission(s: "Session", submission: "FormSubmission", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="form_submission.delete",
        entity_type="FormSubmission",
        entity_id=str(submission.id),
        metadata={"form_id": submission.form_template_id},
    )
    s.delete(submission)


def submission_counts(s: "Session", form_ids: list[int]) -> dict[int, int]:
    from app.ngoadmin.modules.forms.models import FormSubmission

    if not form_ids:
        return {}
    rows = s.execute(
        select(FormSubmission.form_template_id, func.count())
        .where(FormSubmission.form_template_id.in_(form_ids))
        .group_by(FormSubmission.form_template_id)
    ).all()
    counts = {form_id: 0 for form_id in form_ids}
    counts.update({form_id: n for form_id, n in rows})
    return counts


def format_answer(value) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def answerable_questions(form: "FormTemplate") -> list["FormQuestion"]:
    return [q for q in form.questions if QUESTION_TYPES.get(q.question_type, QUESTION_TYPES["TEXT"]).answerable]


def submission_export_columns(form: "FormTemplate") -> list[tuple[str, str]]:
    columns = [("ID", "id"), ("Fecha de envío", "submitted_at"), ("Enviado por", "submitted_by")]
    columns.extend((q.title, f"q_{q.id}") for q in answerable_questions(form))
    return columns


def submission_rows(form: "FormTemplate", submissions: list["FormSubmission"]) -> list[dict]:
    """Flat rows for the submissions table and the Excel export, one column per question."""
    questions = answerable_questions(form)
    rows = []
    for sub in submissions:
        answers = sub.answer_map()
        row = {
            "id": sub.id,
            "submitted_at": sub.submitted_at,
            "submitted_by": sub.submitted_by.label if sub.submitted_by else "Anónimo",
        }
        for q in questions:
            row[f"q_{q.id}"] = format_answer(answers.get(q.id))
        rows.append(row)
    return rows
