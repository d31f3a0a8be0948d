from __future__ import annotations

import io

from flask import Blueprint, abort, flash, g, redirect, render_template, request, send_file, url_for

from app.ngoadmin.db import db_session
from app.ngoadmin.exports import XLSX_MIMETYPE, export_filename, rows_to_xlsx
from app.ngoadmin.models import User
from app.ngoadmin.modules.forms.models import FormQuestion, FormSubmission, FormTemplate
from app.ngoadmin.modules.forms.service import (
    QUESTION_TYPES,
    TABS,
    add_question,
    create_form_template,
    delete_question,
    delete_submission,
    filter_tab,
    move_question,
    restore_form,
    slugify,
    soft_delete_form,
    submission_export_columns,
    submission_rows,
    tab_counts,
    toggle_form_active,
    validate_form_payload,
    validate_question_payload,
)
from app.ngoadmin.rbac import SectionCapabilities, require_capability, require_section
from app.ngoadmin.sections import ADMIN_PANEL, FORM_LOCATIONS, sections_for_form_location
from app.ngoadmin.utils import make_page

bp = Blueprint("forms", __name__)

TEMPLATE_SECTIONS = ("comunidades-plantillas", ADMIN_PANEL)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_form_or_404(form_id: int) -> FormTemplate:
    form = db_session().get(FormTemplate, form_id)
    if not form:
        abort(404)
    return form


def _back_to_list():
    return redirect(
        url_for(
            "forms.templates_list",
            tab=request.form.get("tab") or "active",
            location=request.form.get("location") or None,
            section=g.get("active_section"),
        )
    )


@bp.get("/forms/templates")
@require_section(*TEMPLATE_SECTIONS)
def templates_list():
    s = db_session()
    tab = (request.args.get("tab") or "active").strip()
    if tab not in TABS:
        tab = "active"
    location = (request.args.get("location") or "").strip()
    if g.active_section == "comunidades-plantillas" and not location:
        location = "comunidades"

    q = s.query(FormTemplate)
    if location:
        q = q.filter(FormTemplate.section_location == location)
    forms = q.order_by(FormTemplate.created_at.desc(), FormTemplate.id.desc()).all()

    return render_template(
        "admin/forms/templates.html",
        forms=filter_tab(forms, tab),
        counts=tab_counts(forms),
        tab=tab,
        tabs=TABS,
        location=location,
        locations=FORM_LOCATIONS,
    )


@bp.post("/forms/templates/new")
@require_section(*TEMPLATE_SECTIONS)
@require_capability(SectionCapabilities.can_create)
def templates_new_post():
    s = db_session()
    payload = {
        "name": request.form.get("name"),
        "description": request.form.get("description"),
        "section_location": request.form.get("section_location"),
        "is_public": request.form.get("is_public", "1") == "1",
    }
    errors = validate_form_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back_to_list()

    form = create_form_template(s, payload, _current_user())
    s.commit()
    flash(f"Formulario \"{form.name}\" creado.", "success")
    return _back_to_list()


@bp.post("/forms/templates/<int:form_id>/toggle")
@require_section(*TEMPLATE_SECTIONS)
@require_capability(SectionCapabilities.can_edit)
def templates_toggle(form_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    try:
        toggle_form_active(s, form, _current_user())
    except ValueError as e:
        flash(str(e), "danger")
        return _back_to_list()
    s.commit()
    flash("Formulario activado." if form.is_active else "Formulario desactivado.", "success")
    return _back_to_list()


@bp.post("/forms/templates/<int:form_id>/delete")
@require_section(*TEMPLATE_SECTIONS)
@require_capability(SectionCapabilities.can_delete)
def templates_delete(form_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    soft_delete_form(s, form, _current_user())
    s.commit()
    flash("Formulario eliminado. Puede restaurarlo desde la pestaña Eliminados.", "success")
    return _back_to_list()


@bp.post("/forms/templates/<int:form_id>/restore")
@require_section(*TEMPLATE_SECTIONS)
@require_capability(SectionCapabilities.can_delete)
def templates_restore(form_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    if form.deleted_at is None:
        flash("El formulario no está eliminado.", "warning")
        return _back_to_list()
    restore_form(s, form, _current_user())
    s.commit()
    flash("Formulario restaurado.", "success")
    return _back_to_list()


# --- Question builder -------------------------------------------------------


def _get_question_or_404(form: FormTemplate, question_id: int) -> FormQuestion:
    question = db_session().get(FormQuestion, question_id)
    if not question or question.form_template_id != form.id:
        abort(404)
    return question


def _back_to_builder(form: FormTemplate):
    return redirect(url_for("forms.template_detail", form_id=form.id, section=g.get("active_section")))


@bp.get("/forms/templates/<int:form_id>")
@require_section(*TEMPLATE_SECTIONS)
def template_detail(form_id: int):
    form = _get_form_or_404(form_id)
    return render_template(
        "admin/forms/detail.html",
        form=form,
        question_types=QUESTION_TYPES,
        fill_url=url_for("public_forms.fill_get", slug=form.slug),
    )


@bp.post("/forms/templates/<int:form_id>/questions")
@require_section(*TEMPLATE_SECTIONS)
@require_capability(SectionCapabilities.can_edit)
def question_add(form_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    if form.deleted_at is not None:
        flash("Restaure el formulario antes de editarlo.", "danger")
        return _back_to_builder(form)
    payload = {
        "title": request.form.get("title"),
        "question_type": request.form.get("question_type"),
        "help_text": request.form.get("help_text"),
        "is_required": request.form.get("is_required") == "1",
        "options": request.form.get("options"),
        "scale_min": request.form.get("scale_min"),
        "scale_max": request.form.get("scale_max"),
    }
    errors = validate_question_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back_to_builder(form)
    add_question(s, form, payload, _current_user())
    s.commit()
    flash("Pregunta agregada.", "success")
    return _back_to_builder(form)


@bp.post("/forms/templates/<int:form_id>/questions/<int:question_id>/delete")
@require_section(*TEMPLATE_SECTIONS)
@require_capability(SectionCapabilities.can_edit)
def question_delete(form_id: int, question_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    question = _get_question_or_404(form, question_id)
    delete_question(s, form, question, _current_user())
    s.commit()
    flash("Pregunta eliminada.", "success")
    return _back_to_builder(form)


@bp.post("/forms/templates/<int:form_id>/questions/<int:question_id>/move")
@require_section(*TEMPLATE_SECTIONS)
@require_capability(SectionCapabilities.can_edit)
def question_move(form_id: int, question_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    question = _get_question_or_404(form, question_id)
    direction = "up" if request.form.get("direction") == "up" else "down"
    if move_question(s, form, question, direction, _current_user()):
        s.commit()
    return _back_to_builder(form)


# --- Submissions ------------------------------------------------------------
# Visible from any section that lists the form's location.


def _form_sections(form: FormTemplate) -> tuple[str, ...]:
    return sections_for_form_location(form.section_location) or (ADMIN_PANEL,)


@bp.get("/forms/<int:form_id>/submissions")
def submissions_list(form_id: int):
    form = _get_form_or_404(form_id)

    @require_section(*_form_sections(form))
    @require_capability(SectionCapabilities.can_view_submissions)
    def _render():
        s = db_session()
        q = s.query(FormSubmission).filter(FormSubmission.form_template_id == form.id)
        page = make_page(request.args.get("page"), q.count())
        subs = (
            q.order_by(FormSubmission.submitted_at.desc(), FormSubmission.id.desc())
            .offset(page.offset)
            .limit(page.per_page)
            .all()
        )
        section = g.get("active_section")
        return render_template(
            "admin/forms/submissions.html",
            form=form,
            rows=submission_rows(form, subs),
            columns=submission_export_columns(form),
            page=page,
            prev_url=url_for("forms.submissions_list", form_id=form.id, page=page.number - 1, section=section) if page.has_prev else None,
            next_url=url_for("forms.submissions_list", form_id=form.id, page=page.number + 1, section=section) if page.has_next else None,
        )

    return _render()


@bp.post("/forms/<int:form_id>/submissions/<int:submission_id>/delete")
def submission_delete(form_id: int, submission_id: int):
    form = _get_form_or_404(form_id)

    @require_section(*_form_sections(form))
    @require_capability(SectionCapabilities.can_delete_submissions)
    def _delete():
        s = db_session()
        sub = s.get(FormSubmission, submission_id)
        if not sub or sub.form_template_id != form.id:
            abort(404)
        delete_submission(s, sub, _current_user())
        s.commit()
        flash("Respuesta eliminada.", "success")
        return redirect(url_for("forms.submissions_list", form_id=form.id, section=g.get("active_section")))

    return _delete()


@bp.get("/forms/<int:form_id>/submissions/export")
def submissions_export(form_id: int):
    form = _get_form_or_404(form_id)

    @require_section(*_form_sections(form))
    @require_capability(SectionCapabilities.can_export)
    def _export():
        s = db_session()
        subs = (
            s.query(FormSubmission)
            .filter(FormSubmission.form_template_id == form.id)
            .order_by(FormSubmission.submitted_at.asc(), FormSubmission.id.asc())
            .all()
        )
        data = rows_to_xlsx(submission_rows(form, subs), submission_export_columns(form), sheet_title="Respuestas")
        return send_file(
            io.BytesIO(data),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=export_filename(f"respuestas_{slugify(form.name) or form.id}"),
        )

    return _export()
