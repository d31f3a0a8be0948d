from __future__ import annotations

import io

from flask import Blueprint, abort, flash, g, redirect, render_template, request, send_file, url_for

from app.ngoadmin.db import db_session
from app.ngoadmin.exports import XLSX_MIMETYPE, export_filename, rows_to_xlsx
from app.ngoadmin.models import User
from app.ngoadmin.modules.volunteers.models import Volunteer
from app.ngoadmin.modules.volunteers.service import (
    EDITABLE_FIELDS,
    EXPORT_COLUMNS,
    SHIFTS,
    VOLUNTEER_TYPES,
    create_volunteer,
    parse_volunteer_filters,
    query_volunteers,
    soft_delete_volunteer,
    update_volunteer,
    validate_volunteer_payload,
    volunteer_stats,
)
from app.ngoadmin.rbac import SectionCapabilities, require_capability, require_section
from app.ngoadmin.utils import make_page

bp = Blueprint("volunteers", __name__)

BOARD_SECTION = "voluntariado-tablero"
STATS_SECTION = "voluntariado-estadistica"


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_or_404(volunteer_id: int) -> Volunteer:
    v = db_session().get(Volunteer, volunteer_id)
    if not v or v.deleted_at is not None:
        abort(404)
    return v


def _payload_from_form() -> dict:
    payload = {field: request.form.get(field) for field in EDITABLE_FIELDS}
    payload["is_active"] = request.form.get("is_active") == "1"
    return payload


def _organizations(s) -> list[str]:
    rows = s.query(Volunteer.organization).filter(Volunteer.deleted_at.is_(None)).distinct().all()
    return sorted(r[0] for r in rows if r[0])


def _render_form(volunteer: Volunteer | None, form_data: dict, status: int = 200):
    return (
        render_template(
            "admin/volunteers/form.html",
            volunteer=volunteer,
            form_data=form_data,
            volunteer_types=VOLUNTEER_TYPES,
            shifts=SHIFTS,
        ),
        status,
    )


@bp.get("/volunteers")
@require_section(BOARD_SECTION)
def volunteers_list():
    s = db_session()
    filters = parse_volunteer_filters(request.args)
    q = query_volunteers(s, filters)
    page = make_page(request.args.get("page"), q.count())
    rows = (
        q.order_by(Volunteer.work_date.desc(), Volunteer.name.asc(), Volunteer.id.asc())
        .offset(page.offset)
        .limit(page.per_page)
        .all()
    )
    filters_for_urls = {k: v for k, v in filters.items() if v}
    prev_url = url_for("volunteers.volunteers_list", page=page.number - 1, **filters_for_urls) if page.has_prev else None
    next_url = url_for("volunteers.volunteers_list", page=page.number + 1, **filters_for_urls) if page.has_next else None
    return render_template(
        "admin/volunteers/list.html",
        volunteers=rows,
        filters=filters,
        volunteer_types=VOLUNTEER_TYPES,
        shifts=SHIFTS,
        organizations=_organizations(s),
        page=page,
        prev_url=prev_url,
        next_url=next_url,
        export_url=url_for("volunteers.volunteers_export", **filters_for_urls),
    )


@bp.get("/volunteers/stats")
@require_section(STATS_SECTION)
def volunteers_stats():
    s = db_session()
    filters = parse_volunteer_filters(request.args)
    rows = query_volunteers(s, filters).all()
    return render_template(
        "admin/volunteers/stats.html",
        stats=volunteer_stats(rows),
        filters=filters,
        volunteer_types=VOLUNTEER_TYPES,
        shifts=SHIFTS,
        organizations=_organizations(s),
    )


@bp.get("/volunteers/new")
@require_section(BOARD_SECTION)
@require_capability(SectionCapabilities.can_create)
def volunteers_new_get():
    return _render_form(None, {})


@bp.post("/volunteers/new")
@require_section(BOARD_SECTION)
@require_capability(SectionCapabilities.can_create)
def volunteers_new_post():
    s = db_session()
    payload = _payload_from_form()
    errors = validate_volunteer_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(None, payload, 400)
    create_volunteer(s, payload, _current_user())
    s.commit()
    flash("Registro de voluntariado creado.", "success")
    return redirect(url_for("volunteers.volunteers_list"))


@bp.get("/volunteers/<int:volunteer_id>/edit")
@require_section(BOARD_SECTION)
@require_capability(SectionCapabilities.can_edit)
def volunteer_edit_get(volunteer_id: int):
    return _render_form(_get_or_404(volunteer_id), {})


@bp.post("/volunteers/<int:volunteer_id>/edit")
@require_section(BOARD_SECTION)
@require_capability(SectionCapabilities.can_edit)
def volunteer_edit_post(volunteer_id: int):
    s = db_session()
    v = _get_or_404(volunteer_id)
    payload = _payload_from_form()
    errors = validate_volunteer_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(v, payload, 400)
    update_volunteer(s, v, payload, _current_user())
    s.commit()
    flash("Registro de voluntariado actualizado.", "success")
    return redirect(url_for("volunteers.volunteers_list"))


@bp.post("/volunteers/<int:volunteer_id>/delete")
@require_section(BOARD_SECTION)
@require_capability(SectionCapabilities.can_delete)
def volunteer_delete(volunteer_id: int):
    s = db_session()
    v = _get_or_404(volunteer_id)
    soft_delete_volunteer(s, v, _current_user())
    s.commit()
    flash("Registro de voluntariado eliminado.", "success")
    return redirect(url_for("volunteers.volunteers_list"))


@bp.get("/volunteers/export")
@require_section(BOARD_SECTION)
@require_capability(SectionCapabilities.can_export)
def volunteers_export():
    s = db_session()
    filters = parse_volunteer_filters(request.args)
    rows = query_volunteers(s, filters).order_by(Volunteer.work_date.desc(), Volunteer.name.asc()).all()
    data = rows_to_xlsx(rows, EXPORT_COLUMNS, sheet_title="Voluntariado")
    return send_file(
        io.BytesIO(data),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=export_filename("voluntariado"),
    )
