from __future__ import annotations

import io

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, send_file, url_for

from app.ngoadmin.db import db_session
from app.ngoadmin.exports import XLSX_MIMETYPE, export_filename, rows_to_xlsx
from app.ngoadmin.models import User
from app.ngoadmin.modules.beneficiaries.models import Beneficiary
from app.ngoadmin.modules.beneficiaries.service import (
    EDITABLE_FIELDS,
    EXPORT_COLUMNS,
    GENDERS,
    beneficiary_stats,
    create_beneficiary,
    parse_beneficiary_filters,
    query_beneficiaries,
    soft_delete_beneficiary,
    update_beneficiary,
    upload_beneficiary_photo,
    validate_beneficiary_payload,
)
from app.ngoadmin.rbac import SectionCapabilities, require_capability, require_section
from app.ngoadmin.storage import StorageError, storage_from_config
from app.ngoadmin.utils import make_page

bp = Blueprint("beneficiaries", __name__)

SECTION = "abrazando-leyendas"
_ALLOWED_PHOTO_TYPES = ("image/jpeg", "image/png", "image/webp")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_or_404(beneficiary_id: int) -> Beneficiary:
    b = db_session().get(Beneficiary, beneficiary_id)
    if not b or b.deleted_at is not None:
        abort(404)
    return b


def _payload_from_form() -> dict:
    payload = {field: request.form.get(field) for field in EDITABLE_FIELDS}
    payload["is_active"] = request.form.get("is_active") == "1"
    return payload


def _distinct(s, column) -> list[str]:
    rows = s.query(column).filter(Beneficiary.deleted_at.is_(None)).distinct().all()
    return sorted(r[0] for r in rows if r[0])


@bp.get("/beneficiaries")
@require_section(SECTION)
def beneficiaries_list():
    s = db_session()
    filters = parse_beneficiary_filters(request.args)
    view = "charts" if request.args.get("view") == "charts" else "table"
    q = query_beneficiaries(s, filters)

    if view == "charts":
        return render_template(
            "admin/beneficiaries/stats.html",
            stats=beneficiary_stats(q.all()),
            filters=filters,
            view=view,
        )

    page = make_page(request.args.get("page"), q.count())
    rows = (
        q.order_by(Beneficiary.admission_date.desc(), Beneficiary.id.desc())
        .offset(page.offset)
        .limit(page.per_page)
        .all()
    )
    filters_for_urls = {k: v for k, v in filters.items() if v}
    prev_url = url_for("beneficiaries.beneficiaries_list", page=page.number - 1, **filters_for_urls) if page.has_prev else None
    next_url = url_for("beneficiaries.beneficiaries_list", page=page.number + 1, **filters_for_urls) if page.has_next else None
    return render_template(
        "admin/beneficiaries/list.html",
        beneficiaries=rows,
        filters=filters,
        programs=_distinct(s, Beneficiary.program),
        departments=_distinct(s, Beneficiary.department),
        page=page,
        prev_url=prev_url,
        next_url=next_url,
        export_url=url_for("beneficiaries.beneficiaries_export", **filters_for_urls),
        view=view,
    )


@bp.get("/beneficiaries/new")
@require_section(SECTION)
@require_capability(SectionCapabilities.can_create)
def beneficiaries_new_get():
    return render_template("admin/beneficiaries/form.html", beneficiary=None, genders=GENDERS, form_data={})


@bp.post("/beneficiaries/new")
@require_section(SECTION)
@require_capability(SectionCapabilities.can_create)
def beneficiaries_new_post():
    s = db_session()
    payload = _payload_from_form()
    errors = validate_beneficiary_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("admin/beneficiaries/form.html", beneficiary=None, genders=GENDERS, form_data=payload), 400

    b = create_beneficiary(s, payload, _current_user())
    s.commit()
    flash("Beneficiario creado.", "success")
    return redirect(url_for("beneficiaries.beneficiary_detail", beneficiary_id=b.id))


@bp.get("/beneficiaries/<int:beneficiary_id>")
@require_section(SECTION)
def beneficiary_detail(beneficiary_id: int):
    b = _get_or_404(beneficiary_id)
    return render_template("admin/beneficiaries/detail.html", beneficiary=b)


@bp.get("/beneficiaries/<int:beneficiary_id>/edit")
@require_section(SECTION)
@require_capability(SectionCapabilities.can_edit)
def beneficiary_edit_get(beneficiary_id: int):
    b = _get_or_404(beneficiary_id)
    return render_template("admin/beneficiaries/form.html", beneficiary=b, genders=GENDERS, form_data={})


@bp.post("/beneficiaries/<int:beneficiary_id>/edit")
@require_section(SECTION)
@require_capability(SectionCapabilities.can_edit)
def beneficiary_edit_post(beneficiary_id: int):
    s = db_session()
    b = _get_or_404(beneficiary_id)
    payload = _payload_from_form()
    errors = validate_beneficiary_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("admin/beneficiaries/form.html", beneficiary=b, genders=GENDERS, form_data=payload), 400

    update_beneficiary(s, b, payload, _current_user())
    s.commit()
    flash("Beneficiario actualizado.", "success")
    return redirect(url_for("beneficiaries.beneficiary_detail", beneficiary_id=b.id))


@bp.post("/beneficiaries/<int:beneficiary_id>/delete")
@require_section(SECTION)
@require_capability(SectionCapabilities.can_delete)
def beneficiary_delete(beneficiary_id: int):
    s = db_session()
    b = _get_or_404(beneficiary_id)
    reason = (request.form.get("reason") or "").strip() or None
    soft_delete_beneficiary(s, b, _current_user(), reason=reason)
    s.commit()
    flash("Beneficiario eliminado.", "success")
    return redirect(url_for("beneficiaries.beneficiaries_list"))


@bp.post("/beneficiaries/<int:beneficiary_id>/photo")
@require_section(SECTION)
@require_capability(SectionCapabilities.can_edit)
def beneficiary_photo_upload(beneficiary_id: int):
    s = db_session()
    b = _get_or_404(beneficiary_id)
    f = request.files.get("photo")
    if not f or not f.filename:
        flash("Seleccione una imagen.", "danger")
        return redirect(url_for("beneficiaries.beneficiary_detail", beneficiary_id=b.id))
    content_type = f.mimetype or "application/octet-stream"
    if content_type not in _ALLOWED_PHOTO_TYPES:
        flash("Formato no permitido. Use JPG, PNG o WEBP.", "danger")
        return redirect(url_for("beneficiaries.beneficiary_detail", beneficiary_id=b.id))

    try:
        upload_beneficiary_photo(s, b, f.read(), f.filename, content_type, _current_user())
    except StorageError as e:
        current_app.logger.error("Photo upload failed (beneficiary_id=%s): %s", b.id, e)
        s.rollback()
        flash("No se pudo guardar la foto.", "danger")
        return redirect(url_for("beneficiaries.beneficiary_detail", beneficiary_id=b.id))
    s.commit()
    flash("Foto actualizada.", "success")
    return redirect(url_for("beneficiaries.beneficiary_detail", beneficiary_id=b.id))


@bp.get("/beneficiaries/<int:beneficiary_id>/photo")
@require_section(SECTION)
def beneficiary_photo(beneficiary_id: int):
    b = _get_or_404(beneficiary_id)
    if not b.photo_storage_key:
        abort(404)
    try:
        fobj = storage_from_config(current_app.config).open(b.photo_storage_key)
    except StorageError:
        abort(404)
    return send_file(fobj, download_name=b.photo_storage_key.rsplit("/", 1)[-1])


@bp.get("/beneficiaries/export")
@require_section(SECTION)
@require_capability(SectionCapabilities.can_export)
def beneficiaries_export():
    s = db_session()
    filters = parse_beneficiary_filters(request.args)
    rows = query_beneficiaries(s, filters).order_by(Beneficiary.name.asc()).all()
    data = rows_to_xlsx(rows, EXPORT_COLUMNS, sheet_title="Beneficiarios")
    return send_file(
        io.BytesIO(data),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=export_filename("beneficiarios"),
    )
