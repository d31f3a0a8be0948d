from flask import Blueprint, abort, redirect, render_template, url_for

from app.ngoadmin.availability import section_has_data
from app.ngoadmin.db import db_session
from app.ngoadmin.modules.forms.models import FormTemplate
from app.ngoadmin.modules.forms.service import submission_counts
from app.ngoadmin.rbac import require_section
from app.ngoadmin.sections import get_section

bp = Blueprint("sections", __name__)


@bp.get("/s/<section_key>")
def section_page(section_key: str):
    """
    Entry point for every sidebar link. Sections with a dedicated view are
    forwarded there; the rest list the active forms for their location.
    """
    sec = get_section(section_key)
    if sec is None:
        abort(404)

    @require_section(sec.key)
    def _render():
        if sec.endpoint:
            return redirect(url_for(sec.endpoint, section=sec.key))
        s = db_session()
        forms = []
        if sec.form_location:
            forms = (
                s.query(FormTemplate)
                .filter(
                    FormTemplate.section_location == sec.form_location,
                    FormTemplate.deleted_at.is_(None),
                    FormTemplate.is_active.is_(True),
                )
                .order_by(FormTemplate.name.asc(), FormTemplate.id.asc())
                .all()
            )
        return render_template(
            "admin/sections/page.html",
            section=sec,
            forms=forms,
            counts=submission_counts(s, [f.id for f in forms]),
            has_data=section_has_data(s, sec.key),
        )

    return _render()
