"""
Form filling by slug.

Public forms accept anonymous answers. Private ones need a signed-in user
whose role can fill forms. Deleted or inactive forms are not found.
"""
from __future__ import annotations

from flask import Blueprint, abort, current_app, g, redirect, render_template, request, url_for
from werkzeug.datastructures import MultiDict

from app.ngoadmin.db import db_session
from app.ngoadmin.modules.forms.service import (
    QUESTION_TYPES,
    YES_NO,
    create_submission,
    fillable_form,
    scale_bounds,
    validate_answers,
)
from app.ngoadmin.rbac import SectionCapabilities, require_capability

bp = Blueprint("public_forms", __name__)


def _guarded(form, view):
    if form.is_public:
        return view
    return require_capability(SectionCapabilities.can_fill_form)(view)


def _render_fill(form, values, errors, status=200):
    return (
        render_template(
            "forms/fill.html",
            form=form,
            questions=sorted(form.questions, key=lambda q: q.order_index),
            question_types=QUESTION_TYPES,
            yes_no=YES_NO,
            scale_bounds=scale_bounds,
            values=values,
            errors=errors,
        ),
        status,
    )


@bp.get("/<slug>")
def fill_get(slug: str):
    form = fillable_form(db_session(), slug)
    if form is None:
        abort(404)
    return _guarded(form, lambda: _render_fill(form, MultiDict(), []))()


@bp.post("/<slug>")
def fill_post(slug: str):
    s = db_session()
    form = fillable_form(s, slug)
    if form is None:
        abort(404)

    def _submit():
        answers, errors = validate_answers(form.questions, request.form)
        if errors:
            return _render_fill(form, request.form, errors, status=400)
        submission = create_submission(s, form, answers, getattr(g, "current_user", None))
        s.commit()
        current_app.logger.info(
            "Form submission stored (form_id=%s submission_id=%s request_id=%s)",
            form.id,
            submission.id,
            getattr(g, "request_id", None),
        )
        return redirect(url_for("public_forms.fill_done", slug=form.slug))

    return _guarded(form, _submit)()


@bp.get("/<slug>/gracias")
def fill_done(slug: str):
    form = fillable_form(db_session(), slug)
    if form is None:
        abort(404)
    return render_template("forms/done.html", form=form)
