from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.ngoadmin.db import db_session
from app.ngoadmin.models import User
from app.ngoadmin.modules.communities.models import Community
from app.ngoadmin.modules.communities.service import (
    CLASSIFICATIONS,
    EDITABLE_FIELDS,
    STATUSES,
    community_stats,
    create_community,
    parse_community_filters,
    query_communities,
    soft_delete_community,
    update_community,
    validate_community_payload,
)
from app.ngoadmin.rbac import SectionCapabilities, require_capability, require_section
from app.ngoadmin.utils import make_page

bp = Blueprint("communities", __name__)

LIST_SECTIONS = ("comunidades-lista", "pimco-comunidades")
STATS_SECTIONS = ("comunidades-estadistica", "pimco-estadistica")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_or_404(community_id: int) -> Community:
    c = db_session().get(Community, community_id)
    if not c or c.deleted_at is not None:
        abort(404)
    return c


def _payload_from_form() -> dict:
    payload = {field: request.form.get(field) for field in EDITABLE_FIELDS}
    payload["is_in_leaders_group"] = request.form.get("is_in_leaders_group") == "1"
    return payload


def _render_form(community: Community | None, form_data: dict, status: int = 200):
    return (
        render_template(
            "admin/communities/form.html",
            community=community,
            form_data=form_data,
            statuses=STATUSES,
            classifications=CLASSIFICATIONS,
        ),
        status,
    )


@bp.get("/communities")
@require_section(*LIST_SECTIONS)
def communities_list():
    s = db_session()
    filters = parse_community_filters(request.args)
    q = query_communities(s, filters)
    page = make_page(request.args.get("page"), q.count())
    rows = (
        q.order_by(Community.department.asc(), Community.municipality.asc(), Community.id.asc())
        .offset(page.offset)
        .limit(page.per_page)
        .all()
    )
    departments = sorted(
        r[0] for r in s.query(Community.department).filter(Community.deleted_at.is_(None)).distinct().all() if r[0]
    )
    filters_for_urls = {k: v for k, v in filters.items() if v}
    section = g.active_section
    prev_url = url_for("communities.communities_list", page=page.number - 1, section=section, **filters_for_urls) if page.has_prev else None
    next_url = url_for("communities.communities_list", page=page.number + 1, section=section, **filters_for_urls) if page.has_next else None
    return render_template(
        "admin/communities/list.html",
        communities=rows,
        filters=filters,
        departments=departments,
        statuses=STATUSES,
        classifications=CLASSIFICATIONS,
        page=page,
        prev_url=prev_url,
        next_url=next_url,
    )


@bp.get("/communities/stats")
@require_section(*STATS_SECTIONS)
def communities_stats():
    s = db_session()
    rows = query_communities(s, {}).all()
    return render_template("admin/communities/stats.html", stats=community_stats(rows))


@bp.get("/communities/new")
@require_section(*LIST_SECTIONS)
@require_capability(SectionCapabilities.can_create)
def communities_new_get():
    return _render_form(None, {})


@bp.post("/communities/new")
@require_section(*LIST_SECTIONS)
@require_capability(SectionCapabilities.can_create)
def communities_new_post():
    s = db_session()
    payload = _payload_from_form()
    errors = validate_community_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(None, payload, 400)
    c = create_community(s, payload, _current_user())
    s.commit()
    flash("Comunidad creada.", "success")
    return redirect(url_for("communities.community_edit_get", community_id=c.id, section=g.active_section))


@bp.get("/communities/<int:community_id>/edit")
@require_section(*LIST_SECTIONS)
@require_capability(SectionCapabilities.can_edit)
def community_edit_get(community_id: int):
    return _render_form(_get_or_404(community_id), {})


@bp.post("/communities/<int:community_id>/edit")
@require_section(*LIST_SECTIONS)
@require_capability(SectionCapabilities.can_edit)
def community_edit_post(community_id: int):
    s = db_session()
    c = _get_or_404(community_id)
    payload = _payload_from_form()
    errors = validate_community_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(c, payload, 400)
    reason = (request.form.get("reason") or "").strip() or None
    update_community(s, c, payload, _current_user(), reason=reason)
    s.commit()
    flash("Comunidad actualizada.", "success")
    return redirect(url_for("communities.communities_list", section=g.active_section))


@bp.post("/communities/<int:community_id>/delete")
@require_section(*LIST_SECTIONS)
@require_capability(SectionCapabilities.can_delete)
def community_delete(community_id: int):
    s = db_session()
    c = _get_or_404(community_id)
    soft_delete_community(s, c, _current_user(), reason=(request.form.get("reason") or "").strip() or None)
    s.commit()
    flash("Comunidad eliminada.", "success")
    return redirect(url_for("communities.communities_list", section=g.active_section))
