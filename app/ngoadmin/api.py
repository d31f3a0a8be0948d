from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import Blueprint, g, jsonify, request

from app.ngoadmin.accounts import AccountError, list_section_grants, replace_section_grants
from app.ngoadmin.db import db_session
from app.ngoadmin.models import User
from app.ngoadmin.modules.forms.models import FormTemplate
from app.ngoadmin.modules.forms.service import submission_counts
from app.ngoadmin.sections import ADMIN_PANEL, sections_for_form_location

bp = Blueprint("api", __name__)


def _json_auth(admin_only: bool = False) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """JSON flavour of the login/section checks: errors are bodies, not redirects."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return jsonify({"error": "No autenticado"}), 401
            identity = getattr(g, "identity", None)
            if identity is None:
                return jsonify({"error": "Permisos no disponibles"}), 503
            if admin_only and not (identity.can_view_section(ADMIN_PANEL) and identity.capabilities.can_manage_users()):
                g.missing_permission = "users.manage"
                return jsonify({"error": "Acceso denegado"}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def _grant_to_dict(grant) -> dict:
    return {
        "id": grant.id,
        "user_id": grant.user_id,
        "section_key": grant.section_key,
        "created_at": grant.created_at.isoformat() if grant.created_at else None,
        "created_by": grant.created_by_user_id,
    }


@bp.get("/user/permissions")
@_json_auth()
def user_permissions():
    """The current user's resolved capability set."""
    return jsonify(g.identity.to_dict())


@bp.get("/admin/users/<int:user_id>/section-permissions")
@_json_auth(admin_only=True)
def user_section_permissions_get(user_id: int):
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        return jsonify({"error": "Usuario no encontrado"}), 404
    return jsonify({"user_id": target.id, "permissions": [_grant_to_dict(p) for p in list_section_grants(s, target)]})


@bp.put("/admin/users/<int:user_id>/section-permissions")
@_json_auth(admin_only=True)
def user_section_permissions_put(user_id: int):
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        return jsonify({"error": "Usuario no encontrado"}), 404

    body = request.get_json(silent=True)
    keys = body.get("section_keys") if isinstance(body, dict) else None
    if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
        return jsonify({"error": "section_keys debe ser una lista de textos"}), 400

    try:
        saved = replace_section_grants(s, g.current_user, target, keys)
    except AccountError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "user_id": target.id, "section_keys": saved})


@bp.get("/forms/<int:form_id>/submissions/count")
@_json_auth()
def form_submission_count(form_id: int):
    s = db_session()
    form = s.get(FormTemplate, form_id)
    if not form:
        return jsonify({"error": "Formulario no encontrado"}), 404
    sections = sections_for_form_location(form.section_location) or (ADMIN_PANEL,)
    identity = g.identity
    if not any(identity.can_view_section(k) for k in sections) or not identity.capabilities.can_view_submissions():
        g.missing_permission = "submissions.view_all"
        return jsonify({"error": "Acceso denegado"}), 403
    return jsonify({"form_id": form.id, "count": submission_counts(s, [form.id])[form.id]})
