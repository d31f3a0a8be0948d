from datetime import datetime, time, timedelta

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.ngoadmin.accounts import (
    AccountError,
    available_roles_for,
    change_role,
    create_user,
    list_section_grants,
    replace_section_grants,
    reset_password,
    set_active,
)
from app.ngoadmin.db import db_session
from app.ngoadmin.models import AuditEvent, Role, User
from app.ngoadmin.rbac import SectionCapabilities, require_capability, require_login, require_section
from app.ngoadmin.sections import ADMIN_PANEL, SECTIONS, section_groups
from app.ngoadmin.utils import parse_date, parse_int

bp = Blueprint("admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_user_or_404(user_id: int) -> User:
    user = db_session().get(User, user_id)
    if not user:
        abort(404)
    return user


def _flash_account_error(e: AccountError) -> None:
    for msg in str(e).splitlines():
        flash(msg, "danger")


@bp.get("/")
@require_login
def index():
    """Landing page: the sections this user can open, with their availability."""
    identity = g.identity
    gate = g.nav_gate
    visible = []
    if identity is not None:
        visible = [sec for sec in SECTIONS if identity.can_view_section(sec.key)]
    return render_template("admin/index.html", sections=visible, nav_ready=gate.is_ready)


@bp.get("/me")
@require_login
def me():
    user = _current_user()
    identity = g.identity
    perm_keys = sorted(identity.capabilities.permission_keys) if identity else []
    section_keys = identity.allowed_sections if identity else []
    return render_template("admin/me.html", user=user, perm_keys=perm_keys, section_keys=section_keys)


@bp.get("/audit")
@require_section(ADMIN_PANEL)
@require_capability(SectionCapabilities.can_manage_users)
def audit_list():
    """
    Audit trail (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = parse_date(request.args.get("date_from"))
    date_to = parse_date(request.args.get("date_to"))

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from debe ser AAAA-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to debe ser AAAA-MM-DD", "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return render_template(
        "admin/audit.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )


# ============================================================================
# USER ADMINISTRATION
# ============================================================================

@bp.get("/users")
@require_section(ADMIN_PANEL)
@require_capability(SectionCapabilities.can_manage_users)
def users_list():
    s = db_session()
    status = (request.args.get("status") or "active").strip()
    q = s.query(User)
    if status == "active":
        q = q.filter(User.is_active.is_(True))
    elif status == "inactive":
        q = q.filter(User.is_active.is_(False))
    users = q.order_by(User.email.asc()).all()
    roles = available_roles_for(s, _current_user(), None)
    return render_template("admin/users/list.html", users=users, roles=roles, status=status)


@bp.post("/users/new")
@require_section(ADMIN_PANEL)
@require_capability(SectionCapabilities.can_manage_users)
def users_new_post():
    s = db_session()
    try:
        user = create_user(
            s,
            _current_user(),
            email=request.form.get("email") or "",
            display_name=request.form.get("display_name"),
            password=request.form.get("password") or "",
            password_confirm=request.form.get("password_confirm") or "",
            role_id=parse_int(request.form.get("role_id")),
        )
    except AccountError as e:
        _flash_account_error(e)
        return redirect(url_for("admin.users_list"))
    s.commit()
    flash(f"Cuenta creada para {user.email}.", "success")
    return redirect(url_for("admin.users_detail", user_id=user.id))


@bp.get("/users/<int:user_id>")
@require_section(ADMIN_PANEL)
@require_capability(SectionCapabilities.can_manage_users)
def users_detail(user_id: int):
    s = db_session()
    account = _get_user_or_404(user_id)
    granted = {g_.section_key for g_ in list_section_grants(s, account)}
    role_sections = account.role.section_keys if account.role else frozenset()
    return render_template(
        "admin/users/detail.html",
        account=account,
        roles=available_roles_for(s, _current_user(), account),
        groups=section_groups(),
        granted=granted,
        role_sections=role_sections,
    )


@bp.post("/users/<int:user_id>/role")
@require_section(ADMIN_PANEL)
@require_capability(SectionCapabilities.can_manage_users)
def users_change_role(user_id: int):
    s = db_session()
    account = _get_user_or_404(user_id)
    try:
        change_role(s, _current_user(), account, parse_int(request.form.get("role_id")))
    except AccountError as e:
        _flash_account_error(e)
        return redirect(url_for("admin.users_detail", user_id=user_id))
    s.commit()
    flash(f"Rol actualizado para {account.email}.", "success")
    return redirect(url_for("admin.users_detail", user_id=user_id))


@bp.post("/users/<int:user_id>/active")
@require_section(ADMIN_PANEL)
@require_capability(SectionCapabilities.can_manage_users)
def users_set_active(user_id: int):
    s = db_session()
    account = _get_user_or_404(user_id)
    active = request.form.get("is_active") == "1"
    try:
        set_active(s, _current_user(), account, active)
    except AccountError as e:
        _flash_account_error(e)
        return redirect(url_for("admin.users_detail", user_id=user_id))
    s.commit()
    flash(f"Cuenta {'activada' if active else 'desactivada'}: {account.email}.", "success")
    return redirect(url_for("admin.users_detail", user_id=user_id))


@bp.post("/users/<int:user_id>/reset-password")
@require_section(ADMIN_PANEL)
@require_capability(SectionCapabilities.can_manage_users)
def users_reset_password(user_id: int):
    s = db_session()
    account = _get_user_or_404(user_id)
    try:
        reset_password(
            s,
            _current_user(),
            account,
            request.form.get("password") or "",
            request.form.get("password_confirm") or "",
        )
    except AccountError as e:
        _flash_account_error(e)
        return redirect(url_for("admin.users_detail", user_id=user_id))
    s.commit()
    flash(f"Contraseña restablecida para {account.email}.", "success")
    return redirect(url_for("admin.users_detail", user_id=user_id))


@bp.post("/users/<int:user_id>/sections")
@require_section(ADMIN_PANEL)
@require_capability(SectionCapabilities.can_manage_users)
def users_sections(user_id: int):
    s = db_session()
    account = _get_user_or_404(user_id)
    try:
        replace_section_grants(s, _current_user(), account, request.form.getlist("section_keys"))
    except AccountError as e:
        _flash_account_error(e)
        return redirect(url_for("admin.users_detail", user_id=user_id))
    s.commit()
    flash(f"Secciones actualizadas para {account.email}.", "success")
    return redirect(url_for("admin.users_detail", user_id=user_id))


@bp.get("/roles")
@require_section(ADMIN_PANEL)
@require_capability(SectionCapabilities.can_manage_users)
def roles_list():
    s = db_session()
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return render_template("admin/roles.html", roles=roles, groups=section_groups())
