from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash

from app.ngoadmin.audit import record_event
from app.ngoadmin.availability import make_data_lookup
from app.ngoadmin.db import db_session
from app.ngoadmin.identity import build_identity
from app.ngoadmin.models import User
from app.ngoadmin.navigation import NavigationGate
from app.ngoadmin.sections import MENU

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

_UNTRACKED_PREFIXES = ("/static/", "/health", "/healthz")


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    recent = [t for t in _login_attempts.get(ip, ()) if t > cutoff]
    if recent:
        _login_attempts[ip] = recent
    else:
        _login_attempts.pop(ip, None)
    return len(recent) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def reset_rate_limits() -> None:
    _login_attempts.clear()


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie and assigns a
    per-request request_id for audit/log correlation.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(_UNTRACKED_PREFIXES):
        return

    user_id = session.get("user_id")
    if not user_id:
        return

    try:
        user = db_session().get(User, int(user_id))
    except (SQLAlchemyError, ValueError) as e:
        current_app.logger.error("load_current_user failed (clearing session): %s", e)
        session.pop("user_id", None)
        return
    if not user or not user.is_active:
        session.pop("user_id", None)
        return
    g.current_user = user


def load_navigation() -> None:
    """
    Builds the request identity and resolves the sidebar gate.

    If the permission lookup fails the gate stays in ``loading`` and the
    sidebar shows its placeholder; the error is logged, never raised.
    """
    g.identity = None
    g.active_section = None
    g.nav_gate = NavigationGate(MENU)
    user: User | None = getattr(g, "current_user", None)
    if user is None:
        return
    s = db_session()
    try:
        identity = build_identity(s, user)
    except SQLAlchemyError:
        current_app.logger.exception(
            "Permission lookup failed (user_id=%s request_id=%s)", user.id, getattr(g, "request_id", None)
        )
        s.rollback()
        return
    g.identity = identity
    g.nav_gate.resolve(identity.can_view_section, has_data=make_data_lookup(s))


@bp.get("/login")
def login_get():
    if getattr(g, "current_user", None):
        return redirect(url_for("admin.index"))
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Demasiados intentos. Espere 5 minutos.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        current_app.logger.info("Login failed for %s (request_id=%s)", email, g.request_id)
        flash("Credenciales inválidas.", "danger")
        if nxt:
            return redirect(url_for("auth.login_get", next=nxt))
        return redirect(url_for("auth.login_get"))

    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    _login_attempts.pop(ip, None)
    user.last_login_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    # Only local paths are honoured for "next" (no open redirects).
    if nxt.startswith("/") and not nxt.startswith("//"):
        return redirect(nxt)
    return redirect(url_for("admin.index"))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return redirect(url_for("auth.login_get"))
