import logging
import os
from datetime import timedelta

from flask import Flask, g, render_template, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from app.ngoadmin.config import load_config
from app.ngoadmin.db import init_db, teardown_db_session
from app.ngoadmin.routes import bp as routes_bp
from app.ngoadmin.auth import bp as auth_bp, load_current_user, load_navigation
from app.ngoadmin.admin import bp as admin_bp
from app.ngoadmin.api import bp as api_bp
from app.ngoadmin.dashboard import bp as sections_bp
from app.ngoadmin.modules.forms.admin import bp as forms_bp
from app.ngoadmin.modules.forms.public import bp as public_forms_bp
from app.ngoadmin.modules.beneficiaries.admin import bp as beneficiaries_bp
from app.ngoadmin.modules.communities.admin import bp as communities_bp
from app.ngoadmin.modules.volunteers.admin import bp as volunteers_bp
from app.ngoadmin.rbac import NO_CAPABILITIES

# Tables and columns the running code depends on; checked once at startup.
_EXPECTED_SCHEMA = {
    "users": ("role_id", "last_login_at"),
    "role_sections": ("section_key",),
    "user_section_permissions": ("section_key", "created_by_user_id"),
    "audit_events": ("client_ip",),
    "form_templates": ("deleted_at", "section_location"),
    "form_questions": ("config_json", "order_index"),
    "form_submissions": ("form_version",),
    "beneficiaries": ("photo_storage_key",),
    "communities": ("families_in_ra",),
    "volunteers": ("hours",),
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=app.config["SESSION_HOURS"])
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    # CSRF protection (minimal)
    from app.ngoadmin.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_identity() -> dict:
        """Sidebar and permission helpers. nav_items is None while permissions are unresolved."""
        identity = getattr(g, "identity", None)
        gate = getattr(g, "nav_gate", None)

        def can_view(key: str) -> bool:
            return identity is not None and identity.can_view_section(key)

        return {
            "identity": identity,
            "nav_items": gate.render() if gate is not None else None,
            "nav_state": gate.state.value if gate is not None else "loading",
            "nav_expanded": gate.expanded_parents() if gate is not None else [],
            "active_section": getattr(g, "active_section", None),
            "caps": identity.capabilities if identity is not None else NO_CAPABILITIES,
            "can_view": can_view,
        }

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("phone")
    def _phone_filter(value) -> str:
        from app.ngoadmin.utils import format_gt_phone

        return format_gt_phone(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow auth endpoints to pass through (login/logout)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                if request.path.startswith("/api/"):
                    return {"error": "CSRF token missing or invalid."}, 400
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(sections_bp, url_prefix="/admin")
    app.register_blueprint(forms_bp, url_prefix="/admin")
    app.register_blueprint(public_forms_bp, url_prefix="/f")
    app.register_blueprint(beneficiaries_bp, url_prefix="/admin")
    app.register_blueprint(communities_bp, url_prefix="/admin")
    app.register_blueprint(volunteers_bp, url_prefix="/admin")

    # Order matters: identity needs the user, the gate needs the identity.
    app.before_request(load_current_user)
    app.before_request(load_navigation)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            for table, columns in _EXPECTED_SCHEMA.items():
                # A table that is absent entirely means a fresh database, not drift.
                if not insp.has_table(table):
                    continue
                cols = {c["name"] for c in insp.get_columns(table)}
                missing.extend(f"{table}.{col}" for col in columns if col not in cols)
        except SQLAlchemyError as e:
            app.logger.exception("Schema health check failed: %s", e)
            return

        if missing:
            app.config["_schema_health_ok"] = False
            app.config["_schema_health_missing"] = missing
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():
        if app.config.get("_schema_health_ok"):
            return None
        if request.path.startswith("/admin") and getattr(g, "current_user", None):
            return render_template("errors/schema_out_of_date.html", missing=app.config.get("_schema_health_missing") or []), 500
        return None

    @app.errorhandler(400)
    def _err_400(e):
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(403)
    def _err_403(e):
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def _err_404(e):
        return render_template("errors/404.html"), 404

    @app.errorhandler(413)
    def _err_413(e):
        from flask import flash, redirect, url_for

        flash("Archivo demasiado grande. El máximo es 10MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("admin.index")), 302

    @app.errorhandler(500)
    def _err_500(e):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(503)
    def _err_503(e):
        app.logger.warning("Permissions unavailable (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/503.html"), 503

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
