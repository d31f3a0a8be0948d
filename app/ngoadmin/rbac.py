from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.ngoadmin.models import Role, RoleSection, User, UserSectionPermission
from app.ngoadmin.sections import ADMIN_PANEL, ALL_SECTION_KEYS

ADMIN_ROLE_KEY = "admin"


@dataclass(frozen=True)
class SectionCapabilities:
    """
    Resolved capability set for one user: which sections they may open and
    which permission keys their role carries.
    """

    allowed_sections: frozenset[str]
    permission_keys: frozenset[str]
    is_admin: bool = False

    def can_view_section(self, key: str) -> bool:
        if self.is_admin:
            return True
        if key == ADMIN_PANEL:
            return False
        return key in self.allowed_sections

    def has_permission(self, key: str) -> bool:
        return key in self.permission_keys

    def can_create(self) -> bool:
        return self.has_permission("forms.create")

    def can_edit(self) -> bool:
        return self.has_permission("forms.update")

    def can_delete(self) -> bool:
        return self.has_permission("forms.delete")

    def can_export(self) -> bool:
        return self.has_permission("submissions.export")

    def can_manage_users(self) -> bool:
        return self.has_permission("users.manage")

    def can_fill_form(self) -> bool:
        return self.has_permission("forms.fill")

    def can_view_submissions(self) -> bool:
        return self.has_permission("submissions.view_all")

    def can_delete_submissions(self) -> bool:
        return self.has_permission("submissions.delete")


NO_CAPABILITIES = SectionCapabilities(allowed_sections=frozenset(), permission_keys=frozenset())

CapabilityCheck = Callable[[SectionCapabilities], bool]


def load_capabilities(s: Session, user: User | None) -> SectionCapabilities:
    """
    Single lookup of a user's section/permission set.
    Admins see every section; everyone else gets role sections plus personal grants.
    """
    if not user or not user.is_active or user.role_id is None:
        return NO_CAPABILITIES
    role = s.get(Role, user.role_id)
    if role is None:
        return NO_CAPABILITIES

    perms = frozenset(p.key for p in role.permissions)
    if role.key == ADMIN_ROLE_KEY:
        return SectionCapabilities(allowed_sections=ALL_SECTION_KEYS, permission_keys=perms, is_admin=True)

    role_keys = s.scalars(select(RoleSection.section_key).where(RoleSection.role_id == role.id)).all()
    grant_keys = s.scalars(
        select(UserSectionPermission.section_key).where(UserSectionPermission.user_id == user.id)
    ).all()
    allowed = (set(role_keys) | set(grant_keys)) & ALL_SECTION_KEYS
    allowed.discard(ADMIN_PANEL)
    return SectionCapabilities(allowed_sections=frozenset(allowed), permission_keys=perms)


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def require_capability(check: CapabilityCheck) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Gate a view on one role action, passed as the unbound check itself:
    ``@require_capability(SectionCapabilities.can_export)``.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> login page; authenticated but unauthorized -> 403
            if not user or not user.is_active:
                return _login_redirect()
            identity = getattr(g, "identity", None)
            if identity is None:
                abort(503)
            if not check(identity.capabilities):
                g.missing_permission = check.__name__
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def _pick_section(section_keys: tuple[str, ...], can_view: Callable[[str], bool]) -> str | None:
    """
    A view may back several sections (e.g. the community list under PIMCO and under
    Comunidades). ``?section=`` selects one explicitly; otherwise the first visible one wins.
    """
    requested = (request.args.get("section") or "").strip()
    if requested in section_keys:
        return requested if can_view(requested) else None
    for key in section_keys:
        if can_view(key):
            return key
    return None


def require_section(*section_keys: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Gate a view on section visibility. Also records the active section for sidebar highlighting.
    """
    if not section_keys:
        raise ValueError("require_section needs at least one section key")

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return _login_redirect()
            identity = getattr(g, "identity", None)
            if identity is None:
                # Permission lookup failed for this request; cannot decide either way.
                abort(503)
            section_key = _pick_section(section_keys, identity.can_view_section)
            if section_key is None:
                g.missing_permission = "section:" + "|".join(section_keys)
                abort(403)
            g.active_section = section_key
            nav = getattr(g, "nav_gate", None)
            if nav is not None:
                nav.active_section = section_key
            return fn(*args, **kwargs)

        return wrapped

    return decorator
