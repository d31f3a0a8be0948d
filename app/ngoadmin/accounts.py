from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.ngoadmin.audit import record_event
from app.ngoadmin.models import Role, User, UserSectionPermission
from app.ngoadmin.rbac import ADMIN_ROLE_KEY
from app.ngoadmin.sections import ALL_SECTION_KEYS

MIN_PASSWORD_LENGTH = 8
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class AccountError(ValueError):
    """A user-administration rule was violated. The message is user-facing."""


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def _is_admin(user: User) -> bool:
    return user.role is not None and user.role.key == ADMIN_ROLE_KEY


def validate_password(password: str, password_confirm: str) -> list[str]:
    errors = []
    if not password:
        errors.append("La contraseña es requerida.")
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres.")
    elif password != password_confirm:
        errors.append("Las contraseñas no coinciden.")
    return errors


def count_active_admins(s: Session) -> int:
    return (
        s.scalar(
            select(func.count())
            .select_from(User)
            .join(Role, User.role_id == Role.id)
            .where(Role.key == ADMIN_ROLE_KEY, User.is_active.is_(True))
        )
        or 0
    )


def available_roles_for(s: Session, actor: User, target: User | None) -> list[Role]:
    """
    Roles the actor may assign to ``target``. The admin role is only offered
    when an admin edits their own account.
    """
    roles = s.query(Role).order_by(Role.name.asc()).all()
    editing_self = target is not None and target.id == actor.id
    if editing_self and _is_admin(actor):
        return roles
    return [r for r in roles if r.key != ADMIN_ROLE_KEY]


def create_user(
    s: Session,
    actor: User,
    *,
    email: str,
    display_name: str | None,
    password: str,
    password_confirm: str,
    role_id: int | None,
) -> User:
    email = (email or "").strip().lower()
    errors = []
    if not email:
        errors.append("El correo es requerido.")
    elif not is_valid_email(email):
        errors.append("Formato de correo inválido.")
    elif s.query(User).filter(User.email == email).one_or_none():
        errors.append("Ya existe una cuenta con ese correo.")
    errors.extend(validate_password(password, password_confirm))

    role = s.get(Role, role_id) if role_id else None
    if role_id and role is None:
        errors.append("Rol inválido.")
    elif role is not None and role.key == ADMIN_ROLE_KEY:
        errors.append("El rol administrador no se puede asignar al crear una cuenta.")
    if errors:
        raise AccountError("\n".join(errors))

    now = datetime.utcnow()
    user = User(
        email=email,
        display_name=(display_name or "").strip() or None,
        password_hash=generate_password_hash(password),
        is_active=True,
        role_id=role.id if role else None,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "role": role.key if role else None},
    )
    return user


def change_role(s: Session, actor: User, target: User, role_id: int | None) -> User:
    if _is_admin(target) and target.id != actor.id:
        raise AccountError("No puede editar a otro administrador.")

    new_role = s.get(Role, role_id) if role_id else None
    if role_id and new_role is None:
        raise AccountError("Rol inválido.")
    if new_role is not None and new_role.key == ADMIN_ROLE_KEY and not (target.id == actor.id and _is_admin(actor)):
        raise AccountError("El rol administrador solo puede asignarse a uno mismo.")

    demoting_admin = _is_admin(target) and (new_role is None or new_role.key != ADMIN_ROLE_KEY)
    if demoting_admin and target.is_active and count_active_admins(s) <= 1:
        raise AccountError("No puede quitar el rol al último administrador activo.")

    old_key = target.role.key if target.role else None
    if (new_role.id if new_role else None) == target.role_id:
        return target
    target.role = new_role
    target.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.role_change",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"email": target.email, "old": old_key, "new": new_role.key if new_role else None},
    )
    return target


def set_active(s: Session, actor: User, target: User, active: bool) -> User:
    if not active and target.id == actor.id:
        raise AccountError("No puede desactivar su propia cuenta.")
    if _is_admin(target) and target.id != actor.id:
        raise AccountError("No puede editar a otro administrador.")
    if target.is_active == active:
        return target
    target.is_active = active
    target.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.activate" if active else "user.deactivate",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"email": target.email},
    )
    return target


def reset_password(s: Session, actor: User, target: User, password: str, password_confirm: str) -> User:
    errors = validate_password(password, password_confirm)
    if errors:
        raise AccountError("\n".join(errors))
    if _is_admin(target) and target.id != actor.id:
        raise AccountError("No puede editar a otro administrador.")
    target.password_hash = generate_password_hash(password)
    target.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.password_reset",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"target_email": target.email, "reset_by": actor.email},
    )
    return target


def list_section_grants(s: Session, user: User) -> list[UserSectionPermission]:
    return (
        s.query(UserSectionPermission)
        .filter(UserSectionPermission.user_id == user.id)
        .order_by(UserSectionPermission.section_key.asc())
        .all()
    )


def replace_section_grants(s: Session, actor: User, target: User, section_keys: Iterable[str]) -> list[str]:
    """
    Replace a user's personal section grants (delete, then insert).
    Unknown keys reject the whole request.
    """
    keys = sorted({(k or "").strip() for k in section_keys if (k or "").strip()})
    unknown = [k for k in keys if k not in ALL_SECTION_KEYS]
    if unknown:
        raise AccountError(f"Secciones desconocidas: {', '.join(unknown)}")

    before = sorted(g.section_key for g in list_section_grants(s, target))
    s.execute(delete(UserSectionPermission).where(UserSectionPermission.user_id == target.id))
    now = datetime.utcnow()
    for key in keys:
        s.add(UserSectionPermission(user_id=target.id, section_key=key, created_at=now, created_by_user_id=actor.id))
    s.flush()
    s.expire(target, ["section_grants"])
    record_event(
        s,
        actor=actor,
        action="user.section_grants",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"email": target.email, "before": before, "after": keys},
    )
    return keys
