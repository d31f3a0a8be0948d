from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.ngoadmin.models import User
from app.ngoadmin.rbac import SectionCapabilities, load_capabilities


@dataclass(frozen=True)
class SessionIdentity:
    """
    Who is signed in and what they may see. Built once per request by the
    app root and handed to the navigation gate, views and templates.
    """

    user_id: int
    email: str
    name: str
    role_key: str | None
    role_name: str | None
    capabilities: SectionCapabilities

    @property
    def is_admin(self) -> bool:
        return self.capabilities.is_admin

    def can_view_section(self, key: str) -> bool:
        return self.capabilities.can_view_section(key)

    @property
    def allowed_sections(self) -> list[str]:
        return sorted(self.capabilities.allowed_sections)

    def to_dict(self) -> dict:
        return {
            "id": self.user_id,
            "email": self.email,
            "name": self.name,
            "role": self.role_key,
            "is_admin": self.is_admin,
            "allowed_sections": self.allowed_sections,
            "permissions": sorted(self.capabilities.permission_keys),
            "is_active": True,
        }


def build_identity(s: Session, user: User) -> SessionIdentity:
    caps = load_capabilities(s, user)
    return SessionIdentity(
        user_id=user.id,
        email=user.email,
        name=user.label,
        role_key=user.role.key if user.role else None,
        role_name=user.role.name if user.role else None,
        capabilities=caps,
    )