import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.ngoadmin.models import Permission, Role, RoleSection, User, UserSectionPermission
from app.ngoadmin.sections import ALL_SECTION_KEYS
from scripts._db_utils import database_url, script_session

PERMISSIONS = (
    ("forms.read", "Formularios: ver"),
    ("forms.create", "Formularios: crear"),
    ("forms.update", "Formularios: editar"),
    ("forms.delete", "Formularios: eliminar"),
    ("forms.fill", "Formularios: responder"),
    ("users.manage", "Usuarios: administrar"),
    ("submissions.view_all", "Respuestas: ver todas"),
    ("submissions.delete", "Respuestas: eliminar"),
    ("submissions.export", "Respuestas: exportar"),
)

ROLES = {
    "admin": ("Administrador", "Acceso total, incluida la gestión de usuarios."),
    "editor": ("Editor", "Crea y edita registros en las secciones asignadas."),
    "viewer": ("Lector", "Consulta las secciones asignadas."),
}

ROLE_PERMISSIONS = {
    "admin": tuple(key for key, _ in PERMISSIONS),
    "editor": ("forms.read", "forms.create", "forms.update", "forms.fill", "submissions.view_all", "submissions.export"),
    "viewer": ("forms.read",),
}

# Baseline sections per role; admins add more per user from the admin panel.
ROLE_SECTIONS = {
    "editor": (
        "pimco-formularios",
        "organizaciones-formularios",
        "comunidades-formularios",
        "auditorias-formularios",
        "voluntariado-formularios",
    ),
    "viewer": (
        "pimco-estadistica",
        "organizaciones-estadistica",
        "comunidades-estadistica",
        "auditorias-estadistica",
        "voluntariado-estadistica",
    ),
}


def seed_only(*, url: str | None = None) -> int:
    """
    Seed permissions, roles, role sections and the admin user idempotently.
    Does NOT overwrite an existing admin user's password.
    Returns how many stale section rows were removed.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@ngoadmin.org").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = database_url(url)

    with script_session(db_url) as s:
        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms[key] = p

        roles: dict[str, Role] = {}
        for key, (name, description) in ROLES.items():
            r = s.query(Role).filter(Role.key == key).one_or_none()
            if not r:
                r = Role(key=key, name=name, description=description)
                s.add(r)
            for perm_key in ROLE_PERMISSIONS[key]:
                if perms[perm_key] not in r.permissions:
                    r.permissions.append(perms[perm_key])
            existing = r.section_keys
            for section_key in ROLE_SECTIONS.get(key, ()):
                if section_key not in existing:
                    r.sections.append(RoleSection(section_key=section_key))
            roles[key] = r

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                display_name="Administrador",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if user.role is None:
            user.role = roles["admin"]

        pruned = prune_stale_sections(s)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    return pruned


def prune_stale_sections(s) -> int:
    """Delete role and user section rows whose key no longer exists in the menu."""
    stale_role_rows = s.query(RoleSection).filter(RoleSection.section_key.notin_(ALL_SECTION_KEYS)).all()
    stale_grants = s.query(UserSectionPermission).filter(UserSectionPermission.section_key.notin_(ALL_SECTION_KEYS)).all()
    for row in [*stale_role_rows, *stale_grants]:
        s.delete(row)
    return len(stale_role_rows) + len(stale_grants)


def main() -> None:
    seed_only()


if __name__ == "__main__":
    main()
