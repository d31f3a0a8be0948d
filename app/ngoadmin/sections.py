"""
Section catalog and the static navigation tree.

Every navigable area of the console has a stable section key. Roles are
granted section keys (``role_sections``) and admins may add per-user grants
(``user_section_permissions``); the sidebar is the static tree below pruned
by :func:`app.ngoadmin.navigation.prune_menu`.
"""
from __future__ import annotations

from dataclasses import dataclass

from app.ngoadmin.navigation import MenuItem

ADMIN_PANEL = "admin-panel"

# Where a form template is shown (form_templates.section_location).
FORM_LOCATIONS = ("perfil-comunitario", "organizaciones", "auditorias", "comunidades", "voluntariado")


@dataclass(frozen=True)
class Section:
    key: str
    label: str
    group: str
    requires_data: bool = False
    # Backing dataset used to decide data availability for requires_data sections.
    data_source: str | None = None
    form_location: str | None = None
    # Blueprint endpoint that renders the section; None -> generic section page.
    endpoint: str | None = None


SECTIONS: tuple[Section, ...] = (
    Section("pimco-comunidades", "PIMCO - Comunidades", "Perfil Comunitario - PIMCO",
            data_source="communities", endpoint="communities.communities_list"),
    Section("pimco-estadistica", "PIMCO - Estadística", "Perfil Comunitario - PIMCO",
            requires_data=True, data_source="communities", endpoint="communities.communities_stats"),
    Section("pimco-formularios", "PIMCO - Formularios", "Perfil Comunitario - PIMCO",
            requires_data=True, data_source="forms", form_location="perfil-comunitario"),
    Section("pimco-diagnostico-comunitario", "PIMCO - Diagnóstico Comunitario", "Perfil Comunitario - PIMCO",
            form_location="perfil-comunitario"),
    Section("organizaciones-estadistica", "Organizaciones - Estadística", "Organizaciones",
            requires_data=True, data_source="forms", form_location="organizaciones"),
    Section("organizaciones-formularios", "Organizaciones - Formularios", "Organizaciones",
            requires_data=True, data_source="forms", form_location="organizaciones"),
    Section("comunidades-lista", "Comunidades - Lista", "Comunidades",
            data_source="communities", endpoint="communities.communities_list"),
    Section("comunidades-estadistica", "Comunidades - Estadística", "Comunidades",
            requires_data=True, data_source="communities", endpoint="communities.communities_stats"),
    Section("comunidades-formularios", "Comunidades - Formularios", "Comunidades",
            requires_data=True, data_source="forms", form_location="comunidades"),
    Section("comunidades-plantillas", "Comunidades - Plantillas", "Comunidades",
            form_location="comunidades", endpoint="forms.templates_list"),
    Section("auditorias-estadistica", "Auditorías - Estadística", "Auditorías",
            requires_data=True, data_source="forms", form_location="auditorias"),
    Section("auditorias-formularios", "Auditorías - Formularios", "Auditorías",
            requires_data=True, data_source="forms", form_location="auditorias"),
    Section("auditorias-tablero-consolidado", "Auditorías - Tablero Consolidado", "Auditorías",
            form_location="auditorias"),
    Section("auditorias-semaforo", "Auditorías - Semáforo", "Auditorías",
            form_location="auditorias"),
    Section("abrazando-leyendas", "Abrazando Leyendas", "Abrazando Leyendas",
            data_source="beneficiaries", endpoint="beneficiaries.beneficiaries_list"),
    Section("voluntariado-estadistica", "Voluntariado - Estadística", "Voluntariado",
            data_source="volunteers", endpoint="volunteers.volunteers_stats"),
    Section("voluntariado-formularios", "Voluntariado - Formularios", "Voluntariado",
            data_source="forms", form_location="voluntariado"),
    Section("voluntariado-tablero", "Voluntariado - Tablero", "Voluntariado",
            data_source="volunteers", endpoint="volunteers.volunteers_list"),
    Section(ADMIN_PANEL, "Panel de Admin", "Administración", endpoint="admin.users_list"),
)

SECTIONS_BY_KEY: dict[str, Section] = {sec.key: sec for sec in SECTIONS}
ALL_SECTION_KEYS: frozenset[str] = frozenset(SECTIONS_BY_KEY)


def section_groups() -> dict[str, list[Section]]:
    """Sections grouped for the permission editor, in catalog order."""
    groups: dict[str, list[Section]] = {}
    for sec in SECTIONS:
        groups.setdefault(sec.group, []).append(sec)
    return groups


def get_section(key: str) -> Section | None:
    return SECTIONS_BY_KEY.get(key)


def sections_for_form_location(location: str) -> tuple[str, ...]:
    """Section keys that list the forms of one location, in catalog order."""
    return tuple(sec.key for sec in SECTIONS if sec.form_location == location)


def _leaf(key: str, title: str, icon: str) -> MenuItem:
    return MenuItem(id=key, title=title, icon=icon, requires_data=SECTIONS_BY_KEY[key].requires_data)


MENU: tuple[MenuItem, ...] = (
    MenuItem(
        id="pimco",
        title="Perfil Comunitario",
        icon="building",
        children=(
            _leaf("pimco-comunidades", "Comunidades", "map-pin"),
            _leaf("pimco-estadistica", "Estadística", "bar-chart"),
            _leaf("pimco-formularios", "Formularios", "file-text"),
            _leaf("pimco-diagnostico-comunitario", "Diagnóstico Comunitario", "activity"),
        ),
    ),
    MenuItem(
        id="organizaciones",
        title="Organizaciones",
        icon="building",
        children=(
            _leaf("organizaciones-estadistica", "Estadística", "bar-chart"),
            _leaf("organizaciones-formularios", "Formularios", "file-text"),
        ),
    ),
    MenuItem(
        id="comunidades",
        title="Comunidades",
        icon="map-pin",
        children=(
            _leaf("comunidades-lista", "Lista", "list"),
            _leaf("comunidades-estadistica", "Estadística", "bar-chart"),
            _leaf("comunidades-formularios", "Formularios", "file-text"),
            _leaf("comunidades-plantillas", "Plantillas", "file-text"),
        ),
    ),
    MenuItem(
        id="auditorias",
        title="Auditorías",
        icon="shield",
        children=(
            _leaf("auditorias-estadistica", "Estadística", "bar-chart"),
            _leaf("auditorias-formularios", "Formularios", "file-text"),
            _leaf("auditorias-tablero-consolidado", "Tablero Consolidado", "activity"),
            _leaf("auditorias-semaforo", "Semáforo", "trending-up"),
        ),
    ),
    _leaf("abrazando-leyendas", "Abrazando Leyendas", "heart"),
    MenuItem(
        id="voluntariado",
        title="Voluntariado",
        icon="user-check",
        children=(
            _leaf("voluntariado-estadistica", "Estadística", "bar-chart"),
            _leaf("voluntariado-formularios", "Formularios", "file-text"),
            _leaf("voluntariado-tablero", "Tablero", "activity"),
        ),
    ),
    _leaf(ADMIN_PANEL, "Panel de Admin", "settings"),
)
