from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING

from app.ngoadmin.audit import record_event
from app.ngoadmin.utils import clean_phone, is_valid_gt_phone, parse_date, parse_int, percentage

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.ngoadmin.models import User
    from app.ngoadmin.modules.communities.models import Community


STATUSES = ("activa", "inactiva", "suspendida")
CLASSIFICATIONS = ("Pequeña", "Mediana", "Grande")

EDITABLE_FIELDS = (
    "registration_date",
    "department",
    "municipality",
    "villages",
    "google_maps_url",
    "leader_name",
    "leader_phone",
    "is_in_leaders_group",
    "status",
    "inactive_reason",
    "classification",
    "total_families",
    "families_in_ra",
)


def validate_community_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("department") or "").strip():
        errors.append("El departamento es requerido.")
    if not (payload.get("municipality") or "").strip():
        errors.append("El municipio es requerido.")

    status = (payload.get("status") or "activa").strip()
    if status not in STATUSES:
        errors.append(f"Estado inválido. Debe ser uno de: {', '.join(STATUSES)}")
    elif status != "activa" and not (payload.get("inactive_reason") or "").strip():
        errors.append("Indique el motivo cuando la comunidad no está activa.")

    classification = (payload.get("classification") or "").strip()
    if classification and classification not in CLASSIFICATIONS:
        errors.append(f"Clasificación inválida. Debe ser una de: {', '.join(CLASSIFICATIONS)}")

    if not is_valid_gt_phone(payload.get("leader_phone")):
        errors.append("El teléfono del líder debe tener 8 dígitos.")

    raw_date = (payload.get("registration_date") or "").strip()
    if raw_date and parse_date(raw_date) is None:
        errors.append("Fecha de registro inválida (AAAA-MM-DD).")

    totals = {}
    for key, label in (("total_families", "Total de familias"), ("families_in_ra", "Familias en RA")):
        raw = (str(payload.get(key) or "")).strip()
        if not raw:
            continue
        value = parse_int(raw)
        if value is None or value < 0:
            errors.append(f"{label} debe ser un número entero positivo.")
        else:
            totals[key] = value
    if "total_families" in totals and "families_in_ra" in totals and totals["families_in_ra"] > totals["total_families"]:
        errors.append("Las familias en RA no pueden superar el total de familias.")
    return errors


def _normalized(payload: dict) -> dict:
    def opt(key: str) -> str | None:
        return (payload.get(key) or "").strip() or None

    status = (payload.get("status") or "activa").strip()
    return {
        "registration_date": parse_date(payload.get("registration_date")),
        "department": (payload.get("department") or "").strip(),
        "municipality": (payload.get("municipality") or "").strip(),
        "villages": opt("villages"),
        "google_maps_url": opt("google_maps_url"),
        "leader_name": opt("leader_name"),
        "leader_phone": clean_phone(payload.get("leader_phone")) or None,
        "is_in_leaders_group": bool(payload.get("is_in_leaders_group")),
        "status": status,
        "inactive_reason": opt("inactive_reason") if status != "activa" else None,
        "classification": opt("classification"),
        "total_families": parse_int(payload.get("total_families")),
        "families_in_ra": parse_int(payload.get("families_in_ra")),
    }


def create_community(s: "Session", payload: dict, user: "User") -> "Community":
    from app.ngoadmin.modules.communities.models import Community

    now = datetime.utcnow()
    c = Community(**_normalized(payload), created_at=now, updated_at=now,
                  created_by_user_id=user.id, updated_by_user_id=user.id)
    s.add(c)
    s.flush()
    record_event(
        s,
        actor=user,
        action="community.create",
        entity_type="Community",
        entity_id=str(c.id),
        metadata={"department": c.department, "municipality": c.municipality},
    )
    return c


def update_community(s: "Session", c: "Community", payload: dict, user: "User", reason: str | None = None) -> "Community":
    changes = {}
    for field, new in _normalized(payload).items():
        old = getattr(c, field)
        if new != old:
            changes[field] = {"old": str(old) if old is not None else None, "new": str(new) if new is not None else None}
            setattr(c, field, new)
    c.updated_at = datetime.utcnow()
    c.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="community.edit",
        entity_type="Community",
        entity_id=str(c.id),
        reason=reason,
        metadata={"changes": changes},
    )
    return c


def soft_delete_community(s: "Session", c: "Community", user: "User", reason: str | None = None) -> None:
    c.deleted_at = datetime.utcnow()
    c.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="community.delete",
        entity_type="Community",
        entity_id=str(c.id),
        reason=reason,
        metadata={"department": c.department, "municipality": c.municipality},
    )


def parse_community_filters(args) -> dict:
    return {
        "q": (args.get("q") or "").strip(),
        "department": (args.get("department") or "").strip(),
        "status": (args.get("status") or "").strip(),
        "classification": (args.get("classification") or "").strip(),
    }


def query_communities(s: "Session", filters: dict) -> "Query":
    from app.ngoadmin.modules.communities.models import Community

    q = s.query(Community).filter(Community.deleted_at.is_(None))
    if filters.get("q"):
        like = f"%{filters['q']}%"
        q = q.filter(
            Community.municipality.ilike(like)
            | Community.villages.ilike(like)
            | Community.leader_name.ilike(like)
        )
    if filters.get("department"):
        q = q.filter(Community.department == filters["department"])
    if filters.get("status") in STATUSES:
        q = q.filter(Community.status == filters["status"])
    if filters.get("classification"):
        q = q.filter(Community.classification == filters["classification"])
    return q


def community_stats(rows: list["Community"]) -> dict:
    by_status = Counter(c.status for c in rows)
    by_department = Counter(c.department for c in rows)
    by_classification = Counter(c.classification for c in rows if c.classification)
    total_families = sum(c.total_families or 0 for c in rows)
    families_in_ra = sum(c.families_in_ra or 0 for c in rows)
    return {
        "total": len(rows),
        "active": by_status.get("activa", 0),
        "inactive": by_status.get("inactiva", 0),
        "suspended": by_status.get("suspendida", 0),
        "by_department": [{"department": d, "count": n} for d, n in by_department.most_common()],
        "by_classification": [{"classification": k, "count": n} for k, n in by_classification.most_common()],
        "total_families": total_families,
        "families_in_ra": families_in_ra,
        "families_in_ra_pct": percentage(families_in_ra, total_families),
        "in_leaders_group": sum(1 for c in rows if c.is_in_leaders_group),
    }
