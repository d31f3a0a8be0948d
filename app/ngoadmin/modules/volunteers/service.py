from __future__ import annotations

from collections import Counter
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from app.ngoadmin.audit import record_event
from app.ngoadmin.utils import clean_phone, is_valid_gt_phone, parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.ngoadmin.models import User
    from app.ngoadmin.modules.volunteers.models import Volunteer


VOLUNTEER_TYPES = ("Agrícola", "Víveres", "Picking")
SHIFTS = ("Mañana", "Tarde", "Día completo")
MAX_HOURS_PER_DAY = Decimal("24")

EDITABLE_FIELDS = ("name", "volunteer_type", "organization", "shift", "work_date", "hours", "phone", "notes", "is_active")


def parse_hours(raw) -> Decimal | None:
    raw = (str(raw) if raw is not None else "").strip().replace(",", ".")
    if not raw:
        return None
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def validate_volunteer_payload(payload: dict, *, today: date | None = None) -> list[str]:
    today = today or date.today()
    errors = []
    name = (payload.get("name") or "").strip()
    if len(name) < 3:
        errors.append("El nombre debe tener al menos 3 caracteres.")
    if (payload.get("volunteer_type") or "").strip() not in VOLUNTEER_TYPES:
        errors.append(f"Tipo inválido. Debe ser uno de: {', '.join(VOLUNTEER_TYPES)}")
    if (payload.get("shift") or "").strip() not in SHIFTS:
        errors.append(f"Jornada inválida. Debe ser una de: {', '.join(SHIFTS)}")

    work_date = parse_date(payload.get("work_date"))
    if work_date is None:
        errors.append("La fecha de trabajo es requerida (AAAA-MM-DD).")
    elif work_date > today:
        errors.append("La fecha de trabajo no puede ser futura.")

    hours = parse_hours(payload.get("hours"))
    if hours is None:
        errors.append("Las horas deben ser un número.")
    elif hours < 0 or hours > MAX_HOURS_PER_DAY:
        errors.append("Las horas deben estar entre 0 y 24.")

    if not is_valid_gt_phone(payload.get("phone")):
        errors.append("El teléfono debe tener 8 dígitos.")
    return errors


def _normalized(payload: dict) -> dict:
    return {
        "name": (payload.get("name") or "").strip(),
        "volunteer_type": (payload.get("volunteer_type") or "").strip(),
        "organization": (payload.get("organization") or "").strip() or None,
        "shift": (payload.get("shift") or "").strip(),
        "work_date": parse_date(payload.get("work_date")),
        "hours": parse_hours(payload.get("hours")) or Decimal("0"),
        "phone": clean_phone(payload.get("phone")) or None,
        "notes": (payload.get("notes") or "").strip() or None,
        "is_active": bool(payload.get("is_active", True)),
    }


def create_volunteer(s: "Session", payload: dict, user: "User") -> "Volunteer":
    from app.ngoadmin.modules.volunteers.models import Volunteer

    now = datetime.utcnow()
    v = Volunteer(**_normalized(payload), created_at=now, updated_at=now, created_by_user_id=user.id)
    s.add(v)
    s.flush()
    record_event(
        s,
        actor=user,
        action="volunteer.create",
        entity_type="Volunteer",
        entity_id=str(v.id),
        metadata={"name": v.name, "work_date": v.work_date},
    )
    return v


def update_volunteer(s: "Session", v: "Volunteer", payload: dict, user: "User") -> "Volunteer":
    changes = {}
    for field, new in _normalized(payload).items():
        old = getattr(v, field)
        if new != old:
            changes[field] = {"old": str(old) if old is not None else None, "new": str(new) if new is not None else None}
            setattr(v, field, new)
    v.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="volunteer.edit",
        entity_type="Volunteer",
        entity_id=str(v.id),
        metadata={"name": v.name, "changes": changes},
    )
    return v


def soft_delete_volunteer(s: "Session", v: "Volunteer", user: "User") -> None:
    v.deleted_at = datetime.utcnow()
    record_event(s, actor=user, action="volunteer.delete", entity_type="Volunteer", entity_id=str(v.id),
                 metadata={"name": v.name})


def parse_volunteer_filters(args) -> dict:
    return {
        "q": (args.get("q") or "").strip(),
        "volunteer_type": (args.get("volunteer_type") or "").strip(),
        "organization": (args.get("organization") or "").strip(),
        "shift": (args.get("shift") or "").strip(),
        "status": (args.get("status") or "").strip(),
        "year": parse_int(args.get("year")),
        "month": parse_int(args.get("month")),
    }


def query_volunteers(s: "Session", filters: dict) -> "Query":
    from sqlalchemy import extract

    from app.ngoadmin.modules.volunteers.models import Volunteer

    q = s.query(Volunteer).filter(Volunteer.deleted_at.is_(None))
    if filters.get("q"):
        q = q.filter(Volunteer.name.ilike(f"%{filters['q']}%"))
    for field in ("volunteer_type", "organization", "shift"):
        value = filters.get(field)
        if value and value != "all":
            q = q.filter(getattr(Volunteer, field) == value)
    if filters.get("status") == "active":
        q = q.filter(Volunteer.is_active.is_(True))
    elif filters.get("status") == "inactive":
        q = q.filter(Volunteer.is_active.is_(False))
    if filters.get("year"):
        q = q.filter(extract("year", Volunteer.work_date) == filters["year"])
    if filters.get("month"):
        q = q.filter(extract("month", Volunteer.work_date) == filters["month"])
    return q


def volunteer_stats(rows: list["Volunteer"]) -> dict:
    total = len(rows)
    total_hours = sum((Decimal(v.hours or 0) for v in rows), Decimal("0"))
    average = (total_hours / total).quantize(Decimal("0.01")) if total else Decimal("0")
    return {
        "total": total,
        "active": sum(1 for v in rows if v.is_active),
        "by_type": dict(Counter(v.volunteer_type for v in rows)),
        "by_organization": dict(Counter(v.organization or "Sin organización" for v in rows)),
        "by_shift": dict(Counter(v.shift for v in rows)),
        "unique_names": len({v.name.strip().lower() for v in rows}),
        "total_hours": total_hours,
        "average_hours": average,
    }


EXPORT_COLUMNS = (
    ("Nombre", "name"),
    ("Tipo", "volunteer_type"),
    ("Organización", "organization"),
    ("Jornada", "shift"),
    ("Fecha", "work_date"),
    ("Horas", "hours"),
    ("Teléfono", "phone"),
    ("Activo", "is_active"),
)
