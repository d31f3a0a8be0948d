from __future__ import annotations

import re
from collections import Counter
from datetime import date, datetime
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from werkzeug.utils import secure_filename

from app.ngoadmin.audit import record_event
from app.ngoadmin.utils import clean_phone, is_valid_gt_phone, parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.ngoadmin.models import User
    from app.ngoadmin.modules.beneficiaries.models import Beneficiary


GENDERS = ("Masculino", "Femenino")
_NAME_RE = re.compile(r"^[a-zA-ZáéíóúÁÉÍÓÚñÑ\s]+$")
_DPI_RE = re.compile(r"^\d{13}$")
_MAPS_HOSTS = ("google.com/maps", "maps.google.com", "goo.gl", "maps.app.goo.gl")

EDITABLE_FIELDS = (
    "name",
    "age",
    "gender",
    "dpi",
    "program",
    "admission_date",
    "is_active",
    "department",
    "municipality",
    "village",
    "address",
    "google_maps_url",
    "personal_contact",
    "personal_phone",
    "notes",
)


def is_google_maps_url(url: str) -> bool:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    lower = url.lower()
    return any(h in lower for h in _MAPS_HOSTS)


def validate_beneficiary_payload(payload: dict, *, today: date | None = None) -> list[str]:
    """Validate create/update payload. Returns list of errors."""
    today = today or date.today()
    errors: list[str] = []

    name = (payload.get("name") or "").strip()
    if len(name) < 3:
        errors.append("El nombre debe tener al menos 3 caracteres.")
    elif len(name) > 100:
        errors.append("El nombre no puede exceder 100 caracteres.")
    elif not _NAME_RE.match(name):
        errors.append("El nombre solo puede contener letras y espacios.")

    age = parse_int(payload.get("age"))
    if age is None:
        errors.append("La edad debe ser un número entero.")
    elif not 1 <= age <= 120:
        errors.append("La edad debe estar entre 1 y 120 años.")

    if (payload.get("gender") or "").strip() not in GENDERS:
        errors.append("El género debe ser Masculino o Femenino.")

    dpi = (payload.get("dpi") or "").strip()
    if dpi and not _DPI_RE.match(dpi):
        errors.append("El DPI debe tener exactamente 13 dígitos numéricos.")

    if not (payload.get("program") or "").strip():
        errors.append("El programa es requerido.")

    raw_admission = (payload.get("admission_date") or "").strip()
    admission = parse_date(raw_admission)
    if not raw_admission or admission is None:
        errors.append("La fecha de ingreso es requerida (AAAA-MM-DD).")
    elif admission > today:
        errors.append("La fecha de ingreso no puede ser futura.")

    if not (payload.get("department") or "").strip():
        errors.append("El departamento es requerido.")
    if not (payload.get("municipality") or "").strip():
        errors.append("El municipio es requerido.")

    if len((payload.get("village") or "").strip()) > 100:
        errors.append("El nombre de la aldea no puede exceder 100 caracteres.")
    if len((payload.get("address") or "").strip()) > 255:
        errors.append("La dirección no puede exceder 255 caracteres.")

    maps_url = (payload.get("google_maps_url") or "").strip()
    if maps_url and not is_google_maps_url(maps_url):
        errors.append("Debe ser una URL válida de Google Maps.")

    if len((payload.get("personal_contact") or "").strip()) > 100:
        errors.append("El nombre de contacto no puede exceder 100 caracteres.")
    if not is_valid_gt_phone(payload.get("personal_phone")):
        errors.append("El número debe tener 8 dígitos (formato: XXXX-XXXX o XXXXXXXX).")

    return errors


def _normalized(payload: dict) -> dict:
    def opt(key: str) -> str | None:
        return (payload.get(key) or "").strip() or None

    phone = clean_phone(payload.get("personal_phone"))
    return {
        "name": (payload.get("name") or "").strip(),
        "age": parse_int(payload.get("age")),
        "gender": (payload.get("gender") or "").strip(),
        "dpi": opt("dpi"),
        "program": (payload.get("program") or "").strip(),
        "admission_date": parse_date(payload.get("admission_date")),
        "is_active": bool(payload.get("is_active", True)),
        "department": (payload.get("department") or "").strip(),
        "municipality": (payload.get("municipality") or "").strip(),
        "village": opt("village"),
        "address": opt("address"),
        "google_maps_url": opt("google_maps_url"),
        "personal_contact": opt("personal_contact"),
        "personal_phone": phone or None,
        "notes": opt("notes"),
    }


def create_beneficiary(s: "Session", payload: dict, user: "User") -> "Beneficiary":
    from app.ngoadmin.modules.beneficiaries.models import Beneficiary

    now = datetime.utcnow()
    b = Beneficiary(**_normalized(payload), created_at=now, updated_at=now,
                    created_by_user_id=user.id, updated_by_user_id=user.id)
    s.add(b)
    s.flush()
    record_event(
        s,
        actor=user,
        action="beneficiary.create",
        entity_type="Beneficiary",
        entity_id=str(b.id),
        metadata={"name": b.name, "program": b.program},
    )
    return b


def update_beneficiary(s: "Session", b: "Beneficiary", payload: dict, user: "User") -> "Beneficiary":
    changes = {}
    for field, new in _normalized(payload).items():
        old = getattr(b, field)
        if new != old:
            changes[field] = {"old": str(old) if old is not None else None, "new": str(new) if new is not None else None}
            setattr(b, field, new)
    b.updated_at = datetime.utcnow()
    b.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="beneficiary.edit",
        entity_type="Beneficiary",
        entity_id=str(b.id),
        metadata={"name": b.name, "changes": changes},
    )
    return b


def soft_delete_beneficiary(s: "Session", b: "Beneficiary", user: "User", reason: str | None = None) -> None:
    b.deleted_at = datetime.utcnow()
    b.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="beneficiary.delete",
        entity_type="Beneficiary",
        entity_id=str(b.id),
        reason=reason,
        metadata={"name": b.name},
    )


def build_photo_storage_key(beneficiary_id: int, filename: str, upload_date: date | None = None) -> str:
    upload_date = upload_date or date.today()
    safe = secure_filename(filename) or "photo.bin"
    return f"beneficiaries/{beneficiary_id}/{upload_date.isoformat()}/{safe}"


def upload_beneficiary_photo(
    s: "Session", b: "Beneficiary", file_bytes: bytes, filename: str, content_type: str, user: "User"
) -> str:
    from flask import current_app
    from app.ngoadmin.storage import storage_from_config

    storage = storage_from_config(current_app.config)
    key = build_photo_storage_key(b.id, filename)
    storage.put_bytes(key, file_bytes, content_type=content_type)
    previous = b.photo_storage_key
    if previous and previous != key:
        storage.delete(previous)
    b.photo_storage_key = key
    b.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="beneficiary.photo_upload",
        entity_type="Beneficiary",
        entity_id=str(b.id),
        metadata={"storage_key": key, "size_bytes": len(file_bytes)},
    )
    return key


def parse_beneficiary_filters(args) -> dict:
    return {
        "q": (args.get("q") or "").strip(),
        "program": (args.get("program") or "").strip(),
        "department": (args.get("department") or "").strip(),
        "status": (args.get("status") or "").strip(),
    }


def query_beneficiaries(s: "Session", filters: dict) -> "Query":
    from app.ngoadmin.modules.beneficiaries.models import Beneficiary

    q = s.query(Beneficiary).filter(Beneficiary.deleted_at.is_(None))
    if filters.get("q"):
        like = f"%{filters['q']}%"
        q = q.filter(Beneficiary.name.ilike(like) | Beneficiary.dpi.ilike(like))
    if filters.get("program"):
        q = q.filter(Beneficiary.program == filters["program"])
    if filters.get("department"):
        q = q.filter(Beneficiary.department == filters["department"])
    if filters.get("status") == "active":
        q = q.filter(Beneficiary.is_active.is_(True))
    elif filters.get("status") == "inactive":
        q = q.filter(Beneficiary.is_active.is_(False))
    return q


def beneficiary_stats(rows: list["Beneficiary"]) -> dict:
    """
    Aggregates for the charts tab. Empty input gives an all-zero summary.
    """
    total = len(rows)
    if total == 0:
        return {
            "total": 0,
            "active": 0,
            "inactive": 0,
            "by_gender": {"masculino": 0, "femenino": 0},
            "by_department": {},
            "by_department_details": {},
            "by_program": {},
            "average_age": 0,
        }

    active = sum(1 for b in rows if b.is_active)
    by_department: Counter[str] = Counter(b.department for b in rows)
    by_program: Counter[str] = Counter(b.program for b in rows)

    details: dict[str, dict] = {}
    for b in rows:
        d = details.setdefault(b.department, {"total": 0, "masculino": 0, "femenino": 0, "programs": {}})
        d["total"] += 1
        if b.gender == "Masculino":
            d["masculino"] += 1
        elif b.gender == "Femenino":
            d["femenino"] += 1
        d["programs"][b.program] = d["programs"].get(b.program, 0) + 1

    # JS Math.round semantics: halves round up
    average_age = int(sum(b.age for b in rows) / total + 0.5)

    return {
        "total": total,
        "active": active,
        "inactive": total - active,
        "by_gender": {
            "masculino": sum(1 for b in rows if b.gender == "Masculino"),
            "femenino": sum(1 for b in rows if b.gender == "Femenino"),
        },
        "by_department": dict(by_department),
        "by_department_details": details,
        "by_program": dict(by_program),
        "average_age": average_age,
    }


EXPORT_COLUMNS = (
    ("Nombre", "name"),
    ("Edad", "age"),
    ("Género", "gender"),
    ("DPI", "dpi"),
    ("Programa", "program"),
    ("Fecha de ingreso", "admission_date"),
    ("Activo", "is_active"),
    ("Departamento", "department"),
    ("Municipio", "municipality"),
    ("Aldea", "village"),
    ("Dirección", "address"),
    ("Teléfono", "personal_phone"),
)
