from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.ngoadmin.modules.beneficiaries.models import Beneficiary
from app.ngoadmin.modules.communities.models import Community
from app.ngoadmin.modules.forms.models import FormTemplate
from app.ngoadmin.modules.volunteers.models import Volunteer
from app.ngoadmin.sections import get_section

logger = logging.getLogger(__name__)

_SOFT_DELETED_MODELS = {
    "beneficiaries": Beneficiary,
    "communities": Community,
    "volunteers": Volunteer,
}


def _count_live(s: Session, model) -> int:
    return s.scalar(select(func.count()).select_from(model).where(model.deleted_at.is_(None))) or 0


def count_active_forms(s: Session, location: str | None) -> int:
    stmt = (
        select(func.count())
        .select_from(FormTemplate)
        .where(FormTemplate.deleted_at.is_(None), FormTemplate.is_active.is_(True))
    )
    if location:
        stmt = stmt.where(FormTemplate.section_location == location)
    return s.scalar(stmt) or 0


def section_has_data(s: Session, section_key: str) -> bool:
    """True when the dataset behind a section holds at least one live row."""
    sec = get_section(section_key)
    if sec is None or sec.data_source is None:
        return True
    if sec.data_source == "forms":
        return count_active_forms(s, sec.form_location) > 0
    model = _SOFT_DELETED_MODELS.get(sec.data_source)
    if model is None:
        return True
    return _count_live(s, model) > 0


def make_data_lookup(s: Session) -> Callable[[str], bool]:
    """
    Per-request lookup; each dataset is counted at most once.

    A failed count is logged and leaves the leaf enabled. After the first
    failure the lookup stops querying for the rest of the request.
    """
    cache: dict[str, bool] = {}
    failed = False

    def lookup(section_key: str) -> bool:
        nonlocal failed
        if failed:
            return True
        sec = get_section(section_key)
        cache_key = f"{sec.data_source}:{sec.form_location}" if sec else section_key
        if cache_key not in cache:
            try:
                cache[cache_key] = section_has_data(s, section_key)
            except SQLAlchemyError:
                logger.exception("Data availability lookup failed (section=%s)", section_key)
                s.rollback()
                failed = True
                return True
        return cache[cache_key]

    return lookup
