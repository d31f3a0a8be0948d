from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date

_GT_PHONE = re.compile(r"^[2-7]\d{7}$")


def parse_date(s: str | None) -> date | None:
    """Parse a YYYY-MM-DD string; blank or malformed input gives None."""
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def parse_int(s: str | int | None, default: int | None = None) -> int | None:
    if isinstance(s, int):
        return s
    s = (s or "").strip()
    if not s:
        return default
    try:
        return int(s)
    except ValueError:
        return default


def clean_phone(phone: str | None) -> str:
    return re.sub(r"\D", "", phone or "")


def is_valid_gt_phone(phone: str | None) -> bool:
    """Guatemalan numbers: 8 digits starting 2-7, dash optional. Blank is accepted."""
    if not phone:
        return True
    return bool(_GT_PHONE.match(clean_phone(phone)))


def format_gt_phone(phone: str | None) -> str:
    if not phone:
        return "-"
    digits = clean_phone(phone)
    if len(digits) != 8:
        return phone
    return f"{digits[:4]}-{digits[4:]}"


def percentage(part: float, whole: float, ndigits: int = 1) -> float:
    if not whole:
        return 0.0
    return round(part * 100.0 / whole, ndigits)


@dataclass(frozen=True)
class Page:
    number: int
    per_page: int
    total: int

    @property
    def offset(self) -> int:
        return (self.number - 1) * self.per_page

    @property
    def has_prev(self) -> bool:
        return self.number > 1

    @property
    def has_next(self) -> bool:
        return self.number * self.per_page < self.total

    @property
    def total_pages(self) -> int:
        return max(1, (self.total + self.per_page - 1) // self.per_page)

    @property
    def first_item(self) -> int:
        return 0 if self.total == 0 else self.offset + 1

    @property
    def last_item(self) -> int:
        return min(self.offset + self.per_page, self.total)


def make_page(raw_page: str | None, total: int, per_page: int = 50) -> Page:
    number = parse_int(raw_page, 1) or 1
    number = max(1, number)
    return Page(number=number, per_page=per_page, total=total)
