from __future__ import annotations

import io
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _cell_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "Sí" if value else "No"
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)) or value is None or isinstance(value, (int, float, str)):
        return value
    return str(value)


def _field(row: Any, attr: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(attr)
    return getattr(row, attr, None)


def rows_to_xlsx(
    rows: Iterable[Any],
    columns: Sequence[tuple[str, str]],
    *,
    sheet_title: str = "Datos",
) -> bytes:
    """
    Write ORM rows (or dicts) to a single-sheet workbook. ``columns`` is (header, attribute or key) pairs.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title[:31]

    ws.append([header for header, _ in columns])
    for cell in ws[1]:
        cell.font = Font(bold=True)

    widths = [len(header) for header, _ in columns]
    for row in rows:
        values = [_cell_value(_field(row, attr)) for _, attr in columns]
        ws.append(values)
        for i, v in enumerate(values):
            widths[i] = max(widths[i], len(str(v)) if v is not None else 0)

    for i, w in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = min(w + 2, 60)
    ws.freeze_panes = "A2"

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_filename(prefix: str, today: date | None = None) -> str:
    today = today or date.today()
    return f"{prefix}_{today.strftime('%Y%m%d')}.xlsx"
