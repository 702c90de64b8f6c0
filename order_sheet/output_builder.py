from __future__ import annotations

import io
import logging
import zipfile
from typing import Any, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from order_sheet import keywords
from order_sheet.mapping import coerce_float, coerce_int

logger = logging.getLogger(__name__)

SHEET_TITLE = "발주서"
TOTAL_LABEL = "Total"
HEADER_COLOR = "E0E0E0"
MIN_COLUMN_WIDTH = 10
WIDTH_PER_CHAR = 1.5

_THIN = Side(style="thin")


def _header_font() -> Font:
    return Font(bold=True)


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def _thin_border() -> Border:
    return Border(top=_THIN, left=_THIN, bottom=_THIN, right=_THIN)


def column_width(label: Any) -> float:
    return max(len(str(label)) * WIDTH_PER_CHAR, MIN_COLUMN_WIDTH)


def _style_sheet(ws, fields: Sequence[str]) -> None:
    """Bold shaded bordered header row plus label-proportional column widths."""
    fill = _header_fill(HEADER_COLOR)
    font = _header_font()
    border = _thin_border()
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.border = border
    for i, label in enumerate(fields, start=1):
        ws.column_dimensions[get_column_letter(i)].width = column_width(label)


def _sum_ints(values: list[Any]) -> int:
    total = 0
    for value in values:
        coerced = coerce_int(value)
        total += coerced if coerced != "" else 0
    return total


def _sum_floats(values: list[Any]) -> float:
    total = 0.0
    for value in values:
        coerced = coerce_float(value)
        total += coerced if coerced != "" else 0.0
    return total


def compute_aggregate(fields: Sequence[str], records: Sequence[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    """Totals row for ``records``, or None when there is nothing to total.

    Only non-zero sums are included; the first product column carries the label.
    """
    if not records:
        return None
    aggregate: dict[str, Any] = {}
    labelled = False
    for name in fields:
        values = [record.get(name, "") for record in records]
        if keywords.is_product_field(name) and not labelled:
            aggregate[name] = TOTAL_LABEL
            labelled = True
        elif keywords.is_quantity_field(name):
            total = _sum_ints(values)
            if total != 0:
                aggregate[name] = total
        elif keywords.is_amount_total_field(name):
            total = _sum_floats(values)
            if total != 0:
                aggregate[name] = total
    return aggregate


def _store_uncompressed(payload: bytes) -> bytes:
    out = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(payload)) as source, zipfile.ZipFile(out, "w", zipfile.ZIP_STORED) as target:
        for info in source.infolist():
            target.writestr(info.filename, source.read(info.filename), compress_type=zipfile.ZIP_STORED)
    return out.getvalue()


def build_workbook(
    fields: Sequence[str],
    records: Sequence[Mapping[str, Any]],
    sheet_title: str = SHEET_TITLE,
) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_title

    ws.append(list(fields))
    _style_sheet(ws, fields)

    border = _thin_border()
    wrap = Alignment(wrap_text=True)
    for record in records:
        ws.append([_cell_value(record.get(name, "")) for name in fields])
        for cell in ws[ws.max_row]:
            cell.border = border
            cell.alignment = wrap

    aggregate = compute_aggregate(fields, records)
    if aggregate:
        row = ws.max_row + 1
        bold = Font(bold=True)
        for column, name in enumerate(fields, start=1):
            if name in aggregate:
                cell = ws.cell(row=row, column=column, value=aggregate[name])
                cell.font = bold

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.info("Built '%s' sheet with %d rows and %d columns", sheet_title, len(records), len(fields))
    return _store_uncompressed(buffer.getvalue())


def _cell_value(value: Any) -> Any:
    if value is None or value == "":
        return None
    return value
