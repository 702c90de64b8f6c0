"""Closed cell-value model.

Reading libraries hand back strings, ints, floats, datetimes, rich-text runs,
pandas NaN/NaT and None depending on the library and the cell. ``to_cell``
folds all of them into one of four variants at the reader boundary, and
``flatten`` is the only way back to plain Python values.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Union

from openpyxl.cell.rich_text import CellRichText


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class DateTime:
    value: datetime


@dataclass(frozen=True)
class Empty:
    pass


EMPTY = Empty()

CellValue = Union[Text, Number, DateTime, Empty]
RawCellGrid = list[list[CellValue]]


def rich_text_to_str(value: Any) -> str | None:
    # openpyxl CellRichText, or a {"richText": [{"text": ...}]} payload
    if isinstance(value, dict) and isinstance(value.get("richText"), list):
        return "".join(str(part.get("text", "")) for part in value["richText"] if isinstance(part, dict))
    if isinstance(value, CellRichText):
        return "".join(getattr(part, "text", str(part)) for part in value)
    return None


def to_cell(raw: Any) -> CellValue:
    if raw is None:
        return EMPTY
    if isinstance(raw, (Text, Number, DateTime, Empty)):
        return raw
    if isinstance(raw, bool):
        return Text("TRUE" if raw else "FALSE")
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and math.isnan(raw):
            return EMPTY
        return Number(float(raw))
    if isinstance(raw, datetime):
        # pandas.Timestamp is a datetime subclass; NaT is not usable
        if type(raw).__name__ == "NaTType":
            return EMPTY
        if raw.tzinfo is not None:
            raw = raw.replace(tzinfo=None)
        return DateTime(datetime(raw.year, raw.month, raw.day, raw.hour, raw.minute, raw.second))
    if isinstance(raw, date):
        return DateTime(datetime(raw.year, raw.month, raw.day))
    if isinstance(raw, time):
        return Text(raw.strftime("%H:%M:%S"))
    if type(raw).__name__ == "NaTType":
        return EMPTY
    if hasattr(raw, "item") and not isinstance(raw, str):
        # numpy scalar
        try:
            return to_cell(raw.item())
        except (TypeError, ValueError):
            pass
    rich = rich_text_to_str(raw)
    if rich is not None:
        return Text(rich) if rich else EMPTY
    text = str(raw).replace("\x00", "")
    return Text(text) if text else EMPTY


def flatten(cell: CellValue) -> Union[str, int, float, datetime]:
    if isinstance(cell, Text):
        return cell.value
    if isinstance(cell, Number):
        if math.isfinite(cell.value) and cell.value.is_integer():
            return int(cell.value)
        return cell.value
    if isinstance(cell, DateTime):
        return cell.value
    return ""


def cell_text(cell: CellValue) -> str:
    """Trimmed display text of a cell; used by the scoring heuristics."""
    value = flatten(cell)
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.strftime("%Y-%m-%d")
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value).strip()


def is_blank(cell: CellValue) -> bool:
    if isinstance(cell, Empty):
        return True
    if isinstance(cell, Text):
        return cell.value.strip() == ""
    return False


def row_is_blank(row: list[CellValue]) -> bool:
    return all(is_blank(cell) for cell in row)
