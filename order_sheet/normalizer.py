"""Turn the rows below the header into SourceRecords."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Union

from order_sheet.cells import EMPTY, RawCellGrid, flatten
from order_sheet.header_locator import HeaderSelection
from order_sheet.keywords import is_date_field

logger = logging.getLogger(__name__)

Scalar = Union[str, int, float]
SourceRecord = dict[str, Scalar]

UNIX_EPOCH = datetime(1970, 1, 1)
# spreadsheet serial day number of 1970-01-01
EPOCH_SERIAL = 25569
DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def serial_to_datetime(serial: float) -> datetime:
    seconds = round((serial - EPOCH_SERIAL) * 86400)
    return UNIX_EPOCH + timedelta(seconds=seconds)


def format_datetime(value: datetime) -> str:
    if value.hour == 0 and value.minute == 0 and value.second == 0:
        return value.strftime(DATE_FORMAT)
    return value.strftime(DATETIME_FORMAT)


def format_datetime_value(value: Any) -> Any:
    """Render a date-like value canonically; text and anything unparseable pass through."""
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return format_datetime(serial_to_datetime(float(value)))
        except (OverflowError, ValueError):
            return value
    return value


def _scalar(value: Any) -> Scalar:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, datetime):
        return format_datetime(value)
    return value


def _is_empty(value: Scalar) -> bool:
    return isinstance(value, str) and value.strip() == ""


def normalize(grid: RawCellGrid, header: HeaderSelection) -> list[SourceRecord]:
    records: list[SourceRecord] = []
    date_fields = {name for name in header.fields if is_date_field(name)}
    skipped = 0
    for row in grid[header.row_index + 1:]:
        record: SourceRecord = {}
        for name, column in zip(header.fields, header.columns):
            cell = row[column] if column < len(row) else EMPTY
            value = flatten(cell)
            if name in date_fields:
                value = format_datetime_value(value)
            record[name] = _scalar(value)
        if all(_is_empty(value) for value in record.values()):
            skipped += 1
            continue
        records.append(record)

    if skipped:
        logger.debug("Dropped %d empty rows below the header", skipped)
    return records
