"""
mapping.py — apply a Template to SourceRecords.

Resolution order per target field:
    manual override (non-empty) > fixed value > template rule > ""

A target field never picks up a source column just because the names match;
only an explicit rule maps data across.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from order_sheet import keywords
from order_sheet.cells import rich_text_to_str
from order_sheet.errors import RowConversionFailed
from order_sheet.normalizer import DATE_FORMAT, DATETIME_FORMAT, format_datetime, format_datetime_value
from order_sheet.template import ComputedTemplate, DirectReference, FieldMappingRule, FixedValue, Template

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([^{}]*)\}")
TEMPLATE_NAME_PLACEHOLDERS = {"template_name", "템플릿명"}
NOW_PLACEHOLDERS = {"now", "timestamp", "현재시각"}
TODAY_PLACEHOLDERS = {"today", "오늘"}

LEADING_INT_RE = re.compile(r"^[+-]?\d+")
LEADING_FLOAT_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")

TargetRecord = dict[str, Any]


@dataclass(frozen=True)
class RowError:
    row_index: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"rowIndex": self.row_index, "message": self.message}


@dataclass
class MappingOutcome:
    records: list[TargetRecord] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)


# ── value shaping ─────────────────────────────────────────────────────────────

def flatten_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (str, int, float)):
        return value
    if isinstance(value, datetime):
        return format_datetime(value)
    rich = rich_text_to_str(value)
    if rich is not None:
        return rich
    if isinstance(value, (list, tuple)):
        return ", ".join(str(flatten_value(item)) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _numeric_text(value: Any) -> str:
    return str(value).replace(",", "").strip()


def coerce_int(value: Any) -> Any:
    if isinstance(value, bool):
        return ""
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and abs(value) != float("inf") else ""
    match = LEADING_INT_RE.match(_numeric_text(value))
    return int(match.group(0)) if match else ""


def coerce_float(value: Any) -> Any:
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return float(value)
    match = LEADING_FLOAT_RE.match(_numeric_text(value))
    return float(match.group(0)) if match else ""


def coerce_for_field(target_field: str, value: Any) -> Any:
    if keywords.is_quantity_field(target_field):
        return "" if value == "" else coerce_int(value)
    if keywords.is_price_field(target_field):
        return "" if value == "" else coerce_float(value)
    if keywords.is_date_field(target_field):
        return format_datetime_value(value)
    return value


# ── resolution ────────────────────────────────────────────────────────────────

def expand_pattern(pattern: str, template: Template, record: Mapping[str, Any], now: datetime) -> str:
    def substitute(match: re.Match) -> str:
        name = match.group(1).strip()
        if name in TEMPLATE_NAME_PLACEHOLDERS:
            return template.name
        if name in NOW_PLACEHOLDERS:
            return now.strftime(DATETIME_FORMAT)
        if name in TODAY_PLACEHOLDERS:
            return now.strftime(DATE_FORMAT)
        if name in record:
            return str(flatten_value(record[name]))
        return ""

    return PLACEHOLDER_RE.sub(substitute, pattern)


def resolve_rule(
    rule: FieldMappingRule,
    template: Template,
    record: Mapping[str, Any],
    now: datetime,
) -> Any:
    if isinstance(rule, DirectReference):
        return record.get(rule.source_field, "")
    if isinstance(rule, FixedValue):
        return rule.literal
    if isinstance(rule, ComputedTemplate):
        return expand_pattern(rule.pattern, template, record, now)
    raise TypeError(f"Unknown mapping rule: {rule!r}")


def _has_override(manual_fields: Mapping[str, Any], target_field: str) -> bool:
    value = manual_fields.get(target_field)
    return value is not None and str(value) != ""


def map_record(
    template: Template,
    record: Mapping[str, Any],
    manual_fields: Mapping[str, Any],
    now: datetime,
) -> TargetRecord:
    target: TargetRecord = {}
    for target_field in template.ordered_target_fields:
        if _has_override(manual_fields, target_field):
            value = manual_fields[target_field]
        elif target_field in template.fixed_fields:
            value = template.fixed_fields[target_field]
        elif target_field in template.rules:
            value = resolve_rule(template.rules[target_field], template, record, now)
        else:
            value = ""
        target[target_field] = coerce_for_field(target_field, flatten_value(value))
    return target


def apply_template(
    template: Template,
    records: list[Mapping[str, Any]],
    manual_fields: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> MappingOutcome:
    """Map every record; rows that fail are reported and skipped."""
    manual_fields = manual_fields or {}
    now = now or datetime.now()
    ignored = sorted(set(manual_fields) - set(template.ordered_target_fields))
    if ignored:
        logger.info("Manual values for fields not in template '%s' ignored: %s", template.name, ", ".join(ignored))

    outcome = MappingOutcome()
    for index, record in enumerate(records, start=1):
        try:
            outcome.records.append(map_record(template, record, manual_fields, now))
        except (TypeError, ValueError, KeyError, OverflowError) as exc:
            failure = RowConversionFailed(index, f"{type(exc).__name__}: {exc}")
            logger.warning("Row %d skipped: %s", failure.row_index, failure.message)
            outcome.errors.append(RowError(failure.row_index, failure.message))

    logger.info(
        "Template '%s' mapped %d of %d rows",
        template.name,
        len(outcome.records),
        len(records),
    )
    return outcome
