"""Template model: which columns the purchase order has, in which order, and
where each column's value comes from.

Templates are stored as rows with two mapping dicts (target → order key,
order key → source column), an optional ordered array and a dict of fixed
values. ``Template.from_row`` turns such a row into rules.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from order_sheet.errors import TemplateInvalid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectReference:
    source_field: str


@dataclass(frozen=True)
class FixedValue:
    literal: str


@dataclass(frozen=True)
class ComputedTemplate:
    pattern: str


FieldMappingRule = Union[DirectReference, FixedValue, ComputedTemplate]

FIXED_RULE_RE = re.compile(r"^\s*\[(?:고정값|fixed)\s*:\s*(.*?)\s*\]\s*$", re.IGNORECASE)
COMPUTED_RULE_RE = re.compile(r"^\s*\[(?:자동입력|auto)\s*:\s*(.*?)\s*\]\s*$", re.IGNORECASE)


def parse_rule(text: Any) -> FieldMappingRule:
    """Parse a stored rule string: ``[고정값: X]``, ``[자동입력: X]`` or a column name."""
    value = "" if text is None else str(text)
    match = FIXED_RULE_RE.match(value)
    if match:
        return FixedValue(match.group(1))
    match = COMPUTED_RULE_RE.match(value)
    if match:
        return ComputedTemplate(match.group(1))
    return DirectReference(value.strip())


@dataclass(frozen=True)
class Template:
    name: str
    ordered_target_fields: tuple[str, ...]
    rules: dict[str, FieldMappingRule] = field(default_factory=dict)
    fixed_fields: dict[str, str] = field(default_factory=dict)
    template_id: Optional[str] = None

    def __post_init__(self) -> None:
        fields = list(self.ordered_target_fields)
        if not fields:
            raise TemplateInvalid(f"Template '{self.name}' has no target fields.")
        blanks = [f for f in fields if not str(f).strip()]
        if blanks:
            raise TemplateInvalid(f"Template '{self.name}' has an empty target field name.")
        seen: set[str] = set()
        duplicates = []
        for name in fields:
            if name in seen and name not in duplicates:
                duplicates.append(name)
            seen.add(name)
        if duplicates:
            raise TemplateInvalid(
                f"Template '{self.name}' lists target fields more than once: {', '.join(duplicates)}"
            )
        # keys outside the ordered list are ignored
        ignored = sorted((set(self.rules) | set(self.fixed_fields)) - seen)
        if ignored:
            logger.debug("Template '%s' ignores rules for unlisted fields: %s", self.name, ", ".join(ignored))
        object.__setattr__(self, "ordered_target_fields", tuple(fields))

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Template":
        name = str(row.get("template_name") or row.get("name") or "").strip()
        supplier_mapping = row.get("supplier_field_mapping") or {}
        order_mapping = row.get("order_field_mapping") or {}
        fixed_fields = row.get("fixed_fields") or {}
        ordered_array = row.get("supplier_field_mapping_array")

        if not isinstance(supplier_mapping, Mapping) or not isinstance(order_mapping, Mapping):
            raise TemplateInvalid(f"Template '{name}' has malformed field mappings.")
        if not isinstance(fixed_fields, Mapping):
            raise TemplateInvalid(f"Template '{name}' has malformed fixed fields.")

        if isinstance(ordered_array, list) and ordered_array:
            try:
                entries = sorted(ordered_array, key=lambda item: item.get("order", 0))
                ordered = [str(item["supplierField"]) for item in entries]
            except (AttributeError, KeyError, TypeError) as exc:
                raise TemplateInvalid(f"Template '{name}' has a malformed ordered field list.") from exc
            for item in entries:
                if item.get("orderField") and item["supplierField"] not in supplier_mapping:
                    supplier_mapping = {**supplier_mapping, item["supplierField"]: item["orderField"]}
        else:
            ordered = [str(key) for key in supplier_mapping]

        rules: dict[str, FieldMappingRule] = {}
        for target, order_key in supplier_mapping.items():
            if order_key is None or str(order_key).strip() == "":
                continue
            rule = parse_rule(order_key)
            if isinstance(rule, DirectReference) and order_mapping:
                # order keys resolve through the order field map; unresolved keys stay empty
                column = order_mapping.get(rule.source_field)
                if column is None or str(column).strip() == "":
                    logger.debug(
                        "Template '%s': order key '%s' has no column; '%s' stays empty",
                        name,
                        rule.source_field,
                        target,
                    )
                    continue
                rule = DirectReference(str(column).strip())
            rules[str(target)] = rule

        template_id = row.get("id")
        return cls(
            name=name,
            ordered_target_fields=tuple(ordered),
            rules=rules,
            fixed_fields={str(k): "" if v is None else str(v) for k, v in fixed_fields.items()},
            template_id=None if template_id is None else str(template_id),
        )
