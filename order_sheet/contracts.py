"""Versioned JSON shapes returned by the service and printed by the CLI."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from order_sheet.errors import ConversionError, LegacyFileTooLarge, WorkbookUnreadable

CONTRACT_VERSIONS = {
    "order_sheet.convert": "1.0.0",
    "order_sheet.headers": "1.0.0",
    "order_sheet.preview": "1.0.0",
    "order_sheet.sniff": "1.0.0",
}

RESAVE_SUGGESTION = (
    "Open the file in a spreadsheet application, save it as an Excel workbook (.xlsx) "
    "and upload it again."
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def success_response(contract: str, **payload: Any) -> dict[str, Any]:
    return {"success": True, "contract": build_contract(contract), **payload}


def suggestion_for(error: ConversionError) -> Optional[str]:
    if isinstance(error, (WorkbookUnreadable, LegacyFileTooLarge)):
        return RESAVE_SUGGESTION
    return None


def error_response(error: ConversionError) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "error": error.message, "code": error.code}
    payload["causes"] = list(error.causes)
    suggestion = suggestion_for(error)
    if suggestion:
        payload["suggestion"] = suggestion
    return payload


def build_run_summary(
    *,
    command: str,
    input_path: Path,
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": "order-sheet",
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": str(input_path),
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }
