from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from order_sheet import __version__ as TOOL_VERSION
from order_sheet.config import PROFILES, Settings
from order_sheet.contracts import build_run_summary, error_response, success_response
from order_sheet.errors import (
    ConversionError,
    FileTooLarge,
    HeaderNotFound,
    LegacyFileTooLarge,
    TemplateInvalid,
    TemplateNotFound,
    UnclassifiableFormat,
    WorkbookUnreadable,
)
from order_sheet.log import setup_logging
from order_sheet.service import PREVIEW_ROWS, convert_order, convert_records, extract_headers, preview_source
from order_sheet.sniffer import FileFormat, classify, describe_signature
from order_sheet.stores import JsonTemplateStore
from order_sheet.text_decoder import decode_text

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_UNREADABLE = 2
EXIT_TEMPLATE_ERROR = 3
EXIT_PARTIAL = 6

UNREADABLE_ERRORS = (UnclassifiableFormat, LegacyFileTooLarge, FileTooLarge, WorkbookUnreadable, HeaderNotFound)
TEMPLATE_ERRORS = (TemplateInvalid, TemplateNotFound)


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class OrderSheetArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def exit_code_for_error(exc: ConversionError) -> int:
    if isinstance(exc, UNREADABLE_ERRORS):
        return EXIT_UNREADABLE
    if isinstance(exc, TEMPLATE_ERRORS):
        return EXIT_TEMPLATE_ERROR
    return EXIT_COMMAND_ERROR


def read_input(path_text: str) -> tuple[Path, bytes]:
    path = Path(path_text)
    if not path.is_file():
        raise CliError(f"Input file not found: {path}", EXIT_COMMAND_ERROR)
    return path, path.read_bytes()


def resolve_settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    profile = getattr(args, "profile", None)
    if profile:
        settings = Settings.for_profile(
            profile,
            legacy_code_page=settings.legacy_code_page,
            output_stamp=settings.output_stamp,
            log_level=settings.log_level,
        )
    return settings


def configure_logging(args: argparse.Namespace, settings: Settings) -> None:
    if getattr(args, "quiet", False):
        level = "WARNING"
    elif getattr(args, "verbose", False):
        level = "DEBUG"
    else:
        level = settings.log_level
    setup_logging(level)


def parse_manual_fields(pairs: list[str] | None) -> dict[str, str]:
    fields: dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise CliError(f"--set expects FIELD=VALUE, got '{pair}'", EXIT_COMMAND_ERROR)
        fields[name.strip()] = value
    return fields


def load_template(template_path: str, template_id: str | None):
    path = Path(template_path)
    if not path.is_file():
        raise CliError(f"Template file not found: {path}", EXIT_TEMPLATE_ERROR)
    store = JsonTemplateStore(path)
    if template_id is None:
        ids = store.template_ids()
        if len(ids) != 1:
            raise CliError(
                f"{path} holds {len(ids)} templates; pick one with --template-id ({', '.join(ids)})",
                EXIT_TEMPLATE_ERROR,
            )
        template_id = ids[0]
    template = store.load_template(template_id)
    if template is None:
        raise TemplateNotFound(f"Template '{template_id}' not found in {path}.")
    return template


def load_records(path_text: str) -> list[Any]:
    path = Path(path_text)
    if not path.is_file():
        raise CliError(f"Records file not found: {path}", EXIT_COMMAND_ERROR)
    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CliError(f"Records file {path} is not valid JSON: {exc}", EXIT_COMMAND_ERROR) from exc
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return payload
    raise CliError(f"Records file {path} must hold an object or a list of objects", EXIT_COMMAND_ERROR)


def render_convert_text(result, output_path: Path, command: str = "convert") -> str:
    lines = [
        f"order-sheet {command}",
        f"Output: {output_path}",
        f"Source format: {result.source_format}",
        f"Rows converted: {result.processed_row_count} of {result.total_row_count}",
    ]
    if result.encoding:
        lines.append(f"Encoding: {result.encoding}")
    if result.sheet_name:
        lines.append(f"Sheet: {result.sheet_name}")
    for error in result.errors:
        lines.append(f"Row {error.row_index} skipped: {error.message}")
    for warning in result.warnings:
        lines.append(f"Warning: {warning}")
    return "\n".join(lines)


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = OrderSheetArgumentParser(prog="order-sheet", description="Convert order files into purchase order workbooks.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    convert = subparsers.add_parser("convert", help="Convert an order file with a template.")
    convert.add_argument("input", help="Order file (.csv, .xls, .xlsx)")
    convert.add_argument("--template", required=True, help="JSON file with stored template rows")
    convert.add_argument("--template-id", dest="template_id", help="Template id when the file holds several")
    convert.add_argument("--set", dest="manual", action="append", metavar="FIELD=VALUE", help="Manual value for a target field")
    convert.add_argument("-o", "--output", help="Output workbook path")
    convert.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    convert.add_argument("--profile", choices=PROFILES, help="Runtime profile (defaults to the environment)")
    convert.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    convert.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    headers = subparsers.add_parser("headers", help="Print the header labels of an order file.")
    headers.add_argument("input", help="Order file (.csv, .xls, .xlsx)")
    headers.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    headers.add_argument("--profile", choices=PROFILES, help="Runtime profile (defaults to the environment)")
    headers.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    headers.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    direct = subparsers.add_parser("direct", help="Build a purchase order from typed-in records.")
    direct.add_argument("records", help="JSON file with one record object or a list of them")
    direct.add_argument("--template", required=True, help="JSON file with stored template rows")
    direct.add_argument("--template-id", dest="template_id", help="Template id when the file holds several")
    direct.add_argument("--set", dest="manual", action="append", metavar="FIELD=VALUE", help="Manual value for a target field")
    direct.add_argument("-o", "--output", help="Output workbook path")
    direct.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    direct.add_argument("--profile", choices=PROFILES, help="Runtime profile (defaults to the environment)")
    direct.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    direct.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    preview = subparsers.add_parser("preview", help="Show the header and first data rows of an order file.")
    preview.add_argument("input", help="Order file (.csv, .xls, .xlsx)")
    preview.add_argument("--limit", type=int, default=PREVIEW_ROWS, help=f"Data rows to show (default {PREVIEW_ROWS})")
    preview.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    preview.add_argument("--profile", choices=PROFILES, help="Runtime profile (defaults to the environment)")
    preview.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    preview.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    sniff = subparsers.add_parser("sniff", help="Detect the format of a file.")
    sniff.add_argument("input", help="Any file")
    sniff.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    sniff.add_argument("--profile", choices=PROFILES, help="Runtime profile (defaults to the environment)")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_convert(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    configure_logging(args, settings)
    input_path, data = read_input(args.input)
    template = load_template(args.template, args.template_id)
    manual_fields = parse_manual_fields(args.manual)

    result = convert_order(data, template, file_name=input_path.name, manual_fields=manual_fields, settings=settings)
    return finish_conversion(args, "convert", input_path, result)


def run_direct(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    configure_logging(args, settings)
    records = load_records(args.records)
    template = load_template(args.template, args.template_id)
    manual_fields = parse_manual_fields(args.manual)

    result = convert_records(template, records, manual_fields, settings)
    return finish_conversion(args, "direct", Path(args.records), result)


def finish_conversion(args: argparse.Namespace, command: str, input_path: Path, result) -> int:
    output_path = Path(args.output) if args.output else Path.cwd() / result.file_name
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.content)

    status = "partial" if result.partial else "ok"
    if args.json:
        payload = result.to_response()
        payload["summary"] = build_run_summary(
            command=command,
            input_path=input_path,
            status=status,
            output_path=output_path,
            metrics={"processed_rows": result.processed_row_count, "total_rows": result.total_row_count},
            warnings=result.warnings,
        )
        maybe_emit_json_stdout(payload, True)
    emit_human(render_convert_text(result, output_path, command), quiet=args.quiet or args.json)
    return EXIT_PARTIAL if result.partial else EXIT_SUCCESS


def run_headers(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    configure_logging(args, settings)
    input_path, data = read_input(args.input)
    extraction = extract_headers(data, input_path.name, settings)
    if args.json:
        maybe_emit_json_stdout(extraction.to_response(), True)
    else:
        for name in extraction.fields:
            print(name)
    return EXIT_SUCCESS


def run_preview(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    configure_logging(args, settings)
    input_path, data = read_input(args.input)
    if args.limit < 0:
        raise CliError("--limit must be zero or more", EXIT_COMMAND_ERROR)
    preview = preview_source(data, input_path.name, settings, limit=args.limit)
    if args.json:
        maybe_emit_json_stdout(preview.to_response(), True)
        return EXIT_SUCCESS

    print("\t".join(preview.fields))
    for row in preview.rows:
        print("\t".join(row[name] for name in preview.fields))
    emit_human(f"Showing {len(preview.rows)} of {preview.total_row_count} data rows", quiet=args.quiet)
    for warning in preview.warnings:
        emit_human(f"Warning: {warning}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_sniff(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    input_path, data = read_input(args.input)
    fmt = classify(data, input_path.name, settings)
    encoding = decode_text(data).encoding if fmt is FileFormat.CSV else None
    payload = success_response(
        "order_sheet.sniff",
        file=str(input_path),
        format=fmt.value,
        signature=describe_signature(data),
        size=len(data),
        encoding=encoding,
    )
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(f"{input_path}: {fmt.value}" + (f" ({encoding})" if encoding else ""))
        print(f"Signature: {payload['signature']}")
    return EXIT_SUCCESS if fmt is not FileFormat.UNKNOWN else EXIT_UNREADABLE


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    args = None
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "convert":
            return run_convert(args)
        if args.command == "direct":
            return run_direct(args)
        if args.command == "headers":
            return run_headers(args)
        if args.command == "preview":
            return run_preview(args)
        if args.command == "sniff":
            return run_sniff(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except ConversionError as exc:
        if args is not None and getattr(args, "json", False):
            maybe_emit_json_stdout(error_response(exc), True)
        eprint(exc.message)
        for cause in exc.causes:
            eprint(f"  {cause}")
        return exit_code_for_error(exc)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
