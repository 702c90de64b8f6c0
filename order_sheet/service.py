"""
service.py — request orchestration.

    sniff → decode + CSV parse | workbook read → locate header → normalize
          → apply template → build workbook

Records typed in by a caller skip the reading half and go straight to
``apply template``.

The functions here are what an HTTP layer (or the CLI) calls. They raise
``ConversionError`` subclasses; ``ConversionResult.to_response`` and
``contracts.error_response`` produce the JSON shapes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath
from typing import Any, Mapping, Optional, Sequence

from order_sheet.cells import RawCellGrid
from order_sheet.config import MB, Settings
from order_sheet.contracts import success_response
from order_sheet.errors import BlobStoreFailure, FileTooLarge, HeaderNotFound, TemplateNotFound
from order_sheet.header_locator import HeaderSelection, first_non_empty_row, locate_header
from order_sheet.mapping import MappingOutcome, RowError, apply_template
from order_sheet.normalizer import SourceRecord, normalize
from order_sheet.output_builder import build_workbook
from order_sheet.sniffer import FileFormat, classify, require_supported
from order_sheet.stores import GENERATED_BUCKET, UPLOAD_BUCKET, BlobStore, TemplateStore, UploadRegistry, content_digest
from order_sheet.template import Template
from order_sheet.text_decoder import decode_text, read_csv_grid
from order_sheet.workbook_reader import Attempt, hints_for, read_grid

logger = logging.getLogger(__name__)

SAFE_NAME_RE = re.compile(r"[^\w-]+")
PREVIEW_ROWS = 20
DIRECT_SOURCE = "direct"


@dataclass
class SourceData:
    fields: list[str]
    records: list[SourceRecord]
    source_format: str
    header_row: int
    encoding: Optional[str] = None
    sheet_name: Optional[str] = None
    attempt: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class ConversionResult:
    file_name: str
    display_file_name: str
    content: bytes
    fields: list[str]
    records: list[dict[str, Any]]
    processed_row_count: int
    total_row_count: int
    errors: list = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    source_format: str = ""
    encoding: Optional[str] = None
    sheet_name: Optional[str] = None
    header_row: int = 0

    @property
    def partial(self) -> bool:
        return bool(self.errors)

    def to_response(self) -> dict[str, Any]:
        return success_response(
            "order_sheet.convert",
            fileName=self.file_name,
            displayFileName=self.display_file_name,
            processedRowCount=self.processed_row_count,
            totalRowCount=self.total_row_count,
            errorList=[error.to_dict() for error in self.errors],
            warnings=list(self.warnings),
            fields=list(self.fields),
            sourceFormat=self.source_format,
            encoding=self.encoding,
            sheetName=self.sheet_name,
            headerRow=self.header_row,
        )


@dataclass
class HeaderExtraction:
    fields: list[str]
    header_row: int
    source_format: str
    encoding: Optional[str] = None
    sheet_name: Optional[str] = None

    def to_response(self) -> dict[str, Any]:
        return success_response(
            "order_sheet.headers",
            headers=list(self.fields),
            headerRow=self.header_row,
            sourceFormat=self.source_format,
            encoding=self.encoding,
            sheetName=self.sheet_name,
        )


@dataclass
class SourcePreview:
    fields: list[str]
    rows: list[dict[str, str]]
    total_row_count: int
    header_row: int
    source_format: str
    encoding: Optional[str] = None
    sheet_name: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        return success_response(
            "order_sheet.preview",
            headers=list(self.fields),
            data=[dict(row) for row in self.rows],
            totalRows=self.total_row_count,
            headerRow=self.header_row,
            sourceFormat=self.source_format,
            encoding=self.encoding,
            sheetName=self.sheet_name,
            warnings=list(self.warnings),
        )


@dataclass(frozen=True)
class StoredUpload:
    file_id: str
    digest: str
    duplicate: bool = False


# ══════════════════════════════════════════════════════════════════════════════
# READING
# ══════════════════════════════════════════════════════════════════════════════

def check_size(data: bytes, settings: Settings) -> None:
    if len(data) > settings.max_upload_bytes:
        raise FileTooLarge(
            f"File is {len(data) / MB:.2f}MB; the limit is {settings.max_upload_bytes / MB:g}MB."
        )


def _read_grid(
    data: bytes,
    fmt: FileFormat,
    settings: Settings,
    mime_type: Optional[str],
    reader_attempts: Optional[dict[str, Attempt]],
) -> tuple[RawCellGrid, dict[str, Any]]:
    if fmt is FileFormat.CSV:
        decoded = decode_text(data)
        return read_csv_grid(decoded.text), {"encoding": decoded.encoding}
    hints = hints_for(fmt is FileFormat.LEGACY_BINARY, mime_type, settings)
    workbook = read_grid(data, hints, settings, reader_attempts)
    return workbook.grid, {"sheet_name": workbook.sheet_name, "attempt": workbook.attempt}


def read_source(
    data: bytes,
    file_name: Optional[str] = None,
    settings: Optional[Settings] = None,
    *,
    mime_type: Optional[str] = None,
    strict: bool = False,
    reader_attempts: Optional[dict[str, Attempt]] = None,
) -> SourceData:
    settings = settings or Settings()
    fmt = require_supported(classify(data, file_name, settings), file_name)
    logger.info("Reading %s as %s", file_name or "upload", fmt.value)
    grid, details = _read_grid(data, fmt, settings, mime_type, reader_attempts)

    warnings: list[str] = []
    try:
        header: HeaderSelection = locate_header(grid, strict=strict)
    except HeaderNotFound:
        if strict or fmt is not FileFormat.CSV:
            raise
        header = first_non_empty_row(grid)
        note = f"No labelled header row found; using row {header.row_index + 1} as the header."
        logger.warning(note)
        warnings.append(note)

    records = normalize(grid, header)
    return SourceData(
        fields=list(header.fields),
        records=records,
        source_format=fmt.value,
        header_row=header.row_index,
        encoding=details.get("encoding"),
        sheet_name=details.get("sheet_name"),
        attempt=details.get("attempt"),
        warnings=warnings,
    )


def extract_headers(
    data: bytes,
    file_name: Optional[str] = None,
    settings: Optional[Settings] = None,
    *,
    mime_type: Optional[str] = None,
    reader_attempts: Optional[dict[str, Attempt]] = None,
) -> HeaderExtraction:
    """Header labels for template authoring, using the strict threshold."""
    settings = settings or Settings()
    check_size(data, settings)
    source = read_source(
        data, file_name, settings, mime_type=mime_type, strict=True, reader_attempts=reader_attempts
    )
    return HeaderExtraction(
        fields=source.fields,
        header_row=source.header_row,
        source_format=source.source_format,
        encoding=source.encoding,
        sheet_name=source.sheet_name,
    )


def _preview_text(value: Any) -> str:
    return str(value).strip()


def preview_source(
    data: bytes,
    file_name: Optional[str] = None,
    settings: Optional[Settings] = None,
    *,
    limit: int = PREVIEW_ROWS,
    mime_type: Optional[str] = None,
    reader_attempts: Optional[dict[str, Attempt]] = None,
) -> SourcePreview:
    """Header labels plus the first ``limit`` data rows as display text."""
    settings = settings or Settings()
    check_size(data, settings)
    source = read_source(data, file_name, settings, mime_type=mime_type, reader_attempts=reader_attempts)
    rows = [
        {name: _preview_text(record.get(name, "")) for name in source.fields}
        for record in source.records[: max(limit, 0)]
    ]
    return SourcePreview(
        fields=source.fields,
        rows=rows,
        total_row_count=len(source.records),
        header_row=source.header_row,
        source_format=source.source_format,
        encoding=source.encoding,
        sheet_name=source.sheet_name,
        warnings=list(source.warnings),
    )


# ══════════════════════════════════════════════════════════════════════════════
# CONVERSION
# ══════════════════════════════════════════════════════════════════════════════

def output_stamp(settings: Settings, now: Optional[datetime] = None) -> str:
    if settings.output_stamp:
        return settings.output_stamp
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def output_names(template: Template, stamp: str) -> tuple[str, str]:
    safe_name = SAFE_NAME_RE.sub("_", template.name).strip("_") or "template"
    return f"purchase_order_{stamp}.xlsx", f"발주서_{safe_name}_{stamp}.xlsx"


def convert_order(
    data: bytes,
    template: Template,
    file_name: Optional[str] = None,
    manual_fields: Optional[Mapping[str, Any]] = None,
    settings: Optional[Settings] = None,
    *,
    now: Optional[datetime] = None,
    mime_type: Optional[str] = None,
    reader_attempts: Optional[dict[str, Attempt]] = None,
) -> ConversionResult:
    settings = settings or Settings()
    check_size(data, settings)
    source = read_source(data, file_name, settings, mime_type=mime_type, reader_attempts=reader_attempts)
    outcome = apply_template(template, source.records, manual_fields, now=now)

    warnings = list(source.warnings)
    if not source.records:
        warnings.append("The file has a header row but no data rows.")
    return _build_result(
        template,
        outcome,
        len(source.records),
        settings,
        now,
        warnings=warnings,
        source_format=source.source_format,
        encoding=source.encoding,
        sheet_name=source.sheet_name,
        header_row=source.header_row,
    )


def convert_records(
    template: Template,
    records: Sequence[Any],
    manual_fields: Optional[Mapping[str, Any]] = None,
    settings: Optional[Settings] = None,
    *,
    now: Optional[datetime] = None,
) -> ConversionResult:
    """Convert caller-supplied records (source column -> value) without an upload.

    Entries that are not field mappings are reported in ``errors`` under
    their 1-based position and skipped, like rows that fail to map.
    """
    settings = settings or Settings()
    usable: list[SourceRecord] = []
    positions: list[int] = []
    rejected: list[RowError] = []
    for index, record in enumerate(records, start=1):
        if isinstance(record, Mapping):
            usable.append({str(key): value for key, value in record.items()})
            positions.append(index)
        else:
            rejected.append(RowError(index, f"Expected field values, got {type(record).__name__}"))

    outcome = apply_template(template, usable, manual_fields, now=now)
    errors = rejected + [RowError(positions[error.row_index - 1], error.message) for error in outcome.errors]
    errors.sort(key=lambda error: error.row_index)

    warnings = [] if records else ["No records were supplied."]
    return _build_result(
        template,
        MappingOutcome(records=outcome.records, errors=errors),
        len(records),
        settings,
        now,
        warnings=warnings,
        source_format=DIRECT_SOURCE,
    )


def _build_result(
    template: Template,
    outcome: MappingOutcome,
    total_rows: int,
    settings: Settings,
    now: Optional[datetime],
    *,
    warnings: list[str],
    source_format: str,
    encoding: Optional[str] = None,
    sheet_name: Optional[str] = None,
    header_row: int = 0,
) -> ConversionResult:
    fields = list(template.ordered_target_fields)
    content = build_workbook(fields, outcome.records)
    output_file, display_file = output_names(template, output_stamp(settings, now))
    logger.info("Converted %d of %d rows into %s", len(outcome.records), total_rows, output_file)
    return ConversionResult(
        file_name=output_file,
        display_file_name=display_file,
        content=content,
        fields=fields,
        records=outcome.records,
        processed_row_count=len(outcome.records),
        total_row_count=total_rows,
        errors=outcome.errors,
        warnings=warnings,
        source_format=source_format,
        encoding=encoding,
        sheet_name=sheet_name,
        header_row=header_row,
    )


def store_upload(
    blob_store: BlobStore,
    data: bytes,
    file_name: str,
    registry: Optional[UploadRegistry] = None,
    settings: Optional[Settings] = None,
) -> StoredUpload:
    """Store an upload under a content-derived id, skipping contents stored before."""
    settings = settings or Settings()
    check_size(data, settings)
    digest = content_digest(data)
    if registry is not None:
        existing = registry.lookup(digest)
        if existing is not None:
            logger.info("Upload %s matches stored file %s; not writing it again", file_name, existing)
            return StoredUpload(file_id=existing, digest=digest, duplicate=True)

    suffix = PurePath(file_name).suffix.lower()
    file_id = f"{digest[:16]}{suffix}"
    result = blob_store.put_blob(file_id, data, UPLOAD_BUCKET)
    if not result.ok:
        raise BlobStoreFailure(f"Could not store upload {file_name}: {result.error}")
    if registry is not None:
        registry.remember(digest, file_id)
    return StoredUpload(file_id=file_id, digest=digest)


def generate_with_template(
    blob_store: BlobStore,
    template_store: TemplateStore,
    file_id: str,
    template_id: str,
    manual_fields: Optional[Mapping[str, Any]] = None,
    settings: Optional[Settings] = None,
    *,
    now: Optional[datetime] = None,
    reader_attempts: Optional[dict[str, Attempt]] = None,
) -> ConversionResult:
    template = template_store.load_template(template_id)
    if template is None:
        raise TemplateNotFound(f"Template '{template_id}' does not exist.")

    upload = blob_store.get_blob(file_id, UPLOAD_BUCKET)
    if not upload.ok or upload.data is None:
        raise BlobStoreFailure(f"Could not load uploaded file {file_id}: {upload.error}")

    result = convert_order(
        upload.data,
        template,
        file_name=file_id,
        manual_fields=manual_fields,
        settings=settings,
        now=now,
        reader_attempts=reader_attempts,
    )
    _store_generated(blob_store, result)
    return result


def generate_direct(
    blob_store: BlobStore,
    template_store: TemplateStore,
    template_id: str,
    records: Sequence[Any],
    manual_fields: Optional[Mapping[str, Any]] = None,
    settings: Optional[Settings] = None,
    *,
    now: Optional[datetime] = None,
) -> ConversionResult:
    """Like ``generate_with_template``, for records typed in by the caller."""
    template = template_store.load_template(template_id)
    if template is None:
        raise TemplateNotFound(f"Template '{template_id}' does not exist.")
    result = convert_records(template, records, manual_fields, settings, now=now)
    _store_generated(blob_store, result)
    return result


def _store_generated(blob_store: BlobStore, result: ConversionResult) -> None:
    stored = blob_store.put_blob(result.file_name, result.content, GENERATED_BUCKET)
    if not stored.ok:
        raise BlobStoreFailure(f"Could not store generated file {result.file_name}: {stored.error}")
