"""Format sniffing from leading bytes.

The file name is a weak prior at best: uploads routinely arrive as ``.xls``
files that are really OOXML archives, or as CSV exports with a workbook
extension. Byte inspection always wins.
"""

from __future__ import annotations

import enum
import logging
from pathlib import PurePath
from typing import Optional

from order_sheet.config import MB, Settings
from order_sheet.errors import LegacyFileTooLarge, UnclassifiableFormat
from order_sheet.text_decoder import BOMS

logger = logging.getLogger(__name__)


class FileFormat(str, enum.Enum):
    CSV = "csv"
    LEGACY_BINARY = "legacy-binary"
    ZIP_BASED = "zip-based"
    UNKNOWN = "unknown"


ZIP_MAGIC = b"PK"
ZIP_VERSION_PAIRS = {(0x03, 0x04), (0x05, 0x06), (0x07, 0x08)}
OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
PDF_MAGIC = b"%PDF"
# BIFF2-BIFF5 BOF record ids (little-endian), as raw streams outside an OLE2 container
BIFF_PRE8_SIGNATURES = {0x0009, 0x0209, 0x0409, 0x0805}

MIN_SNIFF_BYTES = 4
TEXT_PROBE_BYTES = 4096

TEXT_EXTENSIONS = {".csv", ".tsv", ".txt"}


def describe_signature(data: bytes, width: int = 16) -> str:
    return " ".join(f"{byte:02x}" for byte in data[:width])


def _extension(file_name: Optional[str]) -> str:
    if not file_name:
        return ""
    return PurePath(file_name).suffix.lower()


def _starts_with_bom(data: bytes) -> bool:
    return any(data.startswith(bom) for bom, _ in BOMS)


def _looks_like_text(data: bytes) -> bool:
    return b"\x00" not in data[:TEXT_PROBE_BYTES]


def classify(data: bytes, file_name: Optional[str] = None, settings: Optional[Settings] = None) -> FileFormat:
    """Classify ``data`` as CSV, legacy binary workbook, ZIP-based workbook or unknown.

    Raises ``LegacyFileTooLarge`` when an OLE2 workbook exceeds the legacy
    size limit of the active settings (only set in the constrained profile).
    """
    settings = settings or Settings()
    extension = _extension(file_name)

    if data is None or len(data) < MIN_SNIFF_BYTES:
        return FileFormat.UNKNOWN

    if data[:2] == ZIP_MAGIC:
        if (data[2], data[3]) not in ZIP_VERSION_PAIRS:
            logger.debug("ZIP magic with unusual version bytes: %s", describe_signature(data, 4))
        if extension in TEXT_EXTENSIONS:
            logger.info("File named %s is a ZIP-based workbook; ignoring the extension", file_name)
        return FileFormat.ZIP_BASED

    if data[:8] == OLE2_MAGIC:
        limit = settings.legacy_size_limit_bytes
        if settings.constrained and limit is not None and len(data) > limit:
            raise LegacyFileTooLarge(
                f"Legacy .xls files larger than {limit / MB:g}MB cannot be processed in this environment "
                f"(got {len(data) / MB:.2f}MB). Re-save the file as .xlsx or reduce its size."
            )
        return FileFormat.LEGACY_BINARY

    if data[:4] == PDF_MAGIC:
        return FileFormat.UNKNOWN

    signature = data[0] | (data[1] << 8)
    if signature in BIFF_PRE8_SIGNATURES:
        logger.info("Pre-BIFF8 workbook stream detected (signature 0x%04x)", signature)
        return FileFormat.UNKNOWN

    # UTF-16 text carries NUL bytes; its byte-order mark identifies it first
    if _starts_with_bom(data):
        return FileFormat.CSV

    if _looks_like_text(data):
        if extension and extension not in TEXT_EXTENSIONS:
            logger.info("File named %s contains delimited text; treating it as CSV", file_name)
        return FileFormat.CSV

    return FileFormat.UNKNOWN


def require_supported(fmt: FileFormat, file_name: Optional[str] = None) -> FileFormat:
    if fmt is FileFormat.UNKNOWN:
        label = f" '{file_name}'" if file_name else ""
        raise UnclassifiableFormat(
            f"Unsupported file format{label}. Upload a CSV, .xls or .xlsx order file."
        )
    return fmt
