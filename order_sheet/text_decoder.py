"""Text decoding and CSV parsing for uploaded order files.

Producers of these files never declare an encoding, and every legacy
single-byte or double-byte code page "decodes" without raising. The decoder
therefore scores each candidate by how much plausible Hangul it yields,
penalising replacement characters heavily.

Public API:
    decoded = decode_text(raw_bytes)
    grid    = read_csv_grid(decoded.text)
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections import Counter
from dataclasses import dataclass, field

import chardet

from order_sheet.cells import EMPTY, RawCellGrid, Text

logger = logging.getLogger(__name__)

BOMS = (
    (b"\xef\xbb\xbf", "utf-8"),
    (b"\xff\xfe", "utf-16-le"),
    (b"\xfe\xff", "utf-16-be"),
)
CANDIDATE_ENCODINGS = ("utf-8", "euc-kr", "cp949")
SCRIPT_CHAR_RE = re.compile("[가-힣]")
REPLACEMENT_CHAR = "�"
REPLACEMENT_PENALTY = 10

DELIMITERS = [",", ";", "\t", "|"]


@dataclass
class DecodedText:
    text: str
    encoding: str
    bom: bool = False
    scores: dict[str, int] = field(default_factory=dict)


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING SELECTION
# ══════════════════════════════════════════════════════════════════════════════

def score_decoding(text: str) -> int:
    return len(SCRIPT_CHAR_RE.findall(text)) - REPLACEMENT_PENALTY * text.count(REPLACEMENT_CHAR)


def _normalise_encoding_name(name: str) -> str:
    return name.strip().lower().replace("_", "-")


def _candidate_encodings(raw: bytes) -> list[str]:
    candidates = list(CANDIDATE_ENCODINGS)
    guess = chardet.detect(raw[:65536]).get("encoding")
    if guess:
        guess = _normalise_encoding_name(guess)
        if guess == "ascii":
            guess = "utf-8"
        if guess not in candidates:
            candidates.append(guess)
    return candidates


def decode_text(raw: bytes) -> DecodedText:
    """Decode ``raw`` using the BOM when present, otherwise the best-scoring candidate."""
    for bom, encoding in BOMS:
        if raw.startswith(bom):
            logger.debug("%s byte-order mark found", encoding)
            text = raw[len(bom):].decode(encoding, errors="replace")
            return DecodedText(text=text.replace("\x00", ""), encoding=encoding, bom=True)

    best_encoding = None
    best_text = ""
    best_score = None
    scores: dict[str, int] = {}
    for encoding in _candidate_encodings(raw):
        try:
            text = raw.decode(encoding, errors="replace")
        except LookupError:
            logger.debug("Skipping unknown encoding %s", encoding)
            continue
        score = score_decoding(text)
        scores[encoding] = score
        if best_score is None or score > best_score:
            best_encoding, best_text, best_score = encoding, text, score

    logger.info("Selected encoding %s (scores: %s)", best_encoding, scores)
    return DecodedText(text=best_text.replace("\x00", ""), encoding=best_encoding, scores=scores)


# ══════════════════════════════════════════════════════════════════════════════
# DELIMITER DETECTION + GRID
# ══════════════════════════════════════════════════════════════════════════════

def detect_delimiter(text: str) -> str:
    """
    Infer the delimiter from sample lines.

    Uses csv.Sniffer first; falls back to scoring each candidate delimiter by
    column-count consistency and column width.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            sniffed = csv.Sniffer().sniff(sample, delimiters="".join(DELIMITERS))
            return sniffed.delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    best_width = 0
    for delim in DELIMITERS:
        rows = [
            row
            for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if not rows:
            continue
        widths = [len(row) for row in rows]
        mode_width, mode_count = Counter(widths).most_common(1)[0]
        consistency = mode_count / len(widths)
        score = (mode_width * 2.0) + (consistency * mode_width)
        if len(rows[0]) == mode_width:
            score += 1.0
        if mode_width == 1:
            score -= 10.0
        if score > best_score or (score == best_score and mode_width > best_width):
            best_score = score
            best_width = mode_width
            best_delim = delim
    return best_delim


def read_csv_grid(text: str, delimiter: str | None = None) -> RawCellGrid:
    """Parse decoded CSV text into a grid of Text/Empty cells (blank lines skipped)."""
    delimiter = delimiter or detect_delimiter(text)
    grid: RawCellGrid = []
    for row in csv.reader(io.StringIO(text), delimiter=delimiter):
        if not any(cell.strip() for cell in row):
            continue
        grid.append([Text(cell) if cell.strip() else EMPTY for cell in row])
    return grid
