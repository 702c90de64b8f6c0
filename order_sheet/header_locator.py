"""Find the header row of an order sheet.

Order exports often carry a title block, a print date or a company banner
above the real column labels. Each of the first rows is scored by how many
of its cells look like order-column labels; the best row wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from order_sheet import keywords
from order_sheet.cells import CellValue, RawCellGrid, cell_text, is_blank
from order_sheet.errors import HeaderNotFound

logger = logging.getLogger(__name__)

SCAN_ROWS = 10
THRESHOLD = 5
STRICT_THRESHOLD = 10


@dataclass(frozen=True)
class HeaderSelection:
    row_index: int
    fields: tuple[str, ...]
    columns: tuple[int, ...]

    def __post_init__(self) -> None:
        if not self.fields:
            raise ValueError("a header selection needs at least one field")
        if len(self.fields) != len(self.columns):
            raise ValueError("fields and columns must have the same length")


def score_cell(text: str) -> int:
    lowered = text.strip().lower()
    if not lowered:
        return 0
    score = 0
    for _category, weight, needles in keywords.HEADER_CATEGORIES:
        if keywords.contains_any(lowered, needles):
            score += weight
    if len(lowered) <= keywords.SHORT_TEXT_MAX_LEN:
        score += keywords.SHORT_TEXT_WEIGHT
    return score


def score_row(row: list[CellValue]) -> int:
    texts = [cell_text(cell) for cell in row if not is_blank(cell)]
    texts = [text for text in texts if text]
    return sum(score_cell(text) for text in texts) + len(texts)


def selection_for_row(grid: RawCellGrid, row_index: int) -> HeaderSelection:
    fields = []
    columns = []
    for column, cell in enumerate(grid[row_index]):
        if is_blank(cell):
            continue
        text = cell_text(cell)
        if text:
            fields.append(text)
            columns.append(column)
    return HeaderSelection(row_index=row_index, fields=tuple(fields), columns=tuple(columns))


def locate_header(grid: RawCellGrid, strict: bool = False) -> HeaderSelection:
    """Return the best-scoring header row among the first ten rows of ``grid``.

    ``strict`` raises the bar for callers that only want the labels (template
    authoring), where a false positive is worse than no answer.
    """
    best_index = -1
    best_score = 0
    for index, row in enumerate(grid[:SCAN_ROWS]):
        score = score_row(row)
        logger.debug("Header candidate row %d scored %d", index, score)
        if score > best_score:
            best_score = score
            best_index = index

    passed = best_score >= STRICT_THRESHOLD if strict else best_score > THRESHOLD
    if best_index < 0 or not passed:
        raise HeaderNotFound(
            f"No header row found in the first {SCAN_ROWS} rows (best score {best_score}). "
            "Make sure the sheet has column labels such as product, quantity or price."
        )

    selection = selection_for_row(grid, best_index)
    logger.info("Header row %d selected (score %d): %s", best_index, best_score, ", ".join(selection.fields))
    return selection


def first_non_empty_row(grid: RawCellGrid) -> HeaderSelection:
    for index, row in enumerate(grid):
        try:
            return selection_for_row(grid, index)
        except ValueError:
            continue
    raise HeaderNotFound("The file has no non-empty rows.")
