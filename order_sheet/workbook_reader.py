"""
workbook_reader.py — extract a raw cell grid from a legacy or ZIP-based workbook.

Three attempts run in order, each raced against its own timeout:

    primary    pandas.read_excel (openpyxl engine, or xlrd with a code page
               override for legacy files), header-less, object dtype
    secondary  openpyxl / xlrd directly, read-only and data-only
    tertiary   cell-by-cell walk of a cell range reported by a failed
               earlier attempt

The chain is an explicit state machine (``Pending`` → ``Succeeded`` or
``Failed``) so that the only data that ever reaches the caller is the return
value of the attempt that is current when it finishes.

Public API:
    result = read_grid(raw_bytes, ReadHints(treat_as_legacy=True))
    grid   = result.grid
"""

from __future__ import annotations

import io
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import openpyxl
import pandas as pd
import xlrd

from order_sheet import keywords
from order_sheet.cells import EMPTY, RawCellGrid, row_is_blank, to_cell
from order_sheet.config import Settings
from order_sheet.errors import AttemptTimedOut, WorkbookUnreadable
from order_sheet.racing import race

logger = logging.getLogger(__name__)

PRIMARY = "primary"
SECONDARY = "secondary"
TERTIARY = "tertiary"
STAGES = (PRIMARY, SECONDARY, TERTIARY)

HANCOM_MIME_TYPES = {"application/haansoftxlsx", "application/haansoftxls"}


@dataclass(frozen=True)
class ReadHints:
    treat_as_legacy: bool = False
    code_page: Optional[str] = None


@dataclass(frozen=True)
class CellRange:
    sheet_name: str
    rows: int
    columns: int

    @property
    def usable(self) -> bool:
        return bool(self.sheet_name) and self.rows > 0 and self.columns > 0


@dataclass
class AttemptResult:
    grid: RawCellGrid
    sheet_name: str
    sheet_names: list[str]


class AttemptFailed(Exception):
    """An attempt failed; ``cell_range`` is set when it got far enough to see the sheet."""

    def __init__(self, message: str, cell_range: Optional[CellRange] = None) -> None:
        super().__init__(message)
        self.cell_range = cell_range


@dataclass
class AttemptRecord:
    stage: str
    outcome: str
    message: str = ""
    elapsed: float = 0.0


@dataclass
class WorkbookGrid:
    grid: RawCellGrid
    sheet_name: str
    sheet_names: list[str]
    attempt: str
    trace: list[AttemptRecord] = field(default_factory=list)


# ── state machine ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Pending:
    stage: str


@dataclass(frozen=True)
class Succeeded:
    result: WorkbookGrid


@dataclass(frozen=True)
class Failed:
    causes: tuple[str, ...]


ReaderState = Union[Pending, Succeeded, Failed]
Attempt = Callable[[bytes, ReadHints, Settings, Optional[CellRange]], AttemptResult]


# ══════════════════════════════════════════════════════════════════════════════
# SHEET SELECTION
# ══════════════════════════════════════════════════════════════════════════════

def sheet_score(name: str, rows: int, columns: int) -> float:
    score = 0.0
    if keywords.contains_any(name, keywords.SHEET_PREFERRED):
        score += keywords.SHEET_PREFERRED_BONUS
    if keywords.contains_any(name, keywords.SHEET_PENALISED):
        score -= keywords.SHEET_PENALTY
    score += min(rows / 10, 20)
    score += min(columns, 10)
    return score


def choose_sheet(dimensions: list[tuple[str, int, int]]) -> Optional[str]:
    """Pick the sheet most likely to hold order rows.

    Sheets with fewer than two rows or no columns are never preferred; the
    first sheet is kept unless another one scores strictly higher (and above 0).
    """
    if not dimensions:
        return None
    best_name = dimensions[0][0]
    best_score = 0.0
    for name, rows, columns in dimensions:
        if rows < 2 or columns == 0:
            continue
        score = sheet_score(name, rows, columns)
        if score > best_score:
            best_score = score
            best_name = name
    return best_name


def _tidy_grid(rows: list[list[Any]]) -> RawCellGrid:
    grid: RawCellGrid = []
    for row in rows:
        cells = [to_cell(value) for value in row]
        if row_is_blank(cells):
            continue
        while cells and cells[-1] is EMPTY:
            cells.pop()
        grid.append(cells)
    return grid


def _grid_width(grid: RawCellGrid) -> int:
    return max((len(row) for row in grid), default=0)


def _pick(grids: dict[str, RawCellGrid]) -> tuple[str, RawCellGrid]:
    names = list(grids)
    chosen = choose_sheet([(name, len(grids[name]), _grid_width(grids[name])) for name in names])
    if chosen is None:
        raise AttemptFailed("workbook contains no worksheets")
    return chosen, grids[chosen]


def _code_page(hints: ReadHints, settings: Settings) -> Optional[str]:
    if hints.code_page:
        return hints.code_page
    if hints.treat_as_legacy:
        return settings.legacy_code_page
    return None


# ══════════════════════════════════════════════════════════════════════════════
# ATTEMPTS
# ══════════════════════════════════════════════════════════════════════════════

def _book_dimensions(book: Any, sheet_name: str) -> Optional[CellRange]:
    try:
        if isinstance(book, xlrd.book.Book):
            sheet = book.sheet_by_name(sheet_name)
            return CellRange(sheet_name, sheet.nrows, sheet.ncols)
        sheet = book[sheet_name]
        return CellRange(sheet_name, sheet.max_row or 0, sheet.max_column or 0)
    except (KeyError, AttributeError, xlrd.XLRDError):
        return None


def read_with_pandas(
    data: bytes,
    hints: ReadHints,
    settings: Settings,
    cell_range: Optional[CellRange] = None,
) -> AttemptResult:
    if hints.treat_as_legacy:
        engine = "xlrd"
        engine_kwargs = {"encoding_override": _code_page(hints, settings)}
    else:
        engine = "openpyxl"
        engine_kwargs = {"read_only": True, "data_only": True, "keep_links": False}

    with pd.ExcelFile(io.BytesIO(data), engine=engine, engine_kwargs=engine_kwargs) as xf:
        sheet_names = [str(name) for name in xf.sheet_names]
        grids: dict[str, RawCellGrid] = {}
        for name in sheet_names:
            try:
                frame = xf.parse(name, header=None, dtype=object)
            except Exception as exc:
                raise AttemptFailed(
                    f"pandas could not parse sheet '{name}': {exc}",
                    _book_dimensions(xf.book, name),
                ) from exc
            grids[name] = _tidy_grid([list(row) for row in frame.itertuples(index=False, name=None)])

    chosen, grid = _pick(grids)
    return AttemptResult(grid=grid, sheet_name=chosen, sheet_names=sheet_names)


def _xlrd_value(book: "xlrd.book.Book", cell: "xlrd.sheet.Cell") -> Any:
    if cell.ctype == xlrd.XL_CELL_DATE:
        try:
            return xlrd.xldate_as_datetime(cell.value, book.datemode)
        except (xlrd.xldate.XLDateError, ValueError, OverflowError):
            return cell.value
    if cell.ctype == xlrd.XL_CELL_ERROR:
        return xlrd.error_text_from_code.get(cell.value, "")
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
        return None
    return cell.value


def read_with_library(
    data: bytes,
    hints: ReadHints,
    settings: Settings,
    cell_range: Optional[CellRange] = None,
) -> AttemptResult:
    grids: dict[str, RawCellGrid] = {}
    if hints.treat_as_legacy:
        book = xlrd.open_workbook(
            file_contents=data,
            on_demand=True,
            formatting_info=False,
            encoding_override=_code_page(hints, settings),
        )
        try:
            sheet_names = list(book.sheet_names())
            for name in sheet_names:
                sheet = book.sheet_by_name(name)
                try:
                    rows = [
                        [_xlrd_value(book, sheet.cell(r, c)) for c in range(sheet.ncols)]
                        for r in range(sheet.nrows)
                    ]
                except (IndexError, ValueError, xlrd.XLRDError) as exc:
                    raise AttemptFailed(
                        f"xlrd could not read sheet '{name}': {exc}",
                        CellRange(name, sheet.nrows, sheet.ncols),
                    ) from exc
                grids[name] = _tidy_grid(rows)
        finally:
            book.release_resources()
    else:
        workbook = openpyxl.load_workbook(
            io.BytesIO(data),
            read_only=True,
            data_only=True,
            keep_links=False,
            rich_text=False,
        )
        try:
            sheet_names = list(workbook.sheetnames)
            for worksheet in workbook.worksheets:
                try:
                    rows = [list(row) for row in worksheet.iter_rows(values_only=True)]
                except Exception as exc:
                    raise AttemptFailed(
                        f"openpyxl could not stream sheet '{worksheet.title}': {exc}",
                        CellRange(worksheet.title, worksheet.max_row or 0, worksheet.max_column or 0),
                    ) from exc
                grids[worksheet.title] = _tidy_grid(rows)
        finally:
            workbook.close()

    chosen, grid = _pick(grids)
    return AttemptResult(grid=grid, sheet_name=chosen, sheet_names=sheet_names)


def walk_cells(
    data: bytes,
    hints: ReadHints,
    settings: Settings,
    cell_range: Optional[CellRange] = None,
) -> AttemptResult:
    """Read ``cell_range`` one cell at a time, raw value first, then text."""
    if cell_range is None or not cell_range.usable:
        raise AttemptFailed("no usable cell range to walk")

    rows: list[list[Any]] = []
    if hints.treat_as_legacy:
        book = xlrd.open_workbook(
            file_contents=data,
            on_demand=True,
            formatting_info=False,
            encoding_override=_code_page(hints, settings),
        )
        try:
            sheet_names = list(book.sheet_names())
            sheet = book.sheet_by_name(cell_range.sheet_name)
            for r in range(min(cell_range.rows, sheet.nrows)):
                row = []
                for c in range(min(cell_range.columns, sheet.ncols)):
                    try:
                        cell = sheet.cell(r, c)
                        value = cell.value if cell.ctype != xlrd.XL_CELL_ERROR else ""
                    except (IndexError, ValueError):
                        value = ""
                    row.append(value)
                rows.append(row)
        finally:
            book.release_resources()
    else:
        workbook = openpyxl.load_workbook(io.BytesIO(data), data_only=True, keep_links=False)
        try:
            sheet_names = list(workbook.sheetnames)
            worksheet = workbook[cell_range.sheet_name]
            for r in range(1, cell_range.rows + 1):
                row = []
                for c in range(1, cell_range.columns + 1):
                    try:
                        cell = worksheet.cell(row=r, column=c)
                        value = cell.value
                        if value is not None and not isinstance(value, (str, int, float)):
                            value = value if hasattr(value, "year") else str(value)
                    except (ValueError, TypeError):
                        value = ""
                    row.append(value)
                rows.append(row)
        finally:
            workbook.close()

    grid = _tidy_grid(rows)
    if not grid:
        raise AttemptFailed(f"cell walk of '{cell_range.sheet_name}' found no values")
    return AttemptResult(grid=grid, sheet_name=cell_range.sheet_name, sheet_names=sheet_names)


DEFAULT_ATTEMPTS: dict[str, Attempt] = {
    PRIMARY: read_with_pandas,
    SECONDARY: read_with_library,
    TERTIARY: walk_cells,
}


# ══════════════════════════════════════════════════════════════════════════════
# READER
# ══════════════════════════════════════════════════════════════════════════════

class WorkbookReader:
    def __init__(
        self,
        data: bytes,
        hints: Optional[ReadHints] = None,
        settings: Optional[Settings] = None,
        attempts: Optional[dict[str, Attempt]] = None,
    ) -> None:
        self.data = data
        self.hints = hints or ReadHints()
        self.settings = settings or Settings()
        self.attempts = {**DEFAULT_ATTEMPTS, **(attempts or {})}
        self.trace: list[AttemptRecord] = []
        self._causes: list[str] = []
        self._reported_range: Optional[CellRange] = None

    def timeout_for(self, stage: str) -> float:
        timeouts = self.settings.timeouts
        if stage == PRIMARY:
            return timeouts.legacy_primary if self.hints.treat_as_legacy else timeouts.primary
        if stage == SECONDARY:
            return timeouts.secondary
        return timeouts.tertiary

    def run(self) -> WorkbookGrid:
        state: ReaderState = Pending(PRIMARY)
        while isinstance(state, Pending):
            state = self.step(state)
        if isinstance(state, Failed):
            raise WorkbookUnreadable(
                "Could not read workbook: " + "; ".join(state.causes),
                causes=list(state.causes),
            )
        return state.result

    def step(self, state: Pending) -> ReaderState:
        stage = state.stage
        if stage == TERTIARY and self._reported_range is None:
            self._fail(stage, "skipped", "skipped, no usable cell range was reported", 0.0)
            return Failed(tuple(self._causes))

        attempt = self.attempts[stage]
        cell_range = self._reported_range
        data, hints, settings = self.data, self.hints, self.settings
        started = time.monotonic()
        try:
            result = race(lambda: attempt(data, hints, settings, cell_range), self.timeout_for(stage), stage)
        except AttemptTimedOut as exc:
            self._fail(stage, "timeout", str(exc), time.monotonic() - started)
        except AttemptFailed as exc:
            if exc.cell_range is not None and exc.cell_range.usable and self._reported_range is None:
                self._reported_range = exc.cell_range
            self._fail(stage, "error", str(exc), time.monotonic() - started)
        except Exception as exc:
            self._fail(stage, "error", f"{type(exc).__name__}: {exc}", time.monotonic() - started)
        else:
            elapsed = time.monotonic() - started
            if not result.grid:
                self._fail(stage, "empty", "sheet has no values", elapsed)
            else:
                self.trace.append(AttemptRecord(stage, "ok", result.sheet_name, elapsed))
                logger.info("Read sheet '%s' with the %s attempt (%d rows)", result.sheet_name, stage, len(result.grid))
                return Succeeded(
                    WorkbookGrid(
                        grid=result.grid,
                        sheet_name=result.sheet_name,
                        sheet_names=result.sheet_names,
                        attempt=stage,
                        trace=list(self.trace),
                    )
                )

        following = STAGES.index(stage) + 1
        if following < len(STAGES):
            return Pending(STAGES[following])
        return Failed(tuple(self._causes))

    def _fail(self, stage: str, outcome: str, message: str, elapsed: float) -> None:
        logger.warning("%s workbook attempt failed (%s): %s", stage, outcome, message)
        self.trace.append(AttemptRecord(stage, outcome, message, elapsed))
        self._causes.append(f"{stage}: {message}")


def read_grid(
    data: bytes,
    hints: Optional[ReadHints] = None,
    settings: Optional[Settings] = None,
    attempts: Optional[dict[str, Attempt]] = None,
) -> WorkbookGrid:
    return WorkbookReader(data, hints, settings, attempts).run()


def hints_for(treat_as_legacy: bool, mime_type: Optional[str] = None, settings: Optional[Settings] = None) -> ReadHints:
    """Build reader hints from the sniffed format and the upload's declared MIME type."""
    settings = settings or Settings()
    code_page = None
    if mime_type and mime_type.lower() in HANCOM_MIME_TYPES:
        code_page = settings.legacy_code_page
    return ReadHints(treat_as_legacy=treat_as_legacy, code_page=code_page)


__all__ = [
    "AttemptFailed",
    "AttemptRecord",
    "AttemptResult",
    "CellRange",
    "Failed",
    "Pending",
    "ReadHints",
    "Succeeded",
    "WorkbookGrid",
    "WorkbookReader",
    "choose_sheet",
    "hints_for",
    "read_grid",
    "sheet_score",
]
