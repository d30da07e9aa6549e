"""Address resolver: rewrites A1 references in a formula body into literal data.

Substitution runs in three phases, each owning one token shape:

1. whole-column ranges (``A:E``, ``B:B``), expanded to the grid's current height
2. bounded ranges (``B2:B5``, ``A1:C3``)
3. single cells (``B2``)

Whole columns must go first: a later phase would otherwise match the column
letters of ``A:E`` against neighbouring tokens. Text inside string literals
is never rewritten, including text a previous phase substituted in.
"""

from __future__ import annotations

import datetime
import math
import re
from collections.abc import Callable
from typing import Any

from spillgrid._utils import column_to_index
from spillgrid.calc._functions import ExcelError
from spillgrid.calc._protocol import CellRange, GridView, is_blank

# ---------------------------------------------------------------------------
# Regex patterns for reference extraction
# ---------------------------------------------------------------------------

# A reference may not be glued to an identifier or number on either side, and
# may not be a function name (LOG10( is a call, not cell LOG10).
_BEFORE = r"(?<![A-Za-z0-9_.])"
_AFTER = r"(?![A-Za-z0-9_(])"
_COL = r"\$?([A-Za-z]{1,3})"
_CELL = rf"{_COL}\$?(\d+)"

_COLUMN_RANGE_RE = re.compile(rf"{_BEFORE}{_COL}:{_COL}{_AFTER}")
_RANGE_REF_RE = re.compile(rf"{_BEFORE}{_CELL}:{_CELL}{_AFTER}")
_SINGLE_REF_RE = re.compile(rf"{_BEFORE}{_CELL}{_AFTER}")

# Function names: SUM(...), VLOOKUP(...)
_FUNC_RE = re.compile(r"([A-Za-z][A-Za-z0-9_.]*)\s*\(")

# String literals, with backslash escapes and Excel-style "" doubling
_STRING_RE = re.compile(r'"(?:\\.|""|[^"\\])*"', re.DOTALL)


def _strip_strings(formula: str) -> str:
    """Remove string literals so refs inside quotes aren't matched."""
    return _STRING_RE.sub('""', formula)


def _sub_outside_strings(
    pattern: re.Pattern[str],
    repl: Callable[[re.Match[str]], str],
    text: str,
) -> str:
    """``pattern.sub`` applied only to the text between string literals."""
    out: list[str] = []
    pos = 0
    for m in _STRING_RE.finditer(text):
        out.append(pattern.sub(repl, text[pos:m.start()]))
        out.append(m.group(0))
        pos = m.end()
    out.append(pattern.sub(repl, text[pos:]))
    return "".join(out)


# ---------------------------------------------------------------------------
# Literal rendering
# ---------------------------------------------------------------------------


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def format_literal(value: Any) -> str:
    """Render one cell value as expression source.

    Text is quoted with backslash escapes; numbers and booleans are bare;
    blanks become the empty string literal.
    """
    if is_blank(value):
        return '""'
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value) if math.isfinite(value) else _quote(repr(value))
    if isinstance(value, ExcelError):
        return _quote(value.code)
    if isinstance(value, datetime.date):
        return _quote(value.isoformat())
    return _quote(str(value))


def _format_array(values: list[Any]) -> str:
    return "[" + ",".join(format_literal(v) for v in values) + "]"


def _format_table(rows: list[list[Any]]) -> str:
    return "[" + ",".join(_format_array(row) for row in rows) + "]"


# ---------------------------------------------------------------------------
# Range reads
# ---------------------------------------------------------------------------


def _normalized(start_row: int, start_col: int, end_row: int, end_col: int) -> CellRange:
    return CellRange(
        min(start_row, end_row),
        min(start_col, end_col),
        max(start_row, end_row),
        max(start_col, end_col),
    )


def _cell(grid: GridView, row: int, col: int) -> Any:
    value = grid.get(row, col)
    return "" if value is None else value


def _read_table(rng: CellRange, grid: GridView) -> list[list[Any]]:
    last_row = min(rng.end_row, grid.n_rows - 1)
    return [
        [_cell(grid, r, c) for c in range(rng.start_col, rng.end_col + 1)]
        for r in range(rng.start_row, last_row + 1)
    ]


def read_range(rng: CellRange, grid: GridView) -> list[Any] | list[list[Any]]:
    """Read *rng* from *grid*, clipped to the grid's rows.

    A single-column range yields a flat list of the cells that exist. A
    multi-column range yields row lists padded with ``""`` to equal width.
    """
    if rng.is_single_column:
        if rng.start_col >= grid.n_cols:
            return []
        return [row[0] for row in _read_table(rng, grid)]
    return _read_table(rng, grid)


# ---------------------------------------------------------------------------
# The three substitution phases
# ---------------------------------------------------------------------------


def _resolve_whole_columns(text: str, grid: GridView) -> str:
    def repl(m: re.Match[str]) -> str:
        if grid.n_rows == 0:
            return "[]"
        rng = _normalized(0, column_to_index(m.group(1)), grid.n_rows - 1, column_to_index(m.group(2)))
        table = _read_table(rng, grid)
        if rng.is_single_column:
            return _format_array([row[0] for row in table])
        return _format_table(table)

    return _sub_outside_strings(_COLUMN_RANGE_RE, repl, text)


def _resolve_ranges(text: str, grid: GridView) -> str:
    def repl(m: re.Match[str]) -> str:
        rng = _normalized(
            int(m.group(2)) - 1,
            column_to_index(m.group(1)),
            int(m.group(4)) - 1,
            column_to_index(m.group(3)),
        )
        if rng.start_row < 0:
            return "[]"
        if rng.is_single_column:
            return _format_array(read_range(rng, grid))
        return _format_table(_read_table(rng, grid))

    return _sub_outside_strings(_RANGE_REF_RE, repl, text)


def _resolve_cells(text: str, grid: GridView) -> str:
    def repl(m: re.Match[str]) -> str:
        row = int(m.group(2)) - 1
        col = column_to_index(m.group(1))
        return format_literal(grid.get(row, col))

    return _sub_outside_strings(_SINGLE_REF_RE, repl, text)


def resolve_references(formula_body: str, grid: GridView) -> str:
    """Replace every reference in *formula_body* with literal values from *grid*."""
    text = _resolve_whole_columns(formula_body, grid)
    text = _resolve_ranges(text, grid)
    return _resolve_cells(text, grid)


# ---------------------------------------------------------------------------
# Reference extraction
# ---------------------------------------------------------------------------


def parse_references(formula: str) -> list[str]:
    """Extract all single cell references from a formula.

    Returns canonical ``"A1"`` strings (upper-case, no dollar signs), in order
    of first appearance. Does NOT include range endpoints; use
    parse_range_references for those.
    """
    clean = _strip_strings(formula)
    clean = _COLUMN_RANGE_RE.sub(" ", clean)
    clean = _RANGE_REF_RE.sub(" ", clean)
    refs: list[str] = []
    seen: set[str] = set()
    for m in _SINGLE_REF_RE.finditer(clean):
        canonical = f"{m.group(1).upper()}{m.group(2)}"
        if canonical not in seen:
            refs.append(canonical)
            seen.add(canonical)
    return refs


def parse_range_references(formula: str) -> list[str]:
    """Extract all range references (whole-column and bounded), e.g. ``"B:B"``, ``"A1:C3"``."""
    clean = _strip_strings(formula)
    ranges: list[str] = []
    seen: set[str] = set()

    def add(canonical: str) -> None:
        if canonical not in seen:
            ranges.append(canonical)
            seen.add(canonical)

    for m in _COLUMN_RANGE_RE.finditer(clean):
        add(f"{m.group(1).upper()}:{m.group(2).upper()}")
    for m in _RANGE_REF_RE.finditer(_COLUMN_RANGE_RE.sub(" ", clean)):
        add(f"{m.group(1).upper()}{m.group(2)}:{m.group(3).upper()}{m.group(4)}")
    return ranges


def parse_functions(formula: str) -> list[str]:
    """Extract all function names used in a formula."""
    clean = _strip_strings(formula)
    funcs: list[str] = []
    seen: set[str] = set()
    for m in _FUNC_RE.finditer(clean):
        name = m.group(1).upper()
        if name not in seen:
            funcs.append(name)
            seen.add(name)
    return funcs
