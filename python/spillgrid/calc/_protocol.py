"""Grid protocol and value dataclasses shared by the resolver, evaluator and spill manager."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from spillgrid._utils import rowcol_to_a1
from spillgrid.calc._functions import ExcelError


def is_blank(value: Any) -> bool:
    """A cell is blank when it holds ``None`` or the empty string."""
    return value is None or (isinstance(value, str) and value == "")


@dataclass(frozen=True, order=True)
class CellAddress:
    """0-based (row, col) coordinate. Hashable, so it keys every bookkeeping map."""

    row: int
    col: int

    @property
    def a1(self) -> str:
        return rowcol_to_a1(self.row, self.col)

    def __str__(self) -> str:
        return self.a1


@dataclass(frozen=True)
class CellRange:
    """Inclusive rectangular range, 0-based."""

    start_row: int
    start_col: int
    end_row: int
    end_col: int

    @property
    def n_rows(self) -> int:
        return self.end_row - self.start_row + 1

    @property
    def n_cols(self) -> int:
        return self.end_col - self.start_col + 1

    @property
    def is_single_column(self) -> bool:
        return self.start_col == self.end_col

    def addresses(self) -> Iterator[CellAddress]:
        """Row-major iteration over every cell in the range."""
        for r in range(self.start_row, self.end_row + 1):
            for c in range(self.start_col, self.end_col + 1):
                yield CellAddress(r, c)


@dataclass(frozen=True)
class SpillRange:
    """Footprint of one array result, anchored at the cell holding its formula."""

    origin_row: int
    origin_col: int
    rows: int
    cols: int

    @property
    def origin(self) -> CellAddress:
        return CellAddress(self.origin_row, self.origin_col)

    @property
    def end_row(self) -> int:
        return self.origin_row + self.rows - 1

    @property
    def end_col(self) -> int:
        return self.origin_col + self.cols - 1

    def contains(self, address: CellAddress) -> bool:
        return (
            self.origin_row <= address.row <= self.end_row
            and self.origin_col <= address.col <= self.end_col
        )

    def cells(self) -> Iterator[CellAddress]:
        for r in range(self.rows):
            for c in range(self.cols):
                yield CellAddress(self.origin_row + r, self.origin_col + c)

    def non_origin_cells(self) -> Iterator[CellAddress]:
        origin = self.origin
        return (a for a in self.cells() if a != origin)

    def overlaps(self, other: SpillRange) -> bool:
        return not (
            other.origin_row > self.end_row
            or other.end_row < self.origin_row
            or other.origin_col > self.end_col
            or other.end_col < self.origin_col
        )

    def __str__(self) -> str:
        start = rowcol_to_a1(self.origin_row, self.origin_col)
        end = rowcol_to_a1(self.end_row, self.end_col)
        return f"{start}:{end}"


@dataclass(frozen=True)
class FormulaBinding:
    """The formula text that produced the value(s) anchored at *origin*."""

    origin: CellAddress
    formula: str


@dataclass(frozen=True)
class EvalResult:
    """A normalized evaluation outcome: scalar, 2-D array, or error."""

    value: Any

    @property
    def is_error(self) -> bool:
        return isinstance(self.value, ExcelError)

    @property
    def is_array(self) -> bool:
        return is_2d_array(self.value)

    @property
    def shape(self) -> tuple[int, int]:
        """(rows, cols) of an array result; (1, 1) for scalars and errors."""
        if not self.is_array:
            return (1, 1)
        return (len(self.value), len(self.value[0]))


def is_2d_array(value: Any) -> bool:
    """True for a non-empty list whose first element is itself a list."""
    return isinstance(value, list) and len(value) > 0 and isinstance(value[0], list)


@runtime_checkable
class GridView(Protocol):
    """The editor-owned grid, as seen by the core.

    The core reads through ``get`` and issues discrete writes; it never
    resizes the grid.
    """

    @property
    def n_rows(self) -> int: ...

    @property
    def n_cols(self) -> int: ...

    def get(self, row: int, col: int) -> Any:
        """Value at (row, col), or ``None`` when out of bounds."""
        ...

    def set_cell(self, row: int, col: int, value: Any) -> None: ...

    def clear_cell(self, row: int, col: int) -> None: ...
