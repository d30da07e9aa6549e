"""Grid proxy: provides ``grid['A1']`` access over an editor-owned list of rows."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from spillgrid._utils import a1_to_rowcol


class Grid:
    """Proxy for the rectangular cell grid the editor owns.

    Wraps (does not copy) a list of row lists. Rows may be ragged; reads past
    the end of a short row return ``None`` and writes pad the row with ``""``.
    The grid is never resized: writes outside ``n_rows`` x ``n_cols`` raise
    ``IndexError``.
    """

    __slots__ = ("_rows",)

    def __init__(self, rows: list[list[Any]] | None = None) -> None:
        self._rows: list[list[Any]] = rows if rows is not None else []

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[Any]]) -> Grid:
        """Build a grid over a private copy of *rows*."""
        return cls([list(row) for row in rows])

    @classmethod
    def blank(cls, n_rows: int, n_cols: int) -> Grid:
        return cls([["" for _ in range(n_cols)] for _ in range(n_rows)])

    # ------------------------------------------------------------------
    # Dimensions
    # ------------------------------------------------------------------

    @property
    def rows(self) -> list[list[Any]]:
        """The wrapped row lists (live, not a copy)."""
        return self._rows

    @property
    def n_rows(self) -> int:
        return len(self._rows)

    @property
    def n_cols(self) -> int:
        return max((len(row) for row in self._rows), default=0)

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.n_rows and 0 <= col < self.n_cols

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    def get(self, row: int, col: int) -> Any:
        """Value at 0-based (row, col); ``None`` when out of bounds."""
        if row < 0 or col < 0 or row >= len(self._rows):
            return None
        cells = self._rows[row]
        if col >= len(cells):
            return None
        return cells[col]

    def set_cell(self, row: int, col: int, value: Any) -> None:
        if not self.in_bounds(row, col):
            raise IndexError(f"Cell ({row}, {col}) is outside the {self.n_rows}x{self.n_cols} grid")
        cells = self._rows[row]
        if col >= len(cells):
            cells.extend([""] * (col + 1 - len(cells)))
        cells[col] = value

    def clear_cell(self, row: int, col: int) -> None:
        self.set_cell(row, col, "")

    def __getitem__(self, key: str) -> Any:
        """``grid['A1']`` -> value."""
        row, col = a1_to_rowcol(key)
        return self.get(row, col)

    def __setitem__(self, key: str, value: Any) -> None:
        """``grid['A1'] = 42``. Raw write, no formula handling."""
        row, col = a1_to_rowcol(key)
        self.set_cell(row, col, value)

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def iter_rows(
        self,
        min_row: int = 0,
        max_row: int | None = None,
        min_col: int = 0,
        max_col: int | None = None,
    ) -> Iterator[tuple[Any, ...]]:
        """Yield value tuples for an inclusive 0-based window, padded with ``None``."""
        r_max = self.n_rows - 1 if max_row is None else max_row
        c_max = self.n_cols - 1 if max_col is None else max_col
        for r in range(min_row, r_max + 1):
            yield tuple(self.get(r, c) for c in range(min_col, c_max + 1))

    def snapshot(self) -> list[list[Any]]:
        """Deep-enough copy for read-only evaluation."""
        return [list(row) for row in self._rows]

    def __repr__(self) -> str:
        return f"<Grid {self.n_rows}x{self.n_cols}>"
