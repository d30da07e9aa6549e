"""Tests for spillgrid A1 coordinate helpers and the Grid adapter."""

from __future__ import annotations

import itertools
import string

import pytest

from spillgrid._grid import Grid
from spillgrid._utils import a1_to_rowcol, column_to_index, index_to_column, rowcol_to_a1
from spillgrid.calc._protocol import GridView


class TestColumnLetters:
    def test_single_letters(self) -> None:
        assert column_to_index("A") == 0
        assert column_to_index("Z") == 25

    def test_multi_letters(self) -> None:
        assert column_to_index("AA") == 26
        assert column_to_index("AB") == 27
        assert column_to_index("AZ") == 51
        assert column_to_index("BA") == 52
        assert column_to_index("ZZ") == 701
        assert column_to_index("AAA") == 702

    def test_lowercase_accepted(self) -> None:
        assert column_to_index("ab") == 27

    def test_index_to_column(self) -> None:
        assert index_to_column(0) == "A"
        assert index_to_column(25) == "Z"
        assert index_to_column(26) == "AA"
        assert index_to_column(701) == "ZZ"

    def test_round_trip_one_and_two_letters(self) -> None:
        letters = list(string.ascii_uppercase)
        pairs = ["".join(p) for p in itertools.product(letters, repeat=2)]
        for col in letters + pairs:
            assert index_to_column(column_to_index(col)) == col

    def test_round_trip_indices(self) -> None:
        for idx in range(0, 2000):
            assert column_to_index(index_to_column(idx)) == idx

    @pytest.mark.parametrize("bad", ["", "A1", "1", "Ä", "A-B"])
    def test_invalid_letters(self, bad: str) -> None:
        with pytest.raises(ValueError, match="Invalid column letters"):
            column_to_index(bad)

    def test_negative_index(self) -> None:
        with pytest.raises(ValueError):
            index_to_column(-1)


class TestA1:
    def test_a1_to_rowcol(self) -> None:
        assert a1_to_rowcol("A1") == (0, 0)
        assert a1_to_rowcol("B2") == (1, 1)
        assert a1_to_rowcol("AA10") == (9, 26)

    def test_dollar_signs_ignored(self) -> None:
        assert a1_to_rowcol("$C$3") == (2, 2)
        assert a1_to_rowcol("C$3") == (2, 2)

    def test_rowcol_to_a1(self) -> None:
        assert rowcol_to_a1(0, 0) == "A1"
        assert rowcol_to_a1(9998, 701) == "ZZ9999"

    def test_round_trip(self) -> None:
        for ref in ("A1", "Z26", "AA100", "ZZ9999"):
            assert rowcol_to_a1(*a1_to_rowcol(ref)) == ref

    @pytest.mark.parametrize("bad", ["", "A", "1A", "A0", "A1B"])
    def test_invalid_refs(self, bad: str) -> None:
        with pytest.raises(ValueError):
            a1_to_rowcol(bad)


class TestGrid:
    def test_wraps_without_copy(self) -> None:
        rows = [["a", "b"], ["c", "d"]]
        grid = Grid(rows)
        grid.set_cell(0, 1, "x")
        assert rows[0][1] == "x"

    def test_from_rows_copies(self) -> None:
        rows = [["a", "b"]]
        grid = Grid.from_rows(rows)
        grid.set_cell(0, 0, "z")
        assert rows[0][0] == "a"

    def test_dimensions_ragged(self) -> None:
        grid = Grid([["a"], ["b", "c", "d"]])
        assert grid.n_rows == 2
        assert grid.n_cols == 3

    def test_get_out_of_bounds_is_none(self) -> None:
        grid = Grid([["a"], ["b", "c"]])
        assert grid.get(0, 1) is None
        assert grid.get(5, 0) is None
        assert grid.get(-1, 0) is None

    def test_set_pads_short_row(self) -> None:
        rows = [["a"], ["b", "c", "d"]]
        grid = Grid(rows)
        grid.set_cell(0, 2, "z")
        assert rows[0] == ["a", "", "z"]

    def test_set_outside_grid_raises(self) -> None:
        grid = Grid.blank(2, 2)
        with pytest.raises(IndexError):
            grid.set_cell(2, 0, "x")
        with pytest.raises(IndexError):
            grid.set_cell(0, 2, "x")

    def test_clear_cell(self) -> None:
        grid = Grid([["a", "b"]])
        grid.clear_cell(0, 0)
        assert grid.get(0, 0) == ""

    def test_a1_item_access(self) -> None:
        grid = Grid.blank(3, 3)
        grid["B2"] = 42
        assert grid["B2"] == 42
        assert grid.get(1, 1) == 42

    def test_iter_rows_window(self) -> None:
        grid = Grid([[1, 2, 3], [4, 5, 6], [7, 8, 9]])
        assert list(grid.iter_rows(1, 2, 0, 1)) == [(4, 5), (7, 8)]

    def test_snapshot_is_independent(self) -> None:
        grid = Grid([[1, 2]])
        snap = grid.snapshot()
        grid.set_cell(0, 0, 9)
        assert snap == [[1, 2]]

    def test_satisfies_grid_protocol(self) -> None:
        assert isinstance(Grid.blank(1, 1), GridView)
        assert not isinstance([[1]], GridView)
