"""Tests for spillgrid.calc address resolution and reference extraction."""

from __future__ import annotations

import pytest

from spillgrid._grid import Grid
from spillgrid.calc._functions import ExcelError
from spillgrid.calc._parser import (
    format_literal,
    parse_functions,
    parse_range_references,
    parse_references,
    read_range,
    resolve_references,
)
from spillgrid.calc._protocol import CellRange


@pytest.fixture
def grid() -> Grid:
    return Grid([
        ["Name", "Score", "Team"],
        ["ann", 10, "red"],
        ["bob", 20, "blue"],
    ])


class TestFormatLiteral:
    def test_text_quoted(self) -> None:
        assert format_literal("abc") == '"abc"'

    def test_numbers_bare(self) -> None:
        assert format_literal(42) == "42"
        assert format_literal(1.5) == "1.5"

    def test_numeric_text_stays_text(self) -> None:
        assert format_literal("001") == '"001"'

    def test_booleans(self) -> None:
        assert format_literal(True) == "TRUE"
        assert format_literal(False) == "FALSE"

    def test_blank(self) -> None:
        assert format_literal(None) == '""'
        assert format_literal("") == '""'

    def test_quote_and_backslash_escaped(self) -> None:
        assert format_literal('say "hi"') == '"say \\"hi\\""'
        assert format_literal("a\\b") == '"a\\\\b"'

    def test_error_value(self) -> None:
        assert format_literal(ExcelError.NA) == '"#N/A"'


class TestSingleCells:
    def test_text_and_number(self, grid: Grid) -> None:
        assert resolve_references("A2&B2", grid) == '"ann"&10'

    def test_dollar_signs(self, grid: Grid) -> None:
        assert resolve_references("$B$3*2", grid) == "20*2"

    def test_lowercase(self, grid: Grid) -> None:
        assert resolve_references("b2+b3", grid) == "10+20"

    def test_out_of_bounds_is_empty_literal(self, grid: Grid) -> None:
        assert resolve_references("Z99", grid) == '""'

    def test_string_literal_untouched(self, grid: Grid) -> None:
        assert resolve_references('"see A1"&A1', grid) == '"see A1"&"Name"'

    def test_function_name_with_digits_untouched(self, grid: Grid) -> None:
        assert resolve_references("LOG10(B2)", grid) == "LOG10(10)"


class TestRanges:
    def test_single_column_is_flat(self, grid: Grid) -> None:
        assert resolve_references("SUM(B2:B3)", grid) == "SUM([10,20])"

    def test_multi_column_is_rows(self, grid: Grid) -> None:
        assert resolve_references("A1:B2", grid) == '[["Name","Score"],["ann",10]]'

    def test_reversed_range_normalized(self, grid: Grid) -> None:
        assert resolve_references("B3:B2", grid) == "[10,20]"

    def test_rows_clipped_to_grid(self, grid: Grid) -> None:
        assert resolve_references("B2:B50", grid) == "[10,20]"

    def test_entirely_outside_grid(self, grid: Grid) -> None:
        assert resolve_references("D10:D12", grid) == "[]"

    def test_multi_column_padded(self) -> None:
        ragged = Grid([["a", "b"], ["c"]])
        assert resolve_references("A1:B2", ragged) == '[["a","b"],["c",""]]'

    def test_read_range_direct(self, grid: Grid) -> None:
        assert read_range(CellRange(1, 0, 2, 0), grid) == ["ann", "bob"]
        assert read_range(CellRange(1, 1, 2, 2), grid) == [[10, "red"], [20, "blue"]]


class TestWholeColumns:
    def test_single_column(self, grid: Grid) -> None:
        assert resolve_references("B:B", grid) == '["Score",10,20]'

    def test_multi_column(self, grid: Grid) -> None:
        assert resolve_references("A:B", grid) == '[["Name","Score"],["ann",10],["bob",20]]'

    def test_expands_before_cells(self, grid: Grid) -> None:
        out = resolve_references('COUNTIF(A:A,"ann")+B2', grid)
        assert out == 'COUNTIF(["Name","ann","bob"],"ann")+10'

    def test_uses_current_height(self) -> None:
        rows = [["x"], ["y"]]
        g = Grid(rows)
        assert resolve_references("A:A", g) == '["x","y"]'
        rows.append(["z"])
        assert resolve_references("A:A", g) == '["x","y","z"]'

    def test_empty_grid(self) -> None:
        assert resolve_references("A:A", Grid([])) == "[]"


class TestSubstitutedTextNotRewritten:
    def test_cell_text_that_looks_like_reference(self) -> None:
        g = Grid([["C1", "B2"], ["x", "y"]])
        assert resolve_references("A1:A1&B2", g) == '["C1"]&"y"'

    def test_whole_column_text_with_colon(self) -> None:
        g = Grid([["A:B"], ["B2"]])
        assert resolve_references("A:A", g) == '["A:B","B2"]'


class TestReferenceExtraction:
    def test_simple_refs(self) -> None:
        assert parse_references("=A1+B2") == ["A1", "B2"]

    def test_dollar_signs_stripped(self) -> None:
        assert parse_references("=$A$1+B$2+$C3") == ["A1", "B2", "C3"]

    def test_no_duplicates(self) -> None:
        assert parse_references("=A1+A1+a1") == ["A1"]

    def test_string_literal_ignored(self) -> None:
        assert parse_references('=A1&"Hello A2"') == ["A1"]

    def test_range_endpoints_excluded(self) -> None:
        assert parse_references("=SUM(A1:A5)+C3") == ["C3"]

    def test_range_references(self) -> None:
        ranges = parse_range_references('=SUM(A1:A5)+COUNTIF(B:B,"x")')
        assert ranges == ["B:B", "A1:A5"]

    def test_range_references_case_normalized(self) -> None:
        assert parse_range_references("=sum(a1:b2)") == ["A1:B2"]

    def test_functions(self) -> None:
        funcs = parse_functions('=IFERROR(VLOOKUP(A1,B:C,2,FALSE),"none")')
        assert funcs == ["IFERROR", "VLOOKUP"]

    def test_functions_in_strings_ignored(self) -> None:
        assert parse_functions('=UPPER("SUM(1)")') == ["UPPER"]
