"""Tests for spillgrid.calc array-capable function wrappers."""

from __future__ import annotations

from typing import Any

import pytest

from spillgrid.calc._evaluator import evaluate_formula
from spillgrid.calc._functions import (
    _BUILTINS,
    ExcelError,
    FormulaError,
    FunctionRegistry,
    FunctionSpec,
)
from spillgrid.calc._vectorize import bind_functions, vectorize


def _vectorized(name: str) -> Any:
    return vectorize(_BUILTINS[name])


class TestScalarPassThrough:
    def test_scalar_args_unchanged(self) -> None:
        assert _vectorized("UPPER")(["abc"]) == "ABC"

    def test_scalar_error_still_raises(self) -> None:
        search = _vectorized("SEARCH")
        with pytest.raises(FormulaError) as exc_info:
            search(["z", "abc"])
        assert exc_info.value.error is ExcelError.VALUE


class TestElementwise:
    def test_column_vector_result(self) -> None:
        assert _vectorized("UPPER")([["a", "b"]]) == [["A"], ["B"]]

    def test_scalar_broadcast(self) -> None:
        result = _vectorized("LEFT")([["apple", "banana"], 2])
        assert result == [["ap"], ["ba"]]

    def test_longest_array_wins(self) -> None:
        result = _vectorized("LEFT")([["abc", "def", "ghi"], [1, 2]])
        # Missing element of the shorter array reads as ""; LEFT("ghi", "") -> ""
        assert result == [["a"], ["de"], [""]]

    def test_failures_degrade_to_false(self) -> None:
        result = _vectorized("SEARCH")(["x", ["xa", "b", "ax"]])
        assert result == [[1.0], [False], [2.0]]

    def test_column_vector_argument_unwrapped(self) -> None:
        result = _vectorized("LEN")([[["ab"], ["abc"]]])
        assert result == [[2.0], [3.0]]

    def test_multi_column_rows_passed_whole(self) -> None:
        result = _vectorized("LOWER")([[["A", "B"], ["C", "D"]]])
        assert result == [["a,b"], ["c,d"]]

    def test_filter_rows_align_with_multi_column_predicate(self) -> None:
        rows = [["a", "x"], ["b", "c"], ["x", "d"]]
        result = evaluate_formula('=FILTER(A1:B3, ISNUMBER(SEARCH("x", A1:B3)))', rows)
        assert result == [["a", "x"], ["x", "d"]]

    def test_nested_predicate(self) -> None:
        search = _vectorized("SEARCH")
        isnumber = _vectorized("ISNUMBER")
        hits = search(["sato", ["Name", "Sato Taro", "Suzuki", "sato jiro"]])
        assert isnumber([hits]) == [[False], [True], [False], [True]]

    def test_error_elements(self) -> None:
        upper = _vectorized("UPPER")
        assert upper([["a", ExcelError.NA]]) == [["A"], [False]]
        iserror = _vectorized("ISERROR")
        assert iserror([["a", ExcelError.NA]]) == [[False], [True]]

    def test_empty_array(self) -> None:
        assert _vectorized("UPPER")([[]]) == []


class TestBinding:
    def test_bind_wraps_only_flagged(self) -> None:
        bound = bind_functions(FunctionRegistry())
        assert bound["SUM"] is _BUILTINS["SUM"].func
        assert bound["UPPER"] is not _BUILTINS["UPPER"].func
        assert bound["UPPER"]([["x"]]) == [["X"]]

    def test_custom_vectorized(self) -> None:
        reg = FunctionRegistry()
        reg.register("TWICE", lambda args: args[0] * 2, vectorize=True)
        bound = bind_functions(reg)
        assert bound["TWICE"]([[1, 2]]) == [[2], [4]]

    def test_spec_metadata_preserved(self) -> None:
        spec = FunctionSpec("ECHO", lambda args: args[0], "custom", vectorize=True)
        assert vectorize(spec)([["q"]]) == [["q"]]
