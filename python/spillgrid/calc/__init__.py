"""spillgrid.calc - Formula evaluation engine for spillgrid grids."""

from spillgrid.calc._evaluator import FormulaEvaluator, FormulaSyntaxError, evaluate_formula
from spillgrid.calc._functions import (
    FUNCTION_WHITELIST,
    ErrorKind,
    ExcelError,
    FormulaError,
    FunctionRegistry,
    FunctionSpec,
    is_supported,
)
from spillgrid.calc._parser import parse_functions, parse_range_references, parse_references, resolve_references
from spillgrid.calc._protocol import CellAddress, CellRange, EvalResult, FormulaBinding, GridView, SpillRange
from spillgrid.calc._vectorize import vectorize

__all__ = [
    "CellAddress",
    "CellRange",
    "ErrorKind",
    "EvalResult",
    "ExcelError",
    "FUNCTION_WHITELIST",
    "FormulaBinding",
    "FormulaError",
    "FormulaEvaluator",
    "FormulaSyntaxError",
    "FunctionRegistry",
    "FunctionSpec",
    "GridView",
    "SpillRange",
    "evaluate_formula",
    "is_supported",
    "parse_functions",
    "parse_range_references",
    "parse_references",
    "resolve_references",
    "vectorize",
]
