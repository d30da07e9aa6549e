"""spillgrid - spreadsheet formula evaluation with dynamic-array spill handling.

Usage::

    from spillgrid import SpillManager, evaluate_formula

    rows = [["ID", "Name"], ["001", "Sato Taro"], ["002", "Suzuki Hanako"]]
    evaluate_formula('=COUNTIF(B:B, "Sato*")', rows)   # 1

    manager = SpillManager([row + ["", ""] for row in rows])
    manager.handle_edit(0, 2, "", '=FILTER(A:B, "Sato", B:B)')
    manager.cell_role(0, 3)   # "spill-cell"
"""

from spillgrid._grid import Grid
from spillgrid._spill import EditOutcome, EditResult, OperationLogEntry, SpillManager
from spillgrid._utils import a1_to_rowcol, column_to_index, index_to_column, rowcol_to_a1
from spillgrid.calc import (
    CellAddress,
    ErrorKind,
    EvalResult,
    ExcelError,
    FormulaBinding,
    FormulaError,
    FormulaEvaluator,
    FunctionRegistry,
    SpillRange,
    evaluate_formula,
)
from spillgrid.config import Settings, configure_logging, settings

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "CellAddress",
    "EditOutcome",
    "EditResult",
    "ErrorKind",
    "EvalResult",
    "ExcelError",
    "FormulaBinding",
    "FormulaError",
    "FormulaEvaluator",
    "FunctionRegistry",
    "Grid",
    "OperationLogEntry",
    "Settings",
    "SpillManager",
    "SpillRange",
    "a1_to_rowcol",
    "column_to_index",
    "configure_logging",
    "evaluate_formula",
    "index_to_column",
    "rowcol_to_a1",
    "settings",
]
