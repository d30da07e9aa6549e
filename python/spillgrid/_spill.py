"""SpillManager: applies evaluation results to the grid and owns spill regions.

Every edit goes through :meth:`SpillManager.handle_edit` before it reaches the
grid. Per origin cell the lifecycle is::

    Empty -> FormulaEntered -> ScalarApplied
                            -> SpillPending -> SpillCommitted | SpillBlocked
          -> Cleared (-> Empty)

A committed spill registers one :class:`SpillRange` keyed by its origin and a
:class:`FormulaBinding` at the origin only. Non-origin cells of a spill are
read-only: edits to them are rejected and never written.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from spillgrid._grid import Grid
from spillgrid.calc._evaluator import FormulaEvaluator
from spillgrid.calc._functions import ExcelError
from spillgrid.calc._protocol import (
    CellAddress,
    EvalResult,
    FormulaBinding,
    GridView,
    SpillRange,
    is_blank,
)
from spillgrid.config import Settings, settings

logger = logging.getLogger(__name__)

FORMULA_INPUT = "FORMULA_INPUT"
CELL_EDIT = "CELL_EDIT"


class EditOutcome(Enum):
    APPLIED = "applied"  # scalar value or scalar formula result written
    REJECTED = "rejected"  # edit to a non-origin spilled cell, nothing written
    SPILLED = "spilled"  # array result committed across its footprint
    BLOCKED = "blocked"  # footprint occupied, #SPILL! written at the origin
    CLEARED = "cleared"  # cell blanked, binding and spill released


@dataclass(frozen=True)
class EditResult:
    """What ``handle_edit`` did, and the value now held by the edited cell."""

    outcome: EditOutcome
    value: Any
    spill: SpillRange | None = None


@dataclass(frozen=True)
class OperationLogEntry:
    """One user-visible operation, as consumed by the scoring subsystem."""

    event_type: str  # FORMULA_INPUT or CELL_EDIT
    timestamp: float
    row: int
    col: int
    old_value: Any
    new_value: Any
    formula: str | None = None
    result: Any = None


def is_formula(value: Any) -> bool:
    return isinstance(value, str) and value.strip().startswith("=")


def _cell_value(value: Any) -> Any:
    """Grid representation of an evaluation value: errors become ``#...`` strings."""
    if isinstance(value, ExcelError):
        return str(value)
    return value


class SpillManager:
    """Applies edits to an editor-owned grid and maintains spill bookkeeping.

    Usage::

        manager = SpillManager(rows)
        manager.handle_edit(0, 6, "", '=FILTER(A:E, "Sato", B:B)')
        manager.cell_role(1, 6)   # "spill-cell"
        manager.formula_at(0, 6)  # '=FILTER(A:E, "Sato", B:B)'
    """

    def __init__(
        self,
        grid: GridView | list[list[Any]],
        config: Settings | None = None,
        evaluator: FormulaEvaluator | None = None,
        on_log: Callable[[OperationLogEntry], None] | None = None,
    ) -> None:
        self._grid: GridView = grid if isinstance(grid, GridView) else Grid(grid)
        self._settings = config or settings
        self._evaluator = evaluator or FormulaEvaluator(self._settings)
        self._on_log = on_log
        self._spills: dict[CellAddress, SpillRange] = {}
        self._formulas: dict[CellAddress, FormulaBinding] = {}
        self._log: list[OperationLogEntry] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def grid(self) -> GridView:
        return self._grid

    @property
    def evaluator(self) -> FormulaEvaluator:
        return self._evaluator

    @property
    def spill_ranges(self) -> list[SpillRange]:
        return list(self._spills.values())

    @property
    def formulas(self) -> dict[CellAddress, FormulaBinding]:
        return dict(self._formulas)

    @property
    def operation_log(self) -> list[OperationLogEntry]:
        return list(self._log)

    def spill_at(self, row: int, col: int) -> SpillRange | None:
        """The spill range claiming (row, col), origin included."""
        address = CellAddress(row, col)
        for spill in self._spills.values():
            if spill.contains(address):
                return spill
        return None

    def is_spill_origin(self, row: int, col: int) -> bool:
        return CellAddress(row, col) in self._spills

    def is_spilled_cell(self, row: int, col: int) -> bool:
        """True for a non-origin member of a spill footprint."""
        spill = self.spill_at(row, col)
        return spill is not None and spill.origin != CellAddress(row, col)

    def cell_role(self, row: int, col: int) -> str | None:
        """``"spill-origin"``, ``"spill-cell"`` or None, for UI styling."""
        spill = self.spill_at(row, col)
        if spill is None:
            return None
        return "spill-origin" if spill.origin == CellAddress(row, col) else "spill-cell"

    def formula_at(self, row: int, col: int) -> str | None:
        binding = self._formulas.get(CellAddress(row, col))
        return binding.formula if binding is not None else None

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def handle_edit(self, row: int, col: int, old_value: Any, new_value: Any) -> EditResult:
        """Apply one user edit of (row, col) from *old_value* to *new_value*.

        Raises IndexError when (row, col) lies outside the grid.
        """
        if not (0 <= row < self._grid.n_rows and 0 <= col < self._grid.n_cols):
            raise IndexError(f"Cell ({row}, {col}) is outside the {self._grid.n_rows}x{self._grid.n_cols} grid")
        address = CellAddress(row, col)

        claim = self.spill_at(row, col)
        if claim is not None and claim.origin != address:
            logger.debug("Blocked edit to spilled cell %s (spill %s)", address, claim)
            return EditResult(EditOutcome.REJECTED, self._grid.get(row, col), claim)

        if address in self._spills:
            logger.debug("Origin %s edited, clearing its spill range", address)
            self._clear_spill(address)

        if is_formula(new_value):
            return self._apply_formula(address, new_value.strip(), old_value)
        return self._apply_value(address, old_value, new_value)

    def clear(self, row: int, col: int) -> EditResult:
        """Blank (row, col) as if the user deleted its content."""
        return self.handle_edit(row, col, self._grid.get(row, col), "")

    def apply_batch(self, changes: Iterable[tuple[int, int, Any, Any]]) -> list[EditResult]:
        """Apply a multi-cell edit (e.g. a paste) one cell at a time, in row-major order."""
        ordered = sorted(changes, key=lambda change: (change[0], change[1]))
        return [self.handle_edit(row, col, old, new) for row, col, old, new in ordered]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_value(self, address: CellAddress, old_value: Any, new_value: Any) -> EditResult:
        self._formulas.pop(address, None)
        if is_blank(new_value):
            self._grid.clear_cell(address.row, address.col)
            outcome = EditOutcome.CLEARED
        else:
            self._grid.set_cell(address.row, address.col, new_value)
            outcome = EditOutcome.APPLIED
        self._record(CELL_EDIT, address, old_value, new_value)
        return EditResult(outcome, self._grid.get(address.row, address.col))

    def _apply_formula(self, address: CellAddress, formula: str, old_value: Any) -> EditResult:
        result = self._evaluator.evaluate_result(formula, self._grid, address.row, address.col)
        if result.is_array:
            return self._apply_array(address, formula, old_value, result)

        value = _cell_value(result.value)
        self._grid.set_cell(address.row, address.col, value)
        self._formulas[address] = FormulaBinding(address, formula)
        self._record(FORMULA_INPUT, address, old_value, formula, formula=formula, result=value)
        return EditResult(EditOutcome.APPLIED, value)

    def _apply_array(self, address: CellAddress, formula: str, old_value: Any, result: EvalResult) -> EditResult:
        rows, cols = result.shape
        footprint = SpillRange(address.row, address.col, rows, cols)
        logger.debug("Detected %dx%d array result at %s", rows, cols, address)

        if not self._can_spill(footprint):
            logger.debug("Spill %s blocked", footprint)
            self._formulas.pop(address, None)
            spill_token = str(ExcelError.SPILL)
            self._grid.set_cell(address.row, address.col, spill_token)
            return EditResult(EditOutcome.BLOCKED, spill_token)

        self._spills[address] = footprint
        for r, row_values in enumerate(result.value):
            for c, value in enumerate(row_values):
                self._grid.set_cell(address.row + r, address.col + c, _cell_value(value))
        self._formulas[address] = FormulaBinding(address, formula)
        summary = f"Spilled: {rows}x{cols} array"
        self._record(FORMULA_INPUT, address, old_value, formula, formula=formula, result=summary)
        return EditResult(EditOutcome.SPILLED, self._grid.get(address.row, address.col), footprint)

    def _can_spill(self, footprint: SpillRange) -> bool:
        """Every non-origin cell must be inside the grid, blank, and unclaimed."""
        if footprint.rows * footprint.cols > self._settings.max_spill_cells:
            return False
        if footprint.end_row >= self._grid.n_rows or footprint.end_col >= self._grid.n_cols:
            return False
        for cell in footprint.non_origin_cells():
            if not is_blank(self._grid.get(cell.row, cell.col)):
                return False
            if cell in self._formulas:
                return False
            claim = self.spill_at(cell.row, cell.col)
            if claim is not None and claim.origin != footprint.origin:
                return False
        return True

    def _clear_spill(self, origin: CellAddress) -> None:
        spill = self._spills.pop(origin)
        for cell in spill.non_origin_cells():
            if cell.row < self._grid.n_rows and cell.col < self._grid.n_cols:
                self._grid.clear_cell(cell.row, cell.col)
        logger.debug("Cleared spill range %s", spill)

    def _record(
        self,
        event_type: str,
        address: CellAddress,
        old_value: Any,
        new_value: Any,
        formula: str | None = None,
        result: Any = None,
    ) -> None:
        if not self._settings.log_operations:
            return
        entry = OperationLogEntry(
            event_type=event_type,
            timestamp=time.time(),
            row=address.row,
            col=address.col,
            old_value=old_value,
            new_value=new_value,
            formula=formula,
            result=result,
        )
        self._log.append(entry)
        if self._on_log is not None:
            self._on_log(entry)
