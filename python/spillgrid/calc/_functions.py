"""Function library and registry metadata for formula evaluation.

Every builtin takes a single ``args`` list of already-evaluated argument
values (numbers, strings, booleans, ``None`` for an omitted argument, and
nested lists for ranges/arrays). Builtins signal a specific spreadsheet
error by raising :class:`FormulaError`.
"""

from __future__ import annotations

import datetime
import functools
import math
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable


# ---------------------------------------------------------------------------
# ExcelError: typed error values that propagate through formula chains
# ---------------------------------------------------------------------------


class ErrorKind(Enum):
    """Error taxonomy. The value is the token written into the cell."""

    VALUE = "#VALUE!"
    REF = "#REF!"
    NA = "#N/A"
    DIV0 = "#DIV/0!"
    NUM = "#NUM!"
    SPILL = "#SPILL!"
    ERROR = "#ERROR"

    @property
    def token(self) -> str:
        return self.value


class ExcelError:
    """Spreadsheet error value that propagates through formula chains.

    Use ``ExcelError.of(code)`` to get a cached singleton for each error code,
    or ``ExcelError.generic(message)`` for the catch-all ``#ERROR: <message>``.
    Errors compare equal to their string code (``ExcelError.NA == "#N/A"``).
    """

    __slots__ = ("code",)
    _cache: dict[str, ExcelError] = {}

    NA: ExcelError
    VALUE: ExcelError
    REF: ExcelError
    DIV0: ExcelError
    NUM: ExcelError
    SPILL: ExcelError

    def __init__(self, code: str) -> None:
        self.code = code

    @classmethod
    def of(cls, code: str) -> ExcelError:
        canon = code.upper()
        if canon not in cls._cache:
            cls._cache[canon] = cls(canon)
        return cls._cache[canon]

    @classmethod
    def generic(cls, message: str) -> ExcelError:
        if not message:
            return cls(ErrorKind.ERROR.token)
        return cls(f"{ErrorKind.ERROR.token}: {message}")

    @property
    def kind(self) -> ErrorKind:
        for kind in ErrorKind:
            if kind is not ErrorKind.ERROR and self.code == kind.token:
                return kind
        return ErrorKind.ERROR

    def __repr__(self) -> str:
        return self.code

    def __str__(self) -> str:
        return self.code

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ExcelError):
            return self.code == other.code
        if isinstance(other, str):
            return self.code.upper() == other.upper()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.code.upper())


# Singletons
ExcelError.NA = ExcelError.of(ErrorKind.NA.token)
ExcelError.VALUE = ExcelError.of(ErrorKind.VALUE.token)
ExcelError.REF = ExcelError.of(ErrorKind.REF.token)
ExcelError.DIV0 = ExcelError.of(ErrorKind.DIV0.token)
ExcelError.NUM = ExcelError.of(ErrorKind.NUM.token)
ExcelError.SPILL = ExcelError.of(ErrorKind.SPILL.token)


class FormulaError(Exception):
    """Raised by builtins to signal a specific spreadsheet error."""

    def __init__(self, error: ExcelError, message: str = "") -> None:
        super().__init__(message or error.code)
        self.error = error


def is_error(val: Any) -> bool:
    """Return True if *val* is an ExcelError instance."""
    return isinstance(val, ExcelError)


def is_error_like(val: Any) -> bool:
    """ExcelError values, and ``#...`` strings already written into the grid."""
    return isinstance(val, ExcelError) or (isinstance(val, str) and val.startswith("#"))


def first_error(*values: Any) -> ExcelError | None:
    """Return the first ExcelError found in *values*, or None."""
    for v in values:
        if isinstance(v, ExcelError):
            return v
    return None


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

_NUMBER_PREFIX_RE = re.compile(r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def parse_number(value: Any) -> float | None:
    """Permissive parse: the leading numeric prefix of a string, or ``None``.

    ``"12"`` -> 12.0, ``"12kg"`` -> 12.0, ``"abc"`` -> None. Booleans are not
    numbers here.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = _NUMBER_PREFIX_RE.match(value)
        if m:
            return float(m.group(0))
    return None


def to_number(value: Any) -> float:
    """Numeric coercion for aggregation: anything non-numeric becomes 0."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    num = parse_number(value)
    return 0.0 if num is None else num


def flatten(values: Any) -> list[Any]:
    """Flatten nested lists (ranges, arrays) into one list. Scalars become ``[x]``."""
    if not isinstance(values, (list, tuple)):
        return [values]
    result: list[Any] = []
    for v in values:
        if isinstance(v, (list, tuple)):
            result.extend(flatten(v))
        else:
            result.append(v)
    return result


def column_values(array: Any) -> list[Any]:
    """A 1-D view of a column: unwraps ``[[a], [b]]`` to ``[a, b]``."""
    if not isinstance(array, list):
        return [array]
    return [v[0] if isinstance(v, list) and len(v) == 1 else v for v in array]


def to_text(val: Any) -> str:
    if val is None:
        return ""
    if isinstance(val, bool):
        return "TRUE" if val else "FALSE"
    if isinstance(val, float) and val.is_integer():
        return str(int(val))
    if isinstance(val, list):
        return ",".join(to_text(v) for v in val)
    return str(val)


def _truthy(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, str) and value.upper() in ("TRUE", "FALSE"):
        return value.upper() == "TRUE"
    return bool(value)


def _is_true_flag(value: Any) -> bool:
    """Condition test used by IFS and FILTER: true, 1, or the text TRUE."""
    if value is True:
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 1
    return isinstance(value, str) and value.upper() == "TRUE"


def _values_equal(a: Any, b: Any) -> bool:
    """Lookup equality: numeric when both sides are numbers, else case-insensitive text."""
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b or to_text(a).upper() == to_text(b).upper()
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return float(a) == float(b)
    if isinstance(a, (int, float)) or isinstance(b, (int, float)):
        na, nb = _strict_number(a), _strict_number(b)
        return na is not None and na == nb
    return to_text(a).lower() == to_text(b).lower()


def _strict_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _require(args: list[Any], low: int, high: int | None, name: str) -> None:
    if len(args) < low or (high is not None and len(args) > high):
        if high is None:
            expected = f"at least {low}"
        elif low == high:
            expected = f"exactly {low}"
        else:
            expected = f"{low} to {high}"
        raise FormulaError(ExcelError.VALUE, f"{name} requires {expected} argument(s)")


def _present(args: list[Any], index: int) -> bool:
    return index < len(args) and args[index] is not None


def _finite(value: Any, name: str) -> float:
    """``to_number`` for arguments used as counts or positions; inf/nan are #NUM!."""
    num = to_number(value)
    if not math.isfinite(num):
        raise FormulaError(ExcelError.NUM, f"{name}: number out of range")
    return num


# ---------------------------------------------------------------------------
# Aggregation builtins
# ---------------------------------------------------------------------------


def _aggregation_values(args: list[Any], name: str) -> list[Any]:
    values = [v for v in flatten(args) if not isinstance(v, ExcelError)]
    if not values:
        raise FormulaError(ExcelError.VALUE, f"{name}: no values")
    return values


def _builtin_sum(args: list[Any]) -> float:
    return sum(to_number(v) for v in flatten(args) if not isinstance(v, ExcelError))


def _builtin_average(args: list[Any]) -> float:
    values = _aggregation_values(args, "AVERAGE")
    return sum(to_number(v) for v in values) / len(values)


def _builtin_count(args: list[Any]) -> float:
    """COUNT - counts numbers and numeric text."""
    return float(sum(1 for v in flatten(args) if parse_number(v) is not None))


def _builtin_max(args: list[Any]) -> float:
    return max(to_number(v) for v in _aggregation_values(args, "MAX"))


def _builtin_min(args: list[Any]) -> float:
    return min(to_number(v) for v in _aggregation_values(args, "MIN"))


def _builtin_round(args: list[Any]) -> float:
    """ROUND(number, [digits]). Halves round away from zero."""
    _require(args, 1, 2, "ROUND")
    if args[0] is None:
        raise FormulaError(ExcelError.VALUE, "ROUND: missing number")
    num = to_number(args[0])
    digits = int(_finite(args[1], "ROUND")) if _present(args, 1) else 0
    if not math.isfinite(num):
        return num
    try:
        rounded = Decimal(repr(num)).quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return num
    return float(rounded)


# ---------------------------------------------------------------------------
# Logical builtins
# ---------------------------------------------------------------------------


def _builtin_if(args: list[Any]) -> Any:
    """IF(condition, value_if_true, [value_if_false]).

    Error-aware: only the condition and the chosen branch can produce an error.
    """
    _require(args, 2, 3, "IF")
    if args[0] is None:
        raise FormulaError(ExcelError.VALUE, "IF: missing condition")
    if is_error(args[0]):
        return args[0]
    if _truthy(args[0]):
        return args[1]
    return args[2] if len(args) > 2 else False


def _builtin_ifs(args: list[Any]) -> Any:
    """IFS(cond1, value1, cond2, value2, ...). First true condition wins."""
    if not args or len(args) % 2 != 0:
        raise FormulaError(ExcelError.VALUE, "IFS requires condition/value pairs")
    for i in range(0, len(args), 2):
        if is_error(args[i]):
            return args[i]
        if _is_true_flag(args[i]):
            return args[i + 1]
    raise FormulaError(ExcelError.NA, "IFS: no condition was true")


def _builtin_and(args: list[Any]) -> bool:
    _require(args, 1, None, "AND")
    return all(_truthy(v) for v in flatten(args))


def _builtin_or(args: list[Any]) -> bool:
    _require(args, 1, None, "OR")
    return any(_truthy(v) for v in flatten(args))


def _builtin_not(args: list[Any]) -> bool:
    _require(args, 1, 1, "NOT")
    return not _truthy(args[0])


def _builtin_iferror(args: list[Any]) -> Any:
    _require(args, 2, 2, "IFERROR")
    value = args[0]
    if is_error_like(value):
        return args[1]
    if isinstance(value, float) and not math.isfinite(value):
        return args[1]
    return value


def _builtin_iserror(args: list[Any]) -> bool:
    _require(args, 1, 1, "ISERROR")
    return is_error_like(args[0])


def _builtin_isnumber(args: list[Any]) -> bool:
    """ISNUMBER - true for numbers and fully numeric text, never for booleans or blanks."""
    _require(args, 1, 1, "ISNUMBER")
    value = args[0]
    if value is None or isinstance(value, (bool, ExcelError)):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str) and value.strip():
        return _strict_number(value) is not None
    return False


# ---------------------------------------------------------------------------
# Text builtins
# ---------------------------------------------------------------------------


def _text_arg(args: list[Any], name: str) -> str:
    if not args or args[0] is None:
        raise FormulaError(ExcelError.VALUE, f"{name}: missing text")
    return to_text(args[0])


def _builtin_concatenate(args: list[Any]) -> str:
    _require(args, 1, None, "CONCATENATE")
    return "".join(to_text(a) for a in args)


def _builtin_left(args: list[Any]) -> str:
    _require(args, 1, 2, "LEFT")
    text = _text_arg(args, "LEFT")
    num_chars = int(_finite(args[1], "LEFT")) if _present(args, 1) else 1
    if num_chars < 0:
        raise FormulaError(ExcelError.VALUE, "LEFT: negative length")
    return text[:num_chars]


def _builtin_right(args: list[Any]) -> str:
    _require(args, 1, 2, "RIGHT")
    text = _text_arg(args, "RIGHT")
    num_chars = int(_finite(args[1], "RIGHT")) if _present(args, 1) else 1
    if num_chars < 0:
        raise FormulaError(ExcelError.VALUE, "RIGHT: negative length")
    return text[-num_chars:] if num_chars > 0 else ""


def _builtin_len(args: list[Any]) -> float:
    _require(args, 1, 1, "LEN")
    return float(len(_text_arg(args, "LEN")))


def _builtin_trim(args: list[Any]) -> str:
    """TRIM: remove leading/trailing whitespace and collapse internal runs."""
    _require(args, 1, 1, "TRIM")
    return " ".join(_text_arg(args, "TRIM").split())


def _builtin_upper(args: list[Any]) -> str:
    _require(args, 1, 1, "UPPER")
    return _text_arg(args, "UPPER").upper()


def _builtin_lower(args: list[Any]) -> str:
    _require(args, 1, 1, "LOWER")
    return _text_arg(args, "LOWER").lower()


def _builtin_search(args: list[Any]) -> float:
    """SEARCH(find_text, within_text, [start_num]). Case-insensitive, 1-based."""
    _require(args, 2, 3, "SEARCH")
    if args[0] is None or args[1] is None:
        raise FormulaError(ExcelError.VALUE, "SEARCH: missing text")
    find = to_text(args[0]).lower()
    within = to_text(args[1]).lower()
    start = max(1, int(_finite(args[2], "SEARCH"))) if _present(args, 2) else 1
    index = within.find(find, start - 1)
    if index < 0:
        raise FormulaError(ExcelError.VALUE, "SEARCH: text not found")
    return float(index + 1)


# ---------------------------------------------------------------------------
# Date builtins. Dates travel as ISO ``YYYY-MM-DD`` strings.
# ---------------------------------------------------------------------------

_DATE_RE = re.compile(r"^\s*(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:[ T].*)?\s*$")


def _parse_date(value: Any, name: str) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        m = _DATE_RE.match(value)
        if m:
            try:
                return datetime.date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
            except ValueError:
                pass
    raise FormulaError(ExcelError.VALUE, f"{name}: invalid date {value!r}")


def _format_date(value: datetime.date) -> str:
    return value.isoformat()


def _builtin_today(args: list[Any]) -> str:
    _require(args, 0, 0, "TODAY")
    return _format_date(datetime.date.today())


def _builtin_date(args: list[Any]) -> str:
    """DATE(year, month, day). Month and day overflow roll into the next period."""
    _require(args, 3, 3, "DATE")
    if any(a is None for a in args):
        raise FormulaError(ExcelError.VALUE, "DATE: missing argument")
    y = math.floor(_finite(args[0], "DATE"))
    m = math.floor(_finite(args[1], "DATE"))
    d = math.floor(_finite(args[2], "DATE"))
    y += (m - 1) // 12
    m = (m - 1) % 12 + 1
    try:
        result = datetime.date(y, m, 1) + datetime.timedelta(days=d - 1)
    except (ValueError, OverflowError):
        raise FormulaError(ExcelError.NUM, "DATE: out of range") from None
    return _format_date(result)


def _date_part(args: list[Any], name: str) -> datetime.date:
    _require(args, 1, 1, name)
    if args[0] is None:
        raise FormulaError(ExcelError.VALUE, f"{name}: missing date")
    return _parse_date(args[0], name)


def _builtin_year(args: list[Any]) -> int:
    return _date_part(args, "YEAR").year


def _builtin_month(args: list[Any]) -> int:
    return _date_part(args, "MONTH").month


def _builtin_day(args: list[Any]) -> int:
    return _date_part(args, "DAY").day


def _same_day_in_year(source: datetime.date, year: int) -> datetime.date:
    """``source``'s month/day placed in *year*; Feb 29 rolls to Mar 1 like a date overflow."""
    try:
        return datetime.date(year, source.month, source.day)
    except ValueError:
        return datetime.date(year, 3, 1)


def _builtin_datedif(args: list[Any]) -> int:
    """DATEDIF(start, end, unit).

    D  - days between the dates
    M  - month difference (year*12 + month, day ignored)
    Y  - year difference
    MD - day-of-month difference, ignoring months and years
    YM - month difference, ignoring years
    YD - days from start's month/day placed in end's year, up to end
    """
    _require(args, 3, 3, "DATEDIF")
    if any(a is None for a in args):
        raise FormulaError(ExcelError.VALUE, "DATEDIF: missing argument")
    start = _parse_date(args[0], "DATEDIF")
    end = _parse_date(args[1], "DATEDIF")
    unit = to_text(args[2]).upper()
    if unit == "D":
        return (end - start).days
    if unit == "M":
        return (end.year - start.year) * 12 + (end.month - start.month)
    if unit == "Y":
        return end.year - start.year
    if unit == "MD":
        return end.day - start.day
    if unit == "YM":
        return end.month - start.month
    if unit == "YD":
        return (end - _same_day_in_year(start, end.year)).days
    raise FormulaError(ExcelError.VALUE, f"DATEDIF: unknown unit {unit!r}")


# ---------------------------------------------------------------------------
# Criteria matching engine (shared by SUMIF, SUMIFS, COUNTIF, COUNTIFS)
# ---------------------------------------------------------------------------

_CRITERIA_OP_RE = re.compile(r"^(>=|<=|<>|>|<|=)(.+)$", re.DOTALL)


def _wildcard_regex(pattern: str) -> re.Pattern[str]:
    """Translate ``*`` and ``?`` wildcards into an anchored, case-insensitive regex."""
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _parse_criteria(criteria: Any) -> Callable[[Any], bool]:
    """Parse a criteria value into a predicate function.

    - Operator prefix: ``">100"``, ``"<=50"``, ``"<>0"``, ``"=7"`` compare
      numerically after coercing both sides (non-numeric text counts as 0).
      ``"=text"`` / ``"<>text"`` with a non-numeric operand compare as text.
    - Any other text matches case-insensitively with ``*``/``?`` wildcards.
    - Numbers match cells whose value is that number (numeric text included).
    - Booleans match only the same boolean.
    """
    if isinstance(criteria, bool):
        return lambda v, c=criteria: v is c
    if isinstance(criteria, (int, float)):
        target = float(criteria)
        return lambda v, t=target: _strict_number(v) == t

    crit_str = to_text(criteria)
    m = _CRITERIA_OP_RE.match(crit_str)
    if m:
        op, operand = m.group(1), m.group(2)
        if op in ("=", "<>") and parse_number(operand) is None:
            regex = _wildcard_regex(operand)
            if op == "=":
                return lambda v, r=regex: bool(r.match(to_text(v)))
            return lambda v, r=regex: not r.match(to_text(v))
        compare: Callable[[float, float], bool] = {
            ">": lambda a, b: a > b,
            "<": lambda a, b: a < b,
            ">=": lambda a, b: a >= b,
            "<=": lambda a, b: a <= b,
            "<>": lambda a, b: a != b,
            "=": lambda a, b: a == b,
        }[op]
        return lambda v, t=to_number(operand), cmp=compare: cmp(to_number(v), t)

    regex = _wildcard_regex(crit_str)
    return lambda v, r=regex: bool(r.match(to_text(v)))


def _criteria_range(value: Any, name: str) -> list[Any]:
    if not isinstance(value, list) or not value:
        raise FormulaError(ExcelError.VALUE, f"{name}: range must be a non-empty array")
    return flatten(value)


def _criteria_pairs(args: list[Any], name: str) -> list[tuple[list[Any], Callable[[Any], bool]]]:
    if len(args) < 2 or len(args) % 2 != 0:
        raise FormulaError(ExcelError.VALUE, f"{name} requires pairs of range and criteria")
    pairs = []
    for j in range(0, len(args), 2):
        if not isinstance(args[j], list):
            raise FormulaError(ExcelError.VALUE, f"{name}: criteria range must be an array")
        if args[j + 1] is None:
            raise FormulaError(ExcelError.VALUE, f"{name}: missing criteria")
        pairs.append((flatten(args[j]), _parse_criteria(args[j + 1])))
    return pairs


def _all_match(pairs: list[tuple[list[Any], Callable[[Any], bool]]], i: int) -> bool:
    return all(i < len(values) and pred(values[i]) for values, pred in pairs)


def _builtin_countif(args: list[Any]) -> float:
    """COUNTIF(range, criteria)."""
    _require(args, 2, 2, "COUNTIF")
    values = _criteria_range(args[0], "COUNTIF")
    if args[1] is None:
        raise FormulaError(ExcelError.VALUE, "COUNTIF: missing criteria")
    predicate = _parse_criteria(args[1])
    return float(sum(1 for v in values if predicate(v)))


def _builtin_sumif(args: list[Any]) -> float:
    """SUMIF(range, criteria, [sum_range])."""
    _require(args, 2, 3, "SUMIF")
    values = _criteria_range(args[0], "SUMIF")
    if args[1] is None:
        raise FormulaError(ExcelError.VALUE, "SUMIF: missing criteria")
    sum_values = flatten(args[2]) if _present(args, 2) else values
    predicate = _parse_criteria(args[1])
    total = 0.0
    for i, v in enumerate(values):
        if predicate(v) and i < len(sum_values):
            total += to_number(sum_values[i])
    return total


def _builtin_countifs(args: list[Any]) -> float:
    """COUNTIFS(range1, criteria1, [range2, criteria2, ...]). Row count follows range1."""
    pairs = _criteria_pairs(args, "COUNTIFS")
    return float(sum(1 for i in range(len(pairs[0][0])) if _all_match(pairs, i)))


def _builtin_sumifs(args: list[Any]) -> float:
    """SUMIFS(sum_range, range1, criteria1, ...). The sum range comes first."""
    if not args or not isinstance(args[0], list):
        raise FormulaError(ExcelError.VALUE, "SUMIFS: sum range must be an array")
    sum_values = flatten(args[0])
    pairs = _criteria_pairs(args[1:], "SUMIFS")
    return sum(to_number(sum_values[i]) for i in range(len(sum_values)) if _all_match(pairs, i))


# ---------------------------------------------------------------------------
# Lookup builtins (VLOOKUP, XLOOKUP, INDEX, MATCH)
# ---------------------------------------------------------------------------


def _table_rows(table: Any) -> list[list[Any]]:
    """Treat a 1-D array as a single-column table."""
    return [row if isinstance(row, list) else [row] for row in table]


def _builtin_vlookup(args: list[Any]) -> Any:
    """VLOOKUP(lookup_value, table_array, col_index_num, [range_lookup]).

    range_lookup TRUE (default) assumes the first column is sorted ascending
    and returns the last row whose key does not exceed lookup_value.
    """
    _require(args, 3, 4, "VLOOKUP")
    lookup_value, table = args[0], args[1]
    if lookup_value is None:
        raise FormulaError(ExcelError.VALUE, "VLOOKUP: missing lookup value")
    if not isinstance(table, list) or not table:
        raise FormulaError(ExcelError.VALUE, "VLOOKUP: table must be a non-empty array")
    if args[2] is None:
        raise FormulaError(ExcelError.VALUE, "VLOOKUP: missing column index")
    rows = _table_rows(table)
    col_index = int(_finite(args[2], "VLOOKUP"))
    if col_index < 1 or col_index > len(rows[0]):
        raise FormulaError(ExcelError.REF, f"VLOOKUP: column {col_index} out of range")
    range_lookup = _truthy(args[3]) if _present(args, 3) else True

    if not range_lookup:
        for row in rows:
            if row and _values_equal(row[0], lookup_value):
                return row[col_index - 1] if col_index <= len(row) else ""
        raise FormulaError(ExcelError.NA, "VLOOKUP: no exact match")

    target = to_number(lookup_value)
    last_match: list[Any] | None = None
    for row in rows:
        if to_number(row[0] if row else None) <= target:
            last_match = row
        else:
            break
    if last_match is None:
        raise FormulaError(ExcelError.NA, "VLOOKUP: no row at or below lookup value")
    return last_match[col_index - 1] if col_index <= len(last_match) else ""


def _builtin_xlookup(args: list[Any]) -> Any:
    """XLOOKUP(lookup_value, lookup_array, return_array, [if_not_found]). Exact match."""
    _require(args, 3, 4, "XLOOKUP")
    lookup_value, lookup_array, return_array = args[0], args[1], args[2]
    if lookup_value is None:
        raise FormulaError(ExcelError.VALUE, "XLOOKUP: missing lookup value")
    for arr, label in ((lookup_array, "lookup"), (return_array, "return")):
        if not isinstance(arr, list) or not arr:
            raise FormulaError(ExcelError.VALUE, f"XLOOKUP: {label} array must be non-empty")
    has_fallback = len(args) > 3
    keys = column_values(lookup_array)
    for i, key in enumerate(keys):
        if _values_equal(key, lookup_value):
            if i < len(return_array):
                found = return_array[i]
                if isinstance(found, list):
                    return found[0] if len(found) == 1 else [list(found)]
                return found
            break
    if has_fallback:
        return args[3]
    raise FormulaError(ExcelError.NA, "XLOOKUP: no match")


def _builtin_index(args: list[Any]) -> Any:
    """INDEX(array, row_num, [col_num]). 1-based.

    Without col_num a 2-D array yields its whole row as a one-row array.
    """
    _require(args, 2, 3, "INDEX")
    array = args[0]
    if not isinstance(array, list):
        raise FormulaError(ExcelError.VALUE, "INDEX: first argument must be an array")
    if args[1] is None:
        raise FormulaError(ExcelError.VALUE, "INDEX: missing row number")
    row = math.floor(_finite(args[1], "INDEX"))
    if row < 1 or row > len(array):
        raise FormulaError(ExcelError.REF, f"INDEX: row {row} out of range")
    selected = array[row - 1]
    if not isinstance(selected, list):
        return selected
    if not _present(args, 2):
        return [list(selected)]
    col = math.floor(_finite(args[2], "INDEX"))
    if col < 1 or col > len(selected):
        raise FormulaError(ExcelError.REF, f"INDEX: column {col} out of range")
    return selected[col - 1]


def _builtin_match(args: list[Any]) -> float:
    """MATCH(lookup_value, lookup_array, [match_type]).

    match_type: 1 (default) largest value <= lookup (ascending order assumed),
    0 exact, -1 first value >= lookup (descending order assumed).
    """
    _require(args, 2, 3, "MATCH")
    lookup_value, lookup_array = args[0], args[1]
    if lookup_value is None or not isinstance(lookup_array, list):
        raise FormulaError(ExcelError.VALUE, "MATCH: invalid arguments")
    match_type = math.floor(_finite(args[2], "MATCH")) if _present(args, 2) else 1
    values = column_values(lookup_array)

    if match_type == 0:
        for i, v in enumerate(values):
            if _values_equal(v, lookup_value):
                return float(i + 1)
        raise FormulaError(ExcelError.NA, "MATCH: no exact match")

    target = to_number(lookup_value)
    if match_type == 1:
        last = -1
        for i, v in enumerate(values):
            if to_number(v) <= target:
                last = i
            else:
                break
        if last < 0:
            raise FormulaError(ExcelError.NA, "MATCH: no value at or below lookup value")
        return float(last + 1)

    if match_type == -1:
        for i, v in enumerate(values):
            if to_number(v) >= target:
                return float(i + 1)
        raise FormulaError(ExcelError.NA, "MATCH: no value at or above lookup value")

    raise FormulaError(ExcelError.VALUE, f"MATCH: unsupported match type {match_type}")


# ---------------------------------------------------------------------------
# Set / array builtins (UNIQUE, FILTER) and SHOWDATA
# ---------------------------------------------------------------------------


def _builtin_unique(args: list[Any]) -> str:
    """UNIQUE(array). Returns a text summary, one distinct value per line."""
    _require(args, 1, 2, "UNIQUE")
    if not isinstance(args[0], list):
        raise FormulaError(ExcelError.VALUE, "UNIQUE: argument must be an array")
    # Booleans and text never merge with numbers (TRUE == 1 and hash alike)
    seen: dict[tuple[str, Any], Any] = {}
    for v in flatten(args[0]):
        if v is None or v == "" or isinstance(v, ExcelError):
            continue
        if isinstance(v, bool):
            key = ("bool", v)
        elif isinstance(v, (int, float)):
            key = ("number", float(v))
        else:
            key = (type(v).__name__, v)
        seen.setdefault(key, v)
    unique = [to_text(v) for v in seen.values()]
    return "\n".join([f"[{len(unique)} unique values]", *unique])


def _builtin_filter(args: list[Any]) -> list[list[Any]]:
    """FILTER(array, include) or FILTER(array, search_text, search_column).

    The two-argument form keeps rows whose condition is TRUE/1/"TRUE"; the
    three-argument form keeps rows whose search_column entry contains
    search_text (case-insensitive). No matching rows is #N/A.
    """
    _require(args, 2, 3, "FILTER")
    array, selector = args[0], args[1]
    if not isinstance(array, list):
        raise FormulaError(ExcelError.VALUE, "FILTER: first argument must be an array")
    rows = _table_rows(array)
    result: list[list[Any]] = []

    if len(args) > 2 and args[2] is not None and isinstance(selector, str):
        if not isinstance(args[2], list):
            raise FormulaError(ExcelError.VALUE, "FILTER: search column must be an array")
        column = column_values(args[2])
        needle = selector.lower()
        for i, row in enumerate(rows):
            cell = column[i] if i < len(column) else ""
            if needle in to_text(cell).lower():
                result.append(list(row))
    elif isinstance(selector, list):
        conditions = column_values(selector)
        for i in range(min(len(rows), len(conditions))):
            if _is_true_flag(conditions[i]):
                result.append(list(rows[i]))
    else:
        raise FormulaError(ExcelError.VALUE, "FILTER: condition must be an array")

    if not result:
        raise FormulaError(ExcelError.NA, "FILTER: no rows matched")
    return result


def _builtin_showdata(args: list[Any], default_rows: int = 5) -> str:
    """SHOWDATA(array, [max_rows]). Bounded text preview for debugging."""
    _require(args, 1, 2, "SHOWDATA")
    array = args[0]
    if not isinstance(array, list):
        return "Not an array"
    max_rows = int(_finite(args[1], "SHOWDATA")) if _present(args, 1) else default_rows
    preview = [
        " | ".join(to_text(v) for v in row) if isinstance(row, list) else to_text(row)
        for row in array[:max_rows]
    ]
    return "\n".join([f"{len(array)} rows of data:", *preview])


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FunctionSpec:
    """Registration metadata for one callable.

    ``vectorize``: array arguments are mapped element-wise into a column vector.
    ``error_aware``: the function receives error arguments instead of the call
    short-circuiting to the first error.
    """

    name: str
    func: Callable[[list[Any]], Any]
    category: str
    vectorize: bool = False
    error_aware: bool = False


def _spec(
    name: str,
    func: Callable[[list[Any]], Any],
    category: str,
    *,
    vectorize: bool = False,
    error_aware: bool = False,
) -> tuple[str, FunctionSpec]:
    return name, FunctionSpec(name, func, category, vectorize, error_aware)


_BUILTINS: dict[str, FunctionSpec] = dict([
    # Aggregation
    _spec("SUM", _builtin_sum, "math"),
    _spec("AVERAGE", _builtin_average, "math"),
    _spec("COUNT", _builtin_count, "math"),
    _spec("MAX", _builtin_max, "math"),
    _spec("MIN", _builtin_min, "math"),
    _spec("ROUND", _builtin_round, "math"),
    # Logical
    _spec("IF", _builtin_if, "logic", error_aware=True),
    _spec("IFS", _builtin_ifs, "logic", error_aware=True),
    _spec("AND", _builtin_and, "logic"),
    _spec("OR", _builtin_or, "logic"),
    _spec("NOT", _builtin_not, "logic"),
    _spec("IFERROR", _builtin_iferror, "logic", error_aware=True),
    _spec("ISERROR", _builtin_iserror, "logic", vectorize=True, error_aware=True),
    _spec("ISNUMBER", _builtin_isnumber, "logic", vectorize=True, error_aware=True),
    # Text
    _spec("CONCATENATE", _builtin_concatenate, "text"),
    _spec("LEFT", _builtin_left, "text", vectorize=True),
    _spec("RIGHT", _builtin_right, "text", vectorize=True),
    _spec("LEN", _builtin_len, "text", vectorize=True),
    _spec("TRIM", _builtin_trim, "text", vectorize=True),
    _spec("UPPER", _builtin_upper, "text", vectorize=True),
    _spec("LOWER", _builtin_lower, "text", vectorize=True),
    _spec("SEARCH", _builtin_search, "text", vectorize=True),
    # Date
    _spec("TODAY", _builtin_today, "date"),
    _spec("DATE", _builtin_date, "date"),
    _spec("YEAR", _builtin_year, "date"),
    _spec("MONTH", _builtin_month, "date"),
    _spec("DAY", _builtin_day, "date"),
    _spec("DATEDIF", _builtin_datedif, "date"),
    # Conditional aggregation
    _spec("COUNTIF", _builtin_countif, "conditional"),
    _spec("SUMIF", _builtin_sumif, "conditional"),
    _spec("COUNTIFS", _builtin_countifs, "conditional"),
    _spec("SUMIFS", _builtin_sumifs, "conditional"),
    # Lookup
    _spec("VLOOKUP", _builtin_vlookup, "lookup"),
    _spec("XLOOKUP", _builtin_xlookup, "lookup"),
    _spec("INDEX", _builtin_index, "lookup"),
    _spec("MATCH", _builtin_match, "lookup"),
    # Set / array
    _spec("UNIQUE", _builtin_unique, "array"),
    _spec("FILTER", _builtin_filter, "array"),
    # Diagnostic
    _spec("SHOWDATA", _builtin_showdata, "diagnostic"),
])

FUNCTION_WHITELIST: dict[str, str] = {name: spec.category for name, spec in _BUILTINS.items()}


def is_supported(func_name: str) -> bool:
    """Check if a function name is in the evaluation whitelist."""
    return func_name.upper() in FUNCTION_WHITELIST


class FunctionRegistry:
    """Registry of callable function implementations.

    Starts with builtins and can be extended with custom functions.
    """

    def __init__(self, showdata_rows: int = 5) -> None:
        self._functions: dict[str, FunctionSpec] = dict(_BUILTINS)
        self.register(
            "SHOWDATA",
            functools.partial(_builtin_showdata, default_rows=showdata_rows),
            category="diagnostic",
        )

    def register(
        self,
        name: str,
        func: Callable[[list[Any]], Any],
        *,
        category: str = "custom",
        vectorize: bool = False,
        error_aware: bool = False,
    ) -> None:
        key = name.upper()
        self._functions[key] = FunctionSpec(key, func, category, vectorize, error_aware)

    def spec(self, name: str) -> FunctionSpec | None:
        return self._functions.get(name.upper())

    def get(self, name: str) -> Callable[[list[Any]], Any] | None:
        spec = self.spec(name)
        return spec.func if spec is not None else None

    def has(self, name: str) -> bool:
        return name.upper() in self._functions

    def names_in_category(self, category: str) -> list[str]:
        return sorted(n for n, s in self._functions.items() if s.category == category)

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._functions.keys())

    def specs(self) -> list[FunctionSpec]:
        return list(self._functions.values())
