"""A1 coordinate helpers. All indices are 0-based."""

from __future__ import annotations

import re

_A1_RE = re.compile(r"^\$?([A-Za-z]+)\$?(\d+)$")


def column_to_index(letters: str) -> int:
    """Convert column letters to a 0-based index: ``A`` -> 0, ``Z`` -> 25, ``AA`` -> 26."""
    if not letters or not letters.isascii() or not letters.isalpha():
        raise ValueError(f"Invalid column letters: {letters!r}")
    value = 0
    for ch in letters.upper():
        value = value * 26 + (ord(ch) - ord("A") + 1)
    return value - 1


def index_to_column(index: int) -> str:
    """Convert a 0-based column index back to letters."""
    if index < 0:
        raise ValueError(f"Column index must be >= 0, got {index}")
    letters = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(rem + ord("A")) + letters
    return letters


def a1_to_rowcol(ref: str) -> tuple[int, int]:
    """``"B2"`` -> ``(1, 1)``. Dollar signs are ignored."""
    m = _A1_RE.match(ref.strip())
    if not m:
        raise ValueError(f"Invalid cell reference: {ref!r}")
    row = int(m.group(2)) - 1
    if row < 0:
        raise ValueError(f"Row must be >= 1: {ref!r}")
    return row, column_to_index(m.group(1))


def rowcol_to_a1(row: int, col: int) -> str:
    """``(1, 1)`` -> ``"B2"``."""
    if row < 0:
        raise ValueError(f"Row index must be >= 0, got {row}")
    return f"{index_to_column(col)}{row + 1}"
