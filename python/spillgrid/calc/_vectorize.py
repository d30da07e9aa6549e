"""Array-capable wrappers for scalar builtins.

A builtin registered with ``vectorize=True`` keeps its scalar behaviour when
every argument is a scalar. When any argument is an array the builtin is
applied once per row of the longest array argument, and the results
come back as a column vector (``[[r0], [r1], ...]``). This is what lets a
predicate such as ``ISNUMBER(SEARCH("x", B:B))`` produce one boolean per row
for ``FILTER``.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any

from spillgrid.calc._functions import FunctionRegistry, FunctionSpec, first_error

logger = logging.getLogger(__name__)


def _as_elements(array: list[Any]) -> list[Any]:
    """Per-row view of an array argument.

    A one-cell row such as ``["x"]`` unwraps to its value; a wider row is
    passed whole, so the result stays aligned with the array's rows.
    """
    return [item[0] if isinstance(item, list) and len(item) == 1 else item for item in array]


def _apply_element(spec: FunctionSpec, element_args: list[Any], index: int) -> Any:
    if not spec.error_aware and first_error(*element_args) is not None:
        return False
    try:
        return spec.func(element_args)
    except Exception as e:
        # One bad element must not abort the whole predicate array
        logger.debug("%s failed on element %d: %s", spec.name, index, e)
        return False


def vectorize(spec: FunctionSpec) -> Callable[[list[Any]], Any]:
    """Wrap *spec*'s builtin so array arguments are mapped element-wise.

    One result per row of the longest array argument. Scalar arguments
    broadcast to every row; array arguments shorter than the longest one
    read as ``""`` past their end. A per-row failure yields ``False``.
    """
    func = spec.func

    @functools.wraps(func)
    def wrapper(args: list[Any]) -> Any:
        if not any(isinstance(a, list) for a in args):
            return func(args)
        columns = [_as_elements(a) if isinstance(a, list) else None for a in args]
        length = max(len(c) for c in columns if c is not None)
        result: list[list[Any]] = []
        for i in range(length):
            element_args = [
                arg if col is None else (col[i] if i < len(col) else "")
                for arg, col in zip(args, columns)
            ]
            result.append([_apply_element(spec, element_args, i)])
        return result

    return wrapper


def bind_functions(registry: FunctionRegistry) -> dict[str, Callable[[list[Any]], Any]]:
    """Name -> callable table for the interpreter, with vectorized entries wrapped."""
    return {spec.name: vectorize(spec) if spec.vectorize else spec.func for spec in registry.specs()}
