"""FormulaEvaluator: reference substitution plus a small expression interpreter.

A formula is evaluated once, against a snapshot of the grid:

1. strip the leading ``=``
2. rewrite every reference into literal data (see :mod:`spillgrid.calc._parser`)
3. tokenize and parse the rewritten text into an AST
4. interpret the AST; only registered functions are callable
5. normalize the raw value into a scalar, a 2-D array, or an ``ExcelError``

``evaluate`` never raises. Builtins signal specific errors with
:class:`FormulaError`; anything else becomes ``#ERROR: <message>``.
"""

from __future__ import annotations

import logging
import math
import re
from enum import Enum, auto
from itertools import zip_longest
from typing import Any, Callable, NamedTuple, Union

from spillgrid._grid import Grid
from spillgrid.calc._functions import (
    ExcelError,
    FormulaError,
    FunctionRegistry,
    first_error,
    to_text,
)
from spillgrid.calc._parser import resolve_references
from spillgrid.calc._protocol import EvalResult, GridView
from spillgrid.calc._vectorize import bind_functions
from spillgrid.config import Settings, settings

logger = logging.getLogger(__name__)


class FormulaSyntaxError(ValueError):
    """The rewritten formula text is not a valid expression."""


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


class TokenType(Enum):
    NUMBER = auto()
    STRING = auto()
    IDENTIFIER = auto()
    OPERATOR = auto()
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    LBRACE = auto()
    RBRACE = auto()
    COMMA = auto()
    SEMICOLON = auto()
    EOF = auto()


class Token(NamedTuple):
    type: TokenType
    value: str
    pos: int


_NUMBER_RE = re.compile(r"(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")
# Longest operators first
_OPERATORS = ("<=", ">=", "<>", "==", "!=", "=", "<", ">", "&", "+", "-", "*", "/", "^", "%")
_PUNCTUATION = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    ",": TokenType.COMMA,
    ";": TokenType.SEMICOLON,
}


def _read_string(text: str, start: int) -> tuple[str, int]:
    """Read the string literal opening at *text[start]*; return (value, end).

    ``\\"`` and ``\\\\`` are escapes, and ``""`` inside the literal is one quote.
    """
    chars: list[str] = []
    i = start + 1
    length = len(text)
    while i < length:
        ch = text[i]
        if ch == "\\" and i + 1 < length and text[i + 1] in ('"', "\\"):
            chars.append(text[i + 1])
            i += 2
            continue
        if ch == '"':
            if i + 1 < length and text[i + 1] == '"':
                chars.append('"')
                i += 2
                continue
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    raise FormulaSyntaxError(f"Unterminated string starting at position {start}")


def tokenize(text: str) -> list[Token]:
    """Split expression text into tokens, ending with an EOF token."""
    tokens: list[Token] = []
    i = 0
    length = len(text)
    while i < length:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch == '"':
            value, end = _read_string(text, i)
            tokens.append(Token(TokenType.STRING, value, i))
            i = end
            continue
        m = _NUMBER_RE.match(text, i)
        if m:
            tokens.append(Token(TokenType.NUMBER, m.group(0), i))
            i = m.end()
            continue
        m = _IDENT_RE.match(text, i)
        if m:
            tokens.append(Token(TokenType.IDENTIFIER, m.group(0), i))
            i = m.end()
            continue
        if ch in _PUNCTUATION:
            tokens.append(Token(_PUNCTUATION[ch], ch, i))
            i += 1
            continue
        for op in _OPERATORS:
            if text.startswith(op, i):
                tokens.append(Token(TokenType.OPERATOR, op, i))
                i += len(op)
                break
        else:
            raise FormulaSyntaxError(f"Unexpected character {ch!r} at position {i}")
    tokens.append(Token(TokenType.EOF, "", length))
    return tokens


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------


class Constant(NamedTuple):
    value: Union[float, int, str, bool]


class ArrayLiteral(NamedTuple):
    elements: "tuple[ASTNode, ...]"


class FunctionCall(NamedTuple):
    name: str
    arguments: "tuple[ASTNode, ...]"


class BinaryOperation(NamedTuple):
    left: "ASTNode"
    operator: str
    right: "ASTNode"


class UnaryOperation(NamedTuple):
    operator: str
    operand: "ASTNode"


class NameReference(NamedTuple):
    name: str


class EmptyArgument(NamedTuple):
    pass


ASTNode = Union[
    Constant,
    ArrayLiteral,
    FunctionCall,
    BinaryOperation,
    UnaryOperation,
    NameReference,
    EmptyArgument,
]


# ---------------------------------------------------------------------------
# Parser (recursive descent)
# ---------------------------------------------------------------------------

_COMPARISON_OPS = frozenset({"=", "==", "<>", "!=", "<", ">", "<=", ">="})


class _Parser:
    """Grammar, lowest precedence first::

        comparison     := concat (CMP concat)*
        concat         := additive ("&" additive)*
        additive       := multiplicative (("+" | "-") multiplicative)*
        multiplicative := power (("*" | "/") power)*
        power          := unary ("^" power)?
        unary          := ("+" | "-") unary | postfix
        postfix        := primary "%"*
        primary        := NUMBER | STRING | IDENT | IDENT "(" args ")"
                        | "(" comparison ")" | "[" items "]" | "{" rows "}"
    """

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    def parse(self) -> ASTNode:
        node = self._comparison()
        tok = self._peek()
        if tok.type is not TokenType.EOF:
            raise FormulaSyntaxError(f"Unexpected {tok.value!r} at position {tok.pos}")
        return node

    # -- token helpers --------------------------------------------------

    def _peek(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        tok = self._tokens[self._pos]
        if tok.type is not TokenType.EOF:
            self._pos += 1
        return tok

    def _at_operator(self, *ops: str) -> bool:
        tok = self._peek()
        return tok.type is TokenType.OPERATOR and tok.value in ops

    def _expect(self, token_type: TokenType) -> Token:
        tok = self._advance()
        if tok.type is not token_type:
            found = tok.value or "end of formula"
            raise FormulaSyntaxError(f"Expected {token_type.name.lower()}, found {found!r} at position {tok.pos}")
        return tok

    # -- binary levels --------------------------------------------------

    def _comparison(self) -> ASTNode:
        node = self._concat()
        while self._at_operator(*_COMPARISON_OPS):
            op = self._advance().value
            node = BinaryOperation(node, op, self._concat())
        return node

    def _concat(self) -> ASTNode:
        node = self._additive()
        while self._at_operator("&"):
            self._advance()
            node = BinaryOperation(node, "&", self._additive())
        return node

    def _additive(self) -> ASTNode:
        node = self._multiplicative()
        while self._at_operator("+", "-"):
            op = self._advance().value
            node = BinaryOperation(node, op, self._multiplicative())
        return node

    def _multiplicative(self) -> ASTNode:
        node = self._power()
        while self._at_operator("*", "/"):
            op = self._advance().value
            node = BinaryOperation(node, op, self._power())
        return node

    def _power(self) -> ASTNode:
        node = self._unary()
        if self._at_operator("^"):
            self._advance()
            return BinaryOperation(node, "^", self._power())
        return node

    def _unary(self) -> ASTNode:
        if self._at_operator("+", "-"):
            op = self._advance().value
            return UnaryOperation(op, self._unary())
        return self._postfix()

    def _postfix(self) -> ASTNode:
        node = self._primary()
        while self._at_operator("%"):
            self._advance()
            node = UnaryOperation("%", node)
        return node

    # -- primaries ------------------------------------------------------

    def _primary(self) -> ASTNode:
        tok = self._advance()
        if tok.type is TokenType.NUMBER:
            if re.fullmatch(r"\d+", tok.value):
                return Constant(int(tok.value))
            return Constant(float(tok.value))
        if tok.type is TokenType.STRING:
            return Constant(tok.value)
        if tok.type is TokenType.IDENTIFIER:
            upper = tok.value.upper()
            if self._peek().type is TokenType.LPAREN:
                self._advance()
                return FunctionCall(upper, self._arguments())
            if upper == "TRUE":
                return Constant(True)
            if upper == "FALSE":
                return Constant(False)
            return NameReference(tok.value)
        if tok.type is TokenType.LPAREN:
            node = self._comparison()
            self._expect(TokenType.RPAREN)
            return node
        if tok.type is TokenType.LBRACKET:
            return self._array_literal()
        if tok.type is TokenType.LBRACE:
            return self._array_constant()
        found = tok.value or "end of formula"
        raise FormulaSyntaxError(f"Unexpected {found!r} at position {tok.pos}")

    def _arguments(self) -> tuple[ASTNode, ...]:
        """Call arguments after ``(``; an omitted argument is EmptyArgument."""
        if self._peek().type is TokenType.RPAREN:
            self._advance()
            return ()
        args: list[ASTNode] = []
        while True:
            if self._peek().type in (TokenType.COMMA, TokenType.RPAREN):
                args.append(EmptyArgument())
            else:
                args.append(self._comparison())
            tok = self._advance()
            if tok.type is TokenType.RPAREN:
                return tuple(args)
            if tok.type is not TokenType.COMMA:
                found = tok.value or "end of formula"
                raise FormulaSyntaxError(f"Expected ',' or ')', found {found!r} at position {tok.pos}")

    def _array_literal(self) -> ArrayLiteral:
        """``[a, b, ...]`` after ``[``; nests for 2-D data."""
        if self._peek().type is TokenType.RBRACKET:
            self._advance()
            return ArrayLiteral(())
        items: list[ASTNode] = [self._comparison()]
        while self._peek().type is TokenType.COMMA:
            self._advance()
            items.append(self._comparison())
        self._expect(TokenType.RBRACKET)
        return ArrayLiteral(tuple(items))

    def _array_constant(self) -> ArrayLiteral:
        """Excel ``{1,2;3,4}`` after ``{``. A single row is a flat array."""
        rows: list[ArrayLiteral] = []
        row: list[ASTNode] = [self._comparison()]
        while True:
            tok = self._advance()
            if tok.type is TokenType.COMMA:
                row.append(self._comparison())
            elif tok.type is TokenType.SEMICOLON:
                rows.append(ArrayLiteral(tuple(row)))
                row = [self._comparison()]
            elif tok.type is TokenType.RBRACE:
                rows.append(ArrayLiteral(tuple(row)))
                break
            else:
                found = tok.value or "end of formula"
                raise FormulaSyntaxError(f"Expected ',', ';' or '}}', found {found!r} at position {tok.pos}")
        if len(rows) == 1:
            return rows[0]
        return ArrayLiteral(tuple(rows))


def parse_expression(text: str) -> ASTNode:
    """Parse rewritten formula text (no leading ``=``) into an AST."""
    return _Parser(tokenize(text)).parse()


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _operand_number(value: Any) -> float | int | ExcelError:
    """Arithmetic coercion: blanks are 0, booleans 1/0, numeric text parses."""
    if isinstance(value, ExcelError):
        return value
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return ExcelError.VALUE
    return ExcelError.VALUE


def _power(base: float, exponent: float) -> Any:
    if base == 0 and exponent < 0:
        return ExcelError.DIV0
    try:
        return math.pow(base, exponent)
    except OverflowError:
        return math.inf
    except ValueError:
        return ExcelError.NUM


def _binary_op(left: Any, op: str, right: Any) -> Any:
    """Evaluate an arithmetic or string binary operation on scalars."""
    # Error propagation: if either operand is an error, propagate it
    err = first_error(left, right)
    if err is not None:
        return err
    if op == "&":
        return to_text(left) + to_text(right)
    lf, rf = _operand_number(left), _operand_number(right)
    err = first_error(lf, rf)
    if err is not None:
        return err
    if op == "+":
        return lf + rf
    if op == "-":
        return lf - rf
    if op == "*":
        return lf * rf
    if op == "/":
        return ExcelError.DIV0 if rf == 0 else lf / rf
    if op == "^":
        return _power(lf, rf)
    raise FormulaSyntaxError(f"Unknown operator {op!r}")


def _comparable_number(value: Any) -> float | None:
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "=": lambda a, b: a == b,
    "==": lambda a, b: a == b,
    "<>": lambda a, b: a != b,
    "!=": lambda a, b: a != b,
    ">": lambda a, b: a > b,
    "<": lambda a, b: a < b,
    ">=": lambda a, b: a >= b,
    "<=": lambda a, b: a <= b,
}


def _compare(left: Any, right: Any, op: str) -> Any:
    """Evaluate a comparison operation.

    Numeric when both sides coerce to numbers, otherwise a case-insensitive
    text comparison. Returns an ExcelError if either operand is an error.
    """
    err = first_error(left, right)
    if err is not None:
        return err
    lf, rf = _comparable_number(left), _comparable_number(right)
    if lf is not None and rf is not None:
        return _COMPARATORS[op](lf, rf)
    return _COMPARATORS[op](to_text(left).lower(), to_text(right).lower())


def _elementwise(fn: Callable[[Any, Any], Any], left: Any, right: Any) -> Any:
    """Apply a scalar operator across arrays, broadcasting scalars."""
    left_is_array = isinstance(left, list)
    right_is_array = isinstance(right, list)
    if left_is_array and right_is_array:
        return [_elementwise(fn, a, b) for a, b in zip_longest(left, right, fillvalue=ExcelError.NA)]
    if left_is_array:
        return [_elementwise(fn, a, right) for a in left]
    if right_is_array:
        return [_elementwise(fn, left, b) for b in right]
    return fn(left, right)


def _unary_op(op: str, value: Any) -> Any:
    if isinstance(value, list):
        return [_unary_op(op, v) for v in value]
    if op == "+":
        return value
    num = _operand_number(value)
    if isinstance(num, ExcelError):
        return num
    if op == "-":
        return -num
    return num / 100


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------


class _Interpreter:
    def __init__(self, registry: FunctionRegistry) -> None:
        self._registry = registry
        self._callables = bind_functions(registry)

    def eval(self, node: ASTNode) -> Any:
        if isinstance(node, Constant):
            return node.value
        if isinstance(node, BinaryOperation):
            left = self.eval(node.left)
            right = self.eval(node.right)
            if node.operator in _COMPARATORS:
                return _elementwise(lambda a, b: _compare(a, b, node.operator), left, right)
            return _elementwise(lambda a, b: _binary_op(a, node.operator, b), left, right)
        if isinstance(node, UnaryOperation):
            return _unary_op(node.operator, self.eval(node.operand))
        if isinstance(node, FunctionCall):
            return self._call(node)
        if isinstance(node, ArrayLiteral):
            return [self.eval(e) for e in node.elements]
        if isinstance(node, EmptyArgument):
            return None
        if isinstance(node, NameReference):
            raise NameError(f"Unknown name: {node.name}")
        raise FormulaSyntaxError(f"Cannot evaluate node {node!r}")

    def _call(self, node: FunctionCall) -> Any:
        spec = self._registry.spec(node.name)
        func = self._callables.get(node.name)
        if spec is None or func is None:
            logger.debug("Unsupported function: %s", node.name)
            raise NameError(f"Unknown function: {node.name}")
        args = [self.eval(a) for a in node.arguments]
        if not spec.error_aware:
            err = first_error(*args)
            if err is not None:
                return err
        try:
            return func(args)
        except FormulaError as e:
            logger.debug("%s raised %s: %s", node.name, e.error, e)
            return e.error


# ---------------------------------------------------------------------------
# Result normalization
# ---------------------------------------------------------------------------


def _normalize_scalar(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool) or isinstance(value, ExcelError):
        return value
    if isinstance(value, float):
        if math.isnan(value):
            return ExcelError.NUM
        if math.isinf(value):
            return ExcelError.DIV0
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, list):
        return to_text(value)
    return value


def normalize_result(value: Any) -> Any:
    """Scalar, rectangular 2-D array, or ExcelError.

    A flat array becomes a column vector; ragged rows are padded with ``""``;
    an empty array is ``#VALUE!``.
    """
    if not isinstance(value, list):
        return _normalize_scalar(value)
    if not value:
        return ExcelError.VALUE
    if not any(isinstance(v, list) for v in value):
        return [[_normalize_scalar(v)] for v in value]
    rows = [v if isinstance(v, list) else [v] for v in value]
    width = max(len(r) for r in rows)
    if width == 0:
        return ExcelError.VALUE
    return [[_normalize_scalar(v) for v in r] + [""] * (width - len(r)) for r in rows]


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class FormulaEvaluator:
    """Evaluates formula text against a grid snapshot.

    Usage::

        evaluator = FormulaEvaluator()
        evaluator.evaluate("=SUM(B2:B5)", rows, 0, 3)
        evaluator.functions.register("DOUBLE", lambda args: args[0] * 2)
    """

    def __init__(
        self,
        config: Settings | None = None,
        registry: FunctionRegistry | None = None,
    ) -> None:
        self._settings = config or settings
        self._functions = registry or FunctionRegistry(showdata_rows=self._settings.showdata_rows)

    @property
    def functions(self) -> FunctionRegistry:
        return self._functions

    def evaluate(self, formula: str, grid: GridView | list[list[Any]], row: int = 0, col: int = 0) -> Any:
        """Evaluate *formula* for the cell at (*row*, *col*).

        Returns a scalar, a 2-D list to be spilled, or an ExcelError. Never raises.
        """
        view = grid if isinstance(grid, GridView) else Grid(grid)
        body = formula.strip()
        if body.startswith("="):
            body = body[1:]
        body = body.strip()
        transformed = body
        try:
            transformed = resolve_references(body, view)
            logger.debug("Formula at (%d, %d): %r -> %r", row, col, formula, transformed)
            raw = _Interpreter(self._functions).eval(parse_expression(transformed))
        except FormulaError as e:
            return e.error
        except Exception as e:
            logger.debug(
                "Formula evaluation failed: %s (original %r, transformed %r)",
                e, formula, transformed,
            )
            return ExcelError.generic(str(e))
        return normalize_result(raw)

    def evaluate_result(self, formula: str, grid: GridView | list[list[Any]], row: int = 0, col: int = 0) -> EvalResult:
        return EvalResult(self.evaluate(formula, grid, row, col))


def evaluate_formula(formula: str, grid: GridView | list[list[Any]], row: int = 0, col: int = 0) -> Any:
    """Evaluate one formula with default settings."""
    return FormulaEvaluator().evaluate(formula, grid, row, col)
