"""Safe evaluation of author-written calculation formulas.

Formulas are small arithmetic expressions over the variable ids of a lesson,
for example ``0.5 * m * v ** 2`` or ``Math.pow(c, 2) * m``. They are parsed by
a recursive-descent parser into a tree and evaluated against a binding of
variable ids to numbers. Nothing is ever handed to ``eval``.

Grammar (lowest to highest precedence)::

    expression := term (("+" | "-") term)*
    term       := unary (("*" | "/" | "%") unary)*
    unary      := ("+" | "-") unary | power
    power      := primary ("**" unary)?
    primary    := NUMBER | NAME | NAME "(" arguments? ")" | "(" expression ")"

Evaluation failures never escape :func:`evaluate`, :func:`compute` or
:func:`generate_series`; they degrade to :data:`FALLBACK_VALUE` and are logged.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

FALLBACK_VALUE = 0.0
DEFAULT_SAMPLE_POINTS = 7
MATH_PREFIX = "Math."


class FormulaError(ValueError):
    """Raised when a formula cannot be parsed or evaluated."""


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _sign(value: float) -> float:
    if value > 0:
        return 1.0
    if value < 0:
        return -1.0
    return 0.0


def _minimum(*values: float) -> float:
    return min(values)


def _maximum(*values: float) -> float:
    return max(values)


# name -> (callable, exact arity or None for one-or-more arguments)
FUNCTIONS: dict[str, tuple[Callable[..., float], int | None]] = {
    "abs": (abs, 1),
    "sqrt": (math.sqrt, 1),
    "cbrt": (math.cbrt, 1),
    "pow": (math.pow, 2),
    "exp": (math.exp, 1),
    "log": (math.log, 1),
    "log10": (math.log10, 1),
    "log2": (math.log2, 1),
    "sin": (math.sin, 1),
    "cos": (math.cos, 1),
    "tan": (math.tan, 1),
    "asin": (math.asin, 1),
    "acos": (math.acos, 1),
    "atan": (math.atan, 1),
    "atan2": (math.atan2, 2),
    "sinh": (math.sinh, 1),
    "cosh": (math.cosh, 1),
    "tanh": (math.tanh, 1),
    "floor": (math.floor, 1),
    "ceil": (math.ceil, 1),
    "round": (_round_half_up, 1),
    "trunc": (math.trunc, 1),
    "min": (_minimum, None),
    "max": (_maximum, None),
    "hypot": (math.hypot, None),
    "sign": (_sign, 1),
}

CONSTANTS: dict[str, float] = {
    "pi": math.pi,
    "PI": math.pi,
    "E": math.e,
    "tau": math.tau,
}

_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
    | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?)
    | (?P<op>\*\*|[-+*/%(),])
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class _Number:
    value: float


@dataclass(frozen=True)
class _Name:
    name: str


@dataclass(frozen=True)
class _Unary:
    op: str
    operand: _Node


@dataclass(frozen=True)
class _Binary:
    op: str
    left: _Node
    right: _Node


@dataclass(frozen=True)
class _Call:
    function: str
    arguments: tuple[_Node, ...]


_Node = _Number | _Name | _Unary | _Binary | _Call


def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    while position < len(source):
        match = _TOKEN_RE.match(source, position)
        if match is None:
            raise FormulaError(f"Unexpected character {source[position]!r} at position {position}.")
        kind = match.lastgroup or ""
        if kind != "space":
            tokens.append(_Token(kind=kind, text=match.group(), position=position))
        position = match.end()
    tokens.append(_Token(kind="end", text="", position=len(source)))
    return tokens


class _Parser:
    """Recursive-descent parser producing an expression tree."""

    def __init__(self, source: str) -> None:
        self._tokens = _tokenize(source)
        self._index = 0

    def parse(self) -> _Node:
        node = self._expression()
        token = self._peek()
        if token.kind != "end":
            raise FormulaError(f"Unexpected {token.text!r} at position {token.position}.")
        return node

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _advance(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _accept(self, text: str) -> bool:
        token = self._peek()
        if token.kind == "op" and token.text == text:
            self._index += 1
            return True
        return False

    def _expect(self, text: str) -> None:
        if not self._accept(text):
            token = self._peek()
            found = token.text or "end of formula"
            raise FormulaError(f"Expected {text!r} at position {token.position}, found {found!r}.")

    def _expression(self) -> _Node:
        node = self._term()
        while True:
            token = self._peek()
            if token.kind == "op" and token.text in ("+", "-"):
                self._advance()
                node = _Binary(token.text, node, self._term())
            else:
                return node

    def _term(self) -> _Node:
        node = self._unary()
        while True:
            token = self._peek()
            if token.kind == "op" and token.text in ("*", "/", "%"):
                self._advance()
                node = _Binary(token.text, node, self._unary())
            else:
                return node

    def _unary(self) -> _Node:
        token = self._peek()
        if token.kind == "op" and token.text in ("+", "-"):
            self._advance()
            return _Unary(token.text, self._unary())
        return self._power()

    def _power(self) -> _Node:
        base = self._primary()
        if self._accept("**"):
            # Right-associative: the exponent may itself be a power or a signed value.
            return _Binary("**", base, self._unary())
        return base

    def _primary(self) -> _Node:
        token = self._advance()
        if token.kind == "number":
            return _Number(float(token.text))
        if token.kind == "name":
            name = _strip_math_prefix(token)
            if self._accept("("):
                return self._call(name, token)
            return _Name(name)
        if token.kind == "op" and token.text == "(":
            node = self._expression()
            self._expect(")")
            return node
        found = token.text or "end of formula"
        raise FormulaError(f"Unexpected {found!r} at position {token.position}.")

    def _call(self, name: str, token: _Token) -> _Node:
        if name not in FUNCTIONS:
            raise FormulaError(f"Unknown function '{name}' at position {token.position}.")
        arguments: list[_Node] = []
        if not self._accept(")"):
            arguments.append(self._expression())
            while self._accept(","):
                arguments.append(self._expression())
            self._expect(")")
        _, arity = FUNCTIONS[name]
        if arity is None and not arguments:
            raise FormulaError(f"Function '{name}' needs at least one argument.")
        if arity is not None and len(arguments) != arity:
            raise FormulaError(f"Function '{name}' takes {arity} argument(s), got {len(arguments)}.")
        return _Call(name, tuple(arguments))


def _strip_math_prefix(token: _Token) -> str:
    if "." not in token.text:
        return token.text
    if token.text.startswith(MATH_PREFIX):
        return token.text[len(MATH_PREFIX) :]
    raise FormulaError(f"Unsupported name '{token.text}' at position {token.position}.")


def _collect(node: _Node, names: set[str], functions: set[str]) -> None:
    if isinstance(node, _Name):
        names.add(node.name)
    elif isinstance(node, _Unary):
        _collect(node.operand, names, functions)
    elif isinstance(node, _Binary):
        _collect(node.left, names, functions)
        _collect(node.right, names, functions)
    elif isinstance(node, _Call):
        functions.add(node.function)
        for argument in node.arguments:
            _collect(argument, names, functions)


def _evaluate_node(node: _Node, bindings: Mapping[str, float]) -> float:
    if isinstance(node, _Number):
        return node.value
    if isinstance(node, _Name):
        if node.name in bindings:
            return _as_number(node.name, bindings[node.name])
        if node.name in CONSTANTS:
            return CONSTANTS[node.name]
        raise FormulaError(f"Unknown name '{node.name}'.")
    if isinstance(node, _Unary):
        operand = _evaluate_node(node.operand, bindings)
        return -operand if node.op == "-" else operand
    if isinstance(node, _Binary):
        return _apply_binary(node.op, _evaluate_node(node.left, bindings), _evaluate_node(node.right, bindings))
    function, _ = FUNCTIONS[node.function]
    arguments = [_evaluate_node(argument, bindings) for argument in node.arguments]
    try:
        return float(function(*arguments))
    except (ValueError, OverflowError) as exc:
        raise FormulaError(f"{node.function}() failed: {exc}") from exc


def _apply_binary(op: str, left: float, right: float) -> float:
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op in ("/", "%") and right == 0:
        raise FormulaError("Division by zero.")
    if op == "/":
        return left / right
    if op == "%":
        try:
            return math.fmod(left, right)
        except ValueError as exc:
            raise FormulaError(f"Cannot take {left} modulo {right}: {exc}") from exc
    try:
        return math.pow(left, right)
    except (ValueError, OverflowError) as exc:
        raise FormulaError(f"Cannot raise {left} to {right}: {exc}") from exc


def _as_number(name: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormulaError(f"Value for '{name}' is not a number: {value!r}.")
    try:
        return float(value)
    except OverflowError as exc:
        raise FormulaError(f"Value for '{name}' is too large.") from exc


@dataclass(frozen=True)
class Formula:
    """Parsed calculation formula, reusable across evaluations."""

    source: str
    names: frozenset[str]
    functions: frozenset[str]
    _tree: _Node

    def evaluate(self, bindings: Mapping[str, float]) -> float:
        """Evaluate strictly, raising FormulaError on any failure."""
        value = _evaluate_node(self._tree, bindings)
        if not math.isfinite(value):
            raise FormulaError(f"Result is not a finite number ({value}).")
        return value

    def free_names(self) -> frozenset[str]:
        """Names that must come from bindings (constants excluded)."""
        return frozenset(name for name in self.names if name not in CONSTANTS)


@dataclass(frozen=True)
class Evaluation:
    """Outcome of one evaluation; `error` is set when the fallback was used."""

    value: float
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def compile_formula(source: str) -> Formula:
    """Parse a formula, raising FormulaError for syntax or allow-list violations."""
    text = source.strip()
    if not text:
        raise FormulaError("Formula is empty.")
    try:
        tree = _Parser(text).parse()
    except RecursionError as exc:
        raise FormulaError("Formula is nested too deeply.") from exc
    names: set[str] = set()
    functions: set[str] = set()
    _collect(tree, names, functions)
    return Formula(source=text, names=frozenset(names), functions=frozenset(functions), _tree=tree)


def compute(formula: str | Formula, bindings: Mapping[str, float]) -> Evaluation:
    """Evaluate a formula, reporting failures instead of raising them."""
    source = formula.source if isinstance(formula, Formula) else formula
    try:
        compiled = formula if isinstance(formula, Formula) else compile_formula(formula)
        value = compiled.evaluate(bindings)
    except (FormulaError, ValueError, OverflowError) as exc:
        logger.warning("formula_evaluation_failed", formula=source, error=str(exc))
        return Evaluation(value=FALLBACK_VALUE, error=str(exc))
    except RecursionError:
        logger.warning("formula_evaluation_failed", formula=source, error="recursion limit")
        return Evaluation(value=FALLBACK_VALUE, error="Formula is nested too deeply.")
    return Evaluation(value=value)


def evaluate(formula: str | Formula, bindings: Mapping[str, float]) -> float:
    """Evaluate a formula against named values; failures yield FALLBACK_VALUE."""
    return compute(formula, bindings).value


def generate_series(
    formula: str | Formula,
    base_bindings: Mapping[str, float],
    varies_id: str,
    x_values: Iterable[float],
) -> list[float]:
    """Evaluate the formula once per x value with `varies_id` overridden.

    The result has one entry per x value, in order. Points that fail to
    evaluate become FALLBACK_VALUE without affecting their neighbours.
    """
    points = list(x_values)
    if isinstance(formula, Formula):
        compiled = formula
    else:
        try:
            compiled = compile_formula(formula)
        except FormulaError as exc:
            logger.warning("formula_series_failed", formula=formula, error=str(exc), points=len(points))
            return [FALLBACK_VALUE for _ in points]

    series: list[float] = []
    for x in points:
        bindings = dict(base_bindings)
        bindings[varies_id] = x
        series.append(compute(compiled, bindings).value)
    return series


def sample_axis(minimum: float, maximum: float, points: int = DEFAULT_SAMPLE_POINTS) -> list[int]:
    """Return `points` evenly spaced integers from minimum to maximum inclusive."""
    if points < 2:
        raise ValueError("An axis needs at least two sample points.")
    step = (maximum - minimum) / (points - 1)
    return [_round_half_up(minimum + index * step) for index in range(points)]
