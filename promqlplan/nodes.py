"""Syntax tree of PromQL expressions, label matchers and tree walking."""

from __future__ import annotations

import dataclasses
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence, Union

from .lexer import ItemType, _quote_str

__all__ = [
    "METRIC_NAME",
    "ValueType",
    "MatchType",
    "Matcher",
    "PositionRange",
    "Expr",
    "AggregateExpr",
    "BinaryExpr",
    "Call",
    "MatrixSelector",
    "SubqueryExpr",
    "NumberLiteral",
    "ParenExpr",
    "StringLiteral",
    "UnaryExpr",
    "StepInvariantExpr",
    "VectorSelector",
    "EvalStmt",
    "VectorMatchCardinality",
    "VectorMatching",
    "Visitor",
    "children",
    "walk",
    "inspect",
    "extract_selectors",
]

METRIC_NAME = "__name__"


class ValueType(Enum):
    """Type an expression evaluates to."""

    NONE = "none"
    VECTOR = "vector"
    SCALAR = "scalar"
    MATRIX = "matrix"
    STRING = "string"

    def __str__(self) -> str:
        return self.value


class MatchType(Enum):
    """Kind of comparison a label matcher performs."""

    EQUAL = "="
    NOT_EQUAL = "!="
    REGEX = "=~"
    NOT_REGEX = "!~"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Matcher:
    """Matches a label value against a constant or an anchored regular expression."""

    type: MatchType
    name: str
    value: str
    _regex: Optional[re.Pattern] = field(
        default=None, init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        if self.type in (MatchType.REGEX, MatchType.NOT_REGEX):
            try:
                compiled = re.compile(f"(?:{self.value})")
            except re.error as exc:
                raise ValueError(
                    f"invalid regular expression {self.value!r}: {exc}"
                ) from exc
            object.__setattr__(self, "_regex", compiled)

    def matches(self, value: str) -> bool:
        """Report whether ``value`` satisfies the matcher."""
        if self.type is MatchType.EQUAL:
            return value == self.value
        if self.type is MatchType.NOT_EQUAL:
            return value != self.value
        assert self._regex is not None
        matched = self._regex.fullmatch(value) is not None
        return matched if self.type is MatchType.REGEX else not matched

    def __str__(self) -> str:
        return f"{self.name}{self.type}{_quote_str(self.value)}"


@dataclass(frozen=True)
class PositionRange:
    """Span of a node in the query text."""

    start: int = 0
    end: int = 0


def _format_duration(d: timedelta) -> str:
    ms = d // timedelta(milliseconds=1)
    if ms == 0:
        return "0s"
    parts = []
    units = (
        ("y", 1000 * 60 * 60 * 24 * 365, True),
        ("w", 1000 * 60 * 60 * 24 * 7, True),
        ("d", 1000 * 60 * 60 * 24, False),
        ("h", 1000 * 60 * 60, False),
        ("m", 1000 * 60, False),
        ("s", 1000, False),
        ("ms", 1, False),
    )
    for unit, mult, exact in units:
        # Years and weeks only when they divide evenly; "90d" reads better than "12w6d".
        if exact and ms % mult != 0:
            continue
        count = ms // mult
        if count > 0:
            parts.append(f"{count}{unit}")
            ms -= count * mult
    return "".join(parts)


def _format_float(v: float) -> str:
    if math.isnan(v):
        return "NaN"
    if math.isinf(v):
        return "+Inf" if v > 0 else "-Inf"
    sign = "-" if math.copysign(1.0, v) < 0 else ""
    if v == 0:
        return sign + "0"
    parts = Decimal(repr(abs(v))).as_tuple()
    all_digits = "".join(str(d) for d in parts.digits).lstrip("0")
    point = len("".join(str(d) for d in parts.digits)) + parts.exponent
    point -= len("".join(str(d) for d in parts.digits)) - len(all_digits)
    digits = all_digits.rstrip("0")
    exp = point - 1
    if exp < -4 or exp >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        return f"{sign}{mantissa}e{'+' if exp >= 0 else '-'}{abs(exp):02d}"
    if point <= 0:
        return f"{sign}0.{'0' * -point}{digits}"
    if point >= len(digits):
        return sign + digits + "0" * (point - len(digits))
    return f"{sign}{digits[:point]}.{digits[point:]}"


def _offset_str(offset: timedelta) -> str:
    if offset > timedelta(0):
        return f" offset {_format_duration(offset)}"
    if offset < timedelta(0):
        return f" offset -{_format_duration(-offset)}"
    return ""


def _at_str(timestamp: Optional[int], start_or_end: Optional[ItemType]) -> str:
    if timestamp is not None:
        return f" @ {timestamp / 1000:.3f}"
    if start_or_end == ItemType.START:
        return " @ start()"
    if start_or_end == ItemType.END:
        return " @ end()"
    return ""


def _join(exprs: Sequence[Any]) -> str:
    return ", ".join(str(e) for e in exprs)


class Expr(ABC):
    """Base of all expression nodes."""

    @abstractmethod
    def value_type(self) -> ValueType:
        """Type the expression evaluates to."""

    @abstractmethod
    def position_range(self) -> PositionRange:
        """Span of the expression in the query text."""


@dataclass
class AggregateExpr(Expr):
    """Aggregation over a vector."""

    op: ItemType
    expr: Optional[Expr] = None
    param: Optional[Expr] = None
    grouping: list[str] = field(default_factory=list)
    without: bool = False
    pos_range: PositionRange = field(default_factory=PositionRange)

    def value_type(self) -> ValueType:
        return ValueType.VECTOR

    def position_range(self) -> PositionRange:
        return self.pos_range

    def _op_str(self) -> str:
        text = str(self.op)
        if self.without:
            text += f" without ({', '.join(self.grouping)}) "
        elif self.grouping:
            text += f" by ({', '.join(self.grouping)}) "
        return text

    def __str__(self) -> str:
        param = f"{self.param}, " if self.param is not None else ""
        return f"{self._op_str()}({param}{self.expr})"


class VectorMatchCardinality(Enum):
    """Cardinality relation between the two sides of a binary operation."""

    ONE_TO_ONE = "one-to-one"
    MANY_TO_ONE = "many-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"

    def __str__(self) -> str:
        return self.value


@dataclass
class VectorMatching:
    """How elements of two vectors are paired in a binary operation."""

    card: VectorMatchCardinality = VectorMatchCardinality.ONE_TO_ONE
    matching_labels: list[str] = field(default_factory=list)
    on: bool = False
    include: list[str] = field(default_factory=list)


@dataclass
class BinaryExpr(Expr):
    """Binary operation between two expressions."""

    op: ItemType
    lhs: Expr
    rhs: Expr
    vector_matching: Optional[VectorMatching] = None
    return_bool: bool = False

    def value_type(self) -> ValueType:
        if (
            self.lhs.value_type() is ValueType.SCALAR
            and self.rhs.value_type() is ValueType.SCALAR
        ):
            return ValueType.SCALAR
        return ValueType.VECTOR

    def position_range(self) -> PositionRange:
        return PositionRange(
            self.lhs.position_range().start, self.rhs.position_range().end
        )

    def _matching_str(self) -> str:
        vm = self.vector_matching
        if vm is None or not (vm.matching_labels or vm.on):
            return ""
        tag = "on" if vm.on else "ignoring"
        text = f" {tag} ({', '.join(vm.matching_labels)})"
        if vm.card in (
            VectorMatchCardinality.MANY_TO_ONE,
            VectorMatchCardinality.ONE_TO_MANY,
        ):
            side = "left" if vm.card is VectorMatchCardinality.MANY_TO_ONE else "right"
            text += f" group_{side} ({', '.join(vm.include)})"
        return text

    def __str__(self) -> str:
        bool_str = " bool" if self.return_bool else ""
        return f"{self.lhs} {self.op}{bool_str}{self._matching_str()} {self.rhs}"


@dataclass
class Call(Expr):
    """Function call; ``func`` carries at least ``name`` and ``return_type``."""

    func: Any
    args: list[Expr] = field(default_factory=list)
    pos_range: PositionRange = field(default_factory=PositionRange)

    def value_type(self) -> ValueType:
        return self.func.return_type

    def position_range(self) -> PositionRange:
        return self.pos_range

    def __str__(self) -> str:
        return f"{self.func.name}({_join(self.args)})"


@dataclass
class VectorSelector(Expr):
    """Selection of series by metric name and label matchers."""

    name: str = ""
    label_matchers: list[Matcher] = field(default_factory=list)
    original_offset: timedelta = timedelta(0)
    offset: timedelta = timedelta(0)
    timestamp: Optional[int] = None
    start_or_end: Optional[ItemType] = None
    pos_range: PositionRange = field(default_factory=PositionRange)

    def value_type(self) -> ValueType:
        return ValueType.VECTOR

    def position_range(self) -> PositionRange:
        return self.pos_range

    def __str__(self) -> str:
        label_strings = sorted(
            str(m)
            for m in self.label_matchers
            if not (
                m.name == METRIC_NAME
                and m.type is MatchType.EQUAL
                and m.value == self.name
            )
        )
        suffix = _at_str(self.timestamp, self.start_or_end) + _offset_str(
            self.original_offset
        )
        if not label_strings:
            return f"{self.name}{suffix}"
        return f"{self.name}{{{','.join(label_strings)}}}{suffix}"


@dataclass
class MatrixSelector(Expr):
    """Range selection over a vector selector."""

    vector_selector: Expr
    range: timedelta = timedelta(0)
    end_pos: int = 0

    def value_type(self) -> ValueType:
        return ValueType.MATRIX

    def position_range(self) -> PositionRange:
        return PositionRange(self.vector_selector.position_range().start, self.end_pos)

    def __str__(self) -> str:
        vs = self.vector_selector
        duration = _format_duration(self.range)
        if not isinstance(vs, VectorSelector):
            return f"{vs}[{duration}]"
        # The @ and offset modifiers are printed after the range, not twice.
        bare = dataclasses.replace(
            vs, original_offset=timedelta(0), timestamp=None, start_or_end=None
        )
        at = _at_str(vs.timestamp, vs.start_or_end)
        return f"{bare}[{duration}]{at}{_offset_str(vs.original_offset)}"


@dataclass
class SubqueryExpr(Expr):
    """Subquery evaluated over a range with a step."""

    expr: Expr
    range: timedelta = timedelta(0)
    original_offset: timedelta = timedelta(0)
    offset: timedelta = timedelta(0)
    timestamp: Optional[int] = None
    start_or_end: Optional[ItemType] = None
    step: timedelta = timedelta(0)
    end_pos: int = 0

    def value_type(self) -> ValueType:
        return ValueType.MATRIX

    def position_range(self) -> PositionRange:
        return PositionRange(self.expr.position_range().start, self.end_pos)

    def __str__(self) -> str:
        step = _format_duration(self.step) if self.step else ""
        at = _at_str(self.timestamp, self.start_or_end)
        return (
            f"{self.expr}[{_format_duration(self.range)}:{step}]"
            f"{at}{_offset_str(self.original_offset)}"
        )


@dataclass
class NumberLiteral(Expr):
    """Numeric constant."""

    val: float
    pos_range: PositionRange = field(default_factory=PositionRange)

    def value_type(self) -> ValueType:
        return ValueType.SCALAR

    def position_range(self) -> PositionRange:
        return self.pos_range

    def __str__(self) -> str:
        return _format_float(float(self.val))


@dataclass
class ParenExpr(Expr):
    """Parenthesised expression."""

    expr: Expr
    pos_range: PositionRange = field(default_factory=PositionRange)

    def value_type(self) -> ValueType:
        return self.expr.value_type()

    def position_range(self) -> PositionRange:
        return self.pos_range

    def __str__(self) -> str:
        return f"({self.expr})"


@dataclass
class StringLiteral(Expr):
    """String constant."""

    val: str
    pos_range: PositionRange = field(default_factory=PositionRange)

    def value_type(self) -> ValueType:
        return ValueType.STRING

    def position_range(self) -> PositionRange:
        return self.pos_range

    def __str__(self) -> str:
        return _quote_str(self.val)


@dataclass
class UnaryExpr(Expr):
    """Unary operation on an expression."""

    op: ItemType
    expr: Expr
    start_pos: int = 0

    def value_type(self) -> ValueType:
        return self.expr.value_type()

    def position_range(self) -> PositionRange:
        return PositionRange(self.start_pos, self.expr.position_range().end)

    def __str__(self) -> str:
        return f"{self.op}{self.expr}"


@dataclass
class StepInvariantExpr(Expr):
    """Expression whose result does not depend on the evaluation step."""

    expr: Expr

    def value_type(self) -> ValueType:
        return self.expr.value_type()

    def position_range(self) -> PositionRange:
        return self.expr.position_range()

    def __str__(self) -> str:
        return str(self.expr)


@dataclass
class EvalStmt:
    """An expression with the time range it is evaluated over."""

    expr: Expr
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    interval: timedelta = timedelta(0)
    lookback_delta: timedelta = timedelta(0)

    def position_range(self) -> PositionRange:
        return self.expr.position_range()

    def __str__(self) -> str:
        return f"EVAL {self.expr}"


Node = Union[Expr, EvalStmt, Sequence[Expr]]


class Visitor(Protocol):
    """Visits a node; the returned visitor is used for its children, None stops."""

    def visit(self, node: Optional[Node], path: Optional[list]) -> Optional["Visitor"]:
        ...


def children(node: Node) -> list:
    """Return the child nodes of ``node``."""
    match node:
        case EvalStmt():
            return [node.expr]
        case list() | tuple():
            return list(node)
        case AggregateExpr():
            return [c for c in (node.expr, node.param) if c is not None]
        case BinaryExpr():
            return [node.lhs, node.rhs]
        case Call():
            return list(node.args)
        case SubqueryExpr() | ParenExpr() | UnaryExpr() | StepInvariantExpr():
            return [node.expr]
        case MatrixSelector():
            return [node.vector_selector]
        case NumberLiteral() | StringLiteral() | VectorSelector():
            return []
    raise TypeError(f"children: unhandled node type {type(node).__name__}")


def walk(visitor: Visitor, node: Node, path: Optional[list] = None) -> None:
    """Depth-first walk; after a node's children the child visitor sees (None, None)."""
    path = list(path or [])
    child_visitor = visitor.visit(node, path)
    if child_visitor is None:
        return
    child_path = path + [node]
    for child in children(node):
        walk(child_visitor, child, child_path)
    child_visitor.visit(None, None)


class _Inspector:
    def __init__(self, f: Callable[[Optional[Node], Optional[list]], Any]) -> None:
        self._f = f

    def visit(self, node: Optional[Node], path: Optional[list]) -> "_Inspector":
        self._f(node, path)
        return self


def inspect(node: Node, f: Callable[[Optional[Node], Optional[list]], Any]) -> None:
    """Call ``f(node, path)`` for every node depth first, and ``f(None, None)`` on leaving one."""
    walk(_Inspector(f), node, [])


def extract_selectors(expr: Node) -> list[list[Matcher]]:
    """Return the matcher lists of all vector selectors in ``expr``."""
    selectors: list[list[Matcher]] = []

    def collect(node: Optional[Node], _path: Optional[list]) -> None:
        if isinstance(node, VectorSelector):
            selectors.append(node.label_matchers)

    inspect(expr, collect)
    return selectors