"""Logical plan: preprocessing of an expression and application of optimizers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from .lexer import ItemType
from .merge_selects import MergeSelectsOptimizer
from .nodes import (
    AggregateExpr,
    BinaryExpr,
    Call,
    Expr,
    MatrixSelector,
    NumberLiteral,
    ParenExpr,
    StepInvariantExpr,
    StringLiteral,
    SubqueryExpr,
    UnaryExpr,
    VectorSelector,
    inspect,
)
from .propagate_selectors import PropagateMatchersOptimizer
from .sort_matchers import SortMatchers

__all__ = [
    "Opts",
    "Plan",
    "new_plan",
    "preprocess_expr",
    "set_offset_for_at_modifier",
    "NO_OPTIMIZERS",
    "DEFAULT_OPTIMIZERS",
    "ALL_OPTIMIZERS",
    "AT_MODIFIER_UNSAFE_FUNCTIONS",
]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Functions whose result depends on the evaluation time itself.
AT_MODIFIER_UNSAFE_FUNCTIONS = frozenset(
    {
        "days_in_month",
        "day_of_month",
        "day_of_week",
        "day_of_year",
        "hour",
        "minute",
        "month",
        "year",
        "predict_linear",
        "time",
        "timestamp",
    }
)

NO_OPTIMIZERS: list = []
DEFAULT_OPTIMIZERS: list = [SortMatchers(), MergeSelectsOptimizer()]
ALL_OPTIMIZERS: list = DEFAULT_OPTIMIZERS + [PropagateMatchersOptimizer()]


def _unix_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


@dataclass
class Opts:
    """Time range, step and lookback of a query."""

    start: datetime = EPOCH
    end: datetime = EPOCH
    step: timedelta = timedelta(0)
    lookback_delta: timedelta = timedelta(0)


class Plan:
    """An expression together with the options it is planned for."""

    def __init__(self, expr: Optional[Expr], opts: Opts) -> None:
        self.expr = expr
        self.opts = opts

    def optimize(self, optimizers: Sequence[Any]) -> "Plan":
        """Run the optimizers in order and return the resulting plan."""
        for optimizer in optimizers:
            self.expr = optimizer.optimize(self.expr, self.opts)
        return Plan(self.expr, self.opts)


def new_plan(expr: Expr, opts: Opts) -> Plan:
    """Preprocess ``expr`` for the range in ``opts`` and wrap it in a plan."""
    expr = preprocess_expr(expr, opts.start, opts.end)
    set_offset_for_at_modifier(_unix_ms(opts.start), expr)
    return Plan(expr, opts)


def preprocess_expr(expr: Expr, start: datetime, end: datetime) -> Expr:
    """Wrap step-invariant parts in StepInvariantExpr and resolve start()/end()."""
    if _preprocess(expr, start, end):
        return StepInvariantExpr(expr)
    return expr


def _resolve_at(node: Any, start: datetime, end: datetime) -> None:
    if node.start_or_end == ItemType.START:
        node.timestamp = _unix_ms(start)
    elif node.start_or_end == ItemType.END:
        node.timestamp = _unix_ms(end)


def _preprocess(expr: Expr, start: datetime, end: datetime) -> bool:
    match expr:
        case VectorSelector():
            _resolve_at(expr, start, end)
            return expr.timestamp is not None
        case AggregateExpr():
            return _preprocess(expr.expr, start, end)
        case BinaryExpr():
            lhs = _preprocess(expr.lhs, start, end)
            rhs = _preprocess(expr.rhs, start, end)
            if lhs and rhs:
                return True
            if lhs:
                expr.lhs = StepInvariantExpr(expr.lhs)
            if rhs:
                expr.rhs = StepInvariantExpr(expr.rhs)
            return False
        case Call():
            invariant_args = [_preprocess(arg, start, end) for arg in expr.args]
            if expr.func.name not in AT_MODIFIER_UNSAFE_FUNCTIONS and all(invariant_args):
                return True
            expr.args = [
                StepInvariantExpr(arg) if inv else arg
                for arg, inv in zip(expr.args, invariant_args)
            ]
            return False
        case MatrixSelector():
            return _preprocess(expr.vector_selector, start, end)
        case SubqueryExpr():
            # The inside of a subquery is wrapped regardless of its own @ modifier.
            if _preprocess(expr.expr, start, end):
                expr.expr = StepInvariantExpr(expr.expr)
            _resolve_at(expr, start, end)
            return expr.timestamp is not None
        case ParenExpr() | UnaryExpr():
            return _preprocess(expr.expr, start, end)
        case NumberLiteral():
            return True
        case StringLiteral():
            return False
    raise TypeError(f"found unexpected node {expr!r}")


def set_offset_for_at_modifier(eval_time: int, expr: Expr) -> None:
    """Fold @ timestamps into the offsets of selectors and subqueries."""

    def offset(ts: Optional[int], original: timedelta) -> timedelta:
        if ts is None:
            return original
        return original + timedelta(milliseconds=eval_time - ts)

    def apply(node: Any, _path: Any) -> None:
        if isinstance(node, (VectorSelector, SubqueryExpr)):
            node.offset = offset(node.timestamp, node.original_offset)
        elif isinstance(node, MatrixSelector) and isinstance(node.vector_selector, VectorSelector):
            vs = node.vector_selector
            vs.offset = offset(vs.timestamp, vs.original_offset)

    inspect(expr, apply)