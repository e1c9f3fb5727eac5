"""Optimizer that splits a query into executions on remote engines."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Protocol, Sequence

from .lexer import ItemType
from .nodes import (
    AggregateExpr,
    BinaryExpr,
    Call,
    Expr,
    Matcher,
    NumberLiteral,
    PositionRange,
    StepInvariantExpr,
    ValueType,
    VectorMatching,
    extract_selectors,
)
from .traversal import Slot, traverse_bottom_up

__all__ = [
    "RemoteEngine",
    "RemoteEndpoints",
    "RemoteExecution",
    "Deduplicate",
    "Noop",
    "DistributedExecutionOptimizer",
]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _unix_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def _from_ms(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


def _ms(d: timedelta) -> int:
    return d // timedelta(milliseconds=1)


class RemoteEngine(Protocol):
    """An engine holding data for a time range and a set of external labels."""

    def max_t(self) -> int: ...

    def min_t(self) -> int: ...

    def label_sets(self) -> Sequence[Mapping[str, str]]: ...


class RemoteEndpoints:
    """A fixed collection of remote engines."""

    def __init__(self, engines: Sequence[Any]) -> None:
        self._engines = list(engines)

    def engines(self) -> list:
        return list(self._engines)


@dataclass
class RemoteExecution(Expr):
    """Execution of ``query`` on a remote engine, starting at ``query_range_start``."""

    engine: Any
    query: str
    query_range_start: datetime = EPOCH

    def value_type(self) -> ValueType:
        return ValueType.MATRIX

    def position_range(self) -> PositionRange:
        return PositionRange()

    def __str__(self) -> str:
        if _unix_ms(self.query_range_start) == 0:
            return f"remote({self.query})"
        return f"remote({self.query}) [{self.query_range_start.isoformat()}]"


@dataclass
class Deduplicate(Expr):
    """Deduplication of samples from several remote executions."""

    expressions: list[RemoteExecution] = field(default_factory=list)

    def value_type(self) -> ValueType:
        return ValueType.MATRIX

    def position_range(self) -> PositionRange:
        return PositionRange()

    def __str__(self) -> str:
        return f"dedup({', '.join(str(e) for e in self.expressions)})"


@dataclass
class Noop(Expr):
    """An expression that selects nothing."""

    def value_type(self) -> ValueType:
        return ValueType.MATRIX

    def position_range(self) -> PositionRange:
        return PositionRange()

    def __str__(self) -> str:
        return "noop"


_DISTRIBUTIVE_AGGREGATIONS = frozenset(
    {
        ItemType.SUM,
        ItemType.MIN,
        ItemType.MAX,
        ItemType.GROUP,
        ItemType.COUNT,
        ItemType.BOTTOMK,
        ItemType.TOPK,
    }
)


def _is_number_literal(expr: Optional[Expr]) -> bool:
    if isinstance(expr, NumberLiteral):
        return True
    if isinstance(expr, StepInvariantExpr):
        return _is_number_literal(expr.expr)
    return False


def _is_distributive(slot: Optional[Slot]) -> bool:
    if slot is None:
        return False
    node = slot.value
    if isinstance(node, BinaryExpr):
        # Joins need the whole data set unless one side is a constant.
        return _is_number_literal(node.lhs) or _is_number_literal(node.rhs)
    if isinstance(node, AggregateExpr):
        return node.op in _DISTRIBUTIVE_AGGREGATIONS
    if isinstance(node, Call):
        return len(node.args) > 0
    return True


def _is_absent(expr: Expr) -> bool:
    return isinstance(expr, Call) and expr.func.name in ("absent", "absent_over_time")


def _matches_external_labels(matchers: Sequence[Matcher], labels: Mapping[str, str]) -> bool:
    if not labels:
        return True
    for matcher in matchers:
        ext = labels.get(matcher.name, "")
        if ext != "" and not matcher.matches(ext):
            return False
    return True


def _matches_external_label_set(expr: Expr, label_sets: Sequence[Mapping[str, str]]) -> bool:
    if not label_sets:
        return True
    return all(
        any(_matches_external_labels(sel, labels) for labels in label_sets)
        for sel in extract_selectors(expr)
    )


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _num_steps(start_ms: int, end_ms: int, step_ms: int) -> int:
    return _trunc_div(end_ms - start_ms, step_ms) + 1


def _step_aligned_start(engine: Any, opts: Any) -> datetime:
    step_ms = _ms(opts.step)
    end_ms = _unix_ms(opts.end)
    start_ms = _unix_ms(opts.start)
    original = _num_steps(start_ms, end_ms, step_ms)
    remote = _num_steps(engine.min_t(), end_ms, step_ms)
    return _from_ms(start_ms + (original - remote) * step_ms)


def _new_remote_aggregation(root: AggregateExpr, engines: Sequence[Any]) -> AggregateExpr:
    grouping = set(root.grouping)
    for engine in engines:
        for labels in engine.label_sets():
            for name in labels:
                if root.without:
                    grouping.discard(name)
                else:
                    grouping.add(name)
    return dataclasses.replace(root, grouping=sorted(grouping))


class DistributedExecutionOptimizer:
    """Rewrite a plan so that distributable parts run on remote engines."""

    def __init__(self, endpoints: RemoteEndpoints) -> None:
        self.endpoints = endpoints

    def optimize(self, plan: Optional[Expr], opts: Any) -> Optional[Expr]:
        engines = self.endpoints.engines()
        root = Slot.holding(plan)

        def distribute(parent: Optional[Slot], current: Slot) -> bool:
            if not _is_distributive(current):
                return True
            node = current.value
            if isinstance(node, AggregateExpr):
                local_op = ItemType.SUM if node.op == ItemType.COUNT else node.op
                remote = _new_remote_aggregation(node, engines)
                current.value = AggregateExpr(
                    op=local_op,
                    expr=self._distribute_query(remote, engines, opts),
                    param=node.param,
                    grouping=node.grouping,
                    without=node.without,
                    pos_range=node.pos_range,
                )
                return True
            if _is_distributive(parent):
                return False
            current.value = self._distribute_query(node, engines, opts)
            return True

        traverse_bottom_up(None, root, distribute)
        return root.value

    def _distribute_query(self, expr: Expr, engines: Sequence[Any], opts: Any) -> Expr:
        if _is_absent(expr):
            return self._distribute_absent(expr, engines, opts)
        start_ms = _unix_ms(opts.start)
        lookback_ms = _ms(opts.lookback_delta)
        remote = []
        for engine in engines:
            if not _matches_external_label_set(expr, engine.label_sets()):
                continue
            if engine.max_t() < start_ms - lookback_ms:
                continue
            if engine.min_t() > _unix_ms(opts.end):
                continue
            start = opts.start
            if engine.min_t() > start_ms:
                start = _step_aligned_start(engine, opts)
            remote.append(RemoteExecution(engine, str(expr), start))
        if not remote:
            return Noop()
        return Deduplicate(remote)

    def _distribute_absent(self, expr: Expr, engines: Sequence[Any], opts: Any) -> Expr:
        queries = [RemoteExecution(e, str(expr), opts.start) for e in engines]
        if not queries:
            raise ValueError("no remote engines to distribute absent query to")
        root: Expr = queries[0]
        for query in queries[1:]:
            root = BinaryExpr(ItemType.MUL, root, query, VectorMatching())
        return root