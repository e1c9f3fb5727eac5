from datetime import datetime, timedelta, timezone

import pytest

from promqlplan.lexer import ItemType
from promqlplan.nodes import (
    AggregateExpr,
    BinaryExpr,
    Matcher,
    MatchType,
    NumberLiteral,
    StepInvariantExpr,
    VectorMatchCardinality,
    VectorMatching,
    VectorSelector,
)
from promqlplan.plan import (
    DEFAULT_OPTIMIZERS,
    Opts,
    new_plan,
    preprocess_expr,
    set_offset_for_at_modifier,
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def m(name, value, typ=MatchType.EQUAL):
    return Matcher(typ, name, value)


def sel(name, *matchers):
    return VectorSelector(name=name, label_matchers=[m("__name__", name), *matchers])


def s(expr):
    return AggregateExpr(ItemType.SUM, expr)


def div(lhs, rhs, vm=None):
    return BinaryExpr(ItemType.DIV, lhs, rhs, vm or VectorMatching())


def run(expr):
    return str(new_plan(expr, Opts()).optimize(DEFAULT_OPTIMIZERS).expr)


def test_common_selectors():
    expr = div(s(sel("metric", m("a", "b"), m("c", "d"))), s(sel("metric", m("a", "b"))))
    assert run(expr) == 'sum(filter([c="d"], metric{a="b"})) / sum(metric{a="b"})'


def test_common_selectors_duplicate_matchers():
    expr = div(
        s(sel("metric", m("a", "b"), m("c", "d"), m("a", "b"))),
        s(sel("metric", m("a", "b"))),
    )
    assert run(expr) == 'sum(filter([c="d"], metric{a="b"})) / sum(metric{a="b"})'


def test_different_operators():
    expr = div(s(sel("metric", m("a", "b"))), s(sel("metric", m("a", "b", MatchType.REGEX))))
    assert run(expr) == 'sum(metric{a="b"}) / sum(metric{a=~"b"})'


def test_common_selectors_with_regex():
    vm = VectorMatching(card=VectorMatchCardinality.MANY_TO_ONE, on=True)
    expr = div(
        sel("http_requests_total"),
        s(sel("http_requests_total", m("pod", "p1.+", MatchType.REGEX))),
        vm,
    )
    assert run(expr) == (
        "http_requests_total / on () group_left () "
        'sum(filter([pod=~"p1.+"], http_requests_total))'
    )


def test_different_selectors():
    expr = div(s(sel("metric", m("a", "b"))), s(sel("metric", m("c", "d"))))
    assert run(expr) == 'sum(metric{a="b"}) / sum(metric{c="d"})'


def test_different_metrics():
    expr = div(s(sel("metric_1", m("a", "b"))), s(sel("metric_2", m("a", "b"))))
    assert run(expr) == 'sum(metric_1{a="b"}) / sum(metric_2{a="b"})'


def test_duplicate_matchers_different_metrics():
    expr = div(
        sel("metric_1", m("a", "1"), m("b", "2"), m("a", "1")),
        sel("metric_2", m("a", "1"), m("b", "2"), m("a", "1")),
    )
    assert run(expr) == 'metric_1{a="1",a="1",b="2"} / metric_2{a="1",a="1",b="2"}'


def test_duplicate_matchers_same_metric():
    expr = div(
        sel("metric_1", m("a", "1"), m("b", "2"), m("a", "1"), m("e", "f")),
        sel("metric_1", m("a", "1"), m("b", "2"), m("a", "1")),
    )
    assert run(expr) == 'filter([e="f"], metric_1{a="1",a="1",b="2"}) / metric_1{a="1",a="1",b="2"}'


def test_number_literal_is_step_invariant():
    literal = NumberLiteral(1.0)
    out = preprocess_expr(literal, EPOCH, EPOCH)
    assert isinstance(out, StepInvariantExpr)
    assert out.expr is literal
    assert out.expr.val == 1.0


def test_at_start_resolved_and_wrapped():
    vs = VectorSelector(name="x", start_or_end=ItemType.START)
    start = EPOCH + timedelta(seconds=5)
    out = preprocess_expr(vs, start, start + timedelta(seconds=10))
    assert isinstance(out, StepInvariantExpr)
    assert vs.timestamp == 5000


def test_binary_wraps_invariant_side_only():
    expr = BinaryExpr(ItemType.ADD, sel("x"), NumberLiteral(2.0), VectorMatching())
    out = preprocess_expr(expr, EPOCH, EPOCH)
    assert out is expr
    assert isinstance(expr.rhs, StepInvariantExpr)
    assert isinstance(expr.lhs, VectorSelector)


def test_offset_for_at_modifier():
    vs = VectorSelector(name="x", timestamp=4000, original_offset=timedelta(seconds=1))
    set_offset_for_at_modifier(10000, vs)
    assert vs.offset == timedelta(seconds=7)


def test_unexpected_node_raises():
    with pytest.raises(TypeError):
        preprocess_expr(object(), EPOCH, EPOCH)