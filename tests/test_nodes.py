from datetime import timedelta
from types import SimpleNamespace

import pytest

from promqlplan.lexer import ItemType
from promqlplan.nodes import (
    METRIC_NAME,
    AggregateExpr,
    BinaryExpr,
    Call,
    MatchType,
    Matcher,
    MatrixSelector,
    NumberLiteral,
    ParenExpr,
    PositionRange,
    StepInvariantExpr,
    StringLiteral,
    SubqueryExpr,
    UnaryExpr,
    ValueType,
    VectorMatchCardinality,
    VectorMatching,
    VectorSelector,
    children,
    extract_selectors,
    inspect,
    walk,
)


def fn(name, return_type=ValueType.VECTOR):
    return SimpleNamespace(name=name, return_type=return_type)


def selector(name, *matchers, **kwargs):
    ms = [Matcher(MatchType.EQUAL, METRIC_NAME, name), *matchers]
    return VectorSelector(name=name, label_matchers=ms, **kwargs)


def eq(name, value):
    return Matcher(MatchType.EQUAL, name, value)


def rate(vs, minutes):
    return Call(fn("rate"), [MatrixSelector(vs, timedelta(minutes=minutes))])


def test_vector_selector_sorts_matchers_and_hides_name():
    vs = selector("metric_1", eq("a", "1"), eq("b", "2"), eq("a", "1"))
    assert str(vs) == 'metric_1{a="1",a="1",b="2"}'


def test_matcher_string():
    assert str(eq("host", "$host")) == 'host="$host"'


def test_aggregate_by_with_rate():
    expr = AggregateExpr(ItemType.SUM, rate(selector("http_requests_total"), 5), grouping=["pod"])
    assert str(expr) == "sum by (pod) (rate(http_requests_total[5m]))"


def test_aggregate_without():
    expr = AggregateExpr(
        ItemType.SUM,
        rate(selector("http_requests_total"), 5),
        grouping=["pod", "region"],
        without=True,
    )
    assert str(expr) == "sum without (pod, region) (rate(http_requests_total[5m]))"


def test_binary_with_constant():
    expr = BinaryExpr(ItemType.MUL, rate(selector("http_requests_total"), 2), NumberLiteral(60.0))
    assert str(expr) == "rate(http_requests_total[2m]) * 60"


def test_binary_group_left():
    lhs = selector("node_filesystem_files", eq("host", "$host"), eq("mountpoint", "/"))
    rhs = selector("node_filesystem_files_free")
    expr = BinaryExpr(
        ItemType.SUB,
        lhs,
        rhs,
        VectorMatching(card=VectorMatchCardinality.MANY_TO_ONE, on=True),
    )
    assert str(expr) == (
        'node_filesystem_files{host="$host",mountpoint="/"} '
        "- on () group_left () node_filesystem_files_free"
    )


def test_binary_one_to_one_has_no_matching_clause():
    expr = BinaryExpr(ItemType.DIV, selector("metric_a"), selector("metric_b"), VectorMatching())
    assert str(expr) == f"{expr.lhs} / {expr.rhs}"


def test_subquery_inside_call():
    inner = Call(
        fn("rate"),
        [MatrixSelector(selector("foo", eq("bar", "baz")), timedelta(seconds=2))],
    )
    expr = Call(fn("min_over_time"), [SubqueryExpr(inner, range=timedelta(minutes=5))])
    assert str(expr) == 'min_over_time(rate(foo{bar="baz"}[2s])[5m:])'


def test_subquery_with_step_and_offset():
    vs = VectorSelector(
        name="test:name", label_matchers=[Matcher(MatchType.NOT_REGEX, "on", "b:ar")]
    )
    expr = SubqueryExpr(
        vs,
        range=timedelta(minutes=4),
        step=timedelta(seconds=4),
        original_offset=timedelta(minutes=10),
    )
    assert str(expr) == 'test:name{on!~"b:ar"}[4m:4s] offset 10m'


def test_matrix_selector_moves_offset_after_range():
    vs = selector("http_requests_total", original_offset=timedelta(minutes=10))
    plain = selector("http_requests_total")
    matrix = MatrixSelector(vs, timedelta(minutes=5))
    assert str(matrix) == str(MatrixSelector(plain, timedelta(minutes=5))) + " offset 10m"
    assert vs.original_offset == timedelta(minutes=10)


def test_at_modifier():
    assert str(selector("foo", timestamp=1500)) == "foo @ 1.500"


def test_number_formatting():
    assert str(NumberLiteral(1.0)) == "1"
    assert str(NumberLiteral(1e6)) == "1e+06"
    assert str(NumberLiteral(float("nan"))) == "NaN"
    assert str(NumberLiteral(float("inf"))) == "+Inf"


def test_unary_and_paren():
    vs = selector("foo")
    assert str(UnaryExpr(ItemType.SUB, vs)) == "-foo"
    assert str(ParenExpr(vs)) == f"({vs})"


def test_step_invariant_delegates():
    inner = NumberLiteral(1.0, PositionRange(2, 3))
    wrapped = StepInvariantExpr(inner)
    assert str(wrapped) == str(inner)
    assert wrapped.value_type() is ValueType.SCALAR
    assert wrapped.position_range() == PositionRange(2, 3)


def test_value_types():
    scalar = BinaryExpr(ItemType.ADD, NumberLiteral(1.0), NumberLiteral(2.0))
    vector = BinaryExpr(ItemType.ADD, selector("x"), NumberLiteral(2.0))
    assert scalar.value_type() is ValueType.SCALAR
    assert vector.value_type() is ValueType.VECTOR
    assert Call(fn("pi", ValueType.SCALAR)).value_type() is ValueType.SCALAR
    assert MatrixSelector(selector("x")).value_type() is ValueType.MATRIX
    assert StringLiteral("a").value_type() is ValueType.STRING


def test_position_ranges():
    lhs = VectorSelector(name="a", pos_range=PositionRange(0, 3))
    rhs = VectorSelector(name="b", pos_range=PositionRange(6, 9))
    assert BinaryExpr(ItemType.ADD, lhs, rhs).position_range() == PositionRange(0, 9)
    assert MatrixSelector(lhs, end_pos=7).position_range() == PositionRange(0, 7)
    assert UnaryExpr(ItemType.SUB, rhs, start_pos=5).position_range() == PositionRange(5, 9)


def test_cardinality_string():
    one = VectorMatching(card=VectorMatchCardinality.ONE_TO_ONE)
    many = VectorMatching(card=VectorMatchCardinality.MANY_TO_MANY)
    assert str(one.card) == "one-to-one"
    assert str(many.card) == "many-to-many"


def test_matcher_matches():
    assert eq("a", "b").matches("b")
    assert not eq("a", "b").matches("c")
    assert Matcher(MatchType.NOT_EQUAL, "a", "b").matches("c")
    regex = Matcher(MatchType.REGEX, "pod", "p1.+")
    assert regex.matches("p12")
    assert not regex.matches("xp12")
    assert Matcher(MatchType.NOT_REGEX, "pod", "p1.+").matches("xp12")


def test_matcher_equality_and_hash():
    a = Matcher(MatchType.REGEX, "pod", "p.*")
    b = Matcher(MatchType.REGEX, "pod", "p.*")
    assert a == b
    assert hash(a) == hash(b)


def test_matcher_invalid_regex():
    with pytest.raises(ValueError):
        Matcher(MatchType.REGEX, "a", "(")


def test_children_of_aggregate():
    inner = selector("x")
    param = NumberLiteral(1.0)
    assert children(AggregateExpr(ItemType.TOPK, inner, param)) == [inner, param]
    assert children(AggregateExpr(ItemType.SUM, inner)) == [inner]
    assert children(inner) == []


def test_children_unknown_node():
    with pytest.raises(TypeError):
        children(object())


def test_inspect_order_and_paths():
    a = selector("a")
    one = NumberLiteral(1.0)
    expr = BinaryExpr(ItemType.ADD, a, one)
    seen = []
    inspect(expr, lambda node, path: seen.append((node, path)))
    assert [n for n, _ in seen] == [expr, a, None, one, None, None]
    assert seen[1][1][0] is expr
    assert seen[0][1] == []


def test_walk_stops_when_visitor_returns_none():
    class Stop:
        def __init__(self):
            self.visited = []

        def visit(self, node, path):
            self.visited.append(node)
            return None

    expr = BinaryExpr(ItemType.ADD, selector("a"), selector("b"))
    visitor = Stop()
    walk(visitor, expr, [])
    assert visitor.visited == [expr]


def test_extract_selectors():
    a = selector("a", eq("x", "1"))
    b = selector("b")
    expr = Call(fn("f"), [a, ParenExpr(b)])
    result = extract_selectors(expr)
    assert len(result) == 2
    assert result[0] is a.label_matchers
    assert result[1] is b.label_matchers