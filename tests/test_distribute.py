from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

from promqlplan.distribute import (
    Deduplicate,
    DistributedExecutionOptimizer,
    Noop,
    RemoteEndpoints,
    RemoteExecution,
)
from promqlplan.functions import get_function
from promqlplan.lexer import ItemType
from promqlplan.nodes import (
    AggregateExpr,
    BinaryExpr,
    Call,
    Matcher,
    MatchType,
    MatrixSelector,
    NumberLiteral,
    VectorMatching,
    VectorSelector,
)
from promqlplan.plan import Opts, new_plan

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class EngineMock:
    maxt: int
    labels: list = field(default_factory=list)
    mint: int = 0

    def max_t(self):
        return self.maxt

    def min_t(self):
        return self.mint

    def label_sets(self):
        return self.labels


ENGINES = [
    EngineMock(1, [{"region": "east"}, {"region": "south"}]),
    EngineMock(2, [{"region": "west"}]),
]


def sel(name, **labels):
    ms = [Matcher(MatchType.EQUAL, "__name__", name)]
    ms += [Matcher(MatchType.EQUAL, k, v) for k, v in labels.items()]
    return VectorSelector(name=name, label_matchers=ms)


def rate(vs, minutes):
    return Call(get_function("rate"), [MatrixSelector(vs, timedelta(minutes=minutes))])


def call(name, *args):
    return Call(get_function(name), list(args))


def agg(op, expr, by=(), without=False):
    return AggregateExpr(op, expr, grouping=list(by), without=without)


def binop(op, lhs, rhs):
    return BinaryExpr(op, lhs, rhs, VectorMatching())


def run(expr):
    plan = new_plan(expr, Opts(start=EPOCH, end=EPOCH))
    opt = DistributedExecutionOptimizer(RemoteEndpoints(ENGINES))
    return str(plan.optimize([opt]).expr)


H = "http_requests_total"


def test_selector():
    assert run(sel(H)) == f"dedup(remote({H}), remote({H}))"


def test_rate():
    q = f"rate({H}[5m])"
    assert run(rate(sel(H), 5)) == f"dedup(remote({q}), remote({q}))"


def test_sum_rate():
    r = f"remote(sum by (pod, region) (rate({H}[5m])))"
    assert run(agg(ItemType.SUM, rate(sel(H), 5), ["pod"])) == f"sum by (pod) (dedup({r}, {r}))"


def test_sum_without():
    expr = agg(ItemType.SUM, rate(sel(H), 5), ["pod", "region"], without=True)
    r = f"remote(sum without (pod) (rate({H}[5m])))"
    assert run(expr) == f"sum without (pod, region) (dedup({r}, {r}))"


def test_avg():
    assert run(agg(ItemType.AVG, sel(H), ["pod"])) == (
        f"avg by (pod) (dedup(remote({H}), remote({H})))"
    )


def test_two_level_aggregation():
    expr = agg(ItemType.MAX, agg(ItemType.SUM, sel(H), ["pod"]), ["pod"])
    r = f"remote(sum by (pod, region) ({H}))"
    assert run(expr) == f"max by (pod) (sum by (pod) (dedup({r}, {r})))"


def test_aggregation_of_binary_expression():
    expr = agg(ItemType.MAX, binop(ItemType.DIV, sel("metric_a"), sel("metric_b")), ["pod"])
    assert run(expr) == (
        "max by (pod) (dedup(remote(metric_a), remote(metric_a)) / "
        "dedup(remote(metric_b), remote(metric_b)))"
    )


def test_unsupported_aggregation_in_operand_path():
    expr = agg(ItemType.MAX, call("sort", agg(ItemType.AVG, sel(H))), ["pod"])
    assert run(expr) == f"max by (pod) (sort(avg(dedup(remote({H}), remote({H})))))"


def test_binary_with_aggregations():
    expr = binop(
        ItemType.DIV,
        agg(ItemType.SUM, sel("metric_a"), ["pod"]),
        agg(ItemType.SUM, sel("metric_b"), ["pod"]),
    )
    a = "remote(sum by (pod, region) (metric_a))"
    b = "remote(sum by (pod, region) (metric_b))"
    assert run(expr) == f"sum by (pod) (dedup({a}, {a})) / sum by (pod) (dedup({b}, {b}))"


def test_histogram_quantile():
    m = "coredns_dns_request_duration_seconds_bucket"
    expr = call("histogram_quantile", NumberLiteral(0.5), agg(ItemType.SUM, rate(sel(m), 5), ["le"]))
    r = f"remote(sum by (le, region) (rate({m}[5m])))"
    assert run(expr) == f"histogram_quantile(0.5, sum by (le) (dedup({r}, {r})))"


def test_binary_with_time():
    expr = binop(ItemType.SUB, call("time"), agg(ItemType.MAX, sel("bar"), ["foo"]))
    r = "remote(max by (foo, region) (bar))"
    assert run(expr) == f"time() - max by (foo) (dedup({r}, {r}))"


def test_number_literal():
    assert run(NumberLiteral(1.0)) == "1"


def test_aggregation_with_number_literal():
    expr = binop(ItemType.SUB, agg(ItemType.MAX, sel("foo")), NumberLiteral(1.0))
    r = "remote(max by (region) (foo))"
    assert run(expr) == f"max(dedup({r}, {r})) - 1"


def test_absent():
    assert run(call("absent", sel("foo"))) == "remote(absent(foo)) * remote(absent(foo))"


def test_binary_with_constant():
    expr = agg(ItemType.SUM, binop(ItemType.MUL, rate(sel(H), 2), NumberLiteral(60.0)), ["pod"])
    r = f"remote(sum by (pod, region) (rate({H}[2m]) * 60))"
    assert run(expr) == f"sum by (pod) (dedup({r}, {r}))"


def test_pruning_matches_one_engine():
    expr = agg(ItemType.SUM, rate(sel(H, region="west"), 2), ["pod"])
    assert run(expr) == (
        f'sum by (pod) (dedup(remote(sum by (pod, region) (rate({H}{{region="west"}}[2m])))))'
    )


def test_pruning_matches_no_engines():
    assert run(sel(H, region="north")) == "noop"


def test_pruning_with_grouping_matches_no_engines():
    expr = agg(ItemType.SUM, rate(sel(H, region="north"), 2), ["pod"])
    assert run(expr) == "sum by (pod) (noop)"


def test_pruning_with_grouping_matches_south():
    expr = agg(ItemType.SUM, rate(sel(H, region="south"), 2), ["pod"])
    assert run(expr) == (
        f'sum by (pod) (dedup(remote(sum by (pod, region) (rate({H}{{region="south"}}[2m])))))'
    )


def test_step_aligned_start():
    engine = EngineMock(200000, [], mint=45000)
    opts = Opts(
        start=EPOCH,
        end=EPOCH + timedelta(seconds=120),
        step=timedelta(seconds=30),
    )
    out = DistributedExecutionOptimizer(RemoteEndpoints([engine])).optimize(sel("x"), opts)
    assert isinstance(out, Deduplicate)
    assert out.expressions[0].query_range_start == EPOCH + timedelta(seconds=60)


def test_engine_too_old_is_skipped():
    engine = EngineMock(1000, [])
    opts = Opts(start=EPOCH + timedelta(seconds=10), end=EPOCH + timedelta(seconds=10))
    out = DistributedExecutionOptimizer(RemoteEndpoints([engine])).optimize(sel("x"), opts)
    assert str(out) == "noop"
    assert out == Noop()


@pytest.mark.parametrize(
    "node,text",
    [
        (RemoteExecution(None, "up"), "remote(up)"),
        (Deduplicate([RemoteExecution(None, "a"), RemoteExecution(None, "b")]), "dedup(remote(a), remote(b))"),
        (Noop(), "noop"),
    ],
)
def test_node_strings(node, text):
    assert str(node) == text