"""Optimizer that rewrites selectors as filters over a broader selector of the same metric."""

from __future__ import annotations

from typing import Any, Optional

from .filter import FilteredSelector
from .nodes import METRIC_NAME, Expr, Matcher, VectorSelector, inspect
from .traversal import traverse

__all__ = ["MergeSelectsOptimizer"]


class _MatcherHeap:
    """The most selective matcher list seen for each metric name.

    Since matchers are open, the list with the fewest matchers is taken as
    the one that selects the most series.
    """

    def __init__(self) -> None:
        self._top: dict[str, list[Matcher]] = {}

    def add(self, metric_name: str, matchers: list[Matcher]) -> None:
        current = self._top.get(metric_name)
        if current is None or len(matchers) < len(current):
            self._top[metric_name] = matchers

    def find_replacement(
        self, metric_name: str, matchers: list[Matcher]
    ) -> Optional[list[Matcher]]:
        top = self._top.get(metric_name)
        if top is None:
            return None
        matcher_set = {m.name: m for m in matchers}
        top_set = {m.name: m for m in top}
        if any(matcher_set.get(name) != m for name, m in top_set.items()):
            return None
        # Same matchers on both sides: nothing to replace.
        if len(top_set) == len(matcher_set):
            return None
        return top


def _collect_selectors(heap: _MatcherHeap, expr: Expr) -> None:
    def collect(node: Any, _path: Any) -> None:
        if not isinstance(node, VectorSelector):
            return
        for matcher in node.label_matchers:
            if matcher.name == METRIC_NAME:
                heap.add(matcher.value, node.label_matchers)

    inspect(expr, collect)


def _replace_matchers(heap: _MatcherHeap, expr: Optional[Expr]) -> Optional[Expr]:
    def replace(node: Expr) -> Expr:
        if not isinstance(node, VectorSelector):
            return node
        for matcher in node.label_matchers:
            if matcher.name != METRIC_NAME:
                continue
            replacement = heap.find_replacement(matcher.value, node.label_matchers)
            if replacement is None:
                continue
            # The replacement selects on the metric name already.
            filters = [m for m in node.label_matchers if m.name != METRIC_NAME]
            for kept in replacement:
                if kept in filters:
                    filters = [f for f in filters if f.name != kept.name]
            node.label_matchers = replacement
            return FilteredSelector(vector_selector=node, filters=filters)
        return node

    return traverse(expr, replace)


class MergeSelectsOptimizer:
    """Turn ``metric{a="b", c="d"}`` into ``filter([c="d"], metric{a="b"})``
    when ``metric{a="b"}`` is selected elsewhere in the same expression,
    so that the broader selection can be shared.
    """

    def optimize(self, expr: Optional[Expr], opts: Any) -> Optional[Expr]:
        heap = _MatcherHeap()
        if expr is not None:
            _collect_selectors(heap, expr)
        return _replace_matchers(heap, expr)