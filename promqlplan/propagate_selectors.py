"""Optimizer that shares label matchers between the two selectors of a binary operation."""

from __future__ import annotations

from typing import Any, Optional

from .lexer import ItemType
from .nodes import METRIC_NAME, BinaryExpr, Expr, Matcher, VectorMatchCardinality, VectorSelector
from .traversal import traverse

__all__ = ["PropagateMatchersOptimizer"]


def _matcher_map(selector: VectorSelector) -> dict[str, Matcher]:
    return {m.name: m for m in selector.label_matchers}


def _duplicate_exists(matchers: dict[str, Matcher], matcher: Matcher) -> bool:
    existing = matchers.get(matcher.name)
    return existing is not None and str(existing) == str(matcher)


def _make_union(
    lhs: dict[str, Matcher], rhs: dict[str, Matcher]
) -> Optional[dict[str, Matcher]]:
    union: dict[str, Matcher] = {}
    for own, other in ((lhs, rhs), (rhs, lhs)):
        for m in own.values():
            if m.name == METRIC_NAME:
                continue
            if _duplicate_exists(other, m):
                return None
            union[m.name] = m
    return union


def _propagate_matchers(bin_op: BinaryExpr) -> None:
    lhs, rhs = bin_op.lhs, bin_op.rhs
    if not isinstance(lhs, VectorSelector) or not isinstance(rhs, VectorSelector):
        return
    # Selectors of the same metric are handled by MergeSelectsOptimizer.
    if lhs.name == rhs.name:
        return
    union = _make_union(_matcher_map(lhs), _matcher_map(rhs))
    if union is None:
        return
    final = sorted(union.values(), key=lambda m: m.name)
    lhs.label_matchers = list(final)
    rhs.label_matchers = list(final)


class PropagateMatchersOptimizer:
    """Copy matchers between the two vector selectors of a one-to-one binary operation."""

    def optimize(self, expr: Optional[Expr], opts: Any) -> Optional[Expr]:
        def propagate(node: Expr) -> Expr:
            if not isinstance(node, BinaryExpr):
                return node
            if node.op.is_comparison_operator() or node.op == ItemType.ATAN2:
                return node
            vm = node.vector_matching
            if vm is not None and vm.matching_labels:
                return node
            if vm is not None and vm.card is not VectorMatchCardinality.ONE_TO_ONE:
                return node
            _propagate_matchers(node)
            return node

        return traverse(expr, propagate)