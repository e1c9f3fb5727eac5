"""Optimizer that orders the label matchers of every selector by name."""

from __future__ import annotations

from typing import Any, Optional

from .nodes import Expr, VectorSelector
from .traversal import traverse

__all__ = ["SortMatchers"]


class SortMatchers:
    """Sort selector matchers by label name so later passes can rely on the order."""

    def optimize(self, expr: Optional[Expr], opts: Any) -> Optional[Expr]:
        def sort_selector(node: Expr) -> Expr:
            if isinstance(node, VectorSelector):
                node.label_matchers.sort(key=lambda m: m.name)
            return node

        return traverse(expr, sort_selector)