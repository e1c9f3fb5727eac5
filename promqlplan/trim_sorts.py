"""Optimizer that removes sort and sort_desc calls from expressions."""

from __future__ import annotations

from typing import Any, Optional

from .nodes import Call, Expr
from .traversal import Slot, traverse_bottom_up

__all__ = ["TrimSortFunctions"]

_SORT_FUNCTIONS = frozenset({"sort", "sort_desc"})


class TrimSortFunctions:
    """Drop sort calls: f(sort(X)) equals f(X), and top-level order is applied later."""

    def optimize(self, expr: Optional[Expr], opts: Any) -> Optional[Expr]:
        root = Slot.holding(expr)

        def trim(parent: Optional[Slot], current: Slot) -> bool:
            if parent is None:
                return True
            node = parent.value
            if isinstance(node, Call) and node.func.name in _SORT_FUNCTIONS:
                parent.value = current.value
            return False

        traverse_bottom_up(None, root, trim)
        return root.value