"""Top-down and bottom-up walks over expression trees that may replace nodes."""

from __future__ import annotations

from typing import Any, Callable, Optional

from .nodes import (
    AggregateExpr,
    BinaryExpr,
    Call,
    Expr,
    MatrixSelector,
    NumberLiteral,
    ParenExpr,
    StepInvariantExpr,
    SubqueryExpr,
    UnaryExpr,
    VectorSelector,
)

__all__ = ["Slot", "traverse", "traverse_bottom_up"]


class Slot:
    """A writable place holding an expression: a list element or a node attribute."""

    __slots__ = ("_owner", "_key")

    def __init__(self, owner: Any, key: Any) -> None:
        self._owner = owner
        self._key = key

    @classmethod
    def holding(cls, expr: Optional[Expr]) -> "Slot":
        """A free-standing slot, used for the root of a tree."""
        return cls([expr], 0)

    @property
    def value(self) -> Optional[Expr]:
        if isinstance(self._owner, list):
            return self._owner[self._key]
        return getattr(self._owner, self._key)

    @value.setter
    def value(self, expr: Optional[Expr]) -> None:
        if isinstance(self._owner, list):
            self._owner[self._key] = expr
        else:
            setattr(self._owner, self._key, expr)


def traverse(expr: Optional[Expr], transform: Callable[[Expr], Expr]) -> Optional[Expr]:
    """Apply ``transform`` to selectors, aggregations and binary operations top down.

    ``transform`` returns the node to put in place of the one it was given.
    Returns the (possibly replaced) root.  Replacements of function call
    arguments themselves are not stored; changes made inside them are.
    """
    match expr:
        case StepInvariantExpr():
            expr.expr = transform(expr.expr)
        case VectorSelector():
            return transform(expr)
        case MatrixSelector():
            expr.vector_selector = transform(expr.vector_selector)
        case AggregateExpr():
            result = transform(expr)
            expr.expr = traverse(expr.expr, transform)
            return result
        case Call():
            for arg in expr.args:
                traverse(arg, transform)
        case BinaryExpr():
            result = transform(expr)
            expr.lhs = traverse(expr.lhs, transform)
            expr.rhs = traverse(expr.rhs, transform)
            return result
        case UnaryExpr() | ParenExpr() | SubqueryExpr():
            expr.expr = traverse(expr.expr, transform)
    return expr


BottomUpTransform = Callable[[Optional[Slot], Slot], bool]


def traverse_bottom_up(
    parent: Optional[Slot], current: Slot, transform: BottomUpTransform
) -> bool:
    """Call ``transform(parent, current)`` on nodes from the leaves up.

    Both arguments are slots, so ``transform`` may replace either node.
    A true result from ``transform`` stops the walk towards the root.
    Returns whether the walk was stopped.
    """
    node = current.value
    match node:
        case NumberLiteral():
            return False
        case StepInvariantExpr():
            return traverse_bottom_up(current, Slot(node, "expr"), transform)
        case VectorSelector():
            return transform(parent, current)
        case MatrixSelector():
            return transform(parent, Slot(node, "vector_selector"))
        case AggregateExpr():
            if traverse_bottom_up(current, Slot(node, "expr"), transform):
                return True
            return transform(parent, current)
        case Call():
            for index, _arg in enumerate(node.args):
                if traverse_bottom_up(current, Slot(node.args, index), transform):
                    return True
            return transform(parent, current)
        case BinaryExpr():
            lstop = traverse_bottom_up(current, Slot(node, "lhs"), transform)
            rstop = traverse_bottom_up(current, Slot(node, "rhs"), transform)
            if lstop or rstop:
                return True
            return transform(parent, current)
        case UnaryExpr() | ParenExpr() | SubqueryExpr():
            return traverse_bottom_up(current, Slot(node, "expr"), transform)
    return True