"""Selector node that narrows a broader selection with extra matchers."""

from __future__ import annotations

from dataclasses import dataclass, field

from .nodes import Expr, Matcher, PositionRange, ValueType, VectorSelector

__all__ = ["FilteredSelector"]


@dataclass
class FilteredSelector(Expr):
    """A vector selector whose result is further filtered by ``filters``."""

    vector_selector: VectorSelector
    filters: list[Matcher] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.vector_selector.name

    @property
    def label_matchers(self) -> list[Matcher]:
        return self.vector_selector.label_matchers

    def value_type(self) -> ValueType:
        return ValueType.VECTOR

    def position_range(self) -> PositionRange:
        return PositionRange()

    def __str__(self) -> str:
        filters = " ".join(str(m) for m in self.filters)
        return f"filter([{filters}], {self.vector_selector})"