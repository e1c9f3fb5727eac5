"""Catalogue of the functions of the expression language and their signatures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .nodes import ValueType

__all__ = ["Function", "FUNCTIONS", "get_function"]


@dataclass(frozen=True)
class Function:
    """A function: its name, argument types, variadic count and return type.

    ``variadic`` is the number of trailing arguments that may be left out;
    -1 means the last argument type may repeat without limit.
    """

    name: str
    arg_types: tuple[ValueType, ...]
    return_type: ValueType
    variadic: int = 0


_V = ValueType.VECTOR
_S = ValueType.SCALAR
_M = ValueType.MATRIX
_STR = ValueType.STRING


def _fn(
    name: str, *arg_types: ValueType, returns: ValueType = _V, variadic: int = 0
) -> Function:
    return Function(name, tuple(arg_types), returns, variadic)


FUNCTIONS: dict[str, Function] = {
    f.name: f
    for f in (
        _fn("abs", _V),
        _fn("absent", _V),
        _fn("absent_over_time", _M),
        _fn("acos", _V),
        _fn("acosh", _V),
        _fn("asin", _V),
        _fn("asinh", _V),
        _fn("atan", _V),
        _fn("atanh", _V),
        _fn("avg_over_time", _M),
        _fn("ceil", _V),
        _fn("changes", _M),
        _fn("clamp", _V, _S, _S),
        _fn("clamp_max", _V, _S),
        _fn("clamp_min", _V, _S),
        _fn("cos", _V),
        _fn("cosh", _V),
        _fn("count_over_time", _M),
        _fn("days_in_month", _V, variadic=1),
        _fn("day_of_month", _V, variadic=1),
        _fn("day_of_week", _V, variadic=1),
        _fn("day_of_year", _V, variadic=1),
        _fn("deg", _V),
        _fn("delta", _M),
        _fn("deriv", _M),
        _fn("exp", _V),
        _fn("floor", _V),
        _fn("histogram_count", _V),
        _fn("histogram_sum", _V),
        _fn("histogram_fraction", _S, _S, _V),
        _fn("histogram_quantile", _S, _V),
        _fn("holt_winters", _M, _S, _S),
        _fn("hour", _V, variadic=1),
        _fn("idelta", _M),
        _fn("increase", _M),
        _fn("irate", _M),
        _fn("label_replace", _V, _STR, _STR, _STR, _STR),
        _fn("label_join", _V, _STR, _STR, _STR, variadic=-1),
        _fn("last_over_time", _M),
        _fn("ln", _V),
        _fn("log10", _V),
        _fn("log2", _V),
        _fn("max_over_time", _M),
        _fn("min_over_time", _M),
        _fn("minute", _V, variadic=1),
        _fn("month", _V, variadic=1),
        _fn("pi", returns=_S),
        _fn("predict_linear", _M, _S),
        _fn("present_over_time", _M),
        _fn("quantile_over_time", _S, _M),
        _fn("rad", _V),
        _fn("rate", _M),
        _fn("resets", _M),
        _fn("round", _V, _S, variadic=1),
        _fn("scalar", _V, returns=_S),
        _fn("sgn", _V),
        _fn("sin", _V),
        _fn("sinh", _V),
        _fn("sort", _V),
        _fn("sort_desc", _V),
        _fn("sqrt", _V),
        _fn("stddev_over_time", _M),
        _fn("stdvar_over_time", _M),
        _fn("sum_over_time", _M),
        _fn("tan", _V),
        _fn("tanh", _V),
        _fn("time", returns=_S),
        _fn("timestamp", _V),
        _fn("vector", _S),
        _fn("year", _V, variadic=1),
    )
}


def get_function(name: str) -> Optional[Function]:
    """Return the function called ``name``, or None if there is none."""
    return FUNCTIONS.get(name)