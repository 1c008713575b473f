"""Builtin formula functions: MIN, MAX, ROUND, FLOOR, CEIL, ABS, IF.

The table is built once at import and exposed read-only.  Eager
functions receive evaluated float arguments; lazy functions receive the
unevaluated argument nodes plus an ``evaluate`` callback, so they decide
which arguments are evaluated at all.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from types import MappingProxyType
from typing import Any, Callable, Mapping

from paylinq_formula.formulas.errors import FunctionError

# ROUND accepts decimal places in [-MAX_ROUND_PLACES, MAX_ROUND_PLACES].
MAX_ROUND_PLACES = 15


@dataclass(frozen=True)
class Builtin:
    """A function callable from formulas.

    Attributes:
        name: Upper-case name used in formulas.
        arity: Exact number of arguments.
        fn: Implementation.
        lazy: If True, *fn* is called as ``fn(arg_nodes, evaluate)``.
    """

    name: str
    arity: int
    fn: Callable[..., float]
    lazy: bool = False


def _fn_min(args: list[float]) -> float:
    return min(args[0], args[1])


def _fn_max(args: list[float]) -> float:
    return max(args[0], args[1])


def _fn_abs(args: list[float]) -> float:
    return abs(args[0])


def _fn_floor(args: list[float]) -> float:
    return float(math.floor(args[0]))


def _fn_ceil(args: list[float]) -> float:
    return float(math.ceil(args[0]))


def _fn_round(args: list[float]) -> float:
    """ROUND(value, places): half away from zero, on the decimal value.

    ``ROUND(2.675, 2)`` is ``2.68`` even though the binary float is
    slightly below 2.675.
    """
    value, places = args
    if not float(places).is_integer():
        raise FunctionError("ROUND", "ROUND decimal places must be a whole number")
    places = int(places)
    if abs(places) > MAX_ROUND_PLACES:
        raise FunctionError(
            "ROUND",
            f"ROUND decimal places must be between -{MAX_ROUND_PLACES} "
            f"and {MAX_ROUND_PLACES}",
        )
    quantum = Decimal(1).scaleb(-places)
    with localcontext() as ctx:
        # Enough digits for any finite double at the finest quantum.
        ctx.prec = 400
        try:
            rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
        except InvalidOperation as exc:
            raise FunctionError("ROUND", f"ROUND failed for {value!r}") from exc
    return float(rounded)


def _fn_if(raw_args: list[Any], evaluate: Callable[[Any], float]) -> float:
    """IF(condition, then_value, else_value), evaluating only the chosen branch."""
    condition = evaluate(raw_args[0])
    if condition != 0:
        return evaluate(raw_args[1])
    return evaluate(raw_args[2])


BUILTIN_FUNCTIONS: Mapping[str, Builtin] = MappingProxyType({
    "MIN": Builtin("MIN", 2, _fn_min),
    "MAX": Builtin("MAX", 2, _fn_max),
    "ROUND": Builtin("ROUND", 2, _fn_round),
    "FLOOR": Builtin("FLOOR", 1, _fn_floor),
    "CEIL": Builtin("CEIL", 1, _fn_ceil),
    "ABS": Builtin("ABS", 1, _fn_abs),
    "IF": Builtin("IF", 3, _fn_if, lazy=True),
})


def get_builtin(name: str) -> Builtin:
    """Look up a builtin by (case-insensitive) name.

    Raises:
        FunctionError: If no builtin has that name.
    """
    fn = BUILTIN_FUNCTIONS.get(name.upper())
    if fn is None:
        raise FunctionError(name)
    return fn


def check_arity(builtin: Builtin, count: int) -> None:
    """Raise ``FunctionError`` unless *count* matches the builtin's arity."""
    if count != builtin.arity:
        noun = "argument" if builtin.arity == 1 else "arguments"
        raise FunctionError(
            builtin.name,
            f"{builtin.name} requires exactly {builtin.arity} {noun}, got {count}",
        )
