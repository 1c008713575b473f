"""Immutable AST node model for payroll formulas.

The node set is closed: every tree produced by the parser is built from
the six classes below.  Nodes are frozen dataclasses, so a parsed tree can
be cached and shared across threads and evaluated any number of times.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Union


class UnaryOperator(str, Enum):
    neg = "-"
    not_ = "NOT"


class BinaryOperator(str, Enum):
    # Arithmetic
    add = "+"
    sub = "-"
    mul = "*"
    div = "/"
    mod = "%"

    # Comparison
    eq = "=="
    ne = "!="
    lt = "<"
    le = "<="
    gt = ">"
    ge = ">="

    # Logical
    and_ = "AND"
    or_ = "OR"


ARITHMETIC_OPERATORS = frozenset({
    BinaryOperator.add,
    BinaryOperator.sub,
    BinaryOperator.mul,
    BinaryOperator.div,
    BinaryOperator.mod,
})

COMPARISON_OPERATORS = frozenset({
    BinaryOperator.eq,
    BinaryOperator.ne,
    BinaryOperator.lt,
    BinaryOperator.le,
    BinaryOperator.gt,
    BinaryOperator.ge,
})

LOGICAL_OPERATORS = frozenset({BinaryOperator.and_, BinaryOperator.or_})


def _require_node(value: object, owner: str, field_name: str) -> None:
    if not isinstance(value, NODE_TYPES):
        raise TypeError(
            f"{owner}.{field_name} must be an AST node, got {type(value).__name__}"
        )


@dataclass(frozen=True)
class Literal:
    """Numeric constant."""

    value: float

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise TypeError(f"Literal.value must be a number, got {type(self.value).__name__}")
        value = float(self.value)
        if not math.isfinite(value):
            raise ValueError(f"Literal.value must be finite, got {value!r}")
        object.__setattr__(self, "value", value)


@dataclass(frozen=True)
class Variable:
    """Reference to a binding by name."""

    name: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise TypeError("Variable.name must be a non-empty string")


@dataclass(frozen=True)
class UnaryOp:
    op: UnaryOperator
    operand: Node

    def __post_init__(self) -> None:
        object.__setattr__(self, "op", UnaryOperator(self.op))
        _require_node(self.operand, "UnaryOp", "operand")


@dataclass(frozen=True)
class BinaryOp:
    op: BinaryOperator
    left: Node
    right: Node

    def __post_init__(self) -> None:
        object.__setattr__(self, "op", BinaryOperator(self.op))
        _require_node(self.left, "BinaryOp", "left")
        _require_node(self.right, "BinaryOp", "right")


@dataclass(frozen=True)
class Ternary:
    """``condition ? then_branch : else_branch``."""

    condition: Node
    then_branch: Node
    else_branch: Node

    def __post_init__(self) -> None:
        _require_node(self.condition, "Ternary", "condition")
        _require_node(self.then_branch, "Ternary", "then_branch")
        _require_node(self.else_branch, "Ternary", "else_branch")


@dataclass(frozen=True)
class FunctionCall:
    """Call to a builtin function.

    The name is stored upper-cased; whether it exists and how many
    arguments it takes is checked by the executor, not here.
    """

    name: str
    args: tuple[Node, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise TypeError("FunctionCall.name must be a non-empty string")
        object.__setattr__(self, "name", self.name.upper())
        args = tuple(self.args)
        for i, arg in enumerate(args):
            _require_node(arg, "FunctionCall", f"args[{i}]")
        object.__setattr__(self, "args", args)


Node = Union[Literal, Variable, UnaryOp, BinaryOp, Ternary, FunctionCall]

NODE_TYPES: tuple[type, ...] = (Literal, Variable, UnaryOp, BinaryOp, Ternary, FunctionCall)


def children(node: Node) -> tuple[Node, ...]:
    """Return the direct child nodes of *node*, in source order."""
    if isinstance(node, (Literal, Variable)):
        return ()
    if isinstance(node, UnaryOp):
        return (node.operand,)
    if isinstance(node, BinaryOp):
        return (node.left, node.right)
    if isinstance(node, Ternary):
        return (node.condition, node.then_branch, node.else_branch)
    if isinstance(node, FunctionCall):
        return node.args
    raise TypeError(f"Unknown node type: {type(node).__name__}")


def tree_depth(node: Node) -> int:
    """Depth of the tree rooted at *node* (a leaf has depth 1).

    Iterative, so it is safe on trees deeper than the interpreter's
    recursion limit.
    """
    deepest = 0
    stack: list[tuple[Node, int]] = [(node, 1)]
    while stack:
        current, depth = stack.pop()
        if depth > deepest:
            deepest = depth
        for child in children(current):
            stack.append((child, depth + 1))
    return deepest
