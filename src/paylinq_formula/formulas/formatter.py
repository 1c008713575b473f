"""Render an AST back to canonical formula text."""

from __future__ import annotations

from paylinq_formula.formulas.nodes import (
    BinaryOp,
    BinaryOperator,
    FunctionCall,
    Literal,
    Node,
    Ternary,
    UnaryOp,
    UnaryOperator,
    Variable,
)

# Binding strength, matching the grammar in parser.py.
_TERNARY = 1
_UNARY = 8
_ATOM = 9

_BINARY_PRECEDENCE: dict[BinaryOperator, int] = {
    BinaryOperator.or_: 2,
    BinaryOperator.and_: 3,
    BinaryOperator.eq: 5,
    BinaryOperator.ne: 5,
    BinaryOperator.lt: 5,
    BinaryOperator.le: 5,
    BinaryOperator.gt: 5,
    BinaryOperator.ge: 5,
    BinaryOperator.add: 6,
    BinaryOperator.sub: 6,
    BinaryOperator.mul: 7,
    BinaryOperator.div: 7,
    BinaryOperator.mod: 7,
}

_NOT = 4


def format_formula(root: Node) -> str:
    """Return canonical text for *root*.

    Binary operators are surrounded by single spaces and parentheses are
    only emitted where precedence requires them, so
    ``parse_formula(format_formula(tree)) == tree`` for any parsed tree.
    """
    text, _ = _render(root)
    return text


def format_number(value: float) -> str:
    """Shortest text for *value* that parses back to the same float."""
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)


def _wrap(part: tuple[str, int], minimum: int) -> str:
    text, prec = part
    if prec < minimum:
        return f"({text})"
    return text


def _render(node: Node) -> tuple[str, int]:
    if isinstance(node, Literal):
        text = format_number(node.value)
        return text, (_UNARY if node.value < 0 else _ATOM)

    if isinstance(node, Variable):
        return node.name, _ATOM

    if isinstance(node, FunctionCall):
        args = ", ".join(_render(arg)[0] for arg in node.args)
        return f"{node.name}({args})", _ATOM

    if isinstance(node, UnaryOp):
        if node.op is UnaryOperator.neg:
            return "-" + _wrap(_render(node.operand), _UNARY), _UNARY
        return "NOT " + _wrap(_render(node.operand), _NOT), _NOT

    if isinstance(node, BinaryOp):
        prec = _BINARY_PRECEDENCE[node.op]
        # Left-associative: an equal-precedence right operand needs parens.
        left = _wrap(_render(node.left), prec)
        right = _wrap(_render(node.right), prec + 1)
        return f"{left} {node.op.value} {right}", prec

    if isinstance(node, Ternary):
        condition = _wrap(_render(node.condition), _TERNARY + 1)
        then_text = _render(node.then_branch)[0]
        else_text = _render(node.else_branch)[0]
        return f"{condition} ? {then_text} : {else_text}", _TERNARY

    raise TypeError(f"Unknown node type: {type(node).__name__}")
