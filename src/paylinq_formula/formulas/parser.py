"""Lark-based parser for payroll formulas.

Supports:
- Numeric literals: ``42``, ``37.5``, ``.5``, ``1e3``
- Variable references: ``gross_pay``
- Arithmetic, comparisons, logical AND/OR/NOT, ternary ``?:``
- Builtin function calls: ``MIN(a, b)``, ``IF(cond, a, b)``, ...

The Lark parse tree is converted into the immutable node model of
:mod:`paylinq_formula.formulas.nodes` before it is returned.
"""

from __future__ import annotations

import math

from lark import Lark, Token
from lark.visitors import Transformer_NonRecursive
from lark.exceptions import (
    UnexpectedCharacters,
    UnexpectedEOF,
    UnexpectedInput,
    UnexpectedToken,
    VisitError,
)

from paylinq_formula.formulas.errors import ParseError
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
    children,
    tree_depth,
)

# LALR(1) grammar for payroll formulas.
# Operator precedence (lowest to highest):
#   1. Ternary: ? :  (right-associative)
#   2. Logical OR: OR ||
#   3. Logical AND: AND &&
#   4. Logical NOT: NOT !
#   5. Equality/relational: == != < <= > >=
#   6. Additive: + -
#   7. Multiplicative: * / %
#   8. Unary minus
#   9. Atoms: number, function call, variable, parenthesized expr
GRAMMAR = r"""
?start: ternary

?ternary: or_expr
    | or_expr "?" ternary ":" ternary  -> ternary

?or_expr: and_expr
    | or_expr OR and_expr  -> or_

?and_expr: not_expr
    | and_expr AND not_expr  -> and_

?not_expr: comparison
    | NOT not_expr  -> not_

?comparison: additive
    | comparison "==" additive  -> eq
    | comparison "!=" additive  -> ne
    | comparison "<=" additive  -> le
    | comparison ">=" additive  -> ge
    | comparison "<" additive   -> lt
    | comparison ">" additive   -> gt

?additive: multiplicative
    | additive "+" multiplicative  -> add
    | additive "-" multiplicative  -> sub

?multiplicative: unary
    | multiplicative "*" unary  -> mul
    | multiplicative "/" unary  -> div
    | multiplicative "%" unary  -> mod

?unary: atom
    | "-" unary  -> neg

?atom: NUMBER                 -> number
    | NAME "(" [args] ")"     -> func_call
    | NAME                    -> variable
    | "(" ternary ")"

args: ternary ("," ternary)*

// Keywords are whole words, case-insensitive; ``and_rate`` stays a NAME.
AND.2: /[Aa][Nn][Dd]\b/ | "&&"
OR.2: /[Oo][Rr]\b/ | "||"
NOT.2: /[Nn][Oo][Tt]\b/ | /!(?!=)/

NUMBER: /([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?/
NAME: /[A-Za-z_][A-Za-z0-9_]*/

%import common.WS
%ignore WS
"""

DEFAULT_MAX_LENGTH = 4096
DEFAULT_MAX_DEPTH = 64

# Upper bound for a configured max_depth; the executor recurses once or
# more per level and must stay under the interpreter recursion limit.
MAX_DEPTH_LIMIT = 150

_lark = Lark(GRAMMAR, parser="lalr", lexer="basic", start="start")

_TOKEN_LABELS = {
    "$END": "end of formula",
    "RPAR": "')'",
    "LPAR": "'('",
    "COMMA": "','",
    "COLON": "':'",
    "QMARK": "'?'",
}


class _NodeBuilder(Transformer_NonRecursive):
    """Convert a Lark parse tree into formula nodes.

    Non-recursive so that very deep input reaches the depth check as a
    ``ParseError`` instead of overflowing the Python stack.
    """

    def number(self, children: list) -> Literal:
        token = children[0]
        value = float(token)
        if not math.isfinite(value):
            raise ParseError(
                f"Numeric literal out of range: {str(token)!r}",
                position=token.start_pos,
            )
        return Literal(value)

    def variable(self, children: list) -> Variable:
        return Variable(str(children[0]))

    def func_call(self, children: list) -> FunctionCall:
        name, *rest = children
        args = rest[0] if rest and rest[0] is not None else []
        return FunctionCall(str(name), tuple(args))

    def args(self, children: list) -> list[Node]:
        return list(children)

    def ternary(self, children: list) -> Ternary:
        condition, then_branch, else_branch = children
        return Ternary(condition, then_branch, else_branch)

    def neg(self, children: list) -> UnaryOp:
        return UnaryOp(UnaryOperator.neg, children[0])

    # Keyword tokens stay in the children list: [NOT, operand] and
    # [left, AND/OR, right].

    def not_(self, children: list) -> UnaryOp:
        return UnaryOp(UnaryOperator.not_, children[-1])

    def and_(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.and_, children[0], children[-1])

    def or_(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.or_, children[0], children[-1])

    # Arithmetic

    def add(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.add, children[0], children[1])

    def sub(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.sub, children[0], children[1])

    def mul(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.mul, children[0], children[1])

    def div(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.div, children[0], children[1])

    def mod(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.mod, children[0], children[1])

    # Comparison

    def eq(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.eq, children[0], children[1])

    def ne(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.ne, children[0], children[1])

    def lt(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.lt, children[0], children[1])

    def le(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.le, children[0], children[1])

    def gt(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.gt, children[0], children[1])

    def ge(self, children: list) -> BinaryOp:
        return BinaryOp(BinaryOperator.ge, children[0], children[1])


class FormulaParser:
    """Parse formula text into an AST, with length and nesting limits.

    Instances hold no per-call state and can be shared between threads.
    """

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_LENGTH,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        if max_length < 1:
            raise ValueError("max_length must be positive")
        if not 1 <= max_depth <= MAX_DEPTH_LIMIT:
            raise ValueError(f"max_depth must be between 1 and {MAX_DEPTH_LIMIT}")
        self.max_length = max_length
        self.max_depth = max_depth

    def parse(self, text: str) -> Node:
        """Parse a formula string into an AST root node.

        Args:
            text: The formula text, e.g. ``"gross_pay * 0.10"``.

        Returns:
            The root node of an immutable AST.

        Raises:
            ParseError: If the formula is empty, too long, too deeply
                nested, or has invalid syntax.
        """
        _check_text(text)
        if len(text) > self.max_length:
            raise ParseError(
                f"Formula exceeds maximum length of {self.max_length} characters",
                position=self.max_length,
            )
        try:
            tree = _lark.parse(text)
        except UnexpectedInput as exc:
            raise _translate_lark_error(exc, text) from exc

        try:
            root = _NodeBuilder().transform(tree)
        except VisitError as exc:
            if isinstance(exc.orig_exc, ParseError):
                raise exc.orig_exc from None
            raise

        depth = tree_depth(root)
        if depth > self.max_depth:
            raise ParseError(
                f"Formula nesting depth {depth} exceeds maximum of {self.max_depth}"
            )
        return root


_default_parser = FormulaParser()


def parse_formula(text: str) -> Node:
    """Parse *text* with the default limits.

    Raises:
        ParseError: If the formula has invalid syntax.
    """
    return _default_parser.parse(text)


def tokenize(text: str) -> list[Token]:
    """Split formula text into Lark tokens (numbers, names, operators, punctuation).

    Raises:
        ParseError: On blank input or an unknown character.
    """
    _check_text(text)
    try:
        return list(_lark.lex(text))
    except UnexpectedInput as exc:
        raise _translate_lark_error(exc, text) from exc


def _check_text(text: object) -> None:
    if not isinstance(text, str):
        raise ParseError(f"Formula must be a string, got {type(text).__name__}")
    if not text.strip():
        raise ParseError("Formula must be a non-empty string", position=0)


def _paren_balance(text: str) -> int:
    """Return open-minus-close parenthesis count, or -1 on an early close."""
    depth = 0
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return -1
    return depth


def _translate_lark_error(exc: UnexpectedInput, text: str) -> ParseError:
    pos = getattr(exc, "pos_in_stream", None)
    if pos is None or pos < 0:
        pos = len(text)

    if isinstance(exc, UnexpectedCharacters):
        char = text[pos] if pos < len(text) else ""
        return ParseError(f"Unexpected character {char!r}", position=pos)

    if _paren_balance(text) != 0:
        return ParseError("Unbalanced parentheses", position=pos)

    if isinstance(exc, UnexpectedEOF):
        return ParseError("Unexpected end of formula", position=len(text))

    if isinstance(exc, UnexpectedToken):
        token = exc.token
        if token.type == "$END":
            return ParseError("Unexpected end of formula", position=len(text))
        label = _TOKEN_LABELS.get(token.type, repr(str(token)))
        return ParseError(f"Unexpected token {label}", position=pos)

    return ParseError(str(exc), position=pos)


def extract_variables(root: Node) -> list[str]:
    """Collect every variable name referenced anywhere in *root*.

    This is a static listing: names in both branches of a ternary or
    ``IF`` are included.  Compare ``ExecutionMetadata.variables_used``,
    which only lists names read on the path actually taken.

    Returns:
        Names in first-appearance (left-to-right) order, without duplicates.
    """
    seen: dict[str, None] = {}
    stack: list[Node] = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, Variable):
            seen.setdefault(node.name, None)
            continue
        stack.extend(reversed(children(node)))
    return list(seen)
