"""Tree-walking executor for parsed payroll formulas.

Every value in the language is a float: comparisons and logical
operators return ``1.0`` or ``0.0``, and any nonzero value is true.
``AND``, ``OR``, the ternary operator and ``IF`` evaluate lazily, so a
variable that only appears on an untaken side does not need to be bound
and is not reported in ``variables_used``.
"""

from __future__ import annotations

import math
import numbers
import time
from decimal import Decimal
from typing import Any, Mapping

from pydantic import BaseModel, Field

from paylinq_formula.formulas.builtins import (
    BUILTIN_FUNCTIONS,
    Builtin,
    check_arity,
)
from paylinq_formula.formulas.errors import (
    DivisionByZeroError,
    ExecutionError,
    FunctionError,
    InvalidVariableError,
    UnknownVariableError,
)
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

# Absolute epsilon for comparisons; absorbs drift such as 0.1 + 0.2 vs 0.3.
# The relative term is 0 by default so a one-cent difference stays visible
# at any payroll magnitude.
DEFAULT_REL_TOL = 0.0
DEFAULT_ABS_TOL = 1e-9


class ExecutionMetadata(BaseModel):
    """Details about one evaluation."""

    variables_used: list[str] = Field(default_factory=list)
    execution_time: float = Field(default=0.0, ge=0.0)


class ExecutionResult(BaseModel):
    """Numeric result of a formula plus evaluation metadata."""

    value: float
    metadata: ExecutionMetadata = Field(default_factory=ExecutionMetadata)


class FormulaExecutor:
    """Evaluate formula ASTs against per-call bindings.

    The executor holds only configuration, so a single instance can be
    shared between threads; each call gets its own bookkeeping.
    """

    def __init__(
        self,
        rel_tol: float = DEFAULT_REL_TOL,
        abs_tol: float = DEFAULT_ABS_TOL,
        functions: Mapping[str, Builtin] = BUILTIN_FUNCTIONS,
    ) -> None:
        if rel_tol < 0 or abs_tol < 0:
            raise ValueError("Tolerances must be non-negative")
        self.rel_tol = rel_tol
        self.abs_tol = abs_tol
        self.functions = functions

    def execute(self, root: Node | None, bindings: Mapping[str, Any] | None) -> ExecutionResult:
        """Evaluate *root* against *bindings*.

        Args:
            root: AST from ``parse_formula()``.
            bindings: Mapping of variable names to finite real numbers.
                Never modified.

        Returns:
            The computed value with the variables read and the elapsed time.

        Raises:
            DivisionByZeroError: On ``/`` or ``%`` by zero.
            ExecutionError: On a missing or invalid variable, an unknown
                function, a wrong argument count, overflow, a tree too deep
                to evaluate, or a missing or malformed AST.
        """
        if root is None:
            raise ExecutionError("No formula AST to execute")
        if bindings is None:
            bindings = {}
        if not isinstance(bindings, Mapping):
            raise ExecutionError(
                f"Bindings must be a mapping, got {type(bindings).__name__}"
            )

        start = time.perf_counter()
        used: dict[str, None] = {}
        try:
            value = self._eval(root, bindings, used)
        except RecursionError as exc:
            raise ExecutionError("Formula is nested too deeply to evaluate") from exc
        elapsed = max(0.0, time.perf_counter() - start)

        return ExecutionResult(
            value=value,
            metadata=ExecutionMetadata(
                variables_used=list(used),
                execution_time=elapsed,
            ),
        )

    # ------------------------------------------------------------------
    # Node evaluation
    # ------------------------------------------------------------------

    def _eval(self, node: Node, bindings: Mapping[str, Any], used: dict[str, None]) -> float:
        if isinstance(node, Literal):
            return node.value

        if isinstance(node, Variable):
            value = _lookup(node.name, bindings)
            used.setdefault(node.name, None)
            return value

        if isinstance(node, BinaryOp):
            return self._eval_binary(node, bindings, used)

        if isinstance(node, UnaryOp):
            operand = self._eval(node.operand, bindings, used)
            if node.op is UnaryOperator.neg:
                return -operand
            if node.op is UnaryOperator.not_:
                return 0.0 if operand != 0 else 1.0
            raise ExecutionError(f"Unsupported operator: {node.op!r}")

        if isinstance(node, Ternary):
            condition = self._eval(node.condition, bindings, used)
            branch = node.then_branch if condition != 0 else node.else_branch
            return self._eval(branch, bindings, used)

        if isinstance(node, FunctionCall):
            return self._eval_func(node, bindings, used)

        raise ExecutionError(f"Unknown node type: {type(node).__name__}")

    def _eval_binary(self, node: BinaryOp, bindings: Mapping[str, Any], used: dict[str, None]) -> float:
        op = node.op
        left = self._eval(node.left, bindings, used)

        # Short-circuit before the right side is touched.
        if op is BinaryOperator.and_:
            if left == 0:
                return 0.0
            return 1.0 if self._eval(node.right, bindings, used) != 0 else 0.0
        if op is BinaryOperator.or_:
            if left != 0:
                return 1.0
            return 1.0 if self._eval(node.right, bindings, used) != 0 else 0.0

        right = self._eval(node.right, bindings, used)

        # Arithmetic
        if op is BinaryOperator.add:
            return _finite(left + right, op)
        if op is BinaryOperator.sub:
            return _finite(left - right, op)
        if op is BinaryOperator.mul:
            return _finite(left * right, op)
        if op is BinaryOperator.div:
            if right == 0:
                raise DivisionByZeroError("/")
            return _finite(left / right, op)
        if op is BinaryOperator.mod:
            if right == 0:
                raise DivisionByZeroError("%")
            return _finite(math.fmod(left, right), op)

        # Comparison
        # Exactly one of <, == and > holds for any pair.
        close = math.isclose(left, right, rel_tol=self.rel_tol, abs_tol=self.abs_tol)
        if op is BinaryOperator.eq:
            return 1.0 if close else 0.0
        if op is BinaryOperator.ne:
            return 0.0 if close else 1.0
        if op is BinaryOperator.lt:
            return 1.0 if left < right and not close else 0.0
        if op is BinaryOperator.le:
            return 1.0 if left < right or close else 0.0
        if op is BinaryOperator.gt:
            return 1.0 if left > right and not close else 0.0
        if op is BinaryOperator.ge:
            return 1.0 if left > right or close else 0.0

        raise ExecutionError(f"Unsupported operator: {op!r}")

    def _eval_func(self, node: FunctionCall, bindings: Mapping[str, Any], used: dict[str, None]) -> float:
        builtin = self.functions.get(node.name)
        if builtin is None:
            raise FunctionError(node.name)
        check_arity(builtin, len(node.args))

        if builtin.lazy:
            result = builtin.fn(
                list(node.args),
                lambda arg: self._eval(arg, bindings, used),
            )
        else:
            values = [self._eval(arg, bindings, used) for arg in node.args]
            result = builtin.fn(values)

        if not math.isfinite(result):
            raise ExecutionError(f"{node.name} produced a non-finite result")
        return result


def _lookup(name: str, bindings: Mapping[str, Any]) -> float:
    """Resolve a variable to a finite float, or raise."""
    if name not in bindings:
        raise UnknownVariableError(name, available=sorted(bindings.keys()))
    raw = bindings[name]
    if isinstance(raw, bool) or not isinstance(raw, (numbers.Real, Decimal)):
        raise InvalidVariableError(name, raw)
    try:
        value = float(raw)
    except (OverflowError, ValueError) as exc:
        raise InvalidVariableError(name, raw) from exc
    if not math.isfinite(value):
        raise InvalidVariableError(name, raw)
    return value


def _finite(value: float, op: BinaryOperator) -> float:
    if not math.isfinite(value):
        raise ExecutionError(f"Arithmetic overflow in {op.value!r}")
    return value


_default_executor = FormulaExecutor()


def execute_formula(root: Node | None, bindings: Mapping[str, Any] | None) -> ExecutionResult:
    """Evaluate *root* with the default tolerances and builtin table."""
    return _default_executor.execute(root, bindings)
