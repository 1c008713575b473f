"""Authoring-time checks: static validation and sample-value dry runs.

Unlike ``parse_formula`` and ``execute_formula``, these helpers report
problems in their return value instead of raising, which suits a formula
editor that wants to list every issue at once.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from pydantic import BaseModel, Field

from paylinq_formula.formulas.builtins import BUILTIN_FUNCTIONS, Builtin
from paylinq_formula.formulas.errors import (
    ENGINE_ERRORS,
    DivisionByZeroError,
    ParseError,
)
from paylinq_formula.formulas.executor import FormulaExecutor
from paylinq_formula.formulas.nodes import FunctionCall, Node, children
from paylinq_formula.formulas.parser import FormulaParser, extract_variables

# Issue codes
SYNTAX_ERROR = "syntax_error"
UNKNOWN_FUNCTION = "unknown_function"
WRONG_ARITY = "wrong_arity"
UNKNOWN_VARIABLE = "unknown_variable"


class ValidationIssue(BaseModel):
    code: str
    message: str
    position: int | None = None


class ValidationResult(BaseModel):
    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    variables: list[str] = Field(default_factory=list)


class DryRunResult(BaseModel):
    """Outcome of evaluating a formula against sample values."""

    success: bool
    message: str
    value: float | None = None
    error: str | None = None
    error_type: str | None = None
    variables_used: list[str] = Field(default_factory=list)


def validate_formula(
    text: str,
    known_variables: Iterable[str] | None = None,
    *,
    parser: FormulaParser | None = None,
    functions: Mapping[str, Builtin] = BUILTIN_FUNCTIONS,
) -> ValidationResult:
    """Check a formula without evaluating it.

    Reports syntax errors, calls to unknown functions, calls with the
    wrong number of arguments and, when *known_variables* is given,
    references to variables outside that set.

    Args:
        text: Formula text.
        known_variables: Variable names the host will bind, or None to
            skip the variable check.
        parser: Parser to use (defaults to the standard limits).
        functions: Builtin table to check calls against.

    Returns:
        A ``ValidationResult``; ``valid`` is True only if no issues were found.
    """
    parser = parser or FormulaParser()
    try:
        root = parser.parse(text)
    except ParseError as exc:
        return ValidationResult(
            valid=False,
            errors=[ValidationIssue(code=SYNTAX_ERROR, message=exc.message, position=exc.position)],
        )

    errors = _check_calls(root, functions)
    variables = extract_variables(root)

    if known_variables is not None:
        known = set(known_variables)
        for name in variables:
            if name not in known:
                errors.append(ValidationIssue(
                    code=UNKNOWN_VARIABLE,
                    message=f"Variable {name!r} is not available",
                ))

    return ValidationResult(valid=not errors, errors=errors, variables=variables)


def _check_calls(root: Node, functions: Mapping[str, Builtin]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    stack: list[Node] = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, FunctionCall):
            builtin = functions.get(node.name)
            if builtin is None:
                issues.append(ValidationIssue(
                    code=UNKNOWN_FUNCTION,
                    message=f"Unknown function: {node.name!r}",
                ))
            elif len(node.args) != builtin.arity:
                issues.append(ValidationIssue(
                    code=WRONG_ARITY,
                    message=(
                        f"{node.name} requires exactly {builtin.arity} "
                        f"argument(s), got {len(node.args)}"
                    ),
                ))
        stack.extend(reversed(children(node)))
    return issues


def dry_run(
    text: str,
    bindings: Mapping[str, Any],
    *,
    parser: FormulaParser | None = None,
    executor: FormulaExecutor | None = None,
) -> DryRunResult:
    """Parse and evaluate *text* against sample *bindings*.

    Engine errors are captured in the result rather than raised.
    """
    parser = parser or FormulaParser()
    executor = executor or FormulaExecutor()
    try:
        result = executor.execute(parser.parse(text), bindings)
    except DivisionByZeroError as exc:
        return _failed(exc, "Formula test failed: division by zero")
    except ENGINE_ERRORS as exc:
        return _failed(exc, f"Formula test failed: {exc}")

    return DryRunResult(
        success=True,
        message="Formula is valid",
        value=result.value,
        variables_used=result.metadata.variables_used,
    )


def _failed(exc: Exception, message: str) -> DryRunResult:
    return DryRunResult(
        success=False,
        message=message,
        error=str(exc),
        error_type=type(exc).__name__,
    )
