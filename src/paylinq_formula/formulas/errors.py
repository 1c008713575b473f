"""Error types for formula parsing and execution."""

from __future__ import annotations

from typing import Any


class FormulaError(Exception):
    """Base class for all formula-related errors."""


class ParseError(FormulaError):
    """Syntax error in a formula expression.

    Raised at authoring time, before any bindings are involved.

    Attributes:
        position: Character offset where the error was detected.
        message: Human-readable description (without the position suffix).
    """

    def __init__(self, message: str, position: int | None = None) -> None:
        self.position = position
        self.message = message
        full = f"Formula parse error: {message}"
        if position is not None:
            full += f" (at position {position})"
        super().__init__(full)


class ExecutionError(FormulaError):
    """Runtime fault while evaluating a parsed formula."""


class DivisionByZeroError(ExecutionError):
    """Right-hand operand of ``/`` or ``%`` was zero.

    Attributes:
        operator: The operator symbol that failed.
    """

    def __init__(self, operator: str = "/") -> None:
        self.operator = operator
        verb = "Division" if operator == "/" else "Modulo"
        super().__init__(f"{verb} by zero in formula")


class UnknownVariableError(ExecutionError):
    """Reference to a variable that is not bound.

    Attributes:
        name: The unresolved variable.
        available: Names that were bound for this evaluation.
    """

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        self.name = name
        self.available = available or []
        msg = f"Variable {name!r} is not defined"
        if self.available:
            msg += f". Available: {self.available}"
        super().__init__(msg)


class InvalidVariableError(ExecutionError):
    """Variable bound to something that is not a finite real number.

    Attributes:
        name: The offending variable.
        value: The bound value.
    """

    def __init__(self, name: str, value: Any) -> None:
        self.name = name
        self.value = value
        super().__init__(
            f"Variable {name!r} has invalid numeric value "
            f"({type(value).__name__})"
        )


class FunctionError(ExecutionError):
    """Unknown function or wrong number of arguments.

    Attributes:
        func_name: The function that caused the error.
    """

    def __init__(self, func_name: str, message: str | None = None) -> None:
        self.func_name = func_name
        msg = message or f"Unknown function: {func_name!r}"
        super().__init__(msg)


# Every exception the engine raises for a bad formula or bad bindings.
ENGINE_ERRORS: tuple[type[Exception], ...] = (FormulaError,)
