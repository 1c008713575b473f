"""paylinq_formula -- payroll formula engine.

Parses payroll formulas (overtime pay, tiered bonuses, tax withholding,
safe-division ratios) into immutable ASTs and evaluates them against
per-employee numeric bindings.
"""

__version__ = "0.1.0"

from paylinq_formula.engine import FormulaEngine
from paylinq_formula.formulas import (
    DivisionByZeroError,
    ExecutionError,
    ExecutionResult,
    FormulaError,
    ParseError,
    execute_formula,
    parse_formula,
)

__all__ = [
    "DivisionByZeroError",
    "ExecutionError",
    "ExecutionResult",
    "FormulaEngine",
    "FormulaError",
    "ParseError",
    "__version__",
    "execute_formula",
    "parse_formula",
]
