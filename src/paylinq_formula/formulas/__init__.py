"""Payroll formula parsing and execution.

Public API::

    from paylinq_formula.formulas import parse_formula, execute_formula

    tree = parse_formula("IF(gross_pay > 3000, 150, 100)")
    result = execute_formula(tree, {"gross_pay": 5000})
    result.value                      # 150.0
    result.metadata.variables_used    # ["gross_pay"]
"""

from paylinq_formula.formulas.builtins import BUILTIN_FUNCTIONS, Builtin
from paylinq_formula.formulas.errors import (
    ENGINE_ERRORS,
    DivisionByZeroError,
    ExecutionError,
    FormulaError,
    FunctionError,
    InvalidVariableError,
    ParseError,
    UnknownVariableError,
)
from paylinq_formula.formulas.executor import (
    ExecutionMetadata,
    ExecutionResult,
    FormulaExecutor,
    execute_formula,
)
from paylinq_formula.formulas.formatter import format_formula
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
from paylinq_formula.formulas.parser import (
    FormulaParser,
    extract_variables,
    parse_formula,
    tokenize,
)
from paylinq_formula.formulas.validation import (
    DryRunResult,
    ValidationIssue,
    ValidationResult,
    dry_run,
    validate_formula,
)

__all__ = [
    "BUILTIN_FUNCTIONS",
    "BinaryOp",
    "BinaryOperator",
    "Builtin",
    "DivisionByZeroError",
    "DryRunResult",
    "ENGINE_ERRORS",
    "ExecutionError",
    "ExecutionMetadata",
    "ExecutionResult",
    "FormulaError",
    "FormulaExecutor",
    "FormulaParser",
    "FunctionCall",
    "FunctionError",
    "InvalidVariableError",
    "Literal",
    "Node",
    "ParseError",
    "Ternary",
    "UnaryOp",
    "UnaryOperator",
    "UnknownVariableError",
    "ValidationIssue",
    "ValidationResult",
    "Variable",
    "dry_run",
    "execute_formula",
    "extract_variables",
    "format_formula",
    "parse_formula",
    "tokenize",
    "validate_formula",
]
