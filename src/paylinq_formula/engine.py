"""Configured entry point for the payroll calculation pipeline.

``FormulaEngine`` wires a parser and executor from configuration and
records parse/execution outcomes as structured events.  The parser and
executor themselves stay free of side effects; all logging happens here.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Iterable, Mapping

from paylinq_formula.config import load_config
from paylinq_formula.formulas.errors import (
    DivisionByZeroError,
    ExecutionError,
    ParseError,
)
from paylinq_formula.formulas.executor import ExecutionResult, FormulaExecutor
from paylinq_formula.formulas.formatter import format_formula
from paylinq_formula.formulas.nodes import NODE_TYPES, Node
from paylinq_formula.formulas.parser import FormulaParser
from paylinq_formula.formulas.validation import (
    DryRunResult,
    ValidationResult,
    dry_run,
    validate_formula,
)
from paylinq_formula.logging.events import (
    FORMULA_DIVISION_BY_ZERO,
    FORMULA_EXECUTION_ERROR,
    FORMULA_SYNTAX_ERROR,
    EventLevel,
    EventType,
    emit,
    formula_sha256,
    make_formula_event,
)
from paylinq_formula.logging.sink import EventSink

# Trees whose formula hash is remembered per engine.
_HASH_CACHE_SIZE = 1024


class FormulaEngine:
    """Parse and execute payroll formulas with configured limits.

    Parse once, execute many times::

        engine = FormulaEngine.from_config(project_dir)
        tree = engine.parse("overtime_hours * overtime_rate")
        for employee in run:
            engine.execute(tree, employee.bindings, run_id=run.id)

    Events go to the engine's own *sink*; an engine without one does not
    log.
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        sink: EventSink | None = None,
    ) -> None:
        self.config = load_config(overrides=config)
        self.parser = FormulaParser(
            max_length=self.config["max_formula_length"],
            max_depth=self.config["max_depth"],
        )
        self.executor = FormulaExecutor(
            rel_tol=self.config["equality_rel_tol"],
            abs_tol=self.config["equality_abs_tol"],
        )
        self.sink = sink if self.config["logging_enabled"] else None
        self._hash_lock = threading.Lock()
        self._hashes: dict[int, tuple[Node, str]] = {}

    @classmethod
    def from_config(cls, config_dir: Path) -> FormulaEngine:
        """Build an engine from ``<config_dir>/paylinq_formula.yaml``.

        When logging is enabled, events go to ``<config_dir>/logs``.
        """
        config = load_config(Path(config_dir))
        sink = None
        if config["logging_enabled"]:
            sink = EventSink(
                Path(config_dir) / "logs",
                fsync=config["logging_fsync"],
                tail_bytes=config["logging_tail_bytes"],
            )
        return cls(config, sink=sink)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def parse(self, text: str, *, formula_id: str | None = None) -> Node:
        """Parse *text*; see ``FormulaParser.parse``."""
        try:
            tree = self.parser.parse(text)
        except ParseError as exc:
            self._emit(
                EventType.formula_parse_failed,
                EventLevel.error,
                exc.message,
                formula=text if isinstance(text, str) else None,
                formula_id=formula_id,
                error_code=FORMULA_SYNTAX_ERROR,
                extra={"position": exc.position},
            )
            raise
        self._emit_for_tree(
            tree,
            EventType.formula_parsed,
            EventLevel.info,
            "Formula parsed",
            formula_id=formula_id,
        )
        return tree

    def execute(
        self,
        tree: Node | None,
        bindings: Mapping[str, Any] | None,
        *,
        run_id: str | None = None,
        formula_id: str | None = None,
    ) -> ExecutionResult:
        """Execute a parsed formula; see ``FormulaExecutor.execute``.

        Args:
            run_id: Payroll run identifier; events are also written to
                that run's log.
            formula_id: Host identifier for the formula, for attribution.
        """
        try:
            result = self.executor.execute(tree, bindings)
        except DivisionByZeroError as exc:
            self._emit_for_tree(
                tree,
                EventType.formula_division_by_zero,
                EventLevel.error,
                str(exc),
                run_id=run_id,
                formula_id=formula_id,
                error_code=FORMULA_DIVISION_BY_ZERO,
            )
            raise
        except ExecutionError as exc:
            self._emit_for_tree(
                tree,
                EventType.formula_execution_failed,
                EventLevel.error,
                str(exc),
                run_id=run_id,
                formula_id=formula_id,
                error_code=FORMULA_EXECUTION_ERROR,
                extra={"error_type": type(exc).__name__},
            )
            raise
        self._emit_for_tree(
            tree,
            EventType.formula_executed,
            EventLevel.info,
            "Formula executed",
            run_id=run_id,
            formula_id=formula_id,
            extra={
                "variables_used": result.metadata.variables_used,
                "execution_time_ms": round(result.metadata.execution_time * 1000, 3),
            },
        )
        return result

    def evaluate(
        self,
        text: str,
        bindings: Mapping[str, Any] | None,
        *,
        run_id: str | None = None,
        formula_id: str | None = None,
    ) -> ExecutionResult:
        """Parse and execute *text* in one call."""
        tree = self.parse(text, formula_id=formula_id)
        return self.execute(tree, bindings, run_id=run_id, formula_id=formula_id)

    def validate(self, text: str, known_variables: Iterable[str] | None = None) -> ValidationResult:
        """Static checks for a formula editor; never raises for bad formulas."""
        result = validate_formula(text, known_variables, parser=self.parser)
        self._emit(
            EventType.formula_validated,
            EventLevel.info if result.valid else EventLevel.warning,
            "Formula is valid" if result.valid else "Formula has validation errors",
            formula=text if isinstance(text, str) else None,
            extra={"issue_codes": [issue.code for issue in result.errors]},
        )
        return result

    def dry_run(self, text: str, bindings: Mapping[str, Any]) -> DryRunResult:
        """Evaluate against sample values, capturing failures in the result."""
        return dry_run(text, bindings, parser=self.parser, executor=self.executor)

    def tree_sha256(self, tree: Node) -> str:
        """SHA-256 of the canonical text of *tree*, cached per tree object."""
        key = id(tree)
        with self._hash_lock:
            entry = self._hashes.get(key)
            # The cached tree is kept alive, so its id cannot be reused.
            if entry is not None and entry[0] is tree:
                return entry[1]
        digest = formula_sha256(format_formula(tree))
        with self._hash_lock:
            if len(self._hashes) >= _HASH_CACHE_SIZE:
                self._hashes.pop(next(iter(self._hashes)))
            self._hashes[key] = (tree, digest)
        return digest

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _emit(
        self,
        event_type: EventType,
        level: EventLevel,
        message: str,
        *,
        formula: str | None = None,
        formula_id: str | None = None,
        run_id: str | None = None,
        error_code: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        if self.sink is None:
            return
        event = make_formula_event(
            event_type,
            level,
            message,
            formula=formula,
            formula_id=formula_id,
            error_code=error_code,
            extra=extra,
        )
        emit(event, run_id=run_id, sink=self.sink)

    def _emit_for_tree(
        self,
        tree: Node | None,
        event_type: EventType,
        level: EventLevel,
        message: str,
        *,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        if self.sink is None:
            return
        # Executed trees are identified by the hash of their canonical text.
        context = dict(extra or {})
        if isinstance(tree, NODE_TYPES):
            context["formula_sha256"] = self.tree_sha256(tree)
        self._emit(event_type, level, message, extra=context, **kwargs)
