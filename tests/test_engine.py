"""Tests for the FormulaEngine facade."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from paylinq_formula import FormulaEngine, __version__
from paylinq_formula.config import CONFIG_FILENAME
from paylinq_formula.formulas import (
    DivisionByZeroError,
    ParseError,
    UnknownVariableError,
    format_formula,
)
from paylinq_formula.formulas.parser import MAX_DEPTH_LIMIT
from paylinq_formula.logging.events import formula_sha256, get_sink, set_log_dir


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    (tmp_path / CONFIG_FILENAME).write_text(yaml.dump({"max_depth": 32}))
    return tmp_path


def _events(engine: FormulaEngine) -> list[dict]:
    return engine.sink.read_global()


class TestEngineBasics:
    def test_version(self) -> None:
        assert __version__

    def test_evaluate(self) -> None:
        engine = FormulaEngine()
        assert engine.evaluate("gross_pay * 0.10", {"gross_pay": 5000}).value == 500

    def test_parse_once_execute_many(self) -> None:
        engine = FormulaEngine()
        tree = engine.parse("overtime_hours * overtime_rate")
        assert engine.execute(tree, {"overtime_hours": 10, "overtime_rate": 37.5}).value == 375
        assert engine.execute(tree, {"overtime_hours": 2, "overtime_rate": 40}).value == 80

    def test_config_limits(self) -> None:
        engine = FormulaEngine({"max_depth": 3})
        with pytest.raises(ParseError, match="nesting depth"):
            engine.parse("1 + 2 + 3 + 4")

    def test_config_tolerance(self) -> None:
        engine = FormulaEngine({"equality": {"abs_tol": 0.01}})
        assert engine.evaluate("a == b", {"a": 1.0, "b": 1.005}).value == 1
        assert FormulaEngine().evaluate("a == b", {"a": 1.0, "b": 1.005}).value == 0

    def test_invalid_config(self) -> None:
        with pytest.raises(ValueError):
            FormulaEngine({"max_depth": "deep"})

    def test_errors_propagate(self) -> None:
        engine = FormulaEngine()
        with pytest.raises(DivisionByZeroError):
            engine.evaluate("gross_pay / hours_worked", {"gross_pay": 5000, "hours_worked": 0})
        with pytest.raises(UnknownVariableError):
            engine.evaluate("gross_pay * 2", {})

    def test_validate_and_dry_run(self) -> None:
        engine = FormulaEngine()
        assert engine.validate("MIN(a, b)", ["a", "b"]).valid is True
        assert engine.validate("MIN(a)").valid is False
        assert engine.dry_run("MAX(MIN(15, 10), 5)", {}).value == 10


class TestEngineFromConfig:
    def test_reads_config_file(self, project_dir: Path) -> None:
        engine = FormulaEngine.from_config(project_dir)
        assert engine.config["max_depth"] == 32
        assert engine.parser.max_depth == 32

    def test_logs_parse_and_execute(self, project_dir: Path) -> None:
        engine = FormulaEngine.from_config(project_dir)
        result = engine.evaluate(
            "gross_pay * 0.10",
            {"gross_pay": 73519.27},
            run_id="run-2026-10",
            formula_id="bonus-10pct",
        )
        assert result.value == pytest.approx(7351.927)

        events = _events(engine)
        assert [e["event_type"] for e in events] == ["formula_executed", "formula_parsed"]
        executed = events[0]
        assert executed["level"] == "info"
        assert executed["context"]["formula_id"] == "bonus-10pct"
        assert executed["context"]["variables_used"] == ["gross_pay"]
        assert executed["context"]["execution_time_ms"] >= 0
        tree = engine.parse("gross_pay * 0.10")
        assert executed["context"]["formula_sha256"] == formula_sha256(format_formula(tree))

        run_events = engine.sink.read_run_log("run-2026-10")
        assert [e["event_type"] for e in run_events] == ["formula_executed"]

        raw = (project_dir / "logs" / "events.ndjson").read_text()
        assert "73519.27" not in raw
        assert "gross_pay * 0.10" not in raw

    def test_logs_parse_failure(self, project_dir: Path) -> None:
        engine = FormulaEngine.from_config(project_dir)
        with pytest.raises(ParseError):
            engine.parse("1 +")
        evt = _events(engine)[0]
        assert evt["event_type"] == "formula_parse_failed"
        assert evt["level"] == "error"
        assert evt["error_code"] == "formula_syntax_error"
        assert evt["context"]["position"] == 3
        assert evt["context"]["formula_sha256"] == formula_sha256("1 +")

    def test_logs_division_by_zero(self, project_dir: Path) -> None:
        engine = FormulaEngine.from_config(project_dir)
        with pytest.raises(DivisionByZeroError):
            engine.evaluate("gross_pay / hours_worked", {"gross_pay": 5000, "hours_worked": 0})
        evt = _events(engine)[0]
        assert evt["event_type"] == "formula_division_by_zero"
        assert evt["error_code"] == "formula_division_by_zero"

    def test_logs_execution_failure(self, project_dir: Path) -> None:
        engine = FormulaEngine.from_config(project_dir)
        with pytest.raises(UnknownVariableError):
            engine.evaluate("gross_pay * 2", {})
        evt = _events(engine)[0]
        assert evt["event_type"] == "formula_execution_failed"
        assert evt["error_code"] == "formula_execution_error"
        assert evt["context"]["error_type"] == "UnknownVariableError"

    def test_logs_validation(self, project_dir: Path) -> None:
        engine = FormulaEngine.from_config(project_dir)
        engine.validate("PAYE(gross_pay)")
        evt = _events(engine)[0]
        assert evt["event_type"] == "formula_validated"
        assert evt["level"] == "warning"
        assert evt["context"]["issue_codes"] == ["unknown_function"]

    def test_logging_disabled(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(yaml.dump({"logging_enabled": False}))
        engine = FormulaEngine.from_config(tmp_path)
        engine.evaluate("1 + 1", {})
        assert engine.sink is None
        assert not (tmp_path / "logs").exists()

    def test_engines_keep_their_own_logs(self, tmp_path: Path) -> None:
        first_dir = tmp_path / "first"
        second_dir = tmp_path / "second"
        first_dir.mkdir()
        second_dir.mkdir()
        first = FormulaEngine.from_config(first_dir)
        second = FormulaEngine.from_config(second_dir)

        first.evaluate("1 + 1", {}, run_id="run-a")
        second.evaluate("2 + 2", {}, run_id="run-b")

        assert len(first.sink.read_global()) == 2
        assert len(second.sink.read_global()) == 2
        assert first.sink.read_run_log("run-b") == []
        assert get_sink() is None

    def test_engine_without_sink_ignores_global_sink(self, tmp_path: Path) -> None:
        set_log_dir(tmp_path / "global")
        FormulaEngine().evaluate("1 + 1", {})
        assert get_sink().read_global() == []


class TestFormulaHashCache:
    def test_tree_hashed_once(self, project_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import paylinq_formula.engine as engine_mod

        calls: list[object] = []

        def counting_format(tree):
            calls.append(tree)
            return format_formula(tree)

        monkeypatch.setattr(engine_mod, "format_formula", counting_format)
        engine = FormulaEngine.from_config(project_dir)
        tree = engine.parse("hours_worked * hourly_rate")
        for hours in (40, 32, 38):
            engine.execute(tree, {"hours_worked": hours, "hourly_rate": 25})

        assert len(calls) == 1
        digests = {e["context"]["formula_sha256"] for e in engine.sink.read_global()}
        assert digests == {formula_sha256("hours_worked * hourly_rate")}

    def test_equal_trees_share_digest(self) -> None:
        engine = FormulaEngine()
        first = engine.parse("a + b")
        second = engine.parse("a+b")
        assert first is not second
        assert engine.tree_sha256(first) == engine.tree_sha256(second)


class TestDepthLimit:
    def test_max_depth_capped(self) -> None:
        with pytest.raises(ValueError, match="at most"):
            FormulaEngine({"max_depth": 100_000, "max_formula_length": 100_000})

    def test_deepest_allowed_tree_executes(self) -> None:
        engine = FormulaEngine({"max_depth": MAX_DEPTH_LIMIT, "logging_enabled": False})
        text = "IF(1, " * (MAX_DEPTH_LIMIT - 1) + "7" + ", 0)" * (MAX_DEPTH_LIMIT - 1)
        assert engine.evaluate(text, {}).value == 7
