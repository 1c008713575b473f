"""Tests for the payroll formula template system."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml

from paylinq_formula.formulas import ParseError, execute_formula, parse_formula
from paylinq_formula.logging.events import get_sink, set_log_dir
from paylinq_formula.template_engine import (
    AppliedTemplate,
    FormulaTemplate,
    apply_template,
    get_template,
    list_templates,
)


def _write_templates(path: Path, templates: list[dict[str, Any]]) -> Path:
    path.write_text(yaml.dump({"templates": templates}, sort_keys=False))
    return path


# ---------------------------------------------------------------------------
# Template discovery
# ---------------------------------------------------------------------------


class TestTemplateList:
    def test_list_returns_bundled_templates(self) -> None:
        codes = {t.code for t in list_templates()}
        assert codes == {
            "capped_deduction",
            "effective_hourly_rate",
            "flat_tax_withholding",
            "hourly_pay",
            "overtime_pay",
            "percentage_bonus",
            "tiered_bonus",
        }

    def test_list_sorted_by_code(self) -> None:
        codes = [t.code for t in list_templates()]
        assert codes == sorted(codes)

    def test_filter_by_category(self) -> None:
        codes = [t.code for t in list_templates(category="bonus")]
        assert codes == ["percentage_bonus", "tiered_bonus"]

    def test_unknown_category_is_empty(self) -> None:
        assert list_templates(category="pension") == []

    def test_get_template(self) -> None:
        template = get_template("overtime_pay")
        assert isinstance(template, FormulaTemplate)
        assert template.placeholders() == ["multiplier"]
        assert template.variables == ["overtime_hours", "hourly_rate"]

    def test_get_unknown_template(self) -> None:
        with pytest.raises(KeyError, match="not found"):
            get_template("nonexistent")


# ---------------------------------------------------------------------------
# Bundled templates are executable
# ---------------------------------------------------------------------------


class TestBundledExamples:
    def test_every_example_evaluates_to_its_result(self) -> None:
        for template in list_templates():
            assert template.example is not None, template.code
            applied = apply_template(template)
            result = execute_formula(parse_formula(applied.formula), template.example.values)
            assert result.value == pytest.approx(template.example.result), template.code

    def test_declared_variables_match_formula(self) -> None:
        from paylinq_formula.formulas import extract_variables

        for template in list_templates():
            applied = apply_template(template)
            tree = parse_formula(applied.formula)
            assert set(extract_variables(tree)) == set(template.variables), template.code


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


class TestApplyTemplate:
    def test_defaults(self) -> None:
        applied = apply_template("tiered_bonus")
        assert isinstance(applied, AppliedTemplate)
        assert applied.formula == "IF(gross_pay > 3000, 150, 100)"
        assert applied.parameters == {"threshold": 3000, "high_bonus": 150, "low_bonus": 100}
        assert applied.template_name == "Tiered Bonus"

    def test_override(self) -> None:
        applied = apply_template("overtime_pay", {"multiplier": 2})
        assert applied.formula == "overtime_hours * hourly_rate * 2"

    def test_fractional_value(self) -> None:
        applied = apply_template("overtime_pay", {"multiplier": 1.75})
        assert applied.formula == "overtime_hours * hourly_rate * 1.75"

    def test_numeric_string(self) -> None:
        applied = apply_template("percentage_bonus", {"bonus_percentage": " 12.5 "})
        assert applied.formula == "gross_pay * 12.5 / 100"

    def test_out_of_declared_range(self) -> None:
        with pytest.raises(ValueError, match="must be between 1 and 3"):
            apply_template("overtime_pay", {"multiplier": 5})

    def test_percentage_default_range(self) -> None:
        with pytest.raises(ValueError, match="must be between 0 and 100"):
            apply_template("percentage_bonus", {"bonus_percentage": 150})

    def test_minimum_only(self) -> None:
        with pytest.raises(ValueError, match="must be at least 0"):
            apply_template("capped_deduction", {"cap": -10})

    def test_unknown_parameter(self) -> None:
        with pytest.raises(ValueError, match="Unknown template parameter"):
            apply_template("hourly_pay", {"multiplier": 2})

    @pytest.mark.parametrize("bad", ["abc", None, True, float("nan"), float("inf")])
    def test_rejects_non_numbers(self, bad: Any) -> None:
        with pytest.raises(ValueError, match="number"):
            apply_template("overtime_pay", {"multiplier": bad})

    def test_unknown_code(self) -> None:
        with pytest.raises(KeyError):
            apply_template("nonexistent")

    def test_emits_event(self, tmp_path: Path) -> None:
        set_log_dir(tmp_path / "logs")
        apply_template("overtime_pay", {"multiplier": 2})
        events = get_sink().read_global(event_type="template_applied")
        assert len(events) == 1
        assert events[0]["level"] == "info"
        assert events[0]["context"]["template_code"] == "overtime_pay"
        assert events[0]["context"]["parameters"] == ["multiplier"]


# ---------------------------------------------------------------------------
# Custom template files
# ---------------------------------------------------------------------------


class TestCustomTemplates:
    def test_required_parameter(self, tmp_path: Path) -> None:
        path = _write_templates(tmp_path / "t.yaml", [{
            "code": "pension",
            "name": "Pension",
            "category": "deduction",
            "description": "Employee pension contribution.",
            "formula": "gross_pay * {rate} / 100",
            "parameters": [{"name": "rate", "type": "percentage"}],
        }])
        with pytest.raises(ValueError, match="Missing required parameter: rate"):
            apply_template("pension", template_path=path)
        applied = apply_template("pension", {"rate": 4}, template_path=path)
        assert applied.formula == "gross_pay * 4 / 100"

    def test_negative_value_parenthesized(self, tmp_path: Path) -> None:
        path = _write_templates(tmp_path / "t.yaml", [{
            "code": "adjusted",
            "name": "Adjusted",
            "category": "earnings",
            "description": "Base pay with a fixed adjustment.",
            "formula": "base * {factor}",
            "parameters": [{"name": "factor", "type": "number", "default": -3}],
        }])
        applied = apply_template("adjusted", template_path=path)
        assert applied.formula == "base * (-3)"
        assert execute_formula(parse_formula(applied.formula), {"base": 10}).value == -30

    def test_undeclared_placeholder(self, tmp_path: Path) -> None:
        path = _write_templates(tmp_path / "t.yaml", [{
            "code": "broken",
            "name": "Broken",
            "category": "bonus",
            "description": "Uses a parameter it never declares.",
            "formula": "gross_pay * {rate}",
        }])
        with pytest.raises(ValueError, match="undeclared parameter"):
            list_templates(template_path=path)

    def test_unused_parameter(self, tmp_path: Path) -> None:
        path = _write_templates(tmp_path / "t.yaml", [{
            "code": "broken",
            "name": "Broken",
            "category": "bonus",
            "description": "Declares a parameter it never uses.",
            "formula": "gross_pay * 2",
            "parameters": [{"name": "rate", "default": 1}],
        }])
        with pytest.raises(ValueError, match="unused parameter"):
            list_templates(template_path=path)

    def test_duplicate_code(self, tmp_path: Path) -> None:
        entry = {
            "code": "dup",
            "name": "Dup",
            "category": "bonus",
            "description": "Duplicate.",
            "formula": "1",
        }
        path = _write_templates(tmp_path / "t.yaml", [entry, entry])
        with pytest.raises(ValueError, match="duplicate template code"):
            list_templates(template_path=path)

    def test_invalid_code(self, tmp_path: Path) -> None:
        path = _write_templates(tmp_path / "t.yaml", [{
            "code": "Bad Code",
            "name": "Bad",
            "category": "bonus",
            "description": "Invalid code.",
            "formula": "1",
        }])
        with pytest.raises(ValueError):
            list_templates(template_path=path)

    def test_not_a_template_file(self, tmp_path: Path) -> None:
        path = tmp_path / "t.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="'templates' list"):
            list_templates(template_path=path)

    def test_substituted_formula_must_parse(self, tmp_path: Path) -> None:
        path = _write_templates(tmp_path / "t.yaml", [{
            "code": "unbalanced",
            "name": "Unbalanced",
            "category": "bonus",
            "description": "Missing a closing parenthesis.",
            "formula": "MIN(gross_pay, {cap}",
            "parameters": [{"name": "cap", "default": 100}],
        }])
        with pytest.raises(ParseError, match="Unbalanced parentheses"):
            apply_template("unbalanced", template_path=path)
