"""Formula template loading, validation and parameter substitution.

Templates are pre-built payroll formulas (hourly pay, overtime, tiered
bonus, ...) whose tunable constants are written as ``{parameter}``
placeholders.  Applying a template checks the supplied values against
the declared parameters and returns plain formula text that the engine
can parse.
"""

from __future__ import annotations

import importlib.resources
import math
import numbers
import re
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field

from paylinq_formula.formulas.formatter import format_number
from paylinq_formula.formulas.parser import FormulaParser
from paylinq_formula.logging.events import EventType, emit_info


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TEMPLATE_CODE_PATTERN = r"^[a-z][a-z0-9_]{0,39}$"
_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_BUNDLED_FILENAME = "builtin.yaml"

# Range applied to percentage parameters that do not declare their own.
_PERCENTAGE_MIN = 0.0
_PERCENTAGE_MAX = 100.0


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TemplateParameter(BaseModel):
    name: str = Field(pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    type: Literal["percentage", "fixed", "number"] = "number"
    description: str = ""
    min: float | None = None
    max: float | None = None
    default: float | None = None

    def bounds(self) -> tuple[float | None, float | None]:
        """Effective (min, max); percentages default to 0..100."""
        if self.type == "percentage":
            low = self.min if self.min is not None else _PERCENTAGE_MIN
            high = self.max if self.max is not None else _PERCENTAGE_MAX
            return low, high
        return self.min, self.max


class TemplateExample(BaseModel):
    values: dict[str, float] = Field(default_factory=dict)
    result: float


class FormulaTemplate(BaseModel):
    code: str = Field(pattern=_TEMPLATE_CODE_PATTERN)
    name: str
    category: str
    description: str = Field(min_length=1, max_length=200)
    formula: str
    variables: list[str] = Field(default_factory=list)
    parameters: list[TemplateParameter] = Field(default_factory=list)
    example: TemplateExample | None = None

    def placeholders(self) -> list[str]:
        """Placeholder names in the formula, first-appearance order."""
        return list(dict.fromkeys(_PLACEHOLDER_RE.findall(self.formula)))


class AppliedTemplate(BaseModel):
    """Formula text produced by substituting a template's parameters."""

    formula: str
    template_code: str
    template_name: str
    parameters: dict[str, float] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Template discovery
# ---------------------------------------------------------------------------


def _bundled_templates_path() -> Path:
    """Return the filesystem path to the bundled templates file."""
    ref = importlib.resources.files("paylinq_formula.templates") / _BUNDLED_FILENAME
    path = Path(str(ref))
    if not path.is_file():
        raise RuntimeError(f"Bundled templates file not found: {path}")
    return path


def _load_templates(template_path: Path | None) -> list[FormulaTemplate]:
    """Load and validate every template in a YAML file.

    Raises:
        ValueError: On schema violations, duplicate codes, or placeholders
            that do not match the declared parameters.
    """
    path = template_path or _bundled_templates_path()
    raw = yaml.safe_load(Path(path).read_text())
    if not isinstance(raw, dict) or not isinstance(raw.get("templates"), list):
        raise ValueError(f"{path}: expected a mapping with a 'templates' list")

    templates: list[FormulaTemplate] = []
    seen: set[str] = set()
    for entry in raw["templates"]:
        template = FormulaTemplate.model_validate(entry)
        if template.code in seen:
            raise ValueError(f"{path}: duplicate template code {template.code!r}")
        seen.add(template.code)

        declared = {p.name for p in template.parameters}
        used = set(template.placeholders())
        if used - declared:
            raise ValueError(
                f"{path}: template {template.code!r} uses undeclared "
                f"parameter(s): {', '.join(sorted(used - declared))}"
            )
        if declared - used:
            raise ValueError(
                f"{path}: template {template.code!r} declares unused "
                f"parameter(s): {', '.join(sorted(declared - used))}"
            )
        templates.append(template)
    return templates


def list_templates(
    category: str | None = None,
    template_path: Path | None = None,
) -> list[FormulaTemplate]:
    """List available templates, sorted by code.

    Args:
        category: Only return templates in this category.
        template_path: Read this YAML file instead of the bundled one.
    """
    templates = _load_templates(template_path)
    if category is not None:
        templates = [t for t in templates if t.category == category]
    return sorted(templates, key=lambda t: t.code)


def get_template(code: str, template_path: Path | None = None) -> FormulaTemplate:
    """Look up a template by code.

    Raises:
        KeyError: If no template has that code.
    """
    templates = _load_templates(template_path)
    for template in templates:
        if template.code == code:
            return template
    available = ", ".join(sorted(t.code for t in templates)) or "(none)"
    raise KeyError(f"Template {code!r} not found. Available: {available}")


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


def apply_template(
    template: str | FormulaTemplate,
    parameter_values: Mapping[str, Any] | None = None,
    *,
    template_path: Path | None = None,
    parser: FormulaParser | None = None,
) -> AppliedTemplate:
    """Substitute parameter values into a template's formula.

    Args:
        template: Template code or a loaded ``FormulaTemplate``.
        parameter_values: Values for the template's parameters.  Missing
            parameters fall back to their declared default.
        template_path: Template file to look codes up in.
        parser: Parser used to check the resulting formula.

    Returns:
        The substituted formula and the resolved parameter values.

    Raises:
        KeyError: If *template* is an unknown code.
        ValueError: On unknown, missing, non-numeric or out-of-range
            parameter values.
        ParseError: If the substituted formula does not parse.
    """
    if isinstance(template, str):
        template = get_template(template, template_path)
    params = _resolve_params(template, parameter_values or {})

    formula = _PLACEHOLDER_RE.sub(
        lambda m: _format_param(params[m.group(1)]),
        template.formula,
    )
    (parser or FormulaParser()).parse(formula)

    emit_info(
        EventType.template_applied,
        f"Applied template {template.code!r}",
        {"template_code": template.code, "parameters": sorted(params)},
    )
    return AppliedTemplate(
        formula=formula,
        template_code=template.code,
        template_name=template.name,
        parameters=params,
    )


def _resolve_params(
    template: FormulaTemplate,
    overrides: Mapping[str, Any],
) -> dict[str, float]:
    """Merge declared defaults with supplied values, with validation."""
    declared = {p.name: p for p in template.parameters}

    unknown = set(overrides) - set(declared)
    if unknown:
        raise ValueError(
            f"Unknown template parameter(s): {', '.join(sorted(unknown))}. "
            f"Declared: {', '.join(sorted(declared)) or '(none)'}"
        )

    result: dict[str, float] = {}
    for pname, pdef in declared.items():
        if pname in overrides:
            value = _coerce_number(pname, overrides[pname])
        elif pdef.default is not None:
            value = float(pdef.default)
        else:
            raise ValueError(f"Missing required parameter: {pname}")

        low, high = pdef.bounds()
        if low is not None and high is not None and not low <= value <= high:
            raise ValueError(f"Parameter {pname} must be between {format_number(low)} and {format_number(high)}")
        if low is not None and value < low:
            raise ValueError(f"Parameter {pname} must be at least {format_number(low)}")
        if high is not None and value > high:
            raise ValueError(f"Parameter {pname} must be at most {format_number(high)}")
        result[pname] = value
    return result


def _coerce_number(pname: str, raw: Any) -> float:
    """Accept real numbers and numeric strings; reject everything else."""
    if isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            raise ValueError(f"Parameter {pname!r} expects a number, got {raw!r}")
    elif isinstance(raw, bool) or not isinstance(raw, numbers.Real):
        raise ValueError(f"Parameter {pname!r} expects a number, got {raw!r}")
    else:
        value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"Parameter {pname!r} must be a finite number, got {raw!r}")
    return value


def _format_param(value: float) -> str:
    text = format_number(value)
    # "x * {p}" with p = -3 becomes "x * (-3)".
    if value < 0:
        return f"({text})"
    return text
