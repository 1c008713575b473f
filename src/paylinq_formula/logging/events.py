"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr.

Payroll bindings carry salaries and other personal data, so event
context never includes binding values: only variable names, a hash of
the formula text and timing information.
"""

from __future__ import annotations

import hashlib
import re
import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Parsing
    formula_parsed = "formula_parsed"
    formula_parse_failed = "formula_parse_failed"

    # Execution
    formula_executed = "formula_executed"
    formula_execution_failed = "formula_execution_failed"
    formula_division_by_zero = "formula_division_by_zero"

    # Authoring
    formula_validated = "formula_validated"
    template_applied = "template_applied"


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

FORMULA_SYNTAX_ERROR = "formula_syntax_error"
FORMULA_EXECUTION_ERROR = "formula_execution_error"
FORMULA_DIVISION_BY_ZERO = "formula_division_by_zero"


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------

_SENSITIVE_KEY_RE = re.compile(
    r"(password|secret|token|api_key|authorization|cookie|session"
    r"|bindings|salary|wage|gross|net_pay|iban|bank|ssn|bsn|tax_id)",
    re.IGNORECASE,
)

_MAX_VALUE_LEN = 256


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* with sensitive values redacted.

    Rules:
    - Keys matching sensitive patterns (payroll amounts, bank and
      identity numbers, credentials) have their values replaced with
      ``"[REDACTED]"``.
    - String values longer than 256 chars are truncated.
    """
    return _redact_dict(context)


def _redact_dict(d: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in d.items():
        if _SENSITIVE_KEY_RE.search(k):
            out[k] = "[REDACTED]"
        elif isinstance(v, dict):
            out[k] = _redact_dict(v)
        elif isinstance(v, list):
            out[k] = [_redact_value(item) for item in v]
        else:
            out[k] = _redact_value(v)
    return out


def _redact_value(v: Any) -> Any:
    if isinstance(v, dict):
        return _redact_dict(v)
    if isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
        return v[:_MAX_VALUE_LEN] + "...[truncated]"
    return v


def formula_sha256(text: str) -> str:
    """Stable identity for a formula text, safe to log."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Attribution invariants
# ---------------------------------------------------------------------------

_FORMULA_EVENT_REQUIRED = {"formula_sha256"}

_EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    EventType.formula_parsed.value: _FORMULA_EVENT_REQUIRED,
    EventType.formula_parse_failed.value: _FORMULA_EVENT_REQUIRED,
    EventType.formula_executed.value: _FORMULA_EVENT_REQUIRED,
    EventType.formula_execution_failed.value: _FORMULA_EVENT_REQUIRED,
    EventType.formula_division_by_zero.value: _FORMULA_EVENT_REQUIRED,
    EventType.formula_validated.value: _FORMULA_EVENT_REQUIRED,
    EventType.template_applied.value: {"template_code"},
}


def _validate_attribution(event: FormulaEvent) -> FormulaEvent:
    """Check required context keys; downgrade to warning if missing."""
    required = _EVENT_REQUIRED_KEYS.get(event.event_type.value, set())
    if not required:
        return event
    missing = required - set(event.context.keys())
    if missing:
        ctx = dict(event.context)
        ctx["_missing_attribution"] = sorted(missing)
        return event.model_copy(update={"level": EventLevel.warning, "context": ctx})
    return event


def make_formula_event(
    event_type: EventType,
    level: EventLevel,
    message: str,
    *,
    formula: str | None = None,
    formula_id: str | None = None,
    error_code: str | None = None,
    extra: dict[str, Any] | None = None,
) -> FormulaEvent:
    """Build an event with guaranteed formula attribution context.

    The formula text itself is hashed, never stored.
    """
    ctx: dict[str, Any] = {}
    if formula is not None:
        ctx["formula_sha256"] = formula_sha256(formula)
    if formula_id is not None:
        ctx["formula_id"] = formula_id
    if extra:
        ctx.update(extra)
    return FormulaEvent(
        level=level,
        event_type=event_type,
        message=message,
        context=ctx,
        error_code=error_code,
    )


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class FormulaEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Set by ``set_log_dir``; until then ``emit()`` discards events.
_sink: Any = None  # EventSink | None


def set_log_dir(log_dir: Any, *, fsync: bool = False, tail_bytes: int | None = None) -> None:
    """Configure the module-level event sink to write under *log_dir*.

    Pass ``None`` to disable logging again.
    """
    global _sink
    from pathlib import Path

    from paylinq_formula.logging.sink import EventSink

    if log_dir is None:
        _sink = None
        return
    _sink = EventSink(Path(log_dir), fsync=fsync, tail_bytes=tail_bytes)


def get_sink() -> Any:
    """Return the module-level sink, or None."""
    return _sink


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[paylinq_formula] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: FormulaEvent, *, run_id: str | None = None, sink: Any = None) -> None:
    """Write an event to the global log and optionally to a per-run log.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.

    Applies redaction and attribution validation before writing.  *sink*
    overrides the module-level sink set by ``set_log_dir``.
    """
    try:
        if sink is None:
            sink = get_sink()
        if sink is None:
            return
        event = event.model_copy(update={"context": redact_context(event.context)})
        event = _validate_attribution(event)
        sink.write(event, run_id=run_id)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    run_id: str | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    emit(
        FormulaEvent(
            level=EventLevel.info,
            event_type=event_type,
            message=message,
            context=context or {},
        ),
        run_id=run_id,
    )


