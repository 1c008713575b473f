"""Structured event logging for paylinq_formula.

Provides a unified event schema, filesystem NDJSON sink, and safe
emit helpers that never raise uncaught exceptions.
"""

from paylinq_formula.logging.events import (
    EventLevel,
    EventType,
    FormulaEvent,
    emit,
    emit_info,
    formula_sha256,
    get_sink,
    make_formula_event,
    redact_context,
    set_log_dir,
)
from paylinq_formula.logging.sink import EventSink

__all__ = [
    "EventLevel",
    "EventSink",
    "EventType",
    "FormulaEvent",
    "emit",
    "emit_info",
    "formula_sha256",
    "get_sink",
    "make_formula_event",
    "redact_context",
    "set_log_dir",
]
