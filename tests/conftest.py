"""Shared fixtures for paylinq_formula tests."""

from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _reset_event_sink():
    """Each test starts with logging disabled and restores the sink after."""
    from paylinq_formula.logging import events

    old_sink = events._sink
    events._sink = None
    try:
        yield
    finally:
        events._sink = old_sink
