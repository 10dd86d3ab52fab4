"""Shared test fixtures for the teamcal test suite.

The canonical definitions live in the root ``conftest.py``.  This file
re-exports them so that imports like
``from tests.conftest import InMemoryRecordStore`` work from any test module.
"""

from __future__ import annotations

from conftest import (  # noqa: F401
    InMemoryRecordStore,
    at,
    make_event_row,
    make_milestone_row,
    make_task_row,
    store,
)

__all__ = [
    "InMemoryRecordStore",
    "at",
    "make_event_row",
    "make_milestone_row",
    "make_task_row",
    "store",
]
