"""
Shared fixtures for the StudyBuddy test suite.

Provides a fixed clock, a temporary SQLite store, the standard tool registry
and wired harnesses so individual test modules can focus on behavior rather
than setup. No test touches the network.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from helpers import PROGRESS_GATED, FixedClock, Harness, build_harness, make_registry
from studybuddy.store import ConversationStore
from studybuddy.tools.registry import ToolRegistry


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def store(tmp_path: Path):
    s = ConversationStore(tmp_path / "studybuddy.db")
    s.initialize()
    yield s
    s.close()


@pytest.fixture()
def registry() -> ToolRegistry:
    return make_registry()


@pytest.fixture()
def harness(store: ConversationStore, clock: FixedClock) -> Harness:
    return build_harness(store, clock)


@pytest.fixture()
def gated_harness(store: ConversationStore, clock: FixedClock) -> Harness:
    """A harness where log_study_progress also waits for approval."""
    return build_harness(store, clock, registry=make_registry(confirm=PROGRESS_GATED))
