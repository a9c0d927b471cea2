"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta

import pytest

from triage.config.manager import ConfigManager
from triage.engine.models import BuildPhase, Category, FeedbackItem, Severity
from triage.output import formatter


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset cached configuration and the global formatter before each test."""
    ConfigManager.reset()
    formatter._formatter = None
    yield
    ConfigManager.reset()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep user config lookups out of the real home directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    return home


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_feedback():
    """Factory for feedback items with sensible defaults."""
    counter = {"n": 0}

    def _make(
        agent_source: str = "ORACLE",
        category: Category = Category.UX_ISSUE,
        severity: Severity = Severity.LOW,
        description: str = "Chart legend overlaps",
        **kwargs,
    ) -> FeedbackItem:
        counter["n"] += 1
        values = {
            "id": f"fb-{counter['n']}",
            "cycle_number": 1,
            "phase": BuildPhase.AGENT_INTEGRATION,
            "task_type": "self_test",
        }
        values.update(kwargs)
        return FeedbackItem(
            agent_source=agent_source,
            category=category,
            severity=severity,
            description=description,
            **values,
        )

    return _make


@pytest.fixture
def scenario_a_batch(make_feedback):
    """One critical SENTINEL bug, two high CARTOGRAPH items, five low items."""
    return [
        make_feedback("SENTINEL", Category.BUG, Severity.CRITICAL, "Set-aside status wrong"),
        make_feedback("CARTOGRAPH", Category.BUG, Severity.HIGH, "Geocoder drops suite numbers"),
        make_feedback("CARTOGRAPH", Category.PERFORMANCE, Severity.HIGH, "Map tiles load slowly"),
        make_feedback("ORACLE", Category.UX_ISSUE, Severity.LOW, "Chart legend overlaps"),
        make_feedback("ARCHIVIST", Category.UX_ISSUE, Severity.LOW, "Export button hidden"),
        make_feedback("DIPLOMAT", Category.FEATURE_GAP, Severity.LOW, "No partner notes"),
        make_feedback("ADVOCATE", Category.UX_ISSUE, Severity.LOW, "Tooltip typo"),
        make_feedback("GUARDIAN", Category.BUG, Severity.LOW, "Badge color off"),
    ]
