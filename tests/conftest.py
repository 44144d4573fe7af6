"""
Shared fixtures for sopguard tests.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

from sopguard.config import SopGuardConfig
from sopguard.engine import RuleEngine, create_context
from sopguard.events import parse_event


class FakeClock:
    """Deterministic clock; call it like utc_now()."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds=1):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SOPGUARD_* settings from the developer's shell out of tests."""
    for name in list(os.environ):
        if name.startswith("SOPGUARD_"):
            monkeypatch.delenv(name)
    monkeypatch.delenv("CLAUDE_PROJECT_DIR", raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return SopGuardConfig()


@pytest.fixture
def ctx(tmp_path, config, clock):
    return create_context(tmp_path, config, clock)


@pytest.fixture
def engine(ctx):
    return RuleEngine(ctx)


def tool(tool_name, hook="PreToolUse", response=None, **tool_input):
    """Build a typed tool event the way the host would send it."""
    payload = {"hook_event_name": hook, "tool_name": tool_name, "tool_input": tool_input}
    if response is not None:
        payload["tool_response"] = response
    return parse_event(payload)


def complete_research(ctx, clock, spacing=60):
    """Mark every research category, spaced out so it does not look gamed."""
    for category in ("memory", "docs", "web", "external-examples", "local-code"):
        ctx.research.mark(category, "test")
        clock.advance(spacing)
