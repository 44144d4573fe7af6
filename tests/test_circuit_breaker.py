"""
Tests for the Circuit Breaker
=============================

Tests for sopguard/circuit_breaker.py and its effect on the rule engine.
"""

from sopguard.circuit_breaker import CircuitBreaker
from sopguard.config import SopGuardConfig
from sopguard.hooks import SESSION_START, USER_PROMPT_SUBMIT, HookHandler
from sopguard.state_store import StateStore

from conftest import tool


def failure(tool_name="Bash"):
    return tool(tool_name, hook="PostToolUse", response={"is_error": True, "error": "command failed"},
                command="make")


def success(tool_name="Bash"):
    return tool(tool_name, hook="PostToolUse", response={"exit_code": 0}, command="make")


class TestCircuitBreaker:
    """Tests for CircuitBreaker state transitions."""

    def test_trips_at_threshold(self, tmp_path, clock):
        breaker = CircuitBreaker(StateStore(tmp_path), threshold=3, clock=clock)

        breaker.record_failure("one")
        breaker.record_failure("two")
        assert not breaker.is_tripped()

        state = breaker.record_failure("three")
        assert state.tripped
        assert state.failures == 3
        assert state.last_error == "three"
        assert state.tripped_at == "2025-01-15T12:00:00+00:00"

    def test_success_clears_count_while_closed(self, tmp_path):
        breaker = CircuitBreaker(StateStore(tmp_path), threshold=3)
        breaker.record_failure("one")
        breaker.record_failure("two")
        breaker.record_success()
        breaker.record_failure("three")

        assert breaker.state().failures == 1
        assert not breaker.is_tripped()

    def test_success_does_not_close_tripped_breaker(self, tmp_path):
        breaker = CircuitBreaker(StateStore(tmp_path), threshold=1)
        breaker.record_failure("boom")
        breaker.record_success()

        assert breaker.is_tripped()

    def test_reset_preserves_threshold(self, tmp_path):
        breaker = CircuitBreaker(StateStore(tmp_path), threshold=2)
        breaker.record_failure("a")
        breaker.record_failure("b")

        state = breaker.reset("user")
        assert not state.tripped
        assert state.failures == 0
        assert state.threshold == 2
        assert state.reset_reason == "user"

    def test_session_reset_only_touches_tripped_breaker(self, tmp_path):
        breaker = CircuitBreaker(StateStore(tmp_path), threshold=2)
        breaker.record_failure("a")
        assert breaker.session_reset() is None
        assert breaker.state().failures == 1

        breaker.record_failure("b")
        state = breaker.session_reset()
        assert state.reset_reason == "new_session"
        assert not state.tripped

    def test_block_message(self, tmp_path):
        breaker = CircuitBreaker(StateStore(tmp_path), threshold=1)
        breaker.record_failure("disk full")
        message = breaker.block_message()

        assert message.startswith("CIRCUIT BREAKER TRIPPED")
        assert "Last error: disk full" in message


class TestBreakerInEngine:
    """Tests for the breaker's effect on evaluation."""

    def test_failures_trip_breaker_through_outcomes(self, engine, ctx):
        for _ in range(4):
            assert not engine.record_outcome(failure()).breaker_tripped
        assert engine.record_outcome(failure()).breaker_tripped

    def test_tripped_breaker_blocks_every_tool(self, engine, ctx):
        for _ in range(5):
            engine.record_outcome(failure())

        for event in (tool("Read", file_path="a.py"), tool("Grep", pattern="x"), tool("Bash", command="ls")):
            decision = engine.evaluate(event)
            assert decision.block.rule == "circuit_breaker"
            assert decision.rules_checked == ["circuit_breaker"]

    def test_breaker_block_is_not_a_violation(self, engine, ctx):
        for _ in range(5):
            engine.record_outcome(failure())
        engine.evaluate(tool("Read", file_path="a.py"))

        assert ctx.rule_tracker.violations_since(None) == []

    def test_successes_do_not_reset_tripped_breaker(self, engine, ctx):
        for _ in range(5):
            engine.record_outcome(failure())
        engine.record_outcome(success())

        assert engine.evaluate(tool("Read", file_path="a.py")).block is not None

    def test_reset_breaker_prompt(self, tmp_path, clock):
        handler = HookHandler(tmp_path, SopGuardConfig(), clock)
        for _ in range(5):
            handler.engine.record_outcome(failure())

        result = handler.handle(USER_PROMPT_SUBMIT, {"prompt": "reset breaker"})

        assert not handler.ctx.breaker.is_tripped()
        assert any("reset" in m for m in result.messages)

    def test_ordinary_prompt_does_not_reset(self, tmp_path, clock):
        handler = HookHandler(tmp_path, SopGuardConfig(), clock)
        for _ in range(5):
            handler.engine.record_outcome(failure())

        handler.handle(USER_PROMPT_SUBMIT, {"prompt": "try again please"})
        assert handler.ctx.breaker.is_tripped()

    def test_session_start_resets(self, tmp_path, clock):
        handler = HookHandler(tmp_path, SopGuardConfig(), clock)
        for _ in range(5):
            handler.engine.record_outcome(failure())

        result = handler.handle(SESSION_START, {"hook_event_name": "SessionStart", "source": "startup"})

        assert result.exit_code == 0
        assert not handler.ctx.breaker.is_tripped()
        assert "Circuit breaker reset for the new session" in result.messages
