"""
Tests for the Rule Engine
=========================

Tests for sopguard/engine.py
"""

from sopguard.checks import Check, Verdict
from sopguard.engine import Decision, RuleEngine, create_engine
from sopguard.models import EnforcementState, RequirementSet

from conftest import complete_research, tool


class AlwaysWarn(Check):
    name = "always_warn"
    rule = "always_warn"

    def evaluate(self, event, ctx):
        return Verdict.warn(self.rule, "heads up")


class AlwaysBlock(Check):
    name = "always_block"
    rule = "always_block"

    def evaluate(self, event, ctx):
        return Verdict.block(self.rule, "no\nsecond line", "do the other thing")


class Exploding(Check):
    name = "exploding"

    def evaluate(self, event, ctx):
        raise AssertionError("should never run")


class TestDecision:
    """Tests for Decision."""

    def test_pass(self):
        decision = Decision()
        assert decision.allowed
        assert decision.result == "pass"
        assert decision.exit_code() == 0

    def test_block_exit_code(self):
        decision = Decision(block=Verdict.block("r", "m"))
        assert decision.result == "block"
        assert decision.exit_code(2) == 2
        assert decision.reason == "m"


class TestRuleEngine:
    """Tests for RuleEngine.evaluate."""

    def test_first_block_stops_evaluation(self, ctx):
        engine = RuleEngine(ctx, [AlwaysWarn(), AlwaysBlock(), Exploding()])
        decision = engine.evaluate(tool("Read", file_path="a.py"))

        assert decision.block.rule == "always_block"
        assert [w.rule for w in decision.warnings] == ["always_warn"]
        assert decision.rules_checked == ["always_warn", "always_block"]
        assert decision.reason == "no\nsecond line\nFix: do the other thing"

    def test_one_audit_record_per_evaluation(self, engine, ctx):
        engine.evaluate(tool("Read", file_path="a.py"))
        engine.evaluate(tool("Edit", file_path="src/a.py", old_string="a", new_string="b"))
        engine.evaluate(tool("Bash", command="ls"))

        records = ctx.audit_log.all()
        assert len(records) == 3
        assert [r.result for r in records] == ["pass", "block", "pass"]
        assert records[1].tool == "Edit"
        assert "research_before_edit" in records[1].rules_checked

    def test_violations_and_warnings_tracked(self, ctx):
        engine = RuleEngine(ctx, [AlwaysWarn(), AlwaysBlock()])
        engine.evaluate(tool("Read", file_path="a.py"))

        entries = ctx.rule_tracker.entries()
        assert [(e["type"], e["rule"]) for e in entries] == [
            ("enforcement", "always_warn"),
            ("violation", "always_block"),
        ]
        assert entries[1]["reason"] == "no"
        assert entries[1]["details"]["tool"] == "Read"

    def test_enforcement_halt_skips_process_checks(self, engine, ctx):
        ctx.store.put("enforcement", EnforcementState(halted=True, halted_reason="demo"))
        decision = engine.evaluate(tool("Edit", file_path="src/a.py", old_string="a", new_string="b"))

        assert decision.allowed
        assert decision.rules_checked == ["circuit_breaker", "enforcement_halted"]

    def test_breaker_still_blocks_when_halted(self, engine, ctx):
        ctx.store.put("enforcement", EnforcementState(halted=True))
        for _ in range(5):
            ctx.breaker.record_failure("boom")

        assert engine.evaluate(tool("Read", file_path="a.py")).block.rule == "circuit_breaker"

    def test_edit_allowed_after_research(self, engine, ctx, clock):
        complete_research(ctx, clock)
        decision = engine.evaluate(tool("Edit", file_path="src/a.py", old_string="a", new_string="b"))

        assert decision.allowed
        assert ctx.store.get("edit_attempts").count == 1

    def test_agent_cannot_satisfy_requirements_through_bash(self, engine, ctx):
        ctx.store.put("requirements", RequirementSet(requested=["plan"]))
        decision = engine.evaluate(tool("Bash", command="sopguard requirements satisfy plan"))

        assert decision.block.rule == "user_only_command"
        assert ctx.store.get("requirements").unsatisfied() == ["plan"]

    def test_damaged_logs_do_not_break_evaluation(self, engine, ctx, clock):
        engine.evaluate(tool("Read", file_path="a.py"))
        ctx.rule_tracker.log_violation("table_ban", "PreToolUse", "table")
        for path in (ctx.audit_log.path, ctx.rule_tracker.path):
            with open(path, "ab") as f:
                f.write(b"\xff\xfe{\"rule\": \n")

        complete_research(ctx, clock)
        decision = engine.evaluate(tool("Write", file_path="src/a.py", content="x = 1\n"))
        assert decision.allowed


class TestRecordOutcome:
    """Tests for RuleEngine.record_outcome."""

    def test_research_tool_success_marks_category(self, engine, ctx):
        outcome = engine.record_outcome(tool("Grep", hook="PostToolUse", response={"matches": 3}, pattern="x"))

        assert outcome.success
        assert outcome.research_category == "local-code"
        assert ctx.research.status().is_done("local-code")

    def test_mcp_research_categories(self, engine, ctx):
        engine.record_outcome(tool("mcp__memory__read_graph", hook="PostToolUse", response={}))
        engine.record_outcome(tool("mcp__context7__get-library-docs", hook="PostToolUse", response={}))
        engine.record_outcome(tool("WebSearch", hook="PostToolUse", response={}, query="x"))
        engine.record_outcome(tool("mcp__github__search_code", hook="PostToolUse", response={}))

        assert ctx.research.missing() == ["local-code"]

    def test_failure_does_not_mark_research(self, engine, ctx):
        outcome = engine.record_outcome(tool("Read", hook="PostToolUse", response={"is_error": True, "error": "ENOENT"},
                                             file_path="gone.py"))
        assert not outcome.success
        assert outcome.error_sig == "ENOENT"
        assert not ctx.research.status().is_done("local-code")
        assert ctx.breaker.state().failures == 1

    def test_edit_success_is_tracked(self, engine, ctx):
        engine.record_outcome(tool("Write", hook="PostToolUse", response={"ok": True},
                                   file_path="scripts/run.sh", content="echo"))
        assert ctx.store.get("edits").unique_files == ["scripts/run.sh"]

    def test_outcome_audit_record(self, engine, ctx):
        engine.record_outcome(tool("Bash", hook="PostToolUse", response={"exit_code": 1, "stderr": "nope"},
                                   command="false"))
        record = ctx.audit_log.all()[-1]
        assert record.event == "PostToolUse"
        assert record.success is False
        assert record.error_sig == "nope"

    def test_research_evidence_counted_while_requested(self, engine, ctx):
        ctx.store.put("requirements", RequirementSet(requested=["research"]))

        for name in ("Read", "Grep", "Glob"):
            engine.record_outcome(tool(name, hook="PostToolUse", response={}))

        assert ctx.store.get("requirements").evidence["research_tools"] == 3

    def test_create_engine_uses_default_pipeline(self, tmp_path):
        engine = create_engine(tmp_path)
        names = [check.name for check in engine.checks]

        assert names[:3] == ["circuit_breaker", "enforcement_halted", "blocked_path"]
        assert names[-1] == "gaming"
        assert engine.ctx.state_dir == tmp_path / ".claude"
