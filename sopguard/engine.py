"""
Rule Engine
===========

Evaluates one tool event against the check pipeline and records the result.

Per evaluation:
- checks run in pipeline order; the circuit breaker check runs first
- the first blocking verdict stops evaluation, warnings accumulate
- blocks are logged as violations in the rule tracking log (breaker
  blocks excepted), warnings as enforcement entries
- exactly one AuditRecord is appended

PostToolUse outcomes go through ``record_outcome``: they feed the circuit
breaker, research progress and edit tracking, and append their own record.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from sopguard.audit_log import AuditLog, AuditRecord
from sopguard.checks import Check, CheckContext, Verdict, default_pipeline
from sopguard.circuit_breaker import CircuitBreaker
from sopguard.config import SopGuardConfig
from sopguard.events import ToolEvent, response_error
from sopguard.exceptions import StorageError
from sopguard.gaming import GamingMonitor, default_detectors
from sopguard.models import format_timestamp, utc_now
from sopguard.research import ResearchTracker, is_research_tool
from sopguard.rule_tracker import RuleTracker
from sopguard.state_store import StateStore

logger = logging.getLogger(__name__)

PRE_TOOL_USE = "PreToolUse"
POST_TOOL_USE = "PostToolUse"


@dataclass
class Decision:
    """The engine's answer for one tool event."""
    block: Optional[Verdict] = None
    warnings: List[Verdict] = field(default_factory=list)
    rules_checked: List[str] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return self.block is None

    @property
    def result(self) -> str:
        if self.block is not None:
            return "block"
        return "warn" if self.warnings else "pass"

    @property
    def reason(self) -> str:
        return self.block.render() if self.block is not None else ""

    def exit_code(self, block_exit_code: int = 1) -> int:
        return 0 if self.allowed else block_exit_code


@dataclass
class Outcome:
    """What a PostToolUse event changed."""
    success: bool
    error_sig: Optional[str] = None
    research_category: Optional[str] = None
    breaker_tripped: bool = False


class RuleEngine:
    """Runs the check pipeline for a project."""

    def __init__(self, ctx: CheckContext, checks: Optional[Sequence[Check]] = None):
        self.ctx = ctx
        self.checks: List[Check] = list(checks) if checks is not None else default_pipeline()

    def evaluate(self, event: ToolEvent) -> Decision:
        """
        Evaluate a PreToolUse event.

        Raises:
            StorageError: a critical state domain could not be written. The
                audit record is still appended before the error propagates.
        """
        decision = Decision()
        try:
            for check in self.checks:
                if not check.applies_to(event):
                    continue
                decision.rules_checked.append(check.name)
                verdict = check.evaluate(event, self.ctx)
                if verdict is None:
                    continue
                if verdict.is_block:
                    decision.block = verdict
                    break
                decision.warnings.append(verdict)
                if verdict.skip_remaining:
                    break
        except StorageError:
            self._audit(event, decision.rules_checked, "block")
            raise

        self._track(event, decision)
        self._audit(event, decision.rules_checked, decision.result)
        logger.debug("%s %s -> %s (%s)", PRE_TOOL_USE, event.tool_name, decision.result,
                     ", ".join(decision.rules_checked))
        return decision

    def record_outcome(self, event: ToolEvent) -> Outcome:
        """Record a PostToolUse event's success or failure."""
        error_sig = response_error(event)
        outcome = Outcome(success=error_sig is None, error_sig=error_sig)

        if error_sig is not None:
            state = self.ctx.breaker.record_failure(f"{event.tool_name}: {error_sig}")
            outcome.breaker_tripped = state.tripped
        else:
            self.ctx.breaker.record_success()
            outcome.research_category = self.ctx.research.record_tool(event.tool_name)
            if is_research_tool(event.tool_name):
                self._count_research_evidence()
            if event.is_edit and event.target_path:
                self.ctx.store.update("edits", lambda e: e.record(event.target_path))

        self.ctx.audit_log.append(AuditRecord(
            timestamp=format_timestamp(self.ctx.clock()),
            tool=event.tool_name,
            event=POST_TOOL_USE,
            rules_checked=["circuit_breaker"],
            result="pass",
            error_sig=error_sig,
            success=outcome.success,
        ))
        return outcome

    def _count_research_evidence(self) -> None:
        reqs = self.ctx.store.get("requirements")
        if not reqs.is_requested("research") or reqs.is_satisfied("research"):
            return
        self.ctx.store.update("requirements", lambda r: r.add_evidence("research_tools"))

    def _track(self, event: ToolEvent, decision: Decision) -> None:
        tracker = self.ctx.rule_tracker
        for warning in decision.warnings:
            tracker.log_enforcement(warning.rule, PRE_TOOL_USE, "warn",
                                    dict(warning.details, tool=event.tool_name))
        block = decision.block
        if block is not None and block.counts_as_violation:
            tracker.log_violation(block.rule, PRE_TOOL_USE, block.message.splitlines()[0],
                                  dict(block.details, tool=event.tool_name))

    def _audit(self, event: ToolEvent, rules_checked: List[str], result: str) -> None:
        self.ctx.audit_log.append(AuditRecord(
            timestamp=format_timestamp(self.ctx.clock()),
            tool=event.tool_name,
            event=event.hook_event_name or PRE_TOOL_USE,
            rules_checked=list(rules_checked),
            result=result,
        ))


def create_context(project_dir: Path, config: Optional[SopGuardConfig] = None, clock=utc_now) -> CheckContext:
    """Wire the store, logs and trackers for one project."""
    project_dir = Path(project_dir)
    config = config or SopGuardConfig.load(project_dir)
    state_dir = config.state_dir(project_dir)
    store = StateStore(state_dir)
    audit_log = AuditLog(state_dir)
    return CheckContext(
        project_dir=project_dir,
        config=config,
        store=store,
        audit_log=audit_log,
        rule_tracker=RuleTracker(state_dir, clock=clock),
        breaker=CircuitBreaker(store, threshold=config.breaker_threshold, clock=clock),
        research=ResearchTracker(store, clock=clock),
        gaming=GamingMonitor(
            store,
            audit_log,
            detectors=default_detectors(
                rapid_seconds=config.rapid_research_seconds,
                identical_min=config.identical_timestamp_min,
                error_window=config.error_window,
                error_rate=config.error_rate_threshold,
            ),
            block_count=config.gaming_block_count,
            cooccurrence_block=config.gaming_cooccurrence_block,
            log_capacity=config.pattern_log_capacity,
            clock=clock,
        ),
        clock=clock,
    )


def create_engine(project_dir: Path, config: Optional[SopGuardConfig] = None, clock=utc_now) -> RuleEngine:
    """Create a RuleEngine with the default pipeline."""
    return RuleEngine(create_context(project_dir, config, clock))
