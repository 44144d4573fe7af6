"""
Check Framework
===============

A check inspects one tool event plus current state and returns a Verdict
(warn or block) or None to pass. Checks are small objects composed into an
ordered pipeline by the engine; they never raise for a rule violation.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from sopguard.audit_log import AuditLog
from sopguard.circuit_breaker import CircuitBreaker
from sopguard.config import SopGuardConfig
from sopguard.events import ToolEvent
from sopguard.gaming import GamingMonitor
from sopguard.models import utc_now
from sopguard.research import ResearchTracker
from sopguard.rule_tracker import RuleTracker
from sopguard.state_store import StateStore

WARN = "warn"
BLOCK = "block"


@dataclass
class Verdict:
    """Outcome of a single check that did not simply pass."""
    level: str
    rule: str
    message: str
    fix: str = ""
    # Circuit-breaker blocks are not agent violations
    counts_as_violation: bool = True
    # Stop evaluating later checks even though this is only a warning
    skip_remaining: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def block(cls, rule: str, message: str, fix: str = "", **kwargs) -> "Verdict":
        return cls(BLOCK, rule, message, fix, **kwargs)

    @classmethod
    def warn(cls, rule: str, message: str, fix: str = "", **kwargs) -> "Verdict":
        return cls(WARN, rule, message, fix, **kwargs)

    @property
    def is_block(self) -> bool:
        return self.level == BLOCK

    def render(self) -> str:
        text = self.message
        if self.fix:
            text += f"\nFix: {self.fix}"
        return text


@dataclass
class CheckContext:
    """Everything a check may consult or update. Built once per project."""
    project_dir: Path
    config: SopGuardConfig
    store: StateStore
    audit_log: AuditLog
    rule_tracker: RuleTracker
    breaker: CircuitBreaker
    research: ResearchTracker
    gaming: GamingMonitor
    clock: Any = utc_now

    @property
    def state_dir(self) -> Path:
        return self.store.state_dir


class Check:
    """
    Base class for pipeline checks.

    Subclasses set ``name`` (pipeline identifier, recorded in the audit log)
    and ``rule`` (the rule reported on violation), and override
    ``applies_to`` and ``evaluate``.
    """

    name: str = ""
    rule: str = ""

    def applies_to(self, event: ToolEvent) -> bool:
        return True

    def evaluate(self, event: ToolEvent, ctx: CheckContext) -> Optional[Verdict]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class EditCheck(Check):
    """A check that only looks at file-editing tools."""

    def applies_to(self, event: ToolEvent) -> bool:
        return event.is_edit
