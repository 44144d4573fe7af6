"""
Gaming Detection
================

Heuristics that flag research requirements being satisfied by shortcuts
rather than real work.

Detectors implement GamingDetector and return a finding string or None.
GamingMonitor runs them, records findings in the ``patterns`` domain and
decides when repeated or simultaneous findings escalate to a block.
"""

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sopguard.audit_log import AuditLog
from sopguard.models import RESEARCH_CATEGORIES, PatternLog, ResearchStatus, utc_now
from sopguard.state_store import StateStore

GAMING_PATTERN = "gaming"


class GamingDetector(ABC):
    """One gaming heuristic."""

    name: str = ""

    @abstractmethod
    def detect(self, research: ResearchStatus, audit_log: AuditLog) -> Optional[str]:
        """Return a description of the finding, or None."""


class RapidCompletionDetector(GamingDetector):
    """Every research category completed within a few seconds of each other."""

    name = "rapid_completion"

    def __init__(self, min_seconds: float = 30.0, min_categories: int = len(RESEARCH_CATEGORIES)):
        self.min_seconds = min_seconds
        self.min_categories = min_categories

    def detect(self, research, audit_log):
        times = research.completion_times()
        if len(times) < self.min_categories:
            return None
        span = (max(times) - min(times)).total_seconds()
        if span < self.min_seconds:
            return (
                f"All {len(times)} research categories in {round(span)}s "
                f"(expected: >{round(self.min_seconds)}s)"
            )
        return None


class IdenticalTimestampDetector(GamingDetector):
    """Several categories carrying exactly the same completion timestamp."""

    name = "identical_timestamps"

    def __init__(self, min_categories: int = 3):
        self.min_categories = min_categories

    def detect(self, research, audit_log):
        stamps = [entry.completed_at for entry in research.categories.values() if entry.completed_at]
        if not stamps:
            return None
        shared = max(Counter(stamps).values())
        if shared >= self.min_categories:
            return f"{shared} research categories at identical timestamp"
        return None


class ErrorStuffingDetector(GamingDetector):
    """
    A run of failures immediately followed by a "successful" delegated task.

    Only outcome records (PostToolUse) are considered, and the window must be
    full before the detector fires.
    """

    name = "error_stuffing"

    def __init__(self, window: int = 10, error_rate: float = 0.7, tool: str = "Task"):
        self.window = window
        self.error_rate = error_rate
        self.tool = tool

    def detect(self, research, audit_log):
        recent = audit_log.recent_outcomes(self.window)
        if len(recent) < self.window:
            return None
        errors = sum(1 for record in recent if record.error_sig)
        rate = errors / len(recent)
        if rate < self.error_rate:
            return None
        last = recent[-1]
        if last.tool == self.tool and last.success:
            return f"{round(rate * 100)}% error rate, then {self.tool} 'succeeded'"
        return None


@dataclass
class GamingResult:
    findings: List[str] = field(default_factory=list)
    count: int = 0
    should_block: bool = False


class GamingMonitor:
    """Runs detectors and applies the escalation policy."""

    def __init__(
        self,
        store: StateStore,
        audit_log: AuditLog,
        detectors: Optional[Sequence[GamingDetector]] = None,
        block_count: int = 3,
        cooccurrence_block: int = 2,
        log_capacity: int = 10,
        clock=utc_now,
    ):
        self.store = store
        self.audit_log = audit_log
        self.detectors = list(detectors) if detectors is not None else default_detectors()
        self.block_count = block_count
        self.cooccurrence_block = cooccurrence_block
        self.log_capacity = log_capacity
        self._clock = clock

    def scan(self) -> List[str]:
        research = self.store.get("research")
        findings = []
        for detector in self.detectors:
            finding = detector.detect(research, self.audit_log)
            if finding:
                findings.append(finding)
        return findings

    def evaluate(self) -> GamingResult:
        """
        Scan, record any findings, and decide whether to block.

        Blocks when the cumulative gaming count reaches ``block_count`` or when
        ``cooccurrence_block`` detectors fire at once.
        """
        findings = self.scan()
        if not findings:
            return GamingResult()

        moment = self._clock()
        patterns: PatternLog = self.store.update(
            "patterns",
            lambda p: p.record(GAMING_PATTERN, findings, moment, self.log_capacity),
        )
        count = patterns.count(GAMING_PATTERN)
        should_block = count >= self.block_count or len(findings) >= self.cooccurrence_block
        return GamingResult(findings=findings, count=count, should_block=should_block)


def default_detectors(
    rapid_seconds: float = 30.0,
    identical_min: int = 3,
    error_window: int = 10,
    error_rate: float = 0.7,
) -> List[GamingDetector]:
    return [
        RapidCompletionDetector(min_seconds=rapid_seconds),
        IdenticalTimestampDetector(min_categories=identical_min),
        ErrorStuffingDetector(window=error_window, error_rate=error_rate),
    ]
