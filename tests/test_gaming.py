"""
Tests for Gaming Detection
==========================

Tests for sopguard/gaming.py
"""

from datetime import datetime, timedelta, timezone

from sopguard.audit_log import AuditLog, AuditRecord
from sopguard.gaming import (
    ErrorStuffingDetector,
    GamingMonitor,
    IdenticalTimestampDetector,
    RapidCompletionDetector,
)
from sopguard.models import RESEARCH_CATEGORIES, ResearchStatus
from sopguard.state_store import StateStore

from conftest import FakeClock


START = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def research_at(offsets, categories=RESEARCH_CATEGORIES):
    """ResearchStatus with each category completed ``offset`` seconds after START."""
    status = ResearchStatus()
    for category, offset in zip(categories, offsets):
        status.mark(category, "test", START + timedelta(seconds=offset))
    return status


def outcome(idx, tool="Bash", error=None):
    return AuditRecord(
        timestamp=(START + timedelta(seconds=idx)).isoformat(),
        tool=tool,
        event="PostToolUse",
        error_sig=error,
        success=error is None,
    )


class TestRapidCompletionDetector:
    """Tests for RapidCompletionDetector."""

    def test_all_categories_in_seconds(self, tmp_path):
        finding = RapidCompletionDetector().detect(research_at([0, 2, 4, 6, 8]), AuditLog(tmp_path))
        assert finding == "All 5 research categories in 8s (expected: >30s)"

    def test_spread_out_research_passes(self, tmp_path):
        assert RapidCompletionDetector().detect(research_at([0, 60, 120, 180, 240]), AuditLog(tmp_path)) is None

    def test_incomplete_research_ignored(self, tmp_path):
        assert RapidCompletionDetector().detect(research_at([0, 1, 2]), AuditLog(tmp_path)) is None


class TestIdenticalTimestampDetector:
    """Tests for IdenticalTimestampDetector."""

    def test_three_identical(self, tmp_path):
        finding = IdenticalTimestampDetector().detect(research_at([5, 5, 5]), AuditLog(tmp_path))
        assert finding == "3 research categories at identical timestamp"

    def test_two_identical_is_fine(self, tmp_path):
        assert IdenticalTimestampDetector().detect(research_at([5, 5]), AuditLog(tmp_path)) is None

    def test_mixed_timestamps(self, tmp_path):
        assert IdenticalTimestampDetector().detect(research_at([5, 5, 6]), AuditLog(tmp_path)) is None

    def test_shared_stamp_among_others(self, tmp_path):
        finding = IdenticalTimestampDetector().detect(research_at([5, 5, 5, 95]), AuditLog(tmp_path))
        assert finding == "3 research categories at identical timestamp"

    def test_largest_group_is_reported(self, tmp_path):
        finding = IdenticalTimestampDetector().detect(research_at([7, 5, 7, 7, 7]), AuditLog(tmp_path))
        assert finding == "4 research categories at identical timestamp"


class TestErrorStuffingDetector:
    """Tests for ErrorStuffingDetector."""

    def test_errors_then_task_success(self, tmp_path):
        log = AuditLog(tmp_path)
        for idx in range(9):
            log.append(outcome(idx, error="failed"))
        log.append(outcome(9, tool="Task"))

        finding = ErrorStuffingDetector().detect(ResearchStatus(), log)
        assert finding == "90% error rate, then Task 'succeeded'"

    def test_requires_full_window(self, tmp_path):
        log = AuditLog(tmp_path)
        for idx in range(5):
            log.append(outcome(idx, error="failed"))
        log.append(outcome(5, tool="Task"))

        assert ErrorStuffingDetector().detect(ResearchStatus(), log) is None

    def test_low_error_rate(self, tmp_path):
        log = AuditLog(tmp_path)
        for idx in range(9):
            log.append(outcome(idx, error="failed" if idx % 2 else None))
        log.append(outcome(9, tool="Task"))

        assert ErrorStuffingDetector().detect(ResearchStatus(), log) is None

    def test_only_task_tool(self, tmp_path):
        log = AuditLog(tmp_path)
        for idx in range(9):
            log.append(outcome(idx, error="failed"))
        log.append(outcome(9, tool="Edit"))

        assert ErrorStuffingDetector().detect(ResearchStatus(), log) is None

    def test_evaluation_records_are_ignored(self, tmp_path):
        log = AuditLog(tmp_path)
        for idx in range(9):
            log.append(outcome(idx, error="failed"))
        log.append(outcome(9, tool="Task"))
        # PreToolUse evaluations after the outcomes do not push them out of the window
        for idx in range(5):
            log.append(AuditRecord(timestamp=START.isoformat(), tool="Read", event="PreToolUse"))

        assert ErrorStuffingDetector().detect(ResearchStatus(), log) is not None


class TestGamingMonitor:
    """Tests for GamingMonitor escalation."""

    def _monitor(self, tmp_path, detectors=None, clock=None):
        store = StateStore(tmp_path)
        return store, GamingMonitor(store, AuditLog(tmp_path), detectors=detectors, clock=clock or FakeClock())

    def test_no_findings(self, tmp_path):
        store, monitor = self._monitor(tmp_path)
        store.put("research", research_at([0, 60, 120, 180, 240]))

        result = monitor.evaluate()
        assert result.findings == []
        assert not result.should_block
        assert store.get("patterns").count("gaming") == 0

    def test_single_finding_escalates_on_third_count(self, tmp_path):
        store, monitor = self._monitor(tmp_path, detectors=[IdenticalTimestampDetector()])
        store.put("research", research_at([5, 5, 5]))

        first = monitor.evaluate()
        second = monitor.evaluate()
        third = monitor.evaluate()

        assert (first.count, first.should_block) == (1, False)
        assert (second.count, second.should_block) == (2, False)
        assert (third.count, third.should_block) == (3, True)

    def test_cooccurring_findings_block_immediately(self, tmp_path):
        store, monitor = self._monitor(tmp_path)
        store.put("research", research_at([0, 0, 0, 0, 0]))

        result = monitor.evaluate()
        assert len(result.findings) == 2
        assert result.count == 1
        assert result.should_block

    def test_history_is_recorded_and_bounded(self, tmp_path):
        store = StateStore(tmp_path)
        monitor = GamingMonitor(store, AuditLog(tmp_path), detectors=[IdenticalTimestampDetector()],
                                log_capacity=3, clock=FakeClock())
        store.put("research", research_at([5, 5, 5]))

        for _ in range(5):
            monitor.evaluate()

        patterns = store.get("patterns")
        assert patterns.count("gaming") == 5
        assert len(patterns.gaming_log) == 3
        assert patterns.gaming_log[-1]["warnings"] == ["3 research categories at identical timestamp"]
