"""
Task Loop
=========

A bounded, iterative task with acceptance criteria, an iteration budget and
a mandatory end-of-task summary.

Lifecycle:
    inactive --start--> active --summary--> active (summary pending accepted)
    active (summary accepted) --complete|cancel--> archived, inactive

The summary is three lines:

    Rating: 8/10 (SOP: 9 | Perf: 8)
    Done: what was accomplished
    Next: what comes next, including fixes for any missed rules

``SOP: N`` must equal the score computed from the rule tracking log.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from sopguard.exceptions import SummaryRejected, TaskLoopError
from sopguard.models import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_RESEARCH_STEPS,
    DEFAULT_SELF_EVAL,
    AcceptanceCriterion,
    IterationEntry,
    TaskLoopState,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from sopguard.rule_tracker import RuleTracker
from sopguard.state_store import StateStore, atomic_write_json

logger = logging.getLogger(__name__)

ARCHIVE_DIR = "task_loop_archive"

RATING_LINE = re.compile(r"^Rating:", re.IGNORECASE | re.MULTILINE)
DONE_LINE = re.compile(r"^Done:", re.IGNORECASE | re.MULTILINE)
NEXT_LINE = re.compile(r"^Next:", re.IGNORECASE)
SOP_IN_RATING = re.compile(r"Rating:.*SOP:\s*(\d+)", re.IGNORECASE)

# Domains cleared when a loop ends, so the next task starts fresh
RESET_ON_FINISH = ("requirements", "research", "edit_attempts", "edits")


def sop_score(violations: int) -> int:
    """Map a count of unique violated rules to a 5-10 score."""
    if violations <= 0:
        return 10
    if violations == 1:
        return 9
    if violations == 2:
        return 8
    if violations <= 4:
        return 7
    if violations <= 6:
        return 6
    return 5


def validate_summary(summary: str, expected_sop: int, missed_rules: Sequence[str]) -> List[str]:
    """Return schema errors for a summary; empty when it is acceptable."""
    errors = []
    if not RATING_LINE.search(summary):
        errors.append('Missing "Rating:" line')
    if not DONE_LINE.search(summary):
        errors.append('Missing "Done:" line')
    next_line = next((line for line in summary.splitlines() if NEXT_LINE.match(line)), None)
    if next_line is None:
        errors.append('Missing "Next:" line')

    match = SOP_IN_RATING.search(summary)
    if match:
        claimed = int(match.group(1))
        if claimed != expected_sop:
            errors.append(f"SOP mismatch: claimed {claimed}, actual {expected_sop}")

    if missed_rules:
        lowered = (next_line or "").lower()
        keywords = [rule.lower() for rule in missed_rules] + ["rule", "fix", "stop"]
        if not any(keyword in lowered for keyword in keywords):
            errors.append(f"Next must address missed rules: {', '.join(missed_rules)}")
    return errors


@dataclass
class LogResult:
    entry: IterationEntry
    over_budget: bool


class TaskLoop:
    """Task-loop state machine over the ``task_loop`` domain."""

    def __init__(self, store: StateStore, rule_tracker: RuleTracker, clock=utc_now):
        self.store = store
        self.rule_tracker = rule_tracker
        self._clock = clock

    @property
    def archive_dir(self) -> Path:
        return self.store.state_dir / ARCHIVE_DIR

    def _active(self) -> TaskLoopState:
        state = self.store.get("task_loop")
        if not state.active:
            raise TaskLoopError('No task loop active. Start one with: sopguard loop start "Task" --promise "..."')
        return state

    def status(self) -> Optional[TaskLoopState]:
        """The active loop, or None."""
        state = self.store.get("task_loop")
        return state if state.active else None

    def start(
        self,
        task: str,
        promise: str,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        criteria: Sequence[str] = (),
        research_steps: Sequence[str] = (),
        self_eval: Sequence[str] = (),
    ) -> TaskLoopState:
        if self.store.get("task_loop").active:
            raise TaskLoopError("A task loop is already active. Finish it with complete or cancel first.")
        task = (task or "").strip()
        if not task:
            raise TaskLoopError('No task provided. Usage: sopguard loop start "Task description" --promise "..."')
        promise = (promise or "").strip()
        if not promise:
            raise TaskLoopError('Completion promise required. Add: --promise "Statement that must be true"')
        if max_iterations < 1:
            raise TaskLoopError("--max-iterations must be at least 1")

        state = TaskLoopState(
            active=True,
            iteration=1,
            max_iterations=max_iterations,
            task=task,
            started_at=format_timestamp(self._clock()),
            completion_promise=promise,
            acceptance_criteria=[
                AcceptanceCriterion(id=idx, text=text) for idx, text in enumerate(criteria, start=1)
            ],
            research_steps=list(research_steps) or list(DEFAULT_RESEARCH_STEPS),
            self_eval_rubric=list(self_eval) or list(DEFAULT_SELF_EVAL),
        )
        return self.store.put("task_loop", state)

    def check(self, criterion_id: int) -> AcceptanceCriterion:
        """Mark a criterion done. Checking a checked criterion is a no-op."""
        state = self._active()
        criterion = state.criterion(criterion_id)
        if criterion is None:
            raise TaskLoopError(f"No criterion with ID {criterion_id}")
        if not criterion.checked:
            criterion.checked = True
            self.store.put("task_loop", state)
        return criterion

    def log(self, action: str, result: str, rule: Optional[str] = None) -> LogResult:
        state = self._active()
        entry = IterationEntry(
            num=state.iteration,
            action=action or "No action specified",
            result=result or "No result specified",
            timestamp=format_timestamp(self._clock()),
            rule=rule or None,
        )
        state.iteration_log.append(entry)
        state.iteration += 1
        self.store.put("task_loop", state)
        return LogResult(entry=entry, over_budget=state.iteration > state.max_iterations)

    def missed_rules(self, state: Optional[TaskLoopState] = None) -> List[str]:
        state = state or self._active()
        return self.rule_tracker.violated_rules_since(parse_timestamp(state.started_at))

    def score(self, state: Optional[TaskLoopState] = None) -> Tuple[int, List[str]]:
        """Current SOP score and the rules behind it."""
        missed = self.missed_rules(state)
        return sop_score(len(missed)), missed

    def summary(self, text: str) -> int:
        """
        Validate and store the end-of-task summary. Returns the SOP score.

        Raises:
            SummaryRejected: the summary does not follow the schema; state is unchanged
        """
        state = self._active()
        cleaned = "\n".join(line.rstrip() for line in (text or "").splitlines() if line.strip())
        score, missed = self.score(state)
        errors = validate_summary(cleaned, score, missed)
        if errors:
            raise SummaryRejected(errors)
        state.summary_provided = True
        state.summary_text = cleaned
        state.sop_score = score
        self.store.put("task_loop", state)
        return score

    def complete(self) -> TaskLoopState:
        state = self._active()
        unchecked = state.unchecked()
        if unchecked:
            listing = "; ".join(f"{c.id}. {c.text}" for c in unchecked)
            raise TaskLoopError(f"Cannot complete - unchecked criteria: {listing}. Use: sopguard loop check N")
        if not state.summary_provided:
            raise TaskLoopError("Summary required. Run: sopguard loop summary (then: sopguard loop complete)")
        return self._finish(state, "completed")

    def cancel(self) -> TaskLoopState:
        state = self._active()
        if not state.summary_provided:
            raise TaskLoopError("Summary required. Run: sopguard loop summary (then: sopguard loop cancel)")
        return self._finish(state, "cancelled")

    def _finish(self, state: TaskLoopState, outcome: str) -> TaskLoopState:
        self._archive(state, outcome)
        self.store.reset("task_loop")
        for domain in RESET_ON_FINISH:
            self.store.reset(domain)
        return state

    def _archive(self, state: TaskLoopState, outcome: str) -> Optional[Path]:
        moment = self._clock()
        data = state.to_dict()
        data["outcome"] = outcome
        data["archived_at"] = format_timestamp(moment)

        stem = moment.strftime("%Y%m%d-%H%M%S")
        path = self.archive_dir / f"{stem}.json"
        suffix = 1
        while path.exists():
            path = self.archive_dir / f"{stem}-{suffix}.json"
            suffix += 1
        try:
            atomic_write_json(path, data)
        except OSError as e:
            logger.warning("Could not archive task loop: %s", e)
            return None
        return path

    def archives(self) -> List[Path]:
        if not self.archive_dir.exists():
            return []
        return sorted(self.archive_dir.glob("*.json"))
