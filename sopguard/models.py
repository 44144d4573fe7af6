"""
State Models
============

Typed records for every persisted state domain. Each record serializes to a
plain dict (``to_dict``) and rebuilds from one (``from_dict``). ``from_dict``
tolerates missing fields so older state files keep loading, and it normalizes
values that would break an invariant instead of raising.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


RESEARCH_CATEGORIES = ("memory", "docs", "web", "external-examples", "local-code")

DEFAULT_MAX_ITERATIONS = 15
DEFAULT_BREAKER_THRESHOLD = 5

DEFAULT_RESEARCH_STEPS = [
    "Check memory for past failures",
    "Verify the API exists before using it",
    "Read the relevant documentation",
]

DEFAULT_SELF_EVAL = [
    "Did I verify before trying?",
    "Did I stop after 2 failures?",
    "Did I use project tools?",
    "Did I run the full verify cycle?",
]


# =============================================================================
# Timestamps
# =============================================================================

def utc_now() -> datetime:
    """Current time in UTC, truncated to seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with seconds precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC. None if invalid."""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Research
# =============================================================================

@dataclass
class ResearchEntry:
    completed_at: str
    tool: str = ""


@dataclass
class ResearchStatus:
    """Which research categories are complete, and when."""
    categories: Dict[str, ResearchEntry] = field(default_factory=dict)

    def mark(self, category: str, tool: str, moment: datetime) -> None:
        if category not in RESEARCH_CATEGORIES:
            raise ValueError(
                f"Unknown research category '{category}'. "
                f"Valid: {', '.join(RESEARCH_CATEGORIES)}"
            )
        self.categories[category] = ResearchEntry(format_timestamp(moment), tool)

    def is_done(self, category: str) -> bool:
        return category in self.categories

    def missing(self) -> List[str]:
        return [c for c in RESEARCH_CATEGORIES if c not in self.categories]

    def is_complete(self) -> bool:
        return not self.missing()

    def completion_times(self) -> List[datetime]:
        times = []
        for entry in self.categories.values():
            parsed = parse_timestamp(entry.completed_at)
            if parsed is not None:
                times.append(parsed)
        return times

    def to_dict(self) -> dict:
        return {name: asdict(entry) for name, entry in self.categories.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "ResearchStatus":
        categories: Dict[str, ResearchEntry] = {}
        for name, raw in (data or {}).items():
            if name not in RESEARCH_CATEGORIES or not isinstance(raw, dict):
                continue
            # Entries with unparsable timestamps are treated as unset
            if parse_timestamp(raw.get("completed_at")) is None:
                continue
            categories[name] = ResearchEntry(
                completed_at=raw["completed_at"],
                tool=str(raw.get("tool") or ""),
            )
        return cls(categories=categories)


# =============================================================================
# Requirements
# =============================================================================

def _unique(items) -> List[str]:
    seen: List[str] = []
    for item in items or []:
        if item not in seen:
            seen.append(item)
    return seen


@dataclass
class RequirementSet:
    """
    Obligations detected from the most recent user prompt.

    ``satisfied`` is always a subset of ``requested``; anything else is
    dropped on construction.
    """
    requested: List[str] = field(default_factory=list)
    satisfied: List[str] = field(default_factory=list)
    modifiers: List[str] = field(default_factory=list)
    timestamp: Optional[str] = None
    is_big_task: bool = False
    is_research_only: bool = False
    evidence: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        self.requested = _unique(self.requested)
        self.satisfied = [s for s in _unique(self.satisfied) if s in self.requested]
        self.modifiers = _unique(self.modifiers)

    def satisfy(self, name: str) -> bool:
        """Mark a requirement satisfied. Returns False if it was never requested."""
        if name not in self.requested:
            return False
        if name not in self.satisfied:
            self.satisfied.append(name)
        return True

    def is_requested(self, name: str) -> bool:
        return name in self.requested

    def is_satisfied(self, name: str) -> bool:
        return name in self.satisfied

    def unsatisfied(self) -> List[str]:
        return [r for r in self.requested if r not in self.satisfied]

    def add_evidence(self, key: str, amount: int = 1) -> int:
        self.evidence[key] = self.evidence.get(key, 0) + amount
        return self.evidence[key]

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RequirementSet":
        data = dict(data or {})
        data.setdefault("requested", [])
        data.setdefault("satisfied", [])
        data.setdefault("modifiers", [])
        data.setdefault("timestamp", None)
        data.setdefault("is_big_task", False)
        data.setdefault("is_research_only", False)
        data.setdefault("evidence", {})
        known = {k: data[k] for k in cls.__dataclass_fields__}
        return cls(**known)


# =============================================================================
# Edit attempts
# =============================================================================

@dataclass
class EditAttemptCounter:
    count: int = 0
    last_attempt: Optional[str] = None
    reset_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EditAttemptCounter":
        data = data or {}
        return cls(
            count=max(0, int(data.get("count", 0))),
            last_attempt=data.get("last_attempt"),
            reset_at=data.get("reset_at"),
        )


# =============================================================================
# Circuit breaker
# =============================================================================

@dataclass
class CircuitBreakerState:
    failures: int = 0
    tripped: bool = False
    threshold: int = DEFAULT_BREAKER_THRESHOLD
    last_error: Optional[str] = None
    tripped_at: Optional[str] = None
    trip_reason: Optional[str] = None
    reset_at: Optional[str] = None
    reset_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CircuitBreakerState":
        data = dict(data or {})
        data.setdefault("failures", 0)
        data.setdefault("tripped", False)
        data.setdefault("threshold", DEFAULT_BREAKER_THRESHOLD)
        known = {k: data.get(k) for k in cls.__dataclass_fields__}
        state = cls(**known)
        state.failures = max(0, int(state.failures))
        state.threshold = max(1, int(state.threshold))
        state.tripped = bool(state.tripped)
        return state


# =============================================================================
# Task loop
# =============================================================================

@dataclass
class AcceptanceCriterion:
    id: int
    text: str
    checked: bool = False


@dataclass
class IterationEntry:
    num: int
    action: str
    result: str
    timestamp: str
    rule: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.rule is None:
            del data["rule"]
        return data


@dataclass
class TaskLoopState:
    """A bounded iterative task. Inactive unless ``active`` is set."""
    active: bool = False
    iteration: int = 1
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    task: str = ""
    started_at: Optional[str] = None
    completion_promise: str = ""
    acceptance_criteria: List[AcceptanceCriterion] = field(default_factory=list)
    iteration_log: List[IterationEntry] = field(default_factory=list)
    summary_provided: bool = False
    summary_text: Optional[str] = None
    sop_score: Optional[int] = None
    research_steps: List[str] = field(default_factory=list)
    self_eval_rubric: List[str] = field(default_factory=list)

    def criterion(self, criterion_id: int) -> Optional[AcceptanceCriterion]:
        for item in self.acceptance_criteria:
            if item.id == criterion_id:
                return item
        return None

    def unchecked(self) -> List[AcceptanceCriterion]:
        return [c for c in self.acceptance_criteria if not c.checked]

    def progress(self) -> str:
        checked = len(self.acceptance_criteria) - len(self.unchecked())
        return f"{checked}/{len(self.acceptance_criteria)}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["iteration_log"] = [entry.to_dict() for entry in self.iteration_log]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TaskLoopState":
        data = dict(data or {})
        criteria = [
            AcceptanceCriterion(
                id=int(c.get("id", idx)),
                text=str(c.get("text", "")),
                checked=bool(c.get("checked", False)),
            )
            for idx, c in enumerate(data.get("acceptance_criteria") or [], start=1)
            if isinstance(c, dict)
        ]
        log = [
            IterationEntry(
                num=int(e.get("num", 0)),
                action=str(e.get("action", "")),
                result=str(e.get("result", "")),
                timestamp=str(e.get("timestamp", "")),
                rule=e.get("rule"),
            )
            for e in data.get("iteration_log") or []
            if isinstance(e, dict)
        ]
        return cls(
            active=bool(data.get("active", False)),
            iteration=max(1, int(data.get("iteration", 1))),
            max_iterations=int(data.get("max_iterations", DEFAULT_MAX_ITERATIONS)),
            task=str(data.get("task") or ""),
            started_at=data.get("started_at"),
            completion_promise=str(data.get("completion_promise") or ""),
            acceptance_criteria=criteria,
            iteration_log=log,
            summary_provided=bool(data.get("summary_provided", False)),
            summary_text=data.get("summary_text"),
            sop_score=data.get("sop_score"),
            research_steps=list(data.get("research_steps") or []),
            self_eval_rubric=list(data.get("self_eval_rubric") or []),
        )


# =============================================================================
# Pattern log
# =============================================================================

@dataclass
class PatternLog:
    """Per-pattern counters plus a bounded history of gaming detections."""
    weak_spots: Dict[str, int] = field(default_factory=dict)
    gaming_log: List[Dict[str, Any]] = field(default_factory=list)

    def record(self, pattern: str, warnings: List[str], moment: datetime, capacity: int) -> int:
        """Bump the counter for ``pattern`` and append to the ring buffer."""
        self.weak_spots[pattern] = self.weak_spots.get(pattern, 0) + 1
        self.gaming_log.append({"timestamp": format_timestamp(moment), "warnings": list(warnings)})
        if len(self.gaming_log) > capacity:
            self.gaming_log = self.gaming_log[-capacity:]
        return self.weak_spots[pattern]

    def count(self, pattern: str) -> int:
        return self.weak_spots.get(pattern, 0)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PatternLog":
        data = data or {}
        spots = {
            str(k): int(v) for k, v in (data.get("weak_spots") or {}).items()
            if isinstance(v, (int, float))
        }
        history = [e for e in data.get("gaming_log") or [] if isinstance(e, dict)]
        return cls(weak_spots=spots, gaming_log=history)


# =============================================================================
# Enforcement / edit tracking
# =============================================================================

@dataclass
class EnforcementState:
    halted: bool = False
    halted_reason: Optional[str] = None
    halted_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EnforcementState":
        data = data or {}
        return cls(
            halted=bool(data.get("halted", False)),
            halted_reason=data.get("halted_reason"),
            halted_at=data.get("halted_at"),
        )


@dataclass
class EditTracking:
    unique_files: List[str] = field(default_factory=list)
    count: int = 0

    def record(self, path: str) -> None:
        self.count += 1
        if path and path not in self.unique_files:
            self.unique_files.append(path)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EditTracking":
        data = data or {}
        return cls(
            unique_files=_unique(data.get("unique_files")),
            count=max(0, int(data.get("count", 0))),
        )
