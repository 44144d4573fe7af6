"""
Intent Detection
================

Turns a user prompt into the obligations the agent must meet before certain
tool classes are allowed.

Pattern tables are compiled once at import time. Each table entry is an
IntentPattern; an entry fires when any of its regexes matches the prompt.

Tables:
- TRIGGERS: named requirements (research, plan, bug_note, ...)
- MODIFIERS: qualifiers on how triggers are read (first, quick, again, ...)
- FRUSTRATION_SIGNALS: the user correcting or doubting the agent
- BIG_TASK_PATTERNS / RESEARCH_ONLY_PATTERNS: scope flags
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Pattern, Sequence, Tuple

from sopguard.models import RequirementSet, format_timestamp


@dataclass(frozen=True)
class IntentPattern:
    """A named group of regexes with a human-readable meaning."""
    name: str
    meaning: str
    patterns: Tuple[Pattern, ...]

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


def _intent(name: str, meaning: str, *regexes: str, flags: int = re.IGNORECASE) -> IntentPattern:
    return IntentPattern(name, meaning, tuple(re.compile(r, flags) for r in regexes))


# =============================================================================
# Pattern Tables
# =============================================================================

TRIGGERS: List[IntentPattern] = [
    _intent("task_loop", "Start a task loop with acceptance criteria",
            r"\btask.?loop\b", r"\bdo a.*loop\b"),
    _intent("research", "Research (memory, docs, web, examples, local code) before coding",
            r"\bresearch\b", r"\binvestigate\b", r"\blook into\b"),
    _intent("plan", "Show the plan in plain English for approval before implementing",
            r"\bmake a plan\b", r"\bplan this\b", r"\bplan first\b", r"\bcreate a plan\b"),
    _intent("explain", "Use plain English and define technical terms",
            r"\bexplain\b", r"\bwhat does.*mean\b", r"\bwhy\b.*\?"),
    _intent("commit", "Pull, status, diff, add, commit, update README",
            r"\bcommit\b", r"\bpush\b"),
    _intent("bug_note", "Record the bug in memory and check for patterns",
            r"\bmake note.*bug\b", r"\bnote this bug\b", r"\blog.*bug\b", r"\bcheck bug\b"),
    _intent("test_mode", "Kill, build, launch, stream logs",
            r"\btest mode\b"),
    _intent("verify", "Run full verification before claiming done",
            r"\bverify everything\b", r"\bmake sure everything\b", r"\bcheck everything\b"),
    _intent("show", "Display content directly instead of describing it",
            r"\bshow me\b", r"\blet me see\b", r"\bdisplay\b"),
    _intent("remember", "Store in memory",
            r"\bremember\b", r"\bsave this\b", r"\bstore this\b", r"\bdon'?t forget\b"),
    _intent("stop", "Interrupt the current action immediately",
            r"\bstop\b", r"\bwait\b", r"\bhold on\b", r"\bhang on\b"),
    _intent("session_end", "Produce the compliance summary and end the session",
            r"\bwrap up\b", r"\bend session\b", r"\bclose.*session\b", r"\bfinish up\b"),
]

MODIFIERS: List[IntentPattern] = [
    _intent("first", "Do this before any other action",
            r"first\b", r"\bbefore anything\b", r"\bbefore you\b"),
    _intent("just", "Minimal scope, do not over-engineer",
            r"\bjust\b", r"\bonly\b", r"\bminimal\b"),
    _intent("quick", "Speed matters but verification still runs",
            r"\bquick(ly)?\b", r"\bfast\b"),
    _intent("everything", "Leave no stone unturned",
            r"\beverything\b", r"\babsolutely\b", r"\ball\b", r"\bcomprehensive\b"),
    _intent("careful", "Extra attention required",
            r"\bcareful(ly)?\b", r"\bthoroughly\b"),
    _intent("again", "Previous attempt failed; use a different approach",
            r"\bagain\b", r"\bone more time\b"),
]

FRUSTRATION_SIGNALS: List[IntentPattern] = [
    _intent("correction", "The agent misunderstood",
            r"^no[,.]?\s", r"\bthat'?s not\b", r"\bi said\b", r"\bi already\b", r"\bi meant\b"),
    _intent("impatience", "The agent is being careless; slow down",
            r"\bidiot\b", r"\buse your head\b", r"\bthink\b", r"\bstop rushing\b"),
    _intent("skepticism", "The user doubts the response; verify before continuing",
            r"\.\.\.$", r"\breally\?", r"\bare you sure\b", r"\bhmm\b"),
    _intent("repetition", "A previous instruction was ignored; check history",
            r"\bi just said\b", r"\blike i said\b", r"\bas i mentioned\b"),
]

BIG_TASK_PATTERNS: Tuple[Pattern, ...] = tuple(re.compile(r, re.IGNORECASE) for r in (
    r"\b(rewrite|overhaul|redesign|re-?architect|migrate)\b",
    r"\b(entire|whole)\s+(codebase|project|system|app|application|module)\b",
    r"\ball\s+(the\s+)?(files|tests|modules|components|screens|endpoints)\b",
    r"\bcomplete(ly)?\s+(rewrite|overhaul|implementation|refactor)\b",
    r"\bsystem[- ]wide\b",
    r"\bfrom scratch\b",
    r"\brefactor\s+(everything|the\s+(whole|entire))\b",
))

RESEARCH_ONLY_PATTERNS: Tuple[Pattern, ...] = tuple(re.compile(r, re.IGNORECASE) for r in (
    r"\bresearch only\b",
    r"\bonly research\b",
    r"\bjust (research|investigate|look|explore|read)\b",
    r"\bdon'?t (change|edit|modify|touch|write)\b",
    r"\bdo not (change|edit|modify|touch|write)\b",
    r"\bno (changes|edits|code changes)\b",
    r"\bread[- ]only\b",
    r"\bwithout (changing|editing|modifying)\b",
))

BREAKER_RESET_PATTERN = re.compile(r"^\s*reset\s+(the\s+)?breaker\s*[.!]?\s*$", re.IGNORECASE)


# =============================================================================
# Analysis
# =============================================================================

@dataclass
class PromptAnalysis:
    """What a single prompt asks of the agent."""
    triggers: List[str] = field(default_factory=list)
    modifiers: List[str] = field(default_factory=list)
    frustration: List[str] = field(default_factory=list)
    is_big_task: bool = False
    is_research_only: bool = False
    breaker_reset: bool = False

    @property
    def has_intent(self) -> bool:
        """Whether this prompt should replace the current requirement set."""
        return bool(self.triggers) or self.is_big_task or self.is_research_only

    def to_requirements(self, moment: datetime) -> RequirementSet:
        return RequirementSet(
            requested=list(self.triggers),
            satisfied=[],
            modifiers=list(self.modifiers),
            timestamp=format_timestamp(moment),
            is_big_task=self.is_big_task,
            is_research_only=self.is_research_only,
        )


def _names(text: str, table: Sequence[IntentPattern]) -> List[str]:
    return [entry.name for entry in table if entry.matches(text)]


def describe(name: str, table: Sequence[IntentPattern] = TRIGGERS) -> Optional[str]:
    for entry in table:
        if entry.name == name:
            return entry.meaning
    return None


class IntentDetector:
    """
    Classifies prompts against the pattern tables.

    Tables can be replaced per instance to tune detection without touching
    the module-level defaults.
    """

    def __init__(
        self,
        triggers: Sequence[IntentPattern] = TRIGGERS,
        modifiers: Sequence[IntentPattern] = MODIFIERS,
        frustration: Sequence[IntentPattern] = FRUSTRATION_SIGNALS,
        big_task: Sequence[Pattern] = BIG_TASK_PATTERNS,
        research_only: Sequence[Pattern] = RESEARCH_ONLY_PATTERNS,
    ):
        self.triggers = list(triggers)
        self.modifiers = list(modifiers)
        self.frustration = list(frustration)
        self.big_task = list(big_task)
        self.research_only = list(research_only)

    def analyze(self, prompt: str) -> PromptAnalysis:
        text = (prompt or "").strip()
        if not text:
            return PromptAnalysis()
        return PromptAnalysis(
            triggers=_names(text, self.triggers),
            modifiers=_names(text, self.modifiers),
            frustration=_names(text, self.frustration),
            is_big_task=any(p.search(text) for p in self.big_task),
            is_research_only=any(p.search(text) for p in self.research_only),
            breaker_reset=bool(BREAKER_RESET_PATTERN.match(text)),
        )


def analyze_prompt(prompt: str) -> PromptAnalysis:
    """Analyze a prompt with the default tables."""
    return IntentDetector().analyze(prompt)
