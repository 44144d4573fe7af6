"""
Session Start
=============

Bootstraps the state directory for a new agent session and reports what the
agent should know up front. Never blocks.

A tripped circuit breaker is reset as a courtesy (threshold preserved);
task-loop and requirement state carry over untouched.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from sopguard.circuit_breaker import CircuitBreaker
from sopguard.config import SopGuardConfig
from sopguard.state_store import StateStore

SOP_CANDIDATES = ("DEVELOPMENT.md", "CONTRIBUTING.md", "SOP.md", "docs/SOP.md")

GITIGNORE_CONTENT = """\
# sopguard session state
*.json
*.jsonl
task_loop_archive/

!rules/
!settings.json
"""


@dataclass
class SessionContext:
    project_name: str
    state_dir: Path
    sop_file: Optional[str] = None
    breaker_was_reset: bool = False
    rule_files: int = 0
    task_loop: Optional[str] = None
    notes: List[str] = field(default_factory=list)


def ensure_state_dir(state_dir: Path) -> None:
    """Create the state directory and its .gitignore if missing."""
    state_dir.mkdir(parents=True, exist_ok=True)
    gitignore = state_dir / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text(GITIGNORE_CONTENT, encoding="utf-8")


def find_sop_file(project_dir: Path) -> Optional[str]:
    for candidate in SOP_CANDIDATES:
        if (project_dir / candidate).is_file():
            return candidate
    return None


def start_session(project_dir: Path, config: SopGuardConfig, breaker: Optional[CircuitBreaker] = None) -> SessionContext:
    project_dir = Path(project_dir)
    state_dir = config.state_dir(project_dir)
    ensure_state_dir(state_dir)

    store = StateStore(state_dir)
    breaker = breaker or CircuitBreaker(store, threshold=config.breaker_threshold)
    was_reset = breaker.session_reset() is not None

    context = SessionContext(
        project_name=project_dir.resolve().name,
        state_dir=state_dir,
        sop_file=find_sop_file(project_dir),
        breaker_was_reset=was_reset,
    )

    rules_dir = state_dir / "rules"
    if rules_dir.is_dir():
        context.rule_files = len(list(rules_dir.glob("*.md")))

    loop = store.get("task_loop")
    if loop.active:
        context.task_loop = f"{loop.task} ({loop.progress()} criteria, iteration {loop.iteration}/{loop.max_iterations})"

    if (state_dir / "memory.json").exists():
        context.notes.append("Memory available - read the memory graph at session start")
    return context
