"""
Process checks: research, requirements and task-loop discipline.
"""

import re

from sopguard.checks.base import Check, EditCheck, Verdict
from sopguard.checks.shell import is_sopguard_invocation
from sopguard.events import McpEvent
from sopguard.models import RESEARCH_CATEGORIES, format_timestamp
from sopguard.research import is_research_tool

RESEARCH_STEPS = (
    "1. memory: check past bugs and patterns (mcp__memory__read_graph)",
    "2. docs: verify the APIs exist (context7, apple-docs)",
    "3. web: current best practices (WebSearch, WebFetch)",
    "4. external-examples: real-world usage (mcp__github__search_*)",
    "5. local-code: understand the existing code (Read, Grep, Glob)",
)


def _is_global_mutation(event) -> bool:
    return isinstance(event, McpEvent) and event.server == "memory" and event.is_write


def _is_external_mutation(event) -> bool:
    return isinstance(event, McpEvent) and event.server == "github" and event.is_write


def _missing_research(ctx) -> str:
    return ", ".join(ctx.research.missing())


class ResearchOnlyModeCheck(Check):
    """The user asked for research only: nothing may change."""

    name = "research_only_mode"
    rule = "research_only_mode"

    def applies_to(self, event):
        return event.is_edit or _is_global_mutation(event) or _is_external_mutation(event)

    def evaluate(self, event, ctx):
        if not ctx.store.get("requirements").is_research_only:
            return None
        return Verdict.block(
            self.rule,
            "RESEARCH-ONLY MODE ACTIVE\n"
            f"User requested research/investigation only. '{event.tool_name}' would make changes.",
            "Report findings instead. Ask the user for an action request before changing anything.",
        )


class GlobalMutationCheck(Check):
    """Shared memory affects every project: research before writing to it."""

    name = "global_mutation"
    rule = "global_mutation"

    def applies_to(self, event):
        return _is_global_mutation(event)

    def evaluate(self, event, ctx):
        if ctx.research.is_complete():
            return None
        return Verdict.block(
            self.rule,
            "GLOBAL MUTATION BLOCKED\n"
            f"'{event.tool_name}' affects ALL projects (memory is shared).\n"
            f"Missing research: {_missing_research(ctx)}",
            "Read the memory graph to understand current state, then complete research.",
        )


class ExternalMutationCheck(Check):
    """GitHub writes are visible to others: research before making them."""

    name = "external_mutation"
    rule = "external_mutation"

    def applies_to(self, event):
        return _is_external_mutation(event)

    def evaluate(self, event, ctx):
        if ctx.research.is_complete():
            return None
        return Verdict.block(
            self.rule,
            "EXTERNAL MUTATION BLOCKED\n"
            f"'{event.tool_name}' affects external systems (GitHub).\n"
            f"Missing research: {_missing_research(ctx)}",
            "Use mcp__github__get_* or mcp__github__list_* to understand state first.",
        )


EDIT_KEYWORDS = (
    "edit", "write", "modify", "change", "update", "fix", "implement",
    "refactor", "create file", "add to", "delete", "remove", "rewrite",
)


class SubagentBypassCheck(Check):
    """A subagent may not do the edits the main agent is not yet allowed to do."""

    name = "subagent_bypass"
    rule = "subagent_bypass"

    def applies_to(self, event):
        return event.tool_name == "Task"

    def evaluate(self, event, ctx):
        prompt = event.prompt.lower()
        if not any(keyword in prompt for keyword in EDIT_KEYWORDS):
            return None
        if ctx.research.is_complete():
            return None
        return Verdict.block(
            self.rule,
            f"SUBAGENT BYPASS BLOCKED\nTask appears to be for editing: {event.prompt[:50]}",
            f"Complete research first ({len(RESEARCH_CATEGORIES)} categories). "
            f"Missing: {_missing_research(ctx)}",
        )


class TaskLoopRequiredCheck(EditCheck):
    """Big tasks run inside a task loop."""

    name = "task_loop_required"
    rule = "task_loop_required"

    def evaluate(self, event, ctx):
        reqs = ctx.store.get("requirements")
        if not (reqs.is_big_task or reqs.is_requested("task_loop")):
            return None
        if ctx.store.get("task_loop").active:
            return None
        reason = "Big task detected" if reqs.is_big_task else "User requested a task loop"
        return Verdict.block(
            self.rule,
            f"TASK LOOP REQUIRED\n{reason} but no task loop is active.",
            'Start one: sopguard loop start "<task>" --criteria "..." --promise "..."',
        )


DONE_CLAIM = re.compile(r"\b(done|complete|completed|finished)\b", re.IGNORECASE)

VERIFY_COMMAND = re.compile(
    r"\bverify\b|\bqa\.(rb|py)\b|\bpytest\b|\btox\b|\bnox\b"
    r"|\b(npm|yarn|pnpm)\s+(run\s+)?test\b|\bmake\s+(test|check)\b"
    r"|\b(swift|cargo|go)\s+test\b|\bxcodebuild\b.*\btest\b"
    r"|\bpython3?\s+-m\s+(pytest|unittest)\b"
)


class RequirementsCheck(Check):
    """
    Obligations detected from the user's prompt.

    Enforced: research, plan, bug_note, verify, task_loop. Other triggers
    are advisory and only surfaced when the prompt is analyzed.

    Before judging, satisfied-by-evidence requirements are marked:
    - research: every category complete, or enough research tool calls seen
    - bug_note: a write to the memory server
    - verify: a verification command
    - task_loop: a task loop is active
    """

    name = "requirements"
    rule = "requirements"

    def applies_to(self, event):
        return True

    def _auto_satisfy(self, event, ctx, reqs):
        newly = []
        unsatisfied = reqs.unsatisfied()
        if "research" in unsatisfied:
            evidence = reqs.evidence.get("research_tools", 0)
            if ctx.research.is_complete() or evidence >= ctx.config.research_evidence_threshold:
                newly.append("research")
        if "bug_note" in unsatisfied and _is_global_mutation(event):
            newly.append("bug_note")
        if "verify" in unsatisfied and event.tool_name == "Bash" and VERIFY_COMMAND.search(event.command):
            newly.append("verify")
        if "task_loop" in unsatisfied and ctx.store.get("task_loop").active:
            newly.append("task_loop")
        if newly:
            def mark(r):
                for name in newly:
                    r.satisfy(name)
            reqs = ctx.store.update("requirements", mark)
        return reqs

    def evaluate(self, event, ctx):
        reqs = ctx.store.get("requirements")
        if not reqs.requested:
            return None
        reqs = self._auto_satisfy(event, ctx, reqs)
        unsatisfied = reqs.unsatisfied()
        if not unsatisfied:
            return None
        if event.tool_name == "Bash" and is_sopguard_invocation(event.command):
            return None

        is_bash = event.tool_name == "Bash"
        if "research" in unsatisfied and not is_research_tool(event.tool_name) and (event.is_edit or is_bash):
            return Verdict.block(
                "research_first",
                "REQUIREMENTS NOT MET\nUser requested research before implementation.",
                "Research first (Read, Grep, WebSearch, docs, memory); implementation unlocks "
                "once research is complete.",
                details={"requested": reqs.requested, "unsatisfied": unsatisfied},
            )
        if "plan" in unsatisfied and event.is_edit:
            return Verdict.block(
                "plan_approval",
                "REQUIREMENTS NOT MET\nUser requested a plan before implementation.",
                "Show the plan in plain English for approval; the user marks it with: "
                "sopguard requirements satisfy plan",
                details={"requested": reqs.requested, "unsatisfied": unsatisfied},
            )
        if "bug_note" in unsatisfied and (event.is_edit or is_bash):
            return Verdict.block(
                "bug_to_memory",
                "REQUIREMENTS NOT MET\nBug note requested but memory not updated.",
                "Use mcp__memory__create_entities or mcp__memory__add_observations to log the bug.",
                details={"requested": reqs.requested, "unsatisfied": unsatisfied},
            )
        if "verify" in unsatisfied and event.is_edit and DONE_CLAIM.search(event.new_text):
            return Verdict.block(
                "verify_before_done",
                'REQUIREMENTS NOT MET\nClaiming "done" but verification was not run.',
                "Run the project's verification (tests, QA script) before claiming done.",
                details={"requested": reqs.requested, "unsatisfied": unsatisfied},
            )
        if "task_loop" in unsatisfied and event.is_edit:
            return Verdict.block(
                "task_loop_required",
                "REQUIREMENTS NOT MET\nUser requested a task loop but none is active.",
                'Start one: sopguard loop start "<task>" --criteria "..." --promise "..."',
                details={"requested": reqs.requested, "unsatisfied": unsatisfied},
            )
        return None


CASUAL_RATING_PATTERNS = [
    re.compile(r"Self-Rating:\s*\d+/10", re.IGNORECASE),
    re.compile(r"Rating:\s*\d+/10", re.IGNORECASE),
    re.compile(r"\*\*Self-rating:\s*\d+/10\*\*", re.IGNORECASE),
    re.compile(r"My rating:\s*\d+/10", re.IGNORECASE),
]

LAZY_COMMIT = re.compile(r"git\s+commit\s+(-a\s+)?-m", re.IGNORECASE)


def is_casual_self_rating(content: str) -> bool:
    if "SOP Compliance:" in content and "Performance:" in content:
        return False
    return any(p.search(content) for p in CASUAL_RATING_PATTERNS)


def is_lazy_commit(command: str) -> bool:
    if not LAZY_COMMIT.search(command):
        return False
    return "status" not in command and "diff" not in command


class ProcessCheck(Check):
    """No shortcuts: proper self-rating format and full commit workflow."""

    name = "process"
    rule = "process"

    def applies_to(self, event):
        return event.is_edit or event.tool_name == "Bash"

    def evaluate(self, event, ctx):
        if event.is_edit and is_casual_self_rating(event.new_text):
            return Verdict.block(
                "proper_rating_format",
                "Detected casual self-rating without the required format.",
                "Use: SOP Compliance: X/10 (from the rule tracking log) + Performance: X/10 (with gaps)",
            )
        if event.tool_name == "Bash" and is_lazy_commit(event.command):
            return Verdict.block(
                "full_commit_workflow",
                'Detected "git commit -m" without the full workflow.',
                "Full workflow: git pull, status, diff, add, commit (update README if needed).",
            )
        return None


class ResearchBeforeEditCheck(EditCheck):
    """No edits until every research category is complete."""

    name = "research_before_edit"
    rule = "research_before_edit"

    def evaluate(self, event, ctx):
        if not ctx.config.require_research_before_edit:
            return None
        missing = ctx.research.missing()
        if not missing:
            return None
        return Verdict.block(
            self.rule,
            f"RESEARCH INCOMPLETE\nCannot edit until research is complete.\nMissing: {', '.join(missing)}",
            "Use research tools (or Task agents) for each missing category.",
            details={"missing": missing},
        )


class EditAttemptLimitCheck(EditCheck):
    """
    Impulse control: after N edits the approach has to be re-researched.

    Under the limit the attempt is counted and allowed. At the limit the
    counter and research are both reset and the edit is blocked.
    """

    name = "edit_attempt_limit"
    rule = "edit_attempt_limit"

    def evaluate(self, event, ctx):
        limit = ctx.config.max_edit_attempts
        moment = format_timestamp(ctx.clock())
        attempts = ctx.store.get("edit_attempts")

        if attempts.count < limit:
            def bump(a):
                a.count += 1
                a.last_attempt = moment
            ctx.store.update("edit_attempts", bump)
            return None

        count = attempts.count

        def clear(a):
            a.count = 0
            a.reset_at = moment
        ctx.store.update("edit_attempts", clear)
        ctx.research.reset()

        steps = "\n".join(f"  {step}" for step in RESEARCH_STEPS)
        return Verdict.block(
            self.rule,
            "EDIT ATTEMPT LIMIT REACHED\n"
            f"{count} edit attempts without success. Your understanding is wrong.\n"
            "Research has been RESET. Redo the full research process:\n"
            f"{steps}",
            f"Complete all {len(RESEARCH_CATEGORIES)} research categories to continue.",
            details={"attempts": count},
        )


class GamingCheck(EditCheck):
    """Flags research completed by shortcut; escalates to a block."""

    name = "gaming"
    rule = "gaming"

    def evaluate(self, event, ctx):
        result = ctx.gaming.evaluate()
        if not result.findings:
            return None
        patterns = "; ".join(result.findings)
        if result.should_block:
            return Verdict.block(
                self.rule,
                "GAMING DETECTION BLOCKED\n"
                f"Research gaming patterns detected ({result.count} attempts).\n"
                f"Patterns: {patterns}",
                "Redo research for real. The user can clear the record with: sopguard research reset",
                details={"findings": result.findings, "count": result.count},
            )
        return Verdict.warn(
            self.rule,
            f"GAMING WARNING: {patterns}",
            "Research each category properly; repeated warnings will block edits.",
            details={"findings": result.findings, "count": result.count},
        )
