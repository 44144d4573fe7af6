"""
Hook Boundary
=============

Entry points for each hook event the host emits:

- SessionStart:     bootstrap the state dir, courtesy breaker reset
- UserPromptSubmit: detect intent, replace requirements, log corrections
- PreToolUse:       run the rule engine; block or allow
- PostToolUse:      record the outcome (breaker, research, edit tracking)

Payloads arrive as JSON. A payload that cannot be parsed is allowed (the
guard never wedges the agent on its own input problems). A critical state
write failure blocks with instructions to fix the state directory.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sopguard.checks import Verdict
from sopguard.config import SopGuardConfig
from sopguard.engine import RuleEngine, create_context
from sopguard.events import PromptEvent, SessionStartEvent, ToolEvent, parse_event
from sopguard.exceptions import MalformedInputError, StorageError
from sopguard.intent import IntentDetector, describe
from sopguard.models import utc_now
from sopguard.output import (
    console,
    print_block_panel,
    print_info,
    print_list,
    print_warning,
)
from sopguard.session import start_session

logger = logging.getLogger(__name__)

SESSION_START = "SessionStart"
USER_PROMPT_SUBMIT = "UserPromptSubmit"
PRE_TOOL_USE = "PreToolUse"
POST_TOOL_USE = "PostToolUse"

HOOK_EVENTS = (SESSION_START, USER_PROMPT_SUBMIT, PRE_TOOL_USE, POST_TOOL_USE)


@dataclass
class HookResult:
    """What a hook invocation decided, plus what to tell the agent."""
    exit_code: int = 0
    block: Optional[Verdict] = None
    warnings: List[Verdict] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.block is not None

    @property
    def reason(self) -> str:
        return self.block.render() if self.block is not None else ""

    def to_sdk_response(self) -> Dict[str, Any]:
        """Shape expected from an SDK hook callable."""
        if self.blocked:
            return {"decision": "block", "reason": self.reason}
        return {}


def resolve_project_dir(payload: Optional[Dict[str, Any]] = None) -> Path:
    """Project root: payload cwd, then CLAUDE_PROJECT_DIR, then the working directory."""
    if payload and isinstance(payload.get("cwd"), str) and payload["cwd"]:
        return Path(payload["cwd"])
    env_dir = os.environ.get("CLAUDE_PROJECT_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.cwd()


class HookHandler:
    """Dispatches hook events for one project."""

    def __init__(
        self,
        project_dir: Path,
        config: Optional[SopGuardConfig] = None,
        clock=utc_now,
        detector: Optional[IntentDetector] = None,
    ):
        self.project_dir = Path(project_dir)
        self.config = config or SopGuardConfig.load(self.project_dir)
        self.ctx = create_context(self.project_dir, self.config, clock)
        self.engine = RuleEngine(self.ctx)
        self.detector = detector or IntentDetector()
        self._clock = clock

    def handle(self, event_name: str, payload: Union[str, bytes, Dict[str, Any]]) -> HookResult:
        try:
            event = parse_event(payload, event_name)
        except MalformedInputError as e:
            logger.warning("Ignoring malformed %s payload: %s", event_name, e)
            return HookResult()

        try:
            if isinstance(event, SessionStartEvent):
                return self.session_start(event)
            if isinstance(event, PromptEvent):
                return self.user_prompt_submit(event)
            if event.hook_event_name == POST_TOOL_USE or event_name == POST_TOOL_USE:
                return self.post_tool_use(event)
            return self.pre_tool_use(event)
        except StorageError as e:
            return self._storage_failure(e)

    def session_start(self, event: SessionStartEvent) -> HookResult:
        context = start_session(self.project_dir, self.config, self.ctx.breaker)
        result = HookResult()
        result.messages.append(f"{context.project_name} session started")
        if context.sop_file:
            result.messages.append(f"SOP: {context.sop_file}")
        else:
            result.warnings.append(Verdict.warn(
                "sop_file", "No SOP file found (DEVELOPMENT.md, CONTRIBUTING.md, SOP.md)"))
        if context.breaker_was_reset:
            result.messages.append("Circuit breaker reset for the new session")
        if context.rule_files:
            result.messages.append(f"Pattern rules: {context.rule_files} loaded")
        if context.task_loop:
            result.messages.append(f"Task loop active: {context.task_loop}")
        result.messages.extend(context.notes)
        return result

    def user_prompt_submit(self, event: PromptEvent) -> HookResult:
        result = HookResult()
        analysis = self.detector.analyze(event.prompt)

        if analysis.breaker_reset:
            self.ctx.breaker.reset("user")
            result.messages.append("Circuit breaker reset by user")

        if analysis.has_intent:
            self.ctx.store.put("requirements", analysis.to_requirements(self._clock()))
            for name in analysis.triggers:
                result.messages.append(f"{name}: {describe(name)}")
            if analysis.is_big_task:
                result.messages.append("Big task detected: a task loop is required before editing")
            if analysis.is_research_only:
                result.messages.append("Research-only mode: edits and shared-state writes are blocked")

        if analysis.frustration:
            names = ", ".join(analysis.frustration)
            self.ctx.rule_tracker.log_violation(
                "user_correction", USER_PROMPT_SUBMIT, f"User correction detected: {names}",
                {"signals": analysis.frustration},
            )
            result.warnings.append(Verdict.warn(
                "user_correction",
                f"USER CORRECTION DETECTED: {names}",
                "Slow down and check what was missed.",
            ))
        return result

    def pre_tool_use(self, event: ToolEvent) -> HookResult:
        decision = self.engine.evaluate(event)
        return HookResult(
            exit_code=decision.exit_code(self.config.block_exit_code),
            block=decision.block,
            warnings=list(decision.warnings),
        )

    def post_tool_use(self, event: ToolEvent) -> HookResult:
        outcome = self.engine.record_outcome(event)
        result = HookResult()
        if outcome.research_category:
            result.messages.append(f"Research: {outcome.research_category} recorded")
        if outcome.breaker_tripped:
            state = self.ctx.breaker.state()
            result.warnings.append(Verdict.warn(
                "circuit_breaker",
                self.ctx.breaker.block_message(state),
                "All tools are blocked until the user says 'reset breaker'.",
            ))
        return result

    def _storage_failure(self, error: StorageError) -> HookResult:
        logger.error("%s", error)
        verdict = Verdict.block(
            "state_storage",
            f"STATE STORAGE FAILURE\n{error}",
            f"Check that {self.ctx.state_dir} exists and is writable (permissions, disk space), then retry.",
            counts_as_violation=False,
        )
        return HookResult(exit_code=self.config.block_exit_code, block=verdict)


def render(result: HookResult, out=None) -> None:
    """Print a hook result to the diagnostics console (stderr)."""
    target = out or console
    for message in result.messages:
        print_info(message, out=target)
    for warning in result.warnings:
        print_warning(warning.message, out=target)
        if warning.fix:
            print_list([warning.fix], bullet="arrow_right", out=target)
    if result.block is not None:
        print_block_panel(result.block.rule, result.block.message, result.block.fix, out=target)


def run_hook(
    event_name: str,
    payload: Union[str, bytes, Dict[str, Any]],
    project_dir: Optional[Path] = None,
    config: Optional[SopGuardConfig] = None,
    quiet: bool = False,
) -> int:
    """Handle one hook event end to end. Returns the process exit code."""
    if isinstance(payload, (str, bytes)):
        try:
            decoded = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            decoded = None
        if isinstance(decoded, dict):
            payload = decoded
    if project_dir is None:
        project_dir = resolve_project_dir(payload if isinstance(payload, dict) else None)
    handler = HookHandler(project_dir, config)
    result = handler.handle(event_name, payload)
    if not quiet:
        render(result)
    return result.exit_code


__all__ = [
    "HOOK_EVENTS",
    "HookHandler",
    "HookResult",
    "render",
    "resolve_project_dir",
    "run_hook",
]
