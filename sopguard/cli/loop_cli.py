#!/usr/bin/env python
"""
Task Loop CLI
=============

Start, track and close a bounded task loop for the current project.

Usage:
    sopguard loop start "Fix login timeout" --promise "Login works on slow links" \\
        --criteria "Timeout raised to 30s" --criteria "Regression test added"
    sopguard loop status
    sopguard loop check 1
    sopguard loop log "Raised timeout" "Tests pass" [rule]
    sopguard loop summary        # reads stdin until a line containing only END
    sopguard loop complete
    sopguard loop cancel

Aliases: s=status, c=check, l=log, sum=summary, done=complete, stop=cancel
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from sopguard.config import SopGuardConfig
from sopguard.exceptions import StorageError, SummaryRejected, TaskLoopError
from sopguard.hooks import resolve_project_dir
from sopguard.models import TaskLoopState
from sopguard.output import (
    icon,
    print_error,
    print_header,
    print_info,
    print_key_value,
    print_list,
    print_muted,
    print_panel,
    print_plain,
    print_success,
    print_warning,
    stdout_console,
)
from sopguard.rule_tracker import RuleTracker
from sopguard.state_store import StateStore
from sopguard.task_loop import TaskLoop

SUMMARY_TERMINATOR = "END"

ALIASES = {
    "s": "status",
    "c": "check",
    "l": "log",
    "sum": "summary",
    "done": "complete",
    "stop": "cancel",
}


def create_task_loop(project_dir: Path, config: Optional[SopGuardConfig] = None) -> TaskLoop:
    config = config or SopGuardConfig.load(project_dir)
    state_dir = config.state_dir(project_dir)
    return TaskLoop(StateStore(state_dir), RuleTracker(state_dir))


def read_summary(stream: TextIO) -> str:
    """Read lines until a line that is exactly END (or end of input)."""
    lines: List[str] = []
    for line in stream:
        if line.strip() == SUMMARY_TERMINATOR:
            break
        lines.append(line.rstrip("\n"))
    return "\n".join(lines)


def print_criteria(state: TaskLoopState) -> None:
    if not state.acceptance_criteria:
        print_muted("  (no acceptance criteria)", out=stdout_console)
        return
    for criterion in state.acceptance_criteria:
        box = icon("box_checked") if criterion.checked else icon("box_empty")
        print_plain(f"  {box} {criterion.id}. {criterion.text}", out=stdout_console)


# =============================================================================
# Commands
# =============================================================================

def cmd_start(args: argparse.Namespace) -> int:
    """Start a new task loop."""
    loop = create_task_loop(args.project_dir)
    max_iterations = args.max_iterations
    if max_iterations is None:
        max_iterations = SopGuardConfig.load(args.project_dir).default_max_iterations
    state = loop.start(
        task=" ".join(args.task),
        promise=args.promise or "",
        max_iterations=max_iterations,
        criteria=args.criteria or [],
        research_steps=args.research or [],
        self_eval=args.eval or [],
    )

    print_success(f"TASK LOOP: {state.task}", out=stdout_console)
    print_muted(f"  Max: {state.max_iterations} | Promise: {state.completion_promise}", out=stdout_console)
    print_header("Criteria", out=stdout_console)
    print_criteria(state)
    print_header("Research first", out=stdout_console)
    print_list(state.research_steps, out=stdout_console)
    print_muted("Commands: status, check N, log \"X\" \"Y\", summary, complete", out=stdout_console)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show the active loop."""
    loop = create_task_loop(args.project_dir)
    state = loop.status()
    if state is None:
        print_plain("No task loop active.", out=stdout_console)
        print_muted('Start one with: sopguard loop start "Task" --promise "Done"', out=stdout_console)
        return 0

    print_header(f"TASK LOOP: {state.task}", out=stdout_console)
    print_key_value("Progress", f"{state.progress()} | Iter: {state.iteration}/{state.max_iterations}",
                    out=stdout_console)
    print_key_value("Promise", state.completion_promise, out=stdout_console)
    print_key_value("Started", state.started_at, out=stdout_console)
    print_criteria(state)

    if state.iteration_log:
        print_header("Recent iterations", out=stdout_console)
        for entry in state.iteration_log[-5:]:
            line = f"  {entry.num}. {entry.action} -> {entry.result}"
            if entry.rule:
                line += f" [{entry.rule}]"
            print_plain(line, out=stdout_console)

    score, missed = loop.score(state)
    print_key_value("SOP", f"{score}/10 | Missed: {', '.join(missed) or 'none'}", out=stdout_console)
    if state.summary_provided:
        print_info("Summary accepted. Run: sopguard loop complete", out=stdout_console)
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Mark an acceptance criterion done."""
    loop = create_task_loop(args.project_dir)
    criterion = loop.check(args.criterion_id)
    state = loop.status()
    print_success(f"Checked: {criterion.text}", out=stdout_console)
    print_muted(f"  Progress: {state.progress()}", out=stdout_console)
    return 0


def cmd_log(args: argparse.Namespace) -> int:
    """Record one iteration."""
    loop = create_task_loop(args.project_dir)
    logged = loop.log(args.action, args.result, args.rule)
    print_success(f"Logged iteration {logged.entry.num}: {logged.entry.action}", out=stdout_console)
    if logged.over_budget:
        state = loop.status()
        print_warning(
            f"Iteration budget exceeded ({state.iteration - 1}/{state.max_iterations}). "
            "Wrap up: write the summary and complete or cancel.",
            out=stdout_console,
        )
    return 0


def cmd_summary(args: argparse.Namespace) -> int:
    """Validate and store the end-of-task summary read from stdin."""
    loop = create_task_loop(args.project_dir)
    state = loop.status()
    if state is None:
        raise TaskLoopError('No task loop active. Start one with: sopguard loop start "Task" --promise "..."')

    score, missed = loop.score(state)
    print_plain(f"SOP: {score}/10 | Missed: {', '.join(missed) or 'none'}", out=stdout_console)
    print_muted(f'Format: Rating | Done | Next (end with "{SUMMARY_TERMINATOR}")', out=stdout_console)

    text = read_summary(sys.stdin)
    try:
        loop.summary(text)
    except SummaryRejected as e:
        print_error("INVALID", out=stdout_console)
        print_list(e.errors, bullet="cross", out=stdout_console)
        print_muted(f"Expected: Rating: N/10 (SOP: {score} | Perf: N)", out=stdout_console)
        return 1

    print_success("Accepted. Run: sopguard loop complete", out=stdout_console)
    return 0


def cmd_complete(args: argparse.Namespace) -> int:
    """Archive a finished loop."""
    loop = create_task_loop(args.project_dir)
    state = loop.complete()
    print_success("TASK LOOP COMPLETE", out=stdout_console)
    print_panel(state.summary_text or "", title="Summary", out=stdout_console)
    return 0


def cmd_cancel(args: argparse.Namespace) -> int:
    """Archive an abandoned loop."""
    loop = create_task_loop(args.project_dir)
    state = loop.cancel()
    print_warning("TASK LOOP CANCELLED", out=stdout_console)
    print_panel(state.summary_text or "", title="Summary", out=stdout_console)
    return 0


# =============================================================================
# Main
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sopguard loop",
        description="Bounded task loops with acceptance criteria and a mandatory summary",
        epilog="Aliases: s=status, c=check, l=log, sum=summary, done=complete, stop=cancel",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=None,
        help="Project root (default: $CLAUDE_PROJECT_DIR or the current dir)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    start_parser = subparsers.add_parser("start", help="Start a task loop")
    start_parser.add_argument("task", nargs="+", help="Task description")
    start_parser.add_argument("--max-iterations", "-m", type=int, default=None,
                              help="Iteration budget (default: 15)")
    start_parser.add_argument("--criteria", "-c", action="append", help="Acceptance criterion (repeatable)")
    start_parser.add_argument("--promise", "-p", help="Statement that must be true when done")
    start_parser.add_argument("--research", "-r", action="append", help="Research step (repeatable)")
    start_parser.add_argument("--eval", "-e", action="append", help="Self-evaluation question (repeatable)")

    subparsers.add_parser("status", aliases=["s"], help="Show the active loop")

    check_parser = subparsers.add_parser("check", aliases=["c"], help="Check off a criterion")
    check_parser.add_argument("criterion_id", type=int, help="Criterion ID")

    log_parser = subparsers.add_parser("log", aliases=["l"], help="Log an iteration")
    log_parser.add_argument("action", help="What was done")
    log_parser.add_argument("result", nargs="?", default="", help="What happened")
    log_parser.add_argument("rule", nargs="?", default=None, help="Rule the iteration relates to")

    subparsers.add_parser("summary", aliases=["sum"], help="Submit the summary on stdin")
    subparsers.add_parser("complete", aliases=["done"], help="Complete and archive the loop")
    subparsers.add_parser("cancel", aliases=["stop"], help="Cancel and archive the loop")
    subparsers.add_parser("help", help="Show this help")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command or args.command == "help":
        parser.print_help()
        return 0 if args.command == "help" else 1

    if args.project_dir is None:
        args.project_dir = resolve_project_dir()

    commands = {
        "start": cmd_start,
        "status": cmd_status,
        "check": cmd_check,
        "log": cmd_log,
        "summary": cmd_summary,
        "complete": cmd_complete,
        "cancel": cmd_cancel,
    }

    handler = commands.get(ALIASES.get(args.command, args.command))
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except TaskLoopError as e:
        print_error(str(e), out=stdout_console)
        return 1
    except StorageError as e:
        print_error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
