#!/usr/bin/env python
"""
Admin CLI
=========

User-issued commands that change guard state directly. The agent's own
shell commands cannot edit state files, so these are the sanctioned way to
reset the breaker, record research, satisfy a requirement or pause
enforcement.

Usage:
    sopguard breaker status|reset|fail [--error TEXT]
    sopguard research status|reset
    sopguard research mark CATEGORY
    sopguard requirements status
    sopguard requirements satisfy NAME
    sopguard enforcement halt [--reason TEXT] | resume
    sopguard audit tail [--limit N]
    sopguard audit range START END
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from sopguard.audit_log import AuditRecord
from sopguard.checks import CheckContext
from sopguard.engine import create_context
from sopguard.exceptions import StorageError
from sopguard.hooks import resolve_project_dir
from sopguard.models import RESEARCH_CATEGORIES, EnforcementState, format_timestamp, parse_timestamp
from sopguard.output import (
    create_table,
    icon,
    print_error,
    print_info,
    print_key_value_table,
    print_muted,
    print_success,
    print_warning,
    stdout_console,
)


def _context(args: argparse.Namespace) -> CheckContext:
    return create_context(args.project_dir)


def _audit_row(record: AuditRecord) -> tuple:
    style = {"block": "sg.block", "warn": "sg.warn"}.get(record.result, "sg.pass")
    outcome = ""
    if record.success is True:
        outcome = f"[sg.ok]{icon('check')}[/]"
    elif record.success is False or record.error_sig:
        outcome = f"[sg.err]{icon('cross')}[/] {record.error_sig or ''}"
    return (
        f"[sg.timestamp]{record.timestamp}[/]",
        record.event,
        record.tool,
        f"[{style}]{record.result}[/]",
        ", ".join(record.rules_checked),
        outcome,
    )


# =============================================================================
# Circuit breaker
# =============================================================================

def cmd_breaker_status(args: argparse.Namespace) -> int:
    state = _context(args).breaker.state()
    print_key_value_table({
        "Tripped": "YES" if state.tripped else "no",
        "Failures": f"{state.failures}/{state.threshold}",
        "Last error": state.last_error or "-",
        "Tripped at": state.tripped_at or "-",
        "Reset at": f"{state.reset_at} ({state.reset_reason})" if state.reset_at else "-",
    }, title="Circuit Breaker", out=stdout_console)
    return 0


def cmd_breaker_reset(args: argparse.Namespace) -> int:
    _context(args).breaker.reset("user")
    print_success("Circuit breaker reset", out=stdout_console)
    return 0


def cmd_breaker_fail(args: argparse.Namespace) -> int:
    """Record a failure by hand (verification runs outside the agent, etc)."""
    ctx = _context(args)
    state = ctx.breaker.record_failure(args.error)
    if state.tripped:
        print_warning(ctx.breaker.block_message(state), out=stdout_console)
    else:
        print_info(f"Failure recorded ({state.failures}/{state.threshold})", out=stdout_console)
    return 0


# =============================================================================
# Research
# =============================================================================

def cmd_research_status(args: argparse.Namespace) -> int:
    status = _context(args).research.status()
    table = create_table(["Category", "Done", "Completed at", "Tool"], title="Research")
    for category in RESEARCH_CATEGORIES:
        entry = status.categories.get(category)
        if entry is None:
            table.add_row(category, f"[sg.err]{icon('cross')}[/]", "-", "-")
        else:
            table.add_row(category, f"[sg.ok]{icon('check')}[/]", entry.completed_at, entry.tool)
    stdout_console.print(table)
    if status.is_complete():
        print_success("All research categories complete", out=stdout_console)
    return 0


def cmd_research_mark(args: argparse.Namespace) -> int:
    try:
        status = _context(args).research.mark(args.category, "manual")
    except ValueError as e:
        print_error(str(e), out=stdout_console)
        return 1
    print_success(f"Research marked: {args.category}", out=stdout_console)
    if status.missing():
        print_muted(f"  Missing: {', '.join(status.missing())}", out=stdout_console)
    return 0


def cmd_research_reset(args: argparse.Namespace) -> int:
    _context(args).research.reset()
    print_success("Research progress cleared", out=stdout_console)
    return 0


# =============================================================================
# Requirements
# =============================================================================

def cmd_requirements_status(args: argparse.Namespace) -> int:
    reqs = _context(args).store.get("requirements")
    if not reqs.requested:
        print_info("No requirements from the last prompt", out=stdout_console)
        return 0
    table = create_table(["Requirement", "Satisfied"], title="Requirements")
    for name in reqs.requested:
        mark = f"[sg.ok]{icon('check')}[/]" if reqs.is_satisfied(name) else f"[sg.err]{icon('cross')}[/]"
        table.add_row(name, mark)
    stdout_console.print(table)
    flags = [label for label, on in (("big task", reqs.is_big_task), ("research only", reqs.is_research_only)) if on]
    if flags or reqs.modifiers:
        print_muted(f"  Flags: {', '.join(flags + reqs.modifiers)}", out=stdout_console)
    return 0


def cmd_requirements_satisfy(args: argparse.Namespace) -> int:
    ctx = _context(args)
    reqs = ctx.store.get("requirements")
    if not reqs.satisfy(args.name):
        print_error(f"'{args.name}' was not requested. Requested: {', '.join(reqs.requested) or 'none'}",
                    out=stdout_console)
        return 1
    ctx.store.put("requirements", reqs)
    print_success(f"Requirement satisfied: {args.name}", out=stdout_console)
    return 0


# =============================================================================
# Enforcement
# =============================================================================

def cmd_enforcement_halt(args: argparse.Namespace) -> int:
    ctx = _context(args)
    ctx.store.put("enforcement", EnforcementState(
        halted=True,
        halted_reason=args.reason,
        halted_at=format_timestamp(ctx.clock()),
    ))
    print_warning("Enforcement halted. The circuit breaker stays active.", out=stdout_console)
    return 0


def cmd_enforcement_resume(args: argparse.Namespace) -> int:
    _context(args).store.reset("enforcement")
    print_success("Enforcement resumed", out=stdout_console)
    return 0


# =============================================================================
# Audit log
# =============================================================================

def cmd_audit_tail(args: argparse.Namespace) -> int:
    records = _context(args).audit_log.recent(args.limit)
    if not records:
        print_info("Audit log is empty", out=stdout_console)
        return 0
    table = create_table(["Timestamp", "Event", "Tool", "Result", "Rules", "Outcome"],
                         title=f"Audit log (last {len(records)})")
    for record in records:
        table.add_row(*_audit_row(record))
    stdout_console.print(table)
    return 0


def cmd_audit_range(args: argparse.Namespace) -> int:
    start = parse_timestamp(args.start)
    end = parse_timestamp(args.end)
    if start is None or end is None:
        print_error("START and END must be ISO-8601 timestamps, e.g. 2025-01-31T09:00:00Z", out=stdout_console)
        return 1
    records = _context(args).audit_log.between(start, end)
    if not records:
        print_info("No audit records in range", out=stdout_console)
        return 0
    table = create_table(["Timestamp", "Event", "Tool", "Result", "Rules", "Outcome"],
                         title=f"Audit log {args.start} .. {args.end}")
    for record in records:
        table.add_row(*_audit_row(record))
    stdout_console.print(table)
    return 0


# =============================================================================
# Main
# =============================================================================

COMMANDS = {
    ("breaker", "status"): cmd_breaker_status,
    ("breaker", "reset"): cmd_breaker_reset,
    ("breaker", "fail"): cmd_breaker_fail,
    ("research", "status"): cmd_research_status,
    ("research", "mark"): cmd_research_mark,
    ("research", "reset"): cmd_research_reset,
    ("requirements", "status"): cmd_requirements_status,
    ("requirements", "satisfy"): cmd_requirements_satisfy,
    ("enforcement", "halt"): cmd_enforcement_halt,
    ("enforcement", "resume"): cmd_enforcement_resume,
    ("audit", "tail"): cmd_audit_tail,
    ("audit", "range"): cmd_audit_range,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sopguard",
        description="Inspect and manage sopguard state",
        epilog="Also: sopguard hook <EventName> (stdin payload), sopguard loop <command>",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=None,
        help="Project root (default: $CLAUDE_PROJECT_DIR or the current dir)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    breaker = subparsers.add_parser("breaker", help="Circuit breaker").add_subparsers(dest="action")
    breaker.add_parser("status", help="Show breaker state")
    breaker.add_parser("reset", help="Close the breaker")
    fail_parser = breaker.add_parser("fail", help="Record a failure")
    fail_parser.add_argument("--error", "-e", default="manual failure", help="Error description")

    research = subparsers.add_parser("research", help="Research progress").add_subparsers(dest="action")
    research.add_parser("status", help="Show research categories")
    mark_parser = research.add_parser("mark", help="Mark a category complete")
    mark_parser.add_argument("category", help=f"One of: {', '.join(RESEARCH_CATEGORIES)}")
    research.add_parser("reset", help="Clear research progress")

    requirements = subparsers.add_parser("requirements", help="Prompt requirements").add_subparsers(dest="action")
    requirements.add_parser("status", help="Show requirements")
    satisfy_parser = requirements.add_parser("satisfy", help="Mark a requirement satisfied")
    satisfy_parser.add_argument("name", help="Requirement name")

    enforcement = subparsers.add_parser("enforcement", help="Pause or resume enforcement").add_subparsers(
        dest="action")
    halt_parser = enforcement.add_parser("halt", help="Pause process checks")
    halt_parser.add_argument("--reason", "-r", default="user request", help="Why enforcement is paused")
    enforcement.add_parser("resume", help="Resume process checks")

    audit = subparsers.add_parser("audit", help="Audit log").add_subparsers(dest="action")
    tail_parser = audit.add_parser("tail", help="Show recent records")
    tail_parser.add_argument("--limit", "-n", type=int, default=20, help="Records to show")
    range_parser = audit.add_parser("range", help="Show records between two timestamps")
    range_parser.add_argument("start", help="ISO-8601 start")
    range_parser.add_argument("end", help="ISO-8601 end")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    handler = COMMANDS.get((args.command, getattr(args, "action", None)))
    if handler is None:
        print_error(f"Missing action. Run: sopguard {args.command} --help", out=stdout_console)
        return 1

    if args.project_dir is None:
        args.project_dir = resolve_project_dir()
    try:
        return handler(args)
    except StorageError as e:
        print_error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
