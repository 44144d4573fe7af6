"""
Tests for the Command Line
==========================

Tests for sopguard/cli/ and sopguard/__main__.py
"""

import io
import json

import pytest

from sopguard.__main__ import main as sopguard_main
from sopguard.cli import admin_cli, hook_cli, loop_cli
from sopguard.cli.loop_cli import read_summary
from sopguard.engine import create_context


SUMMARY = "Rating: 8/10 (SOP: 10 | Perf: 8)\nDone: fixed the login timeout\nNext: monitor error rates\nEND\n"


def loop(tmp_path, *argv):
    return loop_cli.main(["--project-dir", str(tmp_path), *argv])


def admin(tmp_path, *argv):
    return admin_cli.main(["--project-dir", str(tmp_path), *argv])


def start_loop(tmp_path, *extra):
    return loop(tmp_path, "start", "Fix", "login", "timeout", "--promise", "Login works",
                "-c", "Tests pass", "-c", "Docs updated", *extra)


# =============================================================================
# Task loop
# =============================================================================

class TestReadSummary:
    """Tests for read_summary."""

    def test_stops_at_terminator(self):
        assert read_summary(io.StringIO("a\nb\nEND\nignored\n")) == "a\nb"

    def test_end_of_input(self):
        assert read_summary(io.StringIO("only line")) == "only line"


class TestLoopCli:
    """Tests for the task loop commands."""

    def test_start_and_status(self, tmp_path, capsys):
        assert start_loop(tmp_path) == 0
        out = capsys.readouterr().out
        assert "TASK LOOP: Fix login timeout" in out
        assert "1. Tests pass" in out

        assert loop(tmp_path, "status") == 0
        out = capsys.readouterr().out
        assert "0/2" in out
        assert "Login works" in out

    def test_status_without_loop(self, tmp_path, capsys):
        assert loop(tmp_path, "s") == 0
        assert "No task loop active." in capsys.readouterr().out

    def test_start_twice_fails(self, tmp_path, capsys):
        start_loop(tmp_path)
        capsys.readouterr()

        assert start_loop(tmp_path) == 1
        assert "already active" in capsys.readouterr().out

    def test_start_without_promise_fails(self, tmp_path):
        assert loop(tmp_path, "start", "Fix", "it") == 1

    def test_max_iterations_option(self, tmp_path):
        start_loop(tmp_path, "-m", "3")
        state = loop_cli.create_task_loop(tmp_path).status()
        assert state.max_iterations == 3

    def test_aliases(self, tmp_path, capsys):
        start_loop(tmp_path)

        assert loop(tmp_path, "c", "1") == 0
        assert loop(tmp_path, "l", "Raised timeout", "Tests pass") == 0
        out = capsys.readouterr().out
        assert "Checked: Tests pass" in out
        assert "Logged iteration 1" in out

        state = loop_cli.create_task_loop(tmp_path).status()
        assert state.progress() == "1/2"
        assert state.iteration == 2

    def test_check_unknown_criterion(self, tmp_path, capsys):
        start_loop(tmp_path)
        assert loop(tmp_path, "check", "7") == 1
        assert "No criterion with ID 7" in capsys.readouterr().out

    def test_log_over_budget_warns(self, tmp_path, capsys):
        start_loop(tmp_path, "--max-iterations", "2")
        capsys.readouterr()

        assert loop(tmp_path, "log", "one") == 0
        assert "budget exceeded" not in capsys.readouterr().out
        assert loop(tmp_path, "log", "two") == 0
        assert "budget exceeded" in capsys.readouterr().out

    def test_summary_rejected(self, tmp_path, capsys, monkeypatch):
        start_loop(tmp_path)
        monkeypatch.setattr("sys.stdin", io.StringIO("Done: stuff\nEND\n"))

        assert loop(tmp_path, "summary") == 1
        out = capsys.readouterr().out
        assert "SOP: 10/10" in out
        assert "INVALID" in out
        assert "Rating:" in out

    def test_full_lifecycle(self, tmp_path, capsys, monkeypatch):
        start_loop(tmp_path)
        loop(tmp_path, "check", "1")
        loop(tmp_path, "check", "2")
        monkeypatch.setattr("sys.stdin", io.StringIO(SUMMARY))

        assert loop(tmp_path, "sum") == 0
        assert "Accepted" in capsys.readouterr().out

        assert loop(tmp_path, "done") == 0
        assert "TASK LOOP COMPLETE" in capsys.readouterr().out
        assert loop_cli.create_task_loop(tmp_path).status() is None

        archive_dir = tmp_path / ".claude" / "task_loop_archive"
        archived = [json.loads(p.read_text()) for p in archive_dir.glob("*.json")]
        assert [a["outcome"] for a in archived] == ["completed"]

    def test_complete_with_unchecked_criteria(self, tmp_path, capsys, monkeypatch):
        start_loop(tmp_path)
        monkeypatch.setattr("sys.stdin", io.StringIO(SUMMARY))
        loop(tmp_path, "summary")

        assert loop(tmp_path, "complete") == 1
        assert "unchecked criteria" in capsys.readouterr().out

    def test_cancel(self, tmp_path, capsys, monkeypatch):
        start_loop(tmp_path)
        monkeypatch.setattr("sys.stdin", io.StringIO(SUMMARY))
        loop(tmp_path, "summary")

        assert loop(tmp_path, "stop") == 0
        assert "CANCELLED" in capsys.readouterr().out

    def test_no_command(self, tmp_path):
        assert loop(tmp_path) == 1
        assert loop(tmp_path, "help") == 0

    def test_project_dir_from_env(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("CLAUDE_PROJECT_DIR", str(tmp_path))
        assert loop_cli.main(["start", "Task", "--promise", "Done"]) == 0
        assert (tmp_path / ".claude" / "task_loop.json").exists()


# =============================================================================
# Admin commands
# =============================================================================

class TestAdminCli:
    """Tests for the state management commands."""

    def test_breaker_reset(self, tmp_path, capsys):
        ctx = create_context(tmp_path)
        for _ in range(5):
            ctx.breaker.record_failure("boom")
        assert ctx.breaker.is_tripped()

        assert admin(tmp_path, "breaker", "reset") == 0
        assert not create_context(tmp_path).breaker.is_tripped()
        assert "reset" in capsys.readouterr().out

    def test_breaker_fail_and_status(self, tmp_path, capsys):
        assert admin(tmp_path, "breaker", "fail", "--error", "tests red") == 0
        assert "1/5" in capsys.readouterr().out

        assert admin(tmp_path, "breaker", "status") == 0
        assert "tests red" in capsys.readouterr().out

    def test_research_mark(self, tmp_path, capsys):
        assert admin(tmp_path, "research", "mark", "docs") == 0
        assert create_context(tmp_path).research.status().is_done("docs")
        assert "Missing:" in capsys.readouterr().out

    def test_research_mark_unknown_category(self, tmp_path):
        assert admin(tmp_path, "research", "mark", "vibes") == 1

    def test_research_status_and_reset(self, tmp_path, capsys):
        admin(tmp_path, "research", "mark", "web")
        assert admin(tmp_path, "research", "status") == 0
        assert "local-code" in capsys.readouterr().out

        assert admin(tmp_path, "research", "reset") == 0
        assert create_context(tmp_path).research.missing() == [
            "memory", "docs", "web", "external-examples", "local-code"]

    def test_requirements_satisfy(self, tmp_path, capsys):
        hook_payload = json.dumps({"prompt": "make a plan first"})
        hook_cli_run(tmp_path, "UserPromptSubmit", hook_payload)

        assert admin(tmp_path, "requirements", "status") == 0
        assert "plan" in capsys.readouterr().out

        assert admin(tmp_path, "requirements", "satisfy", "plan") == 0
        assert create_context(tmp_path).store.get("requirements").is_satisfied("plan")

    def test_requirements_satisfy_not_requested(self, tmp_path, capsys):
        assert admin(tmp_path, "requirements", "satisfy", "verify") == 1
        assert "was not requested" in capsys.readouterr().out

    def test_enforcement_halt_and_resume(self, tmp_path):
        assert admin(tmp_path, "enforcement", "halt", "-r", "demo") == 0
        state = create_context(tmp_path).store.get("enforcement")
        assert state.halted
        assert state.halted_reason == "demo"

        assert admin(tmp_path, "enforcement", "resume") == 0
        assert not create_context(tmp_path).store.get("enforcement").halted

    def test_audit_tail(self, tmp_path, capsys):
        assert admin(tmp_path, "audit", "tail") == 0
        assert "Audit log is empty" in capsys.readouterr().out

        hook_cli_run(tmp_path, "PreToolUse", json.dumps({"tool_name": "Read", "tool_input": {"file_path": "a.py"}}))
        assert admin(tmp_path, "audit", "tail", "-n", "5") == 0
        assert "Audit log (last 1)" in capsys.readouterr().out

    def test_audit_range_invalid_timestamp(self, tmp_path):
        assert admin(tmp_path, "audit", "range", "yesterday", "today") == 1

    def test_missing_action(self, tmp_path, capsys):
        assert admin(tmp_path, "breaker") == 1
        assert "Missing action" in capsys.readouterr().out

    def test_no_command(self, tmp_path):
        assert admin(tmp_path) == 1


# =============================================================================
# Hook command and routing
# =============================================================================

def hook_cli_run(tmp_path, event, payload):
    stdin = io.StringIO(payload)
    original = hook_cli.sys.stdin
    hook_cli.sys.stdin = stdin
    try:
        return hook_cli.main([event, "--project-dir", str(tmp_path), "--quiet"])
    finally:
        hook_cli.sys.stdin = original


class TestHookCli:
    """Tests for the hook command."""

    def test_allowed(self, tmp_path):
        payload = json.dumps({"tool_name": "Read", "tool_input": {"file_path": "a.py"}})
        assert hook_cli_run(tmp_path, "PreToolUse", payload) == 0

    def test_blocked(self, tmp_path):
        payload = json.dumps({"tool_name": "Edit",
                              "tool_input": {"file_path": "a.py", "old_string": "a", "new_string": "b"}})
        assert hook_cli_run(tmp_path, "PreToolUse", payload) == 1

    def test_empty_stdin_is_allowed(self, tmp_path):
        assert hook_cli_run(tmp_path, "PreToolUse", "") == 0

    def test_unknown_event(self, tmp_path):
        with pytest.raises(SystemExit):
            hook_cli.main(["Notification", "--project-dir", str(tmp_path)])


class TestMainRouting:
    """Tests for the top-level command router."""

    def test_routes_loop(self, tmp_path, capsys):
        assert sopguard_main(["loop", "--project-dir", str(tmp_path), "status"]) == 0
        assert "No task loop active." in capsys.readouterr().out

    def test_routes_hook(self, tmp_path, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps({"tool_name": "Read", "tool_input": {}})))
        assert sopguard_main(["hook", "PreToolUse", "--project-dir", str(tmp_path), "-q"]) == 0

    def test_routes_admin(self, tmp_path, capsys):
        assert sopguard_main(["--project-dir", str(tmp_path), "breaker", "status"]) == 0
        assert "Circuit Breaker" in capsys.readouterr().out
