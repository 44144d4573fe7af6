"""
Tests for the Hook Boundary
===========================

Tests for sopguard/hooks.py and sopguard/sdk_hooks.py
"""

import asyncio
import json

from sopguard.config import SopGuardConfig
from sopguard.hooks import (
    POST_TOOL_USE,
    PRE_TOOL_USE,
    SESSION_START,
    USER_PROMPT_SUBMIT,
    HookHandler,
    resolve_project_dir,
    run_hook,
)
from sopguard.sdk_hooks import (
    build_hook_matchers,
    post_tool_use_hook,
    pre_tool_use_hook,
    user_prompt_submit_hook,
)


def payload(tool_name, **tool_input):
    return json.dumps({"hook_event_name": PRE_TOOL_USE, "tool_name": tool_name, "tool_input": tool_input})


class TestRunHook:
    """Tests for run_hook exit codes."""

    def test_allowed_tool_exits_zero(self, tmp_path):
        assert run_hook(PRE_TOOL_USE, payload("Read", file_path="a.py"), tmp_path, SopGuardConfig(), quiet=True) == 0

    def test_blocked_tool_exits_non_zero(self, tmp_path):
        code = run_hook(PRE_TOOL_USE, payload("Read", file_path="~/.ssh/id_rsa"), tmp_path, SopGuardConfig(),
                        quiet=True)
        assert code == 1

    def test_custom_block_exit_code(self, tmp_path):
        config = SopGuardConfig(block_exit_code=2)
        assert run_hook(PRE_TOOL_USE, payload("Read", file_path="/etc/shadow"), tmp_path, config, quiet=True) == 2

    def test_malformed_json_is_allowed(self, tmp_path):
        assert run_hook(PRE_TOOL_USE, "{not json", tmp_path, SopGuardConfig(), quiet=True) == 0

    def test_missing_tool_name_is_allowed(self, tmp_path):
        assert run_hook(PRE_TOOL_USE, json.dumps({"tool_input": {}}), tmp_path, SopGuardConfig(), quiet=True) == 0

    def test_project_dir_from_payload_cwd(self, tmp_path):
        data = json.dumps({"tool_name": "Edit", "cwd": str(tmp_path),
                           "tool_input": {"file_path": "a.py", "old_string": "a", "new_string": "b"}})
        assert run_hook(PRE_TOOL_USE, data, quiet=True) == 1
        assert (tmp_path / ".claude" / "audit_log.jsonl").exists()

    def test_storage_failure_blocks(self, tmp_path):
        (tmp_path / ".claude").write_text("not a directory")
        config = SopGuardConfig(require_research_before_edit=False)
        data = payload("Edit", file_path="a.py", old_string="a", new_string="b")

        assert run_hook(PRE_TOOL_USE, data, tmp_path, config, quiet=True) == 1

    def test_render_does_not_fail(self, tmp_path, capsys):
        code = run_hook(PRE_TOOL_USE, payload("Read", file_path="/etc/passwd"), tmp_path, SopGuardConfig())
        captured = capsys.readouterr()
        assert code == 1
        assert "blocked_path" in captured.err
        assert captured.out == ""


class TestResolveProjectDir:
    """Tests for resolve_project_dir."""

    def test_payload_cwd_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CLAUDE_PROJECT_DIR", "/somewhere/else")
        assert resolve_project_dir({"cwd": str(tmp_path)}) == tmp_path

    def test_env_fallback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CLAUDE_PROJECT_DIR", str(tmp_path))
        assert resolve_project_dir({}) == tmp_path


class TestHookHandler:
    """Tests for HookHandler event dispatch."""

    def test_storage_failure_names_remediation(self, tmp_path):
        (tmp_path / ".claude").write_text("not a directory")
        handler = HookHandler(tmp_path, SopGuardConfig(require_research_before_edit=False))
        result = handler.handle(PRE_TOOL_USE, {"tool_name": "Edit",
                                               "tool_input": {"file_path": "a.py", "old_string": "", "new_string": "x"}})

        assert result.blocked
        assert result.block.rule == "state_storage"
        assert "writable" in result.reason

    def test_session_start_bootstraps_state_dir(self, tmp_path):
        (tmp_path / "CONTRIBUTING.md").write_text("# How we work\n")
        handler = HookHandler(tmp_path, SopGuardConfig())
        result = handler.handle(SESSION_START, {"hook_event_name": SESSION_START, "source": "startup"})

        assert (tmp_path / ".claude" / ".gitignore").exists()
        assert "SOP: CONTRIBUTING.md" in result.messages
        assert result.exit_code == 0

    def test_session_start_warns_without_sop_file(self, tmp_path):
        result = HookHandler(tmp_path, SopGuardConfig()).handle(SESSION_START, {"hook_event_name": SESSION_START})
        assert [w.rule for w in result.warnings] == ["sop_file"]

    def test_prompt_sets_requirements(self, tmp_path):
        handler = HookHandler(tmp_path, SopGuardConfig())
        handler.handle(USER_PROMPT_SUBMIT, {"prompt": "research the retry logic first"})

        reqs = handler.ctx.store.get("requirements")
        assert reqs.requested == ["research"]
        assert "first" in reqs.modifiers

        result = handler.handle(PRE_TOOL_USE, {"tool_name": "Edit",
                                               "tool_input": {"file_path": "a.py", "old_string": "", "new_string": "x"}})
        assert result.block.rule == "research_first"

    def test_prompt_without_intent_keeps_requirements(self, tmp_path):
        handler = HookHandler(tmp_path, SopGuardConfig())
        handler.handle(USER_PROMPT_SUBMIT, {"prompt": "make a plan first"})
        handler.handle(USER_PROMPT_SUBMIT, {"prompt": "ok, go ahead"})

        assert handler.ctx.store.get("requirements").requested == ["plan"]

    def test_new_intent_replaces_requirements(self, tmp_path):
        handler = HookHandler(tmp_path, SopGuardConfig())
        handler.handle(USER_PROMPT_SUBMIT, {"prompt": "make a plan first"})
        handler.handle(USER_PROMPT_SUBMIT, {"prompt": "now verify everything"})

        assert handler.ctx.store.get("requirements").requested == ["verify"]

    def test_frustration_logged_as_violation(self, tmp_path):
        handler = HookHandler(tmp_path, SopGuardConfig())
        result = handler.handle(USER_PROMPT_SUBMIT, {"prompt": "no, I said the config loader"})

        assert [w.rule for w in result.warnings] == ["user_correction"]
        assert handler.ctx.rule_tracker.violated_rules_since(None) == ["user_correction"]

    def test_post_tool_use_records_research(self, tmp_path):
        handler = HookHandler(tmp_path, SopGuardConfig())
        result = handler.handle(POST_TOOL_USE, {"tool_name": "WebFetch", "tool_input": {"url": "https://docs.python.org"},
                                                "tool_response": {"content": "..."}})

        assert result.exit_code == 0
        assert "Research: web recorded" in result.messages
        assert handler.ctx.research.status().is_done("web")

    def test_post_tool_use_warns_on_trip(self, tmp_path):
        handler = HookHandler(tmp_path, SopGuardConfig(breaker_threshold=1))
        result = handler.handle(POST_TOOL_USE, {"tool_name": "Bash", "tool_input": {"command": "make"},
                                                "tool_response": {"exit_code": 2, "stderr": "boom"}})

        assert result.exit_code == 0
        assert [w.rule for w in result.warnings] == ["circuit_breaker"]


# =============================================================================
# SDK hooks
# =============================================================================

class TestSdkHooks:
    """Tests for the async hook callables."""

    def test_pre_tool_use_blocks(self, tmp_path):
        input_data = {"tool_name": "Edit", "cwd": str(tmp_path),
                      "tool_input": {"file_path": "a.py", "old_string": "a", "new_string": "b"}}
        result = asyncio.run(pre_tool_use_hook(input_data))

        assert result["decision"] == "block"
        assert "RESEARCH INCOMPLETE" in result["reason"]
        assert "Fix:" in result["reason"]

    def test_pre_tool_use_allows(self, tmp_path):
        input_data = {"tool_name": "Read", "cwd": str(tmp_path), "tool_input": {"file_path": "a.py"}}
        assert asyncio.run(pre_tool_use_hook(input_data)) == {}

    def test_post_tool_use_records(self, tmp_path):
        input_data = {"tool_name": "Glob", "cwd": str(tmp_path), "hook_event_name": POST_TOOL_USE,
                      "tool_input": {"pattern": "**/*.py"}, "tool_response": ["a.py"]}
        assert asyncio.run(post_tool_use_hook(input_data, "tool-1", None)) == {}

        handler = HookHandler(tmp_path, SopGuardConfig())
        assert handler.ctx.research.status().is_done("local-code")

    def test_user_prompt_submit(self, tmp_path):
        input_data = {"prompt": "make a plan first", "cwd": str(tmp_path)}
        assert asyncio.run(user_prompt_submit_hook(input_data)) == {}

        handler = HookHandler(tmp_path, SopGuardConfig())
        assert handler.ctx.store.get("requirements").requested == ["plan"]

    def test_build_hook_matchers(self):
        matchers = build_hook_matchers()

        assert set(matchers) == {PRE_TOOL_USE, POST_TOOL_USE, USER_PROMPT_SUBMIT}
        assert matchers[PRE_TOOL_USE][0].hooks == [pre_tool_use_hook]
        assert matchers[PRE_TOOL_USE][0].matcher is None
