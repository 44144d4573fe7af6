"""
Claude Code SDK Hooks
=====================

Async hook callables for ``ClaudeCodeOptions(hooks=...)``. Each returns an
empty dict to allow, or {"decision": "block", "reason": "..."} to block.

Usage:
    from claude_code_sdk import ClaudeCodeOptions
    from sopguard.sdk_hooks import build_hook_matchers

    options = ClaudeCodeOptions(hooks=build_hook_matchers(), cwd=str(project_dir))
"""

from typing import Any, Dict, List, Optional

from claude_code_sdk.types import HookMatcher

from sopguard.hooks import (
    POST_TOOL_USE,
    PRE_TOOL_USE,
    USER_PROMPT_SUBMIT,
    HookHandler,
    render,
    resolve_project_dir,
)


def _handle(event_name: str, input_data: Dict[str, Any]) -> Dict[str, Any]:
    handler = HookHandler(resolve_project_dir(input_data))
    result = handler.handle(event_name, input_data)
    render(result)
    return result.to_sdk_response()


async def pre_tool_use_hook(input_data, tool_use_id=None, context=None):
    """
    Pre-tool-use hook that runs the full rule pipeline.

    Args:
        input_data: Dict containing tool_name and tool_input
        tool_use_id: Optional tool use ID
        context: Optional context

    Returns:
        Empty dict to allow, or {"decision": "block", "reason": "..."} to block
    """
    return _handle(PRE_TOOL_USE, input_data)


async def post_tool_use_hook(input_data, tool_use_id=None, context=None):
    """Record the tool outcome (circuit breaker, research progress, edits)."""
    return _handle(POST_TOOL_USE, input_data)


async def user_prompt_submit_hook(input_data, tool_use_id=None, context=None):
    """Detect requirements and corrections in the user's prompt."""
    return _handle(USER_PROMPT_SUBMIT, input_data)


def build_hook_matchers(matcher: Optional[str] = None) -> Dict[str, List[HookMatcher]]:
    """
    Hook registrations for ClaudeCodeOptions.

    Args:
        matcher: Tool-name matcher for the tool hooks; None matches every tool
    """
    return {
        PRE_TOOL_USE: [HookMatcher(matcher=matcher, hooks=[pre_tool_use_hook])],
        POST_TOOL_USE: [HookMatcher(matcher=matcher, hooks=[post_tool_use_hook])],
        USER_PROMPT_SUBMIT: [HookMatcher(matcher=None, hooks=[user_prompt_submit_hook])],
    }
