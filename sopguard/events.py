"""
Hook Events
===========

Typed view of the JSON payloads the host sends for each hook invocation.

Tool events form a tagged union keyed by ``tool_name``; ``parse_event``
validates the payload shape at the boundary so checks can rely on typed
fields instead of probing dicts.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from sopguard.exceptions import MalformedInputError


EDIT_TOOLS = frozenset({"Edit", "Write", "MultiEdit", "NotebookEdit"})
SEARCH_TOOLS = frozenset({"Read", "Grep", "Glob"})
WEB_TOOLS = frozenset({"WebFetch", "WebSearch"})


@dataclass
class HookEvent:
    """Fields common to every hook payload."""
    hook_event_name: str = ""
    session_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class SessionStartEvent(HookEvent):
    source: str = ""


@dataclass
class PromptEvent(HookEvent):
    prompt: str = ""


@dataclass
class ToolEvent(HookEvent):
    """A tool invocation. Subclasses expose the fields checks care about."""
    tool_name: str = ""
    tool_input: Dict[str, Any] = field(default_factory=dict)
    tool_response: Any = None

    @property
    def is_edit(self) -> bool:
        return self.tool_name in EDIT_TOOLS

    @property
    def target_path(self) -> str:
        return ""

    @property
    def new_text(self) -> str:
        """Text the invocation would write, if any."""
        return ""


@dataclass
class EditEvent(ToolEvent):
    """Edit / MultiEdit / NotebookEdit: in-place replacements in one file."""
    file_path: str = ""
    edits: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def target_path(self) -> str:
        return self.file_path

    @property
    def new_text(self) -> str:
        return "\n".join(new for _, new in self.edits)


@dataclass
class WriteEvent(ToolEvent):
    file_path: str = ""
    content: str = ""

    @property
    def target_path(self) -> str:
        return self.file_path

    @property
    def new_text(self) -> str:
        return self.content


@dataclass
class SearchEvent(ToolEvent):
    """Read / Grep / Glob."""
    path: str = ""
    pattern: str = ""

    @property
    def target_path(self) -> str:
        return self.path


@dataclass
class BashEvent(ToolEvent):
    command: str = ""


@dataclass
class TaskEvent(ToolEvent):
    """Delegation to a subagent."""
    prompt: str = ""
    description: str = ""


@dataclass
class WebEvent(ToolEvent):
    url: str = ""
    query: str = ""


@dataclass
class McpEvent(ToolEvent):
    """An MCP tool call, named ``mcp__<server>__<operation>``."""
    server: str = ""
    operation: str = ""

    @property
    def is_write(self) -> bool:
        return is_mutating_operation(self.operation)


@dataclass
class GenericToolEvent(ToolEvent):
    pass


AnyEvent = Union[SessionStartEvent, PromptEvent, ToolEvent]


_MUTATING_PREFIXES = (
    "create", "add", "delete", "remove", "update", "write", "push",
    "merge", "fork", "edit", "set", "put", "close", "assign",
)


def is_mutating_operation(operation: str) -> bool:
    """Whether an MCP operation name looks like a write."""
    op = operation.lower()
    return op.startswith(_MUTATING_PREFIXES)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _edit_pairs(tool_name: str, tool_input: Dict[str, Any]) -> List[Tuple[str, str]]:
    if tool_name == "MultiEdit":
        edits = tool_input.get("edits") or []
        if not isinstance(edits, list):
            raise MalformedInputError("MultiEdit 'edits' must be a list")
        return [
            (_text(e.get("old_string")), _text(e.get("new_string")))
            for e in edits if isinstance(e, dict)
        ]
    if tool_name == "NotebookEdit":
        return [("", _text(tool_input.get("new_source")))]
    return [(_text(tool_input.get("old_string")), _text(tool_input.get("new_string")))]


def _tool_event(tool_name: str, common: Dict[str, Any], tool_input: Dict[str, Any]) -> ToolEvent:
    if tool_name in ("Edit", "MultiEdit", "NotebookEdit"):
        path = tool_input.get("file_path") or tool_input.get("notebook_path")
        return EditEvent(file_path=_text(path), edits=_edit_pairs(tool_name, tool_input), **common)
    if tool_name == "Write":
        return WriteEvent(
            file_path=_text(tool_input.get("file_path")),
            content=_text(tool_input.get("content")),
            **common,
        )
    if tool_name in SEARCH_TOOLS:
        return SearchEvent(
            path=_text(tool_input.get("file_path") or tool_input.get("path")),
            pattern=_text(tool_input.get("pattern")),
            **common,
        )
    if tool_name == "Bash":
        return BashEvent(command=_text(tool_input.get("command")), **common)
    if tool_name == "Task":
        return TaskEvent(
            prompt=_text(tool_input.get("prompt")),
            description=_text(tool_input.get("description")),
            **common,
        )
    if tool_name in WEB_TOOLS:
        return WebEvent(
            url=_text(tool_input.get("url")),
            query=_text(tool_input.get("query")),
            **common,
        )
    if tool_name.startswith("mcp__"):
        parts = tool_name.split("__", 2)
        server = parts[1] if len(parts) > 1 else ""
        operation = parts[2] if len(parts) > 2 else ""
        return McpEvent(server=server, operation=operation, **common)
    return GenericToolEvent(**common)


def parse_event(payload: Union[str, bytes, Dict[str, Any]], event_name: Optional[str] = None) -> AnyEvent:
    """
    Build a typed event from a hook payload.

    Args:
        payload: Raw JSON text or an already-decoded dict
        event_name: Hook name to assume when the payload lacks hook_event_name

    Raises:
        MalformedInputError: payload is not a JSON object, or a tool event has
            no tool_name or a non-object tool_input
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedInputError(f"Payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedInputError("Payload must be a JSON object")

    hook_name = str(payload.get("hook_event_name") or event_name or "")
    session_id = payload.get("session_id")
    base = {"hook_event_name": hook_name, "session_id": session_id, "raw": payload}

    if hook_name == "SessionStart":
        return SessionStartEvent(source=_text(payload.get("source")), **base)
    if hook_name == "UserPromptSubmit" or ("prompt" in payload and "tool_name" not in payload):
        return PromptEvent(prompt=_text(payload.get("prompt")), **base)

    tool_name = payload.get("tool_name")
    if not isinstance(tool_name, str) or not tool_name:
        raise MalformedInputError("Tool event is missing 'tool_name'")
    tool_input = payload.get("tool_input")
    if tool_input is None:
        tool_input = {}
    if not isinstance(tool_input, dict):
        raise MalformedInputError("'tool_input' must be a JSON object")

    common = dict(base, tool_name=tool_name, tool_input=tool_input,
                  tool_response=payload.get("tool_response"))
    return _tool_event(tool_name, common, tool_input)


def response_error(event: ToolEvent) -> Optional[str]:
    """
    Extract an error signature from a PostToolUse tool_response, or None
    when the tool succeeded.
    """
    response = event.tool_response
    if isinstance(response, dict):
        if response.get("is_error") or response.get("isError"):
            return _signature(response.get("error") or response.get("content") or "tool error")
        if response.get("error"):
            return _signature(response["error"])
        if response.get("success") is False:
            return _signature(response.get("message") or "tool reported failure")
        exit_code = response.get("exit_code", response.get("exitCode"))
        if isinstance(exit_code, int) and exit_code != 0:
            return _signature(response.get("stderr") or f"exit code {exit_code}")
        return None
    if isinstance(response, str) and response.lstrip().lower().startswith("error"):
        return _signature(response)
    return None


def _signature(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    first = text.strip().splitlines()[0] if text.strip() else "error"
    return first[:200]
