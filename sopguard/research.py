"""
Research Tracking
=================

Maps research tool invocations to research categories and records
completion in the ``research`` state domain.

Categories:
- memory:            mcp__memory__* reads
- docs:              documentation MCP servers (context7, apple-docs)
- web:               WebSearch, WebFetch, mcp__fetch__*
- external-examples: GitHub code/repository search and file reads
- local-code:        Read, Grep, Glob
"""

import logging
import re
from typing import List, Optional

from sopguard.models import RESEARCH_CATEGORIES, ResearchStatus, format_timestamp, utc_now
from sopguard.state_store import StateStore

logger = logging.getLogger(__name__)

# Tools that only gather information
RESEARCH_TOOLS = frozenset({"Read", "Grep", "Glob", "WebFetch", "WebSearch", "Task"})

_CATEGORY_RULES = [
    ("memory", re.compile(r"^mcp__memory__(read|search|open|get|list)", re.IGNORECASE)),
    ("docs", re.compile(r"^mcp__(context7|apple-docs|apple_docs|docs)__", re.IGNORECASE)),
    ("web", re.compile(r"^(WebSearch|WebFetch)$|^mcp__fetch__", re.IGNORECASE)),
    ("external-examples", re.compile(
        r"^mcp__github__(search_\w+|get_file_contents|list_\w+|get_\w+)$", re.IGNORECASE)),
    ("local-code", re.compile(r"^(Read|Grep|Glob)$")),
]


def category_for_tool(tool_name: str) -> Optional[str]:
    """Research category a tool contributes to, or None."""
    for category, pattern in _CATEGORY_RULES:
        if pattern.search(tool_name or ""):
            return category
    return None


def is_research_tool(tool_name: str) -> bool:
    """Whether a tool only gathers information."""
    if tool_name in RESEARCH_TOOLS:
        return True
    return category_for_tool(tool_name) is not None


class ResearchTracker:
    """Marks, inspects and resets research progress."""

    def __init__(self, store: StateStore, clock=utc_now):
        self.store = store
        self._clock = clock

    def status(self) -> ResearchStatus:
        return self.store.get("research")

    def is_complete(self) -> bool:
        return self.status().is_complete()

    def missing(self) -> List[str]:
        return self.status().missing()

    def mark(self, category: str, tool: str = "manual") -> ResearchStatus:
        """
        Mark one category complete. Completing the full set also clears the
        edit attempt counter.

        Raises:
            ValueError: unknown category
        """
        if category not in RESEARCH_CATEGORIES:
            raise ValueError(
                f"Unknown research category '{category}'. Valid: {', '.join(RESEARCH_CATEGORIES)}"
            )
        was_complete = self.is_complete()
        moment = self._clock()
        status = self.store.update("research", lambda r: r.mark(category, tool, moment))
        if status.is_complete() and not was_complete:
            self.store.update("edit_attempts", lambda a: _reset_attempts(a, moment))
            logger.info("Research complete; edit attempts reset")
        return status

    def record_tool(self, tool_name: str) -> Optional[str]:
        """Mark the category for a research tool. Returns the category, if any."""
        category = category_for_tool(tool_name)
        if category is None:
            return None
        if self.status().is_done(category):
            return category
        self.mark(category, tool_name)
        return category

    def reset(self) -> ResearchStatus:
        return self.store.reset("research")


def _reset_attempts(attempts, moment) -> None:
    attempts.count = 0
    attempts.reset_at = format_timestamp(moment)
