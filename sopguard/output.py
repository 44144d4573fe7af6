"""
Rich Output Utilities
=====================

Terminal output for sopguard using the Rich library.

Hook diagnostics travel on stderr (the host reads stdout as the primary
channel), so the shared ``console`` is bound to stderr. Informational CLI
output for the task loop goes through ``stdout_console``.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class GuardColors:
    """sopguard palette (hex for truecolor terminals)."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    accent: str = "#F59E0B"    # amber
    info: str = "#22D3EE"      # cyan
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"        # success green
    warn: str = "#FBBF24"      # warning yellow
    err: str = "#EF4444"       # error red


def guard_theme(colors: GuardColors = GuardColors()) -> Theme:
    """
    Rich Theme for sopguard.

    Style names are semantic:
      console.print("...", style="sg.block")
    """
    return Theme(
        {
            "sg.accent": f"bold {colors.accent}",
            "sg.muted": f"{colors.dim}",
            "sg.text": f"{colors.ink}",
            "sg.border": f"{colors.info}",

            "sg.ok": f"bold {colors.ok}",
            "sg.warn": f"bold {colors.warn}",
            "sg.err": f"bold {colors.err}",
            "sg.info": f"{colors.info}",

            # Verdicts
            "sg.pass": f"bold {colors.ok}",
            "sg.block": f"bold {colors.err}",
            "sg.rule": f"bold {colors.accent}",
            "sg.fix": f"{colors.info}",

            "sg.key": f"{colors.steel}",
            "sg.value": f"{colors.ink}",
            "sg.timestamp": f"{colors.dim}",
            "sg.table.header": f"bold {colors.info}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle Unicode characters."""
    if os.name == "nt":
        try:
            encoding = sys.stderr.encoding or "utf-8"
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "blocked": "⛔",
    "warning": "⚠",
    "info": "ℹ",
    "bullet": "•",
    "arrow_right": "→",
    "box_empty": "[ ]",
    "box_checked": "[x]",
    "pencil": "✎",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "blocked": "[BLOCKED]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "-",
    "arrow_right": "->",
    "box_empty": "[ ]",
    "box_checked": "[x]",
    "pencil": "*",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Console Instances
# =============================================================================

console = Console(theme=guard_theme(), stderr=True, highlight=False)
stdout_console = Console(theme=guard_theme(), highlight=False)


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str, *, out: Optional[Console] = None) -> None:
    """Print a success message with checkmark."""
    (out or console).print(f"[sg.ok]{icon('check')} {escape(message)}[/]")


def print_error(message: str, *, out: Optional[Console] = None) -> None:
    """Print an error message with X."""
    (out or console).print(f"[sg.err]{icon('cross')} {escape(message)}[/]")


def print_warning(message: str, *, out: Optional[Console] = None) -> None:
    """Print a warning message."""
    (out or console).print(f"[sg.warn]{icon('warning')} {escape(message)}[/]")


def print_info(message: str, *, out: Optional[Console] = None) -> None:
    """Print an info message."""
    (out or console).print(f"[sg.info]{icon('info')} {escape(message)}[/]")


def print_muted(message: str, *, out: Optional[Console] = None) -> None:
    """Print muted/secondary text."""
    (out or console).print(f"[sg.muted]{escape(message)}[/]")


def print_plain(message: str = "", *, out: Optional[Console] = None) -> None:
    """Print text without any styling."""
    (out or console).print(escape(message))


def print_header(title: str, style: str = "sg.accent", *, out: Optional[Console] = None) -> None:
    """Print a section header with rule lines."""
    target = out or console
    target.print()
    target.print(Rule(f"[{style}]{escape(title)}[/]", style=style))


def print_key_value(key: str, value: Any, *, indent: int = 0, out: Optional[Console] = None) -> None:
    """Print a key-value pair."""
    prefix = "  " * indent
    (out or console).print(f"{prefix}[sg.key]{escape(key)}:[/] [sg.value]{escape(str(value))}[/]")


def print_list(items: Iterable[str], *, bullet: str = "bullet", out: Optional[Console] = None) -> None:
    """Print a bulleted list."""
    target = out or console
    for item in items:
        target.print(f"  [sg.accent]{icon(bullet)}[/] {escape(item)}")


# =============================================================================
# Panels & Tables
# =============================================================================

def print_panel(
    content: str,
    *,
    title: Optional[str] = None,
    border_style: str = "sg.border",
    out: Optional[Console] = None,
) -> None:
    """Print content in a styled panel. Content is treated as plain text."""
    (out or console).print(Panel(
        escape(content),
        title=f"[bold]{escape(title)}[/]" if title else None,
        border_style=border_style,
        padding=(0, 1),
    ))


def print_block_panel(rule: str, message: str, fix: str = "", *, out: Optional[Console] = None) -> None:
    """Print a block verdict: rule, explanation, remediation."""
    body = escape(message)
    if fix:
        body += f"\n[sg.fix]{icon('arrow_right')} {escape(fix)}[/]"
    (out or console).print(Panel(
        body,
        title=f"[sg.block]{icon('blocked')} BLOCKED: {escape(rule)}[/]",
        border_style="sg.err",
        padding=(0, 1),
    ))


def create_table(columns: Sequence[str], *, title: Optional[str] = None) -> Table:
    """Create a table with the sopguard header style."""
    table = Table(title=title, header_style="sg.table.header", show_lines=False)
    for column in columns:
        table.add_column(column)
    return table


def print_key_value_table(data: Dict[str, Any], *, title: Optional[str] = None, out: Optional[Console] = None) -> None:
    """Print multiple key-value pairs in a compact table."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="sg.key")
    table.add_column("Value", style="sg.value")
    for key, value in data.items():
        table.add_row(escape(str(key)), escape(str(value)))

    target = out or console
    if title:
        target.print(Panel(table, title=f"[bold]{escape(title)}[/]", border_style="sg.border"))
    else:
        target.print(table)


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.WARNING) -> None:
    """
    Route Python logging through Rich on stderr.

    Usage:
        setup_rich_logging(logging.DEBUG)
        logging.getLogger("sopguard").debug("evaluated %d checks", n)
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
    )
