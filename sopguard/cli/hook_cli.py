#!/usr/bin/env python
"""
Hook CLI
========

Command hook entry point. The host pipes the event payload as JSON on stdin;
the exit code is the verdict (0 allows, non-zero blocks). Diagnostics go to
stderr.

Usage (settings.json):
    "PreToolUse": [{"hooks": [{"type": "command", "command": "sopguard hook PreToolUse"}]}]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from sopguard.hooks import HOOK_EVENTS, run_hook
from sopguard.output import setup_rich_logging


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sopguard hook",
        description="Evaluate one hook event read from stdin",
    )
    parser.add_argument("event", choices=HOOK_EVENTS, help="Hook event name")
    parser.add_argument("--project-dir", type=Path, default=None,
                        help="Project root (default: payload cwd, $CLAUDE_PROJECT_DIR, or the current dir)")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress diagnostics")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)

    payload = sys.stdin.read()
    return run_hook(args.event, payload, project_dir=args.project_dir, quiet=args.quiet)


if __name__ == "__main__":
    sys.exit(main())
