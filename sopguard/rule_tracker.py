"""
Rule Tracking Log
=================

Per-rule record of violations (blocked actions) and enforcement actions
(warnings, escalations), stored in ``rule_tracking.jsonl``. The task loop's
SOP score is derived from the violations recorded here.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sopguard.audit_log import JsonlFile
from sopguard.models import format_timestamp, parse_timestamp, utc_now

RULE_TRACKING_FILE = "rule_tracking.jsonl"

VIOLATION = "violation"
ENFORCEMENT = "enforcement"


class RuleTracker:
    """Append and query rule violations and enforcement actions."""

    def __init__(self, state_dir: Path, clock=utc_now):
        self._file = JsonlFile(Path(state_dir) / RULE_TRACKING_FILE)
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._file.path

    def log_violation(self, rule: str, hook: str, reason: str,
                      details: Optional[Dict[str, Any]] = None) -> bool:
        return self._file.append({
            "timestamp": format_timestamp(self._clock()),
            "type": VIOLATION,
            "rule": rule,
            "hook": hook,
            "reason": reason,
            "details": details or {},
        })

    def log_enforcement(self, rule: str, hook: str, action: str,
                        details: Optional[Dict[str, Any]] = None) -> bool:
        return self._file.append({
            "timestamp": format_timestamp(self._clock()),
            "type": ENFORCEMENT,
            "rule": rule,
            "hook": hook,
            "action": action,
            "details": details or {},
        })

    def entries(self) -> List[Dict[str, Any]]:
        return list(self._file.read())

    def violations_since(self, since: Optional[datetime]) -> List[Dict[str, Any]]:
        """Violation entries at or after ``since`` (all of them when None)."""
        found = []
        for entry in self._file.read():
            if entry.get("type") != VIOLATION:
                continue
            if since is not None:
                moment = parse_timestamp(entry.get("timestamp"))
                if moment is None or moment < since:
                    continue
            found.append(entry)
        return found

    def violated_rules_since(self, since: Optional[datetime]) -> List[str]:
        """Unique rule names violated since ``since``, in first-seen order."""
        rules: List[str] = []
        for entry in self.violations_since(since):
            rule = entry.get("rule")
            if isinstance(rule, str) and rule and rule not in rules:
                rules.append(rule)
        return rules
