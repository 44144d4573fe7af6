"""
Audit Log
=========

Append-only record of every evaluated tool invocation, stored as JSON lines
in ``audit_log.jsonl``. Records are never rewritten.

The log is non-critical: an append that fails is logged and dropped, and a
line that does not parse is skipped on read.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from sopguard.models import parse_timestamp

logger = logging.getLogger(__name__)

AUDIT_LOG_FILE = "audit_log.jsonl"


class JsonlFile:
    """A JSON-lines file that is only ever appended to."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, data: Dict[str, Any]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(data, default=str) + "\n")
            return True
        except OSError as e:
            logger.warning("Could not append to %s: %s", self.path.name, e)
            return False

    def read(self) -> Iterator[Dict[str, Any]]:
        if not self.path.exists():
            return
        try:
            # Undecodable bytes become U+FFFD; the damaged line then fails to parse and is skipped
            with open(self.path, "r", encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
        except OSError as e:
            logger.warning("Could not read %s: %s", self.path.name, e)
            return
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except ValueError:
                continue
            if isinstance(data, dict):
                yield data


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


@dataclass
class AuditRecord:
    """One evaluation (PreToolUse) or one observed outcome (PostToolUse)."""
    timestamp: str
    tool: str
    event: str
    rules_checked: List[str] = field(default_factory=list)
    result: str = "pass"  # pass | warn | block
    error_sig: Optional[str] = None
    success: Optional[bool] = None

    @property
    def is_outcome(self) -> bool:
        return self.success is not None or self.error_sig is not None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AuditRecord":
        error_sig = data.get("error_sig")
        success = data.get("success")
        return cls(
            timestamp=str(data.get("timestamp", "")),
            tool=str(data.get("tool", "")),
            event=str(data.get("event", "")),
            rules_checked=_string_list(data.get("rules_checked")),
            result=str(data.get("result", "pass")),
            error_sig=error_sig if isinstance(error_sig, str) else None,
            success=success if isinstance(success, bool) else None,
        )


class AuditLog:
    """Queryable view over ``audit_log.jsonl``."""

    def __init__(self, state_dir: Path):
        self._file = JsonlFile(Path(state_dir) / AUDIT_LOG_FILE)

    @property
    def path(self) -> Path:
        return self._file.path

    def append(self, record: AuditRecord) -> bool:
        return self._file.append(record.to_dict())

    def all(self) -> List[AuditRecord]:
        return [AuditRecord.from_dict(d) for d in self._file.read()]

    def recent(self, count: int) -> List[AuditRecord]:
        """The last ``count`` records, oldest first."""
        if count <= 0:
            return []
        return self.all()[-count:]

    def recent_outcomes(self, count: int) -> List[AuditRecord]:
        """The last ``count`` records that carry a success/error outcome."""
        if count <= 0:
            return []
        return [r for r in self.all() if r.is_outcome][-count:]

    def between(self, start: datetime, end: datetime) -> List[AuditRecord]:
        """Records with start <= timestamp <= end. Unparsable timestamps are skipped."""
        matched = []
        for record in self.all():
            moment = parse_timestamp(record.timestamp)
            if moment is not None and start <= moment <= end:
                matched.append(record)
        return matched
