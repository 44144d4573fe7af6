"""
State Store
===========

Namespaced persistent state, one JSON file per domain under the project's
state directory (``.claude/`` by default).

Every write goes through a temp file and ``os.replace`` so a crash never
leaves a half-written record. Reads never raise: a missing or corrupt file
yields the domain default and a logged warning.

Write failures depend on the domain:
- critical domains raise StorageError (the caller must not proceed as if
  the change stuck)
- non-critical domains log the failure and carry on
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Type

from sopguard.exceptions import StorageError
from sopguard.models import (
    CircuitBreakerState,
    EditAttemptCounter,
    EditTracking,
    EnforcementState,
    PatternLog,
    RequirementSet,
    ResearchStatus,
    TaskLoopState,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Domain:
    """A named state record: its type, file and failure policy."""
    name: str
    model: Type
    critical: bool

    @property
    def filename(self) -> str:
        return f"{self.name}.json"


DOMAINS: Dict[str, Domain] = {
    d.name: d for d in (
        Domain("research", ResearchStatus, critical=True),
        Domain("requirements", RequirementSet, critical=True),
        Domain("edit_attempts", EditAttemptCounter, critical=True),
        Domain("circuit_breaker", CircuitBreakerState, critical=True),
        Domain("task_loop", TaskLoopState, critical=True),
        Domain("enforcement", EnforcementState, critical=True),
        Domain("patterns", PatternLog, critical=False),
        Domain("edits", EditTracking, critical=False),
    )
}


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to ``path`` via a sibling temp file and an atomic rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class StateStore:
    """
    Repository for all state domains of one project.

    Usage:
        store = StateStore(project_dir / ".claude")
        research = store.get("research")
        store.update("research", lambda r: r.mark("docs", "WebFetch", now))
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    def _domain(self, name: str) -> Domain:
        try:
            return DOMAINS[name]
        except KeyError:
            raise KeyError(f"Unknown state domain: {name}") from None

    def path(self, name: str) -> Path:
        return self.state_dir / self._domain(name).filename

    def get(self, name: str) -> Any:
        """Current value of a domain, or its default when absent or corrupt."""
        domain = self._domain(name)
        path = self.state_dir / domain.filename
        if not path.exists():
            return domain.model()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            return domain.model.from_dict(data)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Corrupt %s state at %s, using defaults: %s", name, path, e)
            return domain.model()

    def put(self, name: str, value: Any) -> Any:
        """Persist ``value`` as the whole record for a domain."""
        domain = self._domain(name)
        if not isinstance(value, domain.model):
            raise TypeError(f"{name} expects {domain.model.__name__}, got {type(value).__name__}")
        try:
            atomic_write_json(self.state_dir / domain.filename, value.to_dict())
        except OSError as e:
            if domain.critical:
                raise StorageError(name, e) from e
            logger.warning("Could not save %s state: %s", name, e)
        return value

    def update(self, name: str, mutator: Callable[[Any], Optional[Any]]) -> Any:
        """
        Load, mutate, persist and return a domain value.

        The mutator may change the value in place or return a replacement
        of the domain's type; any other return value is ignored.
        """
        value = self.get(name)
        replacement = mutator(value)
        if isinstance(replacement, self._domain(name).model):
            value = replacement
        return self.put(name, value)

    def reset(self, name: str) -> Any:
        """Write the default value for a domain."""
        return self.put(name, self._domain(name).model())
