"""
Configuration Management
========================

Loads sopguard settings from (in precedence order):
1. Environment variables (SOPGUARD_*), including a project .env file
2. JSON config file (sopguard_config.json in the project root or state dir)
3. Default values

All thresholds are explicit. Rules themselves are code-defined; only their
limits are tunable here.
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "sopguard_config.json"
DEFAULT_STATE_DIR = ".claude"

# Environment variable -> config field
_ENV_OVERRIDES = {
    "SOPGUARD_STATE_DIR": "state_dir_name",
    "SOPGUARD_SOFT_LIMIT": "file_size_soft_limit",
    "SOPGUARD_HARD_LIMIT": "file_size_hard_limit",
    "SOPGUARD_HARD_LIMIT_MD": "file_size_hard_limit_md",
    "SOPGUARD_BREAKER_THRESHOLD": "breaker_threshold",
    "SOPGUARD_MAX_EDIT_ATTEMPTS": "max_edit_attempts",
    "SOPGUARD_BLOCK_EXIT_CODE": "block_exit_code",
    "SOPGUARD_REQUIRE_RESEARCH": "require_research_before_edit",
    "SOPGUARD_MAX_ITERATIONS": "default_max_iterations",
}


@dataclass
class SopGuardConfig:
    """sopguard configuration."""

    # Where per-domain state and logs live, relative to the project root
    state_dir_name: str = DEFAULT_STATE_DIR

    # File size rule (lines)
    file_size_soft_limit: int = 500
    file_size_hard_limit: int = 800
    file_size_hard_limit_md: int = 1500

    # Circuit breaker
    breaker_threshold: int = 5

    # Edit attempts allowed before research must be redone
    max_edit_attempts: int = 3

    # Gaming detection
    rapid_research_seconds: float = 30.0
    identical_timestamp_min: int = 3
    error_window: int = 10
    error_rate_threshold: float = 0.7
    gaming_block_count: int = 3
    gaming_cooccurrence_block: int = 2
    pattern_log_capacity: int = 10

    # Research tool invocations that satisfy a "research" requirement
    research_evidence_threshold: int = 3

    # Edits are blocked until all research categories are complete
    require_research_before_edit: bool = True

    # Task loop
    default_max_iterations: int = 15

    # Exit code the hook CLI uses for a block verdict
    block_exit_code: int = 1

    def __post_init__(self) -> None:
        if self.file_size_soft_limit < 1:
            raise ValueError("file_size_soft_limit must be >= 1")
        if self.file_size_hard_limit < self.file_size_soft_limit:
            raise ValueError("file_size_hard_limit must be >= file_size_soft_limit")
        if self.file_size_hard_limit_md < 1:
            raise ValueError("file_size_hard_limit_md must be >= 1")
        if self.breaker_threshold < 1:
            raise ValueError("breaker_threshold must be >= 1")
        if self.max_edit_attempts < 1:
            raise ValueError("max_edit_attempts must be >= 1")
        if not 0.0 <= self.error_rate_threshold <= 1.0:
            raise ValueError("error_rate_threshold must be between 0.0 and 1.0")
        if self.error_window < 1:
            raise ValueError("error_window must be >= 1")
        if self.pattern_log_capacity < 1:
            raise ValueError("pattern_log_capacity must be >= 1")
        if self.default_max_iterations < 1:
            raise ValueError("default_max_iterations must be >= 1")
        if self.block_exit_code == 0:
            raise ValueError("block_exit_code must be non-zero")

    @classmethod
    def load(cls, project_dir: Optional[Path] = None) -> "SopGuardConfig":
        """
        Load configuration for a project directory.

        A malformed config file is reported and ignored; bad environment
        values raise ValueError from __post_init__ or int conversion.
        """
        project_dir = Path(project_dir or Path.cwd())
        load_dotenv(project_dir / ".env")

        values: Dict[str, Any] = {}
        state_dir = os.environ.get("SOPGUARD_STATE_DIR", DEFAULT_STATE_DIR)
        for candidate in (project_dir / CONFIG_FILENAME, project_dir / state_dir / CONFIG_FILENAME):
            if not candidate.exists():
                continue
            try:
                with open(candidate, "r", encoding="utf-8") as f:
                    file_config = json.load(f)
                if isinstance(file_config, dict):
                    values.update(file_config)
                break
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", candidate, e)

        for env_name, field_name in _ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is not None and raw != "":
                values[field_name] = raw

        return cls.from_dict(values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SopGuardConfig":
        """Build a config, coercing values to the declared field types."""
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown config key: %s", key)
                continue
            default = known[key].default
            kwargs[key] = _coerce(value, type(default))
        return cls(**kwargs)

    def state_dir(self, project_dir: Path) -> Path:
        """Absolute state directory for a project."""
        return Path(project_dir) / self.state_dir_name


def _coerce(value: Any, target: type) -> Any:
    if target is bool:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if target is int:
        return int(value)
    if target is float:
        return float(value)
    return str(value)
