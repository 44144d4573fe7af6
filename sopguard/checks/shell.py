"""
Shell checks: Bash commands that route around the edit tools or the
enforcement state.
"""

import re
from typing import List

from sopguard.checks.base import Check, Verdict

_SOPGUARD = r"(?:sopguard|python3?\s+-m\s+sopguard)"

# A command that is nothing but one sopguard invocation: no chaining, pipes,
# redirection or substitution outside quoted arguments
SOPGUARD_ONLY = re.compile(r"^\s*" + _SOPGUARD + r"(\s[^;&|<>`\n]*)?$")
_SUBSTITUTION = re.compile(r"\$\(")

# Admin subcommands that change guard state; only the user may run these
ADMIN_MUTATION = re.compile(
    r"(^|[\s;&|(/])" + _SOPGUARD + r"(\s+--project-dir(\s+|=)\S+)?\s+"
    r"(requirements\s+satisfy|enforcement\s+(halt|resume)|research\s+(mark|reset)|breaker\s+(reset|fail))\b"
)

_QUOTED = re.compile(r"'[^']*'|\"(?:\\.|[^\"\\])*\"")

REDIRECT_TARGET = re.compile(r"(?<![0-9&>])>>?(?![&>])\s*([^\s|&;<>()]+)")
TEE_TARGET = re.compile(r"\btee\s+(?:-a\s+|--append\s+)?([^\s|&;<>()]+)")
DD_TARGET = re.compile(r"\bdd\b[^|;&]*\bof=([^\s|&;]+)")
IN_PLACE_EDIT = re.compile(r"\b(sed|perl)\s+(-[a-zA-Z]*i\b|--in-place)")

SAFE_REDIRECT_TARGETS = re.compile(
    r"^/dev/(null|stdout|stderr)$"
    r"|^/tmp/"
    r"|^/var/tmp/"
    r"|DerivedData/"
    r"|\.build/"
    r"|^build/"
)


def _state_bypass_patterns(state_dir_name: str) -> List["re.Pattern"]:
    sd = re.escape(state_dir_name.strip("/"))
    state_json = sd + r"/[^\s'\"|;&]*\.json"
    return [
        re.compile(r"\b(ruby|python3?|node|perl)\s+-[ce]\b.*" + state_json, re.IGNORECASE),
        re.compile(r"\brm\s+(-[rf]+\s+)*[^|]*" + state_json, re.IGNORECASE),
        re.compile(r">\s*[^\s]*" + state_json, re.IGNORECASE),
        re.compile(r"\btee\s+(-a\s+)?[^\s]*" + state_json, re.IGNORECASE),
        re.compile(r"\b(mv|cp)\s+.*\s[^\s]*" + state_json + r"\s*$", re.IGNORECASE),
        re.compile(r"\bsed\s+(-[a-zA-Z]*i\b|--in-place).*" + state_json, re.IGNORECASE),
    ]


def strip_quoted(command: str) -> str:
    """Blank out quoted strings so their contents are not read as shell syntax."""
    return _QUOTED.sub("''", command)


def is_sopguard_invocation(command: str) -> bool:
    """True when the command runs sopguard and nothing else."""
    if _SUBSTITUTION.search(command) or "`" in command:
        return False
    return bool(SOPGUARD_ONLY.match(strip_quoted(command)))


def write_targets(command: str) -> List[str]:
    """Files a command writes through redirection, tee or dd."""
    bare = strip_quoted(command)
    targets = REDIRECT_TARGET.findall(bare)
    targets.extend(TEE_TARGET.findall(bare))
    targets.extend(DD_TARGET.findall(bare))
    return targets


class BashBypassCheck(Check):
    """Bash must not rewrite enforcement state or write files behind the edit tools' back."""

    name = "bash_bypass"
    rule = "bash_bypass"

    def applies_to(self, event):
        return event.tool_name == "Bash"

    def evaluate(self, event, ctx):
        command = event.command
        if not command:
            return None
        if ADMIN_MUTATION.search(strip_quoted(command)):
            return Verdict.block(
                "user_only_command",
                "USER-ONLY COMMAND BLOCKED\n"
                f"This sopguard command changes enforcement state and must be run by the user: {command[:60]}",
                "Tell the user what you need and ask them to run the command themselves.",
                details={"command": command[:200]},
            )
        if is_sopguard_invocation(command):
            return None

        for pattern in _state_bypass_patterns(ctx.config.state_dir_name):
            if pattern.search(command):
                return Verdict.block(
                    "state_bypass",
                    "STATE BYPASS BLOCKED\n"
                    f"Command appears to manipulate enforcement state files: {command[:60]}",
                    "Ask the user to run the matching sopguard command instead.",
                    details={"command": command[:200]},
                )

        if IN_PLACE_EDIT.search(strip_quoted(command)):
            return self._file_write(command)

        unsafe = [t for t in write_targets(command) if not SAFE_REDIRECT_TARGETS.search(t)]
        if unsafe:
            return self._file_write(command, unsafe)
        return None

    def _file_write(self, command, targets=None):
        return Verdict.block(
            self.rule,
            "BASH FILE WRITE BLOCKED\n"
            f"Command appears to write files: {command[:80]}\n"
            "Bash writes bypass edit tracking.",
            "Use the Edit or Write tool instead. Allowed redirects: /tmp/, /dev/null, "
            "build dirs, stderr (2>&1).",
            details={"command": command[:200], "targets": targets or []},
        )


SIGNIFICANT_FILE_PATTERNS = [
    re.compile(r"(^|/)scripts/"),
    re.compile(r"(^|/)hooks/"),
    re.compile(r"(^|/)docs/.*\.md$"),
    re.compile(r"(^|/)(pyproject\.toml|setup\.cfg|package\.json)$"),
]

README_PATTERN = re.compile(r"(^|/)README\.md$", re.IGNORECASE)
GIT_COMMIT = re.compile(r"\bgit\s+commit\b")


class ReadmeOnCommitCheck(Check):
    """Reminder to update README.md when committing significant changes."""

    name = "readme_on_commit"
    rule = "readme_on_commit"

    def applies_to(self, event):
        return event.tool_name == "Bash"

    def evaluate(self, event, ctx):
        if not GIT_COMMIT.search(event.command):
            return None
        edited = ctx.store.get("edits").unique_files
        significant = [f for f in edited if any(p.search(f) for p in SIGNIFICANT_FILE_PATTERNS)]
        if not significant:
            return None
        if any(README_PATTERN.search(f) for f in edited):
            return None
        names = ", ".join(f.rsplit("/", 1)[-1] for f in significant[:5])
        return Verdict.warn(
            self.rule,
            f"README UPDATE REMINDER\nSignificant files edited but README.md was not: {names}",
            "Consider updating README.md to reflect these changes.",
        )
