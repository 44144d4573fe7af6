"""
Exceptions
==========

Error types raised across sopguard. Rule violations are not exceptions; they
are block verdicts returned by the check pipeline.
"""

from typing import List


class SopGuardError(Exception):
    """Base class for sopguard errors."""


class MalformedInputError(SopGuardError):
    """Hook payload could not be parsed. The boundary treats this as allow."""


class StorageError(SopGuardError):
    """A critical state domain could not be written."""

    def __init__(self, domain: str, cause: Exception):
        super().__init__(f"Could not persist '{domain}' state: {cause}")
        self.domain = domain
        self.cause = cause


class TaskLoopError(SopGuardError):
    """Invalid task-loop transition. The message states how to fix it."""


class SummaryRejected(TaskLoopError):
    """Summary text failed schema validation."""

    def __init__(self, errors: List[str]):
        super().__init__("INVALID: " + " | ".join(errors))
        self.errors = errors
