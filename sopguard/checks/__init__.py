"""
Rule checks evaluated by the engine, in pipeline order.
"""

from typing import List

from sopguard.checks.base import BLOCK, WARN, Check, CheckContext, EditCheck, Verdict
from sopguard.checks.files import BlockedPathCheck, FileSizeCheck, TableBanCheck, TautologyCheck
from sopguard.checks.guards import CircuitBreakerCheck, EnforcementHaltedCheck
from sopguard.checks.process import (
    EditAttemptLimitCheck,
    ExternalMutationCheck,
    GamingCheck,
    GlobalMutationCheck,
    ProcessCheck,
    RequirementsCheck,
    ResearchBeforeEditCheck,
    ResearchOnlyModeCheck,
    SubagentBypassCheck,
    TaskLoopRequiredCheck,
)
from sopguard.checks.shell import BashBypassCheck, ReadmeOnCommitCheck


def default_pipeline() -> List[Check]:
    """The fixed check order. First block wins, so order matters."""
    return [
        CircuitBreakerCheck(),
        EnforcementHaltedCheck(),
        BlockedPathCheck(),
        FileSizeCheck(),
        TableBanCheck(),
        TautologyCheck(),
        BashBypassCheck(),
        ResearchOnlyModeCheck(),
        GlobalMutationCheck(),
        ExternalMutationCheck(),
        SubagentBypassCheck(),
        TaskLoopRequiredCheck(),
        RequirementsCheck(),
        ProcessCheck(),
        ReadmeOnCommitCheck(),
        ResearchBeforeEditCheck(),
        EditAttemptLimitCheck(),
        GamingCheck(),
    ]


__all__ = [
    "BLOCK",
    "WARN",
    "Check",
    "CheckContext",
    "EditCheck",
    "Verdict",
    "default_pipeline",
]
