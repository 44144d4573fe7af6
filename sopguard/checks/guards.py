"""
Global guards that run before every other check.
"""

from sopguard.checks.base import Check, Verdict


class CircuitBreakerCheck(Check):
    """Blocks everything while the breaker is tripped."""

    name = "circuit_breaker"
    rule = "circuit_breaker"

    def evaluate(self, event, ctx):
        state = ctx.breaker.state()
        if not state.tripped:
            return None
        return Verdict.block(
            self.rule,
            ctx.breaker.block_message(state),
            "User must say 'reset breaker' (or run: sopguard breaker reset) to continue.",
            counts_as_violation=False,
            details={"failures": state.failures},
        )


class EnforcementHaltedCheck(Check):
    """While the user has halted enforcement, warn once and skip the rest."""

    name = "enforcement_halted"
    rule = "enforcement_halted"

    def evaluate(self, event, ctx):
        state = ctx.store.get("enforcement")
        if not state.halted:
            return None
        return Verdict.warn(
            self.rule,
            f"Enforcement halted: {state.halted_reason or 'no reason given'}",
            "The user resumes enforcement with: sopguard enforcement resume",
            skip_remaining=True,
        )
