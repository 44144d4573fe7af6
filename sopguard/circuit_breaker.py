"""
Circuit Breaker
===============

Counts consecutive tool failures and, at the threshold, halts the agent:
every tool call is blocked until the user resets the breaker explicitly.

States:
    closed  --record_failure x threshold-->  tripped
    tripped --reset()-->                     closed

``record_success`` clears the consecutive count while closed; it never
closes a tripped breaker.
"""

import logging
from typing import Optional

from sopguard.models import CircuitBreakerState, DEFAULT_BREAKER_THRESHOLD, format_timestamp, utc_now
from sopguard.state_store import StateStore

logger = logging.getLogger(__name__)

DOMAIN = "circuit_breaker"


class CircuitBreaker:
    """Persistent failure counter backed by the ``circuit_breaker`` domain."""

    def __init__(self, store: StateStore, threshold: int = DEFAULT_BREAKER_THRESHOLD, clock=utc_now):
        self.store = store
        self.default_threshold = threshold
        self._clock = clock

    def state(self) -> CircuitBreakerState:
        state = self.store.get(DOMAIN)
        if not self.store.path(DOMAIN).exists():
            state.threshold = self.default_threshold
        return state

    def is_tripped(self) -> bool:
        return self.state().tripped

    def record_failure(self, error: str) -> CircuitBreakerState:
        """Count a failure; trips when the count reaches the threshold."""
        state = self.state()
        state.failures += 1
        state.last_error = (error or "unknown error")[:500]
        if not state.tripped and state.failures >= state.threshold:
            state.tripped = True
            state.tripped_at = format_timestamp(self._clock())
            state.trip_reason = f"{state.failures} consecutive failures"
            logger.warning("Circuit breaker tripped after %d failures: %s", state.failures, state.last_error)
        return self.store.put(DOMAIN, state)

    def record_success(self) -> CircuitBreakerState:
        state = self.state()
        if state.tripped or state.failures == 0:
            return state
        state.failures = 0
        return self.store.put(DOMAIN, state)

    def reset(self, reason: str = "user") -> CircuitBreakerState:
        """Close the breaker. Only explicit user commands and session start call this."""
        state = self.state()
        state.failures = 0
        state.tripped = False
        state.tripped_at = None
        state.trip_reason = None
        state.reset_at = format_timestamp(self._clock())
        state.reset_reason = reason
        return self.store.put(DOMAIN, state)

    def session_reset(self) -> Optional[CircuitBreakerState]:
        """Courtesy reset at session start. Only touches a tripped breaker."""
        if not self.is_tripped():
            return None
        return self.reset("new_session")

    def block_message(self, state: Optional[CircuitBreakerState] = None) -> str:
        state = state or self.state()
        return (
            "CIRCUIT BREAKER TRIPPED\n"
            f"{state.failures} consecutive failures detected.\n"
            f"Last error: {state.last_error}"
        )
