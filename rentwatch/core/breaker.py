from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

from rentwatch.core.models import CircuitBreakerState


def is_paused(state: CircuitBreakerState, now: datetime) -> bool:
    return state.paused_until is not None and now < state.paused_until


def record_run(state: CircuitBreakerState, failed: bool, now: datetime) -> tuple[CircuitBreakerState, bool]:
    """
    Returns the next breaker state and whether this run tripped it.
    A fully clean run resets the failure streak, and so does tripping,
    so the next pause needs a fresh run of failures.
    """
    if not failed:
        return replace(state, consecutive_failures=0), False

    failures = state.consecutive_failures + 1
    if failures >= state.max_failures:
        paused_until = now + timedelta(minutes=state.pause_duration_minutes)
        return replace(state, consecutive_failures=0, last_failure_at=now, paused_until=paused_until), True
    return replace(state, consecutive_failures=failures, last_failure_at=now), False


def status_summary(state: CircuitBreakerState, now: datetime) -> dict[str, object]:
    return {
        "active": is_paused(state, now),
        "consecutive_failures": state.consecutive_failures,
        "paused_until": state.paused_until.isoformat() if state.paused_until else None,
        "max_failures": state.max_failures,
    }
