from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

from rentwatch.core.models import ScraperHealthState, SourceRunOutcome

HEALTHY = "healthy"
NEEDS_REPAIR = "needs_repair"
REPAIRED = "repaired"
FAILED = "failed"

ZERO_HOURS_THRESHOLD = 2
QA_PASS_SCORE = 70


def apply_run_outcome(
    state: ScraperHealthState,
    outcome: SourceRunOutcome,
    now: datetime,
    zero_hours_threshold: int = ZERO_HOURS_THRESHOLD,
) -> ScraperHealthState:
    """
    One transition per orchestrator cycle. A run with any validated listing is a
    confirmed success and is the only path that clears the repair attempt counter.
    """
    if outcome.failed:
        return replace(
            state,
            consecutive_failures=state.consecutive_failures + 1,
            last_failure_run=now,
        )

    if outcome.new > 0 or outcome.validated > 0:
        return replace(
            state,
            consecutive_failures=0,
            consecutive_zero_hours=0,
            is_in_repair_mode=False,
            repair_attempt_count=0,
            repair_status=HEALTHY,
            last_successful_run=now,
        )

    zero_hours = state.consecutive_zero_hours + 1
    if zero_hours >= zero_hours_threshold:
        # An exhausted repair stays failed until a run yields listings again.
        return replace(
            state,
            consecutive_zero_hours=zero_hours,
            is_in_repair_mode=True,
            repair_status=FAILED if state.repair_status == FAILED else NEEDS_REPAIR,
        )
    return replace(state, consecutive_zero_hours=zero_hours)


def mark_repaired(state: ScraperHealthState, now: datetime) -> ScraperHealthState:
    return replace(
        state,
        consecutive_failures=0,
        consecutive_zero_hours=0,
        is_in_repair_mode=False,
        repair_status=REPAIRED,
        last_repair_attempt=now,
    )


def mark_repair_failed(state: ScraperHealthState, now: datetime, max_attempts: int) -> ScraperHealthState:
    """Stays in needs_repair until the attempt budget is spent, then failed."""
    status = FAILED if state.repair_attempt_count >= max_attempts else NEEDS_REPAIR
    return replace(state, is_in_repair_mode=True, repair_status=status, last_repair_attempt=now)


def needs_repair(state: ScraperHealthState, max_attempts: int | None = None) -> bool:
    if state.repair_status != NEEDS_REPAIR:
        return False
    return max_attempts is None or state.repair_attempt_count < max_attempts


def score_source_health(state: ScraperHealthState | None, now: datetime) -> tuple[int, list[str]]:
    score = 100
    issues: list[str] = []
    last_success = state.last_successful_run if state else None
    if last_success is None or last_success < now - timedelta(hours=24):
        issues.append("No successful runs in last 24 hours")
        score -= 50
    if state and state.is_in_repair_mode:
        issues.append("Scraper is in repair mode")
        score -= 30
    if state and state.consecutive_failures > 3:
        issues.append(f"High consecutive failures: {state.consecutive_failures}")
        score -= 20
    return score, issues


def record_qa_check(state: ScraperHealthState, score: int, now: datetime) -> ScraperHealthState:
    return replace(
        state,
        last_qa_check=now,
        qa_failure_count=state.qa_failure_count + 1 if score < QA_PASS_SCORE else 0,
    )


HEALTH_CHECK_ZERO_RUNS = 3


def health_verdict(state: ScraperHealthState) -> dict[str, object]:
    """Read-only summary for the health_check action; a verdict never changes state."""
    healthy = state.consecutive_zero_hours < HEALTH_CHECK_ZERO_RUNS
    return {
        "source": state.source,
        "healthy": healthy,
        "action": "none" if healthy else "repair_needed",
        "repair_status": state.repair_status,
        "consecutive_zero_hours": state.consecutive_zero_hours,
    }
