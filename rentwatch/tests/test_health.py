from datetime import datetime, timedelta, timezone

from rentwatch.core.health import (
    apply_run_outcome,
    health_verdict,
    mark_repair_failed,
    needs_repair,
    record_qa_check,
    score_source_health,
)
from rentwatch.core.models import ScraperHealthState, SourceRunOutcome

NOW = datetime(2026, 4, 10, 8, 0, tzinfo=timezone.utc)


def _state(**overrides) -> ScraperHealthState:
    fields = {"source": "funda", "current_url": "https://www.funda.nl/huur/groningen/"}
    fields.update(overrides)
    return ScraperHealthState(**fields)


def test_two_empty_cycles_need_repair_and_a_productive_cycle_heals():
    state = _state()
    state = apply_run_outcome(state, SourceRunOutcome(source="funda"), NOW)
    assert state.repair_status == "healthy"
    assert state.consecutive_zero_hours == 1

    state = apply_run_outcome(state, SourceRunOutcome(source="funda"), NOW + timedelta(hours=1))
    assert state.repair_status == "needs_repair"
    assert state.is_in_repair_mode is True
    assert needs_repair(state)

    state = apply_run_outcome(state, SourceRunOutcome(source="funda", validated=3, new=1), NOW + timedelta(hours=2))
    assert state.repair_status == "healthy"
    assert state.consecutive_zero_hours == 0
    assert state.consecutive_failures == 0
    assert state.is_in_repair_mode is False
    assert state.last_successful_run == NOW + timedelta(hours=2)


def test_only_duplicates_still_counts_as_healthy():
    state = apply_run_outcome(
        _state(consecutive_zero_hours=1),
        SourceRunOutcome(source="funda", validated=4, duplicates=4),
        NOW,
    )
    assert state.consecutive_zero_hours == 0
    assert state.repair_status == "healthy"


def test_failed_run_counts_failures_without_touching_zero_hours():
    state = apply_run_outcome(_state(consecutive_zero_hours=1), SourceRunOutcome(source="funda", error="timeout"), NOW)
    assert state.consecutive_failures == 1
    assert state.consecutive_zero_hours == 1
    assert state.last_failure_run == NOW


def test_repair_failure_becomes_terminal_after_budget():
    state = mark_repair_failed(_state(repair_attempt_count=2), NOW, max_attempts=3)
    assert state.repair_status == "needs_repair"
    state = mark_repair_failed(_state(repair_attempt_count=3), NOW, max_attempts=3)
    assert state.repair_status == "failed"


def test_failed_status_survives_further_empty_runs():
    state = mark_repair_failed(_state(repair_attempt_count=3, consecutive_zero_hours=2), NOW, max_attempts=3)
    state = apply_run_outcome(state, SourceRunOutcome(source="funda"), NOW)

    assert state.repair_status == "failed"
    assert state.consecutive_zero_hours == 3
    assert not needs_repair(state)


def test_needs_repair_respects_attempt_cap():
    state = _state(repair_status="needs_repair", repair_attempt_count=3)
    assert needs_repair(state)
    assert not needs_repair(state, max_attempts=3)
    assert needs_repair(_state(repair_status="needs_repair", repair_attempt_count=2), max_attempts=3)


def test_health_score_deductions():
    score, issues = score_source_health(_state(is_in_repair_mode=True, consecutive_failures=4), NOW)
    assert score == 0
    assert len(issues) == 3

    score, issues = score_source_health(_state(last_successful_run=NOW - timedelta(hours=2)), NOW)
    assert score == 100
    assert issues == []


def test_record_qa_check_tracks_failing_checks():
    state = record_qa_check(_state(), 50, NOW)
    state = record_qa_check(state, 30, NOW)
    assert state.qa_failure_count == 2
    assert state.last_qa_check == NOW
    assert record_qa_check(state, 100, NOW).qa_failure_count == 0


def test_health_verdict_flags_three_empty_hours():
    assert health_verdict(_state(consecutive_zero_hours=2)) == {
        "source": "funda",
        "healthy": True,
        "action": "none",
        "repair_status": "healthy",
        "consecutive_zero_hours": 2,
    }
    verdict = health_verdict(_state(consecutive_zero_hours=3, repair_status="needs_repair"))
    assert verdict["healthy"] is False
    assert verdict["action"] == "repair_needed"
