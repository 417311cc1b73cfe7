from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from rentwatch.core.alerts import create_admin_alert
from rentwatch.core.models import AdminAlert, SystemIssue
from rentwatch.core.normalize import health_from_row

LOGGER = logging.getLogger(__name__)

LOOKBACK_HOURS = 24
QA_FAILURES_HIGH = 3
SCRAPER_FAILURES_HIGH = 3
SCRAPER_FAILURES_CRITICAL = 5
SCRAPER_QA_FAILURES = 2
STALE_PENDING_HOURS = 2
STALE_PENDING_LIMIT = 10


def analyze_system_health(repo: Any, now: datetime) -> list[SystemIssue]:
    """
    Cross-cutting view of the last day: repeated QA failures per test, sources
    that are struggling, and notifications stuck in pending.
    """
    issues: list[SystemIssue] = []

    failures = Counter(
        row.get("test_name") or "unknown"
        for row in repo.get_test_results_since(now - timedelta(hours=LOOKBACK_HOURS))
        if row.get("status") == "failed"
    )
    for test_name, count in sorted(failures.items()):
        issues.append(
            SystemIssue(
                category="qa_failure",
                severity="high" if count >= QA_FAILURES_HIGH else "medium",
                description=f"{test_name} failed {count} time{'s' if count > 1 else ''} in the last {LOOKBACK_HOURS}h",
                details={"test_name": test_name, "failure_count": count},
            )
        )

    for row in repo.list_scraper_health():
        state = health_from_row(row)
        if not (
            state.is_in_repair_mode
            or state.consecutive_failures >= SCRAPER_FAILURES_HIGH
            or state.qa_failure_count >= SCRAPER_QA_FAILURES
        ):
            continue
        if state.is_in_repair_mode or state.consecutive_failures >= SCRAPER_FAILURES_CRITICAL:
            severity = "critical"
        elif state.consecutive_failures >= SCRAPER_FAILURES_HIGH:
            severity = "high"
        else:
            severity = "medium"
        issues.append(
            SystemIssue(
                category="scraper_health",
                severity=severity,
                description=f"{state.source} is {state.repair_status} with {state.consecutive_failures} consecutive failures",
                details={
                    "source": state.source,
                    "repair_status": state.repair_status,
                    "in_repair_mode": state.is_in_repair_mode,
                    "consecutive_failures": state.consecutive_failures,
                    "qa_failure_count": state.qa_failure_count,
                },
            )
        )

    stale = repo.count_stale_pending_notifications(now - timedelta(hours=STALE_PENDING_HOURS))
    if stale > STALE_PENDING_LIMIT:
        issues.append(
            SystemIssue(
                category="notification_system",
                severity="high",
                description=f"{stale} notifications pending for more than {STALE_PENDING_HOURS}h",
                details={"stale_pending": stale},
            )
        )
    return issues


def system_health_score(issues: list[SystemIssue]) -> int:
    critical = sum(1 for issue in issues if issue.severity == "critical")
    return max(0, 100 - 10 * len(issues) - 30 * critical)


def run_system_monitor(
    repo: Any,
    now: datetime | None = None,
    dedup_hours: int = 24,
    on_alert: Callable[[dict[str, Any]], None] | None = None,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    issues = analyze_system_health(repo, now)
    score = system_health_score(issues)
    report = {
        "health_score": score,
        "issues": [asdict(issue) for issue in issues],
        "analyzed_at": now.isoformat(),
        "alert_id": None,
    }
    LOGGER.info("System monitor score=%s issues=%s", score, len(issues))
    if not issues:
        return report

    critical = [issue for issue in issues if issue.severity == "critical"]
    lines = [f"- [{issue.severity}] {issue.description}" for issue in issues]
    row = create_admin_alert(
        repo,
        AdminAlert(
            alert_type="system_monitor",
            severity="critical" if critical else "warning",
            title=f"System health score {score}/100",
            message="\n".join([f"{len(issues)} issue(s) found, {len(critical)} critical.", *lines]),
            details={"health_score": score, "issues": report["issues"]},
        ),
        now=now,
        dedup_hours=dedup_hours,
        on_created=on_alert,
    )
    report["alert_id"] = row.get("id") if row else None
    return report
