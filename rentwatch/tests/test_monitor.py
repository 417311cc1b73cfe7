from datetime import datetime, timedelta, timezone

from rentwatch.core.config import Settings
from rentwatch.core.models import SystemIssue
from rentwatch.core.monitor import analyze_system_health, run_system_monitor, system_health_score
from rentwatch.jobs.system_monitor import monitor_system
from rentwatch.tests.fakes import InMemoryRepo

NOW = datetime(2026, 5, 12, 9, 0, tzinfo=timezone.utc)


def _failed_result(test_name: str, hours_ago: int = 1) -> dict:
    return {
        "test_name": test_name,
        "status": "failed",
        "started_at": (NOW - timedelta(hours=hours_ago)).isoformat(),
    }


def _pending(index: int, hours_ago: int) -> dict:
    return {
        "id": f"n-{index}",
        "user_id": f"user-{index}",
        "property_id": f"prop-{index}",
        "delivery_status": "pending",
        "sent_at": (NOW - timedelta(hours=hours_ago)).isoformat(),
    }


def test_quiet_system_scores_100_and_raises_nothing():
    repo = InMemoryRepo()
    repo.health["pararius"] = {"source": "pararius", "current_url": "https://www.pararius.nl/huurwoningen/groningen"}

    report = run_system_monitor(repo, now=NOW)

    assert report["health_score"] == 100
    assert report["issues"] == []
    assert repo.admin_alerts == []


def test_repeated_qa_failures_are_grouped_per_test():
    repo = InMemoryRepo()
    repo.test_results = [
        _failed_result("notification_test"),
        _failed_result("notification_test"),
        _failed_result("notification_test"),
        _failed_result("user_registration"),
        _failed_result("user_registration", hours_ago=30),
        {"test_name": "cleanup", "status": "passed", "started_at": NOW.isoformat()},
    ]

    issues = analyze_system_health(repo, NOW)

    assert [(issue.details["test_name"], issue.severity) for issue in issues] == [
        ("notification_test", "high"),
        ("user_registration", "medium"),
    ]


def test_struggling_sources_are_ranked_by_severity():
    repo = InMemoryRepo()
    repo.health = {
        "kamernet": {"source": "kamernet", "current_url": "https://kamernet.nl", "is_in_repair_mode": True},
        "funda": {"source": "funda", "current_url": "https://funda.nl", "consecutive_failures": 3},
        "pararius": {"source": "pararius", "current_url": "https://pararius.nl", "qa_failure_count": 2},
        "grunoverhuur": {"source": "grunoverhuur", "current_url": "https://grunoverhuur.nl"},
    }

    severities = {issue.details["source"]: issue.severity for issue in analyze_system_health(repo, NOW)}

    assert severities == {"kamernet": "critical", "funda": "high", "pararius": "medium"}


def test_stuck_pending_notifications_only_count_past_two_hours():
    repo = InMemoryRepo()
    repo.notifications = [_pending(index, hours_ago=3) for index in range(10)]
    repo.notifications.append(_pending(10, hours_ago=1))
    assert analyze_system_health(repo, NOW) == []

    repo.notifications.append(_pending(11, hours_ago=5))
    issues = analyze_system_health(repo, NOW)
    assert [(issue.category, issue.severity) for issue in issues] == [("notification_system", "high")]
    assert issues[0].details["stale_pending"] == 11


def test_score_penalises_critical_issues():
    issues = [
        SystemIssue(category="scraper_health", severity="critical", description="down"),
        SystemIssue(category="qa_failure", severity="medium", description="flaky"),
    ]
    assert system_health_score(issues) == 50
    assert system_health_score(issues * 3) == 0


def test_critical_report_becomes_critical_admin_alert():
    repo = InMemoryRepo()
    repo.health["kamernet"] = {"source": "kamernet", "current_url": "https://kamernet.nl", "is_in_repair_mode": True}

    report = run_system_monitor(repo, now=NOW)
    again = run_system_monitor(repo, now=NOW + timedelta(minutes=5))

    assert report["health_score"] == 60
    assert report["alert_id"] == repo.admin_alerts[0]["id"]
    assert repo.admin_alerts[0]["alert_type"] == "system_monitor"
    assert repo.admin_alerts[0]["severity"] == "critical"
    assert again["alert_id"] is not None
    assert len(repo.admin_alerts) == 2


def test_warning_report_is_deduplicated_by_the_job():
    repo = InMemoryRepo()
    repo.test_results = [_failed_result("notification_test")]
    repo.test_results[0]["started_at"] = datetime.now(timezone.utc).isoformat()

    first = monitor_system(repo=repo, settings=Settings())
    second = monitor_system(repo=repo, settings=Settings())

    assert first["health_score"] == 90
    assert first["alert_id"] is not None
    assert second["alert_id"] is None
    assert len(repo.admin_alerts) == 1
    assert repo.admin_alerts[0]["severity"] == "warning"
