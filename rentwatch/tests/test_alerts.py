from datetime import datetime, timedelta, timezone

from rentwatch.core.alerts import (
    build_daily_summary,
    create_admin_alert,
    dispatch_admin_alerts,
    escalate_repair_exhaustion,
    render_admin_alert_html,
)
from rentwatch.core.models import AdminAlert, DeliveryResult, ScraperHealthState
from rentwatch.tests.fakes import InMemoryRepo

NOW = datetime(2026, 7, 7, 7, 0, tzinfo=timezone.utc)


def _alert(severity: str = "warning") -> AdminAlert:
    return AdminAlert(
        alert_type="notification_system_failed",
        severity=severity,
        title="Notification System Quality Issue",
        message="The notification system failed quality checks.",
        details={"quality_issues": ["City not mentioned in notification"]},
    )


def test_same_alert_type_is_suppressed_within_a_day():
    repo = InMemoryRepo()

    assert create_admin_alert(repo, _alert(), now=NOW) is not None
    assert create_admin_alert(repo, _alert(), now=NOW + timedelta(hours=3)) is None
    assert create_admin_alert(repo, _alert(), now=NOW + timedelta(hours=25)) is not None
    assert len(repo.admin_alerts) == 2


def test_critical_alerts_are_never_suppressed():
    repo = InMemoryRepo()
    create_admin_alert(repo, _alert("critical"), now=NOW)
    create_admin_alert(repo, _alert("critical"), now=NOW + timedelta(minutes=5))
    assert len(repo.admin_alerts) == 2


def test_new_alert_triggers_immediate_dispatch_hook():
    repo = InMemoryRepo()
    dispatched = []
    row = create_admin_alert(repo, _alert(), now=NOW, on_created=dispatched.append)
    assert dispatched == [row]


def test_dispatch_latest_marks_alert_sent():
    repo = InMemoryRepo()
    create_admin_alert(repo, _alert(), now=NOW)
    sent = []

    def sender(to, subject, html_body, text_body):
        sent.append((to, subject))
        return DeliveryResult(ok=True)

    result = dispatch_admin_alerts(repo, sender, "ops@rentwatch.nl", alert_id="latest", now=NOW)

    assert result["sent_count"] == 1
    assert sent == [("ops@rentwatch.nl", "🚨 QA Alert: Notification System Quality Issue")]
    assert repo.admin_alerts[0]["status"] == "sent"


def test_failed_dispatch_leaves_alert_pending():
    repo = InMemoryRepo()
    create_admin_alert(repo, _alert(), now=NOW)

    result = dispatch_admin_alerts(repo, lambda *args: DeliveryResult(ok=False, error="rate limited"), "ops@rentwatch.nl")

    assert result["sent_count"] == 0
    assert result["errors"][0]["error"] == "rate limited"
    assert repo.admin_alerts[0]["status"] == "pending"


def test_dispatch_without_email_configuration_sends_nothing():
    repo = InMemoryRepo()
    create_admin_alert(repo, _alert(), now=NOW)
    assert dispatch_admin_alerts(repo, None, None)["sent_count"] == 0


def test_repair_escalation_is_throttled_per_source():
    repo = InMemoryRepo()
    state = ScraperHealthState(source="duwo", current_url="https://duwo.nl", repair_attempt_count=3)

    state = escalate_repair_exhaustion(repo, state, NOW)
    state = escalate_repair_exhaustion(repo, state, NOW + timedelta(hours=2))

    assert state.last_admin_alert == NOW
    assert [row["alert_type"] for row in repo.admin_alerts] == ["scraper_repair_failed"]
    assert repo.admin_alerts[0]["severity"] == "critical"


def test_alert_html_escapes_details():
    html_body = render_admin_alert_html({"severity": "critical", "title": "<b>x</b>", "details": {"k": "<script>"}})
    assert "&lt;b&gt;x&lt;/b&gt;" in html_body
    assert "<script>" not in html_body


def test_daily_summary_groups_results():
    repo = InMemoryRepo()
    repo.test_runs.append({"id": "r1", "status": "completed", "started_at": NOW.isoformat(), "passed_tests": 5, "failed_tests": 1})
    repo.test_results.extend(
        [
            {"test_name": "cleanup", "status": "passed", "started_at": NOW.isoformat()},
            {"test_name": "scraper_health", "status": "failed", "started_at": NOW.isoformat()},
        ]
    )
    repo.health["ssh"] = {"source": "ssh", "is_in_repair_mode": True, "consecutive_failures": 0}

    summary = build_daily_summary(repo, NOW + timedelta(hours=1))

    assert summary["completed_runs"] == 1
    assert summary["avg_passed_tests"] == 5
    assert summary["tests_by_type"]["scraper_health"] == {"passed": 0, "failed": 1}
    assert summary["unhealthy_sources"] == ["ssh"]
