from __future__ import annotations

import html
import json
import logging
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from rentwatch.core.models import AdminAlert, ScraperHealthState
from rentwatch.core.notify import EmailSender

LOGGER = logging.getLogger(__name__)

UNSUPPRESSED_SEVERITIES = {"critical", "emergency"}
SEVERITY_COLORS = {"warning": "#f59e0b", "critical": "#ef4444", "emergency": "#dc2626"}


def should_create_admin_alert(severity: str, recent_alerts: list[dict[str, Any]]) -> bool:
    if severity in UNSUPPRESSED_SEVERITIES:
        return True
    return not recent_alerts


def create_admin_alert(
    repo: Any,
    alert: AdminAlert,
    now: datetime | None = None,
    dedup_hours: int = 24,
    on_created: Callable[[dict[str, Any]], None] | None = None,
) -> dict[str, Any] | None:
    """
    Queue an operator-facing incident. A repeat of the same alert_type inside the
    dedup window is dropped unless the severity is critical or worse.
    """
    now = now or datetime.now(timezone.utc)
    recent = repo.find_admin_alerts_since(alert.alert_type, now - timedelta(hours=dedup_hours))
    if not should_create_admin_alert(alert.severity, recent):
        LOGGER.info("Suppressed admin alert type=%s (already raised within %sh)", alert.alert_type, dedup_hours)
        return None

    row = repo.insert_admin_alert(
        {
            "alert_type": alert.alert_type,
            "severity": alert.severity,
            "title": alert.title,
            "message": alert.message,
            "details": alert.details,
            "test_run_id": alert.test_run_id,
            "status": "pending",
            "created_at": now.isoformat(),
        }
    )
    LOGGER.warning("Admin alert created type=%s severity=%s title=%s", alert.alert_type, alert.severity, alert.title)
    if on_created is not None:
        try:
            on_created(row)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Immediate admin alert dispatch failed: %s", exc)
    return row


def dispatch_admin_alerts(
    repo: Any,
    email_sender: EmailSender | None,
    admin_email: str | None,
    alert_id: str | None = "latest",
    now: datetime | None = None,
) -> dict[str, Any]:
    """Send pending alerts: "latest" sends the newest one, an id sends that one, None sends up to five."""
    if email_sender is None or not admin_email:
        LOGGER.warning("Admin alert delivery not configured; leaving alerts pending.")
        return {"sent_count": 0, "errors": []}

    if alert_id == "latest":
        alerts = repo.get_pending_admin_alerts(limit=1)
    elif alert_id:
        alerts = repo.get_pending_admin_alerts(alert_id=alert_id)
    else:
        alerts = repo.get_pending_admin_alerts(limit=5)
    if not alerts:
        LOGGER.info("No pending admin alerts to send")
        return {"sent_count": 0, "errors": []}

    sent_count = 0
    errors: list[dict[str, Any]] = []
    for alert in alerts:
        subject = f"🚨 QA Alert: {alert.get('title')}"
        result = email_sender(admin_email, subject, render_admin_alert_html(alert), _admin_alert_text(alert))
        if not result.ok:
            LOGGER.error("Failed to send admin alert id=%s error=%s", alert.get("id"), result.error)
            errors.append({"alert_id": alert.get("id"), "error": result.error})
            continue
        repo.mark_admin_alert_sent(str(alert["id"]), now or datetime.now(timezone.utc))
        sent_count += 1
    LOGGER.info("Admin alerts completed sent=%s errors=%s", sent_count, len(errors))
    return {"sent_count": sent_count, "errors": errors}


def render_admin_alert_html(alert: dict[str, Any]) -> str:
    color = SEVERITY_COLORS.get(str(alert.get("severity")), "#6b7280")
    details = alert.get("details")
    details_block = ""
    if details:
        pretty = json.dumps(details, indent=2, default=str, ensure_ascii=False)
        details_block = (
            f'<div style="background:#f8f9fa;border-left:4px solid {color};padding:15px">'
            f"<h4>Technical details</h4><pre>{html.escape(pretty)}</pre></div>"
        )
    return (
        '<!DOCTYPE html><html><head><meta charset="utf-8"></head>'
        '<body style="font-family:Segoe UI,Tahoma,sans-serif;max-width:600px;margin:0 auto">'
        f'<div style="background:{color};color:white;padding:20px"><h1>QA System Alert</h1></div>'
        f'<p><strong>{html.escape(str(alert.get("severity", "")).upper())}</strong></p>'
        f"<h2>{html.escape(str(alert.get('title', '')))}</h2>"
        f"<p><strong>Alert type:</strong> {html.escape(str(alert.get('alert_type', '')))}</p>"
        f"<p><strong>Message:</strong> {html.escape(str(alert.get('message', '')))}</p>"
        f"{details_block}"
        f"<p style=\"color:#666\">Alert ID: {html.escape(str(alert.get('id')))}<br>"
        f"Created: {html.escape(str(alert.get('created_at')))}<br>"
        f"Test run: {html.escape(str(alert.get('test_run_id') or 'N/A'))}</p>"
        "</body></html>"
    )


def _admin_alert_text(alert: dict[str, Any]) -> str:
    return f"[{alert.get('severity')}] {alert.get('title')}\n\n{alert.get('message')}\n\nAlert type: {alert.get('alert_type')}"


def build_daily_summary(repo: Any, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=24)
    runs = repo.get_test_runs_since(since)
    results = repo.get_test_results_since(since)
    health_rows = repo.list_scraper_health()
    pending = repo.get_pending_admin_alerts_since(since)

    completed = [run for run in runs if run.get("status") == "completed"]
    tests_by_type: dict[str, dict[str, int]] = defaultdict(lambda: {"passed": 0, "failed": 0})
    for result in results:
        bucket = "passed" if result.get("status") == "passed" else "failed"
        tests_by_type[str(result.get("test_name"))][bucket] += 1

    unhealthy = [
        row for row in health_rows if row.get("is_in_repair_mode") or (row.get("consecutive_failures") or 0) > 2
    ]
    return {
        "total_runs": len(runs),
        "completed_runs": len(completed),
        "avg_passed_tests": _average(completed, "passed_tests"),
        "avg_failed_tests": _average(completed, "failed_tests"),
        "tests_by_type": dict(tests_by_type),
        "healthy_sources": len(health_rows) - len(unhealthy),
        "unhealthy_sources": [row.get("source") for row in unhealthy],
        "pending_alerts": [
            {"title": row.get("title"), "severity": row.get("severity"), "created_at": row.get("created_at")}
            for row in pending
        ],
    }


def render_summary_html(summary: dict[str, Any], now: datetime) -> str:
    rows = []
    for test_name, counts in sorted(summary["tests_by_type"].items()):
        total = counts["passed"] + counts["failed"]
        rate = round(counts["passed"] / total * 100) if total else 0
        rows.append(
            f"<tr><td>{html.escape(test_name)}</td><td>{counts['passed']}</td>"
            f"<td>{counts['failed']}</td><td>{rate}%</td></tr>"
        )
    unhealthy = "".join(f"<li>{html.escape(str(name))}</li>" for name in summary["unhealthy_sources"])
    pending = "".join(
        f"<li>{html.escape(str(alert['title']))} ({html.escape(str(alert['severity']))})</li>"
        for alert in summary["pending_alerts"]
    )
    return (
        '<!DOCTYPE html><html><body style="font-family:Arial,sans-serif">'
        f"<h1>Daily QA System Summary</h1><p>Last 24 hours, generated {now.isoformat()}</p>"
        f"<p>Total runs: {summary['total_runs']}<br>Completed runs: {summary['completed_runs']}<br>"
        f"Average passed tests: {summary['avg_passed_tests']}<br>"
        f"Average failed tests: {summary['avg_failed_tests']}</p>"
        "<table><tr><th>Test</th><th>Passed</th><th>Failed</th><th>Success rate</th></tr>"
        f"{''.join(rows)}</table>"
        f"<h2>Sources</h2><p>Healthy: {summary['healthy_sources']}</p><ul>{unhealthy}</ul>"
        f"<h2>Pending alerts ({len(summary['pending_alerts'])})</h2><ul>{pending}</ul>"
        "</body></html>"
    )


def send_daily_summary(
    repo: Any,
    email_sender: EmailSender | None,
    admin_email: str | None,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    summary = build_daily_summary(repo, now)
    if email_sender is None or not admin_email:
        LOGGER.warning("Daily summary built but email delivery is not configured.")
        return {"sent": False, "metrics": summary}
    subject = f"Daily QA Summary - {now.date().isoformat()}"
    text_body = json.dumps(summary, indent=2, default=str)
    result = email_sender(admin_email, subject, render_summary_html(summary, now), text_body)
    if not result.ok:
        LOGGER.error("Daily summary delivery failed: %s", result.error)
    return {"sent": result.ok, "error": result.error, "metrics": summary}


def _average(rows: list[dict[str, Any]], key: str) -> int:
    if not rows:
        return 0
    return round(sum(int(row.get(key) or 0) for row in rows) / len(rows))


def escalate_repair_exhaustion(
    repo: Any,
    state: ScraperHealthState,
    now: datetime,
    throttle_hours: int = 24,
    dedup_hours: int = 24,
    on_created: Callable[[dict[str, Any]], None] | None = None,
    test_run_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> ScraperHealthState:
    """
    Critical alert for a source whose repair budget is spent, at most once per
    throttle window per source. Returns the state with last_admin_alert stamped.
    """
    if state.last_admin_alert and state.last_admin_alert > now - timedelta(hours=throttle_hours):
        LOGGER.info("Skipping repair escalation source=%s (alerted at %s)", state.source, state.last_admin_alert)
        return state
    create_admin_alert(
        repo,
        AdminAlert(
            alert_type="scraper_repair_failed",
            severity="critical",
            title=f"Scraper Auto-Repair Failed: {state.source}",
            message=(
                f"The {state.source} scraper has failed auto-repair after {state.repair_attempt_count} attempts. "
                "Manual intervention required."
            ),
            details={
                "scraper": state.source,
                "repair_attempts": state.repair_attempt_count,
                "repair_status": state.repair_status,
                "last_alert": state.last_admin_alert.isoformat() if state.last_admin_alert else None,
                **(details or {}),
            },
            test_run_id=test_run_id,
        ),
        now=now,
        dedup_hours=dedup_hours,
        on_created=on_created,
    )
    return replace(state, last_admin_alert=now)
