from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from rentwatch.collectors.base import SourceConfig
from rentwatch.collectors.runner import SourceRunner
from rentwatch.core.alerts import create_admin_alert, escalate_repair_exhaustion
from rentwatch.core.breaker import is_paused, record_run, status_summary
from rentwatch.core.health import QA_PASS_SCORE, record_qa_check, score_source_health
from rentwatch.core.logging_utils import log_test_result
from rentwatch.core.matching import matches_alert
from rentwatch.core.models import AdminAlert, Listing, TestResult, TestRun
from rentwatch.core.normalize import (
    alert_from_row,
    breaker_from_row,
    breaker_to_record,
    health_from_row,
    health_to_record,
    listing_to_record,
)
from rentwatch.core.notify import NotificationDispatcher
from rentwatch.core.repair import AutoRepairController

LOGGER = logging.getLogger(__name__)

QA_SOURCE = "qa-test"
QA_CITY = "Groningen"
ESCALATION_THROTTLE_HOURS = 24


def score_notification_message(message: str | None, city: str = QA_CITY) -> tuple[int, list[str]]:
    score = 100
    issues: list[str] = []
    text = message or ""
    if len(text) < 10:
        issues.append("Message too short or empty")
        score -= 30
    if "€" not in text:
        issues.append("Price not properly formatted")
        score -= 20
    if city not in text:
        issues.append("City not mentioned in notification")
        score -= 15
    return score, issues


class QAAgent:
    """
    End-to-end self test of the pipeline: store constraints, user and alert setup,
    matching into a notification record, scraper health, then cleanup. Repeated
    failing cycles trip a circuit breaker that pauses the agent.
    """

    def __init__(
        self,
        repo: Any,
        dispatcher: NotificationDispatcher,
        sources: list[SourceConfig],
        repair_controller: AutoRepairController | None = None,
        runner: SourceRunner | None = None,
        on_admin_alert: Callable[[dict[str, Any]], None] | None = None,
        notification_wait_seconds: float = 2.0,
        max_repair_attempts: int = 3,
        max_failures: int = 3,
        pause_minutes: int = 60,
        dedup_hours: int = 24,
        retention_days: int = 7,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repo = repo
        self.dispatcher = dispatcher
        self.sources = sources
        self.repair_controller = repair_controller
        self.runner = runner
        self.on_admin_alert = on_admin_alert
        self.notification_wait_seconds = notification_wait_seconds
        self.max_repair_attempts = max_repair_attempts
        self.max_failures = max_failures
        self.pause_minutes = pause_minutes
        self.dedup_hours = dedup_hours
        self.retention_days = retention_days
        self.sleep = sleep

    def run(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        try:
            breaker = breaker_from_row(self.repo.get_circuit_breaker(), self.max_failures, self.pause_minutes)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Circuit breaker lookup failed: %s", exc)
            return {
                "status": "failed",
                "test_run_id": None,
                "results": {"total": 0, "passed": 0, "failed": 0},
                "issues": [f"circuit_breaker: {exc}"],
                "circuit_breaker": None,
            }
        if is_paused(breaker, now):
            LOGGER.warning("QA agent paused by circuit breaker until %s", breaker.paused_until)
            return {"status": "circuit_breaker_active", "issues": [], "circuit_breaker": status_summary(breaker, now)}

        run: TestRun | None = None
        issues: list[str] = []
        try:
            run = self._start_run(now)
            self._execute(run)
            failed = [result for result in run.results if result.status == "failed"]
            for result in failed:
                label = f"{result.test_name}/{result.test_target}" if result.test_target else result.test_name
                issues.append(f"{label}: {result.error_message}")
                self._remediate(run, result)
            run.status = "failed" if failed else "completed"
            self._finish_run(run)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("QA cycle crashed: %s", exc)
            issues.append(f"qa_cycle: {exc}")
            if run is not None:
                run.status = "failed"
                try:
                    self._finish_run(run, error_message=str(exc))
                except Exception as finish_exc:  # noqa: BLE001
                    LOGGER.exception("Could not close test run id=%s: %s", run.id, finish_exc)

        cycle_failed = run is None or run.status == "failed"
        breaker, tripped = record_run(breaker, cycle_failed, now)
        try:
            self.repo.save_circuit_breaker(breaker_to_record(breaker))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Could not save circuit breaker state: %s", exc)
            issues.append(f"circuit_breaker: {exc}")
        if tripped:
            self._raise_alert(
                AdminAlert(
                    alert_type="circuit_breaker_tripped",
                    severity="critical",
                    title="QA agent paused by circuit breaker",
                    message=(
                        f"The QA agent failed {breaker.max_failures} consecutive cycles and is paused "
                        f"for {breaker.pause_duration_minutes} minutes."
                    ),
                    details={"paused_until": breaker.paused_until.isoformat() if breaker.paused_until else None},
                    test_run_id=run.id if run else None,
                )
            )

        results = run.results if run else []
        summary = {
            "status": run.status if run else "failed",
            "test_run_id": run.id if run else None,
            "results": {
                "total": len(results),
                "passed": sum(1 for result in results if result.status == "passed"),
                "failed": sum(1 for result in results if result.status == "failed"),
            },
            "issues": issues,
            "circuit_breaker": status_summary(breaker, now),
        }
        LOGGER.info(
            "QA cycle finished status=%s passed=%s failed=%s",
            summary["status"],
            summary["results"]["passed"],
            summary["results"]["failed"],
        )
        return summary

    def _start_run(self, now: datetime) -> TestRun:
        row = self.repo.insert_test_run(
            {"status": "running", "started_at": now.isoformat(), "total_tests": 4 + len(self.sources)}
        )
        run = TestRun(id=str(row["id"]), status="running", started_at=now)
        LOGGER.info("QA test run started id=%s", run.id)
        return run

    def _finish_run(self, run: TestRun, error_message: str | None = None) -> None:
        fields: dict[str, Any] = {
            "status": run.status,
            "completed_at": datetime.now(timezone.utc).isoformat(),
            "passed_tests": sum(1 for result in run.results if result.status == "passed"),
            "failed_tests": sum(1 for result in run.results if result.status == "failed"),
            "test_user_id": run.test_user_id,
            "test_property_id": run.test_property_id,
        }
        if error_message:
            fields["error_message"] = error_message
        self.repo.update_test_run(run.id, fields)

    def _execute(self, run: TestRun) -> None:
        self._record(run, self.check_store_constraints())

        registration = self.test_user_registration(run)
        self._record(run, registration)
        if registration.status == "passed":
            run.test_user_id = registration.test_data.get("user_id")
            self._record(run, self.test_notification(run, registration.test_data))
        else:
            self._record(
                run,
                TestResult(test_name="notification_test", status="skipped", error_message="User registration failed"),
            )

        for result in self.check_scraper_health():
            self._record(run, result)
        self._record(run, self.cleanup(run))

    def _record(self, run: TestRun, result: TestResult) -> None:
        run.results.append(result)
        log_test_result(LOGGER, run.id, result)
        now = datetime.now(timezone.utc).isoformat()
        try:
            self.repo.insert_test_result(
                {
                    "test_run_id": run.id,
                    "test_name": result.test_name,
                    "test_target": result.test_target,
                    "status": result.status,
                    "error_message": result.error_message,
                    "test_data": result.test_data,
                    "quality_score": result.quality_score,
                    "response_time_ms": result.response_time_ms,
                    "started_at": now,
                    "completed_at": now,
                }
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Could not persist QA result test=%s error=%s", result.test_name, exc)

    # (0) store constraints

    def check_store_constraints(self) -> TestResult:
        started = time.monotonic()
        now = datetime.now(timezone.utc)
        probe = Listing(
            external_id=f"qa-constraint-probe-{int(now.timestamp() * 1000)}",
            source=QA_SOURCE,
            url=f"https://example.com/qa-constraint-probe/{int(now.timestamp() * 1000)}",
            title="QA constraint probe",
            price=1000,
            bedrooms=1,
            city=QA_CITY,
            property_type="apartment",
        )
        try:
            row = self.repo.insert_listing(listing_to_record(probe, now))
            if not row.get("id"):
                raise RuntimeError("store did not return the inserted probe listing")
            self.repo.delete_listing(str(row["id"]))
        except Exception as exc:  # noqa: BLE001
            return TestResult(
                test_name="constraint_validation",
                status="failed",
                error_message=str(exc),
                response_time_ms=_elapsed_ms(started),
            )
        return TestResult(test_name="constraint_validation", status="passed", response_time_ms=_elapsed_ms(started))

    # (A) synthetic user and alert

    def test_user_registration(self, run: TestRun) -> TestResult:
        started = time.monotonic()
        stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        email = f"qa-agent-user-{stamp}@test.com"
        try:
            user_id = self.repo.create_auth_user(email, f"TestPass123!{stamp}")
            run.test_user_id = user_id
            self.repo.record_test_user({"user_id": user_id, "email": email, "test_run_id": run.id})
            alert_row = self.repo.insert_alert(
                {
                    "user_id": user_id,
                    "name": f"QA Test Alert {stamp}",
                    "cities": [QA_CITY],
                    "max_price": 9999,
                    "min_bedrooms": 1,
                    "is_active": True,
                }
            )
            if not alert_row.get("id"):
                raise RuntimeError("alert creation returned no row")
        except Exception as exc:  # noqa: BLE001
            return TestResult(
                test_name="user_registration",
                status="failed",
                error_message=str(exc),
                response_time_ms=_elapsed_ms(started),
            )
        return TestResult(
            test_name="user_registration",
            status="passed",
            test_data={"user_id": user_id, "email": email, "alert_id": str(alert_row["id"]), "alert": alert_row},
            response_time_ms=_elapsed_ms(started),
        )

    # (B) matching listing produces a notification record

    def test_notification(self, run: TestRun, user_data: dict[str, Any]) -> TestResult:
        started = time.monotonic()
        now = datetime.now(timezone.utc)
        stamp = int(now.timestamp() * 1000)
        listing = Listing(
            external_id=f"qa-test-property-{stamp}",
            source=QA_SOURCE,
            url=f"https://example.com/property/{stamp}",
            title=f"QA Test Property {stamp}",
            description="This is a test property for QA validation",
            price=1500,
            bedrooms=2,
            city=QA_CITY,
            address=f"Test Street 123, {QA_CITY}",
            property_type="apartment",
            furnishing="furnished",
        )
        test_data: dict[str, Any] = {}
        try:
            row = self.repo.insert_listing(listing_to_record(listing, now))
            listing.id = str(row["id"])
            run.test_property_id = listing.id
            test_data["property_id"] = listing.id

            alert = alert_from_row(user_data["alert"])
            if matches_alert(listing, alert):
                # Synthetic users are never delivered to; only the claim is exercised.
                self.dispatcher.record_match(alert, listing, now)
            self.sleep(self.notification_wait_seconds)

            notifications = self.repo.find_notifications(alert.user_id, listing.id)
            if not notifications:
                raise RuntimeError("No notification was triggered for matching property")
            message = notifications[0].get("message")
        except Exception as exc:  # noqa: BLE001
            return TestResult(
                test_name="notification_test",
                status="failed",
                error_message=str(exc),
                test_data=test_data,
                response_time_ms=_elapsed_ms(started),
            )

        score, quality_issues = score_notification_message(message)
        test_data.update({"notification_id": notifications[0].get("id"), "quality_issues": quality_issues})
        passed = score >= QA_PASS_SCORE
        return TestResult(
            test_name="notification_test",
            status="passed" if passed else "failed",
            error_message=None if passed else "; ".join(quality_issues),
            test_data=test_data,
            quality_score=score,
            response_time_ms=_elapsed_ms(started),
        )

    # (C) scraper health

    def check_scraper_health(self) -> list[TestResult]:
        results: list[TestResult] = []
        for config in self.sources:
            started = time.monotonic()
            now = datetime.now(timezone.utc)
            try:
                row = self.repo.get_scraper_health(config.name)
                state = health_from_row(row) if row else config.initial_health()
                score, health_issues = score_source_health(state, now)
                self.repo.save_scraper_health(health_to_record(record_qa_check(state, score, now), now))
            except Exception as exc:  # noqa: BLE001
                results.append(
                    TestResult(
                        test_name="scraper_health",
                        status="failed",
                        test_target=config.name,
                        error_message=f"Health check crashed: {exc}",
                        response_time_ms=_elapsed_ms(started),
                    )
                )
                continue
            passed = score >= QA_PASS_SCORE
            results.append(
                TestResult(
                    test_name="scraper_health",
                    status="passed" if passed else "failed",
                    test_target=config.name,
                    error_message=None if passed else "; ".join(health_issues),
                    test_data={"issues": health_issues, "repair_status": state.repair_status},
                    quality_score=score,
                    response_time_ms=_elapsed_ms(started),
                )
            )
        return results

    # (D) cleanup

    def cleanup(self, run: TestRun) -> TestResult:
        started = time.monotonic()
        operations = 0
        errors: list[str] = []
        if run.test_property_id:
            try:
                self.repo.delete_listing(run.test_property_id)
                operations += 1
            except Exception as exc:  # noqa: BLE001
                errors.append(f"Property cleanup failed: {exc}")
        if run.test_user_id:
            try:
                self.repo.delete_notifications_for_user(run.test_user_id)
                self.repo.delete_alerts_for_user(run.test_user_id)
                self.repo.delete_auth_user(run.test_user_id)
                self.repo.mark_test_user_cleaned(run.test_user_id, datetime.now(timezone.utc))
                operations += 1
            except Exception as exc:  # noqa: BLE001
                errors.append(f"User cleanup failed: {exc}")
        try:
            self.repo.run_qa_retention_cleanup(self.retention_days)
            operations += 1
        except Exception as exc:  # noqa: BLE001
            errors.append(f"Retention cleanup failed: {exc}")
        return TestResult(
            test_name="cleanup",
            status="failed" if errors else "passed",
            error_message="; ".join(errors) or None,
            test_data={"operations_completed": operations, "cleanup_errors": errors},
            response_time_ms=_elapsed_ms(started),
        )

    # remediation

    def _remediate(self, run: TestRun, result: TestResult) -> None:
        try:
            if result.test_name == "scraper_health" and result.test_target:
                self._remediate_scraper(run, result)
            elif result.test_name == "notification_test":
                self._raise_alert(
                    AdminAlert(
                        alert_type="notification_system_failed",
                        severity="warning",
                        title="Notification System Quality Issue",
                        message="The notification system failed quality checks.",
                        details={
                            "error": result.error_message,
                            "quality_score": result.quality_score,
                            "quality_issues": result.test_data.get("quality_issues"),
                        },
                        test_run_id=run.id,
                    )
                )
            elif result.test_name == "constraint_validation":
                self._raise_alert(
                    AdminAlert(
                        alert_type="constraint_validation_failed",
                        severity="critical",
                        title="Listing store rejected well-formed data",
                        message="The constraint probe could not insert and delete a valid listing.",
                        details={"error": result.error_message},
                        test_run_id=run.id,
                    )
                )
            elif result.test_name == "user_registration":
                self._raise_alert(
                    AdminAlert(
                        alert_type="user_registration_failed",
                        severity="warning",
                        title="Synthetic user registration failed",
                        message="The QA agent could not create a test user and alert.",
                        details={"error": result.error_message},
                        test_run_id=run.id,
                    )
                )
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Remediation failed test=%s: %s", result.test_name, exc)
            self._raise_alert(
                AdminAlert(
                    alert_type="critical_failure",
                    severity="emergency",
                    title="QA Auto-Repair System Failure",
                    message="The QA auto-repair system itself has failed.",
                    details={"test_name": result.test_name, "test_target": result.test_target, "repair_error": str(exc)},
                    test_run_id=run.id,
                )
            )

    def _remediate_scraper(self, run: TestRun, result: TestResult) -> None:
        source = str(result.test_target)
        config = next((item for item in self.sources if item.name == source), None)
        if config is None:
            LOGGER.warning("No source config for failed health check source=%s", source)
            return
        now = datetime.now(timezone.utc)
        row = self.repo.get_scraper_health(source)
        state = health_from_row(row) if row else config.initial_health()

        if self.repair_controller is not None and state.repair_attempt_count < self.max_repair_attempts:
            verify = None
            if self.runner is not None:
                runner = self.runner
                verify = lambda candidate: runner.collect(config, candidate).validated > 0  # noqa: E731
            outcome = self.repair_controller.repair(config, state, verify=verify, now=now)
            self.repo.save_scraper_health(health_to_record(outcome.state, now))
            return

        escalated = escalate_repair_exhaustion(
            self.repo,
            state,
            now,
            throttle_hours=ESCALATION_THROTTLE_HOURS,
            dedup_hours=self.dedup_hours,
            on_created=self.on_admin_alert,
            test_run_id=run.id,
            details={"health_issues": result.test_data.get("issues")},
        )
        if escalated is not state:
            self.repo.save_scraper_health(health_to_record(escalated, now))

    def _raise_alert(self, alert: AdminAlert) -> dict[str, Any] | None:
        return create_admin_alert(
            self.repo,
            alert,
            now=datetime.now(timezone.utc),
            dedup_hours=self.dedup_hours,
            on_created=self.on_admin_alert,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
