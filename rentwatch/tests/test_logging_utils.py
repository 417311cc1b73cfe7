import json
import logging
from datetime import datetime, timezone

from rentwatch.core.logging_utils import log_repair_step, log_test_result
from rentwatch.core.models import RepairStep, TestResult

LOGGER = logging.getLogger("rentwatch.tests.events")


def _payload(record: logging.LogRecord, event: str) -> dict:
    message = record.getMessage()
    assert message.startswith(event + " ")
    return json.loads(message[len(event) + 1 :])


def test_failed_repair_step_logs_a_warning_with_details(caplog):
    step = RepairStep(
        name="url_rotation",
        success=False,
        message="no alternative url works",
        timestamp=datetime(2026, 3, 1, tzinfo=timezone.utc),
        details={"tried": 2},
    )
    with caplog.at_level(logging.INFO, logger=LOGGER.name):
        log_repair_step(LOGGER, "kamernet", step)

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert _payload(record, "repair_step") == {
        "source": "kamernet",
        "step": "url_rotation",
        "success": False,
        "message": "no alternative url works",
        "details": {"tried": 2},
    }


def test_passed_test_result_omits_empty_fields(caplog):
    result = TestResult(test_name="user_registration", status="passed")
    with caplog.at_level(logging.INFO, logger=LOGGER.name):
        log_test_result(LOGGER, "run-7", result)

    record = caplog.records[-1]
    assert record.levelno == logging.INFO
    assert _payload(record, "qa_test_result") == {
        "test_run_id": "run-7",
        "test_name": "user_registration",
        "status": "passed",
    }
