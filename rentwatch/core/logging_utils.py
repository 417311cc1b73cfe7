from __future__ import annotations

import json
import logging
from typing import Any

from rentwatch.core.models import RepairStep, TestResult

RESULT_LEVELS = {"passed": logging.INFO, "skipped": logging.INFO, "failed": logging.WARNING}


def _emit(logger: logging.Logger, level: int, event: str, fields: dict[str, Any]) -> None:
    present = {key: value for key, value in fields.items() if value not in (None, {}, [])}
    logger.log(level, "%s %s", event, json.dumps(present, default=str, sort_keys=True, ensure_ascii=False))


def log_repair_step(logger: logging.Logger, source: str, step: RepairStep) -> None:
    _emit(
        logger,
        logging.INFO if step.success else logging.WARNING,
        "repair_step",
        {
            "source": source,
            "step": step.name,
            "success": step.success,
            "message": step.message,
            "details": step.details,
        },
    )


def log_test_result(logger: logging.Logger, test_run_id: str, result: TestResult) -> None:
    """One line per QA result; the payload mirrors the stored qa_test_results row."""
    _emit(
        logger,
        RESULT_LEVELS.get(result.status, logging.INFO),
        "qa_test_result",
        {
            "test_run_id": test_run_id,
            "test_name": result.test_name,
            "test_target": result.test_target,
            "status": result.status,
            "quality_score": result.quality_score,
            "error_message": result.error_message,
        },
    )
