from __future__ import annotations

import argparse
import json
import logging
from typing import Any

import httpx

from rentwatch.collectors.base import build_client
from rentwatch.collectors.runner import SourceRunner
from rentwatch.collectors.sources import select_sources
from rentwatch.core.config import Settings, load_settings
from rentwatch.core.notify import NotificationDispatcher
from rentwatch.core.qa_agent import QAAgent
from rentwatch.core.repair import AutoRepairController
from rentwatch.core.supabase_repo import SupabaseRepo
from rentwatch.jobs.admin_alerts import immediate_alert_dispatch


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def run_qa_cycle(repo: Any = None, settings: Settings | None = None, client: httpx.Client | None = None) -> dict[str, Any]:
    settings = settings or load_settings()
    repo = repo or SupabaseRepo(settings.supabase_url, settings.supabase_key)
    own_client = client is None
    client = client or build_client(settings.http_timeout_seconds)
    agent = QAAgent(
        repo,
        # No senders: the QA agent only exercises matching and the claim.
        NotificationDispatcher(repo, email_sender=None, client=client),
        sources=select_sources(),
        repair_controller=AutoRepairController(client, max_attempts=settings.repair_max_attempts),
        runner=SourceRunner(
            client,
            max_listings=settings.max_listings_per_source,
            delay_seconds=settings.listing_delay_seconds,
        ),
        on_admin_alert=immediate_alert_dispatch(repo, settings),
        notification_wait_seconds=settings.qa_notification_wait_seconds,
        max_repair_attempts=settings.repair_max_attempts,
        max_failures=settings.qa_max_failures,
        pause_minutes=settings.qa_pause_minutes,
        dedup_hours=settings.admin_alert_dedup_hours,
        retention_days=settings.qa_retention_days,
    )
    try:
        return agent.run()
    finally:
        if own_client:
            client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one continuous QA cycle.")
    parser.parse_args()
    print(json.dumps(run_qa_cycle(), indent=2, default=str))
