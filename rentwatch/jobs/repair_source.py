from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from rentwatch.collectors.base import SourceConfig, build_client
from rentwatch.collectors.runner import SourceRunner
from rentwatch.collectors.sources import sources_by_name
from rentwatch.core.config import Settings, load_settings
from rentwatch.core.health import health_verdict
from rentwatch.core.models import ScraperHealthState
from rentwatch.core.normalize import health_from_row, health_to_record
from rentwatch.core.repair import STRATEGIES, AutoRepairController, repair_log
from rentwatch.core.supabase_repo import SupabaseRepo


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)

ACTIONS = ("repair", "health_check")


def repair_source(
    source: str,
    strategy: str | None = None,
    repo: Any = None,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
    action: str = "repair",
) -> dict[str, Any]:
    """`health_check` only reports on the stored state; `repair` runs the strategies and saves."""
    if action not in ACTIONS:
        raise ValueError(f"Unknown action: {action}")
    settings = settings or load_settings()
    config = sources_by_name().get(source)
    if config is None:
        raise ValueError(f"Unknown source: {source}")
    repo = repo or SupabaseRepo(settings.supabase_url, settings.supabase_key)

    row = repo.get_scraper_health(source)
    state = health_from_row(row) if row else config.initial_health()
    if action == "health_check":
        return health_verdict(state)

    if client is None:
        with build_client(settings.http_timeout_seconds) as owned:
            return _repair(config, state, strategy, repo, settings, owned)
    return _repair(config, state, strategy, repo, settings, client)


def _repair(
    config: SourceConfig,
    state: ScraperHealthState,
    strategy: str | None,
    repo: Any,
    settings: Settings,
    client: httpx.Client,
) -> dict[str, Any]:
    runner = SourceRunner(
        client,
        max_listings=settings.max_listings_per_source,
        delay_seconds=settings.listing_delay_seconds,
    )
    controller = AutoRepairController(client, max_attempts=settings.repair_max_attempts)
    now = datetime.now(timezone.utc)
    outcome = controller.repair(
        config,
        state,
        strategy=strategy,
        verify=lambda candidate: runner.collect(config, candidate).validated > 0,
        now=now,
    )
    repo.save_scraper_health(health_to_record(outcome.state, now))
    return {
        "source": config.name,
        "success": outcome.success,
        "attempts": outcome.state.repair_attempt_count,
        "repair_status": outcome.state.repair_status,
        "log": repair_log(outcome),
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the auto-repair strategies for one source.")
    parser.add_argument("source", help="Source name, e.g. pararius.")
    parser.add_argument("--strategy", choices=[*STRATEGIES, "all"], default="all")
    parser.add_argument("--action", choices=ACTIONS, default="repair")
    args = parser.parse_args()
    result = repair_source(args.source, strategy=args.strategy, action=args.action)
    print(json.dumps(result, indent=2, default=str))
