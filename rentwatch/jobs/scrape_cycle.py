from __future__ import annotations

import argparse
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from rentwatch.collectors.base import SourceConfig, SourceFetchError, build_client
from rentwatch.collectors.runner import SourceRunner, StoreFn
from rentwatch.collectors.sources import select_sources
from rentwatch.core.alerts import escalate_repair_exhaustion
from rentwatch.core.config import Settings, load_settings
from rentwatch.core.dedupe import store_listing
from rentwatch.core.health import apply_run_outcome, needs_repair
from rentwatch.core.models import ScraperHealthState, SourceRunOutcome
from rentwatch.core.normalize import health_from_row, health_to_record
from rentwatch.core.repair import AutoRepairController, repair_log
from rentwatch.core.supabase_repo import SupabaseRepo
from rentwatch.jobs.admin_alerts import immediate_alert_dispatch


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def run_scrape_cycle(
    sources: list[str] | None = None,
    repo: Any = None,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, dict[str, Any]]:
    settings = settings or load_settings()
    repo = repo or SupabaseRepo(settings.supabase_url, settings.supabase_key)
    own_client = client is None
    client = client or build_client(settings.http_timeout_seconds)
    runner = SourceRunner(
        client,
        max_listings=settings.max_listings_per_source,
        delay_seconds=settings.listing_delay_seconds,
        sleep=sleep,
    )
    controller = AutoRepairController(client, max_attempts=settings.repair_max_attempts)
    on_alert = immediate_alert_dispatch(repo, settings)
    configs = select_sources(sources)
    if sources and len(configs) < len(sources):
        LOGGER.warning("Unknown sources ignored: %s", sorted(set(sources) - {config.name for config in configs}))

    def _process(config: SourceConfig) -> dict[str, Any]:
        return run_source(config, repo, runner, controller, settings, on_alert=on_alert, sleep=sleep)

    try:
        if settings.scrape_workers > 1 and len(configs) > 1:
            with ThreadPoolExecutor(max_workers=settings.scrape_workers) as pool:
                summaries = list(pool.map(_process, configs))
        else:
            summaries = [_process(config) for config in configs]
    finally:
        if own_client:
            client.close()

    results = {summary["source"]: summary for summary in summaries}
    LOGGER.info(
        "Scrape cycle completed sources=%s new=%s failed=%s",
        len(results),
        sum(summary["new"] for summary in summaries),
        sum(1 for summary in summaries if summary["error"]),
    )
    return results


def run_source(
    config: SourceConfig,
    repo: Any,
    runner: SourceRunner,
    controller: AutoRepairController,
    settings: Settings,
    on_alert: Callable[[dict[str, Any]], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """One source, start to finish. Never raises; every failure ends up in the health record."""
    now = datetime.now(timezone.utc)
    state = _load_health(repo, config)
    repair_summary: dict[str, Any] | None = None
    try:
        if needs_repair(state, settings.repair_max_attempts):
            outcome = controller.repair(
                config,
                state,
                verify=lambda candidate: runner.collect(config, candidate).validated > 0,
                now=now,
            )
            state = outcome.state
            repair_summary = {
                "success": outcome.success,
                "attempts": state.repair_attempt_count,
                "log": repair_log(outcome),
            }
            if not outcome.success and state.repair_attempt_count >= settings.repair_max_attempts:
                state = escalate_repair_exhaustion(
                    repo,
                    state,
                    now,
                    dedup_hours=settings.admin_alert_dedup_hours,
                    on_created=on_alert,
                )
        run = _collect_with_retry(
            runner,
            config,
            state,
            store=lambda listing: store_listing(repo, listing, now),
            sleep=sleep,
        )
    except SourceFetchError as exc:
        LOGGER.warning("Source fetch failed source=%s error=%s", config.name, exc)
        run = SourceRunOutcome(source=config.name, error=str(exc))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Source run crashed source=%s: %s", config.name, exc)
        run = SourceRunOutcome(source=config.name, error=str(exc))

    state = apply_run_outcome(state, run, now, settings.zero_hours_threshold)
    try:
        repo.save_scraper_health(health_to_record(state, now))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Could not save health source=%s: %s", config.name, exc)

    LOGGER.info(
        "Source=%s found=%s validated=%s new=%s duplicates=%s status=%s",
        config.name,
        run.found,
        run.validated,
        run.new,
        run.duplicates,
        state.repair_status,
    )
    return {
        "source": config.name,
        "found": run.found,
        "validated": run.validated,
        "new": run.new,
        "duplicates": run.duplicates,
        "skipped": run.skipped,
        "used_url": run.used_url,
        "error": run.error,
        "repair_status": state.repair_status,
        "repair": repair_summary,
    }


def _load_health(repo: Any, config: SourceConfig) -> ScraperHealthState:
    try:
        row = repo.get_scraper_health(config.name)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("Health lookup failed source=%s error=%s; using registry defaults", config.name, exc)
        return config.initial_health()
    return health_from_row(row) if row else config.initial_health()


def _collect_with_retry(
    runner: SourceRunner,
    config: SourceConfig,
    state: ScraperHealthState,
    store: StoreFn,
    sleep: Callable[[float], None] = time.sleep,
    max_attempts: int = 2,
) -> SourceRunOutcome:
    for attempt in range(1, max_attempts + 1):
        try:
            return runner.collect(config, state, store=store)
        except SourceFetchError as exc:
            if attempt >= max_attempts:
                raise
            wait_seconds = attempt * 2
            LOGGER.warning(
                "Source retry source=%s attempt=%s/%s wait=%ss error=%s",
                config.name,
                attempt,
                max_attempts,
                wait_seconds,
                exc,
            )
            sleep(wait_seconds)
    return SourceRunOutcome(source=config.name)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Scrape rental sources and store new listings.")
    parser.add_argument("--source", action="append", dest="sources", help="Restrict to a source (repeatable).")
    args = parser.parse_args()
    print(json.dumps(run_scrape_cycle(sources=args.sources), indent=2, default=str))
