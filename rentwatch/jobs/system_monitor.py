from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from rentwatch.core.config import Settings, load_settings
from rentwatch.core.monitor import run_system_monitor
from rentwatch.core.supabase_repo import SupabaseRepo
from rentwatch.jobs.admin_alerts import immediate_alert_dispatch


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def monitor_system(repo: Any = None, settings: Settings | None = None) -> dict[str, Any]:
    settings = settings or load_settings()
    repo = repo or SupabaseRepo(settings.supabase_url, settings.supabase_key)
    return run_system_monitor(
        repo,
        dedup_hours=settings.admin_alert_dedup_hours,
        on_alert=immediate_alert_dispatch(repo, settings),
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Score overall system health and alert on issues.")
    parser.parse_args()
    print(json.dumps(monitor_system(), indent=2, default=str))
