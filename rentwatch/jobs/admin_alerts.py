from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Callable

from rentwatch.core.alerts import dispatch_admin_alerts
from rentwatch.core.alerts import send_daily_summary as build_and_send_summary
from rentwatch.core.config import Settings, load_settings
from rentwatch.core.notify import build_email_sender
from rentwatch.core.supabase_repo import SupabaseRepo


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def immediate_alert_dispatch(repo: Any, settings: Settings) -> Callable[[dict[str, Any]], None]:
    """Hook handed to alert creators so each new alert is emailed right away."""
    email_sender = build_email_sender(settings)

    def _dispatch(row: dict[str, Any]) -> None:
        alert_id = str(row["id"]) if row.get("id") is not None else "latest"
        dispatch_admin_alerts(repo, email_sender, settings.admin_email, alert_id=alert_id)

    return _dispatch


def dispatch_admin_alert(alert_id: str | None = "latest", repo: Any = None, settings: Settings | None = None) -> dict:
    settings = settings or load_settings()
    repo = repo or SupabaseRepo(settings.supabase_url, settings.supabase_key)
    return dispatch_admin_alerts(repo, build_email_sender(settings), settings.admin_email, alert_id=alert_id)


def send_daily_summary(repo: Any = None, settings: Settings | None = None) -> dict:
    settings = settings or load_settings()
    repo = repo or SupabaseRepo(settings.supabase_url, settings.supabase_key)
    return build_and_send_summary(repo, build_email_sender(settings), settings.admin_email)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send pending admin alerts or the daily QA summary.")
    parser.add_argument("--alert-id", default="latest", help='Alert id, "latest", or "all" for every pending alert.')
    parser.add_argument("--daily-summary", action="store_true", help="Send the daily QA summary instead.")
    args = parser.parse_args()
    if args.daily_summary:
        result = send_daily_summary()
    else:
        result = dispatch_admin_alert(alert_id=None if args.alert_id == "all" else args.alert_id)
    print(json.dumps(result, indent=2, default=str))
