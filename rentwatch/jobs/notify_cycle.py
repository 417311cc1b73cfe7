from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from rentwatch.collectors.base import build_client
from rentwatch.core.config import Settings, load_settings
from rentwatch.core.notify import NotificationDispatcher, build_email_sender, build_sms_sender
from rentwatch.core.supabase_repo import SupabaseRepo


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def send_notifications(
    window_hours: int | None = None,
    sources: list[str] | None = None,
    repo: Any = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    settings = settings or load_settings()
    repo = repo or SupabaseRepo(settings.supabase_url, settings.supabase_key)
    email_sender = build_email_sender(settings)
    if email_sender is None:
        LOGGER.warning("RESEND_API_KEY missing; no notifications will be claimed or sent.")
    with build_client(settings.http_timeout_seconds) as client:
        dispatcher = NotificationDispatcher(
            repo,
            email_sender,
            client,
            sms_sender=build_sms_sender(settings),
            lookback_hours=settings.notify_lookback_hours,
        )
        return dispatcher.run(window_hours=window_hours, sources=sources)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Match recent listings against alerts and notify users.")
    parser.add_argument("--window-hours", type=int, default=None, help="Look-back window for new listings.")
    parser.add_argument("--source", action="append", dest="sources", help="Restrict to a source (repeatable).")
    args = parser.parse_args()
    print(json.dumps(send_notifications(window_hours=args.window_hours, sources=args.sources), indent=2))
