from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_FROM_EMAIL = "Property Alerts <onboarding@resend.dev>"


@dataclass(slots=True)
class Settings:
    supabase_url: str | None = None
    supabase_key: str | None = None
    resend_api_key: str | None = None
    resend_from_email: str = DEFAULT_FROM_EMAIL
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    admin_email: str | None = None
    http_timeout_seconds: float = 20.0
    max_listings_per_source: int = 15
    listing_delay_seconds: float = 0.1
    scrape_workers: int = 1
    notify_lookback_hours: int = 24
    zero_hours_threshold: int = 2
    repair_max_attempts: int = 3
    qa_max_failures: int = 3
    qa_pause_minutes: int = 60
    qa_notification_wait_seconds: float = 2.0
    admin_alert_dedup_hours: int = 24
    qa_retention_days: int = 7


def load_settings() -> Settings:
    return Settings(
        supabase_url=os.environ.get("SUPABASE_URL"),
        supabase_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY"),
        resend_api_key=os.environ.get("RESEND_API_KEY"),
        resend_from_email=os.environ.get("RESEND_FROM_EMAIL") or DEFAULT_FROM_EMAIL,
        twilio_account_sid=os.environ.get("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=os.environ.get("TWILIO_AUTH_TOKEN"),
        twilio_from_number=os.environ.get("TWILIO_FROM_NUMBER"),
        admin_email=os.environ.get("ADMIN_EMAIL"),
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 20.0),
        max_listings_per_source=_env_int("SCRAPE_MAX_LISTINGS_PER_SOURCE", 15),
        listing_delay_seconds=_env_float("SCRAPE_LISTING_DELAY_SECONDS", 0.1),
        scrape_workers=max(1, _env_int("SCRAPE_WORKERS", 1)),
        notify_lookback_hours=_env_int("NOTIFY_LOOKBACK_HOURS", 24),
        zero_hours_threshold=_env_int("HEALTH_ZERO_HOURS_THRESHOLD", 2),
        repair_max_attempts=_env_int("REPAIR_MAX_ATTEMPTS", 3),
        qa_max_failures=_env_int("QA_MAX_FAILURES", 3),
        qa_pause_minutes=_env_int("QA_PAUSE_MINUTES", 60),
        qa_notification_wait_seconds=_env_float("QA_NOTIFICATION_WAIT_SECONDS", 2.0),
        admin_alert_dedup_hours=_env_int("ADMIN_ALERT_DEDUP_HOURS", 24),
        qa_retention_days=_env_int("QA_RETENTION_DAYS", 7),
    )


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except (TypeError, ValueError):
        return default
