from datetime import datetime, timezone

from rentwatch.core.models import ScraperHealthState, SelectorSet
from rentwatch.core.normalize import (
    breaker_from_row,
    canonical_url,
    health_from_row,
    health_to_record,
    parse_price,
    recipient_from_profile,
)


def test_canonical_url_drops_query_fragment_and_trailing_slash():
    url = "HTTPS://Www.Pararius.com/apartment-for-rent/groningen/abc123/vismarkt/?utm_source=x#photos"
    assert canonical_url(url) == "https://www.pararius.com/apartment-for-rent/groningen/abc123/vismarkt"


def test_parse_price_handles_dutch_and_english_grouping():
    assert parse_price("€ 1.250") == 1250
    assert parse_price("€ 1.250,00 per maand") == 1250
    assert parse_price("€1,250") == 1250
    assert parse_price("1,250.50") == 1250
    assert parse_price("€ 850,-") == 850
    assert parse_price("op aanvraag") is None


def test_health_record_round_trip_keeps_zero_hours_column_name():
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    state = ScraperHealthState(
        source="kamernet",
        current_url="https://kamernet.nl/huren/kamer-groningen",
        backup_urls=["https://kamernet.nl/en/for-rent/rooms-groningen"],
        current_selectors=SelectorSet(name="tiles", link_patterns=[r'href="(/huren/[^"]+)"']),
        consecutive_zero_hours=2,
        repair_status="needs_repair",
        last_successful_run=now,
    )

    record = health_to_record(state, now)

    assert record["consecutive_hours_zero_properties"] == 2
    assert record["updated_at"] == now.isoformat()
    restored = health_from_row(record)
    assert restored.consecutive_zero_hours == 2
    assert restored.current_selectors.name == "tiles"
    assert restored.last_successful_run == now


def test_breaker_from_missing_row_uses_defaults():
    state = breaker_from_row(None, max_failures=4, pause_minutes=30)
    assert state.consecutive_failures == 0
    assert state.max_failures == 4
    assert state.pause_duration_minutes == 30


def test_recipient_from_profile_treats_blank_email_as_missing():
    recipient = recipient_from_profile("u1", {"email": "  ", "notifications_paused": True})
    assert recipient.email is None
    assert recipient.notifications_paused is True
