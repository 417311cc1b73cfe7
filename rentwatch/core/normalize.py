from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse, urlunparse

from rentwatch.core.models import (
    Alert,
    CircuitBreakerState,
    Listing,
    Recipient,
    ScraperHealthState,
    SelectorSet,
)


def canonical_url(url: str) -> str:
    """
    Stable listing URL: lower-cased scheme/host, no query, fragment or trailing slash.
    The canonical URL doubles as the listing's external identifier.
    """
    parsed = urlparse(url.strip())
    path = re.sub(r"/{2,}", "/", parsed.path).rstrip("/")
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, "", "", ""))


def parse_price(price_text: str) -> int | None:
    normalized = re.sub(r"[^0-9,\.]", "", price_text or "").strip(",.")
    if not normalized:
        return None
    if re.fullmatch(r"\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?", normalized):
        # English grouping: 1,250 or 1,250.00
        normalized = normalized.replace(",", "")
    else:
        # Dutch grouping: 1.250 or 1.250,00
        normalized = normalized.replace(".", "").replace(",", ".")
    value = safe_float(normalized)
    return int(value) if value is not None else None


def safe_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def safe_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_dt(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def listing_to_record(listing: Listing, now: datetime) -> dict[str, Any]:
    surface_area = (
        listing.surface_area if listing.surface_area is not None and float(listing.surface_area) > 0 else None
    )
    return {
        "external_id": listing.external_id,
        "source": listing.source,
        "url": listing.url,
        "title": listing.title,
        "description": listing.description,
        "price": listing.price,
        "currency": listing.currency,
        "bedrooms": listing.bedrooms,
        "bathrooms": listing.bathrooms,
        "surface_area": surface_area,
        "address": listing.address,
        "city": listing.city,
        "postal_code": listing.postal_code,
        "property_type": listing.property_type,
        "furnishing": listing.furnishing,
        "image_urls": listing.image_urls,
        "features": listing.features,
        "first_seen_at": now.isoformat(),
        "last_updated_at": now.isoformat(),
        "is_active": True,
    }


def listing_from_row(row: dict[str, Any]) -> Listing:
    return Listing(
        id=str(row["id"]) if row.get("id") is not None else None,
        external_id=str(row.get("external_id") or ""),
        source=str(row.get("source") or ""),
        url=str(row.get("url") or ""),
        title=str(row.get("title") or ""),
        description=row.get("description"),
        price=safe_int(row.get("price")),
        currency=row.get("currency") or "EUR",
        bedrooms=safe_int(row.get("bedrooms")),
        bathrooms=safe_int(row.get("bathrooms")),
        surface_area=safe_float(row.get("surface_area")),
        address=row.get("address"),
        city=row.get("city"),
        postal_code=row.get("postal_code"),
        property_type=row.get("property_type"),
        furnishing=row.get("furnishing"),
        image_urls=list(row.get("image_urls") or []),
        features=list(row.get("features") or []),
        first_seen_at=parse_dt(row.get("first_seen_at")),
        last_updated_at=parse_dt(row.get("last_updated_at")),
        is_active=row.get("is_active") is not False,
    )


def alert_from_row(row: dict[str, Any]) -> Alert:
    return Alert(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        name=str(row.get("name") or ""),
        min_price=safe_int(row.get("min_price")),
        max_price=safe_int(row.get("max_price")),
        min_bedrooms=safe_int(row.get("min_bedrooms")),
        max_bedrooms=safe_int(row.get("max_bedrooms")),
        min_surface_area=safe_float(row.get("min_surface_area")),
        cities=list(row.get("cities") or []),
        property_types=list(row.get("property_types") or []),
        furnishing=list(row.get("furnishing") or []),
        sources=list(row.get("sources") or []),
        postal_codes=list(row.get("postal_codes") or []),
        keywords=list(row.get("keywords") or []),
        is_active=row.get("is_active") is not False,
    )


def recipient_from_profile(user_id: str, profile: dict[str, Any] | None) -> Recipient:
    profile = profile or {}
    return Recipient(
        user_id=user_id,
        email=(profile.get("email") or "").strip() or None,
        phone=(profile.get("phone") or "").strip() or None,
        notifications_paused=bool(profile.get("notifications_paused")),
        sms_enabled=bool(profile.get("sms_enabled")),
    )


def selector_set_to_dict(selectors: SelectorSet | None) -> dict[str, Any] | None:
    if selectors is None:
        return None
    return {
        "name": selectors.name,
        "link_patterns": list(selectors.link_patterns),
        "price_patterns": list(selectors.price_patterns),
    }


def selector_set_from_dict(data: dict[str, Any] | None) -> SelectorSet | None:
    if not isinstance(data, dict) or not data.get("link_patterns"):
        return None
    return SelectorSet(
        name=str(data.get("name") or "custom"),
        link_patterns=[str(pattern) for pattern in data.get("link_patterns") or []],
        price_patterns=[str(pattern) for pattern in data.get("price_patterns") or []],
    )


def health_from_row(row: dict[str, Any]) -> ScraperHealthState:
    backups = [selector_set_from_dict(item) for item in row.get("backup_selectors") or []]
    return ScraperHealthState(
        source=str(row["source"]),
        current_url=str(row.get("current_url") or ""),
        backup_urls=list(row.get("backup_urls") or []),
        current_selectors=selector_set_from_dict(row.get("current_selectors")),
        backup_selectors=[item for item in backups if item is not None],
        header_profile=row.get("header_profile") or "desktop",
        consecutive_failures=safe_int(row.get("consecutive_failures")) or 0,
        consecutive_zero_hours=safe_int(row.get("consecutive_hours_zero_properties")) or 0,
        is_in_repair_mode=bool(row.get("is_in_repair_mode")),
        repair_attempt_count=safe_int(row.get("repair_attempt_count")) or 0,
        repair_status=row.get("repair_status") or "healthy",
        last_successful_run=parse_dt(row.get("last_successful_run")),
        last_failure_run=parse_dt(row.get("last_failure_run")),
        last_qa_check=parse_dt(row.get("last_qa_check")),
        last_repair_attempt=parse_dt(row.get("last_repair_attempt")),
        last_admin_alert=parse_dt(row.get("last_admin_alert")),
        qa_failure_count=safe_int(row.get("qa_failure_count")) or 0,
    )


def health_to_record(state: ScraperHealthState, now: datetime) -> dict[str, Any]:
    return {
        "source": state.source,
        "current_url": state.current_url,
        "backup_urls": list(state.backup_urls),
        "current_selectors": selector_set_to_dict(state.current_selectors),
        "backup_selectors": [selector_set_to_dict(item) for item in state.backup_selectors],
        "header_profile": state.header_profile,
        "consecutive_failures": state.consecutive_failures,
        "consecutive_hours_zero_properties": state.consecutive_zero_hours,
        "is_in_repair_mode": state.is_in_repair_mode,
        "repair_attempt_count": state.repair_attempt_count,
        "repair_status": state.repair_status,
        "last_successful_run": _iso(state.last_successful_run),
        "last_failure_run": _iso(state.last_failure_run),
        "last_qa_check": _iso(state.last_qa_check),
        "last_repair_attempt": _iso(state.last_repair_attempt),
        "last_admin_alert": _iso(state.last_admin_alert),
        "qa_failure_count": state.qa_failure_count,
        "updated_at": now.isoformat(),
    }


def breaker_from_row(row: dict[str, Any] | None, max_failures: int = 3, pause_minutes: int = 60) -> CircuitBreakerState:
    if not row:
        return CircuitBreakerState(max_failures=max_failures, pause_duration_minutes=pause_minutes)
    return CircuitBreakerState(
        id=str(row["id"]) if row.get("id") is not None else None,
        consecutive_failures=safe_int(row.get("consecutive_failures")) or 0,
        last_failure_at=parse_dt(row.get("last_failure_at")),
        paused_until=parse_dt(row.get("paused_until")),
        max_failures=safe_int(row.get("max_failures")) or max_failures,
        pause_duration_minutes=safe_int(row.get("pause_duration_minutes")) or pause_minutes,
    )


def breaker_to_record(state: CircuitBreakerState) -> dict[str, Any]:
    record: dict[str, Any] = {
        "consecutive_failures": state.consecutive_failures,
        "last_failure_at": _iso(state.last_failure_at),
        "paused_until": _iso(state.paused_until),
        "max_failures": state.max_failures,
        "pause_duration_minutes": state.pause_duration_minutes,
    }
    if state.id is not None:
        record["id"] = state.id
    return record
