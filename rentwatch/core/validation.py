from __future__ import annotations

from rentwatch.core.models import Listing

MIN_PRICE_EUR = 200
MAX_PRICE_EUR = 5000
MIN_BEDROOMS = 1
MAX_BEDROOMS = 6
MIN_BATHROOMS = 1
MAX_BATHROOMS = 4
MIN_TITLE_LENGTH = 3

# Markers some portals render in place of a field they failed to populate.
MISSING_FIELD_SENTINELS = ("IS_MISSING", "undefined", "[object Object]")
# Titles that belong to index/navigation pages rather than a single listing.
CLEANUP_TITLE_MARKERS = ("IS_MISSING", "overzicht", "filter")


def title_rejection(title: str | None) -> str | None:
    cleaned = (title or "").strip()
    if not cleaned:
        return "empty_title"
    if len(cleaned) < MIN_TITLE_LENGTH:
        return "title_too_short"
    lowered = cleaned.lower()
    if any(sentinel.lower() in lowered for sentinel in MISSING_FIELD_SENTINELS):
        return "title_missing_sentinel"
    return None


def price_rejection(price: int | None) -> str | None:
    if price is None:
        return "missing_price"
    if price < MIN_PRICE_EUR or price > MAX_PRICE_EUR:
        return "implausible_price"
    return None


def bedrooms_rejection(bedrooms: int | None) -> str | None:
    if bedrooms is not None and not MIN_BEDROOMS <= bedrooms <= MAX_BEDROOMS:
        return "implausible_bedrooms"
    return None


def bathrooms_rejection(bathrooms: int | None) -> str | None:
    if bathrooms is not None and not MIN_BATHROOMS <= bathrooms <= MAX_BATHROOMS:
        return "implausible_bathrooms"
    return None


def rejection_reason(listing: Listing) -> str | None:
    """
    First plausibility rule the listing violates, or None when it is storable.
    Surface area is optional and never validated.
    """
    return (
        title_rejection(listing.title)
        or price_rejection(listing.price)
        or bedrooms_rejection(listing.bedrooms)
        or bathrooms_rejection(listing.bathrooms)
    )


def is_plausible(listing: Listing) -> bool:
    return rejection_reason(listing) is None


def looks_like_bad_title(title: str | None) -> bool:
    lowered = (title or "").lower()
    return any(marker.lower() in lowered for marker in CLEANUP_TITLE_MARKERS)
