from __future__ import annotations

from rentwatch.core.models import Alert, Listing


def matches_alert(listing: Listing, alert: Alert) -> bool:
    """
    Conjunctive filter. Unset alert bounds impose nothing, and a bound only rejects
    when the listing carries a comparable value that violates it.
    """
    if not _within_bounds(listing.price, alert.min_price, alert.max_price):
        return False
    if not _within_bounds(listing.bedrooms, alert.min_bedrooms, alert.max_bedrooms):
        return False
    if not _within_bounds(listing.surface_area, alert.min_surface_area, None):
        return False

    if alert.cities and listing.city:
        if not _contains_casefold(alert.cities, listing.city):
            return False
    if alert.property_types and listing.property_type:
        if not _contains_casefold(alert.property_types, listing.property_type):
            return False
    if alert.furnishing and listing.furnishing:
        if not _contains_casefold(alert.furnishing, listing.furnishing):
            return False
    if alert.sources:
        if not _contains_casefold(alert.sources, listing.source):
            return False

    if alert.postal_codes and (listing.postal_code or listing.address):
        postal = (listing.postal_code or "").lower()
        address = (listing.address or "").lower()
        if not any(code.lower() in postal or code.lower() in address for code in alert.postal_codes if code):
            return False

    if alert.keywords:
        search_text = " ".join(part for part in (listing.title, listing.description, listing.address) if part).lower()
        if not any(keyword.lower() in search_text for keyword in alert.keywords if keyword):
            return False

    return True


def _within_bounds(value: float | None, lower: float | None, upper: float | None) -> bool:
    if value is None:
        return True
    if lower is not None and value < lower:
        return False
    if upper is not None and value > upper:
        return False
    return True


def _contains_casefold(options: list[str], value: str) -> bool:
    needle = value.strip().casefold()
    return any(option.strip().casefold() == needle for option in options if option)
