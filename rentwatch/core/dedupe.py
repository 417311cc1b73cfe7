from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from rentwatch.core.models import Listing
from rentwatch.core.normalize import canonical_url, listing_to_record
from rentwatch.core.validation import rejection_reason

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StoreResult:
    status: str  # inserted | duplicate | rejected
    listing_id: str | None = None
    reason: str | None = None

    @property
    def is_new(self) -> bool:
        return self.status == "inserted"


def choose_existing_listing(
    candidates: list[dict[str, Any]],
    external_id: str | None,
    url: str | None,
) -> dict[str, Any] | None:
    """
    Primary dedupe key: external_id, fallback: canonical url.
    """
    if external_id:
        for row in candidates:
            if row.get("external_id") == external_id:
                return row
    if url:
        needle = canonical_url(url)
        for row in candidates:
            row_url = row.get("url") or ""
            if row_url and canonical_url(row_url) == needle:
                return row
    return None


def store_listing(repo: Any, listing: Listing, now: datetime | None = None) -> StoreResult:
    # Re-validate right before the write; upstream transforms must not let bad rows through.
    reason = rejection_reason(listing)
    if reason:
        LOGGER.info("Store rejected listing source=%s external_id=%s reason=%s", listing.source, listing.external_id, reason)
        return StoreResult(status="rejected", reason=reason)

    candidates = repo.find_listing_candidates(listing.external_id, listing.url)
    existing = choose_existing_listing(candidates, listing.external_id, listing.url)
    if existing:
        return StoreResult(status="duplicate", listing_id=_row_id(existing))

    now = now or datetime.now(timezone.utc)
    row = repo.insert_listing_if_new(listing_to_record(listing, now))
    if row is None:
        # Another writer inserted the same external_id between lookup and insert.
        return StoreResult(status="duplicate")
    return StoreResult(status="inserted", listing_id=_row_id(row))


def _row_id(row: dict[str, Any]) -> str | None:
    return str(row["id"]) if row.get("id") is not None else None
