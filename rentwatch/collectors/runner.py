from __future__ import annotations

import logging
import re
import time
from typing import Callable
from urllib.parse import urljoin

import httpx

from rentwatch.collectors.base import SourceConfig, SourceFetchError, headers_for
from rentwatch.collectors.extract import ListingExtractor
from rentwatch.core.dedupe import StoreResult
from rentwatch.core.models import Listing, ScraperHealthState, SelectorSet, SourceRunOutcome
from rentwatch.core.normalize import canonical_url

LOGGER = logging.getLogger(__name__)

StoreFn = Callable[[Listing], StoreResult]


class SourceRunner:
    """
    Generic index runner: walks (index URL x link pattern) combinations in order and
    stops at the first combination that yields at least one validated listing.
    """

    def __init__(
        self,
        client: httpx.Client,
        extractor: ListingExtractor | None = None,
        max_listings: int = 15,
        delay_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.extractor = extractor or ListingExtractor(client)
        self.max_listings = max_listings
        self.delay_seconds = delay_seconds
        self.sleep = sleep

    def collect(
        self,
        config: SourceConfig,
        state: ScraperHealthState,
        store: StoreFn | None = None,
    ) -> SourceRunOutcome:
        """
        Without a store callback the run is read-only and only counts validated
        listings, which is what repair verification needs.
        """
        outcome = SourceRunOutcome(source=config.name)
        selectors = state.current_selectors or (config.selector_sets[0] if config.selector_sets else None)
        if selectors is None:
            outcome.error = "no selector set configured"
            return outcome

        transport_errors: list[str] = []
        index_urls = _unique([state.current_url, *state.backup_urls])
        for index_url in index_urls:
            page_html = self._fetch_index(index_url, state.header_profile, transport_errors)
            if page_html is None:
                continue
            for pattern in selectors.link_patterns:
                candidates = extract_candidate_urls(page_html, index_url, pattern)
                outcome.found += len(candidates)
                validated_before = outcome.validated
                # The cap applies per combination so a stale pattern cannot starve the fallbacks.
                for candidate in candidates[: self.max_listings]:
                    self._process_candidate(candidate, config, selectors, state.header_profile, outcome, store)
                    if self.delay_seconds > 0:
                        self.sleep(self.delay_seconds)
                if outcome.validated > validated_before:
                    outcome.used_url = index_url
                    outcome.used_pattern = pattern
                    LOGGER.info(
                        "Source=%s combination succeeded url=%s validated=%s new=%s",
                        config.name,
                        index_url,
                        outcome.validated,
                        outcome.new,
                    )
                    return outcome

        if transport_errors and len(transport_errors) == len(index_urls):
            raise SourceFetchError("; ".join(transport_errors))
        return outcome

    def _fetch_index(self, index_url: str, header_profile: str, errors: list[str]) -> str | None:
        try:
            response = self.client.get(index_url, headers=headers_for(header_profile))
        except httpx.HTTPError as exc:
            errors.append(f"{index_url}: {exc}")
            LOGGER.warning("Index fetch failed url=%s error=%s", index_url, exc)
            return None
        if response.status_code >= 400:
            errors.append(f"{index_url}: HTTP {response.status_code}")
            LOGGER.warning("Index fetch failed url=%s status=%s", index_url, response.status_code)
            return None
        return response.text

    def _process_candidate(
        self,
        candidate: str,
        config: SourceConfig,
        selectors: SelectorSet,
        header_profile: str,
        outcome: SourceRunOutcome,
        store: StoreFn | None,
    ) -> None:
        try:
            listing = self.extractor.fetch_listing(
                candidate,
                source=config.name,
                default_property_type=config.default_property_type,
                default_city=config.default_city,
                price_patterns=selectors.price_patterns,
                header_profile=header_profile,
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Extraction crashed source=%s url=%s error=%s", config.name, candidate, exc)
            listing = None
        if listing is None:
            outcome.skipped += 1
            return
        outcome.validated += 1
        if store is None:
            return
        try:
            result = store(listing)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Store failed source=%s external_id=%s: %s", config.name, listing.external_id, exc)
            return
        if result.status == "inserted":
            outcome.new += 1
        elif result.status == "duplicate":
            outcome.duplicates += 1
        else:
            outcome.skipped += 1


def extract_candidate_urls(page_html: str, base_url: str, pattern: str) -> list[str]:
    seen: dict[str, None] = {}
    index_key = canonical_url(base_url)
    for match in re.finditer(pattern, page_html, flags=re.IGNORECASE):
        href = match.groupdict().get("href") or (match.group(1) if match.groups() else match.group(0))
        raw = (href or "").replace("\\/", "/").strip()
        if not raw or raw.startswith(("#", "javascript:", "mailto:")):
            continue
        absolute = canonical_url(urljoin(base_url, raw))
        if absolute == index_key:
            continue
        seen[absolute] = None
    return list(seen.keys())


def count_pattern_matches(page_html: str, selectors: SelectorSet, base_url: str) -> int:
    return sum(len(extract_candidate_urls(page_html, base_url, pattern)) for pattern in selectors.link_patterns)


def _unique(values: list[str]) -> list[str]:
    out: list[str] = []
    for value in values:
        cleaned = (value or "").strip()
        if cleaned and cleaned not in out:
            out.append(cleaned)
    return out
