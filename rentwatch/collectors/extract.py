from __future__ import annotations

import html
import logging
import re
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import unquote, urlparse

import httpx

from rentwatch.collectors.base import headers_for
from rentwatch.core.models import Listing
from rentwatch.core.normalize import canonical_url, parse_price, safe_float, safe_int
from rentwatch.core.validation import rejection_reason

LOGGER = logging.getLogger(__name__)

DEFAULT_PRICE_PATTERNS = [
    r"€\s*(?P<value>[0-9][0-9\.,]*)",
    r"(?P<value>[0-9][0-9\.,]*)\s*(?:€|EUR\b)",
    r"&euro;\s*(?P<value>[0-9][0-9\.,]*)",
]

_BEDROOM_PATTERN = re.compile(r"(\d+)\s*(?:slaapkamers?|bedrooms?|beds?\b)", re.IGNORECASE)
_ROOM_PATTERN = re.compile(r"(\d+)\s*(?:kamers?|rooms?)\b", re.IGNORECASE)
_BATHROOM_PATTERN = re.compile(r"(\d+)\s*(?:badkamers?|bathrooms?|baths?\b)", re.IGNORECASE)
_AREA_PATTERN = re.compile(r"(\d+(?:[\.,]\d+)?)\s*(?:m²|m2\b|m&sup2;)", re.IGNORECASE)
_POSTAL_PATTERN = re.compile(r"\b(\d{4}\s?[A-Z]{2})\b")

_FURNISHING_KEYWORDS = (
    ("furnished", ("gemeubileerd", "furnished")),
    ("upholstered", ("gestoffeerd", "upholstered", "semi-furnished")),
    ("unfurnished", ("kaal", "unfurnished", "shell")),
)
_FEATURE_KEYWORDS = (
    ("balcony", ("balkon", "balcony")),
    ("garden", ("tuin", "garden")),
    ("parking", ("parkeerplaats", "parking", "garage")),
    ("elevator", ("lift", "elevator")),
    ("pets_allowed", ("huisdieren toegestaan", "pets allowed")),
)
_PROPERTY_TYPE_KEYWORDS = (
    ("studio", ("studio",)),
    ("room", ("kamer te huur", "studentenkamer", "room for rent", "shared room")),
    ("house", ("woonhuis", "eengezinswoning", "house")),
    ("apartment", ("appartement", "apartment", "bovenwoning", "benedenwoning")),
)


class FieldExtractor(ABC):
    """Turns a listing page into a dict of raw fields."""

    @abstractmethod
    def extract(self, url: str, page_html: str, price_patterns: list[str] | None = None) -> dict[str, Any]:
        """Extract title, price, rooms and location fields from page HTML."""


class RegexFieldExtractor(FieldExtractor):
    def extract(self, url: str, page_html: str, price_patterns: list[str] | None = None) -> dict[str, Any]:
        text = _strip_tags(page_html)
        lowered = text.lower()
        bedrooms_match = _BEDROOM_PATTERN.search(text) or _ROOM_PATTERN.search(text)
        bathrooms_match = _BATHROOM_PATTERN.search(text)
        area_match = _AREA_PATTERN.search(page_html)
        postal_code = _ld_value(page_html, "postalCode")
        if not postal_code:
            postal_match = _POSTAL_PATTERN.search(text)
            postal_code = postal_match.group(1) if postal_match else None

        return {
            "title": extract_title(url, page_html),
            "price": extract_price(page_html, price_patterns),
            "description": _meta_content(page_html, "og:description") or _meta_content(page_html, "description"),
            "bedrooms": safe_int(bedrooms_match.group(1)) if bedrooms_match else None,
            "bathrooms": safe_int(bathrooms_match.group(1)) if bathrooms_match else None,
            "surface_area": safe_float(area_match.group(1).replace(",", ".")) if area_match else None,
            "address": _ld_value(page_html, "streetAddress"),
            "city": _ld_value(page_html, "addressLocality"),
            "postal_code": postal_code,
            "image_urls": _meta_contents(page_html, "og:image"),
            "furnishing": _first_keyword(lowered, _FURNISHING_KEYWORDS),
            "features": [name for name, words in _FEATURE_KEYWORDS if any(word in lowered for word in words)],
            "property_type": _first_keyword(lowered, _PROPERTY_TYPE_KEYWORDS),
        }


class ListingExtractor:
    def __init__(self, client: httpx.Client, field_extractor: FieldExtractor | None = None) -> None:
        self.client = client
        self.field_extractor = field_extractor or RegexFieldExtractor()

    def fetch_listing(
        self,
        url: str,
        source: str,
        default_property_type: str,
        default_city: str | None = None,
        price_patterns: list[str] | None = None,
        header_profile: str | None = None,
    ) -> Listing | None:
        """
        Single GET with the source's header profile. Any transport error, non-2xx page
        or implausible record yields None, which callers treat as a skip.
        """
        try:
            response = self.client.get(url, headers=headers_for(header_profile))
        except httpx.HTTPError as exc:
            LOGGER.info("Listing fetch failed source=%s url=%s error=%s", source, url, exc)
            return None
        if response.status_code >= 400:
            LOGGER.info("Listing fetch skipped source=%s url=%s status=%s", source, url, response.status_code)
            return None
        return self.build_listing(
            url,
            response.text,
            source=source,
            default_property_type=default_property_type,
            default_city=default_city,
            price_patterns=price_patterns,
        )

    def build_listing(
        self,
        url: str,
        page_html: str,
        source: str,
        default_property_type: str,
        default_city: str | None = None,
        price_patterns: list[str] | None = None,
    ) -> Listing | None:
        fields = self.field_extractor.extract(url, page_html, price_patterns)
        external_id = canonical_url(url)
        listing = Listing(
            external_id=external_id,
            source=source,
            url=external_id,
            title=(fields.get("title") or "").strip(),
            price=fields.get("price"),
            description=fields.get("description"),
            bedrooms=fields.get("bedrooms"),
            bathrooms=fields.get("bathrooms"),
            surface_area=fields.get("surface_area"),
            address=fields.get("address"),
            city=fields.get("city") or default_city,
            postal_code=fields.get("postal_code"),
            property_type=fields.get("property_type") or default_property_type,
            furnishing=fields.get("furnishing"),
            image_urls=list(fields.get("image_urls") or []),
            features=list(fields.get("features") or []),
        )
        reason = rejection_reason(listing)
        if reason:
            LOGGER.info("Listing rejected source=%s url=%s reason=%s", source, url, reason)
            return None
        return listing


def extract_title(url: str, page_html: str) -> str | None:
    """Page heading, then <title>, then og:title, then the URL slug."""
    for candidate in (
        _first_group(r"<h1[^>]*>(.*?)</h1>", page_html),
        _first_group(r"<title[^>]*>(.*?)</title>", page_html),
        _meta_content(page_html, "og:title"),
    ):
        if candidate and candidate.strip():
            return candidate.strip()
    return title_from_url(url)


def title_from_url(url: str) -> str | None:
    segments = [segment for segment in unquote(urlparse(url).path).split("/") if segment]
    if not segments:
        return None
    candidate = segments[-1]
    # Trailing numeric ids such as h102621367 carry no title.
    if re.fullmatch(r"h?\d{6,}", candidate, flags=re.IGNORECASE) and len(segments) > 1:
        candidate = segments[-2]
    candidate = re.sub(r"\.[a-z]{2,5}$", "", candidate)
    candidate = re.sub(r"\s{2,}", " ", candidate.replace("-", " ").replace("_", " ")).strip()
    if len(candidate) < 3:
        return None
    return candidate


def extract_price(page_html: str, price_patterns: list[str] | None = None) -> int | None:
    for pattern in [*(price_patterns or []), *DEFAULT_PRICE_PATTERNS]:
        for match in re.finditer(pattern, page_html, flags=re.IGNORECASE):
            value = match.groupdict().get("value") or (match.group(1) if match.groups() else None)
            price = parse_price(value or "")
            if price is not None:
                return price
    return None


def _first_group(pattern: str, page_html: str) -> str | None:
    match = re.search(pattern, page_html, flags=re.IGNORECASE | re.DOTALL)
    if not match:
        return None
    return _strip_tags(match.group(1)) or None


def _meta_content(page_html: str, name: str) -> str | None:
    values = _meta_contents(page_html, name)
    return values[0] if values else None


def _meta_contents(page_html: str, name: str) -> list[str]:
    escaped = re.escape(name)
    out: list[str] = []
    for pattern in (
        rf'<meta[^>]+(?:property|name)="{escaped}"[^>]+content="([^"]*)"',
        rf'<meta[^>]+content="([^"]*)"[^>]+(?:property|name)="{escaped}"',
    ):
        for match in re.finditer(pattern, page_html, flags=re.IGNORECASE):
            value = html.unescape(match.group(1)).strip()
            if value and value not in out:
                out.append(value)
    return out


def _ld_value(page_html: str, key: str) -> str | None:
    match = re.search(rf'"{re.escape(key)}"\s*:\s*"(?P<value>[^"]+)"', page_html)
    return html.unescape(match.group("value")).strip() if match else None


def _first_keyword(lowered_text: str, table: tuple[tuple[str, tuple[str, ...]], ...]) -> str | None:
    for name, words in table:
        if any(word in lowered_text for word in words):
            return name
    return None


def _strip_tags(raw_html: str) -> str:
    without_scripts = re.sub(r"<(script|style)[^>]*>.*?</\1>", " ", raw_html, flags=re.IGNORECASE | re.DOTALL)
    without_tags = re.sub(r"<[^>]+>", " ", without_scripts)
    return html.unescape(re.sub(r"\s+", " ", without_tags)).strip()
