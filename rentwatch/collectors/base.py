from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from rentwatch.core.models import ScraperHealthState, SelectorSet


DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

HEADER_PROFILES: dict[str, dict[str, str]] = {
    "desktop": {
        "User-Agent": DESKTOP_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "nl-NL,nl;q=0.9,en;q=0.8",
    },
    "mobile": {
        "User-Agent": (
            "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) "
            "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
        ),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "nl-NL,nl;q=0.9",
    },
    "desktop_alt": {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Upgrade-Insecure-Requests": "1",
    },
}

# Order the anti-bot repair strategy walks through.
HEADER_ROTATION = ("desktop", "mobile", "desktop_alt")


class SourceFetchError(Exception):
    """Every index URL of a source failed at the transport level."""


@dataclass(slots=True)
class SourceConfig:
    name: str
    display_name: str
    index_urls: list[str]
    selector_sets: list[SelectorSet]
    default_property_type: str = "apartment"
    default_city: str = "Groningen"
    homepage: str | None = None
    enabled: bool = True
    tags: list[str] = field(default_factory=list)

    def initial_health(self) -> ScraperHealthState:
        return ScraperHealthState(
            source=self.name,
            current_url=self.index_urls[0],
            backup_urls=list(self.index_urls[1:]),
            current_selectors=self.selector_sets[0] if self.selector_sets else None,
            backup_selectors=list(self.selector_sets[1:]),
        )


def headers_for(profile: str | None) -> dict[str, str]:
    return dict(HEADER_PROFILES.get(profile or "desktop", HEADER_PROFILES["desktop"]))


def build_client(
    timeout_seconds: float = 20.0,
    header_profile: str | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    return httpx.Client(
        timeout=timeout_seconds,
        follow_redirects=True,
        headers=headers_for(header_profile),
        transport=transport,
    )
