from __future__ import annotations

from rentwatch.collectors.base import SourceConfig
from rentwatch.core.models import SelectorSet

# Broad fallback used when a portal's own link layout no longer matches.
GENERIC_SELECTORS = SelectorSet(
    name="generic",
    link_patterns=[r'href="([^"]*(?:huur|rental|for-rent|woning|appartement)[^"]*\d[^"]*)"'],
)


def _selectors(name: str, *patterns: str) -> SelectorSet:
    return SelectorSet(name=name, link_patterns=list(patterns))


SOURCES: list[SourceConfig] = [
    SourceConfig(
        name="pararius",
        display_name="Pararius",
        index_urls=[
            "https://www.pararius.com/apartments/groningen",
            "https://www.pararius.nl/huurwoningen/groningen",
        ],
        selector_sets=[
            _selectors(
                "pararius_cards",
                r'href="(/(?:apartment|house|room|studio)-for-rent/groningen/[^"]+)"',
                r'href="(/(?:appartement|huis|kamer|studio)-te-huur/groningen/[^"]+)"',
            ),
            GENERIC_SELECTORS,
        ],
        homepage="https://www.pararius.com",
    ),
    SourceConfig(
        name="kamernet",
        display_name="Kamernet",
        index_urls=[
            "https://kamernet.nl/huren/kamer-groningen",
            "https://kamernet.nl/en/for-rent/rooms-groningen",
        ],
        selector_sets=[
            _selectors(
                "kamernet_tiles",
                r'href="((?:https://kamernet\.nl)?/huren/(?:kamer|studio|appartement)-groningen/[^"]+)"',
                r'href="((?:https://kamernet\.nl)?/en/for-rent/(?:room|studio|apartment)-groningen/[^"]+)"',
            ),
            GENERIC_SELECTORS,
        ],
        default_property_type="room",
        homepage="https://kamernet.nl",
    ),
    SourceConfig(
        name="funda",
        display_name="Funda",
        index_urls=[
            "https://www.funda.nl/huur/groningen/",
            "https://www.funda.nl/zoeken/huur?selected_area=%5B%22groningen%22%5D",
        ],
        selector_sets=[
            _selectors(
                "funda_results",
                r'href="((?:https://www\.funda\.nl)?/(?:detail/)?huur/groningen/[^"]+/\d+/?)"',
            ),
            GENERIC_SELECTORS,
        ],
        homepage="https://www.funda.nl",
    ),
    SourceConfig(
        name="grunoverhuur",
        display_name="Grunoverhuur",
        index_urls=[
            "https://www.grunoverhuur.nl/aanbod/huren",
            "https://www.grunoverhuur.nl/woningaanbod",
        ],
        selector_sets=[
            _selectors("grunoverhuur_cards", r'href="((?:https://www\.grunoverhuur\.nl)?/(?:woning|aanbod)/[^"]+)"'),
            GENERIC_SELECTORS,
        ],
        homepage="https://www.grunoverhuur.nl",
    ),
    SourceConfig(
        name="rotsvast",
        display_name="Rotsvast",
        index_urls=[
            "https://www.rotsvast.nl/huren/?type=2&city=Groningen",
            "https://www.rotsvast.nl/huren/",
        ],
        selector_sets=[
            _selectors("rotsvast_cards", r'href="((?:https://www\.rotsvast\.nl)?/woning-huren/[^"]+)"'),
            GENERIC_SELECTORS,
        ],
        homepage="https://www.rotsvast.nl",
    ),
    SourceConfig(
        name="mvgm",
        display_name="MVGM",
        index_urls=[
            "https://www.mvgm.nl/woningaanbod?city=groningen",
            "https://www.mvgm.nl/woningaanbod",
        ],
        selector_sets=[
            _selectors("mvgm_cards", r'href="((?:https://www\.mvgm\.nl)?/woningaanbod/[^"?]+)"'),
            GENERIC_SELECTORS,
        ],
        homepage="https://www.mvgm.nl",
    ),
    SourceConfig(
        name="duwo",
        display_name="DUWO",
        index_urls=["https://www.duwo.nl/aanbod"],
        selector_sets=[
            _selectors("duwo_offers", r'href="((?:https://www\.duwo\.nl)?/aanbod/[^"?]+)"'),
            GENERIC_SELECTORS,
        ],
        default_property_type="room",
        homepage="https://www.duwo.nl",
        tags=["student"],
    ),
    SourceConfig(
        name="ssh",
        display_name="SSH&",
        index_urls=["https://www.sshn.nl/aanbod", "https://www.sshn.nl/en/offer"],
        selector_sets=[
            _selectors("ssh_offers", r'href="((?:https://www\.sshn\.nl)?/(?:aanbod|en/offer)/[^"?]+)"'),
            GENERIC_SELECTORS,
        ],
        default_property_type="room",
        homepage="https://www.sshn.nl",
        tags=["student"],
    ),
    SourceConfig(
        name="housinganywhere",
        display_name="HousingAnywhere",
        index_urls=["https://housinganywhere.com/s/Groningen--Netherlands"],
        selector_sets=[
            _selectors("housinganywhere_rooms", r'href="((?:https://housinganywhere\.com)?/room/ut\d+/[^"]+)"'),
            GENERIC_SELECTORS,
        ],
        homepage="https://housinganywhere.com",
    ),
]


def sources_by_name() -> dict[str, SourceConfig]:
    return {source.name: source for source in SOURCES if source.enabled}


def select_sources(names: list[str] | None = None) -> list[SourceConfig]:
    registry = sources_by_name()
    if not names:
        return list(registry.values())
    return [registry[name] for name in names if name in registry]
