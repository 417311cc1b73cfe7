from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urljoin

import httpx

from rentwatch.collectors.base import HEADER_ROTATION, SourceConfig, headers_for
from rentwatch.collectors.runner import count_pattern_matches
from rentwatch.core.health import mark_repair_failed, mark_repaired
from rentwatch.core.logging_utils import log_repair_step
from rentwatch.core.models import RepairOutcome, RepairStep, ScraperHealthState, SelectorSet

LOGGER = logging.getLogger(__name__)

STRATEGIES = ("url", "selectors", "headers")
STEP_NAMES = {"url": "url_rotation", "selectors": "selector_rotation", "headers": "header_rotation"}
MIN_CONTENT_LENGTH = 1000
MIN_PROPERTY_INDICATORS = 2

BLOCK_INDICATORS = (
    "captcha",
    "access denied",
    "are you a robot",
    "cf-browser-verification",
    "checking your browser",
    "attention required",
    "request blocked",
    "too many requests",
)

PROPERTY_INDICATORS = (
    re.compile(r"€\s*\d+"),
    re.compile(r"\d+\s*m²"),
    re.compile(r"\d+\s*(?:bedroom|bed|kamer|room)", re.IGNORECASE),
    re.compile(r"groningen", re.IGNORECASE),
    re.compile(r"(?:apartment|house|studio|room|woning|huis|kamer)", re.IGNORECASE),
)

_DISCOVERY_LINK = re.compile(r'href="([^"]*(?:huur|huren|rent|apartments)[^"]*groningen[^"]*)"', re.IGNORECASE)

# (name, container opening tag, where a container body must stop)
DISCOVERY_CONTAINERS = (
    ("article", r"<article\b[^>]*>", r"</article>"),
    ("property", r'<div\b[^>]*class="[^"]*property[^"]*"[^>]*>', r'<div\b[^>]*class="[^"]*property'),
    ("listing", r'<div\b[^>]*class="[^"]*listing[^"]*"[^>]*>', r'<div\b[^>]*class="[^"]*listing'),
    ("item", r'<div\b[^>]*class="[^"]*item[^"]*"[^>]*>', r'<div\b[^>]*class="[^"]*item'),
    ("list_item", r"<li\b[^>]*>", r"</li>"),
)
MIN_DISCOVERED_CONTAINERS = 3
DISCOVERED_PRICE_PATTERN = r"€\s*(\d+(?:[.,]\d+)*)"

Verifier = Callable[[ScraperHealthState], bool]


def count_property_indicators(page_html: str) -> int:
    return sum(1 for pattern in PROPERTY_INDICATORS if pattern.search(page_html))


def block_indicator(page_html: str) -> str | None:
    lowered = page_html.lower()
    for marker in BLOCK_INDICATORS:
        if marker in lowered:
            return marker
    return None


def discover_selectors(page_html: str, base_url: str) -> SelectorSet | None:
    """
    Infer a selector set from repeated priced containers on an index page. The
    container kind with the most priced cards wins, and it needs at least
    MIN_DISCOVERED_CONTAINERS cards that also carry a link.
    """
    best: tuple[int, SelectorSet] | None = None
    for kind, opening, stop in DISCOVERY_CONTAINERS:
        body = rf"(?:(?!{stop})[\s\S])*?"
        priced = len(re.findall(opening + body + "€", page_html, flags=re.IGNORECASE))
        if priced < MIN_DISCOVERED_CONTAINERS or (best is not None and priced <= best[0]):
            continue
        candidate = SelectorSet(
            name=f"discovered_{kind}",
            link_patterns=[opening + body + r'href="([^"]+)"'],
            price_patterns=[DISCOVERED_PRICE_PATTERN],
        )
        if count_pattern_matches(page_html, candidate, base_url) >= MIN_DISCOVERED_CONTAINERS:
            best = (priced, candidate)
    return best[1] if best else None


class AutoRepairController:
    """
    Runs the URL, selector and header strategies in order and stops at the first
    one that rotates the source onto a working alternative. The returned state is
    never persisted here; the caller saves it.
    """

    def __init__(
        self,
        client: httpx.Client,
        max_attempts: int = 3,
        min_content_length: int = MIN_CONTENT_LENGTH,
    ) -> None:
        self.client = client
        self.max_attempts = max_attempts
        self.min_content_length = min_content_length

    def repair(
        self,
        config: SourceConfig,
        state: ScraperHealthState,
        strategy: str | None = None,
        verify: Verifier | None = None,
        now: datetime | None = None,
    ) -> RepairOutcome:
        now = now or datetime.now(timezone.utc)
        strategies = _select_strategies(strategy)
        LOGGER.info(
            "Repair started source=%s strategies=%s attempt=%s",
            state.source,
            ",".join(strategies),
            state.repair_attempt_count + 1,
        )

        steps: list[RepairStep] = []
        working = state
        success = False
        for name in strategies:
            handler = getattr(self, f"_repair_{name}")
            try:
                step, candidate = handler(config, working)
            except Exception as exc:  # noqa: BLE001
                step, candidate = self._step(STEP_NAMES[name], False, f"strategy crashed: {exc}"), None
            self._log_step(state.source, step)
            steps.append(step)
            if step.success and candidate is not None:
                working = candidate
                success = True
                break

        verified: bool | None = None
        if success and verify is not None:
            try:
                verified = bool(verify(working))
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Repair verification crashed source=%s error=%s", state.source, exc)
                verified = False
            step = self._step(
                "verification",
                verified,
                "validation scrape returned listings" if verified else "validation scrape returned no listings",
            )
            self._log_step(state.source, step)
            steps.append(step)
            success = verified

        working = replace(working, repair_attempt_count=working.repair_attempt_count + 1)
        if success:
            working = mark_repaired(working, now)
        else:
            # Unverified rotations are still kept; the next scheduled run decides.
            working = mark_repair_failed(working, now, self.max_attempts)

        LOGGER.info(
            "Repair finished source=%s success=%s attempts=%s status=%s",
            state.source,
            success,
            working.repair_attempt_count,
            working.repair_status,
        )
        return RepairOutcome(source=state.source, success=success, state=working, steps=steps, verified=verified)

    # strategy 1

    def _repair_url(
        self, config: SourceConfig, state: ScraperHealthState
    ) -> tuple[RepairStep, ScraperHealthState | None]:
        current_ok, current_details = self.check_url(state.current_url, state.header_profile)
        if current_ok:
            return self._step("url_rotation", False, "current URL is healthy", {"current": current_details}), None

        checked: list[dict[str, Any]] = [current_details]
        for backup in state.backup_urls:
            healthy, details = self.check_url(backup, state.header_profile)
            checked.append(details)
            if healthy:
                return (
                    self._step("url_rotation", True, f"promoted backup URL {backup}", {"checked": checked}),
                    _promote_url(state, backup),
                )

        discovered = self.discover_url(config, state.header_profile)
        if discovered:
            return (
                self._step("url_rotation", True, f"discovered URL {discovered}", {"checked": checked}),
                _promote_url(state, discovered),
            )
        return self._step("url_rotation", False, "no healthy backup URL", {"checked": checked}), None

    def check_url(self, url: str, header_profile: str | None = None) -> tuple[bool, dict[str, Any]]:
        """
        HEAD first. A HEAD the server refuses falls back to GET, and a fetched body
        must also look like a property listing page.
        """
        details: dict[str, Any] = {"url": url}
        headers = headers_for(header_profile)
        try:
            response = self.client.head(url, headers=headers)
            details["head_status"] = response.status_code
            if 200 <= response.status_code < 300:
                return True, details
            if response.status_code not in (403, 405, 501):
                return False, details
        except httpx.HTTPError as exc:
            details["head_error"] = str(exc)

        try:
            response = self.client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            details["get_error"] = str(exc)
            return False, details
        details["get_status"] = response.status_code
        if not 200 <= response.status_code < 300:
            return False, details
        indicators = count_property_indicators(response.text)
        details["indicators"] = indicators
        return indicators >= MIN_PROPERTY_INDICATORS, details

    def discover_url(self, config: SourceConfig, header_profile: str | None = None) -> str | None:
        if not config.homepage:
            return None
        try:
            response = self.client.get(config.homepage, headers=headers_for(header_profile))
        except httpx.HTTPError as exc:
            LOGGER.info("Homepage discovery failed source=%s error=%s", config.name, exc)
            return None
        if response.status_code >= 400:
            return None
        seen: set[str] = set()
        for match in _DISCOVERY_LINK.finditer(response.text):
            candidate = urljoin(config.homepage, match.group(1))
            if candidate in seen:
                continue
            seen.add(candidate)
            healthy, _ = self.check_url(candidate, header_profile)
            if healthy:
                return candidate
        return None

    # strategy 2

    def _repair_selectors(
        self, config: SourceConfig, state: ScraperHealthState
    ) -> tuple[RepairStep, ScraperHealthState | None]:
        try:
            response = self.client.get(state.current_url, headers=headers_for(state.header_profile))
        except httpx.HTTPError as exc:
            return self._step("selector_rotation", False, f"index fetch failed: {exc}"), None
        if response.status_code >= 400:
            return self._step("selector_rotation", False, f"index fetch returned HTTP {response.status_code}"), None

        page_html = response.text
        counts: dict[str, int] = {}
        if state.current_selectors is not None:
            current_count = count_pattern_matches(page_html, state.current_selectors, state.current_url)
            counts[state.current_selectors.name] = current_count
            if current_count > 0:
                return (
                    self._step("selector_rotation", False, "current selectors still match", {"matches": counts}),
                    None,
                )

        for index, selectors in enumerate(state.backup_selectors):
            matches = count_pattern_matches(page_html, selectors, state.current_url)
            counts[selectors.name] = matches
            if matches > 0:
                remaining = state.backup_selectors[:index] + state.backup_selectors[index + 1 :]
                if state.current_selectors is not None:
                    remaining.append(state.current_selectors)
                return (
                    self._step("selector_rotation", True, f"promoted selector set {selectors.name}", {"matches": counts}),
                    replace(state, current_selectors=selectors, backup_selectors=remaining),
                )

        discovered = discover_selectors(page_html, state.current_url)
        if discovered is not None:
            counts[discovered.name] = count_pattern_matches(page_html, discovered, state.current_url)
            backups = list(state.backup_selectors)
            if state.current_selectors is not None:
                backups.append(state.current_selectors)
            return (
                self._step("selector_rotation", True, f"discovered selector set {discovered.name}", {"matches": counts}),
                replace(state, current_selectors=discovered, backup_selectors=backups),
            )
        return self._step("selector_rotation", False, "no selector set matches", {"matches": counts}), None

    # strategy 3

    def _repair_headers(
        self, config: SourceConfig, state: ScraperHealthState
    ) -> tuple[RepairStep, ScraperHealthState | None]:
        attempts: list[dict[str, Any]] = []
        if self._accepts(state.current_url, state.header_profile, attempts):
            return (
                self._step("header_rotation", False, "current header profile is not blocked", {"attempts": attempts}),
                None,
            )
        for profile in HEADER_ROTATION:
            if profile == state.header_profile:
                continue
            if self._accepts(state.current_url, profile, attempts):
                return (
                    self._step("header_rotation", True, f"switched to header profile {profile}", {"attempts": attempts}),
                    replace(state, header_profile=profile),
                )
        return self._step("header_rotation", False, "every header profile was blocked", {"attempts": attempts}), None

    def _accepts(self, url: str, profile: str, attempts: list[dict[str, Any]]) -> bool:
        attempt: dict[str, Any] = {"profile": profile}
        attempts.append(attempt)
        try:
            response = self.client.get(url, headers=headers_for(profile))
        except httpx.HTTPError as exc:
            attempt["error"] = str(exc)
            return False
        attempt["status"] = response.status_code
        attempt["length"] = len(response.text)
        if not 200 <= response.status_code < 300:
            return False
        if len(response.text) < self.min_content_length:
            return False
        marker = block_indicator(response.text)
        if marker:
            attempt["blocked_by"] = marker
            return False
        return True

    def _step(self, name: str, success: bool, message: str, details: dict[str, Any] | None = None) -> RepairStep:
        return RepairStep(
            name=name,
            success=success,
            message=message,
            timestamp=datetime.now(timezone.utc),
            details=details or {},
        )

    def _log_step(self, source: str, step: RepairStep) -> None:
        log_repair_step(LOGGER, source, step)


def repair_log(outcome: RepairOutcome) -> list[dict[str, Any]]:
    return [
        {
            "step": step.name,
            "success": step.success,
            "message": step.message,
            "timestamp": step.timestamp.isoformat(),
            "details": step.details,
        }
        for step in outcome.steps
    ]


def _select_strategies(strategy: str | None) -> tuple[str, ...]:
    if strategy in (None, "", "all"):
        return STRATEGIES
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown repair strategy: {strategy}")
    return (strategy,)


def _promote_url(state: ScraperHealthState, url: str) -> ScraperHealthState:
    backups = [backup for backup in state.backup_urls if backup != url]
    if state.current_url and state.current_url != url:
        backups.append(state.current_url)
    return replace(state, current_url=url, backup_urls=backups)
