import httpx

from rentwatch.collectors.base import SourceConfig, build_client
from rentwatch.collectors.runner import SourceRunner
from rentwatch.core.config import Settings
from rentwatch.core.models import SelectorSet
from rentwatch.core.repair import AutoRepairController
from rentwatch.jobs.scrape_cycle import run_scrape_cycle, run_source
from rentwatch.tests.fakes import InMemoryRepo

CARDS = SelectorSet(name="cards", link_patterns=[r'href="(/listing/[^"]+)"'])
TILES = SelectorSet(name="tiles", link_patterns=[r'data-href="(/woning/[^"]+)"'])


def _config() -> SourceConfig:
    return SourceConfig(
        name="testsource",
        display_name="Test Source",
        index_urls=["https://rentals.test/groningen"],
        selector_sets=[CARDS, TILES],
    )


def _listing_page(title: str, price: int) -> str:
    return f"<html><h1>{title}</h1><p>€ {price} per maand</p><p>2 slaapkamers</p></html>"


def _run(handler, repo: InMemoryRepo, settings: Settings | None = None) -> dict:
    settings = settings or Settings(listing_delay_seconds=0)
    client = build_client(transport=httpx.MockTransport(handler))
    runner = SourceRunner(client, delay_seconds=0)
    controller = AutoRepairController(client, max_attempts=settings.repair_max_attempts)
    return run_source(_config(), repo, runner, controller, settings, sleep=lambda seconds: None)


def test_successful_run_stores_listings_and_marks_source_healthy():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/groningen":
            return httpx.Response(200, text='<a href="/listing/a-1">A</a><a href="/listing/b-2">B</a>')
        if request.url.path == "/listing/a-1":
            return httpx.Response(200, text=_listing_page("Studio Vismarkt", 850))
        return httpx.Response(200, text=_listing_page("Appartement Zuiderdiep", 1400))

    repo = InMemoryRepo()
    summary = _run(handler, repo)

    assert summary["new"] == 2
    assert summary["error"] is None
    assert len(repo.properties) == 2
    health = repo.health["testsource"]
    assert health["repair_status"] == "healthy"
    assert health["consecutive_failures"] == 0
    assert health["last_successful_run"]

    second = _run(handler, repo)
    assert second["new"] == 0
    assert second["duplicates"] == 2
    assert len(repo.properties) == 2


def test_fetch_error_is_recorded_without_raising():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    repo = InMemoryRepo()
    summary = _run(handler, repo)

    assert "connection refused" in summary["error"]
    health = repo.health["testsource"]
    assert health["consecutive_failures"] == 1
    assert health["last_failure_run"]
    assert health["last_successful_run"] is None


def test_needs_repair_rotates_selectors_before_collecting():
    index_html = '<div data-href="/woning/c-3">C</div>'

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/groningen":
            return httpx.Response(200, text=index_html)
        return httpx.Response(200, text=_listing_page("Appartement Herestraat", 1100))

    repo = InMemoryRepo()
    repo.health["testsource"] = {
        "source": "testsource",
        "current_url": "https://rentals.test/groningen",
        "current_selectors": {"name": "cards", "link_patterns": CARDS.link_patterns},
        "backup_selectors": [{"name": "tiles", "link_patterns": TILES.link_patterns}],
        "is_in_repair_mode": True,
        "repair_status": "needs_repair",
        "consecutive_hours_zero_properties": 2,
    }

    summary = _run(handler, repo)

    assert summary["repair"]["success"] is True
    assert summary["new"] == 1
    health = repo.health["testsource"]
    assert health["current_selectors"]["name"] == "tiles"
    assert health["repair_status"] == "healthy"
    assert health["repair_attempt_count"] == 0


def test_exhausted_repair_raises_one_admin_alert():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>nothing to see</html>")

    repo = InMemoryRepo()
    repo.health["testsource"] = {
        "source": "testsource",
        "current_url": "https://rentals.test/groningen",
        "is_in_repair_mode": True,
        "repair_status": "needs_repair",
        "repair_attempt_count": 2,
        "consecutive_hours_zero_properties": 2,
    }

    summary = _run(handler, repo)

    assert summary["repair"]["success"] is False
    assert repo.health["testsource"]["repair_status"] == "failed"
    assert repo.health["testsource"]["repair_attempt_count"] == 3
    assert [row["alert_type"] for row in repo.admin_alerts] == ["scraper_repair_failed"]

    for _ in range(2):
        later = _run(handler, repo)
        assert later["repair"] is None

    assert repo.health["testsource"]["repair_status"] == "failed"
    assert repo.health["testsource"]["repair_attempt_count"] == 3
    assert len(repo.admin_alerts) == 1


def test_run_scrape_cycle_ignores_unknown_sources():
    repo = InMemoryRepo()
    client = build_client(transport=httpx.MockTransport(lambda request: httpx.Response(404)))

    results = run_scrape_cycle(sources=["no-such-source"], repo=repo, settings=Settings(), client=client)

    assert results == {}
    assert repo.health == {}
