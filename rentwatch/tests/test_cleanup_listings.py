from rentwatch.core.config import Settings
from rentwatch.jobs.cleanup_listings import cleanup_listings
from rentwatch.tests.fakes import InMemoryRepo


def _row(listing_id: str, title: str) -> dict:
    return {"id": listing_id, "external_id": listing_id, "title": title, "is_active": True}


def test_cleanup_deactivates_only_artefact_titles():
    repo = InMemoryRepo()
    repo.properties = [
        _row("1", "Huurwoningen overzicht Groningen"),
        _row("2", "Appartement Herestraat"),
        _row("3", "TITLE_IS_MISSING"),
    ]

    result = cleanup_listings(repo=repo, settings=Settings())

    assert result == {"checked": 2, "deactivated": 2, "errors": []}
    active = {row["id"]: row["is_active"] for row in repo.properties}
    assert active == {"1": False, "2": True, "3": False}


def test_cleanup_reports_write_errors():
    repo = InMemoryRepo()
    repo.properties = [_row("1", "Filter resultaten")]

    def broken_deactivate(listing_id, now):
        raise RuntimeError("write rejected")

    repo.deactivate_listing = broken_deactivate
    result = cleanup_listings(repo=repo, settings=Settings())

    assert result["deactivated"] == 0
    assert result["errors"] == [{"id": "1", "error": "write rejected"}]
