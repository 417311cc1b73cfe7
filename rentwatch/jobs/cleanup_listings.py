from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone
from typing import Any

from rentwatch.core.config import Settings, load_settings
from rentwatch.core.supabase_repo import SupabaseRepo
from rentwatch.core.validation import CLEANUP_TITLE_MARKERS, looks_like_bad_title


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def cleanup_listings(limit: int = 500, repo: Any = None, settings: Settings | None = None) -> dict[str, Any]:
    """Deactivate stored listings whose title is a scrape artefact rather than a real heading."""
    settings = settings or load_settings()
    repo = repo or SupabaseRepo(settings.supabase_url, settings.supabase_key)
    now = datetime.now(timezone.utc)
    candidates = repo.find_listings_with_title_markers(CLEANUP_TITLE_MARKERS, limit=limit)

    deactivated = 0
    errors: list[dict[str, Any]] = []
    for row in candidates:
        if not looks_like_bad_title(row.get("title")):
            continue
        try:
            repo.deactivate_listing(str(row["id"]), now)
            deactivated += 1
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Could not deactivate listing id=%s: %s", row.get("id"), exc)
            errors.append({"id": row.get("id"), "error": str(exc)})
    LOGGER.info("Listing cleanup completed checked=%s deactivated=%s", len(candidates), deactivated)
    return {"checked": len(candidates), "deactivated": deactivated, "errors": errors}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Deactivate listings with placeholder or navigation titles.")
    parser.add_argument("--limit", type=int, default=500)
    args = parser.parse_args()
    print(json.dumps(cleanup_listings(limit=args.limit), indent=2))
