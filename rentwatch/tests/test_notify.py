import threading
from datetime import datetime, timedelta, timezone

import httpx

from rentwatch.core.config import Settings
from rentwatch.core.models import DeliveryResult, Listing, Recipient
from rentwatch.core.normalize import listing_to_record
from rentwatch.core.notify import NotificationDispatcher, format_price, render_message, skip_reason
from rentwatch.jobs.notify_cycle import send_notifications
from rentwatch.tests.fakes import InMemoryRepo

NOW = datetime(2026, 6, 1, 10, 0, tzinfo=timezone.utc)


class RecordingSender:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, to, subject, html_body, text_body):
        with self._lock:
            self.calls.append((to, subject, text_body))
        return DeliveryResult(ok=self.ok, error=None if self.ok else "422 invalid recipient")


def _client(dead_urls=()):
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) in dead_urls:
            return httpx.Response(404)
        return httpx.Response(200)

    return httpx.Client(transport=httpx.MockTransport(handler))


def _seed(repo: InMemoryRepo, url: str = "https://www.pararius.com/apartment-for-rent/groningen/x1/vismarkt"):
    listing = Listing(
        external_id=url,
        source="pararius",
        url=url,
        title="Apartment Vismarkt",
        price=950,
        bedrooms=2,
        surface_area=55,
        address="Vismarkt 3",
        city="Groningen",
    )
    row = repo.insert_listing(listing_to_record(listing, NOW - timedelta(hours=1)))
    repo.alerts.append({"id": "a1", "user_id": "u1", "name": "Centrum", "max_price": 1000, "cities": ["Groningen"]})
    repo.profiles["u1"] = {"email": "renter@mail.nl"}
    return row


def test_dispatch_sends_once_and_marks_sent():
    repo = InMemoryRepo()
    _seed(repo)
    sender = RecordingSender()
    dispatcher = NotificationDispatcher(repo, sender, client=_client())

    first = dispatcher.run(now=NOW)
    second = dispatcher.run(now=NOW)

    assert first["notifications_sent"] == 1
    assert second["notifications_sent"] == 0
    assert len(sender.calls) == 1
    assert len(repo.notifications) == 1
    assert repo.notifications[0]["delivery_status"] == "sent"


def test_concurrent_dispatch_claims_exactly_once():
    repo = InMemoryRepo()
    _seed(repo)
    sender = RecordingSender()
    barrier = threading.Barrier(2)
    results = []

    def worker():
        dispatcher = NotificationDispatcher(repo, sender, client=_client())
        barrier.wait()
        results.append(dispatcher.run(now=NOW))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(repo.notifications) == 1
    assert len(sender.calls) == 1
    assert sum(result["notifications_sent"] for result in results) == 1


def test_failed_delivery_keeps_claim_and_is_not_retried():
    repo = InMemoryRepo()
    _seed(repo)
    sender = RecordingSender(ok=False)
    dispatcher = NotificationDispatcher(repo, sender, client=_client())

    summary = dispatcher.run(now=NOW)
    dispatcher.run(now=NOW)

    assert summary["notifications_failed"] == 1
    assert len(sender.calls) == 1
    assert repo.notifications[0]["delivery_status"] == "failed"
    assert repo.notifications[0]["delivery_error"] == "422 invalid recipient"


def test_dead_listing_is_deactivated_and_not_notified():
    repo = InMemoryRepo()
    row = _seed(repo)
    sender = RecordingSender()
    dispatcher = NotificationDispatcher(repo, sender, client=_client(dead_urls={row["url"]}))

    summary = dispatcher.run(now=NOW)

    assert summary["deactivated"] == 1
    assert sender.calls == []
    assert repo.notifications == []
    assert repo.properties[0]["is_active"] is False


def test_paused_and_synthetic_users_are_skipped():
    repo = InMemoryRepo()
    _seed(repo)
    sender = RecordingSender()
    dispatcher = NotificationDispatcher(repo, sender, client=_client())

    repo.profiles["u1"] = {"email": "renter@mail.nl", "notifications_paused": True}
    assert dispatcher.run(now=NOW)["notifications_sent"] == 0
    repo.profiles["u1"] = {"email": "qa-agent-user-1717236000000@test.com"}
    assert dispatcher.run(now=NOW)["notifications_sent"] == 0

    assert sender.calls == []
    assert repo.notifications == []


def test_skip_reason_without_email():
    assert skip_reason(Recipient(user_id="u1", email=None)) == "no_contact_address"
    assert skip_reason(Recipient(user_id="u1", email="someone@example.com")) == "synthetic_test_user"
    assert skip_reason(Recipient(user_id="u1", email="someone@ziggo.nl")) is None


def test_render_message_contains_price_and_location():
    listing = Listing(
        external_id="x",
        source="pararius",
        url="https://www.pararius.com/x",
        title="Apartment Vismarkt",
        price=1500,
        bedrooms=2,
        surface_area=55,
        address="Vismarkt 3",
        city="Groningen",
    )
    assert render_message(listing, "Centrum") == (
        '🏠 New property match for "Centrum": Apartment Vismarkt - €1.500 • 2 bedrooms • 55m² '
        "in Vismarkt 3, Groningen. View: https://www.pararius.com/x"
    )
    assert format_price(None) == "Price on request"


def test_missing_email_sender_leaves_matches_unclaimed():
    repo = InMemoryRepo()
    _seed(repo)

    unconfigured = NotificationDispatcher(repo, None, client=_client()).run(now=NOW)

    assert unconfigured["notifications_failed"] == 0
    assert repo.notifications == []

    sender = RecordingSender()
    configured = NotificationDispatcher(repo, sender, client=_client()).run(now=NOW)

    assert configured["notifications_sent"] == 1
    assert len(sender.calls) == 1
    assert repo.notifications[0]["delivery_status"] == "sent"


def test_refused_head_falls_back_to_get_for_liveness():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(404)

    repo = InMemoryRepo()
    _seed(repo)
    sender = RecordingSender()
    dispatcher = NotificationDispatcher(repo, sender, client=httpx.Client(transport=httpx.MockTransport(handler)))

    summary = dispatcher.run(now=NOW)

    assert seen == ["HEAD", "GET"]
    assert summary["deactivated"] == 1
    assert repo.properties[0]["is_active"] is False
    assert sender.calls == []


def test_gone_listing_is_deactivated():
    repo = InMemoryRepo()
    _seed(repo)
    sender = RecordingSender()
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(410)))

    summary = NotificationDispatcher(repo, sender, client=client).run(now=NOW)

    assert summary["deactivated"] == 1
    assert repo.notifications == []


def test_head_not_implemented_and_live_get_keeps_listing():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(501 if request.method == "HEAD" else 200)

    repo = InMemoryRepo()
    _seed(repo)
    sender = RecordingSender()
    client = httpx.Client(transport=httpx.MockTransport(handler))

    summary = NotificationDispatcher(repo, sender, client=client).run(now=NOW)

    assert summary["deactivated"] == 0
    assert summary["notifications_sent"] == 1
    assert repo.properties[0]["is_active"] is True


def test_notify_job_without_email_key_writes_nothing():
    repo = InMemoryRepo()
    _seed(repo)
    writes_before = repo.writes

    summary = send_notifications(repo=repo, settings=Settings())

    assert summary["notifications_sent"] == 0
    assert summary["alerts_processed"] == 0
    assert repo.notifications == []
    assert repo.writes == writes_before
