from __future__ import annotations

import html
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from rentwatch.core.config import Settings
from rentwatch.core.matching import matches_alert
from rentwatch.core.models import Alert, DeliveryResult, Listing, Recipient
from rentwatch.core.normalize import alert_from_row, listing_from_row, recipient_from_profile

LOGGER = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

DEAD_LINK_STATUSES = {404, 410}
SYNTHETIC_EMAIL_PATTERNS = (
    re.compile(r"^qa-agent-user-\d+@", re.IGNORECASE),
    re.compile(r"@(?:test|example)\.(?:com|org|net)$", re.IGNORECASE),
)

EmailSender = Callable[[str, str, str, str], DeliveryResult]
SmsSender = Callable[[str, str], DeliveryResult]


def build_email_sender(settings: Settings) -> EmailSender | None:
    if not settings.resend_api_key:
        return None
    api_key = settings.resend_api_key
    from_email = settings.resend_from_email
    timeout = settings.http_timeout_seconds
    return lambda to, subject, html_body, text_body: _send_resend(  # noqa: E731
        api_key, from_email, to, subject, html_body, text_body, timeout
    )


def build_sms_sender(settings: Settings) -> SmsSender | None:
    if not (settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number):
        return None
    sid = settings.twilio_account_sid
    token = settings.twilio_auth_token
    from_number = settings.twilio_from_number
    timeout = settings.http_timeout_seconds
    return lambda to, body: _send_twilio(sid, token, from_number, to, body, timeout)  # noqa: E731


def _send_resend(
    api_key: str,
    from_email: str,
    to: str,
    subject: str,
    html_body: str,
    text_body: str,
    timeout: float,
) -> DeliveryResult:
    request_body = {"from": from_email, "to": [to], "subject": subject, "html": html_body, "text": text_body}
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(RESEND_URL, json=request_body, headers=headers)
            response.raise_for_status()
        return DeliveryResult(ok=True)
    except httpx.HTTPStatusError as exc:
        return DeliveryResult(ok=False, error=f"HTTP {exc.response.status_code}: {exc.response.text[:300]}")
    except Exception as exc:  # noqa: BLE001
        return DeliveryResult(ok=False, error=str(exc))


def _send_twilio(sid: str, token: str, from_number: str, to: str, body: str, timeout: float) -> DeliveryResult:
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(
                TWILIO_URL.format(sid=sid),
                data={"To": to, "From": from_number, "Body": body},
                auth=(sid, token),
            )
            response.raise_for_status()
        return DeliveryResult(ok=True)
    except httpx.HTTPStatusError as exc:
        return DeliveryResult(ok=False, error=f"HTTP {exc.response.status_code}: {exc.response.text[:300]}")
    except Exception as exc:  # noqa: BLE001
        return DeliveryResult(ok=False, error=str(exc))


def format_price(price: int | None) -> str:
    if not price:
        return "Price on request"
    return "€" + f"{price:,}".replace(",", ".")


def location_text(listing: Listing) -> str:
    parts = [part for part in (listing.address, listing.city) if part]
    if listing.address and listing.city and listing.city.lower() in listing.address.lower():
        parts = [listing.address]
    return ", ".join(parts) or "Groningen"


def render_message(listing: Listing, alert_name: str) -> str:
    bedrooms = ""
    if listing.bedrooms:
        bedrooms = f" • {listing.bedrooms} bedroom{'s' if listing.bedrooms > 1 else ''}"
    area = f" • {listing.surface_area:g}m²" if listing.surface_area else ""
    return (
        f'🏠 New property match for "{alert_name}": {listing.title} - {format_price(listing.price)}'
        f"{bedrooms}{area} in {location_text(listing)}. View: {listing.url}"
    )


def render_email(listing: Listing, alert: Alert) -> tuple[str, str, str]:
    subject = f"New match for {alert.name}: {listing.title}"
    text_body = render_message(listing, alert.name)
    facts = [format_price(listing.price) + " per month"]
    if listing.bedrooms:
        facts.append(f"{listing.bedrooms} bedroom{'s' if listing.bedrooms > 1 else ''}")
    if listing.surface_area:
        facts.append(f"{listing.surface_area:g} m²")
    if listing.furnishing:
        facts.append(listing.furnishing)
    html_body = (
        '<div style="font-family:Helvetica,Arial,sans-serif;line-height:1.6">'
        f"<h2>{html.escape(listing.title)}</h2>"
        f"<p>{html.escape(' • '.join(facts))}</p>"
        f"<p>{html.escape(location_text(listing))}</p>"
        f'<p><a href="{html.escape(listing.url, quote=True)}">View on {html.escape(listing.source)}</a></p>'
        f'<p style="color:#666;font-size:12px">You receive this because of your alert "{html.escape(alert.name)}".</p>'
        "</div>"
    )
    return subject, html_body, text_body


def is_synthetic_email(email: str | None) -> bool:
    return bool(email) and any(pattern.search(email or "") for pattern in SYNTHETIC_EMAIL_PATTERNS)


def skip_reason(recipient: Recipient) -> str | None:
    if not recipient.email:
        return "no_contact_address"
    if recipient.notifications_paused:
        return "notifications_paused"
    if is_synthetic_email(recipient.email):
        return "synthetic_test_user"
    return None


class NotificationDispatcher:
    def __init__(
        self,
        repo: Any,
        email_sender: EmailSender | None,
        client: httpx.Client,
        sms_sender: SmsSender | None = None,
        lookback_hours: int = 24,
    ) -> None:
        """The caller owns `client` and closes it."""
        self.repo = repo
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.client = client
        self.lookback_hours = lookback_hours

    def run(
        self,
        window_hours: int | None = None,
        sources: list[str] | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        summary = {
            "alerts_processed": 0,
            "new_properties": 0,
            "notifications_sent": 0,
            "notifications_failed": 0,
            "deactivated": 0,
        }
        if self.email_sender is None:
            # Claims are permanent, so nothing is claimed until a sender exists.
            LOGGER.warning("No email sender configured; dispatch skipped without claiming matches.")
            return summary

        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=window_hours or self.lookback_hours)
        alerts = [alert_from_row(row) for row in self.repo.get_active_alerts()]
        listings = [listing_from_row(row) for row in self.repo.get_recent_active_listings(since, sources)]
        LOGGER.info("Dispatch window since=%s alerts=%s listings=%s", since.isoformat(), len(alerts), len(listings))
        summary["alerts_processed"] = len(alerts)
        summary["new_properties"] = len(listings)

        liveness: dict[str, bool] = {}
        recipients: dict[str, Recipient] = {}
        for alert in alerts:
            for listing in listings:
                try:
                    if not self._is_live(listing, liveness, now, summary):
                        continue
                    if not matches_alert(listing, alert):
                        continue
                    recipient = self._recipient(alert.user_id, recipients)
                    reason = skip_reason(recipient)
                    if reason:
                        LOGGER.info("Skipping user=%s alert=%s reason=%s", alert.user_id, alert.id, reason)
                        continue
                    claim = self.record_match(alert, listing, now)
                    if claim is None:
                        continue
                    result = self.deliver(claim, recipient, listing, alert)
                    if result.ok:
                        summary["notifications_sent"] += 1
                    else:
                        summary["notifications_failed"] += 1
                except Exception as exc:  # noqa: BLE001
                    LOGGER.exception("Dispatch failed alert=%s listing=%s: %s", alert.id, listing.id, exc)
        LOGGER.info(
            "Dispatch completed alerts=%s sent=%s failed=%s deactivated=%s",
            summary["alerts_processed"],
            summary["notifications_sent"],
            summary["notifications_failed"],
            summary["deactivated"],
        )
        return summary

    def record_match(self, alert: Alert, listing: Listing, now: datetime | None = None) -> dict[str, Any] | None:
        """
        Claim the (user, listing) pair. Returns the claimed row, or None when some
        earlier or concurrent cycle already owns it.
        """
        now = now or datetime.now(timezone.utc)
        return self.repo.claim_notification(
            {
                "user_id": alert.user_id,
                "property_id": listing.id,
                "alert_id": alert.id,
                "message": render_message(listing, alert.name),
                "delivery_status": "pending",
                "sent_at": now.isoformat(),
            }
        )

    def deliver(self, claim: dict[str, Any], recipient: Recipient, listing: Listing, alert: Alert) -> DeliveryResult:
        if self.email_sender is None:
            result = DeliveryResult(ok=False, error="email delivery not configured")
        else:
            subject, html_body, text_body = render_email(listing, alert)
            result = self.email_sender(recipient.email or "", subject, html_body, text_body)

        fields: dict[str, Any] = {"delivery_status": "sent" if result.ok else "failed"}
        if result.ok:
            fields["delivered_at"] = datetime.now(timezone.utc).isoformat()
        else:
            fields["delivery_error"] = result.error
            LOGGER.warning("Delivery failed user=%s listing=%s error=%s", recipient.user_id, listing.id, result.error)

        if recipient.sms_enabled and recipient.phone and self.sms_sender is not None:
            sms_result = self.sms_sender(recipient.phone, str(claim.get("message") or render_message(listing, alert.name)))
            fields["sms_status"] = "sent" if sms_result.ok else "failed"
            if not sms_result.ok:
                LOGGER.warning("SMS failed user=%s error=%s", recipient.user_id, sms_result.error)

        self.repo.update_notification(str(claim["id"]), fields)
        return result

    def check_liveness(self, url: str) -> int | None:
        """Status of the public listing URL: HEAD first, GET when HEAD is refused."""
        try:
            response = self.client.head(url)
            if response.status_code not in (405, 501):
                return response.status_code
        except httpx.HTTPError:
            pass
        try:
            return self.client.get(url).status_code
        except httpx.HTTPError as exc:
            LOGGER.info("Liveness check inconclusive url=%s error=%s", url, exc)
            return None

    def _is_live(self, listing: Listing, cache: dict[str, bool], now: datetime, summary: dict[str, Any]) -> bool:
        key = listing.id or listing.external_id
        if key in cache:
            return cache[key]
        status = self.check_liveness(listing.url)
        alive = status not in DEAD_LINK_STATUSES
        if not alive and listing.id:
            self.repo.deactivate_listing(listing.id, now)
            summary["deactivated"] += 1
            LOGGER.info("Deactivated dead listing id=%s url=%s status=%s", listing.id, listing.url, status)
        cache[key] = alive
        return alive

    def _recipient(self, user_id: str, cache: dict[str, Recipient]) -> Recipient:
        if user_id not in cache:
            cache[user_id] = recipient_from_profile(user_id, self.repo.get_profile(user_id))
        return cache[user_id]
