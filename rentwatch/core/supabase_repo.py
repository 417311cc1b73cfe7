from __future__ import annotations

import os
from datetime import datetime
from typing import Any

from supabase import Client, create_client


class SupabaseRepo:
    def __init__(self, url: str | None = None, service_role_key: str | None = None) -> None:
        supabase_url = url or os.environ.get("SUPABASE_URL")
        supabase_key = service_role_key or os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required.")
        self.client: Client = create_client(supabase_url, supabase_key)

    # properties

    def find_listing_candidates(self, external_id: str | None, url: str | None) -> list[dict[str, Any]]:
        query = self.client.table("properties").select("id, external_id, url")
        if external_id:
            return query.eq("external_id", external_id).limit(1).execute().data or []
        if url:
            return query.ilike("url", url).limit(1).execute().data or []
        return []

    def insert_listing_if_new(self, row: dict[str, Any]) -> dict[str, Any] | None:
        """
        Insert-or-ignore on the unique external_id. PostgREST only returns rows it
        actually inserted, so an empty result means the listing already existed.
        """
        rows = (
            self.client.table("properties")
            .upsert(row, on_conflict="external_id", ignore_duplicates=True)
            .execute()
            .data
            or []
        )
        return rows[0] if rows else None

    def insert_listing(self, row: dict[str, Any]) -> dict[str, Any]:
        return (self.client.table("properties").insert(row).execute().data or [{}])[0]

    def delete_listing(self, listing_id: str) -> None:
        self.client.table("properties").delete().eq("id", listing_id).execute()

    def deactivate_listing(self, listing_id: str, now: datetime) -> None:
        self.client.table("properties").update(
            {"is_active": False, "last_updated_at": now.isoformat()}
        ).eq("id", listing_id).execute()

    def get_recent_active_listings(self, since: datetime, sources: list[str] | None = None) -> list[dict[str, Any]]:
        query = (
            self.client.table("properties")
            .select("*")
            .gte("first_seen_at", since.isoformat())
            .eq("is_active", True)
        )
        if sources:
            query = query.in_("source", sources)
        return query.order("first_seen_at", desc=True).execute().data or []

    def find_listings_with_title_markers(self, markers: tuple[str, ...], limit: int = 500) -> list[dict[str, Any]]:
        condition = ",".join(f"title.ilike.%{marker}%" for marker in markers)
        return (
            self.client.table("properties")
            .select("id, title, url, address")
            .eq("is_active", True)
            .or_(condition)
            .limit(limit)
            .execute()
            .data
            or []
        )

    # user_alerts / profiles

    def get_active_alerts(self) -> list[dict[str, Any]]:
        return self.client.table("user_alerts").select("*").eq("is_active", True).execute().data or []

    def insert_alert(self, row: dict[str, Any]) -> dict[str, Any]:
        return (self.client.table("user_alerts").insert(row).execute().data or [{}])[0]

    def delete_alerts_for_user(self, user_id: str) -> None:
        self.client.table("user_alerts").delete().eq("user_id", user_id).execute()

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        rows = self.client.table("profiles").select("*").eq("user_id", user_id).limit(1).execute().data or []
        return rows[0] if rows else None

    # notifications

    def claim_notification(self, row: dict[str, Any]) -> dict[str, Any] | None:
        """
        Atomic claim of a (user_id, property_id) pair. Only the caller whose insert
        wins gets the row back; every concurrent or later caller gets None.
        """
        rows = (
            self.client.table("notifications")
            .upsert(row, on_conflict="user_id,property_id", ignore_duplicates=True)
            .execute()
            .data
            or []
        )
        return rows[0] if rows else None

    def update_notification(self, notification_id: str, fields: dict[str, Any]) -> None:
        self.client.table("notifications").update(fields).eq("id", notification_id).execute()

    def find_notifications(self, user_id: str, property_id: str) -> list[dict[str, Any]]:
        return (
            self.client.table("notifications")
            .select("*")
            .eq("user_id", user_id)
            .eq("property_id", property_id)
            .execute()
            .data
            or []
        )

    def delete_notifications_for_user(self, user_id: str) -> None:
        self.client.table("notifications").delete().eq("user_id", user_id).execute()

    def count_stale_pending_notifications(self, before: datetime) -> int:
        response = (
            self.client.table("notifications")
            .select("id", count="exact")
            .eq("delivery_status", "pending")
            .lt("sent_at", before.isoformat())
            .execute()
        )
        return response.count or 0

    # scraper_health

    def get_scraper_health(self, source: str) -> dict[str, Any] | None:
        rows = self.client.table("scraper_health").select("*").eq("source", source).limit(1).execute().data or []
        return rows[0] if rows else None

    def list_scraper_health(self) -> list[dict[str, Any]]:
        return self.client.table("scraper_health").select("*").execute().data or []

    def save_scraper_health(self, row: dict[str, Any]) -> None:
        self.client.table("scraper_health").upsert(row, on_conflict="source").execute()

    # circuit breaker singleton

    def get_circuit_breaker(self) -> dict[str, Any] | None:
        rows = self.client.table("qa_circuit_breaker").select("*").limit(1).execute().data or []
        return rows[0] if rows else None

    def save_circuit_breaker(self, row: dict[str, Any]) -> None:
        if row.get("id"):
            update_row = dict(row)
            row_id = update_row.pop("id")
            self.client.table("qa_circuit_breaker").update(update_row).eq("id", row_id).execute()
            return
        self.client.table("qa_circuit_breaker").insert(row).execute()

    # QA runs

    def insert_test_run(self, row: dict[str, Any]) -> dict[str, Any]:
        return (self.client.table("qa_test_runs").insert(row).execute().data or [{}])[0]

    def update_test_run(self, run_id: str, fields: dict[str, Any]) -> None:
        self.client.table("qa_test_runs").update(fields).eq("id", run_id).execute()

    def insert_test_result(self, row: dict[str, Any]) -> None:
        self.client.table("qa_test_results").insert(row).execute()

    def get_test_runs_since(self, since: datetime) -> list[dict[str, Any]]:
        return self.client.table("qa_test_runs").select("*").gte("started_at", since.isoformat()).execute().data or []

    def get_test_results_since(self, since: datetime) -> list[dict[str, Any]]:
        return (
            self.client.table("qa_test_results").select("*").gte("started_at", since.isoformat()).execute().data
            or []
        )

    def create_auth_user(self, email: str, password: str) -> str:
        response = self.client.auth.admin.create_user(
            {"email": email, "password": password, "email_confirm": True}
        )
        return str(response.user.id)

    def delete_auth_user(self, user_id: str) -> None:
        self.client.auth.admin.delete_user(user_id)

    def record_test_user(self, row: dict[str, Any]) -> None:
        self.client.table("qa_test_users").insert(row).execute()

    def mark_test_user_cleaned(self, user_id: str, now: datetime) -> None:
        self.client.table("qa_test_users").update({"cleaned_up_at": now.isoformat()}).eq("user_id", user_id).execute()

    def run_qa_retention_cleanup(self, retention_days: int) -> None:
        self.client.rpc("cleanup_old_qa_data", {"retention_days": retention_days}).execute()

    # qa_admin_alerts

    def find_admin_alerts_since(self, alert_type: str, since: datetime) -> list[dict[str, Any]]:
        return (
            self.client.table("qa_admin_alerts")
            .select("id, created_at, severity")
            .eq("alert_type", alert_type)
            .gte("created_at", since.isoformat())
            .limit(1)
            .execute()
            .data
            or []
        )

    def insert_admin_alert(self, row: dict[str, Any]) -> dict[str, Any]:
        return (self.client.table("qa_admin_alerts").insert(row).execute().data or [{}])[0]

    def get_pending_admin_alerts(self, alert_id: str | None = None, limit: int = 5) -> list[dict[str, Any]]:
        query = self.client.table("qa_admin_alerts").select("*").eq("status", "pending")
        if alert_id:
            return query.eq("id", alert_id).execute().data or []
        return query.order("created_at", desc=True).limit(limit).execute().data or []

    def mark_admin_alert_sent(self, alert_id: str, now: datetime) -> None:
        self.client.table("qa_admin_alerts").update(
            {"status": "sent", "sent_at": now.isoformat()}
        ).eq("id", alert_id).execute()

    def get_pending_admin_alerts_since(self, since: datetime) -> list[dict[str, Any]]:
        return (
            self.client.table("qa_admin_alerts")
            .select("*")
            .eq("status", "pending")
            .gte("created_at", since.isoformat())
            .execute()
            .data
            or []
        )
