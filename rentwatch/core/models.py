from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class Listing:
    external_id: str
    source: str
    url: str
    title: str
    price: int | None = None
    description: str | None = None
    currency: str = "EUR"
    bedrooms: int | None = None
    bathrooms: int | None = None
    surface_area: float | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    property_type: str | None = None
    furnishing: str | None = None
    image_urls: list[str] = field(default_factory=list)
    features: list[str] = field(default_factory=list)
    id: str | None = None
    first_seen_at: datetime | None = None
    last_updated_at: datetime | None = None
    is_active: bool = True


@dataclass(slots=True)
class Alert:
    id: str
    user_id: str
    name: str
    min_price: int | None = None
    max_price: int | None = None
    min_bedrooms: int | None = None
    max_bedrooms: int | None = None
    min_surface_area: float | None = None
    cities: list[str] = field(default_factory=list)
    property_types: list[str] = field(default_factory=list)
    furnishing: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    postal_codes: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    is_active: bool = True


@dataclass(slots=True)
class Recipient:
    user_id: str
    email: str | None
    phone: str | None = None
    notifications_paused: bool = False
    sms_enabled: bool = False


@dataclass(slots=True)
class DeliveryResult:
    ok: bool
    error: str | None = None


@dataclass(slots=True)
class SelectorSet:
    name: str
    link_patterns: list[str]
    price_patterns: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ScraperHealthState:
    source: str
    current_url: str
    backup_urls: list[str] = field(default_factory=list)
    current_selectors: SelectorSet | None = None
    backup_selectors: list[SelectorSet] = field(default_factory=list)
    header_profile: str = "desktop"
    consecutive_failures: int = 0
    consecutive_zero_hours: int = 0
    is_in_repair_mode: bool = False
    repair_attempt_count: int = 0
    repair_status: str = "healthy"  # healthy | needs_repair | repaired | failed
    last_successful_run: datetime | None = None
    last_failure_run: datetime | None = None
    last_qa_check: datetime | None = None
    last_repair_attempt: datetime | None = None
    last_admin_alert: datetime | None = None
    qa_failure_count: int = 0


@dataclass(slots=True)
class SourceRunOutcome:
    source: str
    found: int = 0
    validated: int = 0
    new: int = 0
    duplicates: int = 0
    skipped: int = 0
    used_url: str | None = None
    used_pattern: str | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class RepairStep:
    name: str
    success: bool
    message: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RepairOutcome:
    source: str
    success: bool
    state: ScraperHealthState
    steps: list[RepairStep] = field(default_factory=list)
    verified: bool | None = None


@dataclass(slots=True)
class CircuitBreakerState:
    consecutive_failures: int = 0
    last_failure_at: datetime | None = None
    paused_until: datetime | None = None
    max_failures: int = 3
    pause_duration_minutes: int = 60
    id: str | None = None


@dataclass(slots=True)
class TestResult:
    __test__ = False

    test_name: str
    status: str  # passed | failed | skipped
    test_target: str | None = None
    error_message: str | None = None
    test_data: dict[str, Any] = field(default_factory=dict)
    quality_score: int | None = None
    response_time_ms: int | None = None


@dataclass(slots=True)
class TestRun:
    __test__ = False

    id: str
    status: str  # idle | running | completed | failed
    started_at: datetime
    test_user_id: str | None = None
    test_property_id: str | None = None
    results: list[TestResult] = field(default_factory=list)


@dataclass(slots=True)
class AdminAlert:
    alert_type: str
    severity: str  # warning | critical | emergency
    title: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    test_run_id: str | None = None
    id: str | None = None
    status: str = "pending"
    created_at: datetime | None = None


@dataclass(slots=True)
class SystemIssue:
    category: str  # qa_failure | scraper_health | notification_system
    severity: str  # medium | high | critical
    description: str
    details: dict[str, Any] = field(default_factory=dict)
