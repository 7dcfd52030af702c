"""SQLite table schemas and the record types persisted by the storage layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


# ── DDL ────────────────────────────────────────────────────────────────────────

_CREATE_EMAIL_ANALYSIS = """
CREATE TABLE IF NOT EXISTS email_analysis (
    email_id        TEXT NOT NULL,
    user_id         TEXT NOT NULL,
    analysis_result TEXT NOT NULL,
    analyzed_at     TEXT NOT NULL,
    email_date      TEXT,
    from_address    TEXT,
    subject         TEXT,
    was_filtered    INTEGER NOT NULL DEFAULT 0,
    filter_reason   TEXT,
    PRIMARY KEY (email_id, user_id)
)
"""

_CREATE_PURCHASES = """
CREATE TABLE IF NOT EXISTS purchases (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    email_id          TEXT NOT NULL,
    order_id          TEXT,
    vendor            TEXT NOT NULL,
    amount            REAL NOT NULL,
    currency          TEXT NOT NULL,
    date              TEXT NOT NULL,
    items             TEXT NOT NULL DEFAULT '[]',
    status            TEXT,
    tracking_number   TEXT,
    category          TEXT,
    payment_method    TEXT,
    delivery_date     TEXT,
    confidence        REAL NOT NULL DEFAULT 0.0,
    ai_analyzed       INTEGER NOT NULL DEFAULT 0,
    email_role        TEXT,
    email_subject     TEXT,
    email_from        TEXT,
    related_email_ids TEXT NOT NULL DEFAULT '[]',
    created_at        TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, email_id)
)
"""

_CREATE_EXCLUSIONS = """
CREATE TABLE IF NOT EXISTS exclusions (
    email_id    TEXT NOT NULL,
    user_id     TEXT NOT NULL,
    reason      TEXT,
    excluded_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (email_id, user_id)
)
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_analysis_user ON email_analysis(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_analysis_date ON email_analysis(email_date)",
    "CREATE INDEX IF NOT EXISTS idx_purchases_user ON purchases(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_exclusions_user ON exclusions(user_id)",
]

#: All DDL statements in creation order.
ALL_TABLES: list[str] = [
    _CREATE_EMAIL_ANALYSIS,
    _CREATE_PURCHASES,
    _CREATE_EXCLUSIONS,
    *_CREATE_INDEXES,
]


# ── Records ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PurchaseItem:
    name: str
    quantity: int = 1
    price: float = 0.0


@dataclass(frozen=True)
class PurchaseRecord:
    """One logical purchase, possibly backed by several emails.

    ``email_id`` is the primary source email; every other email coalesced
    into this record is listed in ``related_email_ids`` (append-only).
    ``is_excluded`` / ``exclusion_reason`` are read from the exclusions
    table, never stored on the row itself.
    """

    id: str
    vendor: str
    amount: float
    currency: str
    date: datetime
    email_id: str
    user_id: str
    order_id: str | None = None
    items: list[PurchaseItem] = field(default_factory=list)
    status: str | None = None
    tracking_number: str | None = None
    category: str | None = None
    payment_method: str | None = None
    delivery_date: str | None = None
    confidence: float = 0.0
    ai_analyzed: bool = False
    email_role: str | None = None
    email_subject: str | None = None
    email_from: str | None = None
    related_email_ids: list[str] = field(default_factory=list)
    is_excluded: bool = False
    exclusion_reason: str | None = None

    @property
    def source_email_ids(self) -> list[str]:
        """The primary email followed by every related email, without repeats."""
        return list(dict.fromkeys([self.email_id, *self.related_email_ids]))

    def to_dict(self) -> dict[str, Any]:
        """camelCase dict for the purchase-extraction boundary."""
        data = asdict(self)
        return {
            "id": data["id"],
            "orderId": data["order_id"],
            "vendor": data["vendor"],
            "amount": data["amount"],
            "currency": data["currency"],
            "date": self.date.isoformat(),
            "items": data["items"],
            "status": data["status"],
            "trackingNumber": data["tracking_number"],
            "category": data["category"],
            "paymentMethod": data["payment_method"],
            "deliveryDate": data["delivery_date"],
            "emailId": data["email_id"],
            "userId": data["user_id"],
            "confidence": data["confidence"],
            "aiAnalyzed": data["ai_analyzed"],
            "emailType": data["email_role"],
            "emailSubject": data["email_subject"],
            "emailFrom": data["email_from"],
            "relatedEmailIds": data["related_email_ids"],
            "isExcluded": data["is_excluded"],
            "exclusionReason": data["exclusion_reason"],
        }


@dataclass(frozen=True)
class StoredAnalysis:
    """A row from the email_analysis table, with the JSON blob still encoded."""

    email_id: str
    user_id: str
    analysis_result: str
    analyzed_at: datetime
    email_date: str | None
    from_address: str | None
    subject: str | None
    was_filtered: bool
    filter_reason: str | None


@dataclass(frozen=True)
class AnalysisStats:
    total_analyzed: int
    total_filtered: int
    days_analyzed: int

    #: Rough cost of one oracle call, used to report savings from filtering.
    COST_PER_CALL = 0.003

    @property
    def estimated_cost_saved(self) -> float:
        return round(self.total_filtered * self.COST_PER_CALL, 2)


@dataclass(frozen=True)
class PurchaseSummary:
    """Aggregates over a user's non-excluded purchases."""

    total_spent: float
    total_purchases: int
    excluded_count: int
    category_summary: dict[str, float]
    monthly_spending: dict[str, float]

    @property
    def average_purchase(self) -> float:
        return self.total_spent / self.total_purchases if self.total_purchases else 0.0


@dataclass(frozen=True)
class VendorSummary:
    name: str
    total_spent: float
    purchase_count: int
