"""Types for the classification and extraction stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from mailledger.processing.rules import AMOUNT_SANITY_BOUND
from mailledger.storage.models import PurchaseItem


class EmailType(str, Enum):
    """Coarse type assigned by the SignalScorer."""

    PRIMARY = "primary"
    NEWSLETTER = "newsletter"
    SERVICE_ANNOUNCEMENT = "service_announcement"


class EmailRole(str, Enum):
    """What a purchase email says about its purchase.

    Values rank by field-resolution priority when two emails about the same
    purchase are merged (see ``ROLE_PRIORITY``).
    """

    ORDER = "order"
    SHIPPING = "shipping"
    CANCELLATION = "cancellation"
    UNKNOWN = "unknown"


#: Higher wins when deciding whose scalar fields survive a merge.
ROLE_PRIORITY: dict[EmailRole, int] = {
    EmailRole.ORDER: 3,
    EmailRole.SHIPPING: 2,
    EmailRole.UNKNOWN: 1,
    EmailRole.CANCELLATION: 0,
}


# ── SignalScorer output ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClassificationResult:
    """Produced once per email by ``score_email`` and consumed immediately."""

    type: EmailType
    confidence: int  # 0..100
    reasons: list[str] = field(default_factory=list)
    service_score: int = 0
    newsletter_score: int = 0

    @property
    def ambiguous(self) -> bool:
        """True for primary mail that came close to being reclassified."""
        if self.type != EmailType.PRIMARY:
            return False
        return any(25 <= s < 50 for s in (self.service_score, self.newsletter_score))


# ── RegexExtractor output ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class RegexExtraction:
    """Candidate purchase fields derived from raw text by ``extract``.

    ``score`` is the keyword score after the order-id / tracking boosts, or 0
    when the amount is missing or fails the sanity bound (``is_purchase`` is
    then False).  The other fields are still reported so they can fill gaps
    in an AI result.
    """

    score: float
    amount: float
    currency: str
    vendor: str | None = None
    order_id: str | None = None
    tracking_number: str | None = None
    status: str | None = None
    payment_method: str | None = None
    items: list[PurchaseItem] = field(default_factory=list)
    category: str | None = None
    needs_ai_analysis: bool = False

    @property
    def is_purchase(self) -> bool:
        return 0 < self.amount <= AMOUNT_SANITY_BOUND
