"""Validated schema for the oracle's analysis response.

The oracle's reply is never accessed as an untyped dict: it is validated into
``AnalysisResult`` and handed around as a ``ParsedAnalysis`` that is either a
value or an error message.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError


class AnalysisEmailType(str, Enum):
    PURCHASE = "purchase"
    CREDIT_CARD_STATEMENT = "credit_card_statement"
    NEWSLETTER = "newsletter"
    PERSONAL = "personal"
    WORK = "work"
    NOTIFICATION = "notification"
    SPAM = "spam"
    OTHER = "other"


class AnalysisPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class AnalysisItem(_Model):
    name: str
    quantity: int = 1
    price: float = 0.0


class PurchaseAnalysis(_Model):
    is_purchase: bool = Field(alias="isPurchase")
    confidence: float = Field(ge=0.0, le=1.0)
    vendor: str | None = None
    amount: float | None = Field(default=None, ge=0.0)
    currency: str | None = None
    order_id: str | None = Field(default=None, alias="orderId")
    items: list[AnalysisItem] | None = None
    tracking_number: str | None = Field(default=None, alias="trackingNumber")
    delivery_date: str | None = Field(default=None, alias="deliveryDate")


class ContactAnalysis(_Model):
    email: str
    name: str | None = None
    company: str | None = None
    phone: str | None = None
    role: str | None = None
    relationship: str | None = None


class Deadline(_Model):
    task: str
    date: str


class Discovery(_Model):
    key_topics: list[str] = Field(default_factory=list, alias="keyTopics")
    action_items: list[str] | None = Field(default=None, alias="actionItems")
    deadlines: list[Deadline] | None = None
    mentions: list[str] | None = None
    sentiment: Sentiment = Sentiment.NEUTRAL
    importance: int = Field(default=1, ge=1, le=10)


class EventAnalysis(_Model):
    is_event: bool = Field(alias="isEvent")
    title: str | None = None
    date: str | None = None
    time: str | None = None
    location: str | None = None
    meeting_link: str | None = Field(default=None, alias="meetingLink")


class AnalysisResult(_Model):
    """The oracle's structured view of one email."""

    email_type: AnalysisEmailType = Field(alias="emailType")
    category: str
    priority: AnalysisPriority
    labels: list[str] | None = None
    custom_category: str | None = Field(default=None, alias="customCategory")
    purchase: PurchaseAnalysis | None = None
    contacts: list[ContactAnalysis] | None = None
    discovery: Discovery | None = None
    event: EventAnalysis | None = None
    summary: str = ""
    suggested_actions: list[str] | None = Field(default=None, alias="suggestedActions")

    _filter_reason: str | None = PrivateAttr(default=None)

    @property
    def filter_reason(self) -> str | None:
        """Set when a pre-filter answered in place of the oracle."""
        return self._filter_reason

    def prefiltered(self, reason: str) -> AnalysisResult:
        copy = self.model_copy()
        copy._filter_reason = reason
        return copy

    def to_json(self) -> str:
        """Serialise with the wire (camelCase) field names."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ── Tagged parse result ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ParsedAnalysis:
    """Either a validated AnalysisResult or the reason parsing failed."""

    result: AnalysisResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


_FENCE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Return the JSON inside a markdown code fence, or the text unchanged."""
    match = _FENCE.search(text)
    return match.group(1).strip() if match else text.strip()


def parse_analysis_payload(data: Any) -> ParsedAnalysis:
    """Validate an already-decoded JSON value."""
    if not isinstance(data, dict):
        return ParsedAnalysis(error=f"expected a JSON object, got {type(data).__name__}")
    try:
        return ParsedAnalysis(result=AnalysisResult.model_validate(data))
    except ValidationError as exc:
        return ParsedAnalysis(error=f"schema validation failed: {exc.error_count()} error(s): {exc}")


def parse_analysis_text(text: str) -> ParsedAnalysis:
    """Decode and validate a JSON reply, tolerating markdown code fences."""
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        return ParsedAnalysis(error=f"invalid JSON: {exc}")
    return parse_analysis_payload(data)
