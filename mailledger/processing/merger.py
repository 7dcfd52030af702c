"""ConfidenceMerger — choose between the oracle's purchase and the regex fallback."""

from __future__ import annotations

import logging
import uuid

from mailledger.inbox.types import EmailMessage
from mailledger.processing.extractor import categorize_purchase
from mailledger.processing.rules import AMOUNT_SANITY_BOUND
from mailledger.processing.schema import AnalysisResult, PurchaseAnalysis
from mailledger.processing.types import RegexExtraction
from mailledger.storage.models import PurchaseItem, PurchaseRecord

logger = logging.getLogger(__name__)


def merge(
    email: EmailMessage,
    user_id: str,
    analysis: AnalysisResult | None,
    extraction: RegexExtraction,
    *,
    ai_min_confidence: float = 0.3,
    regex_min_score: float = 0.5,
) -> PurchaseRecord | None:
    """Return a purchase candidate for the email, or None if there is none.

    The oracle's purchase wins when it claims one with enough confidence;
    its null fields are filled from the regex extraction.  Otherwise the
    regex extraction stands alone and must clear ``regex_min_score``.
    """
    purchase = analysis.purchase if analysis is not None else None
    if purchase is not None and purchase.is_purchase and purchase.confidence >= ai_min_confidence:
        return _from_ai(email, user_id, purchase, extraction)

    if extraction.score < regex_min_score:
        logger.debug("email=%s regex score %.2f below threshold", email.id, extraction.score)
        return None
    if not extraction.is_purchase or not extraction.vendor:
        logger.debug("email=%s regex extraction lacks vendor or amount", email.id)
        return None
    return _record(
        email,
        user_id,
        vendor=extraction.vendor,
        amount=extraction.amount,
        currency=extraction.currency,
        order_id=extraction.order_id,
        items=extraction.items,
        tracking_number=extraction.tracking_number,
        delivery_date=None,
        extraction=extraction,
        confidence=extraction.score,
        ai_analyzed=False,
    )


def _from_ai(
    email: EmailMessage,
    user_id: str,
    purchase: PurchaseAnalysis,
    extraction: RegexExtraction,
) -> PurchaseRecord | None:
    vendor = purchase.vendor or extraction.vendor
    amount = purchase.amount if purchase.amount is not None else extraction.amount
    if not vendor or not amount or amount <= 0 or amount > AMOUNT_SANITY_BOUND:
        logger.debug("email=%s AI purchase lacks vendor or usable amount", email.id)
        return None

    items = (
        [PurchaseItem(name=i.name, quantity=i.quantity, price=i.price) for i in purchase.items]
        if purchase.items is not None
        else extraction.items
    )
    return _record(
        email,
        user_id,
        vendor=vendor,
        amount=amount,
        currency=purchase.currency or extraction.currency,
        order_id=purchase.order_id or extraction.order_id,
        items=items,
        tracking_number=purchase.tracking_number or extraction.tracking_number,
        delivery_date=purchase.delivery_date,
        extraction=extraction,
        confidence=purchase.confidence,
        ai_analyzed=True,
    )


def _record(
    email: EmailMessage,
    user_id: str,
    *,
    vendor: str,
    amount: float,
    currency: str,
    order_id: str | None,
    items: list[PurchaseItem],
    tracking_number: str | None,
    delivery_date: str | None,
    extraction: RegexExtraction,
    confidence: float,
    ai_analyzed: bool,
) -> PurchaseRecord:
    return PurchaseRecord(
        id=uuid.uuid4().hex,
        vendor=vendor,
        amount=amount,
        currency=currency,
        date=email.received_at(),
        email_id=email.id,
        user_id=user_id,
        order_id=order_id,
        items=list(items),
        status=extraction.status,
        tracking_number=tracking_number,
        category=categorize_purchase(vendor, items),
        payment_method=extraction.payment_method,
        delivery_date=delivery_date,
        confidence=max(0.0, min(1.0, confidence)),
        ai_analyzed=ai_analyzed,
        email_subject=email.subject,
        email_from=email.sender,
    )
