"""RegexExtractor — purchase score and structured fields from raw text.

Used on its own when the oracle is unavailable and as a field-filler when the
oracle leaves fields null.  Everything here is a pure function of its input.
"""

from __future__ import annotations

import logging
import re

from mailledger.processing import rules
from mailledger.processing.types import RegexExtraction
from mailledger.storage.models import PurchaseItem

logger = logging.getLogger(__name__)

#: Scores in this open interval are "uncertain" and worth an oracle opinion.
_UNCERTAIN_BAND = (0.3, 0.8)

_SENDER_DOMAIN = re.compile(r"@([^.>\s]+)")


def extract(body: str, subject: str, sender: str) -> RegexExtraction:
    """Score the email as a purchase and pull out every field we can find."""
    score = purchase_score(body, subject)
    vendor = detect_vendor(sender, subject, body)
    order_id = extract_order_id(body, subject)
    amount = extract_amount(body)
    tracking_number = extract_tracking_number(body)
    items = extract_items(body)

    if order_id:
        score = min(1.0, score * 1.2)
    if tracking_number:
        score = min(1.0, score * 1.1)

    if amount <= 0 or amount > rules.AMOUNT_SANITY_BOUND:
        logger.debug("No usable amount (%s); not a purchase", amount)
        score = 0.0

    return RegexExtraction(
        score=score,
        amount=amount,
        currency=extract_currency(body),
        vendor=vendor,
        order_id=order_id,
        tracking_number=tracking_number,
        status=extract_order_status(body),
        payment_method=extract_payment_method(body),
        items=items,
        category=categorize_purchase(vendor or "Unknown", items),
        needs_ai_analysis=_UNCERTAIN_BAND[0] < score < _UNCERTAIN_BAND[1],
    )


# ── Scoring ────────────────────────────────────────────────────────────────────


def purchase_score(body: str, subject: str) -> float:
    """Weighted keyword score in [0, 1].

    0.5 per strong completion phrase, 0.2 per medium phrase, minus 0.4 per
    marketing phrase.  Any strong phrase floors the score at 0.4; three or
    more marketing phrases cap it at 0.3.
    """
    text = f"{subject} {body}".lower()
    strong = rules.count_matches(rules.STRONG_PURCHASE_RULES, text)
    medium = rules.count_matches(rules.MEDIUM_PURCHASE_RULES, text)
    negative = rules.count_matches(rules.NEGATIVE_PURCHASE_RULES, text)

    score = (
        strong * rules.STRONG_WEIGHT
        + medium * rules.MEDIUM_WEIGHT
        - negative * rules.NEGATIVE_WEIGHT
    )
    if strong > 0:
        score = max(score, rules.STRONG_FLOOR)
    if negative >= rules.NEGATIVE_CAP_THRESHOLD:
        score = min(score, rules.NEGATIVE_CAP)
    return max(0.0, min(1.0, score))


# ── Fields ─────────────────────────────────────────────────────────────────────


def detect_vendor(sender: str, subject: str, body: str) -> str | None:
    """Known vendor from the vendor table, else a whitelisted sender domain."""
    text = f"{sender} {subject} {body}".lower()
    for vendor, patterns in rules.VENDOR_PATTERNS:
        if any(p.search(text) for p in patterns):
            return vendor

    match = _SENDER_DOMAIN.search(sender or "")
    if match:
        domain = match.group(1).lower()
        if domain in rules.COMMERCE_DOMAINS:
            return domain[:1].upper() + domain[1:]
    return None


def extract_amount(body: str) -> float:
    """Largest context-qualified number in (0, 1_000_000], or 0.

    Totals are assumed to be supersets of line items, so the maximum is
    taken as the grand total.
    """
    candidates: list[float] = []
    for pattern in rules.AMOUNT_PATTERNS:
        for match in pattern.finditer(body):
            value = _to_number(match.group(1))
            if value is not None and 0 < value <= rules.MAX_AMOUNT_CANDIDATE:
                candidates.append(value)
    return max(candidates) if candidates else 0.0


def extract_currency(body: str) -> str:
    for symbol, code in rules.CURRENCY_SYMBOLS:
        if symbol in body:
            return code
    for code in rules.CURRENCY_CODES:
        if code in body:
            return code
    return rules.DEFAULT_CURRENCY


def extract_order_id(body: str, subject: str) -> str | None:
    text = f"{subject}\n{body}"
    for pattern in rules.ORDER_ID_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1).strip("-")
    return None


def extract_tracking_number(body: str) -> str | None:
    """First tracking-number match of at least nine characters."""
    for pattern in rules.TRACKING_PATTERNS:
        match = pattern.search(body)
        if match and len(match.group(1)) >= rules.MIN_TRACKING_LENGTH:
            return match.group(1)
    return None


def extract_order_status(body: str) -> str:
    for pattern, status in rules.STATUS_PATTERNS:
        if pattern.search(body):
            return status
    return rules.DEFAULT_STATUS


def extract_payment_method(body: str) -> str | None:
    for pattern in rules.PAYMENT_METHOD_PATTERNS:
        match = pattern.search(body)
        if match and match.group(1):
            method = match.group(1).strip()
            last_four = rules.CARD_LAST_FOUR.search(method)
            if last_four:
                return f"Card ending in {last_four.group(1)}"
            return method[: rules.MAX_PAYMENT_METHOD_LENGTH]
    return None


def extract_items(body: str) -> list[PurchaseItem]:
    """Itemised lines, else a single product-name line with unknown price."""
    items: list[PurchaseItem] = []
    for pattern in rules.ITEM_LINE_PATTERNS:
        for match in pattern.finditer(body):
            name, quantity, price = match.group(1), match.group(2), match.group(3)
            parsed_price = _to_number(price)
            if name and quantity and parsed_price is not None:
                items.append(
                    PurchaseItem(name=name.strip(), quantity=int(quantity), price=parsed_price)
                )
    if items:
        return items

    for pattern in rules.PRODUCT_NAME_PATTERNS:
        match = pattern.search(body)
        if match and match.group(1).strip():
            return [PurchaseItem(name=match.group(1).strip(), quantity=1, price=0.0)]
    return []


def categorize_purchase(vendor: str, items: list[PurchaseItem]) -> str:
    if vendor in rules.VENDOR_CATEGORIES:
        return rules.VENDOR_CATEGORIES[vendor]
    item_text = " ".join(i.name for i in items).lower()
    for category, keywords in rules.ITEM_CATEGORIES:
        if any(k in item_text for k in keywords):
            return category
    return rules.DEFAULT_CATEGORY


def _to_number(raw: str | None) -> float | None:
    if not raw:
        return None
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None
