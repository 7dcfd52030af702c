"""SignalScorer — keyword/domain scoring of raw email text.

Pure and deterministic: identical input always yields an identical
ClassificationResult.  Runs before any extraction so promotional mail can be
rejected without an oracle call.
"""

from __future__ import annotations

from mailledger.processing import rules
from mailledger.processing.types import ClassificationResult, EmailType


def score_email(
    subject: str | None,
    sender: str | None,
    body: str | None,
    snippet: str | None = None,
) -> ClassificationResult:
    """Classify an email as primary, newsletter or service announcement."""
    subject_text = (subject or "").lower()
    sender_text = (sender or "").lower()
    content = f"{body or ''} {snippet or ''}".lower()

    for rule in rules.PERSONAL_SUBJECT_RULES:
        if rule.matches(subject_text):
            return ClassificationResult(
                type=EmailType.PRIMARY,
                confidence=100,
                reasons=[f"Personal email pattern: {rule.label!r}"],
            )

    reasons: list[str] = []
    service_score = 0
    newsletter_score = 0

    for rule in rules.SERVICE_RULES:
        if rule.matches(subject_text) or rule.matches(content):
            service_score += int(rule.weight)
            reasons.append(f'Service keyword: "{rule.label}"')
            if service_score >= rules.SERVICE_CAP:
                break

    for rule in rules.NEWSLETTER_RULES:
        if rule.matches(subject_text) or rule.matches(content):
            newsletter_score += int(rule.weight)
            reasons.append(f'Newsletter keyword: "{rule.label}"')
            if newsletter_score >= rules.NEWSLETTER_CAP:
                break

    for rule in rules.MARKETING_DOMAIN_RULES:
        if rule.matches(sender_text):
            newsletter_score += int(rule.weight)
            reasons.append(f'Marketing domain: "{rule.label}"')
            break

    if any(rule.matches(sender_text) for rule in rules.NO_REPLY_RULES):
        if service_score > 0:
            service_score += rules.NO_REPLY_WEIGHT
        else:
            newsletter_score += rules.NO_REPLY_WEIGHT
        reasons.append("No-reply address")

    if any(rule.matches(content) for rule in rules.UNSUBSCRIBE_RULES):
        newsletter_score += rules.UNSUBSCRIBE_WEIGHT
        reasons.append("Unsubscribe link")

    link_count = len(rules.LINK_PATTERN.findall(content))
    if link_count > rules.MANY_LINKS_THRESHOLD:
        newsletter_score += rules.MANY_LINKS_WEIGHT
        reasons.append(f"Many links ({link_count})")

    service_score = _clamp(service_score)
    newsletter_score = _clamp(newsletter_score)

    if service_score >= 50:
        email_type, confidence = EmailType.SERVICE_ANNOUNCEMENT, service_score
    elif newsletter_score >= 50:
        email_type, confidence = EmailType.NEWSLETTER, newsletter_score
    else:
        email_type, confidence = EmailType.PRIMARY, 100
        reasons = ["Standard email", *reasons]

    return ClassificationResult(
        type=email_type,
        confidence=confidence,
        reasons=reasons,
        service_score=service_score,
        newsletter_score=newsletter_score,
    )


def categorize_newsletter(subject: str | None, sender: str | None, body: str | None) -> str:
    """Guess a display category for a newsletter."""
    content = f"{subject or ''} {sender or ''} {body or ''}".lower()
    for category, keywords in rules.NEWSLETTER_CATEGORIES:
        if any(k in content for k in keywords):
            return category
    return "General"


def _clamp(score: int) -> int:
    return max(0, min(100, score))
