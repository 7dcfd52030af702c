"""Anthropic tool definition and prompt builder for email analysis."""

from html.parser import HTMLParser
from typing import Any

from mailledger.inbox.types import EmailMessage

# Body characters sent to the oracle, counted after HTML stripping.
BODY_CHAR_LIMIT = 3_000

TOOL_NAME = "record_email_analysis"


# ── HTML to text ───────────────────────────────────────────────────────────────

_INVISIBLE_TAGS = frozenset({"script", "style", "head", "title"})


class _VisibleText(HTMLParser):
    """Collects text nodes outside script/style/head."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.chunks: list[str] = []
        self._hidden: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in _INVISIBLE_TAGS:
            self._hidden.append(tag)

    def handle_endtag(self, tag: str) -> None:
        if self._hidden and self._hidden[-1] == tag:
            self._hidden.pop()

    def handle_data(self, data: str) -> None:
        if not self._hidden and data.strip():
            self.chunks.append(" ".join(data.split()))


def strip_html(text: str) -> str:
    """Visible text of an HTML body; plain text and tag-only input come back as-is."""
    if "<" not in text:
        return text
    parser = _VisibleText()
    parser.feed(text)
    parser.close()
    return " ".join(parser.chunks) or text


# ── Tool definition ────────────────────────────────────────────────────────────

_NULLABLE_STRING = {"type": ["string", "null"]}

#: Anthropic tool schema mirroring AnalysisResult (wire field names).
ANALYSIS_TOOL: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": "Record structured analysis of an email.",
    "input_schema": {
        "type": "object",
        "properties": {
            "emailType": {
                "type": "string",
                "enum": [
                    "purchase", "credit_card_statement", "newsletter", "personal",
                    "work", "notification", "spam", "other",
                ],
            },
            "category": {
                "type": "string",
                "description": "Shopping|Business|Personal|Travel|Finance|Marketing|Support|Other",
            },
            "priority": {"type": "string", "enum": ["high", "medium", "low"]},
            "labels": {
                "type": "array",
                "items": {"type": "string"},
                "description": "1-5 short English labels.",
            },
            "customCategory": _NULLABLE_STRING,
            "purchase": {
                "type": ["object", "null"],
                "properties": {
                    "isPurchase": {
                        "type": "boolean",
                        "description": "True only for a completed purchase, order or payment.",
                    },
                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                    "vendor": _NULLABLE_STRING,
                    "amount": {
                        "type": ["number", "null"],
                        "description": "Grand total as a plain number.",
                    },
                    "currency": {
                        "type": ["string", "null"],
                        "description": "ISO code; JPY for ¥ or 円.",
                    },
                    "orderId": _NULLABLE_STRING,
                    "items": {
                        "type": ["array", "null"],
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": {"type": "string"},
                                "quantity": {"type": "integer"},
                                "price": {"type": "number"},
                            },
                            "required": ["name"],
                        },
                    },
                    "trackingNumber": _NULLABLE_STRING,
                    "deliveryDate": {"type": ["string", "null"], "description": "YYYY-MM-DD"},
                },
                "required": ["isPurchase", "confidence"],
            },
            "contacts": {
                "type": ["array", "null"],
                "items": {
                    "type": "object",
                    "properties": {
                        "name": _NULLABLE_STRING,
                        "email": {"type": "string"},
                        "company": _NULLABLE_STRING,
                        "phone": _NULLABLE_STRING,
                        "role": _NULLABLE_STRING,
                        "relationship": {
                            "type": "string",
                            "enum": ["business", "personal", "service", "unknown"],
                        },
                    },
                    "required": ["email"],
                },
            },
            "discovery": {
                "type": ["object", "null"],
                "properties": {
                    "keyTopics": {"type": "array", "items": {"type": "string"}},
                    "actionItems": {"type": ["array", "null"], "items": {"type": "string"}},
                    "deadlines": {
                        "type": ["array", "null"],
                        "items": {
                            "type": "object",
                            "properties": {
                                "task": {"type": "string"},
                                "date": {"type": "string"},
                            },
                            "required": ["task", "date"],
                        },
                    },
                    "mentions": {"type": ["array", "null"], "items": {"type": "string"}},
                    "sentiment": {"type": "string", "enum": ["positive", "neutral", "negative"]},
                    "importance": {"type": "integer", "minimum": 1, "maximum": 10},
                },
                "required": ["keyTopics", "sentiment", "importance"],
            },
            "event": {
                "type": ["object", "null"],
                "properties": {
                    "isEvent": {"type": "boolean"},
                    "title": _NULLABLE_STRING,
                    "date": _NULLABLE_STRING,
                    "time": _NULLABLE_STRING,
                    "location": _NULLABLE_STRING,
                    "meetingLink": _NULLABLE_STRING,
                },
                "required": ["isEvent"],
            },
            "summary": {"type": "string", "description": "1-2 sentence summary."},
            "suggestedActions": {"type": ["array", "null"], "items": {"type": "string"}},
        },
        "required": ["emailType", "category", "priority", "summary"],
    },
}

_GUIDANCE = """\
Most emails are Japanese e-commerce or business mail.
- Purchases: look for 注文確認, 購入完了, 決済完了, ご注文, お買い上げ, 領収書, 請求書,
  order confirmation, payment received, invoice, receipt.
- Amount: the grand total (合計, 総額, total, 支払い金額, ご請求金額).
- Tracking: 配送番号, 追跡番号, お問い合わせ番号. Delivery: お届け予定日, 配送予定日.
- Newsletters, promotions, cart reminders and wish lists are never purchases."""


# ── Prompt builder ─────────────────────────────────────────────────────────────


def build_messages(email: EmailMessage, body_limit: int = BODY_CHAR_LIMIT) -> list[dict[str, str]]:
    """Single user message for one email: guidance, headers, then the body.

    The body falls back to the snippet, and is cut to ``body_limit``
    characters after HTML stripping.
    """
    body = strip_html(email.body or email.snippet or "")
    headers = [
        ("From", email.sender),
        ("To", email.recipient),
        ("CC", email.cc),
        ("Subject", email.subject),
    ]
    parts = [f"{name}: {value}" for name, value in headers if value]
    parts += ["", body[:body_limit]]
    if len(body) > body_limit:
        parts.append(f"[… truncated at {body_limit} characters …]")

    prompt = f"Analyse this email and report the result by calling {TOOL_NAME}.\n{_GUIDANCE}"
    return [{"role": "user", "content": prompt + "\n\n" + "\n".join(parts)}]
