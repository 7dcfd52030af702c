"""Rule tables for the heuristic scorers.

Every heuristic in the pipeline reads from these tables rather than from
inline pattern lists, so scoring can be tested in isolation from extraction.
Tables are compiled once at import time.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class Rule:
    """A single weighted pattern.

    ``label`` is the human-readable form used in classification reasons.
    """

    pattern: re.Pattern[str]
    weight: float
    category: str
    label: str

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def keyword_rules(words: Iterable[str], weight: float, category: str) -> tuple[Rule, ...]:
    """Literal, case-insensitive substring rules."""
    return tuple(
        Rule(re.compile(re.escape(w.lower()), re.IGNORECASE), weight, category, w)
        for w in words
    )


def pattern_rules(
    patterns: Iterable[str], weight: float, category: str, flags: int = re.IGNORECASE
) -> tuple[Rule, ...]:
    """Regex rules; the pattern source doubles as the label."""
    return tuple(Rule(re.compile(p, flags), weight, category, p) for p in patterns)


def count_matches(rules: Iterable[Rule], text: str) -> int:
    """Number of distinct rules that match ``text``."""
    return sum(1 for rule in rules if rule.matches(text))


# ── SignalScorer ───────────────────────────────────────────────────────────────

SERVICE_WEIGHT = 25
SERVICE_CAP = 50
NEWSLETTER_WEIGHT = 20
NEWSLETTER_CAP = 60
MARKETING_DOMAIN_WEIGHT = 30
NO_REPLY_WEIGHT = 20
UNSUBSCRIBE_WEIGHT = 30
MANY_LINKS_WEIGHT = 20
MANY_LINKS_THRESHOLD = 7

#: Subject patterns that mark a personal thread; never reclassified.
PERSONAL_SUBJECT_RULES = pattern_rules(
    [r"^\s*(?:re|fwd?|返信|転送)\s*[:：]"], weight=0, category="personal"
) + keyword_rules(
    [
        "meeting", "appointment", "invoice", "receipt",
        "password", "verification", "confirm your",
    ],
    weight=0,
    category="personal",
)

SERVICE_RULES = keyword_rules(
    [
        "アップデート", "メンテナンス", "障害", "復旧",
        "パスワード", "認証", "ログイン", "アカウント",
        "請求書", "領収書", "支払い", "更新",
        "セキュリティ", "重要なお知らせ", "サービス",
        "update", "maintenance", "outage", "recovery",
        "password", "verification", "login", "account",
        "invoice", "receipt", "payment", "renewal",
        "security", "important notice", "service",
        "github", "gitlab", "pull request", "merge",
        "commit", "deployment", "build", "failed",
        "succeeded", "notification", "alert",
    ],
    weight=SERVICE_WEIGHT,
    category="service",
)

NEWSLETTER_RULES = keyword_rules(
    [
        "配信停止", "配信解除", "メルマガ", "メールマガジン",
        "購読解除", "登録解除", "キャンペーン情報", "お得な情報",
        "セール情報", "新商品", "期間限定", "会員限定",
        "特別価格", "クーポン", "割引", "ポイント",
        "unsubscribe", "newsletter", "promotional", "marketing",
        "special offer", "exclusive deal", "flash sale", "discount",
        "limited time", "save now", "buy now", "shop now",
        "new arrival", "trending", "hot deals", "campaign",
    ],
    weight=NEWSLETTER_WEIGHT,
    category="newsletter",
)

#: Sender fragments typical of bulk-mail service providers.
MARKETING_DOMAIN_RULES = keyword_rules(
    [
        "mailchimp.com", "sendgrid.net", "amazonses.com",
        "mailgun.org", "campaign-", "news.", "newsletter.",
        "marketing.", "email.", "mail.", "notify.", "notification.",
    ],
    weight=MARKETING_DOMAIN_WEIGHT,
    category="newsletter",
)

NO_REPLY_RULES = keyword_rules(["no-reply", "noreply"], weight=NO_REPLY_WEIGHT, category="sender")
UNSUBSCRIBE_RULES = keyword_rules(
    ["unsubscribe", "配信停止"], weight=UNSUBSCRIBE_WEIGHT, category="newsletter"
)
LINK_PATTERN = re.compile(r"https?://", re.IGNORECASE)

#: Newsletter categories in priority order; first hit wins.
NEWSLETTER_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Shopping", ("amazon", "楽天", "shopping", "order")),
    ("News", ("news", "ニュース", "daily", "weekly")),
    ("Tech", ("tech", "developer", "programming", "github")),
    ("Promotions", ("sale", "discount", "offer", "セール")),
    ("Social", ("social", "facebook", "twitter", "linkedin")),
)


# ── RegexExtractor: purchase score ─────────────────────────────────────────────

STRONG_WEIGHT = 0.5
MEDIUM_WEIGHT = 0.2
NEGATIVE_WEIGHT = 0.4
STRONG_FLOOR = 0.4
NEGATIVE_CAP = 0.3
NEGATIVE_CAP_THRESHOLD = 3

STRONG_PURCHASE_RULES = pattern_rules(
    [
        r"order\s+(?:confirmed|complete|successful|received|placed)",
        r"purchase\s+(?:complete|successful|confirmed)",
        r"payment\s+(?:received|successful|complete|confirmed|processed)",
        r"transaction\s+(?:complete|successful|approved)",
        r"your\s+order\s+has\s+been\s+(?:confirmed|placed|received)",
        r"successfully\s+(?:purchased|ordered|paid)",
        r"order\s+#\d+",
        r"invoice\s+#\d+",
        r"注文(?:が)?(?:確定|完了|確認)",
        r"購入(?:が)?(?:完了|確定)",
        r"決済(?:が)?(?:完了|成功|確定)",
        r"ご購入ありがとうございます",
        r"お買い上げ(?:ありがとう|いただき)",
        r"ご注文(?:を)?(?:承り|確認|受付)",
    ],
    weight=STRONG_WEIGHT,
    category="strong",
)

MEDIUM_PURCHASE_RULES = pattern_rules(
    [
        r"receipt",
        r"invoice",
        r"your\s+order",
        r"thank\s+you\s+for\s+your",
        r"領収書",
        r"請求書",
        r"ご注文",
    ],
    weight=MEDIUM_WEIGHT,
    category="medium",
)

NEGATIVE_PURCHASE_RULES = pattern_rules(
    [
        r"sale\s+ends\s+soon",
        r"limited\s+time\s+offer",
        r"act\s+now",
        r"click\s+here\s+to\s+save",
        r"メルマガ",
        r"キャンペーン",
        r"セール中",
        r"newsletter",
        r"unsubscribe",
        r"special\s+offer",
        r"discount\s+code",
        r"coupon",
        r"deal\s+of\s+the\s+day",
        r"flash\s+sale",
        r"今なら",
        r"限定",
        r"お得な情報",
        r"新商品のご案内",
        r"おすすめ商品",
        r"カートに追加",
        r"add\s+to\s+cart",
        r"view\s+in\s+browser",
        r"クリックして",
    ],
    weight=NEGATIVE_WEIGHT,
    category="negative",
)


# ── RegexExtractor: fields ─────────────────────────────────────────────────────

#: Known vendors in priority order.  More specific names precede the
#: generic ones they contain (Uber Eats before Uber).
VENDOR_PATTERNS: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = tuple(
    (vendor, tuple(re.compile(p, re.IGNORECASE) for p in patterns))
    for vendor, patterns in (
        ("Amazon", (r"amazon\.co", r"アマゾン")),
        ("Rakuten", (r"rakuten", r"楽天")),
        ("Yahoo Shopping", (r"yahoo", r"ヤフー")),
        ("Mercari", (r"mercari", r"メルカリ")),
        ("Apple", (r"apple\.com", r"itunes", r"app\s*store")),
        ("Google", (r"google\s*play", r"google\s*store", r"google\s*cloud")),
        ("Microsoft", (r"microsoft", r"office\s*365", r"azure")),
        ("Adobe", (r"adobe", r"creative\s*cloud")),
        ("Uber Eats", (r"ubereats", r"uber\s*eats")),
        ("Uber", (r"\buber\b",)),
        ("Netflix", (r"netflix",)),
        ("Spotify", (r"spotify",)),
        ("Steam", (r"steampowered", r"\bsteam\b", r"\bvalve\b")),
        ("PayPay", (r"paypay",)),
        ("LINE Pay", (r"line\s*pay",)),
        ("Stripe", (r"stripe",)),
        ("PayPal", (r"paypal",)),
        ("Shopify", (r"shopify",)),
        ("ZOZO", (r"zozotown", r"zozo")),
        ("UNIQLO", (r"uniqlo", r"ユニクロ")),
        ("GU", (r"\bgu\b", r"ジーユー")),
        ("Muji", (r"muji", r"無印良品")),
        ("Yodobashi", (r"yodobashi", r"ヨドバシ")),
        ("Bic Camera", (r"biccamera", r"ビックカメラ")),
    )
)

#: Sender domains accepted as a vendor when no vendor pattern matched.
COMMERCE_DOMAINS: frozenset[str] = frozenset(
    {
        "amazon", "rakuten", "yahoo", "mercari", "apple", "google",
        "microsoft", "adobe", "stripe", "paypal", "shopify", "steam",
        "netflix", "spotify", "uber", "ubereats", "paypay", "line",
        "zozo", "zozotown", "uniqlo", "gu-global", "muji", "yodobashi",
        "biccamera", "sofmap", "kojima", "edion", "yamada", "nojima",
        "bookoff", "tsutaya", "tower", "hmv", "animate", "toranoana",
        "melonbooks", "dmm", "dlsite", "booth", "suzuri", "base",
        "stores", "minne", "creema", "qoo10", "buyma", "farfetch",
        "ssense", "endclothing", "mrporter", "netaporter", "matchesfashion",
    }
)

_NUMBER = r"([0-9][0-9,]*(?:\.\d{1,2})?)"
_CURRENCY_PREFIX = r"(?:\$|¥|￥|円|€|£)?\s*"

#: Context-qualified amount patterns.  Every hit is a candidate; the maximum wins.
AMOUNT_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        rf"(?:total|合計|総額)[:：\s]*{_CURRENCY_PREFIX}{_NUMBER}",
        rf"(?:amount\s+paid|支払い金額|お支払い金額)[:：\s]*{_CURRENCY_PREFIX}{_NUMBER}",
        rf"(?:grand\s*total|総合計|合計金額)[:：\s]*{_CURRENCY_PREFIX}{_NUMBER}",
        rf"(?:payment\s+amount|決済金額|ご利用金額)[:：\s]*{_CURRENCY_PREFIX}{_NUMBER}",
        rf"(?:charged|請求金額|ご請求)[:：\s]*{_CURRENCY_PREFIX}{_NUMBER}",
        rf"(?:you\s+paid|お支払い|支払額)[:：\s]*{_CURRENCY_PREFIX}{_NUMBER}",
        rf"(?:\$|¥|￥|€|£)\s*{_NUMBER}",
        r"([0-9][0-9,]*)\s*円",
    )
)
MAX_AMOUNT_CANDIDATE = 1_000_000
AMOUNT_SANITY_BOUND = 10_000_000

CURRENCY_SYMBOLS: tuple[tuple[str, str], ...] = (
    ("$", "USD"),
    ("¥", "JPY"),
    ("￥", "JPY"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("円", "JPY"),
)
CURRENCY_CODES: tuple[str, ...] = ("USD", "EUR", "GBP", "JPY", "CAD", "AUD")
DEFAULT_CURRENCY = "USD"

# Identifiers must contain at least one digit so words like "order has been"
# never produce an order id.
_IDENT = r"([A-Z0-9-]*\d[A-Z0-9-]*)"

ORDER_ID_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        rf"\border\s*(?:#|no\.?|number|id)?\s*[:：]?\s*{_IDENT}",
        rf"注文番号\s*[:：]?\s*{_IDENT}",
        rf"\bconfirmation\s*(?:#|no\.?|number)?\s*[:：]?\s*{_IDENT}",
        rf"\binvoice\s*(?:#|no\.?|number)?\s*[:：]?\s*{_IDENT}",
    )
)

TRACKING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\btracking\s*(?:#|no\.?|number|id)?\s*[:：]?\s*([A-Z0-9]*\d[A-Z0-9]*)",
        r"(?:追跡番号|お問い合わせ番号|配送番号)\s*[:：]?\s*([A-Z0-9-]*\d[A-Z0-9-]*)",
        r"track\s*your\s*package\s*[:：]?\s*([A-Z0-9]*\d[A-Z0-9]*)",
    )
)
MIN_TRACKING_LENGTH = 9

#: Body keywords mapped to a status, first match wins.
STATUS_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(p, re.IGNORECASE), status)
    for p, status in (
        (r"shipped", "Shipped"),
        (r"delivered", "Delivered"),
        (r"processing", "Processing"),
        (r"confirmed", "Confirmed"),
        (r"発送", "Shipped"),
        (r"配達完了", "Delivered"),
        (r"処理中", "Processing"),
    )
)
DEFAULT_STATUS = "Confirmed"

PAYMENT_METHOD_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"payment\s*method\s*[:：]?\s*(.+)",
        r"paid\s*with\s*[:：]?\s*(.+)",
        r"card\s*ending\s*in\s*(\d{4})",
        r"支払い方法\s*[:：]?\s*(.+)",
    )
)
CARD_LAST_FOUR = re.compile(r"(\d{4})\s*$")
MAX_PAYMENT_METHOD_LENGTH = 50

#: Itemised lines: (name, quantity, price).
ITEM_LINE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.MULTILINE)
    for p in (
        r"^(.+?)\s+x(\d+)\s+\$?([0-9,]+\.?\d*)",
        r"^(.+?)\s+(\d+)\s*個\s+[¥￥]?([0-9,]+)",
        r"^-\s*(.+?)\s+\((\d+)\)\s+\$?([0-9,]+\.?\d*)",
    )
)
PRODUCT_NAME_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"product:\s*(.+)", r"item:\s*(.+)", r"商品名[:：]\s*(.+)")
)

VENDOR_CATEGORIES: dict[str, str] = {
    "Amazon": "Shopping",
    "Rakuten": "Shopping",
    "Apple": "Digital Services",
    "Google": "Digital Services",
    "Uber": "Transportation",
    "Netflix": "Entertainment",
    "Spotify": "Entertainment",
}
ITEM_CATEGORIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Food & Dining", ("food", "restaurant", "食")),
    ("Books & Education", ("book", "本")),
    ("Software", ("software", "app")),
    ("Travel", ("hotel", "flight")),
)
DEFAULT_CATEGORY = "Other"


# ── PurchaseReconciler: email role ─────────────────────────────────────────────

CANCELLATION_RULES = keyword_rules(
    [
        "キャンセル", "cancelled", "canceled", "cancellation",
        "取消", "refund", "返金", "order cancelled", "order canceled",
        "ご注文のキャンセル", "order has been cancelled", "order has been canceled",
        "キャンセルされました", "キャンセル完了",
    ],
    weight=0,
    category="cancellation",
)

SHIPPING_RULES = keyword_rules(
    [
        "発送", "shipped", "shipping", "dispatched", "delivered",
        "配送", "tracking", "追跡", "出荷", "on its way",
        "has been sent", "お届け",
    ],
    weight=0,
    category="shipping",
)

ORDER_RULES = keyword_rules(
    [
        "注文", "order confirmation", "order placed", "order received",
        "thank you for your order", "ご注文", "購入完了", "注文確定",
        "order #", "注文番号", "purchase confirmation",
    ],
    weight=0,
    category="order",
)


# ── AIAnalysisAdapter pre-filters ──────────────────────────────────────────────

AUTOMATED_SENDER_PATTERNS = pattern_rules(
    [
        r"noreply", r"no-reply", r"donotreply", r"mailer-daemon",
        r"postmaster", r"unsubscribe", r"notification@",
    ],
    weight=0,
    category="automated",
)

AUTOMATED_SUBJECT_PATTERNS = pattern_rules(
    [r"^auto:", r"^automatic reply", r"^out of office", r"^undelivered mail"],
    weight=0,
    category="automated",
)

CREDIT_CARD_ISSUERS: tuple[str, ...] = (
    "visa", "mastercard", "jcb", "amex", "americanexpress",
    "diners", "discover", "unionpay",
    "smbc", "mufg", "mizuho", "rakuten-card", "aeon",
    "saison", "orico", "jaccs", "cedyna", "aplus",
    "epos", "viewcard", "dccard", "uccard", "nicos",
)
STATEMENT_KEYWORDS: tuple[str, ...] = (
    "明細", "利用明細", "statement", "請求", "billing",
    "ご利用代金", "引き落とし", "支払い", "payment due",
    "カード利用", "card usage", "今月のご請求",
    "monthly statement", "月次明細",
)
MULTIPLE_TRANSACTIONS = re.compile(
    r"\d{1,2}/\d{1,2}.*¥[\d,]+.*\d{1,2}/\d{1,2}.*¥[\d,]+", re.DOTALL
)

PROMO_SUBJECT_KEYWORDS: tuple[str, ...] = (
    "sale", "セール", "キャンペーン", "campaign", "offer", "特価",
    "discount", "割引", "クーポン", "coupon", "deal", "お得",
    "limited time", "期間限定", "special", "特別", "save",
    "free shipping", "送料無料", "newsletter", "メルマガ",
    "新商品", "new arrival", "おすすめ", "recommendation",
)
PROMO_SENDER_PATTERNS = pattern_rules(
    [
        r"marketing@", r"promo@", r"newsletter@", r"noreply@",
        r"news@", r"info@", r"updates@", r"deals@",
        r"store@", r"shop@", r"sales@",
    ],
    weight=0,
    category="promotional",
)
PROMO_UNSUBSCRIBE_MARKERS: tuple[str, ...] = ("unsubscribe", "配信停止", "メール配信")
#: How much of the body the pre-filters look at.
PREFILTER_BODY_CHARS = 1_000
#: A sender seen more often than this with promotional signals is remembered.
PROMO_SENDER_FREQUENCY = 5
