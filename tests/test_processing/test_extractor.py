"""Tests for the RegexExtractor — scoring and field extraction."""

import pytest

from mailledger.processing.extractor import (
    categorize_purchase,
    detect_vendor,
    extract,
    extract_amount,
    extract_currency,
    extract_items,
    extract_order_id,
    extract_order_status,
    extract_payment_method,
    extract_tracking_number,
    purchase_score,
)
from mailledger.storage.models import PurchaseItem


# ── purchase_score ─────────────────────────────────────────────────────────────


class TestPurchaseScore:
    @pytest.mark.parametrize(
        "subject",
        ["Order confirmed", "Payment received", "決済完了のお知らせ", "ご購入ありがとうございます"],
    )
    def test_strong_keyword_without_negatives_scores_at_least_point_four(self, subject: str) -> None:
        assert purchase_score("", subject) >= 0.4

    def test_strong_floor_applies_despite_one_negative(self) -> None:
        # 0.5 - 0.4 = 0.1, floored back to 0.4
        assert purchase_score("coupon inside", "Order confirmed") == pytest.approx(0.4)

    def test_three_negatives_cap_at_point_three(self) -> None:
        body = "Order confirmed. Payment received. Purchase complete. newsletter coupon flash sale"
        assert purchase_score(body, "Transaction approved") <= 0.3

    def test_medium_keywords_add_point_two_each(self) -> None:
        assert purchase_score("Here is your receipt", "Receipt") == pytest.approx(0.2)
        assert purchase_score("receipt for your order", "") == pytest.approx(0.4)

    def test_clamped_to_one(self) -> None:
        body = "order confirmed payment received purchase complete transaction approved"
        assert purchase_score(body, "") == 1.0

    def test_never_negative(self) -> None:
        assert purchase_score("newsletter coupon unsubscribe", "") == 0.0

    def test_no_keywords_scores_zero(self) -> None:
        assert purchase_score("See you tomorrow", "Lunch") == 0.0


# ── Vendor ─────────────────────────────────────────────────────────────────────


class TestDetectVendor:
    def test_vendor_table_matches_sender(self) -> None:
        assert detect_vendor("order@amazon.co.jp", "", "") == "Amazon"

    def test_vendor_table_matches_japanese_name(self) -> None:
        assert detect_vendor("shop@example.jp", "楽天市場 ご注文", "") == "Rakuten"

    def test_uber_eats_wins_over_uber(self) -> None:
        assert detect_vendor("receipts@ubereats.com", "Your Uber Eats order", "") == "Uber Eats"

    def test_plain_uber(self) -> None:
        assert detect_vendor("noreply@uber.com", "Your trip with Uber", "") == "Uber"

    def test_commerce_domain_fallback(self) -> None:
        assert detect_vendor("Sales <hello@booth.pm>", "Thanks", "") == "Booth"

    def test_unknown_domain_is_rejected(self) -> None:
        assert detect_vendor("alice@example.com", "Hi", "Hello") is None


# ── Amount / currency ──────────────────────────────────────────────────────────


class TestExtractAmount:
    def test_japanese_total(self) -> None:
        assert extract_amount("合計 ¥3,980") == 3980

    def test_maximum_candidate_wins(self) -> None:
        body = "Item: $12.50\nShipping: $5.00\nTotal: $17.50"
        assert extract_amount(body) == pytest.approx(17.50)

    def test_yen_suffix(self) -> None:
        assert extract_amount("お支払い 1,200円") == 1200

    def test_candidates_above_one_million_are_ignored(self) -> None:
        assert extract_amount("Total: $2,000,000 and $50") == 50

    def test_no_amount(self) -> None:
        assert extract_amount("Thanks for reading") == 0.0


class TestExtractCurrency:
    @pytest.mark.parametrize(
        ("body", "expected"),
        [("¥3,980", "JPY"), ("1,200円", "JPY"), ("$5", "USD"), ("€10", "EUR"), ("£3", "GBP"), ("10 CAD", "CAD")],
    )
    def test_symbols_and_codes(self, body: str, expected: str) -> None:
        assert extract_currency(body) == expected

    def test_defaults_to_usd(self) -> None:
        assert extract_currency("no money here") == "USD"


# ── Identifiers ────────────────────────────────────────────────────────────────


class TestIdentifiers:
    def test_order_id_from_subject(self) -> None:
        assert extract_order_id("", "ご注文確認 Order #12345") == "12345"

    def test_japanese_order_number(self) -> None:
        assert extract_order_id("注文番号：249-1234567-7654321", "") == "249-1234567-7654321"

    def test_order_words_are_not_ids(self) -> None:
        assert extract_order_id("Your order has been shipped", "Order update") is None

    def test_tracking_number(self) -> None:
        assert extract_tracking_number("Tracking number: 1Z999AA10123456784") == "1Z999AA10123456784"

    def test_japanese_tracking_number(self) -> None:
        assert extract_tracking_number("追跡番号：1234-5678-9012") == "1234-5678-9012"

    def test_short_tracking_number_is_rejected(self) -> None:
        assert extract_tracking_number("Tracking #12345") is None


# ── Status / payment / items / category ───────────────────────────────────────


class TestOtherFields:
    def test_status_defaults_to_confirmed(self) -> None:
        assert extract_order_status("Thanks for your purchase") == "Confirmed"

    def test_status_shipped(self) -> None:
        assert extract_order_status("Your package has shipped") == "Shipped"

    def test_status_japanese_shipped(self) -> None:
        assert extract_order_status("商品を発送しました") == "Shipped"

    def test_payment_method_card_last_four(self) -> None:
        assert extract_payment_method("Paid with Visa ending 4242") == "Card ending in 4242"

    def test_payment_method_text(self) -> None:
        assert extract_payment_method("支払い方法：代金引換") == "代金引換"

    def test_payment_method_absent(self) -> None:
        assert extract_payment_method("Thanks!") is None

    def test_itemised_lines(self) -> None:
        items = extract_items("Widget x2 $10.00\nGadget x1 $5.50")
        assert items == [
            PurchaseItem(name="Widget", quantity=2, price=10.0),
            PurchaseItem(name="Gadget", quantity=1, price=5.5),
        ]

    def test_product_name_fallback(self) -> None:
        assert extract_items("商品名：ワイヤレスイヤホン") == [
            PurchaseItem(name="ワイヤレスイヤホン", quantity=1, price=0.0)
        ]

    def test_no_items(self) -> None:
        assert extract_items("Thanks!") == []

    def test_vendor_category(self) -> None:
        assert categorize_purchase("Amazon", []) == "Shopping"

    def test_item_category(self) -> None:
        assert categorize_purchase("Unknown", [PurchaseItem(name="Python book")]) == "Books & Education"

    def test_default_category(self) -> None:
        assert categorize_purchase("Unknown", []) == "Other"


# ── extract ────────────────────────────────────────────────────────────────────


class TestExtract:
    def test_order_confirmation_end_to_end(self) -> None:
        result = extract("合計 ¥3,980", "ご注文確認 Order #12345", "order@amazon.co.jp")
        assert result.vendor == "Amazon"
        assert result.amount == 3980
        assert result.currency == "JPY"
        assert result.order_id == "12345"
        assert result.score >= 0.4
        assert result.status == "Confirmed"
        assert result.is_purchase is True

    def test_order_id_boosts_score(self) -> None:
        plain = extract("Here is your receipt. Total: $10", "Receipt", "shop@example.com")
        boosted = extract("Here is your receipt. Total: $10", "Receipt for order 555", "shop@example.com")
        assert plain.order_id is None
        assert plain.score == pytest.approx(0.2)
        assert boosted.order_id == "555"
        assert boosted.score == pytest.approx(0.24)

    def test_order_and_tracking_boosts_compound(self) -> None:
        body = "Order number: 98765\nTracking number: 1Z999AA10123456784\nreceipt\nTotal: $10"
        result = extract(body, "Receipt", "shop@example.com")
        # 0.2 (receipt, counted once) * 1.2 * 1.1
        assert result.score == pytest.approx(0.2 * 1.2 * 1.1)

    def test_missing_amount_is_not_a_purchase(self) -> None:
        result = extract("Order confirmed", "Order confirmed", "order@amazon.co.jp")
        assert result.amount == 0
        assert result.is_purchase is False

    def test_missing_amount_zeroes_the_score(self) -> None:
        result = extract("Order confirmed. Payment received.", "Order confirmed", "order@amazon.co.jp")
        assert result.vendor == "Amazon"
        assert result.score == 0.0
        assert result.needs_ai_analysis is False

    def test_uncertain_score_needs_ai(self) -> None:
        result = extract("Total: $10\nHere is your receipt for your order", "Receipt", "shop@example.com")
        assert 0.3 < result.score < 0.8
        assert result.needs_ai_analysis is True

    def test_confident_score_does_not_need_ai(self) -> None:
        result = extract("Order confirmed. Payment received. Total: $10", "", "shop@example.com")
        assert result.score >= 0.8
        assert result.needs_ai_analysis is False

    def test_category_comes_from_vendor(self) -> None:
        assert extract("Total: $5", "", "order@amazon.co.jp").category == "Shopping"
