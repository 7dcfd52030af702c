"""Tests for CLI commands — LedgerService is mocked, CliRunner used throughout."""

import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from click.testing import CliRunner, Result

from mailledger.config import PipelineConfig
from mailledger.processing.pipeline import BatchReport, ExtractionResponse
from mailledger.processing.types import ClassificationResult, EmailType
from mailledger.storage.models import (
    AnalysisStats,
    PurchaseRecord,
    PurchaseSummary,
    StoredAnalysis,
    VendorSummary,
)


# ── Helpers ─────────────────────────────────────────────────────────────────────


def _make_purchase(**kwargs: object) -> PurchaseRecord:
    defaults: dict[str, object] = dict(
        id="abcdef1234567890",
        vendor="Amazon",
        amount=3980.0,
        currency="JPY",
        date=datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc),
        email_id="msg_001",
        user_id="default",
        order_id="12345",
        status="Confirmed",
        category="Shopping",
    )
    return PurchaseRecord(**{**defaults, **kwargs})  # type: ignore[arg-type]


def _primary() -> ClassificationResult:
    return ClassificationResult(type=EmailType.PRIMARY, confidence=50, reasons=["Standard email"])


def _invoke(service: MagicMock, *args: str) -> Result:
    from mailledger.cli.main import cli

    runner = CliRunner()
    with patch("mailledger.cli.main.LedgerDatabase"), patch(
        "mailledger.cli.main.LedgerService", return_value=service
    ):
        return runner.invoke(cli, list(args), catch_exceptions=False)


# ── classify ────────────────────────────────────────────────────────────────────


class TestClassifyCommand:
    def test_shows_type_and_reasons(self) -> None:
        service = MagicMock()
        service.classify.return_value = (
            ClassificationResult(
                type=EmailType.NEWSLETTER, confidence=90, reasons=["Unsubscribe link"],
                newsletter_score=90,
            ),
            "Promotions",
        )
        result = _invoke(service, "classify", "--subject", "Big sale", "--body", "unsubscribe")

        assert result.exit_code == 0
        assert "newsletter" in result.output
        assert "Promotions" in result.output
        assert "Unsubscribe link" in result.output

    def test_passes_email_fields(self) -> None:
        service = MagicMock()
        service.classify.return_value = (_primary(), None)
        _invoke(service, "classify", "--subject", "Hi", "--sender", "a@b.example", "--body", "Yo")

        email = service.classify.call_args.args[0]
        assert (email.subject, email.sender, email.body) == ("Hi", "a@b.example", "Yo")

    def test_flags_ambiguous_mail(self) -> None:
        service = MagicMock()
        service.classify.return_value = (
            ClassificationResult(type=EmailType.PRIMARY, confidence=50, service_score=25),
            None,
        )
        result = _invoke(service, "classify", "--subject", "Update")
        assert "Ambiguous" in result.output


# ── extract ─────────────────────────────────────────────────────────────────────


class TestExtractCommand:
    def _email_file(self, tmp_path: Path, data: object) -> str:
        path = tmp_path / "emails.json"
        path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        return str(path)

    def _report(self) -> BatchReport:
        return BatchReport(
            responses={
                "msg_001": ExtractionResponse(
                    extracted=True,
                    classification=_primary(),
                    purchase=_make_purchase(),
                    is_new=True,
                    confidence=1.0,
                    ai_analyzed=False,
                ),
            },
            errors={"msg_002": "disk full"},
        )

    def test_table_output(self, tmp_path: Path, sample_raw_email: dict[str, str]) -> None:
        service = MagicMock()
        service.extract = AsyncMock(return_value=self._report())

        result = _invoke(service, "extract", self._email_file(tmp_path, [sample_raw_email]))

        assert result.exit_code == 0
        assert "new" in result.output
        assert "Amazon" in result.output
        assert "¥3,980" in result.output
        assert "Failed msg_002: disk full" in result.output
        emails = service.extract.await_args.args[0]
        assert [e.id for e in emails] == ["msg_001"]

    def test_json_output(self, tmp_path: Path, sample_raw_email: dict[str, str]) -> None:
        service = MagicMock()
        service.extract = AsyncMock(return_value=self._report())

        result = _invoke(service, "extract", self._email_file(tmp_path, sample_raw_email), "--json")

        payload = json.loads(result.output)
        assert payload["responses"]["msg_001"]["purchase"]["vendor"] == "Amazon"
        assert payload["errors"] == {"msg_002": "disk full"}

    def test_unreadable_file_is_a_usage_error(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{nope", encoding="utf-8")
        service = MagicMock()

        result = _invoke(service, "extract", str(path))

        assert result.exit_code == 1
        assert "cannot read" in result.output
        service.extract.assert_not_called()


# ── purchases / vendors ─────────────────────────────────────────────────────────


class TestPurchasesCommand:
    def test_empty_ledger_message(self) -> None:
        service = MagicMock()
        service.purchases.return_value = []
        result = _invoke(service, "purchases")
        assert result.exit_code == 0
        assert "No purchases stored yet" in result.output

    def test_table_and_spending_panel(self) -> None:
        service = MagicMock()
        service.purchases.return_value = [_make_purchase()]
        service.summary.return_value = PurchaseSummary(
            total_spent=3980.0,
            total_purchases=1,
            excluded_count=0,
            category_summary={"Shopping": 3980.0},
            monthly_spending={"2026-02": 3980.0},
        )
        result = _invoke(service, "purchases")

        assert result.exit_code == 0
        assert "Amazon" in result.output
        assert "¥3,980" in result.output
        assert "Spending" in result.output
        assert "2026-02" in result.output

    def test_filters_are_passed_through(self) -> None:
        service = MagicMock()
        service.purchases.return_value = []
        _invoke(service, "purchases", "--vendor", "Amazon", "--active")
        service.purchases.assert_called_once_with(vendor="Amazon", include_excluded=False)

    def test_default_includes_excluded(self) -> None:
        service = MagicMock()
        service.purchases.return_value = []
        _invoke(service, "purchases")
        service.purchases.assert_called_once_with(vendor=None, include_excluded=True)


class TestVendorsCommand:
    def test_vendor_table(self) -> None:
        service = MagicMock()
        service.vendors.return_value = [
            VendorSummary(name="Amazon", total_spent=5000.0, purchase_count=2)
        ]
        result = _invoke(service, "vendors")
        assert "Amazon" in result.output
        assert "5,000.00" in result.output

    def test_no_vendors(self) -> None:
        service = MagicMock()
        service.vendors.return_value = []
        assert "No purchases stored yet" in _invoke(service, "vendors").output


# ── exclude / include ───────────────────────────────────────────────────────────


class TestExclusionCommands:
    def test_exclude(self) -> None:
        service = MagicMock()
        service.exclude.return_value = _make_purchase(is_excluded=True, exclusion_reason="gift")
        result = _invoke(service, "exclude", "abcdef", "--reason", "gift")

        assert result.exit_code == 0
        assert "Excluded" in result.output
        service.exclude.assert_called_once_with("abcdef", "gift")

    def test_exclude_default_reason(self) -> None:
        service = MagicMock()
        service.exclude.return_value = _make_purchase()
        _invoke(service, "exclude", "abcdef")
        service.exclude.assert_called_once_with("abcdef", "manual")

    def test_exclude_unknown_id(self) -> None:
        service = MagicMock()
        service.exclude.return_value = None
        result = _invoke(service, "exclude", "missing")
        assert result.exit_code == 1
        assert "No purchase with id" in result.output

    def test_include(self) -> None:
        service = MagicMock()
        service.include.return_value = _make_purchase()
        result = _invoke(service, "include", "abcdef")
        assert result.exit_code == 0
        assert "Included" in result.output

    def test_include_unknown_id(self) -> None:
        service = MagicMock()
        service.include.return_value = None
        assert _invoke(service, "include", "missing").exit_code == 1


# ── analysis cache commands ─────────────────────────────────────────────────────


class TestAnalysisCommands:
    def test_no_newsletters(self) -> None:
        service = MagicMock()
        service.newsletters.return_value = []
        assert "No newsletters found." in _invoke(service, "newsletters").output

    def test_newsletter_table(self) -> None:
        service = MagicMock()
        service.newsletters.return_value = [
            StoredAnalysis(
                email_id="n1",
                user_id="default",
                analysis_result="{}",
                analyzed_at=datetime(2026, 2, 27, tzinfo=timezone.utc),
                email_date="2026-02-26T08:00:00+00:00",
                from_address="news@shop.example",
                subject="Weekly deals",
                was_filtered=True,
                filter_reason="promotional",
            )
        ]
        result = _invoke(service, "newsletters")
        assert "news@shop.example" in result.output
        assert "Weekly deals" in result.output
        assert "2026-02-26" in result.output

    def test_stats(self) -> None:
        service = MagicMock()
        service.stats.return_value = AnalysisStats(total_analyzed=10, total_filtered=4, days_analyzed=3)
        result = _invoke(service, "stats")
        assert "Analysed:" in result.output
        assert "Pre-filtered: 4" in result.output

    def test_prune_default_days(self) -> None:
        service = MagicMock()
        service.prune.return_value = 5
        result = _invoke(service, "prune")
        assert "Removed 5 analysis row(s)" in result.output
        service.prune.assert_called_once_with(30)

    def test_prune_custom_days(self) -> None:
        service = MagicMock()
        service.prune.return_value = 0
        _invoke(service, "prune", "--days", "7")
        service.prune.assert_called_once_with(7)


# ── watch ───────────────────────────────────────────────────────────────────────


class TestWatchCommand:
    def test_runs_the_watcher(self, tmp_path: Path) -> None:
        service = MagicMock()
        service.config = PipelineConfig()
        with patch("mailledger.agent.watcher.serve", new=AsyncMock()) as serve:
            result = _invoke(service, "watch", "--spool", str(tmp_path))

        assert result.exit_code == 0
        serve.assert_awaited_once_with(service.config, tmp_path)

    def test_defaults_to_configured_spool(self) -> None:
        service = MagicMock()
        service.config = PipelineConfig()
        with patch("mailledger.agent.watcher.serve", new=AsyncMock()) as serve:
            result = _invoke(service, "watch")

        assert "data/spool" in result.output
        serve.assert_awaited_once_with(service.config, None)


# ── cli group ───────────────────────────────────────────────────────────────────


class TestCliGroup:
    def test_user_option_overrides_config(self) -> None:
        from mailledger.cli.main import cli

        service = MagicMock()
        service.purchases.return_value = []
        with patch("mailledger.cli.main.LedgerDatabase"), patch(
            "mailledger.cli.main.LedgerService", return_value=service
        ) as service_cls:
            CliRunner().invoke(cli, ["--user", "bob", "purchases"], catch_exceptions=False)

        config = service_cls.call_args.args[0]
        assert config.user_id == "bob"

    def test_service_is_closed(self) -> None:
        service = MagicMock()
        service.purchases.return_value = []
        _invoke(service, "purchases")
        service.close.assert_called_once()
