"""LedgerService — coordinates the pipeline and LedgerDatabase for CLI commands."""

from __future__ import annotations

from mailledger.config import PipelineConfig
from mailledger.inbox.types import EmailMessage
from mailledger.processing.pipeline import BatchReport, PurchasePipeline
from mailledger.processing.signals import categorize_newsletter, score_email
from mailledger.processing.types import ClassificationResult, EmailType
from mailledger.storage.db import LedgerDatabase
from mailledger.storage.models import (
    AnalysisStats,
    PurchaseRecord,
    PurchaseSummary,
    StoredAnalysis,
    VendorSummary,
)


class LedgerService:
    """Coordinates PurchasePipeline and LedgerDatabase behind a single interface.

    The pipeline is built on first use, so read-only commands never construct
    an Anthropic client.

    Usage::

        service = LedgerService(config, db)
        report = await service.extract([email])
        purchases = service.purchases()
    """

    def __init__(self, config: PipelineConfig, db: LedgerDatabase) -> None:
        self.config = config
        self.db = db
        self._pipeline: PurchasePipeline | None = None

    @property
    def pipeline(self) -> PurchasePipeline:
        if self._pipeline is None:
            self._pipeline = PurchasePipeline.from_config(self.config, self.db)
        return self._pipeline

    def close(self) -> None:
        """Release underlying store resources."""
        self.db.close()

    def classify(self, email: EmailMessage) -> tuple[ClassificationResult, str | None]:
        """Signal classification, plus a newsletter category for newsletters."""
        result = score_email(email.subject, email.sender, email.body, email.snippet)
        category = None
        if result.type == EmailType.NEWSLETTER:
            category = categorize_newsletter(email.subject, email.sender, email.body)
        return result, category

    async def extract(self, emails: list[EmailMessage]) -> BatchReport:
        return await self.pipeline.extract_batch(emails, self.config.user_id)

    def purchases(self, vendor: str | None = None, include_excluded: bool = True) -> list[PurchaseRecord]:
        return self.db.get_purchases(
            self.config.user_id, vendor=vendor, include_excluded=include_excluded
        )

    def summary(self) -> PurchaseSummary:
        return self.db.get_purchase_summary(self.config.user_id)

    def vendors(self) -> list[VendorSummary]:
        return self.db.get_vendors(self.config.user_id)

    def exclude(self, purchase_id: str, reason: str) -> PurchaseRecord | None:
        return self.pipeline.reconciler.exclude(purchase_id, self.config.user_id, reason)

    def include(self, purchase_id: str) -> PurchaseRecord | None:
        return self.pipeline.reconciler.include(purchase_id, self.config.user_id)

    def newsletters(self) -> list[StoredAnalysis]:
        return self.db.get_newsletters(self.config.user_id)

    def stats(self) -> AnalysisStats:
        return self.db.get_analysis_stats(self.config.user_id)

    def prune(self, days: int) -> int:
        return self.db.clean_old_analyses(days)
