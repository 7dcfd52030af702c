"""Purchase pipeline — classify, analyse, merge and reconcile one email at a time."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any

from mailledger.config import PipelineConfig
from mailledger.inbox.types import EmailMessage
from mailledger.processing.analyzer import AnalysisAdapter
from mailledger.processing.cache import AnalysisCache
from mailledger.processing.extractor import extract
from mailledger.processing.merger import merge
from mailledger.processing.reconciler import (
    CANCELLATION_EMAIL_REASON,
    PurchaseReconciler,
    Reconciliation,
    classify_email_role,
)
from mailledger.processing.schema import AnalysisResult
from mailledger.processing.signals import score_email
from mailledger.processing.types import ClassificationResult, EmailRole, EmailType
from mailledger.storage.db import LedgerDatabase
from mailledger.storage.models import PurchaseRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionResponse:
    """Result of pushing one email through the pipeline.

    ``extracted`` is False for rejected mail and for mail that holds no
    purchase; neither is an error.
    """

    extracted: bool
    classification: ClassificationResult
    purchase: PurchaseRecord | None = None
    is_new: bool = False
    confidence: float | None = None
    is_duplicate: bool = False
    ai_analyzed: bool | None = None
    is_cancellation: bool = False
    cancelled_purchase: PurchaseRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        """camelCase dict for the purchase-extraction boundary."""
        data: dict[str, Any] = {
            "extracted": self.extracted,
            "isNew": self.is_new,
            "isDuplicate": self.is_duplicate,
            "classification": {
                "type": self.classification.type.value,
                "confidence": self.classification.confidence,
                "reasons": list(self.classification.reasons),
            },
        }
        if self.purchase is not None:
            data["purchase"] = self.purchase.to_dict()
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.ai_analyzed is not None:
            data["aiAnalyzed"] = self.ai_analyzed
        if self.is_cancellation:
            data["isCancellation"] = True
        if self.cancelled_purchase is not None:
            data["cancelledPurchase"] = self.cancelled_purchase.to_dict()
        return data


@dataclass
class BatchReport:
    """Per-email outcomes of a batch; a failed email lands in ``errors`` only."""

    responses: dict[str, ExtractionResponse] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def purchases(self) -> list[PurchaseRecord]:
        return [r.purchase for r in self.responses.values() if r.extracted and r.purchase]


class PurchasePipeline:
    """Runs SignalScorer, AnalysisAdapter, ConfidenceMerger and PurchaseReconciler.

    Usage::

        pipeline = PurchasePipeline.from_config(config, db)
        response = await pipeline.extract(email, user_id="alice")
    """

    def __init__(
        self,
        adapter: AnalysisAdapter,
        reconciler: PurchaseReconciler,
        config: PipelineConfig | None = None,
        reject_types: Iterable[EmailType] = (EmailType.NEWSLETTER,),
    ) -> None:
        self._adapter = adapter
        self._reconciler = reconciler
        self._config = config or PipelineConfig()
        self._reject_types = frozenset(reject_types)

    @classmethod
    def from_config(cls, config: PipelineConfig, db: LedgerDatabase) -> PurchasePipeline:
        cache = AnalysisCache(
            db,
            ttl=timedelta(hours=config.cache_ttl_hours),
            freshness=timedelta(days=config.freshness_days),
        )
        return cls(
            AnalysisAdapter.from_config(config, cache),
            PurchaseReconciler.from_config(db, config),
            config,
        )

    @property
    def reconciler(self) -> PurchaseReconciler:
        return self._reconciler

    @property
    def adapter(self) -> AnalysisAdapter:
        return self._adapter

    async def extract(self, email: EmailMessage, user_id: str | None = None) -> ExtractionResponse:
        """Process one email.

        Raises:
            PersistenceError: if the purchase could not be written.
        """
        user = user_id or self._config.user_id
        classification = self.classify(email)
        if classification.type in self._reject_types:
            logger.debug("email=%s rejected as %s", email.id, classification.type.value)
            return ExtractionResponse(extracted=False, classification=classification)

        analysis = await self._adapter.analyze(email, user)
        return await self._finish(email, user, classification, analysis)

    async def extract_batch(
        self, emails: list[EmailMessage], user_id: str | None = None
    ) -> BatchReport:
        """Process many emails; analysis is paced in groups, reconciliation is sequential.

        No email's failure affects any other email's outcome.
        """
        user = user_id or self._config.user_id
        report = BatchReport()

        classified = [(email, self.classify(email)) for email in emails]
        to_analyse = [e for e, c in classified if c.type not in self._reject_types]
        analyses = await self._adapter.analyze_batch(to_analyse, user)

        for email, classification in classified:
            if classification.type in self._reject_types:
                report.responses[email.id] = ExtractionResponse(
                    extracted=False, classification=classification
                )
                continue
            try:
                report.responses[email.id] = await self._finish(
                    email, user, classification, analyses.get(email.id)
                )
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Extraction failed for email %s: %s",
                    email.id,
                    exc,
                    exc_info=True,
                )
                report.errors[email.id] = str(exc)

        logger.info(
            "Batch: %d email(s), %d purchase(s), %d error(s)",
            len(emails),
            len(report.purchases),
            len(report.errors),
        )
        return report

    def classify(self, email: EmailMessage) -> ClassificationResult:
        return score_email(email.subject, email.sender, email.body, email.snippet)

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _finish(
        self,
        email: EmailMessage,
        user_id: str,
        classification: ClassificationResult,
        analysis: AnalysisResult | None,
    ) -> ExtractionResponse:
        extraction = extract(email.body, email.subject, email.sender)
        candidate = merge(
            email,
            user_id,
            analysis,
            extraction,
            ai_min_confidence=self._config.ai_min_confidence,
            regex_min_score=self._config.regex_min_score,
        )
        role = classify_email_role(email.subject, email.body)

        if role == EmailRole.CANCELLATION:
            if candidate is not None:
                outcome = await self._reconciler.reconcile(candidate, role)
            else:
                outcome = await self._reconciler.cancel(
                    email.id, user_id, extraction.order_id, extraction.vendor
                )
            return self._cancellation_response(classification, candidate, outcome)

        if candidate is None:
            logger.debug("email=%s holds no purchase", email.id)
            return ExtractionResponse(
                extracted=False,
                classification=classification,
                ai_analyzed=analysis is not None and analysis.filter_reason is None,
            )

        outcome = await self._reconciler.reconcile(candidate, role)
        return ExtractionResponse(
            extracted=True,
            classification=classification,
            purchase=outcome.purchase,
            is_new=outcome.is_new,
            confidence=candidate.confidence,
            is_duplicate=outcome.is_duplicate,
            ai_analyzed=candidate.ai_analyzed,
            is_cancellation=outcome.is_cancellation,
        )

    @staticmethod
    def _cancellation_response(
        classification: ClassificationResult,
        candidate: PurchaseRecord | None,
        outcome: Reconciliation,
    ) -> ExtractionResponse:
        purchase = None
        if candidate is not None:
            purchase = replace(
                candidate,
                email_role=EmailRole.CANCELLATION.value,
                is_excluded=True,
                exclusion_reason=CANCELLATION_EMAIL_REASON,
            )
        return ExtractionResponse(
            extracted=candidate is not None,
            classification=classification,
            purchase=purchase,
            is_new=False,
            confidence=candidate.confidence if candidate else None,
            ai_analyzed=candidate.ai_analyzed if candidate else None,
            is_cancellation=True,
            cancelled_purchase=outcome.purchase,
        )
