"""AI analysis adapter — Haiku-powered structured analysis behind a two-tier cache."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

import anthropic
from anthropic import AsyncAnthropic
from anthropic.types import TextBlock, ToolUseBlock
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from mailledger.config import PipelineConfig
from mailledger.inbox.types import EmailMessage
from mailledger.processing import rules
from mailledger.processing.cache import AnalysisCache
from mailledger.processing.prompts import ANALYSIS_TOOL, BODY_CHAR_LIMIT, TOOL_NAME, build_messages
from mailledger.processing.schema import (
    AnalysisResult,
    ContactAnalysis,
    Discovery,
    ParsedAnalysis,
    parse_analysis_payload,
    parse_analysis_text,
)
from mailledger.storage.db import PersistenceError

logger = logging.getLogger(__name__)

_DEFAULT_MODEL = "claude-haiku-4-5-20251001"
_MAX_TOKENS = 2048

#: Transient API failures worth another attempt.
_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)


class AnalysisError(Exception):
    """Raised when the oracle fails to return a valid analysis."""


# ── Analyser ───────────────────────────────────────────────────────────────────


class EmailAnalyzer:
    """Sends a single email to Claude Haiku and returns a validated AnalysisResult.

    Uses Anthropic's tool_use with a forced tool_choice so the response is
    normally machine-readable; a plain-text reply holding JSON (optionally in
    markdown fences) is accepted as well.  Throttling, connection and 5xx
    errors are retried with exponential backoff.

    Without an API key the analyzer is disabled and ``analyze`` raises
    AnalysisError immediately.

    Usage::

        analyzer = EmailAnalyzer()
        result = await analyzer.analyze(email)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = _DEFAULT_MODEL,
        max_retries: int = 3,
        body_char_limit: int = BODY_CHAR_LIMIT,
        wait: wait_base | None = None,
    ) -> None:
        key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        # Retries are handled here, not by the SDK.
        self._client = AsyncAnthropic(api_key=key, max_retries=0) if key else None
        self._model = model
        self._max_retries = max(1, max_retries)
        self._body_char_limit = body_char_limit
        self._wait = wait or wait_exponential(multiplier=1, min=1, max=10)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def analyze(self, email: EmailMessage) -> AnalysisResult:
        """Analyse a single email.

        Raises:
            AnalysisError: if the analyzer is disabled, the API keeps failing,
                or the reply is not a valid analysis.
        """
        if self._client is None:
            raise AnalysisError("no Anthropic API key configured")

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries),
                wait=self._wait,
                retry=retry_if_exception_type(_RETRYABLE),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.messages.create(
                        model=self._model,
                        max_tokens=_MAX_TOKENS,
                        tools=[ANALYSIS_TOOL],  # type: ignore[list-item]
                        tool_choice={"type": "tool", "name": TOOL_NAME},
                        messages=build_messages(email, self._body_char_limit),  # type: ignore[arg-type]
                    )
        except (anthropic.APIError, RetryError) as exc:
            raise AnalysisError(f"Anthropic request failed for email {email.id!r}: {exc}") from exc

        parsed = _parse_response(response.content)
        if parsed is None:
            raise AnalysisError(
                f"Haiku did not return a {TOOL_NAME} tool call "
                f"for email {email.id!r} (stop_reason={response.stop_reason!r})"
            )
        if not parsed.ok:
            raise AnalysisError(f"Malformed analysis for email {email.id!r}: {parsed.error}")
        return parsed.result  # type: ignore[return-value]


def _parse_response(blocks: Iterable[object]) -> ParsedAnalysis | None:
    """Return the first analysis-bearing block, parsed; None if there is none."""
    for block in blocks:
        if isinstance(block, ToolUseBlock) and block.name == TOOL_NAME:
            return parse_analysis_payload(block.input)
        if isinstance(block, TextBlock) and "{" in block.text:
            return parse_analysis_text(block.text)
    return None


# ── Pre-filters ────────────────────────────────────────────────────────────────

_ANGLE_ADDRESS = re.compile(r"<(.+)>")


def sender_address(sender: str) -> str:
    """Bare address from a ``Name <addr>`` header."""
    match = _ANGLE_ADDRESS.search(sender)
    return match.group(1) if match else sender


def is_automated(sender: str, subject: str) -> bool:
    """True for system senders and auto-replies, which are never analysed."""
    return rules.count_matches(rules.AUTOMATED_SENDER_PATTERNS, sender) > 0 or (
        rules.count_matches(rules.AUTOMATED_SUBJECT_PATTERNS, subject) > 0
    )


def is_credit_card_statement(sender: str, subject: str, body: str) -> bool:
    """A card issuer's statement: aggregated charges, not a single purchase."""
    sender_lower = sender.lower()
    if not any(issuer in sender_lower for issuer in rules.CREDIT_CARD_ISSUERS):
        return False
    subject_lower = subject.lower()
    head = body.lower()[: rules.PREFILTER_BODY_CHARS]
    has_keyword = any(k in subject_lower or k in head for k in rules.STATEMENT_KEYWORDS)
    return has_keyword or bool(rules.MULTIPLE_TRANSACTIONS.search(body))


@dataclass
class SenderReputation:
    """Per-user memory of senders that keep sending promotional mail.

    A sender is marked promotional once it has been seen more than
    ``threshold`` times and a later email still carries promotional signals.
    """

    threshold: int = rules.PROMO_SENDER_FREQUENCY
    frequency: dict[str, int] = field(default_factory=dict)
    promotional: set[str] = field(default_factory=set)

    def is_known_promotional(self, address: str) -> bool:
        return address in self.promotional

    def observe(self, address: str, has_promo_signal: bool) -> None:
        seen = self.frequency.get(address, 0)
        self.frequency[address] = seen + 1
        if seen > self.threshold and has_promo_signal and address not in self.promotional:
            self.promotional.add(address)
            logger.info("Marked %s as promotional sender (seen %d times)", address, seen)


def is_promotional(sender: str, subject: str, body: str, reputation: SenderReputation) -> bool:
    """Promotional sender pattern, or promo keyword plus an unsubscribe marker."""
    address = sender_address(sender)
    if reputation.is_known_promotional(address):
        return True

    subject_lower = subject.lower()
    head = body.lower()[: rules.PREFILTER_BODY_CHARS]
    has_keyword = any(k in subject_lower or k in head for k in rules.PROMO_SUBJECT_KEYWORDS)
    has_sender = rules.count_matches(rules.PROMO_SENDER_PATTERNS, sender.lower()) > 0
    has_unsubscribe = any(m in head for m in rules.PROMO_UNSUBSCRIBE_MARKERS)

    reputation.observe(address, has_keyword or has_unsubscribe)
    return has_sender or (has_keyword and has_unsubscribe)


def _sender_contact(sender: str) -> ContactAnalysis:
    address = sender_address(sender)
    name = sender.split("<")[0].strip() or address.split("@")[0]
    return ContactAnalysis(email=address, name=name, relationship="service")


def _automated_result() -> AnalysisResult:
    return AnalysisResult(
        email_type="notification",
        category="Automated",
        priority="low",
        labels=["Automated", "System"],
        custom_category="Service Announce",
        summary="Automated notification email",
        discovery=Discovery(key_topics=[], sentiment="neutral", importance=1),
    )


def _statement_result(sender: str) -> AnalysisResult:
    return AnalysisResult(
        email_type="credit_card_statement",
        category="Finance",
        priority="high",
        labels=["Credit Card", "Statement", "Finance", "Billing"],
        custom_category="Credit Statement",
        summary="Credit card statement - contains aggregated purchases",
        discovery=Discovery(
            key_topics=["credit card", "statement", "billing"], sentiment="neutral", importance=8
        ),
        contacts=[_sender_contact(sender)],
    )


def _promotional_result(sender: str) -> AnalysisResult:
    return AnalysisResult(
        email_type="newsletter",
        category="Marketing",
        priority="low",
        labels=["Newsletter", "Promotion"],
        custom_category="Mail Magazine",
        summary="Promotional/Marketing email",
        discovery=Discovery(key_topics=["promotion", "marketing"], sentiment="neutral", importance=1),
        contacts=[_sender_contact(sender)],
    )


# ── Adapter ────────────────────────────────────────────────────────────────────


class AnalysisAdapter:
    """Pre-filters, cache, then the oracle: one email in, AnalysisResult or None out.

    Every failure (missing credentials, API errors, malformed replies)
    collapses to ``None`` so callers can fall back to regex extraction.
    Pre-filtered emails get a canned result persisted with its filter reason.
    """

    def __init__(
        self,
        analyzer: EmailAnalyzer,
        cache: AnalysisCache,
        batch_size: int = 3,
        batch_delay: float = 1.5,
        reputations: dict[str, SenderReputation] | None = None,
    ) -> None:
        self._analyzer = analyzer
        self._cache = cache
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._reputations = reputations if reputations is not None else {}

    @classmethod
    def from_config(cls, config: PipelineConfig, cache: AnalysisCache) -> AnalysisAdapter:
        analyzer = EmailAnalyzer(
            api_key=config.api_key,
            model=config.model,
            max_retries=config.max_retries,
            body_char_limit=config.body_char_limit,
        )
        return cls(analyzer, cache, config.batch_size, config.batch_delay_seconds)

    @property
    def cache(self) -> AnalysisCache:
        return self._cache

    def reputation(self, user_id: str) -> SenderReputation:
        return self._reputations.setdefault(user_id, SenderReputation())

    async def analyze(self, email: EmailMessage, user_id: str) -> AnalysisResult | None:
        canned = self._prefilter(email, user_id)
        if canned is not None:
            reason, result = canned
            result = result.prefiltered(reason)
            logger.info("Skipping %s email %s from %r", reason, email.id, email.sender)
            self._store(email, user_id, result, reason)
            return result

        cached = self._cache.lookup(email, user_id)
        if cached is not None:
            return cached

        if not self._analyzer.enabled:
            logger.debug("Analyzer disabled; no analysis for email %s", email.id)
            return None

        try:
            result = await self._analyzer.analyze(email)
        except AnalysisError as exc:
            logger.warning("Analysis failed for email %s: %s", email.id, exc)
            return None

        self._store(email, user_id, result)
        return result

    async def analyze_batch(
        self, emails: list[EmailMessage], user_id: str
    ) -> dict[str, AnalysisResult | None]:
        """Analyse emails in paced groups; one failure never aborts the batch."""
        results: dict[str, AnalysisResult | None] = {}
        semaphore = asyncio.Semaphore(self._batch_size)

        async def one(email: EmailMessage) -> None:
            async with semaphore:
                try:
                    results[email.id] = await self.analyze(email, user_id)
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Unexpected analysis failure for email %s: %s",
                        email.id,
                        exc,
                        exc_info=True,
                    )
                    results[email.id] = None

        for start in range(0, len(emails), self._batch_size):
            if start:
                await asyncio.sleep(self._batch_delay)
            group = emails[start : start + self._batch_size]
            logger.debug("Analysing batch of %d email(s)", len(group))
            await asyncio.gather(*(one(e) for e in group))
        return results

    def _prefilter(self, email: EmailMessage, user_id: str) -> tuple[str, AnalysisResult] | None:
        if is_automated(email.sender, email.subject):
            return "automated", _automated_result()
        if is_credit_card_statement(email.sender, email.subject, email.body):
            return "credit_card_statement", _statement_result(email.sender)
        if is_promotional(email.sender, email.subject, email.body, self.reputation(user_id)):
            return "promotional", _promotional_result(email.sender)
        return None

    def _store(
        self,
        email: EmailMessage,
        user_id: str,
        result: AnalysisResult,
        filter_reason: str | None = None,
    ) -> None:
        try:
            self._cache.store(email, user_id, result, filter_reason)
        except PersistenceError as exc:
            logger.error("Failed to cache analysis for email %s: %s", email.id, exc)
