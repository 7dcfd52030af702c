"""Two-tier cache in front of the analysis oracle.

Both tiers are keyed by ``(email_id, user_id)``: the memory tier is a TTL map,
the persistent tier is the ``email_analysis`` table.  A cached analysis
is only served while it is fresh: the memory tier expires entries after a TTL,
the persistent tier ignores rows older than the freshness window.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Generic, TypeVar

from mailledger.inbox.types import EmailMessage
from mailledger.processing.schema import AnalysisResult, parse_analysis_text
from mailledger.storage.db import LedgerDatabase, PersistenceError

logger = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def memory_key(email_id: str, user_id: str) -> tuple[str, str]:
    return (email_id, user_id)


# ── Memory tier ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    key: Hashable
    value: V
    created_at: datetime
    expires_at: datetime


class MemoryCache(Generic[V]):
    """In-process TTL map.

    Expired entries are never returned; they are dropped lazily on ``get`` and
    in bulk by ``purge``.  Safe under asyncio (no awaits between read and
    write), not across threads.
    """

    def __init__(self, ttl: timedelta, clock: Clock = utc_now) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: Hashable, value: V) -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(key, value, now, now + self._ttl)

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def purge(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)


# ── Two-tier analysis cache ────────────────────────────────────────────────────


class AnalysisCache:
    """Memory + SQLite cache of oracle results.

    Lookup order is persistent then memory.  A persistent hit warms the
    memory tier; a memory hit is written back to the persistent tier so a
    restart does not lose it.  ``store`` writes through to both.
    """

    def __init__(
        self,
        db: LedgerDatabase,
        ttl: timedelta = timedelta(hours=24),
        freshness: timedelta = timedelta(days=30),
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._freshness = freshness
        self._clock = clock
        self._memory: MemoryCache[AnalysisResult] = MemoryCache(ttl, clock)

    @property
    def memory(self) -> MemoryCache[AnalysisResult]:
        return self._memory

    def lookup(self, email: EmailMessage, user_id: str) -> AnalysisResult | None:
        """Return a fresh cached analysis for the email, or None."""
        stored = self._db.get_analysis(email.id, user_id)
        if stored is not None and self._is_fresh(stored.analyzed_at):
            parsed = parse_analysis_text(stored.analysis_result)
            if parsed.ok:
                logger.debug("Persistent cache hit for email %s", email.id)
                self._memory.set(memory_key(email.id, user_id), parsed.result)
                return parsed.result
            logger.warning(
                "Discarding unreadable cached analysis for email %s: %s",
                email.id,
                parsed.error,
            )

        cached = self._memory.get(memory_key(email.id, user_id))
        if cached is not None:
            logger.debug("Memory cache hit for email %s", email.id)
            try:
                self._persist(email, user_id, cached)
            except PersistenceError as exc:
                logger.error("Failed to write back cached analysis for email %s: %s", email.id, exc)
            return cached
        return None

    def store(
        self,
        email: EmailMessage,
        user_id: str,
        result: AnalysisResult,
        filter_reason: str | None = None,
    ) -> None:
        """Write-through to the memory and persistent tiers."""
        self._memory.set(memory_key(email.id, user_id), result)
        self._persist(email, user_id, result, filter_reason)

    def _persist(
        self,
        email: EmailMessage,
        user_id: str,
        result: AnalysisResult,
        filter_reason: str | None = None,
    ) -> None:
        self._db.save_analysis(
            email.id,
            user_id,
            result.to_json(),
            analyzed_at=self._clock(),
            email_date=email.received_at() if email.timestamp else None,
            from_address=email.sender,
            subject=email.subject,
            filter_reason=filter_reason,
        )

    def _is_fresh(self, analyzed_at: datetime | None) -> bool:
        if analyzed_at is None:
            return False
        return self._clock() - analyzed_at < self._freshness
