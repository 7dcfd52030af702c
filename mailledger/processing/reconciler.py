"""PurchaseReconciler — coalesce emails about the same purchase into one record.

Each accepted candidate goes through a first-match-wins cascade:

1. idempotency: the email is already part of a stored purchase
2. cancellation: exclude the matching purchase and the cancellation email
3. same order id and vendor, amounts within tolerance: merge
4. same tracking number and vendor: merge
5. same vendor, amount within tolerance, dates within the window: merge
6. otherwise insert a new record

The read-modify-write of every step runs under a per-(user, vendor) lock.
Every dedup rule requires vendor equality, so two emails that could merge
always contend for the same lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import timedelta

from mailledger.config import PipelineConfig
from mailledger.processing import rules
from mailledger.processing.types import ROLE_PRIORITY, EmailRole
from mailledger.storage.db import LedgerDatabase
from mailledger.storage.models import PurchaseRecord

logger = logging.getLogger(__name__)

CANCELLED_REASON = "cancelled"
CANCELLATION_EMAIL_REASON = "cancellation_email"
MANUAL_REASON = "manual"

#: Fields filled from a lower-priority email when the record has none.
_FILLABLE = (
    "order_id",
    "tracking_number",
    "payment_method",
    "delivery_date",
    "status",
    "category",
)


def classify_email_role(subject: str, body: str) -> EmailRole:
    """Cancellation wins over everything; an order mention that is also a
    shipping notice counts as shipping."""
    text = f"{subject} {body}".lower()
    if rules.count_matches(rules.CANCELLATION_RULES, text):
        return EmailRole.CANCELLATION
    is_order = rules.count_matches(rules.ORDER_RULES, text) > 0
    is_shipping = rules.count_matches(rules.SHIPPING_RULES, text) > 0
    if is_order and not is_shipping:
        return EmailRole.ORDER
    if is_shipping:
        return EmailRole.SHIPPING
    return EmailRole.UNKNOWN


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of reconciling one email.

    ``purchase`` is the stored record the email now belongs to (for a
    cancellation, the cancelled record if one was found).
    """

    purchase: PurchaseRecord | None
    is_new: bool
    is_duplicate: bool = False
    is_cancellation: bool = False


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, ...], asyncio.Lock] = {}
        self._users: dict[tuple[str, ...], int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def __call__(self, *key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class PurchaseReconciler:
    """Applies the dedup cascade against the purchases already in the database."""

    def __init__(
        self,
        db: LedgerDatabase,
        window: timedelta = timedelta(days=7),
        amount_tolerance: float = 1.0,
    ) -> None:
        self._db = db
        self._window = window
        self._tolerance = amount_tolerance
        self._locks = KeyedLock()

    @classmethod
    def from_config(cls, db: LedgerDatabase, config: PipelineConfig) -> PurchaseReconciler:
        return cls(db, timedelta(days=config.dedup_window_days), config.amount_tolerance)

    # ── Cascade ─────────────────────────────────────────────────────────────────

    async def reconcile(self, candidate: PurchaseRecord, role: EmailRole) -> Reconciliation:
        """Store ``candidate`` or fold it into an existing purchase.

        Raises:
            PersistenceError: if a database write fails.
        """
        if role == EmailRole.CANCELLATION:
            return await self.cancel(
                candidate.email_id, candidate.user_id, candidate.order_id, candidate.vendor
            )

        async with self._locks(candidate.user_id, candidate.vendor):
            seen = self._already_seen(candidate.email_id, candidate.user_id)
            if seen is not None:
                return seen

            candidate = replace(candidate, email_role=role.value, related_email_ids=[])
            existing = self._db.get_purchases(candidate.user_id, vendor=candidate.vendor)

            by_order = self._find_by_order(candidate, existing)
            if by_order is not None:
                logger.info(
                    "email=%s merged into purchase %s (order %s)",
                    candidate.email_id,
                    by_order.id,
                    candidate.order_id,
                )
                return self._merge_fields(by_order, candidate, role)

            by_tracking = self._find_by_tracking(candidate, existing)
            if by_tracking is not None:
                logger.info(
                    "email=%s merged into purchase %s (tracking %s)",
                    candidate.email_id,
                    by_tracking.id,
                    candidate.tracking_number,
                )
                return self._link(by_tracking, candidate.email_id)

            by_window = self._find_in_window(candidate, existing)
            if by_window is not None:
                logger.info(
                    "email=%s merged into purchase %s (same amount within %s)",
                    candidate.email_id,
                    by_window.id,
                    self._window,
                )
                return self._link(by_window, candidate.email_id)

            self._db.upsert_purchase(candidate)
            logger.info(
                "email=%s new purchase %s vendor=%s amount=%s",
                candidate.email_id,
                candidate.id,
                candidate.vendor,
                candidate.amount,
            )
            return Reconciliation(self._reload(candidate), is_new=True)

    async def cancel(
        self,
        email_id: str,
        user_id: str,
        order_id: str | None,
        vendor: str | None,
    ) -> Reconciliation:
        """Exclude the purchase a cancellation email refers to, and the email itself.

        Nothing is deleted.  Without an order id and vendor no purchase can
        be identified, but the cancellation email is still excluded.
        """
        async with self._locks(user_id, vendor or ""):
            if self._db.get_exclusion(email_id, user_id) == CANCELLATION_EMAIL_REASON:
                return Reconciliation(None, is_new=False, is_cancellation=True)

            cancelled: PurchaseRecord | None = None
            if order_id and vendor:
                match = next(
                    (p for p in self._db.get_purchases(user_id, vendor=vendor) if p.order_id == order_id),
                    None,
                )
                if match is not None:
                    self._db.exclude_email(match.email_id, user_id, CANCELLED_REASON)
                    self._db.update_purchase(
                        replace(
                            match,
                            related_email_ids=_union(match.related_email_ids, [email_id]),
                        )
                    )
                    cancelled = self._reload(match)
                    logger.info("email=%s cancelled purchase %s", email_id, match.id)

            self._db.exclude_email(email_id, user_id, CANCELLATION_EMAIL_REASON)
            return Reconciliation(cancelled, is_new=False, is_cancellation=True)

    # ── Manual exclusion ────────────────────────────────────────────────────────

    def exclude(
        self, purchase_id: str, user_id: str, reason: str = MANUAL_REASON
    ) -> PurchaseRecord | None:
        """Flag a purchase as excluded; returns None if it does not exist."""
        record = self._db.get_purchase(purchase_id, user_id)
        if record is None:
            return None
        self._db.exclude_email(record.email_id, user_id, reason)
        return self._reload(record)

    def include(self, purchase_id: str, user_id: str) -> PurchaseRecord | None:
        """Clear a purchase's exclusion; returns None if it does not exist."""
        record = self._db.get_purchase(purchase_id, user_id)
        if record is None:
            return None
        self._db.include_email(record.email_id, user_id)
        return self._reload(record)

    # ── Private ─────────────────────────────────────────────────────────────────

    def _already_seen(self, email_id: str, user_id: str) -> Reconciliation | None:
        if self._db.get_exclusion(email_id, user_id) == CANCELLATION_EMAIL_REASON:
            return Reconciliation(None, is_new=False, is_cancellation=True)
        stored = self._db.get_purchase_by_email(email_id, user_id)
        if stored is None:
            return None
        logger.debug("email=%s already reconciled into purchase %s", email_id, stored.id)
        return Reconciliation(stored, is_new=False, is_duplicate=stored.email_id != email_id)

    def _find_by_order(
        self, candidate: PurchaseRecord, existing: Iterable[PurchaseRecord]
    ) -> PurchaseRecord | None:
        if not candidate.order_id:
            return None
        return next(
            (
                p
                for p in existing
                if p.order_id == candidate.order_id
                and abs(p.amount - candidate.amount) < self._tolerance
            ),
            None,
        )

    def _find_by_tracking(
        self, candidate: PurchaseRecord, existing: Iterable[PurchaseRecord]
    ) -> PurchaseRecord | None:
        if not candidate.tracking_number:
            return None
        return next(
            (p for p in existing if p.tracking_number == candidate.tracking_number),
            None,
        )

    def _find_in_window(
        self, candidate: PurchaseRecord, existing: Iterable[PurchaseRecord]
    ) -> PurchaseRecord | None:
        return next(
            (
                p
                for p in existing
                if abs(p.amount - candidate.amount) < self._tolerance
                and abs(p.date - candidate.date) < self._window
            ),
            None,
        )

    def _merge_fields(
        self, existing: PurchaseRecord, candidate: PurchaseRecord, role: EmailRole
    ) -> Reconciliation:
        """Merge an order-id match, letting the higher-priority email's fields win."""
        related = _union(existing.related_email_ids, [existing.email_id, candidate.email_id])
        existing_role = _role(existing.email_role)

        if ROLE_PRIORITY[role] > ROLE_PRIORITY[existing_role]:
            merged = replace(
                candidate,
                id=existing.id,
                tracking_number=candidate.tracking_number or existing.tracking_number,
                related_email_ids=related,
            )
            # Exclusions are keyed by the primary email; carry them over.
            if existing.is_excluded:
                self._db.exclude_email(
                    candidate.email_id, candidate.user_id, existing.exclusion_reason or MANUAL_REASON
                )
        else:
            filled = {
                name: getattr(candidate, name)
                for name in _FILLABLE
                if getattr(existing, name) is None and getattr(candidate, name) is not None
            }
            if not existing.items and candidate.items:
                filled["items"] = candidate.items
            merged = replace(existing, related_email_ids=related, **filled)

        self._db.update_purchase(merged)
        return Reconciliation(self._reload(merged), is_new=False, is_duplicate=True)

    def _link(self, existing: PurchaseRecord, email_id: str) -> Reconciliation:
        merged = replace(
            existing,
            related_email_ids=_union(existing.related_email_ids, [existing.email_id, email_id]),
        )
        self._db.update_purchase(merged)
        return Reconciliation(self._reload(merged), is_new=False, is_duplicate=True)

    def _reload(self, record: PurchaseRecord) -> PurchaseRecord:
        return self._db.get_purchase(record.id, record.user_id) or record


def _role(value: str | None) -> EmailRole:
    try:
        return EmailRole(value) if value else EmailRole.UNKNOWN
    except ValueError:
        return EmailRole.UNKNOWN


def _union(first: Iterable[str], second: Iterable[str]) -> list[str]:
    """Order-preserving union; ``related_email_ids`` only ever grows."""
    return list(dict.fromkeys([*first, *second]))
