"""SQLite structured storage — analyses, purchases, and exclusions."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path

from mailledger.inbox.types import parse_timestamp
from mailledger.storage.models import (
    ALL_TABLES,
    AnalysisStats,
    PurchaseItem,
    PurchaseRecord,
    PurchaseSummary,
    StoredAnalysis,
    VendorSummary,
)

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/mailledger.db")

_PURCHASE_COLUMNS = """
    p.id, p.user_id, p.email_id, p.order_id, p.vendor, p.amount, p.currency,
    p.date, p.items, p.status, p.tracking_number, p.category, p.payment_method,
    p.delivery_date, p.confidence, p.ai_analyzed, p.email_role, p.email_subject,
    p.email_from, p.related_email_ids,
    x.email_id IS NOT NULL AS is_excluded, x.reason AS exclusion_reason
"""

_PURCHASE_FROM = """
    FROM purchases p
    LEFT JOIN exclusions x ON x.email_id = p.email_id AND x.user_id = p.user_id
"""


class PersistenceError(Exception):
    """Raised when a database write fails."""


class LedgerDatabase:
    """Wraps SQLite for the email-analysis cache tier and the purchase ledger.

    Designed for single-threaded use from an async event loop — all calls are
    synchronous/blocking but fast enough for personal email volume.

    Usage::

        db = LedgerDatabase()
        db.upsert_purchase(record)
        purchases = db.get_purchases("user-1")
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    # ── Analysis tier ───────────────────────────────────────────────────────────

    def save_analysis(
        self,
        email_id: str,
        user_id: str,
        analysis_json: str,
        *,
        analyzed_at: datetime,
        email_date: datetime | None = None,
        from_address: str | None = None,
        subject: str | None = None,
        filter_reason: str | None = None,
    ) -> None:
        """Insert or refresh the analysis row for (email_id, user_id).

        A non-null ``filter_reason`` marks the row as produced by a pre-filter
        rather than by the oracle.
        """
        with self._write():
            self._conn.execute(
                """
                INSERT INTO email_analysis
                    (email_id, user_id, analysis_result, analyzed_at, email_date,
                     from_address, subject, was_filtered, filter_reason)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(email_id, user_id) DO UPDATE SET
                    analysis_result = excluded.analysis_result,
                    analyzed_at     = excluded.analyzed_at,
                    email_date      = excluded.email_date,
                    from_address    = excluded.from_address,
                    subject         = excluded.subject,
                    was_filtered    = excluded.was_filtered,
                    filter_reason   = excluded.filter_reason
                """,
                (
                    email_id,
                    user_id,
                    analysis_json,
                    _iso(analyzed_at),
                    _iso(email_date) if email_date else None,
                    from_address,
                    subject,
                    int(filter_reason is not None),
                    filter_reason,
                ),
            )

    def get_analysis(self, email_id: str, user_id: str) -> StoredAnalysis | None:
        """Return the stored analysis row, or None if the email was never analysed."""
        row = self._conn.execute(
            "SELECT * FROM email_analysis WHERE email_id = ? AND user_id = ?",
            (email_id, user_id),
        ).fetchone()
        return _to_stored_analysis(row) if row else None

    def get_recent_analyses(self, user_id: str, limit: int = 50) -> list[StoredAnalysis]:
        """Return the user's most recently analysed emails, newest first."""
        rows = self._conn.execute(
            "SELECT * FROM email_analysis WHERE user_id = ? ORDER BY analyzed_at DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [_to_stored_analysis(r) for r in rows]

    def get_analysis_stats(self, user_id: str) -> AnalysisStats:
        row = self._conn.execute(
            """
            SELECT COUNT(*)                                  AS total_analyzed,
                   COALESCE(SUM(was_filtered), 0)            AS total_filtered,
                   COUNT(DISTINCT substr(analyzed_at, 1, 10)) AS days_analyzed
            FROM email_analysis WHERE user_id = ?
            """,
            (user_id,),
        ).fetchone()
        return AnalysisStats(**dict(row))

    def get_newsletters(self, user_id: str) -> list[StoredAnalysis]:
        """Return analyses the oracle labelled as newsletters, newest first."""
        rows = self._conn.execute(
            """
            SELECT * FROM email_analysis
            WHERE user_id = ?
              AND json_extract(analysis_result, '$.emailType') = 'newsletter'
            ORDER BY email_date DESC
            """,
            (user_id,),
        ).fetchall()
        return [_to_stored_analysis(r) for r in rows]

    def clean_old_analyses(self, days: int, now: datetime | None = None) -> int:
        """Delete analyses older than ``days`` days; return the number removed."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        with self._write():
            cursor = self._conn.execute(
                "DELETE FROM email_analysis WHERE analyzed_at < ?",
                (_iso(cutoff),),
            )
        logger.info("Removed %d analyses older than %d days", cursor.rowcount, days)
        return cursor.rowcount

    # ── Purchases: write API ────────────────────────────────────────────────────

    def upsert_purchase(self, record: PurchaseRecord) -> None:
        """Insert a purchase; an existing row for (user_id, email_id) is replaced in place."""
        with self._write():
            self._conn.execute(
                """
                INSERT INTO purchases
                    (id, user_id, email_id, order_id, vendor, amount, currency, date,
                     items, status, tracking_number, category, payment_method,
                     delivery_date, confidence, ai_analyzed, email_role,
                     email_subject, email_from, related_email_ids)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, email_id) DO UPDATE SET
                    order_id          = excluded.order_id,
                    vendor            = excluded.vendor,
                    amount            = excluded.amount,
                    currency          = excluded.currency,
                    date              = excluded.date,
                    items             = excluded.items,
                    status            = excluded.status,
                    tracking_number   = excluded.tracking_number,
                    category          = excluded.category,
                    payment_method    = excluded.payment_method,
                    delivery_date     = excluded.delivery_date,
                    confidence        = excluded.confidence,
                    ai_analyzed       = excluded.ai_analyzed,
                    email_role        = excluded.email_role,
                    email_subject     = excluded.email_subject,
                    email_from        = excluded.email_from,
                    related_email_ids = excluded.related_email_ids
                """,
                _purchase_params(record),
            )

    def update_purchase(self, record: PurchaseRecord) -> None:
        """Overwrite every column of the row with ``record.id``."""
        params = _purchase_params(record)
        with self._write():
            self._conn.execute(
                """
                UPDATE purchases SET
                    user_id = ?, email_id = ?, order_id = ?, vendor = ?, amount = ?,
                    currency = ?, date = ?, items = ?, status = ?, tracking_number = ?,
                    category = ?, payment_method = ?, delivery_date = ?,
                    confidence = ?, ai_analyzed = ?, email_role = ?,
                    email_subject = ?, email_from = ?, related_email_ids = ?
                WHERE id = ?
                """,
                (*params[1:], record.id),
            )

    def delete_purchase(self, purchase_id: str, user_id: str) -> bool:
        with self._write():
            cursor = self._conn.execute(
                "DELETE FROM purchases WHERE id = ? AND user_id = ?",
                (purchase_id, user_id),
            )
        return cursor.rowcount > 0

    def exclude_email(self, email_id: str, user_id: str, reason: str) -> None:
        """Flag an email as excluded; re-excluding updates the reason."""
        with self._write():
            self._conn.execute(
                """
                INSERT INTO exclusions (email_id, user_id, reason)
                VALUES (?, ?, ?)
                ON CONFLICT(email_id, user_id) DO UPDATE SET reason = excluded.reason
                """,
                (email_id, user_id, reason),
            )

    def include_email(self, email_id: str, user_id: str) -> bool:
        """Remove an exclusion; return False if the email was not excluded."""
        with self._write():
            cursor = self._conn.execute(
                "DELETE FROM exclusions WHERE email_id = ? AND user_id = ?",
                (email_id, user_id),
            )
        return cursor.rowcount > 0

    # ── Purchases: read API ─────────────────────────────────────────────────────

    def get_purchase(self, purchase_id: str, user_id: str) -> PurchaseRecord | None:
        row = self._conn.execute(
            f"SELECT {_PURCHASE_COLUMNS} {_PURCHASE_FROM} WHERE p.id = ? AND p.user_id = ?",
            (purchase_id, user_id),
        ).fetchone()
        return _to_purchase(row) if row else None

    def get_purchase_by_email(self, email_id: str, user_id: str) -> PurchaseRecord | None:
        """Return the purchase whose primary or related emails include ``email_id``."""
        row = self._conn.execute(
            f"""
            SELECT {_PURCHASE_COLUMNS} {_PURCHASE_FROM}
            WHERE p.user_id = ?
              AND (p.email_id = ?
                   OR EXISTS (SELECT 1 FROM json_each(p.related_email_ids) j
                              WHERE j.value = ?))
            LIMIT 1
            """,
            (user_id, email_id, email_id),
        ).fetchone()
        return _to_purchase(row) if row else None

    def get_purchases(
        self,
        user_id: str,
        *,
        vendor: str | None = None,
        include_excluded: bool = True,
    ) -> list[PurchaseRecord]:
        """Return the user's purchases, newest first."""
        query = f"SELECT {_PURCHASE_COLUMNS} {_PURCHASE_FROM} WHERE p.user_id = ?"
        params: list[object] = [user_id]
        if vendor is not None:
            query += " AND p.vendor = ?"
            params.append(vendor)
        if not include_excluded:
            query += " AND x.email_id IS NULL"
        query += " ORDER BY p.date DESC"
        rows = self._conn.execute(query, params).fetchall()
        return [_to_purchase(r) for r in rows]

    def get_exclusion(self, email_id: str, user_id: str) -> str | None:
        """Return the exclusion reason for an email, or None if it is not excluded."""
        row = self._conn.execute(
            "SELECT reason FROM exclusions WHERE email_id = ? AND user_id = ?",
            (email_id, user_id),
        ).fetchone()
        if row is None:
            return None
        return row["reason"] or ""

    def get_purchase_summary(self, user_id: str) -> PurchaseSummary:
        """Totals by category and by month over non-excluded purchases."""
        purchases = self.get_purchases(user_id)
        by_category: dict[str, float] = defaultdict(float)
        by_month: dict[str, float] = defaultdict(float)
        total = 0.0
        count = 0
        for p in purchases:
            if p.is_excluded:
                continue
            total += p.amount
            count += 1
            by_category[p.category or "Other"] += p.amount
            by_month[p.date.strftime("%Y-%m")] += p.amount
        return PurchaseSummary(
            total_spent=total,
            total_purchases=count,
            excluded_count=len(purchases) - count,
            category_summary=dict(by_category),
            monthly_spending=dict(sorted(by_month.items())),
        )

    def get_vendors(self, user_id: str) -> list[VendorSummary]:
        """Spend per vendor over non-excluded purchases, largest first."""
        rows = self._conn.execute(
            f"""
            SELECT p.vendor AS name, SUM(p.amount) AS total_spent, COUNT(*) AS purchase_count
            {_PURCHASE_FROM}
            WHERE p.user_id = ? AND x.email_id IS NULL
            GROUP BY p.vendor
            ORDER BY total_spent DESC
            """,
            (user_id,),
        ).fetchall()
        return [VendorSummary(**dict(r)) for r in rows]

    # ── Private ─────────────────────────────────────────────────────────────────

    def _create_tables(self) -> None:
        with self._conn:
            for ddl in ALL_TABLES:
                self._conn.execute(ddl)

    @contextmanager
    def _write(self) -> Iterator[None]:
        """Run one write transaction, converting driver errors to PersistenceError."""
        try:
            with self._conn:
                yield
        except sqlite3.Error as exc:
            raise PersistenceError(f"database write failed: {exc}") from exc


# ── Row conversion ─────────────────────────────────────────────────────────────


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _purchase_params(record: PurchaseRecord) -> tuple[object, ...]:
    return (
        record.id,
        record.user_id,
        record.email_id,
        record.order_id,
        record.vendor,
        record.amount,
        record.currency,
        _iso(record.date),
        json.dumps([asdict(i) for i in record.items], ensure_ascii=False),
        record.status,
        record.tracking_number,
        record.category,
        record.payment_method,
        record.delivery_date,
        record.confidence,
        int(record.ai_analyzed),
        record.email_role,
        record.email_subject,
        record.email_from,
        json.dumps(record.related_email_ids),
    )


def _to_purchase(row: sqlite3.Row) -> PurchaseRecord:
    d = dict(row)
    d["date"] = parse_timestamp(d["date"])
    d["items"] = [PurchaseItem(**i) for i in json.loads(d["items"] or "[]")]
    d["related_email_ids"] = json.loads(d["related_email_ids"] or "[]")
    d["ai_analyzed"] = bool(d["ai_analyzed"])
    d["is_excluded"] = bool(d["is_excluded"])
    return PurchaseRecord(**d)


def _to_stored_analysis(row: sqlite3.Row) -> StoredAnalysis:
    d = dict(row)
    d["analyzed_at"] = parse_timestamp(d["analyzed_at"])
    d["was_filtered"] = bool(d["was_filtered"])
    return StoredAnalysis(**d)
