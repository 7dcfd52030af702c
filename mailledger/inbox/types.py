"""Data types for emails entering the pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

#: Epoch values at or above this are milliseconds (1e11 s is the year 5138).
_EPOCH_MS_THRESHOLD = 100_000_000_000


@dataclass(frozen=True)
class EmailMessage:
    """An email as handed to the pipeline by the caller.

    Immutable; no stage of the pipeline mutates it.  ``sender`` is the raw
    ``From`` header and may include a display name (``"Amazon <a@b.co>"``).
    """

    id: str
    subject: str
    sender: str
    body: str
    timestamp: str | int | float | None = None  # ISO-8601, RFC 2822 or epoch
    snippet: str | None = None
    recipient: str | None = None
    cc: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EmailMessage:
        """Build from a request-shaped dict.

        Accepts both the extraction boundary names (``emailId``, ``emailBody``,
        ``from``) and plain field names.
        """
        email_id = data.get("emailId") or data.get("id")
        if not email_id:
            raise ValueError("email is missing an id")
        return cls(
            id=str(email_id),
            subject=str(data.get("subject") or ""),
            sender=str(data.get("from") or data.get("sender") or ""),
            body=str(data.get("emailBody") or data.get("body") or ""),
            timestamp=data.get("timestamp"),
            snippet=data.get("snippet"),
            recipient=data.get("to") or data.get("recipient"),
            cc=data.get("cc"),
        )

    def received_at(self) -> datetime:
        """Parse ``timestamp`` into an aware datetime, falling back to now (UTC).

        The fallback is logged, since the date feeds purchase dedup.
        """
        parsed = parse_timestamp(self.timestamp)
        if parsed is not None:
            return parsed
        if self.timestamp not in (None, ""):
            logger.warning(
                "Unparseable timestamp %r on email %s; dating it now", self.timestamp, self.id
            )
        return datetime.now(timezone.utc)


def parse_timestamp(value: str | int | float | None) -> datetime | None:
    """Parse an email timestamp into an aware datetime, or None.

    Accepts ISO-8601, RFC 2822 ``Date`` headers and anything else
    ``dateutil`` understands, plus epoch numbers (or digit strings, as Gmail's
    ``internalDate``).  Epoch values of 1e11 and above are milliseconds.
    Naive results are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        if value.isdigit():
            value = int(value)

    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000 if abs(value) >= _EPOCH_MS_THRESHOLD else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
