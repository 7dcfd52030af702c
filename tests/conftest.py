"""Shared pytest fixtures."""

from pathlib import Path

import pytest

from mailledger.storage.db import LedgerDatabase


@pytest.fixture
def sample_raw_email() -> dict[str, str]:
    """An order confirmation in the extraction-boundary shape."""
    return {
        "emailId": "msg_001",
        "subject": "ご注文確認 Order #12345",
        "from": "Amazon.co.jp <order@amazon.co.jp>",
        "emailBody": "ご注文ありがとうございます。\n合計 ¥3,980",
        "timestamp": "2026-02-27T09:00:00Z",
    }


@pytest.fixture
def db(tmp_path: Path) -> LedgerDatabase:
    """A fresh LedgerDatabase backed by a temp file."""
    database = LedgerDatabase(db_path=tmp_path / "test.db")
    yield database  # type: ignore[misc]
    database.close()
