"""Tests for SpoolWatcher — the pipeline is fully mocked, the spool is a temp dir."""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from mailledger.inbox.spool import EmailSpool, SpoolError
from mailledger.inbox.types import EmailMessage
from mailledger.agent.watcher import SpoolWatcher
from mailledger.processing.pipeline import BatchReport


# ── Helpers ────────────────────────────────────────────────────────────────────


def write_spool_file(directory: Path, name: str, *ids: str) -> Path:
    path = directory / name
    emails = [
        {"emailId": i, "subject": "Test subject", "from": "sender@example.com", "emailBody": "Body."}
        for i in ids
    ]
    path.write_text(json.dumps(emails), encoding="utf-8")
    return path


def make_pipeline(errors: dict[str, str] | None = None) -> MagicMock:
    pipeline = MagicMock()
    pipeline.extract_batch = AsyncMock(return_value=BatchReport(errors=errors or {}))
    return pipeline


def make_watcher(
    spool: EmailSpool | MagicMock, pipeline: MagicMock | None = None, **kwargs: object
) -> tuple[SpoolWatcher, MagicMock]:
    pipe = pipeline or make_pipeline()
    watcher = SpoolWatcher(spool, pipe, user_id="alice", **kwargs)  # type: ignore[arg-type]
    return watcher, pipe


# ── SpoolWatcher._poll ─────────────────────────────────────────────────────────


class TestPoll:
    async def test_all_pending_emails_go_in_one_batch(self, tmp_path: Path) -> None:
        write_spool_file(tmp_path, "a.json", "a1", "a2")
        write_spool_file(tmp_path, "b.json", "b1")
        watcher, pipeline = make_watcher(EmailSpool(tmp_path))

        await watcher._poll()

        pipeline.extract_batch.assert_awaited_once()
        emails, user = pipeline.extract_batch.await_args.args
        assert [e.id for e in emails] == ["a1", "a2", "b1"]
        assert all(isinstance(e, EmailMessage) for e in emails)
        assert user == "alice"

    async def test_handled_files_move_to_processed(self, tmp_path: Path) -> None:
        write_spool_file(tmp_path, "a.json", "a1")
        watcher, _ = make_watcher(EmailSpool(tmp_path))

        await watcher._poll()

        assert (tmp_path / "processed" / "a.json").exists()
        assert not (tmp_path / "a.json").exists()

    async def test_file_with_a_failed_email_moves_to_failed(self, tmp_path: Path) -> None:
        write_spool_file(tmp_path, "a.json", "a1", "a2")
        write_spool_file(tmp_path, "b.json", "b1")
        watcher, _ = make_watcher(EmailSpool(tmp_path), make_pipeline(errors={"a2": "boom"}))

        await watcher._poll()

        assert (tmp_path / "failed" / "a.json").exists()
        assert (tmp_path / "processed" / "b.json").exists()

    async def test_empty_spool_skips_the_pipeline(self, tmp_path: Path) -> None:
        watcher, pipeline = make_watcher(EmailSpool(tmp_path))

        assert await watcher._poll() is None
        pipeline.extract_batch.assert_not_awaited()

    async def test_second_poll_does_not_reprocess(self, tmp_path: Path) -> None:
        write_spool_file(tmp_path, "a.json", "a1")
        watcher, pipeline = make_watcher(EmailSpool(tmp_path))

        await watcher._poll()
        await watcher._poll()

        assert pipeline.extract_batch.await_count == 1


# ── SpoolWatcher._interruptible_sleep ──────────────────────────────────────────


class TestInterruptibleSleep:
    async def test_returns_early_when_stopped(self, tmp_path: Path) -> None:
        watcher, _ = make_watcher(EmailSpool(tmp_path), poll_interval=60)
        watcher._stop_event.set()
        await asyncio.wait_for(watcher._interruptible_sleep(60), timeout=1.0)

    async def test_waits_full_duration_when_not_stopped(self, tmp_path: Path) -> None:
        watcher, _ = make_watcher(EmailSpool(tmp_path), poll_interval=1)
        await asyncio.wait_for(watcher._interruptible_sleep(0.05), timeout=1.0)


# ── SpoolWatcher.stop ──────────────────────────────────────────────────────────


class TestStop:
    def test_stop_sets_event(self, tmp_path: Path) -> None:
        watcher, _ = make_watcher(EmailSpool(tmp_path))
        assert not watcher._stop_event.is_set()
        watcher.stop()
        assert watcher._stop_event.is_set()


# ── SpoolWatcher.run (backoff behaviour) ───────────────────────────────────────


class TestRun:
    async def test_run_exits_cleanly_after_stop(self) -> None:
        spool = MagicMock()
        watcher, _ = make_watcher(spool, poll_interval=60)
        spool.pending.side_effect = lambda: (watcher.stop(), [])[1]

        await asyncio.wait_for(watcher.run(), timeout=2.0)

        spool.pending.assert_called_once()

    async def test_run_retries_after_spool_error(self) -> None:
        spool = MagicMock()
        watcher, _ = make_watcher(spool, poll_interval=60)
        calls = 0

        def pending() -> list[object]:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise SpoolError("spool directory missing")
            watcher.stop()
            return []

        spool.pending.side_effect = pending
        with patch("mailledger.agent.watcher._MAX_BACKOFF_SECONDS", 0):
            await asyncio.wait_for(watcher.run(), timeout=3.0)

        assert calls == 2, "expected a second poll after the spool error"

    async def test_run_survives_unexpected_errors(self, tmp_path: Path) -> None:
        write_spool_file(tmp_path, "a.json", "a1")
        pipeline = make_pipeline()
        watcher, _ = make_watcher(EmailSpool(tmp_path), pipeline, poll_interval=60)

        async def flaky(emails: list[EmailMessage], user_id: str) -> BatchReport:
            if pipeline.extract_batch.await_count == 1:
                raise RuntimeError("boom")
            watcher.stop()
            return BatchReport()

        pipeline.extract_batch.side_effect = flaky
        with patch("mailledger.agent.watcher._MAX_BACKOFF_SECONDS", 0):
            await asyncio.wait_for(watcher.run(), timeout=3.0)

        assert pipeline.extract_batch.await_count == 2
        assert (tmp_path / "processed" / "a.json").exists()
