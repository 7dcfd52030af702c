"""Core agent loop — polls the spool directory and feeds new emails to the pipeline."""

import asyncio
import logging
import signal
from contextlib import suppress
from pathlib import Path

from dotenv import load_dotenv

from mailledger.config import PipelineConfig
from mailledger.inbox.spool import EmailSpool, SpoolError
from mailledger.processing.pipeline import BatchReport, PurchasePipeline

logger = logging.getLogger(__name__)

# Upper bound on the 2**failures delay between polls
_MAX_BACKOFF_SECONDS = 300


class SpoolWatcher:
    """Polls a spool directory for email files and runs each batch through the pipeline.

    Keeps running across unreadable directories and unexpected failures,
    backing off exponentially, so the agent can run unattended.  Handled
    files are moved out of the spool, so each email is offered once.

    Usage::

        watcher = SpoolWatcher(EmailSpool("data/spool"), pipeline, user_id="alice")
        await watcher.run()
    """

    def __init__(
        self,
        spool: EmailSpool,
        pipeline: PurchasePipeline,
        user_id: str,
        poll_interval: int = 60,
    ) -> None:
        self._spool = spool
        self._pipeline = pipeline
        self._user_id = user_id
        self._poll_interval = poll_interval
        self._stop_event = asyncio.Event()

    def stop(self) -> None:
        """Ask the loop to exit once the in-flight batch is done."""
        logger.info("Stop requested — the current batch will finish first")
        self._stop_event.set()

    async def run(self) -> None:
        """Poll until stop() is called.

        After a failed poll the next one is delayed 2, 4, 8 ... seconds (capped);
        a clean poll resets the delay to the normal interval.
        """
        failures = 0
        while not self._stop_event.is_set():
            try:
                await self._poll()
            except SpoolError as exc:
                failures += 1
                logger.error("Spool unavailable (%d in a row): %s", failures, exc)
            except Exception:  # noqa: BLE001
                failures += 1
                logger.exception("Poll failed (%d in a row)", failures)
            else:
                failures = 0

            if failures:
                delay = min(2**failures, _MAX_BACKOFF_SECONDS)
                logger.info("Next poll in %ds", delay)
            else:
                delay = self._poll_interval
            await self._interruptible_sleep(delay)

        logger.info("Watcher stopped")

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _poll(self) -> BatchReport | None:
        """Process every pending spool file as one batch."""
        files = self._spool.pending()
        if not files:
            logger.debug("Poll: 0 new spool files")
            return None

        emails = [email for f in files for email in f.emails]
        logger.info("Poll: %d email(s) in %d file(s) to process", len(emails), len(files))
        report = await self._pipeline.extract_batch(emails, self._user_id)

        for spool_file in files:
            failed = [e.id for e in spool_file.emails if e.id in report.errors]
            if failed:
                logger.warning("%s: %d email(s) failed: %s", spool_file.path.name, len(failed), failed)
                self._spool.mark_failed(spool_file.path)
            else:
                self._spool.mark_done(spool_file.path)
        return report

    async def _interruptible_sleep(self, seconds: float) -> None:
        """Wait up to `seconds`, returning early once stop() is called."""
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)


# ── Entry point ────────────────────────────────────────────────────────────────


def main() -> None:
    """Start the watcher.  Called by the `mailledger-watch` entry point."""
    load_dotenv()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        asyncio.run(serve(PipelineConfig.from_env()))
    except KeyboardInterrupt:
        # Ctrl+C on Windows (no add_signal_handler) arrives here
        logger.info("Interrupted — goodbye")


async def serve(config: PipelineConfig, spool_dir: Path | None = None) -> None:
    """Async entry point: wire up signal handlers and run the watcher."""
    from mailledger.maintenance.scheduler import create_maintenance_scheduler
    from mailledger.storage.db import LedgerDatabase

    db = LedgerDatabase(db_path=config.db_path)
    pipeline = PurchasePipeline.from_config(config, db)
    scheduler = create_maintenance_scheduler(db, pipeline.adapter.cache, config)
    scheduler.start()

    spool_dir = spool_dir or config.spool_dir
    spool_dir.mkdir(parents=True, exist_ok=True)
    watcher = SpoolWatcher(
        EmailSpool(spool_dir),
        pipeline,
        user_id=config.user_id,
        poll_interval=config.poll_interval_seconds,
    )

    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, watcher.stop)
    except (NotImplementedError, AttributeError):
        pass

    try:
        await watcher.run()
    finally:
        scheduler.shutdown(wait=False)
        db.close()
