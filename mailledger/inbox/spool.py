"""Spool directory of JSON email files — the local inbox feeding the watcher.

Each ``*.json`` file holds one email object or a list of them, in the shape
accepted by ``EmailMessage.from_dict``.  Files move to ``processed/`` or
``failed/`` once handled, so a file is never picked up twice.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from mailledger.inbox.types import EmailMessage

logger = logging.getLogger(__name__)

_PROCESSED = "processed"
_FAILED = "failed"


class SpoolError(Exception):
    """Raised when the spool directory or one of its files cannot be read."""


@dataclass(frozen=True)
class SpoolFile:
    path: Path
    emails: list[EmailMessage]


def load_emails(path: Path) -> list[EmailMessage]:
    """Parse a JSON file holding one email object or a list of them.

    Raises:
        SpoolError: if the file is unreadable, not JSON, or an email lacks an id.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SpoolError(f"cannot read {path}: {exc}") from exc

    items = data if isinstance(data, list) else [data]
    emails: list[EmailMessage] = []
    for item in items:
        if not isinstance(item, dict):
            raise SpoolError(f"{path}: expected an email object, got {type(item).__name__}")
        try:
            emails.append(EmailMessage.from_dict(item))
        except ValueError as exc:
            raise SpoolError(f"{path}: {exc}") from exc
    return emails


class EmailSpool:
    """A directory of pending email files."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def pending(self) -> list[SpoolFile]:
        """Return every readable pending file, oldest name first.

        Unreadable files are moved to ``failed/`` and skipped.

        Raises:
            SpoolError: if the directory itself cannot be listed.
        """
        if not self._dir.is_dir():
            raise SpoolError(f"spool directory {self._dir} does not exist")
        try:
            paths = sorted(p for p in self._dir.glob("*.json") if p.is_file())
        except OSError as exc:
            raise SpoolError(f"cannot list spool directory {self._dir}: {exc}") from exc

        files: list[SpoolFile] = []
        for path in paths:
            try:
                files.append(SpoolFile(path, load_emails(path)))
            except SpoolError as exc:
                logger.error("Skipping unreadable spool file: %s", exc)
                self.mark_failed(path)
        return files

    def mark_done(self, path: Path) -> None:
        self._move(path, _PROCESSED)

    def mark_failed(self, path: Path) -> None:
        self._move(path, _FAILED)

    def _move(self, path: Path, subdir: str) -> None:
        target = self._dir / subdir
        target.mkdir(exist_ok=True)
        shutil.move(str(path), str(target / path.name))
