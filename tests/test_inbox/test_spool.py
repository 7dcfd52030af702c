"""Tests for the JSON spool directory."""

import json
from pathlib import Path

import pytest

from mailledger.inbox.spool import EmailSpool, SpoolError, load_emails


def write(path: Path, data: object) -> Path:
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    return path


class TestLoadEmails:
    def test_single_object(self, tmp_path: Path, sample_raw_email: dict[str, str]) -> None:
        emails = load_emails(write(tmp_path / "one.json", sample_raw_email))
        assert [e.id for e in emails] == ["msg_001"]
        assert emails[0].subject == "ご注文確認 Order #12345"

    def test_list_of_objects(self, tmp_path: Path, sample_raw_email: dict[str, str]) -> None:
        second = {**sample_raw_email, "emailId": "msg_002"}
        emails = load_emails(write(tmp_path / "two.json", [sample_raw_email, second]))
        assert [e.id for e in emails] == ["msg_001", "msg_002"]

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SpoolError, match="cannot read"):
            load_emails(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(SpoolError):
            load_emails(tmp_path / "absent.json")

    def test_email_without_id(self, tmp_path: Path) -> None:
        with pytest.raises(SpoolError, match="missing an id"):
            load_emails(write(tmp_path / "noid.json", {"subject": "hi"}))

    def test_non_object_item(self, tmp_path: Path) -> None:
        with pytest.raises(SpoolError, match="expected an email object"):
            load_emails(write(tmp_path / "str.json", ["just a string"]))


class TestEmailSpool:
    def test_pending_in_name_order(self, tmp_path: Path, sample_raw_email: dict[str, str]) -> None:
        write(tmp_path / "b.json", {**sample_raw_email, "emailId": "b"})
        write(tmp_path / "a.json", {**sample_raw_email, "emailId": "a"})
        (tmp_path / "notes.txt").write_text("ignored")

        files = EmailSpool(tmp_path).pending()

        assert [f.path.name for f in files] == ["a.json", "b.json"]
        assert [f.emails[0].id for f in files] == ["a", "b"]

    def test_unreadable_file_moves_to_failed(self, tmp_path: Path) -> None:
        (tmp_path / "bad.json").write_text("{nope", encoding="utf-8")

        assert EmailSpool(tmp_path).pending() == []
        assert (tmp_path / "failed" / "bad.json").exists()
        assert not (tmp_path / "bad.json").exists()

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(SpoolError, match="does not exist"):
            EmailSpool(tmp_path / "absent").pending()

    def test_mark_done(self, tmp_path: Path, sample_raw_email: dict[str, str]) -> None:
        path = write(tmp_path / "a.json", sample_raw_email)
        spool = EmailSpool(tmp_path)

        spool.mark_done(path)

        assert (tmp_path / "processed" / "a.json").exists()
        assert spool.pending() == []

    def test_mark_failed(self, tmp_path: Path, sample_raw_email: dict[str, str]) -> None:
        path = write(tmp_path / "a.json", sample_raw_email)
        EmailSpool(tmp_path).mark_failed(path)
        assert (tmp_path / "failed" / "a.json").exists()
