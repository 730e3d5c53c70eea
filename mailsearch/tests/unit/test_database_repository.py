"""
Unit tests for the mail repository.
Runs against an in-memory SQLite database.
"""
import pytest
from sqlalchemy import func, select

from mailsearch.core.database import Database, ImportLog, sanitize_for_postgres
from mailsearch.core.email.models import Classification, ClassificationResult, ExtractedEvent


class TestSanitizeForPostgres:
    """Test text sanitation before storage"""

    def test_nul_bytes_removed(self):
        assert sanitize_for_postgres("a\x00b") == "ab"

    def test_surrogates_replaced(self):
        assert "\ud800" not in sanitize_for_postgres("bad \ud800 char")

    def test_truncation(self):
        assert sanitize_for_postgres("abcdef", max_length=3) == "abc"

    def test_none(self):
        assert sanitize_for_postgres(None) is None


class TestDatabase:
    """Test connection handling"""

    def test_ping(self, database):
        assert database.ping()

    def test_file_database_creates_parent(self, tmp_path):
        db = Database(f"sqlite:///{(tmp_path / 'nested' / 'mail.db').as_posix()}")
        db.create_all()
        assert (tmp_path / "nested").is_dir()
        db.dispose()

    def test_session_scope_rolls_back(self, database):
        with pytest.raises(RuntimeError):
            with database.session_scope() as session:
                session.add(ImportLog(filename="export.json", emails_imported=0))
                session.flush()
                raise RuntimeError("abort")

        with database.session_scope() as session:
            assert session.scalar(select(func.count(ImportLog.id))) == 0


class TestMailRepository:
    """Test MailRepository operations"""

    def test_insert_returns_ids_in_order(self, repository, make_message):
        ids = repository.insert_messages([make_message(subject="A"), make_message(subject="B")])
        assert len(ids) == 2
        assert ids[0] < ids[1]
        assert [e.subject for e in repository.get_emails(list(reversed(ids)))] == ["B", "A"]

    def test_insert_with_attachments(self, repository, make_message, attachment_ref):
        message = make_message(attachments=[attachment_ref("report.pdf", "Quarterly revenue")])
        mail_id = repository.insert_messages([message])[0]

        email = repository.get_email(mail_id)
        assert len(email.attachments) == 1
        assert email.attachments[0].extracted_text == "Quarterly revenue"
        assert email.is_processed is False

    def test_update_attachment_paths(self, repository, make_message, attachment_ref):
        ref = attachment_ref("report.pdf")
        mail_id = repository.insert_messages([make_message(attachments=[ref])])[0]

        moved = ref.model_copy(update={"relative_path": f"mail_{mail_id}/{ref.stored_name}"})
        repository.update_attachment_paths(mail_id, [moved])

        assert repository.get_email(mail_id).attachments[0].relative_path == f"mail_{mail_id}/{ref.stored_name}"

    def test_nul_bytes_stored_cleanly(self, repository, make_message):
        mail_id = repository.insert_messages([make_message(body="Hello\x00 world")])[0]
        assert repository.get_email(mail_id).body == "Hello world"

    def test_find_candidates_any_token(self, repository, make_message, attachment_ref):
        """Any token in any searchable column selects a message"""
        ids = repository.insert_messages([
            make_message(subject="Invoice 42", body="please pay"),
            make_message(subject="Lunch", body="nothing here", sender="finance@example.com"),
            make_message(subject="Scan", body="see file", attachments=[attachment_ref("scan.pdf", "overdue INVOICE")]),
            make_message(subject="Unrelated", body="weather"),
        ])

        found = repository.find_candidates(["invoice", "finance"])

        assert [e.id for e in found] == ids[:3]

    def test_find_candidates_escapes_wildcards(self, repository, make_message):
        repository.insert_messages([make_message(body="100% done"), make_message(body="1000 items")])
        found = repository.find_candidates(["0%"])
        assert [e.body for e in found] == ["100% done"]

    def test_find_candidates_limit(self, repository, make_message):
        repository.insert_messages([make_message(body="token") for _ in range(5)])
        assert len(repository.find_candidates(["token"], limit=3)) == 3

    def test_classification_and_processed(self, repository, make_message):
        mail_id = repository.insert_messages([make_message()])[0]

        repository.set_classification(mail_id, ClassificationResult(classification=Classification.MEETING, confidence="high"))
        repository.mark_processed(mail_id)

        email = repository.get_email(mail_id)
        assert email.classification == "meeting"
        assert email.classification_confidence == "high"
        assert email.is_processed is True
        assert repository.get_unprocessed_ids() == []

    def test_chunks(self, repository):
        chunk_id = repository.save_chunk(1, "Subject", "content", [0.1, 0.2, 0.3])
        chunks = repository.load_chunks()
        assert [c.id for c in chunks] == [chunk_id]
        assert chunks[0].embedding == [0.1, 0.2, 0.3]
        assert repository.delete_chunks_for(2) == 0
        assert repository.delete_all_chunks() == 1
        assert repository.load_chunks() == []

    def test_events_replace(self, repository, make_message):
        mail_id = repository.insert_messages([make_message()])[0]
        repository.save_events(mail_id, [ExtractedEvent(title="Review", start_date="2025-01-14 10:00")])
        repository.save_events(mail_id, [ExtractedEvent(title="Review", start_date="2025-01-15")], replace=True)

        events = repository.list_events(mail_id)
        assert [e.start_date for e in events] == ["2025-01-15"]

    def test_stats_and_delete_all(self, repository, make_message, attachment_ref):
        mail_id = repository.insert_messages([make_message(attachments=[attachment_ref()])])[0]
        repository.save_chunk(mail_id, "s", "c", [1.0])
        repository.save_events(mail_id, [ExtractedEvent(title="t", start_date="2025-01-01")])
        repository.log_import("export.json", 1, 0)

        assert repository.stats() == {
            "emails": 1, "processed": 0, "attachments": 1, "chunks": 1, "events": 1, "imports": 1,
        }

        counts = repository.delete_all()
        assert counts == {"chunks": 1, "events": 1, "attachments": 1, "emails": 1, "imports": 1}
        assert repository.stats()["emails"] == 0
