"""
Unit tests for the import and enrichment pipeline.
Uses an in-memory database, tmp_path attachment storage and a Mock model client.
"""
import io
import json
from unittest.mock import Mock, patch

import pytest

from mailsearch.core.ai.enrichment import CLASSIFY_SYSTEM_PROMPT
from mailsearch.core.ai.ollama_client import LLMUnavailableError
from mailsearch.core.archive import ArchiveOpenError, EmptyArchiveError, UnsupportedArchiveError
from mailsearch.core.email.attachments import ArchiveAttachment, AttachmentExtractor, TEMP_DIR_NAME
from mailsearch.core.email.models import NormalizedMessage, ParseResult
from mailsearch.core.pipeline import ImportService
from mailsearch.core.search.vector_retriever import VectorRetriever


def json_archive(*messages) -> bytes:
    return json.dumps(list(messages), ensure_ascii=False).encode("utf-8")


def model_client(available=True):
    """Mock client that classifies everything as a meeting with one event"""
    def chat(messages, model=None):
        if messages[0]["content"] == CLASSIFY_SYSTEM_PROMPT:
            return '{"classification": "meeting", "confidence": "high"}'
        return '[{"title": "Design review", "startDate": "2025-01-14 10:00", "location": "Room 301"}]'

    client = Mock()
    client.is_available.return_value = available
    client.chat.side_effect = chat
    client.embed.return_value = [1.0, 0.0]
    return client


class TestImportArchive:
    """Test ImportService.import_archive"""

    @pytest.fixture
    def service(self, settings, repository):
        return ImportService(settings, repository, AttachmentExtractor(settings.resolved_attachments_dir))

    def test_json_import_in_batches(self, service, repository):
        """Every message is stored even when it spans several batches"""
        data = json_archive(
            {"subject": "One", "body": "first"},
            {"subject": "Two", "body": "second"},
            {"subject": "Three", "body": "third"},
        )

        result = service.import_archive("export.json", data)

        assert result.parsed_count == 3
        assert result.inserted_count == 3
        assert result.errors == []
        assert [e.subject for e in repository.get_emails(result.inserted_ids)] == ["One", "Two", "Three"]
        assert repository.stats()["imports"] == 1

    @pytest.mark.parametrize("filename", ["mailbox.mbox", "message.eml", "notes.txt"])
    def test_unsupported_type(self, service, filename):
        with pytest.raises(UnsupportedArchiveError):
            service.import_archive(filename, b"From a@b.com")

    def test_too_large(self, service):
        service.settings.max_upload_bytes = 10
        with pytest.raises(UnsupportedArchiveError):
            service.import_archive("export.json", json_archive({"subject": "x" * 50}))

    def test_empty_archive(self, service):
        with pytest.raises(EmptyArchiveError) as exc_info:
            service.import_archive("export.json", b"[]")
        assert not isinstance(exc_info.value, ArchiveOpenError)

    def test_unreadable_archive(self, service, repository):
        with pytest.raises(ArchiveOpenError):
            service.import_archive("export.json", b"{not json")
        assert repository.stats()["imports"] == 0

    def test_attachments_reconciled_to_mail_folder(self, settings, repository):
        """Attachments move from the temp folder to mail_<id> after insert"""
        attachments = AttachmentExtractor(settings.resolved_attachments_dir)

        def parse(data, options):
            refs, _ = attachments.extract(
                [ArchiveAttachment(name="agenda.txt", size=6, reader=io.BytesIO(b"agenda").read)],
                "run_000000",
                options,
            )
            return ParseResult(messages=[
                NormalizedMessage(subject="With file", attachments=refs, provisional_key="run_000000"),
            ])

        pst_parser = Mock()
        pst_parser.parse.side_effect = parse
        service = ImportService(settings, repository, attachments, pst_parser=pst_parser)

        result = service.import_archive("mailbox.pst", b"!BDN")

        mail_id = result.inserted_ids[0]
        stored = repository.get_email(mail_id).attachments[0]
        assert stored.relative_path == f"mail_{mail_id}/{stored.stored_name}"
        assert (attachments.root / stored.relative_path).read_bytes() == b"agenda"
        assert not (attachments.root / TEMP_DIR_NAME).exists()

    def test_failed_batch_recorded(self, service, repository):
        """A batch that cannot be stored is an error; later batches still go in"""
        data = json_archive({"subject": "A"}, {"subject": "B"}, {"subject": "C"})
        real_insert = repository.insert_messages
        calls = []

        def flaky_insert(batch):
            calls.append(len(batch))
            if len(calls) == 1:
                raise RuntimeError("database is locked")
            return real_insert(batch)

        with patch.object(repository, "insert_messages", side_effect=flaky_insert):
            result = service.import_archive("export.json", data)

        assert calls == [2, 1]
        assert result.inserted_count == 1
        assert result.errors == ["Failed to store messages 1-2: database is locked"]
        assert [e.subject for e in repository.get_emails(result.inserted_ids)] == ["C"]


class TestEnrichment:
    """Test ImportService.enrich"""

    def build(self, settings, repository, client):
        retriever = VectorRetriever(repository, client, chunk_size=500, chunk_overlap=100)
        return ImportService(
            settings,
            repository,
            AttachmentExtractor(settings.resolved_attachments_dir),
            client=client,
            retriever=retriever,
        )

    def test_enrich_with_model(self, settings, repository, make_message):
        service = self.build(settings, repository, model_client())
        mail_id = repository.insert_messages([make_message(subject="Design review", body="See you Tuesday")])[0]

        summary = service.enrich([mail_id])

        assert summary.processed == 1
        assert summary.classified == 1
        assert summary.chunks == 1
        assert summary.events == 1
        assert summary.used_local_fallback is False
        email = repository.get_email(mail_id)
        assert email.is_processed is True
        assert email.classification == "meeting"
        assert repository.list_events(mail_id)[0].location == "Room 301"

    def test_model_unreachable_uses_local_events(self, settings, repository, make_message):
        """Offline enrichment extracts events locally and leaves messages unprocessed"""
        client = model_client(available=False)
        service = self.build(settings, repository, client)
        mail_id = repository.insert_messages([make_message(body="Kickoff on 2025-02-03 09:00")])[0]

        summary = service.enrich([mail_id])

        assert summary.used_local_fallback is True
        assert summary.processed == 0
        assert summary.events == 1
        assert repository.list_events(mail_id)[0].start_date == "2025-02-03 09:00"
        assert repository.get_unprocessed_ids() == [mail_id]
        client.chat.assert_not_called()
        client.embed.assert_not_called()

    def test_chat_failure_mid_run(self, settings, repository, make_message):
        """Chat dropping out leaves the message unclassified with local events"""
        client = model_client()
        client.chat.side_effect = LLMUnavailableError("timed out")
        service = self.build(settings, repository, client)
        mail_id = repository.insert_messages([make_message(body="Demo 2025-03-10")])[0]

        summary = service.enrich([mail_id])

        assert summary.unclassified == 1
        assert summary.events == 1
        assert repository.get_email(mail_id).classification is None

    def test_one_failure_does_not_stop_others(self, settings, repository, make_message):
        client = model_client()
        service = self.build(settings, repository, client)
        ids = repository.insert_messages([make_message(subject="first"), make_message(subject="second")])

        with patch.object(service.retriever, "index_message", side_effect=[RuntimeError("boom"), 1]):
            summary = service.enrich(ids)

        assert summary.processed == 1
        assert summary.errors == [f"Enrichment failed for mail {ids[0]}: boom"]
        assert repository.get_unprocessed_ids() == [ids[0]]

    def test_reenrich_replaces_events(self, settings, repository, make_message):
        service = self.build(settings, repository, model_client())
        mail_id = repository.insert_messages([make_message()])[0]

        service.enrich([mail_id])
        service.enrich([mail_id])

        assert len(repository.list_events(mail_id)) == 1
        assert len(repository.load_chunks()) == 1

    def test_process_unprocessed(self, settings, repository, make_message):
        service = self.build(settings, repository, model_client())
        repository.insert_messages([make_message(), make_message()])

        assert service.process_unprocessed().processed == 2
        assert service.process_unprocessed().processed == 0


class TestResetCorpus:
    """Test ImportService.reset_corpus"""

    def test_reset_chunks_only(self, settings, repository, make_message):
        service = ImportService(settings, repository, AttachmentExtractor(settings.resolved_attachments_dir))
        mail_id = repository.insert_messages([make_message()])[0]
        repository.save_chunk(mail_id, "s", "c", [1.0])

        assert service.reset_corpus() == {"chunks": 1}
        assert repository.stats()["emails"] == 1

    def test_reset_everything(self, settings, repository, make_message):
        attachments = AttachmentExtractor(settings.resolved_attachments_dir)
        attachments.mail_dir(1).mkdir(parents=True)
        service = ImportService(settings, repository, attachments)
        repository.insert_messages([make_message()])

        counts = service.reset_corpus(everything=True)

        assert counts["emails"] == 1
        assert repository.stats()["emails"] == 0
        assert not attachments.root.exists()
