"""
Import pipeline: parse an archive, store its messages, then enrich them.

Import and enrichment are separate steps. import_archive() returns as soon
as the messages are stored; enrich() is a best-effort pass over stored
rows that never undoes or fails an import.
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from mailsearch.core.ai.enrichment import classify_email, extract_events
from mailsearch.core.ai.event_heuristics import extract_events_locally
from mailsearch.core.ai.ollama_client import LLMUnavailableError, OllamaClient
from mailsearch.core.archive import (
    ArchiveOpenError, EmptyArchiveError, PstArchiveParser, UnsupportedArchiveError,
    SUPPORTED_EXTENSIONS, archive_extension, parse_archive,
)
from mailsearch.core.config import Settings
from mailsearch.core.database.connection import Database
from mailsearch.core.database.repository import MailRepository
from mailsearch.core.email.attachments import AttachmentExtractor, TEMP_DIR_NAME
from mailsearch.core.email.models import NormalizedMessage, ParseOptions
from mailsearch.core.search.vector_retriever import VectorRetriever

logger = logging.getLogger(__name__)


class ImportResult(BaseModel):
    filename: str
    parsed_count: int = 0
    inserted_ids: List[int] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)


class EnrichmentSummary(BaseModel):
    processed: int = 0
    classified: int = 0
    unclassified: int = 0
    chunks: int = 0
    events: int = 0
    used_local_fallback: bool = False
    errors: List[str] = Field(default_factory=list)


class ImportService:
    """
    Orchestrates archive import and enrichment.

    Every collaborator is passed in explicitly; build() wires the defaults
    from Settings.
    """

    def __init__(
        self,
        settings: Settings,
        repository: MailRepository,
        attachments: AttachmentExtractor,
        client: Optional[OllamaClient] = None,
        retriever: Optional[VectorRetriever] = None,
        pst_parser: Optional[PstArchiveParser] = None,
    ):
        self.settings = settings
        self.repository = repository
        self.attachments = attachments
        self.client = client
        self.retriever = retriever
        self.pst_parser = pst_parser

    @classmethod
    def build(cls, settings: Settings, database: Database, client: Optional[OllamaClient] = None) -> "ImportService":
        repository = MailRepository(database)
        client = client or OllamaClient.from_settings(settings)
        retriever = VectorRetriever(
            repository,
            client,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            similarity_threshold=settings.similarity_threshold,
        )
        return cls(
            settings=settings,
            repository=repository,
            attachments=AttachmentExtractor(settings.resolved_attachments_dir),
            client=client,
            retriever=retriever,
        )

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_archive(self, filename: str, data: bytes, save_attachments: bool = True) -> ImportResult:
        """
        Parse and store one archive.

        Raises:
            UnsupportedArchiveError: not a .pst/.json file, or too large
            ArchiveOpenError: the archive could not be opened
            EmptyArchiveError: the archive holds no readable message
        """
        if archive_extension(filename) not in SUPPORTED_EXTENSIONS:
            raise UnsupportedArchiveError(f"Unsupported archive type: {filename}. Use a PST or JSON file.")
        if len(data) > self.settings.max_upload_bytes:
            raise UnsupportedArchiveError(
                f"{filename} is {len(data)} bytes, the limit is {self.settings.max_upload_bytes}"
            )

        options = ParseOptions(
            save_attachments=save_attachments,
            attachments_root=self.attachments.root,
            attachment_text_max_chars=self.settings.attachment_text_max_chars,
            attachment_name_max_length=self.settings.attachment_name_max_length,
        )
        parsed = parse_archive(filename, data, options, pst_parser=self.pst_parser)

        if not parsed.messages:
            if parsed.fatal_error:
                raise ArchiveOpenError(parsed.fatal_error)
            detail = f": {'; '.join(parsed.errors[:5])}" if parsed.errors else ""
            raise EmptyArchiveError(f"No messages found in {filename}{detail}")

        result = ImportResult(filename=filename, parsed_count=parsed.total_count, errors=list(parsed.errors))
        batch_size = max(1, self.settings.insert_batch_size)

        for offset in range(0, len(parsed.messages), batch_size):
            batch = parsed.messages[offset:offset + batch_size]
            try:
                ids = self.repository.insert_messages(batch)
            except Exception as e:
                message = f"Failed to store messages {offset + 1}-{offset + len(batch)}: {e}"
                logger.error(message)
                result.errors.append(message)
                self._discard_attachments(batch)
                continue

            self._reconcile_attachments(ids, batch, result)
            result.inserted_ids.extend(ids)

        self._cleanup_temp_root()
        self.repository.log_import(filename, result.inserted_count, len(result.errors))
        logger.info(
            f"Imported {result.inserted_count}/{result.parsed_count} messages from {filename} "
            f"({len(result.errors)} errors)"
        )
        return result

    def _reconcile_attachments(self, ids: Sequence[int], batch: Sequence[NormalizedMessage], result: ImportResult) -> None:
        for mail_id, message in zip(ids, batch):
            if not message.provisional_key or not message.attachments:
                continue
            try:
                refs = self.attachments.reconcile(message.provisional_key, mail_id, message.attachments)
                self.repository.update_attachment_paths(mail_id, refs)
            except Exception as e:
                message_text = f"Failed to move attachments of mail {mail_id}: {e}"
                logger.warning(message_text)
                result.errors.append(message_text)

    def _discard_attachments(self, batch: Sequence[NormalizedMessage]) -> None:
        for message in batch:
            if message.provisional_key:
                self.attachments.discard(message.provisional_key)

    def _cleanup_temp_root(self) -> None:
        temp_root = Path(self.attachments.root) / TEMP_DIR_NAME
        try:
            if temp_root.exists() and not any(temp_root.iterdir()):
                temp_root.rmdir()
        except OSError as e:
            logger.debug(f"Could not remove {temp_root}: {e}")

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def enrich(self, mail_ids: Sequence[int]) -> EnrichmentSummary:
        """
        Classify, embed and extract events, one message at a time.

        With the model service unreachable only the local event heuristics
        run and messages stay unprocessed for a later pass. A failure on one
        message is logged and the next message goes ahead.
        """
        summary = EnrichmentSummary()
        if not mail_ids:
            return summary

        available = self.client is not None and self.client.is_available()
        if not available:
            logger.warning("Model service unreachable, using local event extraction only")
            summary.used_local_fallback = True

        for mail_id in mail_ids:
            email = self.repository.get_email(mail_id)
            if email is None:
                continue

            if not available:
                events = extract_events_locally(email.subject, email.body, email.date)
                summary.events += self.repository.save_events(mail_id, events, replace=True)
                continue

            try:
                self._enrich_one(email, summary)
            except Exception as e:
                message = f"Enrichment failed for mail {mail_id}: {e}"
                logger.warning(message)
                summary.errors.append(message)

        logger.info(
            f"Enrichment done: {summary.processed} processed, {summary.classified} classified, "
            f"{summary.chunks} chunks, {summary.events} events"
        )
        return summary

    def _enrich_one(self, email, summary: EnrichmentSummary) -> None:
        try:
            classification = classify_email(self.client, email.subject, email.body, email.sender)
            self.repository.set_classification(email.id, classification)
            summary.classified += 1
        except LLMUnavailableError as e:
            logger.warning(f"Mail {email.id} left unclassified: {e}")
            summary.unclassified += 1

        if self.retriever is not None:
            summary.chunks += self.retriever.index_message(email)

        try:
            events = extract_events(self.client, email.subject, email.body, email.date)
        except LLMUnavailableError as e:
            logger.warning(f"Event extraction for mail {email.id} fell back to heuristics: {e}")
            events = extract_events_locally(email.subject, email.body, email.date)
        summary.events += self.repository.save_events(email.id, events, replace=True)

        self.repository.mark_processed(email.id)
        summary.processed += 1

    def process_unprocessed(self) -> EnrichmentSummary:
        """Run enrichment over every message not processed yet."""
        return self.enrich(self.repository.get_unprocessed_ids())

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset_corpus(self, everything: bool = False) -> Dict[str, int]:
        """
        Delete all embedding chunks, or with everything=True every record
        and every stored attachment.
        """
        if not everything:
            return {"chunks": self.repository.delete_all_chunks()}

        counts = self.repository.delete_all()
        self.attachments.purge()
        return counts
