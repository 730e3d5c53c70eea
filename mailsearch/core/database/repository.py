"""
Database Repository - storage operations shared by import, enrichment and search.

Every method opens its own transaction through Database.session_scope(),
so a batch insert either commits as a whole or not at all.
"""
from typing import Optional, List, Dict, Any, Iterable, Sequence
import logging

from sqlalchemy import select, or_, func, delete, update
from sqlalchemy.orm import selectinload

from mailsearch.core.email.models import (
    AttachmentRef, ClassificationResult, ExtractedEvent, NormalizedMessage,
)
from .connection import Database
from .models import Email, EmailAttachment, RagChunk, CalendarEvent, ImportLog

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 500


def sanitize_for_postgres(text: Optional[str], field_name: str = "text", max_length: Optional[int] = None) -> Optional[str]:
    """
    Remove NUL bytes and surrogates that PostgreSQL text columns reject.

    Args:
        text: Input text that may contain NUL bytes or surrogates
        field_name: Name of field being sanitized (for logging)
        max_length: Maximum length for field (truncates if longer)

    Returns:
        Sanitized text, or None if input was None
    """
    if text is None:
        return None

    if '\x00' in text:
        logger.debug(f"Sanitized {text.count(chr(0))} NUL byte(s) from {field_name}")
    sanitized = text.replace('\x00', '')

    try:
        sanitized.encode('utf-8', errors='strict')
    except UnicodeEncodeError:
        sanitized = sanitized.encode('utf-8', errors='replace').decode('utf-8', errors='replace')
        logger.debug(f"Removed surrogate characters from {field_name}")

    if max_length and len(sanitized) > max_length:
        logger.debug(f"Truncated {field_name} from {len(sanitized)} to {max_length} characters")
        sanitized = sanitized[:max_length]

    return sanitized


def _escape_like(token: str) -> str:
    return token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MailRepository:
    """
    Repository pattern for the mail corpus.

    Built once from an explicit Database and passed to every component
    that reads or writes records.
    """

    def __init__(self, database: Database):
        self.database = database

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def insert_messages(self, messages: Sequence[NormalizedMessage]) -> List[int]:
        """Insert one batch of messages in a single transaction; returns ids in order."""
        with self.database.session_scope() as session:
            rows = []
            for message in messages:
                email = Email(
                    subject=sanitize_for_postgres(message.subject, "subject"),
                    sender=sanitize_for_postgres(message.sender, "sender") or "",
                    date=sanitize_for_postgres(message.date, "date") or "",
                    body=sanitize_for_postgres(message.body, "body") or "",
                    importance=message.importance.value,
                    label=sanitize_for_postgres(message.label, "label"),
                    is_processed=False,
                )
                for ref in message.attachments:
                    email.attachments.append(EmailAttachment(
                        original_name=sanitize_for_postgres(ref.original_name, "original_name"),
                        stored_name=ref.stored_name,
                        relative_path=ref.relative_path,
                        size=ref.size,
                        mime_type=ref.mime_type,
                        extracted_text=sanitize_for_postgres(ref.extracted_text, "extracted_text"),
                    ))
                session.add(email)
                rows.append(email)

            session.flush()
            ids = [row.id for row in rows]

        logger.debug(f"Inserted batch of {len(ids)} messages")
        return ids

    def update_attachment_paths(self, mail_id: int, refs: Iterable[AttachmentRef]) -> None:
        """Point attachment rows at their permanent folder after reconciliation."""
        paths = {ref.stored_name: ref.relative_path for ref in refs}
        if not paths:
            return
        with self.database.session_scope() as session:
            attachments = session.scalars(
                select(EmailAttachment).where(EmailAttachment.email_id == mail_id)
            ).all()
            for attachment in attachments:
                if attachment.stored_name in paths:
                    attachment.relative_path = paths[attachment.stored_name]

    def get_email(self, mail_id: int) -> Optional[Email]:
        with self.database.session_scope() as session:
            return session.scalars(
                select(Email).options(selectinload(Email.attachments)).where(Email.id == mail_id)
            ).first()

    def get_emails(self, mail_ids: Sequence[int]) -> List[Email]:
        """Rows for the given ids, in the order the ids were given."""
        if not mail_ids:
            return []
        with self.database.session_scope() as session:
            rows = session.scalars(
                select(Email).options(selectinload(Email.attachments)).where(Email.id.in_(list(mail_ids)))
            ).all()
        by_id = {row.id: row for row in rows}
        return [by_id[mail_id] for mail_id in mail_ids if mail_id in by_id]

    def get_unprocessed_ids(self) -> List[int]:
        with self.database.session_scope() as session:
            return list(session.scalars(
                select(Email.id).where(Email.is_processed.is_(False)).order_by(Email.id)
            ).all())

    def find_candidates(self, tokens: Sequence[str], limit: int = MAX_CANDIDATES) -> List[Email]:
        """
        Messages where any token appears (case-insensitive substring) in
        subject, body, sender, date or attachment name/text. Scan order is
        by id.
        """
        if not tokens:
            return []

        conditions = []
        for token in tokens:
            pattern = f"%{_escape_like(token)}%"
            for column in (
                Email.subject, Email.body, Email.sender, Email.date,
                EmailAttachment.original_name, EmailAttachment.stored_name,
                EmailAttachment.extracted_text,
            ):
                conditions.append(column.ilike(pattern, escape="\\"))

        stmt = (
            select(Email)
            .outerjoin(EmailAttachment, EmailAttachment.email_id == Email.id)
            .where(or_(*conditions))
            .options(selectinload(Email.attachments))
            .distinct()
            .order_by(Email.id)
            .limit(limit)
        )
        with self.database.session_scope() as session:
            return list(session.scalars(stmt).unique().all())

    def set_classification(self, mail_id: int, result: ClassificationResult) -> None:
        with self.database.session_scope() as session:
            session.execute(
                update(Email).where(Email.id == mail_id).values(
                    classification=result.classification.value,
                    classification_confidence=result.confidence,
                )
            )

    def mark_processed(self, mail_id: int) -> None:
        with self.database.session_scope() as session:
            session.execute(update(Email).where(Email.id == mail_id).values(is_processed=True))

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def save_chunk(self, mail_id: Optional[int], subject: Optional[str], content: str, embedding: List[float]) -> int:
        with self.database.session_scope() as session:
            chunk = RagChunk(
                mail_id=mail_id,
                subject=sanitize_for_postgres(subject, "subject"),
                content=sanitize_for_postgres(content, "content"),
                embedding=[float(x) for x in embedding],
            )
            session.add(chunk)
            session.flush()
            return chunk.id

    def load_chunks(self) -> List[RagChunk]:
        """All stored chunks with their embeddings."""
        with self.database.session_scope() as session:
            return list(session.scalars(select(RagChunk).order_by(RagChunk.id)).all())

    def delete_chunks_for(self, mail_id: int) -> int:
        with self.database.session_scope() as session:
            return session.execute(delete(RagChunk).where(RagChunk.mail_id == mail_id)).rowcount or 0

    def delete_all_chunks(self) -> int:
        with self.database.session_scope() as session:
            result = session.execute(delete(RagChunk))
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Events and import history
    # ------------------------------------------------------------------

    def save_events(self, mail_id: int, events: Iterable[ExtractedEvent], replace: bool = False) -> int:
        """Store events for a message; replace=True drops its earlier events first."""
        count = 0
        with self.database.session_scope() as session:
            if replace:
                session.execute(delete(CalendarEvent).where(CalendarEvent.email_id == mail_id))
            for event in events:
                session.add(CalendarEvent(
                    email_id=mail_id,
                    title=event.title,
                    start_date=event.start_date,
                    end_date=event.end_date,
                    location=event.location,
                    description=event.description,
                ))
                count += 1
        return count

    def list_events(self, mail_id: Optional[int] = None) -> List[CalendarEvent]:
        stmt = select(CalendarEvent).order_by(CalendarEvent.start_date, CalendarEvent.id)
        if mail_id is not None:
            stmt = stmt.where(CalendarEvent.email_id == mail_id)
        with self.database.session_scope() as session:
            return list(session.scalars(stmt).all())

    def log_import(self, filename: str, emails_imported: int, error_count: int = 0) -> None:
        with self.database.session_scope() as session:
            session.add(ImportLog(filename=filename, emails_imported=emails_imported, error_count=error_count))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        with self.database.session_scope() as session:
            return {
                "emails": session.scalar(select(func.count(Email.id))) or 0,
                "processed": session.scalar(
                    select(func.count(Email.id)).where(Email.is_processed.is_(True))
                ) or 0,
                "attachments": session.scalar(select(func.count(EmailAttachment.id))) or 0,
                "chunks": session.scalar(select(func.count(RagChunk.id))) or 0,
                "events": session.scalar(select(func.count(CalendarEvent.id))) or 0,
                "imports": session.scalar(select(func.count(ImportLog.id))) or 0,
            }

    def delete_all(self) -> Dict[str, int]:
        """Remove every record (chunks, events, attachments, messages, import logs)."""
        counts: Dict[str, int] = {}
        with self.database.session_scope() as session:
            for name, model in (
                ("chunks", RagChunk),
                ("events", CalendarEvent),
                ("attachments", EmailAttachment),
                ("emails", Email),
                ("imports", ImportLog),
            ):
                counts[name] = session.execute(delete(model)).rowcount or 0
        logger.info(f"Deleted corpus: {counts}")
        return counts
