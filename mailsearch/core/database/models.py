"""
SQLAlchemy Database Models

Stores:
- Imported messages (normalized subject/sender/body, enrichment results)
- Stored attachments and their extracted text
- Embedding chunks for semantic search
- Calendar events found in messages
- Import history
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, JSON, ForeignKey, Index
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()


class Email(Base):
    """
    One imported archive message.

    Rows are written once by the import and only the enrichment fields
    (classification, is_processed) change afterwards.
    """
    __tablename__ = "emails"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject = Column(Text, nullable=False, default="")
    sender = Column(Text, nullable=False, default="")
    date = Column(Text, nullable=False, default="")  # Source timestamp, not reparsed
    body = Column(Text, nullable=False, default="")
    importance = Column(String(20), default="normal")
    label = Column(Text)  # Originating folder or export label

    # Enrichment
    classification = Column(String(50))
    classification_confidence = Column(String(20))
    is_processed = Column(Boolean, default=False, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    attachments = relationship(
        "EmailAttachment",
        back_populates="email",
        cascade="all, delete-orphan",
        order_by="EmailAttachment.id",
    )

    def __repr__(self):
        return f"<Email(id={self.id}, subject='{(self.subject or '')[:50]}')>"


class EmailAttachment(Base):
    """Attachment stored on disk under <attachments root>/mail_<email id>/"""
    __tablename__ = "email_attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email_id = Column(Integer, ForeignKey("emails.id", ondelete="CASCADE"), nullable=False, index=True)
    original_name = Column(Text, nullable=False)
    stored_name = Column(String(200), nullable=False)
    relative_path = Column(Text, nullable=False)
    size = Column(Integer, default=0)
    mime_type = Column(String(200))
    extracted_text = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    email = relationship("Email", back_populates="attachments")


class RagChunk(Base):
    """
    Embedded slice of a message's normalized text.

    mail_id only points back for display; chunks are not owned by the
    message and go away with a corpus reset.
    """
    __tablename__ = "rag_chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    mail_id = Column(Integer, index=True)
    subject = Column(Text)  # Denormalized for result display
    content = Column(Text, nullable=False)
    embedding = Column(JSON, nullable=False)  # List of floats

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class CalendarEvent(Base):
    __tablename__ = "calendar_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email_id = Column(Integer, index=True)
    title = Column(Text, nullable=False)
    start_date = Column(Text, nullable=False)
    end_date = Column(Text)
    location = Column(Text)
    description = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ImportLog(Base):
    __tablename__ = "import_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(Text, nullable=False)
    emails_imported = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


Index("idx_calendar_events_start", CalendarEvent.start_date)
