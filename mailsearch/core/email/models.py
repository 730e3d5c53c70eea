"""
Mail archive models.

Pydantic types shared by the archive parsers, the attachment extractor,
both search engines and the enrichment pass.
"""
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

NO_SUBJECT = "(no subject)"


class Importance(str, Enum):
    """Message importance as stored in the archive"""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @classmethod
    def from_archive(cls, value: Optional[int]) -> "Importance":
        """Map the container's numeric importance (0=low, 1=normal, 2=high)."""
        if value == 2:
            return cls.HIGH
        if value == 0:
            return cls.LOW
        return cls.NORMAL

    @classmethod
    def from_text(cls, value: object) -> "Importance":
        """Tolerant mapping for JSON exports ("High", "2", "urgent", ...)."""
        if value is None:
            return cls.NORMAL
        text = str(value).strip().lower()
        if text in ("high", "2", "urgent", "important"):
            return cls.HIGH
        if text in ("low", "0"):
            return cls.LOW
        return cls.NORMAL


class Classification(str, Enum):
    """Labels the chat model may assign to a message"""
    REFERENCE = "reference"
    REPLY_NEEDED = "reply_needed"
    URGENT_REPLY = "urgent_reply"
    MEETING = "meeting"


class AttachmentRef(BaseModel):
    """Stored attachment belonging to exactly one message"""
    original_name: str = Field(..., description="Untrusted name from the archive")
    stored_name: str = Field(..., description="Sanitized, collision-resistant file name")
    relative_path: str = Field(..., description="Path relative to the attachment root")
    size: int = 0
    mime_type: Optional[str] = None
    extracted_text: Optional[str] = None


class NormalizedMessage(BaseModel):
    """One fully parsed archive entry"""
    subject: str = NO_SUBJECT
    sender: str = ""
    date: str = ""
    body: str = ""
    importance: Importance = Importance.NORMAL
    label: Optional[str] = None
    attachments: List[AttachmentRef] = Field(default_factory=list)

    # Temp attachment folder key, reconciled to the record id after insert
    provisional_key: Optional[str] = None

    @field_validator("subject", mode="before")
    @classmethod
    def _default_subject(cls, value: object) -> str:
        if value is None or not str(value).strip():
            return NO_SUBJECT
        return str(value)


class ParseOptions(BaseModel):
    """Knobs for one archive parse"""
    save_attachments: bool = True
    attachments_root: Optional[Path] = None
    attachment_text_max_chars: int = 200_000
    attachment_name_max_length: int = 180


class ParseResult(BaseModel):
    """Messages parsed from an archive plus the errors collected on the way"""
    messages: List[NormalizedMessage] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    # Set when the archive could not be read at all
    fatal_error: Optional[str] = None

    @property
    def total_count(self) -> int:
        return len(self.messages)

    @property
    def error_count(self) -> int:
        return len(self.errors)


class SearchHit(BaseModel):
    """Keyword search result (computed per query, never stored)"""
    mail_id: int
    subject: str
    score: float = Field(..., ge=0)
    sender: Optional[str] = None
    date: Optional[str] = None
    body: str = ""
    snippet: str = ""


class ChunkHit(BaseModel):
    """Semantic search result for one stored chunk"""
    chunk_id: int
    mail_id: Optional[int]
    subject: str = ""
    content: str
    score: float


class ClassificationResult(BaseModel):
    classification: Classification = Classification.REFERENCE
    confidence: str = "low"


class ExtractedEvent(BaseModel):
    """Calendar event pulled out of a message"""
    title: str
    start_date: str
    end_date: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
