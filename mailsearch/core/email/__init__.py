"""Message normalization: text cleanup, sender resolution, attachments"""
from .models import (
    NO_SUBJECT,
    Importance,
    Classification,
    AttachmentRef,
    NormalizedMessage,
    ParseOptions,
    ParseResult,
    SearchHit,
    ChunkHit,
    ClassificationResult,
    ExtractedEvent,
)
from .text_normalizer import decode_text, extract_body, normalize_body, html_to_plain_text
from .sender_resolver import SenderResolver, SenderSource
from .attachments import AttachmentExtractor, ArchiveAttachment, AttachmentStorageError

__all__ = [
    'NO_SUBJECT',
    'Importance',
    'Classification',
    'AttachmentRef',
    'NormalizedMessage',
    'ParseOptions',
    'ParseResult',
    'SearchHit',
    'ChunkHit',
    'ClassificationResult',
    'ExtractedEvent',
    'decode_text',
    'extract_body',
    'normalize_body',
    'html_to_plain_text',
    'SenderResolver',
    'SenderSource',
    'AttachmentExtractor',
    'ArchiveAttachment',
    'AttachmentStorageError',
]
