"""
Archive parsing

Turns uploaded mailbox archives (Outlook PST or JSON exports) into
normalized messages. parse_archive() picks the parser from the file
extension and refuses anything else before reading a byte of it.
"""
import logging
from pathlib import PurePath
from typing import Optional

from mailsearch.core.email.models import ParseOptions, ParseResult
from mailsearch.core.archive.pst_parser import PstArchiveParser, RawMessage, MAX_FOLDER_DEPTH
from mailsearch.core.archive.json_parser import parse_json_archive

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".pst", ".json")


class UnsupportedArchiveError(Exception):
    """Archive type we cannot parse"""
    pass


class EmptyArchiveError(Exception):
    """Archive parsed without producing a single message"""
    pass


class ArchiveOpenError(EmptyArchiveError):
    """Archive could not be opened at all"""
    pass


def archive_extension(filename: str) -> str:
    return PurePath(filename or "").suffix.lower()


def parse_archive(
    filename: str,
    data: bytes,
    options: Optional[ParseOptions] = None,
    pst_parser: Optional[PstArchiveParser] = None,
) -> ParseResult:
    """Parse an archive by extension; raises UnsupportedArchiveError for other types."""
    ext = archive_extension(filename)
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedArchiveError(
            f"Unsupported archive type '{ext or filename}'. Use a PST or JSON file."
        )

    options = options or ParseOptions()
    logger.info(f"Parsing {filename} ({len(data)} bytes)")

    if ext == ".pst":
        return (pst_parser or PstArchiveParser()).parse(data, options)
    return parse_json_archive(data, options)


__all__ = [
    'PstArchiveParser',
    'RawMessage',
    'MAX_FOLDER_DEPTH',
    'parse_json_archive',
    'parse_archive',
    'archive_extension',
    'SUPPORTED_EXTENSIONS',
    'UnsupportedArchiveError',
    'EmptyArchiveError',
    'ArchiveOpenError',
]
