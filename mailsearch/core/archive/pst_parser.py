"""
PST archive parser.

Walks the folder tree of an Outlook PST with pypff and turns every message
into a NormalizedMessage. One bad message or folder is recorded in the
error list and the walk goes on; only failing to open the file ends the
parse early.
"""
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from mailsearch.core.email.attachments import ArchiveAttachment, AttachmentExtractor
from mailsearch.core.email.models import Importance, NormalizedMessage, ParseOptions, ParseResult
from mailsearch.core.email.sender_resolver import SenderResolver, SenderSource
from mailsearch.core.email.text_normalizer import decode_text, extract_body

logger = logging.getLogger(__name__)

MAX_FOLDER_DEPTH = 64

# MAPI property tags read from record sets when pypff has no accessor
PR_IMPORTANCE = 0x0017
PR_SENT_REPRESENTING_NAME = 0x0042
PR_SENT_REPRESENTING_EMAIL = 0x0065
PR_SENDER_EMAIL_ADDRESS = 0x0C1F
PR_ATTACH_FILENAME = 0x3704
PR_ATTACH_LONG_FILENAME = 0x3707
PR_ATTACH_MIME_TAG = 0x370E
PR_DISPLAY_NAME = 0x3001


def _safe_get_attr(obj: Any, attr_name: str, default: Any = None) -> Any:
    """
    Read an attribute from a pypff object.

    Corrupted PST data makes pypff raise from plain attribute access, so any
    failure yields the default. Callables are invoked (get_* accessors).
    """
    try:
        if not hasattr(obj, attr_name):
            return default
        value = getattr(obj, attr_name)
        if callable(value):
            return value()
        return value
    except Exception as e:
        logger.debug(f"Error accessing {attr_name}: {str(e)[:100]}")
        return default


def _get_property(item: Any, property_id: int, as_integer: bool = False) -> Any:
    """Look up a MAPI property in the item's record sets."""
    try:
        record_sets = _safe_get_attr(item, "record_sets") or []
        for record_set in record_sets:
            for entry_index in range(record_set.number_of_entries):
                try:
                    entry = record_set.get_entry(entry_index)
                    if entry.entry_type == property_id:
                        return entry.data_as_integer if as_integer else entry.data_as_string
                except Exception:
                    continue
    except Exception as e:
        logger.debug(f"Could not get property {hex(property_id)}: {e}")
    return None


def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    if value is None:
        return ""
    return decode_text(str(value)).strip()


@dataclass
class RawMessage:
    """Snapshot of one PST message, read before any normalization"""
    subject: Any = None
    sender_name: Any = None
    sender_email: Any = None
    sent_representing_name: Any = None
    sent_representing_email: Any = None
    transport_headers: Any = None
    plain_body: Any = None
    html_body: Any = None
    delivery_time: Any = None
    client_submit_time: Any = None
    importance: Optional[int] = None
    attachments: List[ArchiveAttachment] = field(default_factory=list)

    @classmethod
    def from_pff(cls, message: Any) -> "RawMessage":
        importance = _safe_get_attr(message, "importance")
        if importance is None:
            importance = _get_property(message, PR_IMPORTANCE, as_integer=True)

        attachments = []
        count = int(_safe_get_attr(message, "number_of_attachments", 0) or 0)
        for i in range(count):
            attachments.append(_read_attachment(message.get_attachment(i), i))

        return cls(
            subject=_safe_get_attr(message, "subject"),
            sender_name=_safe_get_attr(message, "sender_name"),
            sender_email=(
                _safe_get_attr(message, "sender_email_address")
                or _get_property(message, PR_SENDER_EMAIL_ADDRESS)
            ),
            sent_representing_name=_get_property(message, PR_SENT_REPRESENTING_NAME),
            sent_representing_email=_get_property(message, PR_SENT_REPRESENTING_EMAIL),
            transport_headers=_safe_get_attr(message, "transport_headers"),
            plain_body=_safe_get_attr(message, "plain_text_body"),
            html_body=_safe_get_attr(message, "html_body"),
            delivery_time=_safe_get_attr(message, "delivery_time"),
            client_submit_time=_safe_get_attr(message, "client_submit_time"),
            importance=importance,
            attachments=attachments,
        )

    def sender_source(self) -> SenderSource:
        return SenderSource(
            sender_email=self.sender_email,
            sender_name=self.sender_name,
            sent_representing_email=self.sent_representing_email,
            sent_representing_name=self.sent_representing_name,
            transport_headers=self.transport_headers,
            plain_body=self.plain_body,
            html_body=self.html_body,
        )


def _read_attachment(attachment: Any, index: int) -> ArchiveAttachment:
    name = (
        _get_property(attachment, PR_ATTACH_LONG_FILENAME)
        or _get_property(attachment, PR_ATTACH_FILENAME)
        or _get_property(attachment, PR_DISPLAY_NAME)
        or _safe_get_attr(attachment, "name")
        or f"attachment_{index}"
    )
    size = int(_safe_get_attr(attachment, "size", 0) or 0)
    reader = getattr(attachment, "read_buffer", None)

    return ArchiveAttachment(
        name=decode_text(name).strip() if name else None,
        size=size,
        mime_type=_get_property(attachment, PR_ATTACH_MIME_TAG),
        reader=reader,
    )


def _open_with_pypff(path: str) -> Any:
    # Imported here so the rest of the package works without libpff installed
    import pypff

    pst_file = pypff.file()
    pst_file.open(path)
    return pst_file


class PstArchiveParser:
    """Depth-first PST traversal producing normalized messages"""

    def __init__(
        self,
        opener: Optional[Callable[[str], Any]] = None,
        sender_resolver: Optional[SenderResolver] = None,
    ):
        self.opener = opener or _open_with_pypff
        self.sender_resolver = sender_resolver or SenderResolver()

    def parse(self, data: bytes, options: Optional[ParseOptions] = None) -> ParseResult:
        """Parse PST bytes (spooled to a temporary file pypff can open)."""
        fd, tmp_path = tempfile.mkstemp(suffix=".pst")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            return self.parse_file(tmp_path, options)
        finally:
            try:
                os.unlink(tmp_path)
            except OSError as e:
                logger.warning(f"Could not remove temporary archive {tmp_path}: {e}")

    def parse_file(self, path: str, options: Optional[ParseOptions] = None) -> ParseResult:
        options = options or ParseOptions()
        result = ParseResult()

        try:
            pst_file = self.opener(str(path))
            root = pst_file.get_root_folder()
        except Exception as e:
            logger.error(f"Failed to open PST file {path}: {e}")
            result.fatal_error = f"Failed to open PST file: {e}"
            result.errors.append(result.fatal_error)
            return result

        extractor = None
        if options.save_attachments:
            if options.attachments_root:
                extractor = AttachmentExtractor(Path(options.attachments_root))
            else:
                logger.warning("Attachment saving requested without an attachment root, skipping attachments")

        try:
            self._walk(root, result, options, extractor)
        finally:
            close = getattr(pst_file, "close", None)
            if close:
                try:
                    close()
                except Exception as e:
                    logger.debug(f"Error closing PST file: {e}")

        logger.info(f"Parsed {result.total_count} messages from {path} ({result.error_count} errors)")
        return result

    def _walk(
        self,
        root: Any,
        result: ParseResult,
        options: ParseOptions,
        extractor: Optional[AttachmentExtractor],
    ) -> None:
        run_id = uuid.uuid4().hex[:12]
        entry_seq = 0
        visited = set()
        stack: List[Tuple[Any, int, str]] = [(root, 0, "")]

        while stack:
            folder, depth, parent_path = stack.pop()
            name = decode_text(_safe_get_attr(folder, "name") or "").strip()
            path = f"{parent_path}/{name}" if parent_path else (name or "Root")

            if depth > MAX_FOLDER_DEPTH:
                message = f"Error processing folder {path}: maximum folder depth {MAX_FOLDER_DEPTH} exceeded"
                logger.warning(message)
                result.errors.append(message)
                continue

            folder_id = _safe_get_attr(folder, "identifier")
            visit_key = folder_id if folder_id is not None else id(folder)
            if visit_key in visited:
                logger.warning(f"Folder {path} already visited, skipping")
                continue
            visited.add(visit_key)

            try:
                message_count = int(_safe_get_attr(folder, "number_of_sub_messages", 0) or 0)
                if message_count:
                    logger.debug(f"Processing folder: {path} ({message_count} messages)")

                for i in range(message_count):
                    provisional_key = f"{run_id}_{entry_seq:06d}"
                    entry_seq += 1
                    self._parse_entry(folder, i, name or None, provisional_key, result, options, extractor)

                subfolder_count = int(_safe_get_attr(folder, "number_of_sub_folders", 0) or 0)
                subfolders = []
                for i in range(subfolder_count):
                    try:
                        subfolders.append(folder.get_sub_folder(i))
                    except Exception as e:
                        message = f"Error processing folder {path}/#{i}: {e}"
                        logger.warning(message)
                        result.errors.append(message)

                # Reversed so the first subfolder is visited first
                for subfolder in reversed(subfolders):
                    stack.append((subfolder, depth + 1, path))
            except Exception as e:
                message = f"Error processing folder {path}: {e}"
                logger.warning(message)
                result.errors.append(message)

    def _parse_entry(
        self,
        folder: Any,
        index: int,
        label: Optional[str],
        provisional_key: str,
        result: ParseResult,
        options: ParseOptions,
        extractor: Optional[AttachmentExtractor],
    ) -> None:
        try:
            raw = RawMessage.from_pff(folder.get_sub_message(index))
            message, attachment_errors = self.normalize(raw, label, provisional_key, options, extractor)
        except Exception as e:
            if extractor:
                extractor.discard(provisional_key)
            message = f"Error parsing message {index} in {label or 'Root'}: {e}"
            logger.warning(message)
            result.errors.append(message)
            return

        result.messages.append(message)
        result.errors.extend(attachment_errors)

    def normalize(
        self,
        raw: RawMessage,
        label: Optional[str],
        provisional_key: str,
        options: ParseOptions,
        extractor: Optional[AttachmentExtractor] = None,
    ) -> Tuple[NormalizedMessage, List[str]]:
        """Turn a RawMessage into a NormalizedMessage plus attachment errors."""
        attachments, errors = [], []
        if extractor is not None and raw.attachments:
            attachments, errors = extractor.extract(raw.attachments, provisional_key, options)

        message = NormalizedMessage(
            subject=decode_text(raw.subject).strip() if raw.subject else None,
            sender=self.sender_resolver.resolve(raw.sender_source()),
            date=_format_date(raw.delivery_time or raw.client_submit_time),
            body=extract_body(raw.plain_body, raw.html_body),
            importance=Importance.from_archive(raw.importance),
            label=label,
            attachments=attachments,
            provisional_key=provisional_key if attachments else None,
        )
        return message, errors
