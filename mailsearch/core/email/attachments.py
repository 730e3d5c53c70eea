"""
Attachment storage for archive imports.

Attachments are written in two phases. While an archive is parsed the
message has no database id yet, so its attachments go to
<root>/_tmp/<provisional_key>/. After the row is inserted, reconcile()
moves the folder to <root>/mail_<id>/ and rewrites the stored paths.
"""
import logging
import mimetypes
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from mailsearch.core.email.format_extractors import extract_text_from_attachment, pick_extractor
from mailsearch.core.email.models import AttachmentRef, ParseOptions
from mailsearch.core.email.text_normalizer import decode_text

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
MAX_STORED_NAME_LENGTH = 180
DEFAULT_ATTACHMENT_NAME = "attachment"
TEMP_DIR_NAME = "_tmp"

_HOSTILE_CHARS_RE = re.compile(r'[/\\:*?"<>|]')
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")


class AttachmentStorageError(Exception):
    """Attachment bytes could not be written to disk"""
    pass


@dataclass
class ArchiveAttachment:
    """
    One attachment as exposed by an archive entry.

    reader(n) returns up to n bytes per call, sequentially. A None reader
    means the container has no content stream for this attachment.
    """
    name: Optional[str]
    size: int = 0
    mime_type: Optional[str] = None
    reader: Optional[Callable[[int], bytes]] = None


def sanitize_filename(name: Optional[str], max_length: int = MAX_STORED_NAME_LENGTH) -> str:
    """
    Make an untrusted attachment name safe to use as a file name.

    Path separators and characters Windows refuses become "_", control
    characters are dropped, dot runs collapse and leading dots go so the
    name can never climb out of its folder. Long names keep their
    extension when it is short enough.
    """
    text = decode_text(name) if name else ""
    text = _CONTROL_CHARS_RE.sub("", text)
    text = _HOSTILE_CHARS_RE.sub("_", text)
    text = re.sub(r"\.{2,}", ".", text)
    text = text.strip().lstrip(".").strip()

    if not text:
        text = DEFAULT_ATTACHMENT_NAME

    if len(text) > max_length:
        stem, dot, ext = text.rpartition(".")
        if dot and stem and 0 < len(ext) < 10 and max_length > len(ext) + 1:
            text = f"{stem[:max_length - len(ext) - 1]}.{ext}"
        else:
            text = text[:max_length]

    return text


def make_stored_name(
    index: int,
    name: Optional[str],
    now: Optional[datetime] = None,
    max_length: int = MAX_STORED_NAME_LENGTH,
) -> str:
    """Collision resistant stored name: {index}_{epoch_ms}_{sanitized name}."""
    epoch_ms = int((now.timestamp() if now else time.time()) * 1000)
    prefix = f"{index}_{epoch_ms}_"
    return prefix + sanitize_filename(name, max(1, max_length - len(prefix)))


class AttachmentExtractor:
    """Writes archive attachments to disk and extracts their text"""

    def __init__(self, root: Path):
        self.root = Path(root)

    def temp_dir(self, provisional_key: str) -> Path:
        return self.root / TEMP_DIR_NAME / provisional_key

    def mail_dir(self, mail_id: int) -> Path:
        return self.root / f"mail_{mail_id}"

    def extract(
        self,
        attachments: Sequence[ArchiveAttachment],
        provisional_key: str,
        options: ParseOptions,
    ) -> Tuple[List[AttachmentRef], List[str]]:
        """
        Store every attachment of one message under its temp folder.

        Returns the stored references and the per-attachment errors. A
        failing attachment is skipped and never fails the message.
        """
        refs: List[AttachmentRef] = []
        errors: List[str] = []

        if not options.save_attachments or not attachments:
            return refs, errors

        target_dir = self.temp_dir(provisional_key)

        for index, attachment in enumerate(attachments):
            original_name = decode_text(attachment.name) if attachment.name else DEFAULT_ATTACHMENT_NAME

            if attachment.reader is None:
                message = f"Attachment {index} ({original_name}) has no content stream"
                logger.warning(message)
                errors.append(message)
                continue

            stored_name = make_stored_name(index, original_name, max_length=options.attachment_name_max_length)
            mime_type = attachment.mime_type or mimetypes.guess_type(original_name)[0]
            path = target_dir / stored_name

            try:
                size = self._write_stream(attachment, path)
            except AttachmentStorageError as e:
                logger.warning(f"Skipping attachment {original_name}: {e}")
                errors.append(f"Attachment {index} ({original_name}): {e}")
                continue

            extracted = None
            if pick_extractor(original_name, mime_type) is not None:
                extracted = extract_text_from_attachment(
                    path.read_bytes(),
                    original_name,
                    mime_type,
                    max_chars=options.attachment_text_max_chars,
                ) or None

            refs.append(AttachmentRef(
                original_name=original_name,
                stored_name=stored_name,
                relative_path=path.relative_to(self.root).as_posix(),
                size=size,
                mime_type=mime_type,
                extracted_text=extracted,
            ))

        logger.debug(f"Stored {len(refs)}/{len(attachments)} attachments for {provisional_key}")
        return refs, errors

    def _write_stream(self, attachment: ArchiveAttachment, path: Path) -> int:
        """Stream the attachment to path in READ_CHUNK_SIZE reads; returns bytes written."""
        written = 0
        remaining = attachment.size if attachment.size and attachment.size > 0 else None

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as handle:
                while remaining is None or remaining > 0:
                    want = READ_CHUNK_SIZE if remaining is None else min(READ_CHUNK_SIZE, remaining)
                    chunk = attachment.reader(want)
                    if not chunk:
                        break
                    handle.write(chunk)
                    written += len(chunk)
                    if remaining is not None:
                        remaining -= len(chunk)
        except Exception as e:
            path.unlink(missing_ok=True)
            raise AttachmentStorageError(str(e)) from e

        return written

    def reconcile(self, provisional_key: str, mail_id: int, refs: List[AttachmentRef]) -> List[AttachmentRef]:
        """Move a message's temp folder to its permanent folder and rewrite paths."""
        source = self.temp_dir(provisional_key)
        if not source.exists():
            return refs

        target = self.mail_dir(mail_id)
        if target.exists():
            for item in source.iterdir():
                shutil.move(str(item), str(target / item.name))
            shutil.rmtree(source, ignore_errors=True)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))

        return [
            ref.model_copy(update={"relative_path": f"{target.name}/{ref.stored_name}"})
            for ref in refs
        ]

    def discard(self, provisional_key: str) -> None:
        """Drop the temp folder of a message that will not be stored."""
        shutil.rmtree(self.temp_dir(provisional_key), ignore_errors=True)

    def purge(self) -> None:
        """Remove every stored attachment (full corpus reset)."""
        if self.root.exists():
            shutil.rmtree(self.root)
        logger.info(f"Removed attachment store at {self.root}")
