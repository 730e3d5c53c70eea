"""
Per-format text extraction for stored attachments.

Each extractor takes raw bytes and returns plain text. Callers go through
extract_text_from_attachment, which never raises: an unreadable document
simply contributes no searchable text.
"""
import io
import logging
import re
import warnings
from pathlib import PurePath
from typing import Callable, Dict, Optional

import openpyxl
import pdfplumber
from docx import Document
from icalendar import Calendar
from pptx import Presentation
from striprtf.striprtf import rtf_to_text

from mailsearch.core.email.text_normalizer import decode_text, html_to_plain_text

logger = logging.getLogger(__name__)

DEFAULT_MAX_EXTRACTED_CHARS = 200_000
REDACTED_MARKER = "[REDACTED]"

# Block and redaction glyphs left behind by blacked-out scans
_REDACTION_GLYPHS = "█▇▆▅▄▃▂▁▉▊▋▌▍▎▏■□▪▫▬▭▮▯◼◾"
_REDACTION_RUN_RE = re.compile(f"[{_REDACTION_GLYPHS}]{{2,}}")


def extract_pdf_text(data: bytes) -> str:
    text_parts = []

    # pdfplumber is noisy about non-standard color definitions
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=UserWarning)
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for page in pdf.pages:
                try:
                    text = page.extract_text()
                    if text:
                        text_parts.append(text)
                except Exception as e:
                    logger.debug(f"Failed to extract text from PDF page: {e}")
                    continue

    return "\n\n".join(text_parts)


def extract_docx_text(data: bytes) -> str:
    doc = Document(io.BytesIO(data))
    return "\n".join(paragraph.text for paragraph in doc.paragraphs if paragraph.text)


def extract_xlsx_text(data: bytes) -> str:
    wb = openpyxl.load_workbook(io.BytesIO(data), data_only=True, read_only=True)
    text_parts = []
    try:
        for sheet in wb.worksheets:
            text_parts.append(f"[Sheet: {sheet.title}]")
            for row in sheet.iter_rows(values_only=True):
                if any(cell is not None and str(cell).strip() for cell in row):
                    text_parts.append(",".join("" if cell is None else str(cell) for cell in row))
    finally:
        wb.close()
    return "\n".join(text_parts)


def extract_pptx_text(data: bytes) -> str:
    prs = Presentation(io.BytesIO(data))
    text_parts = []

    for i, slide in enumerate(prs.slides, 1):
        text_parts.append(f"[Slide {i}]")
        for shape in slide.shapes:
            if hasattr(shape, "text") and shape.text:
                text_parts.append(shape.text)

    return "\n".join(text_parts)


def extract_rtf_text(data: bytes) -> str:
    try:
        return rtf_to_text(data.decode("utf-8", errors="strict"))
    except UnicodeDecodeError:
        # Older RTF writers emit code-page bytes
        return rtf_to_text(data.decode("latin-1", errors="replace"))


def extract_ics_text(data: bytes) -> str:
    cal = Calendar.from_ical(data.decode("utf-8", errors="replace"))
    text_parts = ["[Calendar Event]"]

    for component in cal.walk():
        if component.name != "VEVENT":
            continue
        text_parts.append(f"Event: {component.get('summary', 'No title')}")
        start = component.get("dtstart")
        if start:
            text_parts.append(f"Start: {start.dt}")
        end = component.get("dtend")
        if end:
            text_parts.append(f"End: {end.dt}")
        location = component.get("location", "")
        if location:
            text_parts.append(f"Location: {location}")
        text_parts.append("")

    return "\n".join(text_parts).strip()


def extract_html_text(data: bytes) -> str:
    return html_to_plain_text(decode_text(data))


def extract_plain_text(data: bytes) -> str:
    return decode_text(data)


EXTRACTORS_BY_EXTENSION: Dict[str, Callable[[bytes], str]] = {
    ".pdf": extract_pdf_text,
    ".xlsx": extract_xlsx_text,
    ".xlsm": extract_xlsx_text,
    ".docx": extract_docx_text,
    ".pptx": extract_pptx_text,
    ".rtf": extract_rtf_text,
    ".ics": extract_ics_text,
    ".html": extract_html_text,
    ".htm": extract_html_text,
    ".txt": extract_plain_text,
    ".csv": extract_plain_text,
    ".json": extract_plain_text,
    ".md": extract_plain_text,
    ".log": extract_plain_text,
}

EXTRACTORS_BY_MIME: Dict[str, Callable[[bytes], str]] = {
    "application/pdf": extract_pdf_text,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": extract_xlsx_text,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": extract_docx_text,
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": extract_pptx_text,
    "application/rtf": extract_rtf_text,
    "text/rtf": extract_rtf_text,
    "text/calendar": extract_ics_text,
    "text/html": extract_html_text,
    "text/plain": extract_plain_text,
    "text/csv": extract_plain_text,
    "text/markdown": extract_plain_text,
    "application/json": extract_plain_text,
}


def pick_extractor(filename: Optional[str], mime_type: Optional[str]) -> Optional[Callable[[bytes], str]]:
    """Extension first, then MIME type; None for formats we don't read."""
    if filename:
        extractor = EXTRACTORS_BY_EXTENSION.get(PurePath(filename).suffix.lower())
        if extractor:
            return extractor
    if mime_type:
        return EXTRACTORS_BY_MIME.get(mime_type.split(";")[0].strip().lower())
    return None


def sanitize_extracted_text(text: Optional[str], max_chars: int = DEFAULT_MAX_EXTRACTED_CHARS) -> str:
    """
    Clean extracted text before storage.

    NUL bytes break PostgreSQL text columns. Runs of redaction glyphs become
    a [REDACTED] marker so blacked-out content stays visible in search.
    """
    if not text:
        return ""

    text = text.replace("\x00", "")
    text = _REDACTION_RUN_RE.sub(REDACTED_MARKER, text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = text.strip()

    if len(text) > max_chars:
        text = text[:max_chars]
    return text


def extract_text_from_attachment(
    data: bytes,
    filename: Optional[str] = None,
    mime_type: Optional[str] = None,
    max_chars: int = DEFAULT_MAX_EXTRACTED_CHARS,
) -> str:
    """Extract and sanitize attachment text; any failure yields ""."""
    if not data:
        return ""

    extractor = pick_extractor(filename, mime_type)
    if extractor is None:
        return ""

    try:
        text = extractor(data)
    except Exception as e:
        logger.warning(f"Text extraction failed for {filename or mime_type}: {e}")
        return ""

    return sanitize_extracted_text(text, max_chars)
