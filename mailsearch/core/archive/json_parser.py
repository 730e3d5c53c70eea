"""
JSON export parser.

Accepts a top-level array of message objects or an object wrapping them in
"emails". Field names vary between export tools, so each logical field is
looked up under several aliases.
"""
import json
import logging
from typing import Any, Dict, Optional, Tuple

from mailsearch.core.email.models import Importance, NormalizedMessage, ParseOptions, ParseResult
from mailsearch.core.email.sender_resolver import SenderResolver, SenderSource
from mailsearch.core.email.text_normalizer import decode_text, extract_body

logger = logging.getLogger(__name__)

SUBJECT_KEYS = ("subject", "Subject", "title")
SENDER_KEYS = ("sender", "from", "From", "sender_email", "Sender")
DATE_KEYS = ("date", "Date", "sent_date", "sentDate", "received")
BODY_KEYS = ("body", "content", "text", "Body")
HTML_KEYS = ("html", "body_html")
IMPORTANCE_KEYS = ("importance", "Importance")
LABEL_KEYS = ("label", "folder", "Label")


def _first(record: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
    """First alias with a non-empty value, as text."""
    for key in keys:
        value = record.get(key)
        if value is None or value == "":
            continue
        if isinstance(value, dict):
            # {"name": ..., "address": ...} style sender objects
            value = value.get("address") or value.get("email") or value.get("name") or ""
        text = decode_text(value if isinstance(value, (str, bytes)) else str(value)).strip()
        if text:
            return text
    return None


def _normalize_record(record: Dict[str, Any], resolver: SenderResolver) -> NormalizedMessage:
    plain = _first(record, BODY_KEYS)
    html = _first(record, HTML_KEYS)

    sender = _first(record, SENDER_KEYS)
    if not sender:
        sender = resolver.resolve(SenderSource(plain_body=plain, html_body=html))

    return NormalizedMessage(
        subject=_first(record, SUBJECT_KEYS),
        sender=sender,
        date=_first(record, DATE_KEYS) or "",
        body=extract_body(plain, html),
        importance=Importance.from_text(_first(record, IMPORTANCE_KEYS)),
        label=_first(record, LABEL_KEYS),
    )


def parse_json_archive(
    data: bytes,
    options: Optional[ParseOptions] = None,
    sender_resolver: Optional[SenderResolver] = None,
) -> ParseResult:
    """Parse a JSON export. Invalid JSON gives an empty result with one error."""
    result = ParseResult()
    resolver = sender_resolver or SenderResolver()

    try:
        payload = json.loads(decode_text(data).lstrip("﻿"))
    except (ValueError, TypeError) as e:
        logger.error(f"Invalid JSON archive: {e}")
        result.fatal_error = f"Invalid JSON: {e}"
        result.errors.append(result.fatal_error)
        return result

    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict):
        records = payload.get("emails") or []
    else:
        records = []

    if not isinstance(records, list):
        result.errors.append("JSON \"emails\" field is not a list")
        return result

    for index, record in enumerate(records):
        if not isinstance(record, dict):
            result.errors.append(f"Error parsing message {index}: expected an object, got {type(record).__name__}")
            continue
        try:
            result.messages.append(_normalize_record(record, resolver))
        except Exception as e:
            message = f"Error parsing message {index}: {e}"
            logger.warning(message)
            result.errors.append(message)

    logger.info(f"Parsed {result.total_count} messages from JSON ({result.error_count} errors)")
    return result
