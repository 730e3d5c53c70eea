"""
Best-effort sender resolution.

Many archived messages carry the sender only inside a header block pasted
into the body, so structured fields are just the first of several places
we look. Strategies run in a fixed order and the first non-empty value wins.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from mailsearch.core.email.text_normalizer import decode_text, html_to_plain_text

logger = logging.getLogger(__name__)

TextLike = Union[str, bytes, None]


@dataclass
class SenderSource:
    """Everything a message offers that might identify its sender"""
    sender_email: TextLike = None
    sender_name: TextLike = None
    sent_representing_email: TextLike = None
    sent_representing_name: TextLike = None
    transport_headers: TextLike = None
    plain_body: TextLike = None
    html_body: TextLike = None


# Keywords that end a run-together "From:" value
_STOP_KEYWORDS = r"(?:To|Cc|Bcc|Sent|Date|Subject|Reply[\s_-]*Required|Stage|Importance)"

_HEADER_FROM_RE = re.compile(r"^(?:From|Sender)[ \t]*:[ \t]*(.+)$", re.IGNORECASE | re.MULTILINE)
_BODY_FROM_RE = re.compile(
    rf"(?:^|\s)From[ \t]*:[ \t]*(.+?)(?=\s+{_STOP_KEYWORDS}[ \t]*:|[ \t]*$)",
    re.IGNORECASE | re.MULTILINE,
)


def _clean(value: TextLike) -> Optional[str]:
    if value is None:
        return None
    text = decode_text(value).strip()
    return text or None


def _unfold_headers(blob: str) -> str:
    # RFC 2822 continuation lines start with whitespace
    return re.sub(r"\r?\n[ \t]+", " ", blob)


def from_direct_fields(source: SenderSource) -> Optional[str]:
    for value in (
        source.sender_email,
        source.sender_name,
        source.sent_representing_email,
        source.sent_representing_name,
    ):
        cleaned = _clean(value)
        if cleaned:
            return cleaned
    return None


def from_header_blob(source: SenderSource) -> Optional[str]:
    blob = _clean(source.transport_headers)
    if not blob:
        return None
    match = _HEADER_FROM_RE.search(_unfold_headers(blob))
    if match:
        return match.group(1).strip() or None
    return None


def find_from_in_text(text: Optional[str]) -> Optional[str]:
    """Find a From: value in body text, dedicated line or run-together line."""
    if not text:
        return None
    for match in _BODY_FROM_RE.finditer(text):
        value = match.group(1).strip()
        if value:
            return value
    return None


def from_plain_body(source: SenderSource) -> Optional[str]:
    return find_from_in_text(_clean(source.plain_body))


def from_html_body(source: SenderSource) -> Optional[str]:
    html = _clean(source.html_body)
    if not html:
        return None
    return find_from_in_text(html_to_plain_text(html))


Strategy = Tuple[str, Callable[[SenderSource], Optional[str]]]

DEFAULT_STRATEGIES: List[Strategy] = [
    ("direct_fields", from_direct_fields),
    ("header_blob", from_header_blob),
    ("body_plain", from_plain_body),
    ("body_html", from_html_body),
]


class SenderResolver:
    """Runs the sender strategies in priority order"""

    def __init__(self, strategies: Optional[List[Strategy]] = None):
        self.strategies = list(strategies or DEFAULT_STRATEGIES)

    def resolve(self, source: SenderSource) -> str:
        for name, strategy in self.strategies:
            try:
                value = strategy(source)
            except Exception as e:
                logger.warning(f"Sender strategy {name} failed: {e}")
                continue
            if value and value.strip():
                logger.debug(f"Sender resolved via {name}")
                return value.strip()
        return ""


def resolve_sender(source: SenderSource) -> str:
    return SenderResolver().resolve(source)
