"""
Text normalization for archive message bodies.

Archive entries arrive with unreliable encodings, HTML-only bodies and
pseudo-header blocks pasted at the top of the body. Everything in here is
best effort: functions return a usable string and never raise for content
that merely could not be decoded or converted.
"""
import html as html_lib
import logging
import re
from typing import Iterable, Optional, Union

from bs4 import BeautifulSoup, Comment

logger = logging.getLogger(__name__)

REPLACEMENT_CHAR = "�"

# Tried in order after UTF-8. Korean code pages first: most legacy archives
# this was built for come from Korean Outlook installs.
LEGACY_ENCODINGS = ("cp949", "euc_kr", "shift_jis", "gb18030", "big5")

# C0 controls except tab/newline/carriage return, DEL, and C1 controls.
# C1 code points practically only show up in mis-decoded text.
_STRAY_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

_DOCTYPE_RE = re.compile(r"^\s*<!doctype\s+html", re.IGNORECASE)
_STRUCTURAL_TAG_RE = re.compile(
    r"<\s*/?\s*(html|head|body|div|p|br|table|tr|td|span|font|meta|style)(?=[\s/>])[^>]*>",
    re.IGNORECASE,
)
# Outlook leaves this comment in bodies it converted from RTF
RTF_CONVERTED_MARKER = "converted from text/rtf format"

_BLOCK_TAGS = [
    "p", "div", "tr", "li", "ul", "ol", "table", "blockquote", "pre",
    "h1", "h2", "h3", "h4", "h5", "h6", "hr", "section", "article",
]

HEADER_SCAN_LIMIT = 15
MIN_INJECTED_HEADER_LINES = 3

_HEADER_KEY_RE = re.compile(
    r"^\s*(?:stage|from|sender|to|cc|bcc|reply[\s_-]*required|date|sent|subject"
    r"|importance|attachments?|보낸\s*사람|받는\s*사람|참조|제목|보낸\s*날짜|날짜)\s*:",
    re.IGNORECASE,
)


def _is_clean(text: str) -> bool:
    return REPLACEMENT_CHAR not in text and not _STRAY_CONTROL_RE.search(text)


def _underlying_bytes(text: str) -> bytes:
    """Recover the bytes a mis-decoded string most likely came from."""
    try:
        # Single-byte decoders map every byte to one code point <= 0xFF
        return text.encode("latin-1")
    except UnicodeEncodeError:
        return text.encode("utf-8", errors="replace")


def decode_text(raw: Union[str, bytes, bytearray, None]) -> str:
    """
    Return readable text from a possibly mis-decoded string or raw bytes.

    Clean strings are returned untouched. Otherwise the underlying bytes are
    decoded as UTF-8 and then with each of LEGACY_ENCODINGS; the first
    candidate without replacement characters or stray control characters
    wins. When every candidate fails the original string comes back (bytes
    fall back to UTF-8 with replacement).
    """
    if raw is None:
        return ""

    if isinstance(raw, (bytes, bytearray)):
        # Container string properties are often NUL terminated
        data = bytes(raw).rstrip(b"\x00")
        original = None
    else:
        if _is_clean(raw):
            return raw
        data = _underlying_bytes(raw)
        original = raw

    for encoding in ("utf-8",) + LEGACY_ENCODINGS:
        try:
            candidate = data.decode(encoding, errors="replace")
        except LookupError:
            continue
        if _is_clean(candidate):
            if encoding != "utf-8":
                logger.debug(f"Recovered text using {encoding}")
            return candidate

    if original is not None:
        return original
    return data.decode("utf-8", errors="replace")


def looks_like_html(text: Optional[str]) -> bool:
    """True for doctype-prefixed text, structural markup or the RTF-conversion marker."""
    if not text:
        return False
    if _DOCTYPE_RE.match(text):
        return True
    if RTF_CONVERTED_MARKER in text.lower():
        return True
    return bool(_STRUCTURAL_TAG_RE.search(text))


def _collapse_whitespace(text: str) -> str:
    text = text.replace("\xa0", " ").replace("\r\n", "\n").replace("\r", "\n")
    lines = [re.sub(r"[ \t\f\v]+", " ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _strip_tags_crudely(html: str) -> str:
    text = re.sub(r"(?is)<(script|style)\b.*?</\1\s*>", " ", html)
    text = re.sub(r"(?i)<br\s*/?>", "\n", text)
    text = re.sub(r"(?i)</(p|div|tr|li|h[1-6])\s*>", "\n", text)
    text = re.sub(r"<[^>]+>", " ", text)
    return _collapse_whitespace(html_lib.unescape(text))


def html_to_plain_text(html: Optional[str]) -> str:
    """
    Convert HTML to plain text.

    Style/script blocks and images are dropped, block elements become line
    breaks. Falls back to a regex tag stripper if parsing fails.
    """
    if not html:
        return ""

    try:
        soup = BeautifulSoup(html, "html.parser")

        for tag in soup(["script", "style", "img", "head"]):
            tag.decompose()
        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()

        for br in soup.find_all("br"):
            br.replace_with("\n")
        for block in soup.find_all(_BLOCK_TAGS):
            block.insert_before("\n")
            block.insert_after("\n")

        return _collapse_whitespace(soup.get_text())
    except Exception as e:
        logger.warning(f"HTML conversion failed, stripping tags instead: {e}")
        return _strip_tags_crudely(html)


def strip_injected_header_block(text: Optional[str]) -> str:
    """
    Remove a pseudo-header block pasted at the start of a body.

    Looks at up to HEADER_SCAN_LIMIT lines from the first non-blank one and
    counts consecutive "Key:" lines with a known header key (blank lines in
    between are skipped). Fewer than MIN_INJECTED_HEADER_LINES leaves the text
    untouched, so one or two incidental colon lines survive.
    """
    if not text:
        return ""

    lines = text.replace("\r\n", "\n").split("\n")
    start = next((i for i, line in enumerate(lines) if line.strip()), None)
    if start is None:
        return text

    header_count = 0
    last_header_index = start
    for i in range(start, min(len(lines), start + HEADER_SCAN_LIMIT)):
        line = lines[i]
        if not line.strip():
            continue
        if not _HEADER_KEY_RE.match(line):
            break
        header_count += 1
        last_header_index = i

    if header_count < MIN_INJECTED_HEADER_LINES:
        return text

    remainder = lines[last_header_index + 1:]
    while remainder and not remainder[0].strip():
        remainder.pop(0)
    return "\n".join(remainder)


def normalize_body(text: Optional[str]) -> str:
    """Header strip, trailing whitespace per line, blank-line runs, outer trim."""
    if not text:
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = strip_injected_header_block(text)
    text = "\n".join(line.rstrip() for line in text.split("\n"))
    # Three or more blank lines become a single one
    text = re.sub(r"\n{4,}", "\n\n", text)
    return text.strip()


def extract_body(
    plain_text: Union[str, bytes, None] = None,
    html: Union[str, bytes, None] = None,
) -> str:
    """
    Pick and normalize the body of a message.

    Plain text wins unless it is itself markup; markup-shaped plain text is
    converted, and without plain text the HTML body is converted.
    """
    plain = decode_text(plain_text) if plain_text else ""

    if plain.strip():
        body = html_to_plain_text(plain) if looks_like_html(plain) else plain
    elif html:
        body = html_to_plain_text(decode_text(html))
    else:
        body = ""

    return normalize_body(body)


def make_snippet(text: str, tokens: Iterable[str], width: int = 160) -> str:
    """Short excerpt around the first token hit (or the start of the text)."""
    if not text:
        return ""

    flat = re.sub(r"\s+", " ", text).strip()
    lower = flat.lower()
    hit = -1
    for token in tokens:
        token = token.lower()
        if not token:
            continue
        pos = lower.find(token)
        if pos != -1 and (hit == -1 or pos < hit):
            hit = pos

    if hit == -1 or len(flat) <= width:
        return flat[:width] + ("..." if len(flat) > width else "")

    start = max(0, hit - width // 3)
    end = min(len(flat), start + width)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(flat) else ""
    return f"{prefix}{flat[start:end]}{suffix}"
