"""Regex event extraction used when the model service is unreachable.

Finds explicit calendar dates (2025-01-14, 2025.01.14, 2025/01/14,
2025년 1월 14일, or 1월 14일 with the year of the message date) with an
optional time right after them. The subject becomes the event title.
This is a best guess, not a calendar parser.
"""
import logging
import re
from datetime import date
from typing import List, Optional

from mailsearch.core.email.models import ExtractedEvent, NO_SUBJECT

logger = logging.getLogger(__name__)

_TIME_SUFFIX = (
    r"(?:\s*\([^)]{1,6}\))?"  # weekday such as (화) or (Tue)
    r"(?:\s*,?\s*(?:"
    r"(?P<hh>\d{1,2}):(?P<mm>\d{2})(?:\s*(?P<meridiem>[AaPp][Mm]))?"
    r"|(?P<ko_meridiem>오전|오후)\s*(?P<ko_hour>\d{1,2})\s*시(?:\s*(?P<ko_minute>\d{1,2})\s*분)?"
    r"))?"
)

_DATE_PATTERNS = [
    re.compile(r"(?<!\d)(?P<y>\d{4})[-./](?P<m>\d{1,2})[-./](?P<d>\d{1,2})(?!\d)" + _TIME_SUFFIX),
    re.compile(r"(?P<y>\d{4})\s*년\s*(?P<m>\d{1,2})\s*월\s*(?P<d>\d{1,2})\s*일" + _TIME_SUFFIX),
    # Month and day only; the year comes from the message date
    re.compile(r"(?<!년)(?<!년 )(?<!\d)(?P<m>\d{1,2})\s*월\s*(?P<d>\d{1,2})\s*일" + _TIME_SUFFIX),
]

_LOCATION_RE = re.compile(r"^\s*(?:장소|location|venue|where)\s*[:：]\s*(.+)$", re.IGNORECASE | re.MULTILINE)

MAX_DESCRIPTION_LENGTH = 200


def _time_from_match(match: re.Match) -> Optional[str]:
    if match.group("hh"):
        hour, minute = int(match.group("hh")), int(match.group("mm"))
        meridiem = (match.group("meridiem") or "").lower()
        if meridiem == "pm" and hour < 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
    elif match.group("ko_hour"):
        hour = int(match.group("ko_hour"))
        minute = int(match.group("ko_minute") or 0)
        if match.group("ko_meridiem") == "오후" and hour < 12:
            hour += 12
        elif match.group("ko_meridiem") == "오전" and hour == 12:
            hour = 0
    else:
        return None

    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def _line_around(text: str, pos: int) -> str:
    start = text.rfind("\n", 0, pos) + 1
    end = text.find("\n", pos)
    line = text[start:end if end != -1 else len(text)].strip()
    return line[:MAX_DESCRIPTION_LENGTH]


def extract_events_locally(subject: Optional[str], body: Optional[str], date_hint: Optional[str] = None) -> List[ExtractedEvent]:
    """Events for every explicit date in subject or body, one per distinct start."""
    text = f"{subject or ''}\n{body or ''}"
    title = (subject or "").strip() or NO_SUBJECT

    location_match = _LOCATION_RE.search(body or "")
    location = location_match.group(1).strip() if location_match else None

    year_match = re.match(r"\s*(\d{4})", date_hint or "")
    hint_year = int(year_match.group(1)) if year_match else None

    found = []
    for pattern in _DATE_PATTERNS:
        for match in pattern.finditer(text):
            year = match.groupdict().get("y")
            year = int(year) if year else hint_year
            if year is None:
                continue
            try:
                day = date(year, int(match.group("m")), int(match.group("d")))
            except ValueError:
                continue
            start = day.isoformat()
            clock = _time_from_match(match)
            if clock:
                start = f"{start} {clock}"
            found.append((match.start(), start))

    events = []
    seen = set()
    for pos, start in sorted(found):
        if start in seen:
            continue
        seen.add(start)
        events.append(ExtractedEvent(
            title=title,
            start_date=start,
            location=location,
            description=_line_around(text, pos) or None,
        ))

    if events:
        logger.debug(f"Found {len(events)} event(s) locally in '{title[:50]}'")
    return events
