"""
Model-backed classification and event extraction for imported messages.

A malformed model reply never raises: classification falls back to
reference/low and event extraction to an empty list. LLMUnavailableError
from the client is left to the caller, which decides how to degrade.
"""
import logging
from typing import List, Optional

from mailsearch.core.ai.ollama_client import OllamaClient
from mailsearch.core.ai.structured import extract_json_block
from mailsearch.core.email.models import Classification, ClassificationResult, ExtractedEvent

logger = logging.getLogger(__name__)

CLASSIFY_BODY_CHARS = 500
EVENT_BODY_CHARS = 4000
CONFIDENCE_LEVELS = ("high", "medium", "low")

CLASSIFY_SYSTEM_PROMPT = """You classify emails into exactly one category:
- reference: information only, announcements, nothing to answer
- reply_needed: needs an answer or a review
- urgent_reply: needs a quick answer or has a close deadline
- meeting: meeting schedules, invitations, anything about a meeting

The email may be written in Korean or English.
Answer with JSON only:
{"classification": "<category>", "confidence": "high|medium|low"}"""

EVENTS_SYSTEM_PROMPT = """You extract calendar events from emails.

Rules:
1. title must be specific (take it from the subject or body)
2. drop any event without a date
3. dates use "YYYY-MM-DD HH:mm" or "YYYY-MM-DD"
4. extract every event if there are several
5. use null instead of empty strings

Answer with a JSON array only:
[{"title": "...", "startDate": "YYYY-MM-DD HH:mm", "endDate": null, "location": null, "description": null}]
Return [] when there is no dated event."""


def classify_email(client: OllamaClient, subject: str, body: str, sender: str) -> ClassificationResult:
    """
    Ask the chat model for a category.

    Raises:
        LLMUnavailableError: the model service could not be reached
    """
    user_prompt = (
        "Classify this email:\n"
        f"From: {sender}\n"
        f"Subject: {subject}\n"
        f"Body: {(body or '')[:CLASSIFY_BODY_CHARS]}"
    )
    reply = client.chat([
        {"role": "system", "content": CLASSIFY_SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ])

    try:
        data = extract_json_block(reply, "{")
    except ValueError as e:
        logger.warning(f"Unparseable classification reply: {e}")
        return ClassificationResult()

    label = str(data.get("classification") or "").strip().lower()
    try:
        classification = Classification(label)
    except ValueError:
        logger.warning(f"Unknown classification '{label}', using reference")
        return ClassificationResult()

    confidence = str(data.get("confidence") or "medium").strip().lower()
    if confidence not in CONFIDENCE_LEVELS:
        confidence = "medium"
    return ClassificationResult(classification=classification, confidence=confidence)


def _clean_field(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def extract_events(client: OllamaClient, subject: str, body: str, date: str) -> List[ExtractedEvent]:
    """
    Ask the chat model for the dated events in a message.

    Events without a title or start date are dropped.

    Raises:
        LLMUnavailableError: the model service could not be reached
    """
    user_prompt = (
        "Extract every event from this email.\n"
        f"Subject: {subject}\n"
        f"Body:\n{(body or '')[:EVENT_BODY_CHARS]}\n\n"
        f"For reference, the email was received on: {date}"
    )
    reply = client.chat([
        {"role": "system", "content": EVENTS_SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ])

    try:
        items = extract_json_block(reply, "[")
    except ValueError as e:
        logger.warning(f"Unparseable event reply: {e}")
        return []

    events = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = _clean_field(item.get("title"))
        start = _clean_field(item.get("startDate") or item.get("start_date"))
        if not title or not start:
            continue
        events.append(ExtractedEvent(
            title=title,
            start_date=start,
            end_date=_clean_field(item.get("endDate") or item.get("end_date")),
            location=_clean_field(item.get("location")),
            description=_clean_field(item.get("description")),
        ))
    return events
