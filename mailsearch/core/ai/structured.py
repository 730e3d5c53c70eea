"""
Recovering JSON from free-text model replies.
"""
import json
import re
from typing import Any

_BLOCK_PATTERNS = {
    "{": re.compile(r"\{.*\}", re.S),
    "[": re.compile(r"\[.*\]", re.S),
}


def extract_json_block(raw: str, opener: str = "{") -> Any:
    """
    Parse the JSON object ("{") or array ("[") embedded in a model reply.

    Tries the whole reply first, then the span from the first opener to the
    last matching closer (models like to wrap JSON in prose or code fences).

    Raises:
        ValueError: no parseable block of the requested kind
    """
    if opener not in _BLOCK_PATTERNS:
        raise ValueError(f"Unsupported JSON opener: {opener!r}")

    raw = (raw or "").strip()
    if not raw:
        raise ValueError("empty model response")

    expected = dict if opener == "{" else list

    try:
        value = json.loads(raw)
        if isinstance(value, expected):
            return value
    except ValueError:
        pass

    match = _BLOCK_PATTERNS[opener].search(raw)
    if not match:
        raise ValueError(f"model response did not contain a JSON {expected.__name__}")

    value = json.loads(match.group(0))
    if not isinstance(value, expected):
        raise ValueError(f"extracted JSON was not a {expected.__name__}")
    return value
