"""
Structured-output extraction for model responses.

Models wrap JSON in markdown fences, prepend chatter, leave trailing commas
and sometimes stop mid-object. ``extract_json`` finds the first JSON value in
such text, balances it with a string-aware scan, closes truncated structures
and returns a string that ``json.loads`` accepts.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List

logger = logging.getLogger("json_extractor")

_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_TRAILING_COMMA_LOOKAHEAD_RE = re.compile(r",(?=\s*[}\]])")

_CLOSERS = {"{": "}", "[": "]"}


class JsonExtractionError(ValueError):
    """Raised when no parseable JSON value can be recovered."""

    def __init__(self, message: str, attempted: str = ""):
        self.attempted = attempted
        super().__init__(message)


def _is_valid(text: str) -> bool:
    try:
        json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return False
    return True


def _strip_fences(text: str) -> str:
    cleaned = re.sub(r"^```(?:json)?\s*", "", text)
    cleaned = re.sub(r"\s*```$", "", cleaned).strip()
    cleaned = re.sub(r"```json\s*", "", cleaned, flags=re.IGNORECASE)
    return re.sub(r"```\s*", "", cleaned)


def _balanced_span(text: str) -> tuple[str, List[str], bool]:
    """
    Scan *text* (which starts with ``{`` or ``[``) until its brackets balance.

    Returns the candidate span, the stack of closers still open when the text
    ran out, and whether the scan ended inside a string literal.
    """
    stack: List[str] = []
    in_string = False
    escape_next = False

    for i, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif stack and char == stack[-1]:
            stack.pop()
            if not stack:
                return text[: i + 1], [], False

    return text, stack, in_string


def extract_json(text: str) -> str:
    """
    Extract and repair a single JSON value from noisy model text.

    Parameters
    ----------
    text : str
        Raw model response.

    Returns
    -------
    str
        A JSON-parseable string. Valid input is returned unchanged.

    Raises
    ------
    JsonExtractionError
        If the input is empty, contains no ``{``/``[``, or cannot be
        repaired into valid JSON.
    """
    if not text or not isinstance(text, str):
        raise JsonExtractionError("Input text is invalid or empty.")

    if _is_valid(text):
        return text

    cleaned = _strip_fences(text.strip())
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", cleaned)

    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i != -1]
    if not starts:
        logger.error("No JSON start character found after cleanup (%d chars)", len(text))
        raise JsonExtractionError(
            "No JSON object/array found. Ensure the prompt requests JSON output only.",
            attempted=cleaned,
        )

    candidate, unclosed, in_string = _balanced_span(cleaned[min(starts):])
    if unclosed:
        logger.warning(
            "Could not find a balanced closing bracket (unclosed structures: %d). "
            "The response may be truncated. Attempting to auto-close.",
            len(unclosed),
        )
        if in_string:
            candidate += '"'
        candidate += "".join(reversed(unclosed))

    if _is_valid(candidate):
        return candidate

    logger.warning("Initial parse failed. Attempting to repair trailing commas.")
    repaired = _TRAILING_COMMA_LOOKAHEAD_RE.sub("", candidate)
    if _is_valid(repaired):
        return repaired

    logger.error("Parsing failed even after repair. Attempted: %s", candidate[:500])
    raise JsonExtractionError(
        f"Unable to parse JSON from AI response after multiple repair attempts: {candidate[:200]}",
        attempted=candidate,
    )


def parse_json(text: str) -> Any:
    """``json.loads(extract_json(text))``."""
    return json.loads(extract_json(text))
