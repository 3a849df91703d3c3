# parsing.py
# Text-level helpers for reading model output.
#
# extract_json() is shared by every stage that expects a JSON answer.
# Models wrap JSON in ```json fences, surround it with prose, or emit it
# bare; all three shapes must yield the same object.

import json
import re
from collections.abc import Iterator
from typing import Any


class ParseError(Exception):
    """Raised when model output holds no usable JSON object. Keeps the raw text."""

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

_FENCED_JSON = re.compile(r"```[ \t]*json[ \t]*\r?\n(.*?)```", re.DOTALL | re.IGNORECASE)
_FENCED_ANY = re.compile(r"```[ \t]*\w*[ \t]*\r?\n(.*?)```", re.DOTALL)


def _matching_brace(text: str, start: int) -> int | None:
    """Index of the brace closing the one at `start`, ignoring braces inside strings."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def _candidates(text: str) -> Iterator[str]:
    for match in _FENCED_JSON.finditer(text):
        yield match.group(1)
    for match in _FENCED_ANY.finditer(text):
        yield match.group(1)

    start = text.find("{")
    while start != -1:
        end = _matching_brace(text, start)
        if end is not None:
            yield text[start : end + 1]
        start = text.find("{", start + 1)

    yield text


def extract_json(raw: str) -> dict[str, Any]:
    """
    Return the first JSON object found in `raw`.

    Search order: a fenced ```json block, any other fenced block, each
    balanced {...} span from left to right, then the whole string.
    Raises ParseError carrying `raw` when nothing parses to an object.
    """
    text = (raw or "").strip()
    for candidate in _candidates(text):
        try:
            # strict=False tolerates literal newlines inside strings
            value = json.loads(candidate.strip(), strict=False)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    raise ParseError("Model output does not contain a JSON object.", raw)


def contains_json_candidate(raw: str) -> bool:
    """True when `raw` has anything that could be a JSON object."""
    return "{" in (raw or "")


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------

_ENGLISH_LIKE = re.compile(r"[\x20-\x7e\s]*")

_MESSAGE_MARKERS = re.compile(
    r"-{2,}\s*message start\s*-{2,}(.*?)(?:-{2,}\s*message end\s*-{2,}|\Z)",
    re.DOTALL | re.IGNORECASE,
)

_PREAMBLE = re.compile(
    r"^(?:here(?:'s| is) (?:the |your )?(?:english )?translation(?: of [^:\n]*)?"
    r"|(?:english )?translation|translated (?:text|request|message)|english)\s*:\s*",
    re.IGNORECASE,
)

_QUOTE_PAIRS = (('"', '"'), ("'", "'"), ("“", "”"), ("‘", "’"))


def is_english_like(text: str) -> bool:
    """Printable ASCII and whitespace only. Any non-ASCII letter means translation is needed."""
    return _ENGLISH_LIKE.fullmatch(text or "") is not None


def strip_quotes(text: str) -> str:
    """Remove exactly one layer of matching surrounding quotes."""
    for left, right in _QUOTE_PAIRS:
        if len(text) >= 2 and text.startswith(left) and text.endswith(right):
            return text[len(left) : -len(right)]
    return text


def clean_translation(raw: str) -> str:
    """Strip marker lines, translator preambles and quote wrapping from a translation."""
    text = (raw or "").strip()

    marked = _MESSAGE_MARKERS.search(text)
    if marked:
        text = marked.group(1).strip()

    text = _PREAMBLE.sub("", text, count=1).strip()
    text = strip_quotes(text).strip()

    return text or (raw or "").strip()
