"""
Lenient JSON decoding for intelligence-service answers.

Groq and OpenAI models answer the assessment, clustering and opportunity
prompts with JSON that is almost right. What we see in practice:
- the payload wrapped in a ```json fence, often after a sentence of prose
- trailing commas before a closing bracket
- Python literals (None, True, False) in place of JSON ones
- answers cut off by the token limit, mid-string or right after a key
- raw newlines inside summary strings

Everything here works on string-aware segments, so a bracket, comma or
literal inside a headline is never touched.
"""

import json
import logging
import re
from typing import Any, Dict, List, Tuple, Union

logger = logging.getLogger(__name__)

_FENCED = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_OPEN_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_OPENER = re.compile(r"[\[{]")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_PY_LITERAL = re.compile(r"\b(None|True|False)\b")
_PY_TO_JSON = {"None": "null", "True": "true", "False": "false"}
_CLOSER_FOR = {"{": "}", "[": "]"}

Segments = List[Tuple[bool, str]]


def _segments(text: str) -> Tuple[Segments, bool]:
    """Split text into (is_string, chunk) pieces. String chunks keep their quotes.

    The flag is True when the text ends inside an unterminated string.
    """
    pieces: Segments = []
    start = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                pieces.append((True, text[start:i + 1]))
                start = i + 1
                in_string = False
        elif ch == '"':
            if i > start:
                pieces.append((False, text[start:i]))
            start = i
            in_string = True
    if start < len(text):
        pieces.append((in_string, text[start:]))
    return pieces, in_string


def _strip_fence(text: str) -> str:
    match = _FENCED.search(text)
    if match:
        return match.group(1)
    # Truncated answers lose the closing fence
    return _OPEN_FENCE.sub("", text)


def normalise_json(text: str) -> str:
    """Drop trailing commas and map Python literals to JSON, outside strings only."""
    pieces, _ = _segments(text)
    out = []
    for is_string, chunk in pieces:
        if not is_string:
            chunk = _TRAILING_COMMA.sub(r"\1", chunk)
            chunk = _PY_LITERAL.sub(lambda m: _PY_TO_JSON[m.group(1)], chunk)
        out.append(chunk)
    return "".join(out)


def extract_json_string(text: str) -> str:
    """The first balanced JSON object or array in text; a truncated one is closed."""
    match = _OPENER.search(text)
    if not match:
        return text
    body = text[match.start():]
    pieces, _ = _segments(body)
    expected: List[str] = []
    offset = 0
    for is_string, chunk in pieces:
        if not is_string:
            for j, ch in enumerate(chunk):
                if ch in _CLOSER_FOR:
                    expected.append(_CLOSER_FOR[ch])
                elif expected and ch == expected[-1]:
                    expected.pop()
                    if not expected:
                        return body[:offset + j + 1]
        offset += len(chunk)
    return repair_truncated_json(body)


def repair_truncated_json(text: str) -> str:
    """Close whatever a cut-off answer left open: string, key, value and brackets."""
    pieces, open_string = _segments(text)
    expected: List[str] = []
    for is_string, chunk in pieces:
        if is_string:
            continue
        for ch in chunk:
            if ch in _CLOSER_FOR:
                expected.append(_CLOSER_FOR[ch])
            elif expected and ch == expected[-1]:
                expected.pop()

    if open_string:
        text += '"'
        pieces[-1] = (True, pieces[-1][1] + '"')

    # A key with no value yet: {"a": 1, "b"
    if (
        expected and expected[-1] == "}" and len(pieces) >= 2
        and pieces[-1][0] and not pieces[-2][0] and pieces[-2][1].rstrip().endswith((",", "{"))
    ):
        text = text[:-len(pieces[-1][1])]

    text = text.rstrip().rstrip(",").rstrip()
    if text.endswith(":"):
        text += " null"
    return text + "".join(reversed(expected))


def parse_json_response(response: str) -> Union[Dict[str, Any], List[Any]]:
    """Decode a model answer. Returns {"error": ...} when nothing usable is found."""
    text = _strip_fence((response or "").strip()).strip()
    if not text:
        return {"error": "Empty response"}

    json_str = extract_json_string(text)
    last_error = None
    # strict=False lets raw newlines and tabs through inside strings
    for candidate in dict.fromkeys((json_str, normalise_json(json_str))):
        try:
            return json.loads(candidate, strict=False)
        except json.JSONDecodeError as e:
            last_error = e
    logger.error(f"Failed to parse JSON: {last_error}\nResponse: {json_str[:500]}")
    return {"error": "Failed to parse JSON", "raw": json_str[:500]}
