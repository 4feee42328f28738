"""
Best-effort JSON recovery for Gemini / LLM text responses.

Models wrap JSON in prose, emit raw newlines inside string values, or leave
stray tokens behind. Recovery layers run strictly in order; each one only
runs after the previous has failed.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_DOT_BEFORE_COMMA = re.compile(r'"\s*\.(?=\s*,)')
_DOT_BEFORE_QUOTE = re.compile(r'"(\s*)\.(?=\s*")')
_TRAILING_COMMA = re.compile(r",(?=\s*[}\]])")

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


class JsonRecoveryError(ValueError):
    """No recovery layer produced valid JSON; `original` is the first decode error."""

    def __init__(self, original: json.JSONDecodeError):
        super().__init__(str(original))
        self.original = original


def escape_control_chars_in_strings(text: str) -> str:
    """Escape literal newlines, carriage returns and tabs inside string literals."""
    output: list[str] = []
    in_string = False
    escaped = False

    for ch in text:
        if escaped:
            output.append(ch)
            escaped = False
            continue
        if ch == "\\":
            output.append(ch)
            escaped = True
            continue
        if ch == '"':
            output.append(ch)
            in_string = not in_string
            continue
        if in_string and ch in _CONTROL_ESCAPES:
            output.append(_CONTROL_ESCAPES[ch])
            continue
        output.append(ch)

    return "".join(output)


def sanitize_json_text(text: str) -> str:
    text = _DOT_BEFORE_COMMA.sub('"', text)
    text = _DOT_BEFORE_QUOTE.sub(r'"\1,', text)
    return _TRAILING_COMMA.sub("", text)


def parse_model_json(raw_text: str) -> Any:
    """
    Parse JSON out of a model response.

    Layers: direct parse, first '{' to last '}' slice, control-character
    escaping inside strings, token sanitation (stray '.' and trailing commas).

    Raises:
        JsonRecoveryError: chained from the original direct-parse error
    """
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError as original:
        start = raw_text.find("{")
        end = raw_text.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise JsonRecoveryError(original) from original

        candidate = raw_text[start : end + 1]
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass

        escaped = escape_control_chars_in_strings(candidate)
        try:
            return json.loads(escaped)
        except json.JSONDecodeError:
            pass

        try:
            return json.loads(sanitize_json_text(escaped))
        except json.JSONDecodeError:
            logger.debug(f"JSON recovery exhausted: {raw_text[:200]}")
            raise JsonRecoveryError(original) from original
