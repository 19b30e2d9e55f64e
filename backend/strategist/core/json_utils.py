"""Helpers for pulling JSON out of model output."""

import json
import re
from typing import Any, Literal

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_LEADING_JSON_TAG = re.compile(r"^\s*json\s*", re.IGNORECASE)


def _balanced_span(text: str, open_char: str, close_char: str) -> str | None:
    """Return the first balanced ``open_char``...``close_char`` span.

    Brackets inside JSON string literals are ignored.
    """
    start = text.find(open_char)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == open_char:
                depth += 1
            elif ch == close_char:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find(open_char, start + 1)
    return None


def extract_json(text: str, expect: Literal["object", "array"] = "object") -> Any:
    """Extract JSON from text that may be wrapped in markdown code fences.

    Strategies (in order):
    1. Direct ``json.loads()`` on the text with fences and a leading
       ``json`` tag removed.
    2. The first balanced ``{...}`` (or ``[...]`` when ``expect="array"``).

    Raises:
        ValueError: If no valid JSON can be extracted.
    """
    fence_match = _FENCE_PATTERN.search(text)
    body = fence_match.group(1) if fence_match else text
    body = _LEADING_JSON_TAG.sub("", body.strip(), count=1).strip()

    try:
        return json.loads(body)
    except (json.JSONDecodeError, ValueError):
        pass

    open_char, close_char = ("[", "]") if expect == "array" else ("{", "}")
    span = _balanced_span(body, open_char, close_char)
    if span is not None:
        try:
            return json.loads(span)
        except (json.JSONDecodeError, ValueError):
            pass

    raise ValueError(f"No valid JSON found in text: {text.strip()[:100]}...")


def safe_json_parse(
    text: str,
    fallback: Any = None,
    expect: Literal["object", "array"] = "object",
) -> Any:
    """Like :func:`extract_json` but returns ``fallback`` instead of raising."""
    try:
        return extract_json(text, expect=expect)
    except ValueError:
        return fallback
