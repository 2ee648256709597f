"""
JSON extraction for model replies.
"""

from __future__ import annotations

import json
import re
from typing import Any

_FENCED_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def _loads_object(candidate: str) -> dict[str, Any] | None:
    try:
        value = json.loads(_TRAILING_COMMA_RE.sub(r"\1", candidate))
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object found in a model reply, or None.

    Tries, in order: the whole text, a fenced ```json block, then the first
    balanced ``{...}`` span. Trailing commas are tolerated.
    """
    if not isinstance(text, str) or not text.strip():
        return None

    direct = _loads_object(text.strip())
    if direct is not None:
        return direct

    m = _FENCED_RE.search(text)
    if m:
        fenced = _loads_object(m.group(1))
        if fenced is not None:
            return fenced

    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(text[start:], start):
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
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return _loads_object(text[start:i + 1])
    return None
