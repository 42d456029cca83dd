"""Lenient JSON extraction for reasoning-service replies.

Models asked for JSON still occasionally wrap it in markdown fences, put a
sentence before or after the object, leave raw newlines inside string values,
or end an object with a trailing comma. ``parse_model_json`` tries a strict
parse first and then applies progressively more aggressive repairs.
"""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional

from ..monitoring.logger import get_logger

logger = get_logger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z]*\s*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def strip_code_fences(raw: str) -> str:
    text = raw.strip()
    text = _FENCE_OPEN_RE.sub("", text)
    text = _FENCE_CLOSE_RE.sub("", text)
    return text.strip()


def escape_control_characters(raw: str) -> str:
    """Escape control characters that appear inside string literals only."""

    out: List[str] = []
    in_string = False
    escaped = False
    for ch in raw:
        if escaped:
            out.append(ch)
            escaped = False
        elif ch == "\\" and in_string:
            out.append(ch)
            escaped = True
        elif ch == '"':
            in_string = not in_string
            out.append(ch)
        elif in_string and ord(ch) < 0x20:
            out.append(_ESCAPES.get(ch, f"\\u{ord(ch):04x}"))
        else:
            out.append(ch)
    return "".join(out)


def extract_json_block(raw: str) -> str:
    """Return the first balanced ``{...}`` (or ``[...]``) span in ``raw``."""

    for opener, closer in (("{", "}"), ("[", "]")):
        start = raw.find(opener)
        if start == -1:
            continue
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(raw)):
            ch = raw[index]
            if escaped:
                escaped = False
                continue
            if ch == "\\" and in_string:
                escaped = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return raw[start : index + 1]
    return raw


def parse_model_json(raw: str, *, context: str = "") -> Any:
    """Parse ``raw`` into a Python object, raising ``ValueError`` when nothing works."""

    if not raw or not raw.strip():
        raise ValueError("empty reasoning response")

    candidates = []
    text = strip_code_fences(raw)
    candidates.append(raw)
    candidates.append(text)
    text = escape_control_characters(text)
    candidates.append(text)
    text = extract_json_block(text)
    candidates.append(text)
    text = _TRAILING_COMMA_RE.sub(r"\1", text)
    candidates.append(text)
    candidates.append(_CONTROL_CHARS_RE.sub("", text))

    last_error: Optional[json.JSONDecodeError] = None
    for attempt, candidate in enumerate(candidates):
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc
            continue
        if attempt > 1:
            logger.debug("Repaired reasoning JSON", extra={"context": context, "attempt": attempt})
        return result

    logger.warning(
        "Unable to parse reasoning JSON",
        extra={"context": context, "preview": raw[:300]},
    )
    raise ValueError(f"unparsable reasoning response: {last_error}")


__all__ = ["escape_control_characters", "extract_json_block", "parse_model_json", "strip_code_fences"]
