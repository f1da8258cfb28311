"""JSON extraction and truncation repair for model output.

Models wrap JSON in prose or code fences and sometimes stop mid-document
when they hit their token limit. These helpers recover what they can;
callers decide whether the result is usable.
"""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_TRAILING_KEY = re.compile(r",\s*\"[^\"]*\":\s*$")
_TRAILING_STRING = re.compile(r",\s*\"[^\"]*\"\s*$")
_TRAILING_COMMA = re.compile(r",\s*$")
_OPEN_STRING_VALUE = re.compile(r":\s*\"[^\"]*$")
_DANGLING_COLON = re.compile(r":\s*$")
_UNESCAPED_QUOTE = re.compile(r"(?<!\\)\"")

_CLOSERS = {"{": "}", "[": "]"}


def extract_json_text(text: str) -> str:
    """Strip fences and leading prose, returning the JSON-looking part of *text*."""
    match = _FENCE_PATTERN.search(text)
    candidate = (match.group(1) if match else text).strip()
    if candidate.startswith(("{", "[")):
        return candidate
    starts = [pos for pos in (candidate.find("{"), candidate.find("[")) if pos != -1]
    if starts:
        return candidate[min(starts) :]
    return candidate


def balance_brackets(text: str) -> str:
    """Append closers for every bracket left open outside strings."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if escaped:
            escaped = False
            continue
        if char == "\\" and in_string:
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in _CLOSERS:
            stack.append(char)
        elif char in ("}", "]") and stack and _CLOSERS[stack[-1]] == char:
            stack.pop()
    return text + "".join(_CLOSERS[opener] for opener in reversed(stack))


def _close_at(text: str) -> str:
    result = text.strip()
    result = _OPEN_STRING_VALUE.sub(": null", result)
    result = _DANGLING_COLON.sub(": null", result)
    result = _TRAILING_COMMA.sub("", result)
    return balance_brackets(result)


def _last_complete_object(text: str) -> Any | None:
    """Shorten an object document from the end until it closes cleanly."""
    if not text.strip().startswith("{"):
        return None
    truncated = text
    while len(truncated) > 2:
        try:
            return json.loads(_close_at(truncated))
        except json.JSONDecodeError:
            truncated = truncated[:-1]
    return None


def repair_json(text: str) -> Any | None:
    """Parse *text*, repairing common truncation damage.

    Returns the parsed value or ``None`` when nothing usable survives.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    repaired = text.strip()
    repaired = _TRAILING_KEY.sub("", repaired)
    repaired = _TRAILING_STRING.sub("", repaired)
    repaired = _TRAILING_COMMA.sub("", repaired)
    if len(_UNESCAPED_QUOTE.findall(repaired)) % 2:
        repaired += '"'
    repaired = balance_brackets(repaired)
    try:
        data = json.loads(repaired)
    except json.JSONDecodeError:
        data = _last_complete_object(text)
    return data if is_usable(data) else None


def is_usable(data: Any) -> bool:
    """Repaired output counts only if it is a non-empty object or array."""
    return isinstance(data, (dict, list)) and len(data) > 0
