"""Helpers for parsing JSON out of LLM outputs."""

from __future__ import annotations

import json
import re
from typing import Any, Optional

CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE | re.MULTILINE)
LINE_COMMENT_RE = re.compile(r"(?m)^\s*//.*?$")
BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

BRACKETS = {"[": "]", "{": "}"}


class JSONExtractError(ValueError):
    """No JSON value could be recovered from the text."""


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences from text."""
    return CODE_FENCE_RE.sub("", text).strip()


def strip_json_comments(text: str) -> str:
    return LINE_COMMENT_RE.sub("", BLOCK_COMMENT_RE.sub("", text))


def remove_trailing_commas(text: str) -> str:
    cleaned = TRAILING_COMMA_RE.sub(r"\1", text)
    return cleaned if cleaned == text else remove_trailing_commas(cleaned)


def _opening_index(text: str, prefer: Optional[str]) -> int:
    positions = {c: text.find(c) for c in BRACKETS}
    if prefer in positions and positions[prefer] != -1:
        return positions[prefer]
    found = [p for p in positions.values() if p != -1]
    return min(found) if found else -1


def _matching_close(text: str, start: int) -> int:
    """Index of the bracket closing ``text[start]``, skipping quoted strings."""
    open_c = text[start]
    close_c = BRACKETS[open_c]
    depth = 0
    in_str = escaped = False
    for i, ch in enumerate(text[start:], start):
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
        elif ch == '"':
            in_str = True
        elif ch == open_c:
            depth += 1
        elif ch == close_c:
            depth -= 1
            if depth == 0:
                return i
    return -1


def extract_first_json_value(text: str, prefer: Optional[str] = None) -> Optional[str]:
    """Extract the first balanced JSON object or array from raw text.

    prefer may be "[" or "{" to pick that bracket type when both occur.
    """
    text = text.strip()
    start = _opening_index(text, prefer)
    if start == -1:
        return None
    end = _matching_close(text, start)
    return text[start:end + 1] if end != -1 else None


def best_effort_json_text(raw: str, prefer: Optional[str] = None) -> Optional[str]:
    text = strip_json_comments(strip_code_fences(raw)).strip()
    text = extract_first_json_value(text, prefer) or text
    return remove_trailing_commas(text) or None


def parse_json_response(raw: str, prefer: Optional[str] = None) -> Any:
    """Parse raw LLM text as JSON, cleaning fences, comments and trailing commas.

    Raises JSONExtractError when nothing parses.
    """
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        pass
    cleaned = best_effort_json_text(raw or "", prefer)
    if cleaned:
        try:
            return json.loads(cleaned)
        except ValueError as e:
            raise JSONExtractError(f"Invalid JSON in response: {e}") from e
    raise JSONExtractError("No JSON value found in response")
