"""Build and sanitize Mermaid sequence diagrams for flows."""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

MERMAID_BLOCK_START_RE = re.compile(r"^\s*```(?:mermaid)?\s*$")
MERMAID_BLOCK_END_RE = re.compile(r"^\s*```\s*$")
SEQUENCE_HEADER = "sequenceDiagram"


def _slugify_id(text: str) -> str:
    """Make a Mermaid-safe identifier."""
    slug = re.sub(r"[^A-Za-z0-9]+", "_", text).strip("_")
    return slug or "node"


def _escape_label(text: str) -> str:
    """Keep message and alias text on one line and free of statement separators."""
    text = re.sub(r"\s+", " ", text).strip()
    return text.replace(";", ",").replace("#", "")


def participant_alias(label: str) -> str:
    """Display alias for a file participant: its name without extension."""
    name = label.rsplit("/", 1)[-1]
    if "." in name.lstrip("."):
        name = name.rsplit(".", 1)[0]
    return _escape_label(name) or "node"


def strip_mermaid_fence(text: str) -> str:
    """Drop a surrounding ```mermaid fence if present."""
    lines = text.strip().splitlines()
    if lines and MERMAID_BLOCK_START_RE.match(lines[0]):
        lines = lines[1:]
        if lines and MERMAID_BLOCK_END_RE.match(lines[-1]):
            lines = lines[:-1]
    return "\n".join(lines).strip()


def is_sequence_diagram(text: Optional[str]) -> bool:
    if not isinstance(text, str):
        return False
    return strip_mermaid_fence(text).startswith(SEQUENCE_HEADER)


def build_sequence_diagram(
    participants: Sequence[Tuple[str, str]],
    messages: Sequence[Tuple[str, str, str]],
) -> str:
    """Render participants (id, label) and messages (source, target, text).

    Ids are slugified; duplicated participant ids are declared once.
    """
    lines: List[str] = [SEQUENCE_HEADER]
    declared = set()
    for pid, label in participants:
        slug = _slugify_id(pid)
        if slug in declared:
            continue
        declared.add(slug)
        lines.append(f"  participant {slug} as {participant_alias(label)}")
    for src, dst, text in messages:
        lines.append(f"  {_slugify_id(src)}->>{_slugify_id(dst)}: {_escape_label(text) or 'calls'}")
    return "\n".join(lines)


def sanitize_sequence_diagram(text: str) -> str:
    """Normalize an LLM-provided diagram: strip fences and trailing blanks."""
    body = strip_mermaid_fence(text)
    return "\n".join(line.rstrip() for line in body.splitlines() if line.strip())
