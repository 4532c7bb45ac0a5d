"""File Analyst: batched LLM classification of each file's purpose and role."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .cancel import CancelToken
from .llm_client import ChatFn, LLMSettings, llm_chat
from .model import AnalyzedFile, FileRole, LogCategory, LogEntryFn, emit
from .path_resolver import PathResolver, basename
from .prompts import FILE_ANALYST_RETRY, FILE_ANALYST_SYSTEM
from .retry import CorrectiveRetry

BATCH_SIZE = 10
VALID_ROLES = {r.value for r in FileRole}

PY_ENTRY_NAMES = {"__main__.py", "main.py", "app.py", "manage.py", "wsgi.py", "asgi.py"}
PY_MODEL_NAMES = {"models.py", "types.py", "schemas.py", "entities.py"}
PY_CONFIG_NAMES = {"settings.py", "conftest.py"}


@dataclass
class FileSummary:
    path: str
    symbols: List[str] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)

    @classmethod
    def from_file(cls, f: AnalyzedFile) -> "FileSummary":
        return cls(
            path=f.file_path,
            symbols=[f"{s.name} ({s.kind})" for s in f.symbols],
            imports=[i.source for i in f.imports],
            exports=list(f.exported_symbols),
        )


@dataclass
class FileAnalysis:
    file_path: str
    purpose: str
    role: FileRole


def infer_role_from_path(file_path: str) -> FileRole:
    """Classify a file by naming conventions alone."""
    name = basename(file_path)
    if name.startswith("use") and name.endswith(".ts"):
        return FileRole.HOOK
    if name.endswith(".tsx") and name != "App.tsx":
        return FileRole.COMPONENT
    if re.search(r"[Ss]ervice", name):
        return FileRole.SERVICE
    if name == "types.ts" or name.endswith(".d.ts") or name in PY_MODEL_NAMES:
        return FileRole.MODEL
    if re.search(r"\.test\.|\.spec\.", name) or re.match(r"test_.*\.py$", name) or name.endswith("_test.py"):
        return FileRole.TEST
    if re.search(r"config", name, re.IGNORECASE) or name in PY_CONFIG_NAMES:
        return FileRole.CONFIG
    if re.search(r"\.(css|scss|less)$", name):
        return FileRole.STYLE
    if name in ("App.tsx", "index.ts", "main.ts") or name in PY_ENTRY_NAMES:
        return FileRole.ENTRY_POINT
    return FileRole.UTILITY


def path_fallback(path: str) -> FileAnalysis:
    return FileAnalysis(file_path=path, purpose=path, role=infer_role_from_path(path))


def build_file_analyst_prompt(files: List[FileSummary]) -> str:
    entries = []
    for f in files:
        lines = [f"File: {f.path}"]
        if f.symbols:
            lines.append(f"Symbols: {', '.join(f.symbols)}")
        if f.imports:
            lines.append(f"Imports: {', '.join(f.imports)}")
        if f.exports:
            lines.append(f"Exports: {', '.join(f.exports)}")
        entries.append("\n".join(lines))
    return "\n\n".join(entries)


def validate_file_analyses(raw: Any, expected_paths: List[str]) -> Optional[List[FileAnalysis]]:
    """Keep entries whose path resolves into the batch; accept when at least half resolve.

    Entries with an unknown role get the path-heuristic role. Duplicate
    resolutions keep the first entry.
    """
    if not isinstance(raw, list):
        return None
    resolve = PathResolver(expected_paths)
    seen = set()
    results: List[FileAnalysis] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        candidate = item.get("filePath", item.get("file_path"))
        if not isinstance(candidate, str):
            continue
        resolved = resolve(candidate)
        if resolved is None or resolved in seen:
            continue
        purpose = item.get("purpose")
        role = item.get("role")
        seen.add(resolved)
        results.append(FileAnalysis(
            file_path=resolved,
            purpose=purpose if isinstance(purpose, str) and purpose else candidate,
            role=FileRole(role) if isinstance(role, str) and role in VALID_ROLES else infer_role_from_path(resolved),
        ))
    if len(results) >= math.ceil(len(expected_paths) / 2):
        return results
    return None


async def analyze_files_batch(
    files: List[FileSummary],
    settings: LLMSettings,
    *,
    chat: ChatFn = llm_chat,
    cancel: Optional[CancelToken] = None,
    log: Optional[LogEntryFn] = None,
    llm_log: Optional[Callable[[str], None]] = None,
    label: str = "file_analyst",
) -> List[FileAnalysis]:
    """Analyse one batch; the result always covers every file of the batch exactly once."""
    expected = [f.path for f in files]
    retry: CorrectiveRetry[List[FileAnalysis]] = CorrectiveRetry(
        label, build_file_analyst_prompt(files), FILE_ANALYST_RETRY, category=LogCategory.AI_ANALYZE,
    )
    validated = await retry.run(
        chat,
        FILE_ANALYST_SYSTEM,
        settings,
        lambda parsed: validate_file_analyses(parsed, expected),
        prefer="[",
        cancel=cancel,
        log=log,
        llm_log=llm_log,
    )
    if validated is None:
        emit(log, LogCategory.AI_ANALYZE, f"{label}: using path heuristics for {len(files)} files")
        return [path_fallback(p) for p in expected]

    covered = {a.file_path for a in validated}
    missing = [p for p in expected if p not in covered]
    if missing:
        emit(log, LogCategory.AI_ANALYZE, f"{label}: back-filled {len(missing)} files from path heuristics")
    return validated + [path_fallback(p) for p in missing]
