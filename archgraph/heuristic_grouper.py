"""Deterministic functional grouping by naming conventions and import affinity."""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .model import AnalyzedFile, CodebaseAnalysis, CodebaseModule, LogCategory, LogEntryFn, emit
from .path_resolver import basename, strip_extension

GROUP_PATTERNS: List[Tuple[str, str, re.Pattern]] = [
    ("Code Graph", "Code graph creation, visualization, and synchronization",
     re.compile(r"[Cc]ode[Gg]raph")),
    ("AI Intelligence", "AI chat, LLM integration, and intelligent analysis",
     re.compile(r"chat|llm|ai(?:chat|gen|service)|gemini|openai|anthropic", re.IGNORECASE)),
    ("Code Sync", "Code scanning, divergence detection, and sync management",
     re.compile(r"[Ss]can(?:ner|Result)|[Ss]ync(?:Handler|Mode|Status)|[Dd]ivergence|codeScannerService")),
    ("Diagram Editor", "Diagram editing, rendering, and analysis",
     re.compile(r"[Dd]iagram(?:Anal|Gen|Handler)|[Mm]ermaid|[Ee]ditor(?:\.tsx)?$|[Pp]review(?:\.tsx)?$|useDiagram")),
    ("Navigation", "Multi-level navigation, breadcrumbs, and zoom",
     re.compile(r"[Nn]avigat|[Bb]readcrumb|[Zz]oom")),
    ("Workspace", "Workspace management, folder hierarchy, and sidebar",
     re.compile(r"[Ss]idebar|[Ff]older(?:Handler)?|[Ww]orkspace(?:Handler|View)?")),
    ("Storage", "Data persistence, encrypted storage, and caching",
     re.compile(r"storage|persist|crypto|indexeddb", re.IGNORECASE)),
    ("Import & Export", "File import/export, blueprint format handling",
     re.compile(r"[Ee]xport|[Ii]mport|[Bb]lueprint(?:Export|Import)")),
    ("Code Integration", "Repository management, code linking, and file system access",
     re.compile(r"[Cc]ode[Ll]ink|[Rr]epo(?:Manager|Handler|Config)|[Ff]ile[Ss]ystem")),
    ("Annotations", "Comments, node links, and SVG badge injection",
     re.compile(r"[Cc]omment|[Nn]ode[Ll]ink|[Ss]vgParser|[Bb]adge")),
    ("Code Generation", "Code scaffolding and visual diff",
     re.compile(r"[Ss]caffold|[Dd]iff[Vv]iew")),
    ("UI Shell", "Application shell, modals, layout, and resize handling",
     re.compile(r"[Mm]odal|[Hh]eader|[Ff]ooter|[Ss]plit[Pp]ane|[Rr]esize")),
    ("Domain Modeling", "Domain-driven design analysis and projections",
     re.compile(r"[Dd]omain|[Dd]omainNode")),
    ("Flow Analysis", "Runtime flow detection and sequence diagram generation",
     re.compile(r"[Ff]low(?:Service|Generation)|[Ss]equence")),
    ("Codebase Analysis", "Codebase scanning, module analysis, and diagram generation",
     re.compile(r"[Cc]odebase(?:Analy|Import)")),
]

UI_SHELL = "UI Shell"
CORE = "Core"
CORE_DESCRIPTION = "Core application types and configuration"
DESCRIPTIONS = {name: desc for name, desc, _ in GROUP_PATTERNS}

SHELL_ENTRY_NAMES = {"App.tsx", "main.tsx", "index.html", "__main__.py", "main.py", "app.py"}
COMPONENT_DIRS = {"components"}
SMALL_GROUP_FILES = 2
MERGE_MIN_GROUPS = 3


def match_file_to_group(file_path: str) -> Optional[Tuple[str, str]]:
    """Return (name, description) of the first pattern matching the file name or path."""
    name = basename(file_path)
    for group, desc, rx in GROUP_PATTERNS:
        if rx.search(name) or rx.search(file_path):
            return group, desc
    return None


def _import_base(source: str) -> str:
    if source.startswith("@/"):
        source = source[2:]
    if source.startswith("./"):
        source = source[2:]
    return source


def _imports_file(import_base: str, file_path: str) -> bool:
    """Loose suffix match between an import specifier and a file path."""
    fp_base = strip_extension(file_path)
    stem = strip_extension(basename(file_path))
    if not import_base:
        return False
    return fp_base.endswith(import_base) or (bool(stem) and import_base.endswith(stem))


def _affinity(
    files: List[AnalyzedFile],
    file_to_group: Dict[str, str],
    exclude: Optional[str] = None,
) -> Dict[str, int]:
    """Count, per group, how many internal imports of files land in that group."""
    scores: Dict[str, int] = {}
    for f in files:
        for imp in f.imports:
            if imp.is_external and not imp.source.startswith("@/"):
                continue
            base = _import_base(imp.source)
            for fp, group in file_to_group.items():
                if group == exclude or fp == f.file_path:
                    continue
                if _imports_file(base, fp):
                    scores[group] = scores.get(group, 0) + 1
    return scores


def _unique_best(scores: Dict[str, int]) -> Optional[str]:
    if not scores:
        return None
    top = max(scores.values())
    if top <= 0:
        return None
    leaders = [g for g, c in scores.items() if c == top]
    return leaders[0] if len(leaders) == 1 else None


def _structural_bucket(file_path: str) -> str:
    name = basename(file_path)
    parts = file_path.split("/")
    parent = parts[-2] if len(parts) > 1 else ""
    if name in SHELL_ENTRY_NAMES:
        return UI_SHELL
    if name == "types.ts" or name.endswith(".d.ts"):
        return CORE
    if parent in COMPONENT_DIRS:
        return UI_SHELL
    return CORE


def _module_path(files: List[AnalyzedFile]) -> str:
    if not files:
        return ""
    parts = files[0].file_path.split("/")
    return parts[0] if len(parts) > 1 else ""


def group_by_functional_heuristics(
    analysis: CodebaseAnalysis,
    log: Optional[LogEntryFn] = None,
) -> CodebaseAnalysis:
    """Regroup the analysis into functional modules without any network call.

    Every input file lands in exactly one output module; modules are
    sorted by descending file count.
    """
    all_files = analysis.all_files()
    if not all_files:
        return analysis

    groups: Dict[str, List[AnalyzedFile]] = {}
    descriptions: Dict[str, str] = {}
    unmatched: List[AnalyzedFile] = []

    for f in all_files:
        match = match_file_to_group(f.file_path)
        if match is None:
            unmatched.append(f)
            continue
        name, desc = match
        groups.setdefault(name, []).append(f)
        descriptions.setdefault(name, desc)

    file_to_group: Dict[str, str] = {f.file_path: g for g, fs in groups.items() for f in fs}
    pattern_hits = len(file_to_group)

    # Affinity sees the pattern-matched files plus unmatched files assigned so far.
    for f in unmatched:
        best = _unique_best(_affinity([f], file_to_group))
        if best is None:
            best = _structural_bucket(f.file_path)
            descriptions.setdefault(best, DESCRIPTIONS.get(best, CORE_DESCRIPTION))
        groups.setdefault(best, []).append(f)
        file_to_group[f.file_path] = best

    if len(groups) > MERGE_MIN_GROUPS:
        small = [g for g, fs in groups.items() if len(fs) < SMALL_GROUP_FILES]
        for name in small:
            members = groups.get(name)
            if not members:
                continue
            scores = {
                g: c for g, c in _affinity(members, file_to_group, exclude=name).items()
                if g in groups and g not in small
            }
            if not scores:
                continue
            target = max(scores, key=lambda g: scores[g])
            groups[target].extend(members)
            for f in members:
                file_to_group[f.file_path] = target
            del groups[name]

    modules: List[CodebaseModule] = []
    for name, files in groups.items():
        deps = [g for g in _affinity(files, file_to_group, exclude=name) if g in groups]
        modules.append(CodebaseModule(
            name=name,
            path=_module_path(files),
            files=list(files),
            dependencies=deps,
            description=descriptions.get(name, CORE_DESCRIPTION),
        ))
    modules.sort(key=lambda m: -len(m.files))

    emit(
        log, LogCategory.HEURISTIC,
        f"Heuristic grouping: {len(modules)} modules ({pattern_hits} pattern matches)",
        ", ".join(f"{m.name}({len(m.files)})" for m in modules),
    )
    return replace(analysis, modules=modules)
