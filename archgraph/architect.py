"""Architect: groups analysed files into functional modules with one LLM call."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .cancel import CancelToken
from .file_analyst import FileAnalysis
from .llm_client import ChatFn, LLMSettings, llm_chat
from .model import LogCategory, LogEntryFn, emit
from .path_resolver import PathResolver
from .prompts import ARCHITECT_RETRY, ARCHITECT_SYSTEM
from .retry import CorrectiveRetry

OTHER_MODULE = "Other"
OTHER_DESCRIPTION = "Files not assigned to a specific module"


@dataclass
class BlueprintModule:
    name: str
    description: str
    files: List[str]


@dataclass
class BlueprintRelationship:
    source: str
    target: str
    label: str


@dataclass
class ArchitectureBlueprint:
    modules: List[BlueprintModule]
    relationships: List[BlueprintRelationship] = field(default_factory=list)

    def module_names(self) -> List[str]:
        return [m.name for m in self.modules]


def unique_name(name: str, taken: Set[str]) -> str:
    """Return name, or name with the lowest free numeric suffix starting at 2."""
    if name not in taken:
        return name
    suffix = 2
    while f"{name} {suffix}" in taken:
        suffix += 1
    return f"{name} {suffix}"


def build_architect_system(file_paths: List[str]) -> str:
    listing = "\n".join(f'  "{p}"' for p in file_paths)
    return f"{ARCHITECT_SYSTEM.rstrip()}\n\nVALID FILE PATHS (use these exact strings):\n{listing}\n"


def build_architect_prompt(analyses: List[FileAnalysis], import_edges: List[Tuple[str, str]]) -> str:
    summaries = "\n".join(f"{a.file_path}: {a.purpose} [{a.role.value}]" for a in analyses)
    if import_edges:
        edges = "\n".join(f"{src} -> {dst}" for src, dst in import_edges)
    else:
        edges = "(no internal imports detected)"
    return f"FILE SUMMARIES:\n{summaries}\n\nIMPORT RELATIONSHIPS:\n{edges}"


def validate_architecture(
    raw: Any,
    all_paths: List[str],
    log: Optional[LogEntryFn] = None,
) -> Optional[ArchitectureBlueprint]:
    """Validate a blueprint leniently, one module at a time.

    Malformed modules are skipped, names are made unique, each file is
    claimed by the first module that lists it, and modules left without
    files are dropped. Returns None when no module survives.
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("modules"), list):
        return None

    resolve = PathResolver(all_paths)
    names: Set[str] = set()
    claimed: Set[str] = set()
    modules: List[BlueprintModule] = []

    for mod in raw["modules"]:
        if not isinstance(mod, dict):
            continue
        name = mod.get("name")
        files = mod.get("files")
        if not isinstance(name, str) or not name.strip() or not isinstance(files, list) or not files:
            continue
        final_name = unique_name(name.strip(), names)

        valid: List[str] = []
        for f in files:
            if not isinstance(f, str):
                continue
            resolved = resolve(f)
            if resolved is not None and resolved not in claimed:
                claimed.add(resolved)
                valid.append(resolved)
        if not valid:
            emit(log, LogCategory.AI_ARCHITECT, f'Module "{final_name}" had no valid files, skipped')
            continue

        names.add(final_name)
        description = mod.get("description")
        modules.append(BlueprintModule(
            name=final_name,
            description=description if isinstance(description, str) else "",
            files=valid,
        ))

    if not modules:
        return None

    relationships: List[BlueprintRelationship] = []
    raw_rels = raw.get("relationships")
    if isinstance(raw_rels, list):
        for rel in raw_rels:
            if not isinstance(rel, dict):
                continue
            src, dst, label = rel.get("from"), rel.get("to"), rel.get("label")
            if isinstance(src, str) and isinstance(dst, str) and src in names and dst in names:
                relationships.append(BlueprintRelationship(src, dst, label if isinstance(label, str) else ""))

    return ArchitectureBlueprint(modules=modules, relationships=relationships)


def add_unassigned(blueprint: ArchitectureBlueprint, all_paths: List[str]) -> ArchitectureBlueprint:
    """Append every unclaimed file to a synthetic Other module."""
    assigned = {f for m in blueprint.modules for f in m.files}
    missing = [p for p in all_paths if p not in assigned]
    if missing:
        name = unique_name(OTHER_MODULE, set(blueprint.module_names()))
        blueprint.modules.append(BlueprintModule(name, OTHER_DESCRIPTION, missing))
    return blueprint


async def build_architecture(
    analyses: List[FileAnalysis],
    import_edges: List[Tuple[str, str]],
    settings: LLMSettings,
    *,
    chat: ChatFn = llm_chat,
    cancel: Optional[CancelToken] = None,
    log: Optional[LogEntryFn] = None,
    llm_log: Optional[Callable[[str], None]] = None,
) -> Optional[ArchitectureBlueprint]:
    """Ask for a functional blueprint; None when every attempt fails validation."""
    all_paths = list(dict.fromkeys(a.file_path for a in analyses))
    retry: CorrectiveRetry[ArchitectureBlueprint] = CorrectiveRetry(
        "architect",
        build_architect_prompt(analyses, import_edges),
        ARCHITECT_RETRY,
        category=LogCategory.AI_ARCHITECT,
    )
    blueprint = await retry.run(
        chat,
        build_architect_system(all_paths),
        settings,
        lambda parsed: validate_architecture(parsed, all_paths, log),
        prefer="{",
        cancel=cancel,
        log=log,
        llm_log=llm_log,
    )
    if blueprint is None:
        return None
    blueprint = add_unassigned(blueprint, all_paths)
    emit(
        log, LogCategory.AI_ARCHITECT,
        f"Blueprint: {len(blueprint.modules)} modules, {len(blueprint.relationships)} relationships",
        ", ".join(blueprint.module_names()),
    )
    return blueprint


def module_dependencies(blueprint: ArchitectureBlueprint) -> Dict[str, List[str]]:
    deps: Dict[str, List[str]] = {m.name: [] for m in blueprint.modules}
    for rel in blueprint.relationships:
        if rel.source != rel.target and rel.target not in deps[rel.source]:
            deps[rel.source].append(rel.target)
    return deps
