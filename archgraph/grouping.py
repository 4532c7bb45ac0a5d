"""Grouping orchestrator: File Analyst batches, Architect, heuristic fallback."""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Dict, List, Optional

from .architect import build_architecture, module_dependencies
from .cancel import CancelToken, check
from .file_analyst import BATCH_SIZE, FileAnalysis, FileSummary, analyze_files_batch
from .heuristic_grouper import group_by_functional_heuristics
from .llm_client import ChatFn, LLMSettings, llm_chat, require_credential
from .model import AnalyzedFile, CodebaseAnalysis, CodebaseModule, LogCategory, LogEntryFn, ProgressFn, emit
from .path_resolver import basename, build_import_edges


def _batches(items: List[FileSummary], size: int) -> List[List[FileSummary]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


async def analyze_codebase_with_ai(
    analysis: CodebaseAnalysis,
    settings: LLMSettings,
    *,
    chat: ChatFn = llm_chat,
    progress: Optional[ProgressFn] = None,
    log: Optional[LogEntryFn] = None,
    llm_log: Optional[Callable[[str], None]] = None,
    cancel: Optional[CancelToken] = None,
) -> CodebaseAnalysis:
    """Regroup the analysis into functional modules using the two LLM roles.

    Raises LLMConfigError before any request when no credential is set and
    RunCancelled when the token fires. Every other failure ends in the
    heuristic grouper.
    """
    require_credential(settings)
    all_files = analysis.all_files()
    if not all_files:
        return analysis

    batches = _batches([FileSummary.from_file(f) for f in all_files], BATCH_SIZE)
    total_steps = len(batches) + 1

    analyses: List[FileAnalysis] = []
    for i, batch in enumerate(batches, start=1):
        check(cancel)
        if progress is not None:
            progress("Analyzing files", i, total_steps)
        emit(
            log, LogCategory.AI_ANALYZE,
            f"Analyzing batch {i}/{len(batches)} ({len(batch)} files)",
            ", ".join(basename(f.path) for f in batch),
        )
        results = await analyze_files_batch(
            batch, settings, chat=chat, cancel=cancel, log=log, llm_log=llm_log, label=f"file_analyst[{i}]",
        )
        analyses.extend(results)
        emit(log, LogCategory.AI_ANALYZE, f"Batch {i} complete: {len(results)} file analyses")

    check(cancel)
    edges = build_import_edges(all_files)
    emit(log, LogCategory.AI_ARCHITECT, f"Import edges resolved: {len(edges)}")

    if progress is not None:
        progress("Building architecture", total_steps, total_steps)
    emit(log, LogCategory.AI_ARCHITECT, "Building functional architecture")
    blueprint = await build_architecture(
        analyses, edges, settings, chat=chat, cancel=cancel, log=log, llm_log=llm_log,
    )
    check(cancel)

    if blueprint is None:
        emit(log, LogCategory.AI_ARCHITECT, "AI architecture failed, falling back to heuristic grouping")
        return group_by_functional_heuristics(analysis, log=log)

    by_path: Dict[str, AnalyzedFile] = {f.file_path: f for f in all_files}
    deps = module_dependencies(blueprint)
    modules: List[CodebaseModule] = []
    for mod in blueprint.modules:
        files = [by_path[p] for p in mod.files if p in by_path]
        first = files[0].file_path.split("/") if files else []
        modules.append(CodebaseModule(
            name=mod.name,
            path=first[0] if len(first) > 1 else "",
            files=files,
            dependencies=deps.get(mod.name, []),
            description=mod.description,
        ))

    emit(
        log, LogCategory.AI_ARCHITECT,
        f"Architecture: {len(modules)} modules, {len(blueprint.relationships)} relationships",
        ", ".join(f"{m.name}({len(m.files)})" for m in modules),
    )
    return replace(analysis, modules=modules)
