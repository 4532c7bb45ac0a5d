"""One construction run: scan, parse, group, re-parse, flows, persist."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional

from .cancel import CancelToken, RunCancelled, check
from .codebase_analyzer import analyze_codebase
from .flows import FlowGenerationResult, generate_flows
from .graph_ops import check_invariants, with_flows
from .graph_parser import parse_codebase_to_graph
from .grouping import analyze_codebase_with_ai
from .heuristic_grouper import group_by_functional_heuristics
from .llm_client import ChatFn, LLMSettings, llm_chat
from .model import CodebaseAnalysis, CodeGraph, LogCategory, LogEntryFn, ProgressFn, emit
from .repo_scan import RepoDirectory, ScanConfig
from .storage import GraphRepository


@dataclass
class BuildOptions:
    workspace_id: str = "default"
    repo_id: str = ""
    name: str = ""
    use_ai: bool = True
    with_flows: bool = True
    scan_config: Optional[ScanConfig] = None


@dataclass
class BuildResult:
    graph: CodeGraph
    analysis: CodebaseAnalysis
    grouping: str
    flow_result: Optional[FlowGenerationResult] = None


async def build_code_graph(
    directory: RepoDirectory,
    settings: Optional[LLMSettings] = None,
    options: Optional[BuildOptions] = None,
    *,
    chat: ChatFn = llm_chat,
    progress: Optional[ProgressFn] = None,
    log: Optional[LogEntryFn] = None,
    llm_log: Optional[Callable[[str], None]] = None,
    cancel: Optional[CancelToken] = None,
) -> BuildResult:
    """Build an enriched graph without persisting it.

    Grouping and flow generation use the LLM only when use_ai is set and
    the active provider has a credential; otherwise both run heuristically.
    Raises RunCancelled when the token fires.
    """
    options = options or BuildOptions()
    repo_id = options.repo_id or directory.name
    name = options.name or directory.name

    analysis = await analyze_codebase(directory, options.scan_config, progress=progress, log=log, cancel=cancel)
    check(cancel)
    initial = await parse_codebase_to_graph(
        analysis, repo_id, name, options.workspace_id, None, options.scan_config,
        progress=progress, log=log, cancel=cancel,
    )
    check(cancel)

    use_llm = options.use_ai and settings is not None and settings.has_credential()
    if use_llm:
        grouping = "ai"
        grouped = await analyze_codebase_with_ai(
            analysis, settings, chat=chat, progress=progress, log=log, llm_log=llm_log, cancel=cancel,
        )
    else:
        grouping = "heuristic"
        emit(log, LogCategory.HEURISTIC, "No AI grouping configured, using heuristic grouping")
        grouped = group_by_functional_heuristics(analysis, log=log)
    check(cancel)

    graph = await parse_codebase_to_graph(
        grouped, repo_id, name, options.workspace_id, directory, options.scan_config,
        progress=progress, log=log, cancel=cancel,
    )
    graph = replace(graph, id=initial.id, created_at=initial.created_at)

    flow_result = None
    if options.with_flows:
        check(cancel)
        flow_result = await generate_flows(
            graph, settings if use_llm else None,
            chat=chat, progress=progress, log=log, llm_log=llm_log, cancel=cancel,
        )
        graph = with_flows(graph, flow_result.flows)

    check_invariants(graph)
    return BuildResult(graph=graph, analysis=grouped, grouping=grouping, flow_result=flow_result)


async def run_construction(
    directory: RepoDirectory,
    repository: GraphRepository,
    settings: Optional[LLMSettings] = None,
    options: Optional[BuildOptions] = None,
    *,
    chat: ChatFn = llm_chat,
    progress: Optional[ProgressFn] = None,
    log: Optional[LogEntryFn] = None,
    llm_log: Optional[Callable[[str], None]] = None,
    cancel: Optional[CancelToken] = None,
) -> Optional[BuildResult]:
    """Build and persist a graph; None when cancelled, in which case nothing is saved."""
    try:
        result = await build_code_graph(
            directory, settings, options,
            chat=chat, progress=progress, log=log, llm_log=llm_log, cancel=cancel,
        )
        check(cancel)
    except RunCancelled as e:
        emit(log, LogCategory.WARNING, "Construction cancelled, nothing persisted", str(e))
        return None
    repository.save(result.graph)
    emit(
        log, LogCategory.PARSE,
        f'Saved graph "{result.graph.name}" ({result.graph.id})',
        f"grouping={result.grouping} flows={len(result.graph.flows)}",
    )
    return result
