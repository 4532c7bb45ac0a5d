"""Flow generation orchestrator and merge policies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .cancel import CancelToken, check
from .flow_heuristic import generate_flows_heuristic
from .flow_llm import generate_flows_llm
from .graph_ops import with_flows
from .graph_summary import build_graph_summary
from .llm_client import ChatFn, LLMSettings, llm_chat
from .model import (
    DEPTH_FILE,
    DEPTH_MODULE,
    CodeGraph,
    FlowMergeMode,
    FlowSource,
    GraphFlow,
    LogCategory,
    LogEntryFn,
    ProgressFn,
    emit,
)

NO_FILES_WARNING = "Graph has no file-level nodes, cannot generate flows"
LLM_FAILED_WARNING = "LLM flow generation failed, using heuristic fallback"
NO_FLOWS_WARNING = "No flows could be generated from graph structure"


@dataclass
class FlowRequest:
    """Optional narrowing of a regeneration: one module and/or a free-form ask."""

    scope_node_id: Optional[str] = None
    custom_prompt: Optional[str] = None


@dataclass
class FlowGenerationResult:
    flows: Dict[str, GraphFlow]
    source: FlowSource
    warnings: List[str] = field(default_factory=list)


def validate_scope(graph: CodeGraph, scope_node_id: Optional[str]) -> None:
    """Raise ValueError unless scope_node_id is empty, the root, or a module id."""
    if not scope_node_id or scope_node_id == graph.root_node_id:
        return
    node = graph.nodes.get(scope_node_id)
    if node is None or node.depth != DEPTH_MODULE:
        raise ValueError(f'Flow scope "{scope_node_id}" is neither the root nor a module node')


async def generate_flows(
    graph: CodeGraph,
    settings: Optional[LLMSettings] = None,
    *,
    request: Optional[FlowRequest] = None,
    chat: ChatFn = llm_chat,
    progress: Optional[ProgressFn] = None,
    log: Optional[LogEntryFn] = None,
    llm_log: Optional[Callable[[str], None]] = None,
    cancel: Optional[CancelToken] = None,
) -> FlowGenerationResult:
    """Generate flows with the LLM when a credential is configured, else heuristically.

    The returned flows are not merged into graph; see merge_flows.
    """
    request = request or FlowRequest()
    validate_scope(graph, request.scope_node_id)
    warnings: List[str] = []

    if not graph.nodes_at_depth(DEPTH_FILE):
        warnings.append(NO_FILES_WARNING)
        emit(log, LogCategory.WARNING, NO_FILES_WARNING)
        return FlowGenerationResult(flows={}, source=FlowSource.HEURISTIC, warnings=warnings)

    if progress is not None:
        progress("Analyzing graph structure", 0, 2)
    summary = build_graph_summary(graph, request.scope_node_id)
    emit(
        log, LogCategory.FLOWS,
        f"Graph summary: {len(summary.modules)} modules, {len(summary.file_ids())} files, "
        f"{len(summary.file_edges)} edges, {len(summary.call_edges)} calls",
        ", ".join(e.name for e in summary.entry_points) or None,
    )

    if settings is not None and settings.has_credential():
        check(cancel)
        if progress is not None:
            progress("Generating flows with AI", 1, 2)
        flows = await generate_flows_llm(
            summary,
            settings,
            chat=chat,
            scope_node_id=request.scope_node_id,
            custom_prompt=request.custom_prompt,
            cancel=cancel,
            log=log,
            llm_log=llm_log,
        )
        if flows:
            if progress is not None:
                progress("Done", 2, 2)
            return FlowGenerationResult(flows=flows, source=FlowSource.LLM, warnings=warnings)
        warnings.append(LLM_FAILED_WARNING)
        emit(log, LogCategory.WARNING, LLM_FAILED_WARNING)

    check(cancel)
    if progress is not None:
        progress("Generating flows (heuristic)", 1, 2)
    flows = generate_flows_heuristic(summary, log=log)
    if not flows:
        warnings.append(NO_FLOWS_WARNING)
        emit(log, LogCategory.WARNING, NO_FLOWS_WARNING)
    if progress is not None:
        progress("Done", 2, 2)
    return FlowGenerationResult(flows=flows, source=FlowSource.HEURISTIC, warnings=warnings)


def merge_flows(
    existing: Dict[str, GraphFlow],
    generated: Dict[str, GraphFlow],
    mode: FlowMergeMode,
    scope_node_id: Optional[str] = None,
) -> Dict[str, GraphFlow]:
    """Combine generated flows with a graph's current flows.

    REPLACE drops every existing flow, ADDITIVE keeps them all, SCOPED
    drops only the existing flows scoped to scope_node_id.
    """
    if mode is FlowMergeMode.REPLACE:
        return dict(generated)
    if mode is FlowMergeMode.ADDITIVE:
        merged = dict(existing)
        merged.update(generated)
        return merged
    if mode is FlowMergeMode.SCOPED:
        if not scope_node_id:
            raise ValueError("Scoped flow merge needs a scope node id")
        merged = {fid: f for fid, f in existing.items() if f.scope_node_id != scope_node_id}
        merged.update(generated)
        return merged
    raise ValueError(f"Unknown flow merge mode: {mode}")


async def regenerate_flows(
    graph: CodeGraph,
    settings: Optional[LLMSettings] = None,
    *,
    mode: FlowMergeMode = FlowMergeMode.REPLACE,
    request: Optional[FlowRequest] = None,
    chat: ChatFn = llm_chat,
    progress: Optional[ProgressFn] = None,
    log: Optional[LogEntryFn] = None,
    llm_log: Optional[Callable[[str], None]] = None,
    cancel: Optional[CancelToken] = None,
) -> Tuple[CodeGraph, FlowGenerationResult]:
    """Generate flows and return the graph with them merged under mode."""
    request = request or FlowRequest()
    if mode is FlowMergeMode.SCOPED and not request.scope_node_id:
        raise ValueError("Scoped flow regeneration needs a scope node id")
    result = await generate_flows(
        graph, settings, request=request, chat=chat, progress=progress, log=log, llm_log=llm_log, cancel=cancel,
    )
    merged = merge_flows(graph.flows, result.flows, mode, request.scope_node_id)
    emit(
        log, LogCategory.FLOWS,
        f"Flows merged ({mode.value}): {len(result.flows)} new, {len(merged)} total",
        f"source={result.source.value}",
    )
    return with_flows(graph, merged), result
