"""LLM flow discovery with whole-response validation."""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Set

from .cancel import CancelToken
from .graph_summary import GraphSummary
from .llm_client import ChatFn, LLMSettings, llm_chat
from .mermaid import build_sequence_diagram, is_sequence_diagram, participant_alias, sanitize_sequence_diagram
from .model import FlowStep, GraphFlow, LogCategory, LogEntryFn, emit, new_id
from .prompts import FLOW_RETRY, FLOW_SYSTEM
from .retry import CorrectiveRetry

MAX_PROMPT_FILES = 150
MIN_FILES_PER_MODULE = 5
MAX_FILE_EDGES = 200
MAX_CALL_EDGES = 100
MIN_STEPS = 2
MIN_VALID_RATIO = 0.5
FALLBACK_ARROW_LABEL = "calls"


def truncate_summary(summary: GraphSummary) -> GraphSummary:
    """Shrink a large summary proportionally per module and cap the edge lists."""
    total = sum(len(m.files) for m in summary.modules)
    if total <= MAX_PROMPT_FILES:
        return summary
    modules = [
        replace(m, files=m.files[: max(MIN_FILES_PER_MODULE, math.floor(MAX_PROMPT_FILES * len(m.files) / total))])
        for m in summary.modules
    ]
    return replace(
        summary,
        modules=modules,
        file_edges=summary.file_edges[:MAX_FILE_EDGES],
        call_edges=summary.call_edges[:MAX_CALL_EDGES],
    )


def build_flow_system(summary: GraphSummary, scope_node_id: Optional[str] = None) -> str:
    valid_ids = [summary.root_node_id] + summary.module_ids() + summary.file_ids()
    blocks = []
    for m in summary.modules:
        files = []
        for f in m.files:
            syms = ", ".join(f"{s.name} ({s.kind})" for s in f.symbols) or "no symbols extracted"
            files.append(f'    - "{f.name}" (nodeId: "{f.node_id}")\n      Contains: {syms}')
        blocks.append(f'  Module "{m.name}" (nodeId: "{m.node_id}"):\n' + "\n".join(files))

    parts = [
        FLOW_SYSTEM.rstrip(),
        f'Root nodeId for cross-module flows: "{summary.root_node_id}"',
        "VALID NODE IDs (you MUST only use these):\n" + "\n".join(f'  "{i}"' for i in valid_ids),
        "MODULE STRUCTURE WITH FILE CONTENTS:\n" + "\n\n".join(blocks),
    ]
    if scope_node_id and scope_node_id != summary.root_node_id:
        parts.append(f'Every flow MUST use scopeNodeId "{scope_node_id}".')
    return "\n\n".join(parts) + "\n"


def build_flow_prompt(summary: GraphSummary, custom_prompt: Optional[str] = None) -> str:
    names = {f.node_id: f.name for f in summary.files()}

    edge_lines = []
    for e in summary.file_edges[:MAX_FILE_EDGES]:
        label = f" [imports: {e.label}]" if e.label and e.label != "depends_on" else ""
        edge_lines.append(
            f"  {names.get(e.source_id, e.source_id)} ({e.source_module}) -> "
            f"{names.get(e.target_id, e.target_id)} ({e.target_module}){label}"
        )
    call_lines = [
        f"  {c.caller_symbol} (in {c.caller_file}) calls {c.callee_symbol} (in {c.callee_file})"
        for c in summary.call_edges[:MAX_CALL_EDGES]
    ]
    entry_lines = [f'  {e.name} (nodeId: "{e.node_id}")' for e in summary.entry_points]

    prompt = (
        "FILE DEPENDENCIES (what each file imports from others):\n"
        + ("\n".join(edge_lines) or "  (no file dependencies detected)")
        + "\n\nFUNCTION CALL GRAPH:\n"
        + ("\n".join(call_lines) or "  (no function-level call edges detected)")
        + "\n\nENTRY POINTS (likely starting points for flows):\n"
        + ("\n".join(entry_lines) or "  (none detected)")
    )
    if custom_prompt and custom_prompt.strip():
        prompt += f"\n\nADDITIONAL REQUEST (focus the flows on this):\n{custom_prompt.strip()}"
    return prompt


def _steps_from(raw_steps: List[Any], file_ids: Set[str]) -> List[FlowStep]:
    picked = []
    for i, step in enumerate(raw_steps):
        if not isinstance(step, dict):
            continue
        node_id = step.get("nodeId", step.get("node_id"))
        if not isinstance(node_id, str) or node_id not in file_ids:
            continue
        label = step.get("label")
        order = step.get("order")
        rank = order if isinstance(order, (int, float)) and not isinstance(order, bool) else i
        picked.append((rank, i, node_id, label if isinstance(label, str) and label else node_id))
    picked.sort(key=lambda p: (p[0], p[1]))
    return [FlowStep(node_id=node_id, label=label, order=n) for n, (_, _, node_id, label) in enumerate(picked)]


def _fallback_diagram(steps: List[FlowStep]) -> str:
    participants = [(s.node_id, participant_alias(s.label)) for s in steps]
    messages = [(a.node_id, b.node_id, FALLBACK_ARROW_LABEL) for a, b in zip(steps, steps[1:])]
    return build_sequence_diagram(participants, messages)


def validate_flows(
    raw: Any,
    summary: GraphSummary,
    valid_scopes: Optional[Set[str]] = None,
) -> Optional[Dict[str, GraphFlow]]:
    """Keep flows with a valid scope and at least two file steps.

    Invalid flows are dropped, never repaired. The whole response is
    rejected when fewer than half of the returned entries survive.
    """
    if isinstance(raw, dict) and isinstance(raw.get("flows"), list):
        entries = raw["flows"]
    elif isinstance(raw, list):
        entries = raw
    else:
        return None

    if valid_scopes is None:
        valid_scopes = {summary.root_node_id, *summary.module_ids()}
    file_ids = set(summary.file_ids())

    flows: Dict[str, GraphFlow] = {}
    for item in entries:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        scope = item.get("scopeNodeId", item.get("scope_node_id"))
        raw_steps = item.get("steps")
        if not isinstance(name, str) or not name.strip():
            continue
        if not isinstance(scope, str) or scope not in valid_scopes:
            continue
        if not isinstance(raw_steps, list) or len(raw_steps) < MIN_STEPS:
            continue
        steps = _steps_from(raw_steps, file_ids)
        if len(steps) < MIN_STEPS:
            continue

        diagram = item.get("sequenceDiagram", item.get("sequence_diagram"))
        if is_sequence_diagram(diagram):
            diagram = sanitize_sequence_diagram(diagram)
        else:
            diagram = _fallback_diagram(steps)

        description = item.get("description")
        flow = GraphFlow(
            id=new_id(),
            name=name.strip(),
            description=description if isinstance(description, str) else "",
            scope_node_id=scope,
            steps=steps,
            sequence_diagram=diagram,
        )
        flows[flow.id] = flow

    if not flows or len(flows) / len(entries) < MIN_VALID_RATIO:
        return None
    return flows


async def generate_flows_llm(
    summary: GraphSummary,
    settings: LLMSettings,
    *,
    chat: ChatFn = llm_chat,
    scope_node_id: Optional[str] = None,
    custom_prompt: Optional[str] = None,
    cancel: Optional[CancelToken] = None,
    log: Optional[LogEntryFn] = None,
    llm_log: Optional[Callable[[str], None]] = None,
) -> Optional[Dict[str, GraphFlow]]:
    """Ask for narrative flows; None when every attempt fails validation."""
    prompt_summary = truncate_summary(summary)
    if prompt_summary is not summary:
        emit(
            log, LogCategory.FLOWS,
            f"Prompt truncated to {len(prompt_summary.file_ids())} of {len(summary.file_ids())} files",
        )

    valid_scopes = None
    if scope_node_id and scope_node_id != summary.root_node_id:
        valid_scopes = {scope_node_id}

    retry: CorrectiveRetry[Dict[str, GraphFlow]] = CorrectiveRetry(
        "flows", build_flow_prompt(prompt_summary, custom_prompt), FLOW_RETRY, category=LogCategory.FLOWS,
    )
    flows = await retry.run(
        chat,
        build_flow_system(prompt_summary, scope_node_id),
        settings,
        lambda parsed: validate_flows(parsed, summary, valid_scopes),
        cancel=cancel,
        log=log,
        llm_log=llm_log,
    )
    if flows is not None:
        emit(log, LogCategory.FLOWS, f"LLM generated {len(flows)} flows", ", ".join(f.name for f in flows.values()))
    return flows
