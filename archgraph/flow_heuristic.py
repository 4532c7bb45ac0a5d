"""Deterministic flow discovery: DFS over file dependencies from entry points."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .graph_summary import FileSummary, GraphSummary
from .mermaid import build_sequence_diagram
from .model import FlowStep, GraphFlow, LogCategory, LogEntryFn, emit, new_id

MAX_DEPTH = 8
MIN_CHAIN = 3
OVERLAP_THRESHOLD = 0.7
DEFAULT_EDGE_LABEL = "depends_on"
DESCRIPTION_SYMBOLS = 5


@dataclass
class ChainLink:
    node_id: str
    parent_id: Optional[str] = None
    label: str = ""


@dataclass
class Chain:
    links: List[ChainLink]
    modules: Set[str] = field(default_factory=set)

    @property
    def node_ids(self) -> List[str]:
        return [link.node_id for link in self.links]

    def __len__(self) -> int:
        return len(self.links)


def _adjacency(summary: GraphSummary) -> Dict[str, List[Tuple[str, str]]]:
    adj: Dict[str, List[Tuple[str, str]]] = {}
    for edge in summary.file_edges:
        adj.setdefault(edge.source_id, []).append((edge.target_id, edge.label))
    return adj


def walk_chain(entry_id: str, adj: Dict[str, List[Tuple[str, str]]]) -> List[ChainLink]:
    """Preorder DFS from entry_id, each link remembering the edge that reached it."""
    visited: Set[str] = set()
    links: List[ChainLink] = []
    stack: List[Tuple[str, Optional[str], str, int]] = [(entry_id, None, "", 0)]
    while stack:
        node_id, parent, label, depth = stack.pop()
        if depth > MAX_DEPTH or node_id in visited:
            continue
        visited.add(node_id)
        links.append(ChainLink(node_id, parent, label))
        # Reversed so neighbours pop in declaration order.
        for target, edge_label in reversed(adj.get(node_id, [])):
            if target not in visited:
                stack.append((target, node_id, edge_label, depth + 1))
    return links


def discover_chains(summary: GraphSummary) -> List[Chain]:
    adj = _adjacency(summary)
    module_of = summary.module_of()
    chains: List[Chain] = []
    for entry in summary.entry_points:
        links = walk_chain(entry.node_id, adj)
        if len(links) < MIN_CHAIN:
            continue
        modules = {module_of[link.node_id] for link in links if link.node_id in module_of}
        chains.append(Chain(links=links, modules=modules))
    return chains


def chain_overlap(a: List[str], b: List[str]) -> float:
    """Shared node count divided by the shorter chain's length."""
    shorter = min(len(a), len(b))
    if shorter == 0:
        return 0.0
    return len(set(a) & set(b)) / shorter


def dedupe_chains(chains: List[Chain]) -> List[Chain]:
    """Merge chains overlapping by more than the threshold, keeping the longer one."""
    kept: List[Chain] = []
    for chain in chains:
        for i, existing in enumerate(kept):
            if chain_overlap(chain.node_ids, existing.node_ids) > OVERLAP_THRESHOLD:
                if len(chain) > len(existing):
                    kept[i] = chain
                break
        else:
            kept.append(chain)
    return kept


def _step_label(f: Optional[FileSummary], node_id: str) -> str:
    if f is None:
        return node_id
    sym = f.primary_symbol()
    return f"{sym.name} ({f.name})" if sym else f.name


def chain_to_flow(chain: Chain, summary: GraphSummary) -> GraphFlow:
    files: Dict[str, FileSummary] = {f.node_id: f for f in summary.files()}
    cross_module = len(chain.modules) > 1
    if cross_module or not chain.modules:
        scope = summary.root_node_id
    else:
        scope = next(iter(chain.modules))

    first = files.get(chain.links[0].node_id)
    last = files.get(chain.links[-1].node_id)
    first_name = first.name if first else "unknown"
    last_name = last.name if last else "unknown"
    main = first.primary_symbol() if first else None
    if cross_module:
        name = f"{main.name} ({first_name} → {last_name})" if main else f"{first_name} → {last_name}"
    else:
        name = f"{main.name} flow" if main else f"{first_name} chain"

    steps = [
        FlowStep(node_id=link.node_id, label=_step_label(files.get(link.node_id), link.node_id), order=i)
        for i, link in enumerate(chain.links)
    ]
    participants = [(s.node_id, files[s.node_id].name if s.node_id in files else s.node_id) for s in steps]
    # One arrow per consecutive step, labeled by the edge that reached the later step.
    messages = [
        (prev.node_id, link.node_id, link.label or DEFAULT_EDGE_LABEL)
        for prev, link in zip(chain.links, chain.links[1:])
    ]

    symbols = [s.name for link in chain.links for s in (files[link.node_id].symbols if link.node_id in files else [])]
    kind = "Cross-module" if cross_module else "Module-level"
    if symbols:
        description = f"{kind} flow involving {', '.join(symbols[:DESCRIPTION_SYMBOLS])}"
    else:
        description = f"{kind} flow: {len(steps)} steps"

    return GraphFlow(
        id=new_id(),
        name=name,
        description=description,
        scope_node_id=scope,
        steps=steps,
        sequence_diagram=build_sequence_diagram(participants, messages),
    )


def generate_flows_heuristic(summary: GraphSummary, log: Optional[LogEntryFn] = None) -> Dict[str, GraphFlow]:
    """Turn deduplicated dependency chains into flows keyed by id."""
    chains = discover_chains(summary)
    kept = dedupe_chains(chains)
    flows = [chain_to_flow(c, summary) for c in kept]
    emit(
        log, LogCategory.FLOWS,
        f"Heuristic flows: {len(flows)} from {len(chains)} chains",
        ", ".join(f.name for f in flows) or None,
    )
    return {f.id: f for f in flows}
