"""Condensed view of a graph used by both flow generators."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .model import DEPTH_FILE, DEPTH_MODULE, DEPTH_SYMBOL, CodeGraph, GraphNode, RelationType

ENTRY_NAME_RE = re.compile(r"^(index|main|app|content|background|server|cli)\.", re.IGNORECASE)
FALLBACK_ENTRY_COUNT = 3


@dataclass
class FileSymbol:
    name: str
    kind: str


@dataclass
class FileSummary:
    node_id: str
    name: str
    path: str
    symbols: List[FileSymbol] = field(default_factory=list)

    def primary_symbol(self) -> Optional[FileSymbol]:
        """First function or class declared in the file."""
        for s in self.symbols:
            if s.kind in ("function", "class"):
                return s
        return None


@dataclass
class ModuleSummary:
    node_id: str
    name: str
    files: List[FileSummary] = field(default_factory=list)


@dataclass
class FileEdge:
    source_id: str
    target_id: str
    source_module: str
    target_module: str
    label: str


@dataclass
class CallEdge:
    caller_file: str
    caller_symbol: str
    callee_file: str
    callee_symbol: str


@dataclass
class EntryPoint:
    node_id: str
    name: str
    module_node_id: str


@dataclass
class GraphSummary:
    root_node_id: str
    modules: List[ModuleSummary]
    file_edges: List[FileEdge]
    call_edges: List[CallEdge]
    entry_points: List[EntryPoint]

    def files(self) -> List[FileSummary]:
        return [f for m in self.modules for f in m.files]

    def file_ids(self) -> List[str]:
        return [f.node_id for m in self.modules for f in m.files]

    def module_ids(self) -> List[str]:
        return [m.node_id for m in self.modules]

    def module_of(self) -> Dict[str, str]:
        return {f.node_id: m.node_id for m in self.modules for f in m.files}


def _children_at(graph: CodeGraph, node: GraphNode, depth: int) -> List[GraphNode]:
    out = []
    for cid in node.children:
        child = graph.nodes.get(cid)
        if child is not None and child.depth == depth:
            out.append(child)
    return out


def build_graph_summary(graph: CodeGraph, scope_node_id: Optional[str] = None) -> GraphSummary:
    """Extract modules, files, symbols, labelled edges and entry points.

    With scope_node_id set to a module id, only that module's files and
    the edges between them are kept.
    """
    nodes = graph.nodes
    module_nodes = [n for n in nodes.values() if n.depth == DEPTH_MODULE]
    if scope_node_id and scope_node_id != graph.root_node_id:
        module_nodes = [n for n in module_nodes if n.id == scope_node_id]

    modules: List[ModuleSummary] = []
    file_module: Dict[str, ModuleSummary] = {}
    for mod in module_nodes:
        summary = ModuleSummary(node_id=mod.id, name=mod.name)
        for file_node in _children_at(graph, mod, DEPTH_FILE):
            summary.files.append(FileSummary(
                node_id=file_node.id,
                name=file_node.name,
                path=file_node.source_ref.file_path if file_node.source_ref else file_node.name,
                symbols=[FileSymbol(s.name, s.kind.value) for s in _children_at(graph, file_node, DEPTH_SYMBOL)],
            ))
            file_module[file_node.id] = summary
        modules.append(summary)

    # Deduplicated file-to-file dependencies, distinct import labels joined.
    edge_index: Dict[Tuple[str, str], FileEdge] = {}
    for rel in graph.relations.values():
        if rel.type is not RelationType.DEPENDS_ON:
            continue
        if rel.source_id not in file_module or rel.target_id not in file_module:
            continue
        label = rel.label or rel.type.value
        key = (rel.source_id, rel.target_id)
        existing = edge_index.get(key)
        if existing is None:
            edge_index[key] = FileEdge(
                source_id=rel.source_id,
                target_id=rel.target_id,
                source_module=file_module[rel.source_id].name,
                target_module=file_module[rel.target_id].name,
                label=label,
            )
        elif label not in existing.label.split(", "):
            existing.label = f"{existing.label}, {label}"
    file_edges = list(edge_index.values())

    call_edges: List[CallEdge] = []
    for rel in graph.relations.values():
        if rel.type is not RelationType.CALLS:
            continue
        caller = nodes.get(rel.source_id)
        callee = nodes.get(rel.target_id)
        if caller is None or callee is None or caller.depth != DEPTH_SYMBOL or callee.depth != DEPTH_SYMBOL:
            continue
        if caller.parent_id not in file_module or callee.parent_id not in file_module:
            continue
        call_edges.append(CallEdge(
            caller_file=nodes[caller.parent_id].name,
            caller_symbol=caller.name,
            callee_file=nodes[callee.parent_id].name,
            callee_symbol=callee.name,
        ))

    incoming: Dict[str, int] = {fid: 0 for fid in file_module}
    for edge in file_edges:
        incoming[edge.target_id] = incoming.get(edge.target_id, 0) + 1

    all_files = [f for m in modules for f in m.files]
    entry_points: List[EntryPoint] = [
        EntryPoint(f.node_id, f.name, file_module[f.node_id].node_id)
        for f in all_files
        if incoming.get(f.node_id, 0) == 0 or ENTRY_NAME_RE.match(f.name)
    ]
    if not entry_points:
        ranked = sorted(all_files, key=lambda f: incoming.get(f.node_id, 0))
        entry_points = [
            EntryPoint(f.node_id, f.name, file_module[f.node_id].node_id)
            for f in ranked[:FALLBACK_ENTRY_COUNT]
        ]

    return GraphSummary(
        root_node_id=graph.root_node_id,
        modules=modules,
        file_edges=file_edges,
        call_edges=call_edges,
        entry_points=entry_points,
    )
