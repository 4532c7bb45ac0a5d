"""Graph creation, copy-on-write edits, invariants and tree queries."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Set

from .model import (
    CodeGraph,
    DEPTH_FILE,
    DEPTH_MODULE,
    DEPTH_SYSTEM,
    GraphFlow,
    GraphNode,
    GraphRelation,
    NodeKind,
    RelationType,
    SourceRef,
    SyncLockEntry,
    new_id,
    now_ms,
)

FAN_OUT_LIMIT = 8
FAN_IN_LIMIT = 10


class GraphInvariantError(ValueError):
    """Raised when a graph breaks a structural invariant."""

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        head = "; ".join(self.violations[:5])
        more = f" (+{len(self.violations) - 5} more)" if len(self.violations) > 5 else ""
        super().__init__(f"Graph invariant violated: {head}{more}")


def default_lenses() -> List[Dict[str, Any]]:
    """Return the component, flow and domain lens configurations."""
    return [
        {
            "id": "lens-component",
            "name": "Component",
            "type": "component",
            "node_filter": {
                "kinds": ["system", "package", "module", "class", "interface"],
                "min_depth": 0,
                "max_depth": 3,
            },
            "relation_filter": {"types": ["contains", "depends_on", "implements", "inherits"]},
            "layout_hint": "TD",
        },
        {
            "id": "lens-flow",
            "name": "Flow",
            "type": "flow",
            "node_filter": {
                "kinds": ["package", "module", "class", "function"],
                "min_depth": 1,
                "max_depth": 3,
            },
            "relation_filter": {"types": ["calls", "depends_on"]},
            "layout_hint": "LR",
        },
        {
            "id": "lens-domain",
            "name": "Domain",
            "type": "domain",
            "node_filter": {"min_depth": 0, "max_depth": 4},
            "relation_filter": {},
            "layout_hint": "TD",
        },
    ]


def create_empty_graph(workspace_id: str, repo_id: str, name: str) -> CodeGraph:
    """Create a graph holding only its depth-0 system node."""
    lenses = default_lenses()
    root_id = new_id()
    now = now_ms()
    root = GraphNode(
        id=root_id,
        name=name,
        kind=NodeKind.SYSTEM,
        depth=DEPTH_SYSTEM,
        parent_id=None,
    )
    return CodeGraph(
        id=new_id(),
        name=name,
        workspace_id=workspace_id,
        repo_id=repo_id,
        root_node_id=root_id,
        nodes={root_id: root},
        relations={},
        lenses=lenses,
        active_lens_id=lenses[0]["id"],
        created_at=now,
        updated_at=now,
    )


class GraphTransaction:
    """Collects edits against a graph and commits them as a new graph value.

    The source graph is never mutated: node objects are copied on first
    write, containers are copied up front.
    """

    def __init__(self, graph: CodeGraph):
        self._base = graph
        self.nodes: Dict[str, GraphNode] = dict(graph.nodes)
        self.relations: Dict[str, GraphRelation] = dict(graph.relations)
        self.sync_lock: Dict[str, SyncLockEntry] = dict(graph.sync_lock)
        self._lens_ids = [lens.get("id") for lens in graph.lenses if lens.get("id")]
        self._touched: Set[str] = set()

    @property
    def root_id(self) -> str:
        return self._base.root_node_id

    def _writable(self, node_id: str) -> GraphNode:
        node = self.nodes[node_id]
        if node_id not in self._touched:
            node = replace(node, children=list(node.children))
            self.nodes[node_id] = node
            self._touched.add(node_id)
        return node

    def add_node(
        self,
        name: str,
        kind: NodeKind,
        parent_id: str,
        *,
        description: str = "",
        source_ref: Optional[SourceRef] = None,
        tags: Optional[List[str]] = None,
        node_id: Optional[str] = None,
    ) -> str:
        """Add a child node under parent_id and keep parent.children in sync."""
        if parent_id not in self.nodes:
            raise KeyError(f'Unknown parent node "{parent_id}"')
        parent = self._writable(parent_id)
        nid = node_id or new_id()
        self.nodes[nid] = GraphNode(
            id=nid,
            name=name,
            kind=kind,
            depth=parent.depth + 1,
            parent_id=parent_id,
            description=description,
            source_ref=source_ref,
            tags=list(tags or []),
        )
        self._touched.add(nid)
        parent.children.append(nid)
        return nid

    def add_relation(
        self,
        source_id: str,
        target_id: str,
        rel_type: RelationType,
        label: Optional[str] = None,
    ) -> str:
        rid = new_id()
        self.relations[rid] = GraphRelation(
            id=rid,
            source_id=source_id,
            target_id=target_id,
            type=rel_type,
            label=label,
            lens_visibility={lid: True for lid in self._lens_ids},
        )
        return rid

    def add_child(
        self,
        name: str,
        kind: NodeKind,
        parent_id: str,
        **kwargs: Any,
    ) -> str:
        """Add a node together with its mirroring contains relation."""
        nid = self.add_node(name, kind, parent_id, **kwargs)
        self.add_relation(parent_id, nid, RelationType.CONTAINS)
        return nid

    def lock(self, node_id: str, entry: SyncLockEntry) -> None:
        self.sync_lock[node_id] = entry

    def commit(self) -> CodeGraph:
        return replace(
            self._base,
            nodes=self.nodes,
            relations=self.relations,
            sync_lock=self.sync_lock,
            updated_at=now_ms(),
        )


def with_flows(graph: CodeGraph, flows: Dict[str, GraphFlow]) -> CodeGraph:
    """Return a copy of graph with its flow map replaced."""
    return replace(graph, flows=dict(flows), updated_at=now_ms())


# ── Tree queries ─────────────────────────────────────────────────────


def get_descendants(graph: CodeGraph, node_id: str) -> List[GraphNode]:
    """Return all descendants of node_id in depth-first pre-order."""
    result: List[GraphNode] = []
    stack = list(reversed(graph.nodes[node_id].children)) if node_id in graph.nodes else []
    while stack:
        cid = stack.pop()
        child = graph.nodes.get(cid)
        if child is None:
            continue
        result.append(child)
        stack.extend(reversed(child.children))
    return result


def get_ancestors(graph: CodeGraph, node_id: str) -> List[GraphNode]:
    """Return the parent chain of node_id, nearest first."""
    result: List[GraphNode] = []
    current = graph.nodes.get(node_id)
    seen: Set[str] = set()
    while current is not None and current.parent_id and current.parent_id not in seen:
        seen.add(current.parent_id)
        parent = graph.nodes.get(current.parent_id)
        if parent is None:
            break
        result.append(parent)
        current = parent
    return result


def module_of(graph: CodeGraph, node_id: str) -> Optional[str]:
    """Return the depth-1 ancestor id of node_id, or node_id itself at depth 1."""
    node = graph.nodes.get(node_id)
    if node is None:
        return None
    if node.depth == DEPTH_MODULE:
        return node.id
    for anc in get_ancestors(graph, node_id):
        if anc.depth == DEPTH_MODULE:
            return anc.id
    return None


# ── Invariants ───────────────────────────────────────────────────────


def invariant_violations(graph: CodeGraph) -> List[str]:
    """List every structural invariant the graph breaks."""
    problems: List[str] = []
    nodes = graph.nodes

    roots = [n.id for n in nodes.values() if n.depth == DEPTH_SYSTEM]
    if roots != [graph.root_node_id]:
        problems.append(f"expected single root {graph.root_node_id}, found {roots}")
    root = nodes.get(graph.root_node_id)
    if root is not None and root.parent_id is not None:
        problems.append("root node has a parent")

    for node in nodes.values():
        if node.id == graph.root_node_id:
            continue
        parent = nodes.get(node.parent_id or "")
        if parent is None:
            problems.append(f"node {node.id} has no valid parent")
            continue
        if node.depth != parent.depth + 1:
            problems.append(f"node {node.id} depth {node.depth} under parent depth {parent.depth}")
        if node.id not in parent.children:
            problems.append(f"node {node.id} missing from children of {parent.id}")
        for cid in node.children:
            child = nodes.get(cid)
            if child is None or child.parent_id != node.id:
                problems.append(f"child {cid} of {node.id} does not point back")
    if root is not None:
        for cid in root.children:
            child = nodes.get(cid)
            if child is None or child.parent_id != root.id:
                problems.append(f"child {cid} of root does not point back")

    contains_pairs: Set[tuple] = set()
    for rel in graph.relations.values():
        if rel.source_id not in nodes or rel.target_id not in nodes:
            problems.append(f"relation {rel.id} references a missing node")
            continue
        if rel.type is RelationType.CONTAINS:
            contains_pairs.add((rel.source_id, rel.target_id))
            if nodes[rel.target_id].parent_id != rel.source_id:
                problems.append(f"contains relation {rel.id} disagrees with parent link")
    for node in nodes.values():
        if node.parent_id and (node.parent_id, node.id) not in contains_pairs:
            problems.append(f"node {node.id} has no contains relation from its parent")

    for flow in graph.flows.values():
        scope = nodes.get(flow.scope_node_id)
        if scope is None or scope.depth not in (DEPTH_SYSTEM, DEPTH_MODULE):
            problems.append(f"flow {flow.id} has invalid scope {flow.scope_node_id}")
        for step in flow.steps:
            target = nodes.get(step.node_id)
            if target is None or target.depth != DEPTH_FILE:
                problems.append(f"flow {flow.id} step references non-file node {step.node_id}")

    for nid, entry in graph.sync_lock.items():
        if nid not in nodes:
            problems.append(f"sync lock entry for missing node {nid}")
        elif not entry.source_ref.content_hash:
            problems.append(f"sync lock entry for {nid} has an empty hash")

    return problems


def check_invariants(graph: CodeGraph) -> None:
    """Raise GraphInvariantError if the graph is structurally invalid."""
    problems = invariant_violations(graph)
    if problems:
        raise GraphInvariantError(problems)


# ── Anomalies ────────────────────────────────────────────────────────


@dataclass
class GraphAnomaly:
    type: str
    severity: str
    message: str
    node_ids: List[str] = field(default_factory=list)
    relation_ids: List[str] = field(default_factory=list)


def find_anomalies(graph: CodeGraph) -> List[GraphAnomaly]:
    """Report orphans, broken references, dependency cycles and coupling hot spots."""
    anomalies: List[GraphAnomaly] = []
    nodes = graph.nodes

    for node in nodes.values():
        if node.id == graph.root_node_id:
            continue
        if not node.parent_id or node.parent_id not in nodes:
            anomalies.append(GraphAnomaly(
                "orphan_node", "warning", f'Node "{node.name}" has no valid parent', [node.id],
            ))

    for rel in graph.relations.values():
        missing = [i for i in (rel.source_id, rel.target_id) if i not in nodes]
        if missing:
            anomalies.append(GraphAnomaly(
                "broken_reference", "error",
                f'Relation "{rel.type.value}" references missing node(s)',
                missing, [rel.id],
            ))

    dep_edges = [r for r in graph.relations.values() if r.type is not RelationType.CONTAINS]
    outgoing: Dict[str, List[str]] = {}
    fan_in: Dict[str, int] = {}
    for rel in dep_edges:
        outgoing.setdefault(rel.source_id, []).append(rel.target_id)
        fan_in[rel.target_id] = fan_in.get(rel.target_id, 0) + 1

    visited: Set[str] = set()
    for start in nodes:
        if start in visited:
            continue
        # Iterative DFS keeping the active path to report each back edge as a cycle.
        path: List[str] = []
        on_path: Set[str] = set()
        stack: List[tuple] = [(start, iter(outgoing.get(start, [])))]
        visited.add(start)
        path.append(start)
        on_path.add(start)
        while stack:
            current, targets = stack[-1]
            nxt = next(targets, None)
            if nxt is None:
                stack.pop()
                path.pop()
                on_path.discard(current)
                continue
            if nxt in on_path:
                cycle = path[path.index(nxt):]
                names = " -> ".join(nodes[i].name if i in nodes else i for i in cycle)
                anomalies.append(GraphAnomaly(
                    "circular_dependency", "warning", f"Circular dependency: {names}", list(cycle),
                ))
                continue
            if nxt in visited:
                continue
            visited.add(nxt)
            path.append(nxt)
            on_path.add(nxt)
            stack.append((nxt, iter(outgoing.get(nxt, []))))

    for node in nodes.values():
        fan_out = len(outgoing.get(node.id, []))
        if fan_out > FAN_OUT_LIMIT:
            anomalies.append(GraphAnomaly(
                "high_coupling", "warning",
                f'Node "{node.name}" has high fan-out ({fan_out} dependencies)', [node.id],
            ))
    for node in nodes.values():
        count = fan_in.get(node.id, 0)
        if count > FAN_IN_LIMIT:
            anomalies.append(GraphAnomaly(
                "god_node", "warning",
                f'Node "{node.name}" has high fan-in ({count} dependents)', [node.id],
            ))

    return anomalies
