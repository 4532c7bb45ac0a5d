"""Graph aggregate and scanner data structures."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class NodeKind(str, Enum):
    SYSTEM = "system"
    PACKAGE = "package"
    MODULE = "module"
    CLASS = "class"
    FUNCTION = "function"
    INTERFACE = "interface"
    VARIABLE = "variable"
    METHOD = "method"
    FIELD = "field"


class RelationType(str, Enum):
    CONTAINS = "contains"
    DEPENDS_ON = "depends_on"
    INHERITS = "inherits"
    IMPLEMENTS = "implements"
    CALLS = "calls"


class SyncStatus(str, Enum):
    LOCKED = "locked"
    MODIFIED = "modified"
    MISSING = "missing"


class LogCategory(str, Enum):
    SCAN = "scan"
    PARSE = "parse"
    RESOLVE = "resolve"
    HIERARCHY = "hierarchy"
    AI_ANALYZE = "ai-analyze"
    AI_ARCHITECT = "ai-architect"
    HEURISTIC = "heuristic"
    FLOWS = "flows"
    SYNC = "sync"
    LLM = "llm"
    DOMAIN = "domain"
    WARNING = "warning"


class FlowSource(str, Enum):
    LLM = "llm"
    HEURISTIC = "heuristic"


class DomainRole(str, Enum):
    PRIMARY = "primary"
    SUPPORTING = "supporting"
    REFERENCED = "referenced"


class DomainRelationType(str, Enum):
    OWNS = "owns"
    TRIGGERS = "triggers"
    REQUIRES = "requires"
    PRODUCES = "produces"
    CONSUMES = "consumes"


class FlowMergeMode(str, Enum):
    REPLACE = "replace"
    ADDITIVE = "additive"
    SCOPED = "scoped"


class FileRole(str, Enum):
    ENTRY_POINT = "entry_point"
    SERVICE = "service"
    COMPONENT = "component"
    HOOK = "hook"
    UTILITY = "utility"
    MODEL = "model"
    CONFIG = "config"
    TEST = "test"
    STYLE = "style"


# Depth levels of the containment hierarchy.
DEPTH_SYSTEM = 0
DEPTH_MODULE = 1
DEPTH_FILE = 2
DEPTH_SYMBOL = 3

ProgressFn = Callable[[str, int, int], None]
LogEntryFn = Callable[..., None]


def new_id() -> str:
    """Return a short random identifier."""
    return uuid.uuid4().hex[:12]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def emit(log: Optional[LogEntryFn], category: LogCategory, message: str, detail: Optional[str] = None) -> None:
    """Send a structured log event if a sink is attached."""
    if log is not None:
        log(category, message, detail)


# ── Graph aggregate ──────────────────────────────────────────────────


@dataclass
class SourceRef:
    file_path: str
    line_start: int
    line_end: int
    content_hash: str = ""


@dataclass
class GraphNode:
    id: str
    name: str
    kind: NodeKind
    depth: int
    parent_id: Optional[str]
    children: List[str] = field(default_factory=list)
    description: str = ""
    source_ref: Optional[SourceRef] = None
    tags: List[str] = field(default_factory=list)
    lens_config: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    domain_projections: List[str] = field(default_factory=list)


@dataclass
class GraphRelation:
    id: str
    source_id: str
    target_id: str
    type: RelationType
    label: Optional[str] = None
    lens_visibility: Dict[str, bool] = field(default_factory=dict)


@dataclass
class SyncLockEntry:
    node_id: str
    source_ref: SourceRef
    status: SyncStatus
    last_checked: int


@dataclass
class FlowStep:
    node_id: str
    label: str
    order: int


@dataclass
class GraphFlow:
    id: str
    name: str
    description: str
    scope_node_id: str
    steps: List[FlowStep]
    sequence_diagram: str


@dataclass
class CodeGraph:
    id: str
    name: str
    workspace_id: str
    repo_id: str
    root_node_id: str
    nodes: Dict[str, GraphNode]
    relations: Dict[str, GraphRelation]
    lenses: List[Dict[str, Any]]
    active_lens_id: Optional[str]
    domain_nodes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    domain_relations: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    flows: Dict[str, GraphFlow] = field(default_factory=dict)
    sync_lock: Dict[str, SyncLockEntry] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0

    def nodes_at_depth(self, depth: int) -> List[GraphNode]:
        return [n for n in self.nodes.values() if n.depth == depth]


# ── Scanner output ───────────────────────────────────────────────────


@dataclass
class ScannedSymbol:
    name: str
    kind: str
    line_start: int
    line_end: int


@dataclass
class ImportRef:
    source: str
    name: str
    is_external: bool


@dataclass
class AnalyzedFile:
    file_path: str
    language: str
    symbols: List[ScannedSymbol] = field(default_factory=list)
    imports: List[ImportRef] = field(default_factory=list)
    exported_symbols: List[str] = field(default_factory=list)
    size: int = 0


@dataclass
class CodebaseModule:
    name: str
    path: str
    files: List[AnalyzedFile]
    dependencies: List[str] = field(default_factory=list)
    description: str = ""


@dataclass
class CodebaseAnalysis:
    modules: List[CodebaseModule]
    external_deps: List[str] = field(default_factory=list)
    entry_points: List[str] = field(default_factory=list)
    total_files: int = 0
    total_symbols: int = 0

    def all_files(self) -> List[AnalyzedFile]:
        return [f for m in self.modules for f in m.files]


# ── Serialisation ────────────────────────────────────────────────────


def _enum_safe(items: List[tuple]) -> Dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in items}


def graph_to_dict(graph: CodeGraph) -> Dict[str, Any]:
    """Convert a graph into plain JSON-compatible data."""
    return asdict(graph, dict_factory=_enum_safe)


def _source_ref_from(data: Optional[dict]) -> Optional[SourceRef]:
    if not isinstance(data, dict):
        return None
    return SourceRef(
        file_path=str(data.get("file_path", "")),
        line_start=int(data.get("line_start", 1)),
        line_end=int(data.get("line_end", 1)),
        content_hash=str(data.get("content_hash") or ""),
    )


def graph_from_dict(data: Dict[str, Any]) -> CodeGraph:
    """Rebuild a graph from the output of graph_to_dict."""
    nodes: Dict[str, GraphNode] = {}
    for nid, raw in (data.get("nodes") or {}).items():
        nodes[nid] = GraphNode(
            id=raw["id"],
            name=raw["name"],
            kind=NodeKind(raw["kind"]),
            depth=int(raw["depth"]),
            parent_id=raw.get("parent_id"),
            children=list(raw.get("children") or []),
            description=raw.get("description") or "",
            source_ref=_source_ref_from(raw.get("source_ref")),
            tags=list(raw.get("tags") or []),
            lens_config=dict(raw.get("lens_config") or {}),
            domain_projections=list(raw.get("domain_projections") or []),
        )

    relations: Dict[str, GraphRelation] = {}
    for rid, raw in (data.get("relations") or {}).items():
        relations[rid] = GraphRelation(
            id=raw["id"],
            source_id=raw["source_id"],
            target_id=raw["target_id"],
            type=RelationType(raw["type"]),
            label=raw.get("label"),
            lens_visibility=dict(raw.get("lens_visibility") or {}),
        )

    flows: Dict[str, GraphFlow] = {}
    for fid, raw in (data.get("flows") or {}).items():
        flows[fid] = GraphFlow(
            id=raw["id"],
            name=raw["name"],
            description=raw.get("description") or "",
            scope_node_id=raw["scope_node_id"],
            steps=[
                FlowStep(node_id=s["node_id"], label=s["label"], order=int(s["order"]))
                for s in raw.get("steps") or []
            ],
            sequence_diagram=raw.get("sequence_diagram") or "",
        )

    sync_lock: Dict[str, SyncLockEntry] = {}
    for nid, raw in (data.get("sync_lock") or {}).items():
        ref = _source_ref_from(raw.get("source_ref"))
        if ref is None:
            continue
        sync_lock[nid] = SyncLockEntry(
            node_id=raw["node_id"],
            source_ref=ref,
            status=SyncStatus(raw["status"]),
            last_checked=int(raw.get("last_checked", 0)),
        )

    return CodeGraph(
        id=data["id"],
        name=data["name"],
        workspace_id=data["workspace_id"],
        repo_id=data["repo_id"],
        root_node_id=data["root_node_id"],
        nodes=nodes,
        relations=relations,
        lenses=list(data.get("lenses") or []),
        active_lens_id=data.get("active_lens_id"),
        domain_nodes=dict(data.get("domain_nodes") or {}),
        domain_relations=dict(data.get("domain_relations") or {}),
        flows=flows,
        sync_lock=sync_lock,
        created_at=int(data.get("created_at", 0)),
        updated_at=int(data.get("updated_at", 0)),
    )
