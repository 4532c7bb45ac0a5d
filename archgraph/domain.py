"""Domain analysis: project the code graph onto business concepts with one LLM call."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Set

from .cancel import CancelToken
from .llm_client import ChatFn, LLMSettings, llm_chat, require_credential
from .model import (
    CodeGraph,
    DomainRelationType,
    DomainRole,
    LogCategory,
    LogEntryFn,
    NodeKind,
    RelationType,
    emit,
    new_id,
    now_ms,
)
from .prompts import DOMAIN_RETRY, DOMAIN_SYSTEM
from .retry import CorrectiveRetry

MAX_PROMPT_NODES = 200
MAX_PROMPT_RELATIONS = 300
DEFAULT_RELATION_TYPE = DomainRelationType.REQUIRES

_ROLES = {r.value: r for r in DomainRole}
_RELATION_TYPES = {t.value: t for t in DomainRelationType}


@dataclass
class DomainProjection:
    graph_node_id: str
    role: DomainRole


@dataclass
class DomainNode:
    id: str
    name: str
    description: str
    projections: List[DomainProjection]
    children: List[str] = field(default_factory=list)
    parent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "projections": [{"graph_node_id": p.graph_node_id, "role": p.role.value} for p in self.projections],
            "children": list(self.children),
            "parent_id": self.parent_id,
        }


@dataclass
class DomainRelation:
    id: str
    source_id: str
    target_id: str
    type: DomainRelationType
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "type": self.type.value,
            "label": self.label,
        }


@dataclass
class DomainAnalysis:
    nodes: Dict[str, DomainNode]
    relations: Dict[str, DomainRelation]

    def node_by_name(self, name: str) -> Optional[DomainNode]:
        return next((n for n in self.nodes.values() if n.name == name), None)


def build_domain_prompt(graph: CodeGraph) -> str:
    """Describe nodes and non-containment relations, capped to keep the prompt bounded."""
    nodes = list(graph.nodes.values())
    node_lines = []
    for n in [n for n in nodes if n.kind is not NodeKind.SYSTEM][:MAX_PROMPT_NODES]:
        source = f" [{n.source_ref.file_path}]" if n.source_ref else ""
        tags = f" tags:[{','.join(n.tags)}]" if n.tags else ""
        node_lines.append(f'  {n.id}: {n.kind.value} "{n.name}"{source}{tags}')

    relations = list(graph.relations.values())
    rel_lines = []
    for r in [r for r in relations if r.type is not RelationType.CONTAINS][:MAX_PROMPT_RELATIONS]:
        src = graph.nodes[r.source_id].name if r.source_id in graph.nodes else r.source_id
        dst = graph.nodes[r.target_id].name if r.target_id in graph.nodes else r.target_id
        rel_lines.append(f"  {src} --{r.type.value}--> {dst}")

    return (
        "Analyze this code graph and identify domain concepts:\n\n"
        f"Nodes ({len(nodes)} total):\n" + "\n".join(node_lines) + "\n\n"
        f"Relations ({len(relations)} total, showing non-containment):\n" + "\n".join(rel_lines) + "\n\n"
        "Return JSON with domain mappings."
    )


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _projections(raw: Any, valid_node_ids: Set[str]) -> List[DomainProjection]:
    if not isinstance(raw, list):
        return []
    seen: Set[str] = set()
    out: List[DomainProjection] = []
    for p in raw:
        if not isinstance(p, dict):
            continue
        node_id, role = _text(p.get("nodeId")), _text(p.get("role"))
        if node_id in valid_node_ids and role in _ROLES and node_id not in seen:
            seen.add(node_id)
            out.append(DomainProjection(node_id, _ROLES[role]))
    return out


def validate_domain_analysis(
    raw: Any,
    valid_node_ids: Set[str],
    log: Optional[LogEntryFn] = None,
) -> Optional[DomainAnalysis]:
    """Keep named domains and the projections that point at real graph nodes.

    Duplicate domain names keep the first entry. Relations between unknown
    domains are dropped and unknown relation types become "requires".
    Returns None when no domain survives or none projects onto the graph.
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("domains"), list):
        return None

    nodes: Dict[str, DomainNode] = {}
    by_name: Dict[str, str] = {}
    dropped = 0
    for d in raw["domains"]:
        if not isinstance(d, dict):
            continue
        name = d.get("name")
        if not isinstance(name, str) or not name.strip() or name.strip() in by_name:
            continue
        projections = _projections(d.get("projections"), valid_node_ids)
        listed = d.get("projections")
        dropped += (len(listed) if isinstance(listed, list) else 0) - len(projections)
        description = d.get("description")
        node = DomainNode(
            id=new_id(),
            name=name.strip(),
            description=description if isinstance(description, str) else "",
            projections=projections,
        )
        nodes[node.id] = node
        by_name[node.name] = node.id

    if not nodes or not any(n.projections for n in nodes.values()):
        return None
    if dropped:
        emit(log, LogCategory.DOMAIN, f"Dropped {dropped} projections with unknown node ids or roles")

    relations: Dict[str, DomainRelation] = {}
    raw_rels = raw.get("relations")
    for rel in raw_rels if isinstance(raw_rels, list) else []:
        if not isinstance(rel, dict):
            continue
        src, dst = by_name.get(_text(rel.get("source"))), by_name.get(_text(rel.get("target")))
        if src is None or dst is None:
            continue
        label = rel.get("label")
        relation = DomainRelation(
            id=new_id(),
            source_id=src,
            target_id=dst,
            type=_RELATION_TYPES.get(_text(rel.get("type")), DEFAULT_RELATION_TYPE),
            label=label if isinstance(label, str) and label else None,
        )
        relations[relation.id] = relation

    return DomainAnalysis(nodes=nodes, relations=relations)


async def analyze_domain(
    graph: CodeGraph,
    settings: LLMSettings,
    *,
    chat: ChatFn = llm_chat,
    cancel: Optional[CancelToken] = None,
    log: Optional[LogEntryFn] = None,
    llm_log: Optional[Callable[[str], None]] = None,
) -> Optional[DomainAnalysis]:
    """Ask for a domain projection of graph; None when every attempt fails validation.

    Raises LLMConfigError before any request when the provider has no credential.
    """
    require_credential(settings)
    valid_ids = set(graph.nodes)
    retry: CorrectiveRetry[DomainAnalysis] = CorrectiveRetry(
        "domain",
        build_domain_prompt(graph),
        DOMAIN_RETRY,
        category=LogCategory.DOMAIN,
    )
    analysis = await retry.run(
        chat,
        DOMAIN_SYSTEM,
        settings,
        lambda parsed: validate_domain_analysis(parsed, valid_ids, log),
        prefer="{",
        cancel=cancel,
        log=log,
        llm_log=llm_log,
    )
    if analysis is not None:
        emit(
            log, LogCategory.DOMAIN,
            f"Domain analysis: {len(analysis.nodes)} domains, {len(analysis.relations)} relations",
            ", ".join(n.name for n in analysis.nodes.values()),
        )
    return analysis


def apply_domain_analysis(graph: CodeGraph, analysis: DomainAnalysis) -> CodeGraph:
    """Replace the domain overlay and point each projected node at its domains."""
    projected: Dict[str, List[str]] = {}
    for domain in analysis.nodes.values():
        for p in domain.projections:
            projected.setdefault(p.graph_node_id, []).append(domain.id)

    nodes = dict(graph.nodes)
    for nid, node in graph.nodes.items():
        domains = projected.get(nid, [])
        if node.domain_projections != domains:
            nodes[nid] = replace(node, domain_projections=domains)
    return replace(
        graph,
        nodes=nodes,
        domain_nodes={d.id: d.to_dict() for d in analysis.nodes.values()},
        domain_relations={r.id: r.to_dict() for r in analysis.relations.values()},
        updated_at=now_ms(),
    )
