"""Content-hash drift detection and full resync against a live directory."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from .cancel import CancelToken, check
from .codebase_analyzer import analyze_codebase
from .graph_parser import parse_codebase_to_graph
from .model import CodeGraph, LogCategory, LogEntryFn, ProgressFn, SyncLockEntry, SyncStatus, emit, now_ms
from .repo_scan import RepoDirectory, ScanConfig
from .source_parser import compute_content_hash


@dataclass
class SyncReport:
    modified: List[SyncLockEntry] = field(default_factory=list)
    missing: List[SyncLockEntry] = field(default_factory=list)
    unchanged: List[SyncLockEntry] = field(default_factory=list)

    def total(self) -> int:
        return len(self.modified) + len(self.missing) + len(self.unchanged)

    def has_drift(self) -> bool:
        return bool(self.modified or self.missing)


async def detect_changes(
    graph: CodeGraph,
    directory: RepoDirectory,
    *,
    progress: Optional[ProgressFn] = None,
    log: Optional[LogEntryFn] = None,
    cancel: Optional[CancelToken] = None,
) -> SyncReport:
    """Classify every sync-lock entry as modified, missing or unchanged.

    Only already-tracked files are checked; added files are not detected.
    """
    report = SyncReport()
    entries = list(graph.sync_lock.values())
    for i, entry in enumerate(entries, start=1):
        check(cancel)
        if progress is not None:
            progress("Checking files", i, len(entries))
        try:
            content = await directory.read_text(entry.source_ref.file_path)
        except (OSError, UnicodeDecodeError) as e:
            report.missing.append(replace(entry, status=SyncStatus.MISSING))
            emit(log, LogCategory.SYNC, f"Missing: {entry.source_ref.file_path}", type(e).__name__)
            continue
        if compute_content_hash(content) != entry.source_ref.content_hash:
            report.modified.append(replace(entry, status=SyncStatus.MODIFIED))
            emit(log, LogCategory.SYNC, f"Modified: {entry.source_ref.file_path}")
        else:
            report.unchanged.append(entry)

    emit(
        log, LogCategory.SYNC,
        f"Sync check: {len(report.modified)} modified, {len(report.missing)} missing, "
        f"{len(report.unchanged)} unchanged",
    )
    return report


def apply_sync_report(graph: CodeGraph, report: SyncReport) -> CodeGraph:
    """Fold a report into the sync lock; nodes and relations are untouched."""
    now = now_ms()
    sync_lock: Dict[str, SyncLockEntry] = dict(graph.sync_lock)
    buckets = (
        (report.modified, SyncStatus.MODIFIED),
        (report.missing, SyncStatus.MISSING),
        (report.unchanged, SyncStatus.LOCKED),
    )
    for entries, status in buckets:
        for entry in entries:
            sync_lock[entry.node_id] = replace(entry, status=status, last_checked=now)
    return replace(graph, sync_lock=sync_lock, updated_at=now)


async def full_resync(
    graph: CodeGraph,
    directory: RepoDirectory,
    repo_name: Optional[str] = None,
    scan_config: Optional[ScanConfig] = None,
    *,
    progress: Optional[ProgressFn] = None,
    log: Optional[LogEntryFn] = None,
    cancel: Optional[CancelToken] = None,
) -> CodeGraph:
    """Rebuild the graph from scratch, keeping identity, lenses and the domain overlay."""
    emit(log, LogCategory.SYNC, "Full resync: rescanning directory", str(directory.root))
    analysis = await analyze_codebase(directory, scan_config, progress=progress, log=log, cancel=cancel)
    check(cancel)
    fresh = await parse_codebase_to_graph(
        analysis,
        graph.repo_id,
        repo_name or directory.name,
        graph.workspace_id,
        directory,
        scan_config,
        progress=progress,
        log=log,
        cancel=cancel,
    )
    emit(
        log, LogCategory.SYNC,
        f"Full resync: {len(fresh.nodes)} nodes, {len(fresh.relations)} relations, {len(fresh.sync_lock)} locked files",
    )
    return replace(
        fresh,
        id=graph.id,
        name=graph.name,
        created_at=graph.created_at,
        lenses=graph.lenses,
        active_lens_id=graph.active_lens_id,
        domain_nodes=graph.domain_nodes,
        domain_relations=graph.domain_relations,
    )
