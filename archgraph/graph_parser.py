"""Build the depth 0-3 graph hierarchy and its relations from a CodebaseAnalysis."""

from __future__ import annotations

from typing import Dict, List, Optional

from .cancel import CancelToken, check
from .config import get_str_list
from .graph_ops import GraphTransaction, create_empty_graph
from .model import (
    CodeGraph,
    CodebaseAnalysis,
    LogCategory,
    LogEntryFn,
    NodeKind,
    ProgressFn,
    RelationType,
    SourceRef,
    SyncLockEntry,
    SyncStatus,
    emit,
    now_ms,
)
from .path_resolver import basename, resolve_import_to_file
from .repo_scan import SCAN_RULES, RepoDirectory, ScanConfig, language_for, should_include
from .source_parser import compute_content_hash, extract_call_references, extract_class_hierarchy

ALIAS_PREFIXES = tuple(get_str_list(SCAN_RULES, "alias_prefixes")) or ("@/",)
FILE_LINE_END = 9999

SYMBOL_KINDS = {
    "class": NodeKind.CLASS,
    "function": NodeKind.FUNCTION,
    "interface": NodeKind.INTERFACE,
    "variable": NodeKind.VARIABLE,
    "method": NodeKind.METHOD,
    "field": NodeKind.FIELD,
}


def symbol_kind_to_node_kind(kind: str) -> NodeKind:
    return SYMBOL_KINDS.get(kind, NodeKind.FUNCTION)


async def parse_codebase_to_graph(
    analysis: CodebaseAnalysis,
    repo_id: str,
    repo_name: str,
    workspace_id: str,
    directory: Optional[RepoDirectory] = None,
    scan_config: Optional[ScanConfig] = None,
    *,
    progress: Optional[ProgressFn] = None,
    log: Optional[LogEntryFn] = None,
    cancel: Optional[CancelToken] = None,
) -> CodeGraph:
    """Translate scan output into a fully populated CodeGraph.

    Passes run in a fixed order: root, modules, files (with hashes when a
    live directory is given), symbols, file imports, class hierarchy and
    calls (live directory only), then module dependencies. A file that
    cannot be read is skipped for that pass only.
    """
    graph = create_empty_graph(workspace_id, repo_id, repo_name)
    tx = GraphTransaction(graph)
    root_id = tx.root_id

    files = [
        (mod.name, f)
        for mod in analysis.modules
        for f in mod.files
        if should_include(f.file_path, scan_config)
    ]
    total = len(files)

    module_ids: Dict[str, str] = {}
    file_ids: Dict[str, str] = {}
    symbol_ids: Dict[str, str] = {}
    symbols_by_name: Dict[str, List[str]] = {}

    # Modules
    if progress is not None:
        progress("Creating modules", 0, total)
    emit(log, LogCategory.PARSE, f"Creating {len(analysis.modules)} modules")
    for mod in analysis.modules:
        module_ids[mod.name] = tx.add_child(
            mod.name, NodeKind.PACKAGE, root_id, description=mod.description or "",
        )

    # Files and symbols
    for counter, (mod_name, file) in enumerate(files, start=1):
        check(cancel)
        if progress is not None:
            progress("Processing files", counter, total)
        if counter % 10 == 0 or counter == total:
            emit(log, LogCategory.PARSE, f"Processing files ({counter}/{total})", basename(file.file_path))

        content_hash = ""
        if directory is not None:
            try:
                content_hash = compute_content_hash(await directory.read_text(file.file_path))
            except (OSError, UnicodeDecodeError) as e:
                emit(log, LogCategory.WARNING, f"Could not hash {file.file_path}", type(e).__name__)

        source_ref = SourceRef(
            file_path=file.file_path,
            line_start=1,
            line_end=FILE_LINE_END if file.size > 0 else 1,
            content_hash=content_hash,
        )
        file_id = tx.add_child(
            basename(file.file_path),
            NodeKind.MODULE,
            module_ids[mod_name],
            source_ref=source_ref,
            tags=[file.language],
        )
        file_ids[file.file_path] = file_id
        if content_hash:
            tx.lock(file_id, SyncLockEntry(
                node_id=file_id,
                source_ref=source_ref,
                status=SyncStatus.LOCKED,
                last_checked=now_ms(),
            ))

        for sym in file.symbols:
            sym_id = tx.add_child(
                sym.name,
                symbol_kind_to_node_kind(sym.kind),
                file_id,
                source_ref=SourceRef(file.file_path, sym.line_start, sym.line_end, ""),
                tags=[sym.kind],
            )
            symbol_ids[f"{file.file_path}:{sym.name}"] = sym_id
            symbols_by_name.setdefault(sym.name, []).append(sym_id)

    # File imports
    emit(log, LogCategory.RESOLVE, f"Resolving dependencies ({total} files)")
    known = set(file_ids)
    resolved_count = 0
    for counter, (_, file) in enumerate(files, start=1):
        if progress is not None:
            progress("Resolving dependencies", counter, total)
        source_id = file_ids[file.file_path]
        for imp in file.imports:
            if imp.is_external and not imp.source.startswith(ALIAS_PREFIXES):
                continue
            target = resolve_import_to_file(imp.source, file.file_path, known, ALIAS_PREFIXES)
            if target is None:
                continue
            target_id = file_ids[target]
            if target_id != source_id:
                tx.add_relation(source_id, target_id, RelationType.DEPENDS_ON, imp.name or None)
                resolved_count += 1
    emit(log, LogCategory.RESOLVE, f"Resolved {resolved_count} file dependencies")

    # Class hierarchy and calls
    if directory is not None:
        emit(log, LogCategory.HIERARCHY, f"Analyzing class hierarchy ({total} files)")
        known_names = list(symbols_by_name)
        for counter, (_, file) in enumerate(files, start=1):
            check(cancel)
            if progress is not None:
                progress("Analyzing class hierarchy", counter, total)
            try:
                content = await directory.read_text(file.file_path)
            except (OSError, UnicodeDecodeError) as e:
                emit(log, LogCategory.WARNING, f"Skipped hierarchy for {file.file_path}", type(e).__name__)
                continue
            language = file.language or language_for(file.file_path)

            for entry in extract_class_hierarchy(content, language):
                source_id = symbol_ids.get(f"{file.file_path}:{entry.name}")
                if source_id is None:
                    continue
                for parent in entry.extends:
                    target_id = _first_other(symbols_by_name.get(parent), source_id)
                    if target_id:
                        tx.add_relation(source_id, target_id, RelationType.INHERITS)
                for iface in entry.implements:
                    target_id = _first_other(symbols_by_name.get(iface), source_id)
                    if target_id:
                        tx.add_relation(source_id, target_id, RelationType.IMPLEMENTS)

            for call in extract_call_references(content, file.symbols, known_names):
                caller_id = symbol_ids.get(f"{file.file_path}:{call.caller}")
                if caller_id is None:
                    continue
                callee_id = _first_other(symbols_by_name.get(call.callee), caller_id)
                if callee_id:
                    tx.add_relation(caller_id, callee_id, RelationType.CALLS)

    # Module dependencies
    for mod in analysis.modules:
        source_id = module_ids[mod.name]
        for dep in mod.dependencies:
            target_id = module_ids.get(dep)
            if target_id and target_id != source_id:
                tx.add_relation(source_id, target_id, RelationType.DEPENDS_ON)

    result = tx.commit()
    emit(
        log, LogCategory.PARSE,
        f"Graph built: {len(result.nodes)} nodes, {len(result.relations)} relations",
        f"{len(result.sync_lock)} files locked",
    )
    return result


def _first_other(candidates: Optional[List[str]], exclude: str) -> Optional[str]:
    """First symbol id with the wanted name that is not the source itself."""
    for cid in candidates or ():
        if cid != exclude:
            return cid
    return None
