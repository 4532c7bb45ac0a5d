"""Scan a live directory into a CodebaseAnalysis grouped by top-level directory."""

from __future__ import annotations

from typing import Dict, List, Optional, Set

from .cancel import CancelToken, check
from .config import get_str_list
from .model import (
    AnalyzedFile,
    CodebaseAnalysis,
    CodebaseModule,
    LogCategory,
    LogEntryFn,
    ProgressFn,
    emit,
)
from .path_resolver import resolve_import_to_file
from .repo_scan import SCAN_RULES, RepoDirectory, ScanConfig, language_for
from .source_parser import extract_exports, extract_imports, extract_symbols

ENTRY_POINT_NAMES = set(get_str_list(SCAN_RULES, "entry_point_names"))
ALIAS_PREFIXES = tuple(get_str_list(SCAN_RULES, "alias_prefixes")) or ("@/",)
ROOT_MODULE = "(root)"


def module_name_for(file_path: str) -> str:
    parts = file_path.split("/")
    return ROOT_MODULE if len(parts) == 1 else parts[0]


def external_package_name(source: str, language: str = "") -> str:
    """Normalise an import specifier to its package: @scope/pkg keeps two segments."""
    if language == "python":
        return source.split(".")[0]
    parts = source.split("/")
    if source.startswith("@"):
        return "/".join(parts[:2])
    return parts[0]


def _local_roots(paths: List[str]) -> Set[str]:
    roots: Set[str] = set()
    for p in paths:
        head = p.split("/")[0]
        roots.add(head[:-3] if head.endswith(".py") else head)
    return roots


def group_into_modules(files: List[AnalyzedFile], all_paths: Set[str]) -> List[CodebaseModule]:
    """Group files by top-level directory and compute cross-module dependencies."""
    by_module: Dict[str, List[AnalyzedFile]] = {}
    for f in files:
        by_module.setdefault(module_name_for(f.file_path), []).append(f)

    modules: List[CodebaseModule] = []
    for name, mod_files in by_module.items():
        deps: List[str] = []
        for f in mod_files:
            for imp in f.imports:
                if imp.is_external:
                    continue
                target = resolve_import_to_file(imp.source, f.file_path, all_paths, ALIAS_PREFIXES)
                if target is None:
                    continue
                dep = module_name_for(target)
                if dep != name and dep not in deps:
                    deps.append(dep)
        modules.append(CodebaseModule(
            name=name,
            path="" if name == ROOT_MODULE else name,
            files=mod_files,
            dependencies=deps,
        ))

    modules.sort(key=lambda m: (m.name != ROOT_MODULE, m.name.lower()))
    return modules


async def analyze_codebase(
    directory: RepoDirectory,
    scan_config: Optional[ScanConfig] = None,
    *,
    progress: Optional[ProgressFn] = None,
    log: Optional[LogEntryFn] = None,
    cancel: Optional[CancelToken] = None,
) -> CodebaseAnalysis:
    """List code files, extract symbols/imports/exports, and group by directory."""
    paths = await directory.list_code_files(scan_config)
    emit(log, LogCategory.SCAN, f"Found {len(paths)} code files", directory.name)
    roots = _local_roots(paths)

    analyzed: List[AnalyzedFile] = []
    external: Set[str] = set()
    entry_points: List[str] = []
    total_symbols = 0

    for i, path in enumerate(paths, start=1):
        check(cancel)
        if progress is not None:
            progress("Scanning files", i, len(paths))
        try:
            content = await directory.read_text(path)
        except (OSError, UnicodeDecodeError) as e:
            emit(log, LogCategory.WARNING, f"Skipped unreadable file {path}", type(e).__name__)
            continue
        language = language_for(path)
        symbols = extract_symbols(content, language)
        imports = extract_imports(content, language, roots)
        for imp in imports:
            if imp.is_external:
                external.add(external_package_name(imp.source, language))
        total_symbols += len(symbols)
        analyzed.append(AnalyzedFile(
            file_path=path,
            language=language,
            symbols=symbols,
            imports=imports,
            exported_symbols=extract_exports(content, language),
            size=len(content),
        ))
        if path.split("/")[-1] in ENTRY_POINT_NAMES:
            entry_points.append(path)

    modules = group_into_modules(analyzed, set(paths))
    emit(log, LogCategory.SCAN, f"Analyzed {len(analyzed)} files, {total_symbols} symbols, {len(modules)} modules")
    return CodebaseAnalysis(
        modules=modules,
        external_deps=sorted(external),
        entry_points=entry_points,
        total_files=len(analyzed),
        total_symbols=total_symbols,
    )
