"""Reconcile loosely-typed paths returned by an LLM with the known file set."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .model import AnalyzedFile

_EXT_RE = re.compile(r"\.[^/.]+$")
_SLASHES_RE = re.compile(r"/+")


def normalize_path(path: str) -> str:
    """Strip a leading ./ and collapse repeated slashes."""
    p = path.strip().replace("\\", "/")
    p = _SLASHES_RE.sub("/", p)
    while p.startswith("./"):
        p = p[2:]
    return p


def strip_extension(path: str) -> str:
    return _EXT_RE.sub("", path)


def basename(path: str) -> str:
    return path.rstrip("/").split("/")[-1]


class PathResolver:
    """Resolve a candidate path to one known path, or None.

    Tries, in order: exact match after normalisation, match with the
    extension stripped, then basename. Stem and basename lookups only
    succeed when exactly one known file qualifies.
    """

    def __init__(self, known_paths: Iterable[str]):
        self._exact: Dict[str, str] = {}
        self._no_ext: Dict[str, List[str]] = {}
        self._by_basename: Dict[str, List[str]] = {}
        for fp in known_paths:
            norm = normalize_path(fp)
            self._exact.setdefault(norm, fp)
            self._no_ext.setdefault(strip_extension(norm), []).append(fp)
            self._by_basename.setdefault(basename(norm), []).append(fp)

    def __call__(self, candidate: str) -> Optional[str]:
        return self.resolve(candidate)

    def resolve(self, candidate: str) -> Optional[str]:
        if not isinstance(candidate, str) or not candidate.strip():
            return None
        norm = normalize_path(candidate)
        if norm in self._exact:
            return self._exact[norm]
        stems = self._no_ext.get(norm)
        if stems and len(stems) == 1:
            return stems[0]
        matches = self._by_basename.get(basename(norm))
        if matches and len(matches) == 1:
            return matches[0]
        return None


def build_import_edges(files: List[AnalyzedFile], alias_prefix: str = "@/") -> List[Tuple[str, str]]:
    """Derive deduplicated file-to-file import edges by simple path matching.

    The import source is compared against each known path exactly, without
    its extension, or with a common extension appended. Relative segments
    are not resolved; this is a cheap signal for grouping, not the parser's
    resolver.
    """
    targets: List[Tuple[str, str, str]] = []
    for f in files:
        norm = normalize_path(f.file_path)
        targets.append((f.file_path, norm, strip_extension(norm)))

    seen = set()
    edges: List[Tuple[str, str]] = []
    for f in files:
        for imp in f.imports:
            if imp.is_external and not imp.source.startswith(alias_prefix):
                continue
            src = imp.source[len(alias_prefix):] if imp.source.startswith(alias_prefix) else imp.source
            base = normalize_path(src)
            candidates = {base, f"{base}.ts", f"{base}.tsx", f"{base}.js", f"{base}.py"}
            for target, norm, no_ext in targets:
                if norm in candidates or no_ext == base:
                    if target != f.file_path and (f.file_path, target) not in seen:
                        seen.add((f.file_path, target))
                        edges.append((f.file_path, target))
                    break
    return edges


RESOLVE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".py", "")
INDEX_SUFFIXES = ("/index.ts", "/index.tsx", "/index.js", "/index.jsx", "/__init__.py")


def resolve_import_to_file(
    source: str,
    current_file: str,
    all_files: Set[str],
    alias_prefixes: Sequence[str] = ("@/",),
) -> Optional[str]:
    """Resolve a relative or alias-prefixed import specifier to a known file.

    Returns None for bare package specifiers and for anything that does
    not land on a known path after trying extension and index candidates.
    """
    if source.startswith("."):
        current_dir = current_file.rsplit("/", 1)[0] if "/" in current_file else ""
        resolved = current_dir
        for part in source.split("/"):
            if part in (".", ""):
                continue
            if part == "..":
                resolved = resolved.rsplit("/", 1)[0] if "/" in resolved else ""
            else:
                resolved = f"{resolved}/{part}" if resolved else part
        base = resolved
    else:
        prefix = next((p for p in alias_prefixes if source.startswith(p)), None)
        if prefix is None:
            return None
        base = source[len(prefix):]

    for ext in RESOLVE_EXTENSIONS:
        if base + ext in all_files:
            return base + ext
    for idx in INDEX_SUFFIXES:
        if base + idx in all_files:
            return base + idx
    return None
