"""Source-level extraction: hashes, symbols, imports, exports, hierarchy and calls."""

from __future__ import annotations

import ast
import hashlib
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from .model import ImportRef, ScannedSymbol

ALIAS_PREFIX = "@/"

TS_SYMBOL_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"^(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(\w+)", re.M), "class"),
    (re.compile(r"^(?:export\s+)?interface\s+(\w+)", re.M), "interface"),
    (re.compile(r"^(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*(\w+)", re.M), "function"),
    (re.compile(r"^(?:export\s+)?(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s+)?\(", re.M), "function"),
    (re.compile(
        r"^(?:export\s+)?(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s+)?(?:\([^)]*\)|[a-zA-Z_]\w*)\s*=>", re.M,
    ), "function"),
    (re.compile(r"^(?:export\s+)?(?:const|let|var)\s+([A-Z][A-Z0-9_]+)\s*=", re.M), "variable"),
]

PY_SYMBOL_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"^class\s+(\w+)", re.M), "class"),
    (re.compile(r"^(?:async\s+)?def\s+(\w+)", re.M), "function"),
    (re.compile(r"^([A-Z][A-Z0-9_]+)\s*(?::[^=]+)?=", re.M), "variable"),
]

TS_IMPORT_FROM_RE = re.compile(
    r"^\s*import\s+(?:type\s+)?(?P<what>[^'\";]*?)\s+from\s+['\"](?P<src>[^'\"]+)['\"]", re.M,
)
TS_IMPORT_BARE_RE = re.compile(r"^\s*import\s+['\"](?P<src>[^'\"]+)['\"]", re.M)
TS_EXPORT_FROM_RE = re.compile(
    r"^\s*export\s+(?:type\s+)?(?P<what>\*(?:\s+as\s+\w+)?|\{[^}]*\})\s+from\s+['\"](?P<src>[^'\"]+)['\"]", re.M,
)
TS_REQUIRE_RE = re.compile(
    r"(?:(?:const|let|var)\s+(?P<what>[\w{}\s,]+?)\s*=\s*)?require\(\s*['\"](?P<src>[^'\"]+)['\"]\s*\)",
)
PY_IMPORT_RE = re.compile(r"^\s*import\s+([\w.]+(?:\s*,\s*[\w.]+)*)", re.M)
PY_FROM_RE = re.compile(r"^\s*from\s+(\.*[\w.]*)\s+import\s+\(?([\w\s,*]+)\)?", re.M)

TS_EXPORT_DECL_RE = re.compile(
    r"^\s*export\s+(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?:function\s*\*?|class|const|let|var|interface|type|enum)\s+(\w+)",
    re.M,
)
TS_EXPORT_LIST_RE = re.compile(r"^\s*export\s+(?:type\s+)?\{([^}]*)\}(?!\s*from)", re.M)

TS_CLASS_RE = re.compile(
    r"\bclass\s+(\w+)(?:\s*<[^>{]*>)?"
    r"(?:\s+extends\s+([\w.]+)(?:\s*<[^>{]*>)?)?"
    r"(?:\s+implements\s+([\w.,\s<>]+?))?\s*\{",
)
TS_INTERFACE_RE = re.compile(r"\binterface\s+(\w+)(?:\s*<[^>{]*>)?\s+extends\s+([\w.,\s<>]+?)\s*\{")

PY_IGNORED_BASES = {"object", "ABC", "Protocol", "Generic", "Enum", "Exception", "BaseException"}


@dataclass
class ClassHierarchyEntry:
    name: str
    extends: List[str] = field(default_factory=list)
    implements: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CallReference:
    caller: str
    callee: str


def compute_content_hash(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def estimate_end(lines: List[str], start_index: int) -> int:
    """Return the 1-based last line of a block starting at start_index (0-based).

    The block ends before the next non-blank line at the same or lower
    indentation, skipping the line right after the header.
    """
    if start_index >= len(lines):
        return len(lines)
    start_indent = _indent(lines[start_index])
    for i in range(start_index + 1, len(lines)):
        line = lines[i]
        if not line.strip():
            continue
        if _indent(line) <= start_indent and i > start_index + 1:
            return i
    return len(lines)


def _regex_symbols(content: str, patterns: List[Tuple[re.Pattern, str]]) -> List[ScannedSymbol]:
    lines = content.split("\n")
    seen: Set[Tuple[str, int]] = set()
    symbols: List[ScannedSymbol] = []
    for rx, kind in patterns:
        for m in rx.finditer(content):
            name = m.group(1)
            start = _line_of(content, m.start())
            if (name, start) in seen:
                continue
            seen.add((name, start))
            symbols.append(ScannedSymbol(name, kind, start, estimate_end(lines, start - 1)))
    symbols.sort(key=lambda s: s.line_start)
    return symbols


def _python_symbols(content: str) -> List[ScannedSymbol]:
    try:
        tree = ast.parse(content)
    except SyntaxError:
        return _regex_symbols(content, PY_SYMBOL_PATTERNS)
    symbols: List[ScannedSymbol] = []
    for node in tree.body:
        if isinstance(node, ast.ClassDef):
            symbols.append(ScannedSymbol(node.name, "class", node.lineno, node.end_lineno or node.lineno))
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            symbols.append(ScannedSymbol(node.name, "function", node.lineno, node.end_lineno or node.lineno))
        elif isinstance(node, (ast.Assign, ast.AnnAssign)):
            targets = node.targets if isinstance(node, ast.Assign) else [node.target]
            for t in targets:
                if isinstance(t, ast.Name) and t.id.isupper():
                    symbols.append(ScannedSymbol(t.id, "variable", node.lineno, node.end_lineno or node.lineno))
    symbols.sort(key=lambda s: s.line_start)
    return symbols


def extract_symbols(content: str, language: str) -> List[ScannedSymbol]:
    """Extract top-level classes, interfaces, functions and constants."""
    if language in ("typescript", "javascript"):
        return _regex_symbols(content, TS_SYMBOL_PATTERNS)
    if language == "python":
        return _python_symbols(content)
    return []


# ── Imports ──────────────────────────────────────────────────────────


def _is_internal_specifier(source: str) -> bool:
    return source.startswith(".") or source.startswith("/") or source.startswith(ALIAS_PREFIX)


def _binding_names(what: str) -> List[str]:
    names: List[str] = []
    what = what.strip()
    if not what:
        return names
    brace = re.search(r"\{([^}]*)\}", what)
    head = what[:brace.start()] if brace else what
    for part in head.split(","):
        part = part.strip()
        if not part:
            continue
        if part.startswith("*"):
            names.append(part.split()[-1] if " as " in part else "*")
        else:
            names.append(part)
    if brace:
        for part in brace.group(1).split(","):
            part = part.strip()
            if not part:
                continue
            part = re.sub(r"^type\s+", "", part)
            names.append(part.split(" as ")[0].strip())
    return [n for n in names if n]


def _label_for(names: List[str], source: str) -> str:
    if names:
        return ", ".join(names)
    return source.rstrip("/").split("/")[-1]


def _ts_imports(content: str) -> List[ImportRef]:
    refs: List[ImportRef] = []
    for m in TS_IMPORT_FROM_RE.finditer(content):
        src = m.group("src")
        refs.append(ImportRef(src, _label_for(_binding_names(m.group("what")), src), not _is_internal_specifier(src)))
    for m in TS_IMPORT_BARE_RE.finditer(content):
        src = m.group("src")
        refs.append(ImportRef(src, _label_for([], src), not _is_internal_specifier(src)))
    for m in TS_EXPORT_FROM_RE.finditer(content):
        src = m.group("src")
        refs.append(ImportRef(src, _label_for(_binding_names(m.group("what")), src), not _is_internal_specifier(src)))
    for m in TS_REQUIRE_RE.finditer(content):
        src = m.group("src")
        names = _binding_names(m.group("what") or "")
        refs.append(ImportRef(src, _label_for(names, src), not _is_internal_specifier(src)))
    return refs


def _py_module_source(module: str, level: int, local_roots: Set[str]) -> Tuple[str, bool]:
    """Translate a Python module reference to an import specifier and internal flag."""
    path = module.replace(".", "/") if module else ""
    if level == 1:
        return ("./" + path) if path else ".", False
    if level > 1:
        prefix = "../" * (level - 1)
        return (prefix + path) if path else prefix.rstrip("/"), False
    first = module.split(".")[0]
    if first in local_roots:
        return ALIAS_PREFIX + path, False
    return module, True


def _py_imports(content: str, local_roots: Set[str]) -> List[ImportRef]:
    refs: List[ImportRef] = []
    try:
        tree = ast.parse(content)
    except SyntaxError:
        for m in PY_IMPORT_RE.finditer(content):
            for mod in m.group(1).split(","):
                mod = mod.strip()
                src, ext = _py_module_source(mod, 0, local_roots)
                refs.append(ImportRef(src, mod, ext))
        for m in PY_FROM_RE.finditer(content):
            raw = m.group(1)
            level = len(raw) - len(raw.lstrip("."))
            src, ext = _py_module_source(raw.lstrip("."), level, local_roots)
            names = [n.strip() for n in m.group(2).split(",") if n.strip()]
            refs.append(ImportRef(src, ", ".join(names), ext))
        return refs

    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                src, ext = _py_module_source(alias.name, 0, local_roots)
                refs.append(ImportRef(src, alias.name, ext))
        elif isinstance(node, ast.ImportFrom):
            names = [a.name for a in node.names]
            if not node.module and node.level:
                # "from . import a, b" names sibling modules.
                for name in names:
                    src, ext = _py_module_source(name, node.level, local_roots)
                    refs.append(ImportRef(src, name, ext))
                continue
            src, ext = _py_module_source(node.module or "", node.level, local_roots)
            refs.append(ImportRef(src, ", ".join(names), ext))
    return refs


def extract_imports(content: str, language: str, local_roots: Optional[Iterable[str]] = None) -> List[ImportRef]:
    """Extract import specifiers.

    Python absolute imports whose first segment is in local_roots are
    rewritten to alias form and marked internal.
    """
    if language in ("typescript", "javascript"):
        return _ts_imports(content)
    if language == "python":
        return _py_imports(content, set(local_roots or ()))
    return []


def extract_exports(content: str, language: str) -> List[str]:
    if language in ("typescript", "javascript"):
        names: List[str] = [m.group(1) for m in TS_EXPORT_DECL_RE.finditer(content)]
        for m in TS_EXPORT_LIST_RE.finditer(content):
            for part in m.group(1).split(","):
                part = part.strip()
                if part:
                    names.append(part.split(" as ")[-1].strip())
        return list(dict.fromkeys(names))
    if language == "python":
        try:
            tree = ast.parse(content)
        except SyntaxError:
            return []
        for node in tree.body:
            if isinstance(node, ast.Assign) and any(
                isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets
            ) and isinstance(node.value, (ast.List, ast.Tuple)):
                return [e.value for e in node.value.elts if isinstance(e, ast.Constant) and isinstance(e.value, str)]
        return [s.name for s in _python_symbols(content) if not s.name.startswith("_")]
    return []


# ── Hierarchy and calls ──────────────────────────────────────────────


def _split_names(text: Optional[str]) -> List[str]:
    if not text:
        return []
    text = re.sub(r"<[^>]*>", "", text)
    return [p.strip().split(".")[-1] for p in text.split(",") if p.strip()]


def _base_name(expr: ast.expr) -> Optional[str]:
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        return expr.attr
    if isinstance(expr, ast.Subscript):
        return _base_name(expr.value)
    return None


def extract_class_hierarchy(content: str, language: str) -> List[ClassHierarchyEntry]:
    """Extract extends/implements relations declared by classes and interfaces."""
    entries: List[ClassHierarchyEntry] = []
    if language in ("typescript", "javascript"):
        for m in TS_CLASS_RE.finditer(content):
            entry = ClassHierarchyEntry(
                name=m.group(1),
                extends=_split_names(m.group(2)),
                implements=_split_names(m.group(3)),
            )
            if entry.extends or entry.implements:
                entries.append(entry)
        for m in TS_INTERFACE_RE.finditer(content):
            entries.append(ClassHierarchyEntry(name=m.group(1), extends=_split_names(m.group(2))))
    elif language == "python":
        try:
            tree = ast.parse(content)
        except SyntaxError:
            return entries
        for node in tree.body:
            if not isinstance(node, ast.ClassDef):
                continue
            bases = [b for b in (_base_name(x) for x in node.bases) if b and b not in PY_IGNORED_BASES]
            if bases:
                entries.append(ClassHierarchyEntry(name=node.name, extends=bases))
    return entries


CALL_RE = re.compile(r"\b([A-Za-z_]\w*)\s*\(")


def extract_call_references(
    content: str,
    symbols: List[ScannedSymbol],
    known_names: Iterable[str],
) -> List[CallReference]:
    """Find calls to known symbol names inside each symbol's line span."""
    names = set(known_names)
    lines = content.split("\n")
    refs: List[CallReference] = []
    seen: Set[Tuple[str, str]] = set()
    for sym in symbols:
        if sym.kind not in ("function", "class", "method"):
            continue
        # Skip the declaration line so a definition is not read as a self-call.
        body = "\n".join(lines[sym.line_start:sym.line_end])
        for m in CALL_RE.finditer(body):
            callee = m.group(1)
            if callee == sym.name or callee not in names:
                continue
            key = (sym.name, callee)
            if key not in seen:
                seen.add(key)
                refs.append(CallReference(sym.name, callee))
    return refs
