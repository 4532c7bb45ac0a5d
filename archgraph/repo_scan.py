"""Live repository directory access and code file listing."""

from __future__ import annotations

import asyncio
import os
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import get_scan_rules, get_str_list

SCAN_RULES = get_scan_rules()

IGNORE_DIRS = {d.lower() for d in get_str_list(SCAN_RULES, "ignore_dirs")}
CODE_EXTENSIONS = {e.lower() for e in get_str_list(SCAN_RULES, "code_extensions")}

LANGUAGE_BY_EXT = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".rs": "rust",
    ".go": "go",
    ".java": "java",
    ".kt": "kotlin",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".c": "c",
    ".h": "c",
    ".hpp": "cpp",
    ".swift": "swift",
    ".dart": "dart",
    ".css": "css",
    ".scss": "scss",
    ".json": "json",
    ".md": "markdown",
}


@dataclass
class ScanConfig:
    """Optional include/exclude glob filters applied to repo-relative paths."""

    include_paths: List[str] = field(default_factory=list)
    exclude_paths: List[str] = field(default_factory=list)


def _glob_to_regex(pattern: str) -> re.Pattern:
    out: List[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            # Zero or more whole directories.
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


def glob_match(path_posix: str, pattern: str) -> bool:
    """Match a path against a glob where ** spans directories and * does not."""
    return bool(_glob_to_regex(pattern).match(path_posix))


def should_include(path_posix: str, config: Optional[ScanConfig]) -> bool:
    if config is None:
        return True
    if config.include_paths and not any(glob_match(path_posix, p) for p in config.include_paths):
        return False
    if config.exclude_paths and any(glob_match(path_posix, p) for p in config.exclude_paths):
        return False
    return True


def is_code_file(name: str) -> bool:
    return Path(name).suffix.lower() in CODE_EXTENSIONS


def language_for(path: str) -> str:
    """Map a file path to a language name by extension."""
    return LANGUAGE_BY_EXT.get(Path(path).suffix.lower(), "unknown")


def relposix(base: Path, p: Path) -> str:
    return p.relative_to(base).as_posix()


def _ignored(rel: str) -> bool:
    return any(seg.lower() in IGNORE_DIRS for seg in rel.split("/")[:-1])


def list_repo_files(repo: Path) -> List[str]:
    """List repo-relative file paths, preferring git-tracked files when possible."""
    if (repo / ".git").exists():
        try:
            out = subprocess.check_output(
                ["git", "-C", str(repo), "ls-files", "-z"],
                stderr=subprocess.DEVNULL,
            )
            files = []
            for b in out.split(b"\x00"):
                if not b:
                    continue
                rel = b.decode("utf-8", errors="ignore")
                if (repo / rel).is_file() and not _ignored(rel):
                    files.append(rel)
            return sorted(files)
        except (OSError, subprocess.CalledProcessError):
            pass

    files = []
    for root, dirs, filenames in os.walk(repo):
        dirs[:] = sorted(d for d in dirs if d.lower() not in IGNORE_DIRS)
        for fn in sorted(filenames):
            p = Path(root) / fn
            if p.is_file():
                files.append(relposix(repo, p))
    return files


class RepoDirectory:
    """Handle on a live checkout; every read goes through a worker thread."""

    def __init__(self, root: Path):
        self.root = Path(root).expanduser().resolve()
        if not self.root.is_dir():
            raise RuntimeError(f'Repo path is not a directory: "{self.root}"')

    @property
    def name(self) -> str:
        return self.root.name

    def _path(self, rel: str) -> Path:
        p = (self.root / rel).resolve()
        try:
            p.relative_to(self.root)
        except ValueError as e:
            raise OSError(f'Path escapes repo root: "{rel}"') from e
        return p

    async def read_text(self, rel: str) -> str:
        """Read a repo-relative file as UTF-8 text."""
        path = self._path(rel)
        return await asyncio.to_thread(path.read_text, encoding="utf-8")

    async def list_code_files(self, config: Optional[ScanConfig] = None) -> List[str]:
        files = await asyncio.to_thread(list_repo_files, self.root)
        return [f for f in files if is_code_file(f) and should_include(f, config)]
