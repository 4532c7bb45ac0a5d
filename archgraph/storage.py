"""Graph persistence over a pluggable key-value store."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .model import CodeGraph, graph_from_dict, graph_to_dict

GRAPH_PREFIX = "codegraph"
INDEX_PREFIX = "codegraph-index"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-process store, values are JSON round-tripped to mimic persistence."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def put(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


def _key_to_filename(key: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", key) + ".json"


class JsonFileStore:
    """One JSON file per key under a directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / _key_to_filename(key)

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise RuntimeError(f'Corrupt store entry: "{path}"') from e

    def put(self, key: str, value: Any) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(value, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


def index_entry(graph: CodeGraph) -> Dict[str, Any]:
    return {
        "id": graph.id,
        "name": graph.name,
        "workspaceId": graph.workspace_id,
        "repoId": graph.repo_id,
        "updatedAt": graph.updated_at,
    }


class GraphNotFoundError(KeyError):
    """No graph with the requested id exists in the workspace."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "graph not found"


class GraphRepository:
    """Save, load, list and delete graphs by id within a workspace."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _graph_key(workspace_id: str, graph_id: str) -> str:
        return f"{GRAPH_PREFIX}:{workspace_id}:{graph_id}"

    @staticmethod
    def _index_key(workspace_id: str) -> str:
        return f"{INDEX_PREFIX}:{workspace_id}"

    def _index(self, workspace_id: str) -> List[Dict[str, Any]]:
        data = self.store.get(self._index_key(workspace_id))
        return list(data) if isinstance(data, list) else []

    def save(self, graph: CodeGraph) -> None:
        self.store.put(self._graph_key(graph.workspace_id, graph.id), graph_to_dict(graph))
        entries = [e for e in self._index(graph.workspace_id) if e.get("id") != graph.id]
        entries.append(index_entry(graph))
        self.store.put(self._index_key(graph.workspace_id), entries)

    def load(self, workspace_id: str, graph_id: str) -> Optional[CodeGraph]:
        data = self.store.get(self._graph_key(workspace_id, graph_id))
        if data is None:
            return None
        return graph_from_dict(data)

    def require(self, workspace_id: str, graph_id: str) -> CodeGraph:
        graph = self.load(workspace_id, graph_id)
        if graph is None:
            raise GraphNotFoundError(f'Unknown graph "{graph_id}" in workspace "{workspace_id}"')
        return graph

    def list(self, workspace_id: str) -> List[Dict[str, Any]]:
        """Index entries, most recently updated first."""
        return sorted(self._index(workspace_id), key=lambda e: -int(e.get("updatedAt") or 0))

    def delete(self, workspace_id: str, graph_id: str) -> bool:
        entries = self._index(workspace_id)
        remaining = [e for e in entries if e.get("id") != graph_id]
        existed = self.store.get(self._graph_key(workspace_id, graph_id)) is not None
        self.store.delete(self._graph_key(workspace_id, graph_id))
        if len(remaining) != len(entries):
            self.store.put(self._index_key(workspace_id), remaining)
        return existed or len(remaining) != len(entries)
