from dataclasses import replace

import pytest

from archgraph.storage import GraphNotFoundError, GraphRepository, JsonFileStore, MemoryStore
from conftest import make_graph


@pytest.fixture(params=["memory", "files"])
def repository(request, tmp_path):
    store = MemoryStore() if request.param == "memory" else JsonFileStore(tmp_path / "graphs")
    return GraphRepository(store)


def test_save_and_load_round_trip(repository):
    graph, _ = make_graph({"core": ["a.ts", "b.ts"]}, [("a.ts", "b.ts", "x")])
    repository.save(graph)
    assert repository.load("ws", graph.id) == graph
    assert repository.load("ws", "nope") is None
    assert repository.load("other", graph.id) is None


def test_require_raises_for_unknown_graph(repository):
    with pytest.raises(GraphNotFoundError, match='Unknown graph "nope" in workspace "ws"'):
        repository.require("ws", "nope")


def test_index_lists_newest_first_without_duplicates(repository):
    older, _ = make_graph({"core": ["a.ts"]})
    newer, _ = make_graph({"core": ["b.ts"]})
    repository.save(replace(older, updated_at=100))
    repository.save(replace(newer, updated_at=200))
    repository.save(replace(older, updated_at=50, name="older v2"))

    listing = repository.list("ws")
    assert [e["id"] for e in listing] == [newer.id, older.id]
    assert listing[1]["name"] == "older v2"
    assert set(listing[0]) == {"id", "name", "workspaceId", "repoId", "updatedAt"}


def test_delete(repository):
    graph, _ = make_graph({"core": ["a.ts"]})
    repository.save(graph)
    assert repository.delete("ws", graph.id) is True
    assert repository.load("ws", graph.id) is None
    assert repository.list("ws") == []
    assert repository.delete("ws", graph.id) is False


def test_file_store_layout_and_corruption(tmp_path):
    store = JsonFileStore(tmp_path)
    store.put("codegraph:ws:abc", {"k": 1})
    assert (tmp_path / "codegraph_ws_abc.json").exists()
    assert not list(tmp_path.glob("*.tmp"))
    assert store.get("codegraph:ws:abc") == {"k": 1}

    (tmp_path / "codegraph_ws_abc.json").write_text("{broken", encoding="utf-8")
    with pytest.raises(RuntimeError):
        store.get("codegraph:ws:abc")
