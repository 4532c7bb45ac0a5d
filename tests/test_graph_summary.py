from archgraph.graph_ops import GraphTransaction
from archgraph.graph_summary import build_graph_summary
from archgraph.model import RelationType
from conftest import make_graph


def test_summary_collects_modules_files_and_symbols():
    graph, ids = make_graph(
        {"ui": ["App.tsx", "Panel.tsx"], "data": ["store.ts"]},
        [("App.tsx", "Panel.tsx", "Panel"), ("Panel.tsx", "store.ts", "useStore")],
        symbols={"store.ts": ["useStore"]},
    )
    summary = build_graph_summary(graph)

    assert summary.root_node_id == graph.root_node_id
    assert [m.name for m in summary.modules] == ["ui", "data"]
    assert summary.files()[2].path == "data/store.ts"
    assert summary.files()[2].primary_symbol().name == "useStore"
    assert summary.module_of()[ids["store.ts"]] == ids["data"]
    edge = summary.file_edges[1]
    assert (edge.source_module, edge.target_module, edge.label) == ("ui", "data", "useStore")


def test_parallel_edges_merge_with_distinct_labels():
    graph, ids = make_graph(
        {"core": ["a.ts", "b.ts"]},
        [("a.ts", "b.ts", "load"), ("a.ts", "b.ts", "save"), ("a.ts", "b.ts", "load"), ("b.ts", "a.ts", "")],
    )
    summary = build_graph_summary(graph)
    labels = {(e.source_id, e.target_id): e.label for e in summary.file_edges}
    assert labels == {(ids["a.ts"], ids["b.ts"]): "load, save", (ids["b.ts"], ids["a.ts"]): "depends_on"}


def test_module_level_edges_are_ignored():
    graph, ids = make_graph({"a": ["x.ts"], "b": ["y.ts"]})
    tx = GraphTransaction(graph)
    tx.add_relation(ids["a"], ids["b"], RelationType.DEPENDS_ON)
    assert build_graph_summary(tx.commit()).file_edges == []


def test_call_edges_between_symbols():
    graph, ids = make_graph({"core": ["a.ts", "b.ts"]}, symbols={"a.ts": ["run"], "b.ts": ["helper"]})
    by_name = {n.name: n.id for n in graph.nodes.values()}
    tx = GraphTransaction(graph)
    tx.add_relation(by_name["run"], by_name["helper"], RelationType.CALLS)
    tx.add_relation(ids["a.ts"], by_name["helper"], RelationType.CALLS)
    summary = build_graph_summary(tx.commit())
    assert [(c.caller_file, c.caller_symbol, c.callee_file, c.callee_symbol) for c in summary.call_edges] == [
        ("a.ts", "run", "b.ts", "helper"),
    ]


def test_entry_points_by_name_or_no_incoming():
    graph, ids = make_graph(
        {"core": ["index.ts", "a.ts", "b.ts"]},
        [("b.ts", "index.ts", ""), ("a.ts", "b.ts", "")],
    )
    names = [e.name for e in build_graph_summary(graph).entry_points]
    assert names == ["index.ts", "a.ts"]


def test_entry_point_fallback_picks_least_imported():
    files = ["a.ts", "b.ts", "c.ts", "d.ts"]
    edges = [("a.ts", "b.ts", ""), ("b.ts", "c.ts", ""), ("c.ts", "d.ts", ""), ("d.ts", "a.ts", ""), ("a.ts", "c.ts", "")]
    graph, _ = make_graph({"core": files}, edges)
    entry = build_graph_summary(graph).entry_points
    assert len(entry) == 3
    assert "c.ts" not in [e.name for e in entry]


def test_scope_restricts_to_one_module():
    graph, ids = make_graph(
        {"ui": ["App.tsx", "Panel.tsx"], "data": ["store.ts"]},
        [("App.tsx", "Panel.tsx", ""), ("Panel.tsx", "store.ts", "")],
    )
    summary = build_graph_summary(graph, ids["ui"])
    assert summary.module_ids() == [ids["ui"]]
    assert len(summary.file_edges) == 1
    assert build_graph_summary(graph, graph.root_node_id).module_ids() == [ids["ui"], ids["data"]]
