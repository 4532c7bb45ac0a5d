import pytest

from archgraph.flow_llm import (
    MAX_PROMPT_FILES,
    build_flow_prompt,
    build_flow_system,
    generate_flows_llm,
    truncate_summary,
    validate_flows,
)
from archgraph.graph_summary import build_graph_summary
from conftest import StubChat, make_graph


@pytest.fixture
def small_graph():
    return make_graph(
        {"ui": ["main.tsx", "Panel.tsx"], "data": ["store.ts"]},
        [("main.tsx", "Panel.tsx", "Panel"), ("Panel.tsx", "store.ts", "")],
        symbols={"store.ts": ["useStore"]},
    )


def _flow(name, scope, *node_ids, diagram=None):
    item = {
        "name": name,
        "description": f"{name} end to end",
        "scopeNodeId": scope,
        "steps": [{"nodeId": n, "label": f"step {i}", "order": i} for i, n in enumerate(node_ids)],
    }
    if diagram is not None:
        item["sequenceDiagram"] = diagram
    return item


def test_validate_keeps_good_flows_and_builds_fallback_diagram(small_graph):
    graph, ids = small_graph
    summary = build_graph_summary(graph)
    raw = {"flows": [
        _flow("Open panel", graph.root_node_id, ids["main.tsx"], ids["Panel.tsx"]),
        _flow("Load", ids["ui"], ids["Panel.tsx"], ids["store.ts"], diagram="```mermaid\nsequenceDiagram\n  A->>B: go  \n```"),
    ]}
    flows = validate_flows(raw, summary)

    assert [f.name for f in flows.values()] == ["Open panel", "Load"]
    first, second = flows.values()
    assert first.sequence_diagram.startswith("sequenceDiagram\n")
    assert first.sequence_diagram.endswith(f"{ids['main.tsx']}->>{ids['Panel.tsx']}: calls")
    assert second.sequence_diagram == "sequenceDiagram\n  A->>B: go"


def test_steps_are_filtered_sorted_and_renumbered(small_graph):
    graph, ids = small_graph
    summary = build_graph_summary(graph)
    raw = [{
        "name": "Shuffled",
        "scopeNodeId": graph.root_node_id,
        "steps": [
            {"nodeId": ids["store.ts"], "label": "save", "order": 5},
            {"nodeId": ids["ui"], "label": "module, not a file", "order": 0},
            {"nodeId": ids["main.tsx"], "label": "start", "order": 1},
            {"nodeId": "made-up", "order": 2},
        ],
    }]
    (flow,) = validate_flows(raw, summary).values()
    assert [(s.node_id, s.label, s.order) for s in flow.steps] == [
        (ids["main.tsx"], "start", 0),
        (ids["store.ts"], "save", 1),
    ]


def test_response_rejected_when_under_half_survive(small_graph):
    graph, ids = small_graph
    summary = build_graph_summary(graph)
    good = _flow("Good", graph.root_node_id, ids["main.tsx"], ids["Panel.tsx"])
    bad_scope = _flow("Bad scope", ids["main.tsx"], ids["main.tsx"], ids["Panel.tsx"])
    one_step = _flow("Short", graph.root_node_id, ids["main.tsx"])

    assert validate_flows({"flows": [good, bad_scope, one_step]}, summary) is None
    assert len(validate_flows({"flows": [good, bad_scope]}, summary)) == 1
    assert validate_flows({"flows": []}, summary) is None
    assert validate_flows("text", summary) is None


def test_system_prompt_lists_ids_and_scope(small_graph):
    graph, ids = small_graph
    summary = build_graph_summary(graph)
    system = build_flow_system(summary, ids["ui"])
    assert f'Root nodeId for cross-module flows: "{graph.root_node_id}"' in system
    assert f'  "{ids["store.ts"]}"' in system
    assert "useStore (function)" in system
    assert f'Every flow MUST use scopeNodeId "{ids["ui"]}".' in system
    assert "MUST use scopeNodeId" not in build_flow_system(summary)


def test_user_prompt_sections(small_graph):
    graph, _ = small_graph
    prompt = build_flow_prompt(build_graph_summary(graph), "  login path  ")
    assert "main.tsx (ui) -> Panel.tsx (ui) [imports: Panel]" in prompt
    assert "Panel.tsx (ui) -> store.ts (data)\n" in prompt
    assert "(no function-level call edges detected)" in prompt
    assert prompt.endswith("ADDITIONAL REQUEST (focus the flows on this):\nlogin path")


def test_truncation_keeps_a_floor_per_module():
    graph, _ = make_graph({
        "big": [f"b{i}.ts" for i in range(190)],
        "small": [f"s{i}.ts" for i in range(10)],
    })
    summary = build_graph_summary(graph)
    truncated = truncate_summary(summary)
    assert [len(m.files) for m in truncated.modules] == [142, 7]
    small = build_graph_summary(make_graph({"m": ["a.ts"]})[0])
    assert truncate_summary(small) is small
    assert len(summary.file_ids()) > MAX_PROMPT_FILES


@pytest.mark.asyncio
async def test_scoped_generation_rejects_other_scopes(small_graph, settings):
    graph, ids = small_graph
    summary = build_graph_summary(graph, ids["ui"])
    wrong = {"flows": [_flow("Root flow", graph.root_node_id, ids["main.tsx"], ids["Panel.tsx"])]}
    right = {"flows": [_flow("Module flow", ids["ui"], ids["main.tsx"], ids["Panel.tsx"])]}
    chat = StubChat(wrong, right)

    flows = await generate_flows_llm(summary, settings, chat=chat, scope_node_id=ids["ui"])

    assert [f.scope_node_id for f in flows.values()] == [ids["ui"]]
    assert len(chat.calls) == 2


@pytest.mark.asyncio
async def test_bare_array_reply_is_accepted(small_graph, settings):
    graph, ids = small_graph
    chat = StubChat([_flow("Array", graph.root_node_id, ids["main.tsx"], ids["Panel.tsx"])])
    flows = await generate_flows_llm(build_graph_summary(graph), settings, chat=chat)
    assert [f.name for f in flows.values()] == ["Array"]
