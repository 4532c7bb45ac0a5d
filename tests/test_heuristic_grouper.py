from archgraph.heuristic_grouper import CORE, UI_SHELL, group_by_functional_heuristics, match_file_to_group
from conftest import make_analysis, make_file


def _module_of(result, path):
    for m in result.modules:
        if any(f.file_path == path for f in m.files):
            return m.name
    raise AssertionError(f"{path} not grouped")


def test_pattern_match_uses_first_matching_entry():
    assert match_file_to_group("hooks/useCodeGraph.ts")[0] == "Code Graph"
    assert match_file_to_group("services/llmService.ts")[0] == "AI Intelligence"
    assert match_file_to_group("lib/strings.ts") is None


def test_ai_files_share_one_module_and_every_file_is_covered():
    paths = [
        "hooks/useChatHandlers.ts",
        "services/aiChatService.ts",
        "services/llmService.ts",
        "components/Sidebar.tsx",
        "components/FolderTree.tsx",
        "services/storageService.ts",
        "services/cryptoService.ts",
        "components/Breadcrumb.tsx",
        "hooks/useNavigation.ts",
        "App.tsx",
        "types.ts",
        "utils/format.ts",
    ]
    analysis = make_analysis([make_file(p) for p in paths])
    result = group_by_functional_heuristics(analysis)

    ai = {_module_of(result, p) for p in paths[:3]}
    assert ai == {"AI Intelligence"}
    grouped = [f.file_path for m in result.modules for f in m.files]
    assert sorted(grouped) == sorted(paths)
    assert len(grouped) == len(set(grouped))
    sizes = [len(m.files) for m in result.modules]
    assert sizes == sorted(sizes, reverse=True)


def test_unmatched_file_without_signals_goes_to_core():
    analysis = make_analysis([make_file("src/misc/thing.ts"), make_file("services/llmService.ts")])
    result = group_by_functional_heuristics(analysis)
    assert _module_of(result, "src/misc/thing.ts") == CORE


def test_unmatched_file_follows_import_affinity():
    analysis = make_analysis([
        make_file("src/widget.ts", imports=["./llmService"]),
        make_file("src/llmService.ts"),
    ])
    result = group_by_functional_heuristics(analysis)
    assert _module_of(result, "src/widget.ts") == "AI Intelligence"


def test_affinity_tie_falls_back_to_structure():
    analysis = make_analysis([
        make_file("components/Thing.tsx", imports=["../services/llmService", "../services/storageService"]),
        make_file("services/llmService.ts"),
        make_file("services/storageService.ts"),
    ])
    result = group_by_functional_heuristics(analysis)
    assert _module_of(result, "components/Thing.tsx") == UI_SHELL


def test_small_groups_merge_into_import_target():
    analysis = make_analysis([
        make_file("services/llmService.ts"),
        make_file("services/chatService.ts"),
        make_file("services/storageService.ts"),
        make_file("services/persistQueue.ts"),
        make_file("components/Breadcrumb.tsx", imports=["../services/llmService"]),
        make_file("components/SplitPane.tsx"),
        make_file("services/scaffoldService.ts"),
    ])
    result = group_by_functional_heuristics(analysis)
    assert _module_of(result, "components/Breadcrumb.tsx") == "AI Intelligence"
    names = [m.name for m in result.modules]
    assert "AI Intelligence" in names and "Storage" in names


def test_empty_analysis_is_returned_unchanged():
    analysis = make_analysis([])
    assert group_by_functional_heuristics(analysis) is analysis
