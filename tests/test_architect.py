import pytest

from archgraph.architect import (
    add_unassigned,
    build_architect_system,
    build_architecture,
    module_dependencies,
    unique_name,
    validate_architecture,
)
from archgraph.file_analyst import FileAnalysis
from archgraph.model import FileRole
from conftest import StubChat

PATHS = ["src/editor/Editor.tsx", "src/editor/useEditor.ts", "src/services/aiService.ts", "src/types.ts"]


def _analyses():
    return [FileAnalysis(p, f"purpose of {p}", FileRole.UTILITY) for p in PATHS]


def test_unique_name_suffixes():
    assert unique_name("Core", set()) == "Core"
    assert unique_name("Core", {"Core"}) == "Core 2"
    assert unique_name("Core", {"Core", "Core 2"}) == "Core 3"


def test_validate_claims_each_file_once_and_drops_empty_modules(events):
    raw = {
        "modules": [
            {"name": "Editor", "description": "Editing", "files": ["./src/editor/Editor.tsx", "useEditor.ts"]},
            {"name": "Editor", "description": "Dup name", "files": ["src/services/aiService.ts"]},
            {"name": "Ghost", "files": ["src/editor/Editor.tsx", "nowhere.ts"]},
            {"name": "", "files": ["src/types.ts"]},
            "not a module",
        ],
        "relationships": [
            {"from": "Editor", "to": "Editor 2", "label": "asks"},
            {"from": "Editor", "to": "Ghost", "label": "dropped"},
        ],
    }
    blueprint = validate_architecture(raw, PATHS, events)
    assert blueprint.module_names() == ["Editor", "Editor 2"]
    assert blueprint.modules[0].files == ["src/editor/Editor.tsx", "src/editor/useEditor.ts"]
    assert [(r.source, r.target) for r in blueprint.relationships] == [("Editor", "Editor 2")]
    assert any("Ghost" in e[1] for e in events.events)


def test_validate_rejects_without_modules():
    assert validate_architecture({"modules": []}, PATHS) is None
    assert validate_architecture({"modules": [{"name": "X", "files": ["missing.ts"]}]}, PATHS) is None
    assert validate_architecture([], PATHS) is None


def test_unassigned_files_land_in_other_with_free_name():
    raw = {"modules": [{"name": "Other", "files": ["src/types.ts"]}]}
    blueprint = add_unassigned(validate_architecture(raw, PATHS), PATHS)
    assert blueprint.module_names() == ["Other", "Other 2"]
    assert sorted(f for m in blueprint.modules for f in m.files) == sorted(PATHS)


def test_system_prompt_lists_valid_paths():
    system = build_architect_system(PATHS)
    assert "VALID FILE PATHS" in system
    assert '"src/types.ts"' in system


@pytest.mark.asyncio
async def test_build_architecture_retries_then_covers_every_file(settings):
    good = {
        "modules": [{"name": "Editor", "description": "d", "files": PATHS[:2]}],
        "relationships": [],
    }
    chat = StubChat({"modules": "bad"}, good)
    blueprint = await build_architecture(_analyses(), [(PATHS[0], PATHS[1])], settings, chat=chat)
    assert blueprint.module_names() == ["Editor", "Other"]
    assert len(chat.calls) == 2
    assert "IMPORT RELATIONSHIPS:\nsrc/editor/Editor.tsx -> src/editor/useEditor.ts" in chat.prompts[0]


@pytest.mark.asyncio
async def test_build_architecture_returns_none_when_exhausted(settings):
    chat = StubChat("x", "y", "z")
    assert await build_architecture(_analyses(), [], settings, chat=chat) is None


def test_module_dependencies_skip_self_and_duplicates():
    raw = {
        "modules": [{"name": "A", "files": [PATHS[0]]}, {"name": "B", "files": [PATHS[1]]}],
        "relationships": [
            {"from": "A", "to": "B", "label": "x"},
            {"from": "A", "to": "B", "label": "y"},
            {"from": "B", "to": "B", "label": "self"},
        ],
    }
    deps = module_dependencies(validate_architecture(raw, PATHS))
    assert deps == {"A": ["B"], "B": []}
