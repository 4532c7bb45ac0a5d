import pytest

from archgraph.file_analyst import (
    FileSummary,
    analyze_files_batch,
    infer_role_from_path,
    validate_file_analyses,
)
from archgraph.model import FileRole
from conftest import StubChat, make_file


@pytest.mark.parametrize(
    "path, role",
    [
        ("hooks/useThing.ts", FileRole.HOOK),
        ("components/Panel.tsx", FileRole.COMPONENT),
        ("App.tsx", FileRole.ENTRY_POINT),
        ("services/authService.ts", FileRole.SERVICE),
        ("types.ts", FileRole.MODEL),
        ("src/api.test.ts", FileRole.TEST),
        ("tests/test_api.py", FileRole.TEST),
        ("vite.config.ts", FileRole.CONFIG),
        ("styles/main.css", FileRole.STYLE),
        ("index.ts", FileRole.ENTRY_POINT),
        ("pkg/__main__.py", FileRole.ENTRY_POINT),
        ("lib/strings.ts", FileRole.UTILITY),
    ],
)
def test_infer_role_from_path(path, role):
    assert infer_role_from_path(path) is role


def test_validate_resolves_paths_and_keeps_first_duplicate():
    expected = ["src/a.ts", "src/b.ts"]
    raw = [
        {"filePath": "./src/a.ts", "purpose": "First", "role": "service"},
        {"filePath": "a.ts", "purpose": "Duplicate", "role": "hook"},
        {"filePath": "src/b", "purpose": "", "role": "not-a-role"},
    ]
    result = validate_file_analyses(raw, expected)
    assert [(a.file_path, a.purpose, a.role) for a in result] == [
        ("src/a.ts", "First", FileRole.SERVICE),
        ("src/b.ts", "src/b", FileRole.UTILITY),
    ]


def test_validate_rejects_when_fewer_than_half_resolve():
    expected = ["a.ts", "b.ts", "c.ts"]
    raw = [{"filePath": "a.ts", "purpose": "x", "role": "service"}, {"filePath": "zzz.ts"}]
    assert validate_file_analyses(raw, expected) is None
    assert validate_file_analyses({"files": []}, expected) is None


@pytest.mark.asyncio
async def test_batch_backfills_missing_files(settings, events):
    paths = [f"src/f{i}.ts" for i in range(10)]
    files = [FileSummary.from_file(make_file(p, symbols=["run"])) for p in paths]
    reply = [{"filePath": p, "purpose": f"does {i}", "role": "service"} for i, p in enumerate(paths[:8])]
    chat = StubChat(reply)

    result = await analyze_files_batch(files, settings, chat=chat, log=events)

    assert sorted(a.file_path for a in result) == sorted(paths)
    by_path = {a.file_path: a for a in result}
    assert by_path["src/f0.ts"].purpose == "does 0"
    assert by_path["src/f9.ts"].purpose == "src/f9.ts"
    assert by_path["src/f9.ts"].role is FileRole.UTILITY
    assert len(chat.calls) == 1


@pytest.mark.asyncio
async def test_batch_falls_back_to_path_heuristics(settings):
    files = [FileSummary.from_file(make_file("hooks/useX.ts")), FileSummary.from_file(make_file("ui/Card.tsx"))]
    chat = StubChat("nope", "still nope", "[]")

    result = await analyze_files_batch(files, settings, chat=chat)

    assert [(a.file_path, a.role) for a in result] == [
        ("hooks/useX.ts", FileRole.HOOK),
        ("ui/Card.tsx", FileRole.COMPONENT),
    ]
    assert len(chat.calls) == 3


def test_prompt_lists_symbols_and_imports():
    from archgraph.file_analyst import build_file_analyst_prompt

    summary = FileSummary.from_file(make_file("src/a.ts", symbols=["load"], imports=["./b"]))
    prompt = build_file_analyst_prompt([summary])
    assert "File: src/a.ts" in prompt
    assert "load (function)" in prompt
    assert "Imports: ./b" in prompt
