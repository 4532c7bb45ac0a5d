import json

import pytest

from archgraph.model import LogCategory
from archgraph.runner import CATEGORY_TAGS, COMMANDS, Console, _format_duration, main


@pytest.fixture
def offline(monkeypatch):
    """Point the CLI at a provider without a key so every run stays heuristic."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return ["--provider", "openai"]


def test_every_log_category_has_a_tag():
    assert set(CATEGORY_TAGS) == set(LogCategory)


@pytest.mark.parametrize("seconds, text", [(0.25, "250ms"), (3.5, "3.50s"), (125, "2m05.0s"), (-1, "0ms")])
def test_format_duration(seconds, text):
    assert _format_duration(seconds) == text


def test_console_routes_warnings_and_truncates(tmp_path, capsys):
    console = Console(tmp_path / "run.log")
    console.event(LogCategory.WARNING, "careful")
    console.event(LogCategory.SCAN, "found", "x" * 200)
    console.progress("quiet", 1, 2)

    out, err = capsys.readouterr()
    assert err == "[WARN] careful\n"
    assert out == f"[SCAN] found ({'x' * 160}...)\n"
    assert (tmp_path / "run.log").read_text(encoding="utf-8").count("\n") == 2


def test_list_empty_workspace(tmp_path, capsys):
    assert main(["list", "--out", str(tmp_path)]) == 0
    assert "No graphs in workspace default" in capsys.readouterr().out


def test_unknown_graph_is_a_usage_error(tmp_path, capsys):
    assert main(["validate", "missing", "--out", str(tmp_path)]) == 2
    assert 'Unknown graph "missing"' in capsys.readouterr().err


def test_internal_key_error_is_not_reported_as_missing_graph(tmp_path, monkeypatch):
    def broken(args, repo, console):
        raise KeyError("node")

    monkeypatch.setitem(COMMANDS, "list", broken)
    with pytest.raises(KeyError, match="node"):
        main(["list", "--out", str(tmp_path)])


def test_build_list_validate_sync_round(sample_repo, tmp_path, capsys, offline):
    out = tmp_path / "out"
    assert main(["build", str(sample_repo), "--out", str(out), *offline]) == 0
    captured = capsys.readouterr()
    assert "grouping=heuristic" in captured.out
    assert "No credential for openai" in captured.err

    (entry,) = json.loads((out / "graphs" / "codegraph-index_default.json").read_text(encoding="utf-8"))
    graph_id = entry["id"]

    assert main(["list", "--out", str(out)]) == 0
    assert graph_id in capsys.readouterr().out

    assert main(["validate", graph_id, "--out", str(out)]) == 0
    assert "violations=0" in capsys.readouterr().out

    (sample_repo / "app" / "main.py").write_text("def main():\n    return 1\n", encoding="utf-8")
    assert main(["sync", graph_id, "--repo", str(sample_repo), "--out", str(out)]) == 0
    assert "  M app/main.py" in capsys.readouterr().out

    assert main(["flows", graph_id, "--out", str(out), "--mode", "scoped", *offline]) == 2
    assert "needs a scope" in capsys.readouterr().err

    assert main(["domain", graph_id, "--out", str(out), *offline]) == 2
    assert "No credential configured for openai" in capsys.readouterr().err

    assert (out / "run.log").exists()


def test_resync_rebuilds_from_live_repo(sample_repo, tmp_path, capsys, offline):
    out = tmp_path / "out"
    assert main(["build", str(sample_repo), "--out", str(out), "--no-flows", *offline]) == 0
    capsys.readouterr()
    (entry,) = json.loads((out / "graphs" / "codegraph-index_default.json").read_text(encoding="utf-8"))

    (sample_repo / "core" / "extra.py").write_text("def extra():\n    pass\n", encoding="utf-8")
    assert main(["resync", entry["id"], "--repo", str(sample_repo), "--out", str(out)]) == 0
    assert f"[OK] graph={entry['id']}" in capsys.readouterr().out
