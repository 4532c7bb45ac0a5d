import json
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from archgraph.graph_ops import GraphTransaction, create_empty_graph
from archgraph.llm_client import LLMSettings, ProviderConfig
from archgraph.model import (
    AnalyzedFile,
    CodebaseAnalysis,
    CodebaseModule,
    CodeGraph,
    ImportRef,
    NodeKind,
    RelationType,
    ScannedSymbol,
    SourceRef,
)


def make_file(path: str, symbols: Sequence[str] = (), imports: Sequence[str] = (), language: str = "typescript"):
    """AnalyzedFile with function symbols and internal (relative/alias) or external imports."""
    return AnalyzedFile(
        file_path=path,
        language=language,
        symbols=[ScannedSymbol(name, "function", i + 1, i + 2) for i, name in enumerate(symbols)],
        imports=[
            ImportRef(src, src.split("/")[-1], not (src.startswith(".") or src.startswith("@/")))
            for src in imports
        ],
        size=100,
    )


def make_analysis(files: List[AnalyzedFile]) -> CodebaseAnalysis:
    """Group files by top-level directory the way the scanner does."""
    by_module: Dict[str, List[AnalyzedFile]] = {}
    for f in files:
        parts = f.file_path.split("/")
        by_module.setdefault(parts[0] if len(parts) > 1 else "(root)", []).append(f)
    modules = [CodebaseModule(name=n, path=n, files=fs) for n, fs in by_module.items()]
    return CodebaseAnalysis(
        modules=modules,
        total_files=len(files),
        total_symbols=sum(len(f.symbols) for f in files),
    )


def make_graph(
    modules: Dict[str, List[str]],
    edges: Sequence[Tuple[str, str, str]] = (),
    symbols: Optional[Dict[str, List[str]]] = None,
) -> Tuple[CodeGraph, Dict[str, str]]:
    """Build a graph from {module: [file names]} plus (src, dst, label) file edges.

    Returns the graph and a name -> node id map covering modules and files.
    """
    graph = create_empty_graph("ws", "repo", "demo")
    tx = GraphTransaction(graph)
    ids: Dict[str, str] = {}
    for mod, files in modules.items():
        ids[mod] = tx.add_child(mod, NodeKind.PACKAGE, tx.root_id)
        for name in files:
            ids[name] = tx.add_child(
                name, NodeKind.MODULE, ids[mod], source_ref=SourceRef(f"{mod}/{name}", 1, 10, ""),
            )
            for sym in (symbols or {}).get(name, []):
                tx.add_child(sym, NodeKind.FUNCTION, ids[name], source_ref=SourceRef(f"{mod}/{name}", 1, 2, ""))
    for src, dst, label in edges:
        tx.add_relation(ids[src], ids[dst], RelationType.DEPENDS_ON, label or None)
    return tx.commit(), ids


class StubChat:
    """Async stand-in for llm_chat returning queued replies in order.

    A reply may be a string, a JSON-able object, or an exception to raise.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: List[dict] = []

    async def __call__(self, messages, system, settings, *, cancel=None, log=None, label="request"):
        self.calls.append({"messages": messages, "system": system, "label": label})
        if cancel is not None:
            cancel.raise_if_cancelled()
        if not self.replies:
            raise AssertionError("unexpected extra chat call")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return reply

    @property
    def prompts(self) -> List[str]:
        return [c["messages"][-1]["content"] for c in self.calls]


@pytest.fixture
def settings() -> LLMSettings:
    return LLMSettings(
        active_provider="openai",
        providers={"openai": ProviderConfig("openai", "gpt-test", "https://llm.invalid/v1", "sk-test")},
    )


@pytest.fixture
def no_credential_settings() -> LLMSettings:
    return LLMSettings(
        active_provider="openai",
        providers={"openai": ProviderConfig("openai", "gpt-test", "https://llm.invalid/v1", "")},
    )


@pytest.fixture
def events():
    """Collects structured log events as (category, message, detail)."""
    collected: List[tuple] = []

    def _log(category, message, detail=None):
        collected.append((category, message, detail))

    _log.events = collected
    return _log


SAMPLE_REPO = {
    "app/main.py": (
        "from app.service import fetch_items\n"
        "\n"
        "\n"
        "def main():\n"
        "    return fetch_items()\n"
    ),
    "app/service.py": (
        "from core.store import Store\n"
        "\n"
        "\n"
        "def fetch_items():\n"
        "    return Store().all()\n"
    ),
    "core/store.py": (
        "class Base:\n"
        "    pass\n"
        "\n"
        "\n"
        "class Store(Base):\n"
        "    def all(self):\n"
        "        return []\n"
    ),
    "README.md": "# sample\n",
}


@pytest.fixture
def sample_repo(tmp_path):
    """A three-file Python checkout: app -> core, with calls and inheritance."""
    for rel, content in SAMPLE_REPO.items():
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return tmp_path
