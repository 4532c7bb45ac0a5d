"""CLI runner: build, sync, resync, flows and domain analysis for code graphs."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import time
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from .cancel import CancelToken, RunCancelled
from .config import get_paths_config
from .domain import analyze_domain, apply_domain_analysis
from .flows import FlowRequest, regenerate_flows
from .graph_ops import GraphInvariantError, check_invariants, find_anomalies, invariant_violations
from .llm_client import LLMConfigError, LLMError, LLMSettings
from .model import FlowMergeMode, LogCategory
from .pipeline import BuildOptions, run_construction
from .repo_scan import RepoDirectory, ScanConfig
from .storage import GraphNotFoundError, GraphRepository, JsonFileStore
from .sync import apply_sync_report, detect_changes, full_resync

T = TypeVar("T")

CATEGORY_TAGS: Dict[LogCategory, str] = {
    LogCategory.SCAN: "SCAN",
    LogCategory.PARSE: "PARSE",
    LogCategory.RESOLVE: "RESOLVE",
    LogCategory.HIERARCHY: "HIERARCHY",
    LogCategory.AI_ANALYZE: "AI ANALYZE",
    LogCategory.AI_ARCHITECT: "AI ARCHITECT",
    LogCategory.HEURISTIC: "HEURISTIC",
    LogCategory.FLOWS: "FLOWS",
    LogCategory.SYNC: "SYNC",
    LogCategory.LLM: "LLM",
    LogCategory.DOMAIN: "DOMAIN",
    LogCategory.WARNING: "WARN",
}

DETAIL_PREVIEW_CHARS = 160


def _format_duration(seconds: float) -> str:
    """Format elapsed seconds into a compact, human-readable string."""
    if seconds < 0:
        seconds = 0.0
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(seconds, 60)
    return f"{int(minutes)}m{secs:04.1f}s"


class Console:
    """Prints tagged lines and mirrors them into run.log."""

    def __init__(self, run_log_path: Optional[Path], verbose: bool = False):
        self.run_log_path = run_log_path
        self.verbose = verbose

    def append(self, line: str) -> None:
        if self.run_log_path is None:
            return
        self.run_log_path.parent.mkdir(parents=True, exist_ok=True)
        with self.run_log_path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    def line(self, msg: str, *, stderr: bool = False) -> None:
        stream = sys.stderr if stderr else sys.stdout
        print(msg, file=stream)
        self.append(msg)

    def event(self, category: LogCategory, message: str, detail: Optional[str] = None) -> None:
        text = f"[{CATEGORY_TAGS[category]}] {message}"
        if detail:
            if not self.verbose and len(detail) > DETAIL_PREVIEW_CHARS:
                detail = detail[:DETAIL_PREVIEW_CHARS] + "..."
            text = f"{text} ({detail})"
        self.line(text, stderr=category is LogCategory.WARNING)

    def llm(self, msg: str) -> None:
        self.line(msg)

    def progress(self, step: str, current: int, total: int) -> None:
        if self.verbose:
            self.line(f"[PROGRESS] {step} {current}/{total}")


def _scan_config(args: argparse.Namespace) -> Optional[ScanConfig]:
    include = list(getattr(args, "include", None) or [])
    exclude = list(getattr(args, "exclude", None) or [])
    if not include and not exclude:
        return None
    return ScanConfig(include_paths=include, exclude_paths=exclude)


def _settings(args: argparse.Namespace) -> LLMSettings:
    return LLMSettings.from_config().with_overrides(
        provider=args.provider,
        model=args.model,
        base_url=args.base_url,
        timeout_s=args.timeout,
    )


def _run_cancellable(factory: Callable[[CancelToken], Awaitable[T]], token: CancelToken) -> T:
    """Run a coroutine with SIGINT wired to the cancel token."""

    async def _main() -> T:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
        except (NotImplementedError, RuntimeError):
            pass
        return await factory(token)

    return asyncio.run(_main())


def _cmd_build(args: argparse.Namespace, repo: GraphRepository, console: Console) -> int:
    directory = RepoDirectory(Path(args.repo))
    settings = _settings(args)
    options = BuildOptions(
        workspace_id=args.workspace,
        repo_id=directory.name,
        name=args.name or directory.name,
        use_ai=not args.no_ai,
        with_flows=not args.no_flows,
        scan_config=_scan_config(args),
    )
    if options.use_ai and not settings.has_credential():
        console.line(f"[WARN] No credential for {settings.active_provider}; using heuristic grouping", stderr=True)

    started = time.perf_counter()
    result = _run_cancellable(
        lambda token: run_construction(
            directory, repo, settings, options,
            progress=console.progress, log=console.event, llm_log=console.llm, cancel=token,
        ),
        CancelToken(),
    )
    if result is None:
        console.line("[CANCELLED] Construction stopped, nothing saved", stderr=True)
        return 130
    graph = result.graph
    if result.flow_result is not None:
        for warning in result.flow_result.warnings:
            console.line(f"[WARN] {warning}", stderr=True)
    console.line(
        f"[OK] graph={graph.id} nodes={len(graph.nodes)} relations={len(graph.relations)} "
        f"flows={len(graph.flows)} grouping={result.grouping} "
        f"time={_format_duration(time.perf_counter() - started)}"
    )
    return 0


def _cmd_sync(args: argparse.Namespace, repo: GraphRepository, console: Console) -> int:
    graph = repo.require(args.workspace, args.graph_id)
    directory = RepoDirectory(Path(args.repo))

    async def _sync(token: CancelToken):
        report = await detect_changes(graph, directory, progress=console.progress, log=console.event, cancel=token)
        return report, apply_sync_report(graph, report)

    report, updated = _run_cancellable(_sync, CancelToken())
    repo.save(updated)
    console.line(
        f"[OK] modified={len(report.modified)} missing={len(report.missing)} unchanged={len(report.unchanged)}"
    )
    for entry in report.modified:
        console.line(f"  M {entry.source_ref.file_path}")
    for entry in report.missing:
        console.line(f"  D {entry.source_ref.file_path}")
    return 0


def _cmd_resync(args: argparse.Namespace, repo: GraphRepository, console: Console) -> int:
    graph = repo.require(args.workspace, args.graph_id)
    directory = RepoDirectory(Path(args.repo))
    updated = _run_cancellable(
        lambda token: full_resync(
            graph, directory, None, _scan_config(args),
            progress=console.progress, log=console.event, cancel=token,
        ),
        CancelToken(),
    )
    check_invariants(updated)
    repo.save(updated)
    console.line(f"[OK] graph={updated.id} nodes={len(updated.nodes)} relations={len(updated.relations)}")
    return 0


def _cmd_flows(args: argparse.Namespace, repo: GraphRepository, console: Console) -> int:
    graph = repo.require(args.workspace, args.graph_id)
    settings = _settings(args)
    mode = FlowMergeMode(args.mode)
    request = FlowRequest(scope_node_id=args.scope, custom_prompt=args.prompt)
    updated, result = _run_cancellable(
        lambda token: regenerate_flows(
            graph, settings, mode=mode, request=request,
            progress=console.progress, log=console.event, llm_log=console.llm, cancel=token,
        ),
        CancelToken(),
    )
    check_invariants(updated)
    repo.save(updated)
    for warning in result.warnings:
        console.line(f"[WARN] {warning}", stderr=True)
    console.line(f"[OK] source={result.source.value} new={len(result.flows)} total={len(updated.flows)}")
    for flow in result.flows.values():
        console.line(f"  - {flow.name} ({len(flow.steps)} steps)")
    return 0


def _cmd_domain(args: argparse.Namespace, repo: GraphRepository, console: Console) -> int:
    graph = repo.require(args.workspace, args.graph_id)
    settings = _settings(args)
    analysis = _run_cancellable(
        lambda token: analyze_domain(graph, settings, log=console.event, llm_log=console.llm, cancel=token),
        CancelToken(),
    )
    if analysis is None:
        console.line("[ERROR] Domain analysis produced no valid domains; graph left unchanged", stderr=True)
        return 1
    repo.save(apply_domain_analysis(graph, analysis))
    console.line(f"[OK] domains={len(analysis.nodes)} relations={len(analysis.relations)}")
    for domain in analysis.nodes.values():
        console.line(f"  - {domain.name} ({len(domain.projections)} nodes)")
    return 0


def _cmd_list(args: argparse.Namespace, repo: GraphRepository, console: Console) -> int:
    entries = repo.list(args.workspace)
    if not entries:
        console.line(f"No graphs in workspace {args.workspace}")
        return 0
    for e in entries:
        stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(int(e.get("updatedAt") or 0) / 1000))
        console.line(f"{e.get('id')}  {e.get('name')}  repo={e.get('repoId')}  updated={stamp}")
    return 0


def _cmd_validate(args: argparse.Namespace, repo: GraphRepository, console: Console) -> int:
    graph = repo.require(args.workspace, args.graph_id)
    violations = invariant_violations(graph)
    for v in violations:
        console.line(f"[INVARIANT] {v}", stderr=True)
    anomalies = find_anomalies(graph)
    for a in anomalies:
        console.line(f"[{a.severity.upper()}] {a.type}: {a.message}")
    console.line(f"[OK] violations={len(violations)} anomalies={len(anomalies)}")
    return 1 if violations else 0


COMMANDS: Dict[str, Callable[[argparse.Namespace, GraphRepository, Console], int]] = {
    "build": _cmd_build,
    "sync": _cmd_sync,
    "resync": _cmd_resync,
    "flows": _cmd_flows,
    "domain": _cmd_domain,
    "list": _cmd_list,
    "validate": _cmd_validate,
}


def _parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--out", default="archgraph-out", help="Output directory (graph store and run.log)")
    common.add_argument("--workspace", default="default", help="Workspace id")
    common.add_argument("--verbose", action="store_true", help="Log progress and full event details")

    llm = argparse.ArgumentParser(add_help=False)
    llm.add_argument("--provider", default=None, help="LLM provider (ollama, openai, anthropic)")
    llm.add_argument("--model", default=None, help="Model name for the active provider")
    llm.add_argument("--base-url", default=None, help="Provider base URL")
    llm.add_argument("--timeout", type=float, default=None, help="HTTP timeout seconds")

    scan = argparse.ArgumentParser(add_help=False)
    scan.add_argument("--include", action="append", help="Glob of files to include (repeatable)")
    scan.add_argument("--exclude", action="append", help="Glob of files to exclude (repeatable)")

    ap = argparse.ArgumentParser(description="Build and enrich code graphs of a repository")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("build", parents=[common, llm, scan], help="Scan a repo and build its graph")
    p.add_argument("repo", help="Path to the repository")
    p.add_argument("--name", default=None, help="Graph name (default: directory name)")
    p.add_argument("--no-ai", action="store_true", help="Use heuristic grouping and flows even with a credential")
    p.add_argument("--no-flows", action="store_true", help="Skip flow generation")

    p = sub.add_parser("sync", parents=[common], help="Check tracked files for content drift")
    p.add_argument("graph_id")
    p.add_argument("--repo", required=True, help="Path to the repository")

    p = sub.add_parser("resync", parents=[common, scan], help="Rebuild a graph from the live repo")
    p.add_argument("graph_id")
    p.add_argument("--repo", required=True, help="Path to the repository")

    p = sub.add_parser("flows", parents=[common, llm], help="Regenerate runtime flows")
    p.add_argument("graph_id")
    p.add_argument("--mode", choices=[m.value for m in FlowMergeMode], default=FlowMergeMode.REPLACE.value)
    p.add_argument("--scope", default=None, help="Module node id for scoped regeneration")
    p.add_argument("--prompt", default=None, help="Free-form request to focus the flows")

    p = sub.add_parser("domain", parents=[common, llm], help="Project the graph onto domain concepts")
    p.add_argument("graph_id")

    sub.add_parser("list", parents=[common], help="List stored graphs")

    p = sub.add_parser("validate", parents=[common], help="Report invariant violations and anomalies")
    p.add_argument("graph_id")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = _parser().parse_args(argv)
    paths = get_paths_config()
    out_root = Path(args.out).expanduser().resolve()
    console = Console(out_root / str(paths.get("run_log_filename") or "run.log"), verbose=args.verbose)
    repo = GraphRepository(JsonFileStore(out_root / str(paths.get("store_dir_name") or "graphs")))

    if args.command not in ("list", "validate"):
        console.append(f"[RUN] {args.command} start {time.strftime('%Y-%m-%d %H:%M:%S')}")
    try:
        return COMMANDS[args.command](args, repo, console)
    except LLMConfigError as e:
        console.line(f"[ERROR] {e}", stderr=True)
        return 2
    except GraphNotFoundError as e:
        console.line(f"[ERROR] {e}", stderr=True)
        return 2
    except GraphInvariantError as e:
        console.line(f"[ERROR] {e}", stderr=True)
        return 1
    except ValueError as e:
        console.line(f"[ERROR] {e}", stderr=True)
        return 2
    except (RunCancelled, KeyboardInterrupt):
        console.line("[CANCELLED] Interrupted", stderr=True)
        return 130
    except (LLMError, RuntimeError, OSError) as e:
        console.line(f"[ERROR] {e}", stderr=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
