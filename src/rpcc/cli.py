from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from rpcc.config import BuildConfig, load_config
from rpcc.domain.models import NamespaceNode
from rpcc.errors import GenerationError
from rpcc.identifiers import derive_identifier
from rpcc.orchestrator.pipeline import build, collect_endpoints, resolve_roots, write_outputs


app = typer.Typer(no_args_is_help=True, add_completion=False)

console = Console()


def _setup_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load(project_dir: str, roots: Optional[List[str]], **overrides) -> BuildConfig:
    if roots:
        overrides["roots"] = roots
    try:
        cfg = load_config(Path(project_dir), **overrides)
    except GenerationError as exc:
        console.print(f"[bold red]error[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)
    if not cfg.roots:
        raise typer.BadParameter("No roots given (pass ROOTS or set [tool.rpcc] roots)")
    return cfg


@app.command("build")
def build_cmd(
    roots: Optional[List[str]] = typer.Argument(None, help="Root source files (default: [tool.rpcc] roots)"),
    client_out: Optional[str] = typer.Option(None, help="Where to write the client surface"),
    server_out: Optional[str] = typer.Option(None, help="Where to write the dispatch table"),
    transport: Optional[str] = typer.Option(None, help="Perform-call collaborator, as module:callable"),
    trace: Optional[bool] = typer.Option(None, "--trace/--no-trace", help="Log arguments and results in dispatch arms"),
    result_envelope: Optional[bool] = typer.Option(
        None, "--result-envelope/--no-result-envelope", help="Send implementation failures back to the client"
    ),
    project_dir: str = typer.Option(".", help="Directory holding pyproject.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    _setup_logging(verbose)
    cfg = _load(
        project_dir,
        roots,
        client_out=client_out,
        server_out=server_out,
        transport=transport,
        trace=trace,
        result_envelope=result_envelope,
    )

    try:
        result = build(cfg)
    except GenerationError as exc:
        console.print(f"[bold red]error[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    write_outputs(result, Path(cfg.client_out), Path(cfg.server_out))

    console.print(f"[bold green]rpcc[/bold green] build: {len(result.trees)} root(s)")
    console.print(f"Endpoints: [bold]{len(result.endpoints)}[/bold]")
    for e in result.endpoints[:50]:
        console.print(f"  {e.identifier:#018x}  {e.qualified_name}")
    if len(result.endpoints) > 50:
        console.print(f"  … and {len(result.endpoints) - 50} more")
    console.print("")
    console.print(f"Client: {cfg.client_out}")
    console.print(f"Server: {cfg.server_out}")


@app.command("endpoints")
def endpoints_cmd(
    roots: Optional[List[str]] = typer.Argument(None, help="Root source files (default: [tool.rpcc] roots)"),
    project_dir: str = typer.Option(".", help="Directory holding pyproject.toml"),
    format: str = typer.Option("table", help="Output format: table|json"),
) -> None:
    cfg = _load(project_dir, roots)
    try:
        entries = collect_endpoints(resolve_roots(cfg.roots, config=cfg))
    except GenerationError as exc:
        console.print(f"[bold red]error[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    fmt = format.lower().strip()
    if fmt not in ("table", "json"):
        raise typer.BadParameter("format must be one of: table, json")

    if fmt == "json":
        payload = [
            {
                "root": e.root,
                "name": e.qualified_name,
                "identifier": f"{e.identifier:#018x}",
                "file": e.file_path,
                "line": e.line,
                "async": e.is_async,
            }
            for e in entries
        ]
        console.print(json.dumps(payload, indent=2))
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", no_wrap=True)
    table.add_column("ROOT")
    table.add_column("ENDPOINT")
    table.add_column("FILE:LINE", no_wrap=True)

    for e in entries:
        table.add_row(f"{e.identifier:#018x}", e.root, e.qualified_name, f"{e.file_path}:{e.line}")

    console.print(table)


def _tree_branch(branch: Tree, node: NamespaceNode) -> None:
    for ep in node.endpoints:
        kind = "async " if ep.is_async else ""
        branch.add(f"{kind}{ep.name}()  [dim]{derive_identifier(ep):#018x}[/dim]")
    for child in node.children.values():
        sub = branch.add(f"[bold]{child.name}[/bold] [dim]{child.metadata.get('file', '')}[/dim]")
        _tree_branch(sub, child)


@app.command("tree")
def tree_cmd(
    roots: Optional[List[str]] = typer.Argument(None, help="Root source files (default: [tool.rpcc] roots)"),
    project_dir: str = typer.Option(".", help="Directory holding pyproject.toml"),
) -> None:
    cfg = _load(project_dir, roots)
    try:
        trees = resolve_roots(cfg.roots, config=cfg)
    except GenerationError as exc:
        console.print(f"[bold red]error[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    for t in trees:
        view = Tree(f"[bold green]{t.context.module}[/bold green] [dim]{t.context.file_path}[/dim]")
        _tree_branch(view, t)
        console.print(view)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
