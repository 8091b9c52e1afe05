import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from nodeflow._errors import ConfigError, NodeflowError
from nodeflow._eval_engine import Runtime
from nodeflow._graph import FlattenedGraph, contract_node, expand_node, flatten_node, node_levels
from nodeflow._io import dumps_graph, load_graph, load_graphs, save_graph
from nodeflow._store import Graph, GraphStore, validate_graph

from .config import NodeflowConfig, get_config

app = typer.Typer()

logger = logging.getLogger(__name__)
# Console for stderr (info/errors)
err_console = Console(stderr=True)
# Console for stdout (results)
out_console = Console()


@app.callback()
def callback(
    *,
    verbose: bool = typer.Option(default=False, help="Enable verbose output"),
) -> None:
    """Nodeflow CLI."""
    log_level = logging.DEBUG if verbose else logging.INFO

    # Configure rich logging handler to output to stderr
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=err_console,
                show_time=False,
                show_path=verbose,
                rich_tracebacks=True,
            ),
        ],
    )


def _fail(message: str) -> typer.Exit:
    err_console.print(f"[red]✗ {escape(message)}[/red]")
    return typer.Exit(code=1)


def _config() -> NodeflowConfig:
    try:
        return get_config()
    except ConfigError as e:
        raise _fail(str(e)) from e


def _load_graph_or_exit(path: Path) -> Graph:
    """Load a graph file, exiting with a message when it cannot be read."""
    err_console.print(f"[cyan]Loading graph from:[/cyan] {path}")
    try:
        return load_graph(path)
    except ValidationError as e:
        raise _fail(f"{path} does not hold a valid graph:\n{e}") from e
    except (OSError, ValueError) as e:
        raise _fail(f"Cannot load {path}: {e}") from e


def _load_store(graphs: Path | None) -> GraphStore:
    """Load the graph store from ``--graphs`` or the ``[tool.nodeflow]`` config."""
    if graphs is None:
        graphs = _config().graphs
    if graphs is None:
        return GraphStore()
    err_console.print(f"[cyan]Loading graph store from:[/cyan] {graphs}")
    try:
        return load_graphs(graphs)
    except ValidationError as e:
        raise _fail(f"{graphs} holds an invalid graph:\n{e}") from e
    except (OSError, ValueError) as e:
        raise _fail(f"Cannot load graph store {graphs}: {e}") from e


def _resolve_graph(path: Path | None, store: GraphStore) -> Graph:
    if path is not None:
        return _load_graph_or_exit(path)
    entry = _config().entry
    if entry is None or entry not in store:
        err_console.print("[red]✗ No graph file given and no configured entry graph in the store[/red]")
        raise typer.Exit(code=1)
    return store[entry]


def _parse_args(pairs: list[str]) -> dict[str, Any]:
    """Parse ``key=value`` pairs. Values are read as JSON, falling back to strings."""
    args: dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            msg = f"Expected key=value, got '{pair}'"
            raise typer.BadParameter(msg, param_hint="--arg")
        key, raw = pair.split("=", 1)
        try:
            args[key] = json.loads(raw)
        except json.JSONDecodeError:
            args[key] = raw
    return args


def _emit_graph(graph: Graph, output: Path | None) -> None:
    if output is None:
        out_console.print(dumps_graph(graph), end="", highlight=False, markup=False, soft_wrap=True)
        return
    save_graph(graph, output)
    err_console.print(f"[green]✓ Wrote[/green] {output}")


@app.command()
def run(
    path: Annotated[
        Path | None,
        typer.Argument(help="Path to a graph file (JSON or TOML). Defaults to the configured entry graph"),
    ] = None,
    *,
    node: Annotated[
        str | None,
        typer.Option("--node", "-n", help="Node to evaluate (defaults to the graph's output node)"),
    ] = None,
    arg: Annotated[
        list[str] | None,
        typer.Option("--arg", "-a", help="Graph argument as key=value (value parsed as JSON)"),
    ] = None,
    graphs: Annotated[
        Path | None,
        typer.Option("--graphs", "-g", help="Directory or file of graphs referenced by the graph"),
    ] = None,
) -> None:
    """Evaluate a graph and print the result."""
    store = _load_store(graphs)
    graph = _resolve_graph(path, store)
    args = _parse_args(arg or [])

    runtime = Runtime(graphs=store)
    try:
        value = asyncio.run(runtime.run_async(graph, node, args))
    except NodeflowError as e:
        err_console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e
    finally:
        runtime.close()

    out_console.print(
        json.dumps(value, indent=2, default=str, ensure_ascii=False),
        highlight=False,
        markup=False,
        soft_wrap=True,
    )


@app.command()
def check(
    path: Annotated[Path, typer.Argument(help="Path to a graph file (JSON or TOML)")],
    *,
    graphs: Annotated[
        Path | None,
        typer.Option("--graphs", "-g", help="Directory or file of graphs referenced by the graph"),
    ] = None,
) -> None:
    """Check a graph without evaluating it."""
    store = _load_store(graphs)
    graph = _load_graph_or_exit(path)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Node", style="bold")
    table.add_column("Kind", style="yellow")
    table.add_column("Inputs", justify="right")
    table.add_column("Consumers", justify="right")
    for node_id, node in graph.nodes.items():
        inputs, consumers = len(graph.edges_in(node_id)), len(graph.edges_out(node_id))
        table.add_row(escape(node_id), str(node.kind), str(inputs), str(consumers))

    err_console.print(
        Panel(
            table,
            title=f"[bold]Graph: {escape(graph.name or graph.id)}[/bold]",
            subtitle=f"[dim]{len(graph.nodes)} nodes, {len(graph.edges)} edges[/dim]",
            border_style="cyan",
        ),
    )

    problems = validate_graph(graph, store)
    if problems:
        for problem in problems:
            err_console.print(f"  [red]•[/red] {escape(problem)}")
        err_console.print("[red]✗ Graph is invalid[/red]")
        raise typer.Exit(code=1)
    err_console.print("[green]✓ Graph is valid[/green]")


@app.command()
def deps(
    path: Annotated[Path, typer.Argument(help="Path to a graph file (JSON or TOML)")],
    node: Annotated[str, typer.Argument(help="Node whose dependencies are listed")],
) -> None:
    """List the dependency closure of a node, level by level."""
    graph = _load_graph_or_exit(path)
    if node not in graph.nodes:
        err_console.print(f"[red]✗ Node '{escape(node)}' does not exist[/red]")
        raise typer.Exit(code=1)

    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("Level", justify="right", style="yellow")
    table.add_column("Nodes")
    for level, node_ids in sorted(node_levels(graph, node).items()):
        table.add_row(str(level), escape(", ".join(node_ids)))
    out_console.print(table)


@app.command()
def flatten(
    path: Annotated[Path, typer.Argument(help="Path to a graph file (JSON or TOML)")],
    node: Annotated[str, typer.Argument(help="Reference node to flatten")],
    *,
    levels: Annotated[
        int | None,
        typer.Option("--levels", "-l", help="Nesting levels to inline (defaults to the flatten_levels setting)"),
    ] = None,
    output: Annotated[Path | None, typer.Option("-o", "--output", help="Write the flattened graph here")] = None,
    graphs: Annotated[
        Path | None,
        typer.Option("--graphs", "-g", help="Directory or file of graphs referenced by the graph"),
    ] = None,
) -> None:
    """Inline the nested graphs of a reference node."""
    store = _load_store(graphs)
    graph = _load_graph_or_exit(path)
    if node not in graph.nodes:
        err_console.print(f"[red]✗ Node '{escape(node)}' does not exist[/red]")
        raise typer.Exit(code=1)

    depth = _config().flatten_levels if levels is None else levels
    flat = flatten_node(graph.nodes[node], depth, store)
    if not isinstance(flat, FlattenedGraph):
        err_console.print(f"[yellow]⚠ Node '{escape(node)}' has no nested graph to flatten[/yellow]")
        raise typer.Exit(code=1)
    err_console.print(f"[cyan]Flattened[/cyan] {len(flat.nodes)} nodes")
    _emit_graph(flat.as_graph(), output)


@app.command()
def expand(
    path: Annotated[Path, typer.Argument(help="Path to a graph file (JSON or TOML)")],
    node: Annotated[str, typer.Argument(help="Reference node to expand in place")],
    *,
    output: Annotated[Path | None, typer.Option("-o", "--output", help="Write the edited graph here")] = None,
    graphs: Annotated[
        Path | None,
        typer.Option("--graphs", "-g", help="Directory or file of graphs referenced by the graph"),
    ] = None,
) -> None:
    """Replace a reference node by its nested graph."""
    store = _load_store(graphs)
    graph = _load_graph_or_exit(path)
    if node not in graph.nodes:
        err_console.print(f"[red]✗ Node '{escape(node)}' does not exist[/red]")
        raise typer.Exit(code=1)
    edited, affected = expand_node(graph, node, store)
    err_console.print(f"[cyan]Affected:[/cyan] {escape(', '.join(affected))}")
    _emit_graph(edited, output)


@app.command()
def contract(
    path: Annotated[Path, typer.Argument(help="Path to a graph file (JSON or TOML)")],
    node: Annotated[str, typer.Argument(help="Node that becomes the output of the new nested graph")],
    *,
    output: Annotated[Path | None, typer.Option("-o", "--output", help="Write the edited graph here")] = None,
) -> None:
    """Gather a node and its dependencies into a reference node."""
    graph = _load_graph_or_exit(path)
    if node not in graph.nodes:
        err_console.print(f"[red]✗ Node '{escape(node)}' does not exist[/red]")
        raise typer.Exit(code=1)
    edited, affected = contract_node(graph, node)
    if edited is graph:
        err_console.print(f"[yellow]⚠ '{escape(node)}' and its dependencies cannot be contracted[/yellow]")
        raise typer.Exit(code=1)
    err_console.print(f"[cyan]Affected:[/cyan] {escape(', '.join(affected))}")
    _emit_graph(edited, output)


def main() -> None:
    app()
