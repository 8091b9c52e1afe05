"""Reading and writing graph files.

Graphs persist as JSON (validated with pydantic) or TOML (``tomllib`` /
``tomli_w``), chosen by file suffix. Both formats hold the same persisted
record, ``SavedGraph``.
"""

import json
import logging
import tomllib
from pathlib import Path
from typing import Any

import tomli_w

from ._store import Graph, GraphStore, SavedGraph, base_graph, dump_graph

logger = logging.getLogger(__name__)

GRAPH_SUFFIXES = (".json", ".toml")


def _check_suffix(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix not in GRAPH_SUFFIXES:
        msg = f"Unsupported graph file type '{path.suffix}' (expected one of {', '.join(GRAPH_SUFFIXES)})"
        raise ValueError(msg)
    return suffix


def _serialize_value(value: Any) -> Any:
    """Recursively prepare a value for TOML export.

    TOML has no null, so ``None`` entries of mappings are dropped. Paths are
    written as strings and tuples as arrays.
    """
    if isinstance(value, dict):
        return {str(k): _serialize_value(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]
    if isinstance(value, Path):
        return str(value)
    return value


def load_graph(path: Path | str) -> Graph:
    """Load and normalize a graph from a JSON or TOML file.

    Raises:
        ValueError: If the file type is not supported.
        pydantic.ValidationError: If the file does not hold a valid graph.

    """
    path = Path(path)
    suffix = _check_suffix(path)
    logger.debug(f"Loading graph from {path}")
    if suffix == ".json":
        saved = SavedGraph.model_validate_json(path.read_text(encoding="utf-8"))
    else:
        with path.open("rb") as f:
            saved = SavedGraph.model_validate(tomllib.load(f))
    return base_graph(saved)


def dumps_graph(graph: Graph, fmt: str = "json") -> str:
    """Serialize a graph to JSON or TOML text."""
    data = dump_graph(graph)
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    if fmt == "toml":
        return tomli_w.dumps(_serialize_value(data))
    msg = f"Unknown graph format '{fmt}'"
    raise ValueError(msg)


def save_graph(graph: Graph, path: Path | str) -> None:
    """Write a graph to a JSON or TOML file, chosen by suffix.

    Parent directories are created as needed.
    """
    path = Path(path)
    suffix = _check_suffix(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_graph(graph, suffix.removeprefix(".")), encoding="utf-8")
    logger.debug(f"Saved graph '{graph.id}' to {path}")


def load_graphs(path: Path | str) -> GraphStore:
    """Load every graph file under a directory (or a single file) into a store.

    Files are loaded in sorted order; a later file with the same graph id
    replaces an earlier one.
    """
    path = Path(path)
    files = [path] if path.is_file() else sorted(p for p in path.rglob("*") if p.suffix.lower() in GRAPH_SUFFIXES)
    store = GraphStore()
    for file in files:
        graph = store.add(load_graph(file))
        logger.debug(f"Registered graph '{graph.id}' from {file}")
    return store
