"""Configuration loading from pyproject.toml."""

import tomllib
from dataclasses import dataclass
from pathlib import Path

from nodeflow._errors import ConfigError

DEFAULT_FLATTEN_LEVELS = 1


@dataclass(slots=True, frozen=True)
class NodeflowConfig:
    """Configuration loaded from the ``[tool.nodeflow]`` table of pyproject.toml.

    All relative paths are resolved from the project root (directory containing pyproject.toml).

    Attributes:
        graphs: Directory or file of graphs preloaded into the graph store.
        entry: Id of the graph evaluated when no graph file is given.
        flatten_levels: Default depth of the ``flatten`` command.
        project_root: Directory holding pyproject.toml.

    """

    graphs: Path | None = None
    entry: str | None = None
    flatten_levels: int = DEFAULT_FLATTEN_LEVELS
    project_root: Path | None = None


def find_pyproject_toml(start_dir: Path | None = None) -> Path | None:
    """Find pyproject.toml by walking up from start_dir.

    Args:
        start_dir: Starting directory. Defaults to current working directory.

    Returns:
        Path to pyproject.toml if found, None otherwise.

    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()

    while True:
        candidate = current / "pyproject.toml"
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def _parse_path(value: object, key: str, project_root: Path) -> Path:
    if not isinstance(value, str):
        msg = f"Invalid [tool.nodeflow].{key}: expected string path"
        raise ConfigError(msg)
    path = Path(value)
    if not path.is_absolute():
        path = project_root / path
    return path


def load_config(pyproject_path: Path) -> NodeflowConfig:
    """Load and validate [tool.nodeflow] config from pyproject.toml.

    Args:
        pyproject_path: Path to pyproject.toml

    Returns:
        Parsed NodeflowConfig

    Raises:
        ConfigError: If the configuration is invalid

    """
    project_root = pyproject_path.parent

    with pyproject_path.open("rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            msg = f"Invalid TOML in {pyproject_path}: {e}"
            raise ConfigError(msg) from e

    section = data.get("tool", {}).get("nodeflow", {})
    if not section:
        return NodeflowConfig(project_root=project_root)

    graphs: Path | None = None
    if "graphs" in section:
        graphs = _parse_path(section["graphs"], "graphs", project_root)

    entry = section.get("entry")
    if entry is not None and not isinstance(entry, str):
        msg = "Invalid [tool.nodeflow].entry: expected graph id string"
        raise ConfigError(msg)

    levels = section.get("flatten_levels", DEFAULT_FLATTEN_LEVELS)
    if isinstance(levels, bool) or not isinstance(levels, int) or levels < 0:
        msg = "Invalid [tool.nodeflow].flatten_levels: expected non-negative integer"
        raise ConfigError(msg)

    return NodeflowConfig(graphs=graphs, entry=entry, flatten_levels=levels, project_root=project_root)


def get_config() -> NodeflowConfig:
    """Get config from pyproject.toml in current directory or parents.

    Returns:
        NodeflowConfig (may be empty if no pyproject.toml or no [tool.nodeflow] section)

    """
    pyproject_path = find_pyproject_toml()
    if pyproject_path is None:
        return NodeflowConfig()
    return load_config(pyproject_path)
