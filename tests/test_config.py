"""Tests for the configuration module."""

from pathlib import Path

import pytest

from nodeflow._cli.config import (
    ConfigError,
    NodeflowConfig,
    find_pyproject_toml,
    get_config,
    load_config,
)


class TestFindPyprojectToml:
    """Tests for find_pyproject_toml function."""

    def test_finds_in_current_directory(self, tmp_path: Path) -> None:
        """Should find pyproject.toml in current directory."""
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text("[project]\nname = 'test'\n")

        result = find_pyproject_toml(tmp_path)

        assert result == pyproject

    def test_finds_in_parent_directory(self, tmp_path: Path) -> None:
        """Should find pyproject.toml in parent directory."""
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text("[project]\nname = 'test'\n")

        subdir = tmp_path / "graphs" / "lib"
        subdir.mkdir(parents=True)

        result = find_pyproject_toml(subdir)

        assert result == pyproject


class TestLoadConfig:
    """Tests for load_config."""

    def test_empty_section(self, tmp_path: Path) -> None:
        """Should return defaults when there is no [tool.nodeflow] table."""
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text("[project]\nname = 'test'\n")

        config = load_config(pyproject)

        assert config == NodeflowConfig(project_root=tmp_path)
        assert config.flatten_levels == 1

    def test_full_section(self, tmp_path: Path) -> None:
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text(
            """
[tool.nodeflow]
graphs = "graphs"
entry = "main"
flatten_levels = 3
""",
        )

        config = load_config(pyproject)

        assert config.graphs == tmp_path / "graphs"
        assert config.entry == "main"
        assert config.flatten_levels == 3
        assert config.project_root == tmp_path

    def test_absolute_graphs_path_kept(self, tmp_path: Path) -> None:
        target = tmp_path / "elsewhere"
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text(f'[tool.nodeflow]\ngraphs = "{target.as_posix()}"\n')

        assert load_config(pyproject).graphs == target

    def test_non_string_graphs_raises_error(self, tmp_path: Path) -> None:
        """Should raise ConfigError for a non-string graphs path."""
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text("[tool.nodeflow]\ngraphs = 3\n")

        with pytest.raises(ConfigError, match="expected string path"):
            load_config(pyproject)

    def test_non_string_entry_raises_error(self, tmp_path: Path) -> None:
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text("[tool.nodeflow]\nentry = ['main']\n")

        with pytest.raises(ConfigError, match="entry"):
            load_config(pyproject)

    @pytest.mark.parametrize("levels", ["-1", "true", "'two'"])
    def test_invalid_flatten_levels(self, tmp_path: Path, levels: str) -> None:
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text(f"[tool.nodeflow]\nflatten_levels = {levels}\n")

        with pytest.raises(ConfigError, match="flatten_levels"):
            load_config(pyproject)

    def test_invalid_toml_raises_error(self, tmp_path: Path) -> None:
        """Should raise ConfigError for invalid TOML."""
        pyproject = tmp_path / "pyproject.toml"
        pyproject.write_text("[tool.nodeflow\nentry = ")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(pyproject)


class TestGetConfig:
    def test_reads_from_working_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "pyproject.toml").write_text('[tool.nodeflow]\nentry = "main"\n')
        monkeypatch.chdir(tmp_path)

        assert get_config().entry == "main"
