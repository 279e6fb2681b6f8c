"""Tests for project root discovery."""

import pytest

from projgraph.exceptions import ProjectRootError
from projgraph.roots import find_project_root, validate_absolute_path


class TestValidateAbsolutePath:
    """Tests for validate_absolute_path()."""

    def test_resolves(self, tmp_path):
        assert validate_absolute_path(str(tmp_path / "a" / "..")) == tmp_path.resolve()

    def test_expands_user(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        assert validate_absolute_path("~") == tmp_path.resolve()

    def test_empty(self):
        with pytest.raises(ValueError):
            validate_absolute_path("")

    def test_nul_byte(self):
        with pytest.raises(ValueError):
            validate_absolute_path("/tmp/a\0b")


class TestFindProjectRoot:
    """Tests for find_project_root()."""

    def test_detects_markers(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("")
        (tmp_path / ".git").mkdir()

        discovery = find_project_root(tmp_path)
        assert discovery.root_path == tmp_path.resolve()
        assert discovery.markers_found == [".git", "pyproject.toml"]
        assert discovery.has_memory is False

    def test_existing_memory(self, tmp_path):
        (tmp_path / ".mcp").mkdir()
        assert find_project_root(tmp_path).has_memory is True

    def test_no_markers(self, tmp_path):
        with pytest.raises(ProjectRootError) as exc_info:
            find_project_root(tmp_path)
        assert exc_info.value.path == tmp_path.resolve()

    def test_parent_not_searched(self, tmp_path):
        (tmp_path / "package.json").write_text("{}")
        nested = tmp_path / "src" / "lib"
        nested.mkdir(parents=True)
        with pytest.raises(ProjectRootError):
            find_project_root(nested)
