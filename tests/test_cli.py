"""Tests for CLI commands."""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import get_args

from click.testing import CliRunner

from projgraph import storage
from projgraph.cli import cli
from projgraph.constants import DEDUPLICATION_THRESHOLD
from projgraph.models import ContextStatus
from projgraph.service import MemoryService


runner = CliRunner()


def seed(project: Path):
    service = MemoryService()
    asyncio.run(service.add_entities(project, [
        {"name": "AuthServer", "entityType": "COMPONENT", "observations": ["Issues JWT tokens"]},
        {"name": "Database", "entityType": "COMPONENT", "observations": ["PostgreSQL 15"]},
    ]))
    asyncio.run(service.create_relations(project, [
        {"from": "AuthServer", "to": "Database", "relationType": "READS_FROM"},
    ]))


def test_status_empty():
    """Test status command with empty memory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(cli, ["--project", tmpdir, "status"])
        assert result.exit_code == 0
        assert "PLANNING" in result.output


def test_status_with_data():
    """Test status command with some data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        seed(Path(tmpdir))
        runner.invoke(cli, ["--project", tmpdir, "context", "--task", "Fix login"])

        result = runner.invoke(cli, ["--project", tmpdir, "status"])
        assert result.exit_code == 0
        assert "Fix login" in result.output
        assert "2" in result.output
        assert "ago" in result.output


def test_project_from_env(monkeypatch):
    """Test PROJGRAPH_PROJECT selects the project."""
    with tempfile.TemporaryDirectory() as tmpdir:
        seed(Path(tmpdir))
        monkeypatch.setenv("PROJGRAPH_PROJECT", tmpdir)
        result = runner.invoke(cli, ["summary"])
        assert result.exit_code == 0
        assert "AuthServer" in result.output


def test_summary():
    """Test summary lists entities in a table."""
    with tempfile.TemporaryDirectory() as tmpdir:
        seed(Path(tmpdir))
        result = runner.invoke(cli, ["--project", tmpdir, "summary"])
        assert result.exit_code == 0
        assert "AuthServer" in result.output
        assert "Database" in result.output


def test_summary_empty():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(cli, ["--project", tmpdir, "summary"])
        assert result.exit_code == 0
        assert "No entities" in result.output


def test_search_json():
    """Test search with raw JSON output."""
    with tempfile.TemporaryDirectory() as tmpdir:
        seed(Path(tmpdir))
        result = runner.invoke(cli, ["--project", tmpdir, "search", "postgres", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [e["name"] for e in data["graph"]["entities"]] == ["Database"]


def test_search_fuzzy():
    with tempfile.TemporaryDirectory() as tmpdir:
        seed(Path(tmpdir))
        result = runner.invoke(cli, ["--project", tmpdir, "search", "authsrver", "--fuzzy"])
        assert result.exit_code == 0
        assert "AuthServer" in result.output


def test_search_no_match():
    with tempfile.TemporaryDirectory() as tmpdir:
        seed(Path(tmpdir))
        result = runner.invoke(cli, ["--project", tmpdir, "search", "kubernetes"])
        assert result.exit_code == 0
        assert "No matches" in result.output


def test_show():
    """Test show prints the requested nodes as JSON."""
    with tempfile.TemporaryDirectory() as tmpdir:
        seed(Path(tmpdir))
        result = runner.invoke(cli, ["--project", tmpdir, "show", "AuthServer", "Database"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert len(data["entities"]) == 2
        assert data["relations"][0]["relationType"] == "READS_FROM"


def test_export():
    with tempfile.TemporaryDirectory() as tmpdir:
        seed(Path(tmpdir))
        result = runner.invoke(cli, ["--project", tmpdir, "export", "-o", "graph.md"])
        assert result.exit_code == 0
        assert "### AuthServer" in (Path(tmpdir) / "graph.md").read_text()


def test_context_update():
    """Test context command only changes supplied fields."""
    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(cli, [
            "--project", tmpdir, "context",
            "--task", "Fix login",
            "--status", "IN_PROGRESS",
            "--next-step", "repro",
            "--next-step", "patch",
        ])
        assert result.exit_code == 0

        result = runner.invoke(cli, ["--project", tmpdir, "context", "--status", "BLOCKED"])
        assert result.exit_code == 0

        ctx = storage.read_context(tmpdir)
        assert ctx.active_task == "Fix login"
        assert ctx.status == "BLOCKED"
        assert ctx.next_steps == ["repro", "patch"]


def test_context_invalid_status():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(cli, ["--project", tmpdir, "context", "--status", "DONE"])
        assert result.exit_code != 0


def test_context_status_choices_follow_model():
    option = next(p for p in cli.commands["context"].params if p.name == "status_")
    assert tuple(option.type.choices) == get_args(ContextStatus)


def test_context_nothing_to_update():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(cli, ["--project", tmpdir, "context"])
        assert result.exit_code == 0
        assert "Nothing to update" in result.output
        assert not storage.context_path(tmpdir).exists()


def test_compact_threshold_defaults_to_dedup_threshold():
    option = next(p for p in cli.commands["compact"].params if p.name == "threshold")
    assert option.default == DEDUPLICATION_THRESHOLD


def test_compact():
    with tempfile.TemporaryDirectory() as tmpdir:
        service = MemoryService()
        asyncio.run(service.add_entities(tmpdir, [
            {"name": "Lib", "entityType": "DEP", "observations": ["version 2.4.1", "current version is 2.4.1"]},
        ]))
        result = runner.invoke(cli, ["--project", tmpdir, "compact"])
        assert result.exit_code == 0
        assert "Removed 1" in result.output
        assert storage.read_graph(tmpdir).entities[0].observations == ["current version is 2.4.1"]


def test_corrupt_file_reports_error():
    """Writes against a corrupt file fail cleanly."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = storage.graph_path(tmpdir)
        path.parent.mkdir(parents=True)
        path.write_text("{broken")

        result = runner.invoke(cli, ["--project", tmpdir, "compact"])
        assert result.exit_code == 1
        assert "Error" in result.output
        assert path.read_text() == "{broken"
