"""Tests for tool dispatch: validation, root handshake, error text."""

import asyncio
import json

import pytest

from projgraph.exceptions import ProjectRootError
from projgraph.handlers import (
    TOOLS,
    dispatch,
    list_resource_definitions,
    list_tool_definitions,
    read_graph_resource,
    resolve_root,
)
from projgraph.schemas import ProjectArgs


def call(service, name, arguments):
    """Dispatch a tool call and return the single text payload."""
    content = asyncio.run(dispatch(service, name, arguments))
    assert len(content) == 1
    return content[0].text


@pytest.fixture
def confirmed(service, temp_project_dir):
    """Arguments for a project whose memory directory already exists."""
    (temp_project_dir / ".mcp").mkdir()
    return {"projectPath": str(temp_project_dir)}


class TestToolDefinitions:
    """Tests for list_tool_definitions()."""

    def test_all_tools_listed(self):
        names = {tool.name for tool in list_tool_definitions()}
        assert names == {
            "add_entities", "add_observations", "create_relations", "read_graph",
            "get_graph_summary", "update_context", "search", "delete_entities",
            "delete_observations", "delete_relations", "open_nodes",
            "export_markdown", "compact_observations",
        }

    def test_schemas_use_camel_case(self):
        tools = {tool.name: tool for tool in list_tool_definitions()}
        props = tools["read_graph"].inputSchema["properties"]
        assert "projectPath" in props
        assert "summaryMode" in props
        assert "projectPath" in tools["search"].inputSchema["required"]

    def test_every_model_extends_project_args(self):
        assert all(issubclass(model, ProjectArgs) for model, _, _ in TOOLS.values())


class TestRootHandshake:
    """New projects need explicit confirmation of the detected root."""

    def test_new_project_awaits_confirmation(self, service, temp_project_dir):
        text = call(service, "add_entities", {
            "projectPath": str(temp_project_dir),
            "entities": [{"name": "A", "entityType": "T"}],
        })
        payload = json.loads(text)
        assert payload["status"] == "AWAITING_CONFIRMATION"
        assert payload["detectedRoot"] == str(temp_project_dir)
        assert "README.md" in payload["markersFound"]
        assert not (temp_project_dir / ".mcp").exists()

    def test_confirmed_root_proceeds(self, service, temp_project_dir):
        text = call(service, "add_entities", {
            "projectPath": str(temp_project_dir),
            "confirmNewProjectRoot": str(temp_project_dir),
            "entities": [{"name": "A", "entityType": "T"}],
        })
        assert text.startswith("Success")
        assert (temp_project_dir / ".mcp" / "memory.json").exists()

    def test_existing_memory_needs_no_confirmation(self, service, confirmed):
        text = call(service, "read_graph", confirmed)
        assert json.loads(text)["totalEntityCount"] == 0

    def test_not_a_project(self, service, tmp_path):
        text = call(service, "read_graph", {"projectPath": str(tmp_path)})
        assert text.startswith("Project Requirement Error:")
        assert "Directory Not Recognized as a Project Root" in text

    def test_resolve_root_returns_path(self, confirmed):
        args = ProjectArgs.model_validate(confirmed)
        assert resolve_root(args) == confirmed["projectPath"]


class TestDispatch:
    """End-to-end tool calls through dispatch()."""

    def test_unknown_tool(self, service):
        assert call(service, "drop_database", {}) == "Unknown tool: drop_database"

    def test_validation_error(self, service, confirmed):
        text = call(service, "add_entities", {**confirmed, "entities": [{"name": "A"}]})
        assert text.startswith("Validation Error:")
        assert "entities.0.entityType" in text

    def test_missing_project_path(self, service):
        text = call(service, "read_graph", {})
        assert text.startswith("Validation Error:")
        assert "projectPath" in text

    def test_write_then_read(self, service, confirmed):
        call(service, "add_entities", {**confirmed, "entities": [
            {"name": "AuthServer", "entityType": "COMPONENT", "observations": ["Issues JWT"]},
            {"name": "Database", "entityType": "COMPONENT"},
        ]})
        text = call(service, "create_relations", {**confirmed, "relations": [
            {"from": "AuthServer", "to": "Database", "relationType": "READS_FROM"},
        ]})
        assert text.startswith("Success: Created 1 relations")

        state = json.loads(call(service, "read_graph", {**confirmed, "summaryMode": True}))
        assert state["totalEntityCount"] == 2
        assert state["graph"]["entities"][0]["observations"] == []
        assert len(state["graph"]["relations"]) == 1

    def test_search_fuzzy(self, service, confirmed):
        call(service, "add_entities", {**confirmed, "entities": [
            {"name": "AuthServer", "entityType": "COMPONENT"},
        ]})
        result = json.loads(call(service, "search", {**confirmed, "query": "authsrver", "fuzzy": True}))
        assert "AuthServer" in result["scores"]

    def test_update_context_partial(self, service, confirmed):
        call(service, "update_context", {**confirmed, "activeTask": "Fix login", "status": "IN_PROGRESS"})
        call(service, "update_context", {**confirmed, "reason": "flaky test"})

        state = json.loads(call(service, "read_graph", confirmed))
        assert state["context"]["activeTask"] == "Fix login"
        assert state["context"]["status"] == "IN_PROGRESS"
        assert state["context"]["reason"] == "flaky test"

    def test_update_context_invalid_status(self, service, confirmed):
        text = call(service, "update_context", {**confirmed, "status": "DONE"})
        assert text.startswith("Validation Error: status")

    def test_open_nodes_and_delete(self, service, confirmed):
        call(service, "add_entities", {**confirmed, "entities": [
            {"name": "A", "entityType": "T"}, {"name": "B", "entityType": "T"},
        ]})
        assert call(service, "delete_entities", {**confirmed, "entityNames": ["A"]}).startswith(
            "Success: Deleted 1 entities"
        )
        graph = json.loads(call(service, "open_nodes", {**confirmed, "names": ["A", "B"]}))
        assert [e["name"] for e in graph["entities"]] == ["B"]

    def test_export_markdown(self, service, confirmed, temp_project_dir):
        text = call(service, "export_markdown", {**confirmed, "outputPath": "docs/kg.md"})
        assert text.startswith("Success: Exported")
        assert (temp_project_dir / "docs" / "kg.md").exists()

    def test_execution_error(self, service, confirmed, temp_project_dir):
        (temp_project_dir / ".mcp" / "memory.json").write_text("{broken")
        text = call(service, "add_entities", {**confirmed, "entities": [{"name": "A", "entityType": "T"}]})
        assert text.startswith("Execution Error:")
        assert "Corrupt data" in text

    def test_paging_bounds_validated(self, service, confirmed):
        text = call(service, "get_graph_summary", {**confirmed, "limit": 0})
        assert text.startswith("Validation Error: limit")


class TestGraphResource:
    """Tests for list_resource_definitions() and read_graph_resource()."""

    def test_single_resource_listed(self):
        resources = list_resource_definitions()
        assert [str(r.uri) for r in resources] == ["mcp://memory/graph"]
        assert resources[0].mimeType == "application/json"

    def test_reads_complete_state(self, service, confirmed, temp_project_dir):
        call(service, "add_entities", {
            **confirmed,
            "entities": [{"name": "Redis", "entityType": "SERVICE", "observations": ["Port 6379"]}],
        })

        text = asyncio.run(read_graph_resource(service, f"mcp://memory/graph?path={temp_project_dir}"))
        state = json.loads(text)
        assert state["totalEntityCount"] == 1
        assert state["graph"]["entities"][0]["name"] == "Redis"
        assert state["context"]["status"] == "PLANNING"

    def test_requires_existing_memory(self, service, temp_project_dir):
        with pytest.raises(ValueError, match="Handshake required"):
            asyncio.run(read_graph_resource(service, f"mcp://memory/graph?path={temp_project_dir}"))
        assert not (temp_project_dir / ".mcp").exists()

    def test_unknown_uri(self, service, temp_project_dir):
        with pytest.raises(ValueError, match="Unknown resource URI"):
            asyncio.run(read_graph_resource(service, f"mcp://other/graph?path={temp_project_dir}"))

    def test_missing_path(self, service):
        with pytest.raises(ValueError, match="'path' is required"):
            asyncio.run(read_graph_resource(service, "mcp://memory/graph"))

    def test_path_without_markers(self, service, tmp_path):
        with pytest.raises(ProjectRootError):
            asyncio.run(read_graph_resource(service, f"mcp://memory/graph?path={tmp_path}"))
