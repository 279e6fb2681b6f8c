"""Tool definitions and dispatch.

Validates tool arguments, resolves the project root (with the new-project
handshake) and forwards to the MemoryService. Results are returned as MCP
text content; failures become readable error text instead of exceptions.
"""

import json
import logging
import traceback
from typing import Awaitable, Callable
from urllib.parse import parse_qs, urlparse

from mcp.types import Resource, TextContent, Tool
from pydantic import ValidationError

from .constants import GRAPH_RESOURCE_URI, JSON_INDENT
from .exceptions import ProjectRootError
from .roots import find_project_root
from .schemas import (
    AddEntitiesArgs,
    AddObservationsArgs,
    CompactObservationsArgs,
    CreateRelationsArgs,
    DeleteEntitiesArgs,
    DeleteObservationsArgs,
    DeleteRelationsArgs,
    ExportMarkdownArgs,
    GetGraphSummaryArgs,
    OpenNodesArgs,
    ProjectArgs,
    ReadGraphArgs,
    SearchArgs,
    UpdateContextArgs,
)
from .service import MemoryService

logger = logging.getLogger(__name__)

Handler = Callable[[MemoryService, str, ProjectArgs], Awaitable[list[TextContent]]]


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


def _json(data) -> list[TextContent]:
    return _text(json.dumps(data, indent=JSON_INDENT, default=str))


def format_validation_error(error: ValidationError) -> str:
    """Field-level summary: ``entities.0.name: Field required, ...``"""
    return ", ".join(
        f"{'.'.join(str(part) for part in issue['loc'])}: {issue['msg']}"
        for issue in error.errors()
    )


def resolve_root(args: ProjectArgs) -> str | dict:
    """Resolve the project root, enforcing the new-project handshake.

    Returns:
        The root path, or an AWAITING_CONFIRMATION payload when the project
        has no memory yet and the caller has not confirmed the root

    Raises:
        ProjectRootError: If the directory has no project markers
    """
    discovery = find_project_root(args.project_path)
    root = str(discovery.root_path)

    if discovery.has_memory or args.confirm_new_project_root == root:
        return root

    return {
        "status": "AWAITING_CONFIRMATION",
        "detectedRoot": root,
        "markersFound": discovery.markers_found,
        "message": (
            f"Detected a project root at [{root}]. To initialize memory for this "
            f"project, call the tool again with 'confirmNewProjectRoot' set to the "
            f"'detectedRoot' path above."
        ),
    }


# --- Handlers ---


async def _add_entities(service: MemoryService, root: str, args: AddEntitiesArgs):
    await service.add_entities(root, args.entities)
    return _text(f"Success: Added {len(args.entities)} entities to root: {root}")


async def _add_observations(service: MemoryService, root: str, args: AddObservationsArgs):
    added = await service.add_observations(root, args.observations)
    return _text(f"Success: Added {added} observations to root: {root}")


async def _create_relations(service: MemoryService, root: str, args: CreateRelationsArgs):
    created = await service.create_relations(root, args.relations)
    return _text(f"Success: Created {created} relations in root: {root}")


async def _read_graph(service: MemoryService, root: str, args: ReadGraphArgs):
    state = await service.get_complete_state(
        root, summary_mode=args.summary_mode, limit=args.limit, offset=args.offset
    )
    return _json(state)


async def _get_graph_summary(service: MemoryService, root: str, args: GetGraphSummaryArgs):
    return _json(await service.get_graph_summary(root, limit=args.limit, offset=args.offset))


async def _update_context(service: MemoryService, root: str, args: UpdateContextArgs):
    await service.update_context(root, args.context_fields())
    return _text(f"Success: Project context updated for root: {root}")


async def _search(service: MemoryService, root: str, args: SearchArgs):
    result = await service.search(
        root,
        args.query,
        limit=args.limit,
        offset=args.offset,
        fuzzy=args.fuzzy,
        min_score=args.min_score,
    )
    return _json(result)


async def _delete_entities(service: MemoryService, root: str, args: DeleteEntitiesArgs):
    deleted = await service.delete_entities(root, args.entity_names)
    return _text(f"Success: Deleted {deleted} entities from root: {root}")


async def _delete_observations(service: MemoryService, root: str, args: DeleteObservationsArgs):
    deleted = await service.delete_observations(root, args.deletions)
    return _text(f"Success: Deleted {deleted} observations from root: {root}")


async def _delete_relations(service: MemoryService, root: str, args: DeleteRelationsArgs):
    deleted = await service.delete_relations(root, args.relations)
    return _text(f"Success: Deleted {deleted} relations from root: {root}")


async def _open_nodes(service: MemoryService, root: str, args: OpenNodesArgs):
    graph = await service.open_nodes(root, args.names)
    return _json(graph.to_dict())


async def _export_markdown(service: MemoryService, root: str, args: ExportMarkdownArgs):
    path = await service.export_markdown(root, args.output_path)
    return _text(f"Success: Exported knowledge graph to {path}")


async def _compact_observations(service: MemoryService, root: str, args: CompactObservationsArgs):
    removed = await service.compact_observations(root, args.entity_names, args.threshold)
    return _text(f"Success: Removed {removed} near-duplicate observations in root: {root}")


# name -> (argument model, description, handler)
TOOLS: dict[str, tuple[type[ProjectArgs], str, Handler]] = {
    "add_entities": (
        AddEntitiesArgs,
        "Record entities. Observations merge into an existing entity with the same name. "
        "Update memory before every git commit.",
        _add_entities,
    ),
    "add_observations": (
        AddObservationsArgs,
        "Append observations to existing entities. Unknown entity names are skipped.",
        _add_observations,
    ),
    "create_relations": (
        CreateRelationsArgs,
        "Create directed relations between entities. Existing identical relations are kept once.",
        _create_relations,
    ),
    "read_graph": (
        ReadGraphArgs,
        "Start here: read project memory and the active context. "
        "Set summaryMode for a lightweight index; use limit/offset to page.",
        _read_graph,
    ),
    "get_graph_summary": (
        GetGraphSummaryArgs,
        "List entity names and types plus the relation count, without observations.",
        _get_graph_summary,
    ),
    "update_context": (
        UpdateContextArgs,
        "Update task status and next steps. Only supplied fields change.",
        _update_context,
    ),
    "search": (
        SearchArgs,
        "Search project memory by keyword, or by fuzzy similarity with fuzzy=true.",
        _search,
    ),
    "delete_entities": (
        DeleteEntitiesArgs,
        "Remove entities and every relation that mentions them.",
        _delete_entities,
    ),
    "delete_observations": (
        DeleteObservationsArgs,
        "Remove specific observations from entities.",
        _delete_observations,
    ),
    "delete_relations": (
        DeleteRelationsArgs,
        "Remove relations matching from/to/relationType exactly.",
        _delete_relations,
    ),
    "open_nodes": (
        OpenNodesArgs,
        "Retrieve entities by exact name plus the relations among them.",
        _open_nodes,
    ),
    "export_markdown": (
        ExportMarkdownArgs,
        "Export the knowledge graph to a Markdown file in the project.",
        _export_markdown,
    ),
    "compact_observations": (
        CompactObservationsArgs,
        "Collapse near-duplicate observations, keeping the more detailed wording.",
        _compact_observations,
    ),
}


def list_tool_definitions() -> list[Tool]:
    """MCP tool definitions with schemas generated from the argument models."""
    return [
        Tool(name=name, description=description, inputSchema=model.model_json_schema(by_alias=True))
        for name, (model, description, _) in TOOLS.items()
    ]


async def dispatch(service: MemoryService, name: str, arguments: dict | None) -> list[TextContent]:
    """Validate ``arguments`` and run tool ``name``.

    Never raises for tool failures; errors come back as text.
    """
    entry = TOOLS.get(name)
    if entry is None:
        return _text(f"Unknown tool: {name}")
    model, _, handler = entry

    try:
        args = model.model_validate(arguments or {})
        root = resolve_root(args)
        if isinstance(root, dict):
            return _json(root)
        return await handler(service, root, args)
    except ValidationError as e:
        return _text(f"Validation Error: {format_validation_error(e)}")
    except ProjectRootError as e:
        return _text(f"Project Requirement Error: {e}")
    except Exception as e:
        logger.error(f"Tool {name} failed: {e}")
        logger.error(traceback.format_exc())
        return _text(f"Execution Error: {e}")


# --- Resources ---


def list_resource_definitions() -> list[Resource]:
    """The single graph resource; the project is chosen with ``?path=``."""
    return [
        Resource(
            uri=GRAPH_RESOURCE_URI,
            name="Project Knowledge Graph & Context",
            description="The complete knowledge graph and active project context.",
            mimeType="application/json",
        )
    ]


async def read_graph_resource(service: MemoryService, uri: str) -> str:
    """Complete state of the project named by ``uri`` as JSON.

    Unlike the tools there is no confirmation step, so only projects that
    already have a memory directory can be read.

    Raises:
        ValueError: Unknown URI, bad or missing ``path``, or no memory yet.
        ProjectRootError: No project marker at ``path``.
    """
    parsed = urlparse(uri)
    if f"{parsed.scheme}://{parsed.netloc}{parsed.path}" != GRAPH_RESOURCE_URI:
        raise ValueError(f"Unknown resource URI: {uri}")

    paths = parse_qs(parsed.query).get("path")
    if not paths:
        raise ValueError("projectPath query parameter 'path' is required")

    discovery = find_project_root(paths[0])
    if not discovery.has_memory:
        raise ValueError("Handshake required for new projects. Use tools first.")

    state = await service.get_complete_state(discovery.root_path)
    return json.dumps(state, indent=JSON_INDENT, default=str)
