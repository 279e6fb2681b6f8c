"""Markdown export of a project knowledge graph.

Renders one section per entity and one table row per relation. Output is
deterministic for a given graph, so exported files diff cleanly.
"""

from .constants import GRAPH_FILENAME, MEMORY_DIR_NAME
from .models import KnowledgeGraph


def render_markdown(graph: KnowledgeGraph) -> str:
    """Render ``graph`` as a Markdown document.

    Args:
        graph: Graph to render, in the order it should appear

    Returns:
        Markdown text ending with a newline
    """
    lines = [
        "# Knowledge Graph",
        "",
        f"> Generated from `{MEMORY_DIR_NAME}/{GRAPH_FILENAME}`",
        "",
        "## Entities",
        "",
    ]

    if not graph.entities:
        lines += ["_No entities found._", ""]
    for entity in graph.entities:
        lines += [f"### {entity.name}", "", f"- **Type**: `{entity.entity_type}`"]
        if entity.observations:
            lines.append("- **Observations**:")
            lines += [f"  - {obs}" for obs in entity.observations]
        lines.append("")

    lines += ["## Relations", ""]
    if not graph.relations:
        lines += ["_No relations found._", ""]
    else:
        lines += ["| From | Relation | To |", "|------|----------|----|"]
        lines += [
            f"| {_cell(r.from_entity)} | {_cell(r.relation_type)} | {_cell(r.to_entity)} |"
            for r in graph.relations
        ]
        lines.append("")

    return "\n".join(lines) + "\n"


def _cell(text: str) -> str:
    """Escape pipes so a name cannot break the table row."""
    return text.replace("|", "\\|")
