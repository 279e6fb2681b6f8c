"""CLI for inspecting and editing project memory outside of MCP."""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import get_args

import click
from rich.console import Console
from rich.table import Table

from .config import Settings
from .constants import DEDUPLICATION_THRESHOLD
from .exceptions import ProjgraphError
from .models import ContextStatus
from .service import MemoryService
from .timeutil import format_relative_time

console = Console()


def _run(ctx: click.Context, operation):
    """Run ``operation(service, project)`` on a fresh service and shut it down."""
    service = MemoryService(Settings.from_env())
    project = ctx.obj["project"]

    async def runner():
        try:
            return await operation(service, project)
        finally:
            await service.shutdown()

    try:
        return asyncio.run(runner())
    except ProjgraphError as e:
        console.print(f"[red]Error:[/red] {e}")
        ctx.exit(1)


@click.group()
@click.option(
    "--project",
    envvar="PROJGRAPH_PROJECT",
    type=click.Path(path_type=Path, file_okay=False),
    help="Project root (default: current directory)",
)
@click.pass_context
def cli(ctx, project):
    """projgraph - project knowledge graph and hot context."""
    ctx.ensure_object(dict)
    ctx.obj["project"] = (project or Path.cwd()).resolve()


@cli.command()
@click.pass_context
def status(ctx):
    """Show the active context and graph size."""
    async def op(service: MemoryService, project: Path):
        return await service.get_complete_state(project, summary_mode=True)

    state = _run(ctx, op)
    context = state["context"]

    console.print(f"Project: [cyan]{ctx.obj['project']}[/cyan]")
    console.print(f"Status: [bold]{context['status']}[/bold]")
    if context.get("activeTask"):
        console.print(f"Active task: {context['activeTask']}")
    if context.get("reason"):
        console.print(f"Reason: {context['reason']}")
    for step in context.get("nextSteps", []):
        console.print(f"  [blue]-[/blue] {step}")
    if context.get("lastCommit"):
        console.print(f"Last commit: [yellow]{context['lastCommit']}[/yellow]")
    if context.get("updatedAt"):
        updated = datetime.fromisoformat(context["updatedAt"].replace("Z", "+00:00"))
        console.print(f"Updated: {format_relative_time(updated)}")

    console.print()
    console.print(
        f"Graph state: [bold]{state['totalEntityCount']}[/bold] entities, "
        f"[bold]{len(state['graph']['relations'])}[/bold] relations"
    )


@cli.command()
@click.option("-n", "--limit", type=int, default=None, help="Maximum entities to list")
@click.option("--offset", type=int, default=0, help="Entities to skip")
@click.pass_context
def summary(ctx, limit, offset):
    """List entity names and types."""
    async def op(service: MemoryService, project: Path):
        return await service.get_graph_summary(project, limit=limit, offset=offset)

    result = _run(ctx, op)
    if not result["entities"]:
        console.print("[yellow]No entities.[/yellow]")
        return

    table = Table(title=f"{result['totalEntityCount']} entities, {result['relationCount']} relations")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    for entity in result["entities"]:
        table.add_row(entity["name"], entity["type"])
    console.print(table)
    if result["isTruncated"]:
        console.print("[dim]More entities available, use --offset to page.[/dim]")


@cli.command()
@click.argument("query")
@click.option("--fuzzy", is_flag=True, help="Rank by fuzzy similarity")
@click.option("--min-score", type=float, default=None, help="Minimum fuzzy score 0-1")
@click.option("-n", "--limit", type=int, default=None, help="Maximum results")
@click.option("--json", "as_json", is_flag=True, help="Output raw JSON")
@click.pass_context
def search(ctx, query, fuzzy, min_score, limit, as_json):
    """Search entities by keyword."""
    async def op(service: MemoryService, project: Path):
        kwargs = {"limit": limit, "fuzzy": fuzzy}
        if min_score is not None:
            kwargs["min_score"] = min_score
        return await service.search(project, query, **kwargs)

    result = _run(ctx, op)
    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    entities = result["graph"]["entities"]
    if not entities:
        console.print(f"No matches for [bold]{query}[/bold].")
        return

    scores = result.get("scores", {})
    for entity in entities:
        score = f" [dim]({scores[entity['name']]:.2f})[/dim]" if entity["name"] in scores else ""
        console.print(f"[cyan]{entity['name']}[/cyan] ({entity['entityType']}){score}")
        for obs in entity["observations"]:
            console.print(f"  - {obs}")
    console.print(f"\n{result['totalResults']} matching entities")


@cli.command()
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def show(ctx, names):
    """Print entities by exact name, with the relations among them."""
    async def op(service: MemoryService, project: Path):
        return await service.open_nodes(project, list(names))

    graph = _run(ctx, op)
    click.echo(json.dumps(graph.to_dict(), indent=2))


@cli.command()
@click.option("-o", "--output", "output_path", default=None, help="Output file relative to the project")
@click.pass_context
def export(ctx, output_path):
    """Export the graph to Markdown."""
    async def op(service: MemoryService, project: Path):
        return await service.export_markdown(project, output_path)

    path = _run(ctx, op)
    console.print(f"[green]✓[/green] Exported knowledge graph to {path}")


@cli.command()
@click.option("--task", "active_task", default=None, help="Current task")
@click.option("--status", "status_", type=click.Choice(get_args(ContextStatus)), default=None)
@click.option("--reason", default=None, help="Reason for the status")
@click.option("--next-step", "next_steps", multiple=True, help="Planned step (repeatable)")
@click.option("--last-commit", default=None, help="Last relevant commit")
@click.pass_context
def context(ctx, active_task, status_, reason, next_steps, last_commit):
    """Update the active context (only the given fields change)."""
    update = {
        "activeTask": active_task,
        "status": status_,
        "reason": reason,
        "lastCommit": last_commit,
    }
    update = {k: v for k, v in update.items() if v is not None}
    if next_steps:
        update["nextSteps"] = list(next_steps)
    if not update:
        console.print("[yellow]Nothing to update.[/yellow]")
        return

    async def op(service: MemoryService, project: Path):
        return await service.update_context(project, update)

    written = _run(ctx, op)
    console.print(f"[green]✓[/green] Context updated: {written.status}")


@cli.command()
@click.option("--entity", "entity_names", multiple=True, help="Entity to compact (repeatable, default all)")
@click.option("--threshold", type=float, default=DEDUPLICATION_THRESHOLD, help="Similarity threshold 0-1")
@click.pass_context
def compact(ctx, entity_names, threshold):
    """Collapse near-duplicate observations."""
    async def op(service: MemoryService, project: Path):
        return await service.compact_observations(project, list(entity_names) or None, threshold)

    removed = _run(ctx, op)
    console.print(f"[green]✓[/green] Removed {removed} near-duplicate observations")


@cli.command()
def serve():
    """Run the MCP server on stdio."""
    from .server import main

    main()


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
