"""Persistence layer: authoritative read/write of the project JSON documents.

No caching and no locking here; callers hold the locks. Writes go to a
temporary file in the target directory and are renamed over the target, so
readers see either the old document or the new one, never a mix.

Reads come in two flavours:
- ``load_*`` returns a ReadResult (absent / corrupt / valid) and never raises
  for bad content, leaving the policy to the caller
- ``read_*`` returns the value and raises CorruptDataError for bad content
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, Literal, TypeVar

from pydantic import ValidationError

from .constants import (
    CONTEXT_FILENAME,
    DEFAULT_EXPORT_FILENAME,
    GRAPH_FILENAME,
    JSON_INDENT,
    MEMORY_DIR_NAME,
    TEMP_SUFFIX,
)
from .exceptions import CorruptDataError, WriteError
from .export import render_markdown
from .models import KnowledgeGraph, ProjectContext, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

ReadStatus = Literal["absent", "corrupt", "valid"]


@dataclass
class ReadResult(Generic[T]):
    """Outcome of reading one document.

    ``value`` is always usable: the default for absent or corrupt files.
    """

    status: ReadStatus
    value: T
    path: Path
    error: Exception | None = None

    @property
    def is_corrupt(self) -> bool:
        return self.status == "corrupt"

    def unwrap(self) -> T:
        """Return the value, raising CorruptDataError for corrupt reads."""
        if self.status == "corrupt":
            raise CorruptDataError(self.path, self.error) from self.error
        return self.value


# --- Paths ---


def memory_dir(project_path: str | Path) -> Path:
    """Directory holding the project's memory documents."""
    return Path(project_path).resolve() / MEMORY_DIR_NAME


def graph_path(project_path: str | Path) -> Path:
    return memory_dir(project_path) / GRAPH_FILENAME


def context_path(project_path: str | Path) -> Path:
    return memory_dir(project_path) / CONTEXT_FILENAME


def default_context() -> ProjectContext:
    return ProjectContext(status="PLANNING", next_steps=[])


# --- Graph ---


def load_graph(project_path: str | Path) -> ReadResult[KnowledgeGraph]:
    """Read the graph document without raising on bad content."""
    path = graph_path(project_path)
    return _load(path, KnowledgeGraph.model_validate, KnowledgeGraph)


def read_graph(project_path: str | Path) -> KnowledgeGraph:
    """Read the graph document.

    Returns an empty graph when the file does not exist.

    Raises:
        CorruptDataError: If the file exists but cannot be parsed or validated
    """
    return load_graph(project_path).unwrap()


def write_graph(project_path: str | Path, graph: KnowledgeGraph) -> Path:
    """Write the graph atomically in canonical (sorted) order.

    Sorts ``graph`` in place before serializing.

    Returns:
        Path of the written file

    Raises:
        WriteError: If the directory, temp file or rename fails
    """
    path = graph_path(project_path)
    graph.sort()
    _atomic_write_text(path, _dumps(graph.to_dict()))
    return path


# --- Context ---


def load_context(project_path: str | Path) -> ReadResult[ProjectContext]:
    """Read the context document without raising on bad content."""
    path = context_path(project_path)
    return _load(path, ProjectContext.model_validate, default_context)


def read_context(project_path: str | Path) -> ProjectContext:
    """Read the context document (defaults when absent).

    Raises:
        CorruptDataError: If the file exists but cannot be parsed or validated
    """
    return load_context(project_path).unwrap()


def write_context(project_path: str | Path, context: ProjectContext) -> ProjectContext:
    """Stamp ``updated_at`` and write the context atomically.

    Returns:
        The context exactly as written (with the new timestamp)

    Raises:
        WriteError: If the write fails
    """
    path = context_path(project_path)
    stamped = context.model_copy(update={"updated_at": utc_now()})
    _atomic_write_text(path, _dumps(stamped.to_dict()))
    return stamped


# --- Queries on the authoritative file ---


def open_nodes(project_path: str | Path, names: list[str]) -> KnowledgeGraph:
    """Entities with the given names and the relations among them.

    Raises:
        CorruptDataError: If the graph file is corrupt
    """
    if not names:
        return KnowledgeGraph()
    return read_graph(project_path).subgraph(set(names))


def export_to_markdown(
    project_path: str | Path,
    output_path: str | Path | None = None,
) -> Path:
    """Render the graph to Markdown and write it next to the project.

    Args:
        project_path: Project root
        output_path: Target file, relative to the project root unless
            absolute (default: KNOWLEDGE_GRAPH.md)

    Returns:
        Resolved path of the written file

    Raises:
        CorruptDataError: If the graph file is corrupt
        WriteError: If the Markdown file cannot be written
    """
    graph = read_graph(project_path)
    target = Path(project_path).resolve() / (output_path or DEFAULT_EXPORT_FILENAME)
    _atomic_write_text(target, render_markdown(graph))
    return target.resolve()


# --- Helpers ---


def _load(path: Path, parse, default) -> ReadResult:
    if not path.exists():
        return ReadResult(status="absent", value=default(), path=path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return ReadResult(status="valid", value=parse(data), path=path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        logger.debug(f"Unreadable memory file {path}: {e}")
        return ReadResult(status="corrupt", value=default(), path=path, error=e)


def _dumps(data: dict) -> str:
    return json.dumps(data, indent=JSON_INDENT, ensure_ascii=False) + "\n"


def _atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to a unique temp file and rename it over ``path``.

    The temp file lives in the same directory so the rename never crosses
    filesystems. It is removed if anything fails.
    """
    temp_path = path.with_name(f"{path.name}.{time.time_ns()}{TEMP_SUFFIX}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except OSError as e:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError as cleanup_error:
            logger.debug(f"Could not remove temp file {temp_path}: {cleanup_error}")
        logger.error(f"Write failed for {path}: {e}")
        raise WriteError(path, e) from e
