"""Project root discovery.

Only the given directory is inspected; parent directories are never
searched, so memory is created at a real project root and not in whatever
subdirectory a tool happened to be started from.
"""

from dataclasses import dataclass, field
from pathlib import Path

from .constants import MEMORY_DIR_NAME
from .exceptions import ProjectRootError

ROOT_MARKERS = (
    ".git",
    MEMORY_DIR_NAME,
    "pyproject.toml",
    "setup.py",
    "package.json",
    "go.mod",
    "Cargo.toml",
    "requirements.txt",
    "pom.xml",
    "composer.json",
    "README.md",
    ".vscode",
    "tsconfig.json",
    ".gitignore",
)


@dataclass
class RootDiscovery:
    """Result of inspecting a candidate project root."""

    root_path: Path
    has_memory: bool  # a .mcp directory already exists
    markers_found: list[str] = field(default_factory=list)


def validate_absolute_path(project_path: str) -> Path:
    """Resolve ``project_path``, rejecting empty or NUL-containing input.

    Raises:
        ValueError: If the path is empty or malformed
    """
    if not project_path:
        raise ValueError("Project path is required.")
    if "\0" in project_path:
        raise ValueError("Invalid path detected.")
    return Path(project_path).expanduser().resolve()


def find_project_root(start_path: str | Path) -> RootDiscovery:
    """Check ``start_path`` for project markers.

    Returns:
        RootDiscovery for ``start_path``

    Raises:
        ProjectRootError: If no marker is present
    """
    root = validate_absolute_path(str(start_path))
    markers = [m for m in ROOT_MARKERS if (root / m).exists()]
    if not markers:
        raise ProjectRootError(root)
    return RootDiscovery(
        root_path=root,
        has_memory=MEMORY_DIR_NAME in markers,
        markers_found=markers,
    )
