"""Custom exceptions for projgraph operations."""

from pathlib import Path


class ProjgraphError(Exception):
    """Base exception for projgraph operations."""
    pass


class CorruptDataError(ProjgraphError):
    """Raised when a memory file exists but cannot be parsed or validated."""
    def __init__(self, path: Path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Corrupt data in {path}: {cause}")


class WriteError(ProjgraphError):
    """Raised when a memory file cannot be written durably."""
    def __init__(self, path: Path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to write {path}: {cause}")


class LockTimeoutError(ProjgraphError):
    """Raised when a cross-process lock is not acquired within the retry budget."""
    def __init__(self, path: Path, attempts: int):
        self.path = path
        self.attempts = attempts
        super().__init__(f"Could not lock {path} after {attempts} attempts")


class ProjectRootError(ProjgraphError):
    """Raised when a directory is not recognized as a project root."""
    def __init__(self, path: Path):
        self.path = path
        super().__init__(
            f"Directory Not Recognized as a Project Root: no project markers "
            f"(.git, pyproject.toml, package.json, README.md, etc.) found in \"{path}\". "
            f"Open the project at its top-level directory; memory is not "
            f"initialized for generic or nested directories."
        )
