"""Tool argument models.

Each tool's input JSON schema is generated from these models, and incoming
arguments are validated against them before any file is touched.
"""

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEDUPLICATION_THRESHOLD, DEFAULT_EXPORT_FILENAME, DEFAULT_FUZZY_MIN_SCORE
from .models import (
    ContextStatus,
    Entity,
    ObservationAddition,
    ObservationDeletion,
    Relation,
)


class ProjectArgs(BaseModel):
    """Arguments shared by every tool."""

    model_config = ConfigDict(populate_by_name=True)

    project_path: str = Field(
        alias="projectPath",
        description="Absolute path to the project root.",
    )
    confirm_new_project_root: str | None = Field(
        default=None,
        alias="confirmNewProjectRoot",
        description=(
            "Only when initializing a new project: the 'detectedRoot' path "
            "returned by the server's confirmation request."
        ),
    )


class PageArgs(ProjectArgs):
    limit: int | None = Field(default=None, gt=0, description="Maximum number of entities to return.")
    offset: int = Field(default=0, ge=0, description="Number of entities to skip.")


class AddEntitiesArgs(ProjectArgs):
    entities: list[Entity]


class AddObservationsArgs(ProjectArgs):
    observations: list[ObservationAddition]


class CreateRelationsArgs(ProjectArgs):
    relations: list[Relation]


class ReadGraphArgs(PageArgs):
    summary_mode: bool = Field(
        default=False,
        alias="summaryMode",
        description="Return entity names and types only, without observations.",
    )


class GetGraphSummaryArgs(PageArgs):
    pass


class SearchArgs(PageArgs):
    query: str = Field(description="Keywords matched against entity names, types and observations.")
    fuzzy: bool = Field(
        default=False,
        description="Rank by fuzzy similarity (typo tolerant) instead of substring match.",
    )
    min_score: float = Field(
        default=DEFAULT_FUZZY_MIN_SCORE,
        ge=0.0,
        le=1.0,
        alias="minScore",
        description="Minimum fuzzy relevance score 0-1.",
    )


class DeleteEntitiesArgs(ProjectArgs):
    entity_names: list[str] = Field(alias="entityNames", description="Names of entities to delete.")


class DeleteObservationsArgs(ProjectArgs):
    deletions: list[ObservationDeletion]


class DeleteRelationsArgs(ProjectArgs):
    relations: list[Relation]


class OpenNodesArgs(ProjectArgs):
    names: list[str] = Field(description="Names of entities to retrieve.")


class ExportMarkdownArgs(ProjectArgs):
    output_path: str | None = Field(
        default=None,
        alias="outputPath",
        description=f"Output file relative to the project root (default {DEFAULT_EXPORT_FILENAME}).",
    )


class UpdateContextArgs(ProjectArgs):
    active_task: str | None = Field(default=None, alias="activeTask", description="Current task.")
    status: ContextStatus | None = Field(default=None, description="Current project status.")
    reason: str | None = Field(default=None, description="Reason for the status, especially BLOCKED.")
    next_steps: list[str] | None = Field(default=None, alias="nextSteps", description="Planned next actions.")
    last_commit: str | None = Field(default=None, alias="lastCommit", description="Last relevant git commit.")

    def context_fields(self) -> dict:
        """Supplied context fields only, keyed by alias."""
        return self.model_dump(
            by_alias=True,
            exclude_unset=True,
            exclude={"project_path", "confirm_new_project_root"},
        )


class CompactObservationsArgs(ProjectArgs):
    entity_names: list[str] | None = Field(
        default=None,
        alias="entityNames",
        description="Entities to compact (default: all).",
    )
    threshold: float = Field(default=DEDUPLICATION_THRESHOLD, ge=0.0, le=1.0)
