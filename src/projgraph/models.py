"""Core data models for the project knowledge graph.

Uses Pydantic v2 for validation. Field names are snake_case in Python and
camelCase on disk (aliases), so files stay compatible with other tools that
read ``.mcp/memory.json`` and ``.mcp/context.json``.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def unique_in_order(items: list[str]) -> list[str]:
    """Drop duplicate strings, keeping the first occurrence."""
    return list(dict.fromkeys(items))


class Entity(BaseModel):
    """A node in the knowledge graph, identified by its name."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    entity_type: str = Field(alias="entityType")  # free-form: COMPONENT, BUG, ...
    observations: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)

    def to_summary(self) -> dict:
        """Return a compact summary of this entity."""
        return {"name": self.name, "type": self.entity_type}


class Relation(BaseModel):
    """A directed, typed edge between two entity names.

    Endpoints are not required to exist; deleting an entity cascades to
    every relation that mentions it.
    """

    model_config = ConfigDict(populate_by_name=True)

    from_entity: str = Field(alias="from")
    to_entity: str = Field(alias="to")
    relation_type: str = Field(alias="relationType")

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity triple, also the storage sort key."""
        return (self.from_entity, self.to_entity, self.relation_type)

    def touches(self, names: set[str]) -> bool:
        """True if either endpoint is in ``names``."""
        return self.from_entity in names or self.to_entity in names

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class KnowledgeGraph(BaseModel):
    """Entities and relations of one project."""

    entities: list[Entity] = Field(default_factory=list)
    relations: list[Relation] = Field(default_factory=list)

    def get_entity(self, name: str) -> Entity | None:
        """Linear lookup by name (graphs are small)."""
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def has_relation(self, relation: Relation) -> bool:
        return any(r.key == relation.key for r in self.relations)

    def sort(self) -> None:
        """Put the graph in canonical storage order (in place).

        Entities by name, observations lexicographically, relations by
        (from, to, relationType).
        """
        self.entities.sort(key=lambda e: e.name)
        for entity in self.entities:
            entity.observations.sort()
        self.relations.sort(key=lambda r: r.key)

    def subgraph(self, names: set[str]) -> "KnowledgeGraph":
        """Entities named in ``names`` plus relations between them."""
        entities = [e for e in self.entities if e.name in names]
        kept = {e.name for e in entities}
        relations = [
            r for r in self.relations
            if r.from_entity in kept and r.to_entity in kept
        ]
        return KnowledgeGraph(entities=entities, relations=relations)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


ContextStatus = Literal[
    "IN_PROGRESS",
    "COMPLETED",
    "BLOCKED",
    "PLANNING",
]


class ProjectContext(BaseModel):
    """Hot project status: what is being worked on right now."""

    model_config = ConfigDict(populate_by_name=True)

    active_task: str | None = Field(default=None, alias="activeTask")
    status: ContextStatus = "PLANNING"
    reason: str | None = None  # why, especially when BLOCKED
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")
    last_commit: str | None = Field(default=None, alias="lastCommit")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")  # stamped on write

    def to_dict(self) -> dict:
        """Serialize for JSON storage (unset optionals omitted)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ContextUpdate(BaseModel):
    """Partial context update; only supplied fields overwrite.

    ``updatedAt`` is not accepted here, the write path stamps it.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    active_task: str | None = Field(default=None, alias="activeTask")
    status: ContextStatus | None = None
    reason: str | None = None
    next_steps: list[str] | None = Field(default=None, alias="nextSteps")
    last_commit: str | None = Field(default=None, alias="lastCommit")

    def apply_to(self, context: ProjectContext) -> ProjectContext:
        """Shallow-merge the supplied fields onto ``context``."""
        updates = self.model_dump(exclude_unset=True)
        if updates.get("status") is None:
            updates.pop("status", None)
        if updates.get("next_steps") is None and "next_steps" in updates:
            updates["next_steps"] = []
        return context.model_copy(update=updates)


class ObservationAddition(BaseModel):
    """Observations to add to one entity."""

    model_config = ConfigDict(populate_by_name=True)

    entity_name: str = Field(alias="entityName")
    contents: list[str]


class ObservationDeletion(BaseModel):
    """Observations to remove from one entity."""

    model_config = ConfigDict(populate_by_name=True)

    entity_name: str = Field(alias="entityName")
    observations: list[str]
