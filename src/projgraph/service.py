"""Memory service: per-project snapshot cache and serialized write path.

One MemoryService mediates all graph/context access for every project the
process knows about.

Reads are served from an in-memory snapshot that stays valid until the
backing file's modification time changes. Reads never take locks and may
briefly observe a stale snapshot.

Every mutation runs as a write transaction:
1. per-project, per-document asyncio.Lock (FIFO within the process)
2. cross-process lease on the document (bounded retries)
3. re-read the authoritative file, never the cache
4. apply the mutation, write atomically, replace the snapshot
5. release the lease, then the in-process lock

Graph and context writes for the same project use separate locks and
separate leases, so they do not block each other.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, TypeVar

from pydantic import BaseModel

from . import storage
from .config import Settings
from .constants import DEDUPLICATION_THRESHOLD, DEFAULT_FUZZY_MIN_SCORE
from .exceptions import ProjgraphError
from .locking import FileLease, hold_lease
from .models import (
    ContextUpdate,
    Entity,
    KnowledgeGraph,
    ObservationAddition,
    ObservationDeletion,
    ProjectContext,
    Relation,
    unique_in_order,
)
from .similarity import deduplicate_observations, fuzzy_match_score

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass
class ProjectState:
    """Cached state of one project.

    Snapshots are shared with readers and must not be mutated; the write
    path replaces them with freshly read and written objects.
    """

    graph: KnowledgeGraph | None = None
    graph_mtime: int | None = None
    context: ProjectContext | None = None
    context_mtime: int | None = None
    graph_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    context_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # writers holding or queued on either lock
    writers: int = 0

    def is_busy(self) -> bool:
        """True while a write transaction holds or waits on either lock.

        A released lock reads as unlocked until its next waiter runs, so
        queued writers are counted separately.
        """
        return self.writers > 0 or self.graph_lock.locked() or self.context_lock.locked()


class MemoryService:
    """Snapshot cache and write coordinator for project memory.

    Lifecycle: one instance per process, obtained with get_service() or
    constructed and passed around explicitly. Call shutdown() before exit.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()
        self._projects: OrderedDict[str, ProjectState] = OrderedDict()
        self._active_leases: dict[Path, FileLease] = {}

    # --- Project tracking (LRU) ---

    @property
    def tracked_projects(self) -> list[str]:
        """Tracked project keys, least recently used first."""
        return list(self._projects)

    @property
    def active_leases(self) -> dict[Path, FileLease]:
        return dict(self._active_leases)

    def _key(self, project_path: str | Path) -> str:
        return str(Path(project_path).resolve())

    def _touch(self, key: str) -> ProjectState:
        """Mark a project most recently used, creating its state if needed."""
        state = self._projects.get(key)
        if state is None:
            state = ProjectState()
            self._projects[key] = state
        self._projects.move_to_end(key)
        self._evict(keep=key)
        return state

    def _evict(self, keep: str | None = None) -> None:
        """Drop least recently used projects above the cap.

        ``keep`` and projects with a write in flight are skipped so their
        lock is never replaced mid-transaction. Only cache entries go; disk
        is untouched.
        """
        excess = len(self._projects) - self.settings.max_projects
        if excess <= 0:
            return
        for key in list(self._projects):
            if excess == 0:
                break
            if key == keep or self._projects[key].is_busy():
                continue
            del self._projects[key]
            excess -= 1
            logger.debug(f"Evicted project cache for {key}")

    # --- Snapshots ---

    async def load_snapshot(self, project_path: str | Path) -> KnowledgeGraph:
        """Current graph, re-read only when the file's mtime changed.

        Missing files yield an empty graph. Corrupt files are logged and
        yield an empty graph (or raise CorruptDataError with strict_reads).
        """
        key = self._key(project_path)
        state = self._touch(key)
        graph, mtime = await self._refresh(
            storage.graph_path(key), storage.load_graph, key,
            state.graph, state.graph_mtime, KnowledgeGraph,
        )
        state.graph, state.graph_mtime = graph, mtime
        return graph

    async def load_context_snapshot(self, project_path: str | Path) -> ProjectContext:
        """Current context, same caching contract as load_snapshot."""
        key = self._key(project_path)
        state = self._touch(key)
        context, mtime = await self._refresh(
            storage.context_path(key), storage.load_context, key,
            state.context, state.context_mtime, storage.default_context,
        )
        state.context, state.context_mtime = context, mtime
        return context

    async def get_graph(self, project_path: str | Path) -> KnowledgeGraph:
        """Cached graph if present, else load it."""
        state = self._projects.get(self._key(project_path))
        if state is not None and state.graph is not None:
            return state.graph
        return await self.load_snapshot(project_path)

    async def get_context(self, project_path: str | Path) -> ProjectContext:
        """Cached context if present, else load it."""
        state = self._projects.get(self._key(project_path))
        if state is not None and state.context is not None:
            return state.context
        return await self.load_context_snapshot(project_path)

    async def _refresh(self, path: Path, loader, key: str, cached, cached_mtime, default):
        """Return (value, mtime) for a document, hitting disk only when stale."""
        mtime = await asyncio.to_thread(_mtime_ns, path)
        if mtime is None:
            return default(), None
        if cached is not None and cached_mtime == mtime:
            return cached, cached_mtime

        result = await asyncio.to_thread(loader, key)
        if result.is_corrupt:
            logger.error(f"Failed to load snapshot {path}: {result.error}")
            if self.settings.strict_reads:
                result.unwrap()
            # no mtime recorded, so the next read retries the file
            return result.value, None
        return result.value, mtime

    # --- Write transactions ---

    @asynccontextmanager
    async def _lease(self, target: Path) -> AsyncIterator[FileLease]:
        """Cross-process lease tracked for forced release on shutdown."""
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        async with hold_lease(target, **self.settings.lock_options()) as lease:
            self._active_leases[target] = lease
            try:
                yield lease
            finally:
                self._active_leases.pop(target, None)

    async def _write_graph(
        self,
        project_path: str | Path,
        mutate: Callable[[KnowledgeGraph], T],
    ) -> T:
        """Run ``mutate`` on the authoritative graph and persist the result."""
        key = self._key(project_path)
        state = self._touch(key)
        target = storage.graph_path(key)

        state.writers += 1
        try:
            async with state.graph_lock:
                try:
                    async with self._lease(target):
                        graph = await asyncio.to_thread(storage.read_graph, key)
                        result = mutate(graph)
                        await asyncio.to_thread(storage.write_graph, key, graph)
                        mtime = await asyncio.to_thread(_mtime_ns, target)
                        state.graph, state.graph_mtime = graph, mtime
                except (ProjgraphError, OSError) as e:
                    logger.error(f"Graph write failed for {key}: {e}")
                    raise
        finally:
            state.writers -= 1
        return result

    async def _write_context(
        self,
        project_path: str | Path,
        mutate: Callable[[ProjectContext], ProjectContext],
    ) -> ProjectContext:
        """Run ``mutate`` on the authoritative context and persist it."""
        key = self._key(project_path)
        state = self._touch(key)
        target = storage.context_path(key)

        state.writers += 1
        try:
            async with state.context_lock:
                try:
                    async with self._lease(target):
                        current = await asyncio.to_thread(storage.read_context, key)
                        written = await asyncio.to_thread(storage.write_context, key, mutate(current))
                        mtime = await asyncio.to_thread(_mtime_ns, target)
                        state.context, state.context_mtime = written, mtime
                except (ProjgraphError, OSError) as e:
                    logger.error(f"Context write failed for {key}: {e}")
                    raise
        finally:
            state.writers -= 1
        return written

    # --- Mutations ---

    async def add_entities(self, project_path: str | Path, entities: list[Entity | dict]) -> None:
        """Add entities, merging observations into same-named existing ones."""
        incoming = _coerce(Entity, entities)

        def merge(graph: KnowledgeGraph) -> None:
            for new in incoming:
                existing = graph.get_entity(new.name)
                if existing is not None:
                    existing.observations = unique_in_order(existing.observations + new.observations)
                else:
                    graph.entities.append(
                        new.model_copy(update={"observations": unique_in_order(new.observations)})
                    )

        await self._write_graph(project_path, merge)

    async def add_observations(
        self,
        project_path: str | Path,
        observations: list[ObservationAddition | dict],
    ) -> int:
        """Add observations to existing entities. Returns net-new count.

        Unknown entity names are skipped.
        """
        additions = _coerce(ObservationAddition, observations)

        def add(graph: KnowledgeGraph) -> int:
            added = 0
            for addition in additions:
                entity = graph.get_entity(addition.entity_name)
                if entity is None:
                    continue
                before = len(entity.observations)
                entity.observations = unique_in_order(entity.observations + addition.contents)
                added += len(entity.observations) - before
            return added

        return await self._write_graph(project_path, add)

    async def create_relations(
        self,
        project_path: str | Path,
        relations: list[Relation | dict],
    ) -> int:
        """Add relations whose (from, to, relationType) is new. Returns count added."""
        incoming = _coerce(Relation, relations)

        def create(graph: KnowledgeGraph) -> int:
            created = 0
            for relation in incoming:
                if not graph.has_relation(relation):
                    graph.relations.append(relation.model_copy())
                    created += 1
            return created

        return await self._write_graph(project_path, create)

    async def delete_entities(self, project_path: str | Path, entity_names: list[str]) -> int:
        """Delete entities and every relation touching them. Returns count deleted."""
        names = set(entity_names)

        def delete(graph: KnowledgeGraph) -> int:
            before = len(graph.entities)
            graph.entities = [e for e in graph.entities if e.name not in names]
            graph.relations = [r for r in graph.relations if not r.touches(names)]
            return before - len(graph.entities)

        return await self._write_graph(project_path, delete)

    async def delete_observations(
        self,
        project_path: str | Path,
        deletions: list[ObservationDeletion | dict],
    ) -> int:
        """Remove listed observations from named entities. Returns count removed."""
        requested = _coerce(ObservationDeletion, deletions)

        def delete(graph: KnowledgeGraph) -> int:
            removed = 0
            for deletion in requested:
                entity = graph.get_entity(deletion.entity_name)
                if entity is None:
                    continue
                drop = set(deletion.observations)
                before = len(entity.observations)
                entity.observations = [o for o in entity.observations if o not in drop]
                removed += before - len(entity.observations)
            return removed

        return await self._write_graph(project_path, delete)

    async def delete_relations(
        self,
        project_path: str | Path,
        relations: list[Relation | dict],
    ) -> int:
        """Remove relations matching the given triples exactly. Returns count removed."""
        keys = {r.key for r in _coerce(Relation, relations)}

        def delete(graph: KnowledgeGraph) -> int:
            before = len(graph.relations)
            graph.relations = [r for r in graph.relations if r.key not in keys]
            return before - len(graph.relations)

        return await self._write_graph(project_path, delete)

    async def compact_observations(
        self,
        project_path: str | Path,
        entity_names: list[str] | None = None,
        threshold: float = DEDUPLICATION_THRESHOLD,
    ) -> int:
        """Collapse near-duplicate observations. Returns count removed.

        Args:
            project_path: Project root
            entity_names: Entities to compact (default: all)
            threshold: Similarity threshold for deduplicate_observations
        """
        selected = set(entity_names) if entity_names is not None else None

        def compact(graph: KnowledgeGraph) -> int:
            removed = 0
            for entity in graph.entities:
                if selected is not None and entity.name not in selected:
                    continue
                kept = deduplicate_observations(entity.observations, threshold)
                removed += len(entity.observations) - len(kept)
                entity.observations = kept
            return removed

        return await self._write_graph(project_path, compact)

    async def update_context(
        self,
        project_path: str | Path,
        update: ContextUpdate | dict,
    ) -> ProjectContext:
        """Shallow-merge ``update`` onto the stored context and persist it.

        Returns:
            The context as written, with a fresh ``updated_at``
        """
        if not isinstance(update, ContextUpdate):
            update = ContextUpdate.model_validate(update)
        return await self._write_context(project_path, update.apply_to)

    # --- Queries (snapshot reads, no locks) ---

    async def get_complete_state(
        self,
        project_path: str | Path,
        summary_mode: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict:
        """Graph page plus context.

        Relations are limited to those with both endpoints on the page. In
        summary mode observations are stripped from the returned entities.
        """
        graph, context = await asyncio.gather(
            self.load_snapshot(project_path),
            self.load_context_snapshot(project_path),
        )
        page, total, truncated = paginate(graph.entities, limit, offset)
        on_page = {e.name for e in page}

        if summary_mode:
            entities = [{"name": e.name, "entityType": e.entity_type, "observations": []} for e in page]
        else:
            entities = [e.to_dict() for e in page]

        return {
            "graph": {
                "entities": entities,
                "relations": [
                    r.to_dict() for r in graph.relations
                    if r.from_entity in on_page and r.to_entity in on_page
                ],
            },
            "context": context.to_dict(),
            "totalEntityCount": total,
            "isTruncated": truncated,
        }

    async def get_graph_summary(
        self,
        project_path: str | Path,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict:
        """Paginated entity names/types plus whole-graph counts."""
        graph = await self.load_snapshot(project_path)
        page, total, truncated = paginate(graph.entities, limit, offset)
        return {
            "entities": [e.to_summary() for e in page],
            "relationCount": len(graph.relations),
            "totalEntityCount": total,
            "isTruncated": truncated,
        }

    async def search(
        self,
        project_path: str | Path,
        query: str,
        limit: int | None = None,
        offset: int = 0,
        fuzzy: bool = False,
        min_score: float = DEFAULT_FUZZY_MIN_SCORE,
    ) -> dict:
        """Search entities by name, type and observations.

        Keyword mode is a case-insensitive substring match. Fuzzy mode ranks
        entities by their best fuzzy_match_score and keeps those scoring at
        least ``min_score``.

        Relations are included when a field contains the query or either
        endpoint is among the returned entities.
        """
        graph = await self.load_snapshot(project_path)
        query_lower = query.lower()
        scores: dict[str, float] = {}

        if fuzzy:
            for entity in graph.entities:
                score = _best_score(query, entity)
                if score >= min_score:
                    scores[entity.name] = round(score, 3)
            matches = sorted(
                (e for e in graph.entities if e.name in scores),
                key=lambda e: -scores[e.name],
            )
        else:
            matches = [e for e in graph.entities if _entity_contains(e, query_lower)]

        page, total, truncated = paginate(matches, limit, offset)
        on_page = {e.name for e in page}
        relations = [
            r for r in graph.relations
            if query_lower in r.from_entity.lower()
            or query_lower in r.to_entity.lower()
            or query_lower in r.relation_type.lower()
            or r.touches(on_page)
        ]

        result = {
            "graph": {
                "entities": [e.to_dict() for e in page],
                "relations": [r.to_dict() for r in relations],
            },
            "totalResults": total,
            "isTruncated": truncated,
        }
        if fuzzy:
            result["scores"] = {e.name: scores[e.name] for e in page}
        return result

    async def open_nodes(self, project_path: str | Path, names: list[str]) -> KnowledgeGraph:
        """Entities by exact name plus the relations among them."""
        if not names:
            return KnowledgeGraph()
        graph = await self.load_snapshot(project_path)
        return graph.subgraph(set(names))

    async def export_markdown(
        self,
        project_path: str | Path,
        output_path: str | Path | None = None,
    ) -> Path:
        """Write the graph as Markdown. Returns the written file path."""
        return await asyncio.to_thread(
            storage.export_to_markdown, self._key(project_path), output_path
        )

    # --- Lifecycle ---

    async def shutdown(self) -> int:
        """Force-release every tracked cross-process lease.

        Release failures are logged and ignored. Returns the number of
        leases that were tracked.
        """
        leases = list(self._active_leases.values())
        logger.info(f"Shutting down, releasing {len(leases)} locks")
        for lease in leases:
            try:
                lease.release()
            except OSError as e:
                logger.debug(f"Ignoring lock release failure for {lease.target}: {e}")
        self._active_leases.clear()
        return len(leases)


# --- Process-wide instance ---

_service: MemoryService | None = None


def get_service() -> MemoryService:
    """Return the process-wide service, creating it from the environment."""
    global _service
    if _service is None:
        _service = MemoryService(Settings.from_env())
    return _service


def reset_service(settings: Settings | None = None) -> MemoryService:
    """Replace the process-wide service (test isolation)."""
    global _service
    _service = MemoryService(settings or Settings.from_env())
    return _service


# --- Helpers ---


def paginate(items: list[T], limit: int | None, offset: int = 0) -> tuple[list[T], int, bool]:
    """Slice ``items`` into a page.

    A missing or zero limit means "everything from offset".

    Returns:
        (page, total, is_truncated)
    """
    total = len(items)
    offset = max(offset or 0, 0)
    limit = limit or total
    return items[offset:offset + limit], total, offset + limit < total


def _mtime_ns(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


def _coerce(model: type[M], items: list) -> list[M]:
    """Validate loosely typed payloads before any lock is taken."""
    return [item if isinstance(item, model) else model.model_validate(item) for item in items]


def _entity_contains(entity: Entity, query_lower: str) -> bool:
    if query_lower in entity.name.lower() or query_lower in entity.entity_type.lower():
        return True
    return any(query_lower in obs.lower() for obs in entity.observations)


def _best_score(query: str, entity: Entity) -> float:
    candidates = [entity.name, entity.entity_type, *entity.observations]
    return max(fuzzy_match_score(query, text) for text in candidates)
