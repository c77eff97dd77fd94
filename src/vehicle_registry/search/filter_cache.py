"""Filter cache: enumerated domains and parent -> child relationships for filter controls."""

import asyncio
import enum
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import bindparam, text

from ..domain.value_objects.dimension import (
    DIMENSIONS, RELATIONSHIPS, Dimension, DimensionSpec, resolve_dimension
)
from ..domain.value_objects.year_configuration import YearConfiguration
from ..errors import InvalidFilterError, StaleCacheError, UnknownValue
from ..infrastructure.repositories.mapping_repository import MappingRepository
from ..infrastructure.repositories.row_store import RowStore
from ..models import FilterItem
from ..services.enumerator import DimensionEnumerator
from ..utils.logging import cache_logger

logger = structlog.get_logger()


class CacheScope(str, enum.Enum):
    """Parts of the cache a mutation can invalidate."""
    ENUMERATION = "enumeration"      # dimension domains (and everything keyed by their ids)
    RELATIONSHIPS = "relationships"  # parent -> child indexes and curated-year membership
    MAPPINGS = "mappings"            # regularization annotations


ALL_SCOPES = frozenset(CacheScope)

RelationshipIndex = Dict[int, FrozenSet[int]]


@dataclass(frozen=True)
class FilterSnapshot:
    """Immutable cache contents. Replaced as a whole, never mutated."""

    generation: int
    # dimension -> items in display order
    domains: Dict[str, Tuple[FilterItem, ...]] = field(default_factory=dict)
    # dimension -> id -> display position
    positions: Dict[str, Dict[int, int]] = field(default_factory=dict)
    # (parent, child) -> parent id -> child ids
    relationships: Dict[Tuple[str, str], RelationshipIndex] = field(default_factory=dict)
    # dimension -> ids present in curated years
    curated_ids: Dict[str, FrozenSet[int]] = field(default_factory=dict)
    # dimension -> id -> canonical text, for uncurated values mapped onto a different canonical value
    regularized: Dict[str, Dict[int, str]] = field(default_factory=dict)


class FilterCache:
    """
    Read-through cache over the row store and the mapping store.

    Every domain and relationship is loaded in one query per dimension or
    relationship when the cache is (re)built. A rebuild only reloads the
    invalidated scopes, copies everything else from the previous snapshot,
    and publishes the result with a single pointer swap. A cancelled
    rebuild leaves the previous snapshot and the pending invalidation in
    place.
    """

    def __init__(self,
                 row_store: RowStore,
                 enumerator: DimensionEnumerator,
                 mapping_repository: MappingRepository,
                 year_config: Callable[[], YearConfiguration]):
        self.row_store = row_store
        self.enumerator = enumerator
        self.mapping_repository = mapping_repository
        self._year_config = year_config

        self._snapshot: Optional[FilterSnapshot] = None
        self._generation = 0
        # scope -> invalidation counter, cleared only by a rebuild that saw the same counter
        self._pending: Dict[CacheScope, int] = {scope: 1 for scope in CacheScope}
        self._swap_lock = threading.Lock()
        self._rebuild_lock = asyncio.Lock()

    # --- state ---

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def pending_scopes(self) -> FrozenSet[CacheScope]:
        with self._swap_lock:
            return frozenset(self._pending)

    def invalidate(self, *scopes: CacheScope) -> None:
        """Mark scopes stale. No scopes means everything."""
        targets = scopes or tuple(CacheScope)
        with self._swap_lock:
            for scope in targets:
                self._pending[scope] = self._pending.get(scope, 0) + 1
        logger.debug("Filter cache invalidated", scopes=[scope.value for scope in targets])

    def _is_current(self, snapshot: FilterSnapshot) -> bool:
        with self._swap_lock:
            return snapshot is self._snapshot and not self._pending

    # --- building ---

    async def initialize(self) -> FilterSnapshot:
        return await self.snapshot()

    async def snapshot(self) -> FilterSnapshot:
        """Current snapshot, rebuilding the stale scopes first if needed."""
        with self._swap_lock:
            snapshot = self._snapshot
            stale = bool(self._pending)
        if snapshot is not None and not stale:
            return snapshot
        return await self._rebuild()

    async def _rebuild(self) -> FilterSnapshot:
        async with self._rebuild_lock:
            with self._swap_lock:
                previous = self._snapshot
                started = dict(self._pending)
            if previous is not None and not started:
                return previous

            scopes = set(started) if previous is not None else set(ALL_SCOPES)
            # every id-keyed structure depends on the enumeration
            if CacheScope.ENUMERATION in scopes:
                scopes = set(ALL_SCOPES)

            generation = self._generation + 1
            cache_logger.log_rebuild_start(sorted(scope.value for scope in scopes), generation)
            start_time = time.time()

            try:
                if CacheScope.ENUMERATION in scopes:
                    domains, positions = await self._load_domains()
                else:
                    domains, positions = previous.domains, previous.positions

                if CacheScope.RELATIONSHIPS in scopes:
                    relationships = await self._load_relationships()
                    curated_ids = await self._load_curated_ids()
                else:
                    relationships, curated_ids = previous.relationships, previous.curated_ids

                if CacheScope.MAPPINGS in scopes:
                    regularized = await self._load_regularized()
                else:
                    regularized = previous.regularized
            except asyncio.CancelledError:
                cache_logger.log_rebuild_cancelled(generation)
                raise

            snapshot = FilterSnapshot(
                generation=generation,
                domains=domains,
                positions=positions,
                relationships=relationships,
                curated_ids=curated_ids,
                regularized=regularized,
            )

            with self._swap_lock:
                self._snapshot = snapshot
                self._generation = generation
                for scope, counter in started.items():
                    if self._pending.get(scope) == counter:
                        del self._pending[scope]

            cache_logger.log_rebuild_complete(
                generation, len(domains), len(relationships), (time.time() - start_time) * 1000
            )
            return snapshot

    async def _load_domains(self) -> Tuple[Dict[str, Tuple[FilterItem, ...]], Dict[str, Dict[int, int]]]:
        domains: Dict[str, Tuple[FilterItem, ...]] = {}
        positions: Dict[str, Dict[int, int]] = {}
        for spec in DIMENSIONS.values():
            table = await self.enumerator.load_table(spec.dimension, refresh=not spec.categorical)
            items = tuple(
                FilterItem(id=value_id, text=value, label=value)
                for value_id, value in table.sorted_items()
            )
            domains[spec.name] = items
            positions[spec.name] = {item.id: index for index, item in enumerate(items)}
        return domains, positions

    async def _load_relationships(self) -> Dict[Tuple[str, str], RelationshipIndex]:
        relationships: Dict[Tuple[str, str], RelationshipIndex] = {}
        for parent, child in RELATIONSHIPS:
            parent_column = DIMENSIONS[parent].id_column
            child_column = DIMENSIONS[child].id_column
            # Column names come from the dimension registry only
            rows = await self.row_store.fetch_all(text(
                f"SELECT DISTINCT {parent_column} AS parent_id, {child_column} AS child_id "
                f"FROM vehicles WHERE {parent_column} IS NOT NULL AND {child_column} IS NOT NULL"
            ))
            index: Dict[int, set] = {}
            for row in rows:
                index.setdefault(row["parent_id"], set()).add(row["child_id"])
            relationships[(parent.value, child.value)] = {key: frozenset(ids) for key, ids in index.items()}
        return relationships

    async def _load_curated_ids(self) -> Dict[str, FrozenSet[int]]:
        curated_years = sorted(self._year_config().curated_years)
        curated_ids: Dict[str, FrozenSet[int]] = {}
        for spec in DIMENSIONS.values():
            if not curated_years:
                curated_ids[spec.name] = frozenset()
                continue
            rows = await self.row_store.fetch_all(
                text(
                    f"SELECT DISTINCT {spec.id_column} AS value_id FROM vehicles "
                    f"WHERE year IN :years AND {spec.id_column} IS NOT NULL"
                ).bindparams(bindparam("years", expanding=True)),
                {"years": curated_years},
            )
            curated_ids[spec.name] = frozenset(row["value_id"] for row in rows)
        return curated_ids

    async def _load_regularized(self) -> Dict[str, Dict[int, str]]:
        makes: Dict[int, str] = {}
        models: Dict[int, str] = {}
        for mapping in await self.mapping_repository.load_mappings():
            if mapping.uncurated_make_id is not None and mapping.uncurated_make_id != mapping.canonical_make_id:
                makes[mapping.uncurated_make_id] = mapping.canonical_make
            if mapping.uncurated_model_id is not None and mapping.uncurated_model_id != mapping.canonical_model_id:
                models[mapping.uncurated_model_id] = mapping.canonical_model
        return {Dimension.MAKE.value: makes, Dimension.MODEL.value: models}

    # --- reads ---

    async def get_available(self,
                            dimension,
                            constrained_by: Optional[Iterable[int]] = None,
                            limit_to_curated_years: bool = False) -> List[FilterItem]:
        """
        Selectable values of a dimension, in display order.

        With an empty or absent constraint the full domain is returned.
        Otherwise the result is the union of the children of the given
        parent ids. A read that finds its snapshot superseded is retried
        once against the fresh one.
        """
        try:
            spec = resolve_dimension(dimension)
        except UnknownValue:
            raise InvalidFilterError(f"Unknown dimension: {dimension}", dimension=str(dimension)) from None
        constraint = frozenset(constrained_by or ())

        snapshot = await self.snapshot()
        try:
            return self._read_available(snapshot, spec, constraint, limit_to_curated_years, verify=True)
        except StaleCacheError as e:
            cache_logger.log_stale_retry(e.held_generation, e.current_generation)
            snapshot = await self.snapshot()
            return self._read_available(snapshot, spec, constraint, limit_to_curated_years, verify=False)

    def _read_available(self,
                        snapshot: FilterSnapshot,
                        spec: DimensionSpec,
                        constraint: FrozenSet[int],
                        limit_to_curated_years: bool,
                        verify: bool) -> List[FilterItem]:
        domain = snapshot.domains.get(spec.name, ())

        if not constraint:
            items = list(domain)
        else:
            if spec.parent is None:
                raise InvalidFilterError(
                    f"Dimension {spec.name} has no parent to be constrained by", dimension=spec.name
                )
            index = snapshot.relationships.get((spec.parent.value, spec.name), {})
            child_ids = set()
            for parent_id in constraint:
                child_ids.update(index.get(parent_id, ()))
            positions = snapshot.positions.get(spec.name, {})
            ordered = sorted((positions[child_id] for child_id in child_ids if child_id in positions))
            items = [domain[position] for position in ordered]

        if limit_to_curated_years:
            curated = snapshot.curated_ids.get(spec.name, frozenset())
            items = [item for item in items if item.id in curated]

        result = self._annotate(snapshot, spec, items)

        if verify and not self._is_current(snapshot):
            raise StaleCacheError(snapshot.generation, self._generation)
        return result

    def _annotate(self, snapshot: FilterSnapshot, spec: DimensionSpec, items: List[FilterItem]) -> List[FilterItem]:
        regularized = snapshot.regularized.get(spec.name, {})
        curated = snapshot.curated_ids.get(spec.name)
        track_curation = spec.dimension in (Dimension.MAKE, Dimension.MODEL) and curated is not None
        if not regularized and not track_curation:
            return items

        annotated = []
        for item in items:
            canonical = regularized.get(item.id)
            uncurated_only = track_curation and item.id not in curated
            if canonical is None and not uncurated_only:
                annotated.append(item)
                continue
            label = f"{item.text} → {canonical}" if canonical and canonical != item.text else item.text
            annotated.append(item.model_copy(update={
                "label": label,
                "is_regularized": canonical is not None,
                "canonical_text": canonical,
                "is_uncurated_only": uncurated_only,
            }))
        return annotated

    def get_cache_stats(self) -> Dict[str, object]:
        snapshot = self._snapshot
        return {
            "loaded": self.is_loaded,
            "generation": self._generation,
            "pending_scopes": sorted(scope.value for scope in self.pending_scopes()),
            "dimensions": {name: len(items) for name, items in snapshot.domains.items()} if snapshot else {},
            "relationships": [f"{parent}->{child}" for parent, child in snapshot.relationships] if snapshot else [],
        }
