"""Canonical hierarchy builder and its lazy accessor."""

import asyncio
import time
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import bindparam, text

from ..domain.entities.hierarchy import (
    Built, CanonicalMake, CanonicalModel, Hierarchy, HierarchyState, NOT_YET_BUILT
)
from ..domain.value_objects.dimension import Dimension
from ..domain.value_objects.year_configuration import YearConfiguration
from ..infrastructure.repositories.row_store import RowStore
from .enumerator import DimensionEnumerator

logger = structlog.get_logger()

_CURATED_LEAVES_SQL = """
    SELECT make, model, make_id, model_id, fuel_type, vehicle_type, COUNT(*) AS record_count
    FROM vehicles
    WHERE year IN :years
      AND make IS NOT NULL
      AND model IS NOT NULL
    GROUP BY make, model, make_id, model_id, fuel_type, vehicle_type
"""


class HierarchyBuilder:
    """Builds the Make -> Model tree from curated-year rows."""

    def __init__(self, row_store: RowStore, enumerator: DimensionEnumerator):
        self.row_store = row_store
        self.enumerator = enumerator

    async def build(self, curated_years: Iterable[int]) -> Hierarchy:
        """
        Build the canonical hierarchy.

        Deterministic for identical rows: makes and models are sorted by
        text. No curated rows gives an empty hierarchy, not an error.
        """
        years = sorted(set(curated_years))
        if not years:
            logger.warning("No curated years configured, canonical hierarchy is empty")
            return Hierarchy.empty()

        start_time = time.time()
        # leaves carry make/model ids, so both must be enumerated first
        await self.enumerator.load_table(Dimension.MAKE)
        await self.enumerator.load_table(Dimension.MODEL)

        statement = text(_CURATED_LEAVES_SQL).bindparams(bindparam("years", expanding=True))
        rows = await self.row_store.fetch_all(statement, {"years": years})

        leaves: Dict[Tuple[str, str], Dict] = {}
        make_ids: Dict[str, Optional[int]] = {}
        for row in rows:
            key = (row["make"], row["model"])
            leaf = leaves.setdefault(key, {
                "make_id": row["make_id"],
                "model_id": row["model_id"],
                "fuel_types": set(),
                "vehicle_types": set(),
                "record_count": 0,
            })
            if row["fuel_type"]:
                leaf["fuel_types"].add(row["fuel_type"])
            if row["vehicle_type"]:
                leaf["vehicle_types"].add(row["vehicle_type"])
            leaf["record_count"] += row["record_count"]
            make_ids.setdefault(row["make"], row["make_id"])

        models_by_make: Dict[str, List[CanonicalModel]] = defaultdict(list)
        for (make, model), leaf in sorted(leaves.items()):
            models_by_make[make].append(CanonicalModel(
                make=make,
                name=model,
                make_id=leaf["make_id"],
                model_id=leaf["model_id"],
                fuel_types=tuple(sorted(leaf["fuel_types"])),
                vehicle_types=tuple(sorted(leaf["vehicle_types"])),
                record_count=leaf["record_count"],
            ))

        hierarchy = Hierarchy(
            makes=tuple(
                CanonicalMake(name=make, make_id=make_ids.get(make), models=tuple(models))
                for make, models in sorted(models_by_make.items())
            ),
            curated_years=frozenset(years),
        )

        logger.info(
            "Canonical hierarchy built",
            curated_years=years,
            makes=len(hierarchy.makes),
            models=hierarchy.leaf_count,
            build_time_ms=(time.time() - start_time) * 1000
        )
        return hierarchy


class HierarchyAccessor:
    """
    Explicit on-demand access to the canonical hierarchy.

    The state is NotYetBuilt until a caller triggers the build through
    ensure(); changing the year configuration resets it.
    """

    def __init__(self, builder: HierarchyBuilder, year_config: YearConfiguration):
        self.builder = builder
        self._year_config = year_config
        self._state: HierarchyState = NOT_YET_BUILT
        self._build_lock = asyncio.Lock()

    @property
    def state(self) -> HierarchyState:
        return self._state

    @property
    def year_config(self) -> YearConfiguration:
        return self._year_config

    def current(self) -> Optional[Hierarchy]:
        """The built hierarchy, or None without triggering a build."""
        if isinstance(self._state, Built):
            return self._state.hierarchy
        return None

    async def ensure(self) -> Hierarchy:
        state = self._state
        if isinstance(state, Built):
            return state.hierarchy

        async with self._build_lock:
            state = self._state
            if isinstance(state, Built):
                return state.hierarchy
            hierarchy = await self.builder.build(self._year_config.curated_years)
            self._state = Built(hierarchy)
            return hierarchy

    def reset(self, year_config: Optional[YearConfiguration] = None) -> None:
        if year_config is not None:
            self._year_config = year_config
        self._state = NOT_YET_BUILT
