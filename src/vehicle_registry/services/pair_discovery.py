"""Discovery of (make, model) pairs in uncurated years."""

from typing import List

import structlog
from sqlalchemy import bindparam, text

from ..domain.entities.mapping import UncuratedPair
from ..domain.value_objects.dimension import Dimension
from ..infrastructure.repositories.row_store import RowStore
from .enumerator import DimensionEnumerator
from .hierarchy_builder import HierarchyAccessor

logger = structlog.get_logger()

_UNCURATED_PAIRS_SQL = """
    SELECT make_id, model_id, make, model,
           COUNT(*) AS record_count,
           MIN(year) AS earliest_year,
           MAX(year) AS latest_year
    FROM vehicles
    WHERE year IN :years
      AND make_id IS NOT NULL
      AND model_id IS NOT NULL
    GROUP BY make_id, model_id, make, model
"""


class PairDiscovery:
    def __init__(self, row_store: RowStore, enumerator: DimensionEnumerator, hierarchy: HierarchyAccessor):
        self.row_store = row_store
        self.enumerator = enumerator
        self.hierarchy = hierarchy

    async def find_uncurated_pairs(self, include_exact_matches: bool = True) -> List[UncuratedPair]:
        """
        Distinct (make, model) pairs of the uncurated years.

        Ordered by record count (descending), then make and model text.
        include_exact_matches=False hides pairs whose text equals a
        canonical pair. That is a view filter: regularization sweeps
        always scan with include_exact_matches=True.
        """
        years = self.hierarchy.year_config.resolve_uncurated(await self.row_store.years())
        if not years:
            logger.info("No uncurated years to scan")
            return []

        await self.enumerator.load_table(Dimension.MAKE)
        await self.enumerator.load_table(Dimension.MODEL)

        statement = text(_UNCURATED_PAIRS_SQL).bindparams(bindparam("years", expanding=True))
        rows = await self.row_store.fetch_all(statement, {"years": years})
        total = sum(row["record_count"] for row in rows)

        pairs = [
            UncuratedPair(
                make_id=row["make_id"],
                model_id=row["model_id"],
                make_text=row["make"],
                model_text=row["model"],
                record_count=row["record_count"],
                earliest_year=row["earliest_year"],
                latest_year=row["latest_year"],
                percentage_of_total=(row["record_count"] * 100.0 / total) if total else 0.0,
            )
            for row in rows
        ]

        if not include_exact_matches:
            hierarchy = await self.hierarchy.ensure()
            pairs = [pair for pair in pairs if not hierarchy.contains(pair.make_text, pair.model_text)]

        pairs.sort(key=lambda pair: (-pair.record_count, pair.make_text, pair.model_text))

        logger.debug(
            "Uncurated pairs discovered",
            years=years,
            pair_count=len(pairs),
            include_exact_matches=include_exact_matches
        )
        return pairs
