"""Registry service: the operations exposed to the presentation layer."""

from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import text

from .domain.entities.mapping import Mapping, UncuratedPair
from .domain.value_objects.dimension import Dimension
from .domain.value_objects.regularization_status import RegularizationStatus
from .domain.value_objects.year_configuration import YearConfiguration
from .infrastructure.di_container import DIContainer
from .loader import load_csv
from .models import FilterConfiguration, FilterItem, MetricSpec, ResultSet, SweepReport
from .search.filter_cache import CacheScope
from .services.matching import FuzzyMatchStrategy, MatchCandidate

logger = structlog.get_logger()


class RegistryService:
    """
    Single entry point over the registry components.

    Every mutation invalidates exactly the cache scopes it affects:
    row imports and re-enumeration touch enumeration and relationships,
    mapping writes touch mappings, and year configuration changes touch
    relationships (curated-year membership) only.
    """

    def __init__(self, container: Optional[DIContainer] = None):
        self.container = container or DIContainer()
        self.settings = self.container.settings
        self.row_store = self.container.get('row_store')
        self.enumerator = self.container.get('enumerator')
        self.hierarchy = self.container.get('hierarchy')
        self.pair_discovery = self.container.get('pair_discovery')
        self.regularization_engine = self.container.get('regularization_engine')
        self.filter_cache = self.container.get('filter_cache')
        self.query_builder = self.container.get('query_builder')

    async def initialize(self) -> None:
        """Enumerate every dimension and, if configured, preload the filter cache."""
        counts = await self.enumerator.enumerate_all()
        logger.info("Registry initialized", dimensions=counts)
        if self.settings.cache_preload_on_startup:
            await self.filter_cache.initialize()

    @property
    def year_config(self) -> YearConfiguration:
        return self.hierarchy.year_config

    # --- data changes ---

    async def import_rows(self, rows: List[Dict[str, Any]]) -> int:
        inserted = await self.row_store.insert_rows(rows)
        if inserted:
            await self.refresh_enumerations()
        return inserted

    async def import_csv(self, path, year: Optional[int] = None) -> int:
        inserted = await load_csv(path, self.row_store, year)
        if inserted:
            await self.refresh_enumerations()
        return inserted

    async def refresh_enumerations(self) -> Dict[str, int]:
        """Re-enumerate after row store changes. Existing ids are kept."""
        counts = await self.enumerator.enumerate_all(refresh=True)
        self.hierarchy.reset()
        self.filter_cache.invalidate(CacheScope.ENUMERATION, CacheScope.RELATIONSHIPS)
        return counts

    def set_year_configuration(self, curated_years: Iterable[int], uncurated_years: Iterable[int] = ()) -> YearConfiguration:
        config = YearConfiguration.create(curated_years, uncurated_years)
        self.hierarchy.reset(config)
        self.filter_cache.invalidate(CacheScope.RELATIONSHIPS)
        logger.info(
            "Year configuration changed",
            curated_years=sorted(config.curated_years),
            uncurated_years=sorted(config.uncurated_years)
        )
        return config

    # --- regularization ---

    async def find_uncurated_pairs(self, include_exact_matches: bool = True) -> List[UncuratedPair]:
        return await self.pair_discovery.find_uncurated_pairs(include_exact_matches)

    async def pairs_with_status(self, include_exact_matches: bool = True) -> List[Tuple[UncuratedPair, RegularizationStatus]]:
        pairs = await self.pair_discovery.find_uncurated_pairs(include_exact_matches)
        statuses = await self.regularization_engine.statuses(pairs)
        return [(pair, statuses[pair.pair_key]) for pair in pairs]

    async def find_pair(self, make_id: int, model_id: int) -> UncuratedPair:
        """Pair for a (make id, model id). Raises UnknownValue if either id is not enumerated."""
        for pair in await self.pair_discovery.find_uncurated_pairs(include_exact_matches=True):
            if pair.make_id == make_id and pair.model_id == model_id:
                return pair
        await self.enumerator.load_table(Dimension.MAKE)
        await self.enumerator.load_table(Dimension.MODEL)
        return UncuratedPair(
            make_id=make_id,
            model_id=model_id,
            make_text=self.enumerator.text_for(Dimension.MAKE, make_id),
            model_text=self.enumerator.text_for(Dimension.MODEL, model_id),
        )

    async def auto_regularize(self) -> SweepReport:
        report = await self.regularization_engine.auto_regularize()
        if report.created:
            self.filter_cache.invalidate(CacheScope.MAPPINGS)
        return report

    async def fuzzy_regularize(self) -> SweepReport:
        report = await self.regularization_engine.regularize_with(self._fuzzy_strategy())
        if report.created:
            self.filter_cache.invalidate(CacheScope.MAPPINGS)
        return report

    async def suggest_canonical(self, pair: UncuratedPair, limit: Optional[int] = None) -> List[MatchCandidate]:
        return await self.regularization_engine.suggest_canonical(
            pair, self._fuzzy_strategy(), limit=limit or self.settings.fuzzy_max_suggestions
        )

    async def resolve_canonical_for_pair(self, pair: UncuratedPair) -> Optional[Tuple[str, str]]:
        return await self.regularization_engine.resolve_canonical_for_pair(pair)

    async def promote_to_complete(self,
                                  pair: UncuratedPair,
                                  fuel_type: Optional[str] = None,
                                  vehicle_type: Optional[str] = None,
                                  canonical_make: Optional[str] = None,
                                  canonical_model: Optional[str] = None) -> Mapping:
        mapping = await self.regularization_engine.promote_to_complete(
            pair, fuel_type, vehicle_type, canonical_make, canonical_model
        )
        self.filter_cache.invalidate(CacheScope.MAPPINGS)
        return mapping

    async def delete_mapping(self, pair_key: str) -> bool:
        deleted = await self.regularization_engine.delete_mapping(pair_key)
        if deleted:
            self.filter_cache.invalidate(CacheScope.MAPPINGS)
        return deleted

    def _fuzzy_strategy(self) -> FuzzyMatchStrategy:
        return FuzzyMatchStrategy(
            make_threshold=self.settings.fuzzy_make_threshold,
            model_threshold=self.settings.fuzzy_model_threshold,
        )

    # --- filters and queries ---

    async def get_available(self,
                            dimension,
                            constrained_by: Optional[Iterable[int]] = None,
                            limit_to_curated_years: bool = False) -> List[FilterItem]:
        return await self.filter_cache.get_available(dimension, constrained_by, limit_to_curated_years)

    async def build_and_run(self, filter_config: FilterConfiguration, metric: MetricSpec) -> ResultSet:
        return await self.query_builder.build_and_run(filter_config, metric)

    # --- status ---

    async def health(self) -> Dict[str, Any]:
        try:
            await self.row_store.fetch_all(text("SELECT 1 AS ok"))
            row_count = await self.row_store.row_count()
            database_connected = True
        except Exception as e:
            logger.error("Health check database query failed", error=str(e))
            row_count = 0
            database_connected = False

        return {
            "status": "healthy" if database_connected and not self.enumerator.is_halted else "unhealthy",
            "database_connected": database_connected,
            "row_count": row_count,
            "hierarchy_built": self.hierarchy.current() is not None,
            "cache_generation": self.filter_cache.generation,
            "mapping_count": len(await self.regularization_engine.mapping_repository.load_mappings())
            if database_connected else 0,
        }
