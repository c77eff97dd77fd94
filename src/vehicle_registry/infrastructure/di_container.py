"""Dependency injection container wiring the registry components."""

from typing import Any, Dict, Optional
import structlog

from ..config import Settings, get_settings
from ..db.session import create_registry_engine, init_db
from ..domain.value_objects.road_wear import RoadWearConfiguration
from ..domain.value_objects.year_configuration import YearConfiguration
from ..search.filter_cache import FilterCache
from ..search.query_builder import OptimizedQueryBuilder
from ..services.enumerator import DimensionEnumerator
from ..services.hierarchy_builder import HierarchyAccessor, HierarchyBuilder
from ..services.pair_discovery import PairDiscovery
from ..services.regularization_engine import RegularizationEngine
from .repositories.enumeration_repository import EnumerationRepository
from .repositories.mapping_repository import MappingRepository
from .repositories.row_store import RowStore

logger = structlog.get_logger()


class DIContainer:
    """Service locator holding one instance of each component per process."""

    def __init__(self, settings: Optional[Settings] = None, database_url: Optional[str] = None):
        self._services: Dict[str, Any] = {}
        self._singletons: Dict[str, Any] = {}
        self.settings = settings or get_settings()
        self.database_url = database_url or self.settings.database_url
        self._initialize_services()

    def _initialize_services(self):
        logger.info("Initializing dependency injection container")

        # Storage
        self._register_singleton('engine', self._create_engine)
        self._register_singleton('row_store', lambda: RowStore(self.get('engine')))
        self._register_singleton('enumeration_repository', lambda: EnumerationRepository(self.get('engine')))
        self._register_singleton('mapping_repository', lambda: MappingRepository(self.get('engine')))

        # Configuration value objects
        self._register_singleton('road_wear_configuration', lambda: RoadWearConfiguration.from_settings(self.settings))

        # Core services
        self._register_singleton('enumerator', self._create_enumerator)
        self._register_singleton('hierarchy_builder', lambda: HierarchyBuilder(self.get('row_store'), self.get('enumerator')))
        self._register_singleton('hierarchy', self._create_hierarchy_accessor)
        self._register_singleton('pair_discovery', self._create_pair_discovery)
        self._register_singleton('regularization_engine', self._create_regularization_engine)
        self._register_singleton('filter_cache', self._create_filter_cache)
        self._register_singleton('query_builder', self._create_query_builder)

        logger.info("Dependency injection container initialized successfully")

    def _register_singleton(self, service_name: str, factory_func):
        self._services[service_name] = factory_func

    def get(self, service_name: str) -> Any:
        """Get a service instance, creating it on first use."""
        if service_name not in self._services:
            raise ValueError(f"Service '{service_name}' not registered")

        if service_name not in self._singletons:
            logger.debug("Creating singleton service", service_name=service_name)
            self._singletons[service_name] = self._services[service_name]()
        return self._singletons[service_name]

    def year_config(self) -> YearConfiguration:
        return self.get('hierarchy').year_config

    # --- factories ---

    def _create_engine(self):
        engine = create_registry_engine(self.database_url)
        init_db(engine)
        return engine

    def _create_enumerator(self) -> DimensionEnumerator:
        return DimensionEnumerator(self.get('row_store'), self.get('enumeration_repository'))

    def _create_hierarchy_accessor(self) -> HierarchyAccessor:
        return HierarchyAccessor(self.get('hierarchy_builder'), YearConfiguration.from_settings(self.settings))

    def _create_pair_discovery(self) -> PairDiscovery:
        return PairDiscovery(self.get('row_store'), self.get('enumerator'), self.get('hierarchy'))

    def _create_regularization_engine(self) -> RegularizationEngine:
        return RegularizationEngine(
            self.get('pair_discovery'),
            self.get('hierarchy'),
            self.get('mapping_repository'),
            self.get('enumerator'),
        )

    def _create_filter_cache(self) -> FilterCache:
        return FilterCache(
            self.get('row_store'),
            self.get('enumerator'),
            self.get('mapping_repository'),
            self.year_config,
        )

    def _create_query_builder(self) -> OptimizedQueryBuilder:
        return OptimizedQueryBuilder(
            self.get('row_store'),
            self.get('enumerator'),
            self.get('regularization_engine'),
            self.year_config,
            self.get('road_wear_configuration'),
        )
