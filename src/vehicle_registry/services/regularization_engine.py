"""Regularization of uncurated (make, model) pairs onto the canonical hierarchy."""

import time
from collections import Counter
from typing import Dict, Iterable, List, Optional, Set, Tuple

import structlog

from ..domain.entities.mapping import Mapping, UncuratedPair
from ..domain.value_objects.dimension import Dimension
from ..domain.value_objects.regularization_status import RegularizationStatus, derive_status
from ..errors import PersistenceError, UnknownValue, ValidationError
from ..infrastructure.repositories.mapping_repository import MappingRepository
from ..models import SweepError, SweepReport
from ..utils.logging import regularization_logger
from .enumerator import DimensionEnumerator
from .hierarchy_builder import HierarchyAccessor
from .matching import ExactMatchStrategy, MatchCandidate, MatchingStrategy
from .pair_discovery import PairDiscovery

logger = structlog.get_logger()


class RegularizationEngine:
    """
    Owns the Mapping lifecycle: Unmapped -> AutoMapped -> Complete.

    Status is never stored; it is derived from the mapping store and the
    canonical hierarchy every time it is asked for. Mapping writes are
    committed one pair at a time, so an interrupted sweep keeps what it
    wrote and the next sweep resumes from there.
    """

    def __init__(self,
                 pair_discovery: PairDiscovery,
                 hierarchy: HierarchyAccessor,
                 mapping_repository: MappingRepository,
                 enumerator: DimensionEnumerator):
        self.pair_discovery = pair_discovery
        self.hierarchy = hierarchy
        self.mapping_repository = mapping_repository
        self.enumerator = enumerator

    # --- sweeps ---

    async def auto_regularize(self) -> SweepReport:
        """Create make/model mappings for every unmapped pair that exactly equals a canonical pair."""
        return await self.regularize_with(ExactMatchStrategy())

    async def regularize_with(self, strategy: MatchingStrategy) -> SweepReport:
        """
        Sweep every uncurated pair through a matching strategy.

        Idempotent: pairs that already have a mapping are skipped. A
        persistence failure on one pair is recorded in the report and the
        sweep moves on.
        """
        start_time = time.time()

        # Full scan, independent of any view filter
        pairs = await self.pair_discovery.find_uncurated_pairs(include_exact_matches=True)
        hierarchy = await self.hierarchy.ensure()
        existing = {mapping.pair_key for mapping in await self.mapping_repository.load_mappings()}

        report = SweepReport(strategy=strategy.name, scanned=len(pairs))
        regularization_logger.log_sweep_start(strategy.name, len(pairs))

        for pair in pairs:
            if pair.pair_key in existing:
                report.skipped_existing += 1
                continue

            candidate = strategy.match(pair, hierarchy)
            if candidate is None:
                report.unmatched += 1
                continue

            mapping = Mapping.for_pair(pair, candidate.canonical, source=candidate.method)
            try:
                await self.mapping_repository.save_mapping(mapping)
            except PersistenceError as e:
                regularization_logger.log_mapping_failed(pair.pair_key, str(e))
                report.errors.append(SweepError(pair_key=pair.pair_key, message=str(e)))
                continue

            existing.add(pair.pair_key)
            report.created += 1
            regularization_logger.log_mapping_created(
                pair.pair_key, mapping.canonical_make, mapping.canonical_model, strategy.name
            )

        report.processing_time_ms = (time.time() - start_time) * 1000
        regularization_logger.log_sweep_result(
            strategy.name,
            report.created,
            report.skipped_existing,
            report.unmatched,
            len(report.errors),
            report.processing_time_ms,
        )
        return report

    # --- lookups ---

    async def resolve_canonical_for_pair(self, pair: UncuratedPair) -> Optional[Tuple[str, str]]:
        """
        Canonical (make, model) for a pair.

        An existing mapping wins; otherwise the hierarchy is searched for an
        exact match. Works whether or not a sweep has run.
        """
        mapping = await self.mapping_repository.get_mapping(pair.pair_key)
        if mapping is not None:
            return mapping.canonical_make, mapping.canonical_model

        hierarchy = await self.hierarchy.ensure()
        canonical = hierarchy.find_model(pair.make_text, pair.model_text)
        if canonical is not None:
            return canonical.make, canonical.name
        return None

    async def suggest_canonical(self,
                                pair: UncuratedPair,
                                strategy: MatchingStrategy,
                                limit: int = 5) -> List[MatchCandidate]:
        hierarchy = await self.hierarchy.ensure()
        return strategy.suggest(pair, hierarchy, limit=limit)

    async def status_for(self, pair: UncuratedPair) -> RegularizationStatus:
        mapping = await self.mapping_repository.get_mapping(pair.pair_key)
        hierarchy = await self.hierarchy.ensure()
        return derive_status(pair, mapping, hierarchy)

    async def statuses(self, pairs: Iterable[UncuratedPair]) -> Dict[str, RegularizationStatus]:
        mappings = {mapping.pair_key: mapping for mapping in await self.mapping_repository.load_mappings()}
        hierarchy = await self.hierarchy.ensure()
        return {pair.pair_key: derive_status(pair, mappings.get(pair.pair_key), hierarchy) for pair in pairs}

    async def status_counts(self) -> Dict[RegularizationStatus, int]:
        pairs = await self.pair_discovery.find_uncurated_pairs(include_exact_matches=True)
        counts = Counter((await self.statuses(pairs)).values())
        return {status: counts.get(status, 0) for status in RegularizationStatus}

    # --- analyst actions ---

    async def promote_to_complete(self,
                                  pair: UncuratedPair,
                                  fuel_type: Optional[str] = None,
                                  vehicle_type: Optional[str] = None,
                                  canonical_make: Optional[str] = None,
                                  canonical_model: Optional[str] = None) -> Mapping:
        """
        Upsert a mapping carrying fuel type and/or vehicle type.

        Raises ValidationError (and writes nothing) when neither detail is
        given, when a detail is not a known value, or when the canonical
        pair cannot be resolved.
        """
        if not fuel_type and not vehicle_type:
            raise ValidationError("Promotion to complete needs a fuel type or a vehicle type")

        for dimension, value in ((Dimension.FUEL_TYPE, fuel_type), (Dimension.VEHICLE_TYPE, vehicle_type)):
            if value:
                await self.enumerator.load_table(dimension)
                try:
                    self.enumerator.id_for(dimension, value)
                except UnknownValue:
                    raise ValidationError(f"Unknown {dimension.value}: {value}") from None

        canonical = await self._resolve_promotion_target(pair, canonical_make, canonical_model)
        existing = await self.mapping_repository.get_mapping(pair.pair_key)

        if existing is None:
            mapping = Mapping.for_pair(pair, canonical, source="manual").with_details(fuel_type, vehicle_type)
            saved = await self.mapping_repository.save_mapping(mapping)
        else:
            base = existing
            if (existing.canonical_make, existing.canonical_model) != (canonical.make, canonical.name):
                base = Mapping.for_pair(pair, canonical, source="manual")
            mapping = base.with_details(fuel_type, vehicle_type, source="manual")
            saved = await self.mapping_repository.update_mapping(mapping)

        logger.info(
            "Pair promoted to complete",
            pair_key=pair.pair_key,
            canonical_make=saved.canonical_make,
            canonical_model=saved.canonical_model,
            fuel_type=saved.canonical_fuel_type,
            vehicle_type=saved.canonical_vehicle_type
        )
        return saved

    async def _resolve_promotion_target(self,
                                        pair: UncuratedPair,
                                        canonical_make: Optional[str],
                                        canonical_model: Optional[str]):
        hierarchy = await self.hierarchy.ensure()

        if canonical_make or canonical_model:
            if not (canonical_make and canonical_model):
                raise ValidationError("Canonical make and model must be given together")
            canonical = hierarchy.find_model(canonical_make, canonical_model)
            if canonical is None:
                raise ValidationError(f"Not a canonical pair: {canonical_make}/{canonical_model}")
            return canonical

        resolved = await self.resolve_canonical_for_pair(pair)
        if resolved is None:
            raise ValidationError(f"No canonical pair for {pair.display_name}; choose one explicitly")
        canonical = hierarchy.find_model(*resolved)
        if canonical is None:
            raise ValidationError(f"Mapped canonical pair {resolved[0]}/{resolved[1]} is not in the hierarchy")
        return canonical

    async def delete_mapping(self, pair_key: str) -> bool:
        """Reset a pair to Unmapped by deleting its mapping."""
        return await self.mapping_repository.delete_mapping(pair_key)

    # --- query support ---

    async def expand_make_ids(self, make_ids: Iterable[int]) -> Set[int]:
        """Widen a make-only selection. Model ids are never introduced."""
        expanded_makes, _ = await self.expand_make_model_ids(make_ids, (), coupling=False)
        return expanded_makes

    async def expand_make_model_ids(self,
                                    make_ids: Iterable[int],
                                    model_ids: Iterable[int],
                                    coupling: bool = True) -> Tuple[Set[int], Set[int]]:
        """
        Widen a make/model selection through the mapping store.

        Selected uncurated ids pull in their canonical ids, then every
        selected or canonical id pulls in the uncurated variants mapped onto
        it. Without coupling, a dimension is only widened if it was part of
        the original selection.
        """
        make_ids = set(make_ids)
        model_ids = set(model_ids)
        if not make_ids and not model_ids:
            return make_ids, model_ids

        mappings = await self.mapping_repository.load_mappings()
        expanded_makes = set(make_ids)
        expanded_models = set(model_ids)

        for mapping in mappings:
            if mapping.uncurated_make_id in make_ids and mapping.canonical_make_id is not None:
                expanded_makes.add(mapping.canonical_make_id)
            if mapping.uncurated_model_id in model_ids and mapping.canonical_model_id is not None:
                expanded_models.add(mapping.canonical_model_id)

        canonical_makes = set(expanded_makes)
        canonical_models = set(expanded_models)
        for mapping in mappings:
            if mapping.canonical_make_id not in canonical_makes and mapping.canonical_model_id not in canonical_models:
                continue
            if mapping.uncurated_make_id is not None and (coupling or make_ids):
                expanded_makes.add(mapping.uncurated_make_id)
            if mapping.uncurated_model_id is not None and (coupling or model_ids):
                expanded_models.add(mapping.uncurated_model_id)

        if len(expanded_makes) > len(make_ids) or len(expanded_models) > len(model_ids):
            logger.debug(
                "Regularization expanded selection",
                makes_before=len(make_ids),
                makes_after=len(expanded_makes),
                models_before=len(model_ids),
                models_after=len(expanded_models)
            )
        return expanded_makes, expanded_models

    async def statistics(self) -> Dict[str, float]:
        """Mapping count and how many uncurated records they cover."""
        mappings = await self.mapping_repository.load_mappings()
        pairs = await self.pair_discovery.find_uncurated_pairs(include_exact_matches=True)
        mapped_keys = {mapping.pair_key for mapping in mappings}
        total_records = sum(pair.record_count for pair in pairs)
        covered_records = sum(pair.record_count for pair in pairs if pair.pair_key in mapped_keys)
        return {
            "mapping_count": len(mappings),
            "complete_count": sum(1 for mapping in mappings if mapping.is_complete),
            "total_uncurated_records": total_records,
            "covered_records": covered_records,
            "coverage_percentage": (covered_records * 100.0 / total_records) if total_records else 0.0,
        }
