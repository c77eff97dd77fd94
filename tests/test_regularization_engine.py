from datetime import timezone

import pytest

from vehicle_registry.domain.entities.mapping import Mapping
from vehicle_registry.domain.value_objects.regularization_status import RegularizationStatus
from vehicle_registry.errors import PersistenceError, ValidationError


class TestAutoRegularize:

    @pytest.mark.asyncio
    async def test_exact_pairs_become_auto_mapped(self, service, pairs):
        report = await service.auto_regularize()

        assert report.strategy == "exact"
        assert report.scanned == 5
        assert report.created == 2
        assert report.unmatched == 3
        assert report.errors == []

        engine = service.regularization_engine
        assert await engine.status_for(pairs[("HONDA", "CIVIC")]) == RegularizationStatus.AUTO_MAPPED
        assert await engine.status_for(pairs[("VOLV0", "XC60")]) == RegularizationStatus.UNMAPPED

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, service):
        first = await service.auto_regularize()
        second = await service.auto_regularize()

        assert second.created == 0
        assert second.skipped_existing == first.created
        mappings = await service.regularization_engine.mapping_repository.load_mappings()
        assert len(mappings) == first.created

    @pytest.mark.asyncio
    async def test_sweep_ignores_the_view_filter(self, service, pairs):
        visible = await service.find_uncurated_pairs(include_exact_matches=False)
        assert ("HONDA", "CIVIC") not in {(pair.make_text, pair.model_text) for pair in visible}

        await service.auto_regularize()
        mapping = await service.regularization_engine.mapping_repository.get_mapping(
            pairs[("HONDA", "CIVIC")].pair_key
        )
        assert mapping is not None
        assert mapping.source == "exact"

    @pytest.mark.asyncio
    async def test_exact_pair_is_auto_mapped_before_any_sweep(self, service, pairs):
        engine = service.regularization_engine
        assert await engine.mapping_repository.load_mappings() == []
        assert await engine.status_for(pairs[("HONDA", "CIVIC")]) == RegularizationStatus.AUTO_MAPPED

    @pytest.mark.asyncio
    async def test_resolution_is_the_same_before_and_after_a_sweep(self, service, pairs):
        before = {key: await service.resolve_canonical_for_pair(pair) for key, pair in pairs.items()}
        await service.auto_regularize()
        after = {key: await service.resolve_canonical_for_pair(pair) for key, pair in pairs.items()}

        assert before == after
        assert after[("HONDA", "CIVIC")] == ("HONDA", "CIVIC")
        assert after[("VOLV0", "XC60")] is None

    @pytest.mark.asyncio
    async def test_one_failed_write_does_not_stop_the_sweep(self, service, pairs, monkeypatch):
        repository = service.regularization_engine.mapping_repository
        toyota_key = pairs[("TOYOTA", "COROLLA")].pair_key
        original_save = repository.save_mapping

        async def failing_save(mapping: Mapping):
            if mapping.pair_key == toyota_key:
                raise PersistenceError("disk full", pair_key=mapping.pair_key)
            return await original_save(mapping)

        monkeypatch.setattr(repository, "save_mapping", failing_save)
        report = await service.auto_regularize()

        assert report.created == 1
        assert [error.pair_key for error in report.errors] == [toyota_key]

        monkeypatch.undo()
        retry = await service.auto_regularize()
        assert retry.created == 1
        assert retry.skipped_existing == 1

    @pytest.mark.asyncio
    async def test_status_counts(self, service):
        await service.auto_regularize()
        counts = await service.regularization_engine.status_counts()
        assert counts == {
            RegularizationStatus.UNMAPPED: 3,
            RegularizationStatus.AUTO_MAPPED: 2,
            RegularizationStatus.COMPLETE: 0,
        }

    @pytest.mark.asyncio
    async def test_statistics(self, service):
        await service.auto_regularize()
        stats = await service.regularization_engine.statistics()
        assert stats["mapping_count"] == 2
        assert stats["total_uncurated_records"] == 9
        assert stats["covered_records"] == 5


class TestFuzzyRegularize:

    @pytest.mark.asyncio
    async def test_typos_and_truncations_are_mapped(self, service, pairs):
        report = await service.fuzzy_regularize()
        assert report.strategy == "fuzzy"

        assert await service.resolve_canonical_for_pair(pairs[("VOLV0", "XC60")]) == ("VOLVO", "XC60")
        assert await service.resolve_canonical_for_pair(pairs[("HONDA", "CIVI")]) == ("HONDA", "CIVIC")
        assert await service.resolve_canonical_for_pair(pairs[("NOVA", "LFS")]) is None

        mapping = await service.regularization_engine.mapping_repository.get_mapping(
            pairs[("VOLV0", "XC60")].pair_key
        )
        assert mapping.source == "fuzzy"
        assert mapping.canonical_make_id == service.enumerator.id_for("make", "VOLVO")

    @pytest.mark.asyncio
    async def test_suggestions_are_ranked(self, service, pairs):
        suggestions = await service.suggest_canonical(pairs[("VOLV0", "XC60")])
        assert suggestions[0].canonical.key == ("VOLVO", "XC60")
        assert 0.0 < suggestions[0].score < 1.0


class TestPromoteToComplete:

    @pytest.mark.asyncio
    async def test_promotion_without_details_is_rejected_and_writes_nothing(self, service, pairs):
        await service.auto_regularize()
        civic = pairs[("HONDA", "CIVIC")]
        repository = service.regularization_engine.mapping_repository
        before = await repository.get_mapping(civic.pair_key)

        with pytest.raises(ValidationError):
            await service.promote_to_complete(civic)

        assert await repository.get_mapping(civic.pair_key) == before
        assert await service.regularization_engine.status_for(civic) == RegularizationStatus.AUTO_MAPPED

    @pytest.mark.asyncio
    async def test_unknown_detail_is_rejected(self, service, pairs):
        with pytest.raises(ValidationError):
            await service.promote_to_complete(pairs[("HONDA", "CIVIC")], fuel_type="PLUTONIUM")
        assert await service.regularization_engine.mapping_repository.load_mappings() == []

    @pytest.mark.asyncio
    async def test_auto_mapped_pair_becomes_complete(self, service, pairs):
        await service.auto_regularize()
        civic = pairs[("HONDA", "CIVIC")]

        mapping = await service.promote_to_complete(civic, fuel_type="E")
        assert mapping.canonical_fuel_type == "E"
        assert mapping.source == "manual"
        assert await service.regularization_engine.status_for(civic) == RegularizationStatus.COMPLETE

        # later details are merged, not replaced wholesale
        mapping = await service.promote_to_complete(civic, vehicle_type="AU")
        assert (mapping.canonical_fuel_type, mapping.canonical_vehicle_type) == ("E", "AU")

    @pytest.mark.asyncio
    async def test_exact_pair_can_be_promoted_before_a_sweep(self, service, pairs):
        mapping = await service.promote_to_complete(pairs[("TOYOTA", "COROLLA")], vehicle_type="AU")
        assert (mapping.canonical_make, mapping.canonical_model) == ("TOYOTA", "COROLLA")

    @pytest.mark.asyncio
    async def test_unresolved_pair_needs_an_explicit_target(self, service, pairs):
        volv0 = pairs[("VOLV0", "XC60")]
        with pytest.raises(ValidationError):
            await service.promote_to_complete(volv0, fuel_type="D")
        with pytest.raises(ValidationError):
            await service.promote_to_complete(volv0, fuel_type="D", canonical_make="VOLVO")
        with pytest.raises(ValidationError):
            await service.promote_to_complete(volv0, fuel_type="D", canonical_make="VOLVO", canonical_model="XC90")

        mapping = await service.promote_to_complete(
            volv0, fuel_type="D", canonical_make="VOLVO", canonical_model="XC60"
        )
        assert mapping.canonical_make == "VOLVO"
        assert mapping.uncurated_make_id == volv0.make_id
        assert await service.regularization_engine.status_for(volv0) == RegularizationStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_delete_resets_to_unmapped(self, service, pairs):
        volv0 = pairs[("VOLV0", "XC60")]
        await service.promote_to_complete(volv0, fuel_type="D", canonical_make="VOLVO", canonical_model="XC60")

        assert await service.delete_mapping(volv0.pair_key) is True
        assert await service.regularization_engine.status_for(volv0) == RegularizationStatus.UNMAPPED
        assert await service.delete_mapping(volv0.pair_key) is False


class TestMappingRepository:

    @pytest.mark.asyncio
    async def test_duplicate_save_raises_persistence_error(self, service):
        repository = service.regularization_engine.mapping_repository
        mapping = Mapping(pair_key="1_1", canonical_make="HONDA", canonical_model="CIVIC")
        await repository.save_mapping(mapping)

        with pytest.raises(PersistenceError):
            await repository.save_mapping(mapping)

    @pytest.mark.asyncio
    async def test_update_of_missing_mapping_raises_persistence_error(self, service):
        repository = service.regularization_engine.mapping_repository
        with pytest.raises(PersistenceError):
            await repository.update_mapping(Mapping(pair_key="9_9", canonical_make="HONDA", canonical_model="CIVIC"))

    @pytest.mark.asyncio
    async def test_timestamps_are_timezone_aware_utc(self, service):
        repository = service.regularization_engine.mapping_repository
        saved = await repository.save_mapping(Mapping(pair_key="1_1", canonical_make="HONDA", canonical_model="CIVIC"))
        assert saved.created_at.tzinfo == timezone.utc

        updated = await repository.update_mapping(saved.with_details(fuel_type="E"))
        reloaded = await repository.get_mapping("1_1")
        assert reloaded.created_at.tzinfo == timezone.utc
        assert reloaded.updated_at >= reloaded.created_at
        assert updated.updated_at >= saved.created_at


class TestExpandMakeModelIds:

    @pytest.mark.asyncio
    async def test_canonical_selection_pulls_in_mapped_variants(self, service, pairs):
        volv0 = pairs[("VOLV0", "XC60")]
        await service.promote_to_complete(volv0, fuel_type="D", canonical_make="VOLVO", canonical_model="XC60")
        volvo_id = service.enumerator.id_for("make", "VOLVO")

        makes, models = await service.regularization_engine.expand_make_model_ids({volvo_id}, set())
        assert makes == {volvo_id, volv0.make_id}
        assert models == {volv0.model_id}

        makes, models = await service.regularization_engine.expand_make_model_ids({volvo_id}, set(), coupling=False)
        assert makes == {volvo_id, volv0.make_id}
        assert models == set()

    @pytest.mark.asyncio
    async def test_uncurated_selection_pulls_in_canonical(self, service, pairs):
        volv0 = pairs[("VOLV0", "XC60")]
        await service.promote_to_complete(volv0, fuel_type="D", canonical_make="VOLVO", canonical_model="XC60")

        makes, _ = await service.regularization_engine.expand_make_model_ids({volv0.make_id}, set())
        assert service.enumerator.id_for("make", "VOLVO") in makes

    @pytest.mark.asyncio
    async def test_make_only_widening_never_adds_models(self, service, pairs):
        await service.auto_regularize()
        volv0 = pairs[("VOLV0", "XC60")]
        await service.promote_to_complete(volv0, fuel_type="D", canonical_make="VOLVO", canonical_model="XC60")
        honda_id = service.enumerator.id_for("make", "HONDA")
        volvo_id = service.enumerator.id_for("make", "VOLVO")

        assert await service.regularization_engine.expand_make_ids({honda_id}) == {honda_id}
        assert await service.regularization_engine.expand_make_ids({volvo_id}) == {volvo_id, volv0.make_id}
