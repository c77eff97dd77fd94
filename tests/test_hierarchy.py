import pytest

from vehicle_registry.domain.entities.hierarchy import (
    Built, CanonicalMake, CanonicalModel, Hierarchy, NotYetBuilt
)


class TestHierarchyEntity:

    def test_duplicate_leaf_is_rejected(self):
        civic = CanonicalModel(make="HONDA", name="CIVIC")
        with pytest.raises(ValueError, match="Duplicate canonical leaf"):
            Hierarchy(makes=(CanonicalMake(name="HONDA", models=(civic, civic)),))

    def test_model_must_belong_to_its_make(self):
        with pytest.raises(ValueError):
            CanonicalMake(name="TOYOTA", models=(CanonicalModel(make="HONDA", name="CIVIC"),))

    def test_lookup_is_ordinal(self):
        hierarchy = Hierarchy(makes=(
            CanonicalMake(name="HONDA", models=(CanonicalModel(make="HONDA", name="CIVIC"),)),
        ))
        assert hierarchy.contains("HONDA", "CIVIC")
        assert not hierarchy.contains("Honda", "Civic")
        assert hierarchy.canonical_keys() == frozenset({("HONDA", "CIVIC")})

    def test_slash_in_names_does_not_collide(self):
        hierarchy = Hierarchy(makes=(
            CanonicalMake(name="A/B", models=(CanonicalModel(make="A/B", name="C"),)),
            CanonicalMake(name="A", models=(CanonicalModel(make="A", name="B/C"),)),
        ))
        assert hierarchy.leaf_count == 2
        assert hierarchy.find_model("A", "B/C").make == "A"
        assert not hierarchy.contains("A/B", "B/C")


class TestHierarchyBuilder:

    @pytest.mark.asyncio
    async def test_builds_make_model_tree_from_curated_years(self, service):
        hierarchy = await service.hierarchy.ensure()

        assert hierarchy.make_names() == ["HONDA", "MACK", "TOYOTA", "VOLVO"]
        assert [model.name for model in hierarchy.models_for("HONDA")] == ["ACCORD", "CIVIC"]
        assert hierarchy.leaf_count == 5
        assert not hierarchy.contains("VOLV0", "XC60")

    @pytest.mark.asyncio
    async def test_leaves_carry_ids_and_details(self, service):
        hierarchy = await service.hierarchy.ensure()
        civic = hierarchy.find_model("HONDA", "CIVIC")

        assert civic.record_count == 4
        assert civic.fuel_types == ("E",)
        assert civic.vehicle_types == ("AU",)
        assert civic.make_id == service.enumerator.id_for("make", "HONDA")
        assert civic.model_id == service.enumerator.id_for("model", "CIVIC")

    @pytest.mark.asyncio
    async def test_leaves_are_unique(self, service):
        hierarchy = await service.hierarchy.ensure()
        keys = [leaf.key for leaf in hierarchy.leaves()]
        assert len(keys) == len(set(keys))

    @pytest.mark.asyncio
    async def test_build_is_deterministic(self, service):
        builder = service.container.get('hierarchy_builder')
        first = await builder.build([2020])
        second = await builder.build([2020])
        assert first == second

    @pytest.mark.asyncio
    async def test_no_curated_rows_gives_empty_hierarchy(self, service):
        builder = service.container.get('hierarchy_builder')
        assert (await builder.build([])).is_empty
        assert (await builder.build([1999])).is_empty


class TestHierarchyAccessor:

    @pytest.mark.asyncio
    async def test_state_moves_from_not_yet_built_to_built(self, service):
        accessor = service.hierarchy
        assert isinstance(accessor.state, NotYetBuilt)
        assert accessor.current() is None

        hierarchy = await accessor.ensure()
        assert isinstance(accessor.state, Built)
        assert accessor.current() is hierarchy
        assert await accessor.ensure() is hierarchy

    @pytest.mark.asyncio
    async def test_year_configuration_change_rebuilds(self, service):
        await service.hierarchy.ensure()
        service.set_year_configuration([2020, 2021])

        assert service.hierarchy.current() is None
        hierarchy = await service.hierarchy.ensure()
        assert hierarchy.contains("VOLV0", "XC60")
        assert hierarchy.curated_years == frozenset({2020, 2021})
