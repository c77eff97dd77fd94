import pytest
from sqlalchemy import text

from vehicle_registry.errors import EnumerationCorruptionError, UnknownValue
from vehicle_registry.infrastructure.di_container import DIContainer
from vehicle_registry.services.enumerator import EnumerationTable

from conftest import vehicle


class TestEnumerationTable:

    def test_conflicting_texts_for_one_id_are_rejected(self):
        with pytest.raises(EnumerationCorruptionError) as exc_info:
            EnumerationTable.from_entries("make", [(1, "HONDA"), (1, "ACURA")])
        assert exc_info.value.dimension == "make"
        assert exc_info.value.conflicts == [{"id": 1, "texts": ["HONDA", "ACURA"]}]

    def test_conflicting_ids_for_one_text_are_rejected(self):
        with pytest.raises(EnumerationCorruptionError):
            EnumerationTable.from_entries("make", [(1, "HONDA"), (2, "HONDA")])

    def test_dead_texts_are_hidden_but_keep_the_high_water_mark(self):
        table = EnumerationTable.from_entries("make", [(1, "HONDA"), (7, "SAAB")], live_texts=["HONDA"])
        assert dict(table.by_text) == {"HONDA": 1}
        assert table.high_water_mark == 7

    def test_numeric_table_uses_values_as_ids(self):
        table = EnumerationTable.numeric("year", [2021, 2020, None, 2021])
        assert dict(table.by_id) == {2020: "2020", 2021: "2021"}
        assert table.sorted_items() == [(2020, "2020"), (2021, "2021")]


class TestDimensionEnumerator:

    @pytest.mark.asyncio
    async def test_categorical_ids_follow_text_order(self, service):
        makes = await service.enumerator.enumerate("make")
        assert sorted(makes, key=makes.get) == ["HONDA", "MACK", "NOVA", "TOYOTA", "VOLV0", "VOLVO"]
        assert set(makes.values()) == {1, 2, 3, 4, 5, 6}

    @pytest.mark.asyncio
    async def test_numeric_dimension_enumerates_values(self, service):
        years = await service.enumerator.enumerate("year")
        assert years == {"2020": 2020, "2021": 2021, "2022": 2022}

    @pytest.mark.asyncio
    async def test_ids_are_stable_across_re_enumeration(self, service):
        before = await service.enumerator.enumerate("make")

        # ACURA sorts first but must not shift existing ids
        await service.import_rows([vehicle(2022, "ACURA", "MDX", 2021)])
        after = await service.enumerator.enumerate("make")

        for value, value_id in before.items():
            assert after[value] == value_id
        assert after["ACURA"] == max(before.values()) + 1

    @pytest.mark.asyncio
    async def test_ids_survive_a_new_container(self, service, settings):
        before = await service.enumerator.enumerate("model")

        restarted = DIContainer(settings=settings).get('enumerator')
        assert await restarted.enumerate("model") == before

    @pytest.mark.asyncio
    async def test_row_id_columns_are_backfilled(self, service):
        rows = await service.row_store.fetch_all(text(
            "SELECT COUNT(*) AS missing FROM vehicles "
            "WHERE (make IS NOT NULL AND make_id IS NULL) OR (model IS NOT NULL AND model_id IS NULL)"
        ))
        assert rows[0]["missing"] == 0

    @pytest.mark.asyncio
    async def test_lookup_misses_raise_unknown_value(self, service):
        enumerator = service.enumerator
        honda_id = enumerator.id_for("make", "HONDA")
        assert enumerator.text_for("make", honda_id) == "HONDA"

        with pytest.raises(UnknownValue):
            enumerator.id_for("make", "DELOREAN")
        with pytest.raises(UnknownValue):
            enumerator.text_for("make", 999)
        with pytest.raises(UnknownValue):
            enumerator.id_for("wheel_count", 4)

    @pytest.mark.asyncio
    async def test_refresh_replaces_the_table_object(self, service):
        old_table = await service.enumerator.load_table("make")
        await service.import_rows([vehicle(2022, "ACURA", "MDX", 2021)])
        new_table = await service.enumerator.load_table("make")

        assert new_table is not old_table
        assert "ACURA" not in old_table.by_text
        assert "ACURA" in new_table.by_text

    @pytest.mark.asyncio
    async def test_corrupt_table_halts_the_enumerator(self, container):
        repository = container.get('enumeration_repository')
        await repository.append_entries("make", [(1, "HONDA"), (1, "ACURA")])
        enumerator = container.get('enumerator')

        with pytest.raises(EnumerationCorruptionError):
            await enumerator.enumerate("make")

        assert enumerator.is_halted
        # every later call fails the same way, including other dimensions
        with pytest.raises(EnumerationCorruptionError):
            await enumerator.enumerate("model")
        with pytest.raises(EnumerationCorruptionError):
            enumerator.id_for("make", "HONDA")
