import pandas as pd
import pytest

from vehicle_registry.loader import prepare_frame
from vehicle_registry.utils.common import normalize_registry_value

CSV = (
    "AN,MARQ_VEH,MODEL_VEH,ANNEE_MOD,MASSE_NETTE,NB_ESIEU_MAX,TYP_CARBU,TYP_VEH_CATEG_USA,CLAS,REG_ADM\n"
    "2023, honda ,civic,2019,1300,2,E,AU,PAU,Montréal (06)\n"
    "2023,CITROËN,C4,,n/a,,E,AU,PAU,\n"
)


class TestNormalization:

    def test_values_are_trimmed_upper_cased_and_transliterated(self):
        assert normalize_registry_value("  honda  civic ") == "HONDA CIVIC"
        assert normalize_registry_value("Citroën") == "CITROEN"

    def test_empty_values_become_none(self):
        assert normalize_registry_value(None) is None
        assert normalize_registry_value("   ") is None
        assert normalize_registry_value(float("nan")) is None


class TestPrepareFrame:

    def test_source_headers_are_mapped(self):
        frame = pd.DataFrame({"AN": ["2023"], "MARQ_VEH": ["honda"], "MODEL_VEH": ["civic"], "NB_CYL": ["4"]})
        [record] = prepare_frame(frame)
        assert record["year"] == 2023
        assert record["make"] == "HONDA"
        assert record["model"] == "CIVIC"
        assert record["cylinder_count"] == 4
        assert record["net_mass"] is None

    def test_year_argument_overrides_the_file(self):
        frame = pd.DataFrame({"make": ["HONDA"], "model": ["CIVIC"]})
        [record] = prepare_frame(frame, year=2011)
        assert record["year"] == 2011

    def test_missing_year_is_rejected(self):
        with pytest.raises(ValueError):
            prepare_frame(pd.DataFrame({"make": ["HONDA"]}))


class TestLoadCsv:

    @pytest.mark.asyncio
    async def test_csv_rows_are_imported_and_enumerated(self, service, tmp_path):
        path = tmp_path / "vehicles_2023.csv"
        path.write_text(CSV, encoding="utf-8")

        inserted = await service.import_csv(path)

        assert inserted == 2
        assert "CITROEN" in await service.enumerator.enumerate("make")
        rows = await service.row_store.rows_for(2023)
        assert rows[0]["admin_region"] == "MONTREAL (06)"
        assert rows[1]["net_mass"] is None
        assert rows[1]["model_year"] is None
        assert rows[1]["admin_region"] is None
