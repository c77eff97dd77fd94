import pytest
import pytest_asyncio

from vehicle_registry.config import Settings
from vehicle_registry.infrastructure.di_container import DIContainer
from vehicle_registry.service import RegistryService

CURATED_YEAR = 2020


def vehicle(year, make, model, model_year=None, **overrides):
    row = {
        "year": year,
        "make": make,
        "model": model,
        "model_year": model_year,
        "fuel_type": "E",
        "vehicle_type": "AU",
        "vehicle_class": "PAU",
        "admin_region": "MONTREAL (06)",
        "color": None,
        "net_mass": 1300.0,
        "cylinder_count": 4,
        "displacement": 1800.0,
        "max_axles": 2,
    }
    row.update(overrides)
    return row


# 2020 is curated; 2021 and 2022 carry a typo'd make (VOLV0) and a truncated model (CIVI)
SAMPLE_ROWS = (
    [vehicle(2020, "HONDA", "CIVIC", 2018) for _ in range(3)]
    + [
        vehicle(2020, "HONDA", "CIVIC", 2021),
        vehicle(2020, "HONDA", "ACCORD", 2013),
        vehicle(2020, "VOLVO", "XC60", 2019, fuel_type="D", net_mass=1900.0),
        vehicle(2020, "TOYOTA", "COROLLA", 2015),
        vehicle(2020, "MACK", "GRANITE", 2014, fuel_type="D", vehicle_type="CA",
                vehicle_class="CAU", net_mass=10000.0, max_axles=3),
    ]
    + [vehicle(2021, "HONDA", "CIVIC", 2015) for _ in range(2)]
    + [
        vehicle(2021, "HONDA", "CIVIC", 2022),
        vehicle(2021, "VOLV0", "XC60", 2018, fuel_type="D", net_mass=1900.0),
        vehicle(2021, "HONDA", "CIVI", 2019),
        vehicle(2021, "TOYOTA", "COROLLA", 2016),
        vehicle(2022, "HONDA", "CIVIC", 2017),
        vehicle(2022, "VOLV0", "XC60", 2020, fuel_type="D", net_mass=1900.0),
        vehicle(2022, "NOVA", "LFS", None, fuel_type="D", vehicle_type="AB",
                vehicle_class="CAU", net_mass=12000.0, max_axles=None),
    ]
)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'registry.db'}",
        curated_years=[CURATED_YEAR],
        uncurated_years=[],
        fuzzy_make_threshold=75.0,
        cache_preload_on_startup=False,
        log_format="console",
    )


@pytest.fixture
def container(settings):
    return DIContainer(settings=settings)


@pytest_asyncio.fixture
async def service(container):
    service = RegistryService(container)
    await service.import_rows(SAMPLE_ROWS)
    return service


@pytest_asyncio.fixture
async def pairs(service):
    """Uncurated pairs keyed by (make, model) text."""
    found = await service.find_uncurated_pairs(include_exact_matches=True)
    return {(pair.make_text, pair.model_text): pair for pair in found}
