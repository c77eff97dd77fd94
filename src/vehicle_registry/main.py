"""FastAPI application exposing the registry operations."""

from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .domain.value_objects.regularization_status import RegularizationStatus, derive_status
from .errors import (
    EnumerationCorruptionError, InvalidFilterError, PersistenceError, UnknownValue, ValidationError
)
from .models import (
    CanonicalPairResponse, FilterItem, HealthResponse, MappingResponse, PromoteRequest,
    QueryRequest, ResultSet, SweepReport, UncuratedPairResponse, YearConfigurationRequest
)
from .service import RegistryService
from .utils.logging import setup_logging

settings = get_settings()
setup_logging()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Make/model regularization and filtered aggregate queries over vehicle registrations"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_service: Optional[RegistryService] = None


def get_service() -> RegistryService:
    global _service
    if _service is None:
        _service = RegistryService()
    return _service


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error(422, exc)


@app.exception_handler(InvalidFilterError)
async def invalid_filter_handler(request: Request, exc: InvalidFilterError):
    return _error(422, exc)


@app.exception_handler(UnknownValue)
async def unknown_value_handler(request: Request, exc: UnknownValue):
    return _error(404, exc)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    return _error(409, exc)


@app.exception_handler(EnumerationCorruptionError)
async def enumeration_corruption_handler(request: Request, exc: EnumerationCorruptionError):
    return _error(500, exc)


@app.get("/health", response_model=HealthResponse)
async def health_check(service: RegistryService = Depends(get_service)):
    """Health check endpoint."""
    health = await service.health()
    return HealthResponse(version=settings.app_version, **health)


# --- regularization ---

@app.get("/pairs", response_model=List[UncuratedPairResponse])
async def list_pairs(include_exact_matches: bool = True, service: RegistryService = Depends(get_service)):
    """Uncurated (make, model) pairs with their derived status."""
    return [
        UncuratedPairResponse(
            pair_key=pair.pair_key,
            make_id=pair.make_id,
            model_id=pair.model_id,
            make_text=pair.make_text,
            model_text=pair.model_text,
            record_count=pair.record_count,
            earliest_year=pair.earliest_year,
            latest_year=pair.latest_year,
            percentage_of_total=pair.percentage_of_total,
            status=status,
        )
        for pair, status in await service.pairs_with_status(include_exact_matches)
    ]


@app.get("/pairs/{make_id}/{model_id}/canonical", response_model=CanonicalPairResponse)
async def canonical_for_pair(make_id: int, model_id: int, service: RegistryService = Depends(get_service)):
    pair = await service.find_pair(make_id, model_id)
    resolved = await service.resolve_canonical_for_pair(pair)
    if resolved is None:
        return CanonicalPairResponse()
    return CanonicalPairResponse(make=resolved[0], model=resolved[1], found=True)


@app.post("/regularization/auto", response_model=SweepReport)
async def auto_regularize(service: RegistryService = Depends(get_service)):
    return await service.auto_regularize()


@app.post("/regularization/fuzzy", response_model=SweepReport)
async def fuzzy_regularize(service: RegistryService = Depends(get_service)):
    return await service.fuzzy_regularize()


@app.post("/mappings/complete", response_model=MappingResponse)
async def promote_to_complete(request: PromoteRequest, service: RegistryService = Depends(get_service)):
    pair = await service.find_pair(request.make_id, request.model_id)
    mapping = await service.promote_to_complete(
        pair,
        fuel_type=request.fuel_type,
        vehicle_type=request.vehicle_type,
        canonical_make=request.canonical_make,
        canonical_model=request.canonical_model,
    )
    return MappingResponse(
        pair_key=mapping.pair_key,
        canonical_make=mapping.canonical_make,
        canonical_model=mapping.canonical_model,
        canonical_fuel_type=mapping.canonical_fuel_type,
        canonical_vehicle_type=mapping.canonical_vehicle_type,
        record_count=mapping.record_count,
        source=mapping.source,
        status=derive_status(pair, mapping, None),
        created_at=mapping.created_at,
        updated_at=mapping.updated_at,
    )


@app.delete("/mappings/{pair_key}")
async def delete_mapping(pair_key: str, service: RegistryService = Depends(get_service)):
    deleted = await service.delete_mapping(pair_key)
    if not deleted:
        raise UnknownValue("mapping", pair_key)
    return {"pair_key": pair_key, "status": RegularizationStatus.UNMAPPED.value}


# --- filters and queries ---

@app.get("/filters/{dimension}", response_model=List[FilterItem])
async def available_values(dimension: str,
                           constrained_by: List[int] = Query(default=[]),
                           limit_to_curated_years: bool = False,
                           service: RegistryService = Depends(get_service)):
    return await service.get_available(dimension, constrained_by, limit_to_curated_years)


@app.post("/query", response_model=ResultSet)
async def run_query(request: QueryRequest, service: RegistryService = Depends(get_service)):
    return await service.build_and_run(request.filter, request.metric)


# --- configuration ---

@app.put("/config/years")
async def set_years(request: YearConfigurationRequest, service: RegistryService = Depends(get_service)):
    try:
        config = service.set_year_configuration(request.curated_years, request.uncurated_years)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return {
        "curated_years": sorted(config.curated_years),
        "uncurated_years": sorted(config.uncurated_years),
    }


@app.post("/enumerations/refresh")
async def refresh_enumerations(service: RegistryService = Depends(get_service)):
    return {"dimensions": await service.refresh_enumerations()}
