"""Pydantic models exchanged with the presentation layer."""

import enum
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from .domain.value_objects.regularization_status import RegularizationStatus


# --- filters ---

class AgeRange(BaseModel):
    """Inclusive vehicle age range. A negative lower bound is valid."""
    min_age: int = Field(..., description="Lower bound, inclusive; may be negative")
    max_age: Optional[int] = Field(default=None, description="Upper bound, inclusive; None = no upper limit")


class FilterConfiguration(BaseModel):
    """Analyst-chosen constraints, keyed by dimension name."""
    selections: Dict[str, List[int]] = Field(default_factory=dict, description="Selected ids per dimension")
    age_ranges: List[AgeRange] = Field(default_factory=list)
    limit_to_curated_years: bool = False
    apply_regularization: bool = False
    regularization_coupling: bool = True
    normalize_to_first_year: bool = False
    cumulative_sum: bool = False


class FilterItem(BaseModel):
    """One selectable value of a dimension."""
    id: int
    text: str
    label: str
    is_regularized: bool = False
    canonical_text: Optional[str] = None
    is_uncurated_only: bool = False


# --- metrics and results ---

class MetricKind(str, enum.Enum):
    COUNT = "count"
    SUM = "sum"
    AVERAGE = "average"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"
    PERCENTAGE = "percentage"
    COVERAGE = "coverage"
    ROAD_WEAR_INDEX = "road_wear_index"


class RoadWearMode(str, enum.Enum):
    SUM = "sum"
    AVERAGE = "average"


class MetricSpec(BaseModel):
    kind: MetricKind = MetricKind.COUNT
    field: Optional[str] = Field(default=None, description="Numeric field for sum/average/minimum/maximum")
    percentage_base_dimension: Optional[str] = Field(
        default=None, description="Dimension relaxed when computing the percentage denominator"
    )
    coverage_field: Optional[str] = None
    coverage_as_percentage: bool = True
    road_wear_mode: RoadWearMode = RoadWearMode.AVERAGE


class ResultPoint(BaseModel):
    key: int
    value: float


class ResultSet(BaseModel):
    metric: MetricKind
    points: List[ResultPoint] = Field(default_factory=list)
    sql: str = ""
    elapsed_ms: float = 0.0

    def as_dict(self) -> Dict[int, float]:
        return {point.key: point.value for point in self.points}


# --- regularization ---

class SweepError(BaseModel):
    pair_key: str
    message: str


class SweepReport(BaseModel):
    """Outcome of a regularization sweep."""
    strategy: str
    scanned: int = 0
    created: int = 0
    skipped_existing: int = 0
    unmatched: int = 0
    errors: List[SweepError] = Field(default_factory=list)
    processing_time_ms: float = 0.0


class UncuratedPairResponse(BaseModel):
    pair_key: str
    make_id: int
    model_id: int
    make_text: str
    model_text: str
    record_count: int
    earliest_year: Optional[int] = None
    latest_year: Optional[int] = None
    percentage_of_total: float = 0.0
    status: RegularizationStatus


class MappingResponse(BaseModel):
    pair_key: str
    canonical_make: str
    canonical_model: str
    canonical_fuel_type: Optional[str] = None
    canonical_vehicle_type: Optional[str] = None
    record_count: int = 0
    source: str
    status: RegularizationStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CanonicalPairResponse(BaseModel):
    make: Optional[str] = None
    model: Optional[str] = None
    found: bool = False


class PromoteRequest(BaseModel):
    make_id: int
    model_id: int
    fuel_type: Optional[str] = None
    vehicle_type: Optional[str] = None
    canonical_make: Optional[str] = None
    canonical_model: Optional[str] = None


class QueryRequest(BaseModel):
    filter: FilterConfiguration = Field(default_factory=FilterConfiguration)
    metric: MetricSpec = Field(default_factory=MetricSpec)


class YearConfigurationRequest(BaseModel):
    curated_years: List[int]
    uncurated_years: List[int] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    version: str
    database_connected: bool
    row_count: int = 0
    hierarchy_built: bool = False
    cache_generation: int = 0
    mapping_count: int = 0
