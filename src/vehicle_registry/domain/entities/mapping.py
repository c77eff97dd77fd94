"""Uncurated pairs and the Mapping records that regularize them."""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from ...utils.common import pair_key
from .hierarchy import CanonicalModel


@dataclass(frozen=True)
class UncuratedPair:
    """A (make, model) text combination observed in the row store."""

    make_id: int
    model_id: int
    make_text: str
    model_text: str
    record_count: int = 0
    earliest_year: Optional[int] = None
    latest_year: Optional[int] = None
    percentage_of_total: float = 0.0

    def __post_init__(self):
        if self.record_count < 0:
            raise ValueError("Record count cannot be negative")
        if (self.earliest_year is not None and self.latest_year is not None
                and self.earliest_year > self.latest_year):
            raise ValueError("Earliest year must not be after latest year")

    @property
    def pair_key(self) -> str:
        return pair_key(self.make_id, self.model_id)

    @property
    def display_name(self) -> str:
        return f"{self.make_text} / {self.model_text}"


@dataclass(frozen=True)
class Mapping:
    """Persisted regularization of one uncurated pair onto the canonical hierarchy."""

    pair_key: str
    canonical_make: str
    canonical_model: str
    canonical_fuel_type: Optional[str] = None
    canonical_vehicle_type: Optional[str] = None
    uncurated_make_id: Optional[int] = None
    uncurated_model_id: Optional[int] = None
    canonical_make_id: Optional[int] = None
    canonical_model_id: Optional[int] = None
    record_count: int = 0
    source: str = "exact"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.pair_key:
            raise ValueError("Mapping needs a pair key")
        if not self.canonical_make or not self.canonical_model:
            raise ValueError("Mapping needs canonical make and model")

    @property
    def is_complete(self) -> bool:
        return bool(self.canonical_fuel_type or self.canonical_vehicle_type)

    @classmethod
    def for_pair(cls, pair: UncuratedPair, canonical: CanonicalModel, source: str) -> "Mapping":
        """Create a make/model-only mapping for a pair."""
        return cls(
            pair_key=pair.pair_key,
            canonical_make=canonical.make,
            canonical_model=canonical.name,
            uncurated_make_id=pair.make_id,
            uncurated_model_id=pair.model_id,
            canonical_make_id=canonical.make_id,
            canonical_model_id=canonical.model_id,
            record_count=pair.record_count,
            source=source,
        )

    def with_details(self,
                     fuel_type: Optional[str] = None,
                     vehicle_type: Optional[str] = None,
                     source: Optional[str] = None) -> "Mapping":
        """Copy with fuel/vehicle type added. Supplied values replace existing ones."""
        return replace(
            self,
            canonical_fuel_type=fuel_type or self.canonical_fuel_type,
            canonical_vehicle_type=vehicle_type or self.canonical_vehicle_type,
            source=source or self.source,
        )
