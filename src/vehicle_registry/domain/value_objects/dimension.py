"""Registry of the dimensions the row store can be filtered on."""

import enum
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ...errors import UnknownValue


class Dimension(str, enum.Enum):
    MAKE = "make"
    MODEL = "model"
    FUEL_TYPE = "fuel_type"
    VEHICLE_TYPE = "vehicle_type"
    VEHICLE_CLASS = "vehicle_class"
    ADMIN_REGION = "admin_region"
    COLOR = "color"
    # Numeric domains, the id is the value itself
    YEAR = "year"
    MODEL_YEAR = "model_year"
    AXLE_COUNT = "axle_count"


@dataclass(frozen=True)
class DimensionSpec:
    """Immutable description of where a dimension lives in the row store."""

    dimension: Dimension
    text_column: str
    id_column: str
    categorical: bool = True
    parent: Optional[Dimension] = None

    def __post_init__(self):
        if self.categorical and self.text_column == self.id_column:
            raise ValueError(f"Categorical dimension {self.dimension.value} needs a separate id column")
        if not self.categorical and self.text_column != self.id_column:
            raise ValueError(f"Numeric dimension {self.dimension.value} filters on its value column")

    @property
    def name(self) -> str:
        return self.dimension.value


DIMENSIONS: Dict[Dimension, DimensionSpec] = {
    Dimension.MAKE: DimensionSpec(Dimension.MAKE, "make", "make_id"),
    Dimension.MODEL: DimensionSpec(Dimension.MODEL, "model", "model_id", parent=Dimension.MAKE),
    Dimension.FUEL_TYPE: DimensionSpec(Dimension.FUEL_TYPE, "fuel_type", "fuel_type_id", parent=Dimension.MAKE),
    Dimension.VEHICLE_TYPE: DimensionSpec(
        Dimension.VEHICLE_TYPE, "vehicle_type", "vehicle_type_id", parent=Dimension.MODEL
    ),
    Dimension.VEHICLE_CLASS: DimensionSpec(Dimension.VEHICLE_CLASS, "vehicle_class", "vehicle_class_id"),
    Dimension.ADMIN_REGION: DimensionSpec(Dimension.ADMIN_REGION, "admin_region", "admin_region_id"),
    Dimension.COLOR: DimensionSpec(Dimension.COLOR, "color", "color_id"),
    Dimension.YEAR: DimensionSpec(Dimension.YEAR, "year", "year", categorical=False),
    Dimension.MODEL_YEAR: DimensionSpec(Dimension.MODEL_YEAR, "model_year", "model_year", categorical=False),
    Dimension.AXLE_COUNT: DimensionSpec(
        Dimension.AXLE_COUNT, "max_axles", "max_axles", categorical=False, parent=Dimension.VEHICLE_CLASS
    ),
}

# Parent -> child relationships materialized by the filter cache
RELATIONSHIPS: List[Tuple[Dimension, Dimension]] = [
    (spec.parent, spec.dimension) for spec in DIMENSIONS.values() if spec.parent is not None
]


def resolve_dimension(name) -> DimensionSpec:
    """Look up a dimension by name. Raises UnknownValue for names outside the registry."""
    try:
        return DIMENSIONS[Dimension(name)]
    except ValueError:
        raise UnknownValue("dimension", name) from None
