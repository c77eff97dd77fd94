from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Integer, Float, DateTime, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from ..utils.common import utc_now


# --- row store ---
class Vehicle(Base):
    """One registration record. Text columns as imported, *_id columns filled by enumeration."""

    __tablename__ = "vehicles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # categorical text, as imported
    make: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    fuel_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    vehicle_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    vehicle_class: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    admin_region: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # numeric
    model_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    net_mass: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cylinder_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    displacement: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_axles: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # enumerated ids
    make_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    model_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    fuel_type_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    vehicle_type_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    vehicle_class_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    admin_region_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    color_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


Index("ix_vehicles_year_make_model", Vehicle.year, Vehicle.make_id, Vehicle.model_id)
Index("ix_vehicles_make_id", Vehicle.make_id)
Index("ix_vehicles_model_id", Vehicle.model_id)
Index("ix_vehicles_fuel_type_id", Vehicle.fuel_type_id)
Index("ix_vehicles_vehicle_type_id", Vehicle.vehicle_type_id)
Index("ix_vehicles_vehicle_class_id", Vehicle.vehicle_class_id)
Index("ix_vehicles_admin_region_id", Vehicle.admin_region_id)
Index("ix_vehicles_model_year", Vehicle.model_year)


# --- enumeration ---
class EnumerationEntry(Base):
    """Persisted text <-> id assignment for one categorical dimension."""

    __tablename__ = "dimension_enum"

    # id/text uniqueness is verified on load by DimensionEnumerator
    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dimension: Mapped[str] = mapped_column(String, nullable=False)
    value_id: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(String, nullable=False)


Index("ix_dimension_enum_dimension_text", EnumerationEntry.dimension, EnumerationEntry.text)
Index("ix_dimension_enum_dimension_value", EnumerationEntry.dimension, EnumerationEntry.value_id)


# --- regularization ---
class MakeModelRegularization(Base):
    __tablename__ = "make_model_regularization"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pair_key: Mapped[str] = mapped_column(String, nullable=False)
    uncurated_make_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    uncurated_model_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    canonical_make: Mapped[str] = mapped_column(String, nullable=False)
    canonical_model: Mapped[str] = mapped_column(String, nullable=False)
    canonical_make_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    canonical_model_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    canonical_fuel_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    canonical_vehicle_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    record_count: Mapped[int] = mapped_column(Integer, default=0)
    source: Mapped[str] = mapped_column(String, default="exact")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (UniqueConstraint("pair_key", name="uq_make_model_regularization_pair_key"),)


Index("ix_regularization_uncurated", MakeModelRegularization.uncurated_make_id, MakeModelRegularization.uncurated_model_id)
Index("ix_regularization_canonical", MakeModelRegularization.canonical_make_id, MakeModelRegularization.canonical_model_id)
