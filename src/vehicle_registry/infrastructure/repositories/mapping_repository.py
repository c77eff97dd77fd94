"""Mapping store backed by the make_model_regularization table."""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional
import structlog
from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...db.models import MakeModelRegularization
from ...domain.entities.mapping import Mapping
from ...errors import PersistenceError
from ...utils.common import utc_now

logger = structlog.get_logger()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive values, they were written as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_entity(record: MakeModelRegularization) -> Mapping:
    return Mapping(
        pair_key=record.pair_key,
        canonical_make=record.canonical_make,
        canonical_model=record.canonical_model,
        canonical_fuel_type=record.canonical_fuel_type,
        canonical_vehicle_type=record.canonical_vehicle_type,
        uncurated_make_id=record.uncurated_make_id,
        uncurated_model_id=record.uncurated_model_id,
        canonical_make_id=record.canonical_make_id,
        canonical_model_id=record.canonical_model_id,
        record_count=record.record_count or 0,
        source=record.source,
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


def _apply(record: MakeModelRegularization, mapping: Mapping) -> None:
    record.canonical_make = mapping.canonical_make
    record.canonical_model = mapping.canonical_model
    record.canonical_fuel_type = mapping.canonical_fuel_type
    record.canonical_vehicle_type = mapping.canonical_vehicle_type
    record.uncurated_make_id = mapping.uncurated_make_id
    record.uncurated_model_id = mapping.uncurated_model_id
    record.canonical_make_id = mapping.canonical_make_id
    record.canonical_model_id = mapping.canonical_model_id
    record.record_count = mapping.record_count
    record.source = mapping.source


class MappingRepository:
    """At most one Mapping per pair key. Every write commits on its own."""

    def __init__(self, engine: Engine):
        self.engine = engine

    async def load_mappings(self) -> List[Mapping]:
        return await asyncio.to_thread(self._load_mappings_sync)

    def _load_mappings_sync(self) -> List[Mapping]:
        try:
            with Session(self.engine) as session:
                records = session.execute(
                    select(MakeModelRegularization).order_by(MakeModelRegularization.pair_key)
                ).scalars().all()
                return [_to_entity(record) for record in records]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load mappings: {e}") from e

    async def get_mapping(self, pair_key: str) -> Optional[Mapping]:
        return await asyncio.to_thread(self._get_mapping_sync, pair_key)

    def _get_mapping_sync(self, pair_key: str) -> Optional[Mapping]:
        try:
            with Session(self.engine) as session:
                record = session.execute(
                    select(MakeModelRegularization).where(MakeModelRegularization.pair_key == pair_key)
                ).scalar_one_or_none()
                return _to_entity(record) if record else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load mapping: {e}", pair_key=pair_key) from e

    async def save_mapping(self, mapping: Mapping) -> Mapping:
        """Insert a new mapping. Fails with PersistenceError if the pair already has one."""
        return await asyncio.to_thread(self._save_mapping_sync, mapping)

    def _save_mapping_sync(self, mapping: Mapping) -> Mapping:
        now = utc_now()
        record = MakeModelRegularization(pair_key=mapping.pair_key, created_at=now, updated_at=now)
        _apply(record, mapping)
        try:
            with Session(self.engine) as session, session.begin():
                session.add(record)
                session.flush()
                saved = _to_entity(record)
        except IntegrityError as e:
            raise PersistenceError(
                f"Mapping already exists for pair {mapping.pair_key}", pair_key=mapping.pair_key
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save mapping: {e}", pair_key=mapping.pair_key) from e
        return saved

    async def update_mapping(self, mapping: Mapping) -> Mapping:
        """Replace an existing mapping. Fails with PersistenceError if there is none."""
        return await asyncio.to_thread(self._update_mapping_sync, mapping)

    def _update_mapping_sync(self, mapping: Mapping) -> Mapping:
        try:
            with Session(self.engine) as session, session.begin():
                record = session.execute(
                    select(MakeModelRegularization).where(MakeModelRegularization.pair_key == mapping.pair_key)
                ).scalar_one_or_none()
                if record is None:
                    raise PersistenceError(
                        f"No mapping to update for pair {mapping.pair_key}", pair_key=mapping.pair_key
                    )
                _apply(record, mapping)
                record.updated_at = utc_now()
                session.flush()
                updated = _to_entity(record)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update mapping: {e}", pair_key=mapping.pair_key) from e
        return updated

    async def delete_mapping(self, pair_key: str) -> bool:
        return await asyncio.to_thread(self._delete_mapping_sync, pair_key)

    def _delete_mapping_sync(self, pair_key: str) -> bool:
        try:
            with Session(self.engine) as session, session.begin():
                result = session.execute(
                    delete(MakeModelRegularization).where(MakeModelRegularization.pair_key == pair_key)
                )
                deleted = (result.rowcount or 0) > 0
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete mapping: {e}", pair_key=pair_key) from e
        if deleted:
            logger.info("Mapping deleted", pair_key=pair_key)
        return deleted
