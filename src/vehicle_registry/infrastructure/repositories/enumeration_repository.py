"""Persistence of dimension enumerations."""

import asyncio
from typing import List, Sequence, Tuple
import structlog
from sqlalchemy import insert, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ...db.models import EnumerationEntry
from ...domain.value_objects.dimension import DimensionSpec

logger = structlog.get_logger()


class EnumerationRepository:
    """Reads and appends (id, text) entries in the dimension_enum table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    async def load_entries(self, dimension: str) -> List[Tuple[int, str]]:
        return await asyncio.to_thread(self._load_entries_sync, dimension)

    def _load_entries_sync(self, dimension: str) -> List[Tuple[int, str]]:
        with Session(self.engine) as session:
            rows = session.execute(
                select(EnumerationEntry.value_id, EnumerationEntry.text)
                .where(EnumerationEntry.dimension == dimension)
                .order_by(EnumerationEntry.value_id)
            ).all()
        return [(row.value_id, row.text) for row in rows]

    async def append_entries(self, dimension: str, entries: Sequence[Tuple[int, str]]) -> None:
        """Append new entries in a single transaction."""
        if not entries:
            return
        await asyncio.to_thread(self._append_entries_sync, dimension, entries)

    def _append_entries_sync(self, dimension: str, entries: Sequence[Tuple[int, str]]) -> None:
        with Session(self.engine) as session, session.begin():
            session.execute(
                insert(EnumerationEntry),
                [{"dimension": dimension, "value_id": value_id, "text": value} for value_id, value in entries],
            )
        logger.debug("Enumeration entries appended", dimension=dimension, count=len(entries))

    async def backfill_ids(self, spec: DimensionSpec) -> int:
        """Fill empty id columns of the row store from the enumeration table."""
        return await asyncio.to_thread(self._backfill_ids_sync, spec)

    def _backfill_ids_sync(self, spec: DimensionSpec) -> int:
        # Column names come from the dimension registry only
        statement = text(f"""
            UPDATE vehicles
            SET {spec.id_column} = (
                SELECT e.value_id FROM dimension_enum e
                WHERE e.dimension = :dimension AND e.text = vehicles.{spec.text_column}
            )
            WHERE {spec.text_column} IS NOT NULL AND {spec.id_column} IS NULL
        """)
        with Session(self.engine) as session, session.begin():
            result = session.execute(statement, {"dimension": spec.name})
        return result.rowcount or 0
