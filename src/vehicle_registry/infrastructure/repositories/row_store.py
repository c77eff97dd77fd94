"""Row store access over SQLAlchemy.

Blocking database calls run in a worker thread so long operations can be
awaited and cancelled by the caller.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import structlog
from sqlalchemy import bindparam, insert, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import TextClause

from ...db.models import Vehicle
from ...domain.value_objects.dimension import DIMENSIONS

logger = structlog.get_logger()

ROW_COLUMNS = [
    "year", "make", "model", "fuel_type", "vehicle_type", "vehicle_class",
    "admin_region", "color", "model_year", "net_mass", "cylinder_count",
    "displacement", "max_axles",
]

# Only registry columns may be interpolated into SQL
_KNOWN_COLUMNS = frozenset(
    [spec.text_column for spec in DIMENSIONS.values()]
    + [spec.id_column for spec in DIMENSIONS.values()]
    + ROW_COLUMNS
)


def _check_column(column: str) -> str:
    if column not in _KNOWN_COLUMNS:
        raise ValueError(f"Unknown row store column: {column}")
    return column


class RowStore:
    """Read/write access to the vehicles table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    # --- reads ---

    async def rows_for(self, year: int) -> List[Dict[str, Any]]:
        """All rows registered in a year."""
        statement = text(f"SELECT {', '.join(ROW_COLUMNS)} FROM vehicles WHERE year = :year ORDER BY id")
        return await self.fetch_all(statement, {"year": year})

    async def distinct_values(self, column: str, years: Optional[Iterable[int]] = None) -> List[Any]:
        """Distinct non-null values of a column, optionally restricted to some years."""
        column = _check_column(column)
        if years is None:
            statement = text(
                f"SELECT DISTINCT {column} AS value FROM vehicles "
                f"WHERE {column} IS NOT NULL ORDER BY {column}"
            )
            rows = await self.fetch_all(statement)
        else:
            year_list = sorted(set(years))
            if not year_list:
                return []
            statement = text(
                f"SELECT DISTINCT {column} AS value FROM vehicles "
                f"WHERE {column} IS NOT NULL AND year IN :years ORDER BY {column}"
            ).bindparams(bindparam("years", expanding=True))
            rows = await self.fetch_all(statement, {"years": year_list})
        return [row["value"] for row in rows]

    async def years(self) -> List[int]:
        return await self.distinct_values("year")

    async def row_count(self) -> int:
        rows = await self.fetch_all(text("SELECT COUNT(*) AS total FROM vehicles"))
        return int(rows[0]["total"])

    async def execute(self, statement: TextClause, params: Optional[Dict[str, Any]] = None) -> List[Tuple[Any, float]]:
        """Run an aggregate query returning (key, value) rows."""
        rows = await asyncio.to_thread(self._execute_sync, statement, params or {})
        return [(row[0], row[1]) for row in rows]

    async def fetch_all(self, statement: TextClause, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run a query and return rows as dictionaries."""
        return await asyncio.to_thread(self._fetch_all_sync, statement, params or {})

    def _execute_sync(self, statement: TextClause, params: Dict[str, Any]) -> List[Sequence[Any]]:
        with Session(self.engine) as session:
            return [tuple(row) for row in session.execute(statement, params).fetchall()]

    def _fetch_all_sync(self, statement: TextClause, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        with Session(self.engine) as session:
            return [dict(row) for row in session.execute(statement, params).mappings().fetchall()]

    # --- writes ---

    async def insert_rows(self, rows: Sequence[Dict[str, Any]]) -> int:
        """Append rows. Enumerated id columns are left empty until the next enumeration."""
        if not rows:
            return 0
        return await asyncio.to_thread(self._insert_rows_sync, rows)

    def _insert_rows_sync(self, rows: Sequence[Dict[str, Any]]) -> int:
        records = [{column: row.get(column) for column in ROW_COLUMNS} for row in rows]
        with Session(self.engine) as session, session.begin():
            session.execute(insert(Vehicle), records)
        logger.info("Rows inserted", count=len(records))
        return len(records)
