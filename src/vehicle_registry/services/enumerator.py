"""Stable integer ids for every distinct value of each filterable dimension."""

import asyncio
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from ..domain.value_objects.dimension import (
    Dimension, DimensionSpec, resolve_dimension, DIMENSIONS
)
from ..errors import EnumerationCorruptionError, UnknownValue
from ..infrastructure.repositories.enumeration_repository import EnumerationRepository
from ..infrastructure.repositories.row_store import RowStore
from ..utils.logging import data_logger

logger = structlog.get_logger()


@dataclass(frozen=True)
class EnumerationTable:
    """Immutable id <-> text table for one dimension."""

    dimension: str
    by_text: Mapping[str, int] = field(default_factory=dict)
    by_id: Mapping[int, str] = field(default_factory=dict)
    high_water_mark: int = 0

    @classmethod
    def from_entries(cls,
                     dimension: str,
                     entries: Iterable[Tuple[int, str]],
                     live_texts: Optional[Iterable[str]] = None) -> "EnumerationTable":
        """
        Build a table from persisted entries.

        Raises EnumerationCorruptionError when one id carries two texts or
        one text carries two ids. When live_texts is given, only those texts
        are exposed; the high-water mark still covers every persisted id.
        """
        by_text: Dict[str, int] = {}
        by_id: Dict[int, str] = {}
        conflicts: List[Dict[str, Any]] = []
        high_water_mark = 0

        for value_id, value in entries:
            if value_id in by_id and by_id[value_id] != value:
                conflicts.append({"id": value_id, "texts": [by_id[value_id], value]})
                continue
            if value in by_text and by_text[value] != value_id:
                conflicts.append({"text": value, "ids": [by_text[value], value_id]})
                continue
            by_id[value_id] = value
            by_text[value] = value_id
            high_water_mark = max(high_water_mark, value_id)

        if conflicts:
            raise EnumerationCorruptionError(dimension, conflicts)

        if live_texts is not None:
            live = set(live_texts)
            by_text = {value: value_id for value, value_id in by_text.items() if value in live}
            by_id = {value_id: value for value, value_id in by_text.items()}

        return cls(
            dimension=dimension,
            by_text=MappingProxyType(by_text),
            by_id=MappingProxyType(by_id),
            high_water_mark=high_water_mark,
        )

    @classmethod
    def numeric(cls, dimension: str, values: Iterable[Any]) -> "EnumerationTable":
        """Numeric domains use the value itself as the id."""
        ids = sorted({int(value) for value in values if value is not None})
        return cls(
            dimension=dimension,
            by_text=MappingProxyType({str(value): value for value in ids}),
            by_id=MappingProxyType({value: str(value) for value in ids}),
            high_water_mark=ids[-1] if ids else 0,
        )

    def __len__(self) -> int:
        return len(self.by_id)

    def sorted_items(self) -> List[Tuple[int, str]]:
        """(id, text) pairs in display order."""
        if DIMENSIONS[Dimension(self.dimension)].categorical:
            return sorted(self.by_id.items(), key=lambda item: item[1])
        return sorted(self.by_id.items())


class DimensionEnumerator:
    """
    Assigns stable integer ids to the distinct values of each dimension.

    Ids survive re-enumeration: a text keeps its persisted id and new texts
    are numbered above the highest id ever assigned. Each rebuilt table
    replaces the previous one with a single reference swap.
    """

    def __init__(self, row_store: RowStore, repository: EnumerationRepository):
        self.row_store = row_store
        self.repository = repository
        self._tables: Dict[str, EnumerationTable] = {}
        self._write_lock = asyncio.Lock()
        self._failure: Optional[EnumerationCorruptionError] = None

    @property
    def is_halted(self) -> bool:
        return self._failure is not None

    def _check_halted(self) -> None:
        if self._failure is not None:
            raise self._failure

    async def enumerate(self, dimension, refresh: bool = False) -> Dict[str, int]:
        """Mapping of distinct value text to id for a dimension."""
        table = await self.load_table(dimension, refresh=refresh)
        return dict(table.by_text)

    async def load_table(self, dimension, refresh: bool = False) -> EnumerationTable:
        self._check_halted()
        spec = resolve_dimension(dimension)

        table = self._tables.get(spec.name)
        if table is not None and not refresh:
            return table

        async with self._write_lock:
            self._check_halted()
            table = self._tables.get(spec.name)
            if table is not None and not refresh:
                return table

            if spec.categorical:
                table = await self._build_categorical(spec)
            else:
                table = EnumerationTable.numeric(spec.name, await self.row_store.distinct_values(spec.text_column))
                data_logger.log_enumeration(spec.name, len(table), 0)

            self._tables[spec.name] = table
            return table

    async def _build_categorical(self, spec: DimensionSpec) -> EnumerationTable:
        persisted = await self.repository.load_entries(spec.name)
        try:
            current = EnumerationTable.from_entries(spec.name, persisted)
        except EnumerationCorruptionError as e:
            self._failure = e
            logger.critical(
                "Enumeration table corrupt, enumerator halted",
                dimension=spec.name,
                conflicts=e.conflicts
            )
            raise

        texts = await self.row_store.distinct_values(spec.text_column)

        new_entries: List[Tuple[int, str]] = []
        next_id = current.high_water_mark + 1
        for value in sorted(texts):
            if value not in current.by_text:
                new_entries.append((next_id, value))
                next_id += 1

        await self.repository.append_entries(spec.name, new_entries)
        await self.repository.backfill_ids(spec)

        data_logger.log_enumeration(spec.name, len(texts), len(new_entries))
        return EnumerationTable.from_entries(spec.name, list(persisted) + new_entries, live_texts=texts)

    async def enumerate_all(self, refresh: bool = False) -> Dict[str, int]:
        """Enumerate every dimension. Returns value counts per dimension."""
        counts: Dict[str, int] = {}
        for spec in DIMENSIONS.values():
            table = await self.load_table(spec.dimension, refresh=refresh)
            counts[spec.name] = len(table)
        return counts

    def table(self, dimension) -> Optional[EnumerationTable]:
        """Current table, or None if the dimension has not been enumerated yet."""
        self._check_halted()
        return self._tables.get(resolve_dimension(dimension).name)

    def id_for(self, dimension, value: Any) -> int:
        """Id of a value. Raises UnknownValue on a miss."""
        self._check_halted()
        spec = resolve_dimension(dimension)
        table = self._tables.get(spec.name)
        key = value if spec.categorical else str(value)
        if table is None or key not in table.by_text:
            raise UnknownValue(spec.name, value)
        return table.by_text[key]

    def text_for(self, dimension, value_id: int) -> str:
        """Text of an id. Raises UnknownValue on a miss."""
        self._check_halted()
        spec = resolve_dimension(dimension)
        table = self._tables.get(spec.name)
        if table is None or value_id not in table.by_id:
            raise UnknownValue(spec.name, value_id)
        return table.by_id[value_id]
