"""Curated and uncurated year sets."""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List


@dataclass(frozen=True)
class YearConfiguration:
    """Which years are ground truth and which are scanned for uncurated pairs."""

    curated_years: FrozenSet[int] = frozenset()
    uncurated_years: FrozenSet[int] = frozenset()

    def __post_init__(self):
        overlap = self.curated_years & self.uncurated_years
        if overlap:
            raise ValueError(f"Years cannot be both curated and uncurated: {sorted(overlap)}")

    @classmethod
    def create(cls, curated_years: Iterable[int], uncurated_years: Iterable[int] = ()) -> "YearConfiguration":
        return cls(curated_years=frozenset(curated_years), uncurated_years=frozenset(uncurated_years))

    @classmethod
    def from_settings(cls, settings) -> "YearConfiguration":
        return cls.create(settings.curated_years, settings.uncurated_years)

    def resolve_uncurated(self, available_years: Iterable[int]) -> List[int]:
        """Explicit uncurated years, or every available year that is not curated."""
        if self.uncurated_years:
            return sorted(self.uncurated_years)
        return sorted(year for year in set(available_years) if year not in self.curated_years)
