"""Canonical Make -> Model hierarchy built from curated years."""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from ...utils.common import canonical_key


@dataclass(frozen=True)
class CanonicalModel:
    """Leaf of the canonical hierarchy."""

    make: str
    name: str
    make_id: Optional[int] = None
    model_id: Optional[int] = None
    fuel_types: Tuple[str, ...] = ()
    vehicle_types: Tuple[str, ...] = ()
    record_count: int = 0

    def __post_init__(self):
        if not self.make or not self.name:
            raise ValueError("Canonical model needs both make and model text")
        if self.record_count < 0:
            raise ValueError("Record count cannot be negative")

    @property
    def key(self) -> Tuple[str, str]:
        return canonical_key(self.make, self.name)


@dataclass(frozen=True)
class CanonicalMake:
    name: str
    make_id: Optional[int] = None
    models: Tuple[CanonicalModel, ...] = ()

    def __post_init__(self):
        if not self.name:
            raise ValueError("Canonical make needs a name")
        for model in self.models:
            if model.make != self.name:
                raise ValueError(f"Model {model.name} belongs to {model.make}, not {self.name}")


@dataclass(frozen=True)
class Hierarchy:
    """Immutable canonical tree with a (make, model) lookup index."""

    makes: Tuple[CanonicalMake, ...] = ()
    curated_years: FrozenSet[int] = frozenset()
    _index: Dict[Tuple[str, str], CanonicalModel] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        index: Dict[Tuple[str, str], CanonicalModel] = {}
        seen_makes = set()
        for make in self.makes:
            if make.name in seen_makes:
                raise ValueError(f"Duplicate canonical make: {make.name}")
            seen_makes.add(make.name)
            for model in make.models:
                if model.key in index:
                    raise ValueError(f"Duplicate canonical leaf: {model.make}/{model.name}")
                index[model.key] = model
        object.__setattr__(self, '_index', index)

    @classmethod
    def empty(cls, curated_years=()) -> "Hierarchy":
        return cls(makes=(), curated_years=frozenset(curated_years))

    @property
    def is_empty(self) -> bool:
        return not self._index

    @property
    def leaf_count(self) -> int:
        return len(self._index)

    def find_model(self, make: str, model: str) -> Optional[CanonicalModel]:
        """Exact, ordinal lookup of a canonical leaf."""
        return self._index.get(canonical_key(make, model))

    def contains(self, make: str, model: str) -> bool:
        return canonical_key(make, model) in self._index

    def find_make(self, name: str) -> Optional[CanonicalMake]:
        for make in self.makes:
            if make.name == name:
                return make
        return None

    def make_names(self) -> List[str]:
        return [make.name for make in self.makes]

    def models_for(self, make: str) -> List[CanonicalModel]:
        canonical_make = self.find_make(make)
        return list(canonical_make.models) if canonical_make else []

    def leaves(self) -> List[CanonicalModel]:
        return [model for make in self.makes for model in make.models]

    def canonical_keys(self) -> FrozenSet[Tuple[str, str]]:
        return frozenset(self._index)


@dataclass(frozen=True)
class NotYetBuilt:
    """The hierarchy has not been built for the current year configuration."""


@dataclass(frozen=True)
class Built:
    hierarchy: Hierarchy


HierarchyState = Union[NotYetBuilt, Built]

NOT_YET_BUILT = NotYetBuilt()
