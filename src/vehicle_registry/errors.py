"""Error taxonomy for the registry core."""

from typing import Any, Dict, List, Optional


class RegistryError(Exception):
    """Base class for every error raised by the registry core."""


class UnknownValue(RegistryError):
    """Enumeration lookup miss. Recoverable; callers treat the value as absent."""

    def __init__(self, dimension: str, value: Any):
        self.dimension = dimension
        self.value = value
        super().__init__(f"Unknown {dimension} value: {value!r}")


class ValidationError(RegistryError):
    """Malformed promotion or filter request. The operation is aborted with no partial state."""


class InvalidFilterError(RegistryError):
    """Filter references an empty or nonexistent dimension or value."""

    def __init__(self, message: str, dimension: Optional[str] = None):
        self.dimension = dimension
        super().__init__(message)


class PersistenceError(RegistryError):
    """Mapping write failed."""

    def __init__(self, message: str, pair_key: Optional[str] = None):
        self.pair_key = pair_key
        super().__init__(message)


class StaleCacheError(RegistryError):
    """A cache consumer holds a superseded snapshot."""

    def __init__(self, held_generation: int, current_generation: int):
        self.held_generation = held_generation
        self.current_generation = current_generation
        super().__init__(
            f"Snapshot generation {held_generation} superseded by {current_generation}"
        )


class EnumerationCorruptionError(RegistryError):
    """Enumeration table maps one id to two texts (or one text to two ids). Fatal."""

    def __init__(self, dimension: str, conflicts: List[Dict[str, Any]]):
        self.dimension = dimension
        self.conflicts = conflicts
        super().__init__(
            f"Enumeration table for {dimension} is corrupt: {len(conflicts)} conflicting entries"
        )
