from .row_store import RowStore
from .enumeration_repository import EnumerationRepository
from .mapping_repository import MappingRepository

__all__ = ["RowStore", "EnumerationRepository", "MappingRepository"]
