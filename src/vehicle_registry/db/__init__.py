from .base import Base
from .models import Vehicle, EnumerationEntry, MakeModelRegularization
from .session import create_registry_engine, init_db

__all__ = [
    "Base",
    "Vehicle",
    "EnumerationEntry",
    "MakeModelRegularization",
    "create_registry_engine",
    "init_db",
]
