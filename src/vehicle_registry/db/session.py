from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from ..config import get_settings
from .base import Base


def create_registry_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create the engine for the row store and mapping store."""
    settings = get_settings()
    url = database_url or settings.database_url
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(
        url,
        connect_args=connect_args,
        echo=settings.database_echo if echo is None else echo,
        pool_pre_ping=True,
    )


def init_db(engine: Engine) -> None:
    """Create every registry table that does not exist yet."""
    from . import models  # noqa: F401  registers tables on Base.metadata
    Base.metadata.create_all(bind=engine)
