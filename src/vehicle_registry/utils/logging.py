import logging
import sys
from typing import List, Optional
import structlog

from ..config import get_settings


def setup_logging() -> None:
    """Setup structured logging configuration."""
    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper())
    )

    shared_processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
    ]

    if settings.log_format.lower() == "json":
        processors = shared_processors + [
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ]
    else:
        processors = shared_processors + [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer()
        ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class RegularizationLogger:
    """Logger for regularization sweeps and mapping writes."""

    def __init__(self):
        self.logger = structlog.get_logger()

    def log_sweep_start(self, strategy: str, pair_count: int) -> None:
        self.logger.info(
            "Regularization sweep started",
            strategy=strategy,
            pair_count=pair_count
        )

    def log_mapping_created(self,
                            pair_key: str,
                            canonical_make: str,
                            canonical_model: str,
                            strategy: str) -> None:
        self.logger.debug(
            "Mapping created",
            pair_key=pair_key,
            canonical_make=canonical_make,
            canonical_model=canonical_model,
            strategy=strategy
        )

    def log_mapping_failed(self, pair_key: str, error: str) -> None:
        self.logger.warning(
            "Mapping write failed, pair skipped",
            pair_key=pair_key,
            error=error
        )

    def log_sweep_result(self,
                         strategy: str,
                         created: int,
                         skipped_existing: int,
                         unmatched: int,
                         errors: int,
                         processing_time_ms: float) -> None:
        self.logger.info(
            "Regularization sweep completed",
            strategy=strategy,
            created=created,
            skipped_existing=skipped_existing,
            unmatched=unmatched,
            errors=errors,
            processing_time_ms=processing_time_ms
        )


class QueryLogger:
    """Logger for aggregate query execution."""

    def __init__(self):
        self.logger = structlog.get_logger()

    def log_query(self,
                  metric: str,
                  dimensions: List[str],
                  point_count: int,
                  processing_time_ms: float) -> None:
        self.logger.info(
            "Aggregate query executed",
            metric=metric,
            dimensions=dimensions,
            point_count=point_count,
            processing_time_ms=processing_time_ms
        )

    def log_query_rejected(self, reason: str, dimension: Optional[str] = None) -> None:
        self.logger.warning(
            "Aggregate query rejected",
            reason=reason,
            dimension=dimension
        )


class CacheLogger:
    """Logger for filter cache lifecycle."""

    def __init__(self):
        self.logger = structlog.get_logger()

    def log_rebuild_start(self, scopes: List[str], generation: int) -> None:
        self.logger.info(
            "Filter cache rebuild started",
            scopes=scopes,
            generation=generation
        )

    def log_rebuild_complete(self,
                             generation: int,
                             dimensions: int,
                             relationships: int,
                             load_time_ms: float) -> None:
        self.logger.info(
            "Filter cache rebuilt",
            generation=generation,
            dimensions=dimensions,
            relationships=relationships,
            load_time_ms=load_time_ms
        )

    def log_rebuild_cancelled(self, generation: int) -> None:
        self.logger.warning(
            "Filter cache rebuild cancelled, previous snapshot kept",
            generation=generation
        )

    def log_stale_retry(self, held_generation: int, current_generation: int) -> None:
        self.logger.debug(
            "Stale snapshot detected, retrying",
            held_generation=held_generation,
            current_generation=current_generation
        )


class DataLogger:
    """Logger for enumeration and data loading."""

    def __init__(self):
        self.logger = structlog.get_logger()

    def log_enumeration(self, dimension: str, value_count: int, new_values: int) -> None:
        self.logger.info(
            "Dimension enumerated",
            dimension=dimension,
            value_count=value_count,
            new_values=new_values
        )

    def log_load_start(self, path: str, year: int) -> None:
        self.logger.info(
            "Registration file loading started",
            path=path,
            year=year
        )

    def log_load_success(self, path: str, year: int, records_count: int, load_time_ms: float) -> None:
        self.logger.info(
            "Registration file loaded",
            path=path,
            year=year,
            records_count=records_count,
            load_time_ms=load_time_ms
        )


# Global logger instances
regularization_logger = RegularizationLogger()
query_logger = QueryLogger()
cache_logger = CacheLogger()
data_logger = DataLogger()
