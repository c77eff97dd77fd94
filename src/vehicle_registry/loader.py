"""Bulk loader for registration CSV files."""

import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd
import structlog

from .infrastructure.repositories.row_store import RowStore
from .utils.common import normalize_registry_value
from .utils.logging import data_logger

logger = structlog.get_logger()

# Source headers -> row store columns
COLUMN_MAPPING: Dict[str, str] = {
    "AN": "year",
    "CLAS": "vehicle_class",
    "TYP_VEH_CATEG_USA": "vehicle_type",
    "MARQ_VEH": "make",
    "MODEL_VEH": "model",
    "ANNEE_MOD": "model_year",
    "MASSE_NETTE": "net_mass",
    "NB_CYL": "cylinder_count",
    "CYL_VEH": "displacement",
    "NB_ESIEU_MAX": "max_axles",
    "COUL_ORIG": "color",
    "TYP_CARBU": "fuel_type",
    "REG_ADM": "admin_region",
}

TEXT_COLUMNS = ["make", "model", "fuel_type", "vehicle_type", "vehicle_class", "admin_region", "color"]
INTEGER_COLUMNS = ["year", "model_year", "cylinder_count", "max_axles"]
FLOAT_COLUMNS = ["net_mass", "displacement"]


def prepare_frame(frame: pd.DataFrame, year: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Turn a raw registration frame into row store records.

    Known source headers are renamed; headers already using row store
    names are kept. Text is normalized, numbers coerced (unparseable
    values become None). A year argument overrides the file's own column.
    """
    frame = frame.rename(columns=lambda column: str(column).strip())
    frame = frame.rename(columns=COLUMN_MAPPING)

    if year is not None:
        frame["year"] = year
    if "year" not in frame.columns:
        raise ValueError("Registration file has no year column and no year was given")

    for column in TEXT_COLUMNS:
        if column in frame.columns:
            frame[column] = frame[column].map(normalize_registry_value)
    for column in INTEGER_COLUMNS + FLOAT_COLUMNS:
        if column in frame.columns:
            frame[column] = pd.to_numeric(frame[column], errors="coerce")

    frame = frame.dropna(subset=["year"])
    records = []
    for row in frame.to_dict(orient="records"):
        record: Dict[str, Any] = {}
        for column in TEXT_COLUMNS:
            record[column] = row.get(column)
        for column in INTEGER_COLUMNS:
            value = row.get(column)
            record[column] = int(value) if value is not None and not pd.isna(value) else None
        for column in FLOAT_COLUMNS:
            value = row.get(column)
            record[column] = float(value) if value is not None and not pd.isna(value) else None
        records.append(record)
    return records


async def load_csv(path: Union[str, Path], row_store: RowStore, year: Optional[int] = None) -> int:
    """Read a registration CSV and append its rows. Returns the number of rows inserted."""
    start_time = time.time()
    data_logger.log_load_start(str(path), year)

    frame = pd.read_csv(path, dtype=str, keep_default_na=True)
    records = prepare_frame(frame, year)
    inserted = await row_store.insert_rows(records)

    data_logger.log_load_success(str(path), year, inserted, (time.time() - start_time) * 1000)
    return inserted
