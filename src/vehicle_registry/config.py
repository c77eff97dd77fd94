"""Configuration for the vehicle registry service."""

from typing import Dict, List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Service info
    app_name: str = "Vehicle Registry Service"
    app_version: str = "0.1.0"
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Database
    database_url: str = "sqlite:///./vehicle_registry.db"
    database_echo: bool = False

    # Year configuration
    curated_years: List[int] = [2011, 2012, 2013, 2014, 2015, 2016, 2017, 2018, 2019, 2020, 2021, 2022]
    uncurated_years: List[int] = []  # empty = every year in the row store that is not curated

    # Fuzzy matching thresholds (rapidfuzz scores, 0-100)
    fuzzy_make_threshold: float = 80.0
    fuzzy_model_threshold: float = 80.0
    fuzzy_max_suggestions: int = 5

    # Road wear index, fourth power law coefficients by axle count
    rwi_coefficients: Dict[int, float] = {
        2: 0.1325,
        3: 0.0234,
        4: 0.0156,
        5: 0.0080,
        6: 0.0046,
    }
    rwi_vehicle_type_fallbacks: Dict[str, float] = {
        "CA": 0.0234,  # truck, assume 3 axles
        "VO": 0.0234,  # tool vehicle, assume 3 axles
        "AB": 0.1935,  # bus, assume 2 axles with heavier rear
    }
    rwi_default_coefficient: float = 0.125

    # Cache
    cache_preload_on_startup: bool = True

    class Config:
        env_file = ".env"
        env_prefix = "REGISTRY_"
        extra = "ignore"


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
