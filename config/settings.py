"""
Voucher Access Atlas - Application Settings
Manages environment variables and configuration using Pydantic
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional
import os


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every input path is resolved relative to DATA_DIR unless absolute.

    Optional:
        - COUNTY_SHAPEFILE (county geometry is dissolved from tracts when unset)
        - INTERSECTION_TABLE (tract/neighborhood overlay is computed when unset)
    """

    # Application
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # File storage
    DATA_DIR: str = "data"
    EXPORT_DIR: str = "exports"
    LOG_DIR: str = "logs"

    # Input files
    TRACT_SHAPEFILE: str = "tracts/tl_2020_42_tract.shp"
    COUNTY_SHAPEFILE: Optional[str] = None
    VOUCHER_CSV: str = "hcv_by_tract.csv"
    DEMOGRAPHICS_CSV: str = "acs_tract_demographics.csv"
    ZCTA_SHAPEFILE: str = "zcta/tl_2020_us_zcta520.shp"
    SAFMR_CSV: str = "small_area_fmr.csv"
    ZCTA_RENT_CSV: str = "acs_zcta_median_gross_rent.csv"
    NEIGHBORHOOD_SHAPEFILE: str = "neighborhoods/neighborhoods.shp"
    INTERSECTION_TABLE: Optional[str] = None

    # Source column names (override when a vintage renames them)
    VOUCHER_KEY_COLUMN: str = "GEOID"
    VOUCHER_COUNT_COLUMN: str = "HCV_PUBLIC"
    DEMOGRAPHICS_KEY_COLUMN: str = "GEOID"
    TRACT_KEY_COLUMN: str = "GEOID"
    COUNTY_KEY_COLUMN: str = "GEOID"
    COUNTY_NAME_COLUMN: str = "NAME"
    ZCTA_KEY_COLUMN: str = "ZCTA5CE20"
    SAFMR_KEY_COLUMN: str = "ZIP Code"
    ZCTA_RENT_KEY_COLUMN: str = "zcta"
    NEIGHBORHOOD_KEY_COLUMN: str = "NAME"

    # HUD placeholder rows that are not real tracts (e.g. statewide totals)
    SENTINEL_TRACT_IDS: List[str] = ["99999999999"]

    # Rate suppression and classification thresholds
    MIN_SAMPLE_THRESHOLD: int = 10
    RECAP_POC_THRESHOLD: float = 50.0  # HUD RECAP: share people of color (%)
    RECAP_POVERTY_THRESHOLD: float = 40.0  # HUD RECAP: poverty rate (%)
    N_QUANTILE_BINS: int = 5

    # Rent benchmarks (metro FMR changes every fiscal year)
    METRO_FMR: float = 1156.0
    FMR_BEDROOMS: int = 2
    RENT_MOE_MAX_RELATIVE: float = 0.3

    # Coordinate reference systems
    WEB_CRS: str = "EPSG:4326"
    AREA_CRS: str = "EPSG:3857"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Create directories if they don't exist
        os.makedirs(self.EXPORT_DIR, exist_ok=True)
        if self.LOG_DIR:
            os.makedirs(self.LOG_DIR, exist_ok=True)


@lru_cache()
def get_settings() -> Settings:
    """
    Returns cached settings instance.
    Uses lru_cache to avoid re-reading .env on every call.
    """
    return Settings()


# Safmr bedroom columns as published by HUD, mapped to pipeline names
SAFMR_BEDROOM_COLUMNS = {
    "SAFMR 0BR": "safmr_0br",
    "SAFMR 1BR": "safmr_1br",
    "SAFMR 2BR": "safmr_2br",
    "SAFMR 3BR": "safmr_3br",
    "SAFMR 4BR": "safmr_4br",
}


@dataclass(frozen=True)
class PipelineConfig:
    """
    Explicit configuration handed to the pipeline entry point.

    Geography builders read thresholds from here, never from global settings.
    """
    min_sample_threshold: int = 10
    recap_poc_threshold: float = 50.0
    recap_poverty_threshold: float = 40.0
    n_quantile_bins: int = 5
    metro_fmr: float = 1156.0
    fmr_bedrooms: int = 2
    rent_moe_max_relative: float = 0.3
    web_crs: str = "EPSG:4326"
    area_crs: str = "EPSG:3857"
    data_dir: str = "data"
    export_dir: str = "exports"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "PipelineConfig":
        """Build from Settings; keyword overrides (e.g. CLI flags) win when not None."""
        settings = settings or get_settings()
        values = dict(
            min_sample_threshold=settings.MIN_SAMPLE_THRESHOLD,
            recap_poc_threshold=settings.RECAP_POC_THRESHOLD,
            recap_poverty_threshold=settings.RECAP_POVERTY_THRESHOLD,
            n_quantile_bins=settings.N_QUANTILE_BINS,
            metro_fmr=settings.METRO_FMR,
            fmr_bedrooms=settings.FMR_BEDROOMS,
            rent_moe_max_relative=settings.RENT_MOE_MAX_RELATIVE,
            web_crs=settings.WEB_CRS,
            area_crs=settings.AREA_CRS,
            data_dir=settings.DATA_DIR,
            export_dir=settings.EXPORT_DIR,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
