"""
Pytest configuration and shared fixtures for Voucher Access Atlas tests.
"""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

from config.settings import PipelineConfig


# Two tracts in one synthetic county plus a tract missing from every attribute file
SAMPLE_TRACTS = [
    "42101000100",
    "42101000200",
    "42001030100",  # Adams County: geometry only
]

ORIGIN_X, ORIGIN_Y, STEP = -75.20, 39.95, 0.01


def _cell(col: int, row: int = 0):
    x = ORIGIN_X + col * STEP
    y = ORIGIN_Y + row * STEP
    return box(x, y, x + STEP, y + STEP)


@pytest.fixture
def pipeline_config(tmp_path) -> PipelineConfig:
    """Default thresholds with outputs under tmp_path."""
    return PipelineConfig(data_dir=str(tmp_path / "data"), export_dir=str(tmp_path / "exports"))


@pytest.fixture
def tract_geoms() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"tract": SAMPLE_TRACTS},
        geometry=[_cell(0), _cell(1), _cell(5)],
        crs="EPSG:4326",
    )


@pytest.fixture
def voucher_counts() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "tract": ["42101000100", "42101000200", "42101999900"],  # last has no geometry
            "hcv_sub_units": [50.0, 1.0, 7.0],
        }
    )


@pytest.fixture
def tract_demographics() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "tract": ["42101000100", "42101000200"],
            "households": [500.0, 5.0],
            "total_pop": [1200.0, 8.0],
            "poc_pop": [900.0, 2.0],
            "poverty_pop": [540.0, 1.0],
            "poverty_universe": [1150.0, np.nan],
        }
    )


@pytest.fixture
def neighborhood_geoms() -> gpd.GeoDataFrame:
    # "West" covers tract 1 and the left half of tract 2, "East" the right half of tract 2
    west = box(ORIGIN_X, ORIGIN_Y, ORIGIN_X + 1.5 * STEP, ORIGIN_Y + STEP)
    east = box(ORIGIN_X + 1.5 * STEP, ORIGIN_Y, ORIGIN_X + 2 * STEP, ORIGIN_Y + STEP)
    empty = box(ORIGIN_X + 10 * STEP, ORIGIN_Y, ORIGIN_X + 11 * STEP, ORIGIN_Y + STEP)
    return gpd.GeoDataFrame(
        {"neighborhood": ["West", "East", "Riverfront"]},
        geometry=[west, east, empty],
        crs="EPSG:4326",
    )


@pytest.fixture
def intersections() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "tract": ["42101000100", "42101000200", "42101000200"],
            "neighborhood": ["West", "West", "East"],
            "intersection_area": [100.0, 50.0, 50.0],
            "tract_area": [100.0, 100.0, 100.0],
            "intersection_fraction": [1.0, 0.5, 0.5],
        }
    )


@pytest.fixture
def zcta_geoms() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"zcta": [19103, 19104, 8002]},
        geometry=[_cell(0, 3), _cell(1, 3), _cell(2, 3)],
        crs="EPSG:4326",
    )


@pytest.fixture
def safmr_table() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "zcta": [19103, 19104],
            "safmr_0br": [1400.0, 1100.0],
            "safmr_1br": [1600.0, 1250.0],
            "safmr_2br": [1900.0, 1000.0],
            "safmr_3br": [2300.0, 1800.0],
            "safmr_4br": [2600.0, 2000.0],
        }
    )


@pytest.fixture
def zcta_rents() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "zcta": [19103],
            "median_gross_rent": [1500.0],
            "median_gross_rent_moe": [600.0],
        }
    )
