"""
Voucher Access Atlas - Source Loaders
One loader per input file, each returning a table keyed by its geography

Sources:
- Tract / county / ZCTA polygons: Census TIGER/Line shapefiles
- Housing Choice Vouchers by tract: HUD (sentinel rows removed)
- Tract demographics: ACS 5-year (households, population, race, poverty)
- Small Area Fair Market Rents: HUD, one row per ZIP code
- ZCTA median gross rent: ACS B25064 estimate + margin of error
- Neighborhood polygons and the tract/neighborhood area bridge table

Column names come from settings so a new data vintage only needs env overrides.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

import geopandas as gpd
import pandas as pd

from config.settings import SAFMR_BEDROOM_COLUMNS, get_settings
from voucher_atlas.processing.aggregation import add_intersection_fractions, validate_intersection_fractions
from voucher_atlas.processing.field_registry import DEMOGRAPHIC_FIELDS
from voucher_atlas.processing.table_ops import COUNTY_FIPS_LENGTH, TRACT_FIPS_LENGTH
from voucher_atlas.utils.data_sources import (
    MalformedInputError,
    normalize_keys,
    read_attribute_table,
    read_delimited_table,
    read_geometry_file,
)
from voucher_atlas.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

PathLike = Union[str, Path]

# Bridge table columns (as written by the ArcGIS/QGIS tabulate-intersection step)
INTERSECTION_TRACT_COLUMN = "GEOID"
INTERSECTION_NEIGHBORHOOD_COLUMN = "NAME"
INTERSECTION_AREA_COLUMN = "intersect_area"
INTERSECTION_TRACT_AREA_COLUMN = "tract_area"


@dataclass(frozen=True)
class SourceDefinition:
    """
    Declared shape of one input file
    """
    name: str
    path_setting: str  # Settings attribute holding the path
    key_column: str
    key_name: str  # Pipeline name of the key after renaming
    key_width: Optional[int] = None
    key_type: type = str
    renames: Dict[str, str] = field(default_factory=dict)
    numeric_columns: Sequence[str] = ()

    def resolve_path(self, data_dir: Optional[str] = None) -> Optional[Path]:
        relative = getattr(settings, self.path_setting)
        if not relative:
            return None
        path = Path(relative)
        if path.is_absolute():
            return path
        return Path(data_dir or settings.DATA_DIR) / path

    @property
    def all_renames(self) -> Dict[str, str]:
        return {self.key_column: self.key_name, **self.renames}


TRACT_GEOMETRY = SourceDefinition(
    name="tract_geometry",
    path_setting="TRACT_SHAPEFILE",
    key_column=settings.TRACT_KEY_COLUMN,
    key_name="tract",
    key_width=TRACT_FIPS_LENGTH,
)

COUNTY_GEOMETRY = SourceDefinition(
    name="county_geometry",
    path_setting="COUNTY_SHAPEFILE",
    key_column=settings.COUNTY_KEY_COLUMN,
    key_name="county",
    key_width=COUNTY_FIPS_LENGTH,
    renames={settings.COUNTY_NAME_COLUMN: "county_name"},
)

VOUCHERS = SourceDefinition(
    name="hcv_by_tract",
    path_setting="VOUCHER_CSV",
    key_column=settings.VOUCHER_KEY_COLUMN,
    key_name="tract",
    key_width=TRACT_FIPS_LENGTH,
    renames={settings.VOUCHER_COUNT_COLUMN: "hcv_sub_units"},
    numeric_columns=(settings.VOUCHER_COUNT_COLUMN,),
)

DEMOGRAPHICS = SourceDefinition(
    name="acs_tract_demographics",
    path_setting="DEMOGRAPHICS_CSV",
    key_column=settings.DEMOGRAPHICS_KEY_COLUMN,
    key_name="tract",
    key_width=TRACT_FIPS_LENGTH,
    numeric_columns=tuple(f.name for f in DEMOGRAPHIC_FIELDS),
)

ZCTA_GEOMETRY = SourceDefinition(
    name="zcta_geometry",
    path_setting="ZCTA_SHAPEFILE",
    key_column=settings.ZCTA_KEY_COLUMN,
    key_name="zcta",
    key_type=int,
)

SMALL_AREA_FMR = SourceDefinition(
    name="small_area_fmr",
    path_setting="SAFMR_CSV",
    key_column=settings.SAFMR_KEY_COLUMN,
    key_name="zcta",
    key_type=int,
    renames=dict(SAFMR_BEDROOM_COLUMNS),
    numeric_columns=tuple(SAFMR_BEDROOM_COLUMNS),
)

ZCTA_RENTS = SourceDefinition(
    name="acs_zcta_median_gross_rent",
    path_setting="ZCTA_RENT_CSV",
    key_column=settings.ZCTA_RENT_KEY_COLUMN,
    key_name="zcta",
    key_type=int,
    numeric_columns=("median_gross_rent", "median_gross_rent_moe"),
)

NEIGHBORHOOD_GEOMETRY = SourceDefinition(
    name="neighborhood_geometry",
    path_setting="NEIGHBORHOOD_SHAPEFILE",
    key_column=settings.NEIGHBORHOOD_KEY_COLUMN,
    key_name="neighborhood",
)

INTERSECTIONS = SourceDefinition(
    name="tract_neighborhood_intersections",
    path_setting="INTERSECTION_TABLE",
    key_column=INTERSECTION_TRACT_COLUMN,
    key_name="tract",
    key_width=TRACT_FIPS_LENGTH,
    renames={
        INTERSECTION_NEIGHBORHOOD_COLUMN: "neighborhood",
        INTERSECTION_AREA_COLUMN: "intersection_area",
        INTERSECTION_TRACT_AREA_COLUMN: "tract_area",
    },
    numeric_columns=(INTERSECTION_AREA_COLUMN, INTERSECTION_TRACT_AREA_COLUMN),
)


# =============================================================================
# GEOMETRY SOURCES
# =============================================================================

def _load_geometry(
    source: SourceDefinition, path: PathLike, keep_columns: Sequence[str] = (), crs: Optional[str] = None
) -> gpd.GeoDataFrame:
    return read_geometry_file(
        path,
        key_column=source.key_column,
        key_width=source.key_width,
        key_type=source.key_type,
        keep_columns=keep_columns,
        renames=source.all_renames,
        crs=crs or settings.WEB_CRS,
    )


def load_tract_geometries(path: PathLike, crs: Optional[str] = None) -> gpd.GeoDataFrame:
    return _load_geometry(TRACT_GEOMETRY, path, crs=crs)


def load_county_geometries(path: PathLike, crs: Optional[str] = None) -> gpd.GeoDataFrame:
    return _load_geometry(COUNTY_GEOMETRY, path, keep_columns=list(COUNTY_GEOMETRY.renames), crs=crs)


def load_zcta_geometries(path: PathLike, crs: Optional[str] = None) -> gpd.GeoDataFrame:
    return _load_geometry(ZCTA_GEOMETRY, path, crs=crs)


def load_neighborhood_geometries(path: PathLike, crs: Optional[str] = None) -> gpd.GeoDataFrame:
    return _load_geometry(NEIGHBORHOOD_GEOMETRY, path, crs=crs)


# =============================================================================
# ATTRIBUTE SOURCES
# =============================================================================

def _load_table(source: SourceDefinition, path: PathLike, sentinel_keys: Sequence = ()) -> pd.DataFrame:
    df = read_delimited_table(
        path,
        key_column=source.key_column,
        key_width=source.key_width,
        key_type=source.key_type,
        numeric_columns=source.numeric_columns,
        renames=source.all_renames,
        sentinel_keys=sentinel_keys,
    )
    columns = [source.key_name] + [source.all_renames.get(c, c) for c in source.numeric_columns]
    return df[columns]


def load_voucher_counts(path: PathLike) -> pd.DataFrame:
    """
    HUD Housing Choice Vouchers by tract.

    Returns:
        DataFrame(tract, hcv_sub_units)
    """
    return _load_table(VOUCHERS, path, sentinel_keys=settings.SENTINEL_TRACT_IDS)


def load_tract_demographics(path: PathLike) -> pd.DataFrame:
    """
    ACS tract demographics.

    Returns:
        DataFrame(tract, households, total_pop, poc_pop, poverty_pop, poverty_universe)
    """
    return _load_table(DEMOGRAPHICS, path, sentinel_keys=settings.SENTINEL_TRACT_IDS)


def load_small_area_fmr(path: PathLike) -> pd.DataFrame:
    """
    HUD Small Area FMRs by ZIP code ("$1,230" formatting is stripped).

    Returns:
        DataFrame(zcta, safmr_0br ... safmr_4br)
    """
    return _load_table(SMALL_AREA_FMR, path)


def load_zcta_rents(path: PathLike) -> pd.DataFrame:
    """
    ACS median gross rent by ZCTA.

    Returns:
        DataFrame(zcta, median_gross_rent, median_gross_rent_moe)
    """
    return _load_table(ZCTA_RENTS, path)


def load_tract_neighborhood_intersections(path: PathLike) -> pd.DataFrame:
    """
    Pre-computed tract/neighborhood area bridge table (.dbf or .csv).

    Returns:
        DataFrame(tract, neighborhood, intersection_area, tract_area, intersection_fraction)
    """
    source = INTERSECTIONS
    df = read_attribute_table(
        path,
        required_columns=[source.key_column, INTERSECTION_NEIGHBORHOOD_COLUMN],
        numeric_columns=source.numeric_columns,
    )
    df[source.key_column] = normalize_keys(
        df[source.key_column], path, source.key_column, source.key_width, source.key_type
    )
    # Same normalization as the neighborhood geometry keys so names match exactly
    df[INTERSECTION_NEIGHBORHOOD_COLUMN] = normalize_keys(
        df[INTERSECTION_NEIGHBORHOOD_COLUMN], path, INTERSECTION_NEIGHBORHOOD_COLUMN
    )
    df = df.rename(columns=source.all_renames)
    df = df[["tract", "neighborhood", "intersection_area", "tract_area"]]

    df = add_intersection_fractions(df)
    try:
        validate_intersection_fractions(df)
    except MalformedInputError as e:
        raise MalformedInputError(str(e), path=path) from e

    logger.info(f"Loaded {len(df)} tract/neighborhood intersections covering {df['tract'].nunique()} tracts")
    return df
