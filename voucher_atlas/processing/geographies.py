"""
Voucher Access Atlas - Geography Builders
Composes joins, rates and classification into one table per geography

Tract:        geometry <- vouchers (zero fill) <- demographics (null fill)
County:       tract sums grouped by derived county <- county geometry
ZCTA:         geometry <- Small Area FMR <- ACS median gross rent
Neighborhood: tract counts reapportioned by area <- neighborhood geometry

Every builder returns a new GeoDataFrame; inputs are never modified.
"""

from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd

from config.settings import PipelineConfig
from voucher_atlas.processing.aggregation import (
    aggregate_by_group,
    compute_area_intersections,
    rate_series,
    reapportion_by_area,
)
from voucher_atlas.processing.classification import classify_recap_series, flag_rent_moe
from voucher_atlas.processing.field_registry import (
    COUNTY_FIELDS,
    DEMOGRAPHIC_FIELDS,
    NEIGHBORHOOD_FIELDS,
    RENT_FIELDS,
    REAPPORTIONED_FIELDS,
    SAFMR_FIELDS,
    TRACT_COUNT_FIELDS,
    VOUCHER_FIELDS,
    fill_policies,
)
from voucher_atlas.processing.table_ops import derive_county, left_join
from voucher_atlas.utils.logging import get_logger

logger = get_logger(__name__)

TRACT_COLUMNS = [
    "tract",
    "county",
    "households",
    "hcv_sub_units",
    "total_pop",
    "poc_pop",
    "poverty_pop",
    "poverty_universe",
    "poverty_denominator",
    "voucher_rate",
    "tract_pct_poc",
    "tract_pct_pov",
    "recap",
]

COUNTY_COLUMNS = [
    "county",
    "county_name",
    "tract_count",
    *TRACT_COUNT_FIELDS,
    "voucher_rate",
    "county_pct_poc",
    "county_pct_pov",
    "mean_tract_voucher_rate",
]

ZCTA_COLUMNS = [
    "zcta",
    *[f.name for f in SAFMR_FIELDS],
    "metro_fmr",
    "median_gross_rent",
    "median_gross_rent_moe",
    "rent_moe_flag",
    "fmr_gap",
    "fmr_gap_pct",
    "rent_gap",
]

NEIGHBORHOOD_COLUMNS = ["neighborhood", *REAPPORTIONED_FIELDS, "voucher_rate"]


def _select(gdf: gpd.GeoDataFrame, columns) -> gpd.GeoDataFrame:
    return gdf[[*columns, gdf.geometry.name]].reset_index(drop=True)


# =============================================================================
# TRACTS
# =============================================================================

def build_tract_table(
    tract_geoms: gpd.GeoDataFrame,
    vouchers: pd.DataFrame,
    demographics: pd.DataFrame,
    config: PipelineConfig,
) -> gpd.GeoDataFrame:
    """
    Tract table with voucher rate, percent people of color, poverty rate and RECAP.

    Voucher counts default to 0 for tracts missing from the HUD file;
    demographic fields stay NaN so their rates are suppressed, not zero.
    """
    logger.info(f"Building tract table from {len(tract_geoms)} tract geometries")

    tracts, _ = left_join(
        tract_geoms[["tract", tract_geoms.geometry.name]],
        vouchers[["tract", *[f.name for f in VOUCHER_FIELDS]]],
        key="tract",
        fill_policies=fill_policies(VOUCHER_FIELDS),
        label="tract<-vouchers",
    )
    tracts, _ = left_join(
        tracts,
        demographics[["tract", *[f.name for f in DEMOGRAPHIC_FIELDS]]],
        key="tract",
        fill_policies=fill_policies(DEMOGRAPHIC_FIELDS),
        label="tract<-demographics",
    )
    tracts = derive_county(tracts)

    min_n = config.min_sample_threshold
    tracts["voucher_rate"] = rate_series(tracts["hcv_sub_units"], tracts["households"], min_n)
    tracts["tract_pct_poc"] = rate_series(tracts["poc_pop"], tracts["total_pop"], min_n)

    # Poverty status universe excludes institutionalized persons; fall back to total population
    tracts["poverty_denominator"] = tracts["poverty_universe"].fillna(tracts["total_pop"])
    tracts["tract_pct_pov"] = rate_series(tracts["poverty_pop"], tracts["poverty_denominator"], min_n)

    tracts["recap"] = classify_recap_series(
        tracts["tract_pct_poc"],
        tracts["tract_pct_pov"],
        poc_threshold=config.recap_poc_threshold,
        poverty_threshold=config.recap_poverty_threshold,
    )

    logger.info(
        f"✓ Tract table: {len(tracts)} tracts, "
        f"{int(tracts['voucher_rate'].isna().sum())} suppressed voucher rates"
    )
    return _select(tracts, TRACT_COLUMNS)


# =============================================================================
# COUNTIES
# =============================================================================

def dissolve_county_geometries(tract_table: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """County polygons as the union of their tracts (no county file configured)."""
    counties = tract_table[["county", tract_table.geometry.name]].dissolve(by="county").reset_index()
    counties["county_name"] = None
    logger.info(f"Dissolved {len(tract_table)} tracts into {len(counties)} county geometries")
    return counties


def build_county_table(
    tract_table: gpd.GeoDataFrame,
    config: PipelineConfig,
    county_geoms: Optional[gpd.GeoDataFrame] = None,
) -> gpd.GeoDataFrame:
    """
    County table from tract sums; rates are recomputed from the summed counts.

    County geometries are restricted to counties that contain at least one tract.
    """
    sums = aggregate_by_group(
        tract_table,
        group_key="county",
        sum_fields=TRACT_COUNT_FIELDS,
        mean_fields={"voucher_rate": "mean_tract_voucher_rate"},
        count_field="tract_count",
    )

    if county_geoms is None:
        county_geoms = dissolve_county_geometries(tract_table)
    else:
        in_study = county_geoms["county"].isin(sums["county"])
        if (~in_study).any():
            logger.info(f"Excluded {int((~in_study).sum())} counties with no tracts in the study area")
        county_geoms = county_geoms[in_study]

    counties, _ = left_join(
        county_geoms[["county", "county_name", county_geoms.geometry.name]],
        sums,
        key="county",
        fill_policies=fill_policies(COUNTY_FIELDS),
        label="county<-tract sums",
    )

    min_n = config.min_sample_threshold
    counties["voucher_rate"] = rate_series(counties["hcv_sub_units"], counties["households"], min_n)
    counties["county_pct_poc"] = rate_series(counties["poc_pop"], counties["total_pop"], min_n)
    # Summed per-tract denominators keep numerator and denominator on the same tracts
    counties["county_pct_pov"] = rate_series(counties["poverty_pop"], counties["poverty_denominator"], min_n)

    logger.info(f"✓ County table: {len(counties)} counties")
    return _select(counties, COUNTY_COLUMNS)


# =============================================================================
# ZCTAS
# =============================================================================

def build_zcta_table(
    zcta_geoms: gpd.GeoDataFrame,
    safmr: pd.DataFrame,
    rents: pd.DataFrame,
    config: PipelineConfig,
) -> gpd.GeoDataFrame:
    """
    ZCTA table comparing Small Area FMRs with the metro FMR and ACS median rent.

    fmr_gap     = SAFMR - metro FMR
    fmr_gap_pct = 100 * fmr_gap / metro FMR
    rent_gap    = SAFMR - median gross rent

    ZCTAs are restricted to those with a published SAFMR (the metro's ZIP list).
    """
    in_metro = zcta_geoms["zcta"].isin(safmr["zcta"])
    logger.info(f"Building ZCTA table: {int(in_metro.sum())} of {len(zcta_geoms)} ZCTAs in the SAFMR area")

    zctas, _ = left_join(
        zcta_geoms.loc[in_metro, ["zcta", zcta_geoms.geometry.name]],
        safmr[["zcta", *[f.name for f in SAFMR_FIELDS]]],
        key="zcta",
        fill_policies=fill_policies(SAFMR_FIELDS),
        label="zcta<-safmr",
    )
    zctas, _ = left_join(
        zctas,
        rents[["zcta", *[f.name for f in RENT_FIELDS]]],
        key="zcta",
        fill_policies=fill_policies(RENT_FIELDS),
        label="zcta<-median gross rent",
    )

    reference = zctas[f"safmr_{config.fmr_bedrooms}br"]
    zctas["metro_fmr"] = float(config.metro_fmr)
    zctas["fmr_gap"] = reference - config.metro_fmr
    zctas["fmr_gap_pct"] = (
        100.0 * zctas["fmr_gap"] / config.metro_fmr if config.metro_fmr > 0 else np.nan
    )
    zctas["rent_gap"] = reference - zctas["median_gross_rent"]
    zctas["rent_moe_flag"] = pd.Series(
        [
            flag_rent_moe(est, moe, config.rent_moe_max_relative)
            for est, moe in zip(zctas["median_gross_rent"], zctas["median_gross_rent_moe"])
        ],
        index=zctas.index,
        dtype=object,
    )

    logger.info(f"✓ ZCTA table: {len(zctas)} ZCTAs")
    return _select(zctas, ZCTA_COLUMNS)


# =============================================================================
# NEIGHBORHOODS
# =============================================================================

def build_neighborhood_table(
    tract_table: gpd.GeoDataFrame,
    neighborhood_geoms: gpd.GeoDataFrame,
    config: PipelineConfig,
    intersections: Optional[pd.DataFrame] = None,
) -> gpd.GeoDataFrame:
    """
    Neighborhood voucher rate from area-weighted tract counts.

    When no bridge table is supplied, it is computed by polygon overlay.
    """
    if intersections is None:
        intersections = compute_area_intersections(tract_table, neighborhood_geoms, config.area_crs)

    weighted = reapportion_by_area(tract_table, intersections, REAPPORTIONED_FIELDS)

    hoods, _ = left_join(
        neighborhood_geoms[["neighborhood", neighborhood_geoms.geometry.name]],
        weighted,
        key="neighborhood",
        fill_policies=fill_policies(NEIGHBORHOOD_FIELDS),
        label="neighborhood<-reapportioned tracts",
    )
    hoods["voucher_rate"] = rate_series(hoods["hcv_sub_units"], hoods["households"], config.min_sample_threshold)

    logger.info(f"✓ Neighborhood table: {len(hoods)} neighborhoods")
    return _select(hoods, NEIGHBORHOOD_COLUMNS)
