"""
Voucher Access Atlas - Aggregation
Rates, grouped sums/means and tract -> neighborhood reapportionment

Rates are percentages (0-100). A rate whose denominator is missing, zero or
below the minimum-sample threshold is NaN, never 0, so small tracts do not
produce misleading extremes.

Area-weighted reapportionment assumes uniform density inside each tract:
a tract contributes to a neighborhood in proportion to the share of its
area that falls inside it.
"""

from typing import Dict, List, Optional, Sequence, Union

import geopandas as gpd
import numpy as np
import pandas as pd

from config.settings import get_settings
from voucher_atlas.processing.field_registry import REAPPORTIONED_FIELDS
from voucher_atlas.utils.data_sources import MalformedInputError
from voucher_atlas.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

FRACTION_TOLERANCE = 1e-6


# =============================================================================
# RATES
# =============================================================================

def rate(numerator, denominator, min_denominator: Optional[float] = None) -> float:
    """
    Percentage rate with small-sample suppression.

    Args:
        numerator: Count in the numerator
        denominator: Count in the denominator
        min_denominator: Smallest denominator that yields a rate
                         (default: settings.MIN_SAMPLE_THRESHOLD)

    Returns:
        100 * numerator / denominator, or NaN when suppressed
    """
    if min_denominator is None:
        min_denominator = settings.MIN_SAMPLE_THRESHOLD

    if pd.isna(denominator) or denominator == 0 or denominator < min_denominator:
        return np.nan
    if pd.isna(numerator):
        return np.nan

    return 100.0 * float(numerator) / float(denominator)


def rate_series(
    numerator: pd.Series, denominator: pd.Series, min_denominator: Optional[float] = None
) -> pd.Series:
    """Vectorized rate(); index follows the denominator."""
    if min_denominator is None:
        min_denominator = settings.MIN_SAMPLE_THRESHOLD

    num = pd.to_numeric(numerator, errors="coerce")
    den = pd.to_numeric(denominator, errors="coerce")

    valid = den.notna() & (den != 0) & (den >= min_denominator) & num.notna()

    out = pd.Series(np.nan, index=den.index, dtype=float)
    out[valid] = 100.0 * num[valid] / den[valid]

    suppressed = int((den.notna() & ~valid).sum())
    if suppressed:
        logger.debug(f"Suppressed {suppressed} rates below minimum sample of {min_denominator}")

    return out


# =============================================================================
# GROUPED AGGREGATION
# =============================================================================

def aggregate_by_group(
    records: pd.DataFrame,
    group_key: str,
    sum_fields: Sequence[str],
    mean_fields: Union[Sequence[str], Dict[str, str]] = (),
    count_field: Optional[str] = None,
) -> pd.DataFrame:
    """
    One output row per distinct group key.

    Args:
        records: Input records
        group_key: Column to group by
        sum_fields: Count fields summed with missing treated as zero
        mean_fields: Rate fields averaged over defined values only;
                     a dict renames source -> output column
        count_field: Optional output column holding records per group

    Returns:
        DataFrame with group_key plus aggregated columns
    """
    if group_key not in records.columns:
        raise MalformedInputError("Group key missing", column=group_key)

    if isinstance(mean_fields, dict):
        mean_renames = dict(mean_fields)
    else:
        mean_renames = {f: f for f in mean_fields}

    grouped = pd.DataFrame(records).groupby(group_key, sort=True)

    parts = [grouped[list(sum_fields)].sum(min_count=0)]
    if mean_renames:
        means = grouped[list(mean_renames)].mean()
        parts.append(means.rename(columns=mean_renames))
    if count_field:
        parts.append(grouped.size().rename(count_field))

    out = pd.concat(parts, axis=1).reset_index()

    logger.info(f"Aggregated {len(records)} records into {len(out)} {group_key} groups")
    return out


# =============================================================================
# AREA-WEIGHTED REAPPORTIONMENT
# =============================================================================

def add_intersection_fractions(intersections: pd.DataFrame) -> pd.DataFrame:
    """intersection_fraction = intersection_area / tract_area"""
    out = intersections.copy()
    tract_area = out["tract_area"].where(out["tract_area"] > 0)
    out["intersection_fraction"] = out["intersection_area"] / tract_area
    return out


def validate_intersection_fractions(
    intersections: pd.DataFrame,
    tract_key: str = "tract",
    fraction_column: str = "intersection_fraction",
) -> None:
    """
    Every fraction lies in [0, 1] and each tract's fractions sum to <= 1.

    Raises:
        MalformedInputError: a tract double-counts area or has no usable area
    """
    fractions = intersections[fraction_column]

    invalid = fractions.isna() | (fractions < 0)
    if invalid.any():
        row = intersections[invalid].iloc[0]
        raise MalformedInputError(
            "Intersection fraction undefined or negative (tract area must be positive)",
            column=fraction_column,
            value=row[tract_key],
        )

    totals = intersections.groupby(tract_key)[fraction_column].sum()
    over = totals[totals > 1.0 + FRACTION_TOLERANCE]
    if not over.empty:
        raise MalformedInputError(
            f"Intersection fractions sum above 1 for {len(over)} tracts (max {over.max():.6f})",
            column=fraction_column,
            value=over.index[0],
        )


def reapportion_by_area(
    tract_records: pd.DataFrame,
    intersections: pd.DataFrame,
    count_fields: Sequence[str] = REAPPORTIONED_FIELDS,
    tract_key: str = "tract",
    group_key: str = "neighborhood",
    fraction_column: str = "intersection_fraction",
) -> pd.DataFrame:
    """
    Distribute tract counts to neighborhoods by intersection fraction.

    Args:
        tract_records: Tract table with count fields
        intersections: Bridge table (tract, neighborhood, fraction)
        count_fields: Fields to weight and sum (missing counts as zero)

    Returns:
        DataFrame with one row per neighborhood touched by a known tract
    """
    validate_intersection_fractions(intersections, tract_key, fraction_column)

    unknown = ~intersections[tract_key].isin(tract_records[tract_key])
    if unknown.any():
        logger.warning(
            f"{int(unknown.sum())} intersection rows reference tracts absent from the tract table"
        )

    weighted = intersections[[tract_key, group_key, fraction_column]].merge(
        pd.DataFrame(tract_records)[[tract_key, *count_fields]], on=tract_key, how="inner"
    )
    for col in count_fields:
        weighted[col] = weighted[col].fillna(0) * weighted[fraction_column]

    out = weighted.groupby(group_key, sort=True)[list(count_fields)].sum().reset_index()

    logger.info(f"Reapportioned {weighted[tract_key].nunique()} tracts into {len(out)} {group_key}s")
    return out


def compute_area_intersections(
    tracts: gpd.GeoDataFrame,
    neighborhoods: gpd.GeoDataFrame,
    area_crs: Optional[str] = None,
    tract_key: str = "tract",
    group_key: str = "neighborhood",
) -> pd.DataFrame:
    """
    Build the tract/neighborhood bridge table from polygons.

    Areas are measured in a projected CRS (default: settings.AREA_CRS).

    Returns:
        DataFrame(tract, neighborhood, intersection_area, tract_area, intersection_fraction)
    """
    area_crs = area_crs or settings.AREA_CRS

    tract_shapes = tracts[[tract_key, tracts.geometry.name]].to_crs(area_crs)
    tract_shapes["tract_area"] = tract_shapes.geometry.area

    hood_shapes = neighborhoods[[group_key, neighborhoods.geometry.name]].to_crs(area_crs)

    pieces = gpd.overlay(tract_shapes, hood_shapes, how="intersection", keep_geom_type=True)
    pieces["intersection_area"] = pieces.geometry.area

    bridge = (
        pd.DataFrame(pieces.drop(columns=pieces.geometry.name))
        .groupby([tract_key, group_key], as_index=False, sort=True)
        .agg(intersection_area=("intersection_area", "sum"), tract_area=("tract_area", "first"))
    )
    bridge = bridge[bridge["intersection_area"] > 0]

    logger.info(f"Computed {len(bridge)} tract/{group_key} intersections")
    return add_intersection_fractions(bridge).reset_index(drop=True)


# =============================================================================
# LEGEND BINNING
# =============================================================================

def quantile_bins(values, n_bins: Optional[int] = None) -> List[float]:
    """
    Breakpoints at n_bins + 1 evenly spaced quantiles of the defined values.

    Args:
        values: Iterable of numbers; NaN/None are ignored
        n_bins: Number of bins (default: settings.N_QUANTILE_BINS)

    Returns:
        Non-decreasing list of n_bins + 1 floats, or [] if nothing is defined
    """
    n_bins = settings.N_QUANTILE_BINS if n_bins is None else n_bins
    if n_bins < 1:
        raise ValueError(f"n_bins must be >= 1, got {n_bins}")

    clean = pd.to_numeric(pd.Series(values, dtype=object), errors="coerce").dropna()
    if clean.empty:
        return []

    breaks = np.quantile(clean.to_numpy(dtype=float), np.linspace(0.0, 1.0, n_bins + 1))
    # Guard against interpolation noise between equal neighbours
    breaks = np.maximum.accumulate(breaks)

    return [float(b) for b in breaks]
