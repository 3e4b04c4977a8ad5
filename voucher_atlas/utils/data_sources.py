"""
Voucher Access Atlas - Data Source Utilities
Readers for the local delimited, shapefile and dBase inputs

Every reader validates the declared key column, keeps census identifiers as
fixed-width strings and strips currency formatting before numeric parsing.
Structural problems raise MalformedInputError naming file, column and row.
"""

import re
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Union

import geopandas as gpd
import numpy as np
import pandas as pd

from voucher_atlas.utils.logging import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]

# Characters removed before numeric parsing ("$1,156" -> "1156")
FORMATTING_PATTERN = re.compile(r"[$,\s]")

# Published placeholders for "no estimate" (ACS uses "-", "N", "(X)", "***")
MISSING_MARKERS = {"", "-", "N", "(X)", "**", "***", "NA"}


class MalformedInputError(ValueError):
    """Raised when a source file cannot be turned into a keyed table."""

    def __init__(
        self,
        message: str,
        path: Optional[PathLike] = None,
        column: Optional[str] = None,
        row: Optional[int] = None,
        value: Optional[object] = None,
    ):
        self.path = str(path) if path is not None else None
        self.column = column
        self.row = row
        self.value = value

        context = []
        if self.path:
            context.append(f"file={self.path}")
        if column is not None:
            context.append(f"column={column!r}")
        if row is not None:
            context.append(f"row={row}")
        if value is not None:
            context.append(f"value={value!r}")

        full = f"{message} ({', '.join(context)})" if context else message
        super().__init__(full)


def _require_file(path: PathLike) -> Path:
    path = Path(path)
    if not path.exists():
        raise MalformedInputError("Input file not found", path=path)
    return path


def require_columns(df: pd.DataFrame, columns: Iterable[str], path: Optional[PathLike] = None) -> None:
    """Raise MalformedInputError for the first declared column absent from df."""
    for col in columns:
        if col not in df.columns:
            raise MalformedInputError(
                f"Required column missing; found {list(df.columns)}",
                path=path,
                column=col,
            )


def _key_to_str(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (float, np.floating)):
        if np.isnan(value):
            return None
        if float(value).is_integer():
            return str(int(value))
    return str(value).strip()


def normalize_keys(
    series: pd.Series,
    path: Optional[PathLike],
    column: str,
    key_width: Optional[int] = None,
    key_type: type = str,
) -> pd.Series:
    """
    Validate and normalize a geographic identifier column.

    Census geographies (key_width set) are kept as zero-padded digit strings so
    leading zeros survive. Integer keys (ZCTA) are parsed to int.

    Args:
        series: Raw key values
        path: Source file, for error context
        column: Key column name, for error context
        key_width: Fixed width of a census identifier (11 tract, 5 county)
        key_type: str or int

    Returns:
        Normalized key Series (same index)
    """
    raw = series.map(_key_to_str)

    for label, value in raw.items():
        if not value:
            raise MalformedInputError("Empty key", path=path, column=column, row=_row_number(label))
        if not (value.isascii() and value.isdigit()) and (key_type is int or key_width):
            raise MalformedInputError(
                "Key is not numeric", path=path, column=column, row=_row_number(label), value=value
            )
        if key_width and len(value) > key_width:
            raise MalformedInputError(
                f"Key longer than {key_width} characters",
                path=path,
                column=column,
                row=_row_number(label),
                value=value,
            )

    if key_type is int:
        return raw.astype(np.int64)
    if key_width:
        return raw.str.zfill(key_width)
    return raw


def _row_number(label) -> Optional[int]:
    # Labels come from a RangeIndex, so label + 1 is the 1-based data row
    if isinstance(label, (int, np.integer)):
        return int(label) + 1
    return None


def coerce_numeric(series: pd.Series, path: Optional[PathLike], column: str) -> pd.Series:
    """
    Parse a column to float after stripping currency formatting.

    Empty cells and published "no estimate" markers become NaN; anything else
    that fails to parse raises MalformedInputError.
    """

    def _clean(value):
        if isinstance(value, str):
            stripped = FORMATTING_PATTERN.sub("", value)
            return np.nan if stripped in MISSING_MARKERS else stripped
        return value

    cleaned = series.map(_clean)
    values = pd.to_numeric(cleaned, errors="coerce")

    bad = values.isna() & cleaned.notna()
    if bad.any():
        label = bad[bad].index[0]
        raise MalformedInputError(
            "Value is not numeric after stripping formatting",
            path=path,
            column=column,
            row=_row_number(label),
            value=series.loc[label],
        )

    return values.astype(float)


def _check_unique(keys: pd.Series, path: PathLike, column: str) -> None:
    duplicated = keys.duplicated(keep="first")
    if duplicated.any():
        label = duplicated[duplicated].index[0]
        raise MalformedInputError(
            "Duplicate key", path=path, column=column, row=_row_number(label), value=keys.loc[label]
        )


def _drop_sentinels(
    df: pd.DataFrame, key_column: str, sentinel_keys: Sequence, key_width: Optional[int], path: PathLike
) -> pd.DataFrame:
    if not sentinel_keys:
        return df

    sentinels = {str(s).strip() for s in sentinel_keys}
    if key_width:
        sentinels |= {s.zfill(key_width) for s in sentinels}

    raw = df[key_column].map(_key_to_str)
    mask = raw.isin(sentinels)
    if mask.any():
        logger.info(f"Filtered {int(mask.sum())} sentinel rows from {Path(path).name}")
    return df[~mask].copy()


def read_delimited_table(
    path: PathLike,
    key_column: str,
    key_width: Optional[int] = None,
    key_type: type = str,
    numeric_columns: Sequence[str] = (),
    renames: Optional[Dict[str, str]] = None,
    sentinel_keys: Sequence = (),
) -> pd.DataFrame:
    """
    Read a comma-separated table keyed by a geographic identifier.

    Args:
        path: CSV file with a header row
        key_column: Column holding the join key
        key_width: Fixed width for census identifiers (preserves leading zeros)
        key_type: str for census identifiers, int for ZIP/ZCTA codes
        numeric_columns: Columns parsed to float (currency formatting stripped)
        renames: Source column -> pipeline column
        sentinel_keys: Placeholder identifiers removed before validation

    Returns:
        DataFrame with one row per key

    Raises:
        MalformedInputError: missing file/column, bad key, unparseable number
    """
    path = _require_file(path)

    df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    df.columns = [c.strip() for c in df.columns]
    require_columns(df, [key_column, *numeric_columns], path)

    df = _drop_sentinels(df, key_column, sentinel_keys, key_width, path)
    df[key_column] = normalize_keys(df[key_column], path, key_column, key_width, key_type)
    _check_unique(df[key_column], path, key_column)

    for col in numeric_columns:
        df[col] = coerce_numeric(df[col], path, col)

    if renames:
        df = df.rename(columns=renames)

    logger.info(f"Loaded {len(df)} rows from {path.name}")
    return df.reset_index(drop=True)


def read_geometry_file(
    path: PathLike,
    key_column: str,
    key_width: Optional[int] = None,
    key_type: type = str,
    keep_columns: Sequence[str] = (),
    renames: Optional[Dict[str, str]] = None,
    crs: Optional[str] = None,
) -> gpd.GeoDataFrame:
    """
    Read a polygon file (shapefile + sidecars, GeoPackage, GeoJSON).

    Args:
        path: Geometry file path
        key_column: Attribute column holding the join key
        key_width: Fixed width for census identifiers
        key_type: str or int
        keep_columns: Extra attribute columns to keep
        renames: Source column -> pipeline column
        crs: Target CRS (assigned when the file carries none)

    Returns:
        GeoDataFrame with key, kept attributes and geometry
    """
    path = _require_file(path)

    gdf = gpd.read_file(path)
    require_columns(gdf, [key_column, *keep_columns], path)

    gdf = gdf[[key_column, *keep_columns, gdf.geometry.name]].copy()
    gdf[key_column] = normalize_keys(gdf[key_column], path, key_column, key_width, key_type)
    _check_unique(gdf[key_column], path, key_column)

    if crs:
        if gdf.crs is None:
            logger.warning(f"{path.name} has no CRS; assuming {crs}")
            gdf = gdf.set_crs(crs)
        elif gdf.crs != crs:
            gdf = gdf.to_crs(crs)

    if renames:
        gdf = gdf.rename(columns=renames)

    logger.info(f"Loaded {len(gdf)} geometries from {path.name}")
    return gdf.reset_index(drop=True)


def read_attribute_table(
    path: PathLike,
    required_columns: Sequence[str],
    numeric_columns: Sequence[str] = (),
    renames: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """
    Read a stand-alone attribute table (.dbf or .csv) without geometry.
    """
    path = _require_file(path)

    if path.suffix.lower() == ".csv":
        df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        df.columns = [c.strip() for c in df.columns]
    else:
        df = pd.DataFrame(gpd.read_file(path, ignore_geometry=True))

    require_columns(df, [*required_columns, *numeric_columns], path)
    df = df.reset_index(drop=True)

    for col in numeric_columns:
        df[col] = coerce_numeric(df[col], path, col)

    if renames:
        df = df.rename(columns=renames)

    logger.info(f"Loaded {len(df)} attribute rows from {path.name}")
    return df
