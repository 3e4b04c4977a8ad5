"""
Voucher Access Atlas - GeoJSON Export
Writes the map-ready tables consumed by the report/visualization layer

Outputs (per geography):
- exports/<geography>_latest.geojson (always current, WGS84)
- exports/<geography>_latest.csv (attributes only, for sortable tables)
- exports/<geography>_{YYYYMMDD}.geojson (versioned snapshots)

Plus:
- exports/legend_breaks.json (quantile breakpoints per mapped field)
- exports/manifest.json (record counts and SHA256 checksums)

Undefined rates are written as JSON null, never 0.
"""

import hashlib
import json
import os
from datetime import datetime
from typing import Dict, List, Optional

import geopandas as gpd
import pandas as pd

from config.settings import get_settings
from voucher_atlas.processing.aggregation import quantile_bins
from voucher_atlas.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

# Fields the report maps as choropleths, per geography
LEGEND_FIELDS: Dict[str, List[str]] = {
    "tracts": ["voucher_rate", "tract_pct_poc", "tract_pct_pov"],
    "counties": ["voucher_rate"],
    "zctas": ["safmr_2br", "fmr_gap", "rent_gap"],
    "neighborhoods": ["voucher_rate"],
}


def prepare_geojson_properties(gdf: gpd.GeoDataFrame, precision: int = 4) -> gpd.GeoDataFrame:
    """
    Prepare GeoJSON properties for frontend consumption.

    Rounds floats; NaN is kept so export_geojson can write it as null.

    Args:
        gdf: GeoDataFrame from a geography builder
        precision: Decimal places kept for float columns

    Returns:
        New GeoDataFrame with cleaned properties
    """
    gdf = gdf.copy()
    geometry_name = gdf.geometry.name

    for col in gdf.columns:
        if col == geometry_name:
            continue
        if pd.api.types.is_float_dtype(gdf[col]):
            gdf[col] = gdf[col].round(precision)
        elif pd.api.types.is_object_dtype(gdf[col]) or pd.api.types.is_string_dtype(gdf[col]):
            # Text dtypes cannot hold None; switch to object first
            values = gdf[col].astype(object)
            gdf[col] = values.where(values.notna(), None)

    return gdf


def export_geojson(gdf: gpd.GeoDataFrame, output_path: str, web_crs: Optional[str] = None) -> str:
    """
    Export GeoDataFrame to GeoJSON file in WGS84.

    Args:
        gdf: GeoDataFrame to export
        output_path: Output file path
        web_crs: Output CRS (default: settings.WEB_CRS)

    Returns:
        Path to exported file
    """
    logger.info(f"Exporting GeoJSON to {output_path}")

    web_crs = web_crs or settings.WEB_CRS
    if gdf.crs is not None and gdf.crs != web_crs:
        gdf = gdf.to_crs(web_crs)

    # Ensure output directory exists
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)

    # na="null" keeps undefined rates distinguishable from zero
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(gdf.to_json(na="null", drop_id=True))

    file_size = os.path.getsize(output_path)
    logger.info(f"Exported {len(gdf)} features, file size: {file_size / 1024:.1f} KB")

    return output_path


def export_table(gdf: gpd.GeoDataFrame, output_path: str) -> str:
    """Export attributes (no geometry) as CSV; undefined values are empty cells."""
    table = pd.DataFrame(gdf.drop(columns=gdf.geometry.name))
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    table.to_csv(output_path, index=False)
    logger.info(f"Exported {len(table)} rows to {output_path}")
    return output_path


def calculate_file_checksum(file_path: str) -> str:
    """
    Calculate SHA256 checksum of file.

    Args:
        file_path: Path to file

    Returns:
        Hex digest of checksum
    """
    sha256 = hashlib.sha256()

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)

    return sha256.hexdigest()


def export_geography(
    gdf: gpd.GeoDataFrame,
    name: str,
    export_dir: Optional[str] = None,
    versioned: bool = True,
    web_crs: Optional[str] = None,
) -> dict:
    """
    Write the latest (and optionally dated) GeoJSON plus CSV for one geography.

    Returns:
        Dict with export metadata
    """
    export_dir = export_dir or settings.EXPORT_DIR
    prepared = prepare_geojson_properties(gdf)

    latest_path = export_geojson(prepared, os.path.join(export_dir, f"{name}_latest.geojson"), web_crs)
    csv_path = export_table(gdf, os.path.join(export_dir, f"{name}_latest.csv"))

    versioned_path = None
    if versioned:
        version = datetime.now().strftime("%Y%m%d")
        versioned_path = export_geojson(prepared, os.path.join(export_dir, f"{name}_{version}.geojson"), web_crs)

    return {
        "geography": name,
        "record_count": len(gdf),
        "latest_path": latest_path,
        "csv_path": csv_path,
        "versioned_path": versioned_path,
        "checksum": calculate_file_checksum(latest_path),
    }


def build_legend_breaks(
    tables: Dict[str, gpd.GeoDataFrame],
    n_bins: int,
    fields: Optional[Dict[str, List[str]]] = None,
) -> Dict[str, List[float]]:
    """
    Quantile breakpoints keyed "<geography>.<field>".

    Fields missing from a table are skipped; all-undefined fields map to [].
    """
    fields = fields or LEGEND_FIELDS
    breaks = {}
    for name, gdf in tables.items():
        for field in fields.get(name, []):
            if field not in gdf.columns:
                continue
            breaks[f"{name}.{field}"] = quantile_bins(gdf[field], n_bins)
    return breaks


def export_legend_breaks(
    tables: Dict[str, gpd.GeoDataFrame],
    n_bins: int,
    export_dir: Optional[str] = None,
    fields: Optional[Dict[str, List[str]]] = None,
) -> str:
    """Write legend_breaks.json for the choropleth legends."""
    export_dir = export_dir or settings.EXPORT_DIR
    breaks = build_legend_breaks(tables, n_bins, fields)

    os.makedirs(export_dir, exist_ok=True)
    output_path = os.path.join(export_dir, "legend_breaks.json")
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump({"n_bins": n_bins, "breaks": breaks}, f, indent=2)

    logger.info(f"Wrote {len(breaks)} legend break sets to {output_path}")
    return output_path


def write_manifest(results: List[dict], export_dir: Optional[str] = None, web_crs: Optional[str] = None) -> str:
    """Record what was exported, and in which CRS, for reproducibility of each build."""
    export_dir = export_dir or settings.EXPORT_DIR
    web_crs = web_crs or settings.WEB_CRS
    output_path = os.path.join(export_dir, "manifest.json")

    manifest = {
        "export_date": datetime.now().isoformat(timespec="seconds"),
        "crs": web_crs,
        "exports": results,
    }
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)

    logger.info(f"Wrote export manifest to {output_path}")
    return output_path
