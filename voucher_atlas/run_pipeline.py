"""
Voucher Access Atlas - Main Pipeline Orchestration

Builds every map-ready table from local source files in a single pass.

Pipeline stages:
1. Load (geometry and attribute sources)
2. Join + aggregate (tract, county, ZCTA, neighborhood)
3. Classify (RECAP, rent margin-of-error flag)
4. Export (GeoJSON, CSV, legend breaks, manifest)

Any structural input problem aborts the build before anything is exported.

Usage:
    python -m voucher_atlas.run_pipeline
    python -m voucher_atlas.run_pipeline --data-dir data --levels tract county
    python -m voucher_atlas.run_pipeline --min-sample 20 --metro-fmr 1210
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from config.settings import PipelineConfig, get_settings
from voucher_atlas.export.geojson_export import export_geography, export_legend_breaks, write_manifest
from voucher_atlas.ingest import sources
from voucher_atlas.processing.field_registry import Geography
from voucher_atlas.processing.geographies import (
    build_county_table,
    build_neighborhood_table,
    build_tract_table,
    build_zcta_table,
)
from voucher_atlas.utils.data_sources import MalformedInputError
from voucher_atlas.utils.logging import get_logger, log_stage, setup_logging

logger = get_logger(__name__)
settings = get_settings()

ALL_LEVELS = [g.value for g in Geography]

# Export file stem per geography
EXPORT_NAMES = {
    Geography.TRACT.value: "tracts",
    Geography.COUNTY.value: "counties",
    Geography.ZCTA.value: "zctas",
    Geography.NEIGHBORHOOD.value: "neighborhoods",
}


def _required_sources(levels: Sequence[str]) -> List[sources.SourceDefinition]:
    required = []
    if set(levels) & {"tract", "county", "neighborhood"}:
        required += [sources.TRACT_GEOMETRY, sources.VOUCHERS, sources.DEMOGRAPHICS]
    if "zcta" in levels:
        required += [sources.ZCTA_GEOMETRY, sources.SMALL_AREA_FMR, sources.ZCTA_RENTS]
    if "neighborhood" in levels:
        required += [sources.NEIGHBORHOOD_GEOMETRY]
    return required


def check_prerequisites(config: PipelineConfig, levels: Sequence[str]) -> bool:
    """
    Check that every required input file exists before loading anything.

    Returns:
        True if all checks pass, False otherwise
    """
    logger.info("Checking prerequisites")

    ok = True
    for source in _required_sources(levels):
        path = source.resolve_path(config.data_dir)
        if path is None or not path.exists():
            logger.error(f"Missing input for {source.name}: {path} (setting {source.path_setting})")
            ok = False

    if ok:
        logger.info("Prerequisites check passed")
    return ok


def build_tables(config: PipelineConfig, levels: Sequence[str] = ALL_LEVELS) -> Dict[str, object]:
    """
    Load sources and build the requested geography tables.

    Tracts are built whenever county or neighborhood tables are requested.

    Returns:
        Dict mapping geography -> GeoDataFrame (only requested levels)

    Raises:
        MalformedInputError: any structural input problem
    """
    data_dir = config.data_dir
    tables = {}

    def path_of(source: sources.SourceDefinition) -> Optional[Path]:
        return source.resolve_path(data_dir)

    tract_table = None
    if set(levels) & {"tract", "county", "neighborhood"}:
        tract_geoms = sources.load_tract_geometries(path_of(sources.TRACT_GEOMETRY), crs=config.web_crs)
        vouchers = sources.load_voucher_counts(path_of(sources.VOUCHERS))
        demographics = sources.load_tract_demographics(path_of(sources.DEMOGRAPHICS))
        tract_table = build_tract_table(tract_geoms, vouchers, demographics, config)
        if "tract" in levels:
            tables["tract"] = tract_table

    if "county" in levels:
        county_path = path_of(sources.COUNTY_GEOMETRY)
        county_geoms = None
        if county_path is not None:
            county_geoms = sources.load_county_geometries(county_path, crs=config.web_crs)
        else:
            logger.info("No county geometry configured; dissolving tract geometries")
        tables["county"] = build_county_table(tract_table, config, county_geoms)

    if "zcta" in levels:
        zcta_geoms = sources.load_zcta_geometries(path_of(sources.ZCTA_GEOMETRY), crs=config.web_crs)
        safmr = sources.load_small_area_fmr(path_of(sources.SMALL_AREA_FMR))
        rents = sources.load_zcta_rents(path_of(sources.ZCTA_RENTS))
        tables["zcta"] = build_zcta_table(zcta_geoms, safmr, rents, config)

    if "neighborhood" in levels:
        hood_geoms = sources.load_neighborhood_geometries(
            path_of(sources.NEIGHBORHOOD_GEOMETRY), crs=config.web_crs
        )
        bridge_path = path_of(sources.INTERSECTIONS)
        intersections = None
        if bridge_path is not None:
            intersections = sources.load_tract_neighborhood_intersections(bridge_path)
        else:
            logger.info("No intersection table configured; computing tract/neighborhood overlay")
        tables["neighborhood"] = build_neighborhood_table(tract_table, hood_geoms, config, intersections)

    return tables


def run_pipeline(
    config: PipelineConfig,
    levels: Sequence[str] = ALL_LEVELS,
    versioned: bool = True,
) -> dict:
    """
    Build and export every requested geography.

    Every table is built before the first file is written, so a build error
    leaves the export directory untouched. A failure while exporting can
    leave earlier geographies written; the manifest is written last and only
    lists a complete run.

    Returns:
        Dict with export metadata per geography and output paths
    """
    unknown = set(levels) - set(ALL_LEVELS)
    if unknown:
        raise ValueError(f"Unknown geography levels: {sorted(unknown)}")

    log_stage(logger, "STAGE 1-3: LOAD, JOIN, AGGREGATE, CLASSIFY")

    tables = build_tables(config, levels)

    log_stage(logger, "STAGE 4: EXPORT")

    exports = [
        export_geography(
            gdf, EXPORT_NAMES[level], export_dir=config.export_dir, versioned=versioned, web_crs=config.web_crs
        )
        for level, gdf in tables.items()
    ]

    named_tables = {EXPORT_NAMES[level]: gdf for level, gdf in tables.items()}
    legend_path = export_legend_breaks(named_tables, config.n_quantile_bins, export_dir=config.export_dir)
    manifest_path = write_manifest(exports, export_dir=config.export_dir, web_crs=config.web_crs)

    return {
        "exports": exports,
        "legend_path": legend_path,
        "manifest_path": manifest_path,
    }


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Voucher Access Atlas - build map-ready voucher, rent and RECAP tables"
    )

    parser.add_argument("--data-dir", type=str, help="Directory holding input files (default: DATA_DIR)")
    parser.add_argument("--export-dir", type=str, help="Output directory (default: EXPORT_DIR)")
    parser.add_argument(
        "--levels",
        type=str,
        nargs="+",
        default=ALL_LEVELS,
        choices=ALL_LEVELS,
        help="Geographies to build (default: all)",
    )
    parser.add_argument("--min-sample", type=int, help="Minimum rate denominator (default: 10)")
    parser.add_argument("--recap-poc-threshold", type=float, help="RECAP people of color share, %% (default: 50)")
    parser.add_argument("--recap-poverty-threshold", type=float, help="RECAP poverty rate, %% (default: 40)")
    parser.add_argument("--quantile-bins", type=int, help="Legend bins per mapped field (default: 5)")
    parser.add_argument("--metro-fmr", type=float, help="Metro-wide FMR for the reference bedroom size")
    parser.add_argument("--no-versioned", action="store_true", help="Only write *_latest outputs")

    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None):
    """Main pipeline orchestration"""
    setup_logging("pipeline")

    args = parse_args(argv)

    config = PipelineConfig.from_settings(
        settings,
        data_dir=args.data_dir,
        export_dir=args.export_dir,
        min_sample_threshold=args.min_sample,
        recap_poc_threshold=args.recap_poc_threshold,
        recap_poverty_threshold=args.recap_poverty_threshold,
        n_quantile_bins=args.quantile_bins,
        metro_fmr=args.metro_fmr,
    )

    # Pipeline start
    start_time = datetime.now()
    logger.info("=" * 60)
    logger.info("Voucher Access Atlas - Pipeline Start")
    logger.info(f"Time: {start_time.isoformat()}")
    logger.info(f"Arguments: {vars(args)}")
    logger.info(f"Config: {config}")
    logger.info("=" * 60)

    if not check_prerequisites(config, args.levels):
        logger.error("Prerequisites check failed, exiting")
        sys.exit(1)

    try:
        result = run_pipeline(config, levels=args.levels, versioned=not args.no_versioned)

        end_time = datetime.now()
        duration = (end_time - start_time).total_seconds()

        logger.info("=" * 60)
        logger.info("PIPELINE COMPLETE")
        for export in result["exports"]:
            logger.info(f"{export['geography']}: {export['record_count']} features -> {export['latest_path']}")
        logger.info(f"Duration: {duration:.1f} seconds")
        logger.info("=" * 60)

        sys.exit(0)

    except KeyboardInterrupt:
        logger.warning("Pipeline interrupted by user")
        sys.exit(130)

    except MalformedInputError as e:
        logger.error(f"Build aborted, no output written: {e}", exc_info=True)
        sys.exit(1)

    except Exception as e:
        logger.error(f"Pipeline failed with unhandled exception: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
