"""
Tests for the per-geography table builders
"""

import dataclasses

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

from voucher_atlas.processing.classification import RECAP
from voucher_atlas.processing.geographies import (
    COUNTY_COLUMNS,
    NEIGHBORHOOD_COLUMNS,
    TRACT_COLUMNS,
    ZCTA_COLUMNS,
    build_county_table,
    build_neighborhood_table,
    build_tract_table,
    build_zcta_table,
)


@pytest.fixture
def tract_table(tract_geoms, voucher_counts, tract_demographics, pipeline_config):
    return build_tract_table(tract_geoms, voucher_counts, tract_demographics, pipeline_config)


class TestTractTable:
    def test_one_row_per_geometry(self, tract_table, tract_geoms):
        assert list(tract_table["tract"]) == list(tract_geoms["tract"])
        assert isinstance(tract_table, gpd.GeoDataFrame)
        assert list(tract_table.columns) == [*TRACT_COLUMNS, "geometry"]

    def test_rates_and_recap(self, tract_table):
        row = tract_table.set_index("tract").loc["42101000100"]

        assert row["voucher_rate"] == pytest.approx(10.0)
        assert row["tract_pct_poc"] == pytest.approx(75.0)
        assert row["tract_pct_pov"] == pytest.approx(100 * 540 / 1150)
        assert row["recap"] == RECAP

    def test_small_tract_rates_suppressed(self, tract_table):
        indexed = tract_table.set_index("tract")
        row = indexed.loc["42101000200"]

        assert row["hcv_sub_units"] == 1
        assert np.isnan(row["voucher_rate"])
        assert np.isnan(row["tract_pct_poc"])
        assert np.isnan(row["tract_pct_pov"])
        assert indexed.loc["42101000200", "recap"] is None

    def test_tract_without_attributes(self, tract_table):
        indexed = tract_table.set_index("tract")
        row = indexed.loc["42001030100"]

        assert row["county"] == "42001"
        assert row["hcv_sub_units"] == 0
        assert np.isnan(row["households"])
        assert np.isnan(row["voucher_rate"])
        assert indexed.loc["42001030100", "recap"] is None

    def test_min_sample_threshold_is_configurable(
        self, tract_geoms, voucher_counts, tract_demographics, pipeline_config
    ):
        config = dataclasses.replace(pipeline_config, min_sample_threshold=1)
        table = build_tract_table(tract_geoms, voucher_counts, tract_demographics, config)

        assert table.set_index("tract").loc["42101000200", "voucher_rate"] == pytest.approx(20.0)

    def test_inputs_not_modified(self, tract_geoms, voucher_counts, tract_demographics, pipeline_config):
        before = tract_demographics.copy()
        build_tract_table(tract_geoms, voucher_counts, tract_demographics, pipeline_config)

        pd.testing.assert_frame_equal(tract_demographics, before)
        assert list(tract_geoms.columns) == ["tract", "geometry"]


class TestCountyTable:
    def test_rate_recomputed_from_sums(self, tract_table, pipeline_config):
        counties = build_county_table(tract_table, pipeline_config).set_index("county")
        philly = counties.loc["42101"]

        assert philly["hcv_sub_units"] == 51
        assert philly["households"] == 505
        assert philly["tract_count"] == 2
        # Not the mean of tract rates: the suppressed tract still counts in the sums
        assert philly["voucher_rate"] == pytest.approx(100 * 51 / 505)
        assert philly["mean_tract_voucher_rate"] == pytest.approx(10.0)
        assert philly["county_pct_poc"] == pytest.approx(100 * 902 / 1208)
        assert philly["county_pct_pov"] == pytest.approx(100 * 541 / 1158)

    def test_poverty_rate_with_mixed_universes(self, pipeline_config):
        tract_geoms = gpd.GeoDataFrame(
            {"tract": ["42101000100", "42101000200"]},
            geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1)],
            crs="EPSG:4326",
        )
        vouchers = pd.DataFrame({"tract": ["42101000100"], "hcv_sub_units": [5.0]})
        demographics = pd.DataFrame(
            {
                "tract": ["42101000100", "42101000200"],
                "households": [400.0, 400.0],
                "total_pop": [1100.0, 1000.0],
                "poc_pop": [500.0, 500.0],
                "poverty_pop": [100.0, 900.0],
                "poverty_universe": [1000.0, np.nan],
            }
        )

        tracts = build_tract_table(tract_geoms, vouchers, demographics, pipeline_config)
        counties = build_county_table(tracts, pipeline_config)

        assert tracts["tract_pct_pov"].tolist() == pytest.approx([10.0, 90.0])
        assert tracts["poverty_denominator"].tolist() == [1000.0, 1000.0]
        # Universe where published, total population elsewhere
        assert counties.loc[0, "poverty_denominator"] == 2000.0
        assert counties.loc[0, "county_pct_pov"] == pytest.approx(50.0)

    def test_county_without_attributes(self, tract_table, pipeline_config):
        counties = build_county_table(tract_table, pipeline_config).set_index("county")
        adams = counties.loc["42001"]

        assert adams["tract_count"] == 1
        assert adams["hcv_sub_units"] == 0
        assert np.isnan(adams["voucher_rate"])
        assert np.isnan(adams["mean_tract_voucher_rate"])

    def test_dissolved_geometry_without_county_file(self, tract_table, pipeline_config):
        counties = build_county_table(tract_table, pipeline_config)

        assert list(counties.columns) == [*COUNTY_COLUMNS, "geometry"]
        assert set(counties["county"]) == {"42101", "42001"}
        assert counties["county_name"].isna().all()

    def test_county_file_restricted_to_study_area(self, tract_table, tract_geoms, pipeline_config):
        county_geoms = gpd.GeoDataFrame(
            {
                "county": ["42101", "42001", "42003"],
                "county_name": ["Philadelphia", "Adams", "Allegheny"],
            },
            geometry=[
                tract_geoms.geometry.iloc[0],
                tract_geoms.geometry.iloc[2],
                tract_geoms.geometry.iloc[2].buffer(1.0),
            ],
            crs="EPSG:4326",
        )

        counties = build_county_table(tract_table, pipeline_config, county_geoms)

        assert list(counties["county"]) == ["42101", "42001"]
        assert list(counties["county_name"]) == ["Philadelphia", "Adams"]


class TestZctaTable:
    def test_gaps_against_metro_fmr_and_rent(self, zcta_geoms, safmr_table, zcta_rents, pipeline_config):
        zctas = build_zcta_table(zcta_geoms, safmr_table, zcta_rents, pipeline_config).set_index("zcta")
        center_city = zctas.loc[19103]

        assert center_city["metro_fmr"] == pytest.approx(1156.0)
        assert center_city["fmr_gap"] == pytest.approx(1900 - 1156)
        assert center_city["fmr_gap_pct"] == pytest.approx(100 * (1900 - 1156) / 1156)
        assert center_city["rent_gap"] == pytest.approx(400.0)
        assert zctas.loc[19103, "rent_moe_flag"] is True

    def test_missing_rent_stays_undefined(self, zcta_geoms, safmr_table, zcta_rents, pipeline_config):
        zctas = build_zcta_table(zcta_geoms, safmr_table, zcta_rents, pipeline_config).set_index("zcta")
        west = zctas.loc[19104]

        assert west["fmr_gap"] == pytest.approx(-156.0)
        assert np.isnan(west["median_gross_rent"])
        assert np.isnan(west["rent_gap"])
        assert zctas.loc[19104, "rent_moe_flag"] is None

    def test_restricted_to_safmr_area(self, zcta_geoms, safmr_table, zcta_rents, pipeline_config):
        zctas = build_zcta_table(zcta_geoms, safmr_table, zcta_rents, pipeline_config)

        assert list(zctas["zcta"]) == [19103, 19104]
        assert list(zctas.columns) == [*ZCTA_COLUMNS, "geometry"]

    def test_reference_bedroom_size(self, zcta_geoms, safmr_table, zcta_rents, pipeline_config):
        config = dataclasses.replace(pipeline_config, fmr_bedrooms=3, metro_fmr=1500.0)
        zctas = build_zcta_table(zcta_geoms, safmr_table, zcta_rents, config).set_index("zcta")

        assert zctas.loc[19103, "fmr_gap"] == pytest.approx(2300 - 1500)
        assert zctas.loc[19103, "rent_gap"] == pytest.approx(2300 - 1500)


class TestNeighborhoodTable:
    def test_area_weighted_rate(self, tract_table, neighborhood_geoms, intersections, pipeline_config):
        hoods = build_neighborhood_table(
            tract_table, neighborhood_geoms, pipeline_config, intersections
        ).set_index("neighborhood")

        assert hoods.loc["West", "hcv_sub_units"] == pytest.approx(50.5)
        assert hoods.loc["West", "households"] == pytest.approx(502.5)
        assert hoods.loc["West", "voucher_rate"] == pytest.approx(100 * 50.5 / 502.5)
        # Half of a five-household tract is below the minimum sample
        assert hoods.loc["East", "households"] == pytest.approx(2.5)
        assert np.isnan(hoods.loc["East", "voucher_rate"])

    def test_neighborhood_without_tracts(self, tract_table, neighborhood_geoms, intersections, pipeline_config):
        hoods = build_neighborhood_table(
            tract_table, neighborhood_geoms, pipeline_config, intersections
        ).set_index("neighborhood")

        assert hoods.loc["Riverfront", "hcv_sub_units"] == 0
        assert hoods.loc["Riverfront", "households"] == 0
        assert np.isnan(hoods.loc["Riverfront", "voucher_rate"])

    def test_overlay_when_no_bridge_table(self, tract_table, neighborhood_geoms, pipeline_config):
        hoods = build_neighborhood_table(tract_table, neighborhood_geoms, pipeline_config)

        assert list(hoods.columns) == [*NEIGHBORHOOD_COLUMNS, "geometry"]
        assert list(hoods["neighborhood"]) == ["West", "East", "Riverfront"]
        assert hoods.set_index("neighborhood").loc["West", "households"] == pytest.approx(502.5, rel=1e-3)
