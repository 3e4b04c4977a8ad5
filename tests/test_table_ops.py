"""
Tests for geometry-anchored joins and county derivation
"""

import numpy as np
import pandas as pd
import pytest

from voucher_atlas.processing.field_registry import (
    DEMOGRAPHIC_FIELDS,
    VOUCHER_FIELDS,
    FillPolicy,
    fill_policies,
)
from voucher_atlas.processing.table_ops import county_of, derive_county, left_join
from voucher_atlas.utils.data_sources import MalformedInputError


class TestLeftJoin:
    def test_fill_policy_distinguishes_counts_from_estimates(self, tract_geoms, voucher_counts, tract_demographics):
        joined, _ = left_join(
            tract_geoms, voucher_counts, key="tract", fill_policies=fill_policies(VOUCHER_FIELDS)
        )
        joined, _ = left_join(
            joined, tract_demographics, key="tract", fill_policies=fill_policies(DEMOGRAPHIC_FIELDS)
        )
        adams = joined.set_index("tract").loc["42001030100"]

        # Absent from the voucher file means zero vouchers
        assert adams["hcv_sub_units"] == 0
        # Absent from ACS means unknown, not zero
        assert np.isnan(adams["households"])
        assert np.isnan(adams["poverty_pop"])

    def test_base_rows_and_order_preserved(self, tract_geoms, voucher_counts):
        joined, _ = left_join(tract_geoms, voucher_counts, key="tract")

        assert list(joined["tract"]) == list(tract_geoms["tract"])
        assert joined.geometry.name == tract_geoms.geometry.name

    def test_diagnostics(self, tract_geoms, voucher_counts):
        _, diagnostics = left_join(
            tract_geoms,
            voucher_counts,
            key="tract",
            fill_policies={"hcv_sub_units": FillPolicy.ZERO},
            label="tract<-vouchers",
        )

        assert diagnostics.label == "tract<-vouchers"
        assert diagnostics.base_rows == 3
        assert diagnostics.matched == 2
        assert diagnostics.unmatched == 1
        # 42101999900 has no geometry
        assert diagnostics.dropped == 1
        assert diagnostics.filled == {"hcv_sub_units": 1}

    def test_default_policy_leaves_nan(self):
        base = pd.DataFrame({"k": ["a", "b"]})
        addition = pd.DataFrame({"k": ["a"], "v": [3.0]})

        joined, diagnostics = left_join(base, addition, key="k")

        assert joined.loc[0, "v"] == 3.0
        assert np.isnan(joined.loc[1, "v"])
        assert diagnostics.filled == {}

    def test_duplicate_attribute_key_raises(self):
        base = pd.DataFrame({"k": ["a"]})
        addition = pd.DataFrame({"k": ["a", "a"], "v": [1, 2]})

        with pytest.raises(MalformedInputError, match="Duplicate join key"):
            left_join(base, addition, key="k")

    def test_missing_key_raises(self):
        with pytest.raises(MalformedInputError):
            left_join(pd.DataFrame({"k": ["a"]}), pd.DataFrame({"other": ["a"]}), key="k")

    def test_overlapping_columns_rejected(self):
        base = pd.DataFrame({"k": ["a"], "v": [1]})
        addition = pd.DataFrame({"k": ["a"], "v": [2]})

        with pytest.raises(ValueError, match="overwrite"):
            left_join(base, addition, key="k")

    def test_inputs_not_modified(self, tract_geoms, voucher_counts):
        before = voucher_counts.copy()
        left_join(tract_geoms, voucher_counts, key="tract", fill_policies={"hcv_sub_units": FillPolicy.ZERO})

        pd.testing.assert_frame_equal(voucher_counts, before)
        assert "hcv_sub_units" not in tract_geoms.columns


class TestDeriveCounty:
    def test_truncates_tract_fips(self, tract_geoms):
        out = derive_county(tract_geoms)

        assert list(out["county"]) == ["42101", "42101", "42001"]
        assert "county" not in tract_geoms.columns

    def test_leading_zero_state(self):
        assert county_of("01001020100") == "01001"

    def test_rejects_short_fips(self):
        with pytest.raises(MalformedInputError, match="11 characters"):
            derive_county(pd.DataFrame({"tract": ["4210100010"]}))
