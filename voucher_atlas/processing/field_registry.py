"""
Voucher Access Atlas - Field Registry
Single source of truth for every attribute joined onto a geometry table

This registry defines:
- Canonical field names
- Source table each field is joined from
- Fill policy when a geometry row has no attribute match
- Why that policy was chosen

NO attribute should be joined without being registered here.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List


class FillPolicy(str, Enum):
    """Default assigned to a joined field when the base row has no match"""
    ZERO = "zero"  # Absence means "no participation" (counts)
    NULL = "null"  # Absence means "unknown" (rate inputs, benchmarks)


class Geography(str, Enum):
    """Geographic levels produced by the pipeline"""
    TRACT = "tract"
    COUNTY = "county"
    ZCTA = "zcta"
    NEIGHBORHOOD = "neighborhood"


@dataclass(frozen=True)
class FieldDefinition:
    """
    Definition of a single joined attribute
    """
    name: str  # Canonical column name after the join
    source: str  # Source table name
    fill_policy: FillPolicy
    unit: str
    rationale: str  # Why the fill policy is what it is


# ============================================================================
# TRACT ATTRIBUTES
# ============================================================================

VOUCHER_FIELDS: List[FieldDefinition] = [
    FieldDefinition(
        name="hcv_sub_units",
        source="hcv_by_tract",
        fill_policy=FillPolicy.ZERO,
        unit="Units",
        rationale="A tract absent from the HUD voucher file has no voucher-subsidized units",
    ),
]

DEMOGRAPHIC_FIELDS: List[FieldDefinition] = [
    FieldDefinition(
        name="households",
        source="acs_tract_demographics",
        fill_policy=FillPolicy.NULL,
        unit="Households",
        rationale="Voucher-rate denominator; zero would fake a suppressed sample",
    ),
    FieldDefinition(
        name="total_pop",
        source="acs_tract_demographics",
        fill_policy=FillPolicy.NULL,
        unit="Persons",
        rationale="Percent-people-of-color denominator",
    ),
    FieldDefinition(
        name="poc_pop",
        source="acs_tract_demographics",
        fill_policy=FillPolicy.NULL,
        unit="Persons",
        rationale="Rate numerator; unknown must stay unknown",
    ),
    FieldDefinition(
        name="poverty_pop",
        source="acs_tract_demographics",
        fill_policy=FillPolicy.NULL,
        unit="Persons",
        rationale="Rate numerator; unknown must stay unknown",
    ),
    FieldDefinition(
        name="poverty_universe",
        source="acs_tract_demographics",
        fill_policy=FillPolicy.NULL,
        unit="Persons",
        rationale="Poverty-rate denominator",
    ),
]

# ============================================================================
# COUNTY ATTRIBUTES (tract sums joined onto county geometry)
# ============================================================================

COUNTY_FIELDS: List[FieldDefinition] = [
    FieldDefinition(
        name="hcv_sub_units",
        source="tract_county_aggregate",
        fill_policy=FillPolicy.ZERO,
        unit="Units",
        rationale="A county with no tracts in the study area has no voucher units",
    ),
    FieldDefinition(
        name="tract_count",
        source="tract_county_aggregate",
        fill_policy=FillPolicy.ZERO,
        unit="Tracts",
        rationale="Number of tracts aggregated",
    ),
] + [
    FieldDefinition(
        name=name,
        source="tract_county_aggregate",
        fill_policy=FillPolicy.NULL,
        unit=unit,
        rationale="Rate input; unknown must stay unknown",
    )
    for name, unit in [
        ("households", "Households"),
        ("total_pop", "Persons"),
        ("poc_pop", "Persons"),
        ("poverty_pop", "Persons"),
        ("poverty_universe", "Persons"),
        ("poverty_denominator", "Persons"),
        ("mean_tract_voucher_rate", "Percent"),
    ]
]

# ============================================================================
# ZCTA ATTRIBUTES
# ============================================================================

SAFMR_FIELDS: List[FieldDefinition] = [
    FieldDefinition(
        name=f"safmr_{n}br",
        source="small_area_fmr",
        fill_policy=FillPolicy.NULL,
        unit="USD / month",
        rationale="No published SAFMR is not a $0 rent",
    )
    for n in range(5)
]

RENT_FIELDS: List[FieldDefinition] = [
    FieldDefinition(
        name="median_gross_rent",
        source="acs_zcta_median_gross_rent",
        fill_policy=FillPolicy.NULL,
        unit="USD / month",
        rationale="Suppressed ACS estimate is unknown, not zero",
    ),
    FieldDefinition(
        name="median_gross_rent_moe",
        source="acs_zcta_median_gross_rent",
        fill_policy=FillPolicy.NULL,
        unit="USD / month",
        rationale="Margin of error only exists alongside an estimate",
    ),
]

# ============================================================================
# NEIGHBORHOOD ATTRIBUTES
# ============================================================================

NEIGHBORHOOD_FIELDS: List[FieldDefinition] = [
    FieldDefinition(
        name="hcv_sub_units",
        source="tract_neighborhood_reapportionment",
        fill_policy=FillPolicy.ZERO,
        unit="Units (area-weighted)",
        rationale="A neighborhood no tract overlaps receives no area-weighted units",
    ),
    FieldDefinition(
        name="households",
        source="tract_neighborhood_reapportionment",
        fill_policy=FillPolicy.ZERO,
        unit="Households (area-weighted)",
        rationale="Zero households suppresses the rate through the minimum-sample rule",
    ),
]

# Count fields carried from tracts to every coarser geography
TRACT_COUNT_FIELDS = [
    "hcv_sub_units",
    "households",
    "total_pop",
    "poc_pop",
    "poverty_pop",
    "poverty_universe",
    "poverty_denominator",
]
REAPPORTIONED_FIELDS = [f.name for f in NEIGHBORHOOD_FIELDS]


def fill_policies(fields: List[FieldDefinition]) -> Dict[str, FillPolicy]:
    """Map field name -> fill policy for use in a join."""
    return {f.name: f.fill_policy for f in fields}