"""
Voucher Access Atlas - Table Operations
Small composable transforms shared by every geography builder

- left_join: geometry-anchored join with per-field fill policies
- derive_county: county FIPS by truncation of the tract FIPS

Joins never raise on unmatched keys. Dropped and filled rows are counted in
JoinDiagnostics and logged so every build leaves an audit trail.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import pandas as pd

from voucher_atlas.processing.field_registry import FillPolicy
from voucher_atlas.utils.data_sources import MalformedInputError
from voucher_atlas.utils.logging import get_logger

logger = get_logger(__name__)

TRACT_FIPS_LENGTH = 11
COUNTY_FIPS_LENGTH = 5


@dataclass
class JoinDiagnostics:
    """Row accounting for a single left join"""
    label: str
    base_rows: int
    matched: int
    unmatched: int  # base rows with no attribute row
    dropped: int  # attribute rows with no base row
    filled: Dict[str, int] = field(default_factory=dict)  # zero-filled cells per field

    def log(self) -> None:
        logger.info(
            f"Join {self.label}: {self.matched}/{self.base_rows} matched, "
            f"{self.unmatched} unmatched, {self.dropped} dropped, filled={self.filled}"
        )
        if self.dropped:
            logger.warning(f"Join {self.label}: dropped {self.dropped} rows with no geometry match")


def left_join(
    base: pd.DataFrame,
    addition: pd.DataFrame,
    key: str,
    fill_policies: Optional[Dict[str, FillPolicy]] = None,
    default_policy: FillPolicy = FillPolicy.NULL,
    label: Optional[str] = None,
):
    """
    Left-join attribute columns onto a base (geometry) table.

    Args:
        base: Anchor table; row order and GeoDataFrame type are preserved
        addition: Attribute table keyed by `key`
        key: Shared identifier column (exact equality)
        fill_policies: Field name -> policy for unmatched base rows
        default_policy: Policy for joined fields not listed in fill_policies
        label: Name used in diagnostics

    Returns:
        (joined frame, JoinDiagnostics)
    """
    label = label or key
    fill_policies = fill_policies or {}

    for frame_name, frame in (("base", base), ("addition", addition)):
        if key not in frame.columns:
            raise MalformedInputError(f"Join key missing from {frame_name} table in join {label}", column=key)

    new_cols = [c for c in addition.columns if c != key]
    overlap = [c for c in new_cols if c in base.columns]
    if overlap:
        raise ValueError(f"Join {label} would overwrite existing columns: {overlap}")

    duplicated = addition[key].duplicated()
    if duplicated.any():
        raise MalformedInputError(
            f"Duplicate join key in join {label}", column=key, value=addition.loc[duplicated, key].iloc[0]
        )

    in_base = addition[key].isin(base[key])
    in_addition = base[key].isin(addition[key])

    joined = base.merge(addition, on=key, how="left")

    filled = {}
    for col in new_cols:
        policy = fill_policies.get(col, default_policy)
        if policy == FillPolicy.ZERO:
            missing = int(joined[col].isna().sum())
            if missing:
                joined[col] = joined[col].fillna(0)
            filled[col] = missing

    diagnostics = JoinDiagnostics(
        label=label,
        base_rows=len(base),
        matched=int(in_addition.sum()),
        unmatched=int((~in_addition).sum()),
        dropped=int((~in_base).sum()),
        filled=filled,
    )
    diagnostics.log()

    return joined, diagnostics


def county_of(tract: str) -> str:
    """County FIPS of an 11-digit tract FIPS."""
    return tract[:COUNTY_FIPS_LENGTH]


def derive_county(
    frame: pd.DataFrame, tract_column: str = "tract", county_column: str = "county"
) -> pd.DataFrame:
    """
    Add the county FIPS column by truncating the tract FIPS.

    Runs before any county-level join; the county is never read from input.
    """
    if tract_column not in frame.columns:
        raise MalformedInputError("Tract column missing; cannot derive county", column=tract_column)

    tracts = frame[tract_column].astype(str)
    bad = tracts.str.len() != TRACT_FIPS_LENGTH
    if bad.any():
        raise MalformedInputError(
            f"Tract FIPS must be {TRACT_FIPS_LENGTH} characters", column=tract_column, value=tracts[bad].iloc[0]
        )

    out = frame.copy()
    out[county_column] = tracts.map(county_of)
    return out
