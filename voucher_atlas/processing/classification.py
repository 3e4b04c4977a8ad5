"""
Voucher Access Atlas - Classification Logic
Fixed-threshold categorical tags applied after rates are computed

RECAP (HUD Racially/Ethnically Concentrated Area of Poverty):
- RECAP: people of color share ≥ 50% AND poverty rate ≥ 40%
- NOT RECAP: any other pair of defined inputs
- None: either input undefined

Rent margin-of-error flag:
- True when MOE / estimate exceeds the configured relative limit

Thresholds default to settings and can be overridden per call.
"""

from typing import Optional

import pandas as pd

from config.settings import get_settings
from voucher_atlas.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

RECAP = "RECAP"
NOT_RECAP = "NOT RECAP"


def classify_recap(
    pct_people_of_color: float,
    poverty_rate: float,
    poc_threshold: Optional[float] = None,
    poverty_threshold: Optional[float] = None,
) -> Optional[str]:
    """
    Classify a tract under the HUD RECAP definition.

    Args:
        pct_people_of_color: Share of population that are people of color (0-100)
        poverty_rate: Poverty rate (0-100)
        poc_threshold: Override for settings.RECAP_POC_THRESHOLD
        poverty_threshold: Override for settings.RECAP_POVERTY_THRESHOLD

    Returns:
        'RECAP', 'NOT RECAP', or None if either input is undefined
    """
    if pd.isna(pct_people_of_color) or pd.isna(poverty_rate):
        return None

    if poc_threshold is None:
        poc_threshold = settings.RECAP_POC_THRESHOLD
    if poverty_threshold is None:
        poverty_threshold = settings.RECAP_POVERTY_THRESHOLD

    if pct_people_of_color >= poc_threshold and poverty_rate >= poverty_threshold:
        return RECAP
    return NOT_RECAP


def classify_recap_series(
    pct_people_of_color: pd.Series,
    poverty_rate: pd.Series,
    poc_threshold: Optional[float] = None,
    poverty_threshold: Optional[float] = None,
) -> pd.Series:
    """Apply classify_recap row-wise; undefined inputs yield None."""
    labels = [
        classify_recap(poc, pov, poc_threshold, poverty_threshold)
        for poc, pov in zip(pct_people_of_color, poverty_rate)
    ]
    out = pd.Series(labels, index=pct_people_of_color.index, dtype=object)

    counts = out.value_counts(dropna=False).to_dict()
    logger.info(f"RECAP classification: {counts}")
    return out


def flag_rent_moe(estimate: float, moe: float, max_relative_moe: Optional[float] = None) -> Optional[bool]:
    """
    Flag an ACS rent estimate whose margin of error is large relative to it.

    Returns:
        True/False, or None when either value is missing or the estimate is not positive
    """
    if max_relative_moe is None:
        max_relative_moe = settings.RENT_MOE_MAX_RELATIVE

    if pd.isna(estimate) or pd.isna(moe) or estimate <= 0:
        return None

    return bool(moe / estimate > max_relative_moe)
