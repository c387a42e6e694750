"""
Threshold classification of local density into community-size categories.

Tiers are evaluated from the highest lower bound down; the first tier whose
bound the density reaches wins. The lowest tier must have bound 0 so every
finite non-negative density lands in exactly one category.

Key design decisions
--------------------
* The large-urban tier compares density rounded half-up to the nearest 100,
  and no other tier rounds. A density of 449 is therefore a small urban
  community but 450 and 499 are large urban communities, while 999.9 is
  still not a metropolis. This asymmetry is kept as documented behavior and
  should be confirmed with the domain owners before it becomes a public
  guarantee.
* Non-finite (including undefined) and negative densities are Unknown.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import pandas as pd

from communitysize.config import (
    CATEGORY_LABELS,
    DEFAULT_THRESHOLDS,
    Category,
    Tier,
)
from communitysize.errors import InvalidThresholdConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Threshold validation
# ---------------------------------------------------------------------------

def validate_thresholds(tiers: Sequence[Tier]) -> None:
    """
    Check that *tiers* form a total, unambiguous classification.

    Raises
    ------
    InvalidThresholdConfig
        If the table is empty, bounds are not strictly descending, the last
        tier is not a catch-all with bound 0, a category repeats or is
        Unknown, or a rounding unit is not positive.
    """
    if not tiers:
        raise InvalidThresholdConfig("Threshold table is empty.")

    seen = set()
    for i, tier in enumerate(tiers):
        if not isinstance(tier, Tier):
            raise InvalidThresholdConfig(f"Threshold #{i} is not a Tier: {tier!r}")
        if tier.category is Category.UNKNOWN:
            raise InvalidThresholdConfig("Unknown cannot be assigned by a threshold.")
        if tier.category in seen:
            raise InvalidThresholdConfig(f"Category {tier.category.value!r} appears twice.")
        seen.add(tier.category)
        if not math.isfinite(tier.lower_bound):
            raise InvalidThresholdConfig(f"Threshold #{i} has a non-finite bound.")
        if tier.round_to is not None and not tier.round_to > 0:
            raise InvalidThresholdConfig(
                f"Threshold #{i} ({tier.category.value}) has non-positive round_to."
            )
        if i and not tier.lower_bound < tiers[i - 1].lower_bound:
            raise InvalidThresholdConfig(
                "Thresholds must be strictly descending: "
                f"{tiers[i - 1].lower_bound} then {tier.lower_bound}."
            )

    if tiers[-1].lower_bound != 0:
        raise InvalidThresholdConfig(
            "Lowest tier must be a catch-all with lower_bound 0 "
            f"(got {tiers[-1].lower_bound})."
        )


# ---------------------------------------------------------------------------
# Single value
# ---------------------------------------------------------------------------

def round_half_up(value: float, unit: float) -> float:
    """Round *value* to the nearest multiple of *unit*, halves away from zero."""
    scaled = abs(value) / unit
    return math.copysign(math.floor(scaled + 0.5) * unit, value)


def classify_density(density: float, tiers: Sequence[Tier] = DEFAULT_THRESHOLDS) -> Category:
    """
    Map one density value to its category.

    >>> classify_density(455.0).value
    'Large urban community'
    """
    if density is None or not math.isfinite(density) or density < 0:
        return Category.UNKNOWN

    for tier in tiers:
        value = density if tier.round_to is None else round_half_up(density, tier.round_to)
        if value >= tier.lower_bound:
            return tier.category
    return Category.UNKNOWN


# ---------------------------------------------------------------------------
# Frame
# ---------------------------------------------------------------------------

def as_category_column(values: Sequence[Category]) -> pd.Categorical:
    """Return an ordered categorical over all six category labels."""
    return pd.Categorical(
        [v.value for v in values],
        categories=CATEGORY_LABELS,
        ordered=True,
    )


def assign_categories(
    frame: pd.DataFrame,
    tiers: Sequence[Tier] = DEFAULT_THRESHOLDS,
    density_col: str = "local_pop_density",
    name: str = "grid",
) -> pd.DataFrame:
    """
    Add a ``base_category`` column classifying *density_col*.

    Returns
    -------
    Copy of *frame* with ``base_category`` as an ordered categorical.
    """
    validate_thresholds(tiers)
    result = frame.copy()

    categories = [classify_density(float(d), tiers) for d in result[density_col]]
    result["base_category"] = as_category_column(categories)

    counts = result["base_category"].value_counts().reindex(CATEGORY_LABELS)
    logger.info("[%s] Category distribution (before overrides):\n%s", name, counts.to_string())
    n_unknown = int(counts.get(Category.UNKNOWN.value, 0))
    if n_unknown:
        logger.warning("[%s] %d cell(s) classified Unknown.", name, n_unknown)
    return result
