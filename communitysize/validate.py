"""
Acceptance validation for a completed classification.

Call ``validate_classification`` after the pipeline finishes. Raises
``ClassificationValidationError`` listing all failed checks if any fail.
"""

from __future__ import annotations

import logging
from typing import List

import numpy as np
import pandas as pd

from communitysize.config import CATEGORY_LABELS, Category
from communitysize.errors import CommunitySizeError, Diagnostics

logger = logging.getLogger(__name__)


class ClassificationValidationError(CommunitySizeError):
    """Raised when one or more acceptance checks fail."""


def validate_classification(
    frame: pd.DataFrame,
    diagnostics: Diagnostics,
    id_col: str,
    name: str = "grid",
) -> None:
    """
    Run acceptance checks against a classified frame.

    Checks
    ------
    1. Cell ids are unique.
    2. ``Category`` and ``base_category`` only hold the six known labels.
    3. ``area_local`` is positive wherever density is defined.
    4. ``base_category`` is Unknown exactly where density is undefined,
       negative or non-finite.
    5. Every degenerate-area or invalid-input cell in *diagnostics* is Unknown.
    6. No excluded (invalid-geometry) cell appears in the output.

    Raises
    ------
    ClassificationValidationError
        If any check fails. All failures are collected and reported together.
    """
    failures: List[str] = []
    unknown = Category.UNKNOWN.value

    # 1 — Unique ids
    n_dup = int(frame[id_col].duplicated().sum())
    if n_dup:
        failures.append(f"{n_dup} duplicate cell id(s).")

    # 2 — Known labels
    for col in ("Category", "base_category"):
        bad = sorted(set(frame[col].dropna().astype(str)) - set(CATEGORY_LABELS))
        if bad:
            failures.append(f"Unknown labels in '{col}': {bad}.")
        n_null = int(frame[col].isna().sum())
        if n_null:
            failures.append(f"{n_null} null value(s) in '{col}'.")

    # 3 — Positive local area where density is defined
    density = frame["local_pop_density"].to_numpy(dtype=float)
    defined = np.isfinite(density)
    n_bad_area = int((frame["area_local"].to_numpy(dtype=float)[defined] <= 0).sum())
    if n_bad_area:
        failures.append(f"{n_bad_area} cell(s) have density but non-positive area_local.")

    # 4 — Unknown iff density undefined
    should_be_unknown = ~defined | (density < 0)
    is_unknown = (frame["base_category"].astype(str) == unknown).to_numpy()
    n_mismatch = int((should_be_unknown != is_unknown).sum())
    if n_mismatch:
        failures.append(f"{n_mismatch} cell(s) where Unknown does not match undefined density.")

    # 5 — Reported cells surfaced as Unknown
    ids = frame[id_col]
    for label, reported in (
        ("degenerate-area", diagnostics.degenerate_area),
        ("invalid-input", diagnostics.invalid_input),
    ):
        flagged = {e.cell_id for e in reported}
        if not flagged:
            continue
        cats = frame.loc[ids.isin(flagged), "Category"].astype(str)
        n_hidden = int((cats != unknown).sum())
        if n_hidden:
            failures.append(f"{n_hidden} {label} cell(s) not marked Unknown.")

    # 6 — Excluded cells absent
    excluded = set(diagnostics.excluded_ids)
    if excluded and ids.isin(excluded).any():
        failures.append("Invalid-geometry cells present in output.")

    if failures:
        msg = f"[{name}] Validation failed ({len(failures)} issue(s)):\n" + "\n".join(
            f"  {f}" for f in failures
        )
        logger.error(msg)
        raise ClassificationValidationError(msg)

    logger.info("[%s] All validation checks passed (%d cells).", name, len(frame))
