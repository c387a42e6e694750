"""
Administrative labels for grid cells.

The polygon overlay itself (cells × census subdivisions with overlap areas)
is produced upstream; these helpers pick the dominant subdivision per cell
and join a subdivision → region crosswalk so override rules can key on
region ids and names.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import pandas as pd

from communitysize.config import DEFAULT_ID_COL

logger = logging.getLogger(__name__)


def select_dominant_region(
    overlaps: pd.DataFrame,
    id_col: str = DEFAULT_ID_COL,
    overlap_col: str = "overlap_area",
) -> pd.DataFrame:
    """
    Keep, for each cell, the overlay piece with the largest overlap.

    Ties keep the first row in input order. Rows with a missing overlap are
    never selected while another piece exists for the same cell.

    Parameters
    ----------
    overlaps:
        One row per (cell, region) overlay piece with *id_col* and
        *overlap_col*; any region columns are kept.

    Returns
    -------
    DataFrame with exactly one row per cell id.
    """
    if overlaps.empty:
        return overlaps.copy()

    ordered = overlaps.assign(_order=range(len(overlaps)))
    ordered = ordered.sort_values(
        [id_col, overlap_col, "_order"],
        ascending=[True, False, True],
        na_position="last",
        kind="mergesort",
    )
    dominant = ordered.drop_duplicates(subset=id_col, keep="first").drop(columns="_order")

    logger.info(
        "Dominant region: %d overlay pieces → %d cells",
        len(overlaps),
        len(dominant),
    )
    return dominant.reset_index(drop=True)


def attach_crosswalk(
    frame: pd.DataFrame,
    crosswalk: pd.DataFrame,
    on: str,
    columns: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Left-join *crosswalk* onto *frame* by *on*.

    Keys are compared as text on both sides (crosswalk files usually carry
    ids as strings, shapefiles as numbers). Rows without a crosswalk match
    keep NaN in the joined columns.

    Raises
    ------
    ValueError
        If *crosswalk* has more than one row per key.
    """
    if on not in frame.columns or on not in crosswalk.columns:
        raise KeyError(f"Join key '{on}' must be present in both tables.")

    if columns is None:
        columns = [c for c in crosswalk.columns if c != on]
    right = crosswalk[[on] + [c for c in columns if c != on]].copy()
    right[on] = _as_text(right[on])
    right = right[right[on].notna()]

    dupes = right[on][right[on].duplicated()].unique()
    if len(dupes):
        raise ValueError(f"Crosswalk has duplicate keys in '{on}': {list(dupes[:10])}")

    # Columns already on the frame are replaced by the crosswalk values.
    overlap = [c for c in columns if c in frame.columns and c != on]
    left = frame.drop(columns=overlap)
    left_key = _as_text(left[on])

    joined = left.assign(_key=left_key).merge(
        right.rename(columns={on: "_key"}),
        on="_key",
        how="left",
    ).drop(columns="_key")
    joined.index = frame.index

    n_unmatched = int(joined[columns[0]].isna().sum()) if columns else 0
    if n_unmatched:
        logger.warning("Crosswalk on '%s': %d row(s) without a match.", on, n_unmatched)
    return joined


def attach_regions(
    cells: pd.DataFrame,
    dominant: pd.DataFrame,
    id_col: str = DEFAULT_ID_COL,
    columns: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Merge dominant-region labels (from ``select_dominant_region``) onto cells.

    The merge keeps the cell frame's type (a GeoDataFrame stays one), its
    row order and its index.
    """
    if columns is None:
        columns = [c for c in dominant.columns if c not in (id_col, "geometry")]
    labels = dominant.set_index(id_col)[columns]
    result = cells.drop(columns=[c for c in columns if c in cells.columns])
    result = result.join(labels, on=id_col)

    n_missing = int(result[columns[0]].isna().sum()) if columns else 0
    if n_missing:
        logger.warning("%d cell(s) have no administrative region.", n_missing)
    return result


def _as_text(series: pd.Series) -> pd.Series:
    def _one(value):
        if pd.isna(value):
            return None
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value).strip()

    return series.map(_one)
