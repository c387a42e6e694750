"""
Local (neighborhood-smoothed) population density.

For each cell c with row-standardised neighbor weights w:

    pop_local(c)  = pop(c)  + Σ w_j · pop(j)
    area_local(c) = area(c) + Σ w_j · area(j)
    density(c)    = pop_local(c) / area_local(c)

The computation is a pure function of (cells, weights). Density is undefined
when ``area_local`` is not positive (``DegenerateArea``) or when the cell or
one of its neighbors has unusable population or area (``InvalidInput``). The
frame-level function reports such cells and leaves their density NaN so the
classifier marks them Unknown.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Hashable, List, Mapping, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from communitysize.config import DEFAULT_AREA_COL, DEFAULT_ID_COL, DEFAULT_POP_COL
from communitysize.errors import CellError, DegenerateArea, InvalidInput
from communitysize.weights import WeightedNeighborList, spatial_lag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalMetrics:
    cell_id: Hashable
    pop_local: float
    area_local: float
    density: float


# ---------------------------------------------------------------------------
# Input screening
# ---------------------------------------------------------------------------

def input_problem(pop: float, area: float) -> Optional[str]:
    """Return why a cell's own population/area cannot be used, or None."""
    for label, value in (("population", pop), ("area", area)):
        try:
            value = float(value)
        except (TypeError, ValueError):
            return f"{label} {value!r} is not numeric"
        if math.isnan(value):
            return f"{label} is missing"
        if not math.isfinite(value):
            return f"{label} {value!r} is not finite"
        if value < 0:
            return f"{label} {value!r} is negative"
    return None


# ---------------------------------------------------------------------------
# Single cell
# ---------------------------------------------------------------------------

def local_metrics(
    cell_id: Hashable,
    weights: WeightedNeighborList,
    pops: Mapping[Hashable, float],
    areas: Mapping[Hashable, float],
) -> LocalMetrics:
    """
    Compute the local metrics of one cell.

    Raises
    ------
    InvalidInput
        If the cell or one of its neighbors has unusable population or area.
    DegenerateArea
        If the cell's neighborhood area is not positive.
    """
    row = weights.get(cell_id, [])
    for member in [cell_id] + [nb for nb, _ in row]:
        reason = input_problem(pops[member], areas[member])
        if reason is not None:
            if member != cell_id:
                reason = f"neighbor {member!r}: {reason}"
            raise InvalidInput(cell_id, reason)

    pop_local = float(pops[cell_id]) + sum(w * float(pops[nb]) for nb, w in row)
    area_local = float(areas[cell_id]) + sum(w * float(areas[nb]) for nb, w in row)
    if not area_local > 0:
        raise DegenerateArea(cell_id, area_local)
    return LocalMetrics(cell_id, pop_local, area_local, pop_local / area_local)


# ---------------------------------------------------------------------------
# All cells
# ---------------------------------------------------------------------------

def compute_local_density(
    cells: gpd.GeoDataFrame | pd.DataFrame,
    weights: WeightedNeighborList,
    id_col: str = DEFAULT_ID_COL,
    pop_col: str = DEFAULT_POP_COL,
    area_col: str = DEFAULT_AREA_COL,
    name: str = "grid",
) -> Tuple[pd.DataFrame, List[CellError]]:
    """
    Compute ``pop_local``, ``area_local`` and ``local_pop_density`` for every
    cell in *weights*.

    Parameters
    ----------
    cells:
        Frame with *id_col*, *pop_col* and *area_col* columns. Cells not in
        *weights* (e.g. excluded for invalid geometry) are ignored.
    weights:
        Row-standardised weights from ``row_standardize``.
    id_col, pop_col, area_col:
        Column names.
    name:
        Label for log messages.

    Returns
    -------
    (metrics, problems)
        DataFrame indexed by cell id with the three metric columns, and the
        cells whose density is undefined (NaN): ``InvalidInput`` where the
        cell or a neighbor has a null, non-finite or negative population or
        area, ``DegenerateArea`` where the local area is not positive.
    """
    logger.info("[%s] Computing local population density…", name)

    indexed = cells.set_index(id_col)
    ids = pd.Index(list(weights.keys()))
    missing = ids.difference(indexed.index)
    if len(missing):
        raise KeyError(f"Weights reference cells absent from the frame: {list(missing[:10])}")

    pop = pd.to_numeric(indexed[pop_col], errors="coerce").astype(float).reindex(ids)
    area = pd.to_numeric(indexed[area_col], errors="coerce").astype(float).reindex(ids)

    bad_reasons = {}
    for cid, p, a in zip(ids, pop.to_numpy(), area.to_numpy()):
        reason = input_problem(p, a)
        if reason is not None:
            bad_reasons[cid] = reason
    bad = ids.isin(list(bad_reasons))
    pop = pop.where(~bad)
    area = area.where(~bad)

    pop_local = pop + spatial_lag(weights, pop)
    area_local = area + spatial_lag(weights, area)

    tainted = pop_local.isna() | area_local.isna()
    ok = ~tainted & (area_local > 0)
    density = pd.Series(np.nan, index=ids)
    density[ok] = pop_local[ok] / area_local[ok]

    problems: List[CellError] = []
    for cid in ids[tainted.to_numpy()]:
        if cid in bad_reasons:
            problems.append(InvalidInput(cid, bad_reasons[cid]))
        else:
            sources = [nb for nb, _ in weights[cid] if nb in bad_reasons]
            problems.append(InvalidInput(cid, f"neighbor(s) {sources!r} have invalid input"))
    for cid, a in area_local[~tainted & ~ok].items():
        problems.append(DegenerateArea(cid, float(a)))
    for problem in problems:
        logger.warning("[%s] Density undefined for %s", name, problem)

    result = pd.DataFrame(
        {
            "pop_local": pop_local.to_numpy(),
            "area_local": area_local.to_numpy(),
            "local_pop_density": density.to_numpy(),
        },
        index=ids,
    )
    result.index.name = id_col

    if ok.any():
        logger.info(
            "[%s] Local density: min=%.2f, mean=%.2f, max=%.2f (people per km²)",
            name,
            density.min(),
            density.mean(),
            density.max(),
        )
    return result, problems
