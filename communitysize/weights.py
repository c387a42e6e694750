"""
Row-standardised spatial weights and spatial lag.
"""

from __future__ import annotations

import logging
from typing import Dict, Hashable, Iterable, List, Tuple

import networkx as nx
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

WeightedNeighborList = Dict[Hashable, List[Tuple[Hashable, float]]]


def row_standardize(graph: nx.Graph) -> WeightedNeighborList:
    """
    Turn a neighbor graph into row-standardised weights.

    Each of a cell's ``k`` neighbors gets weight ``1 / k``, so every non-empty
    row sums to 1. Isolated cells get an empty row (zero policy): they are
    not an error, they simply receive no neighbor lag.

    Rows are sorted by neighbor id so the summation order, and therefore the
    floating-point result, does not depend on graph insertion order.
    """
    weights: WeightedNeighborList = {}
    n_isolated = 0
    for node in graph.nodes:
        nbrs = _sorted_ids(graph.neighbors(node))
        if not nbrs:
            weights[node] = []
            n_isolated += 1
            continue
        w = 1.0 / len(nbrs)
        weights[node] = [(nb, w) for nb in nbrs]

    if n_isolated:
        logger.info(
            "Row-standardised weights: %d of %d cells have no neighbors (zero policy).",
            n_isolated,
            len(weights),
        )
    return weights


def spatial_lag(weights: WeightedNeighborList, values: pd.Series) -> pd.Series:
    """
    Compute ``Σ w_j · x_j`` over each cell's neighbors.

    Parameters
    ----------
    weights:
        Output of ``row_standardize``.
    values:
        Numeric series indexed by cell id; must cover every id in *weights*.

    Returns
    -------
    pd.Series indexed like *weights* (0.0 for isolated cells).
    """
    lookup = values.to_dict()
    lag = np.zeros(len(weights), dtype=float)
    for pos, row in enumerate(weights.values()):
        total = 0.0
        for nb, w in row:
            total += w * lookup[nb]
        lag[pos] = total
    return pd.Series(lag, index=pd.Index(list(weights.keys())), name=values.name)


def row_sums(weights: WeightedNeighborList) -> Dict[Hashable, float]:
    """Return the sum of each cell's weights (1.0, or 0.0 when isolated)."""
    return {node: float(sum(w for _, w in row)) for node, row in weights.items()}


def _sorted_ids(ids: Iterable[Hashable]) -> List[Hashable]:
    ids = list(ids)
    try:
        return sorted(ids)
    except TypeError:
        # mixed id types
        return sorted(ids, key=lambda v: (type(v).__name__, str(v)))
