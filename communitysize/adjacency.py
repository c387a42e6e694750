"""
Neighbor graph construction from cell geometries.

Candidate pairs always come from an index (an STRtree over the polygons, a
(row, col) lookup for regular grids, or H3 ring-1 lookups) so the cost is
proportional to the number of touching pairs rather than n².

Adjacency modes
---------------
* ``queen`` — boundaries touch at any point, including a single corner.
* ``rook``  — boundaries share a segment of positive length.
"""

from __future__ import annotations

import logging
from typing import Dict, Hashable, List, Optional, Sequence, Set, Tuple

import geopandas as gpd
import h3
import networkx as nx
import numpy as np
import shapely

from communitysize.config import (
    ADJACENCY_MODES,
    DEFAULT_ADJACENCY_MODE,
    DEFAULT_ID_COL,
    DEFAULT_SNAP,
)
from communitysize.errors import InvalidGeometry

logger = logging.getLogger(__name__)

_POLYGON_TYPES = ("Polygon", "MultiPolygon")

_QUEEN_OFFSETS: List[Tuple[int, int]] = [
    (dr, dc) for dr in (-1, 0, 1) for dc in (-1, 0, 1) if (dr, dc) != (0, 0)
]
_ROOK_OFFSETS: List[Tuple[int, int]] = [(-1, 0), (1, 0), (0, -1), (0, 1)]

PairArray = Tuple[np.ndarray, np.ndarray]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class AdjacencyStrategy:
    """
    Produce candidate neighbor pairs for a set of valid cells.

    Subclasses implement ``pairs`` returning two aligned arrays of positional
    indices into *cells*. Self pairs and duplicates are removed by the
    builder, so strategies may return either orientation of a pair.
    """

    mode: str = DEFAULT_ADJACENCY_MODE

    def pairs(self, cells: gpd.GeoDataFrame, ids: Sequence[Hashable]) -> PairArray:
        raise NotImplementedError


class PolygonAdjacency(AdjacencyStrategy):
    """Touch test on the actual polygons, using the GeoDataFrame spatial index."""

    def __init__(self, mode: str = DEFAULT_ADJACENCY_MODE, snap: float = DEFAULT_SNAP):
        self.mode = _resolve_mode(mode)
        self.snap = float(snap)

    def pairs(self, cells: gpd.GeoDataFrame, ids: Sequence[Hashable]) -> PairArray:
        geoms = cells.geometry
        if self.snap > 0:
            left, right = geoms.sindex.query(geoms, predicate="dwithin", distance=self.snap)
        else:
            left, right = geoms.sindex.query(geoms, predicate="intersects")

        keep = left < right
        left, right = left[keep], right[keep]

        if self.mode == "rook" and len(left):
            arr = geoms.to_numpy()
            if self.snap > 0:
                # seams closer than snap collapse onto the same grid vertices
                arr = shapely.set_precision(arr, self.snap)
            bound = shapely.boundary(arr)
            shared = shapely.length(shapely.intersection(bound[left], bound[right]))
            edge = shared > 0
            left, right = left[edge], right[edge]

        return left, right


class GridIndexAdjacency(AdjacencyStrategy):
    """
    Regular-grid shortcut: key each cell by the (row, col) of its bounding-box
    lower-left corner and look up the surrounding keys.

    ``cell_size`` is one size or a ``(dx, dy)`` pair in CRS units; when
    omitted it is inferred from the median bounding-box width and height.
    """

    def __init__(
        self,
        mode: str = DEFAULT_ADJACENCY_MODE,
        cell_size: Optional[float | Sequence[float]] = None,
    ):
        self.mode = _resolve_mode(mode)
        self.cell_size = _parse_cell_size(cell_size)

    def pairs(self, cells: gpd.GeoDataFrame, ids: Sequence[Hashable]) -> PairArray:
        bounds = cells.geometry.bounds
        if self.cell_size is None:
            dx = float((bounds["maxx"] - bounds["minx"]).median())
            dy = float((bounds["maxy"] - bounds["miny"]).median())
        else:
            dx, dy = self.cell_size
        if not (dx > 0 and dy > 0):
            raise ValueError(f"Grid cell size must be positive (got {dx}, {dy}).")

        cols = np.rint((bounds["minx"] - bounds["minx"].min()) / dx).astype(int).to_numpy()
        rows = np.rint((bounds["miny"] - bounds["miny"].min()) / dy).astype(int).to_numpy()

        lookup: Dict[Tuple[int, int], int] = {}
        for pos, key in enumerate(zip(rows, cols)):
            if key in lookup:
                raise ValueError(
                    f"Cells {ids[lookup[key]]!r} and {ids[pos]!r} map to the same grid "
                    f"slot {key}; input is not a regular grid of size ({dx}, {dy})."
                )
            lookup[key] = pos

        offsets = _QUEEN_OFFSETS if self.mode == "queen" else _ROOK_OFFSETS
        left: List[int] = []
        right: List[int] = []
        for (row, col), pos in lookup.items():
            for dr, dc in offsets:
                other = lookup.get((row + dr, col + dc))
                if other is not None and other > pos:
                    left.append(pos)
                    right.append(other)
        return np.asarray(left, dtype=int), np.asarray(right, dtype=int)


class H3Adjacency(AdjacencyStrategy):
    """
    Ids are H3 indexes; neighbors are the ring-1 cells present in the input.

    Hexagons never meet at a single corner, so queen and rook coincide.
    """

    def pairs(self, cells: gpd.GeoDataFrame, ids: Sequence[Hashable]) -> PairArray:
        position = {idx: pos for pos, idx in enumerate(ids)}
        left: List[int] = []
        right: List[int] = []
        for idx, pos in position.items():
            if not isinstance(idx, str) or not h3.h3_is_valid(idx):
                raise ValueError(f"Cell id {idx!r} is not a valid H3 index.")
            for nb in h3.k_ring(idx, 1):
                other = position.get(nb)
                if other is not None and other > pos:
                    left.append(pos)
                    right.append(other)
        return np.asarray(left, dtype=int), np.asarray(right, dtype=int)


def make_strategy(
    name: str = "polygon",
    mode: str = DEFAULT_ADJACENCY_MODE,
    snap: float = DEFAULT_SNAP,
    cell_size: Optional[float | Sequence[float]] = None,
) -> AdjacencyStrategy:
    """Return the adjacency strategy registered under *name*."""
    if name == "polygon":
        return PolygonAdjacency(mode=mode, snap=snap)
    if name == "grid":
        return GridIndexAdjacency(mode=mode, cell_size=cell_size)
    if name == "h3":
        return H3Adjacency()
    raise ValueError(f"Unknown adjacency strategy: {name!r}")


# ---------------------------------------------------------------------------
# Geometry screening
# ---------------------------------------------------------------------------

def screen_geometries(
    cells: gpd.GeoDataFrame,
    id_col: str = DEFAULT_ID_COL,
) -> Tuple[gpd.GeoDataFrame, List[InvalidGeometry]]:
    """
    Split *cells* into usable polygons and ``InvalidGeometry`` records.

    A geometry is rejected when it is missing, empty, not a (Multi)Polygon
    or fails GEOS validity.
    """
    problems: List[InvalidGeometry] = []
    keep = np.ones(len(cells), dtype=bool)

    for pos, (cell_id, geom) in enumerate(zip(cells[id_col], cells.geometry)):
        reason = None
        if geom is None:
            reason = "missing geometry"
        elif geom.is_empty:
            reason = "empty geometry"
        elif geom.geom_type not in _POLYGON_TYPES:
            reason = f"unsupported geometry type {geom.geom_type}"
        elif not geom.is_valid:
            reason = f"invalid geometry ({shapely.is_valid_reason(geom)})"
        if reason is not None:
            keep[pos] = False
            problems.append(InvalidGeometry(cell_id, reason))

    for problem in problems:
        logger.warning("Excluding %s", problem)

    return cells[keep], problems


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def build_neighbor_graph(
    cells: gpd.GeoDataFrame,
    mode: str = DEFAULT_ADJACENCY_MODE,
    strategy: Optional[AdjacencyStrategy] = None,
    id_col: str = DEFAULT_ID_COL,
    name: str = "grid",
) -> Tuple[nx.Graph, List[InvalidGeometry]]:
    """
    Build the neighbor graph for *cells*.

    No-data cells must already be removed by the caller (see
    ``communitysize.io.drop_no_data``).

    Parameters
    ----------
    cells:
        GeoDataFrame with one row per cell and an *id_col* column.
    mode:
        ``queen``/``edge_or_corner`` or ``rook``/``edge``. Ignored when an
        explicit *strategy* is given.
    strategy:
        Candidate-pair strategy; defaults to ``PolygonAdjacency(mode)``.
    id_col:
        Column holding unique cell ids (graph node keys).
    name:
        Label for log messages.

    Returns
    -------
    (graph, invalid)
        Undirected ``nx.Graph`` over the valid cells (isolated cells are
        present as nodes with no edges) and the excluded cells.
    """
    ids_all = cells[id_col]
    dupes = ids_all[ids_all.duplicated()].unique()
    if len(dupes):
        raise ValueError(f"Duplicate cell ids in column '{id_col}': {list(dupes[:10])}")

    if strategy is None:
        strategy = PolygonAdjacency(mode=mode)

    valid, invalid = screen_geometries(cells, id_col=id_col)
    ids = valid[id_col].tolist()

    logger.info(
        "[%s] Building %s neighbor graph (%s) for %d cells…",
        name,
        strategy.mode,
        type(strategy).__name__,
        len(ids),
    )

    G = nx.Graph()
    G.add_nodes_from(ids)
    if ids:
        left, right = strategy.pairs(valid.reset_index(drop=True), ids)
        G.add_edges_from(
            (ids[i], ids[j]) for i, j in zip(left.tolist(), right.tolist()) if i != j
        )

    n_isolated = sum(1 for _ in nx.isolates(G))
    logger.info(
        "[%s] Neighbor graph: %d cells, %d links, %d isolated, %d excluded",
        name,
        G.number_of_nodes(),
        G.number_of_edges(),
        n_isolated,
        len(invalid),
    )
    return G, invalid


def neighbor_sets(graph: nx.Graph) -> Dict[Hashable, Set[Hashable]]:
    """Return the graph as ``{cell_id: {neighbor ids}}``."""
    return {node: set(graph.neighbors(node)) for node in graph.nodes}


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------

def _resolve_mode(mode: str) -> str:
    try:
        return ADJACENCY_MODES[mode]
    except KeyError:
        raise ValueError(
            f"Unknown adjacency mode {mode!r}; valid choices: {sorted(ADJACENCY_MODES)}"
        ) from None


def _parse_cell_size(
    cell_size: Optional[float | Sequence[float]],
) -> Optional[Tuple[float, float]]:
    """Accept a single size or a ``(dx, dy)`` pair (tuple, list or array)."""
    if cell_size is None:
        return None
    sizes = np.atleast_1d(np.asarray(cell_size, dtype=float))
    if sizes.ndim != 1 or len(sizes) not in (1, 2):
        raise ValueError(f"cell_size must be a number or a (dx, dy) pair (got {cell_size!r})")
    dx, dy = (sizes[0], sizes[0]) if len(sizes) == 1 else sizes
    return float(dx), float(dy)
