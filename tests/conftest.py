"""
Community size - Pytest Configuration and Fixtures

Shared fixtures for all tests:
- Synthetic square grids
- The 3×3 reference neighborhood
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

import geopandas as gpd
import pytest
from shapely.geometry import box

# =============================================================================
# Grid builders
# =============================================================================


def build_grid(
    nrows: int,
    ncols: int,
    pop: float = 10.0,
    area: float = 1.0,
    size: float = 1.0,
    origin: Tuple[float, float] = (0.0, 0.0),
    start_id: int = 0,
    extra: Optional[Dict[str, List[Any]]] = None,
) -> gpd.GeoDataFrame:
    """Row-major grid of square cells; ids run left to right, bottom to top."""
    records = []
    for r in range(nrows):
        for c in range(ncols):
            x0 = origin[0] + c * size
            y0 = origin[1] + r * size
            records.append(
                {
                    "cell_id": start_id + r * ncols + c,
                    "pop": pop,
                    "area_km2": area,
                    "geometry": box(x0, y0, x0 + size, y0 + size),
                }
            )
    gdf = gpd.GeoDataFrame(records, geometry="geometry", crs="EPSG:3857")
    for col, values in (extra or {}).items():
        gdf[col] = values
    return gdf


@pytest.fixture
def make_grid() -> Callable[..., gpd.GeoDataFrame]:
    """Factory for square grids (see ``build_grid``)."""
    return build_grid


@pytest.fixture
def grid_3x3() -> gpd.GeoDataFrame:
    """3×3 grid: center cell (id 4) pop 900, the 8 others pop 10, all area 1."""
    gdf = build_grid(3, 3, pop=10.0, area=1.0)
    gdf.loc[gdf["cell_id"] == 4, "pop"] = 900.0
    return gdf
