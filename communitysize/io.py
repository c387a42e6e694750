"""
Input loading and output writers: Parquet table, summary and diagnostics.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import geopandas as gpd
import pandas as pd

from communitysize.config import (
    CATEGORY_LABELS,
    DEFAULT_ID_COL,
    NO_DATA_SENTINEL,
    OUTPUT_DIR,
    Tier,
)
from communitysize.errors import Diagnostics

logger = logging.getLogger(__name__)


class _SafeEncoder(json.JSONEncoder):
    """Convert numpy scalars to plain JSON-serialisable types."""
    def default(self, obj):
        if hasattr(obj, "item"):   # numpy scalar (int64, float64, bool_, …)
            return obj.item()
        return super().default(obj)


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

def read_cells(
    path: Path | str,
    id_col: str = DEFAULT_ID_COL,
    layer: Optional[str] = None,
) -> gpd.GeoDataFrame:
    """Read a polygon layer (any format GeoPandas can open) as cells."""
    kwargs = {"layer": layer} if layer else {}
    cells = gpd.read_file(path, **kwargs)
    if id_col not in cells.columns:
        raise KeyError(f"Id column '{id_col}' not found in {path}; columns: {list(cells.columns)}")
    logger.info("Read %d cells from %s (CRS %s)", len(cells), path, cells.crs)
    return cells


def drop_no_data(
    cells: gpd.GeoDataFrame,
    column: str,
    sentinel: Any = NO_DATA_SENTINEL,
) -> gpd.GeoDataFrame:
    """
    Remove cells that carry no measurement (e.g. grid cells over water).

    A cell is dropped when *column* is null or equals *sentinel*.
    """
    mask = cells[column].isna() | (cells[column] == sentinel)
    n_drop = int(mask.sum())
    if n_drop:
        logger.info("Dropping %d no-data cell(s) (%s == %r or null).", n_drop, column, sentinel)
    return cells[~mask].copy()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _output_dir(name: str, base: Optional[Path] = None) -> Path:
    d = (base or OUTPUT_DIR) / name
    d.mkdir(parents=True, exist_ok=True)
    return d


# ---------------------------------------------------------------------------
# Parquet
# ---------------------------------------------------------------------------

def write_parquet(
    frame: pd.DataFrame,
    name: str,
    out_dir: Optional[Path] = None,
    filename: str = "community_size.parquet",
) -> Path:
    """Write the classified cells to Parquet (geometry column dropped)."""
    path = _output_dir(name, out_dir) / filename
    if isinstance(frame, gpd.GeoDataFrame):
        frame = frame.drop(columns=frame.geometry.name)
    df = pd.DataFrame(frame)
    df.attrs = {}
    df.to_parquet(path, index=False, engine="pyarrow")
    logger.info("[%s] Parquet written: %s (%d rows)", name, path, len(df))
    return path


# ---------------------------------------------------------------------------
# Summary statistics
# ---------------------------------------------------------------------------

def build_summary(
    frame: pd.DataFrame,
    name: str,
    tiers: Sequence[Tier],
    rules: Sequence[Any] = (),
    diagnostics: Optional[Diagnostics] = None,
) -> Dict[str, Any]:
    """Category distribution, density statistics, thresholds and rule hits."""
    counts = frame["Category"].value_counts().reindex(CATEGORY_LABELS, fill_value=0)
    total = max(len(frame), 1)
    base_counts = frame["base_category"].value_counts().reindex(CATEGORY_LABELS, fill_value=0)

    density = frame["local_pop_density"]
    stats = {k: round(float(v), 6) for k, v in density.describe().items()}

    hits = frame.loc[frame["override_rule"] >= 0, "override_rule"].value_counts()
    rule_hits: List[Dict[str, Any]] = [
        {
            "index": i,
            "rule": rule.describe(),
            "note": rule.note,
            "cells": int(hits.get(i, 0)),
        }
        for i, rule in enumerate(rules)
    ]

    return {
        "name": name,
        "total_cells": int(len(frame)),
        "category_distribution": {
            "counts": {k: int(v) for k, v in counts.items()},
            "percent": {k: round(float(v) / total * 100, 1) for k, v in counts.items()},
            "before_overrides": {k: int(v) for k, v in base_counts.items()},
        },
        "local_pop_density_stats": stats,
        "thresholds": [
            {
                "category": t.category.value,
                "lower_bound": t.lower_bound,
                "round_to": t.round_to,
            }
            for t in tiers
        ],
        "override_rules": rule_hits,
        "diagnostics": {
            "n_invalid_geometry": len(diagnostics.invalid_geometry) if diagnostics is not None else 0,
            "n_degenerate_area": len(diagnostics.degenerate_area) if diagnostics is not None else 0,
            "n_invalid_input": len(diagnostics.invalid_input) if diagnostics is not None else 0,
        },
    }


def write_summary(
    summary: Dict[str, Any],
    name: str,
    out_dir: Optional[Path] = None,
    filename: str = "summary.json",
) -> Path:
    path = _output_dir(name, out_dir) / filename
    with open(path, "w") as f:
        json.dump(summary, f, indent=2, cls=_SafeEncoder)
    logger.info("[%s] Summary written: %s", name, path)
    return path


def write_diagnostics(
    diagnostics: Diagnostics,
    name: str,
    out_dir: Optional[Path] = None,
    filename: str = "diagnostics.json",
) -> Path:
    path = _output_dir(name, out_dir) / filename
    with open(path, "w") as f:
        json.dump(diagnostics.to_dict(), f, indent=2, cls=_SafeEncoder)
    logger.info("[%s] Diagnostics written: %s (%d issue(s))", name, path, len(diagnostics))
    return path
