"""
Main pipeline orchestrator.

Ties together adjacency → weights → local density → classification →
overrides → output. Each stage takes its inputs explicitly and returns new
objects; nothing is shared between runs.

Called by the CLI (cli.py) and can also be imported directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

import geopandas as gpd
import pandas as pd

from communitysize.adjacency import AdjacencyStrategy, build_neighbor_graph, make_strategy
from communitysize.classify import assign_categories, validate_thresholds
from communitysize.config import OUTPUT_COLUMNS, ClassificationConfig
from communitysize.density import compute_local_density
from communitysize.errors import Diagnostics
from communitysize.io import (
    build_summary,
    drop_no_data,
    read_cells,
    write_diagnostics,
    write_parquet,
    write_summary,
)
from communitysize.linking import attach_crosswalk
from communitysize.overrides import (
    OverrideRule,
    apply_override_rules,
    rule_from_dict,
    validate_rules,
)
from communitysize.validate import validate_classification
from communitysize.weights import row_standardize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """Final per-cell classification plus the per-cell problems encountered."""

    cells: gpd.GeoDataFrame
    diagnostics: Diagnostics
    rules: Sequence[OverrideRule]
    config: ClassificationConfig


def resolve_rules(rules: Sequence[Any]) -> List[OverrideRule]:
    """Accept rule objects or plain mappings; validate the whole table."""
    resolved = [r if isinstance(r, OverrideRule) else rule_from_dict(r) for r in rules]
    validate_rules(resolved)
    return resolved


def classify_cells(
    cells: gpd.GeoDataFrame,
    config: Optional[ClassificationConfig] = None,
    strategy: Optional[AdjacencyStrategy] = None,
) -> ClassificationResult:
    """
    Classify every cell in *cells*.

    Parameters
    ----------
    cells:
        GeoDataFrame with id, population, area and polygon geometry, plus any
        attribute columns used by override rules.
    config:
        Run configuration; defaults to ``ClassificationConfig()``.
    strategy:
        Explicit adjacency strategy; when omitted one is built from
        ``config.adjacency_strategy`` / ``config.adjacency_mode``.

    Returns
    -------
    ClassificationResult
        Cells with invalid geometry are left out of ``cells`` and listed in
        ``diagnostics``; cells with undefined density are Unknown.

    Raises
    ------
    InvalidThresholdConfig, InvalidOverrideRule
        Before any cell is processed.
    """
    config = config or ClassificationConfig()
    name = config.name

    # ------------------------------------------------------------------
    # Step 0: Configuration checks (fatal)
    # ------------------------------------------------------------------
    validate_thresholds(config.thresholds)
    rules = resolve_rules(config.override_rules)

    required = [config.id_col, config.pop_col, config.area_col]
    missing = [c for c in required if c not in cells.columns]
    if missing:
        raise KeyError(f"[{name}] Input is missing required column(s): {missing}")

    logger.info("=" * 60)
    logger.info("[%s] Starting classification of %d cells", name, len(cells))
    logger.info("=" * 60)

    # ------------------------------------------------------------------
    # Step 1: Drop no-data cells
    # ------------------------------------------------------------------
    if config.nodata_col:
        cells = drop_no_data(cells, config.nodata_col)

    # ------------------------------------------------------------------
    # Step 2: Neighbor graph
    # ------------------------------------------------------------------
    logger.info("[%s] Step 2 — Building neighbor graph…", name)
    if strategy is None:
        strategy = make_strategy(
            config.adjacency_strategy,
            mode=config.adjacency_mode,
            snap=config.snap,
            cell_size=config.cell_size,
        )
    graph, invalid = build_neighbor_graph(
        cells, strategy=strategy, id_col=config.id_col, name=name
    )

    # ------------------------------------------------------------------
    # Step 3: Row-standardised weights
    # ------------------------------------------------------------------
    logger.info("[%s] Step 3 — Row-standardising weights…", name)
    weights = row_standardize(graph)

    # ------------------------------------------------------------------
    # Step 4: Local density
    # ------------------------------------------------------------------
    logger.info("[%s] Step 4 — Computing local density…", name)
    metrics, problems = compute_local_density(
        cells,
        weights,
        id_col=config.id_col,
        pop_col=config.pop_col,
        area_col=config.area_col,
        name=name,
    )
    diagnostics = Diagnostics(invalid_geometry=invalid)
    diagnostics.extend(problems)

    valid = cells[cells[config.id_col].isin(metrics.index)]
    frame = valid.join(metrics, on=config.id_col)

    # ------------------------------------------------------------------
    # Step 5: Threshold classification
    # ------------------------------------------------------------------
    logger.info("[%s] Step 5 — Classifying local density…", name)
    frame = assign_categories(frame, config.thresholds, name=name)

    # ------------------------------------------------------------------
    # Step 6: Manual overrides
    # ------------------------------------------------------------------
    logger.info("[%s] Step 6 — Applying %d override rule(s)…", name, len(rules))
    frame = apply_override_rules(frame, rules, name=name)

    frame = _select_output_columns(frame, config)
    logger.info(
        "[%s] Classification complete: %d cells, %d excluded, %d Unknown from "
        "degenerate area, %d Unknown from invalid input.",
        name,
        len(frame),
        len(diagnostics.invalid_geometry),
        len(diagnostics.degenerate_area),
        len(diagnostics.invalid_input),
    )
    return ClassificationResult(cells=frame, diagnostics=diagnostics, rules=rules, config=config)


def run_grid(
    input_path: Path | str,
    config: ClassificationConfig,
    out_dir: Optional[Path] = None,
    layer: Optional[str] = None,
    crosswalk_path: Optional[Path | str] = None,
    crosswalk_key: Optional[str] = None,
) -> ClassificationResult:
    """
    Read cells from disk, classify them, write outputs and validate.

    Parameters
    ----------
    input_path:
        Polygon layer readable by GeoPandas.
    config:
        Run configuration.
    out_dir:
        Base output directory (``outputs/`` by default); files go to
        ``<out_dir>/<config.name>/``.
    layer:
        Layer name for multi-layer sources.
    crosswalk_path, crosswalk_key:
        Optional CSV joined onto the cells by *crosswalk_key* before
        classification (e.g. census subdivision → economic region).
    """
    cells = read_cells(input_path, id_col=config.id_col, layer=layer)

    if crosswalk_path is not None:
        if not crosswalk_key:
            raise ValueError("crosswalk_key is required with crosswalk_path.")
        crosswalk = pd.read_csv(crosswalk_path, dtype=str)
        cells = attach_crosswalk(cells, crosswalk, on=crosswalk_key)

    result = classify_cells(cells, config)

    logger.info("[%s] Writing outputs…", config.name)
    write_parquet(result.cells, config.name, out_dir=out_dir)
    summary = build_summary(
        result.cells, config.name, config.thresholds, result.rules, result.diagnostics
    )
    write_summary(summary, config.name, out_dir=out_dir)
    write_diagnostics(result.diagnostics, config.name, out_dir=out_dir)

    validate_classification(result.cells, result.diagnostics, config.id_col, name=config.name)
    return result


def _select_output_columns(frame: gpd.GeoDataFrame, config: ClassificationConfig) -> gpd.GeoDataFrame:
    """Order columns as id, carried attributes, population, area, metrics, geometry."""
    geom_col = frame.geometry.name if isinstance(frame, gpd.GeoDataFrame) else None
    core = {config.id_col, config.pop_col, config.area_col, geom_col, *OUTPUT_COLUMNS}
    if config.carry_columns is None:
        carry = [c for c in frame.columns if c not in core]
    else:
        absent = [c for c in config.carry_columns if c not in frame.columns]
        if absent:
            logger.warning("[%s] carry_columns not in input: %s", config.name, absent)
        carry = [c for c in config.carry_columns if c in frame.columns and c not in core]

    columns = [config.id_col] + carry + [config.pop_col, config.area_col] + OUTPUT_COLUMNS
    if geom_col is not None:
        columns.append(geom_col)
    return frame[columns].reset_index(drop=True)
