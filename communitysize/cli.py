"""
CLI entrypoint for the community-size pipeline.

Usage
-----
    python -m communitysize --input data/griddedPopulationCanada10km_2016_shp \\
        --id_col BIOMASS_FR --pop_col TOT_POP2A --area_col TOT_LND_AR \\
        --nodata_col BIOMASS_FR --name canada_2016

or via the installed script:

    community-size --input grid.gpkg --config run.json
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from communitysize.config import (
    ADJACENCY_MODES,
    ADJACENCY_STRATEGIES,
    DEFAULT_ADJACENCY_MODE,
    DEFAULT_ADJACENCY_STRATEGY,
    DEFAULT_AREA_COL,
    DEFAULT_ID_COL,
    DEFAULT_OVERRIDE_RULES,
    DEFAULT_POP_COL,
    OUTPUT_DIR,
    ClassificationConfig,
    load_config,
)
from communitysize.errors import CommunitySizeError
from communitysize.pipeline import run_grid


# ---------------------------------------------------------------------------
# Argument parsing helpers
# ---------------------------------------------------------------------------

def _parse_cell_size(value: str) -> float:
    """Parse a positive grid cell size."""
    try:
        size = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"--cell_size parse error: {exc}") from exc
    if size <= 0:
        raise argparse.ArgumentTypeError(f"--cell_size must be positive (got {size})")
    return size


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="community-size",
        description=(
            "Classify gridded population cells into community-size categories "
            "(Metropolis, Large/Small urban community, Rural town, Rural village) "
            "from neighborhood-smoothed population density."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="\n".join([
            "Examples:",
            "  # Canadian 10 km grid with the built-in override table",
            "  community-size --input grid_10km.shp --id_col BIOMASS_FR \\",
            "      --pop_col TOT_POP2A --area_col TOT_LND_AR --nodata_col BIOMASS_FR \\",
            "      --crosswalk crosswalk_csd_er.csv --crosswalk_key CSDUID",
            "",
            "  # thresholds and rules from a JSON file, rook contiguity",
            "  community-size --input grid.gpkg --config run.json --adjacency rook",
            "",
            "  # regular grid shortcut, no overrides",
            "  community-size --input grid.gpkg --strategy grid --no_overrides",
        ]),
    )

    parser.add_argument("--input", required=True, metavar="PATH", help="Polygon grid layer.")
    parser.add_argument("--layer", default=None, help="Layer name for multi-layer sources.")
    parser.add_argument(
        "--config",
        default=None,
        metavar="JSON",
        help="JSON run configuration (thresholds, override_rules, columns, adjacency).",
    )
    parser.add_argument(
        "--name",
        default=None,
        help="Run name used for log prefixes and the output sub-directory (default: grid).",
    )
    parser.add_argument(
        "--output_dir",
        default=str(OUTPUT_DIR),
        metavar="DIR",
        help=f"Base output directory (default: {OUTPUT_DIR})",
    )
    parser.add_argument("--id_col", default=None, help=f"Cell id column (default: {DEFAULT_ID_COL})")
    parser.add_argument("--pop_col", default=None, help=f"Population column (default: {DEFAULT_POP_COL})")
    parser.add_argument("--area_col", default=None, help=f"Land area column, km² (default: {DEFAULT_AREA_COL})")
    parser.add_argument(
        "--nodata_col",
        default=None,
        help="Column whose value 0 (or null) marks no-data cells to drop.",
    )
    parser.add_argument(
        "--adjacency",
        default=None,
        choices=sorted(ADJACENCY_MODES),
        help=f"Contiguity rule (default: {DEFAULT_ADJACENCY_MODE})",
    )
    parser.add_argument(
        "--strategy",
        default=None,
        choices=ADJACENCY_STRATEGIES,
        help=(
            "Neighbor lookup: 'polygon' touch tests, 'grid' regular-grid index, "
            f"'h3' H3 ring lookups (default: {DEFAULT_ADJACENCY_STRATEGY})"
        ),
    )
    parser.add_argument(
        "--cell_size",
        type=_parse_cell_size,
        default=None,
        metavar="UNITS",
        help="Grid cell size in CRS units for --strategy grid (default: inferred).",
    )
    parser.add_argument(
        "--crosswalk",
        default=None,
        metavar="CSV",
        help="Crosswalk CSV joined onto cells before classification.",
    )
    parser.add_argument("--crosswalk_key", default=None, help="Join key for --crosswalk.")
    parser.add_argument(
        "--no_overrides",
        action="store_true",
        help="Skip manual override rules.",
    )
    parser.add_argument(
        "--log_level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    return parser


def _make_config(args: argparse.Namespace) -> ClassificationConfig:
    options = {
        "name": args.name,
        "id_col": args.id_col,
        "pop_col": args.pop_col,
        "area_col": args.area_col,
        "nodata_col": args.nodata_col,
        "adjacency_mode": args.adjacency,
        "adjacency_strategy": args.strategy,
        "cell_size": args.cell_size,
    }
    if args.config:
        config = load_config(args.config, **options)
    else:
        config = ClassificationConfig(
            override_rules=list(DEFAULT_OVERRIDE_RULES),
            **{k: v for k, v in options.items() if v is not None},
        )
    if args.no_overrides:
        config.override_rules = []
    return config


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("fiona").setLevel(logging.WARNING)
    logging.getLogger("pyogrio").setLevel(logging.WARNING)

    if bool(args.crosswalk) != bool(args.crosswalk_key):
        parser.error("--crosswalk and --crosswalk_key must be given together.")

    logger = logging.getLogger(__name__)

    try:
        config = _make_config(args)
    except (CommunitySizeError, ValueError, OSError) as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)

    logger.info(
        "Pipeline starting | input=%s | name=%s | adjacency=%s/%s | tiers=%d | rules=%d",
        args.input,
        config.name,
        config.adjacency_strategy,
        config.adjacency_mode,
        len(config.thresholds),
        len(config.override_rules),
    )

    try:
        result = run_grid(
            args.input,
            config,
            out_dir=Path(args.output_dir),
            layer=args.layer,
            crosswalk_path=args.crosswalk,
            crosswalk_key=args.crosswalk_key,
        )
    except Exception as exc:
        logger.error("[%s] Pipeline failed: %s", config.name, exc, exc_info=True)
        sys.exit(1)

    if len(result.diagnostics):
        logger.warning(
            "[%s] Completed with %d per-cell issue(s); see diagnostics.json.",
            config.name,
            len(result.diagnostics),
        )
    else:
        logger.info("[%s] Pipeline completed successfully.", config.name)


if __name__ == "__main__":
    main()
