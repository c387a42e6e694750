"""
Configuration: constants, categories, thresholds, override table, paths.
"""

from __future__ import annotations

import json
import logging
import math
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

ROOT_DIR: Path = Path(__file__).resolve().parent.parent
OUTPUT_DIR: Path = ROOT_DIR / "outputs"

# ---------------------------------------------------------------------------
# Input columns
# ---------------------------------------------------------------------------

DEFAULT_ID_COL: str = "cell_id"
DEFAULT_POP_COL: str = "pop"
DEFAULT_AREA_COL: str = "area_km2"

# Cells whose no-data column equals this value carry no measurement
# (e.g. grid cells over water) and are dropped before adjacency.
NO_DATA_SENTINEL: int = 0

# ---------------------------------------------------------------------------
# Adjacency
# ---------------------------------------------------------------------------

ADJACENCY_MODES: Dict[str, str] = {
    "queen": "queen",
    "edge_or_corner": "queen",
    "rook": "rook",
    "edge": "rook",
}
DEFAULT_ADJACENCY_MODE: str = "queen"

ADJACENCY_STRATEGIES: List[str] = ["polygon", "grid", "h3"]
DEFAULT_ADJACENCY_STRATEGY: str = "polygon"

# Tolerance (CRS units) under which two polygon boundaries count as touching.
# sqrt(machine epsilon), the spdep poly2nb default; 0 requires exact contact.
DEFAULT_SNAP: float = math.sqrt(sys.float_info.epsilon)

# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

class Category(Enum):
    """Community-size classes, ordered from largest to smallest."""

    METROPOLIS = "Metropolis"
    LARGE_URBAN = "Large urban community"
    SMALL_URBAN = "Small urban community"
    RURAL_TOWN = "Rural town"
    RURAL_VILLAGE = "Rural village"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        return CATEGORY_ORDER.index(self)

    @classmethod
    def parse(cls, value: "Category | str") -> "Category":
        """Accept a Category, its label, its member name or a CamelCase alias."""
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        for member in cls:
            if key == member.value or key.upper() == member.name:
                return member
        alias = _CATEGORY_ALIASES.get(key.replace("_", "").replace(" ", "").lower())
        if alias is None:
            raise ValueError(f"Unknown category: {value!r}")
        return alias


CATEGORY_ORDER: List[Category] = list(Category)
CATEGORY_LABELS: List[str] = [c.value for c in CATEGORY_ORDER]

_CATEGORY_ALIASES: Dict[str, Category] = {
    "metropolis": Category.METROPOLIS,
    "largeurban": Category.LARGE_URBAN,
    "smallurban": Category.SMALL_URBAN,
    "ruraltown": Category.RURAL_TOWN,
    "ruralvillage": Category.RURAL_VILLAGE,
    "unknown": Category.UNKNOWN,
}

# ---------------------------------------------------------------------------
# Density thresholds (people / km²)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Tier:
    category: Category
    lower_bound: float
    # Round density half-up to a multiple of this before comparing.
    round_to: Optional[float] = None


# Only the large-urban tier is tested on rounded density; the other tiers
# compare the raw value.
LARGE_URBAN_ROUND_TO: float = 100.0

DEFAULT_THRESHOLDS: Tuple[Tier, ...] = (
    Tier(Category.METROPOLIS, 1000.0),
    Tier(Category.LARGE_URBAN, 500.0, round_to=LARGE_URBAN_ROUND_TO),
    Tier(Category.SMALL_URBAN, 100.0),
    Tier(Category.RURAL_TOWN, 10.0),
    Tier(Category.RURAL_VILLAGE, 0.0),
)

# ---------------------------------------------------------------------------
# Manual overrides
# ---------------------------------------------------------------------------

# Reclassification table for Canadian economic regions (ERUID) and census
# subdivisions (CSDNAME). Evaluated top to bottom; first match wins.
DEFAULT_OVERRIDE_RULES: List[Dict[str, Any]] = [
    {
        "note": "Southeast rural grids close to Winnipeg",
        "region_field": "ERUID",
        "region_value": "4610",
        "categories": ["Large urban community", "Small urban community"],
        "target": "Rural town",
    },
    {
        "note": "Interlake rural grids close to Winnipeg",
        "region_field": "ERUID",
        "region_value": "4660",
        "categories": ["Large urban community", "Small urban community"],
        "target": "Rural town",
    },
    {
        "note": "Lethbridge from small to large community",
        "region_field": "ERUID",
        "region_value": "4810",
        "name": "Lethbridge",
        "target": "Large urban community",
    },
    {
        "note": "Red Deer from small to large community",
        "region_field": "ERUID",
        "region_value": "4850",
        "name": "Red Deer",
        "target": "Large urban community",
    },
    {
        "note": "Headingley from large community to village",
        "region_field": "ERUID",
        "region_value": "4650",
        "name": "Headingley",
        "target": "Rural village",
    },
    {
        "note": "St. Catharines from small to large community",
        "region_field": "ERUID",
        "region_value": "3550",
        "name": "St. Catharines",
        "target": "Large urban community",
    },
]

DEFAULT_NAME_FIELD: str = "CSDNAME"

# ---------------------------------------------------------------------------
# Output column schema (ordered; id / population / carried attributes are
# resolved per run)
# ---------------------------------------------------------------------------

OUTPUT_COLUMNS: List[str] = [
    "pop_local",
    "area_local",
    "local_pop_density",
    "base_category",
    "Category",
    "override_rule",
]

# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------

@dataclass
class ClassificationConfig:
    name: str = "grid"                      # label used in log / file names
    id_col: str = DEFAULT_ID_COL
    pop_col: str = DEFAULT_POP_COL
    area_col: str = DEFAULT_AREA_COL
    nodata_col: Optional[str] = None        # column holding the no-data sentinel
    adjacency_mode: str = DEFAULT_ADJACENCY_MODE
    adjacency_strategy: str = DEFAULT_ADJACENCY_STRATEGY
    snap: float = DEFAULT_SNAP
    cell_size: Optional[Any] = None         # grid strategy only; size or (dx, dy)
    thresholds: Tuple[Tier, ...] = DEFAULT_THRESHOLDS
    override_rules: List[Any] = field(default_factory=list)
    carry_columns: Optional[List[str]] = None

    def __post_init__(self) -> None:
        mode = ADJACENCY_MODES.get(self.adjacency_mode)
        if mode is None:
            raise ValueError(
                f"Unknown adjacency_mode {self.adjacency_mode!r}; "
                f"valid choices: {sorted(ADJACENCY_MODES)}"
            )
        self.adjacency_mode = mode
        if self.adjacency_strategy not in ADJACENCY_STRATEGIES:
            raise ValueError(
                f"Unknown adjacency_strategy {self.adjacency_strategy!r}; "
                f"valid choices: {ADJACENCY_STRATEGIES}"
            )


def tiers_from_records(records: List[Dict[str, Any]]) -> Tuple[Tier, ...]:
    """Build tiers from ``[{"category": ..., "lower_bound": ..., "round_to": ...}]``."""
    from communitysize.errors import InvalidThresholdConfig

    tiers = []
    for i, rec in enumerate(records):
        try:
            tiers.append(
                Tier(
                    category=Category.parse(rec["category"]),
                    lower_bound=float(rec["lower_bound"]),
                    round_to=(
                        float(rec["round_to"])
                        if rec.get("round_to") is not None
                        else None
                    ),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidThresholdConfig(f"Threshold #{i} is malformed: {exc}") from exc
    return tuple(tiers)


def load_config(path: Path | str, **overrides: Any) -> ClassificationConfig:
    """
    Read a JSON run configuration.

    Recognised keys mirror ``ClassificationConfig``; ``thresholds`` is a list
    of tier records and ``override_rules`` a list of rule records (see
    ``DEFAULT_OVERRIDE_RULES``). Thresholds and rules are validated here so
    configuration errors surface before any cell is processed.

    Keyword arguments override values read from the file (``None`` values
    are ignored).
    """
    from communitysize.classify import validate_thresholds
    from communitysize.overrides import rules_from_records

    with open(path) as f:
        payload: Dict[str, Any] = json.load(f)

    payload.update({k: v for k, v in overrides.items() if v is not None})

    if "thresholds" in payload:
        payload["thresholds"] = tiers_from_records(payload["thresholds"])
    validate_thresholds(payload.get("thresholds", DEFAULT_THRESHOLDS))

    if "override_rules" in payload:
        payload["override_rules"] = rules_from_records(payload["override_rules"])

    unknown = set(payload) - set(ClassificationConfig.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown configuration key(s) in {path}: {sorted(unknown)}")

    config = ClassificationConfig(**payload)
    logger.info(
        "Loaded configuration %s (%d tiers, %d override rules)",
        path,
        len(config.thresholds),
        len(config.override_rules),
    )
    return config
