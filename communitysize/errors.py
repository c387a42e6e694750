"""
Error taxonomy and the per-run diagnostics report.

Configuration errors (``InvalidThresholdConfig``, ``InvalidOverrideRule``)
are raised before any cell is processed. Per-cell problems
(``InvalidGeometry``, ``DegenerateArea``, ``InvalidInput``) are collected
into ``Diagnostics`` so one bad cell never aborts a nationwide run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, List


class CommunitySizeError(Exception):
    """Base class for classification errors."""


class CellError(CommunitySizeError):
    """A problem tied to a single cell."""

    kind: str = "cell_error"

    def __init__(self, cell_id: Hashable, message: str) -> None:
        super().__init__(f"cell {cell_id!r}: {message}")
        self.cell_id = cell_id
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        cell_id = self.cell_id.item() if hasattr(self.cell_id, "item") else self.cell_id
        return {"kind": self.kind, "cell_id": cell_id, "message": self.message}


class InvalidGeometry(CellError):
    """Cell polygon is missing, empty, invalid or not a polygon."""

    kind = "invalid_geometry"


class DegenerateArea(CellError):
    """Neighborhood area is not positive, so density is undefined."""

    kind = "degenerate_area"

    def __init__(self, cell_id: Hashable, area_local: float) -> None:
        super().__init__(cell_id, f"local area {area_local!r} is not positive")
        self.area_local = area_local


class InvalidInput(CellError):
    """Population or area is not a finite nonnegative number."""

    kind = "invalid_input"


class InvalidThresholdConfig(CommunitySizeError):
    """Threshold tiers are not strictly descending or lack a catch-all."""


class InvalidOverrideRule(CommunitySizeError):
    """An override rule has a malformed predicate or target."""


@dataclass
class Diagnostics:
    """Per-cell problems collected alongside a successful run."""

    invalid_geometry: List[InvalidGeometry] = field(default_factory=list)
    degenerate_area: List[DegenerateArea] = field(default_factory=list)
    invalid_input: List[InvalidInput] = field(default_factory=list)

    @property
    def excluded_ids(self) -> List[Hashable]:
        return [e.cell_id for e in self.invalid_geometry]

    @property
    def unknown_ids(self) -> List[Hashable]:
        return [e.cell_id for e in self.degenerate_area + self.invalid_input]

    def extend(self, problems: Iterable[CellError]) -> None:
        """File each problem under its kind."""
        for problem in problems:
            if isinstance(problem, InvalidGeometry):
                self.invalid_geometry.append(problem)
            elif isinstance(problem, DegenerateArea):
                self.degenerate_area.append(problem)
            elif isinstance(problem, InvalidInput):
                self.invalid_input.append(problem)
            else:
                raise TypeError(f"Unsupported cell problem: {problem!r}")

    def __len__(self) -> int:
        return len(self.invalid_geometry) + len(self.degenerate_area) + len(self.invalid_input)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_invalid_geometry": len(self.invalid_geometry),
            "n_degenerate_area": len(self.degenerate_area),
            "n_invalid_input": len(self.invalid_input),
            "issues": [e.to_dict() for e in self.invalid_geometry]
            + [e.to_dict() for e in self.degenerate_area]
            + [e.to_dict() for e in self.invalid_input],
        }
