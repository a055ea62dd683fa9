"""Cross-section records.

A cross-section is one transverse slice of a road, taken at a fixed
arc-length station.  It is the single unit of exchange between all
passes: smoothing and harmonisation write ``target_elevation``,
banking writes ``bank_angle_radians`` and the derived edge elevations,
junction surface constraints write the ``constrained_*`` overrides,
and the heightmap blender and layer rasteriser read them back.

Bank angle (roll) and the explicit edge overrides are separate
fields.  Readers must use :meth:`CrossSection.resolved_left_edge_elevation`
and :meth:`CrossSection.resolved_right_edge_elevation`, which apply the
precedence

    explicit constraint > precomputed edge value > banking fallback
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class CrossSection:
    """A sampled slice of a road edge."""

    index: int
    """Position in the network-wide cross-section list."""

    edge_id: int
    """Id of the owning road edge."""

    local_index: int
    """Position within the owning edge."""

    distance: float
    """Arc-length station along the edge in metres."""

    center: np.ndarray
    tangent: np.ndarray
    normal: np.ndarray
    """Unit vector pointing to the right of travel."""

    width: float
    priority: int = 0

    target_elevation: float = math.nan
    """Centreline elevation; the one mutable source of truth."""

    original_terrain_elevation: float = math.nan
    """Terrain height read from the input heightmap."""

    curvature: float = 0.0
    """Signed curvature in 1/m, positive when turning left."""

    bank_angle_radians: float = 0.0
    """Roll angle; positive raises the right edge."""

    left_edge_elevation: float = math.nan
    right_edge_elevation: float = math.nan

    constrained_left_edge_elevation: Optional[float] = None
    constrained_right_edge_elevation: Optional[float] = None

    is_excluded: bool = False
    """True on bridge and tunnel spans; skipped by terrain writing."""

    is_edge_start: bool = False
    is_edge_end: bool = False

    @property
    def half_width(self) -> float:
        return self.width / 2.0

    @property
    def has_junction_constraint(self) -> bool:
        return (self.constrained_left_edge_elevation is not None
                or self.constrained_right_edge_elevation is not None)

    @property
    def left_edge_position(self) -> np.ndarray:
        return self.center - self.normal * self.half_width

    @property
    def right_edge_position(self) -> np.ndarray:
        return self.center + self.normal * self.half_width

    def banked_edge_elevations(self):
        """Edge elevations implied by the bank angle alone."""
        offset = self.half_width * math.sin(self.bank_angle_radians)
        return self.target_elevation - offset, self.target_elevation + offset

    def resolved_left_edge_elevation(self) -> float:
        if self.constrained_left_edge_elevation is not None:
            return self.constrained_left_edge_elevation
        if math.isfinite(self.left_edge_elevation):
            return self.left_edge_elevation
        return self.banked_edge_elevations()[0]

    def resolved_right_edge_elevation(self) -> float:
        if self.constrained_right_edge_elevation is not None:
            return self.constrained_right_edge_elevation
        if math.isfinite(self.right_edge_elevation):
            return self.right_edge_elevation
        return self.banked_edge_elevations()[1]

    def to_record(self) -> dict:
        """Flat dictionary used for tabular export."""
        return {
            "index": self.index,
            "edge_id": self.edge_id,
            "local_index": self.local_index,
            "distance": self.distance,
            "x": float(self.center[0]),
            "y": float(self.center[1]),
            "tangent_x": float(self.tangent[0]),
            "tangent_y": float(self.tangent[1]),
            "width": self.width,
            "priority": self.priority,
            "target_elevation": self.target_elevation,
            "original_terrain_elevation": self.original_terrain_elevation,
            "curvature": self.curvature,
            "bank_angle_radians": self.bank_angle_radians,
            "left_edge_elevation": self.resolved_left_edge_elevation(),
            "right_edge_elevation": self.resolved_right_edge_elevation(),
            "has_junction_constraint": self.has_junction_constraint,
            "is_excluded": self.is_excluded,
        }
