"""Road edges and their input geometry.

:class:`RoadGeometry` is the immutable per-run input supplied by the
geometry acquisition side.  :class:`RoadEdge` is what the network owns
once the geometry has been turned into a spline: the spline plus the
semantic attributes (width, priority, structure flags, paint category)
and, after sampling, the edge's cross-sections.
"""

from dataclasses import dataclass, field
from typing import List, Optional, TYPE_CHECKING

import numpy as np

from .cross_section import CrossSection
from .spline import InterpolationMode, Spline

if TYPE_CHECKING:
    from src.elevation.structures import StructureElevationProfile


@dataclass(frozen=True)
class RoadGeometry:
    """Input description of one road."""

    control_points: np.ndarray
    """(N, 2) centreline points in metres, terrain-local frame."""

    width: float = 8.0
    priority: int = 0
    """Rank at junctions; higher dominates."""

    is_bridge: bool = False
    is_tunnel: bool = False
    interpolation: InterpolationMode = InterpolationMode.SMOOTH_INTERPOLATED
    category: str = "road"
    """Paint layer the road is rasterised into."""

    edge_id: Optional[int] = None


@dataclass
class RoadEdge:
    """A road in the network."""

    edge_id: int
    spline: Spline
    width: float
    priority: int = 0
    is_bridge: bool = False
    is_tunnel: bool = False
    category: str = "road"
    cross_sections: List[CrossSection] = field(default_factory=list)
    structure_profile: Optional["StructureElevationProfile"] = None

    @classmethod
    def from_geometry(cls, geometry: RoadGeometry, edge_id: int) -> "RoadEdge":
        """Build the edge and its spline.

        Raises
        ------
        DegenerateGeometryError
            If the control points do not describe a usable curve.
        ValueError
            If the width is not positive or the geometry is both a
            bridge and a tunnel.
        """
        if geometry.width <= 0:
            raise ValueError(f"edge {edge_id}: width must be positive")
        if geometry.is_bridge and geometry.is_tunnel:
            raise ValueError(f"edge {edge_id}: cannot be both bridge and tunnel")
        spline = Spline(geometry.control_points, geometry.interpolation)
        return cls(
            edge_id=edge_id,
            spline=spline,
            width=float(geometry.width),
            priority=int(geometry.priority),
            is_bridge=geometry.is_bridge,
            is_tunnel=geometry.is_tunnel,
            category=geometry.category,
        )

    @property
    def is_structure(self) -> bool:
        return self.is_bridge or self.is_tunnel

    @property
    def length(self) -> float:
        return self.spline.total_length

    @property
    def half_width(self) -> float:
        return self.width / 2.0

    def elevations(self) -> np.ndarray:
        return np.array([cs.target_elevation for cs in self.cross_sections], dtype=float)

    def distances(self) -> np.ndarray:
        return np.array([cs.distance for cs in self.cross_sections], dtype=float)

    def centers(self) -> np.ndarray:
        if not self.cross_sections:
            return np.empty((0, 2))
        return np.array([cs.center for cs in self.cross_sections], dtype=float)
