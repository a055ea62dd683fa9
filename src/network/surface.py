"""Junction surface edge constraints.

At a T junction the terminating road's centreline can match the
harmonised elevation while its edges still float above or dig into the
primary road's surface, because that surface is tilted by banking and
by the primary's own longitudinal slope.  This module evaluates the
primary surface as a plane through a primary cross-section::

    z(p) = T + lateral(p) * sin(bank) + longitudinal(p) * slope

with ``lateral`` the offset along the primary normal and
``longitudinal`` the offset along its tangent.  The terminating road's
boundary cross-section gets explicit ``constrained_*`` edge
elevations taken from that plane, and the constraint fades out along
the terminating road over the blend distance.

A crossing between roads of different priority is handled as two T
junctions sharing one primary: the lower-priority through road is
constrained on both sides of the node.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from src.common.cancellation import CancellationToken, is_cancelled
from src.elevation.blend_functions import falloff_weight, get_blend_function
from src.roadgeometry.cross_section import CrossSection
from src.roadgeometry.road_edge import RoadEdge
from src.utils.logging import get_logger

from .junction import Junction, JunctionMember, JunctionType, UnifiedRoadNetwork

logger = get_logger(__name__)

MIN_SURFACE_TERM = 1e-4
MIN_SLOPE_RUN = 0.1


def local_slope(sections: Sequence[CrossSection], local_index: int, window: int = 3,
                elevations: Optional[np.ndarray] = None) -> float:
    """Longitudinal slope (rise over run) from a symmetric sample window.

    Parameters
    ----------
    sections : sequence of CrossSection
        Cross-sections of one edge.
    local_index : int
        Sample at which the slope is wanted.
    window : int
        Number of samples taken on each side, truncated at the ends.
    elevations : numpy.ndarray, optional
        Elevations to use instead of the current ``target_elevation``.

    Returns
    -------
    float
        Slope along the edge tangent; 0 when the window spans less
        than 0.1 m.
    """
    n = len(sections)
    if n < 2:
        return 0.0
    lo = max(0, local_index - window)
    hi = min(n - 1, local_index + window)
    run = sections[hi].distance - sections[lo].distance
    if run < MIN_SLOPE_RUN:
        return 0.0
    if elevations is None:
        rise = sections[hi].target_elevation - sections[lo].target_elevation
    else:
        rise = elevations[hi] - elevations[lo]
    return float(rise / run)


def edge_slopes(edge: RoadEdge, window: int = 3) -> np.ndarray:
    """Local slope at every cross-section of an edge."""
    sections = edge.cross_sections
    return np.array([local_slope(sections, i, window) for i in range(len(sections))])


def primary_surface_elevation(point: np.ndarray, primary: CrossSection, slope: float) -> float:
    """Elevation of the primary road surface at a world point."""
    offset = np.asarray(point, dtype=float) - primary.center
    elevation = primary.target_elevation
    if abs(primary.bank_angle_radians) > MIN_SURFACE_TERM:
        elevation += float(np.dot(offset, primary.normal)) * math.sin(primary.bank_angle_radians)
    if abs(slope) > MIN_SURFACE_TERM:
        elevation += float(np.dot(offset, primary.tangent)) * slope
    return float(elevation)


def constrained_edge_elevations(terminating: CrossSection, primary: CrossSection,
                                slope: float) -> Tuple[float, float]:
    """Primary surface elevation under the terminating section's edges."""
    left = primary_surface_elevation(terminating.left_edge_position, primary, slope)
    right = primary_surface_elevation(terminating.right_edge_position, primary, slope)
    return left, right


def apply_edge_constraints(cs: CrossSection, left: float, right: float) -> None:
    """Pin both edges and recentre the centreline between them."""
    cs.constrained_left_edge_elevation = float(left)
    cs.constrained_right_edge_elevation = float(right)
    cs.target_elevation = 0.5 * (float(left) + float(right))


def natural_edge_elevations(cs: CrossSection) -> Tuple[float, float]:
    """Edge elevations ignoring any explicit constraint."""
    left, right = cs.banked_edge_elevations()
    if math.isfinite(cs.left_edge_elevation):
        left = cs.left_edge_elevation
    if math.isfinite(cs.right_edge_elevation):
        right = cs.right_edge_elevation
    return left, right


@dataclass
class SurfaceConstraintResult:
    constrained_count: int = 0
    unprocessed: List[int] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class JunctionSurfaceCalculator:
    """Make secondary roads meet a banked or sloped primary flush."""

    blend_distance: float = 30.0
    blend_function: str = "smoothstep"
    slope_window: int = 3

    def apply(self, network: UnifiedRoadNetwork,
              cancel_token: Optional[CancellationToken] = None) -> SurfaceConstraintResult:
        """Constrain the secondary edges of every T and surface-fitted junction.

        Must run after harmonisation and banking: the primary surface
        is read from their results.
        """
        result = SurfaceConstraintResult()
        blend = get_blend_function(self.blend_function)
        anchored = network.anchored_indices()
        touched: Dict[int, Tuple[float, float, float]] = {}
        fitted = [j for j in network.junctions
                  if j.junction_type is JunctionType.T or j.is_surface_fitted]
        for pos, junction in enumerate(fitted):
            if is_cancelled(cancel_token):
                result.cancelled = True
                result.unprocessed = [j.junction_id for j in fitted[pos:]]
                logger.warning("Surface constraints cancelled, %d junctions left", len(result.unprocessed))
                break
            result.constrained_count += self._constrain_junction(network, junction, anchored, touched, blend)
        logger.info("Surface constraints: %d cross-sections at %d junctions",
                    result.constrained_count, len(fitted))
        return result

    @staticmethod
    def secondary_members(junction: Junction) -> List[JunctionMember]:
        """Members fitted to the primary surface.

        The terminating members of a T junction, or every member of a
        surface-fitted junction ranked below the primary through road.
        """
        primary = junction.primary_through_member()
        if junction.junction_type is JunctionType.T:
            return junction.terminating_members()
        return [m for m in junction.members
                if m.edge_id != primary.edge_id and m.priority < primary.priority]

    def _constrain_junction(self, network: UnifiedRoadNetwork, junction: Junction,
                            anchored, touched: Dict[int, Tuple[float, float, float]], blend) -> int:
        """Constrain the secondary edges of one junction.

        ``touched`` maps cross-section index to (weight, natural left,
        natural right); the strongest constraint wins where the fades
        of two junctions overlap.
        """
        primary_member = junction.primary_through_member()
        if primary_member is None or primary_member.cross_section.is_excluded:
            return 0
        primary_edge = network.edge(primary_member.edge_id)
        tree = cKDTree(primary_edge.centers())
        slopes = edge_slopes(primary_edge, self.slope_window)
        count = 0
        for member in self.secondary_members(junction):
            boundary = member.cross_section
            if boundary.is_excluded:
                continue
            sections = network.edge(member.edge_id).cross_sections
            if member.is_through:
                starts = ((boundary.local_index, 1), (boundary.local_index - 1, -1))
            else:
                starts = ((boundary.local_index, 1 if member.is_edge_start else -1),)
            for i, step in starts:
                while 0 <= i < len(sections):
                    cs = sections[i]
                    d = abs(cs.distance - boundary.distance)
                    if d >= self.blend_distance:
                        break
                    i += step
                    if cs.is_excluded or cs.index in anchored:
                        continue
                    w = float(falloff_weight(d, self.blend_distance, blend))
                    if cs.index in touched:
                        if w <= touched[cs.index][0]:
                            continue
                        nat_left, nat_right = touched[cs.index][1:]
                    else:
                        nat_left, nat_right = natural_edge_elevations(cs)
                    _, nearest = tree.query(cs.center)
                    primary = primary_edge.cross_sections[int(nearest)]
                    slope = float(slopes[int(nearest)])
                    surf_left, surf_right = constrained_edge_elevations(cs, primary, slope)
                    apply_edge_constraints(
                        cs,
                        w * surf_left + (1.0 - w) * nat_left,
                        w * surf_right + (1.0 - w) * nat_right,
                    )
                    touched[cs.index] = (w, nat_left, nat_right)
                    count += 1
        return count
