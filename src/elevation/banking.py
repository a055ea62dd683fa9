"""Curve banking.

The :class:`BankingCalculator` tilts a road about its centreline on
curves.  Curvature is estimated from the sampled centreline as the
signed turning angle between consecutive segments divided by their
mean length; the bank angle grows linearly with curvature and
saturates at the configured maximum::

    bank = sign(k) * min(|k| * curvature_scale, 1) * strength * max_bank

A left turn (positive curvature) raises the right, outer edge.  Bank
angles are eased with a moving average over a transition length so
that a road does not snap from flat to fully banked.

Banking is a roll angle only.  It never touches ``target_elevation``;
the derived edge elevations are::

    left  = target - half_width * sin(bank)
    right = target + half_width * sin(bank)
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from src.roadgeometry.cross_section import CrossSection
from src.roadgeometry.road_edge import RoadEdge
from src.utils.logging import get_logger

from .blend_functions import get_blend_function
from .smoother import moving_average

logger = get_logger(__name__)


def compute_curvature(centers: np.ndarray) -> np.ndarray:
    """Signed curvature (1/m) at each point of a polyline.

    Parameters
    ----------
    centers : numpy.ndarray
        (N, 2) centreline points.

    Returns
    -------
    numpy.ndarray
        Curvature per point, positive for left turns.  Endpoints copy
        their neighbour; fewer than three points give zeros.
    """
    n = len(centers)
    curvature = np.zeros(n)
    if n < 3:
        return curvature
    segments = np.diff(centers, axis=0)
    lengths = np.linalg.norm(segments, axis=1)
    headings = np.arctan2(segments[:, 1], segments[:, 0])
    turn = np.diff(headings)
    turn = (turn + np.pi) % (2.0 * np.pi) - np.pi
    mean_length = 0.5 * (lengths[:-1] + lengths[1:])
    inner = np.divide(turn, mean_length, out=np.zeros_like(turn), where=mean_length > 1e-6)
    curvature[1:-1] = inner
    curvature[0] = curvature[1]
    curvature[-1] = curvature[-2]
    return curvature


def default_edge_elevations(cs: CrossSection) -> None:
    """Store the bank-derived edge elevations on a cross-section."""
    offset = cs.half_width * math.sin(cs.bank_angle_radians)
    cs.left_edge_elevation = cs.target_elevation - offset
    cs.right_edge_elevation = cs.target_elevation + offset


@dataclass
class BankingCalculator:
    """Compute bank angles and default edge elevations."""

    max_bank_angle_radians: float = 0.14
    curvature_scale: float = 500.0
    """Curvature multiplied by this saturates at full bank."""

    bank_strength: float = 1.0
    transition_length: float = 20.0
    """Length in metres of the moving average easing bank changes."""

    blend_distance: float = 30.0
    blend_function: str = "smoothstep"

    def bank_angle(self, curvature):
        """Bank angle for a curvature value or array."""
        k = np.asarray(curvature, dtype=float)
        factor = np.minimum(np.abs(k) * self.curvature_scale, 1.0)
        return np.sign(k) * factor * self.bank_strength * self.max_bank_angle_radians

    def bank_edge(self, edge: RoadEdge) -> None:
        """Set curvature and eased bank angle on every cross-section."""
        sections = edge.cross_sections
        if not sections:
            return
        curvature = compute_curvature(edge.centers())
        angles = self.bank_angle(curvature)
        if len(sections) > 2:
            step = float(np.mean(np.diff(edge.distances())))
            window = max(1, int(round(self.transition_length / step)))
            if window % 2 == 0:
                window += 1
            angles = moving_average(angles, window)
        limit = self.max_bank_angle_radians
        for cs, k, b in zip(sections, curvature, np.clip(angles, -limit, limit)):
            cs.curvature = float(k)
            cs.bank_angle_radians = float(b)

    def suppress_near_junctions(self, network) -> int:
        """Fade banking out on secondary roads approaching a junction.

        Every member edge except the highest-priority through road is
        scaled by ``blend(d / blend_distance)``, ``d`` being the distance
        from the junction along the edge; the strongest suppression
        wins where junctions overlap.

        Returns
        -------
        int
            Number of cross-sections whose bank angle was reduced.
        """
        blend = get_blend_function(self.blend_function)
        factors: Dict[int, float] = {}
        for junction in network.junctions:
            primary = junction.primary_through_member()
            for member in junction.members:
                if primary is not None and member.edge_id == primary.edge_id:
                    continue
                source = member.cross_section
                for cs in network.edge(member.edge_id).cross_sections:
                    d = abs(cs.distance - source.distance)
                    if d >= self.blend_distance:
                        continue
                    factor = float(blend(d / self.blend_distance))
                    factors[cs.index] = min(factor, factors.get(cs.index, 1.0))
        for cs in network.cross_sections():
            if cs.index in factors:
                cs.bank_angle_radians *= factors[cs.index]
        return len(factors)

    def compute_edge_elevations(self, sections: Sequence[CrossSection]) -> None:
        for cs in sections:
            default_edge_elevations(cs)

    def apply(self, network, suppress_at_junctions: bool = True,
              edges: Optional[List[RoadEdge]] = None) -> None:
        """Bank ``edges`` (all edges by default) and refresh edge elevations."""
        targets = list(network.edges.values()) if edges is None else edges
        for edge in targets:
            self.bank_edge(edge)
        if suppress_at_junctions:
            suppressed = self.suppress_near_junctions(network)
            logger.debug("Banking suppressed on %d cross-sections near junctions", suppressed)
        self.compute_edge_elevations(list(network.cross_sections()))
