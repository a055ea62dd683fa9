"""Graph-wide junction elevation harmonisation.

Roads meeting at a junction must agree on one elevation there.  The
:class:`NetworkJunctionHarmonizer` works in two stages so that the
result depends only on geometry and configuration, never on the order
in which junctions are visited:

1. **Authoritative value.**  From a snapshot of all pre-harmonisation
   elevations, compute one ``harmonized_elevation`` per junction.  The
   candidates are the junction's through edges (all members when none
   passes through).  The highest-priority candidates win outright;
   equal-priority candidates are averaged.  T junctions additionally
   record the through edge's local longitudinal slope.
2. **Propagation.**  Each junction member carries an offset
   ``delta = harmonized - pre`` which fades along the edge with the
   configured falloff curve, reaching zero at the blend distance.
   Terminating edges fade away from their end; through edges at Y, X
   and Complex junctions fade in both directions; the through edge of a
   T junction is left alone.  Offsets from several junctions combine
   as a weighted mean, capped at full strength.  Anchor members (see
   :func:`src.network.junction.anchor_members`) are then pinned to the
   junction value exactly.

Y, X and Complex junctions between roads of comparable priority are
finally flattened into a small plateau around the node.  T junctions
are never flattened, and neither are junctions whose priority spread
exceeds the plateau tolerance: those are marked ``is_surface_fitted``
and their lower-priority roads, like the terminating roads of a T
junction, are fitted to the primary road's surface by
:mod:`src.network.surface` instead.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from src.common.cancellation import CancellationToken, is_cancelled
from src.elevation.blend_functions import falloff_weight, get_blend_function, quintic
from src.roadgeometry.cross_section import CrossSection
from src.utils.logging import get_logger

from .junction import Junction, JunctionMember, JunctionType, UnifiedRoadNetwork, anchor_members
from .surface import local_slope

logger = get_logger(__name__)

CHANGE_TOLERANCE = 1e-6


@dataclass
class HarmonizationResult:
    """Summary of a harmonisation run."""

    pre_elevations: Dict[int, float] = field(default_factory=dict)
    """Target elevation of every cross-section before harmonisation,
    keyed by network-wide index."""

    modified_count: int = 0
    max_change: float = 0.0
    unprocessed: List[int] = field(default_factory=list)
    """Junction ids skipped because the run was cancelled."""

    cancelled: bool = False


def combine_offsets(influences: List[Tuple[float, float]]) -> float:
    """Weighted mean of (weight, value) pairs, scaled by the capped total weight."""
    total = sum(w for w, _ in influences)
    if total <= 0:
        return 0.0
    weighted = sum(w * v for w, v in influences)
    return weighted / max(1.0, total)


def dominant_elevation(members: List[JunctionMember], elevations: Dict[int, float]) -> float:
    """Mean elevation of the highest-priority members."""
    top = max(m.priority for m in members)
    values = [elevations[m.cross_section.index] for m in members if m.priority == top]
    return float(np.mean(values))


@dataclass
class NetworkJunctionHarmonizer:
    """Compute and propagate one agreed elevation per junction."""

    blend_distance: float = 30.0
    """Length over which a junction offset fades out along an edge."""

    blend_function: str = "smoothstep"
    slope_window: int = 3
    enable_plateau_smoothing: bool = True
    plateau_priority_tolerance: int = 0
    """Largest priority spread at which a junction is flattened."""

    endpoint_taper_strength: float = 0.0
    endpoint_taper_distance: float = 30.0

    def harmonize(self, network: UnifiedRoadNetwork,
                  cancel_token: Optional[CancellationToken] = None) -> HarmonizationResult:
        """Harmonise all junctions of ``network`` in place.

        Parameters
        ----------
        network : UnifiedRoadNetwork
            Network with smoothed cross-sections.
        cancel_token : CancellationToken, optional
            Checked once per junction.  On cancellation, junctions that
            were fully processed keep their result and the others are
            listed in ``unprocessed``.

        Returns
        -------
        HarmonizationResult
        """
        if self.blend_distance <= 0:
            raise ValueError("blend_distance must be positive")
        blend = get_blend_function(self.blend_function)
        sections = {cs.index: cs for cs in network.cross_sections()}
        pre = {i: cs.target_elevation for i, cs in sections.items()}
        result = HarmonizationResult(pre_elevations=pre)

        done: List[Junction] = []
        for pos, junction in enumerate(network.junctions):
            if is_cancelled(cancel_token):
                result.cancelled = True
                result.unprocessed = [j.junction_id for j in network.junctions[pos:]]
                break
            self._compute_junction_elevation(network, junction, pre)
            done.append(junction)

        influences: Dict[int, List[Tuple[float, float]]] = {}
        propagated: List[Junction] = []
        for junction in done:
            if is_cancelled(cancel_token):
                result.cancelled = True
                skipped = [j.junction_id for j in done[len(propagated):]]
                result.unprocessed = skipped + result.unprocessed
                break
            self._collect_offsets(network, junction, pre, blend, influences)
            propagated.append(junction)

        for index, items in influences.items():
            sections[index].target_elevation = pre[index] + combine_offsets(items)
        self._pin_members(propagated)

        if self.enable_plateau_smoothing and not result.cancelled:
            self._plateau_smoothing(network, propagated)
            self._pin_members(propagated)

        if self.endpoint_taper_strength > 0 and not result.cancelled:
            self._taper_free_ends(network)

        changes = np.array([abs(cs.target_elevation - pre[i]) for i, cs in sections.items()
                            if not cs.is_excluded] or [0.0])
        result.modified_count = int(np.sum(changes > CHANGE_TOLERANCE))
        result.max_change = float(changes.max())
        if result.cancelled:
            logger.warning("Harmonisation cancelled, %d junctions unprocessed", len(result.unprocessed))
        logger.info("Harmonised %d junctions: %d cross-sections changed, max change %.3f m",
                    len(propagated), result.modified_count, result.max_change)
        return result

    def _compute_junction_elevation(self, network: UnifiedRoadNetwork, junction: Junction,
                                    pre: Dict[int, float]) -> None:
        usable = [m for m in junction.members if not m.cross_section.is_excluded]
        through = [m for m in usable if m.is_through]
        candidates = through or usable or junction.members
        junction.harmonized_elevation = dominant_elevation(candidates, pre)
        if junction.junction_type is not JunctionType.T and through:
            priorities = [m.priority for m in junction.members]
            junction.is_surface_fitted = max(priorities) - min(priorities) > self.plateau_priority_tolerance

        if junction.junction_type is JunctionType.T and through:
            primary = junction.primary_through_member()
            edge_sections = network.edge(primary.edge_id).cross_sections
            elevations = np.array([pre[cs.index] for cs in edge_sections])
            junction.through_slope = local_slope(
                edge_sections, primary.cross_section.local_index, self.slope_window, elevations)
        logger.debug("Junction %d (%s): elevation %.3f", junction.junction_id,
                     junction.junction_type.value, junction.harmonized_elevation)

    def _collect_offsets(self, network: UnifiedRoadNetwork, junction: Junction, pre: Dict[int, float],
                         blend, influences: Dict[int, List[Tuple[float, float]]]) -> None:
        if not junction.is_harmonized():
            return
        for member in junction.members:
            source = member.cross_section
            if source.is_excluded:
                continue
            if member.is_through and junction.junction_type is JunctionType.T:
                continue
            delta = junction.harmonized_elevation - pre[source.index]
            edge_sections = network.edge(member.edge_id).cross_sections
            if member.is_through:
                directions = (1, -1)
            else:
                directions = (1,) if member.is_edge_start else (-1,)
            for direction in directions:
                self._fade_along(edge_sections, source, direction, delta, blend, influences,
                                 include_source=(direction == directions[0]))

    def _fade_along(self, edge_sections: List[CrossSection], source: CrossSection, direction: int,
                    delta: float, blend, influences, include_source: bool) -> None:
        i = source.local_index if include_source else source.local_index + direction
        while 0 <= i < len(edge_sections):
            cs = edge_sections[i]
            d = abs(cs.distance - source.distance)
            if d >= self.blend_distance:
                break
            if not cs.is_excluded:
                w = float(falloff_weight(d, self.blend_distance, blend))
                if w > 0:
                    influences.setdefault(cs.index, []).append((w, delta))
            i += direction

    @staticmethod
    def _pin_members(junctions: List[Junction]) -> None:
        for junction in junctions:
            if not junction.is_harmonized():
                continue
            for member in anchor_members(junction):
                member.cross_section.target_elevation = junction.harmonized_elevation

    def plateau_radius(self, junction: Junction) -> float:
        max_width = junction.max_width
        extra_arms = max(0, len(junction.edge_ids) - 2)
        return max(2.0 * max_width + extra_arms * 0.5 * max_width, 0.5 * self.blend_distance)

    def _plateau_eligible(self, junction: Junction) -> bool:
        if junction.junction_type is JunctionType.T or not junction.is_harmonized():
            return False
        priorities = [m.priority for m in junction.members]
        return max(priorities) - min(priorities) <= self.plateau_priority_tolerance

    def _plateau_smoothing(self, network: UnifiedRoadNetwork, junctions: List[Junction]) -> None:
        """Flatten comparable-priority Y/X/Complex junctions.

        All plateaus are computed from one snapshot and combined the way
        propagation offsets are, so overlapping plateaus do not depend on
        visiting order.
        """
        eligible = [j for j in junctions if self._plateau_eligible(j)]
        if not eligible:
            return
        snapshot = {cs.index: cs.target_elevation for cs in network.cross_sections()}
        influences: Dict[int, List[Tuple[float, float]]] = {}
        touched: Dict[int, CrossSection] = {}
        for junction in eligible:
            radius = self.plateau_radius(junction)
            for edge_id in junction.edge_ids:
                for cs in network.edge(edge_id).cross_sections:
                    if cs.is_excluded:
                        continue
                    dist = float(np.linalg.norm(cs.center - junction.position))
                    if dist >= radius:
                        continue
                    w = 1.0 - float(quintic(dist / radius))
                    if w > 0:
                        influences.setdefault(cs.index, []).append((w, junction.harmonized_elevation))
                        touched[cs.index] = cs
        for index, items in influences.items():
            total = sum(w for w, _ in items)
            target = sum(w * v for w, v in items) / total
            strength = min(1.0, total)
            touched[index].target_elevation = strength * target + (1.0 - strength) * snapshot[index]
        logger.debug("Plateau smoothing touched %d cross-sections at %d junctions",
                     len(influences), len(eligible))

    def _taper_free_ends(self, network: UnifiedRoadNetwork) -> None:
        """Ease road ends that meet nothing back toward the original terrain."""
        anchored = network.anchored_indices()
        for edge in network.edges.values():
            if edge.is_structure or not edge.cross_sections:
                continue
            connected = set()
            for junction in network.junctions_for_edge(edge.edge_id):
                for m in junction.members:
                    if m.edge_id == edge.edge_id:
                        connected.add(m.cross_section.local_index)
            sections = edge.cross_sections
            for end, direction in ((0, 1), (len(sections) - 1, -1)):
                near_junction = any(abs(sections[k].distance - sections[end].distance)
                                    < self.endpoint_taper_distance for k in connected)
                if near_junction:
                    continue
                i = end
                while 0 <= i < len(sections):
                    cs = sections[i]
                    d = abs(cs.distance - sections[end].distance)
                    if d >= self.endpoint_taper_distance:
                        break
                    if not cs.is_excluded and cs.index not in anchored:
                        w = self.endpoint_taper_strength * (1.0 - float(quintic(d / self.endpoint_taper_distance)))
                        cs.target_elevation = (1.0 - w) * cs.target_elevation + w * cs.original_terrain_elevation
                    i += direction
