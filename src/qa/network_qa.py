"""Quality assurance checks on a processed road network.

:class:`NetworkQA` collects the post-run checks that verify the
engine's guarantees.  Each check returns a boolean; :meth:`NetworkQA.run`
aggregates them into a dictionary of QA flags that the pipeline writes
into its summary.
"""

import math
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import numpy as np

from src.elevation.smoother import contiguous_runs, max_grade_percent
from src.network.junction import JunctionType, UnifiedRoadNetwork, anchor_members
from src.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class NetworkQA:
    """Run quality tests on a harmonised network."""

    junction_tolerance: float = 1e-4
    """Largest allowed disagreement at a junction, in metres."""

    max_grade_percent: float = 8.0
    grade_tolerance_percent: float = 1e-6
    blend_distance: float = 30.0
    monotonic_tolerance: float = 1e-6

    def check_junction_agreement(self, network: UnifiedRoadNetwork) -> bool:
        """Every anchored member sits at its junction's elevation."""
        for junction in network.junctions:
            if not junction.is_harmonized():
                continue
            for member in anchor_members(junction):
                diff = abs(member.cross_section.target_elevation - junction.harmonized_elevation)
                if diff > self.junction_tolerance:
                    logger.debug("Junction %d: edge %d off by %.6f m",
                                 junction.junction_id, member.edge_id, diff)
                    return False
        return True

    def check_grades(self, network: UnifiedRoadNetwork, elevations: Optional[Mapping[int, float]] = None) -> bool:
        """Adjacent non-excluded sections respect the grade limit.

        Parameters
        ----------
        network : UnifiedRoadNetwork
            Network to check.
        elevations : mapping, optional
            Elevation per cross-section index to check instead of the
            current ``target_elevation``, e.g. a snapshot taken right
            after smoothing.
        """
        limit = self.max_grade_percent + self.grade_tolerance_percent
        for edge in network.edges.values():
            if edge.is_structure:
                continue
            for run in contiguous_runs(edge.cross_sections):
                if elevations is None:
                    z = np.array([cs.target_elevation for cs in run])
                else:
                    z = np.array([elevations[cs.index] for cs in run])
                d = np.array([cs.distance for cs in run])
                if max_grade_percent(z, d) > limit:
                    return False
        return True

    def check_falloff_monotonic(self, network: UnifiedRoadNetwork, pre_elevations: Mapping[int, float],
                                post_elevations: Optional[Mapping[int, float]] = None) -> bool:
        """Harmonisation changes never grow moving away from a junction.

        Only the fade of a terminating member is checked, and only up to
        the next junction on the same edge so that overlapping fades are
        not mistaken for a violation.
        """
        for junction in network.junctions:
            if not junction.is_harmonized():
                continue
            for member in junction.terminating_members():
                sections = network.edge(member.edge_id).cross_sections
                others = {m.cross_section.local_index
                          for j in network.junctions_for_edge(member.edge_id) if j is not junction
                          for m in j.members if m.edge_id == member.edge_id}
                start = member.cross_section
                step = 1 if member.is_edge_start else -1
                previous = math.inf
                i = start.local_index
                while 0 <= i < len(sections):
                    cs = sections[i]
                    if abs(cs.distance - start.distance) >= self.blend_distance:
                        break
                    if any(abs(sections[k].distance - cs.distance) < self.blend_distance for k in others):
                        break
                    if not cs.is_excluded:
                        z = cs.target_elevation if post_elevations is None else post_elevations[cs.index]
                        change = abs(z - pre_elevations[cs.index])
                        if change > previous + self.monotonic_tolerance:
                            return False
                        previous = change
                    i += step
        return True

    def check_t_junction_slopes(self, network: UnifiedRoadNetwork) -> bool:
        """Every T junction recorded a finite through-road slope."""
        return all(math.isfinite(j.through_slope) for j in network.junctions
                   if j.junction_type is JunctionType.T)

    def check_mask_alignment(self, blend_report, raster_result) -> bool:
        """Blender and rasterizer consumed the same cross-sections."""
        for edge_id, count in raster_result.edge_section_counts.items():
            if edge_id not in blend_report.edge_section_counts:
                continue
            if blend_report.edge_section_counts[edge_id] != count:
                return False
            if not np.allclose(blend_report.edge_section_centers[edge_id],
                               raster_result.edge_section_centers[edge_id]):
                return False
        return True

    def run(self, network: UnifiedRoadNetwork, pre_elevations: Optional[Mapping[int, float]] = None,
            blend_report=None, raster_result=None,
            grade_elevations: Optional[Mapping[int, float]] = None) -> Dict[str, bool]:
        """Run every check the given inputs allow and return the flags.

        ``grade_elevations`` is the snapshot taken right after
        smoothing, before junction blending.
        """
        flags = {
            "junction_agreement_ok": self.check_junction_agreement(network),
            "t_junction_slopes_ok": self.check_t_junction_slopes(network),
        }
        if pre_elevations is not None:
            flags["falloff_monotonic_ok"] = self.check_falloff_monotonic(network, pre_elevations)
        if grade_elevations is not None:
            flags["grade_clamp_ok"] = self.check_grades(network, grade_elevations)
        if blend_report is not None and raster_result is not None:
            flags["mask_alignment_ok"] = self.check_mask_alignment(blend_report, raster_result)
        failed = [name for name, ok in flags.items() if not ok]
        if failed:
            logger.warning("QA checks failed: %s", ", ".join(failed))
        return flags
