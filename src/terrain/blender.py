"""Writing road elevations into the heightmap.

The :class:`HeightmapBlender` stamps every road into the shared
heightmap in two passes.

1. **Core.**  For each pair of consecutive non-excluded cross-sections
   the quad between their edge points is covered, and every pixel
   inside takes the road surface elevation, interpolated bilinearly
   between the resolved left and right edge elevations of the two
   sections.  Where cores overlap the higher-priority edge wins; ties
   go to the edge that comes first in the network, so the output
   never depends on timing.
2. **Falloff.**  An exact Euclidean distance field is computed from
   the union of all cores.  Every pixel closer than the falloff
   distance takes the elevation of its nearest core pixel, blended with
   the original terrain by a weight that decays from 1 at the core to
   0 at the falloff distance.  Measuring distance to the core rather
   than across a segment makes road ends, outer bends and junction
   gaps recover to the terrain the same way the road sides do.

Pixels are written once as ``w * road + (1 - w) * original``.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from scipy import ndimage

from src.common.cancellation import CancellationToken, is_cancelled
from src.elevation.blend_functions import falloff_weight, get_blend_function
from src.roadgeometry.heightmap import HeightmapGrid
from src.utils.logging import get_logger

from .footprint import iter_segment_quads, quad_pixels, segment_frame

logger = get_logger(__name__)

CHANGE_TOLERANCE = 1e-9


@dataclass
class BlendReport:
    """What the blender wrote."""

    edge_section_counts: Dict[int, int] = field(default_factory=dict)
    """Number of cross-sections each edge contributed."""

    edge_section_centers: Dict[int, np.ndarray] = field(default_factory=dict)
    edge_core_pixels: Dict[int, int] = field(default_factory=dict)
    """Distinct pixels inside each edge's road core."""

    pixels_modified: int = 0
    cut_volume: float = 0.0
    """Cubic metres of terrain removed."""

    fill_volume: float = 0.0
    max_discontinuity: float = 0.0
    """Largest height step between neighbouring written pixels."""

    unprocessed: List[int] = field(default_factory=list)
    cancelled: bool = False


class _CoreCandidates:
    """Per-pixel winning road core, kept in flat arrays."""

    def __init__(self, size: int):
        self.priority = np.full(size, -np.inf)
        self.elevation = np.zeros(size)

    def offer(self, flat: np.ndarray, elevation: np.ndarray, priority: float) -> None:
        better = priority > self.priority[flat]
        idx = flat[better]
        self.priority[idx] = priority
        self.elevation[idx] = elevation[better]

    @property
    def covered(self) -> np.ndarray:
        return np.isfinite(self.priority)


@dataclass
class HeightmapBlender:
    """Blend road elevations into the terrain."""

    falloff_distance: float = 8.0
    """Distance beyond the road core over which terrain recovers."""

    blend_function: str = "smoothstep"

    def road_elevations(self, heightmap: HeightmapGrid, cs1, cs2,
                        rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
        """Road surface elevation at pixel centres inside a segment quad."""
        points = np.column_stack([cols, rows]).astype(float) * heightmap.meters_per_pixel
        u, lateral = segment_frame(cs1, cs2, points)
        left = (1.0 - u) * cs1.resolved_left_edge_elevation() + u * cs2.resolved_left_edge_elevation()
        right = (1.0 - u) * cs1.resolved_right_edge_elevation() + u * cs2.resolved_right_edge_elevation()
        half_width = (1.0 - u) * cs1.half_width + u * cs2.half_width
        frac = np.clip((lateral + half_width) / (2.0 * half_width), 0.0, 1.0)
        return left + (right - left) * frac

    def falloff(self, core: np.ndarray, core_elevation: np.ndarray, meters_per_pixel: float):
        """Weight and road elevation of every pixel from the core distance field.

        Parameters
        ----------
        core : numpy.ndarray
            Boolean grid of road core pixels.
        core_elevation : numpy.ndarray
            Road elevation grid, valid where ``core`` is set.
        meters_per_pixel : float
            Grid resolution, used as the distance sampling.

        Returns
        -------
        (numpy.ndarray, numpy.ndarray)
            Weight (1 on the core, 0 beyond the falloff distance) and
            the elevation of each pixel's nearest core pixel.
        """
        weight = core.astype(float)
        if self.falloff_distance <= 0 or not core.any() or core.all():
            return weight, core_elevation
        blend = get_blend_function(self.blend_function)
        distance, (rows, cols) = ndimage.distance_transform_edt(
            ~core, sampling=meters_per_pixel, return_indices=True)
        ring = ~core & (distance < self.falloff_distance)
        weight[ring] = falloff_weight(distance[ring], self.falloff_distance, blend)
        return weight, core_elevation[rows, cols]

    def blend(self, network, heightmap: HeightmapGrid,
              cancel_token: Optional[CancellationToken] = None) -> BlendReport:
        """Write all non-excluded cross-sections into ``heightmap`` in place.

        Parameters
        ----------
        network : UnifiedRoadNetwork
            Network with final cross-section elevations.
        heightmap : HeightmapGrid
            Grid to modify.
        cancel_token : CancellationToken, optional
            Checked once per edge; edges already stamped are still
            written out on cancellation.

        Returns
        -------
        BlendReport
        """
        report = BlendReport()
        height, width = heightmap.shape
        original = heightmap.data.copy()
        best = _CoreCandidates(height * width)
        edges = list(network.edges.values())

        for pos, edge in enumerate(edges):
            if is_cancelled(cancel_token):
                report.cancelled = True
                report.unprocessed = [e.edge_id for e in edges[pos:]]
                logger.warning("Heightmap blending cancelled, %d edges left", len(report.unprocessed))
                break
            used = [cs for cs in edge.cross_sections if not cs.is_excluded]
            report.edge_section_counts[edge.edge_id] = len(used)
            report.edge_section_centers[edge.edge_id] = (
                np.array([cs.center for cs in used]) if used else np.empty((0, 2)))
            core_pixels = []
            for cs1, cs2, corners in iter_segment_quads(edge.cross_sections, heightmap.meters_per_pixel):
                rows, cols = quad_pixels(corners, height, width)
                if not len(rows):
                    continue
                flat = rows * width + cols
                core_pixels.append(flat)
                best.offer(flat, self.road_elevations(heightmap, cs1, cs2, rows, cols), edge.priority)
            report.edge_core_pixels[edge.edge_id] = (
                int(len(np.unique(np.concatenate(core_pixels)))) if core_pixels else 0)

        core = best.covered.reshape(height, width)
        weight, road = self.falloff(core, best.elevation.reshape(height, width),
                                    heightmap.meters_per_pixel)
        written = weight > 0
        blended = original.copy()
        w = weight[written]
        blended[written] = w * road[written] + (1.0 - w) * original[written]
        heightmap.data[...] = blended

        delta = heightmap.data - original
        cell_area = heightmap.meters_per_pixel ** 2
        report.pixels_modified = int(np.sum(np.abs(delta) > CHANGE_TOLERANCE))
        report.cut_volume = float(np.sum(np.clip(-delta, 0.0, None)) * cell_area)
        report.fill_volume = float(np.sum(np.clip(delta, 0.0, None)) * cell_area)
        report.max_discontinuity = self._max_discontinuity(heightmap.data, written)
        logger.info("Blended %d edges: %d pixels modified, cut %.1f m3, fill %.1f m3",
                    len(report.edge_section_counts), report.pixels_modified,
                    report.cut_volume, report.fill_volume)
        return report

    @staticmethod
    def _max_discontinuity(data: np.ndarray, written: np.ndarray) -> float:
        steps = []
        if data.shape[1] > 1:
            pair = written[:, 1:] | written[:, :-1]
            steps.append(np.abs(np.diff(data, axis=1))[pair])
        if data.shape[0] > 1:
            pair = written[1:, :] | written[:-1, :]
            steps.append(np.abs(np.diff(data, axis=0))[pair])
        values = np.concatenate(steps) if steps else np.empty(0)
        return float(values.max()) if values.size else 0.0
