"""Paint-layer masks from the sampled road footprint.

The :class:`LayerRasterizer` fills the quads between consecutive
cross-sections into one byte mask per paint category.  It reads the
very cross-section list the heightmap blender consumes, never the raw
control points, so paint and shaped terrain cover the same pixels.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from src.common.cancellation import CancellationToken, is_cancelled
from src.utils.logging import get_logger

from .footprint import iter_segment_quads, quad_pixels

logger = get_logger(__name__)

MASK_ON = 255


@dataclass
class RasterResult:
    masks: Dict[str, np.ndarray] = field(default_factory=dict)
    """uint8 mask (0/255) per paint category."""

    edge_section_counts: Dict[int, int] = field(default_factory=dict)
    edge_section_centers: Dict[int, np.ndarray] = field(default_factory=dict)
    edge_pixel_counts: Dict[int, int] = field(default_factory=dict)
    unprocessed: List[int] = field(default_factory=list)
    cancelled: bool = False

    def combined_mask(self, shape: Tuple[int, int]) -> np.ndarray:
        """Union of all category masks."""
        combined = np.zeros(shape, dtype=np.uint8)
        for mask in self.masks.values():
            combined |= mask
        return combined


@dataclass
class LayerRasterizer:
    """Rasterise road footprints into per-category masks."""

    include_structures: bool = False
    """Also paint bridge and tunnel spans."""

    def rasterize(self, network, shape: Tuple[int, int], meters_per_pixel: float,
                  cancel_token: Optional[CancellationToken] = None) -> RasterResult:
        """Build the masks for every edge of ``network``.

        Parameters
        ----------
        network : UnifiedRoadNetwork
            Network whose cross-sections define the footprint.
        shape : (int, int)
            Heightmap shape (rows, cols).
        meters_per_pixel : float
            Heightmap scale.
        cancel_token : CancellationToken, optional
            Checked once per edge.

        Returns
        -------
        RasterResult
        """
        height, width = shape
        result = RasterResult()
        edges = list(network.edges.values())
        for pos, edge in enumerate(edges):
            if is_cancelled(cancel_token):
                result.cancelled = True
                result.unprocessed = [e.edge_id for e in edges[pos:]]
                logger.warning("Rasterisation cancelled, %d edges left", len(result.unprocessed))
                break
            if edge.is_structure and not self.include_structures:
                continue
            mask = result.masks.setdefault(edge.category, np.zeros(shape, dtype=np.uint8))
            skip_excluded = not (edge.is_structure and self.include_structures)
            used = [cs for cs in edge.cross_sections if not (skip_excluded and cs.is_excluded)]
            result.edge_section_counts[edge.edge_id] = len(used)
            result.edge_section_centers[edge.edge_id] = (
                np.array([cs.center for cs in used]) if used else np.empty((0, 2)))
            edge_mask = np.zeros(shape, dtype=bool)
            for _, _, corners in iter_segment_quads(edge.cross_sections, meters_per_pixel,
                                                    skip_excluded=skip_excluded):
                rows, cols = quad_pixels(corners, height, width)
                edge_mask[rows, cols] = True
            mask[edge_mask] = MASK_ON
            result.edge_pixel_counts[edge.edge_id] = int(edge_mask.sum())
        logger.info("Rasterised %d edges into %d layer masks",
                    len(result.edge_pixel_counts), len(result.masks))
        return result
