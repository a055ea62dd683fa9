"""Output passes: heightmap blending, layer masks and post-smoothing."""

from .footprint import iter_segment_quads, quad_corners, quad_pixels
from .blender import HeightmapBlender, BlendReport
from .rasterizer import LayerRasterizer, RasterResult
from .post_smoothing import PostProcessingSmoother

__all__ = [
    "iter_segment_quads",
    "quad_corners",
    "quad_pixels",
    "HeightmapBlender",
    "BlendReport",
    "LayerRasterizer",
    "RasterResult",
    "PostProcessingSmoother",
]
