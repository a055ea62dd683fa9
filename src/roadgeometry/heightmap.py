"""Heightmap grid with bilinear sampling.

The grid stores elevations as a two-dimensional float array indexed
``[row, col]`` where rows run along +y and columns along +x.  Pixel
``(row, col)`` represents the world point ``(col * mpp, row * mpp)``;
sampling between pixels is bilinear and clamps at the borders.  The
same convention is used when the blender and rasteriser convert world
coordinates to pixels, so reads and writes always line up.
"""

from dataclasses import dataclass

import numpy as np
from scipy.ndimage import map_coordinates


@dataclass
class HeightmapGrid:
    """Shared elevation raster, mutated in place by the blender."""

    data: np.ndarray
    meters_per_pixel: float = 1.0

    def __post_init__(self):
        self.data = np.asarray(self.data, dtype=float)
        if self.data.ndim != 2:
            raise ValueError("heightmap data must be two-dimensional")
        if self.meters_per_pixel <= 0:
            raise ValueError("meters_per_pixel must be positive")

    @property
    def shape(self):
        return self.data.shape

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    def world_to_pixel(self, points: np.ndarray) -> np.ndarray:
        """Convert (x, y) metres to fractional (col, row) pixels."""
        return np.asarray(points, dtype=float) / self.meters_per_pixel

    def sample_many(self, points: np.ndarray) -> np.ndarray:
        """Bilinear elevation at an (N, 2) array of world points."""
        pts = np.atleast_2d(np.asarray(points, dtype=float))
        px = self.world_to_pixel(pts)
        coords = np.vstack([px[:, 1], px[:, 0]])
        return map_coordinates(self.data, coords, order=1, mode="nearest")

    def sample(self, x: float, y: float) -> float:
        return float(self.sample_many(np.array([[x, y]]))[0])

    def copy(self) -> "HeightmapGrid":
        return HeightmapGrid(self.data.copy(), self.meters_per_pixel)
