"""Road geometry: splines, cross-sections, edges and the heightmap grid.

These are the leaf data types every pass of the engine reads and
writes.  Nothing in this package depends on the network or elevation
packages.
"""

from .spline import Spline, SplineSample, InterpolationMode
from .cross_section import CrossSection
from .road_edge import RoadEdge, RoadGeometry
from .heightmap import HeightmapGrid

__all__ = [
    "Spline",
    "SplineSample",
    "InterpolationMode",
    "CrossSection",
    "RoadEdge",
    "RoadGeometry",
    "HeightmapGrid",
]
