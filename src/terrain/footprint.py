"""Road footprint geometry shared by the blender and the rasteriser.

Both consumers walk the same quads: one per pair of consecutive
non-excluded cross-sections, spanned by the left and right edge points
of the two sections.  Keeping the quad construction and the pixel
coverage test in one place is what makes the paint masks and the
shaped terrain line up pixel for pixel.

Pixel ``(row, col)`` is the world point ``(col * mpp, row * mpp)``,
matching :class:`src.roadgeometry.heightmap.HeightmapGrid`.  A pixel
belongs to a quad when that point lies inside it or on its border.

Numba compiles the coverage loop, which runs once per quad and
dominates the cost of the output passes.
"""

from typing import Iterator, Sequence, Tuple

import numpy as np
from numba import njit

from src.roadgeometry.cross_section import CrossSection

EDGE_EPSILON = 1e-9


def quad_corners(cs1: CrossSection, cs2: CrossSection) -> np.ndarray:
    """World-space corners left1, right1, right2, left2 of a segment quad."""
    h1 = cs1.half_width
    h2 = cs2.half_width
    return np.array([
        cs1.center - cs1.normal * h1,
        cs1.center + cs1.normal * h1,
        cs2.center + cs2.normal * h2,
        cs2.center - cs2.normal * h2,
    ])


def iter_segment_quads(sections: Sequence[CrossSection], meters_per_pixel: float,
                       skip_excluded: bool = True) -> Iterator[Tuple[CrossSection, CrossSection, np.ndarray]]:
    """Yield (cs1, cs2, pixel corners) for consecutive cross-section pairs."""
    for cs1, cs2 in zip(sections[:-1], sections[1:]):
        if skip_excluded and (cs1.is_excluded or cs2.is_excluded):
            continue
        yield cs1, cs2, quad_corners(cs1, cs2) / meters_per_pixel


@njit(cache=True)
def quad_pixels(corners, height, width):
    """Row and column indices of grid pixels covered by a quad.

    Parameters
    ----------
    corners : numpy.ndarray
        (4, 2) quad corners in pixel units, (col, row) order, convex
        and in either winding.
    height, width : int
        Grid shape.

    Returns
    -------
    (numpy.ndarray, numpy.ndarray)
        int64 row and column indices.
    """
    c0 = max(int(np.floor(corners[:, 0].min())), 0)
    c1 = min(int(np.ceil(corners[:, 0].max())), width - 1)
    r0 = max(int(np.floor(corners[:, 1].min())), 0)
    r1 = min(int(np.ceil(corners[:, 1].max())), height - 1)
    n_max = max(r1 - r0 + 1, 0) * max(c1 - c0 + 1, 0)
    rows = np.empty(n_max, dtype=np.int64)
    cols = np.empty(n_max, dtype=np.int64)

    area = 0.0
    for i in range(4):
        j = (i + 1) % 4
        area += corners[i, 0] * corners[j, 1] - corners[j, 0] * corners[i, 1]
    sign = 1.0 if area >= 0.0 else -1.0

    count = 0
    for r in range(r0, r1 + 1):
        for c in range(c0, c1 + 1):
            inside = True
            for i in range(4):
                j = (i + 1) % 4
                ex = corners[j, 0] - corners[i, 0]
                ey = corners[j, 1] - corners[i, 1]
                cross = ex * (r - corners[i, 1]) - ey * (c - corners[i, 0])
                if cross * sign < -EDGE_EPSILON:
                    inside = False
                    break
            if inside:
                rows[count] = r
                cols[count] = c
                count += 1
    return rows[:count], cols[:count]


def segment_frame(cs1: CrossSection, cs2: CrossSection, points: np.ndarray):
    """Project world points onto the segment between two sections.

    Returns
    -------
    (numpy.ndarray, numpy.ndarray)
        Fraction ``u`` along the segment (clamped to [0, 1]) and signed
        lateral offset (positive to the right) of every point.
    """
    seg = cs2.center - cs1.center
    seg_len2 = float(np.dot(seg, seg))
    rel = points - cs1.center
    if seg_len2 > 0:
        u = np.clip(rel @ seg / seg_len2, 0.0, 1.0)
    else:
        u = np.zeros(len(points))
    normals = (1.0 - u)[:, None] * cs1.normal + u[:, None] * cs2.normal
    norms = np.linalg.norm(normals, axis=1, keepdims=True)
    normals = normals / np.where(norms == 0, 1, norms)
    base = cs1.center + u[:, None] * seg
    lateral = np.einsum("ij,ij->i", points - base, normals)
    return u, lateral
