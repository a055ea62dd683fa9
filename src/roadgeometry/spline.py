"""Arc-length parameterised road splines.

A :class:`Spline` interpolates a road centreline through its control
points.  The curve is parameterised by cumulative chord length between
control points; each coordinate is interpolated independently against
that parameter:

* ``SMOOTH_INTERPOLATED`` uses an Akima spline when at least five
  control points are available, a natural cubic spline for three or
  four points and a straight line for two.  Akima is unstable with
  fewer than five points and is never used there.
* ``LINEAR_CONTROL_POINTS`` always passes exactly piecewise-linearly
  through the control points.  Use it when fidelity to traced source
  geometry matters more than smoothness.

Because chord length is only an approximation of the true curve
length, the spline measures its arc length on a dense traversal the
first time it is needed and caches the result.  Sampling by distance
then maps arc-length stations back to the chord parameter, giving
evenly spaced samples along the actual curve.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

import numpy as np
from scipy.interpolate import Akima1DInterpolator, CubicSpline

from src.common.diagnostics import DegenerateGeometryError

MIN_POINT_SPACING = 1e-3
MIN_TANGENT_NORM = 1e-3


class InterpolationMode(Enum):
    """How a spline passes through its control points."""

    SMOOTH_INTERPOLATED = "smooth"
    LINEAR_CONTROL_POINTS = "linear"

    @classmethod
    def parse(cls, value) -> "InterpolationMode":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for mode in cls:
            if text in (mode.value, mode.name.lower()):
                return mode
        raise ValueError(f"unknown interpolation mode '{value}'")


@dataclass(frozen=True)
class SplineSample:
    """One station along a spline."""
    distance: float
    position: np.ndarray
    tangent: np.ndarray
    normal: np.ndarray
    """Unit normal pointing to the right of the direction of travel."""


def right_normal(tangent: np.ndarray) -> np.ndarray:
    """Rotate a unit tangent clockwise by 90 degrees."""
    return np.array([tangent[1], -tangent[0]])


def deduplicate_points(points: np.ndarray, min_spacing: float = MIN_POINT_SPACING) -> np.ndarray:
    """Drop control points that coincide with their predecessor."""
    if len(points) == 0:
        return points
    keep = [0]
    for i in range(1, len(points)):
        if np.linalg.norm(points[i] - points[keep[-1]]) >= min_spacing:
            keep.append(i)
    return points[keep]


class Spline:
    """Interpolated road centreline with distance-based sampling.

    Parameters
    ----------
    control_points : array_like
        Sequence of at least two distinct (x, y) points in metres.
    mode : InterpolationMode, optional
        Interpolation behaviour (default ``SMOOTH_INTERPOLATED``).

    Raises
    ------
    DegenerateGeometryError
        If fewer than two distinct points remain after removing
        duplicates, or the resulting curve has zero length.
    """

    def __init__(self, control_points, mode: InterpolationMode = InterpolationMode.SMOOTH_INTERPOLATED):
        points = np.asarray(control_points, dtype=float)
        if points.ndim != 2 or points.shape[1] != 2:
            raise ValueError("control_points must be an (N, 2) array")
        if not np.all(np.isfinite(points)):
            raise DegenerateGeometryError("control points contain non-finite values")
        points = deduplicate_points(points)
        if len(points) < 2:
            raise DegenerateGeometryError("spline needs at least 2 distinct control points")

        self.mode = InterpolationMode.parse(mode)
        self.control_points = points
        self.control_points.setflags(write=False)

        chords = np.linalg.norm(np.diff(points, axis=0), axis=1)
        self._params = np.concatenate([[0.0], np.cumsum(chords)])
        if self._params[-1] < MIN_POINT_SPACING:
            raise DegenerateGeometryError("spline has zero length")

        n = len(points)
        if self.mode is InterpolationMode.LINEAR_CONTROL_POINTS or n == 2:
            self.kind = "linear"
            self._interp = None
        elif n >= 5:
            self.kind = "akima"
            self._interp = Akima1DInterpolator(self._params, points, axis=0)
        else:
            self.kind = "natural_cubic"
            self._interp = CubicSpline(self._params, points, axis=0, bc_type="natural")

        self._arc_table: Optional[np.ndarray] = None
        self._param_table: Optional[np.ndarray] = None

    @property
    def parameter_length(self) -> float:
        """Cumulative chord length between the control points."""
        return float(self._params[-1])

    def _position_at_param(self, u) -> np.ndarray:
        u = np.clip(np.asarray(u, dtype=float), 0.0, self._params[-1])
        if self._interp is None:
            x = np.interp(u, self._params, self.control_points[:, 0])
            y = np.interp(u, self._params, self.control_points[:, 1])
            return np.stack([x, y], axis=-1)
        return self._interp(u)

    def _derivative_at_param(self, u) -> np.ndarray:
        u = np.clip(np.asarray(u, dtype=float), 0.0, self._params[-1])
        if self._interp is None:
            return self._segment_direction(u)
        return self._interp(u, 1)

    def _segment_direction(self, u) -> np.ndarray:
        """Direction of the chord segment containing parameter ``u``."""
        seg = np.clip(np.searchsorted(self._params, u, side="right") - 1, 0, len(self._params) - 2)
        return self.control_points[seg + 1] - self.control_points[seg]

    def _build_arc_table(self) -> None:
        n_segments = len(self._params) - 1
        n_dense = max(16 * n_segments, int(np.ceil(self.parameter_length / 0.25)) + 1, 64)
        params = np.linspace(0.0, self._params[-1], n_dense)
        positions = self._position_at_param(params)
        steps = np.linalg.norm(np.diff(positions, axis=0), axis=1)
        arc = np.concatenate([[0.0], np.cumsum(steps)])
        if arc[-1] < MIN_POINT_SPACING:
            raise DegenerateGeometryError("spline has zero length")
        self._arc_table = arc
        self._param_table = params

    @property
    def total_length(self) -> float:
        """Arc length of the curve in metres (cached)."""
        if self._arc_table is None:
            self._build_arc_table()
        return float(self._arc_table[-1])

    def param_at_distance(self, distance) -> np.ndarray:
        """Map arc-length distance(s) to the chord parameter."""
        if self._arc_table is None:
            self._build_arc_table()
        d = np.clip(np.asarray(distance, dtype=float), 0.0, self._arc_table[-1])
        return np.interp(d, self._arc_table, self._param_table)

    def position_at(self, distance: float) -> np.ndarray:
        """Centreline position at an arc-length distance."""
        return self._position_at_param(self.param_at_distance(distance))

    def tangent_at(self, distance: float) -> np.ndarray:
        """Unit tangent at an arc-length distance.

        Falls back to the enclosing chord direction where the
        interpolant's derivative vanishes, and to (1, 0) if that is
        degenerate too.
        """
        u = self.param_at_distance(distance)
        tangent = np.asarray(self._derivative_at_param(u), dtype=float)
        norm = np.linalg.norm(tangent)
        if norm < MIN_TANGENT_NORM:
            tangent = self._segment_direction(u)
            norm = np.linalg.norm(tangent)
            if norm < MIN_TANGENT_NORM:
                return np.array([1.0, 0.0])
        return tangent / norm

    def normal_at(self, distance: float) -> np.ndarray:
        return right_normal(self.tangent_at(distance))

    def station_distances(self, step: float) -> np.ndarray:
        """Evenly spaced arc-length stations from start to end inclusive.

        The number of intervals is the one whose spacing lies closest to
        ``step``; the spacing itself is uniform.
        """
        if step <= 0:
            raise ValueError("step must be positive")
        length = self.total_length
        n = max(1, int(round(length / step)))
        return np.linspace(0.0, length, n + 1)

    def sample_by_distance(self, step: float) -> Iterator[SplineSample]:
        """Yield samples every ``step`` metres along the curve.

        Each call starts a new traversal, so the sequence can be
        iterated any number of times.  Distances strictly increase and
        the final sample lies on the last control point.
        """
        distances = self.station_distances(step)
        params = self.param_at_distance(distances)
        positions = self._position_at_param(params)
        for d, pos in zip(distances, positions):
            tangent = self.tangent_at(d)
            yield SplineSample(
                distance=float(d),
                position=np.asarray(pos, dtype=float),
                tangent=tangent,
                normal=right_normal(tangent),
            )

    def __repr__(self) -> str:
        return (f"Spline(kind={self.kind}, points={len(self.control_points)}, "
                f"length={self.total_length:.2f})")
