"""Grade-limited smoothing of terrain-sampled road profiles.

Raw terrain reads along a centreline are noisy and may climb faster
than a road can.  The :class:`ElevationSmoother` first applies a
moving-average filter to the profile and then limits the grade between
adjacent cross-sections to a configured percentage.

The grade limit is run twice: once forward, clamping every sample to
within the allowed rise of its predecessor, and once backward against
its successor.  Each pass alone drags the profile in its direction of
travel; the mean of the two is still grade-limited (the bound holds
for each pass, so it holds for their average) and carries no
directional bias.

Structure spans are skipped: each contiguous run of non-excluded
cross-sections is smoothed on its own.
"""

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from src.common.diagnostics import GradeViolationWarning
from src.roadgeometry.cross_section import CrossSection
from src.utils.logging import get_logger

logger = get_logger(__name__)

GRADE_TOLERANCE = 1e-9


def moving_average(values: np.ndarray, window: int) -> np.ndarray:
    """Edge-padded moving average of a 1D array."""
    if window < 1 or window % 2 == 0:
        raise ValueError("window must be a positive odd integer")
    if window == 1 or len(values) < 2:
        return values.astype(float).copy()
    pad = window // 2
    padded = np.pad(values, (pad, pad), mode="edge")
    kernel = np.ones(window) / window
    return np.convolve(padded, kernel, mode="valid")


def max_grade_percent(elevations: np.ndarray, distances: np.ndarray) -> float:
    """Steepest absolute grade between adjacent samples, in percent."""
    if len(elevations) < 2:
        return 0.0
    ds = np.diff(distances)
    de = np.abs(np.diff(elevations))
    valid = ds > 0
    if not np.any(valid):
        return 0.0
    return float(np.max(de[valid] / ds[valid]) * 100.0)


def limit_grade(elevations: np.ndarray, distances: np.ndarray, max_grade: float) -> np.ndarray:
    """Clamp adjacent-sample grades to ``max_grade`` percent.

    Parameters
    ----------
    elevations : numpy.ndarray
        Profile elevations.
    distances : numpy.ndarray
        Arc-length stations of the samples, strictly increasing.
    max_grade : float
        Grade limit in percent.

    Returns
    -------
    numpy.ndarray
        The mean of a forward- and a backward-clamped profile.
    """
    n = len(elevations)
    if n < 2:
        return elevations.astype(float).copy()
    max_rise = (max_grade / 100.0) * np.diff(distances)

    forward = elevations.astype(float).copy()
    for i in range(1, n):
        r = max_rise[i - 1]
        forward[i] = min(max(forward[i], forward[i - 1] - r), forward[i - 1] + r)

    backward = elevations.astype(float).copy()
    for i in range(n - 2, -1, -1):
        r = max_rise[i]
        backward[i] = min(max(backward[i], backward[i + 1] - r), backward[i + 1] + r)

    return 0.5 * (forward + backward)


def contiguous_runs(sections: Sequence[CrossSection]) -> List[List[CrossSection]]:
    """Split sections into maximal runs of non-excluded entries."""
    runs: List[List[CrossSection]] = []
    current: List[CrossSection] = []
    for cs in sections:
        if cs.is_excluded:
            if current:
                runs.append(current)
                current = []
        else:
            current.append(cs)
    if current:
        runs.append(current)
    return runs


@dataclass
class ElevationSmoother:
    """Smooth and grade-limit the profile of one edge."""

    window: int = 5
    """Moving-average window in samples (odd)."""

    max_grade_percent: float = 8.0
    """Grade limit between adjacent cross-sections."""

    def smooth(self, sections: Sequence[CrossSection]) -> List[GradeViolationWarning]:
        """Replace ``target_elevation`` of non-excluded sections in place.

        Returns
        -------
        list of GradeViolationWarning
            One warning per run whose filtered profile was steeper than
            the limit before grade limiting.
        """
        if self.max_grade_percent <= 0:
            raise ValueError("max_grade_percent must be positive")
        warnings: List[GradeViolationWarning] = []
        for run in contiguous_runs(sections):
            elevations = np.array([cs.target_elevation for cs in run], dtype=float)
            distances = np.array([cs.distance for cs in run], dtype=float)
            filtered = moving_average(elevations, self.window)
            steepest = max_grade_percent(filtered, distances)
            limited = limit_grade(filtered, distances, self.max_grade_percent)
            for cs, z in zip(run, limited):
                cs.target_elevation = float(z)
            if steepest > self.max_grade_percent + GRADE_TOLERANCE:
                edge_id = run[0].edge_id
                warnings.append(GradeViolationWarning(
                    f"edge {edge_id}: terrain grade {steepest:.2f}% exceeds "
                    f"{self.max_grade_percent:.2f}%, profile grade-limited "
                    f"between stations {distances[0]:.1f} and {distances[-1]:.1f} m",
                    edge_id=edge_id,
                    grade_percent=steepest,
                    limit_percent=self.max_grade_percent,
                ))
            logger.debug("Smoothed %d sections of edge %d (raw max grade %.2f%%)",
                         len(run), run[0].edge_id, steepest)
        return warnings
