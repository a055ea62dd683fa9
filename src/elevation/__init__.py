"""Per-edge elevation passes.

Sampling edges into cross-sections, grade-limited smoothing, curve
banking and independent bridge/tunnel profiles, plus the falloff
curves the graph-wide passes share.
"""

from .blend_functions import BLEND_FUNCTIONS, get_blend_function, falloff_weight
from .sampler import CrossSectionSampler
from .smoother import ElevationSmoother, limit_grade, max_grade_percent
from .banking import BankingCalculator, compute_curvature
from .structures import (
    StructureCurveType,
    StructureElevationProfile,
    StructureElevationCalculator,
    StructureResult,
)

__all__ = [
    "BLEND_FUNCTIONS",
    "get_blend_function",
    "falloff_weight",
    "CrossSectionSampler",
    "ElevationSmoother",
    "limit_grade",
    "max_grade_percent",
    "BankingCalculator",
    "compute_curvature",
    "StructureCurveType",
    "StructureElevationProfile",
    "StructureElevationCalculator",
    "StructureResult",
]
